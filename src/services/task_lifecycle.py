"""Task-level state rules: pausing, resuming, manual progress, status and detail edits."""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from src.models.progress import ProgressDisplay
from src.models.task import StopLog, Task, TaskPriority, TaskStatus
from src.services import progress_calculator
from src.utils.errors import ValidationError
from src.utils.logging import get_structured_logger, mask_user_id, sanitize_user_text

logger = get_structured_logger(__name__)


class AssignmentDiff(BaseModel):
    """Users added to and removed from a task by an assignment edit."""
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"Please provide a {field_name}")
    return str(value).strip()


def stop_work(task: Task, reason: str, user_id: str, now: datetime) -> StopLog:
    """Pause a task, recording who stopped it and why."""
    reason = _require_text(reason, "reason for stopping work")

    entry = StopLog(user_id=user_id, reason=reason, timestamp=now)
    task.stop_logs = [*task.stop_logs, entry]
    task.status = TaskStatus.PAUSED

    logger.info(
        "Work stopped",
        task_id=task.task_id,
        user_id=mask_user_id(user_id),
        reason=sanitize_user_text(reason),
    )
    return entry


def resume_work(task: Task) -> None:
    """Put a task back in progress."""
    task.status = TaskStatus.IN_PROGRESS


def set_manual_progress(task: Task, value: int, comment: str, now: datetime) -> Optional[int]:
    """
    Override the displayed progress.

    ``value`` must be an integer from 0 to 100 and ``comment`` must explain
    the change. Setting 100 completes the task; any positive value starts a
    not-started task. Returns the previous manual progress.
    """
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise ValidationError("Progress must be an integer between 0 and 100")
    comment = _require_text(comment, "comment explaining the progress update")

    old_progress = task.manual_progress
    task.manual_progress = value

    if value == 100:
        task.status = TaskStatus.COMPLETED
    elif task.status == TaskStatus.NOT_STARTED and value > 0:
        task.status = TaskStatus.IN_PROGRESS

    logger.info(
        "Manual progress set",
        task_id=task.task_id,
        old_progress=old_progress,
        new_progress=value,
        status=task.status.value,
        at=now.isoformat(),
    )
    return old_progress


def change_status(task: Task, new_status: Union[TaskStatus, str]) -> Optional[TaskStatus]:
    """
    Set the task status directly. Progress values are left alone, so a task
    can be completed without reaching 100.

    Returns the previous status, or None when nothing changed.
    """
    try:
        new_status = TaskStatus(new_status)
    except ValueError:
        raise ValidationError(f"Invalid task status: {new_status}") from None

    if new_status == task.status:
        return None
    old_status = task.status
    task.status = new_status
    return old_status


_EDITABLE_FIELDS = ("title", "description", "start_date", "end_date", "priority")


def update_details(task: Task, **fields: Any) -> list[str]:
    """
    Edit title, description, dates and priority. None leaves a field as it
    is. Status and assignees have their own operations.

    Returns a label per field that actually changed, for the activity feed.
    """
    unknown = set(fields) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported task fields: {', '.join(sorted(unknown))}")
    if "priority" in fields and fields["priority"] is not None:
        try:
            fields["priority"] = TaskPriority(fields["priority"])
        except ValueError:
            raise ValidationError(f"Invalid task priority: {fields['priority']}") from None

    changes = []
    for name in _EDITABLE_FIELDS:
        value = fields.get(name)
        if value is None:
            continue
        old_value = getattr(task, name)
        setattr(task, name, value)
        if getattr(task, name) == old_value:
            continue
        if name == "title":
            changes.append(f'title from "{old_value}" to "{task.title}"')
        elif name == "priority":
            changes.append(f'priority from "{old_value.value}" to "{task.priority.value}"')
        else:
            changes.append(name.replace("_", " "))
    return changes


def assign_users(task: Task, user_ids: list[str]) -> AssignmentDiff:
    """Replace the task's assignees and report who was added or removed."""
    old_users = list(task.assigned_users)
    task.assigned_users = user_ids
    return AssignmentDiff(
        added=[u for u in task.assigned_users if u not in old_users],
        removed=[u for u in old_users if u not in task.assigned_users],
    )


def compute_display(task: Task, now: datetime) -> ProgressDisplay:
    """
    Progress figures for a task payload, computed fresh from the dates.

    Also refreshes the cached ``task.auto_progress``; the cached value is
    never used for display.
    """
    auto_progress = progress_calculator.calculate_auto_progress(task.start_date, task.end_date, now)
    task.auto_progress = auto_progress

    return ProgressDisplay(
        auto_progress=auto_progress,
        display_progress=progress_calculator.get_display_progress(auto_progress, task.manual_progress),
        days_remaining=progress_calculator.get_days_remaining(task.end_date, now),
        total_days=progress_calculator.get_total_days(task.start_date, task.end_date),
        progress_color=progress_calculator.get_progress_color(task.start_date, task.end_date, now),
        overdue=progress_calculator.is_overdue(task.end_date, now),
    )
