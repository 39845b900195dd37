"""Step lifecycle for a single task.

A task's steps form an ordered sequence keyed by step_number. At most one
step is active at a time; completing the active step hands off to the next
pending step, and completing the last one completes the task.
"""

from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from src.models.step import Step, StepStatus
from src.models.task import Task, TaskStatus
from src.utils.errors import InvalidStateError, NotFoundError, ValidationError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

_UPDATABLE_FIELDS = ("title", "description", "start_date", "end_date", "status")
_CLEARABLE_FIELDS = ("start_date", "end_date")


class StepUpdate(BaseModel):
    """Result of an edit: the step plus assignment changes for emails and the feed."""
    step: Step
    added_users: list[str] = Field(default_factory=list)
    removed_users: list[str] = Field(default_factory=list)


def ensure_step_belongs(task: Task, step: Step) -> None:
    """Raise InvalidStateError when a step is addressed through the wrong task."""
    if step.task_id != task.task_id:
        raise InvalidStateError(
            f"Step {step.step_id} belongs to task {step.task_id}, not {task.task_id}"
        )


class StepSequencer:
    """Owns the step state machine for one loaded task."""

    def __init__(self, task: Task, steps: Iterable[Step] = ()):
        self.task = task
        self._steps: dict[str, Step] = {}
        for step in steps:
            ensure_step_belongs(task, step)
            self._steps[step.step_id] = step

    @property
    def steps(self) -> list[Step]:
        """Steps ordered by step_number."""
        return sorted(self._steps.values(), key=lambda s: s.step_number)

    @property
    def active_step(self) -> Optional[Step]:
        return next((s for s in self.steps if s.is_active), None)

    def get_step(self, step_id: str) -> Step:
        step = self._steps.get(step_id)
        if step is None:
            raise NotFoundError(f"Step not found: {step_id}")
        return step

    def check_invariants(self) -> None:
        """Raise if more than one step is active."""
        active = [s.step_id for s in self._steps.values() if s.is_active]
        if len(active) > 1:
            raise InvalidStateError(
                f"Task {self.task.task_id} has {len(active)} active steps: {', '.join(active)}"
            )

    def _next_step_number(self) -> int:
        if not self._steps:
            return 1
        return max(s.step_number for s in self._steps.values()) + 1

    def _activate(self, step: Step) -> None:
        for other in self._steps.values():
            if other.step_id != step.step_id:
                other.is_active = False
        step.is_active = True
        if step.status == StepStatus.PENDING:
            step.status = StepStatus.IN_PROGRESS

    def _next_pending(self, after_number: int) -> Optional[Step]:
        return next(
            (s for s in self.steps
             if s.step_number > after_number and s.status == StepStatus.PENDING),
            None,
        )

    def create_step(
        self,
        title: str,
        description: str = "",
        assigned_users: Optional[list[str]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        step_id: Optional[str] = None,
    ) -> Step:
        """Append a step. The first step of a task starts active and in progress."""
        is_first = not self._steps
        fields = dict(
            task_id=self.task.task_id,
            step_number=self._next_step_number(),
            title=title,
            description=description,
            assigned_users=assigned_users or [],
            start_date=start_date,
            end_date=end_date,
            is_active=is_first,
            status=StepStatus.IN_PROGRESS if is_first else StepStatus.PENDING,
        )
        if step_id is not None:
            fields["step_id"] = step_id
        step = Step(**fields)
        self._steps[step.step_id] = step

        if step.is_active and self.task.status == TaskStatus.NOT_STARTED:
            self.task.status = TaskStatus.IN_PROGRESS

        self.check_invariants()
        logger.debug(
            "Step created",
            task_id=self.task.task_id,
            step_id=step.step_id,
            step_number=step.step_number,
            is_active=step.is_active,
        )
        return step

    def update_step(
        self,
        step_id: str,
        assigned_users: Optional[list[str]] = None,
        clear: Iterable[str] = (),
        **fields,
    ) -> StepUpdate:
        """
        Edit step fields. Only title, description, start_date, end_date and
        status are accepted besides assigned_users. A status edit is applied
        as-is; it does not trigger the completion cascade.

        None values leave a field unchanged. Dates named in ``clear`` are
        reset to None.
        """
        step = self.get_step(step_id)

        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unsupported step fields: {', '.join(sorted(unknown))}")
        not_clearable = set(clear) - set(_CLEARABLE_FIELDS)
        if not_clearable:
            raise ValidationError(f"Cannot clear step fields: {', '.join(sorted(not_clearable))}")

        for name, value in fields.items():
            if value is not None:
                setattr(step, name, value)
        for name in clear:
            setattr(step, name, None)

        added: list[str] = []
        removed: list[str] = []
        if assigned_users is not None:
            old_users = list(step.assigned_users)
            added = [u for u in dict.fromkeys(assigned_users) if u not in old_users]
            removed = [u for u in old_users if u not in assigned_users]
            step.assigned_users = assigned_users

        self.check_invariants()
        return StepUpdate(step=step, added_users=added, removed_users=removed)

    def activate_step(self, step_id: str) -> Step:
        """Make the given step the task's single active step."""
        step = self.get_step(step_id)
        self._activate(step)
        self.check_invariants()
        return step

    def complete_step(self, step_id: str, completed_by: str, now: datetime) -> Optional[Step]:
        """
        Complete a step and run the cascade.

        The lowest-numbered pending step after the completed one becomes
        active. Blocked steps are skipped. With no pending successor the task
        is completed and its manual progress pinned to 100.

        Returns the newly activated step, or None when the task was completed.
        """
        step = self.get_step(step_id)

        step.status = StepStatus.COMPLETED
        step.completed_at = now
        step.completed_by = completed_by
        step.is_active = False

        next_step = self._next_pending(step.step_number)
        if next_step is not None:
            self._activate(next_step)
            logger.info(
                "Next step activated",
                task_id=self.task.task_id,
                completed_step_number=step.step_number,
                activated_step_number=next_step.step_number,
            )
        else:
            self.task.status = TaskStatus.COMPLETED
            self.task.manual_progress = 100
            logger.info(
                "All steps completed, task completed",
                task_id=self.task.task_id,
                completed_step_number=step.step_number,
            )

        self.check_invariants()
        return next_step

    def delete_step(self, step_id: str) -> Step:
        """
        Remove a step without renumbering the rest.

        Deleting the active step activates a replacement: the next pending
        step after it, else the lowest-numbered pending step, else nothing.
        """
        step = self._steps.pop(step_id, None)
        if step is None:
            raise NotFoundError(f"Step not found: {step_id}")

        if step.is_active:
            replacement = self._next_pending(step.step_number) or self._next_pending(0)
            if replacement is not None:
                self._activate(replacement)
                logger.info(
                    "Replacement step activated after deleting active step",
                    task_id=self.task.task_id,
                    deleted_step_number=step.step_number,
                    activated_step_number=replacement.step_number,
                )

        self.check_invariants()
        return step
