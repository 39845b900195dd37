"""Task and step operations for request handlers.

Each operation is one unit of work: load the task and its steps, mutate
them through the step sequencer / task lifecycle rules, persist whatever
changed, then fire activity, notification and email side effects. Side
effects are best-effort and never undo or block the mutation.
"""

from datetime import datetime
from typing import Any, Awaitable, Optional

from pydantic import BaseModel, Field

from src.models.activity import ActivityAction
from src.models.notification import NotificationType
from src.models.progress import ProgressDisplay
from src.models.step import Step
from src.models.task import Task, TaskPriority, TaskStatus
from src.services import task_lifecycle
from src.services.activity_logger import ActivityLogger
from src.services.email_service import Mailer
from src.services.notification_service import Notifier
from src.services.step_sequencer import StepSequencer, ensure_step_belongs
from src.services.storage import TaskStorage
from src.utils.clock import Clock, utc_now
from src.utils.errors import InvalidStateError, ValidationError
from src.utils.logging import get_structured_logger, log_timing, mask_user_id

logger = get_structured_logger(__name__)

_SORTABLE_FIELDS = ("created_at", "updated_at", "start_date", "end_date", "title", "priority", "status")


class TaskView(BaseModel):
    """A task with its steps and freshly computed progress."""
    task: Task
    steps: list[Step] = Field(default_factory=list)
    progress: ProgressDisplay

    def to_payload(self) -> dict[str, Any]:
        """Flat response body: task fields plus progress figures."""
        payload = self.task.to_record()
        payload.update(self.progress.model_dump(mode="json"))
        payload["steps"] = [s.to_record() for s in self.steps]
        return payload


class StepView(BaseModel):
    """Result of a step operation."""
    step: Step
    task: TaskView
    activated_step: Optional[Step] = None

    def to_payload(self) -> dict[str, Any]:
        payload = self.step.to_record()
        payload["activated_step"] = self.activated_step.to_record() if self.activated_step else None
        payload["task"] = self.task.to_payload()
        return payload


class TaskService:
    """Runs task and step operations against storage and the side-effect collaborators."""

    def __init__(
        self,
        storage: TaskStorage,
        activity_logger: Optional[ActivityLogger] = None,
        notifier: Optional[Notifier] = None,
        mailer: Optional[Mailer] = None,
        clock: Clock = utc_now,
    ):
        self.storage = storage
        self.activity_logger = activity_logger or ActivityLogger()
        self.notifier = notifier or Notifier()
        self.mailer = mailer or Mailer()
        self.clock = clock

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load(self, task_id: str) -> StepSequencer:
        task = await self.storage.load_task(task_id)
        steps = await self.storage.load_steps_by_task(task_id)
        return StepSequencer(task, steps)

    async def _load_for_step(self, step_id: str, task_id: Optional[str]) -> StepSequencer:
        step = await self.storage.load_step(step_id)
        if task_id is not None and task_id != step.task_id:
            task = await self.storage.load_task(task_id)
            ensure_step_belongs(task, step)
        return await self._load(step.task_id)

    async def _persist(
        self,
        sequencer: StepSequencer,
        task_before: dict[str, Any],
        steps_before: dict[str, dict[str, Any]],
        now: datetime,
    ) -> TaskView:
        """
        Refresh progress, then save the task and every step that changed.

        The task row is saved first whenever anything changed, so its
        version check also guards step-only mutations. Steps are written
        with deactivations ahead of activations.
        """
        progress = task_lifecycle.compute_display(sequencer.task, now)

        changed = [
            step for step in sequencer.steps
            if step.to_record() != steps_before.get(step.step_id)
        ]
        task = sequencer.task
        if changed or task.to_record() != task_before or len(sequencer.steps) != len(steps_before):
            task = await self.storage.save_task(task)
            sequencer.task = task

        saved = {}
        for step in sorted(changed, key=lambda s: s.is_active):
            saved[step.step_id] = await self.storage.save_step(step)
        saved_steps = [saved.get(s.step_id, s) for s in sequencer.steps]

        return TaskView(task=task, steps=saved_steps, progress=progress)

    @staticmethod
    def _snapshot(sequencer: StepSequencer) -> tuple[dict[str, Any], dict[str, dict[str, Any]]]:
        return (
            sequencer.task.to_record(),
            {s.step_id: s.to_record() for s in sequencer.steps},
        )

    async def _side_effect(self, name: str, awaitable: Awaitable, **context: Any) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.error(f"Side effect failed: {name}", error=str(e), exc_info=True, **context)

    async def _log_activity(
        self,
        task_id: str,
        user_id: str,
        action: ActivityAction,
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._side_effect(
            "activity",
            self.activity_logger.record(task_id, user_id, action, description, metadata),
            task_id=task_id,
        )

    async def _notify(self, user_ids: list[str], type: NotificationType, title: str, message: str, **kwargs: Any) -> None:
        await self._side_effect(
            "notification",
            self.notifier.notify_users(user_ids, type, title, message, **kwargs),
            notification_type=type.value,
        )

    async def _notify_task_completed(self, task: Task, actor_id: str) -> None:
        await self._notify(
            [task.created_by, *task.assigned_users],
            NotificationType.TASK_COMPLETED,
            "Task Completed",
            f'Task "{task.title}" has been completed',
            task_id=task.task_id,
            related_user_id=actor_id,
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> TaskView:
        """Task, ordered steps and progress computed for the current time."""
        sequencer = await self._load(task_id)
        progress = task_lifecycle.compute_display(sequencer.task, self.clock())
        return TaskView(task=sequencer.task, steps=sequencer.steps, progress=progress)

    async def get_activities(self, task_id: str) -> list:
        await self.storage.load_task(task_id)
        return await self.activity_logger.get_task_activities(task_id)

    async def list_tasks(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> list[TaskView]:
        """Active tasks with progress and their active step only."""
        if sort_by not in _SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort tasks by {sort_by}")
        if status:
            try:
                status = TaskStatus(status).value
            except ValueError:
                raise ValidationError(f"Invalid task status: {status}") from None

        now = self.clock()
        tasks = await self.storage.list_tasks(status=status, search=search, sort_by=sort_by, descending=descending)
        views = []
        for task in tasks:
            steps = await self.storage.load_steps_by_task(task.task_id)
            progress = task_lifecycle.compute_display(task, now)
            views.append(TaskView(task=task, steps=[s for s in steps if s.is_active], progress=progress))
        return views

    async def create_task(
        self,
        actor_id: str,
        title: str,
        start_date: datetime,
        end_date: datetime,
        description: str = "",
        assigned_users: Optional[list[str]] = None,
        priority: Optional[str] = None,
    ) -> TaskView:
        now = self.clock()
        with log_timing("create_task", logger=logger):
            try:
                priority = TaskPriority(priority or TaskPriority.MEDIUM)
            except ValueError:
                raise ValidationError(f"Invalid task priority: {priority}") from None
            task = Task(
                title=title,
                description=description,
                created_by=actor_id,
                assigned_users=assigned_users or [],
                start_date=start_date,
                end_date=end_date,
                priority=priority,
            )
            progress = task_lifecycle.compute_display(task, now)
            task = await self.storage.save_task(task)
            view = TaskView(task=task, progress=progress)

        if task.assigned_users:
            await self._side_effect(
                "assignment_email",
                self.mailer.send_assignment_email(task.assigned_users, task),
                task_id=task.task_id,
            )
            await self._notify(
                task.assigned_users,
                NotificationType.TASK_ASSIGNED,
                "New Task Assigned",
                f'You were assigned to task: "{task.title}"',
                task_id=task.task_id,
                related_user_id=actor_id,
            )
        await self._log_activity(task.task_id, actor_id, ActivityAction.CREATED, f'Created task "{task.title}"')
        return view

    async def update_task(self, task_id: str, actor_id: str, **fields: Any) -> TaskView:
        """Edit title, description, dates or priority. Unchanged fields are not logged."""
        now = self.clock()
        sequencer = await self._load(task_id)
        task_before, steps_before = self._snapshot(sequencer)

        changes = task_lifecycle.update_details(sequencer.task, **fields)
        view = await self._persist(sequencer, task_before, steps_before, now)

        if changes:
            await self._log_activity(
                task_id, actor_id, ActivityAction.UPDATED,
                f"Updated: {', '.join(changes)}",
                {"changes": changes},
            )
        return view

    async def delete_task(self, task_id: str, actor_id: str) -> None:
        """Soft delete: the row stays, but the task is no longer found or listed."""
        sequencer = await self._load(task_id)
        sequencer.task.is_active = False
        await self.storage.save_task(sequencer.task)
        logger.info("Task deleted", task_id=task_id, user_id=mask_user_id(actor_id))

    async def stop_work(self, task_id: str, actor_id: str, reason: str) -> TaskView:
        now = self.clock()
        with log_timing("stop_work", logger=logger, task_id=task_id):
            sequencer = await self._load(task_id)
            task_before, steps_before = self._snapshot(sequencer)

            task_lifecycle.stop_work(sequencer.task, reason, actor_id, now)
            view = await self._persist(sequencer, task_before, steps_before, now)

        await self._log_activity(
            task_id, actor_id, ActivityAction.PAUSED,
            f"Work stopped: {reason.strip()}",
            {"reason": reason.strip()},
        )
        return view

    async def resume_work(self, task_id: str, actor_id: str) -> TaskView:
        now = self.clock()
        sequencer = await self._load(task_id)
        task_before, steps_before = self._snapshot(sequencer)

        task_lifecycle.resume_work(sequencer.task)
        view = await self._persist(sequencer, task_before, steps_before, now)

        await self._log_activity(task_id, actor_id, ActivityAction.RESUMED, "Work resumed")
        return view

    async def update_progress(self, task_id: str, actor_id: str, value: int, comment: str) -> TaskView:
        now = self.clock()
        with log_timing("update_progress", logger=logger, task_id=task_id):
            sequencer = await self._load(task_id)
            task_before, steps_before = self._snapshot(sequencer)
            was_completed = sequencer.task.status == TaskStatus.COMPLETED

            old_progress = task_lifecycle.set_manual_progress(sequencer.task, value, comment, now)
            view = await self._persist(sequencer, task_before, steps_before, now)

        old_label = f"{old_progress}%" if old_progress is not None else "auto"
        await self._log_activity(
            task_id, actor_id, ActivityAction.PROGRESS_UPDATED,
            f"Progress updated from {old_label} to {value}%: {comment.strip()}",
            {"old_progress": old_progress, "new_progress": value, "comment": comment.strip()},
        )
        if view.task.status == TaskStatus.COMPLETED and not was_completed:
            await self._notify_task_completed(view.task, actor_id)
        return view

    async def update_status(self, task_id: str, actor_id: str, status: str) -> TaskView:
        now = self.clock()
        sequencer = await self._load(task_id)
        task_before, steps_before = self._snapshot(sequencer)

        old_status = task_lifecycle.change_status(sequencer.task, status)
        view = await self._persist(sequencer, task_before, steps_before, now)

        if old_status is not None:
            new_status = view.task.status.value
            await self._log_activity(
                task_id, actor_id, ActivityAction.STATUS_CHANGED,
                f'Status changed from "{old_status.value}" to "{new_status}"',
                {"old_status": old_status.value, "new_status": new_status},
            )
            await self._notify(
                view.task.assigned_users,
                NotificationType.TASK_UPDATED,
                "Task Status Updated",
                f'Task "{view.task.title}" status changed to {new_status}',
                task_id=task_id,
                related_user_id=actor_id,
            )
        return view

    async def update_assignees(self, task_id: str, actor_id: str, user_ids: list[str]) -> TaskView:
        now = self.clock()
        sequencer = await self._load(task_id)
        task_before, steps_before = self._snapshot(sequencer)

        diff = task_lifecycle.assign_users(sequencer.task, user_ids)
        view = await self._persist(sequencer, task_before, steps_before, now)

        if diff.added:
            await self._side_effect(
                "assignment_email",
                self.mailer.send_assignment_email(diff.added, view.task),
                task_id=task_id,
            )
            await self._notify(
                diff.added,
                NotificationType.TASK_ASSIGNED,
                "Task Assigned",
                f'You were assigned to task: "{view.task.title}"',
                task_id=task_id,
                related_user_id=actor_id,
            )
        for user_id in diff.added:
            await self._log_activity(
                task_id, actor_id, ActivityAction.ASSIGNED,
                "User assigned to this task", {"assigned_user_id": user_id},
            )
        for user_id in diff.removed:
            await self._log_activity(
                task_id, actor_id, ActivityAction.UNASSIGNED,
                "User unassigned from this task", {"unassigned_user_id": user_id},
            )
        return view

    async def request_help(self, task_id: str, actor_id: str) -> TaskView:
        """Ask the creator and fellow assignees for help. Only assignees may ask."""
        sequencer = await self._load(task_id)
        task = sequencer.task
        if not task.is_assigned(actor_id):
            raise InvalidStateError("You are not assigned to this task")

        logger.info("Help requested", task_id=task_id, user_id=mask_user_id(actor_id))
        await self._side_effect(
            "help_email",
            self.mailer.send_help_request_email(task, actor_id),
            task_id=task_id,
        )
        await self._notify(
            [u for u in [task.created_by, *task.assigned_users] if u != actor_id],
            NotificationType.HELP_REQUEST,
            "Help Requested",
            f'Help was requested on task "{task.title}"',
            task_id=task_id,
            related_user_id=actor_id,
        )
        await self._log_activity(task_id, actor_id, ActivityAction.HELP_REQUESTED, "Help requested")

        progress = task_lifecycle.compute_display(task, self.clock())
        return TaskView(task=task, steps=sequencer.steps, progress=progress)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def list_steps(self, task_id: str) -> list[Step]:
        sequencer = await self._load(task_id)
        return sequencer.steps

    async def create_step(
        self,
        task_id: str,
        actor_id: str,
        title: str,
        description: str = "",
        assigned_users: Optional[list[str]] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> StepView:
        now = self.clock()
        with log_timing("create_step", logger=logger, task_id=task_id):
            sequencer = await self._load(task_id)
            task_before, steps_before = self._snapshot(sequencer)

            step = sequencer.create_step(
                title,
                description=description,
                assigned_users=assigned_users,
                start_date=start_date,
                end_date=end_date,
            )
            view = await self._persist(sequencer, task_before, steps_before, now)
            step = next(s for s in view.steps if s.step_id == step.step_id)

        if step.assigned_users:
            await self._side_effect(
                "assignment_email",
                self.mailer.send_assignment_email(step.assigned_users, view.task),
                task_id=task_id,
            )
            await self._notify(
                step.assigned_users,
                NotificationType.STEP_ASSIGNED,
                "Step Assigned",
                f'You were assigned to step {step.step_number} of "{view.task.title}": {step.title}',
                task_id=task_id,
                step_id=step.step_id,
                related_user_id=actor_id,
            )
        await self._log_activity(
            task_id, actor_id, ActivityAction.CREATED,
            f"Created step {step.step_number}: {step.title}",
            {"step_id": step.step_id, "step_number": step.step_number},
        )
        return StepView(step=step, task=view)

    async def update_step(
        self,
        step_id: str,
        actor_id: str,
        task_id: Optional[str] = None,
        assigned_users: Optional[list[str]] = None,
        clear: tuple[str, ...] = (),
        **fields: Any,
    ) -> StepView:
        now = self.clock()
        sequencer = await self._load_for_step(step_id, task_id)
        task_before, steps_before = self._snapshot(sequencer)

        update = sequencer.update_step(step_id, assigned_users=assigned_users, clear=clear, **fields)
        view = await self._persist(sequencer, task_before, steps_before, now)
        step = next(s for s in view.steps if s.step_id == step_id)

        if update.added_users:
            await self._side_effect(
                "assignment_email",
                self.mailer.send_assignment_email(update.added_users, view.task),
                task_id=view.task.task_id,
            )
            await self._notify(
                update.added_users,
                NotificationType.STEP_ASSIGNED,
                "Step Assigned",
                f'You were assigned to step {step.step_number} of "{view.task.title}": {step.title}',
                task_id=view.task.task_id,
                step_id=step_id,
                related_user_id=actor_id,
            )
        if update.added_users or update.removed_users:
            await self._log_activity(
                view.task.task_id, actor_id, ActivityAction.UPDATED,
                f"Updated step {step.step_number} assignments",
                {
                    "step_id": step_id,
                    "new_users": update.added_users,
                    "removed_users": update.removed_users,
                },
            )
        return StepView(step=step, task=view)

    async def activate_step(self, step_id: str, actor_id: str, task_id: Optional[str] = None) -> StepView:
        now = self.clock()
        sequencer = await self._load_for_step(step_id, task_id)
        task_before, steps_before = self._snapshot(sequencer)

        sequencer.activate_step(step_id)
        view = await self._persist(sequencer, task_before, steps_before, now)
        step = next(s for s in view.steps if s.step_id == step_id)

        await self._notify(
            step.assigned_users,
            NotificationType.STEP_ACTIVATED,
            "Step Activated",
            f'Step {step.step_number} of "{view.task.title}" is now active: {step.title}',
            task_id=view.task.task_id,
            step_id=step_id,
            related_user_id=actor_id,
        )
        await self._log_activity(
            view.task.task_id, actor_id, ActivityAction.UPDATED,
            f"Activated step {step.step_number}: {step.title}",
            {"step_id": step_id, "step_number": step.step_number},
        )
        return StepView(step=step, task=view)

    async def complete_step(self, step_id: str, actor_id: str, task_id: Optional[str] = None) -> StepView:
        now = self.clock()
        with log_timing("complete_step", logger=logger, step_id=step_id):
            sequencer = await self._load_for_step(step_id, task_id)
            task_before, steps_before = self._snapshot(sequencer)

            next_step = sequencer.complete_step(step_id, actor_id, now)
            view = await self._persist(sequencer, task_before, steps_before, now)
            step = next(s for s in view.steps if s.step_id == step_id)
            activated = None
            if next_step is not None:
                activated = next(s for s in view.steps if s.step_id == next_step.step_id)

        await self._log_activity(
            view.task.task_id, actor_id, ActivityAction.UPDATED,
            f"Completed step {step.step_number}: {step.title}",
            {"step_id": step_id, "step_number": step.step_number},
        )
        if activated is not None:
            await self._notify(
                activated.assigned_users,
                NotificationType.STEP_ACTIVATED,
                "Step Activated",
                f'Step {activated.step_number} of "{view.task.title}" is now active: {activated.title}',
                task_id=view.task.task_id,
                step_id=activated.step_id,
                related_user_id=actor_id,
            )
        else:
            await self._notify_task_completed(view.task, actor_id)
        return StepView(step=step, task=view, activated_step=activated)

    async def delete_step(self, step_id: str, actor_id: str, task_id: Optional[str] = None) -> StepView:
        now = self.clock()
        sequencer = await self._load_for_step(step_id, task_id)
        task_before, steps_before = self._snapshot(sequencer)
        previously_active = sequencer.active_step

        deleted = sequencer.delete_step(step_id)
        # Row is deleted only after the task and replacement are saved
        view = await self._persist(sequencer, task_before, steps_before, now)
        await self.storage.delete_step(step_id)

        replacement = None
        active = next((s for s in view.steps if s.is_active), None)
        if previously_active is not None and previously_active.step_id == step_id:
            replacement = active

        await self._log_activity(
            view.task.task_id, actor_id, ActivityAction.UPDATED,
            f"Deleted step {deleted.step_number}: {deleted.title}",
            {"step_id": step_id, "step_number": deleted.step_number},
        )
        return StepView(step=deleted, task=view, activated_step=replacement)
