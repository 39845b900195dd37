"""Storage contract consumed by the task service."""

from typing import Optional, Protocol

from src.models.step import Step
from src.models.task import Task


class TaskStorage(Protocol):
    """Persistence for tasks and steps. ``load_*`` raise NotFoundError."""

    async def load_task(self, task_id: str) -> Task: ...

    async def list_tasks(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> list[Task]: ...

    async def load_steps_by_task(self, task_id: str) -> list[Step]: ...

    async def load_step(self, step_id: str) -> Step: ...

    async def save_task(self, task: Task) -> Task: ...

    async def save_step(self, step: Step) -> Step: ...

    async def delete_step(self, step_id: str) -> None: ...
