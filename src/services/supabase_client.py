"""Supabase client wrapper and Supabase-backed task storage."""

from datetime import datetime, timezone
from typing import Optional
from supabase import create_client, Client
from supabase.client import ClientOptions

from src.models.step import Step
from src.models.task import Task
from src.utils.config import AppConfig
from src.utils.errors import InvalidStateError, NotFoundError, SupabaseError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

# Global client instance (singleton pattern)
_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton."""
    global _client

    if _client is None:
        url = AppConfig.SUPABASE_URL
        key = AppConfig.SUPABASE_SERVICE_ROLE_KEY

        if not url or not key:
            raise SupabaseError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
        )

        _client = create_client(url, key, options)
        logger.info("Supabase client initialized", url=url)

    return _client


async def close_supabase_client() -> None:
    """Drop the client reference; supabase-py has no explicit close."""
    global _client
    if _client:
        _client = None
        logger.info("Supabase client closed")


class SupabaseClient:
    """Async context manager for Supabase client."""

    def __init__(self):
        self.client: Optional[Client] = None

    async def __aenter__(self) -> Client:
        self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "Supabase operation error",
                error=str(exc_val),
                type=exc_type.__name__,
            )
        return False


class SupabaseTaskStorage:
    """
    Task and step persistence on Supabase tables.

    ``save_task`` uses the ``version`` column as an optimistic lock: the
    update only applies when the stored version still matches the loaded
    one, otherwise InvalidStateError is raised and the caller must reload.
    Soft-deleted tasks (``is_active = false``) are not found.
    """

    def __init__(self, tasks_table: str = None, steps_table: str = None):
        self.tasks_table = tasks_table or AppConfig.TASKS_TABLE
        self.steps_table = steps_table or AppConfig.STEPS_TABLE

    async def load_task(self, task_id: str) -> Task:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(self.tasks_table)
                    .select("*")
                    .eq("task_id", task_id)
                    .eq("is_active", True)
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to load task: {e}")
        if not result.data:
            raise NotFoundError(f"Task not found: {task_id}")
        return Task.from_record(result.data[0])

    async def list_tasks(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        descending: bool = True,
    ) -> list[Task]:
        """Active tasks, optionally filtered by status and a title/description search."""
        async with SupabaseClient() as client:
            try:
                query = client.table(self.tasks_table).select("*").eq("is_active", True)
                if status:
                    query = query.eq("status", status)
                if search:
                    # commas and parentheses are PostgREST filter syntax
                    pattern = "%" + "".join(c for c in search if c not in ",()") + "%"
                    query = query.or_(f"title.ilike.{pattern},description.ilike.{pattern}")
                result = query.order(sort_by, desc=descending).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to list tasks: {e}")
        return [Task.from_record(row) for row in (result.data or [])]

    async def load_steps_by_task(self, task_id: str) -> list[Step]:
        async with SupabaseClient() as client:
            try:
                result = (
                    client.table(self.steps_table)
                    .select("*")
                    .eq("task_id", task_id)
                    .order("step_number")
                    .execute()
                )
            except Exception as e:
                raise SupabaseError(f"Failed to load steps: {e}")
        return [Step.from_record(row) for row in (result.data or [])]

    async def load_step(self, step_id: str) -> Step:
        async with SupabaseClient() as client:
            try:
                result = client.table(self.steps_table).select("*").eq("step_id", step_id).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to load step: {e}")
        if not result.data:
            raise NotFoundError(f"Step not found: {step_id}")
        return Step.from_record(result.data[0])

    async def save_task(self, task: Task) -> Task:
        now = datetime.now(timezone.utc)
        expected_version = task.version
        record = task.to_record()
        record["version"] = expected_version + 1
        record["updated_at"] = now.isoformat()

        async with SupabaseClient() as client:
            try:
                if task.created_at is None:
                    record["created_at"] = now.isoformat()
                    result = client.table(self.tasks_table).insert(record).execute()
                else:
                    result = (
                        client.table(self.tasks_table)
                        .update(record)
                        .eq("task_id", task.task_id)
                        .eq("version", expected_version)
                        .execute()
                    )
            except Exception as e:
                raise SupabaseError(f"Failed to save task: {e}")

        if not result.data:
            raise InvalidStateError(
                f"Task {task.task_id} was modified concurrently; reload and retry"
            )
        return Task.from_record(result.data[0])

    async def save_step(self, step: Step) -> Step:
        now = datetime.now(timezone.utc).isoformat()
        record = step.to_record()
        record["updated_at"] = now
        if step.created_at is None:
            record["created_at"] = now

        async with SupabaseClient() as client:
            try:
                result = client.table(self.steps_table).upsert(record, on_conflict="step_id").execute()
            except Exception as e:
                raise SupabaseError(f"Failed to save step: {e}")
        if result.data:
            return Step.from_record(result.data[0])
        raise SupabaseError(f"Failed to save step: {step.step_id}")

    async def delete_step(self, step_id: str) -> None:
        async with SupabaseClient() as client:
            try:
                result = client.table(self.steps_table).delete().eq("step_id", step_id).execute()
            except Exception as e:
                raise SupabaseError(f"Failed to delete step: {e}")
        if not result.data:
            raise NotFoundError(f"Step not found: {step_id}")
