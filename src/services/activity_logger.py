"""Task activity feed backed by the Supabase activities table."""

from typing import Any, Optional

from src.models.activity import Activity, ActivityAction
from src.services.supabase_client import SupabaseClient
from src.utils.config import AppConfig
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class ActivityLogger:
    """
    Records activity feed entries.

    Recording is fire-and-forget: failures are logged and never raised, so a
    broken feed cannot undo the mutation that produced the entry.
    """

    def __init__(self, table: str = None):
        self.table = table or AppConfig.ACTIVITIES_TABLE

    async def record(
        self,
        task_id: str,
        user_id: str,
        action: ActivityAction,
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[Activity]:
        try:
            activity = Activity(
                task_id=task_id,
                user_id=user_id,
                action=action,
                description=description,
                metadata=metadata or {},
            )
            async with SupabaseClient() as client:
                client.table(self.table).insert(
                    activity.model_dump(mode="json", exclude_none=True)
                ).execute()
            return activity
        except Exception as e:
            logger.error(
                "Error logging activity",
                task_id=task_id,
                user_id=mask_user_id(user_id),
                action=str(action),
                error=str(e),
                exc_info=True,
            )
            return None

    async def get_task_activities(self, task_id: str, limit: int = None) -> list[Activity]:
        """Feed entries for a task, newest first. Returns [] on error."""
        try:
            async with SupabaseClient() as client:
                result = (
                    client.table(self.table)
                    .select("*")
                    .eq("task_id", task_id)
                    .order("created_at", desc=True)
                    .limit(limit or AppConfig.ACTIVITY_FEED_LIMIT)
                    .execute()
                )
            return [Activity.model_validate(row) for row in (result.data or [])]
        except Exception as e:
            logger.error("Error fetching activities", task_id=task_id, error=str(e))
            return []
