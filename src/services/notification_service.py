"""In-app notifications stored in the Supabase notifications table."""

from datetime import datetime, timezone
from typing import Any, Optional

from src.models.notification import Notification, NotificationType
from src.services.supabase_client import SupabaseClient
from src.utils.config import AppConfig
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class Notifier:
    """Best-effort notification fan-out. Errors are logged, never raised."""

    def __init__(self, table: str = None):
        self.table = table or AppConfig.NOTIFICATIONS_TABLE

    async def notify_users(
        self,
        user_ids: list[str],
        type: NotificationType,
        title: str,
        message: str,
        task_id: Optional[str] = None,
        step_id: Optional[str] = None,
        related_user_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> list[Notification]:
        """Create one notification per distinct recipient."""
        recipients = list(dict.fromkeys(u for u in user_ids if u))
        if not recipients:
            return []

        try:
            notifications = [
                Notification(
                    user_id=user_id,
                    type=type,
                    title=title,
                    message=message,
                    task_id=task_id,
                    step_id=step_id,
                    related_user_id=related_user_id,
                    metadata=metadata or {},
                )
                for user_id in recipients
            ]
            async with SupabaseClient() as client:
                client.table(self.table).insert(
                    [n.model_dump(mode="json", exclude_none=True) for n in notifications]
                ).execute()
            logger.debug(
                "Notifications created",
                notification_type=str(type),
                task_id=task_id,
                recipients=len(notifications),
            )
            return notifications
        except Exception as e:
            logger.error(
                "Error creating notifications",
                notification_type=str(type),
                task_id=task_id,
                recipients=len(recipients),
                error=str(e),
                exc_info=True,
            )
            return []

    async def mark_as_read(self, notification_id: str, user_id: str) -> Optional[dict]:
        try:
            async with SupabaseClient() as client:
                result = (
                    client.table(self.table)
                    .update({"is_read": True, "read_at": datetime.now(timezone.utc).isoformat()})
                    .eq("id", notification_id)
                    .eq("user_id", user_id)
                    .execute()
                )
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(
                "Error marking notification as read",
                notification_id=notification_id,
                user_id=mask_user_id(user_id),
                error=str(e),
            )
            return None

    async def mark_all_as_read(self, user_id: str) -> int:
        """Returns the number of notifications updated."""
        try:
            async with SupabaseClient() as client:
                result = (
                    client.table(self.table)
                    .update({"is_read": True, "read_at": datetime.now(timezone.utc).isoformat()})
                    .eq("user_id", user_id)
                    .eq("is_read", False)
                    .execute()
                )
            return len(result.data or [])
        except Exception as e:
            logger.error(
                "Error marking all notifications as read",
                user_id=mask_user_id(user_id),
                error=str(e),
            )
            return 0

    async def list_notifications(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = None,
    ) -> list[Notification]:
        """A user's notifications, newest first. Returns [] on error."""
        try:
            async with SupabaseClient() as client:
                query = client.table(self.table).select("*").eq("user_id", user_id)
                if unread_only:
                    query = query.eq("is_read", False)
                result = (
                    query.order("created_at", desc=True)
                    .limit(limit or AppConfig.NOTIFICATION_FEED_LIMIT)
                    .execute()
                )
            return [Notification.model_validate(row) for row in (result.data or [])]
        except Exception as e:
            logger.error("Error fetching notifications", user_id=mask_user_id(user_id), error=str(e))
            return []

    async def unread_count(self, user_id: str) -> int:
        try:
            async with SupabaseClient() as client:
                result = (
                    client.table(self.table)
                    .select("id", count="exact")
                    .eq("user_id", user_id)
                    .eq("is_read", False)
                    .execute()
                )
            return result.count or 0
        except Exception as e:
            logger.error("Error counting unread notifications", user_id=mask_user_id(user_id), error=str(e))
            return 0

    async def delete_notification(self, notification_id: str, user_id: str) -> bool:
        """Delete one of the user's notifications. False when nothing was deleted."""
        try:
            async with SupabaseClient() as client:
                result = (
                    client.table(self.table)
                    .delete()
                    .eq("id", notification_id)
                    .eq("user_id", user_id)
                    .execute()
                )
            return bool(result.data)
        except Exception as e:
            logger.error(
                "Error deleting notification",
                notification_id=notification_id,
                user_id=mask_user_id(user_id),
                error=str(e),
            )
            return False
