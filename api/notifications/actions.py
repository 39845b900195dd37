"""Notification action endpoint (list, unread-count, read, read-all, delete) for the acting user."""

from typing import Any, Optional

from src.services.notification_service import Notifier
from src.utils.errors import NotFoundError, ValidationError
from src.utils.http import action_handler, require_param
from src.utils.logging_config import LoggingConfig

LoggingConfig.setup_logging()

_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier


async def _dispatch(action: str, query: dict[str, Any], user_id: str, body: dict[str, Any]) -> Any:
    notifier = get_notifier()

    if action == "list":
        unread_only = str(query.get("unread_only", "")).lower() == "true"
        notifications = await notifier.list_notifications(user_id, unread_only=unread_only)
        return [n.model_dump(mode="json") for n in notifications]
    if action == "unread-count":
        return {"count": await notifier.unread_count(user_id)}
    if action == "read-all":
        return {"updated": await notifier.mark_all_as_read(user_id)}

    notification_id = require_param(query, "notification_id")
    if action == "read":
        row = await notifier.mark_as_read(notification_id, user_id)
        if row is None:
            raise NotFoundError(f"Notification not found: {notification_id}")
        return row
    if action == "delete":
        if not await notifier.delete_notification(notification_id, user_id):
            raise NotFoundError(f"Notification not found: {notification_id}")
        return {"notification_id": notification_id, "deleted": True}
    raise ValidationError(f"Unknown notification action: {action}")


def handler(request):
    """
    Run one notification action for the user in ``X-User-Id``.

    ``read`` and ``delete`` take a ``notification_id`` query parameter and
    only touch notifications addressed to that user.
    """
    return action_handler(request, _dispatch)
