"""Task action endpoint: task create, read, update and delete plus the lifecycle actions."""

from typing import Any, Optional

from src.services.supabase_client import SupabaseTaskStorage
from src.services.task_service import TaskService
from src.utils.errors import ValidationError
from src.utils.http import action_handler, parse_datetime, require_param
from src.utils.logging_config import LoggingConfig

LoggingConfig.setup_logging()

_service: Optional[TaskService] = None


def get_task_service() -> TaskService:
    global _service
    if _service is None:
        _service = TaskService(SupabaseTaskStorage())
    return _service


async def _dispatch(action: str, query: dict[str, Any], user_id: str, body: dict[str, Any]) -> Any:
    service = get_task_service()

    if action == "list":
        status = query.get("status")
        views = await service.list_tasks(
            status=None if status == "all" else status,
            search=query.get("search"),
            sort_by=query.get("sort_by") or "created_at",
            descending=(query.get("sort_order") or "desc") != "asc",
        )
        return [v.to_payload() for v in views]
    if action == "create":
        view = await service.create_task(
            user_id,
            require_param(body, "title"),
            parse_datetime(require_param(body, "start_date")),
            parse_datetime(require_param(body, "end_date")),
            description=body.get("description") or "",
            assigned_users=body.get("assigned_users"),
            priority=body.get("priority"),
        )
        return view.to_payload()

    task_id = require_param(query, "task_id")
    if action == "get":
        return (await service.get_task(task_id)).to_payload()
    if action == "activities":
        activities = await service.get_activities(task_id)
        return [a.model_dump(mode="json") for a in activities]
    if action == "stop":
        return (await service.stop_work(task_id, user_id, body.get("reason"))).to_payload()
    if action == "resume":
        return (await service.resume_work(task_id, user_id)).to_payload()
    if action == "progress":
        return (await service.update_progress(
            task_id, user_id, body.get("manual_progress"), body.get("comment")
        )).to_payload()
    if action == "status":
        return (await service.update_status(task_id, user_id, require_param(body, "status"))).to_payload()
    if action == "assignees":
        return (await service.update_assignees(
            task_id, user_id, require_param(body, "assigned_users")
        )).to_payload()
    if action == "update":
        return (await service.update_task(
            task_id,
            user_id,
            title=body.get("title"),
            description=body.get("description"),
            start_date=parse_datetime(body.get("start_date")),
            end_date=parse_datetime(body.get("end_date")),
            priority=body.get("priority"),
        )).to_payload()
    if action == "delete":
        await service.delete_task(task_id, user_id)
        return {"task_id": task_id, "deleted": True}
    if action == "help":
        return (await service.request_help(task_id, user_id)).to_payload()
    raise ValidationError(f"Unknown task action: {action}")


def handler(request):
    """
    Run one task action.

    Query parameters: ``action``, plus ``task_id`` for everything but list
    and create. ``list`` also reads ``status``, ``search``, ``sort_by`` and
    ``sort_order``. The acting user id comes from the ``X-User-Id`` header
    set by the auth layer.
    """
    return action_handler(request, _dispatch, created_actions=("create",))
