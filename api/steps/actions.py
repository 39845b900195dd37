"""Step action endpoint (list, create, update, activate, complete, delete)."""

from typing import Any, Optional

from src.services.supabase_client import SupabaseTaskStorage
from src.services.task_service import TaskService
from src.utils.errors import ValidationError
from src.utils.http import action_handler, parse_datetime, require_param
from src.utils.logging_config import LoggingConfig

LoggingConfig.setup_logging()

_CLEARABLE_DATES = ("start_date", "end_date")

_service: Optional[TaskService] = None


def get_task_service() -> TaskService:
    global _service
    if _service is None:
        _service = TaskService(SupabaseTaskStorage())
    return _service


async def _dispatch(action: str, query: dict[str, Any], user_id: str, body: dict[str, Any]) -> Any:
    service = get_task_service()
    task_id = query.get("task_id")

    if action == "list":
        steps = await service.list_steps(require_param(query, "task_id"))
        return [s.to_record() for s in steps]
    if action == "create":
        view = await service.create_step(
            require_param(query, "task_id"),
            user_id,
            require_param(body, "title"),
            description=body.get("description") or "",
            assigned_users=body.get("assigned_users"),
            start_date=parse_datetime(body.get("start_date")),
            end_date=parse_datetime(body.get("end_date")),
        )
        return view.to_payload()

    step_id = require_param(query, "step_id")
    if action == "update":
        # An explicit null date clears it; an absent key leaves it alone
        clear = tuple(name for name in _CLEARABLE_DATES if name in body and body[name] is None)
        view = await service.update_step(
            step_id,
            user_id,
            task_id=task_id,
            assigned_users=body.get("assigned_users"),
            clear=clear,
            title=body.get("title"),
            description=body.get("description"),
            start_date=parse_datetime(body.get("start_date")),
            end_date=parse_datetime(body.get("end_date")),
            status=body.get("status"),
        )
        return view.to_payload()
    if action == "activate":
        return (await service.activate_step(step_id, user_id, task_id=task_id)).to_payload()
    if action == "complete":
        return (await service.complete_step(step_id, user_id, task_id=task_id)).to_payload()
    if action == "delete":
        return (await service.delete_step(step_id, user_id, task_id=task_id)).to_payload()
    raise ValidationError(f"Unknown step action: {action}")


def handler(request):
    """
    Run one step action.

    Query parameters: ``action``, plus ``task_id`` for list/create and
    ``step_id`` for the rest (``task_id`` optional there, used to reject
    steps addressed through the wrong task).
    """
    return action_handler(request, _dispatch, created_actions=("create",))
