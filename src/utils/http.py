"""Helpers shared by the serverless request handlers."""

import asyncio
import json
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from src.utils.errors import TaskTrackerError, ValidationError
from src.utils.logging import get_structured_logger, request_context, set_actor
from src.utils.logging_config import LoggingConfig

logger = get_structured_logger(__name__)

USER_ID_HEADER = "x-user-id"


def json_response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body, default=str),
    }


def error_response(exc: Exception) -> dict[str, Any]:
    """Map an exception to a JSON error response."""
    if isinstance(exc, PydanticValidationError):
        return json_response(400, {"success": False, "message": "Invalid request", "errors": exc.errors(include_url=False)})
    if isinstance(exc, TaskTrackerError):
        if exc.status_code >= 500:
            logger.error("Request failed", error=exc.message, error_type=type(exc).__name__)
        return json_response(exc.status_code, {"success": False, "message": exc.message})
    logger.error("Unhandled error", error=str(exc), error_type=type(exc).__name__, exc_info=True)
    return json_response(500, {"success": False, "message": "Internal server error"})


def parse_body(request: dict[str, Any]) -> dict[str, Any]:
    raw = request.get("body") or ""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def get_header(request: dict[str, Any], name: str) -> Optional[str]:
    headers = request.get("headers") or {}
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def require_param(params: dict[str, Any], name: str) -> Any:
    value = params.get(name)
    if value is None or value == "":
        raise ValidationError(f"Missing required parameter: {name}")
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")


def run_async(coro) -> Any:
    """Run a coroutine from a synchronous serverless handler."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


Dispatch = Callable[[str, dict[str, Any], str, dict[str, Any]], Awaitable[Any]]


def action_handler(request: dict[str, Any], dispatch: Dispatch, created_actions: tuple[str, ...] = ()) -> dict[str, Any]:
    """
    Request flow shared by the action endpoints.

    Opens a request context, requires ``action`` and the acting user
    header, runs ``dispatch(action, query, user_id, body)`` and wraps its
    result in ``{"success": true, "data": ...}``. Errors become JSON error
    responses. The correlation id is echoed on every response.
    """
    header = LoggingConfig.LOG_CORRELATION_ID_HEADER
    with request_context(get_header(request, header)) as correlation_id:
        try:
            query = request.get("query") or {}
            action = require_param(query, "action")
            user_id = get_header(request, USER_ID_HEADER)
            if not user_id:
                raise ValidationError("Missing acting user")
            set_actor(user_id)
            body = parse_body(request)

            data = run_async(dispatch(action, query, user_id, body))
            logger.bind(action=action).info(
                "Action handled",
                task_id=query.get("task_id"),
                step_id=query.get("step_id"),
            )
            status_code = 201 if action in created_actions else 200
            response = json_response(status_code, {"success": True, "data": data})
        except Exception as e:
            response = error_response(e)
        response["headers"][header] = correlation_id
        return response
