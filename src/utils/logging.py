"""Structured logging for task operations.

Every record carries the request's correlation id and, once known, the
masked id of the acting user. Free text written by users (stop reasons,
progress comments) goes through ``sanitize_user_text`` before it is logged.
"""

import logging
import time
import uuid
import re
import hashlib
from contextvars import ContextVar
from typing import Any, Optional, Dict
from contextlib import contextmanager
from datetime import datetime, timezone

from src.utils.logging_config import LoggingConfig, get_logger


_correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
_actor_id_var: ContextVar[Optional[str]] = ContextVar('actor_id', default=None)

_EMAIL_RE = re.compile(r'[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}', re.IGNORECASE)
_PHONE_RE = re.compile(r'\b\+?\d[\d\s().-]{7,}\b')
_SECRET_RE = re.compile(r'(?i)(api[_-]?key|token|secret|password|otp)[\s:=]+([A-Za-z0-9_-]{4,})')
_URL_QUERY_RE = re.compile(r'(https?://[^\s?#]+)\?[^\s#]+')


def generate_correlation_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def get_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


def get_actor_id() -> Optional[str]:
    return _actor_id_var.get()


def set_actor(user_id: Optional[str]) -> None:
    """Attach the acting user to every record logged in the current request."""
    _actor_id_var.set(user_id)


@contextmanager
def request_context(correlation_id: Optional[str] = None):
    """
    Scope one request: a correlation id (generated when the caller sent
    none) and an empty actor slot. Both are restored on exit.
    """
    correlation_token = _correlation_id_var.set(correlation_id or generate_correlation_id())
    actor_token = _actor_id_var.set(None)
    try:
        yield _correlation_id_var.get()
    finally:
        _actor_id_var.reset(actor_token)
        _correlation_id_var.reset(correlation_token)


def mask_sensitive_data(text: str) -> str:
    """Redact emails, phone numbers, inline secrets and URL query strings."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text

    text = _EMAIL_RE.sub('[REDACTED_EMAIL]', text)
    text = _URL_QUERY_RE.sub(r'\1?[REDACTED]', text)
    text = _PHONE_RE.sub('[REDACTED_PHONE]', text)
    return _SECRET_RE.sub(r'\1=[REDACTED]', text)


def mask_user_id(user_id: Optional[str]) -> Optional[str]:
    """Shorten a user id to a stable, non-reversible tag."""
    if not LoggingConfig.LOG_MASK_SENSITIVE or not user_id:
        return user_id

    if len(user_id) > 12:
        hashed = hashlib.sha256(user_id.encode()).hexdigest()[:8]
        return f"{user_id[:4]}...{hashed}"
    return user_id


def sanitize_user_text(text: Optional[str], max_length: int = 200) -> Optional[str]:
    """Prepare a user-written reason or comment for logging."""
    if not LoggingConfig.LOG_USER_TEXT or not text:
        return None

    text = text.strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."

    return mask_sensitive_data(text)


class StructuredLogger:
    """
    Logger wrapper that turns keyword arguments into record fields.

    ``bind`` returns a child carrying fixed fields (a task id, an action)
    so call sites inside one operation don't repeat them.
    """

    def __init__(self, logger: logging.Logger, fields: Optional[Dict[str, Any]] = None):
        self.logger = logger
        self.fields = dict(fields or {})

    def bind(self, **fields: Any) -> "StructuredLogger":
        return StructuredLogger(self.logger, {**self.fields, **fields})

    def _get_extra(self, **kwargs: Any) -> Dict[str, Any]:
        extra = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            extra["correlation_id"] = correlation_id
        actor_id = get_actor_id()
        if actor_id:
            extra["actor_id"] = mask_user_id(actor_id)

        extra.update(self.fields)
        extra.update(kwargs)
        return extra

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._get_extra(**kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._get_extra(**kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._get_extra(**kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._get_extra(**kwargs), exc_info=exc_info)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any):
    """
    Time a block and log its outcome.

    Logs ``Completed <op>`` with ``outcome`` set to ``ok`` or to the name of
    the exception that escaped the block (the exception still propagates),
    and a warning when the block ran past the slow-operation threshold.
    """
    logger = (logger or get_structured_logger(__name__)).bind(operation=operation_name, **context)

    start_time = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except Exception as e:
        outcome = type(e).__name__
        raise
    finally:
        elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.info(f"Completed {operation_name}", outcome=outcome, processing_time_ms=elapsed_ms)

        if elapsed_ms > LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS:
            logger.warning(
                f"Slow operation detected: {operation_name}",
                processing_time_ms=elapsed_ms,
                threshold_ms=LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS,
            )
