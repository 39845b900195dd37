"""Shared pytest fixtures and configuration."""

import os
import pytest
from unittest.mock import AsyncMock, Mock

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("LOG_FORMAT", "text")

from src.models.task import Task
from src.services.task_service import TaskService
from tests.utils.factories import create_task
from tests.utils.fakes import InMemoryTaskStorage
from tests.utils.helpers import day


@pytest.fixture
def ten_day_task() -> Task:
    """Fresh task planned from day 0 to day 10."""
    return create_task(start_date=day(0), end_date=day(10))


@pytest.fixture
def storage() -> InMemoryTaskStorage:
    return InMemoryTaskStorage()


@pytest.fixture
def activity_logger():
    logger = Mock()
    logger.record = AsyncMock(return_value=None)
    logger.get_task_activities = AsyncMock(return_value=[])
    return logger


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.notify_users = AsyncMock(return_value=[])
    return notifier


@pytest.fixture
def mailer():
    mailer = Mock()
    mailer.send_assignment_email = AsyncMock(return_value=0)
    mailer.send_help_request_email = AsyncMock(return_value=0)
    return mailer


@pytest.fixture
def clock():
    """Adjustable clock; set ``clock.now`` to move time."""
    class _Clock:
        now = day(4)

        def __call__(self):
            return self.now

    return _Clock()


@pytest.fixture
def task_service(storage, activity_logger, notifier, mailer, clock) -> TaskService:
    return TaskService(
        storage,
        activity_logger=activity_logger,
        notifier=notifier,
        mailer=mailer,
        clock=clock,
    )
