"""Fixtures for endpoint tests: handlers run against in-memory storage."""

import pytest
from unittest.mock import patch

from src.services.task_service import TaskService


@pytest.fixture
def endpoint_service(storage, activity_logger, notifier, mailer, clock):
    service = TaskService(
        storage,
        activity_logger=activity_logger,
        notifier=notifier,
        mailer=mailer,
        clock=clock,
    )
    with patch("api.tasks.actions.get_task_service", return_value=service), \
            patch("api.steps.actions.get_task_service", return_value=service):
        yield service


@pytest.fixture
def stored_task(storage, ten_day_task):
    return storage.add_task(ten_day_task)
