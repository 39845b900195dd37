"""Tests for the activity logger, notifier and mailer."""

import pytest
from unittest.mock import MagicMock, patch

from src.models.activity import ActivityAction
from src.models.notification import NotificationType
from src.services.activity_logger import ActivityLogger
from src.services.email_service import Mailer, render_assignment_email, render_help_request_email
from src.services.notification_service import Notifier
from tests.utils.factories import create_task
from tests.utils.helpers import day


def _patched_client(module: str, client: MagicMock):
    patcher = patch(f"src.services.{module}.SupabaseClient")
    mock_client_class = patcher.start()
    mock_client_class.return_value.__aenter__.return_value = client
    mock_client_class.return_value.__aexit__.return_value = None
    return patcher


@pytest.mark.unit
@pytest.mark.asyncio
async def test_activity_record_inserts_row():
    client = MagicMock()
    patcher = _patched_client("activity_logger", client)
    try:
        activity = await ActivityLogger(table="activities").record(
            "T1", "U1", ActivityAction.PAUSED, "Work stopped", {"reason": "vendor"}
        )
    finally:
        patcher.stop()

    assert activity.action == ActivityAction.PAUSED
    client.table.assert_called_with("activities")
    row = client.table.return_value.insert.call_args.args[0]
    assert row["action"] == "paused"
    assert row["metadata"] == {"reason": "vendor"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_activity_record_swallows_errors():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.side_effect = RuntimeError("db down")
    patcher = _patched_client("activity_logger", client)
    try:
        result = await ActivityLogger().record("T1", "U1", ActivityAction.RESUMED, "Work resumed")
    finally:
        patcher.stop()

    assert result is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_task_activities_returns_empty_on_error():
    client = MagicMock()
    client.table.side_effect = RuntimeError("db down")
    patcher = _patched_client("activity_logger", client)
    try:
        assert await ActivityLogger().get_task_activities("T1") == []
    finally:
        patcher.stop()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notify_users_deduplicates_recipients():
    client = MagicMock()
    patcher = _patched_client("notification_service", client)
    try:
        notifications = await Notifier().notify_users(
            ["U1", "U2", "U1", None],
            NotificationType.TASK_COMPLETED,
            "Task Completed",
            "done",
            task_id="T1",
        )
    finally:
        patcher.stop()

    assert [n.user_id for n in notifications] == ["U1", "U2"]
    rows = client.table.return_value.insert.call_args.args[0]
    assert len(rows) == 2
    assert rows[0]["type"] == "task_completed"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notify_users_without_recipients_skips_insert():
    client = MagicMock()
    patcher = _patched_client("notification_service", client)
    try:
        assert await Notifier().notify_users([], NotificationType.TASK_UPDATED, "t", "m") == []
    finally:
        patcher.stop()
    client.table.assert_not_called()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notify_users_swallows_errors():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.side_effect = RuntimeError("db down")
    patcher = _patched_client("notification_service", client)
    try:
        assert await Notifier().notify_users(["U1"], NotificationType.HELP_REQUEST, "t", "m") == []
    finally:
        patcher.stop()


def _users_query(client: MagicMock, users: list[dict]) -> None:
    query = client.table.return_value.select.return_value.in_.return_value
    query.execute.return_value = MagicMock(data=users)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_assignment_email_queued_per_user():
    task = create_task(start_date=day(0), end_date=day(10), title="Quarterly report")
    client = MagicMock()
    _users_query(client, [
        {"user_id": "U1", "name": "Ada", "email": "ada@example.com"},
        {"user_id": "U2", "name": "Bo", "email": None},
    ])
    patcher = _patched_client("email_service", client)
    try:
        queued = await Mailer().send_assignment_email(["U1", "U2"], task)
    finally:
        patcher.stop()

    assert queued == 1
    rows = client.table.return_value.insert.call_args.args[0]
    assert rows[0]["to_email"] == "ada@example.com"
    assert rows[0]["kind"] == "task_assignment"
    assert "Quarterly report" in rows[0]["subject"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_assignment_email_failure_returns_zero():
    task = create_task(start_date=day(0), end_date=day(10))
    client = MagicMock()
    client.table.side_effect = RuntimeError("db down")
    patcher = _patched_client("email_service", client)
    try:
        assert await Mailer().send_assignment_email(["U1"], task) == 0
    finally:
        patcher.stop()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_help_request_email_skips_requester():
    task = create_task(start_date=day(0), end_date=day(10), created_by="C1", assigned_users=["U1", "U2"])
    client = MagicMock()
    _users_query(client, [])
    patcher = _patched_client("email_service", client)
    try:
        await Mailer().send_help_request_email(task, "U1")
    finally:
        patcher.stop()

    first_lookup = client.table.return_value.select.return_value.in_.call_args_list[0]
    assert first_lookup.args == ("user_id", ["C1", "U2"])


@pytest.mark.unit
def test_rendered_emails_escape_html():
    task = create_task(start_date=day(0), end_date=day(10), title="<script>alert(1)</script>")

    subject, html = render_assignment_email({"name": "Ada"}, task, {"name": "Cy"})
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "Ada" in html and "Cy" in html

    subject, html = render_help_request_email({"name": "Cy"}, task, {"name": "Ada"})
    assert subject.startswith("Help Requested")
    assert "Ada has requested help" in html


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mark_as_read_scoped_to_user():
    client = MagicMock()
    query = client.table.return_value.update.return_value.eq.return_value.eq.return_value
    query.execute.return_value = MagicMock(data=[{"id": "N1", "is_read": True}])
    patcher = _patched_client("notification_service", client)
    try:
        result = await Notifier().mark_as_read("N1", "U1")
    finally:
        patcher.stop()

    assert result == {"id": "N1", "is_read": True}
    client.table.return_value.update.return_value.eq.assert_called_with("id", "N1")
    client.table.return_value.update.return_value.eq.return_value.eq.assert_called_with("user_id", "U1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mark_all_as_read_counts_rows():
    client = MagicMock()
    query = client.table.return_value.update.return_value.eq.return_value.eq.return_value
    query.execute.return_value = MagicMock(data=[{"id": "N1"}, {"id": "N2"}])
    patcher = _patched_client("notification_service", client)
    try:
        assert await Notifier().mark_all_as_read("U1") == 2
    finally:
        patcher.stop()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_notifications_unread_only():
    client = MagicMock()
    by_user = client.table.return_value.select.return_value.eq.return_value
    query = by_user.eq.return_value.order.return_value.limit.return_value
    query.execute.return_value = MagicMock(data=[{
        "id": "N1",
        "user_id": "U1",
        "type": "step_activated",
        "title": "Step Activated",
        "message": "Step 2 is now active",
        "created_at": "2024-12-02T09:00:00+00:00",
    }])
    patcher = _patched_client("notification_service", client)
    try:
        notifications = await Notifier().list_notifications("U1", unread_only=True, limit=10)
    finally:
        patcher.stop()

    assert [n.id for n in notifications] == ["N1"]
    assert notifications[0].type == NotificationType.STEP_ACTIVATED
    by_user.eq.assert_called_with("is_read", False)
    by_user.eq.return_value.order.return_value.limit.assert_called_with(10)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unread_count_uses_exact_count():
    client = MagicMock()
    query = client.table.return_value.select.return_value.eq.return_value.eq.return_value
    query.execute.return_value = MagicMock(data=[], count=3)
    patcher = _patched_client("notification_service", client)
    try:
        assert await Notifier().unread_count("U1") == 3
    finally:
        patcher.stop()

    client.table.return_value.select.assert_called_with("id", count="exact")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notification_reads_return_empty_on_error():
    client = MagicMock()
    client.table.side_effect = RuntimeError("connection reset")
    patcher = _patched_client("notification_service", client)
    try:
        assert await Notifier().list_notifications("U1") == []
        assert await Notifier().unread_count("U1") == 0
        assert await Notifier().delete_notification("N1", "U1") is False
    finally:
        patcher.stop()
