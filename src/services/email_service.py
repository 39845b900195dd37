"""Assignment and help-request emails.

Messages are rendered here and written to the email outbox table; an
external worker handles delivery.
"""

from html import escape
from typing import Optional

from src.models.task import Task
from src.services.supabase_client import SupabaseClient
from src.utils.config import AppConfig
from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


def render_assignment_email(user: dict, task: Task, creator: Optional[dict]) -> tuple[str, str]:
    """Subject and HTML body telling a user they were assigned to a task."""
    subject = f"New Task Assignment: {task.title}"
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2980B9;">New Task Assignment</h2>
  <p>Hello {escape(user.get("name") or "there")},</p>
  <p>You have been assigned to a new task:</p>
  <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3 style="margin-top: 0;">{escape(task.title)}</h3>
    <p><strong>Description:</strong> {escape(task.description or "No description")}</p>
    <p><strong>Start Date:</strong> {task.start_date.date().isoformat()}</p>
    <p><strong>End Date:</strong> {task.end_date.date().isoformat()}</p>
    <p><strong>Assigned by:</strong> {escape((creator or {}).get("name") or "a teammate")}</p>
  </div>
  <p><a href="{AppConfig.APP_BASE_URL}/tasks/{task.task_id}">Open the task</a> to start working on it.</p>
</div>
""".strip()
    return subject, html


def render_help_request_email(recipient: dict, task: Task, requester: Optional[dict]) -> tuple[str, str]:
    """Subject and HTML body asking a teammate for help."""
    requester_name = escape((requester or {}).get("name") or "A teammate")
    subject = f"Help Requested: {task.title}"
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #E65100;">Help Request</h2>
  <p>Hello {escape(recipient.get("name") or "there")},</p>
  <p>{requester_name} has requested help with the following task:</p>
  <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3 style="margin-top: 0;">{escape(task.title)}</h3>
    <p><strong>Description:</strong> {escape(task.description or "No description")}</p>
    <p><strong>End Date:</strong> {task.end_date.date().isoformat()}</p>
  </div>
  <p><a href="{AppConfig.APP_BASE_URL}/tasks/{task.task_id}">Open the task</a> to help out.</p>
</div>
""".strip()
    return subject, html


class Mailer:
    """Queues task emails. Failures are logged and never raised."""

    def __init__(self, outbox_table: str = None, users_table: str = None):
        self.outbox_table = outbox_table or AppConfig.EMAIL_OUTBOX_TABLE
        self.users_table = users_table or AppConfig.USERS_TABLE

    async def _load_users(self, client, user_ids: list[str]) -> list[dict]:
        if not user_ids:
            return []
        result = client.table(self.users_table).select("user_id, name, email").in_("user_id", user_ids).execute()
        return result.data or []

    def _outbox_row(self, user: dict, subject: str, html: str, task: Task, kind: str) -> dict:
        return {
            "to_email": user["email"],
            "from_email": AppConfig.EMAIL_FROM,
            "subject": subject,
            "html": html,
            "kind": kind,
            "task_id": task.task_id,
        }

    async def send_assignment_email(self, user_ids: list[str], task: Task) -> int:
        """Queue one assignment email per user with an address. Returns the count queued."""
        user_ids = list(dict.fromkeys(user_ids))
        if not user_ids:
            return 0
        try:
            async with SupabaseClient() as client:
                users = await self._load_users(client, user_ids)
                creators = await self._load_users(client, [task.created_by])
                creator = creators[0] if creators else None

                rows = []
                for user in users:
                    if not user.get("email"):
                        continue
                    subject, html = render_assignment_email(user, task, creator)
                    rows.append(self._outbox_row(user, subject, html, task, "task_assignment"))

                if rows:
                    client.table(self.outbox_table).insert(rows).execute()
            logger.info("Assignment emails queued", task_id=task.task_id, emails_queued=len(rows))
            return len(rows)
        except Exception as e:
            logger.error(
                "Error queueing assignment emails",
                task_id=task.task_id,
                recipients=len(user_ids),
                error=str(e),
                exc_info=True,
            )
            return 0

    async def send_help_request_email(self, task: Task, requester_id: str) -> int:
        """
        Queue a help request to the task creator and the other assignees.
        The requester is never emailed. Returns the count queued.
        """
        recipient_ids = [
            u for u in dict.fromkeys([task.created_by, *task.assigned_users])
            if u != requester_id
        ]
        try:
            async with SupabaseClient() as client:
                recipients = await self._load_users(client, recipient_ids)
                requesters = await self._load_users(client, [requester_id])
                requester = requesters[0] if requesters else None

                rows = []
                for recipient in recipients:
                    if not recipient.get("email"):
                        continue
                    subject, html = render_help_request_email(recipient, task, requester)
                    rows.append(self._outbox_row(recipient, subject, html, task, "help_request"))

                if rows:
                    client.table(self.outbox_table).insert(rows).execute()
            logger.info(
                "Help request email queued",
                task_id=task.task_id,
                requester_id=mask_user_id(requester_id),
                emails_queued=len(rows),
            )
            return len(rows)
        except Exception as e:
            logger.error(
                "Error queueing help request email",
                task_id=task.task_id,
                requester_id=mask_user_id(requester_id),
                error=str(e),
                exc_info=True,
            )
            return 0
