"""Notification model - in-app notifications addressed to one user."""

from enum import Enum
from typing import Optional, Any
from datetime import datetime
from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Notification types."""
    TASK_ASSIGNED = "task_assigned"
    TASK_MENTIONED = "task_mentioned"
    TASK_COMMENT = "task_comment"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"
    HELP_REQUEST = "help_request"
    STEP_ASSIGNED = "step_assigned"
    STEP_ACTIVATED = "step_activated"
    TASK_OVERDUE = "task_overdue"
    TASK_DUE_SOON = "task_due_soon"


class Notification(BaseModel):
    """Notification model."""
    id: Optional[str] = Field(None, description="Row id, assigned by storage")
    user_id: str = Field(..., description="Recipient user ID")
    type: NotificationType = Field(..., description="Notification type")
    title: str = Field(..., description="Short title")
    message: str = Field(..., description="Notification body")
    task_id: Optional[str] = None
    step_id: Optional[str] = None
    related_user_id: Optional[str] = Field(None, description="User who triggered the notification")
    is_read: bool = False
    read_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
