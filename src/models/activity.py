"""Activity model - entries in a task's activity feed."""

from enum import Enum
from typing import Optional, Any
from datetime import datetime
from pydantic import BaseModel, Field


class ActivityAction(str, Enum):
    """Activity feed action types."""
    CREATED = "created"
    UPDATED = "updated"
    PAUSED = "paused"
    RESUMED = "resumed"
    PROGRESS_UPDATED = "progress_updated"
    COMMENTED = "commented"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    STATUS_CHANGED = "status_changed"
    HELP_REQUESTED = "help_requested"


class Activity(BaseModel):
    """Activity model - one feed entry for a task."""
    task_id: str = Field(..., description="Task ID (text FK)")
    user_id: str = Field(..., description="Acting user ID")
    action: ActivityAction = Field(..., description="What happened")
    description: str = Field(..., min_length=1, description="Human readable summary")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Action specific details")
    created_at: Optional[datetime] = None
