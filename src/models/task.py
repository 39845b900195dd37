"""Task models."""

from enum import Enum
from typing import Optional, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.utils.clock import ensure_utc
from src.utils.ids import generate_id


class TaskStatus(str, Enum):
    """Task status values."""
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    PAUSED = "paused"
    COMPLETED = "completed"


class TaskPriority(str, Enum):
    """Task priority values."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class StopLog(BaseModel):
    """Record of work being paused on a task. Never edited once appended."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="User who stopped work")
    reason: str = Field(..., min_length=1, description="Why work was stopped")
    timestamp: datetime = Field(..., description="When work was stopped")

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class Task(BaseModel):
    """Task model."""
    model_config = ConfigDict(validate_assignment=True)

    task_id: str = Field(default_factory=generate_id, description="Task ID (text)")
    title: str = Field(..., min_length=1, description="Task title")
    description: str = Field(default="", description="Task description")
    created_by: str = Field(..., description="Creator user ID")
    assigned_users: list[str] = Field(default_factory=list, description="Assigned user IDs")
    start_date: datetime = Field(..., description="Planned start")
    end_date: datetime = Field(..., description="Planned end")
    status: TaskStatus = Field(default=TaskStatus.NOT_STARTED, description="Task status")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Task priority")
    auto_progress: int = Field(default=0, ge=0, le=100, description="Last computed time-based progress")
    manual_progress: Optional[int] = Field(default=None, ge=0, le=100, description="Explicit progress override")
    stop_logs: list[StopLog] = Field(default_factory=list, description="Append-only pause history")
    is_active: bool = Field(default=True, description="False once soft-deleted")
    version: int = Field(default=0, ge=0, description="Optimistic lock counter")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_date", "end_date", "created_at", "updated_at")
    @classmethod
    def _utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @field_validator("assigned_users")
    @classmethod
    def _dedupe_users(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    def is_assigned(self, user_id: str) -> bool:
        """Whether the user is one of the task's assignees."""
        return user_id in self.assigned_users

    def to_record(self) -> dict[str, Any]:
        """JSON-safe dict for storage."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Task":
        """Build a task from a stored row."""
        return cls.model_validate(record)
