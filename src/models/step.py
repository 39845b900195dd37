"""Step model - one entry in a task's ordered step sequence."""

from enum import Enum
from typing import Optional, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.utils.clock import ensure_utc
from src.utils.ids import generate_id


class StepStatus(str, Enum):
    """Step status values."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class Step(BaseModel):
    """Step model."""
    model_config = ConfigDict(validate_assignment=True)

    step_id: str = Field(default_factory=generate_id, description="Step ID (text)")
    task_id: str = Field(..., description="Owning task ID")
    step_number: int = Field(..., ge=1, description="Position within the task, unique per task")
    title: str = Field(..., min_length=1, description="Step title")
    description: str = Field(default="", description="Step description")
    assigned_users: list[str] = Field(default_factory=list, description="Assigned user IDs")
    status: StepStatus = Field(default=StepStatus.PENDING, description="Step status")
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = Field(default=False, description="True for the single step open for work")
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("start_date", "end_date", "completed_at", "created_at", "updated_at")
    @classmethod
    def _utc_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @field_validator("assigned_users")
    @classmethod
    def _dedupe_users(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    def to_record(self) -> dict[str, Any]:
        """JSON-safe dict for storage."""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Step":
        """Build a step from a stored row."""
        return cls.model_validate(record)
