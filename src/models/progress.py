"""Progress display models returned with every task payload."""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class ProgressStatus(str, Enum):
    """Health of a task by share of time remaining."""
    OVERDUE = "overdue"
    UPCOMING = "upcoming"
    ON_TRACK = "on-track"
    ATTENTION = "attention"
    URGENT = "urgent"
    CRITICAL = "critical"


class ProgressColor(BaseModel):
    """Semantic band plus display hint; styling lives in the client."""
    model_config = ConfigDict(frozen=True)

    band: str = Field(..., description="Band tag: critical-red, info-blue, green, yellow, orange, red")
    status: ProgressStatus
    color: str = Field(..., description="Display hint: error, info, success, warning")


class ProgressDisplay(BaseModel):
    """Progress figures computed at read time."""
    auto_progress: int = Field(..., ge=0, le=100)
    display_progress: int = Field(..., ge=0, le=100)
    days_remaining: int
    total_days: int
    progress_color: ProgressColor
    overdue: bool
