"""
plan_engine/models/banner.py

Upgrade banner decisions and the inputs that drive them.
"""

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class BannerKind(str, Enum):
    LIMIT_REACHED = "limit_reached"
    TRIAL_ENDING = "trial_ending"
    VALUE_DEMONSTRATION = "value_demonstration"
    PROJECT_LIMIT_APPROACHING = "project_limit_approaching"
    WELCOME_FREE = "welcome_free"
    FREE_VALUE_PROPOSITION = "free_value_proposition"
    TRIAL_PROGRESS = "trial_progress"
    TRIAL_VALUE_DEMONSTRATION = "trial_value_demonstration"
    TRIAL_ENDING_CRITICAL = "trial_ending_critical"


class BannerPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


class BannerDecision(BaseModel):
    """The single banner to show. Computed on demand, never stored."""
    model_config = ConfigDict(frozen=True)

    kind: BannerKind
    priority: BannerPriority
    message: str
    cta_label: str
    dismissible: bool
    urgent: bool = False


class EngagementMetrics(BaseModel):
    """Activity counts used to judge whether the user has seen value."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    project_count: int = Field(default=0, ge=0, alias="projectCount")
    analysis_count: int = Field(default=0, ge=0, alias="analysisCount")
    completed_project_count: int = Field(default=0, ge=0, alias="completedProjectCount")


class EngagementAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_engaged: bool
    value_experienced: bool
    hours_saved: float = 0.0


class DismissalRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    banner_kind: str
    dismissed_at: datetime
