"""
plan_engine/models/limit_hit.py

Typed quota-exceeded event classified from a rejected backend write.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator

from plan_engine.models.timestamps import ensure_utc


class LimitHitKind(str, Enum):
    PROJECT_LIMIT = "project_limit"
    ANALYSIS_LIMIT = "analysis_limit"
    OPINION_LIMIT = "opinion_limit"


class LimitHitEvent(BaseModel):
    """
    LimitHitEvent records one rejected write.

    context is the short summary of which limit was hit; message is the
    backend's own message when it sent one.
    """
    model_config = ConfigDict(frozen=True)

    kind: LimitHitKind
    occurred_at: datetime
    context: str
    message: str
    current_usage: Optional[int] = None
    limit: Optional[int] = None

    @field_validator("occurred_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
