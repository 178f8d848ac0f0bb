"""
plan_engine/models/usage.py

Usage of one quota-bearing metric against its plan limit.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class UsageKind(str, Enum):
    PROJECTS = "projects"
    ANALYSES = "analyses"
    OPINIONS_PER_PROJECT = "opinions_per_project"


class UsageMetric(BaseModel):
    """
    UsageMetric pairs a usage count with its limit.

    percentage is min(used / limit, 1) * 100 when limit > 0, otherwise 0
    (unlimited metrics and zero limits never report progress).
    """
    model_config = ConfigDict(frozen=True)

    kind: UsageKind
    used: int = Field(ge=0)
    limit: int = Field(ge=-1)
    percentage: float = Field(ge=0.0, le=100.0)

    @classmethod
    def measure(cls, kind: UsageKind, used: int, limit: int) -> "UsageMetric":
        used = max(0, int(used))
        if limit > 0:
            percentage = min(used / limit, 1.0) * 100.0
        else:
            percentage = 0.0
        return cls(kind=kind, used=used, limit=limit, percentage=percentage)

    @property
    def unlimited(self) -> bool:
        return self.limit == -1

    @property
    def remaining(self) -> Optional[int]:
        if self.unlimited:
            return None
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return not self.unlimited and self.used >= self.limit
