"""
plan_engine/models/plan.py

Plan tiers and their quota limits.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict

UNLIMITED = -1


class PlanTier(str, Enum):
    """Subscription status as stored on the account."""
    FREE = "free"
    TRIAL = "trial"
    PRO = "pro"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PlanLimits(BaseModel):
    """
    Quota limits for one tier.

    Values:
    - int >= 0: hard limit
    - -1: unlimited
    """
    model_config = ConfigDict(frozen=True)

    tier: PlanTier
    max_projects: int
    max_analyses_total: int
    max_opinions_per_project: int

    @property
    def is_unlimited(self) -> bool:
        return all(
            value == UNLIMITED
            for value in (self.max_projects, self.max_analyses_total, self.max_opinions_per_project)
        )
