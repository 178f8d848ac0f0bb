"""
plan_engine/models/entitlement.py

Account inputs and the derived entitlement snapshot.

The snapshot is recomputed from the account record and project aggregates on
every read; nothing here is persisted.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from plan_engine.models.plan import PlanTier
from plan_engine.models.timestamps import ensure_utc
from plan_engine.models.usage import UsageKind, UsageMetric


class AccountRecord(BaseModel):
    """Account fields as returned by the backend API."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tier: PlanTier = Field(default=PlanTier.FREE, alias="subscriptionStatus")
    trial_started_at: Optional[datetime] = Field(default=None, alias="trialStartedAt")
    trial_ends_at: Optional[datetime] = Field(default=None, alias="trialEndsAt")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    cancellation_scheduled: bool = Field(default=False, alias="cancellationScheduled")
    cancellation_effective_at: Optional[datetime] = Field(default=None, alias="cancellationEffectiveAt")

    @field_validator("trial_started_at", "trial_ends_at", "created_at", "cancellation_effective_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _trial_ordered(self) -> "AccountRecord":
        if self.trial_started_at and self.trial_ends_at and self.trial_ends_at < self.trial_started_at:
            raise ValueError("trialEndsAt must not precede trialStartedAt")
        return self


class ProjectAggregates(BaseModel):
    """Project counts as returned by the backend API."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    count: int = Field(default=0, ge=0)
    analyzed_count: int = Field(default=0, ge=0, alias="analyzedCount")
    opinions_per_project: List[int] = Field(default_factory=list, alias="opinionsPerProject")

    @field_validator("opinions_per_project")
    @classmethod
    def _non_negative(cls, value: List[int]) -> List[int]:
        if any(count < 0 for count in value):
            raise ValueError("opinion counts must be >= 0")
        return value


class TrialWindow(BaseModel):
    """Trial start/end. ends_at must not precede started_at."""
    model_config = ConfigDict(frozen=True)

    started_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _ordered(self) -> "TrialWindow":
        start = ensure_utc(self.started_at)
        end = ensure_utc(self.ends_at)
        if start is not None and end is not None and end < start:
            raise ValueError("trial ends_at must not precede started_at")
        return self


class EntitlementSnapshot(BaseModel):
    """
    Usage against quotas for one account at one instant.

    tier is the raw stored subscription status; effective_tier is the tier
    whose limits apply (an expired trial is limited like Free).
    """
    model_config = ConfigDict(frozen=True)

    tier: PlanTier
    effective_tier: PlanTier
    usage: Dict[UsageKind, UsageMetric]
    trial: TrialWindow
    trial_days_remaining: Optional[int] = None
    has_used_trial_before: bool = False
    cancellation_scheduled: bool = False
    cancellation_effective_at: Optional[datetime] = None
    registered_at: Optional[datetime] = None
    computed_at: datetime

    def usage_for(self, kind: UsageKind) -> UsageMetric:
        return self.usage[kind]

    @property
    def is_trial_expired(self) -> bool:
        return self.tier == PlanTier.TRIAL and self.effective_tier != PlanTier.TRIAL


UrgencyLevel = Literal["none", "low", "medium", "high"]


class PlanStatusSummary(BaseModel):
    """Account-settings view of a snapshot."""
    model_config = ConfigDict(frozen=True)

    tier: PlanTier
    effective_tier: PlanTier
    is_trial_active: bool
    trial_days_remaining: Optional[int] = None
    has_used_trial: bool
    can_start_trial: bool
    next_billing_date: Optional[datetime] = None
    upgrade_recommended: bool
    urgency_level: UrgencyLevel
    cancellation_scheduled: bool = False
    contract_end_date: Optional[datetime] = None
