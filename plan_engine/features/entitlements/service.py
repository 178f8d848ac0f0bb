"""
plan_engine/features/entitlements/service.py

Entitlement calculation.

Handles:
- Usage vs quota for projects, analyses and opinions per project
- Trial window timing and the effective tier of expired trials
- The account-settings status summary (urgency, upgrade recommendation)

Everything here is pure: same inputs + same `now` = same snapshot.
"""

from datetime import datetime
from typing import Dict, Optional, Tuple

from plan_engine.features.plans.service import (
    build_plan_limits,
    get_plan_limits,
    resolve_effective_tier,
)
from plan_engine.features.trial.clock import days_remaining
from plan_engine.models.entitlement import (
    AccountRecord,
    EntitlementSnapshot,
    PlanStatusSummary,
    ProjectAggregates,
    TrialWindow,
    UrgencyLevel,
)
from plan_engine.models.plan import PlanLimits, PlanTier
from plan_engine.models.timestamps import ensure_utc, utc_now
from plan_engine.models.usage import UsageKind, UsageMetric

HIGH_USAGE_PERCENT = 80.0
MAXED_USAGE_PERCENT = 100.0


def compute_entitlement(
    account: AccountRecord,
    aggregates: ProjectAggregates,
    *,
    now: Optional[datetime] = None,
    limits: Optional[Dict[PlanTier, PlanLimits]] = None,
) -> EntitlementSnapshot:
    """
    Derive the entitlement snapshot for an account.

    Args:
        account: Raw account fields from the backend
        aggregates: Project counts from the backend
        now: Fixed timestamp for deterministic results (defaults to now())
        limits: Optional quota table override (defaults to settings)

    Returns:
        EntitlementSnapshot with raw and effective tier
    """
    now = ensure_utc(now) if now is not None else utc_now()
    table = limits or build_plan_limits()

    trial_days: Optional[int] = None
    if account.trial_ends_at is not None:
        trial_days = days_remaining(account.trial_ends_at, now)

    effective_tier = resolve_effective_tier(account.tier, trial_days)
    plan = get_plan_limits(effective_tier, table)

    # Per-project quota binds on the fullest project.
    opinions_used = max(aggregates.opinions_per_project, default=0)

    usage = {
        UsageKind.PROJECTS: UsageMetric.measure(UsageKind.PROJECTS, aggregates.count, plan.max_projects),
        UsageKind.ANALYSES: UsageMetric.measure(UsageKind.ANALYSES, aggregates.analyzed_count, plan.max_analyses_total),
        UsageKind.OPINIONS_PER_PROJECT: UsageMetric.measure(
            UsageKind.OPINIONS_PER_PROJECT, opinions_used, plan.max_opinions_per_project
        ),
    }

    return EntitlementSnapshot(
        tier=account.tier,
        effective_tier=effective_tier,
        usage=usage,
        trial=TrialWindow(started_at=account.trial_started_at, ends_at=account.trial_ends_at),
        trial_days_remaining=trial_days,
        has_used_trial_before=account.trial_started_at is not None,
        cancellation_scheduled=account.cancellation_scheduled,
        cancellation_effective_at=account.cancellation_effective_at,
        registered_at=account.created_at,
        computed_at=now,
    )


def _tier_urgency(snapshot: EntitlementSnapshot) -> Tuple[UrgencyLevel, bool]:
    tier = snapshot.tier
    if tier == PlanTier.FREE:
        return "low", True
    if tier == PlanTier.TRIAL:
        days = snapshot.trial_days_remaining
        if days is None:
            return "low", True
        if days <= 3:
            return "high", True
        if days <= 7:
            return "medium", True
        return "low", True
    if tier == PlanTier.PRO:
        return "none", False
    if tier == PlanTier.EXPIRED:
        return "high", True
    return "low", False


def summarize_plan_status(snapshot: EntitlementSnapshot) -> PlanStatusSummary:
    """
    Summarize a snapshot for the account settings view.

    Urgency starts from the tier and trial timing, then escalates to high if
    any metric is maxed out, or to medium if any metric is at 80% or more and
    nothing else raised it.
    """
    urgency, recommended = _tier_urgency(snapshot)

    percentages = [metric.percentage for metric in snapshot.usage.values()]
    if any(p >= MAXED_USAGE_PERCENT for p in percentages):
        urgency, recommended = "high", True
    elif any(p >= HIGH_USAGE_PERCENT for p in percentages) and urgency == "none":
        urgency, recommended = "medium", True

    is_trial_active = snapshot.tier == PlanTier.TRIAL and (
        snapshot.trial_days_remaining is None or snapshot.trial_days_remaining > 0
    )
    next_billing = snapshot.trial.ends_at if snapshot.tier == PlanTier.TRIAL else None

    return PlanStatusSummary(
        tier=snapshot.tier,
        effective_tier=snapshot.effective_tier,
        is_trial_active=is_trial_active,
        trial_days_remaining=snapshot.trial_days_remaining,
        has_used_trial=snapshot.has_used_trial_before,
        # Trials start through checkout, never from the settings view.
        can_start_trial=False,
        next_billing_date=next_billing,
        upgrade_recommended=recommended,
        urgency_level=urgency,
        cancellation_scheduled=snapshot.cancellation_scheduled,
        contract_end_date=snapshot.cancellation_effective_at if snapshot.cancellation_scheduled else None,
    )
