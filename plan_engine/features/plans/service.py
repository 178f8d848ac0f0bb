"""
plan_engine/features/plans/service.py

Plan quota table.

Handles:
- Tier -> limits resolution (Pro is unlimited everywhere)
- Effective tier for quota purposes (expired trials fall back to Free)
"""

from typing import Dict, Optional

from plan_engine.core.config import Settings, settings as default_settings
from plan_engine.models.plan import PlanLimits, PlanTier, UNLIMITED


def build_plan_limits(cfg: Optional[Settings] = None) -> Dict[PlanTier, PlanLimits]:
    """
    Build the tier-keyed quota table from settings.

    Expired and cancelled accounts are held to Free limits.
    """
    cfg = cfg or default_settings
    free = PlanLimits(
        tier=PlanTier.FREE,
        max_projects=cfg.FREE_PLAN_MAX_PROJECTS,
        max_analyses_total=cfg.FREE_PLAN_MAX_ANALYSES_TOTAL,
        max_opinions_per_project=cfg.FREE_PLAN_MAX_OPINIONS_PER_PROJECT,
    )
    trial = PlanLimits(
        tier=PlanTier.TRIAL,
        max_projects=cfg.TRIAL_PLAN_MAX_PROJECTS,
        max_analyses_total=cfg.TRIAL_PLAN_MAX_ANALYSES_TOTAL,
        max_opinions_per_project=cfg.TRIAL_PLAN_MAX_OPINIONS_PER_PROJECT,
    )
    pro = PlanLimits(
        tier=PlanTier.PRO,
        max_projects=UNLIMITED,
        max_analyses_total=UNLIMITED,
        max_opinions_per_project=UNLIMITED,
    )
    return {
        PlanTier.FREE: free,
        PlanTier.TRIAL: trial,
        PlanTier.PRO: pro,
        PlanTier.EXPIRED: free.model_copy(update={"tier": PlanTier.EXPIRED}),
        PlanTier.CANCELLED: free.model_copy(update={"tier": PlanTier.CANCELLED}),
    }


def get_plan_limits(tier: PlanTier, table: Optional[Dict[PlanTier, PlanLimits]] = None) -> PlanLimits:
    """Return limits for a tier, defaulting to the free tier."""
    table = table or build_plan_limits()
    return table.get(tier, table[PlanTier.FREE])


def resolve_effective_tier(tier: PlanTier, trial_days_remaining: Optional[int]) -> PlanTier:
    """
    Tier whose limits apply.

    A trial with an end date and no days left is limited like Free. A trial
    without an end date is treated as active. The stored tier is not changed.
    """
    if tier == PlanTier.TRIAL and trial_days_remaining is not None and trial_days_remaining <= 0:
        return PlanTier.FREE
    return tier
