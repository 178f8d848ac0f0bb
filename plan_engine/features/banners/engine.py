"""
plan_engine/features/banners/engine.py

Upgrade banner decision waterfall.

Rules are evaluated in order and the first match wins:

1. Pro                                   -> nothing
2. Limit hit in the relevance window     -> limit_reached (high, sticky)
3. Trial ending, cancellation scheduled  -> trial_ending (high, sticky)
4. Engaged and has experienced value     -> value_demonstration (medium)
5. Free with exactly one project         -> project_limit_approaching (medium)
6. Free                                  -> welcome_free (low) / free_value_proposition (medium)
7. Trial by days left                    -> trial_progress / trial_value_demonstration /
                                            trial_ending_critical
8. otherwise                             -> nothing

Dismissal state is not consulted here; UpgradeContext.visible_banner applies
it after the winner is chosen so that priority order never depends on what
the user dismissed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from plan_engine.core.config import Settings, settings as default_settings
from plan_engine.features.banners import messages
from plan_engine.features.banners.messages import Translator
from plan_engine.features.trial.clock import TrialClock
from plan_engine.models.banner import (
    BannerDecision,
    BannerKind,
    BannerPriority,
    EngagementAssessment,
    EngagementMetrics,
)
from plan_engine.models.entitlement import EntitlementSnapshot
from plan_engine.models.limit_hit import LimitHitEvent
from plan_engine.models.plan import PlanTier
from plan_engine.models.usage import UsageKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BannerRules:
    """Tunable thresholds for the waterfall."""
    limit_hit_window: timedelta = timedelta(minutes=5)
    trial_ending_days: int = 3
    trial_progress_days: int = 7
    welcome_period_days: int = 2
    engaged_min_projects: int = 2
    engaged_min_analyses: int = 3
    engaged_min_completed_projects: int = 1
    value_min_analyses: int = 2
    value_min_completed_projects: int = 1
    hours_per_analysis: float = 4.5
    free_max_projects: int = 1
    trial_max_projects: int = 5

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "BannerRules":
        cfg = cfg or default_settings
        return cls(
            limit_hit_window=timedelta(minutes=cfg.LIMIT_HIT_RELEVANCE_MINUTES),
            trial_ending_days=cfg.TRIAL_ENDING_DAYS,
            trial_progress_days=cfg.TRIAL_PROGRESS_DAYS,
            welcome_period_days=cfg.WELCOME_PERIOD_DAYS,
            engaged_min_projects=cfg.ENGAGED_MIN_PROJECTS,
            engaged_min_analyses=cfg.ENGAGED_MIN_ANALYSES,
            engaged_min_completed_projects=cfg.ENGAGED_MIN_COMPLETED_PROJECTS,
            value_min_analyses=cfg.VALUE_MIN_ANALYSES,
            value_min_completed_projects=cfg.VALUE_MIN_COMPLETED_PROJECTS,
            hours_per_analysis=cfg.HOURS_PER_ANALYSIS,
            free_max_projects=cfg.FREE_PLAN_MAX_PROJECTS,
            trial_max_projects=cfg.TRIAL_PLAN_MAX_PROJECTS,
        )


def assess_engagement(metrics: EngagementMetrics, rules: Optional[BannerRules] = None) -> EngagementAssessment:
    """Engaged = any sign of real use; value experienced = analysed and finished something."""
    rules = rules or BannerRules.from_settings()
    is_engaged = (
        metrics.project_count >= rules.engaged_min_projects
        or metrics.analysis_count >= rules.engaged_min_analyses
        or metrics.completed_project_count >= rules.engaged_min_completed_projects
    )
    value_experienced = (
        metrics.analysis_count >= rules.value_min_analyses
        and metrics.completed_project_count >= rules.value_min_completed_projects
    )
    hours_saved = metrics.analysis_count * rules.hours_per_analysis if value_experienced else 0.0
    return EngagementAssessment(
        is_engaged=is_engaged,
        value_experienced=value_experienced,
        hours_saved=hours_saved,
    )


class BannerDecisionEngine:
    def __init__(
        self,
        clock: Optional[TrialClock] = None,
        rules: Optional[BannerRules] = None,
        translate: Optional[Translator] = None,
    ):
        self._clock = clock or TrialClock()
        self.rules = rules or BannerRules.from_settings()
        self._translate = translate

    def _copy(self, key: str, **params) -> str:
        return messages.render(key, self._translate, **params)

    def recent_limit_hit(
        self,
        hits: Iterable[LimitHitEvent],
        now: Optional[datetime] = None,
    ) -> Optional[LimitHitEvent]:
        """Most recent hit strictly inside the relevance window, if any."""
        now = now or self._clock.now()
        relevant = [hit for hit in hits if self._clock.within(hit.occurred_at, self.rules.limit_hit_window, now)]
        if not relevant:
            return None
        return max(relevant, key=lambda hit: hit.occurred_at)

    def decide(
        self,
        snapshot: EntitlementSnapshot,
        recent_limit_hits: Iterable[LimitHitEvent] = (),
        engagement: Optional[EngagementMetrics] = None,
    ) -> Optional[BannerDecision]:
        """Return the single highest-priority banner, or None."""
        now = self._clock.now()
        tier = snapshot.tier
        rules = self.rules

        # 1. Pro never sees upgrade prompts.
        if tier == PlanTier.PRO:
            return None

        # 2. A fresh limit hit always wins and ignores dismissals.
        hit = self.recent_limit_hit(recent_limit_hits, now)
        if hit is not None:
            return BannerDecision(
                kind=BannerKind.LIMIT_REACHED,
                priority=BannerPriority.HIGH,
                message=messages.limit_reached_message(hit.kind),
                cta_label=self._copy("limit_reached.cta"),
                dismissible=False,
                urgent=True,
            )

        has_trial_end = snapshot.trial.ends_at is not None
        days_left = self._clock.days_remaining(snapshot.trial.ends_at, now)

        # 3. Trial that will not convert on its own is about to end.
        if (
            tier == PlanTier.TRIAL
            and has_trial_end
            and snapshot.cancellation_scheduled
            and 0 < days_left <= rules.trial_ending_days
        ):
            return BannerDecision(
                kind=BannerKind.TRIAL_ENDING,
                priority=BannerPriority.HIGH,
                message=self._copy("trial_ending.message", days=days_left),
                cta_label=self._copy("trial_ending.cta"),
                dismissible=False,
                urgent=True,
            )

        # 4. Engaged users who have already seen value.
        assessment = assess_engagement(engagement or EngagementMetrics(), rules)
        if assessment.is_engaged and assessment.value_experienced:
            context = self._copy("value_demonstration.context", hours=f"{assessment.hours_saved:.1f}")
            return BannerDecision(
                kind=BannerKind.VALUE_DEMONSTRATION,
                priority=BannerPriority.MEDIUM,
                message=self._copy("value_demonstration.message", context=context),
                cta_label=self._copy("value_demonstration.cta"),
                dismissible=True,
            )

        project_count = snapshot.usage_for(UsageKind.PROJECTS).used

        # 5. Free user sitting on their only project slot.
        if tier == PlanTier.FREE and project_count == 1:
            return BannerDecision(
                kind=BannerKind.PROJECT_LIMIT_APPROACHING,
                priority=BannerPriority.MEDIUM,
                message=self._copy(
                    "project_limit_approaching.message",
                    current=project_count,
                    max=rules.free_max_projects,
                ),
                cta_label=self._copy("project_limit_approaching.cta", trial_max=rules.trial_max_projects),
                dismissible=True,
            )

        # 6. Free users: gentle welcome first, stronger pitch afterwards.
        if tier == PlanTier.FREE:
            if self._clock.days_since(snapshot.registered_at, now) <= rules.welcome_period_days:
                return BannerDecision(
                    kind=BannerKind.WELCOME_FREE,
                    priority=BannerPriority.LOW,
                    message=self._copy("welcome_free.message"),
                    cta_label=self._copy("welcome_free.cta"),
                    dismissible=True,
                )
            key = "free_value_proposition.message_with_projects" if project_count > 0 else "free_value_proposition.message"
            return BannerDecision(
                kind=BannerKind.FREE_VALUE_PROPOSITION,
                priority=BannerPriority.MEDIUM,
                message=self._copy(key),
                cta_label=self._copy("free_value_proposition.cta"),
                dismissible=True,
            )

        # 7. Trial users escalate as the end date approaches.
        if tier == PlanTier.TRIAL:
            if days_left > rules.trial_progress_days:
                return BannerDecision(
                    kind=BannerKind.TRIAL_PROGRESS,
                    priority=BannerPriority.LOW,
                    message=self._copy("trial_progress.message", days=days_left),
                    cta_label=self._copy("trial_progress.cta"),
                    dismissible=True,
                )
            if days_left > rules.trial_ending_days:
                return BannerDecision(
                    kind=BannerKind.TRIAL_VALUE_DEMONSTRATION,
                    priority=BannerPriority.MEDIUM,
                    message=self._copy("trial_value_demonstration.message", days=days_left),
                    cta_label=self._copy("trial_value_demonstration.cta"),
                    dismissible=False,
                )
            if days_left > 0:
                return BannerDecision(
                    kind=BannerKind.TRIAL_ENDING_CRITICAL,
                    priority=BannerPriority.HIGH,
                    message=self._copy("trial_ending_critical.message", days=days_left),
                    cta_label=self._copy("trial_ending_critical.cta"),
                    dismissible=False,
                    urgent=True,
                )

        return None


def decide_banner(
    snapshot: EntitlementSnapshot,
    recent_limit_hits: Iterable[LimitHitEvent] = (),
    engagement: Optional[EngagementMetrics] = None,
    *,
    clock: Optional[TrialClock] = None,
    rules: Optional[BannerRules] = None,
) -> Optional[BannerDecision]:
    """Functional entry point over a throwaway engine."""
    return BannerDecisionEngine(clock=clock, rules=rules).decide(snapshot, recent_limit_hits, engagement)
