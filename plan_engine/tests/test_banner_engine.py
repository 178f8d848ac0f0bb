"""Tests for the upgrade banner waterfall."""

from datetime import timedelta

import pytest

from plan_engine.core.config import Settings
from plan_engine.features.banners.engine import (
    BannerDecisionEngine,
    BannerRules,
    assess_engagement,
    decide_banner,
)
from plan_engine.features.entitlements.service import compute_entitlement
from plan_engine.models.banner import BannerKind, BannerPriority, EngagementMetrics
from plan_engine.models.entitlement import AccountRecord, ProjectAggregates
from plan_engine.models.limit_hit import LimitHitEvent, LimitHitKind
from plan_engine.models.plan import PlanTier
from plan_engine.tests.fakes import NOW

ENGAGED = EngagementMetrics(project_count=2, analysis_count=3, completed_project_count=1)


def _snapshot(tier=PlanTier.FREE, *, projects=0, trial_days=None, registered_days_ago=10, cancelling=False):
    account = AccountRecord(
        tier=tier,
        created_at=NOW - timedelta(days=registered_days_ago),
        trial_started_at=NOW - timedelta(days=1) if trial_days is not None else None,
        trial_ends_at=NOW + timedelta(days=trial_days) if trial_days is not None else None,
        cancellation_scheduled=cancelling,
    )
    return compute_entitlement(account, ProjectAggregates(count=projects), now=NOW)


def _hit(minutes_ago=0.0, kind=LimitHitKind.PROJECT_LIMIT):
    return LimitHitEvent(
        kind=kind,
        occurred_at=NOW - timedelta(minutes=minutes_ago),
        context="Project creation limit reached",
        message="limit",
    )


@pytest.fixture
def engine(clock):
    return BannerDecisionEngine(clock)


@pytest.mark.parametrize("hits,engagement", [
    ((), None),
    ((_hit(),), None),
    ((), ENGAGED),
    ((_hit(),), ENGAGED),
])
def test_pro_never_sees_banners(engine, hits, engagement):
    assert engine.decide(_snapshot(PlanTier.PRO, projects=1), hits, engagement) is None


def test_recent_limit_hit_wins(engine):
    decision = engine.decide(_snapshot(PlanTier.FREE, projects=1), [_hit(1)], ENGAGED)
    assert decision.kind == BannerKind.LIMIT_REACHED
    assert decision.priority == BannerPriority.HIGH
    assert decision.dismissible is False
    assert decision.urgent is True
    assert decision.message == "Project creation limit reached"


def test_limit_hit_window_boundary(engine):
    snapshot = _snapshot(PlanTier.FREE, registered_days_ago=10)

    inside = engine.decide(snapshot, [_hit(minutes_ago=4 + 59 / 60)])
    outside = engine.decide(snapshot, [_hit(minutes_ago=5 + 1 / 60)])

    assert inside.kind == BannerKind.LIMIT_REACHED
    assert outside.kind == BannerKind.FREE_VALUE_PROPOSITION


def test_limit_reached_message_uses_most_recent_hit(engine):
    hits = [_hit(3, LimitHitKind.PROJECT_LIMIT), _hit(1, LimitHitKind.OPINION_LIMIT)]
    decision = engine.decide(_snapshot(PlanTier.TRIAL, trial_days=10), hits)
    assert decision.message == "Opinion collection limit reached"


def test_trial_ending_requires_scheduled_cancellation(engine):
    decision = engine.decide(_snapshot(PlanTier.TRIAL, trial_days=2, cancelling=True))
    assert decision.kind == BannerKind.TRIAL_ENDING
    assert decision.priority == BannerPriority.HIGH
    assert decision.dismissible is False
    assert decision.urgent is True
    assert decision.message == "Trial ends in 2 days"


def test_trial_ending_in_two_days_is_critical(engine):
    decision = engine.decide(_snapshot(PlanTier.TRIAL, trial_days=2))
    assert decision.kind == BannerKind.TRIAL_ENDING_CRITICAL
    assert decision.priority == BannerPriority.HIGH
    assert decision.dismissible is False
    assert decision.urgent is True


def test_value_demonstration_for_engaged_users(engine):
    decision = engine.decide(_snapshot(PlanTier.FREE, projects=1), [], ENGAGED)
    assert decision.kind == BannerKind.VALUE_DEMONSTRATION
    assert decision.priority == BannerPriority.MEDIUM
    assert decision.dismissible is True
    assert "13.5" in decision.message


def test_trial_ending_beats_value_demonstration(engine):
    decision = engine.decide(_snapshot(PlanTier.TRIAL, trial_days=1, cancelling=True), [], ENGAGED)
    assert decision.kind == BannerKind.TRIAL_ENDING


def test_engaged_without_value_falls_through(engine):
    engaged_only = EngagementMetrics(project_count=3, analysis_count=1, completed_project_count=0)
    decision = engine.decide(_snapshot(PlanTier.FREE, projects=1), [], engaged_only)
    assert decision.kind == BannerKind.PROJECT_LIMIT_APPROACHING


def test_free_with_one_project_is_nudged(engine):
    decision = engine.decide(_snapshot(PlanTier.FREE, projects=1, registered_days_ago=0))
    assert decision.kind == BannerKind.PROJECT_LIMIT_APPROACHING
    assert decision.priority == BannerPriority.MEDIUM
    assert decision.dismissible is True
    assert decision.message == "Currently using 1/1 projects"
    assert decision.cta_label == "Up to 5 projects with Trial"


def test_new_free_user_gets_welcome(engine):
    decision = engine.decide(_snapshot(PlanTier.FREE, registered_days_ago=2))
    assert decision.kind == BannerKind.WELCOME_FREE
    assert decision.priority == BannerPriority.LOW
    assert decision.dismissible is True


def test_older_free_user_gets_value_proposition(engine):
    decision = engine.decide(_snapshot(PlanTier.FREE, registered_days_ago=3))
    assert decision.kind == BannerKind.FREE_VALUE_PROPOSITION
    assert decision.priority == BannerPriority.MEDIUM
    assert decision.message == "Try Pro features for free"


def test_free_user_with_several_projects_gets_project_copy(engine):
    decision = engine.decide(_snapshot(PlanTier.FREE, projects=2))
    assert decision.kind == BannerKind.FREE_VALUE_PROPOSITION
    assert decision.message == "Achieve efficiency with more projects"


@pytest.mark.parametrize("days,kind,priority,dismissible", [
    (10, BannerKind.TRIAL_PROGRESS, BannerPriority.LOW, True),
    (8, BannerKind.TRIAL_PROGRESS, BannerPriority.LOW, True),
    (7, BannerKind.TRIAL_VALUE_DEMONSTRATION, BannerPriority.MEDIUM, False),
    (4, BannerKind.TRIAL_VALUE_DEMONSTRATION, BannerPriority.MEDIUM, False),
    (3, BannerKind.TRIAL_ENDING_CRITICAL, BannerPriority.HIGH, False),
    (1, BannerKind.TRIAL_ENDING_CRITICAL, BannerPriority.HIGH, False),
])
def test_trial_escalation(engine, days, kind, priority, dismissible):
    decision = engine.decide(_snapshot(PlanTier.TRIAL, trial_days=days))
    assert decision.kind == kind
    assert decision.priority == priority
    assert decision.dismissible is dismissible


def test_ended_trial_gets_no_banner(engine):
    assert engine.decide(_snapshot(PlanTier.TRIAL, trial_days=-1)) is None


def test_trial_without_end_date_gets_no_banner(engine):
    account = AccountRecord(tier=PlanTier.TRIAL, trial_started_at=NOW)
    snapshot = compute_entitlement(account, ProjectAggregates(), now=NOW)
    assert engine.decide(snapshot) is None


@pytest.mark.parametrize("tier", [PlanTier.EXPIRED, PlanTier.CANCELLED])
def test_lapsed_tiers_only_see_limit_and_value_banners(engine, tier):
    assert engine.decide(_snapshot(tier, projects=1)) is None
    assert engine.decide(_snapshot(tier), [_hit()]).kind == BannerKind.LIMIT_REACHED


def test_day_thresholds_follow_the_engine_clock(fake_clock, engine):
    snapshot = _snapshot(PlanTier.TRIAL, trial_days=9)
    assert engine.decide(snapshot).kind == BannerKind.TRIAL_PROGRESS

    fake_clock.advance(days=3)
    assert engine.decide(snapshot).kind == BannerKind.TRIAL_VALUE_DEMONSTRATION

    fake_clock.advance(days=4)
    assert engine.decide(snapshot).kind == BannerKind.TRIAL_ENDING_CRITICAL


def test_priority_never_increases_down_the_waterfall(engine):
    """Whichever rule wins, no lower rule could have produced a higher-priority banner."""
    snapshot = _snapshot(PlanTier.TRIAL, trial_days=2, cancelling=True)
    winners = [
        engine.decide(snapshot, [_hit()], ENGAGED),
        engine.decide(snapshot, [], ENGAGED),
    ]
    assert [w.kind for w in winners] == [BannerKind.LIMIT_REACHED, BannerKind.TRIAL_ENDING]
    assert all(w.priority == BannerPriority.HIGH for w in winners)


def test_rules_come_from_settings(clock):
    cfg = Settings(TRIAL_PROGRESS_DAYS=12, TRIAL_ENDING_DAYS=5)
    engine = BannerDecisionEngine(clock, BannerRules.from_settings(cfg))
    assert engine.decide(_snapshot(PlanTier.TRIAL, trial_days=10)).kind == BannerKind.TRIAL_VALUE_DEMONSTRATION
    assert engine.decide(_snapshot(PlanTier.TRIAL, trial_days=5)).kind == BannerKind.TRIAL_ENDING_CRITICAL


def test_translator_overrides_copy(clock):
    engine = BannerDecisionEngine(clock, translate=lambda key, **params: f"<{key}>")
    decision = engine.decide(_snapshot(PlanTier.FREE, registered_days_ago=0))
    assert decision.message == "<welcome_free.message>"
    assert decision.cta_label == "<welcome_free.cta>"


def test_assess_engagement():
    rules = BannerRules()
    assessment = assess_engagement(ENGAGED, rules)
    assert assessment.is_engaged and assessment.value_experienced
    assert assessment.hours_saved == pytest.approx(13.5)

    idle = assess_engagement(EngagementMetrics(), rules)
    assert not idle.is_engaged and not idle.value_experienced
    assert idle.hours_saved == 0.0


def test_decide_banner_function(clock):
    decision = decide_banner(_snapshot(PlanTier.FREE, projects=1), [], None, clock=clock)
    assert decision.kind == BannerKind.PROJECT_LIMIT_APPROACHING
