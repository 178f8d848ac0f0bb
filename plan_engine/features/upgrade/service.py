"""
plan_engine/features/upgrade/service.py

Composition root for the upgrade flow.

One UpgradeContext per account owns the clock, the dismissal cache, the
limit-hit bus and the banner engine, and wires them together:

    bus --(listener)--> recent hits --> engine.decide --> dismissal filter --> UI

The HTTP app keeps an UpgradeContextRegistry that hands out one context per
account id over a shared key-value store.
"""

import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from plan_engine.core.config import Settings, settings as default_settings
from plan_engine.core.errors import ValidationError
from plan_engine.core.metrics import banner_decisions_total
from plan_engine.features.analysis.store import InMemoryRecordStore, RecordStore
from plan_engine.features.analysis.watcher import AnalysisSessionWatcher
from plan_engine.features.banners.engine import BannerDecisionEngine, BannerRules
from plan_engine.features.banners.messages import Translator
from plan_engine.features.dismissals.service import STORAGE_KEY, DismissalCache
from plan_engine.features.dismissals.store import InMemoryKeyValueStore, KeyValueStore
from plan_engine.features.entitlements.service import compute_entitlement
from plan_engine.features.limits.bus import LimitHitBus
from plan_engine.features.plans.service import build_plan_limits
from plan_engine.features.trial.clock import TrialClock
from plan_engine.models.banner import BannerDecision, BannerKind, EngagementMetrics
from plan_engine.models.entitlement import AccountRecord, EntitlementSnapshot, ProjectAggregates
from plan_engine.models.limit_hit import LimitHitEvent

logger = logging.getLogger(__name__)

# Kinds the engine only ever emits with dismissible=False.
NON_DISMISSIBLE_KINDS = frozenset({
    BannerKind.LIMIT_REACHED,
    BannerKind.TRIAL_ENDING,
    BannerKind.TRIAL_VALUE_DEMONSTRATION,
    BannerKind.TRIAL_ENDING_CRITICAL,
})


class UpgradeContext:
    def __init__(
        self,
        cfg: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        clock: Optional[TrialClock] = None,
        record_store: Optional[RecordStore] = None,
        translate: Optional[Translator] = None,
        account_id: Optional[str] = None,
    ):
        self.settings = cfg or default_settings
        self.account_id = account_id
        self.clock = clock or TrialClock()
        self.store = store if store is not None else InMemoryKeyValueStore()
        self.record_store = record_store if record_store is not None else InMemoryRecordStore()
        self.rules = BannerRules.from_settings(self.settings)
        self.limits = build_plan_limits(self.settings)

        self.dismissals = DismissalCache(
            self.store,
            self.clock,
            ttl=timedelta(hours=self.settings.DISMISSAL_TTL_HOURS),
            storage_key=f"{STORAGE_KEY}:{account_id}" if account_id else STORAGE_KEY,
        )
        self.bus = LimitHitBus(self.dismissals, self.clock)
        self.engine = BannerDecisionEngine(self.clock, self.rules, translate)

        self._hits: List[LimitHitEvent] = []
        self._unsubscribe_hits: Optional[Callable[[], None]] = self.bus.add_listener(self._record_hit)

    def _record_hit(self, event: LimitHitEvent) -> None:
        self._hits.append(event)
        self._prune()

    def _prune(self) -> None:
        now = self.clock.now()
        self._hits = [
            hit for hit in self._hits
            if self.clock.within(hit.occurred_at, self.rules.limit_hit_window, now)
        ]

    def recent_limit_hits(self) -> List[LimitHitEvent]:
        """Hits still inside the relevance window, oldest first."""
        self._prune()
        return list(self._hits)

    def compute_entitlement(self, account: AccountRecord, aggregates: ProjectAggregates) -> EntitlementSnapshot:
        return compute_entitlement(account, aggregates, now=self.clock.now(), limits=self.limits)

    def decide(
        self,
        snapshot: EntitlementSnapshot,
        engagement: Optional[EngagementMetrics] = None,
    ) -> Optional[BannerDecision]:
        """Engine winner, before dismissal state is applied."""
        return self.engine.decide(snapshot, self.recent_limit_hits(), engagement)

    def visible_banner(
        self,
        snapshot: EntitlementSnapshot,
        engagement: Optional[EngagementMetrics] = None,
    ) -> Optional[BannerDecision]:
        """The banner to render: the engine winner unless it is dismissible and dismissed."""
        decision = self.decide(snapshot, engagement)
        if decision is None:
            return None
        if decision.dismissible and self.dismissals.is_dismissed(decision.kind):
            logger.debug("banner.suppressed", extra={"banner_kind": decision.kind.value})
            return None
        banner_decisions_total.inc(labels={"kind": decision.kind.value})
        return decision

    def dismiss(self, kind: BannerKind):
        if kind in NON_DISMISSIBLE_KINDS:
            raise ValidationError(f"Banner '{kind.value}' cannot be dismissed")
        return self.dismissals.dismiss(kind)

    def is_dismissed(self, kind: BannerKind) -> bool:
        return self.dismissals.is_dismissed(kind)

    def new_watcher(self) -> AnalysisSessionWatcher:
        return AnalysisSessionWatcher(self.record_store)

    def close(self) -> None:
        if self._unsubscribe_hits is not None:
            self._unsubscribe_hits()
            self._unsubscribe_hits = None
        self._hits = []


class UpgradeContextRegistry:
    """
    Per-account UpgradeContexts sharing one store, clock and record store.

    The store is built on first use, so creating the app does not touch the
    cache database.
    """

    def __init__(
        self,
        cfg: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        clock: Optional[TrialClock] = None,
        record_store: Optional[RecordStore] = None,
        translate: Optional[Translator] = None,
        store_factory: Optional[Callable[[], KeyValueStore]] = None,
    ):
        self.settings = cfg or default_settings
        self.clock = clock or TrialClock()
        self.record_store = record_store if record_store is not None else InMemoryRecordStore()
        self._translate = translate
        self._store = store
        self._store_factory = store_factory or InMemoryKeyValueStore
        self._contexts: Dict[str, UpgradeContext] = {}

    @property
    def store(self) -> KeyValueStore:
        if self._store is None:
            self._store = self._store_factory()
            logger.info("upgrade.store_opened", extra={"store": type(self._store).__name__})
        return self._store

    @property
    def store_ready(self) -> bool:
        return self._store is not None

    def for_account(self, account_id: str) -> UpgradeContext:
        ctx = self._contexts.get(account_id)
        if ctx is None:
            ctx = UpgradeContext(
                self.settings,
                store=self.store,
                clock=self.clock,
                record_store=self.record_store,
                translate=self._translate,
                account_id=account_id,
            )
            self._contexts[account_id] = ctx
        return ctx

    def __len__(self) -> int:
        return len(self._contexts)

    def close(self) -> None:
        contexts, self._contexts = self._contexts, {}
        for ctx in contexts.values():
            ctx.close()
