"""
plan_engine/features/dismissals/service.py

Banner dismissal records with a 24h TTL.

All records for one account live in a single JSON blob under STORAGE_KEY
(or a per-account key derived from it):
    {"welcome_free": {"timestamp": "2025-01-01T00:00:00+00:00"}, ...}

Each public call is a single synchronous read-modify-write, so callers on an
event loop never interleave a partial update. An unparseable blob counts as
"nothing dismissed": banners reappear rather than stay hidden.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from plan_engine.core.config import settings
from plan_engine.core.metrics import dismissals_total
from plan_engine.features.dismissals.store import KeyValueStore
from plan_engine.features.trial.clock import TrialClock
from plan_engine.models.banner import BannerKind, DismissalRecord
from plan_engine.models.timestamps import ensure_utc

logger = logging.getLogger(__name__)

STORAGE_KEY = "upgrade_banner_dismissals"

# Kinds cleared when a limit hit arrives: a fresh limit hit always wins over a
# prior dismissal.
LIMIT_HIT_RESET_KINDS = (BannerKind.LIMIT_REACHED.value, BannerKind.TRIAL_ENDING.value)


def _kind_key(kind) -> str:
    return kind.value if isinstance(kind, BannerKind) else str(kind)


class DismissalCache:
    def __init__(
        self,
        store: KeyValueStore,
        clock: Optional[TrialClock] = None,
        *,
        ttl: Optional[timedelta] = None,
        storage_key: str = STORAGE_KEY,
    ):
        self._store = store
        self._key = storage_key
        self._clock = clock or TrialClock()
        self._ttl = ttl or timedelta(hours=settings.DISMISSAL_TTL_HOURS)

    def _load(self) -> Optional[Dict[str, dict]]:
        """Return the stored records, or None when the blob is corrupt."""
        raw = self._store.get(self._key)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("dismissals.corrupt_blob", extra={"error_code": "unparseable"})
            return None
        if not isinstance(data, dict):
            logger.warning("dismissals.corrupt_blob", extra={"error_code": "not_an_object"})
            return None
        return data

    def _save(self, records: Dict[str, dict]) -> None:
        self._store.set(self._key, json.dumps(records))

    def _dismissed_at(self, entry) -> Optional[datetime]:
        if not isinstance(entry, dict):
            return None
        try:
            return ensure_utc(datetime.fromisoformat(str(entry.get("timestamp"))))
        except ValueError:
            return None

    def get_record(self, kind) -> Optional[DismissalRecord]:
        records = self._load() or {}
        key = _kind_key(kind)
        dismissed_at = self._dismissed_at(records.get(key))
        if dismissed_at is None:
            return None
        return DismissalRecord(banner_kind=key, dismissed_at=dismissed_at)

    def is_dismissed(self, kind) -> bool:
        """True iff a record exists and is younger than the TTL."""
        record = self.get_record(kind)
        if record is None:
            return False
        now = self._clock.now()
        if record.dismissed_at > now:
            # Written under a skewed clock; show the banner.
            logger.warning("dismissals.future_timestamp", extra={"banner_kind": record.banner_kind})
            return False
        return self._clock.within(record.dismissed_at, self._ttl, now)

    def dismiss(self, kind) -> DismissalRecord:
        """Record a dismissal at the current time (upsert)."""
        key = _kind_key(kind)
        now = self._clock.now()
        records = self._load()
        if records is None:
            # Corrupt blob: start over rather than lose the user's dismissal.
            records = {}
        records[key] = {"timestamp": now.isoformat()}
        self._save(records)
        dismissals_total.inc(labels={"kind": key})
        logger.info("dismissals.dismissed", extra={"banner_kind": key})
        return DismissalRecord(banner_kind=key, dismissed_at=now)

    def reset_for_limit_hit(self) -> None:
        """Drop limit_reached and trial_ending dismissals; keep everything else."""
        records = self._load()
        if not records:
            return
        removed = [kind for kind in LIMIT_HIT_RESET_KINDS if records.pop(kind, None) is not None]
        if removed:
            self._save(records)
            logger.info("dismissals.reset_for_limit_hit", extra={"event_type": ",".join(removed)})
