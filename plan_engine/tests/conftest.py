# plan_engine/tests/conftest.py
import os

import pytest

# Apps built without an explicit store open an in-memory cache, not the file.
os.environ.setdefault("TEST_CACHE_DATABASE_URL", "sqlite://")

from plan_engine.core.metrics import METRICS  # noqa: E402
from plan_engine.features.dismissals.service import DismissalCache  # noqa: E402
from plan_engine.features.dismissals.store import InMemoryKeyValueStore  # noqa: E402
from plan_engine.features.limits.bus import LimitHitBus  # noqa: E402
from plan_engine.features.trial.clock import TrialClock  # noqa: E402
from plan_engine.tests.fakes import FakeClock  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def clock(fake_clock):
    return TrialClock(now_fn=fake_clock)


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def dismissals(kv_store, clock):
    return DismissalCache(kv_store, clock)


@pytest.fixture
def bus(dismissals, clock):
    return LimitHitBus(dismissals, clock)
