"""Tests for the analysis job watcher and its completion latch."""

import logging

import pytest

from plan_engine.core.metrics import analysis_completions_total, analysis_watchers_active
from plan_engine.features.analysis.store import InMemoryRecordStore
from plan_engine.features.analysis.watcher import (
    AnalysisSessionWatcher,
    CompletionLatch,
    LatchState,
)
from plan_engine.models.analysis_session import AnalysisStatus


def _record(status, percentage=0.0, phase=None):
    progress = {"percentage": percentage}
    if phase:
        progress["currentPhase"] = phase
    return {"status": status, "progress": progress, "startedAt": 1736942400000}


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def watcher(store):
    return AnalysisSessionWatcher(store)


def test_latch_fires_once_per_completion_edge():
    latch = CompletionLatch()
    fired = [latch.observe(s) for s in (
        AnalysisStatus.PENDING,
        AnalysisStatus.COMPLETED,
        AnalysisStatus.COMPLETED,
        AnalysisStatus.PROCESSING,
        AnalysisStatus.COMPLETED,
    )]
    assert fired == [False, True, False, False, True]
    assert latch.state == LatchState.FIRED


def test_completion_fires_twice_across_a_rerun(store, watcher):
    completions = []
    watcher.watch("job-1", completions.append)

    for status in ("pending", "processing", "completed", "processing", "completed"):
        store.set("analysis-sessions/job-1", _record(status))

    assert len(completions) == 2
    assert all(state.status == AnalysisStatus.COMPLETED for state in completions)
    assert analysis_completions_total.value() == 2


def test_duplicate_completed_pushes_fire_once(store, watcher):
    completions = []
    watcher.watch("job-1", completions.append)

    store.set("analysis-sessions/job-1", _record("completed", 100))
    store.set("analysis-sessions/job-1", _record("completed", 100))

    assert len(completions) == 1
    # Still observing after completion
    assert watcher.is_connected is True
    assert watcher.is_completed is True


def test_already_completed_job_fires_on_subscribe(store, watcher):
    store.set("analysis-sessions/job-9", _record("completed", 100))
    completions = []

    watcher.watch("job-9", completions.append)

    assert len(completions) == 1


def test_switching_jobs_drops_stale_deliveries(store, watcher):
    first, second = [], []
    watcher.watch("job-A", first.append)
    watcher.watch("job-B", second.append)

    store.set("analysis-sessions/job-A", _record("completed"))
    assert first == []
    assert second == []
    assert store.subscriber_count("analysis-sessions/job-A") == 0

    store.set("analysis-sessions/job-B", _record("completed"))
    assert len(second) == 1
    assert watcher.job_id == "job-B"


def test_switch_starts_a_fresh_latch(store, watcher):
    completions = []
    store.set("analysis-sessions/job-A", _record("completed"))
    store.set("analysis-sessions/job-B", _record("completed"))

    watcher.watch("job-A", completions.append)
    watcher.watch("job-B", completions.append)

    assert len(completions) == 2


def test_unsubscribe_stops_callbacks_and_is_idempotent(store, watcher):
    completions = []
    unsubscribe = watcher.watch("job-1", completions.append)
    assert analysis_watchers_active.value() == 1

    unsubscribe()
    unsubscribe()

    store.set("analysis-sessions/job-1", _record("completed"))
    assert completions == []
    assert store.subscriber_count() == 0
    assert analysis_watchers_active.value() == 0
    assert watcher.is_connected is False


def test_stale_unsubscribe_does_not_detach_current_job(store, watcher):
    completions = []
    stale = watcher.watch("job-A", completions.append)
    watcher.watch("job-B", completions.append)

    stale()

    store.set("analysis-sessions/job-B", _record("completed"))
    assert len(completions) == 1


def test_store_errors_are_swallowed(store, watcher, caplog):
    watcher.watch("job-1", lambda state: None)

    with caplog.at_level(logging.WARNING):
        store.fail("analysis-sessions/job-1", PermissionError("permission denied"))

    assert watcher.is_connected is False
    assert watcher.last_error == "permission denied"
    assert any(r.getMessage() == "analysis.store_error" for r in caplog.records)

    # A later good push reconnects.
    store.set("analysis-sessions/job-1", _record("processing", 40))
    assert watcher.is_connected is True


class DeniedStore(InMemoryRecordStore):
    """Rejects subscriptions under the given path suffix."""

    def __init__(self, denied_suffix=""):
        super().__init__()
        self.denied_suffix = denied_suffix

    def subscribe(self, path, on_value, on_error=None):
        if path.endswith(self.denied_suffix):
            raise PermissionError(f"permission_denied: {path}")
        return super().subscribe(path, on_value, on_error)


def test_rejected_subscribe_is_swallowed(caplog):
    watcher = AnalysisSessionWatcher(DeniedStore())

    with caplog.at_level(logging.WARNING):
        unsubscribe = watcher.watch("job-1", lambda state: None)

    assert watcher.is_connected is False
    assert watcher.last_error == "permission_denied: analysis-sessions/job-1"
    assert watcher.job_id == "job-1"
    assert any(r.getMessage() == "analysis.store_error" for r in caplog.records)

    unsubscribe()
    assert analysis_watchers_active.value() == 0
    assert watcher.job_id is None


def test_partially_rejected_subscribe_releases_the_open_subscription():
    store = DeniedStore(denied_suffix="/intermediate-results")
    store.set("analysis-sessions/job-1", _record("processing", 10))
    watcher = AnalysisSessionWatcher(store)

    watcher.watch("job-1", lambda state: None)

    assert watcher.is_connected is False
    assert store.subscriber_count() == 0


def test_invalid_payload_is_ignored(store, watcher):
    updates = []
    watcher.watch("job-1", lambda state: None, on_update=updates.append)

    store.set("analysis-sessions/job-1", {"status": "exploded"})
    store.set("analysis-sessions/job-1", "not a record")

    assert updates == []
    assert watcher.last_state is None


def test_failing_callback_is_logged(store, watcher, caplog):
    def boom(state):
        raise RuntimeError("refresh failed")

    watcher.watch("job-1", boom)
    with caplog.at_level(logging.ERROR):
        store.set("analysis-sessions/job-1", _record("completed"))

    assert any(r.getMessage() == "analysis.callback_failed" for r in caplog.records)


def test_update_callback_can_switch_jobs(store, watcher):
    completions = []

    def on_update(state):
        if state.status == AnalysisStatus.COMPLETED:
            watcher.watch("job-2", completions.append)

    watcher.watch("job-1", completions.append, on_update=on_update)
    store.set("analysis-sessions/job-1", _record("completed"))

    assert completions == []
    assert watcher.job_id == "job-2"


def test_progress_helpers(store, watcher):
    watcher.watch("job-1", lambda state: None)
    assert watcher.current_phase == "waiting"
    assert watcher.progress_percentage == 0.0

    store.set("analysis-sessions/job-1", _record("processing", 55.5, phase="clustering"))
    store.set("analysis-sessions/job-1/intermediate-results", {
        "topics": {"t1": {"id": "t1", "name": "Parking"}, "t2": {"id": "t2", "name": "Noise"}},
        "insights": {"i1": {"id": "i1", "title": "Evenings are busiest"}},
    })

    assert watcher.is_analyzing is True
    assert watcher.current_phase == "clustering"
    detail = watcher.detailed_progress()
    assert detail.percentage == 55.5
    assert detail.topics_count == 2
    assert detail.insights_count == 1
    assert detail.has_intermediate_results is True


def test_failed_job_is_reported(store, watcher):
    completions = []
    watcher.watch("job-1", completions.append)
    store.set("analysis-sessions/job-1", {"status": "failed", "error": "batch 3 timed out"})

    assert watcher.is_failed is True
    assert watcher.last_error == "batch 3 timed out"
    assert completions == []
