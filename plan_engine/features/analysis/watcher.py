"""
plan_engine/features/analysis/watcher.py

Observes one remote analysis job and fires a completion callback.

Handles:
- Push subscription at analysis-sessions/{job_id} (+ intermediate results)
- Fire-once-per-completion-edge via CompletionLatch
- Job switching without stale deliveries
- Store errors: logged, swallowed, watcher marked disconnected so the caller
  can fall back to polling
"""

import logging
from enum import Enum
from itertools import count
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from plan_engine.core.metrics import analysis_completions_total, analysis_watchers_active
from plan_engine.features.analysis.store import RecordStore
from plan_engine.models.analysis_session import (
    AnalysisSessionState,
    AnalysisStatus,
    DetailedProgress,
    IntermediateResults,
)

logger = logging.getLogger(__name__)

SESSION_PATH = "analysis-sessions/{job_id}"
INTERMEDIATE_PATH = "analysis-sessions/{job_id}/intermediate-results"
DEFAULT_PHASE = "waiting"

CompletionCallback = Callable[[AnalysisSessionState], None]
UpdateCallback = Callable[[AnalysisSessionState], None]


class LatchState(str, Enum):
    NOT_FIRED = "not_fired"
    FIRED = "fired"


class CompletionLatch:
    """NOT_FIRED -> FIRED on a completed status; any other status resets it."""

    def __init__(self):
        self.state = LatchState.NOT_FIRED

    def observe(self, status: AnalysisStatus) -> bool:
        """Feed one status. True exactly when the completion callback should fire."""
        if status != AnalysisStatus.COMPLETED:
            self.state = LatchState.NOT_FIRED
            return False
        if self.state == LatchState.FIRED:
            return False
        self.state = LatchState.FIRED
        return True


class AnalysisSessionWatcher:
    """
    Watches at most one job at a time.

    Every delivery carries the (job_id, token) it was subscribed with and is
    dropped unless both still match, so a late push for a previous job can
    never reach the current callbacks.
    """

    def __init__(self, store: RecordStore):
        self._store = store
        self._tokens = count(1)
        self._token: Optional[int] = None
        self._job_id: Optional[str] = None
        self._latch = CompletionLatch()
        self._unsubscribers = []
        self._on_complete: Optional[CompletionCallback] = None
        self._on_update: Optional[UpdateCallback] = None

        self.is_connected = False
        self.last_state: Optional[AnalysisSessionState] = None
        self.intermediate: IntermediateResults = IntermediateResults()
        self.last_error: Optional[str] = None

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    def watch(
        self,
        job_id: str,
        on_complete: CompletionCallback,
        on_update: Optional[UpdateCallback] = None,
    ) -> Callable[[], None]:
        """Start watching `job_id`, detaching any previous job. Returns unsubscribe."""
        self._detach()

        token = next(self._tokens)
        self._token = token
        self._job_id = job_id
        self._latch = CompletionLatch()
        self._on_complete = on_complete
        self._on_update = on_update
        self.last_state = None
        self.intermediate = IntermediateResults()
        self.last_error = None
        self.is_connected = True
        analysis_watchers_active.inc()
        logger.info("analysis.watch_started", extra={"job_id": job_id})

        subscriptions = (
            (SESSION_PATH, self._on_session),
            (INTERMEDIATE_PATH, self._on_intermediate),
        )
        for path, handler in subscriptions:
            try:
                stop = self._store.subscribe(
                    path.format(job_id=job_id),
                    lambda value, handler=handler: handler(job_id, token, value),
                    lambda exc: self._on_store_error(job_id, token, exc),
                )
            except Exception as exc:
                # Keep the job so the caller can poll it; drop the half-open push side.
                self._on_store_error(job_id, token, exc)
                unsubscribers, self._unsubscribers = self._unsubscribers, []
                for partial in unsubscribers:
                    partial()
                break
            if self._token != token:
                # A callback fired during subscribe already detached this job.
                stop()
                break
            self._unsubscribers.append(stop)

        def unsubscribe() -> None:
            if self._token == token:
                self._detach()

        return unsubscribe

    def _is_current(self, job_id: str, token: int) -> bool:
        return self._token == token and self._job_id == job_id

    def _detach(self) -> None:
        if self._token is None:
            return
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        previous = self._job_id
        self._token = None
        self._job_id = None
        self._on_complete = None
        self._on_update = None
        self.is_connected = False
        for unsubscribe in unsubscribers:
            unsubscribe()
        analysis_watchers_active.dec()
        logger.info("analysis.watch_stopped", extra={"job_id": previous})

    def _on_session(self, job_id: str, token: int, value: Any) -> None:
        if not self._is_current(job_id, token):
            return
        if value is None:
            return
        try:
            state = AnalysisSessionState.model_validate(value)
        except PydanticValidationError:
            logger.warning("analysis.invalid_payload", extra={"job_id": job_id})
            return

        self.last_state = state
        self.is_connected = True
        self.last_error = state.error

        if self._on_update is not None:
            self._invoke(self._on_update, state, job_id, "update")
            # The update callback may have switched jobs or unsubscribed.
            if not self._is_current(job_id, token):
                return

        if self._latch.observe(state.status):
            analysis_completions_total.inc()
            logger.info("analysis.completed", extra={"job_id": job_id})
            if self._on_complete is not None:
                self._invoke(self._on_complete, state, job_id, "complete")

    def _on_intermediate(self, job_id: str, token: int, value: Any) -> None:
        if not self._is_current(job_id, token):
            return
        if value is None:
            self.intermediate = IntermediateResults()
            return
        try:
            self.intermediate = IntermediateResults.model_validate(value)
        except PydanticValidationError:
            logger.warning("analysis.invalid_intermediate_results", extra={"job_id": job_id})

    def _on_store_error(self, job_id: str, token: int, exc: Exception) -> None:
        if not self._is_current(job_id, token):
            return
        self.is_connected = False
        self.last_error = str(exc)
        logger.warning(
            "analysis.store_error",
            extra={"job_id": job_id, "error_code": type(exc).__name__},
        )

    def _invoke(self, callback, state: AnalysisSessionState, job_id: str, which: str) -> None:
        try:
            callback(state)
        except Exception:
            logger.error(
                "analysis.callback_failed",
                exc_info=True,
                extra={"job_id": job_id, "event_type": which},
            )

    # Convenience views over the last delivered state.

    @property
    def is_analyzing(self) -> bool:
        return self.last_state is not None and self.last_state.status == AnalysisStatus.PROCESSING

    @property
    def is_completed(self) -> bool:
        return self.last_state is not None and self.last_state.status == AnalysisStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.last_state is not None and self.last_state.status == AnalysisStatus.FAILED

    @property
    def progress_percentage(self) -> float:
        if self.last_state is None or self.last_state.progress is None:
            return 0.0
        return self.last_state.progress.percentage

    @property
    def current_phase(self) -> str:
        if self.last_state is None or self.last_state.progress is None:
            return DEFAULT_PHASE
        return self.last_state.progress.current_phase or DEFAULT_PHASE

    def detailed_progress(self) -> DetailedProgress:
        return DetailedProgress(
            percentage=self.progress_percentage,
            phase=self.current_phase,
            topics_count=len(self.intermediate.topics),
            insights_count=len(self.intermediate.insights),
        )
