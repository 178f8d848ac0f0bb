"""
plan_engine/features/limits/bus.py

Quota-exceeded detection and fan-out.

Handles:
- Classifying rejected backend writes (HTTP 403 + limit code) into LimitHitEvents
- Resetting limit-related banner dismissals on every classified hit
- Notifying in-process listeners in registration order

The bus is owned by the composition root (UpgradeContext) and injected where
needed. Listeners live only in memory for the current session; late
subscribers do not get replays.
"""

import json
import logging
from itertools import count
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import httpx

from plan_engine.core.errors import LimitCode
from plan_engine.core.metrics import limit_hits_total
from plan_engine.features.dismissals.service import DismissalCache
from plan_engine.features.trial.clock import TrialClock
from plan_engine.models.limit_hit import LimitHitEvent, LimitHitKind

logger = logging.getLogger(__name__)

LimitHitListener = Callable[[LimitHitEvent], None]

QUOTA_STATUS = 403

LIMIT_CODE_KINDS: Dict[str, LimitHitKind] = {
    LimitCode.PROJECT_LIMIT_EXCEEDED.value: LimitHitKind.PROJECT_LIMIT,
    LimitCode.ANALYSIS_LIMIT_EXCEEDED.value: LimitHitKind.ANALYSIS_LIMIT,
    LimitCode.OPINION_LIMIT_EXCEEDED.value: LimitHitKind.OPINION_LIMIT,
}

LIMIT_CONTEXTS: Dict[LimitHitKind, str] = {
    LimitHitKind.PROJECT_LIMIT: "Project creation limit reached",
    LimitHitKind.ANALYSIS_LIMIT: "AI analysis limit reached",
    LimitHitKind.OPINION_LIMIT: "Opinion collection limit reached",
}

# Fallback heuristic for 403s without a known code: quota language in the
# message, with the request context naming what was being written.
_QUOTA_WORDS = ("limit", "quota", "制限", "上限")
_CONTEXT_WORDS: Tuple[Tuple[LimitHitKind, Tuple[str, ...]], ...] = (
    (LimitHitKind.PROJECT_LIMIT, ("project", "プロジェクト")),
    (LimitHitKind.ANALYSIS_LIMIT, ("analysis", "analyses", "分析")),
    (LimitHitKind.OPINION_LIMIT, ("opinion", "意見")),
)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None


def _kind_from_message(message: str, context: str) -> Optional[LimitHitKind]:
    lowered = message.lower()
    if not any(word in lowered for word in _QUOTA_WORDS):
        return None
    ctx = context.lower()
    for kind, words in _CONTEXT_WORDS:
        if any(word in ctx for word in words):
            return kind
    return None


def classify_payload(
    status: Optional[int],
    body: Any,
    *,
    context: str = "api_request",
    clock: Optional[TrialClock] = None,
) -> Optional[LimitHitEvent]:
    """
    Classify a rejected response into a LimitHitEvent.

    Pure and synchronous: no side effects, never raises. Anything other than
    a 403 carrying a known limit code (or quota language in the message for a
    recognisable request context) yields None.
    """
    if status != QUOTA_STATUS or not isinstance(body, Mapping):
        return None

    code = body.get("code")
    raw_message = body.get("message")
    message = raw_message if isinstance(raw_message, str) else ""

    kind = LIMIT_CODE_KINDS.get(code) if isinstance(code, str) else None
    if kind is None and message:
        kind = _kind_from_message(message, context or "")
    if kind is None:
        return None

    details = body.get("details")
    if not isinstance(details, Mapping):
        details = {}

    clock = clock or TrialClock()
    summary = LIMIT_CONTEXTS[kind]
    return LimitHitEvent(
        kind=kind,
        occurred_at=clock.now(),
        context=summary,
        message=message or summary,
        current_usage=_as_int(details.get("currentUsage")),
        limit=_as_int(details.get("limit")),
    )


async def _read_json(response: httpx.Response) -> Any:
    try:
        await response.aread()
    except httpx.HTTPError:
        return None
    except RuntimeError:
        # Body was already consumed or streamed; fall back to what is cached.
        pass
    try:
        return response.json()
    except (ValueError, UnicodeDecodeError, httpx.ResponseNotRead):
        return None


async def extract_status_and_body(error: Any) -> Tuple[Optional[int], Any]:
    """
    Pull (status, parsed body) from what an API call raised or returned.

    Accepts an httpx.Response, an httpx.HTTPStatusError, or a mapping shaped
    like {"status": 403, "data": {...}} (optionally nested under "response").
    """
    if isinstance(error, httpx.HTTPStatusError):
        error = error.response
    if isinstance(error, httpx.Response):
        return error.status_code, await _read_json(error)
    if isinstance(error, Mapping):
        inner = error.get("response", error)
        if not isinstance(inner, Mapping):
            return None, None
        status = _as_int(inner.get("status", inner.get("status_code")))
        body = inner.get("data", inner.get("body"))
        if isinstance(body, (str, bytes)):
            try:
                body = json.loads(body)
            except (TypeError, ValueError):
                body = None
        return status, body
    return None, None


class LimitHitBus:
    """In-process pub/sub for quota-exceeded events."""

    def __init__(self, dismissals: DismissalCache, clock: Optional[TrialClock] = None):
        self._dismissals = dismissals
        self._clock = clock or TrialClock()
        # token -> listener; dict preserves registration order
        self._listeners: Dict[int, LimitHitListener] = {}
        self._tokens = count()

    def add_listener(self, callback: LimitHitListener) -> Callable[[], None]:
        """Register a listener. Returns an idempotent unsubscribe function."""
        token = next(self._tokens)
        self._listeners[token] = callback

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def classify(self, error: Any, context: str = "api_request") -> Optional[LimitHitEvent]:
        """
        Classify an API error and broadcast it when it is a limit hit.

        Body parsing is the only suspension point. Classification, the
        dismissal reset and listener notification then run as one
        synchronous step.
        """
        try:
            status, body = await extract_status_and_body(error)
        except Exception:
            logger.warning("limit_hit.parse_failed", exc_info=True, extra={"event_type": context})
            return None
        return self.report(status, body, context=context)

    def report(self, status: Optional[int], body: Any, *, context: str = "api_request") -> Optional[LimitHitEvent]:
        """Synchronous classify + publish for callers that already parsed the body."""
        event = classify_payload(status, body, context=context, clock=self._clock)
        if event is None:
            return None

        logger.info(
            "limit_hit.detected",
            extra={"limit_kind": event.kind.value, "event_type": context},
        )
        limit_hits_total.inc(labels={"kind": event.kind.value})
        self._dismissals.reset_for_limit_hit()
        self.publish(event)
        return event

    def publish(self, event: LimitHitEvent) -> None:
        """Deliver to current listeners in registration order, isolating failures."""
        for token, listener in list(self._listeners.items()):
            # Skip listeners removed by an earlier listener during this publish.
            if token not in self._listeners:
                continue
            try:
                listener(event)
            except Exception:
                logger.warning(
                    "limit_hit.listener_failed",
                    exc_info=True,
                    extra={"limit_kind": event.kind.value},
                )
