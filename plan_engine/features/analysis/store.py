"""
plan_engine/features/analysis/store.py

Remote reactive record store.

The analysis backend writes job records at string paths
(`analysis-sessions/{job_id}`); observers subscribe to a path and are pushed
every new value. InMemoryRecordStore is the single-process implementation
used by tests and local runs.
"""

import logging
from itertools import count
from typing import Any, Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]
ErrorCallback = Callable[[Exception], None]


class RecordStore(Protocol):
    """Protocol for a push-based remote record store."""

    def subscribe(
        self,
        path: str,
        on_value: ValueCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        """Deliver the current value (if any) and every later write. Returns unsubscribe."""
        ...


class InMemoryRecordStore:
    """
    Path -> value map with per-path subscriber rooms.

    Delivery is synchronous inside set() and fail(). A subscriber that raises
    is logged; the remaining subscribers still receive the value.
    """

    def __init__(self):
        self._values: Dict[str, Any] = {}
        # path -> {token: (on_value, on_error)}
        self._rooms: Dict[str, Dict[int, tuple]] = {}
        self._tokens = count()

    def subscribe(
        self,
        path: str,
        on_value: ValueCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        token = next(self._tokens)
        self._rooms.setdefault(path, {})[token] = (on_value, on_error)
        logger.debug("record_store.subscribed", extra={"path": path})

        def unsubscribe() -> None:
            room = self._rooms.get(path)
            if room is None:
                return
            room.pop(token, None)
            if not room:
                del self._rooms[path]

        if path in self._values:
            self._deliver(path, token, self._values[path])
        return unsubscribe

    def get(self, path: str) -> Any:
        return self._values.get(path)

    def set(self, path: str, value: Any) -> None:
        """Write a value and push it to every subscriber of `path`."""
        self._values[path] = value
        for token in list(self._rooms.get(path, {})):
            self._deliver(path, token, value)

    def fail(self, path: str, error: Exception) -> None:
        """Simulate a transport or permission error on `path`."""
        for token, (_, on_error) in list(self._rooms.get(path, {}).items()):
            if token not in self._rooms.get(path, {}) or on_error is None:
                continue
            on_error(error)

    def subscriber_count(self, path: Optional[str] = None) -> int:
        if path is not None:
            return len(self._rooms.get(path, {}))
        return sum(len(room) for room in self._rooms.values())

    def _deliver(self, path: str, token: int, value: Any) -> None:
        entry = self._rooms.get(path, {}).get(token)
        # Unsubscribed by an earlier callback in this push.
        if entry is None:
            return
        on_value, _ = entry
        try:
            on_value(value)
        except Exception:
            logger.warning("record_store.subscriber_failed", exc_info=True, extra={"path": path})
