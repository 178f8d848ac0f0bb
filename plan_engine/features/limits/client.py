"""
plan_engine/features/limits/client.py

HTTP client glue that feeds rejected writes into the LimitHitBus.

- build_limit_detecting_client: httpx.AsyncClient whose response hook reports
  every 403 to the bus (the response is still returned to the caller as is)
- with_limit_detection: wrap an async API call so an httpx.HTTPStatusError is
  classified before being re-raised
"""

import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from plan_engine.features.limits.bus import QUOTA_STATUS, LimitHitBus

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_limit_detecting_client(bus: LimitHitBus, **client_kwargs: Any) -> httpx.AsyncClient:
    """
    Create an AsyncClient that reports quota rejections to the bus.

    Extra keyword arguments go to httpx.AsyncClient. Existing response hooks
    are kept and run before the limit check.
    """
    hooks = dict(client_kwargs.pop("event_hooks", None) or {})
    response_hooks = list(hooks.get("response", []))

    async def _detect_limit_hit(response: httpx.Response) -> None:
        if response.status_code != QUOTA_STATUS:
            return
        await bus.classify(response, context=str(response.request.url.path))

    response_hooks.append(_detect_limit_hit)
    hooks["response"] = response_hooks
    return httpx.AsyncClient(event_hooks=hooks, **client_kwargs)


def with_limit_detection(
    bus: LimitHitBus,
    func: Callable[..., Awaitable[T]],
    context: str,
) -> Callable[..., Awaitable[T]]:
    """Classify HTTP status errors raised by `func`, then re-raise them."""

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except httpx.HTTPStatusError as exc:
            event = await bus.classify(exc, context=context)
            if event is not None:
                logger.info(
                    "limit_hit.intercepted",
                    extra={"limit_kind": event.kind.value, "event_type": context},
                )
            raise

    return wrapper
