"""HTTP client glue: 403s from the backend feed the limit-hit bus."""

import httpx
import pytest

from plan_engine.features.limits.client import build_limit_detecting_client, with_limit_detection
from plan_engine.models.limit_hit import LimitHitKind


def _backend(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/projects" and request.method == "POST":
        return httpx.Response(403, json={
            "code": "PROJECT_LIMIT_EXCEEDED",
            "message": "Project limit reached",
            "details": {"currentUsage": 1, "limit": 1},
        })
    if request.url.path == "/api/private":
        return httpx.Response(403, json={"code": "FORBIDDEN", "message": "no access"})
    return httpx.Response(200, json={"ok": True})


@pytest.mark.asyncio
async def test_client_reports_quota_rejections(bus):
    seen = []
    bus.add_listener(seen.append)

    async with build_limit_detecting_client(bus, transport=httpx.MockTransport(_backend), base_url="https://api.test") as client:
        ok = await client.get("/api/projects")
        rejected = await client.post("/api/projects", json={"name": "second"})

    assert ok.status_code == 200
    assert rejected.status_code == 403
    # Body is still readable by the caller after the hook consumed it.
    assert rejected.json()["code"] == "PROJECT_LIMIT_EXCEEDED"
    assert [e.kind for e in seen] == [LimitHitKind.PROJECT_LIMIT]
    assert seen[0].current_usage == 1


@pytest.mark.asyncio
async def test_client_ignores_plain_forbidden(bus):
    seen = []
    bus.add_listener(seen.append)

    async with build_limit_detecting_client(bus, transport=httpx.MockTransport(_backend), base_url="https://api.test") as client:
        response = await client.get("/api/private")

    assert response.status_code == 403
    assert seen == []


@pytest.mark.asyncio
async def test_client_keeps_existing_hooks(bus):
    order = []

    async def existing(response):
        order.append("existing")

    bus.add_listener(lambda e: order.append("bus"))

    async with build_limit_detecting_client(
        bus,
        transport=httpx.MockTransport(_backend),
        base_url="https://api.test",
        event_hooks={"response": [existing]},
    ) as client:
        await client.post("/api/projects")

    assert order == ["existing", "bus"]


@pytest.mark.asyncio
async def test_with_limit_detection_classifies_and_reraises(bus):
    seen = []
    bus.add_listener(seen.append)

    async def create_analysis():
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(403, json={
            "code": "ANALYSIS_LIMIT_EXCEEDED",
            "message": "Analysis limit reached",
        })), base_url="https://api.test") as client:
            response = await client.post("/api/analyses")
            response.raise_for_status()
            return response.json()

    guarded = with_limit_detection(bus, create_analysis, context="analysis")

    with pytest.raises(httpx.HTTPStatusError):
        await guarded()

    assert [e.kind for e in seen] == [LimitHitKind.ANALYSIS_LIMIT]


@pytest.mark.asyncio
async def test_with_limit_detection_passes_results_through(bus):
    async def fine(value):
        return value * 2

    guarded = with_limit_detection(bus, fine, context="noop")
    assert await guarded(21) == 42
