"""
Operational endpoints: liveness, readiness and Prometheus metrics.
"""

import logging

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from plan_engine.core.metrics import METRICS

logger = logging.getLogger("plan_engine")

root_router = APIRouter(tags=["health"])

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz(request: Request):
    """Readiness check: the dismissal cache can be read."""
    registry = request.app.state.upgrade_contexts
    try:
        registry.store.get("__readyz__")
    except SQLAlchemyError as e:
        logger.error(f"[readyz] cache unreachable: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "cache unreachable"})
    return {"status": "ok"}


@root_router.get("/metrics")
def metrics_endpoint():
    return Response(content=METRICS.export_prometheus(), media_type=PROMETHEUS_CONTENT_TYPE)
