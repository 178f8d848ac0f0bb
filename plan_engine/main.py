import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError

from plan_engine import __version__
from plan_engine.api import health, plan
from plan_engine.core.config import Settings, settings, validate_config
from plan_engine.core.database import build_engine, get_database_url
from plan_engine.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from plan_engine.core.logging import configure_logging, log_event
from plan_engine.core.middleware.metrics import MetricsMiddleware
from plan_engine.core.middleware.request_id import RequestIdMiddleware
from plan_engine.features.analysis.store import RecordStore
from plan_engine.features.dismissals.store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from plan_engine.features.trial.clock import TrialClock
from plan_engine.features.upgrade.service import UpgradeContextRegistry


def _default_store(cfg: Settings) -> KeyValueStore:
    url = get_database_url(cfg)
    if not url:
        return InMemoryKeyValueStore()
    return SqlKeyValueStore(build_engine(url))


def create_app(
    cfg: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    clock: Optional[TrialClock] = None,
    record_store: Optional[RecordStore] = None,
) -> FastAPI:
    """
    Build the plan engine app.

    Args:
        cfg: Settings override (defaults to the module-level settings)
        store: Dismissal cache backend (defaults to SQL on CACHE_DATABASE_URL,
            opened on the first request that needs it)
        clock: Time source shared by every component
        record_store: Remote analysis record store

    Returns:
        FastAPI app with app.state.upgrade_contexts wired
    """
    cfg = cfg or settings
    configure_logging(cfg.ENV)
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg)

    contexts = UpgradeContextRegistry(
        cfg,
        store=store,
        clock=clock,
        record_store=record_store,
        store_factory=lambda: _default_store(cfg),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_event("info", "app.startup", extra={"env": cfg.ENV, "version": __version__})
        try:
            yield
        finally:
            contexts.close()
            logging.getLogger("plan_engine").info("app.shutdown")

    app = FastAPI(title="Plan Engine", version=__version__, lifespan=lifespan)
    app.state.upgrade_contexts = contexts

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(plan.router)
    app.include_router(health.root_router)

    return app


app = create_app()
