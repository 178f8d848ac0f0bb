"""Error normalization and handlers."""

import logging
from enum import Enum
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from plan_engine.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class LimitCode(str, Enum):
    """Structured error codes the backend attaches to quota rejections."""
    PROJECT_LIMIT_EXCEEDED = "PROJECT_LIMIT_EXCEEDED"
    ANALYSIS_LIMIT_EXCEEDED = "ANALYSIS_LIMIT_EXCEEDED"
    OPINION_LIMIT_EXCEEDED = "OPINION_LIMIT_EXCEEDED"


class QuotaExceededError(AppError):
    """A write rejected because the account's plan quota is used up.

    Rendered on the wire as the backend quota body:
    ``{"code": ..., "message": ..., "details": {"currentUsage": n, "limit": m}}``
    """
    code = "quota_exceeded"
    status_code = 403

    def __init__(
        self,
        message: str,
        *,
        limit_code: LimitCode,
        current_usage: Optional[int] = None,
        limit: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message, code=limit_code.value, request_id=request_id)
        self.limit_code = limit_code
        self.current_usage = current_usage
        self.limit = limit

    def to_payload(self) -> dict:
        return {
            "code": self.limit_code.value,
            "message": self.message,
            "details": {"currentUsage": self.current_usage, "limit": self.limit},
        }


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    if isinstance(exc, QuotaExceededError):
        payload = exc.to_payload()
        payload["error"] = {"code": exc.code, "message": exc.message, "request_id": rid}
    else:
        payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("plan_engine")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("plan_engine")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    payload = _error_payload("validation_error", "Invalid request body", rid)
    payload["errors"] = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger = logging.getLogger("plan_engine")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "validation_error", "status": 422})
    response = JSONResponse(status_code=422, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("plan_engine")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
