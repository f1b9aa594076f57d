"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from creditgate.credit.domain.errors import (
    ActorNotFound,
    CreditEngineError,
    EvaluationNotFound,
    InvalidTransition,
    MalformedScopeConfig,
    StoreUnavailable,
    TransientStoreError,
)
from creditgate.obs.logging import current_request_id

_STATUS_BY_ERROR: tuple[tuple[type[CreditEngineError], int, str], ...] = (
    (EvaluationNotFound, 404, "evaluation_not_found"),
    (ActorNotFound, 404, "actor_not_found"),
    (InvalidTransition, 409, "invalid_transition"),
    (MalformedScopeConfig, 422, "malformed_scope_config"),
    (TransientStoreError, 503, "store_busy"),
    (StoreUnavailable, 503, "store_unavailable"),
)


def _error_status(exc: CreditEngineError) -> tuple[int, str]:
    for error_type, status_code, detail in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code, detail
    return 500, "credit_engine_error"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": current_request_id()}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": current_request_id()}
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(CreditEngineError)
    async def credit_exc_handler(request: Request, exc: CreditEngineError):  # type: ignore[override]
        status_code, detail = _error_status(exc)
        payload: dict = {"detail": detail, "request_id": current_request_id()}
        if isinstance(exc, MalformedScopeConfig):
            payload["problems"] = list(exc.problems)
        return JSONResponse(status_code=status_code, content=payload)
