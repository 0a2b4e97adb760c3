"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantsearch.domain.search.exceptions import SearchError
from tenantsearch.obs.logging import current_request_id
from tenantsearch.settings import settings

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or current_request_id() or "unknown"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(SearchError)
    async def search_exc_handler(request: Request, exc: SearchError):  # type: ignore[override]
        if exc.status_code >= 500:
            logger.error("search_error", extra={"detail": exc.detail, "status": exc.status_code})
        payload = {"detail": exc.detail, "request_id": _request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": _request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {"detail": "validation_error", "errors": jsonable_encoder(exc.errors()), "request_id": _request_id(request)}
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
        logger.error("unhandled_error", exc_info=exc)
        payload = {"detail": "internal_error", "request_id": _request_id(request)}
        if settings.is_dev():
            payload["message"] = str(exc)
        return JSONResponse(status_code=500, content=payload)
