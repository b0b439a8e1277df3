from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auditflow.apps.api.deps import AppServices, build_services
from auditflow.apps.api.errors import (
    auditflow_exception_handler,
    http_exception_handler,
    quota_exceeded_exception_handler,
    request_validation_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from auditflow.apps.api.response import API_VERSION, REQUEST_ID_HEADER, get_request_id
from auditflow.apps.api.routes.audits import router as audits_router
from auditflow.apps.api.routes.health import router as health_router
from auditflow.core.config import get_settings
from auditflow.core.errors import AuditFlowError, QuotaExceededError, ValidationError
from auditflow.core.logging import configure_logging


logger = logging.getLogger(__name__)


def create_app(services: AppServices | None = None) -> FastAPI:
    configure_logging()
    settings = get_settings()
    app_services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.services.aclose()

    app = FastAPI(title="AuditFlow API", lifespan=lifespan)
    app.state.services = app_services

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = get_request_id(request)
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_exception_handler(request: Request, exc: RequestValidationError):
        return await request_validation_exception_handler(request, exc)

    @app.exception_handler(ValidationError)
    async def _validation_exception_handler(request: Request, exc: ValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(QuotaExceededError)
    async def _quota_exceeded_exception_handler(request: Request, exc: QuotaExceededError):
        return await quota_exceeded_exception_handler(request, exc)

    @app.exception_handler(AuditFlowError)
    async def _auditflow_exception_handler(request: Request, exc: AuditFlowError):
        return await auditflow_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(audits_router, prefix=f"/{API_VERSION}")
    app.include_router(health_router, prefix=f"/{API_VERSION}")

    return app


app = create_app()
