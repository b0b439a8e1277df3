from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auditflow.apps.api.response import (
    REQUEST_ID_HEADER,
    error_body,
    get_request_id,
    internal_error_body,
)
from auditflow.core.errors import AuditFlowError, QuotaExceededError, ValidationError


logger = logging.getLogger(__name__)


def _json(request: Request, content: dict[str, Any], status_code: int, headers=None) -> JSONResponse:
    response = JSONResponse(content=content, status_code=status_code, headers=headers)
    response.headers.setdefault(REQUEST_ID_HEADER, get_request_id(request))
    return response


def _field_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # Keep only JSON-safe keys; pydantic ctx entries may hold exception objects.
    return [
        {
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in errors
    ]


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _json(request, error_body(detail), exc.status_code, exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _json(request, error_body(detail), exc.status_code, exc.headers)


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Schema failures on the request body are reported as 400 with field details.
    return _json(
        request,
        error_body("Invalid data", details=_field_errors(list(exc.errors()))),
        400,
    )


async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _json(request, error_body(exc.message, details=_field_errors(exc.errors)), 400)


async def quota_exceeded_exception_handler(
    request: Request, exc: QuotaExceededError
) -> JSONResponse:
    logger.info(
        "quota_exceeded path=%s used=%s requested=%s quota=%s",
        request.url.path,
        exc.used,
        exc.requested,
        exc.quota,
    )
    return _json(request, error_body("Monthly quota exceeded", **exc.to_dict()), 429)


async def auditflow_exception_handler(request: Request, exc: AuditFlowError) -> JSONResponse:
    # Domain failures that reach the edge (store, job creation) are internal errors.
    logger.error(
        "request_failed path=%s request_id=%s error=%s",
        request.url.path,
        get_request_id(request),
        type(exc).__name__,
        exc_info=exc,
    )
    return _json(request, internal_error_body(), 500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error body.
    logger.error(
        "unhandled_exception path=%s request_id=%s",
        request.url.path,
        get_request_id(request),
        exc_info=exc,
    )
    return _json(request, internal_error_body(), 500)
