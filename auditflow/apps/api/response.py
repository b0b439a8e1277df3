from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"


class CamelModel(BaseModel):
    # Serialize snake_case fields as camelCase for browser clients.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def get_request_id(request: Request) -> str:
    # Reuse the caller-supplied id so gateway and service logs line up.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get(REQUEST_ID_HEADER)
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def error_body(error: str, **fields: Any) -> dict[str, Any]:
    return {"error": error, **fields}


def internal_error_body() -> dict[str, Any]:
    # Never include exception text; the request id links the response to server logs.
    return {
        "error": "Internal server error",
        "success": False,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
