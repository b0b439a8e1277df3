from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from auditflow.apps.api.deps import AppServices, get_services
from auditflow.persistence.db import pool_stats
from auditflow.services.telemetry import counters_snapshot

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    store: str
    dispatch_mode: str
    pending_dispatches: int
    counters: dict[str, int]
    pool: dict[str, Any] | None = None


@router.get("/health", response_model=HealthResponse)
async def health(services: AppServices = Depends(get_services)) -> HealthResponse:
    # Report wiring only; reachability of the store is left to external probes.
    engine = getattr(services.store, "engine", None)
    return HealthResponse(
        status="ok",
        store="configured" if services.store is not None else "not_configured",
        dispatch_mode=services.settings.dispatch_mode,
        pending_dispatches=services.dispatcher.pending,
        counters=counters_snapshot(),
        pool=pool_stats(engine) if engine is not None else None,
    )
