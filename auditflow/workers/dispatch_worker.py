from __future__ import annotations

import logging

from arq import Retry
from arq.connections import RedisSettings

from auditflow.core.config import get_settings
from auditflow.core.logging import configure_logging
from auditflow.services.dispatch import WorkflowEvent, build_n8n_client
from auditflow.services.resilience import is_retryable


logger = logging.getLogger(__name__)


async def send_workflow_event(ctx, payload: dict) -> bool:
    # Payloads crossed redis as plain dicts; re-validate before sending.
    event = WorkflowEvent.model_validate(payload)
    client = ctx.get("n8n_client")
    if client is None:
        logger.info(
            "workflow_dispatch_simulated kind=%s correlation_id=%s",
            event.kind,
            event.correlation_id,
        )
        return False
    attempt = ctx.get("job_try", 1)
    settings = get_settings()
    try:
        await client.send(event)
    except Exception as exc:  # noqa: BLE001 - decide between retry and drop
        if is_retryable(exc) and attempt < settings.dispatch_max_retries:
            # Back off linearly between arq retries.
            raise Retry(defer=attempt * 5) from exc
        logger.error(
            "workflow_dispatch_dropped kind=%s correlation_id=%s attempt=%s",
            event.kind,
            event.correlation_id,
            attempt,
            exc_info=exc,
        )
        return False
    return True


async def _startup(ctx) -> None:
    configure_logging()
    ctx["n8n_client"] = build_n8n_client(get_settings())


async def _shutdown(ctx) -> None:
    ctx.pop("n8n_client", None)


class WorkerSettings:
    # Run with: arq auditflow.workers.dispatch_worker.WorkerSettings
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.dispatch_queue_name
    max_tries = settings.dispatch_max_retries
    functions = [send_workflow_event]
    on_startup = _startup
    on_shutdown = _shutdown
