from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import hashlib
import hmac
import json
import logging
from typing import Any, Awaitable, Callable, Literal

import httpx
from arq import create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel

from auditflow.core.config import Settings, get_settings
from auditflow.core.errors import DispatchConfigError
from auditflow.services.resilience import RetryPolicy, default_retry_policy, retry_async
from auditflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

DISPATCH_MODE_BACKGROUND = "background"
DISPATCH_MODE_QUEUE = "queue"
DISPATCH_MODE_DISABLED = "disabled"

DELIVERY_METHOD = "dashboard"

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()


class WorkflowEvent(BaseModel):
    # Queue-safe description of one workflow trigger.
    kind: Literal["single", "batch"]
    correlation_id: str
    body: dict[str, Any]


def single_audit_event(
    *,
    url: str,
    email: str,
    user_id: str,
    org_slug: str,
    correlation_id: str,
) -> WorkflowEvent:
    return WorkflowEvent(
        kind="single",
        correlation_id=correlation_id,
        body={
            "url": url,
            "email": email,
            "user_id": user_id,
            "org_slug": org_slug,
            "correlation_id": correlation_id,
            "delivery_method": DELIVERY_METHOD,
        },
    )


def batch_audit_event(
    *,
    csv_data: str,
    user_id: str,
    org_slug: str,
    correlation_id: str,
    batch_name: str | None = None,
    now: datetime | None = None,
) -> WorkflowEvent:
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    return WorkflowEvent(
        kind="batch",
        correlation_id=correlation_id,
        body={
            "user_id": user_id,
            "csv_data": csv_data,
            "batch_name": batch_name or f"Batch {timestamp}",
            "org_slug": org_slug,
            "correlation_id": correlation_id,
            "delivery_method": DELIVERY_METHOD,
        },
    )


def webhook_signature(secret: str, payload: bytes) -> str:
    # Compute HMAC SHA256 signature for workflow webhook payloads.
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


class N8nClient:
    def __init__(
        self,
        base_url: str | None,
        webhook_secret: str | None,
        *,
        single_path: str = "/webhook/formulaire-offre-1",
        batch_path: str = "/webhook/batch-upload",
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise DispatchConfigError("N8N_BASE_URL is required")
        if not webhook_secret:
            raise DispatchConfigError("N8N_WEBHOOK_SECRET is required")
        self._base_url = base_url.rstrip("/")
        self._secret = webhook_secret
        self._paths = {"single": single_path, "batch": batch_path}
        self._retry_policy = retry_policy
        # Injected transports let tests capture requests without a network.
        self._transport = transport

    def url_for(self, kind: str) -> str:
        return f"{self._base_url}{self._paths[kind]}"

    def sign(self, body: bytes) -> str:
        return webhook_signature(self._secret, body)

    async def send(self, event: WorkflowEvent) -> Any:
        body = json.dumps(event.body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-N8N-Signature": f"sha256={self.sign(body)}",
            "X-Correlation-ID": event.correlation_id,
        }
        url = self.url_for(event.kind)
        policy = self._retry_policy or default_retry_policy()

        async def _post() -> httpx.Response:
            async with httpx.AsyncClient(
                timeout=policy.timeout_s, transport=self._transport
            ) as client:
                response = await client.post(url, content=body, headers=headers)
                response.raise_for_status()
                return response

        response = await retry_async(_post, policy=policy, operation=f"n8n_{event.kind}")
        try:
            return response.json()
        except ValueError:
            return None


def build_n8n_client(settings: Settings) -> N8nClient | None:
    # Unconfigured engines fall back to logged, simulated dispatches.
    if not settings.n8n_base_url or not settings.n8n_webhook_secret:
        logger.warning("workflow_client_not_configured")
        return None
    return N8nClient(
        settings.n8n_base_url,
        settings.n8n_webhook_secret,
        single_path=settings.n8n_single_path,
        batch_path=settings.n8n_batch_path,
    )


async def get_redis_pool():
    # One arq pool per event loop, created lazily on first enqueue.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        # A pool bound to another loop cannot be reused.
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.dispatch_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


async def enqueue_workflow_event(event: WorkflowEvent) -> None:
    # Reuse the correlation id as the job id so duplicate enqueues collapse.
    settings = get_settings()
    redis = await get_redis_pool()
    await redis.enqueue_job(
        "send_workflow_event",
        event.model_dump(),
        _job_id=f"{event.kind}:{event.correlation_id}",
        _queue_name=settings.dispatch_queue_name,
    )


async def close_redis_pool() -> None:
    global _redis_pool, _redis_pool_loop
    if _redis_pool is None:
        return
    pool, _redis_pool, _redis_pool_loop = _redis_pool, None, None
    # redis-py 5 renamed close() to aclose().
    closer = getattr(pool, "aclose", None) or pool.close
    await closer()


class WorkflowDispatcher:
    def __init__(
        self,
        client: N8nClient | None,
        *,
        mode: str = DISPATCH_MODE_BACKGROUND,
        enqueue: Callable[[WorkflowEvent], Awaitable[None]] | None = None,
    ) -> None:
        self._client = client
        self._mode = mode.lower()
        self._enqueue = enqueue or enqueue_workflow_event
        # Hold strong references so in-flight tasks are not garbage collected.
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, event: WorkflowEvent) -> None:
        # Schedule delivery and return immediately; outcomes are only logged.
        if self._mode == DISPATCH_MODE_QUEUE:
            delivery = self._enqueue(event)
        elif self._mode == DISPATCH_MODE_DISABLED or self._client is None:
            logger.info(
                "workflow_dispatch_simulated kind=%s correlation_id=%s body=%s",
                event.kind,
                event.correlation_id,
                {key: value for key, value in event.body.items() if key != "csv_data"},
            )
            return
        else:
            delivery = self._client.send(event)
        task = asyncio.create_task(self._deliver(event, delivery))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        # Wait for in-flight deliveries during shutdown and in tests.
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._mode == DISPATCH_MODE_QUEUE:
            await close_redis_pool()

    async def _deliver(self, event: WorkflowEvent, delivery: Awaitable[Any]) -> None:
        try:
            await delivery
        except Exception as exc:  # noqa: BLE001 - dispatch failures are non-fatal
            increment_counter("workflow_dispatch_failures_total")
            logger.warning(
                "workflow_dispatch_failed kind=%s correlation_id=%s",
                event.kind,
                event.correlation_id,
                exc_info=exc,
            )
            return
        increment_counter("workflow_dispatch_sent_total")
        logger.info(
            "workflow_dispatch_sent kind=%s correlation_id=%s mode=%s",
            event.kind,
            event.correlation_id,
            self._mode,
        )
