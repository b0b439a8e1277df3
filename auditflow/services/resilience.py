from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from auditflow.core.config import get_settings
from auditflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

# Network-level failures where a second attempt can succeed.
TRANSIENT_ERRORS = (TimeoutError, OSError, httpx.TransportError)


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        # The workflow engine answers 5xx while restarting; 4xx means a bad payload.
        return exc.response.status_code >= 500
    return False


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def attempts(self) -> int:
        return max(self.max_attempts, 1)

    def delay_for(self, attempt: int, *, jitter: float = 1.0) -> float:
        # Exponential backoff in seconds after the given (1-based) failed attempt.
        return (self.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.ext_call_timeout_ms,
        max_attempts=settings.ext_retry_max_attempts,
        backoff_ms=settings.ext_retry_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
    operation: str = "external_call",
) -> Any:
    # Re-raise the last error unchanged once attempts run out or it is not retryable.
    policy = policy or default_retry_policy()
    retryable = retryable or is_retryable
    for attempt in range(1, policy.attempts + 1):
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_s)
        except Exception as exc:  # noqa: BLE001 - re-raised below when not retried
            if attempt == policy.attempts or not retryable(exc):
                raise
            delay = policy.delay_for(attempt, jitter=random.uniform(0.5, 1.5))
            increment_counter("external_retries_total")
            logger.info(
                "external_call_retry operation=%s attempt=%s delay_s=%.3f error=%s",
                operation,
                attempt,
                delay,
                type(exc).__name__,
            )
            await asyncio.sleep(delay)
