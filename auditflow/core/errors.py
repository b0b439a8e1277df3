from __future__ import annotations

from typing import Any


class AuditFlowError(Exception):
    """Base error for AuditFlow."""


class ValidationError(AuditFlowError):
    """Malformed input; carries field-level error entries."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class QuotaExceededError(AuditFlowError):
    """Admission denied by the quota ledger."""

    def __init__(
        self,
        *,
        quota: int,
        used: int,
        requested: int,
        available: int,
        subscription_tier: str,
    ) -> None:
        super().__init__("Monthly quota exceeded")
        self.quota = quota
        self.used = used
        self.requested = requested
        self.available = available
        self.subscription_tier = subscription_tier

    def to_dict(self) -> dict[str, Any]:
        return {
            "quota": self.quota,
            "used": self.used,
            "requested": self.requested,
            "available": self.available,
            "subscription_tier": self.subscription_tier,
        }


class StoreError(AuditFlowError):
    """Record store failure."""


class StoreUnavailableError(StoreError):
    """Record store is not configured or cannot be reached."""


class IncrementConflictError(StoreError):
    """Atomic quota increment procedure is unavailable."""


class JobCreationError(AuditFlowError):
    """One or more audit jobs of a batch could not be persisted."""

    def __init__(self, *, created: int, failed: int) -> None:
        super().__init__(f"Failed to create {failed} of {created + failed} audits")
        self.created = created
        self.failed = failed


class DispatchConfigError(AuditFlowError):
    """Workflow dispatch client is missing required configuration."""
