from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Any, Callable

from auditflow.core.errors import (
    IncrementConflictError,
    QuotaExceededError,
    StoreError,
    StoreUnavailableError,
)
from auditflow.persistence.store import RecordStore


logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_QUOTA = 10
DEFAULT_TIER = "free"
INCREMENT_PROCEDURE = "increment_quota_used"

_TABLE = "subscribers"


@dataclass(frozen=True)
class QuotaStatus:
    # Read-only view of a tenant's allowance for the current billing period.
    used: int
    total: int
    remaining: int
    tier: str
    subscribed: bool
    exceeded: bool
    reset_date: date | None = None
    subscription_end: datetime | None = None

    def snapshot(self) -> dict[str, int]:
        return {"used": self.used, "total": self.total, "remaining": self.remaining}

    def after(self, units: int) -> "QuotaStatus":
        # Project the status after consuming units; remaining is not clamped here.
        used = self.used + units
        return QuotaStatus(
            used=used,
            total=self.total,
            remaining=self.total - used,
            tier=self.tier,
            subscribed=self.subscribed,
            exceeded=used >= self.total,
            reset_date=self.reset_date,
            subscription_end=self.subscription_end,
        )


@dataclass(frozen=True)
class QuotaDenial:
    total: int
    used: int
    requested: int
    available: int
    tier: str


@dataclass(frozen=True)
class Admission:
    allowed: bool
    status: QuotaStatus
    requested: int
    denial: QuotaDenial | None = None

    def raise_for_denial(self) -> None:
        if self.denial is None:
            return
        raise QuotaExceededError(
            quota=self.denial.total,
            used=self.denial.used,
            requested=self.denial.requested,
            available=self.denial.available,
            subscription_tier=self.denial.tier,
        )


class QuotaLedger:
    def __init__(
        self,
        store: RecordStore | None,
        *,
        default_quota: int = DEFAULT_MONTHLY_QUOTA,
        default_tier: str = DEFAULT_TIER,
        increment_procedure: str = INCREMENT_PROCEDURE,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._default_quota = default_quota
        self._default_tier = default_tier
        self._increment_procedure = increment_procedure
        # Allow time injection for deterministic fallback timestamps in tests.
        self._time_provider = time_provider or _utc_now

    async def get_subscriber(
        self, tenant_key: str, *, strict: bool = False
    ) -> dict[str, Any] | None:
        # Unreadable subscribers read as unknown tenants unless strict.
        if self._store is None:
            logger.warning("subscriber_lookup_skipped_store_unavailable")
            return None
        try:
            return await self._store.select_one(_TABLE, filters={"email": tenant_key})
        except StoreError as exc:
            logger.error(
                "subscriber_lookup_failed email=%s strict=%s", tenant_key, strict, exc_info=exc
            )
            if strict:
                raise
            return None

    async def get_status(self, tenant_key: str, *, strict: bool = False) -> QuotaStatus:
        subscriber = await self.get_subscriber(tenant_key, strict=strict)
        if subscriber is None:
            return _snapshot(
                used=0,
                total=self._default_quota,
                tier=self._default_tier,
                subscribed=False,
            )
        monthly_quota = subscriber.get("monthly_quota")
        return _snapshot(
            used=int(subscriber.get("quota_used") or 0),
            total=self._default_quota if monthly_quota is None else int(monthly_quota),
            tier=subscriber.get("subscription_tier") or self._default_tier,
            subscribed=bool(subscriber.get("subscribed") or False),
            reset_date=subscriber.get("quota_reset_date"),
            subscription_end=subscriber.get("subscription_end"),
        )

    async def admit(self, tenant_key: str, requested: int) -> Admission:
        status = await self.get_status(tenant_key, strict=True)
        return evaluate_admission(status, requested)

    async def increment(self, tenant_key: str, units: int) -> Any:
        if self._store is None:
            raise StoreUnavailableError("Record store not configured; cannot increment quota")
        try:
            return await self._increment_atomic(self._store, tenant_key, units)
        except IncrementConflictError as exc:
            logger.warning(
                "quota_increment_fallback email=%s units=%s", tenant_key, units, exc_info=exc
            )
        return await self._increment_read_modify_write(self._store, tenant_key, units)

    async def reserve(self, tenant_key: str, units: int) -> Admission:
        # TODO: move the limit check into increment_quota_used as a conditional UPDATE
        # (quota_used + increment_by <= monthly_quota) so admission and increment are one
        # atomic statement; until then concurrent reservations can overshoot the bound.
        admission = await self.admit(tenant_key, units)
        if admission.allowed:
            await self.increment(tenant_key, units)
        return admission

    async def _increment_atomic(self, store: RecordStore, tenant_key: str, units: int) -> Any:
        try:
            return await store.call_procedure(
                self._increment_procedure,
                {"user_email": tenant_key, "increment_by": units},
            )
        except StoreUnavailableError:
            raise
        except StoreError as exc:
            raise IncrementConflictError(
                f"{self._increment_procedure} failed for {tenant_key}"
            ) from exc

    async def _increment_read_modify_write(
        self, store: RecordStore, tenant_key: str, units: int
    ) -> dict[str, Any]:
        # Lossy under concurrent writers; only used when the procedure is unavailable.
        subscriber = await store.select_one(_TABLE, filters={"email": tenant_key})
        if subscriber is None:
            raise StoreError(f"Subscriber {tenant_key} not found")
        updated = await store.update(
            _TABLE,
            filters={"email": tenant_key},
            values={
                "quota_used": int(subscriber.get("quota_used") or 0) + units,
                "updated_at": self._time_provider(),
            },
        )
        if updated is None:
            raise StoreError(f"Failed to update quota for {tenant_key}")
        return updated


def evaluate_admission(status: QuotaStatus, requested: int) -> Admission:
    # Deny only when the request would push usage past the allowance.
    if status.used + requested > status.total:
        denial = QuotaDenial(
            total=status.total,
            used=status.used,
            requested=requested,
            available=max(0, status.total - status.used),
            tier=status.tier,
        )
        return Admission(allowed=False, status=status, requested=requested, denial=denial)
    return Admission(allowed=True, status=status, requested=requested)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(
    *,
    used: int,
    total: int,
    tier: str,
    subscribed: bool,
    reset_date: date | None = None,
    subscription_end: datetime | None = None,
) -> QuotaStatus:
    return QuotaStatus(
        used=used,
        total=total,
        remaining=max(0, total - used),
        tier=tier,
        subscribed=subscribed,
        exceeded=used >= total,
        reset_date=reset_date,
        subscription_end=subscription_end,
    )
