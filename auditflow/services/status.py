from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

from auditflow.domain.tenant import TenantContext
from auditflow.persistence.repos.audits import AuditRepository
from auditflow.services.quota import QuotaLedger


BATCH_PREFIX = "batch_"


# Engine statuses are classified through lookup tables; unmatched ones count only in total.
class StatusBucket(str, Enum):
    COMPLETED = "completed"
    PROCESSING = "processing"
    FAILED = "failed"
    PENDING = "pending"
    UNCLASSIFIED = "unclassified"


# Exact, case-sensitive matches against the raw status string.
EXACT_STATUS_BUCKETS: dict[str, StatusBucket] = {
    "completed": StatusBucket.COMPLETED,
    "succeeded": StatusBucket.COMPLETED,
    "Terminé": StatusBucket.COMPLETED,
    "processing": StatusBucket.PROCESSING,
    "running": StatusBucket.PROCESSING,
    "failed": StatusBucket.FAILED,
    "error": StatusBucket.FAILED,
    "Erreur": StatusBucket.FAILED,
    "pending": StatusBucket.PENDING,
    "starting": StatusBucket.PENDING,
    "queued": StatusBucket.PENDING,
}

# Substring matches, consulted only when no exact entry applies.
SUBSTRING_STATUS_BUCKETS: tuple[tuple[str, StatusBucket], ...] = (
    ("cours", StatusBucket.PROCESSING),
    ("progress", StatusBucket.PROCESSING),
)


def classify_status(raw_status: str | None) -> StatusBucket:
    if not raw_status:
        return StatusBucket.UNCLASSIFIED
    bucket = EXACT_STATUS_BUCKETS.get(raw_status)
    if bucket is not None:
        return bucket
    for fragment, fragment_bucket in SUBSTRING_STATUS_BUCKETS:
        if fragment in raw_status:
            return fragment_bucket
    return StatusBucket.UNCLASSIFIED


def extract_batch_id(correlation_id: str | None) -> str | None:
    # batch_<token>_<suffix> -> <token>
    if not correlation_id or not correlation_id.startswith(BATCH_PREFIX):
        return None
    return correlation_id.split("_")[1]


@dataclass(frozen=True)
class JobView:
    id: str
    url: str
    email: str
    status: str
    score: float | None
    created_at: str | None
    completed_at: str | None
    delivery_method: str | None
    audit_type: str
    batch_id: str | None


@dataclass(frozen=True)
class StatusStats:
    total: int
    completed: int
    processing: int
    failed: int
    pending: int


@dataclass(frozen=True)
class StatusReport:
    jobs: list[JobView]
    stats: StatusStats
    quota: dict[str, Any]
    organization: dict[str, Any]
    meta: dict[str, Any]


def _isoformat(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def normalize_job(record: dict[str, Any]) -> JobView:
    return JobView(
        id=str(record.get("id")),
        url=record.get("url") or "",
        email=record.get("email") or "",
        status=record.get("status") or "pending",
        score=record.get("score_global"),
        created_at=_isoformat(record.get("created_at")),
        completed_at=_isoformat(record.get("completed_at")),
        delivery_method=record.get("delivery_method") or None,
        audit_type=record.get("audit_type") or "manual",
        batch_id=extract_batch_id(record.get("webhook_id")),
    )


def aggregate_stats(records: Iterable[dict[str, Any]]) -> StatusStats:
    # Classify the raw status, not the defaulted view status.
    counts = {bucket: 0 for bucket in StatusBucket}
    total = 0
    for record in records:
        total += 1
        counts[classify_status(record.get("status"))] += 1
    return StatusStats(
        total=total,
        completed=counts[StatusBucket.COMPLETED],
        processing=counts[StatusBucket.PROCESSING],
        failed=counts[StatusBucket.FAILED],
        pending=counts[StatusBucket.PENDING],
    )


class StatusAggregator:
    def __init__(
        self,
        audits: AuditRepository,
        ledger: QuotaLedger,
        *,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._audits = audits
        self._ledger = ledger
        self._time_provider = time_provider or (lambda: datetime.now(timezone.utc))

    async def summarize(self, tenant: TenantContext) -> StatusReport:
        records = await self._audits.list_org_audits(tenant.org_id)
        jobs = [normalize_job(record) for record in records]
        quota = await self._ledger.get_status(tenant.quota_key)
        return StatusReport(
            jobs=jobs,
            stats=aggregate_stats(records),
            quota={
                "used": quota.used,
                "total": quota.total,
                "remaining": quota.remaining,
                "tier": quota.tier,
            },
            organization=tenant.organization(),
            meta={
                "timestamp": self._time_provider().isoformat(),
                "total_jobs": len(jobs),
                "user_id": tenant.user_id,
            },
        )


def stats_as_dict(stats: StatusStats) -> dict[str, int]:
    return asdict(stats)
