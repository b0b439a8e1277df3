from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Callable
from uuid import uuid4

from pydantic import AnyHttpUrl, BaseModel, EmailStr, Field, TypeAdapter, field_validator

from auditflow.core.errors import JobCreationError
from auditflow.domain.tenant import TenantContext
from auditflow.persistence.repos.audits import AuditRepository
from auditflow.persistence.repos.profiles import ProfileRepository
from auditflow.services.csv_intake import MAX_BATCH_ROWS, MIN_CSV_LENGTH, Prospect, parse_prospects
from auditflow.services.dispatch import WorkflowDispatcher, batch_audit_event, single_audit_event
from auditflow.services.quota import QuotaLedger, QuotaStatus


logger = logging.getLogger(__name__)

BATCH_PREFIX = "batch_"
MINUTES_PER_AUDIT = 2
SINGLE_ESTIMATED_TIME = "2-3 minutes"

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


class BatchAuditRequest(BaseModel):
    csv_data: str = Field(alias="csvData", min_length=MIN_CSV_LENGTH)
    batch_name: str | None = Field(default=None, alias="batchName")

    model_config = {"populate_by_name": True}


class SingleAuditRequest(BaseModel):
    url: str
    email: EmailStr

    @field_validator("url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        # Validate the syntax but keep the caller's spelling of the url.
        try:
            _URL_ADAPTER.validate_python(value)
        except ValueError as exc:
            raise ValueError("Invalid URL") from exc
        return value


@dataclass(frozen=True)
class CreatedAudit:
    id: str
    url: str
    status: str


@dataclass(frozen=True)
class BatchAdmissionResult:
    batch_id: str
    total_prospects: int
    estimated_time: str
    audits: list[CreatedAudit]
    quota: dict[str, int]
    subscription: dict[str, Any]


@dataclass(frozen=True)
class SingleAdmissionResult:
    job_id: str
    correlation_id: str
    estimated_time: str
    quota: dict[str, int]
    subscription: dict[str, Any]


def _hex_token() -> str:
    # Hex tokens never contain "_", which keeps batch ids recoverable from correlation ids.
    return uuid4().hex


def _subscription(status: QuotaStatus) -> dict[str, Any]:
    return {"tier": status.tier, "subscribed": status.subscribed}


@dataclass
class BatchAdmissionPipeline:
    ledger: QuotaLedger
    audits: AuditRepository
    profiles: ProfileRepository
    dispatcher: WorkflowDispatcher
    max_rows: int = MAX_BATCH_ROWS
    min_csv_length: int = MIN_CSV_LENGTH
    minutes_per_audit: int = MINUTES_PER_AUDIT
    token_factory: Callable[[], str] = field(default=_hex_token)

    async def admit(self, tenant: TenantContext, request: BatchAuditRequest) -> BatchAdmissionResult:
        prospects = parse_prospects(
            request.csv_data, max_rows=self.max_rows, min_length=self.min_csv_length
        )
        admission = await self.ledger.admit(tenant.quota_key, len(prospects))
        admission.raise_for_denial()

        batch_id = f"{BATCH_PREFIX}{self.token_factory()}"
        await self.profiles.sync_user(tenant.user_id, tenant.user_email, tenant.user_name)

        # Row inserts are independent; settle all of them before touching the ledger.
        results = await asyncio.gather(
            *(self._create_audit(tenant, prospect, batch_id) for prospect in prospects),
            return_exceptions=True,
        )
        created: list[CreatedAudit] = []
        failed = 0
        for prospect, result in zip(prospects, results):
            if isinstance(result, Exception):
                failed += 1
                logger.error(
                    "batch_audit_create_failed batch_id=%s url=%s",
                    batch_id,
                    prospect.url,
                    exc_info=result,
                )
                continue
            if isinstance(result, BaseException):
                raise result
            created.append(
                CreatedAudit(
                    id=str(result["id"]),
                    url=prospect.url,
                    status=result.get("status") or "pending",
                )
            )

        # Charge exactly once for the jobs that were actually persisted.
        if created:
            await self.ledger.increment(tenant.quota_key, len(created))
        if failed:
            raise JobCreationError(created=len(created), failed=failed)

        self.dispatcher.dispatch(
            batch_audit_event(
                csv_data=request.csv_data,
                user_id=tenant.user_id,
                org_slug=tenant.org_slug,
                correlation_id=batch_id,
                batch_name=request.batch_name,
            )
        )
        logger.info(
            "batch_admitted batch_id=%s org_slug=%s prospects=%s",
            batch_id,
            tenant.org_slug,
            len(prospects),
        )

        updated = admission.status.after(len(prospects))
        return BatchAdmissionResult(
            batch_id=batch_id,
            total_prospects=len(prospects),
            estimated_time=f"{len(prospects) * self.minutes_per_audit} minutes",
            audits=created,
            quota=updated.snapshot(),
            subscription=_subscription(admission.status),
        )

    async def _create_audit(
        self, tenant: TenantContext, prospect: Prospect, batch_id: str
    ) -> dict[str, Any]:
        return await self.audits.create_audit(
            user_id=tenant.user_id,
            org_id=tenant.org_id,
            email=prospect.email,
            url=prospect.url,
            audit_type="bulk",
            status="pending",
            webhook_id=f"{batch_id}_{self.token_factory()}",
        )


@dataclass
class SingleAdmissionPipeline:
    ledger: QuotaLedger
    audits: AuditRepository
    profiles: ProfileRepository
    dispatcher: WorkflowDispatcher
    estimated_time: str = SINGLE_ESTIMATED_TIME
    token_factory: Callable[[], str] = field(default=_hex_token)

    async def admit(
        self, tenant: TenantContext, request: SingleAuditRequest
    ) -> SingleAdmissionResult:
        # One unit is either fully admitted or denied (used >= total).
        admission = await self.ledger.admit(tenant.quota_key, 1)
        admission.raise_for_denial()

        correlation_id = self.token_factory()
        await self.profiles.sync_user(tenant.user_id, tenant.user_email, tenant.user_name)
        audit = await self.audits.create_audit(
            user_id=tenant.user_id,
            org_id=tenant.org_id,
            email=str(request.email),
            url=request.url,
            audit_type="manual",
            status="pending",
            webhook_id=correlation_id,
        )
        await self.ledger.increment(tenant.quota_key, 1)

        self.dispatcher.dispatch(
            single_audit_event(
                url=request.url,
                email=str(request.email),
                user_id=tenant.user_id,
                org_slug=tenant.org_slug,
                correlation_id=correlation_id,
            )
        )
        logger.info(
            "single_admitted audit_id=%s org_slug=%s correlation_id=%s",
            audit["id"],
            tenant.org_slug,
            correlation_id,
        )

        updated = admission.status.after(1)
        return SingleAdmissionResult(
            job_id=str(audit["id"]),
            correlation_id=correlation_id,
            estimated_time=self.estimated_time,
            quota=updated.snapshot(),
            subscription=_subscription(admission.status),
        )
