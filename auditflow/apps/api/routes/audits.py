from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from auditflow.apps.api.deps import AppServices, get_services, get_tenant_context
from auditflow.apps.api.response import CamelModel
from auditflow.domain.tenant import TenantContext
from auditflow.services.admission import BatchAuditRequest, SingleAuditRequest


router = APIRouter(prefix="/orgs/{org_slug}/audits", tags=["audits"])


class AuditSummary(CamelModel):
    id: str
    url: str
    status: str


class QuotaSnapshot(CamelModel):
    used: int
    total: int
    remaining: int


class SubscriptionInfo(CamelModel):
    tier: str
    subscribed: bool


class BatchAuditResponse(CamelModel):
    success: bool = True
    message: str = "Batch started successfully"
    batch_id: str
    total_prospects: int
    estimated_time: str
    audits: list[AuditSummary]
    quota: QuotaSnapshot
    subscription: SubscriptionInfo


class SingleAuditResponse(CamelModel):
    success: bool = True
    message: str = "Audit started successfully"
    job_id: str
    correlation_id: str
    estimated_time: str
    quota: QuotaSnapshot
    subscription: SubscriptionInfo


class JobStatus(CamelModel):
    id: str
    url: str
    email: str
    status: str
    score: float | None = None
    created_at: str | None = None
    completed_at: str | None = None
    delivery_method: str | None = None
    audit_type: str
    batch_id: str | None = None


class StatusStats(CamelModel):
    total: int
    completed: int
    processing: int
    failed: int
    pending: int


class QuotaWithTier(QuotaSnapshot):
    tier: str


class Organization(CamelModel):
    id: str
    slug: str
    name: str | None = None


class StatusMeta(CamelModel):
    timestamp: str
    total_jobs: int
    user_id: str


class AuditStatusResponse(CamelModel):
    success: bool = True
    jobs: list[JobStatus]
    stats: StatusStats
    quota: QuotaWithTier
    organization: Organization
    meta: StatusMeta


@router.post("/batch", response_model=BatchAuditResponse)
async def start_batch_audit(
    payload: BatchAuditRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    services: AppServices = Depends(get_services),
) -> BatchAuditResponse:
    result = await services.batch.admit(tenant, payload)
    return BatchAuditResponse.model_validate(asdict(result))


@router.post("/single", response_model=SingleAuditResponse)
async def start_single_audit(
    payload: SingleAuditRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    services: AppServices = Depends(get_services),
) -> SingleAuditResponse:
    result = await services.single.admit(tenant, payload)
    return SingleAuditResponse.model_validate(asdict(result))


@router.get("/status", response_model=AuditStatusResponse)
async def audit_status(
    tenant: TenantContext = Depends(get_tenant_context),
    services: AppServices = Depends(get_services),
) -> AuditStatusResponse:
    report = await services.status.summarize(tenant)
    return AuditStatusResponse.model_validate(asdict(report))
