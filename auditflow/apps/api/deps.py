from __future__ import annotations

from dataclasses import dataclass
import logging

from fastapi import Header, HTTPException, Path, Request, status

from auditflow.core.config import Settings
from auditflow.domain.tenant import TenantContext
from auditflow.persistence.repos.audits import AuditRepository
from auditflow.persistence.repos.profiles import ProfileRepository
from auditflow.persistence.store import RecordStore, build_record_store
from auditflow.services.admission import BatchAdmissionPipeline, SingleAdmissionPipeline
from auditflow.services.dispatch import N8nClient, WorkflowDispatcher, build_n8n_client
from auditflow.services.quota import QuotaLedger
from auditflow.services.status import StatusAggregator


logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    # Everything a request needs, wired once per app instead of module globals.
    settings: Settings
    store: RecordStore | None
    ledger: QuotaLedger
    audits: AuditRepository
    profiles: ProfileRepository
    dispatcher: WorkflowDispatcher
    batch: BatchAdmissionPipeline
    single: SingleAdmissionPipeline
    status: StatusAggregator

    async def aclose(self) -> None:
        # Let queued webhook deliveries finish before the store goes away.
        await self.dispatcher.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()


def assemble_services(
    settings: Settings,
    store: RecordStore | None,
    client: N8nClient | None,
) -> AppServices:
    ledger = QuotaLedger(
        store,
        default_quota=settings.default_monthly_quota,
        default_tier=settings.default_subscription_tier,
        increment_procedure=settings.quota_increment_procedure,
    )
    audits = AuditRepository(store)
    profiles = ProfileRepository(store)
    dispatcher = WorkflowDispatcher(client, mode=settings.dispatch_mode)
    return AppServices(
        settings=settings,
        store=store,
        ledger=ledger,
        audits=audits,
        profiles=profiles,
        dispatcher=dispatcher,
        batch=BatchAdmissionPipeline(
            ledger=ledger,
            audits=audits,
            profiles=profiles,
            dispatcher=dispatcher,
            max_rows=settings.batch_max_rows,
            min_csv_length=settings.csv_min_length,
            minutes_per_audit=settings.minutes_per_audit,
        ),
        single=SingleAdmissionPipeline(
            ledger=ledger,
            audits=audits,
            profiles=profiles,
            dispatcher=dispatcher,
            estimated_time=settings.single_estimated_time,
        ),
        status=StatusAggregator(audits, ledger),
    )


def build_services(settings: Settings) -> AppServices:
    return assemble_services(settings, build_record_store(settings), build_n8n_client(settings))


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def _auth_error() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")


def get_tenant_context(
    org_slug: str = Path(...),
    user_id: str | None = Header(default=None, alias="X-User-Id"),
    user_email: str | None = Header(default=None, alias="X-User-Email"),
    user_name: str | None = Header(default=None, alias="X-User-Name"),
    org_id: str | None = Header(default=None, alias="X-Org-Id"),
    header_org_slug: str | None = Header(default=None, alias="X-Org-Slug"),
    org_name: str | None = Header(default=None, alias="X-Org-Name"),
    org_email: str | None = Header(default=None, alias="X-Org-Email"),
) -> TenantContext:
    # Identity is asserted by the upstream gateway; this edge only checks presence.
    if not user_id or not user_email or not org_id or not header_org_slug:
        raise _auth_error()
    if header_org_slug != org_slug:
        logger.info("org_slug_mismatch path_slug=%s header_slug=%s", org_slug, header_org_slug)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return TenantContext(
        user_id=user_id,
        user_email=user_email,
        org_id=org_id,
        org_slug=org_slug,
        user_name=user_name,
        org_name=org_name,
        org_email=org_email or None,
    )
