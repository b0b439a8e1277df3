from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from auditflow.core.errors import StoreError, StoreUnavailableError
from auditflow.persistence.store import RecordStore


logger = logging.getLogger(__name__)

_TABLE = "audits"


class AuditRepository:
    def __init__(self, store: RecordStore | None) -> None:
        self._store = store

    async def create_audit(
        self,
        *,
        user_id: str | None,
        org_id: str | None,
        email: str,
        url: str,
        audit_type: str = "manual",
        status: str = "pending",
        webhook_id: str | None = None,
        is_public: bool = False,
    ) -> dict[str, Any]:
        # Job creation is a paid write; never drop it silently.
        if self._store is None:
            raise StoreUnavailableError("Record store not configured; cannot create audit")
        return await self._store.insert(
            _TABLE,
            {
                "user_id": user_id,
                "org_id": org_id,
                "email": email,
                "url": url,
                "audit_type": audit_type,
                "status": status,
                "webhook_id": webhook_id,
                "is_public": is_public,
            },
        )

    async def update_audit(
        self,
        audit_id: str,
        *,
        status: str | None = None,
        results_json: dict[str, Any] | None = None,
        score_global: float | None = None,
        error_message: str | None = None,
        completed_at: datetime | None = None,
    ) -> dict[str, Any] | None:
        if self._store is None:
            logger.warning("audit_update_skipped_store_unavailable audit_id=%s", audit_id)
            return None
        values: dict[str, Any] = {}
        if status is not None:
            values["status"] = status
        if results_json is not None:
            values["results_json"] = results_json
        if score_global is not None:
            values["score_global"] = score_global
        if error_message is not None:
            values["error_message"] = error_message
        if completed_at is not None:
            values["completed_at"] = completed_at
        if not values:
            return await self._store.select_one(_TABLE, filters={"id": audit_id})
        return await self._store.update(_TABLE, filters={"id": audit_id}, values=values)

    async def get_audit_by_webhook_id(self, webhook_id: str) -> dict[str, Any] | None:
        if self._store is None:
            logger.warning("audit_lookup_skipped_store_unavailable")
            return None
        try:
            return await self._store.select_one(_TABLE, filters={"webhook_id": webhook_id})
        except StoreError as exc:
            logger.error("audit_lookup_failed webhook_id=%s", webhook_id, exc_info=exc)
            return None

    async def list_org_audits(self, org_id: str) -> list[dict[str, Any]]:
        # Reporting stays available in degraded mode with an empty listing.
        if self._store is None:
            logger.warning("audit_list_skipped_store_unavailable org_id=%s", org_id)
            return []
        try:
            return await self._store.select_many(
                _TABLE, filters={"org_id": org_id}, order_by="created_at", descending=True
            )
        except StoreUnavailableError as exc:
            logger.warning("audit_list_degraded org_id=%s", org_id, exc_info=exc)
            return []

    async def count_monthly_audits(self, user_id: str, *, now: datetime | None = None) -> int:
        if self._store is None:
            return 0
        current = now or datetime.now(timezone.utc)
        month_start = datetime(current.year, current.month, 1, tzinfo=timezone.utc)
        try:
            return await self._store.count(
                _TABLE,
                filters={"user_id": user_id},
                since_column="created_at",
                since=month_start,
            )
        except StoreError as exc:
            logger.error("audit_monthly_count_failed user_id=%s", user_id, exc_info=exc)
            return 0
