from __future__ import annotations

import logging

from auditflow.core.errors import StoreError
from auditflow.persistence.store import RecordStore


logger = logging.getLogger(__name__)


class ProfileRepository:
    def __init__(self, store: RecordStore | None) -> None:
        self._store = store

    async def sync_user(
        self,
        user_id: str,
        email: str,
        full_name: str | None = None,
        company: str | None = None,
    ) -> None:
        # Mirror identity-provider users into profiles without failing the caller.
        if self._store is None:
            logger.warning("profile_sync_skipped_store_unavailable user_id=%s", user_id)
            return
        try:
            existing = await self._store.select_one("profiles", filters={"user_id": user_id})
            if existing is not None:
                return
            await self._store.insert(
                "profiles",
                {
                    "user_id": user_id,
                    "email": email,
                    "full_name": full_name,
                    "company": company,
                },
            )
        except StoreError as exc:
            logger.error("profile_sync_failed user_id=%s", user_id, exc_info=exc)
