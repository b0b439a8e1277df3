from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auditflow.core.config import Settings
from auditflow.core.errors import StoreError
from auditflow.domain.models import Base
from auditflow.persistence.db import pool_stats
from auditflow.persistence.repos.audits import AuditRepository
from auditflow.persistence.repos.profiles import ProfileRepository
from auditflow.persistence.store import build_record_store
from auditflow.services.quota import QuotaLedger


@pytest.fixture
async def sql_store(tmp_path):
    settings = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    store = build_record_store(settings)
    async with store.engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    yield store
    await store.close()


def test_build_record_store_is_optional() -> None:
    assert build_record_store(Settings(database_url="")) is None


@pytest.mark.asyncio
async def test_insert_select_update_round_trip(sql_store) -> None:
    created = await sql_store.insert(
        "audits",
        {"org_id": "org-1", "email": "a@example.com", "url": "https://a.com", "status": "pending"},
    )
    assert created["id"]
    assert created["audit_type"] == "manual"

    fetched = await sql_store.select_one("audits", filters={"id": created["id"]})
    assert fetched["url"] == "https://a.com"

    updated = await sql_store.update(
        "audits", filters={"id": created["id"]}, values={"status": "completed"}
    )
    assert updated["status"] == "completed"
    assert await sql_store.update("audits", filters={"id": "missing"}, values={"status": "x"}) is None


@pytest.mark.asyncio
async def test_select_many_and_count(sql_store) -> None:
    for index in range(3):
        await sql_store.insert(
            "audits",
            {"org_id": "org-1", "user_id": "u1", "email": "a@example.com", "url": f"https://{index}.com"},
        )
    await sql_store.insert(
        "audits", {"org_id": "org-2", "user_id": "u2", "email": "b@example.com", "url": "https://b.com"}
    )

    rows = await sql_store.select_many("audits", filters={"org_id": "org-1"}, order_by="created_at")
    assert len(rows) == 3
    assert await sql_store.count("audits", filters={"user_id": "u1"}) == 3
    past = datetime.now(timezone.utc) - timedelta(days=365)
    assert (
        await sql_store.count("audits", filters={"user_id": "u1"}, since_column="created_at", since=past)
        == 3
    )


@pytest.mark.asyncio
async def test_unknown_table_and_column_raise_store_error(sql_store) -> None:
    with pytest.raises(StoreError):
        await sql_store.select_one("nope", filters={})
    with pytest.raises(StoreError):
        await sql_store.select_one("audits", filters={"nope": 1})


@pytest.mark.asyncio
async def test_missing_procedure_takes_fallback_path(sql_store) -> None:
    # SQLite has no increment_quota_used, so the ledger must fall back.
    await sql_store.insert(
        "subscribers", {"email": "a@example.com", "monthly_quota": 100, "quota_used": 5}
    )
    ledger = QuotaLedger(sql_store)
    updated = await ledger.increment("a@example.com", 3)
    assert updated["quota_used"] == 8
    status = await ledger.get_status("a@example.com")
    assert (status.used, status.remaining) == (8, 92)


@pytest.mark.asyncio
async def test_repositories_over_sql_store(sql_store) -> None:
    audits = AuditRepository(sql_store)
    profiles = ProfileRepository(sql_store)

    await profiles.sync_user("u1", "a@example.com", "Ada")
    await profiles.sync_user("u1", "a@example.com", "Ada")
    assert await sql_store.count("profiles", filters={"user_id": "u1"}) == 1

    created = await audits.create_audit(
        user_id="u1", org_id="org-1", email="a@example.com", url="https://a.com", webhook_id="w1"
    )
    found = await audits.get_audit_by_webhook_id("w1")
    assert found["id"] == created["id"]

    finished = await audits.update_audit(created["id"], status="completed", score_global=0.0)
    assert finished["score_global"] == 0.0
    assert await audits.count_monthly_audits("u1") == 1
    assert [row["id"] for row in await audits.list_org_audits("org-1")] == [created["id"]]


@pytest.mark.asyncio
async def test_pool_stats_reports_counters(sql_store) -> None:
    stats = pool_stats(sql_store.engine)
    assert set(stats) == {"size", "checked_out", "checked_in", "overflow"}
