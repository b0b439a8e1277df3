from __future__ import annotations

import pytest

from auditflow.core.config import get_settings
from auditflow.domain.tenant import TenantContext
from auditflow.services.telemetry import reset_counters
from auditflow.tests.utils.store import InMemoryRecordStore


@pytest.fixture(autouse=True)
def _reset_process_state() -> None:
    # Keep settings and counters isolated so env overrides do not leak across tests.
    get_settings.cache_clear()
    reset_counters()
    yield
    get_settings.cache_clear()
    reset_counters()


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def tenant() -> TenantContext:
    return TenantContext(
        user_id="user-1",
        user_email="owner@example.com",
        org_id="org-1",
        org_slug="acme",
        user_name="Owner",
        org_name="Acme",
        org_email="billing@acme.test",
    )
