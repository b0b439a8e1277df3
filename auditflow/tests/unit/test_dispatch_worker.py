from __future__ import annotations

import httpx
import pytest
from arq import Retry

from auditflow.services.dispatch import single_audit_event
from auditflow.workers.dispatch_worker import send_workflow_event


class StubClient:
    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc
        self.sent = []

    async def send(self, event):
        if self.exc is not None:
            raise self.exc
        self.sent.append(event)
        return None


def _payload() -> dict:
    event = single_audit_event(
        url="https://example.com",
        email="lead@example.com",
        user_id="user-1",
        org_slug="acme",
        correlation_id="abc",
    )
    return event.model_dump()


@pytest.mark.asyncio
async def test_worker_sends_validated_event() -> None:
    client = StubClient()
    assert await send_workflow_event({"n8n_client": client, "job_try": 1}, _payload()) is True
    assert client.sent[0].correlation_id == "abc"


@pytest.mark.asyncio
async def test_worker_without_client_simulates() -> None:
    assert await send_workflow_event({}, _payload()) is False


@pytest.mark.asyncio
async def test_worker_retries_transient_failures(monkeypatch) -> None:
    monkeypatch.setenv("DISPATCH_MAX_RETRIES", "3")
    client = StubClient(httpx.ConnectError("down"))
    with pytest.raises(Retry):
        await send_workflow_event({"n8n_client": client, "job_try": 1}, _payload())


@pytest.mark.asyncio
async def test_worker_drops_after_last_attempt(monkeypatch) -> None:
    monkeypatch.setenv("DISPATCH_MAX_RETRIES", "3")
    client = StubClient(httpx.ConnectError("down"))
    assert await send_workflow_event({"n8n_client": client, "job_try": 3}, _payload()) is False


@pytest.mark.asyncio
async def test_worker_drops_non_retryable_failures() -> None:
    client = StubClient(ValueError("bad payload"))
    assert await send_workflow_event({"n8n_client": client, "job_try": 1}, _payload()) is False
