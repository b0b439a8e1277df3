from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import hmac
import json

import httpx
import pytest

from auditflow.core.errors import DispatchConfigError
from auditflow.services.dispatch import (
    N8nClient,
    WorkflowDispatcher,
    batch_audit_event,
    single_audit_event,
)
from auditflow.services.resilience import RetryPolicy
from auditflow.services.telemetry import get_counter


_POLICY = RetryPolicy(timeout_ms=1000, max_attempts=2, backoff_ms=1)


def _single_event():
    return single_audit_event(
        url="https://example.com",
        email="lead@example.com",
        user_id="user-1",
        org_slug="acme",
        correlation_id="abc",
    )


def _client(handler) -> N8nClient:
    return N8nClient(
        "https://n8n.test/",
        "s3cret",
        retry_policy=_POLICY,
        transport=httpx.MockTransport(handler),
    )


def test_client_requires_configuration() -> None:
    with pytest.raises(DispatchConfigError):
        N8nClient(None, "secret")
    with pytest.raises(DispatchConfigError):
        N8nClient("https://n8n.test", "")


@pytest.mark.asyncio
async def test_client_signs_payload_and_targets_kind_path() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"ok": True})

    result = await _client(handler).send(_single_event())

    assert result == {"ok": True}
    request = captured[0]
    assert str(request.url) == "https://n8n.test/webhook/formulaire-offre-1"
    expected = hmac.new(b"s3cret", request.content, hashlib.sha256).hexdigest()
    assert request.headers["X-N8N-Signature"] == f"sha256={expected}"
    assert request.headers["X-Correlation-ID"] == "abc"
    assert json.loads(request.content)["url"] == "https://example.com"


@pytest.mark.asyncio
async def test_client_retries_upstream_5xx() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(502)
        return httpx.Response(200, text="accepted")

    assert await _client(handler).send(_single_event()) is None
    assert calls["count"] == 2
    assert get_counter("external_retries_total") == 1


@pytest.mark.asyncio
async def test_client_does_not_retry_4xx() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(404)

    with pytest.raises(httpx.HTTPStatusError):
        await _client(handler).send(_single_event())
    assert calls["count"] == 1


def test_batch_event_defaults_name_from_timestamp() -> None:
    now = datetime(2026, 4, 2, 10, 30, tzinfo=timezone.utc)
    event = batch_audit_event(
        csv_data="url\nexample.com",
        user_id="user-1",
        org_slug="acme",
        correlation_id="batch_abc",
        now=now,
    )
    assert event.kind == "batch"
    assert event.body["batch_name"] == f"Batch {now.isoformat()}"
    assert event.body["correlation_id"] == "batch_abc"


@pytest.mark.asyncio
async def test_background_dispatch_failure_is_contained() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    dispatcher = WorkflowDispatcher(_client(handler))
    dispatcher.dispatch(_single_event())
    assert dispatcher.pending == 1

    await dispatcher.drain()

    assert dispatcher.pending == 0
    assert get_counter("workflow_dispatch_failures_total") == 1
    assert get_counter("workflow_dispatch_sent_total") == 0


@pytest.mark.asyncio
async def test_background_dispatch_success_is_counted() -> None:
    dispatcher = WorkflowDispatcher(_client(lambda request: httpx.Response(200, json={})))
    dispatcher.dispatch(_single_event())
    await dispatcher.drain()
    assert get_counter("workflow_dispatch_sent_total") == 1


@pytest.mark.asyncio
async def test_disabled_or_unconfigured_dispatch_only_logs(caplog) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with caplog.at_level("INFO"):
        WorkflowDispatcher(_client(handler), mode="disabled").dispatch(_single_event())
        unconfigured = WorkflowDispatcher(None)
        unconfigured.dispatch(_single_event())
    assert unconfigured.pending == 0
    assert caplog.text.count("workflow_dispatch_simulated") == 2


@pytest.mark.asyncio
async def test_queue_mode_enqueues_event() -> None:
    enqueued = []

    async def fake_enqueue(event) -> None:
        enqueued.append(event)

    dispatcher = WorkflowDispatcher(None, mode="queue", enqueue=fake_enqueue)
    dispatcher.dispatch(_single_event())
    await dispatcher.drain()
    assert [event.correlation_id for event in enqueued] == ["abc"]
