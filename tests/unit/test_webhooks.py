"""
Unit Tests — WebhookNotifier
═════════════════════════════
Deliveries go through httpx.MockTransport; nothing leaves the process.

Coverage targets:
  ✅ Payload envelope: event, timestamp, data
  ✅ HMAC-SHA256 signature header only when a secret is configured
  ✅ Event filtering and inactive webhooks
  ✅ Unknown event names rejected at registration
  ✅ HTTP errors and transport failures are logged, never raised
"""

from __future__ import annotations

import json
import logging

import httpx
import pytest

from docintake.services.webhooks import (
    SIGNATURE_HEADER,
    WebhookConfig,
    WebhookNotifier,
    sign_payload,
)


class _Recorder:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)


def _notifier(handler) -> WebhookNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotifier(client=client)


@pytest.mark.unit
class TestWebhookDelivery:

    async def test_payload_envelope(self):
        recorder = _Recorder()
        notifier = _notifier(recorder)
        notifier.register("ops", WebhookConfig(url="https://hooks.test/ops"))

        notifier.notify("document.completed", {"document_id": "doc-1"})
        await notifier.aclose()

        assert len(recorder.requests) == 1
        request = recorder.requests[0]
        assert str(request.url) == "https://hooks.test/ops"
        body = json.loads(request.content)
        assert body["event"] == "document.completed"
        assert body["data"] == {"document_id": "doc-1"}
        assert "timestamp" in body
        assert SIGNATURE_HEADER not in request.headers

    async def test_signed_when_secret_configured(self):
        recorder = _Recorder()
        notifier = _notifier(recorder)
        notifier.register("ops", WebhookConfig(url="https://hooks.test/ops", secret="s3cret"))

        notifier.notify("batch.started", {"batch_id": "b-1"})
        await notifier.aclose()

        request = recorder.requests[0]
        assert request.headers[SIGNATURE_HEADER] == sign_payload(request.content, "s3cret")

    async def test_only_subscribed_events_are_sent(self):
        recorder = _Recorder()
        notifier = _notifier(recorder)
        notifier.register("failures", WebhookConfig(
            url="https://hooks.test/failures", events=frozenset({"document.failed"}),
        ))
        notifier.register("paused", WebhookConfig(url="https://hooks.test/paused", active=False))

        notifier.notify("document.completed", {"document_id": "doc-1"})
        notifier.notify("document.failed", {"document_id": "doc-2", "error": "boom"})
        await notifier.aclose()

        assert [str(r.url) for r in recorder.requests] == ["https://hooks.test/failures"]

    def test_unknown_event_rejected(self):
        notifier = WebhookNotifier()
        with pytest.raises(ValueError):
            notifier.register("bad", WebhookConfig(
                url="https://hooks.test/bad", events=frozenset({"document.deleted"}),
            ))

    async def test_unregister(self):
        recorder = _Recorder()
        notifier = _notifier(recorder)
        notifier.register("ops", WebhookConfig(url="https://hooks.test/ops"))
        notifier.unregister("ops")

        notifier.notify("document.completed", {})
        await notifier.aclose()

        assert notifier.registered() == []
        assert recorder.requests == []


@pytest.mark.unit
class TestWebhookFailures:

    async def test_error_status_is_logged(self, caplog):
        notifier = _notifier(_Recorder(status_code=500))
        notifier.register("ops", WebhookConfig(url="https://hooks.test/ops"))

        with caplog.at_level(logging.ERROR, logger="docintake.services.webhooks"):
            notifier.notify("document.completed", {})
            await notifier.drain()

        assert "delivery failed" in caplog.text
        await notifier.aclose()

    async def test_transport_error_is_swallowed(self, caplog):
        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        notifier = _notifier(_refuse)
        notifier.register("ops", WebhookConfig(url="https://hooks.test/ops"))

        with caplog.at_level(logging.ERROR, logger="docintake.services.webhooks"):
            notifier.notify("document.failed", {"document_id": "doc-1"})
            await notifier.drain()

        assert "delivery error" in caplog.text
        await notifier.aclose()

    def test_notify_without_loop_is_dropped(self):
        notifier = WebhookNotifier()
        notifier.register("ops", WebhookConfig(url="https://hooks.test/ops"))

        notifier.notify("document.completed", {})   # must not raise

        assert notifier.registered()[0][0] == "ops"
