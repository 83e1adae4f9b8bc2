"""
Webhook notifications — best-effort, fire-and-forget

notify(event, data) schedules one POST per matching active webhook and
returns immediately; the pipeline never waits on delivery and delivery
failures are only logged.

Payload::

    {"event": "document.completed", "timestamp": "<ISO-8601 UTC>", "data": {...}}

When a webhook has a secret, the body is signed with HMAC-SHA256 and the
hex digest sent as X-Webhook-Signature.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = frozenset({
    "document.processing",
    "document.completed",
    "document.failed",
    "batch.started",
    "batch.completed",
})

SIGNATURE_HEADER = "X-Webhook-Signature"


@dataclass
class WebhookConfig:
    url:    str
    events: frozenset[str] = field(default_factory=lambda: WEBHOOK_EVENTS)
    secret: Optional[str] = None
    active: bool = True


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookNotifier:
    """
    In-memory webhook registry and sender.

    Usage::

        notifier = WebhookNotifier(timeout=10)
        notifier.register("ops", WebhookConfig(url="https://ops.example.com/hook"))
        notifier.notify("document.completed", {"document_id": "..."})
        ...
        await notifier.aclose()
    """

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._webhooks: dict[str, WebhookConfig] = {}
        self._pending: set[asyncio.Task] = set()

    # -----------------------------------------------------------------------
    # Registry
    # -----------------------------------------------------------------------

    def register(self, webhook_id: str, config: WebhookConfig) -> None:
        unknown = set(config.events) - WEBHOOK_EVENTS
        if unknown:
            raise ValueError(f"Unknown webhook events: {sorted(unknown)}")
        self._webhooks[webhook_id] = config

    def unregister(self, webhook_id: str) -> None:
        self._webhooks.pop(webhook_id, None)

    def registered(self) -> list[tuple[str, WebhookConfig]]:
        return list(self._webhooks.items())

    # -----------------------------------------------------------------------
    # Delivery
    # -----------------------------------------------------------------------

    def notify(self, event: str, data: dict[str, Any]) -> None:
        targets = [w for w in self._webhooks.values() if w.active and event in w.events]
        if not targets:
            return

        body = json.dumps({
            "event":     event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data":      data,
        }, default=str).encode("utf-8")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Webhook | no running loop, dropping event=%s", event)
            return

        for webhook in targets:
            task = loop.create_task(self._send(webhook, event, body))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _send(self, webhook: WebhookConfig, event: str, body: bytes) -> None:
        headers = {"Content-Type": "application/json"}
        if webhook.secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, webhook.secret)

        try:
            response = await self._client.post(webhook.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Webhook | delivery error url=%s event=%s: %s", webhook.url, event, exc)
            return

        if response.is_error:
            logger.error(
                "Webhook | delivery failed url=%s event=%s status=%d",
                webhook.url, event, response.status_code,
            )
        else:
            logger.debug("Webhook | delivered url=%s event=%s", webhook.url, event)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (tests, shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()
