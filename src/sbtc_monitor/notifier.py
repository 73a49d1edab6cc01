"""
Webhook delivery for terminal transaction events.

Delivery is best effort: one POST, no retry. Failures are logged and
reported through the return value, never raised.
"""

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any, Protocol

import httpx
import structlog

from sbtc_monitor.config import WebhookSettings
from sbtc_monitor.config.webhook import DEFAULT_USER_AGENT

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


class Notifier(Protocol):
    async def send(
        self, event: str, tx_id: str, timestamp: datetime, data: dict[str, Any]
    ) -> bool: ...


def build_payload(
    event: str, tx_id: str, timestamp: datetime, data: dict[str, Any]
) -> dict[str, Any]:
    return {
        "event": event,
        "txId": tx_id,
        "timestamp": timestamp.isoformat(),
        "data": data,
    }


def sign(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, header: str | None, secret: str) -> bool:
    """Check a received X-Webhook-Signature header against the raw body."""
    if not header:
        return False
    return hmac.compare_digest(sign(body, secret), header)


class WebhookNotifier:
    """POSTs JSON event payloads to a single configured URL."""

    def __init__(
        self,
        url: str | None,
        secret: str | None = None,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.secret = secret
        self.user_agent = user_agent
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: WebhookSettings) -> "WebhookNotifier":
        return cls(
            url=str(settings.url) if settings.url else None,
            secret=settings.secret.get_secret_value() if settings.secret else None,
            timeout=settings.timeout_seconds,
            user_agent=settings.user_agent,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(
        self, event: str, tx_id: str, timestamp: datetime, data: dict[str, Any]
    ) -> bool:
        """
        Deliver one event.

        Returns:
            True if the endpoint answered 2xx, False if delivery was skipped
            (no URL configured) or failed.
        """
        if not self.url:
            logger.debug("webhook_skipped_no_url", tx_id=tx_id, webhook_event=event)
            return False

        body = json.dumps(
            build_payload(event, tx_id, timestamp, data), separators=(",", ":")
        ).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }
        if self.secret:
            headers[SIGNATURE_HEADER] = sign(body, self.secret)

        try:
            response = await self.client.post(self.url, content=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "webhook_rejected",
                tx_id=tx_id,
                webhook_event=event,
                status_code=e.response.status_code,
            )
            return False
        except httpx.HTTPError as e:
            logger.error("webhook_delivery_failed", tx_id=tx_id, webhook_event=event, error=str(e))
            return False

        logger.info("webhook_sent", tx_id=tx_id, webhook_event=event)
        return True

    async def close(self):
        await self.client.aclose()
