"""One outbound webhook POST, signed and timed out, shared by dispatch and retry."""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from .utils.security import sign

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


def serialize_event(event: str, data: Any) -> bytes:
    """Canonical body bytes; signed, sent and stored exactly as returned."""
    return json.dumps(
        {"event": event, "data": data}, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def to_millis(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def build_headers(secret: str, event: str, timestamp_ms: int, body: bytes) -> dict:
    return {
        "Content-Type": "application/json",
        "X-Webhook-Timestamp": str(timestamp_ms),
        "X-Webhook-Signature": sign(secret, timestamp_ms, body),
        "X-Webhook-Event": event,
    }


class WebhookSender:
    """Posts signed webhook bodies. Any HTTP response counts as delivered."""

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, url: str, secret: str, event: str, body: bytes, timestamp_ms: int) -> DeliveryResult:
        headers = build_headers(secret, event, timestamp_ms, body)
        try:
            response = self.session.post(url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            return DeliveryResult(success=False, error=str(e)[:255])
        return DeliveryResult(success=True, status_code=response.status_code)

    def close(self):
        self.session.close()
