import hmac
import hashlib
import time
from typing import Optional, Union


def sign(secret: str, timestamp_ms: int, body: Union[bytes, str]) -> str:
    """
    Generate the signature for an outbound webhook.

    The digest covers ``"<timestamp>.<body>"`` so a captured request cannot be
    replayed later with a different timestamp header.

    Args:
        secret: The subscription secret
        timestamp_ms: Milliseconds since the epoch, as sent in X-Webhook-Timestamp
        body: The exact bytes transmitted as the request body

    Returns:
        Hex-encoded HMAC-SHA256 signature
    """
    if isinstance(body, str):
        body = body.encode("utf-8")

    mac = hmac.new(key=secret.encode("utf-8"), digestmod=hashlib.sha256)
    mac.update(str(timestamp_ms).encode("ascii"))
    mac.update(b".")
    mac.update(body)
    return mac.hexdigest()


def verify_signature(
    secret: str,
    timestamp: Union[str, int],
    body: Union[bytes, str],
    signature: str,
    tolerance_seconds: int = 300,
    now_ms: Optional[int] = None,
) -> bool:
    """
    Verify a received webhook the way a subscriber should.

    Args:
        secret: The shared subscription secret
        timestamp: Value of the X-Webhook-Timestamp header
        body: The raw request body as received
        signature: Value of the X-Webhook-Signature header
        tolerance_seconds: Maximum accepted age (or clock skew) of the timestamp
        now_ms: Current time in milliseconds, defaults to the system clock

    Returns:
        Boolean indicating if the request is authentic and fresh
    """
    try:
        timestamp_ms = int(timestamp)
    except (TypeError, ValueError):
        return False

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if abs(now_ms - timestamp_ms) > tolerance_seconds * 1000:
        return False

    expected_signature = sign(secret, timestamp_ms, body)
    return hmac.compare_digest(expected_signature.encode("ascii"), (signature or "").encode("utf-8"))
