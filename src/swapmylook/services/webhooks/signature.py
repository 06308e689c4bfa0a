"""HMAC signature validation for Standard Webhooks deliveries.

Both the generation provider and the payment provider sign webhooks following
the Standard Webhooks scheme:

    webhook-id:        unique delivery id (also the idempotency key)
    webhook-timestamp: Unix seconds when the delivery was signed
    webhook-signature: space-separated "v1,<base64 HMAC-SHA256>" candidates

The signed content is ``{webhook-id}.{webhook-timestamp}.{raw body}``.

Security Note:
    verify_webhook_signature MUST be called before the body is parsed or any
    state is touched. Return 401 Unauthorized immediately if it fails.
"""

import base64
import binascii
import hashlib
import hmac
import time
from typing import Mapping

SECRET_PREFIX = "whsec_"
SIGNATURE_VERSION = "v1"
DEFAULT_TOLERANCE_SECONDS = 300


def _secret_bytes(secret: str) -> bytes:
    # whsec_-prefixed secrets are base64; anything else is used as raw text
    if secret.startswith(SECRET_PREFIX):
        return base64.b64decode(secret[len(SECRET_PREFIX) :])
    return secret.encode("utf-8")


def compute_signature(secret: str, webhook_id: str, timestamp: str, raw_body: bytes) -> str:
    """Base64 HMAC-SHA256 over the signed content.

    Args:
        secret: Shared signing secret (optionally whsec_-prefixed)
        webhook_id: Value of the webhook-id header
        timestamp: Value of the webhook-timestamp header
        raw_body: Exact request body bytes

    Returns:
        Base64-encoded digest (without the version prefix)
    """
    signed_content = f"{webhook_id}.{timestamp}.".encode("utf-8") + raw_body
    digest = hmac.new(_secret_bytes(secret), signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    """Validate a webhook delivery.

    Fails closed: a missing id, timestamp, signature or secret is invalid, as is
    a timestamp outside ``tolerance_seconds`` of ``now``. The delivery is valid
    if any v1 candidate matches (secret rotation sends several).

    Args:
        raw_body: Raw request body bytes (NOT parsed JSON)
        headers: Request headers; lookup is case-insensitive
        secret: Shared signing secret for this provider
        tolerance_seconds: Allowed clock skew / replay window
        now: Current Unix time (defaults to time.time())

    Returns:
        True if the request is authentic, False otherwise.

    Security:
        - Uses hmac.compare_digest() for constant-time comparison.
        - Pure function: reads no state and writes none.
    """
    normalized = {key.lower(): value for key, value in headers.items()}
    webhook_id = normalized.get("webhook-id", "")
    timestamp = normalized.get("webhook-timestamp", "")
    signature_header = normalized.get("webhook-signature", "")

    if not (webhook_id and timestamp and signature_header and secret):
        return False

    try:
        sent_at = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - sent_at) > tolerance_seconds:
        return False

    try:
        expected = compute_signature(secret, webhook_id, timestamp, raw_body)
    except (binascii.Error, ValueError):
        # Malformed whsec_ secret
        return False

    for candidate in signature_header.split(" "):
        version, _, value = candidate.partition(",")
        if version != SIGNATURE_VERSION or not value:
            continue
        if hmac.compare_digest(expected.encode("ascii"), value.encode("ascii", errors="replace")):
            return True

    return False
