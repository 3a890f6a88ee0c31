"""Signatures for notification webhook deliveries.

A delivery carries two headers:

    X-BidEval-Timestamp: <unix seconds>
    X-BidEval-Signature: sha256=<hex HMAC-SHA256 of "<timestamp>.<body>">

Receivers recompute the HMAC over the raw body and reject timestamps outside
the tolerance window. Secrets and signature headers are never logged.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass

HEADER_TIMESTAMP = "X-BidEval-Timestamp"
HEADER_SIGNATURE = "X-BidEval-Signature"
SIGNATURE_PREFIX = "sha256="
DEFAULT_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class WebhookSignature:
    timestamp: int
    signature: str

    @property
    def headers(self) -> dict[str, str]:
        return {
            HEADER_TIMESTAMP: str(self.timestamp),
            HEADER_SIGNATURE: f"{SIGNATURE_PREFIX}{self.signature}",
        }


def compute_hmac_signature(secret: str, timestamp: int, payload: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), digestmod=hashlib.sha256)
    digest.update(f"{timestamp}.".encode())
    digest.update(payload)
    return digest.hexdigest()


def sign_payload(secret: str, timestamp: int, payload: bytes) -> WebhookSignature:
    """Sign a serialized notification body."""
    return WebhookSignature(
        timestamp=timestamp, signature=compute_hmac_signature(secret, timestamp, payload)
    )


def verify_signature(
    secret: str,
    timestamp: int,
    payload: bytes,
    signature: str,
    *,
    now: float | None = None,
    tolerance_seconds: int | None = DEFAULT_TOLERANCE_SECONDS,
) -> bool:
    """Check a received delivery.

    Args:
        signature: X-BidEval-Signature value, with or without the prefix.
        now: Current unix time; defaults to the system clock.
        tolerance_seconds: Maximum clock skew in either direction. None
            disables the replay check.
    """
    if tolerance_seconds is not None:
        current = time.time() if now is None else now
        if abs(current - timestamp) > tolerance_seconds:
            return False
    received = signature.removeprefix(SIGNATURE_PREFIX)
    return hmac.compare_digest(compute_hmac_signature(secret, timestamp, payload), received)
