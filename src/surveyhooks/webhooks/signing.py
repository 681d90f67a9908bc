"""HMAC-SHA256 signatures for webhook payloads.

The ``X-Webhook-Signature`` header has the form::

    t=<unix-seconds>,v1=<hex digest>

where the digest is HMAC-SHA256, keyed by the webhook secret, over
``"<unix-seconds>.<raw body>"``. Receivers verify by recomputing the digest
from the header's timestamp and the raw body, comparing in constant time,
and rejecting timestamps older than their own tolerance window.
"""

from __future__ import annotations

import hashlib
import hmac
import time

SIGNATURE_VERSION = "v1"


def compute_signature(secret: str, timestamp: int, body: str) -> str:
    """Compute the hex HMAC-SHA256 digest of ``"{timestamp}.{body}"``.

    Args:
        secret: Shared secret for HMAC.
        timestamp: Unix time in seconds.
        body: Raw serialized JSON body.

    Returns:
        Lowercase hex digest.
    """
    signed_payload = f"{timestamp}.{body}"
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=signed_payload.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).hexdigest()


def sign(secret: str, timestamp: int, body: str) -> str:
    """Build the signature header value.

    Args:
        secret: Shared secret for HMAC.
        timestamp: Unix time in seconds.
        body: Raw serialized JSON body.

    Returns:
        Header value ``t=<timestamp>,v1=<digest>``.
    """
    digest = compute_signature(secret, timestamp, body)
    return f"t={timestamp},{SIGNATURE_VERSION}={digest}"


def parse_signature_header(header: str) -> tuple[int, list[str]] | None:
    """Split a signature header into its timestamp and v1 digests.

    Args:
        header: Header value, e.g. ``t=1700000000,v1=ab12...``.

    Returns:
        ``(timestamp, digests)``, or None when the header is malformed.
    """
    timestamp: int | None = None
    digests: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            return None
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None
        elif key == SIGNATURE_VERSION:
            digests.append(value)
    if timestamp is None or not digests:
        return None
    return timestamp, digests


def verify(secret: str, timestamp: int, body: str, header: str) -> bool:
    """Verify a signature header against a known timestamp and body.

    Args:
        secret: Shared secret for HMAC.
        timestamp: Timestamp the signature must carry.
        body: Raw body that was signed.
        header: Signature header to check.

    Returns:
        True if the header carries ``timestamp`` and a matching digest.
    """
    parsed = parse_signature_header(header)
    if parsed is None:
        return False
    header_timestamp, digests = parsed
    if header_timestamp != timestamp:
        return False
    expected = compute_signature(secret, timestamp, body)
    return any(hmac.compare_digest(expected, digest) for digest in digests)


def verify_header(
    secret: str,
    body: str,
    header: str,
    tolerance_seconds: int | None = 300,
    now: float | None = None,
) -> bool:
    """Receiver-side verification of an incoming delivery.

    Args:
        secret: Webhook secret shared with the sender.
        body: Raw request body exactly as received.
        header: ``X-Webhook-Signature`` value.
        tolerance_seconds: Reject signatures older (or further in the
            future) than this. None disables the freshness check.
        now: Current unix time, for tests.

    Returns:
        True if the signature is valid and fresh.
    """
    parsed = parse_signature_header(header)
    if parsed is None:
        return False
    timestamp, _ = parsed
    if tolerance_seconds is not None:
        current = time.time() if now is None else now
        if abs(current - timestamp) > tolerance_seconds:
            return False
    return verify(secret, timestamp, body, header)


__all__ = [
    "SIGNATURE_VERSION",
    "compute_signature",
    "parse_signature_header",
    "sign",
    "verify",
    "verify_header",
]
