#!/usr/bin/env python3
"""Receiver-side signature verification.

Shows what an endpoint does with an incoming delivery: read the raw body,
check ``X-Webhook-Signature`` against the shared secret and reject stale or
tampered requests.

No external dependencies required - runs entirely locally.
"""

import time

from surveyhooks.models import generate_secret
from surveyhooks.webhooks import compute_signature, parse_signature_header, sign, verify_header


def main() -> None:
    secret = generate_secret()
    body = '{"deliveryId":"7d1c","event":"response.submitted"}'
    timestamp = int(time.time())
    header = sign(secret, timestamp, body)

    print(f"Header:    {header}")
    print(f"Parsed:    {parse_signature_header(header)}")
    print(f"Digest:    {compute_signature(secret, timestamp, body)}")
    print()

    checks = [
        ("valid request", secret, body, header, None),
        ("tampered body", secret, body.replace("7d1c", "0000"), header, None),
        ("wrong secret", generate_secret(), body, header, None),
        ("replayed 10 minutes later", secret, body, header, timestamp + 600),
        ("malformed header", secret, body, "sha256=abc", None),
    ]
    for label, key, received, signature, now in checks:
        ok = verify_header(key, received, signature, now=now)
        print(f"  {label:<28} -> {'accepted' if ok else 'rejected'}")


if __name__ == "__main__":
    main()
