"""Signed outbound webhook delivery for agreement events."""
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
PDF_GENERATED = "agreement.pdf_generated"


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 of the raw body, formatted as sha256=<hex>."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def encode_event(event: str, data: dict, timestamp: Optional[datetime] = None) -> bytes:
    ts = (timestamp or datetime.now(timezone.utc)).isoformat()
    return json.dumps({"event": event, "data": data, "timestamp": ts}, sort_keys=True).encode()


def deliver_event(endpoints: Iterable, event: str, data: dict, client: Optional[httpx.Client] = None) -> dict:
    """
    POST the event to every endpoint (objects with url and secret).

    A failing endpoint is logged and counted; it never stops delivery to the
    others. Returns {"delivered": n, "failed": m}.
    """
    body = encode_event(event, data)
    stats = {"delivered": 0, "failed": 0}
    own_client = client is None
    http = client or httpx.Client(timeout=10.0)
    try:
        for endpoint in endpoints:
            headers = {
                "Content-Type": "application/json",
                SIGNATURE_HEADER: sign_payload(endpoint.secret, body),
            }
            try:
                r = http.post(endpoint.url, content=body, headers=headers)
                r.raise_for_status()
                stats["delivered"] += 1
            except httpx.HTTPError as e:
                stats["failed"] += 1
                logger.warning(f"Webhook delivery to {endpoint.url} failed: {e}")
    finally:
        if own_client:
            http.close()
    return stats
