"""Lark webhook signature validation and request classification."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError

from lark_minutes.webhooks.models import UrlVerificationChallenge, WebhookPayload

SIGNATURE_HEADER = "X-Lark-Signature"
TIMESTAMP_HEADER = "X-Lark-Request-Timestamp"
NONCE_HEADER = "X-Lark-Request-Nonce"

MAX_TIMESTAMP_AGE_SECONDS = 300


# ---------------------------------------------------------------------------
# Signature validation
# ---------------------------------------------------------------------------

def compute_signature(timestamp: str, nonce: str, body: bytes, encrypt_key: str) -> str:
    content = timestamp.encode() + nonce.encode() + body
    return hmac.new(encrypt_key.encode(), content, hashlib.sha256).hexdigest()


def timestamp_age(timestamp: str, now: float | None = None) -> int | None:
    """Seconds between ``timestamp`` and now, or None if it is not an integer."""
    try:
        sent = int(timestamp)
    except ValueError:
        return None
    current = int(now if now is not None else time.time())
    return abs(current - sent)


def validate_lark_signature(
    body: bytes,
    signature: str,
    timestamp: str,
    nonce: str,
    encrypt_key: str,
    now: float | None = None,
) -> str | None:
    """Check a Lark event signature. Returns None if valid, else the reason.

    Rejects everything when no encrypt key is configured.
    """
    if not encrypt_key:
        return "Encrypt key not configured"
    if not signature:
        return "Missing signature header"
    if not timestamp:
        return "Missing timestamp header"
    if not nonce:
        return "Missing nonce header"

    age = timestamp_age(timestamp, now)
    if age is None:
        return "Malformed timestamp header"
    if age > MAX_TIMESTAMP_AGE_SECONDS:
        return f"Timestamp expired (age: {age}s)"

    expected = compute_signature(timestamp, nonce, body, encrypt_key)
    if not hmac.compare_digest(expected.encode(), signature.lower().encode()):
        return "Invalid signature"
    return None


def validate_verification_token(provided: str, configured: str) -> bool:
    if not configured or not provided:
        return False
    return hmac.compare_digest(provided.encode(), configured.encode())


# ---------------------------------------------------------------------------
# Request classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChallengeRequest:
    challenge: str


@dataclass(frozen=True)
class EventRequest:
    payload: WebhookPayload


@dataclass(frozen=True)
class RejectedRequest:
    status: int
    message: str
    details: Any = None


WebhookRequest = ChallengeRequest | EventRequest | RejectedRequest


def parse_webhook_body(body: bytes) -> UrlVerificationChallenge | WebhookPayload | RejectedRequest:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return RejectedRequest(400, "Invalid JSON body", str(e))

    if not isinstance(data, dict):
        return RejectedRequest(400, "Invalid webhook payload")

    if data.get("type") == "url_verification":
        try:
            return UrlVerificationChallenge.model_validate(data)
        except ValidationError as e:
            return RejectedRequest(400, "Invalid verification challenge", e.errors())

    try:
        return WebhookPayload.parse(data)
    except ValidationError as e:
        return RejectedRequest(400, "Invalid webhook payload", e.errors())


def process_webhook_request(
    body: bytes,
    headers: Mapping[str, str],
    encrypt_key: str,
    verification_token: str,
    skip_signature_verification: bool = False,
) -> WebhookRequest:
    """Classify an inbound request as a challenge, a valid event, or a rejection.

    Challenges are checked against the verification token only. Everything
    else must carry a valid signature; payload errors are reported only for
    signed requests.
    """
    parsed = parse_webhook_body(body)

    if isinstance(parsed, UrlVerificationChallenge):
        if not validate_verification_token(parsed.token, verification_token):
            return RejectedRequest(401, "Invalid verification token")
        return ChallengeRequest(parsed.challenge)

    if not skip_signature_verification:
        reason = validate_lark_signature(
            body,
            headers.get(SIGNATURE_HEADER, ""),
            headers.get(TIMESTAMP_HEADER, ""),
            headers.get(NONCE_HEADER, ""),
            encrypt_key,
        )
        if reason is not None:
            return RejectedRequest(401, reason)

    if isinstance(parsed, RejectedRequest):
        return parsed
    return EventRequest(parsed)
