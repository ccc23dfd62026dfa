"""
Slack request signing.

Verifies inbound slash-command requests and builds outbound message bodies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any, Mapping

logger = logging.getLogger(__name__)

SIGNATURE_VERSION = "v0"
MAX_TIMESTAMP_AGE_SECONDS = 300

TIMESTAMP_HEADER = "x-slack-request-timestamp"
SIGNATURE_HEADER = "x-slack-signature"


class SlackSignatureError(Exception):
    """Raised when an inbound Slack request fails verification."""


def compute_signature(signing_secret: str, timestamp: str, body: bytes) -> str:
    """`v0=` + hex HMAC-SHA256 over `v0:{timestamp}:{body}`."""
    basestring = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    digest = hmac.new(signing_secret.encode("utf-8"), basestring, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_slack_signature(
    headers: Mapping[str, str],
    body: bytes,
    signing_secret: str | None,
    now: float | None = None,
) -> None:
    """
    Verify a Slack request signature.

    An empty signing secret means development mode: verification is skipped
    with a warning.

    Raises:
        SlackSignatureError: missing headers, stale timestamp, or bad signature.
    """
    if not signing_secret:
        logger.warning("SLACK_SIGNING_SECRET not set, skipping Slack signature verification")
        return

    timestamp = headers.get(TIMESTAMP_HEADER)
    signature = headers.get(SIGNATURE_HEADER)
    if not timestamp or not signature:
        raise SlackSignatureError("Missing Slack signature headers")

    try:
        request_time = int(timestamp)
    except ValueError:
        raise SlackSignatureError("Invalid Slack request timestamp")

    current = time.time() if now is None else now
    if abs(current - request_time) > MAX_TIMESTAMP_AGE_SECONDS:
        raise SlackSignatureError("Slack request timestamp is too old")

    expected = compute_signature(signing_secret, timestamp, body)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
        raise SlackSignatureError("Slack signature mismatch")


# ---------------------------------------------------------------------------
# Message helpers
# ---------------------------------------------------------------------------

def header_block(text: str) -> dict[str, Any]:
    return {"type": "header", "text": {"type": "plain_text", "text": text, "emoji": True}}


def section_block(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def context_block(text: str) -> dict[str, Any]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


def ephemeral_response(text: str, blocks: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Slash-command response visible only to the caller."""
    return {
        "response_type": "ephemeral",
        "text": text,
        "blocks": blocks or [section_block(text)],
    }
