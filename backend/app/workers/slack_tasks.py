"""
Slack background tasks.

Outbound Slack messages are posted here, off the request path.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.slack_tasks.post_slack_message", bind=True, max_retries=3)
def post_slack_message(
    self,  # type: ignore[no-untyped-def]
    credentials: dict[str, Any],
    message: dict[str, Any],
    event: str,
) -> dict[str, str]:
    """
    Deliver one message to a Slack channel.

    Transport errors are retried with linear back-off. Errors reported by
    Slack itself (bad token, unknown channel) are logged and not retried.
    """
    from app.services.slack_service import SlackDeliveryError, deliver_slack_message

    try:
        channel = deliver_slack_message(credentials, message)
    except SlackDeliveryError as exc:
        logger.warning("Slack rejected %s message: %s", event, exc)
        return {"status": "rejected", "error": str(exc)}
    except httpx.HTTPError as exc:
        logger.warning("Slack delivery of %s failed: %s", event, exc)
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

    return {"status": "sent" if channel != "skipped" else "skipped", "via": channel}
