"""
Email background tasks.

Invitation emails and password reset PINs, sent through Resend. Requests
only enqueue these, so a provider outage never fails the write that caused
the email.
"""

from __future__ import annotations

import logging

import resend

from app.core.config import settings
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

RETRY_STEP_SECONDS = 60


def _send(to_email: str, subject: str, html: str) -> str:
    """Hand one message to Resend. Returns the provider message id."""
    resend.api_key = settings.RESEND_API_KEY
    params: resend.Emails.SendParams = {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": subject,
        "html": html,
    }
    response = resend.Emails.send(params)
    return response["id"]


@celery_app.task(
    name="app.workers.email_tasks.send_project_invitation_email", bind=True, max_retries=3
)
def send_project_invitation_email(
    self,  # type: ignore[no-untyped-def]
    to_email: str,
    project_name: str,
    inviter_name: str,
    role: str,
    invitation_token: str,
    frontend_url: str,
    expire_days: int,
) -> dict[str, str]:
    """
    Invite an address that has no account yet.

    The link lands on the frontend's invitation page, which accepts or
    declines by token once the recipient has signed up.
    """
    accept_url = f"{frontend_url}/invitations/{invitation_token}"
    html = f"""
        <h2>You've been invited to Teamboard</h2>
        <p><strong>{inviter_name}</strong> wants you on <strong>{project_name}</strong>
        as a <strong>{role}</strong>.</p>
        <p>
            <a href="{accept_url}"
               style="background:#3B82F6;color:#fff;padding:12px 24px;
                      border-radius:6px;text-decoration:none;display:inline-block;">
                Open invitation
            </a>
        </p>
        <p>The invitation expires in {expire_days} days.</p>
    """
    try:
        message_id = _send(to_email, f"{inviter_name} invited you to {project_name}", html)
    except Exception as exc:
        logger.warning("Invitation email to %s failed: %s", to_email, exc)
        raise self.retry(exc=exc, countdown=RETRY_STEP_SECONDS * (self.request.retries + 1))

    logger.info("Invitation email sent to %s", to_email)
    return {"status": "sent", "message_id": message_id}


@celery_app.task(
    name="app.workers.email_tasks.send_password_reset_pin_email", bind=True, max_retries=3
)
def send_password_reset_pin_email(
    self,  # type: ignore[no-untyped-def]
    to_email: str,
    pin: str,
    expire_minutes: int,
) -> dict[str, str]:
    html = f"""
        <h2>Reset your Teamboard password</h2>
        <p style="font-size:28px;letter-spacing:6px;font-weight:bold;">{pin}</p>
        <p>Enter this PIN within {expire_minutes} minutes. Ignore this email if
        you did not ask for a reset.</p>
    """
    try:
        message_id = _send(to_email, "Your Teamboard reset PIN", html)
    except Exception as exc:
        logger.warning("Password reset email to %s failed: %s", to_email, exc)
        raise self.retry(exc=exc, countdown=RETRY_STEP_SECONDS * (self.request.retries + 1))
    return {"status": "sent", "message_id": message_id}
