"""Outbound notifications: templated email and JSON webhooks, both with retry."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from email.utils import parseaddr
from typing import Any, Dict, Optional

import requests
from flask import current_app, render_template
from flask_mail import Mail, Message

mail = Mail()
logger = logging.getLogger(__name__)


@dataclass
class EmailPayload:
    to_email: str
    subject: str
    template_name: str
    context: dict
    sender: Optional[str] = None


def init_mail(app):
    mail.init_app(app)


def is_valid_recipient(email: str) -> bool:
    _, parsed = parseaddr(email or "")
    return bool(parsed and "@" in parsed)


def send_templated_email(payload: EmailPayload, *, retries: int = 3, backoff_s: float = 1.5) -> bool:
    if not is_valid_recipient(payload.to_email):
        logger.warning("Skipping email; invalid recipient: %s", payload.to_email)
        return False

    html_body = render_template(f"emails/{payload.template_name}.html", **payload.context)
    text_body = render_template(f"emails/{payload.template_name}.txt", **payload.context)

    msg = Message(
        subject=payload.subject,
        recipients=[payload.to_email],
        html=html_body,
        body=text_body,
        sender=payload.sender or current_app.config.get("MAIL_DEFAULT_SENDER"),
    )

    for attempt in range(1, max(1, retries) + 1):
        try:
            mail.send(msg)
            logger.info("Email sent: subject=%s to=%s", payload.subject, payload.to_email)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.exception("Email send failed on attempt %s: %s", attempt, exc)
            if attempt < retries:
                time.sleep(backoff_s * attempt)

    return False


def send_webhook(url: str, payload: Dict[str, Any], *, retries: int = 3, backoff_s: float = 1.5, timeout: float = 5.0) -> bool:
    """POST ``payload`` as JSON. Any 2xx response counts as delivered."""
    if not url or not url.startswith(("http://", "https://")):
        logger.warning("Skipping webhook; invalid url: %r", url)
        return False

    for attempt in range(1, max(1, retries) + 1):
        try:
            resp = requests.post(url, json=payload, timeout=timeout)
            if 200 <= resp.status_code < 300:
                logger.info("Webhook delivered: event=%s url=%s", payload.get("event"), url)
                return True
            logger.warning("Webhook %s answered %s on attempt %s", url, resp.status_code, attempt)
        except requests.RequestException as exc:
            logger.warning("Webhook %s failed on attempt %s: %s", url, attempt, exc)
        if attempt < retries:
            time.sleep(backoff_s * attempt)

    return False


def notify_new_lead(lead, settings) -> Dict[str, bool]:
    """
    Relay a new lead to the site admin by email and to the configured webhook.

    Either channel may be unconfigured; that is logged and skipped. The lead
    itself is already stored, so failures here are never raised.
    """
    config = current_app.config
    retries = config.get("NOTIFY_MAX_RETRIES", 3)
    backoff = config.get("NOTIFY_BACKOFF_SECONDS", 1.5)
    result = {"email": False, "webhook": False}

    if config.get("MAIL_ENABLED") and settings.admin_email:
        result["email"] = send_templated_email(
            EmailPayload(
                to_email=settings.admin_email,
                subject=f"New Lead: {lead.name} - {lead.company or 'No Company'}",
                template_name="lead_notification",
                context={"lead": lead},
                sender=settings.smtp_from,
            ),
            retries=retries,
            backoff_s=backoff,
        )
    else:
        logger.info("SMTP not configured, skipping lead email for %s", lead.id)

    if settings.webhook_url:
        result["webhook"] = send_webhook(
            settings.webhook_url,
            {"event": "lead.created", "lead": lead.notification_payload()},
            retries=retries,
            backoff_s=backoff,
            timeout=config.get("WEBHOOK_TIMEOUT", 5.0),
        )

    return result
