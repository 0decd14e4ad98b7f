# clubhouse/emailer.py
from __future__ import annotations

import logging
import smtplib
import socket
from email.message import EmailMessage

from clubhouse.config import Settings, get_settings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 15


def build_message(settings: Settings, to_email: str, subject: str, body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{settings.smtp_from_name} <{settings.smtp_from_email}>"
    msg["To"] = to_email
    msg.set_content(body)
    return msg


def _deliver(settings: Settings, msg: EmailMessage) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=SMTP_TIMEOUT_SECONDS) as server:
        server.ehlo()
        server.starttls()
        server.login(settings.smtp_username, settings.smtp_password)
        server.send_message(msg)


def send_email_if_configured(to_email: str, subject: str, body: str) -> bool:
    """
    Best-effort delivery: mail failures never break the request that sent it.

    Returns True only when the message was handed to the SMTP server.
    """
    settings = get_settings()
    if not settings.email_enabled:
        return False
    if not settings.smtp_configured:
        logger.warning("Email to %s skipped: SMTP host, credentials or sender not configured", to_email)
        return False

    msg = build_message(settings, to_email, subject, body)
    try:
        _deliver(settings, msg)
    except socket.gaierror as e:
        logger.error("Email to %s failed: cannot resolve SMTP host %r (%s)", to_email, settings.smtp_host, e)
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email to %s failed: %s", to_email, e)
        return False

    logger.info("Email sent to %s: %s", to_email, subject)
    return True
