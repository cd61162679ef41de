"""
mailer.py
Outgoing email over SMTP (reminders, pledge completion, invitations).

Senders are plain callables `sender(to, subject, body)` so callers and tests
can swap in their own delivery.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid
from typing import Callable

from config import AppConfig
from errors import DonorDeskError

logger = logging.getLogger(__name__)

Sender = Callable[[str, str, str], None]


class EmailNotConfigured(DonorDeskError):
    """No SMTP server is configured, so nothing can be sent."""


def build_message(from_address: str, from_name: str, to: str, subject: str, body: str) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["From"] = formataddr((from_name, from_address))
    msg["To"] = to
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid(domain=from_address.rpartition("@")[2] or None)
    msg.attach(MIMEText(body, "plain", "utf-8"))
    return msg


class SmtpSender:
    """Deliver one message per call through the configured SMTP server."""

    def __init__(self, config: AppConfig, timeout: float = 30.0):
        if not config.email_enabled:
            raise EmailNotConfigured("Email is not configured. Set DONORDESK_SMTP_HOST and DONORDESK_SMTP_FROM.")
        self.config = config
        self.timeout = timeout
        self.from_address = config.smtp_from or config.smtp_username

    def __call__(self, to: str, subject: str, body: str) -> None:
        config = self.config
        msg = build_message(self.from_address, config.smtp_from_name, to, subject, body)
        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=self.timeout) as smtp:
            if config.smtp_starttls:
                smtp.starttls(context=ssl.create_default_context())
            if config.smtp_username:
                smtp.login(config.smtp_username, config.smtp_password or "")
            smtp.send_message(msg)
        logger.info("Sent %r to %s", subject, to, extra={"component": "mailer"})


def get_sender(config: AppConfig) -> Sender | None:
    """The SMTP sender, or None while email is not configured."""
    if not config.email_enabled:
        return None
    return SmtpSender(config)
