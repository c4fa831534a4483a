"""
Notification and email delivery for workflow actions.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Callable

from sqlalchemy.orm import Session

from ..core.config import Settings
from ..models.notification import Notification as NotificationModel
from .collaborators import EmailSender, Notification
from .stores import json_safe

logger = logging.getLogger("notifications")


class SqlNotificationSender:
    """Stores notifications in the ``notifications`` table for the app to show."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def send(self, notification: Notification) -> None:
        with self._session_factory() as db:
            row = NotificationModel(
                recipient_user_id=notification.recipient_user_id,
                type=notification.type,
                title=notification.title,
                message=notification.message,
                priority=notification.priority,
                extra=json_safe(notification.metadata or {}),
                created_at=notification.created_at,
            )
            db.add(row)
            db.commit()
        logger.info(
            "Notification stored recipient=%s type=%s priority=%s",
            notification.recipient_user_id,
            notification.type,
            notification.priority,
        )


class LogEmailSender:
    def send_email(self, to: str, subject: str, body: str) -> None:
        logger.info("Log email to=%s subject=%s", to, subject)


class SmtpEmailSender:
    def __init__(self, settings: Settings) -> None:
        if not settings.smtp_host:
            raise RuntimeError("SMTP email disabled (missing SMTP_HOST)")
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password
        self.sender = settings.smtp_from or self.user or "shiftwise@localhost"
        self.starttls = settings.smtp_starttls

    def send_email(self, to: str, subject: str, body: str) -> None:
        recipients = [e.strip() for e in to.split(",") if e.strip()]
        if not recipients:
            raise ValueError("Email has no recipients")
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            server.ehlo()
            if self.starttls:
                server.starttls()
                server.ehlo()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(msg)
        logger.info("Email sent to=%s subject=%s", msg["To"], subject)


def get_email_sender(settings: Settings) -> EmailSender:
    provider = (settings.email_provider or "log").strip().lower()
    if provider == "smtp":
        try:
            return SmtpEmailSender(settings)
        except RuntimeError as exc:
            logger.error("%s; using log provider", exc)
    return LogEmailSender()
