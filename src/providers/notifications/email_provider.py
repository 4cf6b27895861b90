# src/providers/notifications/email_provider.py — v1
"""SMTP email notification provider (type "email").

Bodies are rendered as HTML plus a plaintext alternative, with a dedicated
layout for batch_completed, file_failed and system_alert notifications.
smtplib is blocking, so every SMTP exchange runs in a worker thread.

Config:
    host, port: SMTP server.
    secure: Use implicit TLS (SMTP_SSL); otherwise STARTTLS is attempted.
    username, password: SMTP credentials.
    from: Sender address.
    to: Default recipient list.
    subject: Subject for notification types without a dedicated layout.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Any

from audiobatch.providers.base_notification_provider import BaseNotificationProvider
from audiobatch.providers.models import Notification, ValidationResult

logger = logging.getLogger(__name__)

SUBJECT_PREFIX = "[Audio Batch]"
SMTP_TIMEOUT_SECONDS = 30

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(address: str) -> bool:
    return bool(_EMAIL_RE.match(address))


def _format_error_summary(summary: Any) -> str:
    if isinstance(summary, dict):
        by_code = summary.get("by_error_code") or {}
        if by_code:
            return ", ".join(f"{code}: {count}" for code, count in by_code.items())
        return ""
    return str(summary or "")


def build_subject(notification: Notification, default: str) -> str:
    data = notification.data
    if notification.type in ("batch_completed", "batch_failed", "batch_cancelled"):
        title = {
            "batch_completed": "Batch Processing Completed",
            "batch_failed": "Batch Processing Failed",
            "batch_cancelled": "Batch Processing Cancelled",
        }[notification.type]
        return f"{SUBJECT_PREFIX} {title} - {data.get('batch_job_name', 'Unknown Job')}"
    if notification.type == "file_failed":
        return f"{SUBJECT_PREFIX} File Processing Failed - {data.get('file_name', 'Unknown File')}"
    if notification.type == "system_alert":
        return f"{SUBJECT_PREFIX} System Alert - {data.get('level', 'Warning')}"
    return f"{SUBJECT_PREFIX} {notification.title or default}"


def build_bodies(notification: Notification) -> tuple[str, str]:
    """Return (html, text) bodies for a notification."""
    data = notification.data
    now = datetime.now(timezone.utc).isoformat()

    if notification.type in ("batch_completed", "batch_failed", "batch_cancelled"):
        heading = notification.title or "Batch Processing Completed"
        rows = [
            ("Batch Job", data.get("batch_job_name", "Unknown")),
            ("Status", data.get("status", "completed")),
            ("Files Processed", data.get("processed_files", 0)),
            ("Files Failed", data.get("failed_files", 0)),
            ("Files Skipped", data.get("skipped_files", 0)),
            ("Completion Time", data.get("completion_time", now)),
        ]
        summary = _format_error_summary(data.get("error_summary"))
        if summary:
            rows.append(("Error Summary", summary))
        accent = "#28a745" if notification.type == "batch_completed" else "#dc3545"
    elif notification.type == "file_failed":
        heading = "File Processing Failed"
        rows = [
            ("File", data.get("file_name", "Unknown")),
            ("Error", data.get("error", "Unknown error")),
            ("Error Code", data.get("error_code", "UNKNOWN")),
            ("Retry Count", data.get("retry_count", 0)),
            ("Timestamp", data.get("timestamp", now)),
        ]
        accent = "#dc3545"
    elif notification.type == "system_alert":
        heading = "System Alert"
        rows = [
            ("Alert Level", data.get("level", "Warning")),
            ("Message", notification.message),
            ("Timestamp", data.get("timestamp", now)),
        ]
        if data.get("details"):
            rows.append(("Details", data["details"]))
        accent = "#ffc107"
    else:
        heading = notification.title or "Audio Batch Notification"
        rows = []
        accent = "#007bff"

    if rows:
        inner = "".join(
            f"<p><strong>{html.escape(label)}:</strong> {html.escape(str(value))}</p>"
            for label, value in rows
        )
        text = "\n".join([heading, ""] + [f"{label}: {value}" for label, value in rows])
    else:
        inner = f"<p>{html.escape(notification.message)}</p>"
        text = f"{heading}\n\n{notification.message}"

    body_html = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #333;">{html.escape(heading)}</h2>'
        f'<div style="padding: 20px; border-left: 4px solid {accent};">{inner}</div>'
        "</div>"
    )
    return body_html, text


class EmailNotificationProvider(BaseNotificationProvider):
    provider_type = "email"
    test_title = "Test Email"

    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        if not config.get("host"):
            errors.append("SMTP host is required")

        port = config.get("port")
        if port is None:
            errors.append("SMTP port is required")
        elif not isinstance(port, int) or not 1 <= port <= 65535:
            errors.append("SMTP port must be a valid port number (1-65535)")

        if not config.get("username"):
            errors.append("SMTP username is required")
        if not config.get("password"):
            errors.append("SMTP password is required")

        sender = config.get("from")
        if not sender:
            errors.append("From email address is required")
        elif not is_valid_email(str(sender)):
            errors.append("Invalid from email address format")

        recipients = config.get("to") or []
        if not isinstance(recipients, list):
            errors.append("Recipients must be a list")
        else:
            for address in recipients:
                if not is_valid_email(str(address)):
                    errors.append(f"Invalid recipient email format: {address}")
        return ValidationResult.from_errors(errors)

    async def configure(self, config: dict[str, Any]) -> bool:
        if not await super().configure(config):
            return False
        try:
            await asyncio.to_thread(self._verify)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP verification failed for %s: %s", config.get("host"), exc)
            self._enabled = False
            return False
        return True

    def _open(self) -> smtplib.SMTP:
        cfg = self.config
        if cfg.get("secure"):
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(
                cfg["host"], cfg["port"], timeout=SMTP_TIMEOUT_SECONDS
            )
        else:
            smtp = smtplib.SMTP(cfg["host"], cfg["port"], timeout=SMTP_TIMEOUT_SECONDS)
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
        smtp.login(cfg["username"], cfg["password"])
        return smtp

    def _verify(self) -> None:
        smtp = self._open()
        smtp.quit()

    def build_message(self, notification: Notification) -> EmailMessage:
        cfg = self.config
        recipients = notification.recipients or cfg.get("to") or [cfg["username"]]
        body_html, body_text = build_bodies(notification)

        msg = EmailMessage()
        msg["From"] = cfg["from"]
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = build_subject(notification, cfg.get("subject", "System Notification"))
        msg.set_content(body_text)
        msg.add_alternative(body_html, subtype="html")
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        smtp = self._open()
        try:
            smtp.send_message(msg)
        finally:
            smtp.quit()

    async def _deliver(self, notification: Notification) -> str | None:
        msg = self.build_message(notification)
        await asyncio.to_thread(self._send_sync, msg)
        logger.debug("Email sent to %s", msg["To"])
        return msg.get("Message-ID")
