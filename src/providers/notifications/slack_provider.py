# src/providers/notifications/slack_provider.py — v1
"""Slack-style chat webhook notification provider (type "slack").

Config:
    webhook_url: Incoming webhook URL.
    channel: Target channel, must start with "#".
    username: Optional bot display name.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

from audiobatch.providers.base_notification_provider import BaseNotificationProvider
from audiobatch.providers.models import Notification, ValidationResult
from audiobatch.providers.notifications.http import post

logger = logging.getLogger(__name__)

_TYPE_COLORS: dict[str, str] = {
    "batch_completed": "good",
    "file_processed": "good",
    "success": "good",
    "batch_cancelled": "warning",
    "system_alert": "warning",
    "warning": "warning",
    "batch_failed": "danger",
    "file_failed": "danger",
    "error": "danger",
}
_DEFAULT_COLOR = "#36a64f"

# Data keys rendered as attachment fields, in display order.
_FIELD_KEYS: tuple[tuple[str, str], ...] = (
    ("batch_job_name", "Batch Job"),
    ("status", "Status"),
    ("processed_files", "Processed"),
    ("failed_files", "Failed"),
    ("skipped_files", "Skipped"),
    ("file_name", "File"),
    ("error_code", "Error Code"),
    ("retry_count", "Retry Count"),
)


def color_for_type(notification_type: str) -> str:
    return _TYPE_COLORS.get(notification_type, _DEFAULT_COLOR)


class SlackNotificationProvider(BaseNotificationProvider):
    provider_type = "slack"

    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        url = config.get("webhook_url")
        if not url:
            errors.append("Webhook URL is required")
        else:
            parsed = urlparse(str(url))
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append("Invalid webhook URL format")

        channel = config.get("channel")
        if not channel:
            errors.append("Channel is required")
        elif not str(channel).startswith("#"):
            errors.append("Channel must start with #")
        return ValidationResult.from_errors(errors)

    def build_payload(self, notification: Notification) -> dict[str, Any]:
        fields = [
            {"title": label, "value": str(notification.data[key]), "short": True}
            for key, label in _FIELD_KEYS
            if notification.data.get(key) is not None
        ]
        payload: dict[str, Any] = {
            "channel": self.config["channel"],
            "text": notification.message,
            "attachments": [
                {
                    "title": notification.title,
                    "text": notification.message,
                    "color": color_for_type(notification.type),
                    "fields": fields,
                }
            ],
        }
        if self.config.get("username"):
            payload["username"] = self.config["username"]
        return payload

    async def _deliver(self, notification: Notification) -> str | None:
        await post(self.config["webhook_url"], json=self.build_payload(notification))
        logger.debug("Slack notification sent to %s", self.config["channel"])
        return None
