# src/providers/notifications/webhook_provider.py — v1
"""Generic JSON webhook notification provider (type "webhook").

Config:
    url: HTTP(S) endpoint receiving the JSON payload.
    timeout: Request timeout in milliseconds, 1000-30000 (default 10000).
    headers: Optional extra request headers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from audiobatch.providers.base_notification_provider import BaseNotificationProvider
from audiobatch.providers.models import Notification, ValidationResult
from audiobatch.providers.notifications.http import post
from audiobatch.version import __version__

DEFAULT_TIMEOUT_MS = 10000
MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 30000


class WebhookNotificationProvider(BaseNotificationProvider):
    provider_type = "webhook"

    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        url = config.get("url")
        if not url:
            errors.append("Webhook URL is required")
        else:
            parsed = urlparse(str(url))
            if parsed.scheme not in ("http", "https"):
                errors.append("Webhook URL must use HTTP or HTTPS protocol")
            elif not parsed.netloc:
                errors.append("Invalid webhook URL format")

        timeout = config.get("timeout")
        if timeout is not None:
            try:
                value = int(timeout)
            except (TypeError, ValueError):
                value = -1
            if value < MIN_TIMEOUT_MS or value > MAX_TIMEOUT_MS:
                errors.append(
                    f"Timeout must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS} milliseconds"
                )

        headers = config.get("headers")
        if headers is not None and not isinstance(headers, dict):
            errors.append("Headers must be an object")
        return ValidationResult.from_errors(errors)

    def build_payload(self, notification: Notification) -> dict[str, Any]:
        return {
            "provider": "audiobatch",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": notification.type,
            "title": notification.title,
            "message": notification.message,
            "data": notification.data,
        }

    async def _deliver(self, notification: Notification) -> str | None:
        cfg = self.config
        headers = {"Content-Type": "application/json", "User-Agent": f"audiobatch/{__version__}"}
        headers.update(cfg.get("headers") or {})
        await post(
            cfg["url"],
            json=self.build_payload(notification),
            headers=headers,
            timeout=int(cfg.get("timeout") or DEFAULT_TIMEOUT_MS) / 1000,
        )
        return None
