# src/providers/notifications/sms_provider.py — v1
"""SMS notification provider over the Twilio REST API (type "sms").

Config:
    account_sid: Twilio account SID (starts with "AC").
    auth_token: Twilio auth token.
    from_number: Sender number in E.164 format.
    to_number: Default recipient in E.164 format.
"""

from __future__ import annotations

import json
import re
from typing import Any

import aiohttp

from audiobatch.providers.base_notification_provider import BaseNotificationProvider
from audiobatch.providers.models import Notification, ValidationResult
from audiobatch.providers.notifications.http import post

SMS_MAX_LENGTH = 160
TWILIO_API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

_E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")


def is_valid_phone_number(number: str) -> bool:
    return bool(_E164_RE.match(number))


def format_sms_text(notification: Notification) -> str:
    """Single-line text, title first, truncated to one SMS segment."""
    text = notification.message
    if notification.title:
        text = f"{notification.title}: {text}"
    text = " ".join(text.split())
    if len(text) > SMS_MAX_LENGTH:
        text = text[: SMS_MAX_LENGTH - 3] + "..."
    return text


class SMSNotificationProvider(BaseNotificationProvider):
    provider_type = "sms"

    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        errors: list[str] = []
        sid = config.get("account_sid")
        if not sid:
            errors.append("Account SID is required")
        elif not str(sid).startswith("AC"):
            errors.append("Account SID must start with AC")

        if not config.get("auth_token"):
            errors.append("Auth token is required")

        from_number = config.get("from_number")
        if not from_number:
            errors.append("From number is required")
        elif not is_valid_phone_number(str(from_number)):
            errors.append("Invalid from number format")

        to_number = config.get("to_number")
        if not to_number:
            errors.append("To number is required")
        elif not is_valid_phone_number(str(to_number)):
            errors.append("Invalid to number format")
        return ValidationResult.from_errors(errors)

    async def _deliver(self, notification: Notification) -> str | None:
        cfg = self.config
        recipients = notification.recipients or [cfg["to_number"]]
        body = format_sms_text(notification)
        message_id: str | None = None
        for to_number in recipients:
            _, response = await post(
                TWILIO_API_URL.format(sid=cfg["account_sid"]),
                data={"From": cfg["from_number"], "To": to_number, "Body": body},
                auth=aiohttp.BasicAuth(cfg["account_sid"], cfg["auth_token"]),
            )
            try:
                message_id = json.loads(response).get("sid", message_id)
            except (ValueError, AttributeError):
                pass
        return message_id
