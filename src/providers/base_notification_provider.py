# src/providers/base_notification_provider.py — v1
"""Abstract notification provider interface."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from audiobatch.providers.models import (
    Notification,
    ProviderTestResult,
    SendResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)


class BaseNotificationProvider(ABC):
    """Unified interface for notification channels.

    Subclasses implement validate_config() and _deliver(). configure() and
    send_notification() are shared: configure validates and stores the
    config, send_notification converts delivery failures into a failed
    SendResult so callers never see channel exceptions.
    """

    provider_type: str = ""
    test_title: str = "Test Notification"
    test_message: str = "This is a test notification from the audiobatch ingestion system."

    def __init__(self) -> None:
        self._config: dict[str, Any] | None = None
        self._enabled = False

    @abstractmethod
    def validate_config(self, config: dict[str, Any]) -> ValidationResult:
        """Check configuration without contacting the channel."""

    @abstractmethod
    async def _deliver(self, notification: Notification) -> str | None:
        """Send via the native channel; return a message id if one exists.

        Raises on failure.
        """

    async def configure(self, config: dict[str, Any]) -> bool:
        """Validate and store configuration; True when ready to send."""
        validation = self.validate_config(config)
        if not validation.valid:
            logger.warning(
                "Invalid %s configuration: %s",
                self.provider_type, ", ".join(validation.errors),
            )
            self._enabled = False
            return False
        self._config = dict(config)
        self._enabled = True
        return True

    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def config(self) -> dict[str, Any]:
        if self._config is None:
            raise RuntimeError(f"{self.provider_type} provider not configured")
        return self._config

    async def send_notification(self, notification: Notification) -> SendResult:
        """Deliver one notification. Never raises."""
        if not self._enabled:
            return SendResult(
                success=False,
                provider=self.provider_type,
                error=f"{self.provider_type} provider not configured",
            )
        try:
            message_id = await self._deliver(notification)
        except Exception as exc:
            logger.warning(
                "Failed to send %s notification: %s", self.provider_type, exc,
            )
            return SendResult(success=False, provider=self.provider_type, error=str(exc))
        return SendResult(success=True, provider=self.provider_type, id=message_id)

    async def test_notification(self, config: dict[str, Any]) -> ProviderTestResult:
        """Configure, then send a synthetic test message. Never raises."""
        validation = self.validate_config(config)
        if not validation.valid:
            return ProviderTestResult(
                success=False,
                error=f"Configuration validation failed: {', '.join(validation.errors)}",
            )
        if not await self.configure(config):
            return ProviderTestResult(
                success=False, error=f"Failed to configure {self.provider_type} provider",
            )
        result = await self.send_notification(
            Notification(
                title=self.test_title,
                message=self.test_message,
                type="test",
                data={"test": True},
            )
        )
        if not result.success:
            return ProviderTestResult(
                success=False,
                error=f"{self.provider_type} notification test failed: {result.error}",
            )
        return ProviderTestResult(
            success=True,
            message=f"{self.provider_type} notification provider test successful",
            details={"id": result.id} if result.id else {},
        )
