# src/notifications/dispatcher.py — v2
"""Notification dispatcher: match events against configs and fan out.

Delivery failures are logged and recorded in the dispatch history; they
never propagate to the caller and are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from audiobatch.core.models import NOTIFICATION_EVENTS, NotificationConfig
from audiobatch.providers.base_notification_provider import BaseNotificationProvider
from audiobatch.providers.models import Notification, SendResult
from audiobatch.providers.registry import ProviderFactory
from audiobatch.store.base_store import BaseStore

logger = logging.getLogger(__name__)

_EVENT_TITLES: dict[str, str] = {
    "file_processed": "File Processed",
    "file_failed": "File Processing Failed",
    "batch_completed": "Batch Processing Completed",
    "batch_failed": "Batch Processing Failed",
    "batch_cancelled": "Batch Processing Cancelled",
}


class DispatchRecord(BaseModel):
    """One delivery attempt, kept for operator inspection."""

    event: str
    config_id: str
    config_name: str
    result: SendResult
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def render_notification(event: str, data: dict[str, Any]) -> Notification:
    """Build the channel-agnostic notification for an event."""
    title = _EVENT_TITLES.get(event, event.replace("_", " ").title())
    if event.startswith("batch_"):
        message = (
            f"Batch job '{data.get('batch_job_name', data.get('job_id', ''))}' "
            f"{data.get('status', event.removeprefix('batch_'))}: "
            f"{data.get('processed_files', 0)} processed, "
            f"{data.get('failed_files', 0)} failed, "
            f"{data.get('skipped_files', 0)} skipped"
        )
    elif event == "file_failed":
        message = (
            f"File {data.get('file_name', '')} failed with "
            f"{data.get('error_code', 'UNKNOWN')}: {data.get('error', '')}"
        )
    else:
        message = f"File {data.get('file_name', '')} processed successfully"
    return Notification(title=title, message=message, type=event, data=data)


class NotificationDispatcher:
    """Fans one event out to every subscribed, configured provider."""

    def __init__(
        self,
        providers: list[tuple[NotificationConfig, BaseNotificationProvider]] | None = None,
        history_limit: int = 500,
    ) -> None:
        self._providers = list(providers or [])
        self._history: list[DispatchRecord] = []
        self._history_limit = history_limit

    @classmethod
    async def from_store(cls, store: BaseStore, factory: ProviderFactory) -> NotificationDispatcher:
        """Create providers for every active notification config in the store."""
        configs = await store.list_notification_configs(active_only=True)
        return cls(await factory.create_notification_providers(configs))

    @property
    def provider_count(self) -> int:
        return len(self._providers)

    @property
    def history(self) -> list[DispatchRecord]:
        return list(self._history)

    def _matching(
        self, event: str, data: dict[str, Any],
    ) -> list[tuple[NotificationConfig, BaseNotificationProvider]]:
        return [
            (cfg, provider) for cfg, provider in self._providers
            if any(cond.matches(event, data) for cond in cfg.conditions)
        ]

    def subscribers(self, event: str, data: dict[str, Any]) -> list[NotificationConfig]:
        return [cfg for cfg, _ in self._matching(event, data)]

    async def dispatch(self, event: str, data: dict[str, Any]) -> list[SendResult]:
        """Send ``event`` to every matching provider. Never raises."""
        if event not in NOTIFICATION_EVENTS:
            logger.warning("Ignoring unknown notification event: %s", event)
            return []

        targets = self._matching(event, data)
        if not targets:
            return []

        notification = render_notification(event, data)
        results = await asyncio.gather(
            *(self._send(cfg, provider, notification) for cfg, provider in targets)
        )
        for (cfg, _), result in zip(targets, results):
            self._record(DispatchRecord(
                event=event, config_id=cfg.id, config_name=cfg.name, result=result,
            ))
        return list(results)

    async def _send(
        self,
        cfg: NotificationConfig,
        provider: BaseNotificationProvider,
        notification: Notification,
    ) -> SendResult:
        try:
            result = await provider.send_notification(notification)
        except Exception as exc:
            result = SendResult(success=False, provider=cfg.type, error=str(exc))
        if not result.success:
            logger.warning(
                "Notification %s via %s (%s) failed: %s",
                notification.type, cfg.name, cfg.type, result.error,
            )
        return result

    def _record(self, entry: DispatchRecord) -> None:
        self._history.append(entry)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]
