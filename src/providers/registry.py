# src/providers/registry.py — v2
"""Provider registry and factory.

Maps (category, type string) to a provider class and hands back instances
that have passed validation and their own connectivity check. Classes are
registered by dotted path and imported lazily on first use, so optional
backends cost nothing until requested.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Literal, Union

from audiobatch.core.clock import Clock, SystemClock
from audiobatch.core.errors import (
    InvalidProviderConfig,
    ProviderConnectionFailed,
    ProviderNotFound,
)
from audiobatch.core.models import NotificationConfig
from audiobatch.providers.base_monitor_provider import BaseMonitorProvider
from audiobatch.providers.base_notification_provider import BaseNotificationProvider
from audiobatch.providers.base_storage_provider import BaseStorageProvider
from audiobatch.providers.models import ProviderTestResult

logger = logging.getLogger(__name__)

Category = Literal["storage", "monitor", "notification"]
CATEGORIES: tuple[str, ...] = ("storage", "monitor", "notification")

AnyProvider = Union[BaseStorageProvider, BaseMonitorProvider, BaseNotificationProvider]

_BASE_CLASSES: dict[str, type] = {
    "storage": BaseStorageProvider,
    "monitor": BaseMonitorProvider,
    "notification": BaseNotificationProvider,
}

# Built-in providers: category -> type -> class path (lazy import).
_DEFAULT_PROVIDERS: dict[str, dict[str, str]] = {
    "storage": {
        "local": "audiobatch.providers.storage.local_storage.LocalStorageProvider",
        "s3": "audiobatch.providers.storage.s3_storage.S3StorageProvider",
    },
    "monitor": {
        "events": "audiobatch.providers.monitors.event_monitor.EventMonitorProvider",
        "polling": "audiobatch.providers.monitors.polling_monitor.PollingMonitor",
    },
    "notification": {
        "email": "audiobatch.providers.notifications.email_provider.EmailNotificationProvider",
        "sms": "audiobatch.providers.notifications.sms_provider.SMSNotificationProvider",
        "slack": "audiobatch.providers.notifications.slack_provider.SlackNotificationProvider",
        "webhook": "audiobatch.providers.notifications.webhook_provider.WebhookNotificationProvider",
    },
}


def _check_category(category: str) -> None:
    if category not in CATEGORIES:
        raise ValueError(
            f"Unknown provider category: {category!r}. Available: {', '.join(CATEGORIES)}"
        )


def _import_class(class_path: str) -> type:
    """Dynamically import a class from its fully qualified path."""
    module_path, class_name = class_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    return getattr(module, class_name)


class ProviderRegistry:
    """Type-string lookup table, one namespace per category."""

    def __init__(self, include_defaults: bool = True) -> None:
        self._entries: dict[str, dict[str, str | type]] = {c: {} for c in CATEGORIES}
        if include_defaults:
            for category, providers in _DEFAULT_PROVIDERS.items():
                self._entries[category].update(providers)

    def register(self, category: str, provider_type: str, provider: str | type) -> None:
        """Register a provider class (or its dotted path) under a type string."""
        _check_category(category)
        if isinstance(provider, type) and not issubclass(provider, _BASE_CLASSES[category]):
            raise TypeError(
                f"{provider.__name__} does not implement {_BASE_CLASSES[category].__name__}"
            )
        self._entries[category][provider_type] = provider
        logger.info("Registered %s provider: %s", category, provider_type)

    def unregister(self, category: str, provider_type: str) -> bool:
        _check_category(category)
        return self._entries[category].pop(provider_type, None) is not None

    def is_registered(self, category: str, provider_type: str) -> bool:
        _check_category(category)
        return provider_type in self._entries[category]

    def types(self, category: str) -> list[str]:
        _check_category(category)
        return sorted(self._entries[category])

    def resolve(self, category: str, provider_type: str) -> type:
        """Return the provider class.

        Raises:
            ProviderNotFound: If the type is not registered in the category.
        """
        _check_category(category)
        entry = self._entries[category].get(provider_type)
        if entry is None:
            raise ProviderNotFound(category, provider_type, self.types(category))
        if isinstance(entry, str):
            entry = _import_class(entry)
            self._entries[category][provider_type] = entry
        return entry


class ProviderFactory:
    """Creates ready-to-use providers: lookup, validate, then connect."""

    def __init__(self, registry: ProviderRegistry | None = None, clock: Clock | None = None) -> None:
        self.registry = registry or ProviderRegistry()
        self._clock = clock or SystemClock()

    def _instantiate(self, category: str, provider_type: str) -> Any:
        cls = self.registry.resolve(category, provider_type)
        if category == "monitor":
            return cls(clock=self._clock)
        return cls()

    async def create(
        self,
        category: str,
        provider_type: str,
        config: dict[str, Any],
        storage: BaseStorageProvider | None = None,
    ) -> AnyProvider:
        """Return a new, validated and connected provider instance.

        Args:
            category: "storage", "monitor" or "notification".
            provider_type: Registered type string (e.g. "s3").
            config: Provider-specific configuration.
            storage: Connected storage provider handed to monitors that can
                scan through it.

        Raises:
            ProviderNotFound: Type not registered (lists known types).
            InvalidProviderConfig: validate_config() reported errors.
            ProviderConnectionFailed: Connect / configure handshake failed.
        """
        provider = self._instantiate(category, provider_type)

        validation = provider.validate_config(config)
        if not validation.valid:
            raise InvalidProviderConfig(category, provider_type, validation.errors)

        try:
            if category == "storage":
                ok, reason = await provider.connect(config), ""
            elif category == "monitor":
                if storage is not None and hasattr(provider, "attach_storage"):
                    provider.attach_storage(storage)
                result = await provider.test_monitoring(config)
                ok, reason = result.success, result.error or ""
            else:
                ok, reason = await provider.configure(config), ""
        except Exception as exc:
            raise ProviderConnectionFailed(category, provider_type, str(exc)) from exc

        if not ok:
            raise ProviderConnectionFailed(category, provider_type, reason)

        logger.debug("Created %s provider: %s", category, provider_type)
        return provider

    async def create_storage_provider(
        self, provider_type: str, config: dict[str, Any]
    ) -> BaseStorageProvider:
        return await self.create("storage", provider_type, config)

    async def create_monitor_provider(
        self,
        provider_type: str,
        config: dict[str, Any],
        storage: BaseStorageProvider | None = None,
    ) -> BaseMonitorProvider:
        return await self.create("monitor", provider_type, config, storage=storage)

    async def create_notification_provider(
        self, provider_type: str, config: dict[str, Any]
    ) -> BaseNotificationProvider:
        return await self.create("notification", provider_type, config)

    async def create_notification_providers(
        self, configs: list[NotificationConfig]
    ) -> list[tuple[NotificationConfig, BaseNotificationProvider]]:
        """Create providers for every active config; failures are logged and skipped."""
        providers: list[tuple[NotificationConfig, BaseNotificationProvider]] = []
        for cfg in configs:
            if not cfg.is_active:
                continue
            try:
                provider = await self.create_notification_provider(cfg.type, cfg.config)
            except (ProviderNotFound, InvalidProviderConfig, ProviderConnectionFailed) as exc:
                logger.warning("Skipping notification config %s: %s", cfg.name, exc)
                continue
            providers.append((cfg, provider))
        return providers

    async def test_provider(
        self, category: str, provider_type: str, config: dict[str, Any]
    ) -> ProviderTestResult:
        """Configuration-time check. Never raises."""
        try:
            provider = self._instantiate(category, provider_type)
            if category == "storage":
                return await provider.test_connection(config)
            if category == "monitor":
                return await provider.test_monitoring(config)
            return await provider.test_notification(config)
        except ProviderNotFound as exc:
            return ProviderTestResult(
                success=False, error=str(exc), details={"available": exc.available}
            )
        except Exception as exc:
            logger.warning("Provider test failed for %s/%s: %s", category, provider_type, exc)
            return ProviderTestResult(success=False, error=str(exc))

    def get_available_providers(self) -> dict[str, list[str]]:
        return {category: self.registry.types(category) for category in CATEGORIES}

    def register_provider(self, category: str, provider_type: str, provider: str | type) -> None:
        self.registry.register(category, provider_type, provider)
