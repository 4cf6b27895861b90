# src/store/store_factory.py — v1
"""Factory for store instantiation (STORE_BACKEND)."""

from __future__ import annotations

from audiobatch.config.settings import Settings
from audiobatch.store.base_store import BaseStore


def create_store(settings: Settings | None = None) -> BaseStore:
    """Instantiate the configured store backend.

    Args:
        settings: Application settings. Defaults to the memory backend.

    Returns:
        Configured BaseStore implementation.
    """
    backend = "memory" if settings is None else settings.store_backend

    if backend == "memory":
        from audiobatch.store.memory_store import MemoryStore
        return MemoryStore()

    if backend == "json":
        from audiobatch.store.json_store import JsonStore
        return JsonStore(path=settings.store_path)  # type: ignore[union-attr]

    raise ValueError(f"Unsupported store backend: {backend!r}")
