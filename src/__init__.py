# src/__init__.py — v1
"""audiobatch: batch ingestion and orchestration of externally stored audio files."""

from audiobatch.version import __version__

__all__ = ["__version__"]
