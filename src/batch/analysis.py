# src/batch/analysis.py — v1
"""Boundary with the external analysis collaborator.

The orchestrator calls analyze(local_path, metadata) once per downloaded
file and stores the returned result_ref. What the collaborator does with
the audio is opaque here.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any

import aiohttp

from audiobatch.config.settings import Settings
from audiobatch.core.errors import AnalysisError
from audiobatch.core.models import AnalysisOutcome

logger = logging.getLogger(__name__)

# 4xx answers that are worth retrying.
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 425, 429})


class BaseAnalyzer(ABC):
    """Unified interface for analysis collaborators."""

    @abstractmethod
    async def analyze(self, local_path: str, metadata: dict[str, Any]) -> AnalysisOutcome:
        """Analyze one local file.

        Raises:
            AnalysisError: The collaborator failed; ``retryable`` says
                whether another attempt may succeed.
        """

    async def close(self) -> None:
        """Release held resources."""


class HttpAnalyzer(BaseAnalyzer):
    """POSTs the local path and metadata to an analysis endpoint.

    The endpoint answers with JSON containing ``result_ref``.
    """

    def __init__(self, endpoint: str, timeout_seconds: float = 600.0) -> None:
        self._endpoint = endpoint
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def analyze(self, local_path: str, metadata: dict[str, Any]) -> AnalysisOutcome:
        session = await self._get_session()
        try:
            async with session.post(
                self._endpoint, json={"local_path": local_path, "metadata": metadata}
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    retryable = (
                        response.status >= 500 or response.status in _RETRYABLE_CLIENT_STATUSES
                    )
                    raise AnalysisError(
                        f"Analysis endpoint returned {response.status}: {body[:200]}",
                        retryable=retryable,
                    )
                payload = await response.json()
        except aiohttp.ClientError as exc:
            raise AnalysisError(f"Analysis request failed: {exc}") from exc

        result_ref = payload.get("result_ref") if isinstance(payload, dict) else None
        if not result_ref:
            raise AnalysisError("Analysis response missing result_ref")
        details = {k: v for k, v in payload.items() if k != "result_ref"}
        return AnalysisOutcome(result_ref=str(result_ref), details=details)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class ChecksumAnalyzer(BaseAnalyzer):
    """Stand-in used when no analysis endpoint is configured.

    Returns the file's SHA-256 as the result reference, which is enough to
    exercise the ingestion pipeline end to end.
    """

    async def analyze(self, local_path: str, metadata: dict[str, Any]) -> AnalysisOutcome:
        try:
            digest = await asyncio.to_thread(self._digest, local_path)
        except OSError as exc:
            raise AnalysisError(f"Cannot read downloaded file: {exc}", retryable=False) from exc
        return AnalysisOutcome(result_ref=f"sha256:{digest}")

    @staticmethod
    def _digest(local_path: str) -> str:
        h = hashlib.sha256()
        with open(local_path, "rb") as f:
            for chunk in iter(lambda: f.read(1 << 16), b""):
                h.update(chunk)
        return h.hexdigest()


def create_analyzer(settings: Settings | None = None) -> BaseAnalyzer:
    """HttpAnalyzer when ANALYSIS_ENDPOINT is set, ChecksumAnalyzer otherwise."""
    if settings is not None and settings.analysis_endpoint:
        logger.debug("Using HTTP analyzer at %s", settings.analysis_endpoint)
        return HttpAnalyzer(settings.analysis_endpoint, settings.analysis_timeout_seconds)
    return ChecksumAnalyzer()
