# src/providers/notifications/http.py — v1
"""Minimal aiohttp POST helper shared by the HTTP-based channels."""

from __future__ import annotations

from typing import Any

import aiohttp

from audiobatch.core.errors import NotificationSendError


async def post(
    url: str,
    *,
    json: Any = None,
    data: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
    auth: aiohttp.BasicAuth | None = None,
    timeout: float = 10.0,
) -> tuple[int, str]:
    """POST once and return (status, body).

    Raises:
        NotificationSendError: On transport failure or a 4xx/5xx answer.
    """
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.post(
                url, json=json, data=data, headers=headers, auth=auth
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    raise NotificationSendError(
                        f"Request to {url} failed: {response.status} {body[:200]}"
                    )
                return response.status, body
    except aiohttp.ClientError as exc:
        raise NotificationSendError(f"Request to {url} failed: {exc}") from exc
    except TimeoutError as exc:
        raise NotificationSendError(f"Request to {url} timed out after {timeout}s") from exc
