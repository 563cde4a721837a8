"""Persistence hooks: the integrator's way to record job outcomes.

A hook is registered once at startup and receives every terminal outcome
the receiver learns about. Deliveries can repeat, so hooks must be
idempotent on their own.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class PersistenceHook(Protocol):
    def __call__(
        self,
        key: str,
        status: str,
        result_url: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        ...


class HttpPersistenceHook:
    """POSTs each outcome as JSON to an integrator-owned endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self._timeout = timeout
        self._transport = transport

    def __call__(
        self,
        key: str,
        status: str,
        result_url: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        payload = {
            "id": key,
            "status": status,
            "download_url": result_url,
            "error": error_message,
        }
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            response = client.post(self.url, json=payload)
        if not response.is_success:
            raise RuntimeError(
                f"Persistence hook returned {response.status_code}: {response.text[:200]}"
            )
        logger.debug("Persistence hook accepted %s=%s", key, status)

