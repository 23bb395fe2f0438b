"""
Radar creation adapters.

Each adapter exposes ``async create(draft) -> CreatedRadar`` and makes exactly
one storage call. Every failure is reported as ``CreationFailed`` carrying
the upstream message; nothing is retried here, a retry is the user confirming
again from review.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional, Protocol

import httpx
from pydantic import ValidationError

from core import radar_store
from core.errors import CreationFailed
from core.models import CreatedRadar, RadarDraft

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)


class RadarCreator(Protocol):
    async def create(self, draft: RadarDraft) -> CreatedRadar: ...


class HttpRadarCreator:
    """Creates radars through the storage endpoint ``POST /api/radars``."""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialise the adapter.

        Args:
            settings: Provides ``service_url`` and ``request_timeout``.
            http_client: Optional shared client; owned by the caller.
        """
        self.settings = settings
        self._http_client = http_client

    async def create(self, draft: RadarDraft) -> CreatedRadar:
        """POST *draft* and return the stored radar.

        Raises:
            CreationFailed: On transport errors, non-2xx responses or an
                unreadable response body.
        """
        payload = draft.model_dump(exclude_none=True)
        try:
            if self._http_client is not None:
                response = await self._http_client.post("/api/radars", json=payload)
            else:
                async with httpx.AsyncClient(
                    base_url=self.settings.service_url,
                    timeout=self.settings.request_timeout,
                ) as client:
                    response = await client.post("/api/radars", json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Radar creation request failed: %s", exc)
            raise CreationFailed(str(exc) or type(exc).__name__) from exc

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "Radar creation rejected status=%d: %s", response.status_code, message
            )
            raise CreationFailed(message)

        try:
            return CreatedRadar.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise CreationFailed(f"Unreadable creation response: {exc}") from exc


class StoreRadarCreator:
    """Creates radars directly in the local SQLite store."""

    async def create(self, draft: RadarDraft) -> CreatedRadar:
        try:
            return await asyncio.to_thread(radar_store.create, draft)
        except Exception as exc:
            logger.exception("Radar creation failed for topic=%r", draft.topic)
            raise CreationFailed(str(exc) or type(exc).__name__) from exc


def _error_message(response: httpx.Response) -> str:
    """Pull ``{"error": ...}`` out of a JSON error body, else the status line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Storage service returned {response.status_code} {response.reason_phrase}"
