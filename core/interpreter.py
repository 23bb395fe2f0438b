"""
Client side of the interpretation service.

``InterpretationClient.interpret(text)`` starts one streaming call and
returns an :class:`InterpretationCall` exposing:

* ``partials()``  async iterator of progressively fuller ``Interpretation``
  snapshots (a later snapshot never drops a field an earlier one had)
* ``final``       future resolved once with the complete interpretation, or
  rejected with ``InterpretationFailed`` / ``InterpretationCancelled``
* ``cancel()``    idempotent; nothing is observable from the call afterwards

Raw JSON text arrives from a *chunk source*: any callable mapping an
``InterpretationRequest`` to an async iterator of text chunks. The default
source reads the SSE stream served by ``POST /api/interpret``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Optional

import httpx
from pydantic import ValidationError
from pydantic_core import from_json

from core.errors import InterpretationCancelled, InterpretationFailed
from core.models import Interpretation, InterpretationRequest

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

ChunkSource = Callable[[InterpretationRequest], AsyncIterator[str]]

_END = object()


# ── Parsing ────────────────────────────────────────────────────────────────


def parse_partial(buffer: str) -> Optional[Interpretation]:
    """Parse an incomplete JSON document into a partial Interpretation.

    Returns ``None`` while the buffer holds nothing usable yet.
    """
    try:
        data = from_json(buffer, allow_partial=True)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return Interpretation.model_validate(data)
    except ValidationError:
        return None


def parse_final(buffer: str) -> Interpretation:
    """Parse the complete JSON document emitted by the service.

    Raises:
        InterpretationFailed: If the JSON is malformed, required fields are
            missing, or the model flagged the topic as untrackable.
    """
    try:
        interpretation = Interpretation.model_validate_json(buffer)
    except ValidationError as exc:
        raise InterpretationFailed(
            f"Malformed interpretation ({exc.error_count()} validation errors)."
        ) from exc

    missing = interpretation.missing_fields()
    if missing:
        raise InterpretationFailed(
            "Interpretation is incomplete; missing " + ", ".join(missing) + "."
        )
    if interpretation.what.is_valid is False:
        raise InterpretationFailed(
            f"{interpretation.what.topic!r} is not something a radar can track."
        )
    return interpretation


# ── Chunk sources ──────────────────────────────────────────────────────────


class ServiceChunkSource:
    """Reads JSON text chunks from the interpretation service's SSE stream.

    SSE events expected:
      {"type": "chunk", "text": "..."}    raw JSON text delta
      {"type": "error", "message": "..."} upstream failure
      [DONE]                              end of stream
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialise the source.

        Args:
            settings: Provides ``service_url`` and ``request_timeout``.
            http_client: Optional shared client; owned by the caller.
        """
        self.settings = settings
        self._http_client = http_client

    async def __call__(self, request: InterpretationRequest) -> AsyncIterator[str]:
        if self._http_client is not None:
            async for chunk in self._read(self._http_client, request):
                yield chunk
            return

        async with httpx.AsyncClient(
            base_url=self.settings.service_url,
            timeout=self.settings.request_timeout,
        ) as client:
            async for chunk in self._read(client, request):
                yield chunk

    async def _read(
        self,
        client: httpx.AsyncClient,
        request: InterpretationRequest,
    ) -> AsyncIterator[str]:
        async with client.stream(
            "POST",
            "/api/interpret",
            json={"text": request.text},
            headers={"X-Request-Id": request.request_id},
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                if payload == "[DONE]":
                    return
                try:
                    event = json.loads(payload)
                except json.JSONDecodeError:
                    logger.debug("Skipping unparseable SSE payload: %r", payload)
                    continue
                if event.get("type") == "chunk":
                    yield event.get("text", "")
                elif event.get("type") == "error":
                    raise InterpretationFailed(
                        event.get("message") or "Interpretation service error."
                    )

        raise InterpretationFailed("Interpretation stream ended unexpectedly.")


# ── Call handle ────────────────────────────────────────────────────────────


def _mark_retrieved(future: asyncio.Future) -> None:
    # Rejections are handled by whoever awaits ``final``; keep asyncio quiet
    # when nobody does (e.g. after cancel()).
    if not future.cancelled():
        future.exception()


class InterpretationCall:
    """One in-flight interpretation; see the module docstring."""

    def __init__(self, request: InterpretationRequest, chunks: AsyncIterator[str]) -> None:
        loop = asyncio.get_running_loop()
        self.request = request
        self.final: asyncio.Future[Interpretation] = loop.create_future()
        self.final.add_done_callback(_mark_retrieved)
        self._snapshots: asyncio.Queue = asyncio.Queue()
        self._cancelled = False
        self._task = loop.create_task(self._consume(chunks))

    @property
    def request_id(self) -> str:
        return self.request.request_id

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop consuming the stream. Safe to call any number of times."""
        if self._cancelled:
            return
        self._cancelled = True
        self._task.cancel()
        while not self._snapshots.empty():
            self._snapshots.get_nowait()
        self._snapshots.put_nowait(_END)
        if not self.final.done():
            self.final.set_exception(
                InterpretationCancelled(f"Request {self.request_id} was cancelled.")
            )
        logger.debug("Cancelled interpretation request %s", self.request_id)

    async def partials(self) -> AsyncIterator[Interpretation]:
        """Yield partial snapshots until the stream ends or is cancelled."""
        while not self._cancelled:
            item = await self._snapshots.get()
            if item is _END or self._cancelled:
                return
            yield item

    async def _consume(self, chunks: AsyncIterator[str]) -> None:
        buffer = ""
        snapshot = Interpretation()
        try:
            async for chunk in chunks:
                buffer += chunk
                update = parse_partial(buffer)
                if update is None:
                    continue
                merged = snapshot.merge(update)
                if merged != snapshot:
                    snapshot = merged
                    self._snapshots.put_nowait(snapshot)
            result = parse_final(buffer)
        except asyncio.CancelledError:
            raise
        except InterpretationFailed as exc:
            logger.warning("Interpretation %s failed: %s", self.request_id, exc)
            self._reject(exc)
        except Exception as exc:
            logger.warning("Interpretation %s stream error: %s", self.request_id, exc)
            self._reject(InterpretationFailed(str(exc) or type(exc).__name__))
        else:
            if not self.final.done():
                self.final.set_result(result)
        finally:
            if not self._cancelled:
                self._snapshots.put_nowait(_END)
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    def _reject(self, exc: InterpretationFailed) -> None:
        if not self.final.done():
            self.final.set_exception(exc)


# ── Client ─────────────────────────────────────────────────────────────────


class InterpretationClient:
    """Issues cancellable streaming interpretation calls.

    Calling :meth:`interpret` again does not cancel an earlier call; that is
    the caller's job.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        source: Optional[ChunkSource] = None,
    ) -> None:
        """Initialise the client.

        Args:
            settings: Application configuration, needed for the default source.
            source: Chunk source override (tests, direct model access).
        """
        self.settings = settings
        self._source = source

    @property
    def source(self) -> ChunkSource:
        """Lazy-initialise and return the chunk source."""
        if self._source is None:
            if self.settings is None:
                raise ValueError("Settings are required for the default chunk source.")
            self._source = ServiceChunkSource(self.settings)
        return self._source

    def interpret(self, text: str) -> InterpretationCall:
        """Start interpreting *text*.

        Raises:
            ValueError: If text is blank.
        """
        text = text.strip()
        if not text:
            raise ValueError("Text to interpret must not be empty.")
        request = InterpretationRequest(text=text, request_id=uuid.uuid4().hex)
        logger.info("Interpretation request %s for input=%r", request.request_id, text)
        return InterpretationCall(request, self.source(request))
