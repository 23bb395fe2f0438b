"""
Debouncer for live text input.

A settled value is emitted once ``window`` seconds pass without a new
``observe()`` call. Clearing the input is the exception: an empty (or
whitespace-only) value is emitted at once so a cleared field never waits
out the window. Consecutive identical settled values are emitted once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """Timer-based debouncer bound to the running asyncio loop.

    Settled values go to the optional ``on_settle`` callback and to every
    consumer of :meth:`stream`.
    """

    def __init__(
        self,
        window: float,
        on_settle: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialise the debouncer.

        Args:
            window: Quiescence window in seconds.
            on_settle: Called synchronously with each settled value.
        """
        if window < 0:
            raise ValueError("Debounce window must not be negative.")
        self.window = window
        self._on_settle = on_settle
        self._pending: Optional[str] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._last_emitted: Optional[str] = None
        self._queues: list[asyncio.Queue[str]] = []

    @property
    def value(self) -> str:
        """The last settled value (empty before anything settles)."""
        return self._last_emitted or ""

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def observe(self, value: str) -> None:
        """Record a new raw value, restarting the quiescence window."""
        self._cancel_timer()
        if not value.strip():
            self._emit(value)
            return
        self._pending = value
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.window, self._fire)

    def flush(self) -> None:
        """Emit the pending value now instead of waiting for the timer."""
        if self._handle is None:
            return
        self._cancel_timer()
        self._fire()

    def cancel(self) -> None:
        """Drop any pending emission."""
        self._cancel_timer()
        self._pending = None

    def reset(self) -> None:
        """Forget pending and settled values without emitting anything."""
        self.cancel()
        self._last_emitted = ""

    async def stream(self) -> AsyncIterator[str]:
        """Yield settled values as they are emitted."""
        queue: asyncio.Queue[str] = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.remove(queue)

    # ── Internals ──────────────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        value, self._pending = self._pending, None
        if value is not None:
            self._emit(value)

    def _emit(self, value: str) -> None:
        self._pending = None
        if value == self._last_emitted:
            return
        self._last_emitted = value
        logger.debug("Debounced input settled: %r", value)
        if self._on_settle is not None:
            self._on_settle(value)
        for queue in self._queues:
            queue.put_nowait(value)
