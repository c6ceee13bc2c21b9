"""Cancellation handle for an in-flight chat exchange."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

logger = structlog.get_logger()


class StreamHandle:
    """Owns the task that reads one exchange and lets the caller abort it.

    ``cancel()`` is idempotent and safe to call after the task finished.
    Once it returns, ``cancelled`` is True and the read loop will not
    deliver another callback: the loop checks the flag before every
    delivery and there is no suspension point between the check and the
    call.
    """

    def __init__(self, label: str = "stream") -> None:
        self._label = label
        self._cancelled = False
        self._task: asyncio.Task[None] | None = None

    def start(self, coro: Coroutine[Any, Any, None]) -> StreamHandle:
        """Schedule the read loop; returns immediately."""
        if self._task is not None:
            raise RuntimeError(f"{self._label} already started")
        self._task = asyncio.get_running_loop().create_task(coro)
        return self

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> bool:
        """Abort the exchange. Returns False when there was nothing to do."""
        if self._cancelled:
            return False
        self._cancelled = True
        if self._task is None or self._task.done():
            return False
        self._task.cancel()
        logger.info("chat_stream_cancel_requested", label=self._label)
        return True

    async def wait(self) -> None:
        """Wait for the read loop to finish, whatever the outcome."""
        if self._task is not None:
            await asyncio.wait({self._task})
