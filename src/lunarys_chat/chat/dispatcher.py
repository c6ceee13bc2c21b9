"""Route classified stream events to the caller's callbacks."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import structlog

from lunarys_chat.chat.cancel import StreamHandle
from lunarys_chat.chat.models import StreamEvent

logger = structlog.get_logger()

INVALID_CONVERSATION_ID = "Received an invalid conversation id"


@dataclass(slots=True)
class StreamCallbacks:
    """Handlers for the four event channels of a chat stream."""

    on_content: Callable[[str], None]
    on_error: Callable[[str], None]
    on_complete: Callable[[int], None]
    on_reasoning: Callable[[str], None] | None = None


def parse_conversation_id(data: str) -> int | None:
    """Parse a completion payload; None for anything but a positive int."""
    try:
        value = int(data.strip())
    except ValueError:
        return None
    return value if value > 0 else None


class EventDispatcher:
    """Delivers events of one stream to its callbacks.

    ``error`` and ``complete`` are terminal: the first of them closes the
    dispatcher and every later event is ignored, so the completion
    callback fires at most once and nothing follows it. Nothing at all is
    delivered once the associated handle is cancelled.
    """

    def __init__(
        self,
        callbacks: StreamCallbacks,
        handle: StreamHandle | None = None,
    ) -> None:
        self._callbacks = callbacks
        self._handle = handle
        self._finished = False
        self.delivered = 0

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def active(self) -> bool:
        if self._finished:
            return False
        return self._handle is None or not self._handle.cancelled

    def dispatch(self, event: StreamEvent) -> None:
        if not self.active:
            logger.debug("sse_event_suppressed", kind=event.kind, finished=self._finished)
            return

        if event.kind == "reasoning":
            if self._callbacks.on_reasoning is not None:
                self._deliver(self._callbacks.on_reasoning, event.data)
        elif event.kind == "content":
            self._deliver(self._callbacks.on_content, event.data)
        elif event.kind == "error":
            self.fail(event.data)
        elif event.kind == "complete":
            conversation_id = parse_conversation_id(event.data)
            if conversation_id is None:
                logger.error("sse_invalid_conversation_id", data=event.data[:50])
                self.fail(f"{INVALID_CONVERSATION_ID}: {event.data!r}")
            else:
                self._finished = True
                self._deliver(self._callbacks.on_complete, conversation_id)
        else:
            logger.warning("sse_unknown_event_type", kind=event.kind)

    def fail(self, message: str) -> None:
        """Report a terminal error unless the stream already ended."""
        if not self.active:
            return
        self._finished = True
        self._deliver(self._callbacks.on_error, message)

    def _deliver(self, callback: Callable, value) -> None:
        self.delivered += 1
        callback(value)
