"""Turn SSE frames into typed stream events."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from lunarys_chat.chat.models import StreamEvent, StreamPayload

logger = structlog.get_logger()

DATA_PREFIX = "data:"


def classify_line(line: str) -> StreamEvent | None:
    """Parse one frame line, or return None if it carries no event.

    Only ``data:`` lines are interpreted. ``id:``, ``event:``, comments and
    unknown prefixes are skipped without complaint. A ``data:`` line whose
    body is not a valid ``{type, data}`` object is logged and dropped.
    """
    if not line.startswith(DATA_PREFIX):
        return None

    body = line[len(DATA_PREFIX):].strip()
    if not body:
        return None

    try:
        payload = StreamPayload.model_validate_json(body)
    except ValidationError as e:
        logger.warning(
            "sse_frame_malformed",
            error_count=e.error_count(),
            raw=body[:100],
        )
        return None

    return StreamEvent(kind=payload.type, data=payload.data)


def classify_frame(frame: str) -> list[StreamEvent]:
    """Return the events of a frame in line order."""
    events = []
    for line in frame.splitlines():
        event = classify_line(line.strip())
        if event is not None:
            events.append(event)
    return events
