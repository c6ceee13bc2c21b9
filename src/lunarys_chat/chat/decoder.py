"""Incremental decoding of the chat stream body into SSE frames."""

from __future__ import annotations

import codecs
from collections.abc import AsyncGenerator, AsyncIterable

FRAME_DELIMITER = "\n\n"


class FrameDecoder:
    """Splits an arbitrarily chunked byte stream into complete frames.

    Text is decoded with an incremental UTF-8 decoder, so a chunk boundary
    that falls inside a multi-byte character is carried over to the next
    read instead of being replaced. The trailing fragment after the last
    delimiter is kept in the buffer until more data (or the end of the
    stream) arrives.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    @property
    def buffer(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every frame it completed, in order."""
        self._buffer += self._decoder.decode(chunk)
        # CRLF-framed servers still delimit with a blank line
        if "\r" in self._buffer:
            self._buffer = self._buffer.replace("\r\n", "\n")

        parts = self._buffer.split(FRAME_DELIMITER)
        self._buffer = parts.pop()
        return [frame.strip() for frame in parts if frame.strip()]

    def flush(self) -> list[str]:
        """Finish the stream; a non-empty remainder becomes the last frame."""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        if remainder.strip():
            return [remainder.strip()]
        return []


async def iter_frames(
    chunks: AsyncIterable[bytes],
    decoder: FrameDecoder | None = None,
) -> AsyncGenerator[str, None]:
    """Yield complete frames from an async byte iterator."""
    decoder = decoder or FrameDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
    for frame in decoder.flush():
        yield frame
