"""HTTP client for the Lunarys chat backend."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import aclosing
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from lunarys_chat.chat.cancel import StreamHandle
from lunarys_chat.chat.classifier import classify_frame
from lunarys_chat.chat.decoder import FrameDecoder
from lunarys_chat.chat.dispatcher import EventDispatcher, StreamCallbacks
from lunarys_chat.chat.models import (
    ChatRequest,
    ChatResponse,
    Confirmed,
    Conversation,
    ConversationRecord,
    DeleteOutcome,
    FetchResult,
    Message,
    MessageRecord,
    StreamEvent,
)
from lunarys_chat.config import Settings

logger = structlog.get_logger()

STREAM_INCOMPLETE = "Stream ended before completion"
STREAM_HANDLER_FAILED = "Stream handler failed"


class ChatClientError(Exception):
    """A backend call failed: transport error, bad status or bad body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChatClient:
    """Async client for the chat backend.

    ``send_message`` is the one-shot call and raises ``ChatClientError``.
    ``stream_events`` yields typed events from the SSE endpoint and raises
    the same error on transport failure. ``open_stream`` runs that
    generator in a background task and resolves every outcome into the
    supplied callbacks, returning a ``StreamHandle`` straight away.
    The listing/history/delete calls never raise; their failure policy is
    expressed through ``FetchResult`` and ``DeleteOutcome``.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = settings.api_base_url
        self._timeout = httpx.Timeout(settings.timeout, connect=settings.connect_timeout)
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def send_message(self, request: ChatRequest) -> ChatResponse:
        """POST /chat and return the complete answer."""
        client = await self._get_http_client()

        logger.info(
            "chat_send_start",
            model=request.model,
            conversation_id=request.conversation_id,
            message_count=len(request.messages),
        )

        try:
            response = await client.post("/chat", json=request.to_payload())
        except httpx.HTTPError as e:
            raise ChatClientError(f"Request failed: {e}") from e

        if response.is_error:
            raise ChatClientError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            result = ChatResponse.model_validate(response.json())
        except ValueError as e:
            raise ChatClientError(f"Invalid chat response: {e}") from e

        logger.info(
            "chat_send_complete",
            conversation_id=result.conversation_id,
            answer_length=len(result.content),
        )
        return result

    async def stream_events(
        self,
        request: ChatRequest,
        handle: StreamHandle | None = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Stream POST /chat/stream as classified events.

        Stops reading as soon as ``handle`` is cancelled. Always consume
        this generator under ``contextlib.aclosing`` so the response is
        released when the consumer stops early.
        """
        client = await self._get_http_client()
        decoder = FrameDecoder()
        chunk_count = 0
        frame_count = 0

        logger.info(
            "chat_stream_start",
            model=request.model,
            conversation_id=request.conversation_id,
            message_count=len(request.messages),
        )

        try:
            async with client.stream(
                "POST",
                "/chat/stream",
                json=request.to_payload(),
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.is_error:
                    raise ChatClientError(
                        f"HTTP {response.status_code}",
                        status_code=response.status_code,
                    )

                async for chunk in response.aiter_bytes():
                    if handle is not None and handle.cancelled:
                        return
                    chunk_count += 1
                    for frame in decoder.feed(chunk):
                        frame_count += 1
                        for event in classify_frame(frame):
                            yield event

                # Backend may omit the trailing delimiter on the last frame
                for frame in decoder.flush():
                    frame_count += 1
                    logger.debug("sse_trailing_frame", text_preview=frame[:50])
                    for event in classify_frame(frame):
                        yield event
        except httpx.HTTPError as e:
            raise ChatClientError(f"Stream transport error: {e}") from e

        logger.info(
            "chat_stream_end",
            total_chunks_received=chunk_count,
            total_frames=frame_count,
        )

    def open_stream(
        self,
        request: ChatRequest,
        callbacks: StreamCallbacks,
    ) -> StreamHandle:
        """Start streaming in the background and return its handle."""
        handle = StreamHandle(label="chat_stream")
        dispatcher = EventDispatcher(callbacks, handle)
        return handle.start(self._pump(request, dispatcher, handle))

    async def _pump(
        self,
        request: ChatRequest,
        dispatcher: EventDispatcher,
        handle: StreamHandle,
    ) -> None:
        try:
            async with aclosing(self.stream_events(request, handle=handle)) as events:
                async for event in events:
                    if handle.cancelled:
                        break
                    dispatcher.dispatch(event)
                    if dispatcher.finished:
                        break
        except asyncio.CancelledError:
            logger.info(
                "chat_stream_cancelled",
                delivered=dispatcher.delivered,
                user_initiated=handle.cancelled,
            )
            raise
        except ChatClientError as e:
            logger.error("chat_stream_error", error=str(e), status_code=e.status_code)
            dispatcher.fail(str(e))
            return
        except Exception as e:
            logger.exception("chat_stream_callback_failed")
            try:
                dispatcher.fail(f"{STREAM_HANDLER_FAILED}: {e}")
            except Exception:
                logger.exception("chat_stream_error_callback_failed")
            return

        if dispatcher.active:
            logger.warning("chat_stream_incomplete", delivered=dispatcher.delivered)
            dispatcher.fail(STREAM_INCOMPLETE)

    async def list_conversations(self) -> FetchResult[Conversation]:
        """GET /conversations; unavailable (empty) on any failure."""
        try:
            data = await self._get_json_list("/conversations")
        except ChatClientError as e:
            logger.warning("conversations_unavailable", error=str(e))
            return FetchResult.unavailable(str(e))

        records = _parse_records(data, ConversationRecord)
        return FetchResult.ok([record.to_conversation() for record in records])

    async def get_messages(self, conversation_id: int) -> FetchResult[Message]:
        """GET /conversations/{id}/messages; unavailable (empty) on any failure."""
        try:
            data = await self._get_json_list(f"/conversations/{conversation_id}/messages")
        except ChatClientError as e:
            logger.warning(
                "messages_unavailable",
                conversation_id=conversation_id,
                error=str(e),
            )
            return FetchResult.unavailable(str(e))

        identity = Confirmed(conversation_id)
        records = _parse_records(data, MessageRecord)
        return FetchResult.ok([record.to_message(identity) for record in records])

    async def delete_conversation(self, conversation_id: int) -> DeleteOutcome:
        """DELETE /conversations/{id}. A 404 counts as already deleted."""
        client = await self._get_http_client()
        try:
            response = await client.delete(f"/conversations/{conversation_id}")
        except httpx.HTTPError as e:
            logger.warning(
                "conversation_delete_failed",
                conversation_id=conversation_id,
                error=str(e),
            )
            return DeleteOutcome.UNAVAILABLE

        if response.status_code == 404:
            logger.info("conversation_delete_not_found", conversation_id=conversation_id)
            return DeleteOutcome.NOT_FOUND
        if response.is_error:
            logger.warning(
                "conversation_delete_failed",
                conversation_id=conversation_id,
                status_code=response.status_code,
            )
            return DeleteOutcome.UNAVAILABLE
        return DeleteOutcome.DELETED

    async def _get_json_list(self, path: str) -> list[Any]:
        client = await self._get_http_client()
        try:
            response = await client.get(path)
        except httpx.HTTPError as e:
            raise ChatClientError(f"Request failed: {e}") from e

        if response.is_error:
            raise ChatClientError(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ChatClientError(f"Invalid JSON body: {e}") from e
        if not isinstance(data, list):
            raise ChatClientError(f"Expected a JSON array, got {type(data).__name__}")
        return data

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()


def _parse_records(data: list[Any], model: type[BaseModel]) -> list[Any]:
    """Validate each item, skipping (and logging) the ones that don't fit."""
    records = []
    for item in data:
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning(
                "record_skipped",
                record_type=model.__name__,
                error_count=e.error_count(),
            )
    return records
