"""Tests for stream_events and open_stream."""

import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest

from lunarys_chat.chat.client import STREAM_HANDLER_FAILED, STREAM_INCOMPLETE, ChatClient
from lunarys_chat.chat.dispatcher import INVALID_CONVERSATION_ID, StreamCallbacks
from lunarys_chat.chat.models import ChatRequest, ChatTurn, StreamEvent


def _frame(kind: str, data: str) -> bytes:
    return f"data:{json.dumps({'type': kind, 'data': data}, ensure_ascii=False)}\n\n".encode("utf-8")


def _stream_response(chunks, status=200):
    """Response whose body is produced chunk by chunk."""
    async def body():
        for chunk in chunks:
            yield chunk

    return httpx.Response(status, content=body(), headers={"Content-Type": "text/event-stream"})


def _client(settings, handler) -> ChatClient:
    return ChatClient(settings, transport=httpx.MockTransport(handler))


def _request() -> ChatRequest:
    return ChatRequest(
        model="deepseek-chat",
        message="Hi",
        messages=[ChatTurn(role="user", content="Hi")],
    )


def _recording_callbacks():
    calls = []
    callbacks = StreamCallbacks(
        on_content=lambda text: calls.append(("content", text)),
        on_error=lambda message: calls.append(("error", message)),
        on_complete=lambda conversation_id: calls.append(("complete", conversation_id)),
        on_reasoning=lambda text: calls.append(("reasoning", text)),
    )
    return callbacks, calls


async def _collect(client, request):
    return [event async for event in client.stream_events(request)]


BODY = (
    _frame("reasoning", "让我想想")
    + _frame("content", "He")
    + _frame("content", "llo")
    + _frame("complete", "42")
)


@pytest.mark.asyncio
async def test_stream_events_yields_typed_events(settings):
    client = _client(settings, lambda request: _stream_response([BODY]))

    events = await _collect(client, _request())

    assert events == [
        StreamEvent(kind="reasoning", data="让我想想"),
        StreamEvent(kind="content", data="He"),
        StreamEvent(kind="content", data="llo"),
        StreamEvent(kind="complete", data="42"),
    ]


@pytest.mark.asyncio
async def test_stream_events_chunk_boundary_independent(settings):
    """One byte per read yields exactly what one big read yields."""
    whole = await _collect(_client(settings, lambda r: _stream_response([BODY])), _request())
    bytewise = await _collect(
        _client(settings, lambda r: _stream_response([BODY[i:i + 1] for i in range(len(BODY))])),
        _request(),
    )

    assert bytewise == whole


@pytest.mark.asyncio
async def test_stream_events_posts_to_stream_endpoint(settings):
    captured = {}

    def handler(request):
        captured["path"] = request.url.path
        captured["accept"] = request.headers["accept"]
        captured["body"] = json.loads(request.content)
        return _stream_response([_frame("complete", "1")])

    await _collect(_client(settings, handler), _request())

    assert captured["path"] == "/api/chat/stream"
    assert captured["accept"] == "text/event-stream"
    assert captured["body"]["messages"] == [{"role": "user", "content": "Hi"}]
    assert "conversationId" not in captured["body"]


@pytest.mark.asyncio
async def test_stream_events_handles_unterminated_last_frame(settings):
    body = _frame("content", "x") + b'data:{"type":"complete","data":"5"}'
    client = _client(settings, lambda request: _stream_response([body]))

    events = await _collect(client, _request())

    assert events[-1] == StreamEvent(kind="complete", data="5")


@pytest.mark.asyncio
async def test_open_stream_scenario_he_llo_42(settings):
    chunks = [_frame("content", "He"), _frame("content", "llo"), _frame("complete", "42")]
    client = _client(settings, lambda request: _stream_response(chunks))
    callbacks, calls = _recording_callbacks()

    handle = client.open_stream(_request(), callbacks)
    await handle.wait()

    assert calls == [("content", "He"), ("content", "llo"), ("complete", 42)]


@pytest.mark.asyncio
async def test_open_stream_returns_before_reading(settings):
    requested = asyncio.Event()

    def handler(request):
        requested.set()
        return _stream_response([_frame("complete", "1")])

    callbacks, calls = _recording_callbacks()
    handle = _client(settings, handler).open_stream(_request(), callbacks)

    assert not requested.is_set()
    assert calls == []
    await handle.wait()
    assert calls == [("complete", 1)]


@pytest.mark.asyncio
async def test_open_stream_invalid_complete_is_error(settings):
    client = _client(settings, lambda r: _stream_response([_frame("complete", "abc")]))
    callbacks, calls = _recording_callbacks()

    await client.open_stream(_request(), callbacks).wait()

    assert len(calls) == 1
    kind, message = calls[0]
    assert kind == "error"
    assert message.startswith(INVALID_CONVERSATION_ID)


@pytest.mark.asyncio
async def test_open_stream_malformed_line_does_not_abort(settings):
    body = b"data:{oops\n\n" + _frame("content", "fine") + _frame("complete", "3")
    client = _client(settings, lambda r: _stream_response([body]))
    callbacks, calls = _recording_callbacks()

    await client.open_stream(_request(), callbacks).wait()

    assert calls == [("content", "fine"), ("complete", 3)]


@pytest.mark.asyncio
async def test_open_stream_nothing_after_complete(settings):
    body = _frame("complete", "3") + _frame("content", "late") + _frame("complete", "4")
    client = _client(settings, lambda r: _stream_response([body]))
    callbacks, calls = _recording_callbacks()

    await client.open_stream(_request(), callbacks).wait()

    assert calls == [("complete", 3)]


@pytest.mark.asyncio
async def test_open_stream_error_event(settings):
    body = _frame("content", "par") + _frame("error", "upstream timeout")
    client = _client(settings, lambda r: _stream_response([body]))
    callbacks, calls = _recording_callbacks()

    await client.open_stream(_request(), callbacks).wait()

    assert calls == [("content", "par"), ("error", "upstream timeout")]


@pytest.mark.asyncio
async def test_open_stream_http_status_error(settings):
    client = _client(settings, lambda r: httpx.Response(502))
    callbacks, calls = _recording_callbacks()

    await client.open_stream(_request(), callbacks).wait()

    assert calls == [("error", "HTTP 502")]


@pytest.mark.asyncio
async def test_open_stream_connect_error(settings):
    def handler(request):
        raise httpx.ConnectError("Connection refused")

    callbacks, calls = _recording_callbacks()

    await _client(settings, handler).open_stream(_request(), callbacks).wait()

    assert len(calls) == 1
    assert calls[0][0] == "error"
    assert "Connection refused" in calls[0][1]


@pytest.mark.asyncio
async def test_open_stream_without_terminal_event_reports_incomplete(settings):
    client = _client(settings, lambda r: _stream_response([_frame("content", "cut")]))
    callbacks, calls = _recording_callbacks()

    await client.open_stream(_request(), callbacks).wait()

    assert calls == [("content", "cut"), ("error", STREAM_INCOMPLETE)]


@pytest.mark.asyncio
async def test_open_stream_unknown_event_is_ignored(settings):
    body = _frame("usage", "17") + _frame("content", "ok") + _frame("complete", "2")
    client = _client(settings, lambda r: _stream_response([body]))
    callbacks, calls = _recording_callbacks()

    await client.open_stream(_request(), callbacks).wait()

    assert calls == [("content", "ok"), ("complete", 2)]


@pytest.mark.asyncio
async def test_cancel_mid_stream_stops_all_callbacks(settings):
    gate = asyncio.Event()
    first_seen = asyncio.Event()

    async def body():
        yield _frame("content", "He")
        await gate.wait()
        yield _frame("content", "llo")
        yield _frame("complete", "42")

    client = _client(settings, lambda r: httpx.Response(200, content=body()))
    on_error = MagicMock()
    on_complete = MagicMock()
    received = []

    def on_content(text):
        received.append(text)
        first_seen.set()

    handle = client.open_stream(
        _request(),
        StreamCallbacks(on_content=on_content, on_error=on_error, on_complete=on_complete),
    )
    await asyncio.wait_for(first_seen.wait(), timeout=5)

    handle.cancel()
    gate.set()
    await handle.wait()

    assert received == ["He"]
    on_error.assert_not_called()
    on_complete.assert_not_called()
    assert handle.cancel() is False


@pytest.mark.asyncio
async def test_callback_exception_ends_stream_with_error(settings):
    client = _client(settings, lambda r: _stream_response([_frame("content", "x"), _frame("complete", "1")]))
    on_error = MagicMock()
    on_complete = MagicMock()

    def on_content(text):
        raise RuntimeError("renderer crashed")

    handle = client.open_stream(
        _request(),
        StreamCallbacks(on_content=on_content, on_error=on_error, on_complete=on_complete),
    )
    await handle.wait()

    assert handle.done
    on_complete.assert_not_called()
    on_error.assert_called_once()
    message = on_error.call_args.args[0]
    assert message.startswith(STREAM_HANDLER_FAILED)
    assert "renderer crashed" in message


@pytest.mark.asyncio
async def test_failing_error_callback_does_not_escape(settings):
    client = _client(settings, lambda r: _stream_response([_frame("content", "x")]))

    def explode(value):
        raise RuntimeError("view gone")

    handle = client.open_stream(
        _request(),
        StreamCallbacks(on_content=explode, on_error=explode, on_complete=MagicMock()),
    )
    await handle.wait()

    assert handle.done
    assert not handle.cancelled
