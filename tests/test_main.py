"""Tests for the terminal front end."""

import io
import json

import httpx
import pytest

from lunarys_chat.chat.client import ChatClient
from lunarys_chat.chat.models import Confirmed
from lunarys_chat.chat.session import ChatSession
from lunarys_chat.main import handle_command, run_chat

CONVERSATIONS = [{"id": 3, "title": "Trip plans", "model": "deepseek-chat"}]


def _handler(request: httpx.Request) -> httpx.Response:
    if request.method == "DELETE":
        return httpx.Response(204)
    if request.url.path == "/api/conversations":
        return httpx.Response(200, json=CONVERSATIONS)
    if request.url.path.endswith("/messages"):
        return httpx.Response(200, json=[{"role": "user", "content": "Where to?"}])
    if request.url.path == "/api/chat/stream":
        frames = [{"type": "content", "data": "Hi "}, {"type": "content", "data": "there"}, {"type": "complete", "data": "9"}]
        return httpx.Response(200, content="".join(f"data:{json.dumps(f)}\n\n" for f in frames).encode())
    return httpx.Response(404)


@pytest.fixture
def session(settings):
    client = ChatClient(settings, transport=httpx.MockTransport(_handler))
    return ChatSession.from_settings(settings, client=client)


def _reader(lines):
    pending = list(lines)

    async def read_line(prompt: str) -> str:
        if not pending:
            raise EOFError
        return pending.pop(0)

    return read_line


@pytest.mark.asyncio
async def test_list_command(session):
    out = io.StringIO()

    assert await handle_command(session, "/list", out) is True

    assert "  [3] Trip plans (deepseek-chat)" in out.getvalue()


@pytest.mark.asyncio
async def test_switch_command_prints_history(session):
    out = io.StringIO()
    await session.load_conversations()

    await handle_command(session, "/switch 3", out)

    assert session.current.identity == Confirmed(3)
    assert "you> Where to?" in out.getvalue()


@pytest.mark.asyncio
async def test_switch_command_rejects_bad_argument(session):
    out = io.StringIO()

    await handle_command(session, "/switch abc", out)
    await handle_command(session, "/switch 77", out)

    assert "Usage: /switch ID" in out.getvalue()
    assert "Cannot open conversation 77." in out.getvalue()


@pytest.mark.asyncio
async def test_delete_command(session):
    out = io.StringIO()
    await session.load_conversations()

    await handle_command(session, "/delete 3", out)

    assert session.conversations == ()
    assert "Deleted conversation 3 (deleted)." in out.getvalue()


@pytest.mark.asyncio
async def test_model_and_stream_commands(session):
    out = io.StringIO()

    await handle_command(session, "/model deepseek-reasoner", out)
    await handle_command(session, "/model gpt", out)
    await handle_command(session, "/stream off", out)

    assert session.model == "deepseek-reasoner"
    assert session.enable_streaming is False
    assert "model must be one of" in out.getvalue()
    assert "Streaming: off" in out.getvalue()


@pytest.mark.asyncio
async def test_quit_and_unknown_commands(session):
    out = io.StringIO()

    assert await handle_command(session, "/quit", out) is False
    assert await handle_command(session, "/bogus", out) is True
    assert "Unknown command: /bogus" in out.getvalue()


@pytest.mark.asyncio
async def test_run_chat_streams_reply(session):
    out = io.StringIO()

    await run_chat(session, read_line=_reader(["", "hello", "/quit", "never sent"]), out=out)

    assert "Hi there" in out.getvalue()
    assert session.current.identity == Confirmed(9)
    assert [m.content for m in session.messages] == ["hello", "Hi there"]


@pytest.mark.asyncio
async def test_run_chat_stops_at_end_of_input(session):
    out = io.StringIO()

    await run_chat(session, read_line=_reader([]), out=out)

    assert out.getvalue().startswith("Type /help for commands.")
    assert len(session.conversations) == 1
