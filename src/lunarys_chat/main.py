"""Application entrypoint - terminal chat against the Lunarys backend."""

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

import structlog

from lunarys_chat.chat.formatter import StreamPrinter, format_conversation_line, format_message
from lunarys_chat.chat.session import ChatSession
from lunarys_chat.config import Settings, get_settings

HELP_TEXT = """\
Commands:
  /new             start a new conversation
  /list            reload and list conversations
  /switch ID       open a saved conversation
  /delete ID       delete a conversation
  /model NAME      select the model for the next messages
  /stream on|off   toggle streaming replies
  /stop            stop the current reply
  /quit            exit
Anything else is sent as a message."""


# Request-level loggers of the HTTP stack
_TRANSPORT_LOGGERS = ("httpx", "httpcore")

_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def _log_handlers(settings: Settings) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                filename=settings.log_file,
                maxBytes=settings.log_file_max_bytes,
                backupCount=settings.log_file_backup_count,
                encoding="utf-8",
            )
        )
    return handlers


def configure_logging(settings: Settings) -> None:
    """Route structlog events through stdlib logging for the terminal client.

    Log lines always go to stderr; stdout carries the streamed reply.
    With ``LOG_FILE`` set, events are rendered as JSON lines and also
    written to a rotating file. Otherwise the console renderer is used,
    colored only when stderr is a terminal. The httpx/httpcore loggers
    are held at WARNING unless ``LOG_LEVEL`` is DEBUG.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers = _log_handlers(settings)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.root
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)

    for name in _TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    if settings.log_file:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[*_PROCESSORS, renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


async def _read_stdin(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


async def handle_command(session: ChatSession, line: str, out: TextIO) -> bool:
    """Run one slash command. Returns False when the loop should exit."""
    command, _, arg = line[1:].partition(" ")
    arg = arg.strip()

    if command in ("quit", "exit"):
        return False
    if command == "help":
        out.write(HELP_TEXT + "\n")
    elif command == "new":
        session.create_new_conversation()
        out.write("Started a new conversation.\n")
    elif command == "list":
        result = await session.load_conversations()
        if not result.is_ok:
            out.write(f"Conversation list unavailable: {result.reason}\n")
        for conversation in session.conversations:
            out.write(format_conversation_line(conversation, conversation is session.current) + "\n")
    elif command in ("switch", "delete"):
        if not arg.lstrip("-").isdigit():
            out.write(f"Usage: /{command} ID\n")
        elif command == "switch":
            if await session.switch_conversation(int(arg)):
                for message in session.messages:
                    out.write(format_message(message) + "\n")
            else:
                out.write(f"Cannot open conversation {arg}.\n")
        else:
            outcome = await session.delete_conversation(int(arg))
            out.write(f"Deleted conversation {arg} ({outcome.value}).\n")
    elif command == "model":
        try:
            session.set_model(arg)
            out.write(f"Model: {session.model}\n")
        except ValueError as e:
            out.write(f"{e}\n")
    elif command == "stream":
        session.enable_streaming = arg != "off"
        out.write(f"Streaming: {'on' if session.enable_streaming else 'off'}\n")
    elif command == "stop":
        session.stop_streaming()
    else:
        out.write(f"Unknown command: /{command}\n")
    return True


async def run_chat(
    session: ChatSession,
    read_line: Callable[[str], Awaitable[str]] = _read_stdin,
    out: TextIO = sys.stdout,
) -> None:
    """Prompt loop: send each line and print the reply as it arrives."""
    out.write("Type /help for commands.\n")

    try:
        await session.load_conversations()
        while True:
            try:
                line = (await read_line("> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            if line.startswith("/"):
                if not await handle_command(session, line, out):
                    break
                continue

            unsubscribe = session.subscribe(StreamPrinter(out, color=out.isatty()))
            try:
                if session.send_message(line) is not None:
                    await session.wait_idle()
                    out.write("\n")
            finally:
                unsubscribe()
    finally:
        await session.aclose()


def main() -> None:
    """Run the terminal chat."""
    settings = get_settings()
    configure_logging(settings)

    logger.info(
        "starting_chat",
        api_base_url=settings.api_base_url,
        model=settings.model,
        streaming=settings.enable_streaming,
    )

    session = ChatSession.from_settings(settings)
    try:
        asyncio.run(run_chat(session))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
