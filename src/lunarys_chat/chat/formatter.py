"""Format conversations and messages for terminal display."""

from __future__ import annotations

from typing import TextIO

from lunarys_chat.chat.models import Conversation, Message
from lunarys_chat.chat.session import ChatSnapshot

_MAX_REASONING_LENGTH = 15000

_DIM = "\x1b[2m"
_RESET = "\x1b[0m"


def truncate_reasoning(reasoning_text: str) -> str:
    if len(reasoning_text) > _MAX_REASONING_LENGTH:
        return reasoning_text[:_MAX_REASONING_LENGTH] + "\n\n...(reasoning truncated)"
    return reasoning_text


def format_conversation_line(conversation: Conversation, active: bool = False) -> str:
    """One line of the conversation list, e.g. ``* [42] Title (deepseek-chat)``."""
    marker = "*" if active else " "
    label = conversation.identity.wire_id
    key = f"[{label}]" if label is not None else "[new]"
    return f"{marker} {key} {conversation.title} ({conversation.model})"


def format_message(message: Message, color: bool = True) -> str:
    """Format a stored message as plain text.

    Args:
        message: The message to render.
        color: Dim the reasoning block with ANSI escapes.

    Returns:
        The message text, with reasoning (if any) shown before the answer.
    """
    prefix = "you" if message.role == "user" else "assistant"
    parts = []

    reasoning = message.metadata.reasoning_content if message.metadata else None
    if message.role == "reasoning":
        reasoning, content = message.content, ""
    else:
        content = message.content

    if reasoning:
        text = truncate_reasoning(reasoning)
        parts.append(f"{_DIM}{text}{_RESET}" if color else text)
        parts.append("\n---\n")

    parts.append(content)
    return f"{prefix}> " + "".join(parts)


class StreamPrinter:
    """Session listener that prints the growing assistant reply.

    Tracks how much of the last message's reasoning and content has
    already been written and only prints the new tail. A reply that is
    replaced rather than extended (error or one-shot answer) is printed
    in full on a new line.
    """

    def __init__(self, out: TextIO, color: bool = True) -> None:
        self._out = out
        self._color = color
        self._reasoning_len = 0
        self._content = ""

    def __call__(self, snapshot: ChatSnapshot) -> None:
        if not snapshot.messages:
            return
        message = snapshot.messages[-1]
        if message.role != "assistant":
            return

        reasoning = message.metadata.reasoning_content if message.metadata else None
        if reasoning and len(reasoning) > self._reasoning_len:
            tail = reasoning[self._reasoning_len:]
            self._write(f"{_DIM}{tail}{_RESET}" if self._color else tail)
            self._reasoning_len = len(reasoning)

        content = message.content
        if content.startswith(self._content):
            tail = content[len(self._content):]
            if tail and not self._content and self._reasoning_len:
                self._write("\n---\n")
            self._write(tail)
        else:
            self._write("\n" + content)
        self._content = content

    def _write(self, text: str) -> None:
        if text:
            self._out.write(text)
            self._out.flush()
