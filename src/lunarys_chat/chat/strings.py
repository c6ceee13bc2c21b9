"""User-facing strings for the chat session, per locale."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ChatStrings:
    new_conversation_title: str
    new_conversation_preview: str
    # Formatted with the error text received from the stream
    error_template: str
    send_failed: str


EN = ChatStrings(
    new_conversation_title="New chat",
    new_conversation_preview="Start a new conversation",
    error_template="Error: {message}",
    send_failed="Sorry, something went wrong while sending your message. Please try again later.",
)

ZH = ChatStrings(
    new_conversation_title="新对话",
    new_conversation_preview="开始新的对话",
    error_template="错误: {message}",
    send_failed="抱歉，发送消息时出现错误，请稍后重试。",
)

_LOCALES = {"en": EN, "zh": ZH}


def get_strings(locale: str) -> ChatStrings:
    """Strings for ``locale`` (``zh-CN`` resolves to ``zh``), English otherwise."""
    return _LOCALES.get(locale.lower().split("-")[0].split("_")[0], EN)
