"""Chat backend client and conversation state."""

from lunarys_chat.chat.cancel import StreamHandle
from lunarys_chat.chat.client import ChatClient, ChatClientError
from lunarys_chat.chat.dispatcher import StreamCallbacks
from lunarys_chat.chat.models import Confirmed, Conversation, Message, Provisional, StreamEvent
from lunarys_chat.chat.session import ChatSession, ChatSnapshot

__all__ = [
    "ChatClient",
    "ChatClientError",
    "ChatSession",
    "ChatSnapshot",
    "Confirmed",
    "Conversation",
    "Message",
    "Provisional",
    "StreamCallbacks",
    "StreamEvent",
    "StreamHandle",
]
