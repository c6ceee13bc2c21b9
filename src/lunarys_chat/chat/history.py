"""Cache of conversation message histories."""

import copy

import structlog
from cachetools import TTLCache

from lunarys_chat.chat.models import Message

logger = structlog.get_logger()


class HistoryCache:
    """Maps confirmed conversation IDs to their message history with TTL expiry.

    Entries are stored and returned as copies so cached history is never
    aliased with the live message list of the active conversation.
    """

    def __init__(self, ttl: int = 300, maxsize: int = 100) -> None:
        self._cache: TTLCache[int, list[Message]] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, conversation_id: int) -> list[Message] | None:
        """Get a copy of the cached history, or None if not found/expired."""
        messages = self._cache.get(conversation_id)
        if messages is None:
            return None
        logger.debug("history_cache_hit", conversation_id=conversation_id)
        return copy.deepcopy(messages)

    def set(self, conversation_id: int, messages: list[Message]) -> None:
        self._cache[conversation_id] = copy.deepcopy(messages)

    def clear(self, conversation_id: int) -> None:
        """Remove a conversation's history."""
        self._cache.pop(conversation_id, None)
