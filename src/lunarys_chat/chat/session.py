"""Conversation state machine for one chat session."""

from __future__ import annotations

import copy
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from lunarys_chat.chat.cancel import StreamHandle
from lunarys_chat.chat.client import ChatClient, ChatClientError
from lunarys_chat.chat.dispatcher import StreamCallbacks
from lunarys_chat.chat.history import HistoryCache
from lunarys_chat.chat.models import (
    PROVISIONAL,
    ChatRequest,
    ChatTurn,
    Confirmed,
    Conversation,
    DeleteOutcome,
    FetchResult,
    Identity,
    Message,
    MessageMetadata,
    Provisional,
    utcnow,
)
from lunarys_chat.chat.strings import EN, ChatStrings, get_strings
from lunarys_chat.config import KNOWN_MODELS, Settings

logger = structlog.get_logger()

TITLE_MAX_LENGTH = 20


@dataclass(frozen=True, slots=True)
class ChatSnapshot:
    """Immutable copy of the session state handed to listeners."""

    conversations: tuple[Conversation, ...]
    current: Conversation | None
    messages: tuple[Message, ...]
    is_loading: bool
    model: str


Listener = Callable[[ChatSnapshot], None]


@dataclass(slots=True)
class _Exchange:
    """One user message and the assistant reply being produced for it."""

    conversation: Conversation
    messages: list[Message]
    placeholder: Message
    handle: StreamHandle


class ChatSession:
    """Owns the conversation list and the active conversation's messages.

    A conversation starts out ``Provisional`` when the first message of a
    new chat is sent and becomes ``Confirmed(id)`` once the backend reports
    its id. The active conversation and its entry in the list are the same
    object, so reconciliation is a single assignment.

    At most one exchange is in flight; sending again cancels it first.
    Callbacks of an exchange only touch the objects captured when it
    started, never "whatever is current now".
    """

    def __init__(
        self,
        client: ChatClient,
        model: str = "deepseek-chat",
        enable_streaming: bool = True,
        strings: ChatStrings = EN,
        history: HistoryCache | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self.enable_streaming = enable_streaming
        self._strings = strings
        self._history = history or HistoryCache()
        self._conversations: list[Conversation] = []
        self._current: Conversation | None = None
        self._messages: list[Message] = []
        self._is_loading = False
        self._exchange: _Exchange | None = None
        self._listeners: list[Listener] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: ChatClient | None = None,
    ) -> ChatSession:
        return cls(
            client or ChatClient(settings),
            model=settings.model,
            enable_streaming=settings.enable_streaming,
            strings=get_strings(settings.locale),
            history=HistoryCache(
                ttl=settings.history_cache_ttl,
                maxsize=settings.history_cache_maxsize,
            ),
        )

    # --- State access ---

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return tuple(self._conversations)

    @property
    def current(self) -> Conversation | None:
        return self._current

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def model(self) -> str:
        return self._model

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with a snapshot after every change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> ChatSnapshot:
        conversations = copy.deepcopy(self._conversations)
        current = None
        if self._current is not None:
            for original, copied in zip(self._conversations, conversations):
                if original is self._current:
                    current = copied
                    break
            else:
                current = copy.deepcopy(self._current)
        return ChatSnapshot(
            conversations=tuple(conversations),
            current=current,
            messages=tuple(copy.deepcopy(self._messages)),
            is_loading=self._is_loading,
            model=self._model,
        )

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("session_listener_failed", listener=repr(listener))

    def _find(self, identity: Identity) -> Conversation | None:
        for conversation in self._conversations:
            if conversation.identity == identity:
                return conversation
        return None

    # --- Conversations ---

    def set_model(self, model: str) -> None:
        if model not in KNOWN_MODELS:
            raise ValueError(f"model must be one of {', '.join(KNOWN_MODELS)}, got: {model}")
        self._model = model
        logger.info("chat_model_selected", model=model)
        self._notify()

    async def load_conversations(self) -> FetchResult[Conversation]:
        """Refresh the conversation list from the backend.

        On failure the current list is left untouched. Known conversations
        keep their object identity so the active reference stays valid.
        """
        result = await self._client.list_conversations()
        if not result.is_ok:
            logger.warning("conversations_load_skipped", reason=result.reason)
            return result

        merged = [c for c in self._conversations if c.is_provisional]
        for fresh in result.items:
            existing = self._find(fresh.identity)
            if existing is None:
                merged.append(fresh)
                continue
            existing.title = fresh.title
            existing.model = fresh.model
            existing.created_at = fresh.created_at
            existing.updated_at = fresh.updated_at
            existing.preview = fresh.preview
            merged.append(existing)

        if self._current is not None and not any(c is self._current for c in merged):
            merged.insert(0, self._current)

        self._conversations = merged
        logger.info("conversations_loaded", count=len(result.items))
        self._notify()
        return result

    def create_new_conversation(self) -> Conversation:
        """Start a provisional conversation and make it active."""
        self.stop_streaming()
        now = utcnow()
        conversation = Conversation(
            identity=PROVISIONAL,
            title=self._strings.new_conversation_title,
            model=self._model,
            created_at=now,
            updated_at=now,
            preview=self._strings.new_conversation_preview,
        )
        # Only the most recent provisional conversation survives
        self._conversations = [c for c in self._conversations if not c.is_provisional]
        self._conversations.insert(0, conversation)
        self._current = conversation
        self._messages = []
        logger.info("conversation_created", model=self._model)
        self._notify()
        return conversation

    async def switch_conversation(self, conversation_id: int) -> bool:
        """Make a confirmed conversation active and load its history.

        Provisional or unknown targets are ignored and return False; a
        provisional conversation can be selected while it is still being
        created, which is a normal race.
        """
        if conversation_id <= 0:
            logger.warning("switch_to_provisional_ignored", conversation_id=conversation_id)
            return False

        conversation = self._find(Confirmed(conversation_id))
        if conversation is None:
            logger.warning("switch_unknown_conversation", conversation_id=conversation_id)
            return False

        self._current = conversation
        exchange = self._exchange
        if exchange is not None and exchange.conversation is conversation:
            # The in-flight exchange still writes into its own list
            self._messages = exchange.messages
        elif (cached := self._history.get(conversation_id)) is not None:
            self._messages = cached
        else:
            self._messages = []
            self._notify()
            result = await self._client.get_messages(conversation_id)
            if self._current is not conversation:
                # Another switch won while the history was loading
                return False
            self._messages = result.items
            if result.is_ok:
                self._history.set(conversation_id, result.items)

        logger.info(
            "conversation_switched",
            conversation_id=conversation_id,
            message_count=len(self._messages),
        )
        self._notify()
        return True

    async def delete_conversation(self, target: int | Identity) -> DeleteOutcome:
        """Delete a conversation on the backend and locally.

        Local removal happens whatever the backend says; a provisional
        conversation is never sent to the backend. When the active
        conversation is deleted nothing else is selected.
        """
        if isinstance(target, (Provisional, Confirmed)):
            identity = target
        else:
            identity = Confirmed(target) if target > 0 else PROVISIONAL

        if isinstance(identity, Confirmed):
            outcome = await self._client.delete_conversation(identity.id)
            self._history.clear(identity.id)
        else:
            outcome = DeleteOutcome.LOCAL_ONLY

        if self._exchange is not None and self._exchange.conversation.identity == identity:
            self.stop_streaming()

        self._conversations = [c for c in self._conversations if c.identity != identity]
        if self._current is not None and self._current.identity == identity:
            self._current = None
            self._messages = []

        logger.info(
            "conversation_deleted",
            conversation_id=identity.wire_id,
            outcome=outcome.value,
        )
        self._notify()
        return outcome

    # --- Exchanges ---

    def stop_streaming(self) -> bool:
        """Cancel the in-flight exchange, if any, and clear the busy flag."""
        exchange, self._exchange = self._exchange, None
        if exchange is None:
            return False
        exchange.handle.cancel()
        self._is_loading = False
        logger.info(
            "chat_exchange_stopped",
            conversation_id=exchange.conversation.identity.wire_id,
        )
        self._notify()
        return True

    def send_message(self, content: str) -> StreamHandle | None:
        """Send a user message and start producing the reply.

        Must be called from a running event loop. Returns the handle of the
        new exchange, or None when ``content`` is blank.
        """
        text = content.strip()
        if not text:
            return None

        self.stop_streaming()
        if self._current is None:
            self.create_new_conversation()

        conversation = self._current
        messages = self._messages
        now = utcnow()
        messages.append(
            Message(conversation=conversation.identity, role="user", content=text, created_at=now)
        )
        placeholder = Message(
            conversation=conversation.identity,
            role="assistant",
            content="",
            created_at=now,
        )
        messages.append(placeholder)
        self._is_loading = True

        request = self._build_request(conversation, messages[:-1], text)

        if self.enable_streaming:
            exchange = self._start_streaming(conversation, messages, placeholder, request)
        else:
            exchange = self._start_one_shot(conversation, messages, placeholder, request)
        self._exchange = exchange

        logger.info(
            "chat_exchange_started",
            conversation_id=request.conversation_id,
            streaming=self.enable_streaming,
            history_length=len(request.messages),
        )
        self._notify()
        return exchange.handle

    async def wait_idle(self) -> None:
        """Wait until the in-flight exchange (if any) has finished."""
        exchange = self._exchange
        if exchange is not None:
            await exchange.handle.wait()

    def _build_request(
        self,
        conversation: Conversation,
        history: list[Message],
        text: str,
    ) -> ChatRequest:
        return ChatRequest(
            conversation_id=conversation.identity.wire_id,
            model=self._model,
            message=text,
            messages=[
                ChatTurn(role=m.role, content=m.content)
                for m in history
                if m.role != "reasoning"
            ],
        )

    def _start_streaming(
        self,
        conversation: Conversation,
        messages: list[Message],
        placeholder: Message,
        request: ChatRequest,
    ) -> _Exchange:
        def on_content(chunk: str) -> None:
            placeholder.content += chunk
            self._notify()

        def on_reasoning(chunk: str) -> None:
            if placeholder.metadata is None:
                placeholder.metadata = MessageMetadata()
            placeholder.metadata.reasoning_content = (
                placeholder.metadata.reasoning_content or ""
            ) + chunk
            self._notify()

        def on_error(message: str) -> None:
            placeholder.content = self._strings.error_template.format(message=message)
            self._finish(exchange)

        def on_complete(conversation_id: int) -> None:
            self._confirm(exchange, conversation_id)
            self._finish(exchange)

        handle = self._client.open_stream(
            request,
            StreamCallbacks(
                on_content=on_content,
                on_error=on_error,
                on_complete=on_complete,
                on_reasoning=on_reasoning,
            ),
        )
        exchange = _Exchange(conversation, messages, placeholder, handle)
        return exchange

    def _start_one_shot(
        self,
        conversation: Conversation,
        messages: list[Message],
        placeholder: Message,
        request: ChatRequest,
    ) -> _Exchange:
        exchange = _Exchange(conversation, messages, placeholder, StreamHandle(label="chat_request"))
        exchange.handle.start(self._one_shot(exchange, request))
        return exchange

    async def _one_shot(self, exchange: _Exchange, request: ChatRequest) -> None:
        try:
            response = await self._client.send_message(request)
        except ChatClientError as e:
            logger.error("chat_send_failed", error=str(e), status_code=e.status_code)
            exchange.placeholder.content = self._strings.send_failed
        else:
            exchange.placeholder.content = response.content
            self._confirm(exchange, response.conversation_id)
        finally:
            if not exchange.handle.cancelled:
                self._finish(exchange)

    def _confirm(self, exchange: _Exchange, conversation_id: int) -> None:
        """Re-tag the exchange's conversation with the backend id."""
        if conversation_id <= 0:
            logger.warning("conversation_id_rejected", conversation_id=conversation_id)
            return

        conversation = exchange.conversation
        previous = conversation.identity
        identity = Confirmed(conversation_id)
        conversation.identity = identity
        conversation.updated_at = utcnow()
        for message in exchange.messages:
            if message.conversation == previous:
                message.conversation = identity

        # A list reload during the exchange may already hold this id
        self._conversations = [
            c for c in self._conversations
            if c is conversation or c.identity != identity
        ]

        if (
            len(exchange.messages) == 2
            and conversation.title == self._strings.new_conversation_title
        ):
            conversation.title = _derive_title(exchange.messages[0].content)

        self._history.set(conversation_id, exchange.messages)
        logger.info(
            "conversation_confirmed",
            conversation_id=conversation_id,
            was_provisional=isinstance(previous, Provisional),
        )

    def _finish(self, exchange: _Exchange) -> None:
        if self._exchange is exchange:
            self._exchange = None
            self._is_loading = False
        self._notify()

    async def aclose(self) -> None:
        self.stop_streaming()
        await self._client.close()


def _derive_title(first_message: str) -> str:
    if len(first_message) > TITLE_MAX_LENGTH:
        return first_message[:TITLE_MAX_LENGTH] + "..."
    return first_message
