"""Data models for conversations, messages and the stream protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "assistant", "reasoning"]

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Provisional:
    """Identity of a conversation the backend has not acknowledged yet."""

    is_confirmed = False

    @property
    def wire_id(self) -> int | None:
        return None


@dataclass(frozen=True, slots=True)
class Confirmed:
    """Identity assigned by the backend."""

    id: int
    is_confirmed = True

    def __post_init__(self) -> None:
        if self.id <= 0:
            raise ValueError(f"confirmed conversation id must be positive, got: {self.id}")

    @property
    def wire_id(self) -> int | None:
        return self.id


Identity = Provisional | Confirmed

PROVISIONAL = Provisional()


@dataclass(slots=True)
class Conversation:
    identity: Identity
    title: str
    model: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    preview: str = ""

    @property
    def is_provisional(self) -> bool:
        return not self.identity.is_confirmed


@dataclass(slots=True)
class MessageMetadata:
    reasoning_content: str | None = None


@dataclass(slots=True)
class Message:
    conversation: Identity
    role: Role
    content: str
    id: int | None = None
    created_at: datetime | None = None
    metadata: MessageMetadata | None = None


@dataclass(slots=True)
class StreamEvent:
    """A single classified event from the chat stream."""

    kind: str
    data: str


class FetchStatus(str, Enum):
    OK = "ok"
    UNAVAILABLE = "unavailable"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Outcome of a read call whose failure policy is "empty list".

    ``UNAVAILABLE`` always carries an empty ``items`` list, so callers that
    only care about the data can ignore ``status``.
    """

    status: FetchStatus
    items: list[T] = field(default_factory=list)
    reason: str | None = None

    @classmethod
    def ok(cls, items: list[T]) -> FetchResult[T]:
        return cls(status=FetchStatus.OK, items=items)

    @classmethod
    def unavailable(cls, reason: str) -> FetchResult[T]:
        return cls(status=FetchStatus.UNAVAILABLE, items=[], reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status is FetchStatus.OK


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    LOCAL_ONLY = "local_only"


# --- Wire models ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ChatTurn(_CamelModel):
    role: str
    content: str


class ChatRequest(_CamelModel):
    """Outbound body for both the one-shot and the streaming endpoint."""

    conversation_id: int | None = None
    model: str
    message: str | None = None
    messages: list[ChatTurn] = Field(default_factory=list)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatResponse(_CamelModel):
    content: str
    conversation_id: int


class StreamPayload(BaseModel):
    """JSON body of a single ``data:`` line."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    type: str
    data: str


class ConversationRecord(_CamelModel):
    id: int = Field(gt=0)
    title: str = ""
    model: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    preview: str = ""

    def to_conversation(self) -> Conversation:
        return Conversation(
            identity=Confirmed(self.id),
            title=self.title,
            model=self.model,
            created_at=self.created_at,
            updated_at=self.updated_at,
            preview=self.preview,
        )


class MessageRecord(_CamelModel):
    id: int | None = None
    conversation_id: int | None = None
    role: Role
    content: str = ""
    created_at: datetime | None = None
    reasoning_content: str | None = None

    def to_message(self, conversation: Identity) -> Message:
        metadata = None
        if self.reasoning_content:
            metadata = MessageMetadata(reasoning_content=self.reasoning_content)
        return Message(
            conversation=conversation,
            role=self.role,
            content=self.content,
            id=self.id,
            created_at=self.created_at,
            metadata=metadata,
        )
