"""Persisted chat data: messages, sessions and per-installation user memory.

Field names are snake_case in Python and camelCase on disk, matching the
``userMemory`` / ``chatSessions`` records written by earlier app versions.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

DEFAULT_SESSION_TITLE = "New Chat"
TITLE_MAX_CHARS = 50
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful, friendly chat assistant. Keep your answers concise and use "
    "natural conversational language. If you don't know, say so politely."
)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "llm"


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessage(_Record):
    """One turn in a conversation. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    sender: Sender
    text: str
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def is_user(self) -> bool:
        return self.sender is Sender.USER

    @classmethod
    def user(cls, text: str) -> ChatMessage:
        return cls(sender=Sender.USER, text=text)

    @classmethod
    def assistant(cls, text: str) -> ChatMessage:
        return cls(sender=Sender.ASSISTANT, text=text)


def derive_title(messages: Iterable[ChatMessage]) -> str | None:
    """Title from the first user message, truncated to ``TITLE_MAX_CHARS``."""
    for message in messages:
        if message.is_user:
            return message.text[:TITLE_MAX_CHARS]
    return None


class ChatSession(_Record):
    """One persisted conversation thread."""

    id: UUID = Field(default_factory=uuid4)
    title: str = DEFAULT_SESSION_TITLE
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_modified: datetime = Field(default_factory=utc_now)

    @property
    def has_default_title(self) -> bool:
        return self.title == DEFAULT_SESSION_TITLE

    def replace_messages(self, messages: Iterable[ChatMessage]) -> None:
        """Swap in a new message list, bump ``last_modified`` and derive the title."""
        self.messages = list(messages)
        self.last_modified = utc_now()
        if self.has_default_title:
            title = derive_title(self.messages)
            if title:
                self.title = title

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match over the title and every message text."""
        needle = query.casefold()
        if needle in self.title.casefold():
            return True
        return any(needle in message.text.casefold() for message in self.messages)


class UserMemory(_Record):
    """Process-wide preference and state bag, one per installation."""

    user_name: str | None = None
    preferences: dict[str, str] = Field(default_factory=dict)
    important_facts: list[str] = Field(default_factory=list)
    last_chat_session_id: UUID | None = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    def add_fact(self, fact: str) -> bool:
        """Append ``fact`` unless an identical string is already stored."""
        if fact in self.important_facts:
            return False
        self.important_facts.append(fact)
        return True


SESSION_LIST = TypeAdapter(list[ChatSession])


def dump_memory(memory: UserMemory) -> bytes:
    return memory.model_dump_json(by_alias=True).encode("utf-8")


def load_memory(data: bytes | str) -> UserMemory:
    return UserMemory.model_validate_json(data)


def dump_sessions(sessions: list[ChatSession]) -> bytes:
    return SESSION_LIST.dump_json(sessions, by_alias=True)


def load_sessions(data: bytes | str) -> list[ChatSession]:
    return SESSION_LIST.validate_json(data)
