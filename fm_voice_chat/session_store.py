"""Durable CRUD over user memory and the chat session collection.

The store is the only writer of persisted state. Every mutation rewrites the
whole affected record; write failures are logged and the in-memory state
stays authoritative for the rest of the process.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TypeVar
from uuid import UUID

from .models import (
    DEFAULT_SESSION_TITLE,
    DEFAULT_SYSTEM_PROMPT,
    ChatMessage,
    ChatSession,
    UserMemory,
    dump_memory,
    dump_sessions,
    load_memory,
    load_sessions,
)
from .storage import KeyValueStore

logger = logging.getLogger("fm_voice_chat.store")

MEMORY_KEY = "userMemory"
SESSIONS_KEY = "chatSessions"

T = TypeVar("T")


class SessionStore:
    """Owns ``UserMemory`` and the ``ChatSession`` collection."""

    def __init__(self, backend: KeyValueStore):
        self.backend = backend
        self.memory = UserMemory()
        self._sessions: list[ChatSession] = []

    # -- loading / persistence -------------------------------------------------

    def load(self) -> tuple[UserMemory, list[ChatSession]]:
        """Read both records, falling back to defaults when missing or malformed."""
        self.memory = self._read(MEMORY_KEY, load_memory) or UserMemory()
        sessions = self._read(SESSIONS_KEY, load_sessions)
        if not sessions:
            sessions = [ChatSession(title=DEFAULT_SESSION_TITLE)]
        self._sessions = sessions

        restored = self.memory.last_chat_session_id
        if restored is None or self.get_session(restored) is None:
            self.memory.last_chat_session_id = sessions[0].id
        logger.debug(
            "Loaded %d session(s); current=%s", len(sessions), self.memory.last_chat_session_id
        )
        return self.memory, list(self._sessions)

    def _read(self, key: str, decode: Callable[[bytes], T]) -> T | None:
        try:
            raw = self.backend.get(key)
        except OSError:
            logger.warning("Could not read %s record; using defaults.", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return decode(raw)
        except ValueError:
            logger.warning("Discarding malformed %s record.", key, exc_info=True)
            return None

    def _write(self, key: str, encode: Callable[[], bytes]) -> bool:
        try:
            self.backend.set(key, encode())
        except (OSError, TypeError, ValueError):
            logger.warning(
                "Failed to persist %s; keeping in-memory state.", key, exc_info=True
            )
            return False
        return True

    def _save_memory(self) -> bool:
        return self._write(MEMORY_KEY, lambda: dump_memory(self.memory))

    def _save_sessions(self) -> bool:
        return self._write(SESSIONS_KEY, lambda: dump_sessions(self._sessions))

    # -- sessions --------------------------------------------------------------

    @property
    def sessions(self) -> list[ChatSession]:
        """Sessions in storage order."""
        return list(self._sessions)

    @property
    def current_session_id(self) -> UUID | None:
        return self.memory.last_chat_session_id

    def recent_sessions(self) -> list[ChatSession]:
        """Sessions ordered by recent activity, newest first."""
        return sorted(self._sessions, key=lambda session: session.last_modified, reverse=True)

    def get_session(self, session_id: UUID) -> ChatSession | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def get_current(self) -> ChatSession | None:
        current = self.current_session_id
        if current is None:
            return None
        return self.get_session(current)

    def create_session(self, title: str = DEFAULT_SESSION_TITLE) -> ChatSession:
        """Append an empty session and make it current."""
        session = ChatSession(title=title)
        self._sessions.append(session)
        self.memory.last_chat_session_id = session.id
        self._save_sessions()
        self._save_memory()
        logger.info("Created chat session %s", session.id)
        return session

    def update_messages(
        self, session_id: UUID, messages: Iterable[ChatMessage]
    ) -> ChatSession | None:
        """Replace a session's messages. Unknown ids are ignored."""
        session = self.get_session(session_id)
        if session is None:
            logger.debug("Ignoring message update for unknown session %s", session_id)
            return None
        session.replace_messages(messages)
        self._save_sessions()
        return session

    def switch_to(self, session_id: UUID) -> None:
        """Mark ``session_id`` current. Callers check ``get_current()`` afterwards."""
        self.memory.last_chat_session_id = session_id
        self._save_memory()

    def delete(self, session_id: UUID) -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False
        self._sessions.remove(session)
        if self.current_session_id == session_id:
            self.memory.last_chat_session_id = self._sessions[0].id if self._sessions else None
            self._save_memory()
        self._save_sessions()
        logger.info("Deleted chat session %s", session_id)
        return True

    def search(self, query: str) -> list[ChatSession]:
        """Sessions whose title or any message contains ``query``, ignoring case."""
        return [session for session in self._sessions if session.matches(query)]

    # -- user memory -----------------------------------------------------------

    def set_preference(self, key: str, value: str) -> None:
        self.memory.preferences[key] = value
        self._save_memory()

    def get_preference(self, key: str, default: str | None = None) -> str | None:
        return self.memory.preferences.get(key, default)

    def add_fact(self, fact: str) -> None:
        if self.memory.add_fact(fact):
            self._save_memory()

    def set_user_name(self, name: str | None) -> None:
        self.memory.user_name = name
        self._save_memory()

    def update_system_prompt(self, prompt: str) -> None:
        self.memory.system_prompt = prompt
        self._save_memory()

    def reset_system_prompt(self) -> None:
        self.update_system_prompt(DEFAULT_SYSTEM_PROMPT)
