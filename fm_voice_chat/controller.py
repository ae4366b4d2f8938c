"""Conversation controller: one active session against the inference collaborator.

Request lifecycle::

    Idle --send_message--> Awaiting response --reply/error--> Resolving --> Idle

The user message is appended before the collaborator is called, exactly one
assistant message is appended when the call resolves, and ``is_responding``
drops back to False only after that append is visible.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from uuid import UUID

from .events import Signal
from .exceptions import InferenceFailedError, ModelUnavailableError
from .inference import Responder
from .models import DEFAULT_SESSION_TITLE, ChatMessage, ChatSession
from .session_store import SessionStore

logger = logging.getLogger("fm_voice_chat.controller")

GREETING = "Hello! I'm your AI assistant. How can I help you today?"

ResponderFactory = Callable[[str], Responder]


class ModelState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class ConversationController:
    """Mediates the current session's messages and enforces one in-flight request.

    Signals:
        assistant_message(ChatMessage): once per appended assistant message.
        messages_changed(list[ChatMessage]): after every message-list change.
        response_progress(str): streamed partial reply text while awaiting.
        model_state_changed(ModelState): when model initialization resolves.
    """

    def __init__(
        self,
        store: SessionStore,
        responder: Responder | None = None,
        *,
        responder_factory: ResponderFactory | None = None,
        greeting: str = GREETING,
    ):
        self.store = store
        self.responder = responder
        self.greeting = greeting
        self.pending_input = ""
        self.is_responding = False
        self.session_id: UUID | None = None

        self._responder_factory = responder_factory
        self._messages: list[ChatMessage] = []
        self._bootstrapping = False
        self._init_task: asyncio.Task[None] | None = None

        if responder is not None:
            self.model_state = ModelState.READY
            self.model_unavailable_reason: str | None = None
        elif responder_factory is not None:
            self.model_state = ModelState.PENDING
            self.model_unavailable_reason = None
        else:
            self.model_state = ModelState.UNAVAILABLE
            self.model_unavailable_reason = "no language model configured"

        self.assistant_message = Signal("assistant_message")
        self.messages_changed = Signal("messages_changed")
        self.response_progress = Signal("response_progress")
        self.model_state_changed = Signal("model_state_changed")

    # -- read-only views -------------------------------------------------------

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def current_session(self) -> ChatSession | None:
        if self.session_id is None:
            return None
        return self.store.get_session(self.session_id)

    @property
    def can_send(self) -> bool:
        return not self.is_responding and bool(self.pending_input.strip())

    # -- startup ---------------------------------------------------------------

    def bootstrap(self) -> None:
        """Load persisted state and mirror the current session without writing it back."""
        self._bootstrapping = True
        try:
            self.store.load()
            self._load_current()
            if not self._messages:
                self._append_assistant(self.greeting)
        finally:
            self._bootstrapping = False

    async def initialize_model(self) -> ModelState:
        """Build the responder once; concurrent callers share the same attempt."""
        if self.model_state is not ModelState.PENDING:
            return self.model_state
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._build_responder())
        await self._init_task
        return self.model_state

    async def _build_responder(self) -> None:
        factory = self._responder_factory
        assert factory is not None
        instructions = self.store.memory.system_prompt
        try:
            responder = await asyncio.to_thread(factory, instructions)
        except Exception as exc:
            logger.warning("Language model unavailable: %s", exc, exc_info=True)
            self.model_unavailable_reason = str(exc).strip() or type(exc).__name__
            self._set_model_state(ModelState.UNAVAILABLE)
            return
        self.responder = responder
        self._set_model_state(ModelState.READY)

    def _set_model_state(self, state: ModelState) -> None:
        self.model_state = state
        logger.info("Language model state: %s", state.value)
        self.model_state_changed.emit(state)

    # -- message list ----------------------------------------------------------

    def _sync(self) -> None:
        if self._bootstrapping or self.session_id is None:
            return
        self.store.update_messages(self.session_id, self._messages)

    def _append(self, message: ChatMessage) -> None:
        self._messages.append(message)
        self._sync()
        self.messages_changed.emit(self.messages)

    def _replace_messages(self, messages: list[ChatMessage], *, sync: bool = True) -> None:
        self._messages = list(messages)
        if sync:
            self._sync()
        self.messages_changed.emit(self.messages)

    def _append_assistant(self, text: str) -> ChatMessage:
        message = ChatMessage.assistant(text)
        self._append(message)
        self.assistant_message.emit(message)
        return message

    def _load_current(self) -> None:
        session = self.store.get_current()
        self.session_id = session.id if session is not None else None
        self._replace_messages(session.messages if session is not None else [], sync=False)

    def _ensure_session(self) -> None:
        if self.session_id is None:
            self.session_id = self.store.create_session(DEFAULT_SESSION_TITLE).id

    def _reset_responder(self) -> None:
        if self.responder is not None:
            self.responder.reset()

    # -- request lifecycle -----------------------------------------------------

    async def send_message(self, text: str | None = None) -> ChatMessage | None:
        """Send ``text`` (or the pending input) and append the reply.

        Returns the appended assistant message, or None when the call was a
        no-op (blank input, or a request already in flight).
        """
        prompt = (self.pending_input if text is None else text).strip()
        if not prompt or self.is_responding:
            return None

        self.is_responding = True
        try:
            if self.model_state is ModelState.PENDING:
                await self.initialize_model()
            responder = self.responder
            if responder is None:
                error = ModelUnavailableError(self.model_unavailable_reason)
                return self._append_assistant(error.chat_text)

            if text is None:
                self.pending_input = ""
            self._ensure_session()
            self._append(ChatMessage.user(prompt))
            logger.debug("Sending prompt (%d chars) to language model.", len(prompt))
            try:
                reply = await responder.respond(prompt, on_partial=self.response_progress.emit)
            except Exception as exc:
                logger.warning("Inference failed: %s", exc, exc_info=True)
                return self._append_assistant(InferenceFailedError.from_exception(exc).chat_text)
            return self._append_assistant(reply)
        finally:
            self.is_responding = False

    # -- sessions --------------------------------------------------------------

    def switch_to_session(self, session_id: UUID) -> None:
        self.store.switch_to(session_id)
        self._load_current()
        self._reset_responder()

    def create_new_chat_session(self) -> ChatSession:
        session = self.store.create_session(DEFAULT_SESSION_TITLE)
        self.session_id = session.id
        self._replace_messages([], sync=False)
        self._reset_responder()
        self._append_assistant(self.greeting)
        return session

    def delete_session(self, session_id: UUID) -> bool:
        deleted = self.store.delete(session_id)
        if deleted and session_id == self.session_id:
            self._load_current()
            self._reset_responder()
        return deleted

    def search_sessions(self, query: str) -> list[ChatSession]:
        """Matching sessions, or every session (most recent first) for a blank query."""
        needle = query.strip()
        if not needle:
            return self.store.recent_sessions()
        return self.store.search(needle)

    def clear_chat(self) -> None:
        """Empty the message list and pending input. The session itself is kept."""
        self.pending_input = ""
        self._replace_messages([])
        self._reset_responder()

    # -- input & configuration -------------------------------------------------

    def append_to_input(self, text: str) -> None:
        """Add a finished voice transcript to the pending input."""
        addition = text.strip()
        if not addition:
            return
        if self.pending_input:
            self.pending_input += " "
        self.pending_input += addition

    def update_system_prompt(self, prompt: str) -> None:
        self.store.update_system_prompt(prompt)
        if self.responder is not None:
            self.responder.configure(prompt)

    def reset_system_prompt(self) -> None:
        self.store.reset_system_prompt()
        if self.responder is not None:
            self.responder.configure(self.store.memory.system_prompt)
