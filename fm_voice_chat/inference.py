"""Inference collaborator: the on-device Apple Foundation Model behind a small protocol."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from types import ModuleType
from typing import Any, Protocol, runtime_checkable

from .exceptions import AppleFMSetupError, ensure_model_available, require_apple_fm

logger = logging.getLogger("fm_voice_chat.inference")

PartialCallback = Callable[[str], None]


@runtime_checkable
class Responder(Protocol):
    """Turns a prompt into response text. ``respond`` may raise."""

    def configure(self, instructions: str) -> None: ...

    def reset(self) -> None: ...

    async def respond(self, prompt: str, on_partial: PartialCallback | None = None) -> str: ...


class FoundationModelResponder:
    """Conversation-scoped ``LanguageModelSession`` over ``SystemLanguageModel``.

    The SDK session keeps its own transcript, so follow-up prompts see earlier
    turns. ``reset()`` starts a fresh transcript with the same instructions,
    and ``configure()`` does the same with new instructions.
    """

    def __init__(self, fm: ModuleType, model: Any, instructions: str, *, streaming: bool = True):
        self._fm = fm
        self.model = model
        self.streaming = streaming
        self.instructions = instructions
        self._session = self._new_session()

    def _new_session(self) -> Any:
        return self._fm.LanguageModelSession(model=self.model, instructions=self.instructions)

    def configure(self, instructions: str) -> None:
        self.instructions = instructions
        self._session = self._new_session()
        logger.info("Reconfigured language model session (%d chars of instructions).", len(instructions))

    def reset(self) -> None:
        self._session = self._new_session()

    async def respond(self, prompt: str, on_partial: PartialCallback | None = None) -> str:
        start_time = time.perf_counter()
        if self.streaming and on_partial is not None:
            text = ""
            async for snapshot in self._session.stream_response(prompt):
                text = str(snapshot)
                on_partial(text)
        else:
            text = str(await self._session.respond(prompt))
        logger.debug(
            "Response completed in %.3fs. Prompt length: %d chars, response length: %d chars.",
            time.perf_counter() - start_time,
            len(prompt),
            len(text),
        )
        return text

    def __repr__(self) -> str:
        return f"FoundationModelResponder(streaming={self.streaming})"


def create_foundation_model_responder(
    instructions: str, *, streaming: bool = True
) -> FoundationModelResponder:
    """Build a responder on the system model. Raises ``AppleFMSetupError``."""
    fm = require_apple_fm()
    model = fm.SystemLanguageModel()
    ensure_model_available(model, context="chat")
    return FoundationModelResponder(fm, model, instructions, streaming=streaming)


def check_model_availability() -> tuple[bool, str]:
    """Return ``(available, reason)`` without raising."""
    try:
        fm = require_apple_fm()
    except AppleFMSetupError:
        return False, "apple-fm-sdk is not installed"
    try:
        available, reason = fm.SystemLanguageModel().is_available()
    except Exception as exc:
        return False, f"model check failed: {exc}"
    return bool(available), "" if available else str(reason)
