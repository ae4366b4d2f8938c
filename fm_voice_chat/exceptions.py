"""Error types shared across fm_voice_chat.

Chat-level failures (``ModelUnavailableError``, ``InferenceFailedError``) are
never raised past the conversation controller; they are rendered into
assistant messages through ``chat_text``.
"""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from types import ModuleType
from typing import Any

SDK_INSTALL_HINT = (
    "Install the Apple Foundation Models SDK manually: "
    "https://github.com/apple/python-apple-fm-sdk"
)


class AppleFMSetupError(RuntimeError):
    """Raised when the Apple Foundation Models SDK or system model cannot be used."""


def require_apple_fm() -> ModuleType:
    """Import ``apple_fm_sdk`` or raise an actionable setup error."""
    try:
        return importlib.import_module("apple_fm_sdk")
    except ImportError as exc:
        raise AppleFMSetupError(
            "\n\n[fm-voice-chat] Error: 'apple-fm-sdk' is not installed.\n"
            "Speech and history still work, but replies need the on-device model.\n"
            f"{SDK_INSTALL_HINT}\n"
        ) from exc


def ensure_model_available(model: Any, *, context: str = "chat") -> None:
    """Raise ``AppleFMSetupError`` when ``model.is_available()`` reports False."""
    available, reason = model.is_available()
    if not available:
        raise AppleFMSetupError(
            f"[fm-voice-chat] Foundation Model unavailable for {context}: {reason}"
        )


class ChatError(Exception, ABC):
    """Failure that is surfaced to the user as an assistant chat message."""

    @property
    @abstractmethod
    def chat_text(self) -> str: ...


class ModelUnavailableError(ChatError):
    """No inference collaborator is configured."""

    def __init__(self, reason: str | None = None):
        super().__init__(reason or "language model not configured")
        self.reason = reason

    @property
    def chat_text(self) -> str:
        return (
            "Sorry, the language model is not available. Please check that Apple "
            "Intelligence is enabled and that the Foundation Models SDK is installed."
        )


class InferenceFailedError(ChatError):
    """The inference collaborator raised while answering a prompt."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    @classmethod
    def from_exception(cls, exc: BaseException) -> InferenceFailedError:
        return cls(str(exc) or type(exc).__name__)

    @property
    def chat_text(self) -> str:
        return f"Sorry, I encountered an error: {self.detail}"


class AuthorizationDeniedError(PermissionError):
    """Speech capture was requested without microphone/speech authorization."""
