"""
FM Voice Chat: an on-device voice chat client built on python-apple-fm-sdk

Conversations run against Apple Foundation Models locally. Chat history and user
memory are persisted on disk, and replies can be dictated and spoken aloud.
The SDK is imported lazily, so history and memory tooling work without it.
"""

from .controller import ConversationController, ModelState
from .exceptions import AppleFMSetupError, InferenceFailedError, ModelUnavailableError
from .inference import FoundationModelResponder, Responder
from .models import ChatMessage, ChatSession, Sender, UserMemory
from .session_store import SessionStore
from .storage import JsonFileKeyValueStore, MemoryKeyValueStore

__all__ = [
    "AppleFMSetupError",
    "ChatMessage",
    "ChatSession",
    "ConversationController",
    "FoundationModelResponder",
    "InferenceFailedError",
    "JsonFileKeyValueStore",
    "MemoryKeyValueStore",
    "ModelState",
    "ModelUnavailableError",
    "Responder",
    "Sender",
    "SessionStore",
    "UserMemory",
]
