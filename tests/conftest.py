"""Shared fixtures and fakes for the fm_voice_chat test suite."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from fm_voice_chat.session_store import SessionStore
from fm_voice_chat.storage import MemoryKeyValueStore

# ========================================================================
# Inference fakes
# ========================================================================


class FakeResponder:
    """Scripted responder: each item in ``replies`` is a string or an exception."""

    def __init__(self, *replies, partials=None, gate=None):
        self.replies = list(replies)
        self.partials = list(partials or [])
        self.gate = gate
        self.prompts = []
        self.instructions = []
        self.reset_count = 0

    def configure(self, instructions):
        self.instructions.append(instructions)

    def reset(self):
        self.reset_count += 1

    async def respond(self, prompt, on_partial=None):
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if on_partial is not None:
            for partial in self.partials:
                on_partial(partial)
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, BaseException):
            raise reply
        return reply


def make_mock_model(available=True, reason=None):
    """Create a mock SystemLanguageModel."""
    model = MagicMock()
    model.is_available.return_value = (available, reason)
    return model


class MockLanguageModelSession:
    """Stand-in for ``apple_fm_sdk.LanguageModelSession``."""

    instances = []

    def __init__(self, model=None, instructions=None):
        self.model = model
        self.instructions = instructions
        self.prompts = []
        self.reply = "mock reply"
        self.snapshots = []
        MockLanguageModelSession.instances.append(self)

    async def respond(self, prompt):
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        return self.reply

    async def stream_response(self, prompt):
        self.prompts.append(prompt)
        for snapshot in self.snapshots:
            yield snapshot


def make_mock_fm(available=True, reason=None):
    """A module-like namespace exposing the SDK surface the app uses."""
    MockLanguageModelSession.instances = []
    model = make_mock_model(available=available, reason=reason)
    return SimpleNamespace(
        SystemLanguageModel=MagicMock(return_value=model),
        LanguageModelSession=MockLanguageModelSession,
    )


# ========================================================================
# Voice fakes
# ========================================================================


def make_mock_tts_engine(voices=None):
    """Mock pyttsx3 engine that records callbacks registered through ``connect``."""
    engine = MagicMock()
    engine.callbacks = {}

    def connect(topic, callback):
        engine.callbacks[topic] = callback
        return topic

    engine.connect.side_effect = connect
    engine.getProperty.side_effect = lambda name: (voices or []) if name == "voices" else None
    return engine


class FakeMicrophone:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def make_mock_recognizer():
    """Mock ``speech_recognition.Recognizer`` whose background listener is captured."""
    recognizer = MagicMock()
    recognizer.stopper = MagicMock()

    def listen_in_background(source, callback, phrase_time_limit=None):
        recognizer.callback = callback
        recognizer.phrase_time_limit = phrase_time_limit
        return recognizer.stopper

    recognizer.listen_in_background.side_effect = listen_in_background
    return recognizer


# ========================================================================
# Store fixtures
# ========================================================================


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    store = SessionStore(kv)
    store.load()
    return store
