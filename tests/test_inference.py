"""
Tests for fm_voice_chat.inference and the SDK setup helpers.

Covers:
  - require_apple_fm raises AppleFMSetupError when the SDK is missing
  - ensure_model_available raises with the model's reason
  - FoundationModelResponder: one session per conversation, reset/configure
  - Streaming snapshots forwarded to on_partial; final text returned
  - Non-streaming path uses respond()
  - check_model_availability never raises
"""

import sys
from unittest.mock import MagicMock

import pytest

from fm_voice_chat.exceptions import AppleFMSetupError, ensure_model_available, require_apple_fm
from fm_voice_chat.inference import (
    FoundationModelResponder,
    Responder,
    create_foundation_model_responder,
    check_model_availability,
)

from .conftest import FakeResponder, MockLanguageModelSession, make_mock_fm, make_mock_model

# ========================================================================
# SDK setup helpers
# ========================================================================


class TestSetupHelpers:
    def test_require_apple_fm_missing(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "apple_fm_sdk", None)
        with pytest.raises(AppleFMSetupError, match="apple-fm-sdk"):
            require_apple_fm()

    def test_require_apple_fm_present(self, monkeypatch):
        fake = make_mock_fm()
        monkeypatch.setitem(sys.modules, "apple_fm_sdk", fake)
        assert require_apple_fm() is fake

    def test_ensure_model_available_raises_with_reason(self):
        with pytest.raises(AppleFMSetupError, match="device not eligible"):
            ensure_model_available(make_mock_model(available=False, reason="device not eligible"))

    def test_ensure_model_available_passes(self):
        ensure_model_available(make_mock_model(available=True))

    def test_check_reports_missing_sdk(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "apple_fm_sdk", None)
        assert check_model_availability() == (False, "apple-fm-sdk is not installed")

    def test_check_reports_unavailable_model(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "apple_fm_sdk", make_mock_fm(available=False, reason="not ready"))
        assert check_model_availability() == (False, "not ready")

    def test_check_swallows_sdk_errors(self, monkeypatch):
        fake = make_mock_fm()
        fake.SystemLanguageModel.side_effect = RuntimeError("boom")
        monkeypatch.setitem(sys.modules, "apple_fm_sdk", fake)
        available, reason = check_model_availability()
        assert not available
        assert "boom" in reason


# ========================================================================
# FoundationModelResponder
# ========================================================================


class TestFoundationModelResponder:
    def test_factory_builds_responder(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "apple_fm_sdk", make_mock_fm())
        responder = create_foundation_model_responder("Be kind.", streaming=False)
        assert isinstance(responder, FoundationModelResponder)
        assert isinstance(responder, Responder)
        assert MockLanguageModelSession.instances[-1].instructions == "Be kind."

    def test_factory_raises_when_model_unavailable(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "apple_fm_sdk", make_mock_fm(available=False, reason="off"))
        with pytest.raises(AppleFMSetupError, match="off"):
            create_foundation_model_responder("x")

    async def test_respond_without_streaming(self):
        fm = make_mock_fm()
        responder = FoundationModelResponder(fm, MagicMock(), "inst", streaming=False)
        session = MockLanguageModelSession.instances[-1]
        session.reply = "plain reply"
        partials = []
        assert await responder.respond("q", on_partial=partials.append) == "plain reply"
        assert partials == []
        assert session.prompts == ["q"]

    async def test_respond_streams_cumulative_snapshots(self):
        fm = make_mock_fm()
        responder = FoundationModelResponder(fm, MagicMock(), "inst")
        MockLanguageModelSession.instances[-1].snapshots = ["The", "The sky", "The sky is blue."]
        partials = []
        text = await responder.respond("why?", on_partial=partials.append)
        assert text == "The sky is blue."
        assert partials == ["The", "The sky", "The sky is blue."]

    async def test_streaming_without_callback_uses_respond(self):
        fm = make_mock_fm()
        responder = FoundationModelResponder(fm, MagicMock(), "inst")
        MockLanguageModelSession.instances[-1].reply = "whole"
        assert await responder.respond("q") == "whole"

    async def test_follow_ups_share_one_session(self):
        fm = make_mock_fm()
        responder = FoundationModelResponder(fm, MagicMock(), "inst", streaming=False)
        await responder.respond("one")
        await responder.respond("two")
        assert len(MockLanguageModelSession.instances) == 1
        assert MockLanguageModelSession.instances[0].prompts == ["one", "two"]

    def test_reset_and_configure_start_fresh_sessions(self):
        fm = make_mock_fm()
        responder = FoundationModelResponder(fm, MagicMock(), "old")
        responder.reset()
        assert MockLanguageModelSession.instances[-1].instructions == "old"
        responder.configure("new")
        assert responder.instructions == "new"
        assert MockLanguageModelSession.instances[-1].instructions == "new"
        assert len(MockLanguageModelSession.instances) == 3

    def test_fake_responder_satisfies_protocol(self):
        assert isinstance(FakeResponder(), Responder)
