"""Tests for the chat-facing error types in fm_voice_chat.exceptions."""

import pytest

from fm_voice_chat.exceptions import ChatError, InferenceFailedError, ModelUnavailableError


class TestChatErrors:
    def test_chat_text_is_abstract(self):
        assert ChatError.__abstractmethods__ == frozenset({"chat_text"})

    @pytest.mark.parametrize("error", [ModelUnavailableError(), InferenceFailedError("boom")])
    def test_concrete_errors_provide_chat_text(self, error):
        assert isinstance(error, ChatError)
        assert error.chat_text.startswith("Sorry, ")

    def test_inference_failed_from_exception(self):
        assert InferenceFailedError.from_exception(ValueError("bad input")).chat_text == (
            "Sorry, I encountered an error: bad input"
        )
        assert InferenceFailedError.from_exception(KeyError()).detail == "KeyError"

    def test_model_unavailable_keeps_reason(self):
        error = ModelUnavailableError("device not eligible")
        assert error.reason == "device not eligible"
        assert str(error) == "device not eligible"
