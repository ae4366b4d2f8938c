"""
Tests for fm_voice_chat.voice.playback.SpeechPlayback.

Covers:
  - Parameter setters clamp to fixed ranges
  - speak is a no-op when disabled or for blank text
  - speak cancels the active utterance before queueing the next
  - Parameters are captured per utterance; pitch skipped where unsupported
  - Engine callbacks drive started/finished signals; stale names ignored
  - Voice matching by id, name and language prefix
"""

from types import SimpleNamespace

import pytest

from fm_voice_chat.voice.playback import (
    PITCH_RANGE,
    RATE_RANGE,
    VOLUME_RANGE,
    SpeechPlayback,
    clamp,
    match_voice,
)

from .conftest import make_mock_tts_engine

VOICES = [
    SimpleNamespace(id="com.apple.voice.Alex", name="Alex", languages=["en_US"]),
    SimpleNamespace(id="com.apple.voice.Amelie", name="Amelie", languages=[b"\x05fr-ca"]),
]


@pytest.fixture
def engine():
    return make_mock_tts_engine(VOICES)


@pytest.fixture
def playback(engine):
    playback = SpeechPlayback(engine, supports_pitch=True)
    yield playback
    playback.shutdown()


def recorded(signal):
    events = []
    signal.connect(events.append)
    return events


# ========================================================================
# Parameters
# ========================================================================


class TestParameters:
    def test_clamp(self):
        assert clamp(5, (0.0, 1.0)) == 1.0
        assert clamp(-5, (0.0, 1.0)) == 0.0
        assert clamp(0.25, (0.0, 1.0)) == 0.25

    def test_setters_clamp(self, playback):
        assert playback.set_rate(1000) == RATE_RANGE[1]
        assert playback.set_rate(1) == RATE_RANGE[0]
        assert playback.set_pitch(0.1) == PITCH_RANGE[0]
        assert playback.set_volume(3) == VOLUME_RANGE[1]
        assert playback.set_volume(-1) == VOLUME_RANGE[0]

    def test_constructor_clamps(self, engine):
        playback = SpeechPlayback(engine, rate=9999, pitch=9, volume=2)
        try:
            assert (playback.rate, playback.pitch, playback.volume) == (RATE_RANGE[1], PITCH_RANGE[1], 1.0)
        finally:
            playback.shutdown()

    def test_parameters_apply_to_next_utterance(self, playback, engine):
        playback.set_rate(150)
        playback.speak("first").result(timeout=5)
        engine.setProperty.assert_any_call("rate", 150)
        playback.set_rate(200)
        playback.speak("second").result(timeout=5)
        engine.setProperty.assert_any_call("rate", 200)

    def test_pitch_only_set_when_changed(self, playback, engine):
        playback.speak("plain").result(timeout=5)
        assert all(call.args[0] != "pitch" for call in engine.setProperty.call_args_list)
        playback.set_pitch(1.5)
        playback.speak("higher").result(timeout=5)
        engine.setProperty.assert_any_call("pitch", 1.5)

    def test_pitch_skipped_on_drivers_without_it(self, engine):
        playback = SpeechPlayback(engine, pitch=1.5, supports_pitch=False)
        try:
            playback.speak("flat").result(timeout=5)
        finally:
            playback.shutdown()
        assert all(call.args[0] != "pitch" for call in engine.setProperty.call_args_list)
        engine.say.assert_called_once_with("flat", "utterance-1")


# ========================================================================
# Speaking
# ========================================================================


class TestSpeak:
    def test_disabled_is_noop(self, engine):
        playback = SpeechPlayback(engine, enabled=False)
        try:
            assert playback.speak("hello") is None
            engine.say.assert_not_called()
        finally:
            playback.shutdown()

    def test_blank_text_is_noop(self, playback, engine):
        assert playback.speak("   ") is None
        engine.say.assert_not_called()

    def test_speak_runs_engine(self, playback, engine):
        playback.speak("Hello there").result(timeout=5)
        engine.say.assert_called_once_with("Hello there", "utterance-1")
        engine.runAndWait.assert_called_once()

    def test_speak_cancels_current_utterance(self, playback, engine):
        cancelled = recorded(playback.cancelled)
        playback.speak("one").result(timeout=5)
        engine.callbacks["started-utterance"]("utterance-1")
        assert playback.is_speaking

        playback.speak("two").result(timeout=5)
        assert cancelled == ["utterance-1"]
        engine.stop.assert_called()
        assert engine.say.call_args.args == ("two", "utterance-2")

    def test_stop_without_utterance_is_silent(self, playback):
        cancelled = recorded(playback.cancelled)
        playback.stop()
        assert cancelled == []

    def test_toggle_disables_and_stops(self, playback, engine):
        cancelled = recorded(playback.cancelled)
        playback.speak("talking").result(timeout=5)
        assert playback.toggle_enabled() is False
        assert cancelled == ["utterance-1"]
        assert playback.toggle_enabled() is True

    def test_engine_runtime_error_reports_cancelled(self, playback, engine):
        engine.runAndWait.side_effect = RuntimeError("run loop already started")
        cancelled = recorded(playback.cancelled)
        playback.speak("x").result(timeout=5)
        assert cancelled == ["utterance-1"]
        assert not playback.is_speaking


# ========================================================================
# Engine callbacks
# ========================================================================


class TestCallbacks:
    def test_started_and_finished(self, playback, engine):
        started, finished = recorded(playback.started), recorded(playback.finished)
        playback.speak("hi").result(timeout=5)
        engine.callbacks["started-utterance"]("utterance-1")
        engine.callbacks["finished-utterance"]("utterance-1", True)
        assert started == ["utterance-1"]
        assert finished == ["utterance-1"]
        assert not playback.is_speaking

    def test_interrupted_finish_reports_cancelled(self, playback, engine):
        cancelled = recorded(playback.cancelled)
        playback.speak("hi").result(timeout=5)
        engine.callbacks["finished-utterance"]("utterance-1", False)
        assert cancelled == ["utterance-1"]

    def test_stale_callbacks_ignored(self, playback, engine):
        started, finished = recorded(playback.started), recorded(playback.finished)
        playback.speak("one").result(timeout=5)
        playback.speak("two").result(timeout=5)
        engine.callbacks["started-utterance"]("utterance-1")
        engine.callbacks["finished-utterance"]("utterance-1", True)
        assert started == []
        assert finished == []


# ========================================================================
# Voices
# ========================================================================


class TestVoices:
    def test_match_by_id_name_and_language(self):
        assert match_voice(VOICES, "com.apple.voice.amelie") == "com.apple.voice.Amelie"
        assert match_voice(VOICES, "alex") == "com.apple.voice.Alex"
        assert match_voice(VOICES, "fr") == "com.apple.voice.Amelie"
        assert match_voice(VOICES, "en_us") == "com.apple.voice.Alex"
        assert match_voice(VOICES, "de-DE") is None

    def test_select_voice(self, playback):
        assert playback.select_voice("Amelie") == "com.apple.voice.Amelie"
        assert playback.voice == "com.apple.voice.Amelie"

    def test_preferred_voice_resolved_when_speaking(self, engine):
        playback = SpeechPlayback(engine, voice="fr")
        try:
            playback.speak("bonjour").result(timeout=5)
        finally:
            playback.shutdown()
        engine.setProperty.assert_any_call("voice", "com.apple.voice.Amelie")

    def test_available_voices(self, playback):
        assert playback.available_voices() == [
            ("com.apple.voice.Alex", "Alex"),
            ("com.apple.voice.Amelie", "Amelie"),
        ]
