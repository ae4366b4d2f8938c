"""Text-to-speech playback over pyttsx3.

At most one utterance is active: ``speak`` cancels whatever is playing before
queueing the next one on a single worker thread. Rate, pitch, volume and
voice are captured when ``speak`` is called, so changes apply to the next
utterance only.
"""

from __future__ import annotations

import itertools
import logging
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

import pyttsx3

from ..events import Signal

logger = logging.getLogger("fm_voice_chat.voice")

RATE_RANGE = (80.0, 320.0)  # words per minute
PITCH_RANGE = (0.5, 2.0)
# Only the espeak driver accepts "pitch"; nsss (macOS) and sapi5 (Windows) reject it.
PITCH_SUPPORTED = not sys.platform.startswith(("darwin", "win32"))
VOLUME_RANGE = (0.0, 1.0)
DEFAULT_RATE = 180.0
DEFAULT_PITCH = 1.0
DEFAULT_VOLUME = 0.8


def clamp(value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, float(value)))


def match_voice(voices: Any, preferred: str) -> str | None:
    """Voice id matching ``preferred`` exactly, else by name or language prefix."""
    needle = preferred.strip().lower()
    voices = list(voices or [])
    for voice in voices:
        if str(voice.id).lower() == needle:
            return str(voice.id)
    for voice in voices:
        languages = [
            lang.decode(errors="ignore") if isinstance(lang, bytes) else str(lang)
            for lang in getattr(voice, "languages", []) or []
        ]
        candidates = [str(getattr(voice, "name", "")), *languages]
        # espeak prefixes language codes with a priority byte
        if any(candidate.lower().lstrip("\x05").startswith(needle) for candidate in candidates):
            return str(voice.id)
    return None


class SpeechPlayback:
    """Speaks assistant replies.

    Signals (all receive the utterance name):
        started, finished, cancelled
    """

    def __init__(
        self,
        engine: Any | None = None,
        *,
        enabled: bool = True,
        rate: float = DEFAULT_RATE,
        pitch: float = DEFAULT_PITCH,
        volume: float = DEFAULT_VOLUME,
        voice: str | None = None,
        supports_pitch: bool = PITCH_SUPPORTED,
    ):
        self._engine = engine
        self.supports_pitch = supports_pitch
        self._engine_ready = False
        self.enabled = enabled
        self.rate = clamp(rate, RATE_RANGE)
        self.pitch = clamp(pitch, PITCH_RANGE)
        self.volume = clamp(volume, VOLUME_RANGE)
        self.voice = voice
        self.is_speaking = False
        self._resolved_voices: dict[str, str] = {}

        self._current: str | None = None
        self._names = itertools.count(1)
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fvc-tts")

        self.started = Signal("started")
        self.finished = Signal("finished")
        self.cancelled = Signal("cancelled")

    @property
    def engine(self) -> Any:
        if self._engine is None:
            self._engine = pyttsx3.init()
        if not self._engine_ready:
            self._engine.connect("started-utterance", self._on_started)
            self._engine.connect("finished-utterance", self._on_finished)
            self._engine.connect("error", self._on_error)
            self._engine_ready = True
        return self._engine

    # -- parameters --------------------------------------------------------------

    def set_rate(self, rate: float) -> float:
        self.rate = clamp(rate, RATE_RANGE)
        return self.rate

    def set_pitch(self, pitch: float) -> float:
        self.pitch = clamp(pitch, PITCH_RANGE)
        return self.pitch

    def set_volume(self, volume: float) -> float:
        self.volume = clamp(volume, VOLUME_RANGE)
        return self.volume

    def set_voice(self, voice: str | None) -> None:
        self.voice = voice or None

    def available_voices(self) -> list[tuple[str, str]]:
        """``(id, name)`` pairs reported by the speech engine."""
        return [(str(v.id), str(getattr(v, "name", v.id))) for v in self.engine.getProperty("voices")]

    def select_voice(self, preferred: str) -> str | None:
        """Pick a voice by exact id, or by name/language prefix such as ``en-US``."""
        voice_id = match_voice(self.engine.getProperty("voices"), preferred)
        if voice_id is not None:
            self.voice = voice_id
        return voice_id

    # -- playback ------------------------------------------------------------------

    def speak(self, text: str) -> Future[None] | None:
        """Cancel the current utterance and speak ``text``."""
        if not self.enabled or not text.strip():
            return None
        self.stop()
        with self._lock:
            name = f"utterance-{next(self._names)}"
            self._current = name
        settings = (self.rate, self.pitch, self.volume, self.voice)
        return self._executor.submit(self._utter, name, text, settings)

    def _utter(self, name: str, text: str, settings: tuple[float, float, float, str | None]) -> None:
        with self._lock:
            if self._current != name:
                return
        rate, pitch, volume, voice = settings
        engine = self.engine
        engine.setProperty("rate", int(rate))
        engine.setProperty("volume", volume)
        if self.supports_pitch and pitch != DEFAULT_PITCH:
            engine.setProperty("pitch", pitch)
        if voice:
            voice_id = self._resolved_voices.get(voice)
            if voice_id is None:
                voice_id = match_voice(engine.getProperty("voices"), voice)
                if voice_id is None:
                    logger.warning("No installed voice matches %r; using the default.", voice)
                else:
                    self._resolved_voices[voice] = voice_id
            if voice_id:
                engine.setProperty("voice", voice_id)
        try:
            engine.say(text, name)
            engine.runAndWait()
        except RuntimeError as exc:
            logger.warning("Speech engine failed: %s", exc)
            self._on_finished(name, False)

    def stop(self) -> None:
        """Cancel the active or queued utterance, if any."""
        with self._lock:
            name = self._current
            self._current = None
            self.is_speaking = False
        if name is None:
            return
        if self._engine is not None:
            self._engine.stop()
        self.cancelled.emit(name)

    def toggle_enabled(self) -> bool:
        self.enabled = not self.enabled
        if not self.enabled:
            self.stop()
        return self.enabled

    def shutdown(self) -> None:
        self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # -- engine callbacks (worker thread) ----------------------------------------

    def _on_started(self, name: str) -> None:
        with self._lock:
            if name != self._current:
                return
            self.is_speaking = True
        self.started.emit(name)

    def _on_finished(self, name: str, completed: bool) -> None:
        with self._lock:
            if name != self._current:
                return
            self._current = None
            self.is_speaking = False
        if completed:
            self.finished.emit(name)
        else:
            self.cancelled.emit(name)

    def _on_error(self, name: str | None = None, exception: BaseException | None = None) -> None:
        logger.warning("Speech engine error for %s: %s", name, exception)
