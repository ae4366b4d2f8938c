"""Speech-to-text capture over the SpeechRecognition library.

State machine: ``idle -> recording -> idle``. While recording, every
recognized phrase replaces ``transcript`` with the best full transcript so
far. The caller moves the final transcript into the compose buffer once, when
recording stops (see ``finish_recording``).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

import speech_recognition as sr

from ..events import Signal
from ..exceptions import AuthorizationDeniedError

logger = logging.getLogger("fm_voice_chat.voice")

DEFAULT_BACKEND = "google"
AMBIENT_NOISE_SECONDS = 0.5


class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"


class SpeechCapture:
    """Background microphone listener producing an overwritten transcript.

    Signals:
        transcript_changed(str, bool): best transcript so far and the final flag.
        state_changed(CaptureState)
    """

    def __init__(
        self,
        recognizer: Any | None = None,
        microphone_factory: Callable[[], Any] | None = None,
        *,
        backend: str = DEFAULT_BACKEND,
        phrase_time_limit: float | None = 10.0,
    ):
        self.recognizer = recognizer if recognizer is not None else sr.Recognizer()
        self._microphone_factory = microphone_factory or sr.Microphone
        self.backend = backend
        self.phrase_time_limit = phrase_time_limit

        self.state = CaptureState.IDLE
        self.is_authorized = False
        self.transcript = ""
        self.is_final = False

        self._phrases: list[str] = []
        self._stopper: Callable[..., None] | None = None
        self._lock = threading.Lock()

        self.transcript_changed = Signal("transcript_changed")
        self.state_changed = Signal("state_changed")

    @property
    def is_recording(self) -> bool:
        return self.state is CaptureState.RECORDING

    def request_authorization(self) -> bool:
        """Open the microphone once; success marks capture as authorized."""
        try:
            microphone = self._microphone_factory()
            with microphone as source:
                self.recognizer.adjust_for_ambient_noise(source, duration=AMBIENT_NOISE_SECONDS)
        except (OSError, AttributeError) as exc:
            # AttributeError: PyAudio is missing, so no microphone can be opened.
            logger.warning("Microphone not available: %s", exc)
            self.is_authorized = False
        else:
            self.is_authorized = True
        return self.is_authorized

    def start_recording(self) -> None:
        if not self.is_authorized:
            raise AuthorizationDeniedError("speech recognition is not authorized")
        with self._lock:
            if self.state is CaptureState.RECORDING:
                return
            self._phrases = []
            self.transcript = ""
            self.is_final = False
            try:
                microphone = self._microphone_factory()
                self._stopper = self.recognizer.listen_in_background(
                    microphone, self._on_audio, phrase_time_limit=self.phrase_time_limit
                )
            except OSError as exc:
                logger.warning("Microphone disappeared: %s", exc)
                self.is_authorized = False
                raise AuthorizationDeniedError(f"microphone unavailable: {exc}") from exc
            self.state = CaptureState.RECORDING
        logger.debug("Speech capture started (backend=%s).", self.backend)
        self.state_changed.emit(self.state)

    def stop_recording(self) -> None:
        """Return to idle. Safe to call repeatedly."""
        with self._lock:
            stopper = self._stopper
            self._stopper = None
            was_recording = self.state is CaptureState.RECORDING
            self.state = CaptureState.IDLE
            self.is_final = True
        if stopper is not None:
            stopper(wait_for_stop=False)
        if was_recording:
            logger.debug("Speech capture stopped.")
            self.transcript_changed.emit(self.transcript, True)
            self.state_changed.emit(self.state)

    def finish_recording(self) -> str:
        """Stop and hand back the final transcript, clearing it."""
        self.stop_recording()
        with self._lock:
            text = self.transcript
            self.transcript = ""
            self._phrases = []
        return text

    def _recognize(self, audio: Any) -> str:
        method = getattr(self.recognizer, f"recognize_{self.backend}")
        return str(method(audio)).strip()

    def _on_audio(self, recognizer: Any, audio: Any) -> None:
        del recognizer
        if not self.is_recording:
            return
        try:
            text = self._recognize(audio)
        except sr.UnknownValueError:
            return
        except sr.RequestError as exc:
            logger.warning("Speech recognition service error: %s", exc)
            self.stop_recording()
            return
        if not text:
            return
        with self._lock:
            if self.state is not CaptureState.RECORDING:
                return
            self._phrases.append(text)
            self.transcript = " ".join(self._phrases)
            transcript = self.transcript
        self.transcript_changed.emit(transcript, False)
