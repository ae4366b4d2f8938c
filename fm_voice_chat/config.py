"""App configuration read from ``<data_dir>/config.toml``.

Example::

    log_level = "info"
    streaming = true

    [speech]
    enabled = true
    rate = 180
    pitch = 1.0
    volume = 0.8
    voice = "en-US"

    [recognition]
    backend = "google"
    phrase_time_limit = 10
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .voice.playback import (
    DEFAULT_PITCH,
    DEFAULT_RATE,
    DEFAULT_VOLUME,
    PITCH_RANGE,
    RATE_RANGE,
    VOLUME_RANGE,
    clamp,
)

logger = logging.getLogger("fm_voice_chat")

CONFIG_FILENAME = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".fm_voice_chat"
VALID_LOG_LEVELS = ["debug", "info", "warning", "error", "critical"]


def default_data_dir() -> Path:
    return DEFAULT_DATA_DIR


@dataclass
class ChatConfig:
    data_dir: Path = field(default_factory=default_data_dir)
    log_level: str = "warning"
    streaming: bool = True
    tts_enabled: bool = True
    speech_rate: float = DEFAULT_RATE
    speech_pitch: float = DEFAULT_PITCH
    speech_volume: float = DEFAULT_VOLUME
    voice: str | None = None
    speech_backend: str = "google"
    phrase_time_limit: float | None = 10.0

    @property
    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILENAME

    @classmethod
    def load(cls, data_dir: Path | str | None = None) -> ChatConfig:
        """Load config for ``data_dir``; a missing or unreadable file yields defaults."""
        root = Path(data_dir).expanduser() if data_dir is not None else default_data_dir()
        config = cls(data_dir=root)
        path = config.config_path
        try:
            with path.open("rb") as handle:
                raw = tomllib.load(handle)
        except FileNotFoundError:
            return config
        except (OSError, tomllib.TOMLDecodeError):
            logger.warning("Ignoring unreadable config file %s.", path, exc_info=True)
            return config
        config.apply(raw)
        return config

    def apply(self, raw: dict[str, Any]) -> None:
        """Overlay parsed TOML values, keeping defaults for invalid entries."""
        level = str(raw.get("log_level", self.log_level)).lower()
        if level in VALID_LOG_LEVELS:
            self.log_level = level
        else:
            logger.warning("Unknown log_level %r; keeping %r.", level, self.log_level)
        self.streaming = _as_bool(raw.get("streaming"), self.streaming)

        speech = raw.get("speech", {})
        if isinstance(speech, dict):
            self.tts_enabled = _as_bool(speech.get("enabled"), self.tts_enabled)
            self.speech_rate = clamp(_as_float(speech.get("rate"), self.speech_rate), RATE_RANGE)
            self.speech_pitch = clamp(_as_float(speech.get("pitch"), self.speech_pitch), PITCH_RANGE)
            self.speech_volume = clamp(
                _as_float(speech.get("volume"), self.speech_volume), VOLUME_RANGE
            )
            voice = speech.get("voice")
            if isinstance(voice, str) and voice.strip():
                self.voice = voice.strip()

        recognition = raw.get("recognition", {})
        if isinstance(recognition, dict):
            backend = recognition.get("backend")
            if isinstance(backend, str) and backend.strip():
                self.speech_backend = backend.strip().lower()
            limit = recognition.get("phrase_time_limit", self.phrase_time_limit)
            if limit is None or limit == 0:
                self.phrase_time_limit = None
            else:
                self.phrase_time_limit = max(1.0, _as_float(limit, 10.0))

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level.upper())


def _as_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is not None:
        logger.warning("Expected a boolean, got %r; keeping %r.", value, fallback)
    return fallback


def _as_float(value: Any, fallback: float) -> float:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Expected a number, got %r; keeping %r.", value, fallback)
        return fallback
