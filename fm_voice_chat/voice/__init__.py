from .capture import CaptureState, SpeechCapture
from .playback import SpeechPlayback

__all__ = ["CaptureState", "SpeechCapture", "SpeechPlayback"]
