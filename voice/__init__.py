"""
Voice Subsystem — browser speech engines behind a turn pipeline.

Modules:
- engines: capture/output engine interfaces and the WebSocket browser bridge
- capture: listening episodes, transcript buffering, recognizer error mapping
- output: utterance playback with voice selection and last-call-wins
- errors: pipeline error taxonomy
- latency: per-turn stage timing and budgets
"""
from voice.engines import (
    SpeechCaptureEngine, SpeechOutputEngine,
    BridgedCaptureEngine, BridgedOutputEngine,
    CaptureEvent, OutputEvent, Utterance, Voice, CaptureEngineError,
)
from voice.capture import SpeechCaptureAdapter, TranscriptBuffer, map_capture_error
from voice.output import SpeechOutputAdapter, select_voice
from voice.errors import (
    VoiceError, PermissionDenied, UnsupportedEnvironment, AudioCaptureUnavailable,
    NetworkUnavailable, UnknownCaptureError, PlaybackFailed,
    NetworkError, RemoteServiceError, RateLimitExceeded, TurnInProgress, InternalError,
)
from voice.latency import TurnStage, LatencyBudget, TurnLatencyTracker

__all__ = [
    "SpeechCaptureEngine", "SpeechOutputEngine",
    "BridgedCaptureEngine", "BridgedOutputEngine",
    "CaptureEvent", "OutputEvent", "Utterance", "Voice", "CaptureEngineError",
    "SpeechCaptureAdapter", "TranscriptBuffer", "map_capture_error",
    "SpeechOutputAdapter", "select_voice",
    "VoiceError", "PermissionDenied", "UnsupportedEnvironment", "AudioCaptureUnavailable",
    "NetworkUnavailable", "UnknownCaptureError", "PlaybackFailed",
    "NetworkError", "RemoteServiceError", "RateLimitExceeded", "TurnInProgress", "InternalError",
    "TurnStage", "LatencyBudget", "TurnLatencyTracker",
]
