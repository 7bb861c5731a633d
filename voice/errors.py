"""
Voice pipeline errors.

Adapters raise these; the orchestrator turns them into a localized
`Notice` and an error → idle transition. Malformed tutor payloads are
recovered inside the request client and never appear here.
"""
from __future__ import annotations

from typing import Optional


class VoiceError(Exception):
    """Base exception for the voice pipeline."""

    def __init__(self, message: str = "", retryable: bool = False):
        self.retryable = retryable
        super().__init__(message or self.__class__.__name__)

    @property
    def kind(self) -> str:
        return self.__class__.__name__


# ── Capture / playback environment ───────────────────────────

class UnsupportedEnvironment(VoiceError):
    def __init__(self, feature: str = "speech"):
        self.feature = feature
        super().__init__(f"{feature} is not supported in this environment")


class PermissionDenied(VoiceError):
    def __init__(self, message: str = "Microphone permission denied"):
        super().__init__(message)


class AudioCaptureUnavailable(VoiceError):
    def __init__(self, message: str = "No microphone available"):
        super().__init__(message, retryable=True)


class NetworkUnavailable(VoiceError):
    """The recognition engine lost its network connection."""

    def __init__(self, message: str = "Speech recognition network error"):
        super().__init__(message, retryable=True)


class UnknownCaptureError(VoiceError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Speech recognition error: {code}")


class PlaybackFailed(VoiceError):
    def __init__(self, code: str = ""):
        self.code = code
        super().__init__(f"Speech synthesis error: {code}" if code else "Speech synthesis error")


# ── Tutor request ────────────────────────────────────────────

class NetworkError(VoiceError):
    """The tutor request never got a response."""

    def __init__(self, message: str = "Failed to reach the tutor service"):
        super().__init__(message, retryable=True)


class RemoteServiceError(VoiceError):
    """The tutor service answered with a non-2xx status, or could not be called at all."""

    def __init__(self, status: Optional[int], message: str = ""):
        self.status = status
        self.provider_message = message
        retryable = status is not None and (status >= 500 or status == 429)
        text = f"Tutor service error {status}: {message}" if status else (message or "Tutor service error")
        super().__init__(text, retryable=retryable)

    @property
    def is_configuration_error(self) -> bool:
        return self.status is None


# ── Turn admission ───────────────────────────────────────────

class RateLimitExceeded(VoiceError):
    def __init__(self, query_count: int, daily_limit: int):
        self.query_count = query_count
        self.daily_limit = daily_limit
        super().__init__(f"Daily limit reached ({query_count}/{daily_limit})")


class TurnInProgress(VoiceError):
    def __init__(self, state: str):
        self.state = state
        super().__init__(f"A turn is already in progress ({state})")


# ── Unexpected ───────────────────────────────────────────────

class InternalError(VoiceError):
    """Anything a turn stage raised that is not a VoiceError."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {type(cause).__name__}: {cause}")
