"""
Core data models for the Nukhba tutor.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class Language(str, Enum):
    ENGLISH = "english"
    ARABIC = "arabic"
    HINDI = "hindi"

    @property
    def locale(self) -> str:
        return LOCALES[self]

    @property
    def is_rtl(self) -> bool:
        return self == Language.ARABIC


# Same locale for recognition and synthesis
LOCALES: dict[Language, str] = {
    Language.ENGLISH: "en-US",
    Language.ARABIC: "ar-SA",
    Language.HINDI: "hi-IN",
}


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class VoiceState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self in (VoiceState.LISTENING, VoiceState.PROCESSING, VoiceState.SPEAKING)


# ──────────────────────────────────────────────────────────────
#  Message — a single entry in the session log
# ──────────────────────────────────────────────────────────────

class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content: str
    sender: Sender
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    language: Language = Language.ENGLISH
    follow_up_questions: list[str] = []

    @property
    def chat_role(self) -> str:
        return "user" if self.sender == Sender.USER else "assistant"


# ──────────────────────────────────────────────────────────────
#  Tutor Response — structured answer from the remote model
# ──────────────────────────────────────────────────────────────

class TutorResponse(BaseModel):
    """
    The JSON shape the tutor prompt asks the model to produce.

    Field names follow the provider payload (`followUpQuestions`); the
    Python attribute is `follow_up_questions`.
    """
    model_config = ConfigDict(populate_by_name=True)

    answer: str = Field(min_length=1)
    follow_up_questions: list[str] = Field(default_factory=list, alias="followUpQuestions")
    explanation: Optional[str] = None

    @field_validator("follow_up_questions", mode="before")
    @classmethod
    def _coerce_follow_ups(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(q) for q in value if q is not None]

    @field_validator("explanation", mode="before")
    @classmethod
    def _coerce_explanation(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, str):
            return value
        return str(value)


# ──────────────────────────────────────────────────────────────
#  Voice pipeline records
# ──────────────────────────────────────────────────────────────

class TranscriptUpdate(BaseModel):
    text: str
    is_final: bool = False


class Notice(BaseModel):
    """A user-visible notification raised by a failed or rejected turn."""
    kind: str                                  # error class name, e.g. "PermissionDenied"
    message: str                               # localized text
    language: Language = Language.ENGLISH
    retryable: bool = False


class TurnOutcome(BaseModel):
    """What happened to one orchestrated turn."""
    turn_id: int
    state: VoiceState
    transcript: str = ""
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None
    notice: Optional[Notice] = None
    rejected: bool = False                     # refused before any adapter call
    discarded: bool = False                    # superseded by a newer turn
    spoken: bool = False

    @property
    def ok(self) -> bool:
        return self.notice is None and not self.discarded and not self.rejected
