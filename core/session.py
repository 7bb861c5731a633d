"""
Conversation Session — message log, query counters and active language
for one tutor view.

The log starts with a greeting in the active language. Messages are
kept in insertion order and never reordered; ids are unique within the
session.
"""
from __future__ import annotations

import uuid
import structlog
from typing import Any, Optional

from models.schemas import Language, Message, Sender
from tutor.prompts import welcome_message

logger = structlog.get_logger()


class ConversationSession:

    def __init__(
        self,
        language: Language = Language.ENGLISH,
        daily_limit: int = 10,
        is_premium: bool = False,
        auto_play: bool = True,
        volume: int = 70,
        session_id: str = None,
    ):
        self.id = session_id or str(uuid.uuid4())
        self.language = language
        self.daily_limit = daily_limit
        self.is_premium = is_premium
        self.auto_play = auto_play
        self.volume = volume
        self.query_count = 0
        self._messages: list[Message] = []
        self._ids: set[str] = set()
        self._greeting_id: Optional[str] = None
        self._add_greeting()

    # ── Log ───────────────────────────────────────────────────

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def new_message(
        self,
        content: str,
        sender: Sender,
        follow_up_questions: list[str] = None,
    ) -> Message:
        """Create and append a message in the active language."""
        message = Message(
            content=content,
            sender=sender,
            language=self.language,
            follow_up_questions=follow_up_questions or [],
        )
        self.append_message(message)
        return message

    def append_message(self, message: Message) -> None:
        if message.id in self._ids:
            raise ValueError(f"Duplicate message id '{message.id}'")
        self._messages.append(message)
        self._ids.add(message.id)

    def history(self) -> list[Message]:
        """Messages to send to the tutor, oldest first. The greeting is UI-only."""
        return [m for m in self._messages if m.id != self._greeting_id]

    @property
    def only_greeting(self) -> bool:
        return len(self._messages) == 1 and self._messages[0].id == self._greeting_id

    # ── Lifecycle ─────────────────────────────────────────────

    def reset_session(self) -> None:
        self._messages = []
        self._ids = set()
        self.query_count = 0
        self._add_greeting()
        logger.info("session_reset", session_id=self.id, language=self.language.value)

    def set_language(self, language: Language) -> None:
        if language == self.language:
            return
        self.language = language
        if self.only_greeting:
            # same id, so the message stays the initial greeting
            old = self._messages[0]
            self._messages[0] = old.model_copy(update={
                "content": welcome_message(language),
                "language": language,
            })
        logger.info("session_language_changed", session_id=self.id, language=language.value)

    def _add_greeting(self) -> None:
        greeting = Message(
            content=welcome_message(self.language),
            sender=Sender.ASSISTANT,
            language=self.language,
        )
        self._greeting_id = greeting.id
        self.append_message(greeting)

    # ── Rate limit ────────────────────────────────────────────

    def can_query(self) -> bool:
        return self.is_premium or self.query_count < self.daily_limit

    def remaining_queries(self) -> Optional[int]:
        """None means unlimited."""
        if self.is_premium:
            return None
        return max(0, self.daily_limit - self.query_count)

    def increment_query_count(self) -> None:
        self.query_count += 1

    # ── Snapshot ──────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "language": self.language.value,
            "is_rtl": self.language.is_rtl,
            "query_count": self.query_count,
            "daily_limit": self.daily_limit,
            "remaining_queries": self.remaining_queries(),
            "is_premium": self.is_premium,
            "auto_play": self.auto_play,
            "volume": self.volume,
            "messages": [m.model_dump(mode="json") for m in self._messages],
        }
