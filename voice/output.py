"""
Speech Output Adapter — speaks tutor answers, one utterance at a time.

A new `speak()` cancels whatever is playing (last call wins). Voice
choice never fails a turn: exact locale, then same language, then the
engine default.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from models.schemas import Language
from voice.engines import (
    OUTPUT_CANCEL_CODES,
    OutputEvent,
    SpeechOutputEngine,
    Utterance,
    Voice,
)
from voice.errors import PlaybackFailed, UnsupportedEnvironment

logger = structlog.get_logger()

DEFAULT_RATE = 0.9
DEFAULT_PITCH = 1.0


def select_voice(voices: list[Voice], locale: str) -> Optional[Voice]:
    wanted = locale.lower().replace("_", "-")
    prefix = wanted.split("-")[0]

    for v in voices:
        if v.locale.lower().replace("_", "-") == wanted:
            return v
    for v in voices:
        if v.locale.lower().replace("_", "-").split("-")[0] == prefix:
            return v
    return next((v for v in voices if v.default), None)


class SpeechOutputAdapter:

    def __init__(
        self,
        engine: Optional[SpeechOutputEngine],
        volume: int = 70,
        rate: float = DEFAULT_RATE,
        pitch: float = DEFAULT_PITCH,
    ):
        self._engine = engine
        self._volume = 70
        self.set_volume(volume)
        self.rate = rate
        self.pitch = pitch
        self._current_id: Optional[str] = None
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def volume(self) -> int:
        return self._volume

    def set_volume(self, volume: int) -> None:
        self._volume = max(0, min(100, int(volume)))

    @property
    def is_speaking(self) -> bool:
        return self._current_id is not None

    async def speak(self, text: str, language: Language) -> bool:
        """
        Play `text` and wait for it to finish.
        Returns True if playback ended on its own, False if it was cancelled.
        """
        if self._engine is None or not self._engine.available:
            raise UnsupportedEnvironment("Speech synthesis")

        await self.stop_speaking()
        if not text.strip():
            return False

        voice = select_voice(self._engine.voices(), language.locale)
        utterance = Utterance(
            text=text,
            locale=language.locale,
            voice=voice,
            volume=self._volume / 100,
            rate=self.rate,
            pitch=self.pitch,
        )
        future = asyncio.get_running_loop().create_future()
        self._pending[utterance.id] = future
        self._current_id = utterance.id
        logger.debug("utterance_queued", utterance_id=utterance.id,
                     locale=utterance.locale, voice=voice.name if voice else None,
                     chars=len(text))
        try:
            await self._engine.speak(utterance, self._on_event)
            return await future
        finally:
            self._pending.pop(utterance.id, None)
            if self._current_id == utterance.id:
                self._current_id = None

    async def stop_speaking(self) -> None:
        if self._current_id is None or self._engine is None:
            return
        utterance_id, self._current_id = self._current_id, None
        future = self._pending.get(utterance_id)
        if future is not None and not future.done():
            future.set_result(False)
        logger.debug("utterance_cancelled", utterance_id=utterance_id)
        await self._engine.cancel()

    def _on_event(self, event: OutputEvent) -> None:
        future = self._pending.get(event.utterance_id)
        if future is None or future.done():
            return
        if event.type == "start":
            logger.debug("utterance_started", utterance_id=event.utterance_id)
        elif event.type == "end":
            future.set_result(True)
        elif event.type == "error":
            if event.code in OUTPUT_CANCEL_CODES:
                future.set_result(False)
            else:
                future.set_exception(PlaybackFailed(event.code))
