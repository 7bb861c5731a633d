"""
Speech Capture Adapter — one listening episode at a time.

Wraps a continuous, interim-result recognizer and turns its events into
a stream of `TranscriptUpdate`s ending in exactly one final update.

The locale is fixed when the episode starts; switching the session
language mid-episode only affects the next episode.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import AsyncIterator, Optional

from models.schemas import Language, TranscriptUpdate
from voice.engines import (
    CAPTURE_ABORTED,
    CAPTURE_AUDIO,
    CAPTURE_NETWORK,
    CAPTURE_NO_SPEECH,
    CAPTURE_NOT_ALLOWED,
    CAPTURE_SERVICE_NOT_ALLOWED,
    CaptureEngineError,
    CaptureEvent,
    SpeechCaptureEngine,
)
from voice.errors import (
    AudioCaptureUnavailable,
    NetworkUnavailable,
    PermissionDenied,
    UnknownCaptureError,
    UnsupportedEnvironment,
    VoiceError,
)

logger = structlog.get_logger()

# Codes that end an episode without being a failure
_BENIGN_CODES = {CAPTURE_NO_SPEECH, CAPTURE_ABORTED}


def map_capture_error(code: str) -> Optional[VoiceError]:
    """Recognizer error code → pipeline error. None for codes that are not failures."""
    if code in _BENIGN_CODES:
        return None
    if code in (CAPTURE_NOT_ALLOWED, CAPTURE_SERVICE_NOT_ALLOWED):
        return PermissionDenied()
    if code == CAPTURE_AUDIO:
        return AudioCaptureUnavailable()
    if code == CAPTURE_NETWORK:
        return NetworkUnavailable()
    return UnknownCaptureError(code)


class TranscriptBuffer:
    """Interim text is overwritten; final segments accumulate for one episode."""

    def __init__(self):
        self.interim = ""
        self._final: list[str] = []

    @property
    def final_text(self) -> str:
        return " ".join(s for s in self._final if s).strip()

    @property
    def display_text(self) -> str:
        """What a live caption should show right now."""
        return " ".join(p for p in (self.final_text, self.interim.strip()) if p)

    def set_interim(self, text: str) -> None:
        self.interim = text

    def append_final(self, text: str) -> None:
        self._final.append(text.strip())
        self.interim = ""

    def clear(self) -> None:
        self.interim = ""
        self._final = []

    def flush(self) -> str:
        text = self.final_text
        self.clear()
        return text


class SpeechCaptureAdapter:
    """
    Usage:
        if await capture.start_listening(Language.ENGLISH):
            async for update in capture.updates():
                if update.is_final:
                    ...
    """

    def __init__(self, engine: Optional[SpeechCaptureEngine]):
        self._engine = engine
        self.buffer = TranscriptBuffer()
        self._queue: Optional[asyncio.Queue] = None
        self._listening = False
        self._stop_requested = False
        self._locale = ""

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def locale(self) -> str:
        return self._locale

    @property
    def is_starting(self) -> bool:
        """Episode opened, recognizer not yet confirmed."""
        return self._queue is not None and not self._listening

    async def start_listening(self, language: Language) -> bool:
        """
        Open an episode and wait for the recognizer to confirm it.

        Returns False when the episode was aborted while the start was
        still pending; the recognizer is stopped once it comes up. A call
        while an episode is open joins it.
        """
        if self._engine is None or not self._engine.available:
            raise UnsupportedEnvironment("Speech recognition")
        if self._queue is not None:
            return True

        queue: asyncio.Queue = asyncio.Queue()
        self.buffer = TranscriptBuffer()
        self._queue = queue
        self._stop_requested = False
        self._locale = language.locale
        try:
            await self._engine.start(self._locale, queue.put_nowait)
        except CaptureEngineError as e:
            if self._queue is queue:
                self._finish()
            error = map_capture_error(e.code)
            logger.warning("capture_start_refused", code=e.code, locale=self._locale)
            if error is None:
                # refused with a benign code: nothing captured
                error = UnknownCaptureError(e.code)
            raise error from e
        except Exception:
            if self._queue is queue:
                self._finish()
            raise

        if self._queue is not queue:
            logger.debug("capture_start_superseded", locale=self._locale)
            if self._queue is None:
                # nobody reopened capture meanwhile
                await self._engine.stop()
            return False

        self._listening = True
        logger.debug("capture_started", locale=self._locale)
        if self._stop_requested:
            logger.debug("capture_deferred_stop", locale=self._locale)
            await self._engine.stop()
        return True

    async def updates(self) -> AsyncIterator[TranscriptUpdate]:
        """
        Interim updates while capturing, then exactly one final update.
        Raises the mapped VoiceError if the recognizer fails.
        """
        if self._queue is None:
            return
        queue = self._queue
        buffer = self.buffer
        failure: Optional[VoiceError] = None

        while True:
            event: CaptureEvent = await queue.get()

            if event.type == "result":
                if failure is not None:
                    continue
                if event.is_final:
                    buffer.append_final(event.text)
                else:
                    buffer.set_interim(event.text)
                yield TranscriptUpdate(text=buffer.display_text, is_final=False)

            elif event.type == "error":
                error = map_capture_error(event.code)
                if error is None:
                    logger.debug("capture_ended_quietly", code=event.code)
                elif failure is None:
                    failure = error
                    logger.warning("capture_error", code=event.code, kind=error.kind)

            elif event.type == "end":
                break

        text = buffer.flush()
        if self._queue is queue:
            self._finish()
        if failure is not None:
            raise failure
        yield TranscriptUpdate(text=text, is_final=True)

    async def stop_listening(self) -> None:
        """
        Let the recognizer finish; the final transcript is still delivered.
        During a pending start the stop is applied once the start returns.
        """
        if self._queue is None or self._stop_requested or self._engine is None:
            return
        self._stop_requested = True
        if not self._listening:
            return
        logger.debug("capture_stop_requested", locale=self._locale)
        await self._engine.stop()

    async def abort(self) -> None:
        """
        End the episode now, including one whose start is still pending.
        The recognizer is stopped and late events are dropped.
        """
        if self._queue is None or self._engine is None:
            return
        queue = self._queue
        self._finish()
        queue.put_nowait(CaptureEvent.end())
        logger.debug("capture_aborted", locale=self._locale)
        await self._engine.stop()

    def _finish(self) -> None:
        self._listening = False
        self._queue = None
