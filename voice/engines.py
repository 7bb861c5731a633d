"""
Speech Engines — capture (speech-to-text) and output (text-to-speech)
engine interfaces.

The recognition and synthesis engines live in the student's browser, so
the service never owns them. Adapters talk to these interfaces; the
implementations below relay commands to the browser over a WebSocket and
feed the browser's lifecycle events back in. Tests swap in deterministic
fakes.

Capture events mirror the browser recognizer:
    result(text, is_final) … error(code)? … end

Output events are keyed by utterance id:
    start → end | error(code)
"""
from __future__ import annotations

import abc
import asyncio
import uuid
import structlog
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  EVENTS
# ══════════════════════════════════════════════════════════════

# Error vocabulary of the browser recognizer
CAPTURE_NO_SPEECH = "no-speech"
CAPTURE_ABORTED = "aborted"
CAPTURE_AUDIO = "audio-capture"
CAPTURE_NOT_ALLOWED = "not-allowed"
CAPTURE_SERVICE_NOT_ALLOWED = "service-not-allowed"
CAPTURE_NETWORK = "network"

# Synthesis errors that only mean "cancelled"
OUTPUT_CANCEL_CODES = {"interrupted", "canceled"}


@dataclass
class CaptureEvent:
    type: str                           # result | error | end
    text: str = ""
    is_final: bool = False
    code: str = ""

    @classmethod
    def result(cls, text: str, is_final: bool = False) -> "CaptureEvent":
        return cls(type="result", text=text, is_final=is_final)

    @classmethod
    def error(cls, code: str) -> "CaptureEvent":
        return cls(type="error", code=code)

    @classmethod
    def end(cls) -> "CaptureEvent":
        return cls(type="end")


@dataclass
class OutputEvent:
    type: str                           # start | end | error
    utterance_id: str
    code: str = ""


@dataclass
class Voice:
    name: str
    locale: str
    default: bool = False


@dataclass
class Utterance:
    text: str
    locale: str
    voice: Optional[Voice] = None
    volume: float = 1.0                 # 0.0 - 1.0
    rate: float = 1.0
    pitch: float = 1.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_command(self) -> dict[str, Any]:
        return {
            "type": "speak",
            "id": self.id,
            "text": self.text,
            "lang": self.locale,
            "voice": self.voice.name if self.voice else None,
            "volume": self.volume,
            "rate": self.rate,
            "pitch": self.pitch,
        }


class CaptureEngineError(Exception):
    """Raised by an engine that refuses to start; carries a recognizer error code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


CaptureSink = Callable[[CaptureEvent], None]
OutputSink = Callable[[OutputEvent], None]
SendCommand = Callable[[dict[str, Any]], Awaitable[None]]


# ══════════════════════════════════════════════════════════════
#  INTERFACES
# ══════════════════════════════════════════════════════════════

class SpeechCaptureEngine(abc.ABC):
    """Continuous, interim-result speech recognizer."""

    @property
    def available(self) -> bool:
        return True

    @abc.abstractmethod
    async def start(self, locale: str, sink: CaptureSink) -> None:
        """
        Begin recognition in `locale`. Returns once capture is running.
        Raises CaptureEngineError when the engine refuses (e.g. "not-allowed").
        Every later event goes to `sink`; the last one is always `end`.
        """
        ...

    @abc.abstractmethod
    async def stop(self) -> None:
        """Ask the recognizer to finish; it still delivers its final results and `end`."""
        ...


class SpeechOutputEngine(abc.ABC):
    """Utterance-at-a-time speech synthesizer."""

    @property
    def available(self) -> bool:
        return True

    @abc.abstractmethod
    def voices(self) -> list[Voice]:
        ...

    @abc.abstractmethod
    async def speak(self, utterance: Utterance, sink: OutputSink) -> None:
        """Queue `utterance`; lifecycle events for it go to `sink`."""
        ...

    @abc.abstractmethod
    async def cancel(self) -> None:
        """Stop everything that is playing or queued."""
        ...


# ══════════════════════════════════════════════════════════════
#  BROWSER BRIDGE
# ══════════════════════════════════════════════════════════════

class BridgedCaptureEngine(SpeechCaptureEngine):
    """
    Relays capture commands to the browser's recognizer.

    The browser answers `capture.start` with either `capture.started`
    or `capture.error`; afterwards it streams `capture.result`,
    `capture.error` and `capture.end` messages, handed in via `feed()`.
    Messages echoing an older `episode` id are dropped.
    """

    def __init__(self, send: SendCommand, start_timeout: float = 10.0):
        self._send = send
        self._start_timeout = start_timeout
        self._sink: Optional[CaptureSink] = None
        self._episode = ""
        self._started: Optional[asyncio.Future] = None
        self.supported = True

    @property
    def available(self) -> bool:
        return self.supported

    async def start(self, locale: str, sink: CaptureSink) -> None:
        loop = asyncio.get_running_loop()
        started = loop.create_future()
        self._sink = sink
        self._started = started
        self._episode = uuid.uuid4().hex
        await self._send({"type": "capture.start", "lang": locale, "episode": self._episode,
                          "continuous": True, "interimResults": True})
        try:
            await asyncio.wait_for(started, timeout=self._start_timeout)
        except asyncio.TimeoutError:
            # a newer start owns the sink now
            if self._started is started:
                self._sink = None
            raise CaptureEngineError("start-timeout")
        finally:
            if self._started is started:
                self._started = None

    async def stop(self) -> None:
        await self._send({"type": "capture.stop"})

    def feed(self, message: dict[str, Any]) -> None:
        kind = message.get("type", "")
        episode = message.get("episode")
        if episode is not None and episode != self._episode:
            logger.debug("capture_event_from_old_episode", type=kind)
            return

        if kind == "capture.started":
            if self._started and not self._started.done():
                self._started.set_result(True)
            return

        if kind == "capture.error":
            code = str(message.get("error", "unknown"))
            if self._started and not self._started.done():
                self._started.set_exception(CaptureEngineError(code))
                return
            self._emit(CaptureEvent.error(code))
            return

        if kind == "capture.result":
            self._emit(CaptureEvent.result(
                str(message.get("transcript", "")),
                bool(message.get("isFinal", False)),
            ))
            return

        if kind == "capture.end":
            self._emit(CaptureEvent.end())
            self._sink = None
            return

        logger.debug("capture_bridge_unknown_message", type=kind)

    def _emit(self, event: CaptureEvent) -> None:
        if self._sink is None:
            logger.debug("capture_event_without_episode", type=event.type)
            return
        self._sink(event)


class BridgedOutputEngine(SpeechOutputEngine):
    """
    Relays utterances to the browser's synthesizer.

    The browser reports installed voices with `output.voices` and
    utterance lifecycle with `output.start` / `output.end` /
    `output.error` carrying the utterance id.
    """

    def __init__(self, send: SendCommand):
        self._send = send
        self._voices: list[Voice] = []
        self._sinks: dict[str, OutputSink] = {}
        self.supported = True

    @property
    def available(self) -> bool:
        return self.supported

    def voices(self) -> list[Voice]:
        return list(self._voices)

    async def speak(self, utterance: Utterance, sink: OutputSink) -> None:
        self._sinks[utterance.id] = sink
        await self._send(utterance.to_command())

    async def cancel(self) -> None:
        await self._send({"type": "cancel_speech"})

    def feed(self, message: dict[str, Any]) -> None:
        kind = message.get("type", "")
        if kind == "output.voices":
            self._voices = [
                Voice(name=v.get("name", ""), locale=v.get("lang", ""),
                      default=bool(v.get("default", False)))
                for v in message.get("voices", [])
            ]
            logger.debug("output_voices_updated", count=len(self._voices))
            return

        utterance_id = str(message.get("id", ""))
        sink = self._sinks.get(utterance_id)
        if sink is None:
            return

        if kind == "output.start":
            sink(OutputEvent("start", utterance_id))
        elif kind == "output.end":
            self._sinks.pop(utterance_id, None)
            sink(OutputEvent("end", utterance_id))
        elif kind == "output.error":
            self._sinks.pop(utterance_id, None)
            sink(OutputEvent("error", utterance_id, code=str(message.get("error", ""))))
