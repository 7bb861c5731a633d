"""Shared test fixtures for the Nukhba tutor."""
import asyncio
import json
import pytest
from typing import Any, Optional

import httpx

from config.settings import LLMConfig, RetryConfig
from core.orchestrator import VoiceInteractionOrchestrator
from core.session import ConversationSession
from models.schemas import Language, Message, TutorResponse
from voice.capture import SpeechCaptureAdapter
from voice.engines import (
    CaptureEngineError, CaptureEvent, OutputEvent,
    SpeechCaptureEngine, SpeechOutputEngine, Utterance, Voice,
)
from voice.output import SpeechOutputAdapter


# ══════════════════════════════════════════════════════════════
#  FAKE ENGINES
# ══════════════════════════════════════════════════════════════

class FakeCaptureEngine(SpeechCaptureEngine):
    """
    Deterministic recognizer. Events in `script` are delivered as soon
    as capture starts; more can be pushed with `emit()`.
    """

    def __init__(self, script: list[CaptureEvent] = None, start_error: str = ""):
        self.script = list(script or [])
        self.start_error = start_error
        self.supported = True
        self.start_calls = 0
        self.stop_calls = 0
        self.locales: list[str] = []
        self.end_on_stop = True
        self._sink = None

    @property
    def available(self) -> bool:
        return self.supported

    async def start(self, locale, sink):
        self.start_calls += 1
        self.locales.append(locale)
        if self.start_error:
            raise CaptureEngineError(self.start_error)
        self._sink = sink
        for event in self.script:
            sink(event)

    async def stop(self):
        self.stop_calls += 1
        if self.end_on_stop and self._sink is not None:
            sink, self._sink = self._sink, None
            sink(CaptureEvent.end())

    def emit(self, event: CaptureEvent) -> None:
        assert self._sink is not None, "capture not started"
        self._sink(event)
        if event.type == "end":
            self._sink = None

    @property
    def calls(self) -> int:
        return self.start_calls + self.stop_calls


class GatedCaptureEngine(FakeCaptureEngine):
    """Recognizer whose start waits on `grant` (the browser's permission prompt)."""

    def __init__(self, script: list[CaptureEvent] = None):
        super().__init__(script)
        self.grant = asyncio.Event()
        self.pending_starts = 0

    async def start(self, locale, sink):
        self.pending_starts += 1
        try:
            await self.grant.wait()
        finally:
            self.pending_starts -= 1
        await super().start(locale, sink)


class FakeOutputEngine(SpeechOutputEngine):
    """Synthesizer that finishes every utterance at once unless `auto_finish` is off."""

    def __init__(self, voices: list[Voice] = None, auto_finish: bool = True):
        self._voices = voices if voices is not None else [
            Voice("Samantha", "en-US", default=True),
            Voice("Maged", "ar-SA"),
        ]
        self.auto_finish = auto_finish
        self.supported = True
        self.spoken: list[Utterance] = []
        self.cancel_calls = 0
        self.fail_with = ""
        self._sinks: dict[str, Any] = {}

    @property
    def available(self) -> bool:
        return self.supported

    def voices(self):
        return list(self._voices)

    async def speak(self, utterance, sink):
        self.spoken.append(utterance)
        self._sinks[utterance.id] = sink
        sink(OutputEvent("start", utterance.id))
        if self.fail_with:
            sink(OutputEvent("error", utterance.id, code=self.fail_with))
        elif self.auto_finish:
            sink(OutputEvent("end", utterance.id))

    async def cancel(self):
        self.cancel_calls += 1
        for utterance_id, sink in list(self._sinks.items()):
            sink(OutputEvent("error", utterance_id, code="interrupted"))
        self._sinks.clear()

    def finish(self, utterance_id: str) -> None:
        sink = self._sinks.pop(utterance_id)
        sink(OutputEvent("end", utterance_id))

    @property
    def calls(self) -> int:
        return len(self.spoken) + self.cancel_calls


class ScriptedTutorClient:
    """
    Stand-in for TutorRequestClient. Replies (or exceptions) are consumed
    in order; a reply may be gated on an asyncio.Event to simulate a slow
    network.
    """

    def __init__(self, replies: list[Any] = None):
        self.replies = list(replies or [])
        self.calls: list[tuple[list[Message], Language]] = []
        self.gates: dict[int, asyncio.Event] = {}

    def gate(self, call_index: int) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[call_index] = event
        return event

    async def send_turn(self, history, language):
        index = len(self.calls)
        self.calls.append((list(history), language))
        reply = self.replies[index] if index < len(self.replies) else TutorResponse(answer="ok")
        gate = self.gates.get(index)
        if gate is not None:
            await gate.wait()
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def close(self):
        pass


# ══════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════

def completion_body(content: Optional[str]) -> dict[str, Any]:
    """An OpenAI chat-completions response carrying `content`."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-4o",
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
        "usage": {"prompt_tokens": 10, "completion_tokens": 10, "total_tokens": 20},
    }


def spoken_turn(text: str) -> list[CaptureEvent]:
    """Recognizer events for one utterance that ends naturally."""
    words = text.split()
    partial = " ".join(words[: max(1, len(words) // 2)])
    return [
        CaptureEvent.result(partial, is_final=False),
        CaptureEvent.result(text, is_final=True),
        CaptureEvent.end(),
    ]


def llm_config(**overrides) -> LLMConfig:
    cfg = LLMConfig(base_url="https://llm.test/v1", api_key="sk-test", model="gpt-4o")
    for k, v in overrides.items():
        setattr(cfg, k, v)
    return cfg


def mock_transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


def json_handler(status: int, body: Any, seen: list = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if isinstance(body, (dict, list)):
            return httpx.Response(status, content=json.dumps(body).encode(),
                                  headers={"content-type": "application/json"})
        return httpx.Response(status, text=body)
    return handler


# ══════════════════════════════════════════════════════════════
#  FIXTURES
# ══════════════════════════════════════════════════════════════

@pytest.fixture
def session() -> ConversationSession:
    return ConversationSession(language=Language.ENGLISH, daily_limit=10)


@pytest.fixture
def capture_engine() -> FakeCaptureEngine:
    return FakeCaptureEngine()


@pytest.fixture
def output_engine() -> FakeOutputEngine:
    return FakeOutputEngine()


@pytest.fixture
def tutor_client() -> ScriptedTutorClient:
    return ScriptedTutorClient()


@pytest.fixture
def orchestrator(session, capture_engine, output_engine, tutor_client) -> VoiceInteractionOrchestrator:
    return VoiceInteractionOrchestrator(
        session=session,
        capture=SpeechCaptureAdapter(capture_engine),
        output=SpeechOutputAdapter(output_engine, volume=session.volume),
        client=tutor_client,
        retry=RetryConfig(max_attempts=1),
    )


@pytest.fixture
def state_log(orchestrator) -> list[str]:
    """Every state the orchestrator passes through, in order."""
    log: list[str] = []
    orchestrator.add_listener(lambda state, notice: log.append(state.value))
    return log
