"""
Session runtime — one orchestrator per tutor view, wired to the
browser through a WebSocket outbox.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Any, Optional

from config.settings import Settings, get_settings
from core.orchestrator import VoiceInteractionOrchestrator
from core.session import ConversationSession
from models.schemas import Language, Notice, VoiceState
from tutor.client import TutorRequestClient
from voice.capture import SpeechCaptureAdapter
from voice.engines import BridgedCaptureEngine, BridgedOutputEngine
from voice.output import SpeechOutputAdapter

logger = structlog.get_logger()


class BrowserLink:
    """
    Commands for the browser are queued here and written to the
    WebSocket by the connection's writer task.
    """

    def __init__(self):
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.connected = False

    async def send(self, command: dict[str, Any]) -> None:
        await self.outbox.put(command)

    def send_nowait(self, command: dict[str, Any]) -> None:
        self.outbox.put_nowait(command)


class TutorRuntime:

    def __init__(self, session: ConversationSession, client: TutorRequestClient,
                 settings: Settings = None):
        settings = settings or get_settings()
        self.session = session
        self.link = BrowserLink()
        self.capture_engine = BridgedCaptureEngine(self.link.send)
        self.output_engine = BridgedOutputEngine(self.link.send)
        # no browser attached yet
        self.capture_engine.supported = False
        self.output_engine.supported = False
        self.orchestrator = VoiceInteractionOrchestrator(
            session=session,
            capture=SpeechCaptureAdapter(self.capture_engine),
            output=SpeechOutputAdapter(
                self.output_engine,
                volume=session.volume,
                rate=settings.voice.rate,
                pitch=settings.voice.pitch,
            ),
            client=client,
            retry=settings.voice.request_retry,
        )
        self.orchestrator.add_listener(self._on_state)
        self._tasks: set[asyncio.Task] = set()

    def attach(self, capture_supported: bool = True, synthesis_supported: bool = True) -> None:
        self.link.connected = True
        self.capture_engine.supported = capture_supported
        self.output_engine.supported = synthesis_supported

    def detach(self) -> None:
        self.link.connected = False
        self.capture_engine.supported = False
        self.output_engine.supported = False

    def feed(self, message: dict[str, Any]) -> None:
        kind = str(message.get("type", ""))
        if kind.startswith("capture."):
            self.capture_engine.feed(message)
        elif kind.startswith("output."):
            self.output_engine.feed(message)

    def spawn(self, coro) -> asyncio.Task:
        """Run a turn in the background and report its outcome to the browser."""
        task = asyncio.create_task(self._report(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _report(self, coro) -> None:
        try:
            outcome = await coro
        except Exception as e:
            logger.error("turn_task_failed", session_id=self.session.id,
                         error_type=type(e).__name__, error=str(e))
            await self.link.send({"type": "error", "error": "Turn failed unexpectedly",
                                  "state": self.orchestrator.state.value})
            return
        await self.link.send({"type": "outcome", "outcome": outcome.model_dump(mode="json"),
                              "session": self.session.to_dict()})

    async def shutdown(self) -> None:
        await self.orchestrator.cancel()
        for task in list(self._tasks):
            task.cancel()
        self.detach()

    def _on_state(self, state: VoiceState, notice: Optional[Notice]) -> None:
        if not self.link.connected:
            return
        self.link.send_nowait({
            "type": "state",
            "state": state.value,
            "notice": notice.model_dump(mode="json") if notice else None,
            "remaining_queries": self.session.remaining_queries(),
        })


class SessionRegistry:
    """In-memory tutor sessions keyed by session id."""

    def __init__(self, client: TutorRequestClient = None, settings: Settings = None):
        self.settings = settings or get_settings()
        self.client = client or TutorRequestClient(self.settings.llm)
        self._runtimes: dict[str, TutorRuntime] = {}

    def create(
        self,
        language: Language = None,
        is_premium: bool = False,
        auto_play: bool = None,
        volume: int = None,
    ) -> TutorRuntime:
        cfg = self.settings.session
        session = ConversationSession(
            language=language or Language(cfg.default_language),
            daily_limit=cfg.daily_limit,
            is_premium=is_premium,
            auto_play=cfg.auto_play if auto_play is None else auto_play,
            volume=cfg.volume if volume is None else volume,
        )
        runtime = TutorRuntime(session, self.client, self.settings)
        self._runtimes[session.id] = runtime
        logger.info("session_created", session_id=session.id,
                    language=session.language.value, premium=is_premium)
        return runtime

    def get(self, session_id: str) -> Optional[TutorRuntime]:
        return self._runtimes.get(session_id)

    async def remove(self, session_id: str) -> None:
        runtime = self._runtimes.pop(session_id, None)
        if runtime:
            await runtime.shutdown()

    def __len__(self) -> int:
        return len(self._runtimes)

    async def close(self) -> None:
        for session_id in list(self._runtimes):
            await self.remove(session_id)
        await self.client.close()
