"""
Voice Interaction Orchestrator — the turn state machine.

    idle → listening → processing → speaking → idle
    error is reachable from any state and drops back to idle once the
    notice has been delivered.

Typed messages enter at processing. One turn at a time: a start request
while a turn is active is rejected, never queued. The daily limit is
checked before any adapter is touched.

Every turn takes a number from a monotonically increasing counter.
Cancelling bumps the counter, so a response that arrives for an older
turn is dropped instead of landing in the current conversation.

The user message of a turn is committed to the session together with the
answer (or alone, when the request fails). A cancelled turn commits
nothing.

A stage that raises something other than a VoiceError is reported as
InternalError and ends the turn through error → idle like any failure.
"""
from __future__ import annotations

import structlog
from typing import Callable, Optional

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from config.settings import RetryConfig
from core.notices import notice_for
from core.session import ConversationSession
from models.schemas import (
    Language, Message, Notice, Sender, TurnOutcome, TutorResponse, VoiceState,
)
from tutor.client import TutorRequestClient
from voice.capture import SpeechCaptureAdapter
from voice.errors import InternalError, RateLimitExceeded, TurnInProgress, VoiceError
from voice.latency import TurnLatencyTracker, TurnStage
from voice.output import SpeechOutputAdapter

logger = structlog.get_logger()

StateListener = Callable[[VoiceState, Optional[Notice]], None]


class VoiceInteractionOrchestrator:
    """
    Sole owner of the voice state and sole writer of its session.

    Usage:
        orchestrator = VoiceInteractionOrchestrator(session, capture, output, client)
        outcome = await orchestrator.start_listening()     # full voice turn
        outcome = await orchestrator.send_text("What is osmosis?")
        await orchestrator.cancel()
    """

    def __init__(
        self,
        session: ConversationSession,
        capture: SpeechCaptureAdapter,
        output: SpeechOutputAdapter,
        client: TutorRequestClient,
        retry: RetryConfig = None,
        latency: TurnLatencyTracker = None,
    ):
        self.session = session
        self.capture = capture
        self.output = output
        self.client = client
        self.retry = retry or RetryConfig()
        self.latency = latency or TurnLatencyTracker()
        self._state = VoiceState.IDLE
        self._turn = 0
        self._listeners: list[StateListener] = []
        self.last_notice: Optional[Notice] = None
        self.pending_message: Optional[Message] = None

    # ── State access ──────────────────────────────────────────

    @property
    def state(self) -> VoiceState:
        return self._state

    @property
    def turn_id(self) -> int:
        return self._turn

    @property
    def is_busy(self) -> bool:
        return self._state.is_active

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _transition(self, state: VoiceState, notice: Notice = None) -> None:
        previous, self._state = self._state, state
        logger.debug("voice_state_changed", session_id=self.session.id,
                     turn=self._turn, from_state=previous.value, to_state=state.value)
        for listener in list(self._listeners):
            try:
                listener(state, notice)
            except Exception as e:
                logger.error("voice_state_listener_failed", error=str(e))

    def _is_current(self, turn_id: int) -> bool:
        return turn_id == self._turn

    # ── Settings passthrough ──────────────────────────────────

    def set_language(self, language: Language) -> None:
        """Takes effect from the next listening episode."""
        self.session.set_language(language)

    def set_volume(self, volume: int) -> None:
        self.output.set_volume(volume)
        self.session.volume = self.output.volume

    # ── Admission ─────────────────────────────────────────────

    def _admission_error(self) -> Optional[VoiceError]:
        if self._state.is_active:
            return TurnInProgress(self._state.value)
        if not self.session.can_query():
            return RateLimitExceeded(self.session.query_count, self.session.daily_limit)
        return None

    def _reject(self, error: VoiceError) -> TurnOutcome:
        notice = notice_for(error, self.session.language)
        self.last_notice = notice
        logger.info("turn_rejected", session_id=self.session.id, reason=error.kind,
                    state=self._state.value, query_count=self.session.query_count)
        return TurnOutcome(turn_id=self._turn, state=self._state, notice=notice, rejected=True)

    def _begin_turn(self) -> int:
        self._turn += 1
        self.latency.start(TurnStage.TOTAL, self._turn)
        return self._turn

    # ── Turns ─────────────────────────────────────────────────

    async def start_listening(self) -> TurnOutcome:
        """Run one voice turn: capture → request → (speak) → idle."""
        error = self._admission_error()
        if error is not None:
            return self._reject(error)

        turn_id = self._begin_turn()
        language = self.session.language
        self._transition(VoiceState.LISTENING)
        logger.info("turn_started", session_id=self.session.id, turn=turn_id,
                    mode="voice", language=language.value)

        transcript = ""
        self.latency.start(TurnStage.CAPTURE, turn_id)
        try:
            started = await self.capture.start_listening(language)
            if started and self._is_current(turn_id):
                async for update in self.capture.updates():
                    if update.is_final:
                        transcript = update.text.strip()
        except Exception as e:
            error = self._as_voice_error(turn_id, "capture", e)
            if not self._is_current(turn_id):
                return TurnOutcome(turn_id=turn_id, state=self._state, discarded=True)
            if isinstance(error, InternalError):
                await self._abort_capture(turn_id)
            return self._fail(turn_id, error)
        self.latency.end(TurnStage.CAPTURE, turn_id)

        if not self._is_current(turn_id):
            logger.info("transcript_discarded", session_id=self.session.id, turn=turn_id)
            return TurnOutcome(turn_id=turn_id, state=self._state,
                               transcript=transcript, discarded=True)

        if not transcript:
            # nothing heard is not an error
            self.latency.discard(turn_id)
            self._transition(VoiceState.IDLE)
            logger.info("turn_empty_transcript", session_id=self.session.id, turn=turn_id)
            return TurnOutcome(turn_id=turn_id, state=VoiceState.IDLE)

        return await self._process(turn_id, transcript, language)

    async def send_text(self, text: str, speak: Optional[bool] = None) -> TurnOutcome:
        """Typed turn; joins the voice path at processing. `speak` overrides auto-play."""
        error = self._admission_error()
        if error is not None:
            return self._reject(error)

        text = text.strip()
        if not text:
            return TurnOutcome(turn_id=self._turn, state=self._state)

        turn_id = self._begin_turn()
        logger.info("turn_started", session_id=self.session.id, turn=turn_id,
                    mode="text", language=self.session.language.value)
        return await self._process(turn_id, text, self.session.language, speak)

    async def finish_listening(self) -> None:
        """User is done talking: end capture and let the turn continue."""
        if self._state == VoiceState.LISTENING:
            await self.capture.stop_listening()

    async def cancel(self) -> None:
        """Stop local engines and supersede the active turn."""
        if not self._state.is_active:
            return
        cancelled = self._turn
        self._turn += 1
        self.pending_message = None
        self.latency.discard(cancelled)
        self._transition(VoiceState.IDLE)
        logger.info("turn_cancelled", session_id=self.session.id, turn=cancelled)
        await self.capture.abort()
        await self.output.stop_speaking()

    # ── Stages ────────────────────────────────────────────────

    async def _process(
        self, turn_id: int, text: str, language: Language, speak: Optional[bool] = None,
    ) -> TurnOutcome:
        self._transition(VoiceState.PROCESSING)
        user_message = Message(content=text, sender=Sender.USER, language=language)
        self.pending_message = user_message
        history = self.session.history() + [user_message]

        self.latency.start(TurnStage.REQUEST, turn_id)
        try:
            reply = await self._request(turn_id, history, language)
        except Exception as e:
            error = self._as_voice_error(turn_id, "request", e)
            if not self._is_current(turn_id):
                logger.info("stale_failure_discarded", session_id=self.session.id,
                            turn=turn_id, error=error.kind)
                return TurnOutcome(turn_id=turn_id, state=self._state,
                                   transcript=text, discarded=True)
            self.pending_message = None
            self.session.append_message(user_message)
            outcome = self._fail(turn_id, error)
            outcome.transcript = text
            outcome.user_message = user_message
            return outcome

        if not self._is_current(turn_id):
            logger.info("stale_response_discarded", session_id=self.session.id,
                        turn=turn_id, current_turn=self._turn)
            return TurnOutcome(turn_id=turn_id, state=self._state,
                               transcript=text, discarded=True)
        self.latency.end(TurnStage.REQUEST, turn_id)

        self.pending_message = None
        self.session.append_message(user_message)
        assistant_message = self.session.new_message(
            reply.answer, Sender.ASSISTANT, follow_up_questions=reply.follow_up_questions,
        )
        self.session.increment_query_count()
        outcome = TurnOutcome(
            turn_id=turn_id,
            state=VoiceState.IDLE,
            transcript=text,
            user_message=user_message,
            assistant_message=assistant_message,
        )

        if not (self.session.auto_play if speak is None else speak):
            self._finish_turn(turn_id)
            return outcome

        return await self._speak(turn_id, reply, language, outcome)

    async def _request(
        self, turn_id: int, history: list[Message], language: Language,
    ) -> TutorResponse:
        if self.retry.max_attempts <= 1:
            return await self.client.send_turn(history, language)

        def _should_retry(e: BaseException) -> bool:
            return isinstance(e, VoiceError) and e.retryable and self._is_current(turn_id)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential(multiplier=self.retry.backoff_min,
                                  min=self.retry.backoff_min, max=self.retry.backoff_max),
            retry=retry_if_exception(_should_retry),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning("tutor_request_retry", session_id=self.session.id,
                                   turn=turn_id, attempt=attempt.retry_state.attempt_number)
                return await self.client.send_turn(history, language)

    async def _speak(
        self, turn_id: int, reply: TutorResponse, language: Language, outcome: TurnOutcome,
    ) -> TurnOutcome:
        self._transition(VoiceState.SPEAKING)
        self.latency.start(TurnStage.PLAYBACK, turn_id)
        try:
            finished = await self.output.speak(reply.answer, language)
        except Exception as e:
            error = self._as_voice_error(turn_id, "playback", e)
            if not self._is_current(turn_id):
                outcome.state = self._state
                return outcome
            failed = self._fail(turn_id, error)
            outcome.notice = failed.notice
            return outcome

        if not self._is_current(turn_id):
            outcome.state = self._state
            return outcome
        self.latency.end(TurnStage.PLAYBACK, turn_id)
        outcome.spoken = finished
        self._finish_turn(turn_id)
        return outcome

    def _finish_turn(self, turn_id: int) -> None:
        self.latency.end(TurnStage.TOTAL, turn_id)
        self._transition(VoiceState.IDLE)
        logger.info("turn_completed", session_id=self.session.id, turn=turn_id,
                    query_count=self.session.query_count)

    def _as_voice_error(self, turn_id: int, stage: str, e: Exception) -> VoiceError:
        if isinstance(e, VoiceError):
            return e
        logger.error("turn_stage_crashed", session_id=self.session.id, turn=turn_id,
                     stage=stage, error_type=type(e).__name__, error=str(e))
        return InternalError(stage, e)

    async def _abort_capture(self, turn_id: int) -> None:
        try:
            await self.capture.abort()
        except Exception as e:
            logger.error("capture_abort_failed", session_id=self.session.id,
                         turn=turn_id, error=str(e))

    def _fail(self, turn_id: int, error: VoiceError) -> TurnOutcome:
        notice = notice_for(error, self.session.language)
        self.last_notice = notice
        self.latency.discard(turn_id)
        logger.warning("turn_failed", session_id=self.session.id, turn=turn_id,
                       error=error.kind, detail=str(error), retryable=error.retryable)
        self._transition(VoiceState.ERROR, notice)
        self._transition(VoiceState.IDLE)
        return TurnOutcome(turn_id=turn_id, state=VoiceState.IDLE, notice=notice)
