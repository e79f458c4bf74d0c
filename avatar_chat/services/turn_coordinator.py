"""
Avatar Chat - Session Turn Coordinator

Purpose: Arbitrates the turns of one session and runs each accepted turn
through speech-to-text, reply generation and speech synthesis, emitting an
ordered stream of protocol events to the session's event sink.

Key Features:
- At most one turn in flight per session (busy flag, reject-on-busy)
- Strictly sequential stages, each bounded by its own timeout
- Every failure becomes exactly one `error` event; later stages never run
- Busy flag released on every exit path, cancellation included
- History writes tagged with the epoch the turn started in, so a clear
  issued mid-turn is honored

Design Patterns:
- Pipeline Pattern: transcribe → generate → synthesize
- Dependency Injection: services are typing.Protocol collaborators
- Observer Pattern: events delivered through an async emit callback
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Union

from avatar_chat import protocol
from avatar_chat.config.logging_config import get_logger
from avatar_chat.config.settings import ServerSettings, get_settings
from avatar_chat.protocol import ProcessingStage, ProtocolEvent
from avatar_chat.services.session_service import ConversationSession, SessionRegistry
from avatar_chat.types.error_events import (
    ErrorEventType,
    ServiceErrorEvent,
    TurnError,
    TurnErrorKind,
)

logger = get_logger(__name__)

BUSY_MESSAGE = "Still processing previous message"
NO_SPEECH_MESSAGE = "No speech detected in audio"

Emit = Callable[[ProtocolEvent], Awaitable[None]]


# ============================================================
# Collaborator contracts
# ============================================================

class TranscriptionService(Protocol):
    async def transcribe(self, audio: bytes, format_hint: str) -> str:
        """Return the transcript, or "" when no speech was recognized."""
        ...


class ReplyService(Protocol):
    async def generate_reply(self, text: str, recent_history: Sequence[str]) -> str:
        ...


class SpeechSynthesisService(Protocol):
    async def synthesize(self, text: str, *, speaking_rate: float, pitch: float) -> bytes:
        ...


# ============================================================
# Turn inputs and results
# ============================================================

@dataclass(frozen=True)
class AudioInput:
    """A recorded clip, already base64-decoded."""
    audio: bytes
    format: str = "webm"


@dataclass(frozen=True)
class TextInput:
    text: str


TurnInput = Union[AudioInput, TextInput]


@dataclass
class TurnResult:
    """
    Outcome of one submit_turn call.

    Attributes:
        accepted: False when the turn was rejected because the session was busy
        succeeded: True when the turn reached `complete`
        transcript: Resolved user text (transcript or literal text)
        reply: Generated reply text
        error_kind: Kind of the error event emitted, if any
        duration_s: Wall time spent in the turn
    """
    accepted: bool
    succeeded: bool = False
    transcript: Optional[str] = None
    reply: Optional[str] = None
    error_kind: Optional[TurnErrorKind] = None
    duration_s: float = 0.0


class _EmitFailed(Exception):
    """The event sink raised; the client is most likely gone."""


class TurnCoordinator:
    """
    Runs conversation turns for the sessions in a registry.

    Usage:
        coordinator = TurnCoordinator(registry, stt, llm, tts)
        result = await coordinator.submit_turn(session_id, TextInput("hi"), emit)
    """

    def __init__(
        self,
        registry: SessionRegistry,
        stt: TranscriptionService,
        llm: ReplyService,
        tts: SpeechSynthesisService,
        settings: Optional[ServerSettings] = None,
        error_callback: Optional[Callable[[ServiceErrorEvent], Awaitable[None]]] = None,
    ):
        """
        Args:
            registry: Session registry owning the sessions
            stt: Transcription collaborator
            llm: Reply generation collaborator
            tts: Speech synthesis collaborator
            settings: Timeouts, history window and prosody (defaults to global settings)
            error_callback: Optional async callback for structured failure records
        """
        self.registry = registry
        self.stt = stt
        self.llm = llm
        self.tts = tts
        self.settings = settings or get_settings()
        self.error_callback = error_callback

    async def submit_turn(self, session_id: str, turn_input: TurnInput, emit: Emit) -> TurnResult:
        """
        Submit one turn for a session.

        The busy check and the busy set happen before the first suspension
        point, so two submissions for the same session can never both be
        accepted.

        Raises:
            KeyError: Unknown session
        """
        session = self.registry.get(session_id)

        if session.busy:
            logger.warning(f"⚠️ Turn rejected, session busy: session={session_id}")
            try:
                await self._emit(emit, protocol.error_event(
                    BUSY_MESSAGE, ErrorEventType.BUSY_REJECTED, TurnErrorKind.BUSY_REJECTED
                ))
            except _EmitFailed:
                pass
            return TurnResult(accepted=False, error_kind=TurnErrorKind.BUSY_REJECTED)

        session.busy = True
        epoch = session.epoch
        is_audio = isinstance(turn_input, AudioInput)
        error_type = ErrorEventType.AUDIO_PROCESSING_ERROR if is_audio else ErrorEventType.TEXT_PROCESSING_ERROR
        result = TurnResult(accepted=True)
        started = time.monotonic()

        logger.info(f"🎬 Turn started: session={session_id}, input={'audio' if is_audio else 'text'}, epoch={epoch}")

        try:
            try:
                await self._run_turn(session, epoch, turn_input, emit, result)
                result.succeeded = True
                session.turns_completed += 1
            except TurnError as e:
                session.turns_failed += 1
                result.error_kind = e.kind
                await self._report_failure(session, e)
                await self._emit(emit, protocol.error_event(e.message, error_type, e.kind))
        except _EmitFailed as e:
            logger.warning(f"⚠️ Turn abandoned, client unreachable: session={session_id} ({e})")
        finally:
            session.busy = False
            result.duration_s = time.monotonic() - started

        if result.succeeded:
            logger.info(f"✅ Turn complete: session={session_id}, duration={result.duration_s:.2f}s")
        return result

    async def clear_history(self, session_id: str, emit: Emit) -> None:
        """
        Clear a session's history and acknowledge with `context_cleared`.

        Permitted while a turn is in flight.

        Raises:
            KeyError: Unknown session
        """
        session = self.registry.get(session_id)
        session.clear_history()
        try:
            await self._emit(emit, protocol.context_cleared())
        except _EmitFailed as e:
            logger.debug(f"Could not acknowledge clear: session={session_id} ({e})")

    # ============================================================
    # Turn stages
    # ============================================================

    async def _run_turn(
        self,
        session: ConversationSession,
        epoch: int,
        turn_input: TurnInput,
        emit: Emit,
        result: TurnResult,
    ) -> None:
        if isinstance(turn_input, AudioInput):
            await self._emit(emit, protocol.processing_status(ProcessingStage.TRANSCRIBING))
            text = await self._transcribe(turn_input)
        else:
            text = turn_input.text
            if not text or not text.strip():
                raise TurnError(TurnErrorKind.INVALID_INPUT, "Message text is empty", stage="input")

        result.transcript = text
        await self._emit(emit, protocol.user_message(text))
        session.append("User", text, epoch)

        await self._emit(emit, protocol.processing_status(ProcessingStage.GENERATING_RESPONSE))
        window = self.settings.history_window
        recent_history = session.history_snapshot()[-window:] if window else ()
        reply = await self._call_stage(
            "reply_generation",
            self.llm.generate_reply(text, recent_history),
            self.settings.llm_timeout_s,
        )
        if not reply or not reply.strip():
            raise TurnError(TurnErrorKind.SERVICE_FAILURE, "Failed to generate AI response", stage="reply_generation")

        result.reply = reply
        session.append("AI", reply, epoch)
        await self._emit(emit, protocol.ai_response(reply))

        await self._emit(emit, protocol.processing_status(ProcessingStage.GENERATING_AUDIO))
        audio = await self._call_stage(
            "speech_synthesis",
            self.tts.synthesize(reply, speaking_rate=self.settings.speaking_rate, pitch=self.settings.pitch),
            self.settings.tts_timeout_s,
        )
        await self._emit(emit, protocol.audio_response(audio, "mp3"))
        await self._emit(emit, protocol.processing_status(ProcessingStage.COMPLETE))

    async def _transcribe(self, turn_input: AudioInput) -> str:
        if not turn_input.audio:
            raise TurnError(TurnErrorKind.NO_SPEECH_DETECTED, NO_SPEECH_MESSAGE, stage="speech_to_text")

        transcript = await self._call_stage(
            "speech_to_text",
            self.stt.transcribe(turn_input.audio, turn_input.format),
            self.settings.stt_timeout_s,
        )
        if not transcript or not transcript.strip():
            raise TurnError(TurnErrorKind.NO_SPEECH_DETECTED, NO_SPEECH_MESSAGE, stage="speech_to_text")
        return transcript.strip()

    async def _call_stage(self, stage: str, call: Awaitable[Any], timeout: float) -> Any:
        """Await one external call; timeouts and exceptions become service failures."""
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TurnError(
                TurnErrorKind.SERVICE_FAILURE,
                f"{stage.replace('_', ' ').capitalize()} timed out after {timeout:g}s",
                stage=stage,
            ) from e
        except Exception as e:
            raise TurnError(TurnErrorKind.SERVICE_FAILURE, str(e) or type(e).__name__, stage=stage) from e

    # ============================================================
    # Emission and failure reporting
    # ============================================================

    async def _emit(self, emit: Emit, event: ProtocolEvent) -> None:
        try:
            await emit(event)
        except Exception as e:
            raise _EmitFailed(f"{event.event}: {e}") from e

    async def _report_failure(self, session: ConversationSession, error: TurnError) -> None:
        cause = error.__cause__
        event = ServiceErrorEvent(
            service_name=error.stage or "turn",
            error_kind=error.kind,
            user_message=error.message[:500] or "Turn failed",
            technical_details=(repr(cause) if cause else repr(error))[:2000],
            session_id=session.session_id,
            severity="warning" if error.kind == TurnErrorKind.NO_SPEECH_DETECTED else "error",
        )

        if error.kind == TurnErrorKind.SERVICE_FAILURE:
            logger.error(f"❌ Turn failed: session={session.session_id}, stage={error.stage}, {event.technical_details}")
        else:
            logger.warning(f"⚠️ Turn failed: session={session.session_id}, kind={error.kind.value}, {error.message}")

        if self.error_callback:
            try:
                await self.error_callback(event)
            except Exception as e:
                logger.error(f"❌ Error callback failed: {e}")
