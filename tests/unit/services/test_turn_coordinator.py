"""
Unit tests for TurnCoordinator

Tests turn arbitration and the transcribe → generate → synthesize pipeline:
- Event ordering for audio and text turns
- Reject-on-busy without disturbing the in-flight turn
- Error events for each failing stage (exactly one, later stages skipped)
- Busy release on success, failure and cancellation
- History window and clear-while-busy epoch handling
"""

import asyncio

import pytest

from avatar_chat.config.settings import ServerSettings
from avatar_chat.services.turn_coordinator import (
    BUSY_MESSAGE,
    NO_SPEECH_MESSAGE,
    AudioInput,
    TextInput,
    TurnCoordinator,
)
from avatar_chat.types.error_events import TurnErrorKind


AUDIO_SEQUENCE = [
    "status:transcribing",
    "user_message",
    "status:generating_response",
    "ai_response",
    "status:generating_audio",
    "audio_response",
    "status:complete",
]


# ============================================================
# Happy Path Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_audio_turn_event_order(coordinator, registry, recorder, fake_stt):
    """Test an audio turn emits the full ordered event sequence"""
    # ARRANGE
    session = registry.create()

    # ACT
    result = await coordinator.submit_turn(session.session_id, AudioInput(b"RIFFclip", "webm"), recorder)

    # ASSERT
    assert result.accepted is True
    assert result.succeeded is True
    assert result.transcript == "what is the weather like"
    assert result.reply == "It is sunny today!"
    assert recorder.sequence() == AUDIO_SEQUENCE
    assert recorder.of("user_message")[0].data == {"text": "what is the weather like"}
    assert recorder.of("ai_response")[0].data == {"text": "It is sunny today!"}
    assert recorder.of("audio_response")[0].data["format"] == "mp3"
    assert fake_stt.calls == [(b"RIFFclip", "webm")]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_text_turn_skips_transcription(coordinator, registry, recorder, fake_stt, fake_llm):
    """Test a text turn starts at user_message and never calls STT"""
    session = registry.create()

    result = await coordinator.submit_turn(session.session_id, TextInput("Hello avatar"), recorder)

    assert result.succeeded is True
    assert recorder.sequence() == AUDIO_SEQUENCE[1:]
    assert recorder.of("user_message")[0].data == {"text": "Hello avatar"}
    assert fake_stt.calls == []
    assert fake_llm.calls[0][0] == "Hello avatar"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_turn_records_history(coordinator, registry, recorder):
    """Test a successful turn appends the user and AI entries"""
    session = registry.create()

    await coordinator.submit_turn(session.session_id, TextInput("Hello avatar"), recorder)

    assert session.history_snapshot() == ("User: Hello avatar", "AI: It is sunny today!")
    assert session.turns_completed == 1
    assert session.busy is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reply_synthesized_with_conversational_prosody(coordinator, registry, recorder, fake_tts):
    """Test the reply is synthesized at rate 1.1 and pitch 2.0"""
    session = registry.create()

    await coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder)

    assert fake_tts.calls == [("It is sunny today!", 1.1, 2.0)]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_history_window_bounds_context(coordinator, registry, recorder, fake_llm):
    """Test the reply service never sees more than six history entries"""
    session = registry.create()

    for i in range(5):
        await coordinator.submit_turn(session.session_id, TextInput(f"message {i}"), recorder)

    assert len(session.history) == 6
    for _, history in fake_llm.calls:
        assert len(history) <= 6
    # Last call sees the newest user line as its final entry
    assert fake_llm.calls[-1][1][-1] == "User: message 4"
    assert "User: message 0" not in fake_llm.calls[-1][1]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_history_window_zero_sends_no_context(registry, recorder, fake_stt, fake_llm, fake_tts):
    coordinator = TurnCoordinator(
        registry, fake_stt, fake_llm, fake_tts,
        settings=ServerSettings(history_window=0),
    )
    session = registry.create()

    await coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder)

    assert fake_llm.calls == [("Hi", ())]


# ============================================================
# Busy Arbitration Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_second_turn_rejected_while_busy(coordinator, registry, recorder, fake_llm):
    """Test a turn submitted mid-flight is rejected and the first completes untouched"""
    # ARRANGE
    session = registry.create()
    fake_llm.gate = asyncio.Event()

    first = asyncio.create_task(coordinator.submit_turn(session.session_id, TextInput("first"), recorder))
    await fake_llm.started.wait()

    # ACT
    second = await coordinator.submit_turn(session.session_id, TextInput("second"), recorder)
    fake_llm.gate.set()
    first_result = await first

    # ASSERT
    assert second.accepted is False
    assert second.error_kind == TurnErrorKind.BUSY_REJECTED
    assert first_result.succeeded is True

    errors = recorder.of("error")
    assert len(errors) == 1
    assert errors[0].data == {"message": BUSY_MESSAGE, "type": "busy_rejected", "kind": "busy_rejected"}

    # Exactly one user_message / ai_response, both from the first turn
    assert [e.data["text"] for e in recorder.of("user_message")] == ["first"]
    assert len(recorder.of("ai_response")) == 1
    assert recorder.sequence()[-1] == "status:complete"
    assert [c[0] for c in fake_llm.calls] == ["first"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_simultaneous_submissions_only_one_accepted(coordinator, registry, recorder, fake_llm):
    """Test two submissions scheduled together never both run"""
    session = registry.create()
    fake_llm.gate = asyncio.Event()

    tasks = [
        asyncio.create_task(coordinator.submit_turn(session.session_id, TextInput("a"), recorder)),
        asyncio.create_task(coordinator.submit_turn(session.session_id, TextInput("b"), recorder)),
    ]
    await fake_llm.started.wait()
    await asyncio.sleep(0)
    fake_llm.gate.set()
    results = await asyncio.gather(*tasks)

    assert sorted(r.accepted for r in results) == [False, True]
    assert len(recorder.of("ai_response")) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_busy_released_after_success(coordinator, registry, recorder):
    session = registry.create()

    await coordinator.submit_turn(session.session_id, TextInput("one"), recorder)
    result = await coordinator.submit_turn(session.session_id, TextInput("two"), recorder)

    assert result.accepted is True
    assert session.busy is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sessions_do_not_block_each_other(coordinator, registry, recorder, fake_llm):
    """Test a busy session does not reject turns of another session"""
    first = registry.create()
    second = registry.create()
    fake_llm.gate = asyncio.Event()

    task = asyncio.create_task(coordinator.submit_turn(first.session_id, TextInput("a"), recorder))
    await fake_llm.started.wait()
    other = asyncio.create_task(coordinator.submit_turn(second.session_id, TextInput("b"), recorder))
    await asyncio.sleep(0)
    fake_llm.gate.set()

    results = await asyncio.gather(task, other)

    assert all(r.accepted for r in results)
    assert recorder.of("error") == []


# ============================================================
# Failure Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_transcript_reports_no_speech(coordinator, registry, recorder, fake_stt, fake_llm, fake_tts):
    """Test an empty transcript yields one no_speech error and nothing after it"""
    # ARRANGE
    fake_stt.transcript = "   "
    session = registry.create()

    # ACT
    result = await coordinator.submit_turn(session.session_id, AudioInput(b"silence"), recorder)

    # ASSERT
    assert result.succeeded is False
    assert result.error_kind == TurnErrorKind.NO_SPEECH_DETECTED
    assert recorder.sequence() == ["status:transcribing", "error"]
    assert recorder.of("error")[0].data == {
        "message": NO_SPEECH_MESSAGE,
        "type": "audio_processing_error",
        "kind": "no_speech_detected",
    }
    assert fake_llm.calls == []
    assert fake_tts.calls == []
    assert session.history_snapshot() == ()
    assert session.busy is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_audio_skips_transcription(coordinator, registry, recorder, fake_stt):
    session = registry.create()

    result = await coordinator.submit_turn(session.session_id, AudioInput(b""), recorder)

    assert result.error_kind == TurnErrorKind.NO_SPEECH_DETECTED
    assert fake_stt.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_text_rejected_as_invalid_input(coordinator, registry, recorder, fake_llm):
    session = registry.create()

    result = await coordinator.submit_turn(session.session_id, TextInput("  "), recorder)

    assert result.error_kind == TurnErrorKind.INVALID_INPUT
    assert recorder.names() == ["error"]
    assert recorder.of("error")[0].data["type"] == "text_processing_error"
    assert fake_llm.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stt_failure_reports_service_failure(coordinator, registry, recorder, fake_stt, fake_llm):
    fake_stt.error = RuntimeError("Speech API returned 500")
    session = registry.create()

    result = await coordinator.submit_turn(session.session_id, AudioInput(b"clip"), recorder)

    assert result.error_kind == TurnErrorKind.SERVICE_FAILURE
    error = recorder.of("error")[0]
    assert error.data["kind"] == "service_failure"
    assert error.data["type"] == "audio_processing_error"
    assert "Speech API returned 500" in error.data["message"]
    assert fake_llm.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_llm_failure_keeps_user_line_and_skips_tts(coordinator, registry, recorder, fake_llm, fake_tts):
    """Test an LLM failure after user_message emits one error and no synthesis"""
    fake_llm.error = RuntimeError("quota exceeded")
    session = registry.create()

    result = await coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder)

    assert result.succeeded is False
    assert recorder.sequence() == ["user_message", "status:generating_response", "error"]
    assert fake_tts.calls == []
    assert session.history_snapshot() == ("User: Hi",)
    assert session.turns_failed == 1
    assert session.busy is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_empty_reply_is_service_failure(coordinator, registry, recorder, fake_llm, fake_tts):
    fake_llm.reply = ""
    session = registry.create()

    result = await coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder)

    assert result.error_kind == TurnErrorKind.SERVICE_FAILURE
    assert recorder.of("ai_response") == []
    assert fake_tts.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tts_failure_after_ai_response(coordinator, registry, recorder, fake_tts):
    """Test synthesis failure leaves ai_response delivered and no audio_response"""
    fake_tts.error = RuntimeError("TTS unavailable")
    session = registry.create()

    result = await coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder)

    assert result.error_kind == TurnErrorKind.SERVICE_FAILURE
    assert recorder.sequence() == [
        "user_message",
        "status:generating_response",
        "ai_response",
        "status:generating_audio",
        "error",
    ]
    assert len(session.history) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stage_timeout_reports_service_failure(registry, recorder, fake_stt, fake_llm, fake_tts):
    """Test a hanging reply stage times out into service_failure"""
    fake_llm.gate = asyncio.Event()
    coordinator = TurnCoordinator(
        registry, fake_stt, fake_llm, fake_tts,
        settings=ServerSettings(llm_timeout_s=0.05),
    )
    session = registry.create()

    result = await coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder)

    assert result.error_kind == TurnErrorKind.SERVICE_FAILURE
    assert "timed out" in recorder.of("error")[0].data["message"]
    assert session.busy is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_busy_released_after_failure(coordinator, registry, recorder, fake_llm):
    fake_llm.error = RuntimeError("boom")
    session = registry.create()

    await coordinator.submit_turn(session.session_id, TextInput("one"), recorder)
    fake_llm.error = None
    result = await coordinator.submit_turn(session.session_id, TextInput("two"), recorder)

    assert result.succeeded is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancellation_releases_busy(coordinator, registry, recorder, fake_llm):
    """Test cancelling an in-flight turn (disconnect) still clears busy"""
    session = registry.create()
    fake_llm.gate = asyncio.Event()

    task = asyncio.create_task(coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder))
    await fake_llm.started.wait()
    assert session.busy is True

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert session.busy is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_emit_failure_abandons_turn(coordinator, registry, fake_llm):
    """Test a dead sink stops the turn without raising and releases busy"""
    session = registry.create()

    async def broken_emit(event):
        raise ConnectionError("socket closed")

    result = await coordinator.submit_turn(session.session_id, TextInput("Hi"), broken_emit)

    assert result.accepted is True
    assert result.succeeded is False
    assert fake_llm.calls == []
    assert session.busy is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_error_callback_receives_service_error(registry, recorder, fake_stt, fake_llm, fake_tts):
    fake_llm.error = RuntimeError("quota exceeded")
    captured = []

    async def on_error(event):
        captured.append(event)

    coordinator = TurnCoordinator(
        registry, fake_stt, fake_llm, fake_tts,
        settings=ServerSettings(), error_callback=on_error,
    )
    session = registry.create()

    await coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder)

    assert len(captured) == 1
    assert captured[0].service_name == "reply_generation"
    assert captured[0].error_kind == TurnErrorKind.SERVICE_FAILURE
    assert captured[0].session_id == session.session_id


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_session_raises(coordinator, recorder):
    with pytest.raises(KeyError):
        await coordinator.submit_turn("missing", TextInput("Hi"), recorder)


# ============================================================
# Clear History Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_clear_history_acknowledges(coordinator, registry, recorder):
    session = registry.create()
    await coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder)

    await coordinator.clear_history(session.session_id, recorder)

    assert recorder.names()[-1] == "context_cleared"
    assert session.history_snapshot() == ()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_clear_mid_turn_drops_stale_writes(coordinator, registry, recorder, fake_llm):
    """Test a clear during a turn leaves history empty and the turn still completes"""
    # ARRANGE
    session = registry.create()
    fake_llm.gate = asyncio.Event()
    task = asyncio.create_task(coordinator.submit_turn(session.session_id, TextInput("Hi"), recorder))
    await fake_llm.started.wait()

    # ACT
    await coordinator.clear_history(session.session_id, recorder)
    fake_llm.gate.set()
    result = await task

    # ASSERT
    assert result.succeeded is True
    assert "context_cleared" in recorder.names()
    assert recorder.sequence()[-1] == "status:complete"
    assert session.history_snapshot() == ()

    # The next turn starts from the cleared context
    await coordinator.submit_turn(session.session_id, TextInput("again"), recorder)
    assert fake_llm.calls[-1] == ("again", ("User: again",))
