"""
Pytest configuration and shared fixtures for Avatar Chat tests
"""
import asyncio
from typing import AsyncGenerator, List, Optional

import pytest
from httpx import AsyncClient, ASGITransport

from avatar_chat.config.settings import ServerSettings, reset_settings
from avatar_chat.protocol import ProtocolEvent
from avatar_chat.services.session_service import SessionRegistry
from avatar_chat.services.turn_coordinator import TurnCoordinator


# ============================================================
# Settings
# ============================================================

@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop cached settings between tests so env changes take effect"""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def server_settings() -> ServerSettings:
    """Default server settings with short stage timeouts"""
    return ServerSettings(stt_timeout_s=2.0, llm_timeout_s=2.0, tts_timeout_s=2.0)


# ============================================================
# Fake collaborators
# ============================================================

class FakeSTT:
    """Transcription collaborator; optionally blocks on a gate before answering"""

    def __init__(self, transcript: str = "what is the weather like", error: Optional[Exception] = None):
        self.transcript = transcript
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def transcribe(self, audio: bytes, format_hint: str) -> str:
        self.calls.append((audio, format_hint))
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.transcript


class FakeLLM:
    """Reply collaborator recording the history it was given"""

    def __init__(self, reply: str = "It is sunny today!", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.delay = 0.0
        self.started = asyncio.Event()
        self.calls: List[tuple] = []

    async def generate_reply(self, text, recent_history) -> str:
        self.calls.append((text, tuple(recent_history)))
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.reply


class FakeTTS:
    """Synthesis collaborator returning fixed MP3-looking bytes"""

    def __init__(self, audio: bytes = b"ID3\x03fake-mp3-audio", error: Optional[Exception] = None):
        self.audio = audio
        self.error = error
        self.calls: List[tuple] = []

    async def synthesize(self, text: str, *, speaking_rate: float, pitch: float) -> bytes:
        self.calls.append((text, speaking_rate, pitch))
        if self.error:
            raise self.error
        return self.audio


class EventRecorder:
    """Async event sink collecting emitted protocol events"""

    def __init__(self):
        self.events: List[ProtocolEvent] = []

    async def __call__(self, event: ProtocolEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [e.event for e in self.events]

    def sequence(self) -> List[str]:
        """Event names with processing_status expanded to its stage"""
        return [
            f"status:{e.data['status']}" if e.event == "processing_status" else e.event
            for e in self.events
        ]

    def of(self, name: str) -> List[ProtocolEvent]:
        return [e for e in self.events if e.event == name]


@pytest.fixture
def fake_stt() -> FakeSTT:
    return FakeSTT()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_tts() -> FakeTTS:
    return FakeTTS()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(history_window=6)


@pytest.fixture
def coordinator(registry, fake_stt, fake_llm, fake_tts, server_settings) -> TurnCoordinator:
    return TurnCoordinator(registry, fake_stt, fake_llm, fake_tts, settings=server_settings)


# ============================================================
# FastAPI Test Client
# ============================================================

@pytest.fixture
def app_with_fakes(coordinator, registry):
    """
    FastAPI app whose websocket endpoint uses the fake collaborators

    Usage:
        def test_ws(app_with_fakes):
            with TestClient(app_with_fakes).websocket_connect("/ws/chat") as ws:
                ...
    """
    from avatar_chat.api.server import app, get_session_registry, get_turn_coordinator

    app.dependency_overrides[get_session_registry] = lambda: registry
    app.dependency_overrides[get_turn_coordinator] = lambda: coordinator
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def test_client(app_with_fakes) -> AsyncGenerator[AsyncClient, None]:
    """
    FastAPI test client using httpx AsyncClient

    Usage:
        async def test_endpoint(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app_with_fakes),
        base_url="http://test"
    ) as client:
        yield client
