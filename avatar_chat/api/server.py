#!/usr/bin/env python3
"""
============================================================
Avatar Chat API Server
FastAPI application serving the chat websocket and a small
administrative HTTP surface:
- /ws/chat           Chat websocket (one session per connection)
- GET /health        Liveness probe
- GET /              Service descriptor
- GET /status        Live sessions and their busy flags
- GET /api/voices    Voices offered by the TTS backend
============================================================
"""

from datetime import datetime, timezone

from fastapi import Depends, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from avatar_chat.config.logging_config import get_logger
from avatar_chat.config.settings import get_settings
from avatar_chat.services.llm_service import get_llm_service
from avatar_chat.services.session_service import SessionRegistry
from avatar_chat.services.stt_service import get_stt_service
from avatar_chat.services.tts_service import TTSService, get_tts_service
from avatar_chat.services.turn_coordinator import TurnCoordinator
from avatar_chat.voice.websocket_handler import ChatSocketHandler

logger = get_logger(__name__)

# ============================================================
# SERVICE INSTANCES
# ============================================================

settings = get_settings()
stt_service = get_stt_service()
llm_service = get_llm_service()
tts_service = get_tts_service()

session_registry = SessionRegistry(history_window=settings.history_window)
turn_coordinator = TurnCoordinator(
    registry=session_registry,
    stt=stt_service,
    llm=llm_service,
    tts=tts_service,
    settings=settings,
)

# ============================================================
# FAST API SETUP
# ============================================================

app = FastAPI(
    title="AI Avatar Chat Backend",
    description="Voice and text conversation backend for the AI avatar",
    version=settings.version,
)

# CORS middleware for cross-origin WebSocket and HTTP requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ============================================================
# DEPENDENCY INJECTION PROVIDERS
# ============================================================

def get_session_registry() -> SessionRegistry:
    """Registry shared by all websocket connections."""
    return session_registry


def get_turn_coordinator() -> TurnCoordinator:
    """Coordinator shared by all websocket connections."""
    return turn_coordinator


def get_voice_service() -> TTSService:
    return tts_service

# ============================================================
# SERVICE STARTUP/SHUTDOWN
# ============================================================

@app.on_event("startup")
async def startup_services():
    logger.info(
        f"🚀 Avatar chat backend starting (environment={settings.environment}, "
        f"max_message_bytes={settings.max_message_bytes}, history_window={settings.history_window})"
    )


@app.on_event("shutdown")
async def shutdown_services():
    """Cleanup services on shutdown"""
    logger.info("🛑 Shutting down services...")

    await stt_service.close()
    await llm_service.close()
    await tts_service.close()

    logger.info("✅ Services shutdown complete")

# ============================================================
# HEALTH & STATUS ENDPOINTS
# ============================================================

@app.get("/health")
async def health_check():
    """Liveness probe."""
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "version": settings.version,
    }


@app.get("/")
async def root():
    return {
        "name": "AI Avatar Chat Backend",
        "version": settings.version,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "status": "/status",
            "voices": "/api/voices",
            "websocket": "/ws/chat",
        },
    }


@app.get("/status")
async def get_status(registry: SessionRegistry = Depends(get_session_registry)):
    """Live sessions and whether each has a turn in flight"""
    sessions = [session.to_status() for session in registry]
    return {
        "active_sessions": len(sessions),
        "busy_sessions": sum(1 for s in sessions if s["busy"]),
        "sessions": sessions,
    }


@app.get("/api/voices")
async def get_voices(language_code: str = "en-US", tts: TTSService = Depends(get_voice_service)):
    """
    Get available TTS voices.

    Returns an empty list when the TTS backend cannot be reached.
    """
    voices = await tts.list_voices(language_code)
    return {"language_code": language_code, "voices": voices}

# ============================================================
# CHAT WEBSOCKET
# ============================================================

@app.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_session_registry),
    coordinator: TurnCoordinator = Depends(get_turn_coordinator),
):
    """
    WebSocket endpoint for avatar conversations

    Protocol:
    - Client → Server: audio_message, text_message, clear_context
    - Server → Client: processing_status, user_message, ai_response,
      audio_response, error, context_cleared

    The handler owns accept, the receive loop and teardown.
    """
    handler = ChatSocketHandler(websocket, registry, coordinator, settings)
    await handler.start()
