"""
Avatar Chat Services Package

This package contains the server-side service layer:
- session_service: Per-connection session state and registry
- turn_coordinator: Turn arbitration and the STT → LLM → TTS pipeline
- stt_service: Speech-to-Text adapter (Google Cloud Speech-to-Text)
- llm_service: Reply generation (Gemini or local LLM)
- tts_service: Text-to-Speech adapter (Google Cloud Text-to-Speech)
"""

from .session_service import ConversationSession, HistoryEntry, SessionRegistry
from .turn_coordinator import AudioInput, TextInput, TurnCoordinator, TurnResult
from .stt_service import STTService, STTError, get_stt_service
from .llm_service import LLMService, get_llm_service
from .tts_service import TTSService, TTSError, get_tts_service

__all__ = [
    "ConversationSession",
    "HistoryEntry",
    "SessionRegistry",
    "AudioInput",
    "TextInput",
    "TurnCoordinator",
    "TurnResult",
    "STTService",
    "STTError",
    "get_stt_service",
    "LLMService",
    "get_llm_service",
    "TTSService",
    "TTSError",
    "get_tts_service",
]
