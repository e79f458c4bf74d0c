"""
Settings Module

Server and client configuration loaded from environment variables with
fallback defaults.

Architecture:
- Environment variables (this module) → singleton → handler / coordinator / client
"""

import os
from dataclasses import dataclass, field
from typing import List


DEFAULT_MAX_MESSAGE_BYTES = 50 * 1024 * 1024  # 50 MiB, base64 audio included

# Firebase Hosting, Firebase app and Cloud Run domains
DEFAULT_CORS_ORIGIN_REGEX = r"https://.*\.(web\.app|firebaseapp\.com|run\.app)"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ['true', '1', 'yes']


def _default_cors_origins() -> List[str]:
    origins = ['http://localhost:3000']
    frontend_url = os.getenv('FRONTEND_URL')
    if frontend_url:
        origins.insert(0, frontend_url)
    return origins


@dataclass
class ServerSettings:
    """
    Configuration for the chat server.

    Controls the HTTP/websocket surface, the per-session history window,
    the stage timeouts of a turn and the fixed prosody used for replies.
    """

    host: str = '0.0.0.0'
    port: int = 8080
    environment: str = 'development'
    version: str = '1.0.0'

    cors_origins: List[str] = field(default_factory=_default_cors_origins)
    cors_origin_regex: str = DEFAULT_CORS_ORIGIN_REGEX

    # Largest accepted websocket frame; bigger frames are rejected, never truncated
    max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES

    # Most recent history entries kept per session (3 user + AI pairs)
    history_window: int = 6

    # Per-stage bounds on external service calls (seconds)
    stt_timeout_s: float = 30.0
    llm_timeout_s: float = 60.0
    tts_timeout_s: float = 30.0

    # Prosody tuned for conversational delivery
    speaking_rate: float = 1.1
    pitch: float = 2.0

    def validate(self) -> None:
        """Validate configuration values."""
        if not 1 <= self.port <= 65535:
            raise ValueError("port must be between 1 and 65535")
        if self.max_message_bytes < 1024:
            raise ValueError("max_message_bytes must be at least 1024")
        if self.history_window < 0:
            raise ValueError("history_window must not be negative")
        for name in ('stt_timeout_s', 'llm_timeout_s', 'tts_timeout_s'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if not 0.25 <= self.speaking_rate <= 4.0:
            raise ValueError("speaking_rate must be between 0.25 and 4.0")
        if not -20.0 <= self.pitch <= 20.0:
            raise ValueError("pitch must be between -20.0 and 20.0")


@dataclass
class ClientSettings:
    """Configuration for the terminal client and its audio devices."""

    backend_url: str = 'ws://localhost:8080/ws/chat'
    connect_timeout_s: float = 20.0
    reconnect_attempts: int = 3
    max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES

    # Microphone capture
    sample_rate: int = 44100
    channels: int = 1

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.backend_url.startswith(('ws://', 'wss://')):
            raise ValueError("backend_url must be a ws:// or wss:// URL")
        if self.connect_timeout_s <= 0:
            raise ValueError("connect_timeout_s must be positive")
        if self.reconnect_attempts < 1:
            raise ValueError("reconnect_attempts must be at least 1")
        if self.channels not in (1, 2):
            raise ValueError("channels must be 1 or 2")


def load_server_settings() -> ServerSettings:
    """
    Load server settings from environment variables.

    Environment Variables:
        HOST / PORT: Bind address (default: 0.0.0.0:8080)
        ENVIRONMENT: Reported by /health (default: development)
        FRONTEND_URL: Extra allowed CORS origin
        MAX_MESSAGE_BYTES: Largest websocket frame (default: 50 MiB)
        HISTORY_WINDOW: History entries kept per session (default: 6)
        STT_TIMEOUT_S / LLM_TIMEOUT_S / TTS_TIMEOUT_S: Stage timeouts
        TTS_SPEAKING_RATE / TTS_PITCH: Reply prosody (default: 1.1 / 2.0)

    Returns:
        ServerSettings with values loaded from environment or defaults
    """
    settings = ServerSettings(
        host=os.getenv('HOST', '0.0.0.0'),
        port=int(os.getenv('PORT', '8080')),
        environment=os.getenv('ENVIRONMENT', os.getenv('NODE_ENV', 'development')),
        max_message_bytes=int(os.getenv('MAX_MESSAGE_BYTES', str(DEFAULT_MAX_MESSAGE_BYTES))),
        history_window=int(os.getenv('HISTORY_WINDOW', '6')),
        stt_timeout_s=float(os.getenv('STT_TIMEOUT_S', '30')),
        llm_timeout_s=float(os.getenv('LLM_TIMEOUT_S', '60')),
        tts_timeout_s=float(os.getenv('TTS_TIMEOUT_S', '30')),
        speaking_rate=float(os.getenv('TTS_SPEAKING_RATE', '1.1')),
        pitch=float(os.getenv('TTS_PITCH', '2.0')),
    )

    settings.validate()
    return settings


def load_client_settings() -> ClientSettings:
    """
    Load client settings from environment variables.

    Environment Variables:
        AVATAR_CHAT_BACKEND_URL: Websocket URL of the chat endpoint
        AVATAR_CHAT_CONNECT_TIMEOUT_S: Connect timeout (default: 20)
        AVATAR_CHAT_RECONNECT_ATTEMPTS: Connect attempts (default: 3)
        MAX_MESSAGE_BYTES: Largest websocket frame (default: 50 MiB)
        AVATAR_CHAT_SAMPLE_RATE / AVATAR_CHAT_CHANNELS: Microphone format
    """
    settings = ClientSettings(
        backend_url=os.getenv('AVATAR_CHAT_BACKEND_URL', 'ws://localhost:8080/ws/chat'),
        connect_timeout_s=float(os.getenv('AVATAR_CHAT_CONNECT_TIMEOUT_S', '20')),
        reconnect_attempts=int(os.getenv('AVATAR_CHAT_RECONNECT_ATTEMPTS', '3')),
        max_message_bytes=int(os.getenv('MAX_MESSAGE_BYTES', str(DEFAULT_MAX_MESSAGE_BYTES))),
        sample_rate=int(os.getenv('AVATAR_CHAT_SAMPLE_RATE', '44100')),
        channels=int(os.getenv('AVATAR_CHAT_CHANNELS', '1')),
    )

    settings.validate()
    return settings


# Global singleton instances
_server_settings: ServerSettings | None = None
_client_settings: ClientSettings | None = None


def get_settings() -> ServerSettings:
    """Get global server settings singleton (loaded on first call)."""
    global _server_settings
    if _server_settings is None:
        _server_settings = load_server_settings()
    return _server_settings


def get_client_settings() -> ClientSettings:
    """Get global client settings singleton (loaded on first call)."""
    global _client_settings
    if _client_settings is None:
        _client_settings = load_client_settings()
    return _client_settings


def reset_settings() -> None:
    """Drop cached settings so the next call reloads from the environment."""
    global _server_settings, _client_settings
    _server_settings = None
    _client_settings = None
