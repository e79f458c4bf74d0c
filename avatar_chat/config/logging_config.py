"""
Tiered Logging Configuration for Avatar Chat

Provides a flexible logging system with 5 levels:
- TRACE (5): Ultra-verbose debugging (raw frames, payload sizes)
- DEBUG (10): Detailed debugging (checkpoints, state changes)
- INFO (20): Standard operational messages (connections, completed turns)
- WARN (30): Warnings (rejected turns, recoverable errors)
- ERROR (40): Errors (exceptions, failures)

Environment Variables:
- LOG_LEVEL: Global log level (TRACE, DEBUG, INFO, WARN, ERROR) [default: INFO]
- LOG_LEVEL_VOICE: Override for the websocket handler (per-connection transport)
- LOG_LEVEL_SESSION: Override for session registry and turn coordinator
- LOG_LEVEL_STT: Override for STT service (Google Speech-to-Text)
- LOG_LEVEL_LLM: Override for LLM service and providers
- LOG_LEVEL_TTS: Override for TTS service (Google Text-to-Speech)
- LOG_LEVEL_CLIENT: Override for client modules (transport, capture, playback, view)

Example Usage:
    from avatar_chat.config.logging_config import get_logger

    logger = get_logger(__name__)
    logger.trace("🔍 Raw frame: %d bytes", len(frame))
    logger.debug("🎙️ Checkpoint: transcript resolved")
    logger.info("✅ Turn complete")
    logger.warning("⚠️ Turn rejected, session busy")
    logger.error("❌ Failed to synthesize speech: %s", error)
"""

import logging
import os
from typing import Optional


# Define custom TRACE level (more verbose than DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def trace(self, message, *args, **kwargs):
    """Log a message with severity 'TRACE'."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kwargs)


# Add trace method to Logger class
logging.Logger.trace = trace


# Module name mapping: Python module path → Logical service name
MODULE_NAME_MAP = {
    "avatar_chat.voice.websocket_handler": "avatar_chat.voice",
    "avatar_chat.api.server": "avatar_chat.voice",
    "avatar_chat.services.session_service": "avatar_chat.session",
    "avatar_chat.services.turn_coordinator": "avatar_chat.session",
    "avatar_chat.services.stt_service": "avatar_chat.stt",
    "avatar_chat.services.llm_service": "avatar_chat.llm",
    "avatar_chat.llm.gemini": "avatar_chat.llm",
    "avatar_chat.llm.local_llm": "avatar_chat.llm",
    "avatar_chat.llm.factory": "avatar_chat.llm",
    "avatar_chat.services.tts_service": "avatar_chat.tts",
    "avatar_chat.client.transport": "avatar_chat.client",
    "avatar_chat.client.events": "avatar_chat.client",
    "avatar_chat.client.audio_capture": "avatar_chat.client",
    "avatar_chat.client.playback": "avatar_chat.client",
    "avatar_chat.client.session_view": "avatar_chat.client",
    "avatar_chat.client.cli": "avatar_chat.client",
}

OVERRIDE_AREAS = ["VOICE", "SESSION", "STT", "LLM", "TTS", "CLIENT"]


def get_log_level(module_name: str, default: str = "INFO") -> int:
    """
    Get the log level for a module, checking both module-specific and global env vars.

    Priority:
    1. Area-specific env var (LOG_LEVEL_VOICE, LOG_LEVEL_STT, etc.)
    2. Global LOG_LEVEL env var
    3. Default level (INFO)

    Args:
        module_name: Python module name (e.g., "avatar_chat.voice.websocket_handler")
        default: Default log level if no env vars set

    Returns:
        Numeric log level (5=TRACE, 10=DEBUG, 20=INFO, 30=WARN, 40=ERROR)
    """
    logical_name = MODULE_NAME_MAP.get(module_name)

    service_name: Optional[str] = None
    if logical_name and "." in logical_name:
        service_name = logical_name.split(".")[-1].upper()

    if service_name:
        module_level = os.getenv(f"LOG_LEVEL_{service_name}")
        if module_level:
            return _parse_log_level(module_level)

    global_level = os.getenv("LOG_LEVEL")
    if global_level:
        return _parse_log_level(global_level)

    return _parse_log_level(default)


def _parse_log_level(level_str: str) -> int:
    """
    Parse log level string to numeric value.

    Unknown names fall back to INFO.
    """
    level_map = {
        "TRACE": TRACE,
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARN": logging.WARNING,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return level_map.get(level_str.upper(), logging.INFO)


def configure_logging(default_level: str = "INFO") -> None:
    """
    Configure logging system with tiered levels and per-area control.

    Called once at process startup (server entry point and terminal client).

    Args:
        default_level: Default log level if LOG_LEVEL env var not set
    """
    global_level = os.getenv("LOG_LEVEL", default_level)
    numeric_level = _parse_log_level(global_level)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    # Loggers created at import time picked up the level in effect back then
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("avatar_chat"):
            logging.getLogger(name).setLevel(get_log_level(name, global_level))

    root_logger = logging.getLogger()
    root_logger.info(f"🚀 Logging system initialized (global level: {global_level})")

    module_overrides = []
    for area in OVERRIDE_AREAS:
        override = os.getenv(f"LOG_LEVEL_{area}")
        if override:
            module_overrides.append(f"{area}={override}")

    if module_overrides:
        root_logger.info(f"📋 Module overrides: {', '.join(module_overrides)}")


def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for a module with appropriate log level.

    This is the main entry point for getting loggers in Avatar Chat code.

    Args:
        module_name: Python module name (use __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(module_name)
    logger.setLevel(get_log_level(module_name))
    return logger
