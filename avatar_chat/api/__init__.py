"""
Avatar Chat API Module

Provides the FastAPI server: chat websocket plus health/status endpoints.
"""

from avatar_chat.api.server import app, get_session_registry, get_turn_coordinator

__all__ = ['app', 'get_session_registry', 'get_turn_coordinator']
