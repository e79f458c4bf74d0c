"""
Avatar Chat client: websocket transport, microphone capture, playback and the
conversation view driven by server events.
"""

from .audio_capture import AudioCaptureManager, AudioClip, CaptureError, detect_audio_format
from .events import EventBus
from .playback import PlaybackHandle, PlaybackManager
from .session_view import ClientSessionView
from .transport import ChatSocketClient, TransportError

__all__ = [
    "AudioCaptureManager",
    "AudioClip",
    "CaptureError",
    "detect_audio_format",
    "EventBus",
    "PlaybackHandle",
    "PlaybackManager",
    "ClientSessionView",
    "ChatSocketClient",
    "TransportError",
]
