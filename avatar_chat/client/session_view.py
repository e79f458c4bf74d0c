"""
Client Session View

Client-side state of one conversation: connection, local activity, the
message log, microphone permission and whether the avatar is speaking.
Driven by user actions (toggle_recording, send_text, clear_conversation) and
by server events delivered through the ChatSocketClient.

State:
- connection: disconnected | connected
- activity:   idle | recording | awaiting_response
- avatar_speaking follows the playback start/end signals only
"""

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, NamedTuple, Optional

from avatar_chat import protocol
from avatar_chat.client.audio_capture import AudioCaptureManager, CaptureError
from avatar_chat.client.events import EventBus
from avatar_chat.client.playback import PlaybackHandle, PlaybackManager
from avatar_chat.client.transport import ChatSocketClient, TransportError
from avatar_chat.config.logging_config import get_logger
from avatar_chat.protocol import ProcessingStage, ProtocolError, ServerEvent
from avatar_chat.types.error_events import TurnErrorKind

logger = get_logger(__name__)

STATE_CHANGED = "state_changed"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class Activity(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    AWAITING_RESPONSE = "awaiting_response"


class MicPermission(str, Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


class Sender(str, Enum):
    USER = "user"
    AI = "ai"
    SYSTEM = "system"


class MessageLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ViewState(NamedTuple):
    connection: ConnectionState
    activity: Activity


@dataclass
class ChatMessage:
    """One entry of the conversation log"""
    id: int
    sender: Sender
    text: str
    level: MessageLevel = MessageLevel.INFO
    timestamp: float = field(default_factory=time.time)
    dismissed: bool = False


STATUS_TEXT = {
    ProcessingStage.TRANSCRIBING.value: "Converting speech to text...",
    ProcessingStage.GENERATING_RESPONSE.value: "AI is thinking...",
    ProcessingStage.GENERATING_AUDIO.value: "Generating speech...",
}


class ClientSessionView:
    """
    Conversation state for one client.

    Usage:
        async with ClientSessionView(transport, capture, playback) as view:
            await view.connect()
            await view.send_text("Hello!")
    """

    def __init__(
        self,
        transport: ChatSocketClient,
        capture: Optional[AudioCaptureManager] = None,
        playback: Optional[PlaybackManager] = None,
    ):
        """
        Args:
            transport: Connected-or-not chat client
            capture: Microphone manager (None disables voice input)
            playback: Playback manager (None disables reply audio)
        """
        self.transport = transport
        self.capture = capture
        self.playback = playback

        self.connection = ConnectionState.DISCONNECTED
        self.activity = Activity.IDLE
        self.processing_status: Optional[dict] = None
        self.messages: List[ChatMessage] = []
        self.avatar_speaking = False
        self.mic_permission = MicPermission.UNKNOWN
        self.last_error: Optional[str] = None

        self._changes = EventBus()
        self._ids = itertools.count(1)
        self._closed = False

        transport.on("connected", self._on_connected)
        transport.on("disconnected", self._on_disconnected)
        transport.on(ServerEvent.USER_MESSAGE.value, self._on_user_message)
        transport.on(ServerEvent.AI_RESPONSE.value, self._on_ai_response)
        transport.on(ServerEvent.AUDIO_RESPONSE.value, self._on_audio_response)
        transport.on(ServerEvent.PROCESSING_STATUS.value, self._on_processing_status)
        transport.on(ServerEvent.ERROR.value, self._on_error)
        transport.on(ServerEvent.CONTEXT_CLEARED.value, self._on_context_cleared)

        if playback is not None:
            playback.on_playback_start(self._on_playback_start)
            playback.on_playback_end(self._on_playback_end)

    @property
    def state(self) -> ViewState:
        return ViewState(self.connection, self.activity)

    def status_text(self) -> str:
        status = (self.processing_status or {}).get("status")
        return STATUS_TEXT.get(status, "Processing...")

    def subscribe(self, callback: Callable[["ClientSessionView"], Any]) -> Callable[[], None]:
        """Call `callback(view)` after every state change; returns an unsubscribe function."""
        self._changes.on(STATE_CHANGED, callback)
        return lambda: self._changes.off(STATE_CHANGED, callback)

    async def _notify(self) -> None:
        await self._changes.emit(STATE_CHANGED, self)

    def _add_message(self, sender: Sender, text: str, level: MessageLevel = MessageLevel.INFO) -> ChatMessage:
        message = ChatMessage(id=next(self._ids), sender=sender, text=text, level=level)
        self.messages.append(message)
        return message

    async def dismiss(self, message_id: int) -> bool:
        for message in self.messages:
            if message.id == message_id:
                message.dismissed = True
                await self._notify()
                return True
        return False

    # ============================================================
    # User actions
    # ============================================================

    async def connect(self) -> bool:
        return await self.transport.connect()

    async def request_microphone(self) -> bool:
        """Acquire the microphone; records the outcome in mic_permission."""
        if self.capture is None:
            self.mic_permission = MicPermission.DENIED
            self._add_message(Sender.SYSTEM, "Audio input is disabled. You can still type messages.", MessageLevel.WARNING)
            await self._notify()
            return False

        try:
            self.capture.open()
        except CaptureError as e:
            self.mic_permission = MicPermission.DENIED
            self.last_error = f"Microphone error: {e.message}"
            logger.warning(f"⚠️ Microphone unavailable ({e.kind.value}): {e.message}")
            self._add_message(Sender.SYSTEM, "Microphone access denied. You can still type messages.", MessageLevel.WARNING)
            await self._notify()
            return False

        self.mic_permission = MicPermission.GRANTED
        self._add_message(Sender.SYSTEM, "Microphone access granted! 🎤")
        await self._notify()
        return True

    async def toggle_recording(self) -> None:
        """
        Record button.

        Without permission the first press only requests the microphone.
        Idle starts a recording; recording stops it and sends the clip.
        """
        if self.mic_permission != MicPermission.GRANTED:
            await self.request_microphone()
            return

        if self.connection != ConnectionState.CONNECTED:
            self.last_error = "Not connected to server"
            self._add_message(Sender.SYSTEM, "Not connected to server", MessageLevel.ERROR)
            await self._notify()
            return

        if self.activity == Activity.AWAITING_RESPONSE:
            logger.debug("Recording refused while awaiting a response")
            return

        if self.activity == Activity.RECORDING:
            await self._finish_recording()
        else:
            try:
                self.capture.start()
            except CaptureError as e:
                self.last_error = e.message
                self._add_message(Sender.SYSTEM, f"Error: {e.message}", MessageLevel.ERROR)
                await self._notify()
                return
            self.activity = Activity.RECORDING
            self.last_error = None
        await self._notify()

    async def _finish_recording(self) -> None:
        clip = self.capture.stop()
        if clip is None:
            self.activity = Activity.IDLE
            return

        try:
            await self.transport.send_audio_message(clip.data, clip.format)
        except TransportError as e:
            self.activity = Activity.IDLE
            self.last_error = str(e)
            self._add_message(Sender.SYSTEM, f"Error: {e}", MessageLevel.ERROR)
            return
        self.activity = Activity.AWAITING_RESPONSE

    async def send_text(self, text: str) -> bool:
        """Send a text turn; returns False when refused locally."""
        text = (text or "").strip()
        if not text:
            return False
        if self.connection != ConnectionState.CONNECTED or self.activity != Activity.IDLE:
            logger.debug(f"Text refused locally: state={self.state}")
            return False

        try:
            await self.transport.send_text_message(text)
        except TransportError as e:
            self.last_error = str(e)
            self._add_message(Sender.SYSTEM, f"Error: {e}", MessageLevel.ERROR)
            await self._notify()
            return False

        self.activity = Activity.AWAITING_RESPONSE
        self.last_error = None
        await self._notify()
        return True

    async def clear_conversation(self) -> None:
        if self.connection == ConnectionState.CONNECTED:
            try:
                await self.transport.clear_context()
                return
            except TransportError as e:
                logger.warning(f"⚠️ Could not clear remote context: {e}")
        self.messages.clear()
        await self._notify()

    # ============================================================
    # Server events
    # ============================================================

    async def _on_connected(self, data) -> None:
        self.connection = ConnectionState.CONNECTED
        self.last_error = None
        self._add_message(Sender.SYSTEM, "Connected to AI avatar! 🤖")
        await self._notify()

    async def _on_disconnected(self, data) -> None:
        self.connection = ConnectionState.DISCONNECTED
        if self.capture is not None and self.activity == Activity.RECORDING:
            self.capture.stop()
        self.activity = Activity.IDLE
        self.processing_status = None
        self._add_message(Sender.SYSTEM, "Disconnected from server 😞")
        await self._notify()

    async def _on_user_message(self, data) -> None:
        self._add_message(Sender.USER, (data or {}).get("text", ""))
        await self._notify()

    async def _on_ai_response(self, data) -> None:
        self._add_message(Sender.AI, (data or {}).get("text", ""))
        await self._notify()

    async def _on_audio_response(self, data) -> None:
        if self.playback is None:
            return
        data = data or {}
        try:
            audio = protocol.decode_audio(data.get("audioBuffer", ""))
        except ProtocolError as e:
            logger.error(f"❌ Bad audio_response payload: {e.message}")
            self._add_message(Sender.SYSTEM, "Error playing audio response", MessageLevel.ERROR)
            await self._notify()
            return
        await self.playback.play(audio, data.get("format", "mp3"))

    async def _on_processing_status(self, data) -> None:
        self.processing_status = data
        if (data or {}).get("status") == ProcessingStage.COMPLETE.value and self.activity == Activity.AWAITING_RESPONSE:
            self.activity = Activity.IDLE
        await self._notify()

    async def _on_error(self, data) -> None:
        data = data or {}
        message = data.get("message", "Unknown error")
        self.last_error = message
        self._add_message(Sender.SYSTEM, f"Error: {message}", MessageLevel.ERROR)

        # busy_rejected leaves the first turn outstanding
        if data.get("kind") != TurnErrorKind.BUSY_REJECTED.value and self.activity == Activity.AWAITING_RESPONSE:
            self.activity = Activity.IDLE
            self.processing_status = None
        await self._notify()

    async def _on_context_cleared(self, data) -> None:
        self.messages.clear()
        self._add_message(Sender.SYSTEM, "Conversation cleared")
        await self._notify()

    async def _on_playback_start(self, handle: PlaybackHandle) -> None:
        self.avatar_speaking = True
        await self._notify()

    async def _on_playback_end(self, handle: PlaybackHandle) -> None:
        self.avatar_speaking = False
        if handle.error is not None:
            self._add_message(Sender.SYSTEM, "Error playing audio response", MessageLevel.ERROR)
        await self._notify()

    # ============================================================
    # Teardown
    # ============================================================

    async def close(self) -> None:
        """Release playback, capture and transport; safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        try:
            if self.playback is not None:
                await self.playback.close()
        finally:
            try:
                if self.capture is not None:
                    self.capture.close()
            finally:
                await self.transport.disconnect()
                self.connection = ConnectionState.DISCONNECTED
                self.activity = Activity.IDLE
                self._changes.clear_listeners()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
