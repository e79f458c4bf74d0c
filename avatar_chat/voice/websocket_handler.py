"""
============================================================
Chat WebSocket Handler
Handles one browser/terminal client over a persistent websocket:
- Creates the connection's session on accept
- Decodes JSON frames into protocol events
- Dispatches audio/text turns to the TurnCoordinator as tasks
- Serializes all outgoing events through one locked sender
- Turns are handed a sender that fails once the socket is gone, so they stop early
- Removes the session and cancels in-flight turns on teardown

The receive loop never awaits a turn, so a message that arrives while a
turn is in flight reaches the coordinator and is rejected as busy.
============================================================
"""

import asyncio
from typing import Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from avatar_chat import protocol
from avatar_chat.config.logging_config import get_logger
from avatar_chat.config.settings import ServerSettings, get_settings
from avatar_chat.protocol import (
    AudioMessage,
    ClientEvent,
    ProtocolError,
    ProtocolEvent,
    TextMessage,
)
from avatar_chat.services.session_service import SessionRegistry
from avatar_chat.services.turn_coordinator import AudioInput, TextInput, TurnCoordinator, TurnInput
from avatar_chat.types.error_events import ErrorEventType, TurnErrorKind

logger = get_logger(__name__)


class ChatSocketHandler:
    """
    Per-connection websocket handler.

    Lifecycle:
    1. Accept websocket, create session
    2. Receive loop: decode → dispatch (turns run as background tasks)
    3. Cleanup on any exit path: cancel turns, remove session, close socket
    """

    def __init__(
        self,
        websocket: WebSocket,
        registry: SessionRegistry,
        coordinator: TurnCoordinator,
        settings: Optional[ServerSettings] = None,
    ):
        """
        Args:
            websocket: FastAPI WebSocket connection (not yet accepted)
            registry: Session registry shared by all connections
            coordinator: Turn coordinator shared by all connections
            settings: Server settings (defaults to global settings)
        """
        self.websocket = websocket
        self.registry = registry
        self.coordinator = coordinator
        self.settings = settings or get_settings()
        self.session_id: Optional[str] = None
        self.is_active = False

        self._send_lock = asyncio.Lock()
        self._turn_tasks: Set[asyncio.Task] = set()

    async def start(self):
        """
        Run the connection until the client disconnects.

        Main loop:
        1. Accept the websocket and create the session
        2. Receive frames and dispatch them
        3. Clean up
        """
        try:
            await self.websocket.accept()
            self.session_id = self.registry.create().session_id
            self.is_active = True
            logger.info(f"🔌 Client connected: session={self.session_id}")

            await self._receive_loop()

        except WebSocketDisconnect as e:
            logger.info(f"🔌 Client disconnected: session={self.session_id} (code={e.code})")
        except Exception as e:
            logger.error(f"❌ Error in chat handler: session={self.session_id}: {e}", exc_info=True)
        finally:
            await self._cleanup()

    async def _receive_loop(self):
        while self.is_active:
            message = await self.websocket.receive()

            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            logger.trace(f"🔍 Frame received: session={self.session_id}, {len(raw)} chars/bytes")

            try:
                event = protocol.decode_event(raw, max_bytes=self.settings.max_message_bytes)
            except ProtocolError as e:
                logger.warning(f"⚠️ Rejected frame: session={self.session_id}, kind={e.kind.value}: {e.message}")
                await self.send_event(protocol.error_event(e.message, ErrorEventType.PROTOCOL_ERROR, e.kind))
                continue

            await self._dispatch(event)

    async def _dispatch(self, event: ProtocolEvent):
        try:
            payload = protocol.parse_client_payload(event)
        except ProtocolError as e:
            logger.warning(f"⚠️ Invalid event: session={self.session_id}, event={event.event}: {e.message}")
            await self.send_event(protocol.error_event(e.message, self._error_type_for(event.event), e.kind))
            return

        if event.event == ClientEvent.CLEAR_CONTEXT.value:
            await self.coordinator.clear_history(self.session_id, self.emit_event)
            return

        if isinstance(payload, AudioMessage):
            try:
                audio = protocol.decode_audio(payload.audio)
            except ProtocolError as e:
                await self.send_event(protocol.error_event(
                    e.message, ErrorEventType.AUDIO_PROCESSING_ERROR, TurnErrorKind.INVALID_INPUT
                ))
                return
            logger.debug(f"🎙️ Audio message: session={self.session_id}, {len(audio)} bytes, format={payload.format}")
            self._start_turn(AudioInput(audio=audio, format=payload.format))
        elif isinstance(payload, TextMessage):
            logger.debug(f"💬 Text message: session={self.session_id}, \"{payload.text[:50]}\"")
            self._start_turn(TextInput(text=payload.text))

    def _start_turn(self, turn_input: TurnInput):
        task = asyncio.create_task(
            self.coordinator.submit_turn(self.session_id, turn_input, self.emit_event)
        )
        self._turn_tasks.add(task)
        task.add_done_callback(self._on_turn_done)

    def _on_turn_done(self, task: asyncio.Task):
        self._turn_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"❌ Turn task crashed: session={self.session_id}: {task.exception()!r}")

    @staticmethod
    def _error_type_for(event_name: str) -> ErrorEventType:
        if event_name == ClientEvent.AUDIO_MESSAGE.value:
            return ErrorEventType.AUDIO_PROCESSING_ERROR
        if event_name == ClientEvent.TEXT_MESSAGE.value:
            return ErrorEventType.TEXT_PROCESSING_ERROR
        return ErrorEventType.PROTOCOL_ERROR

    async def emit_event(self, event: ProtocolEvent):
        """
        Send one event; sends never interleave.

        Raises:
            ConnectionError: The websocket is closed, or the send failed
                (the connection is marked inactive first)
        """
        async with self._send_lock:
            if not self.is_active:
                raise ConnectionError("connection closed")

            try:
                await self.websocket.send_text(protocol.encode_event(event))
            except Exception as e:
                self.is_active = False
                raise ConnectionError(f"send failed: {e}") from e

    async def send_event(self, event: ProtocolEvent):
        """Send one event, dropping it once the connection is gone."""
        try:
            await self.emit_event(event)
        except ConnectionError as e:
            logger.debug(f"⏭️ Skipping {event.event} send: {e}")

    async def _cleanup(self):
        """Cancel in-flight turns, drop the session and close the socket"""
        logger.debug(f"🧹 Cleaning up chat handler: session={self.session_id}")

        self.is_active = False

        tasks = list(self._turn_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"🛑 Cancelled {len(tasks)} in-flight turn(s): session={self.session_id}")

        if self.session_id is not None:
            self.registry.remove(self.session_id)

        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"WebSocket already closed: {e}")

        logger.info(f"✅ Chat handler cleanup complete: session={self.session_id}")
