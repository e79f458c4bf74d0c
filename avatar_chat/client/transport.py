#!/usr/bin/env python3
"""
============================================================
Chat WebSocket Client
Client side of the chat protocol:
- Connects to the backend websocket with retry/backoff
- Decodes incoming frames and dispatches them on an EventBus
- Sends audio_message / text_message / clear_context
- Emits connected / disconnected / error(connection_error)
- Reconnects after a server-side close
============================================================
"""

import asyncio
from typing import Any, Callable, Optional

import websockets
import websockets.exceptions
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from avatar_chat import protocol
from avatar_chat.client.events import EventBus
from avatar_chat.config.logging_config import get_logger
from avatar_chat.config.settings import ClientSettings, get_client_settings
from avatar_chat.protocol import ClientEvent, ProtocolError
from avatar_chat.types.error_events import ErrorEventType, TurnErrorKind

logger = get_logger(__name__)

CONNECTED = "connected"
DISCONNECTED = "disconnected"
ERROR = "error"


class TransportError(Exception):
    """Raised when sending without an open connection."""
    pass


class ChatSocketClient:
    """WebSocket client for the avatar chat backend with connect retry"""

    def __init__(
        self,
        url: Optional[str] = None,
        bus: Optional[EventBus] = None,
        settings: Optional[ClientSettings] = None,
        connect: Optional[Callable[..., Any]] = None,
        retry_wait=None,
        auto_reconnect: bool = True,
    ):
        """
        Args:
            url: Backend websocket URL (defaults to settings)
            bus: Event bus for incoming events (a new one when omitted)
            settings: Client settings (defaults to global client settings)
            connect: Connection factory, `websockets.connect` by default
            retry_wait: tenacity wait strategy between connect attempts
            auto_reconnect: Reconnect with the same backoff after a server-side close
        """
        self.settings = settings or get_client_settings()
        self.backend_url = url or self.settings.backend_url
        self.bus = bus or EventBus()
        self.ws = None

        self._connect = connect or websockets.connect
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)
        self.auto_reconnect = auto_reconnect
        self._receive_task: Optional[asyncio.Task] = None
        self._connected = False
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def on(self, event: str, callback: Callable[[Any], Any]) -> None:
        self.bus.on(event, callback)

    def off(self, event: str, callback: Callable[[Any], Any]) -> None:
        self.bus.off(event, callback)

    async def connect(self) -> bool:
        """
        Connect to the backend, retrying with exponential backoff.

        Returns:
            True when connected; False after the final failed attempt
            (an `error` event with type connection_error has been emitted)
        """
        if self._connected:
            return True

        self._closing = False
        return await self._establish()

    async def _establish(self) -> bool:
        try:
            ws = await self._open_with_retry()
        except Exception as e:
            logger.error(f"❌ Failed to connect to {self.backend_url}: {e}")
            await self.bus.emit(ERROR, {
                "message": f"Connection failed: {e}",
                "type": ErrorEventType.CONNECTION_ERROR.value,
                "kind": TurnErrorKind.CONNECTION_ERROR.value,
            })
            return False

        if self._closing:
            # disconnect() ran while the connection was opening
            await ws.close()
            return False

        self.ws = ws
        self._connected = True
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info(f"✅ Connected to {self.backend_url}")
        await self.bus.emit(CONNECTED, {"url": self.backend_url})
        return True

    async def _open_with_retry(self):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.reconnect_attempts),
            wait=self._retry_wait,
            retry=retry_if_exception_type((OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException)),
            reraise=True,
        ):
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                logger.info(f"🔌 Connecting to {self.backend_url} (attempt {attempt_number})")
                return await self._connect(
                    self.backend_url,
                    max_size=self.settings.max_message_bytes,
                    open_timeout=self.settings.connect_timeout_s,
                )

    async def _receive_loop(self) -> None:
        """Listen for incoming frames and dispatch them by event name"""
        try:
            async for raw in self.ws:
                try:
                    event = protocol.decode_event(raw, max_bytes=self.settings.max_message_bytes)
                except ProtocolError as e:
                    logger.warning(f"⚠️ Ignoring undecodable frame: {e.message}")
                    continue
                logger.trace(f"🔍 Received {event.event}")
                await self.bus.emit(event.event, event.data)
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"🔌 Connection closed: {e}")
        except Exception as e:
            logger.error(f"❌ Error in receive loop: {e}", exc_info=True)
        finally:
            self._connected = False

        if self._closing:
            return
        await self.bus.emit(DISCONNECTED, {"url": self.backend_url})

        if self.auto_reconnect and not self._closing:
            logger.info(f"🔄 Server closed the connection, reconnecting to {self.backend_url}")
            await self._establish()

    async def _send(self, kind: ClientEvent, data: Optional[dict] = None) -> None:
        if not self._connected or self.ws is None:
            raise TransportError("Not connected to server")
        try:
            await self.ws.send(protocol.encode_event(protocol.client_event(kind, data)))
        except websockets.exceptions.ConnectionClosed as e:
            raise TransportError(f"Connection lost while sending {kind.value}: {e}") from e

    async def send_audio_message(self, audio: bytes, format: str = "webm") -> None:
        logger.debug(f"📤 Sending audio_message ({len(audio)} bytes, format={format})")
        await self._send(ClientEvent.AUDIO_MESSAGE, {"audio": protocol.encode_audio(audio), "format": format})

    async def send_text_message(self, text: str) -> None:
        logger.debug(f"📤 Sending text_message ({len(text)} chars)")
        await self._send(ClientEvent.TEXT_MESSAGE, {"text": text})

    async def clear_context(self) -> None:
        await self._send(ClientEvent.CLEAR_CONTEXT)

    async def disconnect(self) -> None:
        """Close the connection and drop all listeners; safe to call repeatedly"""
        self._closing = True
        self._connected = False

        if self._receive_task and not self._receive_task.done():
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
        self._receive_task = None

        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as e:
                logger.debug(f"WebSocket already closed: {e}")
            self.ws = None
            logger.info(f"👋 Disconnected from {self.backend_url}")

        self.bus.clear_listeners()
