"""
Chat Protocol

Wire contract between one client and the server over a single persistent
websocket. Every frame is a JSON text frame shaped as:

    {"event": "<name>", "data": {...} | null}

Client → Server:
- audio_message   {"audio": base64, "format": "webm"}   submit an audio turn
- text_message    {"text": "..."}                        submit a text turn
- clear_context   null                                   clear session history

Server → Client:
- processing_status  {"status": transcribing|generating_response|generating_audio|complete}
- user_message       {"text": "..."}
- ai_response        {"text": "..."}
- audio_response     {"audioBuffer": base64, "format": "mp3"}
- error              {"message": "...", "type": "...", "kind": "..."}
- context_cleared    null

Binary audio travels as base64 text inside the JSON envelope. Frames above
the configured ceiling are rejected as a whole, never truncated.
"""

import base64
import binascii
import json
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from avatar_chat.types.error_events import ErrorEventType, TurnErrorKind


class ClientEvent(str, Enum):
    """Events a client may send"""
    AUDIO_MESSAGE = "audio_message"
    TEXT_MESSAGE = "text_message"
    CLEAR_CONTEXT = "clear_context"


class ServerEvent(str, Enum):
    """Events the server emits"""
    PROCESSING_STATUS = "processing_status"
    USER_MESSAGE = "user_message"
    AI_RESPONSE = "ai_response"
    AUDIO_RESPONSE = "audio_response"
    ERROR = "error"
    CONTEXT_CLEARED = "context_cleared"


class ProcessingStage(str, Enum):
    """Turn stages announced through processing_status, in emission order"""
    TRANSCRIBING = "transcribing"
    GENERATING_RESPONSE = "generating_response"
    GENERATING_AUDIO = "generating_audio"
    COMPLETE = "complete"


class ProtocolError(Exception):
    """Frame could not be decoded into a protocol event."""

    def __init__(self, kind: TurnErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


class ProtocolEvent(BaseModel):
    """A named, payload-carrying message exchanged over the channel."""

    model_config = ConfigDict(frozen=True)

    event: str = Field(..., min_length=1, description="Event name")
    data: Optional[Dict[str, Any]] = Field(default=None, description="Event payload")


# ============================================================
# Client payloads
# ============================================================

class AudioMessage(BaseModel):
    """Payload of audio_message"""

    audio: str = Field(..., description="Base64-encoded audio clip")
    format: str = Field(default="webm", min_length=1, description="Container format of the clip")


class TextMessage(BaseModel):
    """Payload of text_message"""

    text: str = Field(..., description="Literal user text")


ClientPayload = Union[AudioMessage, TextMessage, None]


# ============================================================
# Codec
# ============================================================

def encode_audio(data: bytes) -> str:
    """Encode binary audio as base64 text for a JSON payload."""
    return base64.b64encode(data).decode('ascii')


def decode_audio(encoded: str) -> bytes:
    """
    Decode base64 audio from a JSON payload.

    Raises:
        ProtocolError: If the text is not valid base64
    """
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ProtocolError(TurnErrorKind.INVALID_INPUT, f"Invalid base64 audio payload: {e}") from e


def encode_event(event: ProtocolEvent) -> str:
    """Serialize an event into a JSON text frame."""
    return json.dumps({"event": event.event, "data": event.data})


def decode_event(raw: Union[str, bytes], max_bytes: Optional[int] = None) -> ProtocolEvent:
    """
    Parse a JSON text frame into a ProtocolEvent.

    Args:
        raw: Frame contents
        max_bytes: Optional ceiling on the frame size

    Raises:
        ProtocolError: Oversized frame, malformed JSON or missing event name
    """
    size = len(raw.encode('utf-8')) if isinstance(raw, str) else len(raw)
    if max_bytes is not None and size > max_bytes:
        raise ProtocolError(
            TurnErrorKind.PAYLOAD_TOO_LARGE,
            f"Message of {size} bytes exceeds the {max_bytes} byte limit"
        )

    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(TurnErrorKind.PROTOCOL_ERROR, f"Malformed message: {e}") from e

    if not isinstance(message, dict):
        raise ProtocolError(TurnErrorKind.PROTOCOL_ERROR, "Message must be a JSON object")

    data = message.get("data")
    if data is not None and not isinstance(data, dict):
        raise ProtocolError(TurnErrorKind.PROTOCOL_ERROR, "Message data must be a JSON object")

    try:
        return ProtocolEvent(event=message.get("event") or "", data=data)
    except ValidationError as e:
        raise ProtocolError(TurnErrorKind.PROTOCOL_ERROR, "Message is missing an event name") from e


def parse_client_payload(event: ProtocolEvent) -> ClientPayload:
    """
    Validate the payload of a client event.

    Returns:
        AudioMessage, TextMessage, or None for clear_context

    Raises:
        ProtocolError: Unknown event name or invalid payload
    """
    try:
        kind = ClientEvent(event.event)
    except ValueError:
        raise ProtocolError(TurnErrorKind.PROTOCOL_ERROR, f"Unknown event: {event.event}")

    if kind == ClientEvent.CLEAR_CONTEXT:
        return None

    try:
        if kind == ClientEvent.AUDIO_MESSAGE:
            return AudioMessage.model_validate(event.data or {})
        return TextMessage.model_validate(event.data or {})
    except ValidationError as e:
        raise ProtocolError(
            TurnErrorKind.INVALID_INPUT,
            f"Invalid {kind.value} payload: {e.errors()[0]['msg']}"
        ) from e


# ============================================================
# Server event constructors
# ============================================================

def processing_status(stage: ProcessingStage) -> ProtocolEvent:
    return ProtocolEvent(event=ServerEvent.PROCESSING_STATUS.value, data={"status": stage.value})


def user_message(text: str) -> ProtocolEvent:
    return ProtocolEvent(event=ServerEvent.USER_MESSAGE.value, data={"text": text})


def ai_response(text: str) -> ProtocolEvent:
    return ProtocolEvent(event=ServerEvent.AI_RESPONSE.value, data={"text": text})


def audio_response(audio: bytes, format: str = "mp3") -> ProtocolEvent:
    return ProtocolEvent(
        event=ServerEvent.AUDIO_RESPONSE.value,
        data={"audioBuffer": encode_audio(audio), "format": format}
    )


def error_event(message: str, type: ErrorEventType, kind: TurnErrorKind) -> ProtocolEvent:
    return ProtocolEvent(
        event=ServerEvent.ERROR.value,
        data={"message": message, "type": type.value, "kind": kind.value}
    )


def context_cleared() -> ProtocolEvent:
    return ProtocolEvent(event=ServerEvent.CONTEXT_CLEARED.value, data=None)


def client_event(kind: ClientEvent, data: Optional[Dict[str, Any]] = None) -> ProtocolEvent:
    """Build a client → server event."""
    return ProtocolEvent(event=kind.value, data=data)
