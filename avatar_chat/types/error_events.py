"""
Avatar Chat Error Event System

Purpose: Standardized error taxonomy for turn-to-client error propagation.
Every failed turn stage is converted into exactly one `error` protocol event;
the structured ServiceErrorEvent is what gets logged server-side.

Key Features:
- Typed error kinds (TurnErrorKind enum)
- Wire-level error types matching the chat protocol (ErrorEventType enum)
- TurnError exception raised inside a turn and converted at the turn boundary
- User-friendly messages (for the conversation log)
- Technical details (for server logs)
- Session context tracking and severity levels
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TurnErrorKind(str, Enum):
    """
    Enumeration of all error kinds.

    Categories:
    - Turn arbitration: busy_rejected
    - Turn stages: no_speech_detected, service_failure, invalid_input
    - Transport: payload_too_large, protocol_error, connection_error
    - Client capture: permission_denied, device_unavailable
    """

    BUSY_REJECTED = "busy_rejected"
    NO_SPEECH_DETECTED = "no_speech_detected"
    SERVICE_FAILURE = "service_failure"
    INVALID_INPUT = "invalid_input"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    PROTOCOL_ERROR = "protocol_error"
    CONNECTION_ERROR = "connection_error"
    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"


class ErrorEventType(str, Enum):
    """Value of the `type` field carried by `error` events on the wire."""

    AUDIO_PROCESSING_ERROR = "audio_processing_error"
    TEXT_PROCESSING_ERROR = "text_processing_error"
    CONNECTION_ERROR = "connection_error"
    BUSY_REJECTED = "busy_rejected"
    PROTOCOL_ERROR = "protocol_error"


class TurnError(Exception):
    """
    Failure of a single turn stage.

    Raised by the turn coordinator's stages and caught at the turn boundary,
    where it becomes one `error` event. Never escapes a turn.
    """

    def __init__(self, kind: TurnErrorKind, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.stage = stage

    def __repr__(self) -> str:
        return f"TurnError(kind={self.kind.value!r}, stage={self.stage!r}, message={self.message!r})"


class ServiceErrorEvent(BaseModel):
    """
    Structured record of a failed turn stage.

    Attributes:
        event_type: Always "service_error" for log routing
        service_name: Which collaborator failed ("speech_to_text", "reply_generation", "speech_synthesis")
        error_kind: Error category (see TurnErrorKind)
        user_message: Human-readable message sent to the client
        technical_details: Detailed error info for server logs and debugging
        session_id: Session the failing turn belongs to
        severity: Error severity level ("warning", "error", "critical")
        retry_suggested: Whether the user can simply try again

    Example:
        ```python
        error_event = ServiceErrorEvent(
            service_name="speech_synthesis",
            error_kind=TurnErrorKind.SERVICE_FAILURE,
            user_message="Failed to generate speech",
            technical_details="TTSError: HTTP 503 from texttospeech.googleapis.com",
            session_id="550e8400-e29b-41d4-a716-446655440000",
        )
        ```
    """

    model_config = ConfigDict(use_enum_values=True)

    event_type: Literal["service_error"] = "service_error"
    service_name: str = Field(
        ...,
        description="Collaborator that encountered the error",
        examples=["speech_to_text", "reply_generation", "speech_synthesis"]
    )
    error_kind: TurnErrorKind = Field(
        ...,
        description="Error category"
    )
    user_message: str = Field(
        ...,
        description="User-friendly error message for the conversation log",
        min_length=1,
        max_length=500
    )
    technical_details: str = Field(
        ...,
        description="Technical error details for server logs",
        min_length=1,
        max_length=2000
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Session id if error is session-specific"
    )
    severity: str = Field(
        default="error",
        description="Error severity level",
        pattern="^(warning|error|critical)$"
    )
    retry_suggested: bool = Field(
        default=True,
        description="Whether user should retry the operation"
    )
