"""
Avatar Chat Types Module

Error taxonomy shared by the server and the client.
"""

from .error_events import ErrorEventType, ServiceErrorEvent, TurnError, TurnErrorKind

__all__ = [
    "ErrorEventType",
    "ServiceErrorEvent",
    "TurnError",
    "TurnErrorKind",
]
