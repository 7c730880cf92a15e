"""Encontro Error Hierarchy.

Structured exception types for the session server and client.
"""

from __future__ import annotations


class EncontroError(Exception):
    """Base error for all Encontro exceptions."""

    code = "ENCONTRO_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# Protocol Errors
class ProtocolError(EncontroError):
    """An inbound frame could not be decoded or validated."""

    code = "PROTOCOL_ERROR"


# Session Errors
class SessionError(EncontroError):
    """Base error for session lifecycle failures."""

    code = "SESSION_ERROR"

    def __init__(self, message: str, session_id: str | None = None):
        super().__init__(message, {"session_id": session_id})
        self.session_id = session_id


class RoomFullError(SessionError):
    """The session already holds the maximum number of participants."""

    code = "ROOM_FULL"


class SessionLimitError(SessionError):
    """Creating the session would exceed the process-wide session cap."""

    code = "SESSION_LIMIT"


class SessionClosedError(SessionError):
    """The session has been torn down and accepts no further changes."""

    code = "SESSION_CLOSED"


# Client Errors
class ConnectionLostError(EncontroError):
    """The client gave up reconnecting to the server."""

    code = "CONNECTION_LOST"

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message, {"attempts": attempts})
        self.attempts = attempts
