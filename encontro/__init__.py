"""Encontro - synchronization layer for timed, multi-phase shared presence sessions."""

__version__ = "0.1.0"

from encontro.config import Settings, get_settings
from encontro.errors import (
    ConnectionLostError,
    EncontroError,
    ProtocolError,
    RoomFullError,
    SessionClosedError,
    SessionError,
    SessionLimitError,
)
from encontro.protocol import Phase, PresenceState

__all__ = [
    "ConnectionLostError",
    "EncontroError",
    "Phase",
    "PresenceState",
    "ProtocolError",
    "RoomFullError",
    "SessionClosedError",
    "SessionError",
    "SessionLimitError",
    "Settings",
    "get_settings",
]
