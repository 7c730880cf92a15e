"""
Encontro Client

Resilient connection to the session server plus buffering and
interpolation of remote presence for smooth playback.
"""

from encontro.client.ceremony import CeremonyTimeline
from encontro.client.network import ConnectionState, NetworkManager
from encontro.client.presence_sync import PresenceSync
from encontro.client.room import RoomManager
from encontro.client.state_sync import StateSync

__all__ = [
    "NetworkManager",
    "ConnectionState",
    "StateSync",
    "PresenceSync",
    "RoomManager",
    "CeremonyTimeline",
]
