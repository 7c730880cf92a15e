"""
Encontro Session Server

Authoritative session/phase state, the join/leave/merge protocol and the
broadcast relay, served over a single WebSocket path.
"""

from encontro.server.app import build_gateway, create_app
from encontro.server.gateway import Connection, SessionGateway, UserIdFactory
from encontro.server.registry import SessionRegistry
from encontro.server.relay import BroadcastRelay
from encontro.server.session import MergeOutcome, Participant, PhaseChange, Session

__all__ = [
    "create_app",
    "build_gateway",
    "Connection",
    "SessionGateway",
    "UserIdFactory",
    "SessionRegistry",
    "BroadcastRelay",
    "Session",
    "Participant",
    "PhaseChange",
    "MergeOutcome",
]
