"""Wire-level value types: phases, presence snapshots and protocol messages."""

from encontro.protocol.messages import (
    CeremonyStartMessage,
    ClientMessage,
    ErrorMessage,
    JoinRoomMessage,
    LeaveRoomMessage,
    MergeConfirmMessage,
    MergeDenyMessage,
    MergeInitiateMessage,
    MergeReleaseMessage,
    MessageType,
    PhaseChangeMessage,
    PresenceUpdateMessage,
    ReadyMessage,
    RemotePresenceUpdateMessage,
    ServerMessage,
    UserJoinedMessage,
    UserLeftMessage,
    WelcomeMessage,
    encode,
    parse_client_message,
    parse_server_message,
)
from encontro.protocol.phases import (
    CEREMONY_SEQUENCE,
    PHASE_DURATIONS,
    PHASE_TRANSITION_DURATION,
    Phase,
    next_phase,
)
from encontro.protocol.presence import ColorHSL, HandState, PresenceState, Quat, Vec3, now_ms

__all__ = [
    # Phases
    "Phase",
    "PHASE_DURATIONS",
    "CEREMONY_SEQUENCE",
    "PHASE_TRANSITION_DURATION",
    "next_phase",
    # Presence
    "Vec3",
    "Quat",
    "HandState",
    "ColorHSL",
    "PresenceState",
    "now_ms",
    # Messages
    "MessageType",
    "ClientMessage",
    "ServerMessage",
    "JoinRoomMessage",
    "LeaveRoomMessage",
    "PresenceUpdateMessage",
    "MergeInitiateMessage",
    "MergeReleaseMessage",
    "ReadyMessage",
    "WelcomeMessage",
    "UserJoinedMessage",
    "UserLeftMessage",
    "RemotePresenceUpdateMessage",
    "PhaseChangeMessage",
    "CeremonyStartMessage",
    "MergeConfirmMessage",
    "MergeDenyMessage",
    "ErrorMessage",
    "encode",
    "parse_client_message",
    "parse_server_message",
]
