"""WebSocket message models for the session protocol.

Each frame is one JSON object with a ``type`` discriminator. Field names
travel as camelCase.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal

from pydantic import Field, TypeAdapter, ValidationError

from encontro.errors import ProtocolError
from encontro.protocol.phases import Phase
from encontro.protocol.presence import PresenceState, WireModel


class MessageType(str, Enum):
    """WebSocket message types."""

    # Client -> Server
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    PRESENCE_UPDATE = "presence_update"
    MERGE_INITIATE = "merge_initiate"
    MERGE_RELEASE = "merge_release"
    READY = "ready"

    # Server -> Client
    WELCOME = "welcome"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    REMOTE_PRESENCE_UPDATE = "remote_presence_update"
    PHASE_CHANGE = "phase_change"
    CEREMONY_START = "ceremony_start"
    MERGE_CONFIRM = "merge_confirm"
    MERGE_DENY = "merge_deny"
    ERROR = "error"


# =============================================================================
# Client -> Server Messages
# =============================================================================


class JoinRoomMessage(WireModel):
    """Join (or switch to) a room."""

    type: Literal["join_room"] = "join_room"
    room_id: str = Field(min_length=1)


class LeaveRoomMessage(WireModel):
    type: Literal["leave_room"] = "leave_room"


class PresenceUpdateMessage(WireModel):
    """Local presence snapshot to relay to the rest of the room."""

    type: Literal["presence_update"] = "presence_update"
    state: PresenceState


class MergeInitiateMessage(WireModel):
    """Declare the participant this client wants to merge with."""

    type: Literal["merge_initiate"] = "merge_initiate"
    target_user_id: str


class MergeReleaseMessage(WireModel):
    type: Literal["merge_release"] = "merge_release"


class ReadyMessage(WireModel):
    type: Literal["ready"] = "ready"


# =============================================================================
# Server -> Client Messages
# =============================================================================


class WelcomeMessage(WireModel):
    """Sent to a joiner with the other current participants."""

    type: Literal["welcome"] = "welcome"
    user_id: str
    room_id: str
    participants: list[str] = Field(default_factory=list)


class UserJoinedMessage(WireModel):
    type: Literal["user_joined"] = "user_joined"
    user_id: str


class UserLeftMessage(WireModel):
    type: Literal["user_left"] = "user_left"
    user_id: str


class RemotePresenceUpdateMessage(WireModel):
    """Presence snapshot relayed from another participant."""

    type: Literal["remote_presence_update"] = "remote_presence_update"
    user_id: str
    state: PresenceState


class PhaseChangeMessage(WireModel):
    """Authoritative phase boundary; duration is None when unbounded."""

    type: Literal["phase_change"] = "phase_change"
    phase: Phase
    start_time: int
    duration: int | None = None


class CeremonyStartMessage(WireModel):
    type: Literal["ceremony_start"] = "ceremony_start"
    start_time: int


class MergeConfirmMessage(WireModel):
    type: Literal["merge_confirm"] = "merge_confirm"
    partner_user_id: str


class MergeDenyMessage(WireModel):
    type: Literal["merge_deny"] = "merge_deny"


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    message: str


ClientMessage = Annotated[
    JoinRoomMessage
    | LeaveRoomMessage
    | PresenceUpdateMessage
    | MergeInitiateMessage
    | MergeReleaseMessage
    | ReadyMessage,
    Field(discriminator="type"),
]

ServerMessage = Annotated[
    WelcomeMessage
    | UserJoinedMessage
    | UserLeftMessage
    | RemotePresenceUpdateMessage
    | PhaseChangeMessage
    | CeremonyStartMessage
    | MergeConfirmMessage
    | MergeDenyMessage
    | ErrorMessage,
    Field(discriminator="type"),
]

_client_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)
_server_adapter: TypeAdapter[ServerMessage] = TypeAdapter(ServerMessage)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    error = errors[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error['msg']}" if location else error["msg"]


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Decode one inbound frame on the server side.

    Raises:
        ProtocolError: If the frame is not JSON or matches no message type.
    """
    try:
        return _client_adapter.validate_json(raw)
    except ValidationError as e:
        raise ProtocolError("Invalid message format", {"reason": _first_error(e)}) from e


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """Decode one inbound frame on the client side.

    Raises:
        ProtocolError: If the frame is not JSON or matches no message type.
    """
    try:
        return _server_adapter.validate_json(raw)
    except ValidationError as e:
        raise ProtocolError("Invalid message format", {"reason": _first_error(e)}) from e


def encode(message: WireModel) -> str:
    """Serialize a message to its camelCase JSON frame."""
    return message.model_dump_json(by_alias=True)
