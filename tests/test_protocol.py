"""Tests for phases, presence models and the wire codec."""

import json
from typing import get_args

import pytest
from conftest import make_state

from encontro.errors import ProtocolError
from encontro.protocol import (
    CEREMONY_SEQUENCE,
    PHASE_DURATIONS,
    CeremonyStartMessage,
    ClientMessage,
    JoinRoomMessage,
    MergeInitiateMessage,
    MessageType,
    Phase,
    PhaseChangeMessage,
    PresenceState,
    PresenceUpdateMessage,
    ReadyMessage,
    ServerMessage,
    WelcomeMessage,
    encode,
    next_phase,
    parse_client_message,
    parse_server_message,
)
from encontro.protocol.phases import TOTAL_CEREMONY_DURATION


class TestPhases:
    """Tests for the phase table."""

    def test_order_is_fixed(self):
        assert [p.value for p in Phase] == [
            "lobby",
            "arrival",
            "sensing",
            "approach",
            "encounter",
            "release",
            "reflection",
            "complete",
        ]
        assert Phase.LOBBY.order < Phase.ARRIVAL.order < Phase.COMPLETE.order

    def test_durations(self):
        assert PHASE_DURATIONS[Phase.ARRIVAL] == 180_000
        assert PHASE_DURATIONS[Phase.ENCOUNTER] == 600_000
        assert Phase.REFLECTION.duration_ms == 120_000
        assert Phase.LOBBY.duration_ms is None
        assert Phase.COMPLETE.duration_ms is None
        assert TOTAL_CEREMONY_DURATION == 26 * 60 * 1000

    def test_durations_are_read_only(self):
        with pytest.raises(TypeError):
            PHASE_DURATIONS[Phase.ARRIVAL] = 1  # type: ignore[index]

    def test_next_phase(self):
        assert next_phase(Phase.LOBBY) is Phase.ARRIVAL
        assert next_phase(Phase.REFLECTION) is Phase.COMPLETE
        assert next_phase(Phase.COMPLETE) is None

    def test_sequence_excludes_untimed_phases(self):
        assert CEREMONY_SEQUENCE[0] is Phase.ARRIVAL
        assert CEREMONY_SEQUENCE[-1] is Phase.REFLECTION
        assert Phase.LOBBY not in CEREMONY_SEQUENCE


class TestPresenceState:
    """Tests for PresenceState."""

    def test_default(self):
        state = PresenceState.default()
        assert state.position.y == 1.6
        assert state.rotation.w == 1.0
        assert 0 <= state.color_state.h < 360
        assert state.merge_target is None

    def test_rhythm_bounds(self):
        with pytest.raises(ValueError):
            make_state(0, movement_rhythm=1.5)

    def test_camel_case_round_trip(self):
        state = make_state(1000, merge_target="user_2", merge_depth=0.5, breath_rate=12.0)
        wire = state.to_wire()

        assert wire["mergeTarget"] == "user_2"
        assert wire["colorState"] == {"h": 0.0, "s": 0.5, "l": 0.5}
        assert "merge_target" not in wire
        assert PresenceState.model_validate(wire) == state


class TestMessageType:
    """Tests for the message type registry."""

    def test_message_type_values(self):
        assert MessageType.JOIN_ROOM.value == "join_room"
        assert MessageType.PRESENCE_UPDATE.value == "presence_update"
        assert MessageType.REMOTE_PRESENCE_UPDATE.value == "remote_presence_update"
        assert MessageType.PHASE_CHANGE.value == "phase_change"
        assert MessageType.MERGE_DENY.value == "merge_deny"
        assert len(MessageType) == 15

    def test_every_model_tag_is_a_message_type(self):
        models = [
            *get_args(get_args(ClientMessage)[0]),
            *get_args(get_args(ServerMessage)[0]),
        ]
        tags = {model.model_fields["type"].default for model in models}
        assert tags == {member.value for member in MessageType}


class TestCodec:
    """Tests for encoding and parsing frames."""

    def test_encode_uses_camel_case(self):
        frame = json.loads(encode(CeremonyStartMessage(start_time=123)))
        assert frame == {"type": "ceremony_start", "startTime": 123}

    def test_parse_join(self):
        message = parse_client_message('{"type": "join_room", "roomId": "alpha"}')
        assert isinstance(message, JoinRoomMessage)
        assert message.room_id == "alpha"

    def test_parse_bytes(self):
        message = parse_client_message(b'{"type": "ready"}')
        assert isinstance(message, ReadyMessage)

    def test_parse_merge_initiate(self):
        message = parse_client_message('{"type": "merge_initiate", "targetUserId": "user_9"}')
        assert isinstance(message, MergeInitiateMessage)
        assert message.target_user_id == "user_9"

    def test_parse_presence_update(self):
        frame = encode(PresenceUpdateMessage(state=make_state(5, x=2.0)))
        message = parse_client_message(frame)
        assert isinstance(message, PresenceUpdateMessage)
        assert message.state.position.x == 2.0

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            "{}",
            '{"type": "teleport"}',
            '{"type": "join_room"}',
            '{"type": "join_room", "roomId": ""}',
            '{"type": "welcome", "userId": "u", "roomId": "r"}',
        ],
    )
    def test_invalid_client_frames(self, raw):
        with pytest.raises(ProtocolError) as exc:
            parse_client_message(raw)
        assert exc.value.message == "Invalid message format"
        assert exc.value.details["reason"]

    def test_parse_server_messages(self):
        welcome = parse_server_message(
            '{"type": "welcome", "userId": "u1", "roomId": "r", "participants": ["u0"]}'
        )
        assert isinstance(welcome, WelcomeMessage)
        assert welcome.participants == ["u0"]

        phase = parse_server_message(
            '{"type": "phase_change", "phase": "arrival", "startTime": 10, "duration": 180000}'
        )
        assert isinstance(phase, PhaseChangeMessage)
        assert phase.phase is Phase.ARRIVAL

    def test_unbounded_duration_is_null(self):
        frame = json.loads(encode(PhaseChangeMessage(phase=Phase.COMPLETE, start_time=1)))
        assert frame["duration"] is None

    def test_client_frame_is_not_a_server_message(self):
        with pytest.raises(ProtocolError):
            parse_server_message('{"type": "ready"}')
