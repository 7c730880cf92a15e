"""Tests for PresenceSync, RoomManager and CeremonyTimeline."""

import asyncio
import math
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import FakeClock, FakeConnector, make_state

from encontro.client.ceremony import CeremonyTimeline
from encontro.client.network import ConnectionState, NetworkManager
from encontro.client.presence_sync import PresenceSync
from encontro.client.room import RoomManager
from encontro.protocol.messages import (
    CeremonyStartMessage,
    LeaveRoomMessage,
    MergeConfirmMessage,
    MergeInitiateMessage,
    PhaseChangeMessage,
    RemotePresenceUpdateMessage,
    UserJoinedMessage,
    UserLeftMessage,
    WelcomeMessage,
)
from encontro.protocol.phases import Phase


class FakeNetwork:
    """Collects subscribers so tests can push server messages."""

    def __init__(self):
        self.handlers = []
        self.send = AsyncMock(return_value=True)
        self.send_presence_update = AsyncMock(return_value=True)
        self.connect = AsyncMock(return_value=True)
        self.disconnect = AsyncMock()
        self.state_handlers = []

    def on_message(self, handler):
        self.handlers.append(handler)
        return lambda: self.handlers.remove(handler)

    def on_state_change(self, handler):
        self.state_handlers.append(handler)
        return lambda: self.state_handlers.remove(handler)

    def emit(self, message):
        for handler in list(self.handlers):
            handler(message)

    def emit_state(self, state):
        for handler in list(self.state_handlers):
            handler(state)


@pytest.fixture
def network():
    return FakeNetwork()


class TestPresenceSync:
    """Tests for presence sending and remote tracking."""

    def test_remote_updates_create_buffers(self, network):
        clock = FakeClock(1150)
        sync = PresenceSync(network, interpolation_delay_ms=100, clock=clock)

        network.emit(RemotePresenceUpdateMessage(user_id="u2", state=make_state(1000, x=0.0)))
        network.emit(RemotePresenceUpdateMessage(user_id="u2", state=make_state(1100, x=4.0)))

        assert sync.remote_user_ids == ["u2"]
        assert sync.get_remote_state("u2").position.x == pytest.approx(2.0)
        assert sync.get_remote_state("nobody") is None

    def test_user_left_drops_buffer(self, network):
        sync = PresenceSync(network)
        network.emit(RemotePresenceUpdateMessage(user_id="u2", state=make_state(1000)))
        network.emit(UserLeftMessage(user_id="u2"))
        assert sync.remote_user_ids == []

    @pytest.mark.asyncio
    async def test_send_loop_restamps_local_state(self, network):
        clock = FakeClock(5000)
        sync = PresenceSync(network, send_rate=200, clock=clock)
        sync.set_local_state(make_state(1))

        sync.start_sending()
        sync.start_sending()
        await asyncio.sleep(0.03)
        await sync.stop_sending()

        assert network.send_presence_update.await_count >= 2
        sent = network.send_presence_update.await_args.args[0]
        assert sent.timestamp == 5000
        assert not sync.is_sending

    @pytest.mark.asyncio
    async def test_nothing_sent_without_local_state(self, network):
        sync = PresenceSync(network, send_rate=200)
        sync.start_sending()
        await asyncio.sleep(0.02)
        await sync.dispose()

        network.send_presence_update.assert_not_awaited()
        assert network.handlers == []
        assert network.state_handlers == []

    def test_welcome_drops_absent_participants(self, network):
        sync = PresenceSync(network)
        network.emit(RemotePresenceUpdateMessage(user_id="u_gone", state=make_state(1000)))
        network.emit(RemotePresenceUpdateMessage(user_id="u_other", state=make_state(1000)))

        network.emit(WelcomeMessage(user_id="u9", room_id="alpha", participants=["u_other"]))

        assert sync.remote_user_ids == ["u_other"]
        assert sync.get_remote_state("u_gone") is None

    @pytest.mark.asyncio
    async def test_intentional_disconnect_stops_sending(self):
        connector = FakeConnector()
        network = NetworkManager("ws://test/ws", base_delay=0.01, connector=connector)
        sync = PresenceSync(network, send_rate=200)
        sync.set_local_state(make_state(1))
        await network.connect("alpha")
        sync.start_sending()
        await asyncio.sleep(0.02)

        await network.disconnect()
        await asyncio.sleep(0.02)
        sent = len(connector.sockets[0].sent)
        await network.connect("alpha")
        await asyncio.sleep(0.02)

        assert not sync.is_sending
        assert sent > 1
        assert connector.sockets[1].sent == [{"type": "join_room", "roomId": "alpha"}]
        await sync.dispose()
        await network.disconnect()

    @pytest.mark.asyncio
    async def test_giving_up_stops_sending(self, network):
        sync = PresenceSync(network, send_rate=200)
        sync.start_sending()

        network.emit_state(ConnectionState.RECONNECTING)
        assert sync.is_sending

        network.emit_state(ConnectionState.DISCONNECTED)
        assert not sync.is_sending
        await sync.dispose()


class TestRoomManager:
    """Tests for client-side room tracking."""

    @pytest.mark.asyncio
    async def test_join_connects(self, network):
        room = RoomManager(network)
        assert await room.join_room("alpha") is True
        network.connect.assert_awaited_once_with("alpha")
        assert room.room_id == "alpha"

    def test_roster_follows_server(self, network):
        room = RoomManager(network)
        joined = MagicMock()
        left = MagicMock()
        room.on_user_joined = joined
        room.on_user_left = left

        network.emit(WelcomeMessage(user_id="u3", room_id="alpha", participants=["u1", "u2"]))
        network.emit(UserJoinedMessage(user_id="u4"))
        network.emit(UserLeftMessage(user_id="u1"))

        assert room.user_id == "u3"
        assert room.participants == ["u2", "u4"]
        joined.assert_called_once_with("u4")
        left.assert_called_once_with("u1")

    def test_welcome_resets_roster(self, network):
        room = RoomManager(network)
        connected = MagicMock()
        room.on_connected = connected

        network.emit(WelcomeMessage(user_id="u1", room_id="alpha", participants=["u9"]))
        network.emit(MergeConfirmMessage(partner_user_id="u9"))
        network.emit(WelcomeMessage(user_id="u5", room_id="alpha", participants=[]))

        assert room.user_id == "u5"
        assert room.participants == []
        assert room.merge_partner is None
        connected.assert_called_with("u5", [])

    def test_partner_leaving_clears_merge(self, network):
        room = RoomManager(network)
        network.emit(MergeConfirmMessage(partner_user_id="u2"))
        assert room.merge_partner == "u2"
        network.emit(UserLeftMessage(user_id="u2"))
        assert room.merge_partner is None

    @pytest.mark.asyncio
    async def test_merge_requests_are_sent(self, network):
        room = RoomManager(network)
        await room.request_merge("u2")
        network.send.assert_awaited_with(MergeInitiateMessage(target_user_id="u2"))

    @pytest.mark.asyncio
    async def test_leave_room(self, network):
        room = RoomManager(network)
        network.emit(WelcomeMessage(user_id="u1", room_id="alpha", participants=["u2"]))

        await room.leave_room()

        network.send.assert_awaited_with(LeaveRoomMessage())
        network.disconnect.assert_awaited_once()
        assert room.user_id is None
        assert room.participants == []


class TestCeremonyTimeline:
    """Tests for the client's view of the phase sequence."""

    def test_follows_phase_changes(self):
        clock = FakeClock(10_000)
        timeline = CeremonyTimeline(clock=clock)
        seen = []
        timeline.on_phase_change = seen.append

        timeline.handle_message(PhaseChangeMessage(phase=Phase.ARRIVAL, start_time=10_000, duration=180_000))
        clock.now += 90_000

        assert timeline.phase is Phase.ARRIVAL
        assert timeline.previous_phase is Phase.LOBBY
        assert timeline.time_remaining == 90_000
        assert timeline.phase_progress == pytest.approx(0.5)
        assert timeline.transition_progress == 1.0
        assert seen == [Phase.ARRIVAL]

    def test_ignores_stale_phases(self):
        timeline = CeremonyTimeline(clock=FakeClock(0))
        timeline.set_phase(Phase.SENSING, 0, 180_000)
        timeline.set_phase(Phase.ARRIVAL, 0, 180_000)
        timeline.set_phase(Phase.SENSING, 5, 180_000)
        assert timeline.phase is Phase.SENSING
        assert timeline.previous_phase is Phase.LOBBY

    def test_unbounded_phase(self):
        timeline = CeremonyTimeline(clock=FakeClock(0))
        timeline.set_phase(Phase.COMPLETE, 0, None)
        assert timeline.time_remaining == math.inf
        assert timeline.phase_progress == 0.0

    def test_transition_progress(self):
        clock = FakeClock(0)
        timeline = CeremonyTimeline(transition_duration_ms=5000, clock=clock)
        assert timeline.transition_progress == 1.0

        timeline.set_phase(Phase.ARRIVAL, 0, 180_000)
        clock.now = 2500
        assert timeline.transition_progress == pytest.approx(0.5)

    def test_ceremony_start(self):
        timeline = CeremonyTimeline()
        started = MagicMock()
        timeline.on_ceremony_start = started
        timeline.handle_message(CeremonyStartMessage(start_time=42))
        assert timeline.ceremony_start_time == 42
        started.assert_called_once_with(42)
