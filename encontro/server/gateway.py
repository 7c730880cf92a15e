"""Per-connection lifecycle: identity, inbound dispatch and outbound frames."""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from fastapi import WebSocket, WebSocketDisconnect

from encontro.errors import ProtocolError, SessionError
from encontro.logging import get_logger
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
    PhaseChangeMessage,
    PresenceUpdateMessage,
    ReadyMessage,
    RemotePresenceUpdateMessage,
    UserJoinedMessage,
    UserLeftMessage,
    WelcomeMessage,
    encode,
    parse_client_message,
)
from encontro.protocol.presence import PresenceState, WireModel
from encontro.server.registry import SessionRegistry
from encontro.server.relay import BroadcastRelay
from encontro.server.session import MergeOutcome, PhaseChange, Session

logger = get_logger("server.gateway")

# Frames buffered per connection before a stalled reader is cut off
OUTBOUND_QUEUE_SIZE = 256

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
        if value == 0:
            return "".join(reversed(digits))


class UserIdFactory:
    """Ephemeral participant ids, unique within the process lifetime."""

    def __init__(self):
        self._counter = itertools.count(1)

    def __call__(self) -> str:
        return f"user_{next(self._counter)}_{_base36(int(time.time() * 1000))}"


@dataclass(eq=False)
class Connection:
    """A WebSocket client connection and its outbound queue."""

    id: str
    websocket: WebSocket
    room_id: str | None = None
    connected_at: float = field(default_factory=time.time)
    closed: bool = False
    _queue: asyncio.Queue[str] = field(
        default_factory=lambda: asyncio.Queue(maxsize=OUTBOUND_QUEUE_SIZE), repr=False
    )
    _writer: asyncio.Task | None = field(default=None, repr=False)

    def start(self) -> None:
        """Start the writer task that flushes the outbound queue."""
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(self._write_loop())

    def send(self, message: WireModel) -> bool:
        """Queue a message for this connection.

        Returns:
            True if queued, False if the connection is closed or its
            reader has fallen too far behind.
        """
        if self.closed:
            return False
        try:
            self._queue.put_nowait(encode(message))
        except asyncio.QueueFull:
            logger.debug(f"Outbound queue full for {self.id}; dropping connection output")
            self.closed = True
            return False
        return True

    async def _write_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                if not self.closed:
                    await self.websocket.send_text(frame)
            except Exception as e:
                logger.debug(f"Failed to send to {self.id}: {e}")
                self.closed = True
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued frame has been written or dropped."""
        await self._queue.join()

    async def close(self) -> None:
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass  # Expected: the writer only exits by cancellation
            self._writer = None


class SessionGateway:
    """Accepts connections and routes their messages into the session registry."""

    def __init__(
        self,
        registry: SessionRegistry,
        relay: BroadcastRelay | None = None,
        *,
        id_factory: Callable[[], str] | None = None,
    ):
        self.registry = registry
        self.relay = relay or BroadcastRelay()
        self._new_id = id_factory or UserIdFactory()
        self._connections: dict[str, Connection] = {}

        registry.add_phase_change_callback(self._broadcast_phase_change)

    @property
    def connection_count(self) -> int:
        """Get the number of active connections."""
        return len(self._connections)

    def get_connection(self, user_id: str) -> Connection | None:
        return self._connections.get(user_id)

    async def connect(self, websocket: WebSocket) -> Connection:
        """Accept a WebSocket and assign it a fresh participant id."""
        await websocket.accept()
        connection = Connection(id=self._new_id(), websocket=websocket)
        connection.start()
        self._connections[connection.id] = connection
        logger.info(f"Client connected: {connection.id}", extra={"user_id": connection.id})
        return connection

    async def disconnect(self, connection: Connection) -> None:
        """Leave the current room and forget the connection."""
        self._leave(connection)
        self._connections.pop(connection.id, None)
        await connection.close()
        logger.info(f"Client disconnected: {connection.id}", extra={"user_id": connection.id})

    async def handle_connection(self, websocket: WebSocket) -> None:
        """Handle a WebSocket connection lifecycle."""
        connection = await self.connect(websocket)

        try:
            while True:
                frame = await websocket.receive()
                if frame["type"] == "websocket.disconnect":
                    break
                raw = frame.get("text")
                if raw is None:
                    raw = frame.get("bytes") or b""
                self.handle_client_message(connection, raw)
        except WebSocketDisconnect:
            pass  # Client disconnect is a normal lifecycle event
        except Exception as e:
            logger.error(f"WebSocket error for {connection.id}: {e}")
        finally:
            await self.disconnect(connection)

    def handle_client_message(self, connection: Connection, raw: str | bytes) -> None:
        """Decode one frame and apply it; malformed frames get an error reply."""
        try:
            message = parse_client_message(raw)
        except ProtocolError as e:
            logger.warning(
                f"Bad message from {connection.id}: {e.details.get('reason')}",
                extra={"user_id": connection.id},
            )
            connection.send(ErrorMessage(message=e.message))
            return

        self.dispatch(connection, message)

    def dispatch(self, connection: Connection, message: ClientMessage) -> None:
        match message:
            case JoinRoomMessage(room_id=room_id):
                self._join(connection, room_id)
            case LeaveRoomMessage():
                self._leave(connection)
            case PresenceUpdateMessage(state=state):
                self._relay_presence(connection, state)
            case MergeInitiateMessage(target_user_id=target):
                self._merge_initiate(connection, target)
            case MergeReleaseMessage():
                self._merge_release(connection)
            case ReadyMessage():
                self._ready(connection)

    # =========================================================================
    # Handlers
    # =========================================================================

    def _join(self, connection: Connection, room_id: str) -> None:
        if connection.room_id == room_id:
            session = self.registry.get(room_id)
            if session is not None:
                # Already here: repeat the welcome, keep readiness and merge state
                others = session.add_participant(connection.id)
                connection.send(
                    WelcomeMessage(user_id=connection.id, room_id=room_id, participants=others)
                )
                return

        if connection.room_id is not None:
            self._leave(connection)

        try:
            session = self.registry.get_or_create(room_id)
            others = session.add_participant(connection.id)
        except SessionError as e:
            logger.warning(f"Join of {room_id} refused for {connection.id}: {e.message}")
            connection.send(ErrorMessage(message=e.message))
            return

        connection.room_id = room_id
        self.relay.bind(room_id, connection)

        connection.send(WelcomeMessage(user_id=connection.id, room_id=room_id, participants=others))
        self.relay.broadcast(room_id, UserJoinedMessage(user_id=connection.id), exclude=connection)

    def _leave(self, connection: Connection) -> None:
        room_id = connection.room_id
        if room_id is None:
            return
        connection.room_id = None
        self.relay.unbind(room_id, connection)

        session = self.registry.get(room_id)
        if session is None:
            return
        session.remove_participant(connection.id)
        self.relay.broadcast(room_id, UserLeftMessage(user_id=connection.id))
        if session.is_empty:
            self.registry.destroy(room_id)

    def _relay_presence(self, connection: Connection, state: PresenceState) -> None:
        if connection.room_id is None:
            return
        self.relay.broadcast(
            connection.room_id,
            RemotePresenceUpdateMessage(user_id=connection.id, state=state),
            exclude=connection,
        )

    def _merge_initiate(self, connection: Connection, target: str) -> None:
        session = self._session_for(connection)
        if session is None:
            return

        outcome = session.request_merge(connection.id, target)
        if outcome is MergeOutcome.DENIED:
            connection.send(MergeDenyMessage())
        elif outcome is MergeOutcome.CONFIRMED:
            connection.send(MergeConfirmMessage(partner_user_id=target))
            partner = self._connections.get(target)
            if partner is not None:
                partner.send(MergeConfirmMessage(partner_user_id=connection.id))

    def _merge_release(self, connection: Connection) -> None:
        session = self._session_for(connection)
        if session is not None:
            session.release_merge(connection.id)

    def _ready(self, connection: Connection) -> None:
        session = self._session_for(connection)
        if session is None:
            return

        start_time = session.mark_ready(connection.id)
        if start_time is not None:
            self.relay.broadcast(session.id, CeremonyStartMessage(start_time=start_time))

    def _session_for(self, connection: Connection) -> Session | None:
        if connection.room_id is None:
            return None
        return self.registry.get(connection.room_id)

    def _broadcast_phase_change(self, session_id: str, change: PhaseChange) -> None:
        self.relay.broadcast(
            session_id,
            PhaseChangeMessage(
                phase=change.phase,
                start_time=change.start_time,
                duration=change.duration,
            ),
        )

    # =========================================================================
    # Shutdown / stats
    # =========================================================================

    async def shutdown(self) -> None:
        """Tear down every session and close every connection's writer."""
        self.registry.close_all()
        for connection in list(self._connections.values()):
            await connection.close()
        self._connections.clear()

    def get_stats(self) -> dict:
        """Get gateway statistics."""
        return {
            "active_connections": len(self._connections),
            "active_rooms": len(self.registry),
            "rooms": [session.to_dict() for session in self.registry],
        }
