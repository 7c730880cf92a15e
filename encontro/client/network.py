"""
Network Manager

Owns the client's single WebSocket connection: connecting, reconnecting
with exponential backoff, and routing server messages to subscribers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from encontro.errors import ConnectionLostError, ProtocolError
from encontro.logging import get_logger
from encontro.protocol.messages import (
    ClientMessage,
    JoinRoomMessage,
    PresenceUpdateMessage,
    ServerMessage,
    encode,
    parse_server_message,
)
from encontro.protocol.presence import PresenceState

logger = get_logger("client.network")

MessageHandler = Callable[[ServerMessage], None]
Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(str, Enum):
    """Lifecycle of the client connection."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"  # intentional local close
    DISCONNECTED = "disconnected"  # reconnect budget exhausted


StateHandler = Callable[[ConnectionState], None]


class NetworkManager:
    """
    At most one live connection per manager.

    An unexpected close schedules a reconnect after
    ``base_delay * 2**attempt`` seconds; after ``max_attempts`` failures
    the manager settles in ``DISCONNECTED``. ``disconnect()`` never
    triggers a reconnect and cancels any that is pending.
    """

    def __init__(
        self,
        url: str,
        *,
        base_delay: float = 1.0,
        max_attempts: int = 5,
        connector: Connector | None = None,
    ):
        self.url = url
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self._connector = connector or websockets.connect

        self._websocket: Any = None
        self._listen_task: asyncio.Task | None = None
        self._open_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._attempts = 0
        self._room_id: str | None = None
        self._closing = False
        self._state = ConnectionState.IDLE
        self.failure: ConnectionLostError | None = None

        # Callbacks
        self._handlers: list[MessageHandler] = []
        self._state_handlers: list[StateHandler] = []

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        """Subscribe to server messages; returns an unsubscribe function."""
        self._handlers.append(handler)
        return lambda: self._handlers.remove(handler) if handler in self._handlers else None

    def on_state_change(self, handler: StateHandler) -> Callable[[], None]:
        """Subscribe to connection state changes; returns an unsubscribe function."""
        self._state_handlers.append(handler)
        return lambda: self._state_handlers.remove(handler) if handler in self._state_handlers else None

    async def connect(self, room_id: str) -> bool:
        """
        Connect and join ``room_id``, replacing any previous connection.

        Returns:
            True if the connection opened on the first attempt. Later
            attempts continue in the background on failure.
        """
        await self._teardown()
        self._room_id = room_id
        self._attempts = 0
        self._closing = False
        self.failure = None
        return await self._open()

    async def disconnect(self) -> None:
        """Close intentionally; no reconnect follows."""
        await self._teardown()
        self._set_state(ConnectionState.CLOSED)
        logger.info("Disconnected")

    async def send(self, message: ClientMessage) -> bool:
        """Send a message if connected; otherwise it is dropped."""
        websocket = self._websocket
        if websocket is None:
            return False
        try:
            await websocket.send(encode(message))
            return True
        except ConnectionClosed:
            return False

    async def send_presence_update(self, state: PresenceState) -> bool:
        return await self.send(PresenceUpdateMessage(state=state))

    # =========================================================================
    # Internals
    # =========================================================================

    async def _open(self) -> bool:
        self._set_state(
            ConnectionState.CONNECTING if self._attempts == 0 else ConnectionState.RECONNECTING
        )
        try:
            websocket = await self._connector(self.url)
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.warning(f"Connection to {self.url} failed: {e}")
            self._schedule_reconnect()
            return False

        if self._closing:
            await websocket.close()
            return False

        self._websocket = websocket
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to {self.url}")

        await self.send(JoinRoomMessage(room_id=self._room_id))
        self._listen_task = asyncio.get_running_loop().create_task(self._listen(websocket))
        return True

    async def _listen(self, websocket: Any) -> None:
        try:
            async for raw in websocket:
                self._dispatch(raw)
        except ConnectionClosed as e:
            logger.info(f"Connection closed: {e}")
        except OSError as e:
            logger.warning(f"Connection lost: {e}")

        # Intentional closes and superseded connections end here quietly
        if self._closing or websocket is not self._websocket:
            return
        self._websocket = None
        self._listen_task = None
        self._schedule_reconnect()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            message = parse_server_message(raw)
        except ProtocolError as e:
            logger.warning(f"Failed to parse message: {e.details.get('reason')}")
            return

        for handler in list(self._handlers):
            try:
                handler(message)
            except Exception as e:
                logger.error(f"Message handler error: {e}")

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return

        if self._attempts >= self.max_attempts:
            self.failure = ConnectionLostError(
                "Max reconnect attempts reached", attempts=self._attempts
            )
            logger.warning(f"Giving up after {self._attempts} reconnect attempts")
            self._set_state(ConnectionState.DISCONNECTED)
            return

        delay = self.base_delay * (2**self._attempts)
        self._attempts += 1
        logger.info(
            f"Reconnecting in {delay:.2f}s (attempt {self._attempts})",
            extra={"attempt": self._attempts},
        )
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            delay, self._on_reconnect_timer
        )

    def _on_reconnect_timer(self) -> None:
        self._reconnect_handle = None
        if self._closing:
            return
        self._open_task = asyncio.get_running_loop().create_task(self._open())

    async def _teardown(self) -> None:
        """Cancel timers and tasks and close the socket without reconnecting."""
        self._closing = True

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        current = asyncio.current_task()
        for task in (self._open_task, self._listen_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected during teardown
        self._open_task = None
        self._listen_task = None

        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            try:
                await websocket.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"Close after connection loss: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        for handler in list(self._state_handlers):
            try:
                handler(state)
            except Exception as e:
                logger.error(f"State handler error: {e}")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None and self._state is ConnectionState.CONNECTED

    @property
    def room_id(self) -> str | None:
        return self._room_id

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None
