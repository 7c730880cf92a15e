"""
Presence Sync

Sends the local presence at a fixed rate and keeps one interpolating
buffer per remote participant.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from encontro.client.network import ConnectionState, NetworkManager
from encontro.client.state_sync import StateSync
from encontro.logging import get_logger
from encontro.protocol.messages import (
    RemotePresenceUpdateMessage,
    ServerMessage,
    UserLeftMessage,
    WelcomeMessage,
)
from encontro.protocol.presence import PresenceState, now_ms

logger = get_logger("client.presence")


class PresenceSync:
    """Bridges the network manager and per-participant ``StateSync`` buffers."""

    def __init__(
        self,
        network: NetworkManager,
        *,
        send_rate: float = 30.0,
        buffer_size: int = 3,
        interpolation_delay_ms: float = 100,
        clock: Callable[[], float] = now_ms,
    ):
        self._network = network
        self.send_rate = send_rate
        self.buffer_size = buffer_size
        self.interpolation_delay_ms = interpolation_delay_ms
        self._clock = clock

        self._remote: dict[str, StateSync] = {}
        self._local_state: PresenceState | None = None
        self._send_task: asyncio.Task | None = None
        self._unsubscribe = network.on_message(self._handle_message)
        self._unsubscribe_state = network.on_state_change(self._handle_state)

    # =========================================================================
    # Local presence
    # =========================================================================

    def set_local_state(self, state: PresenceState) -> None:
        """Update local presence (called each frame from tracking data)."""
        self._local_state = state

    @property
    def local_state(self) -> PresenceState | None:
        return self._local_state

    def start_sending(self) -> None:
        """Begin sending local presence updates on a fixed period."""
        if self._send_task is not None and not self._send_task.done():
            return
        self._send_task = asyncio.get_running_loop().create_task(self._send_loop())

    async def stop_sending(self) -> None:
        if self._send_task is None:
            return
        self._send_task.cancel()
        try:
            await self._send_task
        except asyncio.CancelledError:
            pass  # Expected: the loop only exits by cancellation
        self._send_task = None

    @property
    def is_sending(self) -> bool:
        return self._send_task is not None and not self._send_task.done()

    async def _send_loop(self) -> None:
        interval = 1.0 / self.send_rate
        while True:
            if self._local_state is not None:
                self._local_state = self._local_state.model_copy(
                    update={"timestamp": self._clock()}
                )
                await self._network.send_presence_update(self._local_state)
            await asyncio.sleep(interval)

    # =========================================================================
    # Remote presence
    # =========================================================================

    def get_remote_state(self, user_id: str) -> PresenceState | None:
        """Get interpolated remote presence state."""
        sync = self._remote.get(user_id)
        return sync.get_interpolated_state() if sync is not None else None

    @property
    def remote_user_ids(self) -> list[str]:
        return list(self._remote)

    def remove_remote(self, user_id: str) -> None:
        self._remote.pop(user_id, None)

    def _handle_message(self, message: ServerMessage) -> None:
        if isinstance(message, RemotePresenceUpdateMessage):
            sync = self._remote.get(message.user_id)
            if sync is None:
                sync = StateSync(
                    buffer_size=self.buffer_size,
                    interpolation_delay_ms=self.interpolation_delay_ms,
                    clock=self._clock,
                )
                self._remote[message.user_id] = sync
                logger.debug(f"Tracking presence of {message.user_id}")
            sync.push_state(message.state)
        elif isinstance(message, UserLeftMessage):
            self.remove_remote(message.user_id)
        elif isinstance(message, WelcomeMessage):
            # A fresh roster; anyone who left while we were away is gone
            current = set(message.participants)
            for user_id in [uid for uid in self._remote if uid not in current]:
                self.remove_remote(user_id)

    def _handle_state(self, state: ConnectionState) -> None:
        if state not in (ConnectionState.CLOSED, ConnectionState.DISCONNECTED):
            return
        if self._send_task is not None:
            self._send_task.cancel()
            self._send_task = None
            logger.debug(f"Presence sending stopped ({state.value})")

    async def dispose(self) -> None:
        await self.stop_sending()
        self._unsubscribe()
        self._unsubscribe_state()
        self._remote.clear()
