"""Room join/leave lifecycle and participant tracking on the client."""

from __future__ import annotations

from collections.abc import Callable

from encontro.client.network import NetworkManager
from encontro.logging import get_logger
from encontro.protocol.messages import (
    LeaveRoomMessage,
    MergeConfirmMessage,
    MergeInitiateMessage,
    MergeReleaseMessage,
    ReadyMessage,
    ServerMessage,
    UserJoinedMessage,
    UserLeftMessage,
    WelcomeMessage,
)

logger = get_logger("client.room")


class RoomManager:
    """Tracks the local identity, the other participants and the merge partner."""

    def __init__(self, network: NetworkManager):
        self._network = network
        self._participants: set[str] = set()
        self._user_id: str | None = None
        self._room_id: str | None = None
        self._merge_partner: str | None = None

        self.on_connected: Callable[[str, list[str]], None] | None = None
        self.on_user_joined: Callable[[str], None] | None = None
        self.on_user_left: Callable[[str], None] | None = None
        self.on_merge_confirmed: Callable[[str], None] | None = None

        self._unsubscribe = network.on_message(self._handle_message)

    async def join_room(self, room_id: str) -> bool:
        self._room_id = room_id
        return await self._network.connect(room_id)

    async def leave_room(self) -> None:
        await self._network.send(LeaveRoomMessage())
        self._participants.clear()
        self._user_id = None
        self._room_id = None
        self._merge_partner = None
        await self._network.disconnect()

    async def mark_ready(self) -> bool:
        return await self._network.send(ReadyMessage())

    async def request_merge(self, target_user_id: str) -> bool:
        return await self._network.send(MergeInitiateMessage(target_user_id=target_user_id))

    async def release_merge(self) -> bool:
        self._merge_partner = None
        return await self._network.send(MergeReleaseMessage())

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def room_id(self) -> str | None:
        return self._room_id

    @property
    def participants(self) -> list[str]:
        return sorted(self._participants)

    @property
    def merge_partner(self) -> str | None:
        return self._merge_partner

    def _handle_message(self, message: ServerMessage) -> None:
        match message:
            case WelcomeMessage(user_id=user_id, participants=participants):
                # A reconnect brings a new identity and a fresh roster
                self._user_id = user_id
                self._participants = set(participants)
                self._merge_partner = None
                logger.info(f"Joined {message.room_id} as {user_id}")
                if self.on_connected:
                    self.on_connected(user_id, list(participants))
            case UserJoinedMessage(user_id=user_id):
                self._participants.add(user_id)
                if self.on_user_joined:
                    self.on_user_joined(user_id)
            case UserLeftMessage(user_id=user_id):
                self._participants.discard(user_id)
                if self._merge_partner == user_id:
                    self._merge_partner = None
                if self.on_user_left:
                    self.on_user_left(user_id)
            case MergeConfirmMessage(partner_user_id=partner):
                self._merge_partner = partner
                if self.on_merge_confirmed:
                    self.on_merge_confirmed(partner)

    def dispose(self) -> None:
        self._unsubscribe()
