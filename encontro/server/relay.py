"""Fan-out of server messages to every connection bound to a session."""

from __future__ import annotations

from typing import Protocol

from encontro.logging import get_logger
from encontro.protocol.presence import WireModel

logger = get_logger("server.relay")


class Outbound(Protocol):
    """A connection that can take a message without blocking."""

    id: str

    def send(self, message: WireModel) -> bool: ...


class BroadcastRelay:
    """
    Session -> connection-set index plus best-effort broadcast.

    ``send`` on each connection only enqueues, so one slow or broken
    receiver never delays the others, and every receiver sees the
    messages of one session in broadcast order.
    """

    def __init__(self):
        self._members: dict[str, set[Outbound]] = {}

    def bind(self, session_id: str, connection: Outbound) -> None:
        self._members.setdefault(session_id, set()).add(connection)

    def unbind(self, session_id: str, connection: Outbound) -> None:
        members = self._members.get(session_id)
        if not members:
            return
        members.discard(connection)
        if not members:
            del self._members[session_id]

    def members(self, session_id: str) -> frozenset[Outbound]:
        return frozenset(self._members.get(session_id, ()))

    def broadcast(
        self,
        session_id: str,
        message: WireModel,
        exclude: Outbound | None = None,
    ) -> int:
        """
        Deliver ``message`` to the session, skipping ``exclude``.

        Returns:
            Number of connections the message was queued for.
        """
        sent = 0
        for connection in list(self._members.get(session_id, ())):
            if connection is exclude:
                continue
            try:
                if connection.send(message):
                    sent += 1
            except Exception as e:
                logger.debug(f"Broadcast to {connection.id} failed: {e}")
        return sent

    @property
    def session_count(self) -> int:
        return len(self._members)
