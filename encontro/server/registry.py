"""Session registry: room id -> Session, created lazily and destroyed when empty."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator

from encontro.errors import SessionLimitError
from encontro.logging import get_logger
from encontro.protocol.presence import now_ms
from encontro.server.session import PhaseChange, PhaseChangeCallback, Scheduler, Session

logger = get_logger("server.registry")


class SessionRegistry:
    """
    Owns every live Session of one server process.

    The registry is an explicit object so tests can build isolated
    instances with a manual scheduler and clock.
    """

    def __init__(
        self,
        *,
        scheduler: Scheduler | None = None,
        clock: Callable[[], int] = now_ms,
        max_sessions: int = 50,
        max_participants: int = 6,
        start_lookahead_ms: int = 3000,
    ):
        self._scheduler = scheduler
        self._clock = clock
        self.max_sessions = max_sessions
        self.max_participants = max_participants
        self.start_lookahead_ms = start_lookahead_ms

        self._sessions: dict[str, Session] = {}
        self._on_phase_change: list[PhaseChangeCallback] = []

    def add_phase_change_callback(self, callback: PhaseChangeCallback) -> None:
        """Add callback for phase changes in any session."""
        self._on_phase_change.append(callback)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        """
        Return the session for ``session_id``, creating it in the lobby.

        Raises:
            SessionLimitError: If a new session would exceed ``max_sessions``.
        """
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        if len(self._sessions) >= self.max_sessions:
            raise SessionLimitError("Too many active rooms", session_id=session_id)

        session = Session(
            session_id,
            self._scheduler or asyncio.get_running_loop(),
            clock=self._clock,
            max_participants=self.max_participants,
            start_lookahead_ms=self.start_lookahead_ms,
            on_phase_change=self._dispatch_phase_change,
        )
        self._sessions[session_id] = session
        logger.info(f"Room created: {session_id}", extra={"room_id": session_id})
        return session

    def destroy(self, session_id: str) -> bool:
        """Tear a session down, cancelling its phase timer."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info(f"Room destroyed: {session_id}", extra={"room_id": session_id})
        return True

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.destroy(session_id)

    def _dispatch_phase_change(self, session_id: str, change: PhaseChange) -> None:
        # A session removed from the registry must stay silent
        if session_id not in self._sessions:
            return
        for callback in self._on_phase_change:
            try:
                callback(session_id, change)
            except Exception as e:
                logger.error(f"Phase change callback error: {e}")

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
