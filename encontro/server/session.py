"""
Ceremony Session

Authoritative per-room state: the participant roster, readiness, merge
requests and the phase sequencer. All mutating methods are synchronous
and run on the server's event loop, so they never interleave.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from encontro.errors import RoomFullError, SessionClosedError
from encontro.logging import get_logger
from encontro.protocol.phases import CEREMONY_SEQUENCE, Phase, next_phase
from encontro.protocol.presence import now_ms

logger = get_logger("server.session")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with ``call_later``; an asyncio event loop qualifies."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


@dataclass
class Participant:
    """A participant's server-side state within one session."""

    id: str
    ready: bool = False
    merge_target: str | None = None


@dataclass(frozen=True)
class PhaseChange:
    """Notification emitted whenever the session enters a phase."""

    phase: Phase
    start_time: int
    duration: int | None


class MergeOutcome(str, Enum):
    """Result of a merge request."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    DENIED = "denied"
    IGNORED = "ignored"


PhaseChangeCallback = Callable[[str, PhaseChange], None]


class Session:
    """
    One ceremony room.

    The phase only moves forward. Leaving the lobby is triggered by the
    all-ready edge; every later boundary is driven by a single-shot timer
    whose handle is stored so ``close()`` can cancel it.
    """

    def __init__(
        self,
        session_id: str,
        scheduler: Scheduler,
        *,
        clock: Callable[[], int] = now_ms,
        max_participants: int = 6,
        start_lookahead_ms: int = 3000,
        on_phase_change: PhaseChangeCallback | None = None,
    ):
        self.id = session_id
        self._scheduler = scheduler
        self._clock = clock
        self.max_participants = max_participants
        self.start_lookahead_ms = start_lookahead_ms
        self._on_phase_change = on_phase_change

        self._roster: dict[str, Participant] = {}
        self._confirmed: set[frozenset[str]] = set()

        self._phase = Phase.LOBBY
        self._phase_start_time = clock()
        self._phase_duration: int | None = None
        self._ceremony_start_time: int | None = None

        self._timer: TimerHandle | None = None
        self._timer_generation = 0
        self._closed = False

    # =========================================================================
    # Roster
    # =========================================================================

    def add_participant(self, participant_id: str) -> list[str]:
        """
        Add a participant with ``ready=False``.

        Returns:
            The ids of the other participants already present.

        Raises:
            SessionClosedError: If the session has been torn down.
            RoomFullError: If the session is at capacity.
        """
        self._ensure_open()
        others = [pid for pid in self._roster if pid != participant_id]
        if participant_id in self._roster:
            return others
        if len(self._roster) >= self.max_participants:
            raise RoomFullError("Room is full", session_id=self.id)

        self._roster[participant_id] = Participant(id=participant_id)
        logger.debug(f"{participant_id} joined {self.id} ({len(self._roster)} present)")
        return others

    def remove_participant(self, participant_id: str) -> bool:
        """Remove a participant and clear every merge target naming it."""
        if self._roster.pop(participant_id, None) is None:
            return False

        for participant in self._roster.values():
            if participant.merge_target == participant_id:
                participant.merge_target = None
        self._prune_confirmations()

        logger.debug(f"{participant_id} left {self.id} ({len(self._roster)} present)")
        return True

    def get_participant(self, participant_id: str) -> Participant | None:
        return self._roster.get(participant_id)

    @property
    def participant_ids(self) -> list[str]:
        return list(self._roster)

    @property
    def participant_count(self) -> int:
        return len(self._roster)

    @property
    def is_empty(self) -> bool:
        return not self._roster

    # =========================================================================
    # Readiness
    # =========================================================================

    @property
    def all_ready(self) -> bool:
        """At least two participants, every one of them ready."""
        if len(self._roster) < 2:
            return False
        return all(participant.ready for participant in self._roster.values())

    def mark_ready(self, participant_id: str) -> int | None:
        """
        Mark a participant ready and evaluate the all-ready edge.

        Returns:
            The authoritative ceremony start time (epoch ms) if this change
            started the ceremony, otherwise None.
        """
        participant = self._roster.get(participant_id)
        if participant is None or self._closed:
            return None

        participant.ready = True
        if self.started or not self.all_ready:
            return None

        start_time = self._clock() + self.start_lookahead_ms
        self.start_ceremony(start_time)
        return start_time

    # =========================================================================
    # Phase sequencing
    # =========================================================================

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def phase_start_time(self) -> int:
        return self._phase_start_time

    @property
    def phase_duration(self) -> int | None:
        return self._phase_duration

    @property
    def ceremony_start_time(self) -> int | None:
        return self._ceremony_start_time

    @property
    def started(self) -> bool:
        return self._ceremony_start_time is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def start_ceremony(self, start_time: int) -> bool:
        """
        Begin the timed sequence at ``start_time``.

        Returns:
            False if the ceremony was already started.
        """
        self._ensure_open()
        if self.started:
            return False

        self._ceremony_start_time = start_time
        logger.info(f"Ceremony in {self.id} starts at {start_time}")
        self._schedule(start_time, CEREMONY_SEQUENCE[0], start_time)
        return True

    def _schedule(self, fire_at: int, phase: Phase, start_time: int) -> None:
        """Arm the single-shot timer that enters ``phase`` at ``fire_at``."""
        self._cancel_timer()
        self._timer_generation += 1
        delay = max(0, fire_at - self._clock()) / 1000
        self._timer = self._scheduler.call_later(
            delay, self._on_timer, self._timer_generation, phase, start_time
        )

    def _on_timer(self, generation: int, phase: Phase, start_time: int) -> None:
        # Stale or post-teardown callbacks are no-ops
        if self._closed or generation != self._timer_generation:
            return
        self._timer = None
        self._enter_phase(phase, start_time)

    def _enter_phase(self, phase: Phase, start_time: int) -> None:
        if phase.order <= self._phase.order:
            logger.warning(f"Refusing to move {self.id} from {self._phase.value} to {phase.value}")
            return

        duration = phase.duration_ms
        self._phase = phase
        self._phase_start_time = start_time
        self._phase_duration = duration
        logger.info(f"Room {self.id} entered {phase.value}")

        if self._on_phase_change is not None:
            try:
                self._on_phase_change(self.id, PhaseChange(phase, start_time, duration))
            except Exception as e:
                logger.error(f"Phase change callback error: {e}")

        following = next_phase(phase)
        if duration is None or following is None:
            return
        # Boundaries accumulate from the authoritative start, not from timer firing
        next_start = start_time + duration
        self._schedule(next_start, following, next_start)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # =========================================================================
    # Merge handshake
    # =========================================================================

    def request_merge(self, from_id: str, to_id: str) -> MergeOutcome:
        """Record ``from_id``'s merge target and check for a symmetric pair."""
        participant = self._roster.get(from_id)
        if participant is None or self._closed:
            return MergeOutcome.IGNORED
        if from_id == to_id:
            return MergeOutcome.DENIED

        participant.merge_target = to_id
        self._prune_confirmations()

        if not self.is_merge_confirmed(from_id, to_id):
            return MergeOutcome.PENDING

        pair = frozenset((from_id, to_id))
        if pair in self._confirmed:
            return MergeOutcome.ALREADY_CONFIRMED
        self._confirmed.add(pair)
        logger.info(f"Merge confirmed in {self.id}: {from_id} <-> {to_id}")
        return MergeOutcome.CONFIRMED

    def release_merge(self, participant_id: str) -> bool:
        participant = self._roster.get(participant_id)
        if participant is None:
            return False
        participant.merge_target = None
        self._prune_confirmations()
        return True

    def is_merge_confirmed(self, a: str, b: str) -> bool:
        """Both participants exist and target each other."""
        pa = self._roster.get(a)
        pb = self._roster.get(b)
        if pa is None or pb is None or a == b:
            return False
        return pa.merge_target == b and pb.merge_target == a

    def _prune_confirmations(self) -> None:
        self._confirmed = {
            pair for pair in self._confirmed if self.is_merge_confirmed(*sorted(pair))
        }

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self) -> None:
        """Cancel the pending phase timer and refuse further changes."""
        if self._closed:
            return
        self._closed = True
        self._timer_generation += 1
        self._cancel_timer()
        self._roster.clear()
        self._confirmed.clear()
        logger.debug(f"Session {self.id} closed")

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Session is closed", session_id=self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase": self._phase.value,
            "phase_start_time": self._phase_start_time,
            "phase_duration": self._phase_duration,
            "participants": [
                {"id": p.id, "ready": p.ready, "merge_target": p.merge_target}
                for p in self._roster.values()
            ],
        }
