"""
Ceremony Phases

The fixed arc of an encounter. Timing is server-authoritative; clients
only ever follow the phases they are told about.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType


class Phase(str, Enum):
    """Ceremony phases in their fixed order."""

    LOBBY = "lobby"
    ARRIVAL = "arrival"
    SENSING = "sensing"
    APPROACH = "approach"
    ENCOUNTER = "encounter"
    RELEASE = "release"
    REFLECTION = "reflection"
    COMPLETE = "complete"

    @property
    def order(self) -> int:
        return _ORDER[self]

    @property
    def duration_ms(self) -> int | None:
        """Nominal duration, or None when the phase is unbounded."""
        return PHASE_DURATIONS[self]

    @property
    def is_terminal(self) -> bool:
        return self is Phase.COMPLETE


_ORDER = {phase: index for index, phase in enumerate(Phase)}

# Phase timing in milliseconds; None marks an unbounded phase
PHASE_DURATIONS: MappingProxyType[Phase, int | None] = MappingProxyType(
    {
        Phase.LOBBY: None,
        Phase.ARRIVAL: 3 * 60 * 1000,
        Phase.SENSING: 3 * 60 * 1000,
        Phase.APPROACH: 5 * 60 * 1000,
        Phase.ENCOUNTER: 10 * 60 * 1000,
        Phase.RELEASE: 3 * 60 * 1000,
        Phase.REFLECTION: 2 * 60 * 1000,
        Phase.COMPLETE: None,
    }
)

# Timed part of the ceremony (excludes lobby and complete)
CEREMONY_SEQUENCE: tuple[Phase, ...] = (
    Phase.ARRIVAL,
    Phase.SENSING,
    Phase.APPROACH,
    Phase.ENCOUNTER,
    Phase.RELEASE,
    Phase.REFLECTION,
)

# Client-side fade between phases (ms)
PHASE_TRANSITION_DURATION = 5000

TOTAL_CEREMONY_DURATION = sum(PHASE_DURATIONS[phase] for phase in CEREMONY_SEQUENCE)


def next_phase(phase: Phase) -> Phase | None:
    """Return the phase that follows ``phase``, or None after COMPLETE."""
    if phase.is_terminal:
        return None
    return list(Phase)[phase.order + 1]
