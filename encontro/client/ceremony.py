"""
Ceremony Timeline

Client-side view of the server's phase sequence. It follows the phases
it is told about and never advances on its own.
"""

from __future__ import annotations

import math
from collections.abc import Callable

from encontro.protocol.messages import CeremonyStartMessage, PhaseChangeMessage, ServerMessage
from encontro.protocol.phases import PHASE_TRANSITION_DURATION, Phase
from encontro.protocol.presence import now_ms


class CeremonyTimeline:
    """Tracks the current phase and progress through it and its fade-in."""

    def __init__(
        self,
        *,
        transition_duration_ms: float = PHASE_TRANSITION_DURATION,
        clock: Callable[[], float] = now_ms,
    ):
        self.transition_duration_ms = transition_duration_ms
        self._clock = clock

        self._phase = Phase.LOBBY
        self._previous_phase = Phase.LOBBY
        self._phase_start_time: float = 0
        self._phase_duration: float | None = None
        self._ceremony_start_time: float | None = None

        self.on_phase_change: Callable[[Phase], None] | None = None
        self.on_ceremony_start: Callable[[float], None] | None = None

    def handle_message(self, message: ServerMessage) -> None:
        """Feed server messages; suitable for ``NetworkManager.on_message``."""
        if isinstance(message, PhaseChangeMessage):
            self.set_phase(message.phase, message.start_time, message.duration)
        elif isinstance(message, CeremonyStartMessage):
            self._ceremony_start_time = message.start_time
            if self.on_ceremony_start:
                self.on_ceremony_start(message.start_time)

    def set_phase(self, phase: Phase, start_time: float, duration: float | None) -> None:
        # Phases only move forward; stale or repeated notices are ignored
        if phase.order <= self._phase.order:
            return
        self._previous_phase = self._phase
        self._phase = phase
        self._phase_start_time = start_time
        self._phase_duration = duration
        if self.on_phase_change:
            self.on_phase_change(phase)

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def previous_phase(self) -> Phase:
        return self._previous_phase

    @property
    def ceremony_start_time(self) -> float | None:
        return self._ceremony_start_time

    @property
    def time_remaining(self) -> float:
        """Milliseconds left in the current phase; ``math.inf`` when unbounded."""
        if self._phase_duration is None:
            return math.inf
        elapsed = self._clock() - self._phase_start_time
        return max(0.0, self._phase_duration - elapsed)

    @property
    def phase_progress(self) -> float:
        """Fraction of the current phase elapsed (0 for unbounded phases)."""
        if not self._phase_duration:
            return 0.0
        elapsed = self._clock() - self._phase_start_time
        return min(max(elapsed / self._phase_duration, 0.0), 1.0)

    @property
    def transition_progress(self) -> float:
        """0 at the phase boundary, 1 once the fade has finished."""
        if self._phase is self._previous_phase or self.transition_duration_ms <= 0:
            return 1.0
        elapsed = self._clock() - self._phase_start_time
        return min(max(elapsed / self.transition_duration_ms, 0.0), 1.0)
