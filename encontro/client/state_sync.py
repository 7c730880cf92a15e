"""
State Sync

Client-side buffering and time-delayed interpolation of one remote
participant's presence snapshots.
"""

from __future__ import annotations

from collections.abc import Callable

from encontro.client.interpolation import (
    clamp,
    interpolate_hand,
    lerp,
    lerp_color,
    lerp_vec3,
    slerp,
)
from encontro.protocol.presence import PresenceState, now_ms


class StateSync:
    """
    Bounded buffer of the latest snapshots for one remote participant.

    Rendering reads at ``now - interpolation_delay_ms``, trading a small
    constant lag for immunity to irregular arrival times.
    """

    def __init__(
        self,
        buffer_size: int = 3,
        interpolation_delay_ms: float = 100,
        clock: Callable[[], float] = now_ms,
    ):
        self.buffer_size = buffer_size
        self.interpolation_delay_ms = interpolation_delay_ms
        self._clock = clock
        self._buffer: tuple[PresenceState, ...] = ()

    def push_state(self, state: PresenceState) -> None:
        """Insert a snapshot, keeping the buffer ordered by timestamp."""
        ordered = sorted((*self._buffer, state), key=lambda s: s.timestamp)
        self._buffer = tuple(ordered[-self.buffer_size :])

    def get_interpolated_state(self) -> PresenceState | None:
        """Get interpolated state for the current render time.

        Returns:
            None when nothing has been received yet.
        """
        buffer = self._buffer
        if not buffer:
            return None
        if len(buffer) == 1:
            return buffer[0]

        render_time = self._clock() - self.interpolation_delay_ms

        prev, next_ = buffer[-2], buffer[-1]
        for older, newer in zip(buffer, buffer[1:]):
            if render_time <= newer.timestamp:
                prev, next_ = older, newer
                break

        duration = next_.timestamp - prev.timestamp
        if duration <= 0:
            return next_

        t = clamp((render_time - prev.timestamp) / duration, 0.0, 1.0)
        return _blend(prev, next_, t, render_time)

    @property
    def buffer(self) -> tuple[PresenceState, ...]:
        return self._buffer

    @property
    def latest(self) -> PresenceState | None:
        return self._buffer[-1] if self._buffer else None

    def clear(self) -> None:
        self._buffer = ()

    def __len__(self) -> int:
        return len(self._buffer)


def _blend(prev: PresenceState, next_: PresenceState, t: float, render_time: float) -> PresenceState:
    if prev.breath_rate is not None and next_.breath_rate is not None:
        breath_rate = lerp(prev.breath_rate, next_.breath_rate, t)
    else:
        breath_rate = next_.breath_rate

    return PresenceState(
        position=lerp_vec3(prev.position, next_.position, t),
        rotation=slerp(prev.rotation, next_.rotation, t),
        left_hand=interpolate_hand(prev.left_hand, next_.left_hand, t),
        right_hand=interpolate_hand(prev.right_hand, next_.right_hand, t),
        movement_rhythm=lerp(prev.movement_rhythm, next_.movement_rhythm, t),
        color_state=lerp_color(prev.color_state, next_.color_state, t),
        breath_rate=breath_rate,
        merge_target=next_.merge_target,
        merge_depth=lerp(prev.merge_depth, next_.merge_depth, t),
        timestamp=render_time,
    )
