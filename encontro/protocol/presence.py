"""Presence snapshot models, synchronized at ~30 Hz per participant."""

from __future__ import annotations

import random
import time

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """Base model for values that travel as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Vec3(WireModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


class Quat(WireModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 1.0


class HandState(WireModel):
    """Hand or controller pose."""

    position: Vec3
    rotation: Quat


class ColorHSL(WireModel):
    """Presence color; hue in degrees."""

    h: float
    s: float
    l: float  # noqa: E741


class PresenceState(WireModel):
    """One participant's pose and expressive state at a point in time."""

    position: Vec3
    rotation: Quat
    left_hand: HandState | None = None
    right_hand: HandState | None = None
    movement_rhythm: float = Field(0.0, ge=0.0, le=1.0)
    color_state: ColorHSL
    breath_rate: float | None = None
    merge_target: str | None = None
    merge_depth: float = Field(0.0, ge=0.0, le=1.0)
    timestamp: float

    @classmethod
    def default(cls) -> PresenceState:
        """Initial presence: standing at the origin, random hue."""
        return cls(
            position=Vec3(x=0.0, y=1.6, z=0.0),
            rotation=Quat(),
            color_state=ColorHSL(h=random.random() * 360, s=0.7, l=0.6),
            timestamp=now_ms(),
        )
