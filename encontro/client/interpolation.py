"""Interpolation helpers for presence playback."""

from __future__ import annotations

import math

from encontro.protocol.presence import ColorHSL, HandState, Quat, Vec3

# Above this |dot| the two rotations are treated as parallel
SLERP_DOT_THRESHOLD = 0.9995


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def lerp_angle(a: float, b: float, t: float) -> float:
    """Interpolate degrees the short way round; result in [0, 360)."""
    diff = b - a
    if diff > 180:
        diff -= 360
    if diff < -180:
        diff += 360
    return (a + diff * t) % 360


def lerp_vec3(a: Vec3, b: Vec3, t: float) -> Vec3:
    return Vec3(x=lerp(a.x, b.x, t), y=lerp(a.y, b.y, t), z=lerp(a.z, b.z, t))


def normalize_quat(q: Quat) -> Quat:
    length = math.sqrt(q.x * q.x + q.y * q.y + q.z * q.z + q.w * q.w)
    if length == 0:
        return Quat()
    return Quat(x=q.x / length, y=q.y / length, z=q.z / length, w=q.w / length)


def slerp(a: Quat, b: Quat, t: float) -> Quat:
    """
    Spherical interpolation along the shortest arc.

    Falls back to lerp-then-normalize for nearly identical rotations,
    where the spherical weights become numerically unstable. The result
    is always a unit quaternion.
    """
    a = normalize_quat(a)
    b = normalize_quat(b)

    dot = a.x * b.x + a.y * b.y + a.z * b.z + a.w * b.w
    sign = -1.0 if dot < 0 else 1.0
    dot = abs(dot)

    if dot > SLERP_DOT_THRESHOLD:
        return normalize_quat(
            Quat(
                x=lerp(a.x, b.x * sign, t),
                y=lerp(a.y, b.y * sign, t),
                z=lerp(a.z, b.z * sign, t),
                w=lerp(a.w, b.w * sign, t),
            )
        )

    theta = math.acos(clamp(dot, -1.0, 1.0))
    sin_theta = math.sin(theta)
    wa = math.sin((1 - t) * theta) / sin_theta
    wb = math.sin(t * theta) / sin_theta * sign

    return normalize_quat(
        Quat(
            x=a.x * wa + b.x * wb,
            y=a.y * wa + b.y * wb,
            z=a.z * wa + b.z * wb,
            w=a.w * wa + b.w * wb,
        )
    )


def lerp_color(a: ColorHSL, b: ColorHSL, t: float) -> ColorHSL:
    return ColorHSL(h=lerp_angle(a.h, b.h, t), s=lerp(a.s, b.s, t), l=lerp(a.l, b.l, t))


def interpolate_hand(a: HandState | None, b: HandState | None, t: float) -> HandState | None:
    """Blend two hand poses; if either is missing the newer one wins."""
    if a is None or b is None:
        return b
    return HandState(position=lerp_vec3(a.position, b.position, t), rotation=slerp(a.rotation, b.rotation, t))
