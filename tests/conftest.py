"""Shared fixtures: a manual clock and scheduler for deterministic timing."""

from __future__ import annotations

import asyncio
import json

import pytest

from encontro.protocol.presence import ColorHSL, PresenceState, Quat, Vec3
from encontro.server.registry import SessionRegistry

START = 1_700_000_000_000


class FakeClock:
    """Epoch-ms clock that only moves when told to."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeHandle:
    def __init__(self, scheduler: FakeScheduler, due: int, callback, args):
        self._scheduler = scheduler
        self.due = due
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """``call_later`` stand-in driven by ``advance``."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.handles: list[FakeHandle] = []

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self, self.clock.now + round(delay * 1000), callback, args)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance(self, ms: int) -> None:
        """Move the clock forward, firing due callbacks in order."""
        target = self.clock.now + ms
        while True:
            due = [h for h in self.pending if h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            handle.cancelled = True
            self.clock.now = max(self.clock.now, handle.due)
            handle.callback(*handle.args)
        self.clock.now = target


class RecordingConnection:
    """Outbound connection that records every message it is given."""

    def __init__(self, id: str, *, fail: bool = False):
        self.id = id
        self.fail = fail
        self.sent: list = []

    def send(self, message) -> bool:
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(message)
        return True


def make_state(timestamp: float, *, x: float = 0.0, hue: float = 0.0, **kwargs) -> PresenceState:
    return PresenceState(
        position=Vec3(x=x, y=1.6, z=0.0),
        rotation=kwargs.pop("rotation", Quat()),
        color_state=ColorHSL(h=hue, s=0.5, l=0.5),
        timestamp=timestamp,
        **kwargs,
    )



_CLOSED = object()


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSED)

    def feed(self, frame: str) -> None:
        self._incoming.put_nowait(frame)

    def drop(self) -> None:
        """Simulate the server going away."""
        self._incoming.put_nowait(_CLOSED)

    def fail(self, error: Exception) -> None:
        """Make the next read raise ``error``."""
        self._incoming.put_nowait(error)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._incoming.get()
        if frame is _CLOSED:
            raise StopAsyncIteration
        if isinstance(frame, Exception):
            raise frame
        return frame


class FakeConnector:
    """Hands out FakeSockets, or raises while ``failing`` is set."""

    def __init__(self, failing: bool = False):
        self.failing = failing
        self.calls = 0
        self.sockets: list[FakeSocket] = []

    async def __call__(self, url: str) -> FakeSocket:
        self.calls += 1
        if self.failing:
            raise OSError("connection refused")
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def registry(scheduler, clock):
    return SessionRegistry(scheduler=scheduler, clock=clock, max_sessions=3, max_participants=3)
