"""Shared fixtures: a recording broadcaster in place of WebSockets."""

import asyncio

import pytest

from confessguess.catalog import Catalog
from confessguess.config import Settings
from confessguess.session import GameSession


class RecordingBroadcaster:
    """Collects (code, event, payload) instead of sending."""

    def __init__(self):
        self.sent: list[tuple] = []

    async def broadcast(self, code, event, payload=None):
        self.sent.append((code, event, payload or {}))

    def all(self, event) -> list[dict]:
        return [p for _, e, p in self.sent if e == event]

    def last(self, event) -> dict | None:
        msgs = self.all(event)
        return msgs[-1] if msgs else None


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


PROMPTS = ["eaten a bug on purpose", "googled myself", "cried during a movie"]

# Timers effectively never fire; tests drive phase steps themselves
FROZEN = Settings(time_scale=1000)
# One game second is 2ms
FAST = Settings(time_scale=0.002)


async def wait_for(predicate, timeout: float = 3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


async def start_game(session: GameSession, names=("alice", "bob", "carol")) -> str:
    lobby = session.create_lobby(names[0])
    for name in names[1:]:
        await session.join_lobby(lobby.code, name)
    await session.start_game(lobby.code, names[0])
    return lobby.code


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def catalog():
    return Catalog(PROMPTS)


@pytest.fixture
async def session(catalog, broadcaster):
    s = GameSession(catalog, broadcaster, settings=FROZEN)
    yield s
    s.shutdown()
    await asyncio.sleep(0)


@pytest.fixture
async def fast_session(catalog, broadcaster):
    s = GameSession(catalog, broadcaster, settings=FAST)
    yield s
    s.shutdown()
    await asyncio.sleep(0)
