"""
Pytest fixtures shared by the session, lobby and coordinator tests.
"""

from typing import Callable, List

import pytest

from awale.config import Settings


class FakeConnection:
    """Records every frame the server queues for it"""

    def __init__(self, conn_id: str):
        self.conn_id = conn_id
        self.frames: List[dict] = []

    def send(self, message: dict) -> None:
        self.frames.append(message)

    def types(self) -> List[str]:
        return [frame["type"] for frame in self.frames]

    def of_type(self, kind: str) -> List[dict]:
        return [frame for frame in self.frames if frame["type"] == kind]

    def last(self, kind: str = None) -> dict:
        frames = self.of_type(kind) if kind else self.frames
        return frames[-1]

    def clear(self):
        self.frames.clear()

    def __repr__(self):
        return f"<FakeConnection {self.conn_id}>"


class FixedRng:
    """random.Random stand-in whose random() always returns the same value"""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def connections() -> Callable[[str], FakeConnection]:
    """Factory for recording connections"""
    return FakeConnection


@pytest.fixture
def host_first() -> FixedRng:
    return FixedRng(0.1)


@pytest.fixture
def guest_first() -> FixedRng:
    return FixedRng(0.9)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(LOG_DIR=None, ALLOWED_ORIGIN=None)
