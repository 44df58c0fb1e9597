import random
from datetime import datetime, timezone

import pytest

from zenith.clock import ManualClock
from zenith.engine import AccrualEngine
from zenith.storage import InMemoryStore
from zenith.timers import ManualTimer

START = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)
RATE = 2000


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def timer(clock: ManualClock) -> ManualTimer:
    return ManualTimer(clock)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def make_engine(store, clock, timer):
    engines: list[AccrualEngine] = []

    def factory(user_id: str = "alice", rate: float = RATE, seed: int = 7, **kwargs) -> AccrualEngine:
        engine = AccrualEngine(store, clock, timer, rng=random.Random(seed), **kwargs)
        engine.initialize(user_id, rate)
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        engine.close()
