"""Shared fixtures."""

import pytest

from ratewarden.storage.memory import MemoryStore


class FakeClock:
    """Manually advanced clock returning UNIX seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    """Memory store without the background sweep, driven by the fake clock."""
    store = MemoryStore(sweep_interval_ms=None, clock=clock)
    yield store
    store.close()
