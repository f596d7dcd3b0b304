"""Shared fixtures for relay tests."""

import pytest


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000

    async def sleep(self, seconds: float) -> None:
        """Drop-in for asyncio.sleep that advances the clock instead of waiting."""
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
