"""Pytest configuration and shared fixtures."""

import pytest


class FakeClock:
    """Manually advanced time source for expiry tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from pairrelay.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()
