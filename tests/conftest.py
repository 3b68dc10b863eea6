"""
Pytest configuration and shared fixtures for guardcache tests.
"""

import os
import sys
from pathlib import Path
from unittest import mock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from guardcache.config import Settings  # noqa: E402

# 2023-11-14T22:13:20Z; a round number keeps expected expiries readable
START_TIME = 1_700_000_000


class FakeClock:
    """Manually advanced time source accepted by every `clock=` parameter."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """A fake clock starting at START_TIME."""
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary storage directory, ignoring the real environment."""
    with mock.patch.dict(os.environ, {}, clear=True):
        return Settings(storage_path=tmp_path / "storage")


@pytest.fixture
def rate_limit_db_path(tmp_path: Path) -> Path:
    """Path for a fresh rate limit database."""
    return tmp_path / "RateLimit" / "rate_limit.db"
