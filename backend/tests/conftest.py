"""
Shared fixtures: a controllable clock, test settings and a mocked Socket.IO server.
"""
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

os.environ.setdefault("ENVIRONMENT", "test")

from listen_together.config import Settings  # noqa: E402
from listen_together.models.room import MediaItem  # noqa: E402


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_item(n: int) -> MediaItem:
    return MediaItem(
        external_id=f"vid{n}",
        title=f"Track {n}",
        thumbnail_ref=f"https://img.example/{n}.jpg",
        source_channel="Channel",
    )


def emitted(sio, event: str) -> list:
    """All ``sio.emit`` calls for ``event`` as (data, kwargs) tuples."""
    return [(c.args[1] if len(c.args) > 1 else None, c.kwargs)
            for c in sio.emit.call_args_list if c.args[0] == event]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        PERIODIC_SYNC_INTERVAL=0.05,
        INITIAL_SYNC_DELAY=0.01,
        YOUTUBE_API_KEY="",
        OAUTH2_API_URL="https://id.example",
    )


@pytest.fixture()
def sio() -> MagicMock:
    server = MagicMock()
    server.emit = AsyncMock()
    server.enter_room = AsyncMock()
    server.leave_room = AsyncMock()
    server.disconnect = AsyncMock()
    return server
