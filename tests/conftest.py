"""Shared fixtures: SQLite-backed KV store and a controllable clock."""

import pytest

from oshaberi_bot.storage.sqlite_kv import SqliteKV

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def kv(tmp_path):
    store = SqliteKV(str(tmp_path / "kv.db"))
    await store.initialize()
    yield store
    await store.close()
