# tests/conftest.py
from __future__ import annotations

from collections.abc import Iterator

import fakeredis
import pytest
from sqlalchemy.engine import Engine

from shieldon_core.core.config import FirewallConfig
from shieldon_core.db.session import build_engine
from shieldon_core.storage.base import StorageProvider
from shieldon_core.storage.memory import MemoryStorage
from shieldon_core.storage.redis import RedisStorage
from shieldon_core.storage.sql import SqlStorage

TEST_DB_URL = "sqlite://"

# 2025-10-09 08:53:20 UTC
START = 1_760_000_000.0


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_storage(clock: FakeClock) -> MemoryStorage:
    """Provide an in-process provider driven by the fake clock."""
    return MemoryStorage(clock=clock)


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = build_engine(TEST_DB_URL)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def sql_storage(engine: Engine, clock: FakeClock) -> SqlStorage:
    """Provide a SQL provider on a private in-memory SQLite database."""
    return SqlStorage(engine, clock=clock)


@pytest.fixture()
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture()
def redis_storage(redis_client: fakeredis.FakeRedis) -> RedisStorage:
    """Provide a Redis provider backed by fakeredis."""
    return RedisStorage(redis_client, prefix="test")


@pytest.fixture(params=["memory", "sql", "redis"])
def storage(request: pytest.FixtureRequest) -> StorageProvider:
    """Run a test once per storage backend."""
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture()
def firewall_config() -> FirewallConfig:
    """Return the default option tree without a backing file."""
    return FirewallConfig()
