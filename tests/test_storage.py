"""Tests for the storage providers."""

import threading

import pytest

from shieldon_core.core.errors import ConfigurationError
from shieldon_core.core.settings import Settings
from shieldon_core.db.session import build_engine
from shieldon_core.storage import (
    ATTEMPT_NAMESPACE,
    COUNTER_NAMESPACE,
    SESSION_NAMESPACE,
    MemoryStorage,
    get_storage,
)
from shieldon_core.storage.redis import RedisStorage
from shieldon_core.storage.sql import SqlStorage


def test_save_and_get_round_trip(storage) -> None:
    """Test that a saved record reads back unchanged."""
    storage.save("abc", {"id": "abc", "data": "{}"}, SESSION_NAMESPACE)

    assert storage.get("abc", SESSION_NAMESPACE) == {"id": "abc", "data": "{}"}
    assert storage.get("missing", SESSION_NAMESPACE) is None
    assert storage.get("abc", ATTEMPT_NAMESPACE) is None


def test_get_returns_a_copy(storage) -> None:
    storage.save("abc", {"items": [1]}, SESSION_NAMESPACE)

    record = storage.get("abc", SESSION_NAMESPACE)
    record["items"].append(2)

    assert storage.get("abc", SESSION_NAMESPACE) == {"items": [1]}


def test_get_all_lists_one_namespace(storage) -> None:
    storage.save("a", {"id": "a"}, SESSION_NAMESPACE)
    storage.save("b", {"id": "b"}, SESSION_NAMESPACE)
    storage.save("c", {"id": "c"}, ATTEMPT_NAMESPACE)
    storage.incr("a", SESSION_NAMESPACE)

    records = storage.get_all(SESSION_NAMESPACE)

    assert sorted(record["id"] for record in records) == ["a", "b"]


def test_delete_removes_record(storage) -> None:
    storage.save("abc", {"id": "abc"}, SESSION_NAMESPACE)

    storage.delete("abc", SESSION_NAMESPACE)
    storage.delete("never-saved", SESSION_NAMESPACE)

    assert storage.get("abc", SESSION_NAMESPACE) is None


def test_incr_counts_up_from_zero(storage) -> None:
    """Test that counters start at zero and increment by the given amount."""
    assert storage.get_counter("visitor", COUNTER_NAMESPACE) == 0
    assert storage.incr("visitor", COUNTER_NAMESPACE) == 1
    assert storage.incr("visitor", COUNTER_NAMESPACE) == 2
    assert storage.incr("visitor", COUNTER_NAMESPACE, amount=3) == 5
    assert storage.get_counter("visitor", COUNTER_NAMESPACE) == 5

    storage.delete("visitor", COUNTER_NAMESPACE)
    assert storage.get_counter("visitor", COUNTER_NAMESPACE) == 0


def test_update_applies_mutator(storage) -> None:
    def bump(current):
        count = current["count"] if current else 0
        return {"count": count + 1}

    assert storage.update("visitor", ATTEMPT_NAMESPACE, bump) == {"count": 1}
    assert storage.update("visitor", ATTEMPT_NAMESPACE, bump) == {"count": 2}
    assert storage.get("visitor", ATTEMPT_NAMESPACE) == {"count": 2}


def test_update_returning_none_deletes(storage) -> None:
    storage.save("visitor", {"count": 4}, ATTEMPT_NAMESPACE)

    assert storage.update("visitor", ATTEMPT_NAMESPACE, lambda current: None) is None
    assert storage.get("visitor", ATTEMPT_NAMESPACE) is None


def test_sqlite_file_update_loses_no_writes(tmp_path) -> None:
    """Test that concurrent read-modify-write calls on a SQLite file all land."""
    engine = build_engine(f"sqlite:///{tmp_path / 'shieldon.db'}")
    storage = SqlStorage(engine)
    barrier = threading.Barrier(8)
    errors: list[Exception] = []

    def bump(current):
        count = current["count"] if current else 0
        return {"count": count + 1}

    def worker() -> None:
        barrier.wait()
        try:
            for _ in range(25):
                storage.update("visitor", ATTEMPT_NAMESPACE, bump)
        except Exception as err:  # noqa: BLE001
            errors.append(err)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert storage.get("visitor", ATTEMPT_NAMESPACE) == {"count": 200}
    engine.dispose()


def test_rebuild_single_namespace(storage) -> None:
    storage.save("a", {"id": "a"}, SESSION_NAMESPACE)
    storage.save("a", {"count": 1}, ATTEMPT_NAMESPACE)
    storage.incr("a:cookie", COUNTER_NAMESPACE)

    storage.rebuild(COUNTER_NAMESPACE)

    assert storage.get_counter("a:cookie", COUNTER_NAMESPACE) == 0
    assert storage.get("a", SESSION_NAMESPACE) == {"id": "a"}
    assert storage.get("a", ATTEMPT_NAMESPACE) == {"count": 1}


def test_rebuild_all_namespaces(storage) -> None:
    storage.save("a", {"id": "a"}, SESSION_NAMESPACE)
    storage.save("a", {"count": 1}, ATTEMPT_NAMESPACE)
    storage.incr("a:cookie", COUNTER_NAMESPACE)

    storage.rebuild()

    assert storage.get_all(SESSION_NAMESPACE) == []
    assert storage.get("a", ATTEMPT_NAMESPACE) is None
    assert storage.get_counter("a:cookie", COUNTER_NAMESPACE) == 0


@pytest.mark.parametrize("backend", ["memory", "sql"])
def test_ttl_expires_records_and_counters(request, clock, backend) -> None:
    """Test that records and counters disappear once their TTL elapses."""
    storage = request.getfixturevalue(f"{backend}_storage")
    storage.save("a", {"id": "a"}, ATTEMPT_NAMESPACE, ttl=10)
    storage.incr("a:s", COUNTER_NAMESPACE, ttl=10)
    storage.incr("a:s", COUNTER_NAMESPACE, ttl=10)

    clock.advance(9)
    assert storage.get("a", ATTEMPT_NAMESPACE) == {"id": "a"}
    assert storage.get_counter("a:s", COUNTER_NAMESPACE) == 2

    clock.advance(2)
    assert storage.get("a", ATTEMPT_NAMESPACE) is None
    assert storage.get_all(ATTEMPT_NAMESPACE) == []
    assert storage.get_counter("a:s", COUNTER_NAMESPACE) == 0
    assert storage.incr("a:s", COUNTER_NAMESPACE, ttl=10) == 1


def test_redis_counter_carries_ttl(redis_client, redis_storage) -> None:
    redis_storage.incr("a:s", COUNTER_NAMESPACE, ttl=60)

    ttl = redis_client.ttl("test:counter:n:a:s")
    assert 0 < ttl <= 60


def test_channel_prefixes_namespaces() -> None:
    storage = MemoryStorage(channel_id="site2")

    assert storage.table(SESSION_NAMESPACE) == "site2_session"
    assert MemoryStorage().table(SESSION_NAMESPACE) == "session"


def test_sql_channels_are_isolated(engine) -> None:
    first = SqlStorage(engine, channel_id="one")
    second = SqlStorage(engine, channel_id="two")
    first.save("a", {"id": "a"}, SESSION_NAMESPACE)
    first.incr("a", COUNTER_NAMESPACE)

    assert second.get("a", SESSION_NAMESPACE) is None
    assert second.get_counter("a", COUNTER_NAMESPACE) == 0

    second.rebuild()
    assert first.get("a", SESSION_NAMESPACE) == {"id": "a"}


def test_redis_channels_are_isolated(redis_client) -> None:
    first = RedisStorage(redis_client, channel_id="one")
    second = RedisStorage(redis_client, channel_id="two")
    first.save("a", {"id": "a"}, SESSION_NAMESPACE)

    assert second.get("a", SESSION_NAMESPACE) is None
    second.rebuild()
    assert first.get("a", SESSION_NAMESPACE) == {"id": "a"}


def test_get_storage_selects_driver(mocker, redis_client) -> None:
    """Test the provider factory for each supported driver."""
    memory = get_storage(Settings(SHIELDON_STORAGE_DRIVER="memory"), channel_id="x")
    assert isinstance(memory, MemoryStorage)
    assert memory.channel_id == "x"

    sql = get_storage(Settings(SHIELDON_STORAGE_DRIVER="sql", SHIELDON_DATABASE_URL="sqlite://"))
    assert isinstance(sql, SqlStorage)

    mocker.patch("shieldon_core.storage.redis.redis.from_url", return_value=redis_client)
    assert isinstance(get_storage(Settings(SHIELDON_STORAGE_DRIVER="redis")), RedisStorage)


def test_get_storage_rejects_unknown_driver() -> None:
    with pytest.raises(ConfigurationError):
        get_storage(Settings(SHIELDON_STORAGE_DRIVER="mongodb"))
