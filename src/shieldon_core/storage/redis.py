"""Redis-backed storage provider.

Records are JSON strings under ``<prefix>:<table>:r:<id>``; counters are
native Redis integers under ``<prefix>:<table>:n:<id>`` so increments use
``INCR`` and stay atomic across workers.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis

from shieldon_core.core.errors import StorageUnavailableError
from shieldon_core.storage.base import Mutator, Record, StorageProvider

logger = logging.getLogger(__name__)

_SCAN_BATCH = 500


def _decode(raw: Any) -> Record | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


class RedisStorage(StorageProvider):
    """Provider storing records and counters in Redis."""

    def __init__(self, client: redis.Redis, *, prefix: str = "shieldon", channel_id: str = "") -> None:
        super().__init__(channel_id)
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "shieldon", channel_id: str = "") -> "RedisStorage":
        """Create a provider from a ``redis://`` URL."""
        return cls(redis.from_url(url), prefix=prefix, channel_id=channel_id)  # type: ignore[no-untyped-call]

    def _record_key(self, record_id: str, namespace: str) -> str:
        return f"{self._prefix}:{self.table(namespace)}:r:{record_id}"

    def _counter_key(self, record_id: str, namespace: str) -> str:
        return f"{self._prefix}:{self.table(namespace)}:n:{record_id}"

    def get(self, record_id: str, namespace: str) -> Record | None:
        try:
            raw = self._redis.get(self._record_key(record_id, namespace))
        except redis.RedisError as err:
            raise StorageUnavailableError(f"redis get failed: {err}") from err
        return _decode(raw)

    def get_all(self, namespace: str) -> list[Record]:
        pattern = f"{self._prefix}:{self.table(namespace)}:r:*"
        records: list[Record] = []
        try:
            keys = list(self._redis.scan_iter(match=pattern, count=_SCAN_BATCH))
            for start in range(0, len(keys), _SCAN_BATCH):
                for raw in self._redis.mget(keys[start:start + _SCAN_BATCH]):
                    record = _decode(raw)
                    if record is not None:
                        records.append(record)
        except redis.RedisError as err:
            raise StorageUnavailableError(f"redis scan failed: {err}") from err
        return records

    def save(self, record_id: str, record: Record, namespace: str, ttl: int | None = None) -> None:
        try:
            self._redis.set(self._record_key(record_id, namespace), json.dumps(record), ex=ttl or None)
        except redis.RedisError as err:
            raise StorageUnavailableError(f"redis set failed: {err}") from err

    def delete(self, record_id: str, namespace: str) -> None:
        try:
            self._redis.delete(
                self._record_key(record_id, namespace),
                self._counter_key(record_id, namespace),
            )
        except redis.RedisError as err:
            raise StorageUnavailableError(f"redis delete failed: {err}") from err

    def incr(self, record_id: str, namespace: str, amount: int = 1, ttl: int | None = None) -> int:
        key = self._counter_key(record_id, namespace)
        try:
            # Increment and expiry travel in one MULTI/EXEC block.
            pipe = self._redis.pipeline(transaction=True)
            pipe.incrby(key, amount)
            if ttl:
                pipe.expire(key, int(ttl))
            results = pipe.execute()
        except redis.RedisError as err:
            raise StorageUnavailableError(f"redis incr failed: {err}") from err
        return int(results[0])

    def get_counter(self, record_id: str, namespace: str) -> int:
        try:
            raw = self._redis.get(self._counter_key(record_id, namespace))
        except redis.RedisError as err:
            raise StorageUnavailableError(f"redis get failed: {err}") from err
        return int(raw) if raw is not None else 0

    def update(
        self,
        record_id: str,
        namespace: str,
        mutator: Mutator,
        ttl: int | None = None,
    ) -> Record | None:
        key = self._record_key(record_id, namespace)

        def _apply(pipe: redis.client.Pipeline) -> Record | None:
            # WATCH mode: reads execute immediately; MULTI queues the write.
            new_record = mutator(_decode(pipe.get(key)))
            pipe.multi()
            if new_record is None:
                pipe.delete(key)
            else:
                pipe.set(key, json.dumps(new_record), ex=ttl or None)
            return new_record

        try:
            return self._redis.transaction(_apply, key, value_from_callable=True)
        except redis.RedisError as err:
            raise StorageUnavailableError(f"redis transaction failed: {err}") from err

    def _drop(self, table: str) -> None:
        pattern = f"{self._prefix}:{table}:*"
        try:
            batch: list[Any] = []
            for key in self._redis.scan_iter(match=pattern, count=_SCAN_BATCH):
                batch.append(key)
                if len(batch) >= _SCAN_BATCH:
                    self._redis.delete(*batch)
                    batch = []
            if batch:
                self._redis.delete(*batch)
        except redis.RedisError as err:
            raise StorageUnavailableError(f"redis rebuild failed: {err}") from err
        logger.debug("Dropped redis namespace %s", table)
