"""In-process storage provider.

Per-process only: suitable for tests, single-worker deployments and local
development. All operations are serialized by one re-entrant lock.
"""

from __future__ import annotations

import copy
import time
from collections import defaultdict
from collections.abc import Callable
from threading import RLock

from shieldon_core.storage.base import Mutator, Record, StorageProvider


class MemoryStorage(StorageProvider):
    """Dictionary-backed provider with lazy TTL expiry."""

    def __init__(self, channel_id: str = "", *, clock: Callable[[], float] = time.time) -> None:
        super().__init__(channel_id)
        self._clock = clock
        self._lock = RLock()
        # table -> id -> (value, expires_at)
        self._records: dict[str, dict[str, tuple[Record, float | None]]] = defaultdict(dict)
        self._counters: dict[str, dict[str, tuple[int, float | None]]] = defaultdict(dict)

    def _live(self, expires_at: float | None) -> bool:
        return expires_at is None or expires_at > self._clock()

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    def get(self, record_id: str, namespace: str) -> Record | None:
        with self._lock:
            entry = self._records[self.table(namespace)].get(record_id)
            if entry is None or not self._live(entry[1]):
                return None
            return copy.deepcopy(entry[0])

    def get_all(self, namespace: str) -> list[Record]:
        with self._lock:
            table = self._records[self.table(namespace)]
            return [copy.deepcopy(value) for value, expires_at in table.values() if self._live(expires_at)]

    def save(self, record_id: str, record: Record, namespace: str, ttl: int | None = None) -> None:
        with self._lock:
            self._records[self.table(namespace)][record_id] = (copy.deepcopy(record), self._expiry(ttl))

    def delete(self, record_id: str, namespace: str) -> None:
        table = self.table(namespace)
        with self._lock:
            self._records[table].pop(record_id, None)
            self._counters[table].pop(record_id, None)

    def incr(self, record_id: str, namespace: str, amount: int = 1, ttl: int | None = None) -> int:
        table = self.table(namespace)
        with self._lock:
            entry = self._counters[table].get(record_id)
            if entry is None or not self._live(entry[1]):
                entry = (0, self._expiry(ttl))
            value = entry[0] + amount
            self._counters[table][record_id] = (value, entry[1])
            return value

    def get_counter(self, record_id: str, namespace: str) -> int:
        with self._lock:
            entry = self._counters[self.table(namespace)].get(record_id)
            if entry is None or not self._live(entry[1]):
                return 0
            return entry[0]

    def update(
        self,
        record_id: str,
        namespace: str,
        mutator: Mutator,
        ttl: int | None = None,
    ) -> Record | None:
        with self._lock:
            new_record = mutator(self.get(record_id, namespace))
            if new_record is None:
                self._records[self.table(namespace)].pop(record_id, None)
                return None
            self.save(record_id, new_record, namespace, ttl=ttl)
            return copy.deepcopy(new_record)

    def _drop(self, table: str) -> None:
        with self._lock:
            self._records.pop(table, None)
            self._counters.pop(table, None)
