"""Storage provider contract consumed by the Shieldon core.

Every backend stores JSON-representable records keyed by ``(namespace, id)``
and integer counters that can be incremented atomically. The core never reads
a counter and writes it back itself: increments go through :meth:`incr` and
read-modify-write sequences go through :meth:`update`, which backends must
execute atomically per key.
"""

from __future__ import annotations

import abc
from collections.abc import Callable
from typing import Any, Final

Record = dict[str, Any]
Mutator = Callable[[Record | None], Record | None]

SESSION_NAMESPACE: Final[str] = "session"
COUNTER_NAMESPACE: Final[str] = "counter"
ATTEMPT_NAMESPACE: Final[str] = "attempt"
# First sighting of each client IP.
FILTER_LOG_NAMESPACE: Final[str] = "filter_log"

NAMESPACES: Final[tuple[str, ...]] = (
    SESSION_NAMESPACE,
    COUNTER_NAMESPACE,
    ATTEMPT_NAMESPACE,
    FILTER_LOG_NAMESPACE,
)


class StorageProvider(abc.ABC):
    """Abstract key/value persistence with namespaces.

    Args:
        channel_id: Optional prefix isolating several sites that share one
            backend. Namespace ``session`` becomes ``<channel>_session``.
    """

    def __init__(self, channel_id: str = "") -> None:
        self.channel_id = channel_id

    def table(self, namespace: str) -> str:
        """Return the physical namespace name for ``namespace``."""
        if self.channel_id:
            return f"{self.channel_id}_{namespace}"
        return namespace

    @abc.abstractmethod
    def get(self, record_id: str, namespace: str) -> Record | None:
        """Return the record or None when absent or expired."""

    @abc.abstractmethod
    def get_all(self, namespace: str) -> list[Record]:
        """Return every live record saved in ``namespace`` (counters excluded)."""

    @abc.abstractmethod
    def save(self, record_id: str, record: Record, namespace: str, ttl: int | None = None) -> None:
        """Create or replace a record, optionally expiring after ``ttl`` seconds."""

    @abc.abstractmethod
    def delete(self, record_id: str, namespace: str) -> None:
        """Remove a record and any counter stored under the same key."""

    @abc.abstractmethod
    def incr(self, record_id: str, namespace: str, amount: int = 1, ttl: int | None = None) -> int:
        """Atomically add ``amount`` to a counter and return the new value.

        A missing or expired counter starts from zero. ``ttl`` bounds the
        counter's lifetime; a backend may count it from creation or from the
        latest increment, so callers scope keys to the window they count.
        """

    @abc.abstractmethod
    def get_counter(self, record_id: str, namespace: str) -> int:
        """Return a counter's value, 0 when missing or expired."""

    @abc.abstractmethod
    def update(
        self,
        record_id: str,
        namespace: str,
        mutator: Mutator,
        ttl: int | None = None,
    ) -> Record | None:
        """Atomically replace a record with ``mutator(current)``.

        ``mutator`` receives a copy of the current record (or None) and returns
        the new record, or None to delete it. It may be called more than once
        when a backend retries after a conflicting write.
        """

    @abc.abstractmethod
    def _drop(self, table: str) -> None:
        """Remove every record and counter of a physical namespace."""

    def rebuild(self, namespace: str | None = None) -> None:
        """Drop all data of ``namespace``, or of every core namespace when None."""
        namespaces = (namespace,) if namespace else NAMESPACES
        for name in namespaces:
            self._drop(self.table(name))
