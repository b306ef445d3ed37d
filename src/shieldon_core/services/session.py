"""Per-visitor session records.

A :class:`SessionStore` is created for each evaluated request. The visitor
identity is passed to :meth:`SessionStore.load` explicitly; nothing is kept in
process-wide state, so concurrent requests handled by one process never see
each other's session.

Garbage collection is probabilistic and piggybacks on ``init``: roughly one
request in ``gc_divisor / gc_probability`` sweeps expired records. Records
expire ``expire`` seconds after *creation*, not after last access.
"""

from __future__ import annotations

import json
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from shieldon_core.core.errors import (
    ConfigurationError,
    InvalidIdentityError,
    StorageUnavailableError,
    UninitializedError,
)
from shieldon_core.storage.base import SESSION_NAMESPACE, Record, StorageProvider

logger = logging.getLogger(__name__)


def serialize_data(data: dict[str, Any]) -> str:
    """Encode the session payload for storage."""
    return json.dumps(data, separators=(",", ":"))


def deserialize_data(raw: str | None) -> dict[str, Any]:
    """Decode a stored session payload; empty or corrupt payloads become ``{}``."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("Discarding undecodable session payload")
        return {}
    return value if isinstance(value, dict) else {}


@dataclass
class SessionRecord:
    """State persisted for one visitor."""

    id: str
    ip: str
    created_at: int
    created_at_micros: int
    last_active: int = 0
    data: dict[str, Any] = field(default_factory=dict)

    def to_storage(self) -> Record:
        return {
            "id": self.id,
            "ip": self.ip,
            "created_at": self.created_at,
            "created_at_micros": self.created_at_micros,
            "last_active": self.last_active,
            "data": serialize_data(self.data),
        }

    @classmethod
    def from_storage(cls, raw: Record) -> "SessionRecord":
        return cls(
            id=str(raw["id"]),
            ip=str(raw.get("ip", "")),
            created_at=int(raw.get("created_at", 0)),
            created_at_micros=int(raw.get("created_at_micros", 0)),
            last_active=int(raw.get("last_active", raw.get("created_at", 0))),
            data=deserialize_data(raw.get("data")),
        )


class SessionStore:
    """Load, mutate and persist the session record of one visitor."""

    def __init__(
        self,
        storage: StorageProvider | None = None,
        *,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._rng = rng or random.Random()
        self._initialized = False
        self._record: SessionRecord | None = None
        self._created = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def record(self) -> SessionRecord | None:
        return self._record

    @property
    def created(self) -> bool:
        """True when the last `load` had to create the record."""
        return self._created

    @property
    def identity(self) -> str | None:
        return self._record.id if self._record else None

    def init(
        self,
        storage: StorageProvider | None = None,
        gc_expire: int = 600,
        gc_probability: int = 1,
        gc_divisor: int = 100,
    ) -> bool:
        """Attach the backend and run the garbage-collection sampling check.

        Returns:
            True if this call performed a GC sweep.

        Raises:
            ConfigurationError: If no backend is available or the GC settings
                are inconsistent.
        """
        if storage is not None:
            self._storage = storage
        if self._storage is None:
            raise ConfigurationError("SessionStore.init requires a storage provider")
        if gc_probability < 1 or gc_divisor < gc_probability:
            raise ConfigurationError(
                f"Invalid GC sampling {gc_probability}/{gc_divisor}; "
                "need 1 <= gc_probability <= gc_divisor"
            )
        self._initialized = True
        return self.gc(gc_expire, gc_probability, gc_divisor)

    def load(self, identity: str, ip: str = "") -> SessionRecord:
        """Read the visitor's record, creating and persisting it if absent.

        Raises:
            UninitializedError: If ``init`` has not run.
            InvalidIdentityError: If ``identity`` is empty.
            StorageUnavailableError: If the backend fails.
        """
        storage = self._require_storage()
        if not identity:
            raise InvalidIdentityError("A visitor identity is required to load a session")

        now = self._clock()
        raw = storage.get(identity, SESSION_NAMESPACE)
        if raw:
            self._record = SessionRecord.from_storage(raw)
            self._record.last_active = int(now)
            self._created = False
            return self._record

        self._record = SessionRecord(
            id=identity,
            ip=ip,
            created_at=int(now),
            created_at_micros=int(now * 1_000_000),
            last_active=int(now),
        )
        self._created = True
        self.save()
        logger.debug("Created session for %s", identity)
        return self._record

    def get(self, key: str, default: Any = None) -> Any:
        return self._require_record().data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._require_record().data[key] = value

    def remove(self, key: str) -> None:
        self._require_record().data.pop(key, None)

    def has(self, key: str) -> bool:
        return key in self._require_record().data

    def clear(self) -> None:
        """Drop all in-memory data; call :meth:`save` to persist the clearing."""
        self._require_record().data = {}

    def save(self) -> None:
        """Write the loaded record back under the ``session`` namespace."""
        record = self._require_record()
        self._require_storage().save(record.id, record.to_storage(), SESSION_NAMESPACE)

    def delete(self) -> None:
        """Remove the loaded record from storage and forget it."""
        record = self._require_record()
        self._require_storage().delete(record.id, SESSION_NAMESPACE)
        self._record = None

    def queue_position(self, period: int, now: float | None = None) -> int:
        """Return the loaded visitor's 1-based place among the online sessions.

        A session is online when it was active within the last ``period``
        seconds; the loaded visitor always is. Earlier arrivals rank first.

        Raises:
            StorageUnavailableError: If the sessions cannot be enumerated.
        """
        record = self._require_record()
        now = self._clock() if now is None else now
        mine = (record.created_at_micros, record.id)
        online = [mine]
        for raw in self._require_storage().get_all(SESSION_NAMESPACE):
            try:
                other = SessionRecord.from_storage(raw)
            except (KeyError, TypeError, ValueError):
                continue
            if other.id != record.id and now - other.last_active <= period:
                online.append((other.created_at_micros, other.id))
        online.sort()
        return online.index(mine) + 1

    def gc(self, expire: int, probability: int, divisor: int) -> bool:
        """Sweep expired records with probability ``probability / divisor``."""
        chance = max(1, divisor // max(1, probability))
        if self._rng.randint(1, chance) != 1:
            return False
        self.sweep(expire)
        return True

    def sweep(self, expire: int, now: float | None = None) -> int:
        """Delete every record created more than ``expire`` seconds ago.

        Best effort: a record that cannot be deleted is logged and skipped.

        Returns:
            Number of records deleted.
        """
        storage = self._require_storage()
        now = self._clock() if now is None else now
        try:
            records = storage.get_all(SESSION_NAMESPACE)
        except StorageUnavailableError as err:
            logger.warning("Session GC skipped; cannot enumerate sessions: %s", err)
            return 0

        deleted = 0
        for raw in records:
            try:
                created_at = int(raw.get("created_at", 0))
                if now - created_at > expire:
                    storage.delete(str(raw["id"]), SESSION_NAMESPACE)
                    deleted += 1
            except StorageUnavailableError as err:
                logger.warning("Session GC could not delete %s: %s", raw.get("id"), err)
            except (KeyError, TypeError, ValueError) as err:
                logger.warning("Session GC skipped malformed record: %s", err)
        logger.info("Session GC removed %d of %d records", deleted, len(records))
        return deleted

    def _require_storage(self) -> StorageProvider:
        if not self._initialized or self._storage is None:
            raise UninitializedError("SessionStore.init must run before any other operation")
        return self._storage

    def _require_record(self) -> SessionRecord:
        self._require_storage()
        if self._record is None:
            raise UninitializedError("No session loaded; call SessionStore.load first")
        return self._record
