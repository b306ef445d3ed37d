"""SQLAlchemy-backed storage provider.

All namespaces share the ``shieldon_record`` table. Counter increments are a
single ``UPDATE ... SET counter = counter + :n`` so concurrent workers never
lose updates; record updates lock the row with ``SELECT ... FOR UPDATE`` on
databases that support it. SQLite engines from
:func:`~shieldon_core.db.session.build_engine` take the database write lock
at ``BEGIN`` instead.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Final

from sqlalchemy import Engine, delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shieldon_core.core.errors import StorageUnavailableError
from shieldon_core.db.session import build_engine, build_sessionmaker, create_tables
from shieldon_core.models import StorageRecord
from shieldon_core.storage.base import Mutator, Record, StorageProvider

logger = logging.getLogger(__name__)

_MAX_INSERT_RETRIES: Final[int] = 3


class SqlStorage(StorageProvider):
    """Provider persisting records through the SQLAlchemy ORM."""

    def __init__(
        self,
        engine: Engine,
        *,
        channel_id: str = "",
        create: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(channel_id)
        self._engine = engine
        self._sessions: sessionmaker[Session] = build_sessionmaker(engine)
        self._clock = clock
        if create:
            create_tables(engine)

    @classmethod
    def from_url(cls, url: str, *, channel_id: str = "", echo: bool = False) -> "SqlStorage":
        """Create a provider from a database URL."""
        return cls(build_engine(url, echo=echo), channel_id=channel_id)

    def _live(self):  # type: ignore[no-untyped-def]
        return or_(StorageRecord.expires_at.is_(None), StorageRecord.expires_at > self._clock())

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    def get(self, record_id: str, namespace: str) -> Record | None:
        stmt = select(StorageRecord.payload).where(
            StorageRecord.namespace == self.table(namespace),
            StorageRecord.record_id == record_id,
            self._live(),
        )
        try:
            with self._sessions() as session:
                payload = session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as err:
            raise StorageUnavailableError(f"sql get failed: {err}") from err
        return _loads(payload)

    def get_all(self, namespace: str) -> list[Record]:
        stmt = select(StorageRecord.payload).where(
            StorageRecord.namespace == self.table(namespace),
            StorageRecord.payload.is_not(None),
            self._live(),
        )
        try:
            with self._sessions() as session:
                payloads = session.execute(stmt).scalars().all()
        except SQLAlchemyError as err:
            raise StorageUnavailableError(f"sql select failed: {err}") from err
        return [record for record in map(_loads, payloads) if record is not None]

    def save(self, record_id: str, record: Record, namespace: str, ttl: int | None = None) -> None:
        row = StorageRecord(
            namespace=self.table(namespace),
            record_id=record_id,
            payload=json.dumps(record),
            counter=0,
            expires_at=self._expiry(ttl),
        )
        try:
            with self._sessions() as session, session.begin():
                session.merge(row)
        except SQLAlchemyError as err:
            raise StorageUnavailableError(f"sql save failed: {err}") from err

    def delete(self, record_id: str, namespace: str) -> None:
        stmt = delete(StorageRecord).where(
            StorageRecord.namespace == self.table(namespace),
            StorageRecord.record_id == record_id,
        )
        try:
            with self._sessions() as session, session.begin():
                session.execute(stmt)
        except SQLAlchemyError as err:
            raise StorageUnavailableError(f"sql delete failed: {err}") from err

    def incr(self, record_id: str, namespace: str, amount: int = 1, ttl: int | None = None) -> int:
        table = self.table(namespace)
        key = (StorageRecord.namespace == table, StorageRecord.record_id == record_id)
        bump = (
            update(StorageRecord)
            .where(*key, self._live())
            .values(counter=StorageRecord.counter + amount)
        )
        for _ in range(_MAX_INSERT_RETRIES):
            try:
                with self._sessions() as session, session.begin():
                    if session.execute(bump).rowcount == 0:
                        # Missing or expired: start a fresh counter.
                        session.execute(delete(StorageRecord).where(*key))
                        session.add(
                            StorageRecord(
                                namespace=table,
                                record_id=record_id,
                                payload=None,
                                counter=amount,
                                expires_at=self._expiry(ttl),
                            )
                        )
                        session.flush()
                    return int(session.execute(select(StorageRecord.counter).where(*key)).scalar_one())
            except IntegrityError:
                # Another worker created the row first; retry the UPDATE path.
                continue
            except SQLAlchemyError as err:
                raise StorageUnavailableError(f"sql incr failed: {err}") from err
        raise StorageUnavailableError(f"sql incr kept conflicting on {table}/{record_id}")

    def get_counter(self, record_id: str, namespace: str) -> int:
        stmt = select(StorageRecord.counter).where(
            StorageRecord.namespace == self.table(namespace),
            StorageRecord.record_id == record_id,
            self._live(),
        )
        try:
            with self._sessions() as session:
                value = session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as err:
            raise StorageUnavailableError(f"sql get failed: {err}") from err
        return int(value or 0)

    def update(
        self,
        record_id: str,
        namespace: str,
        mutator: Mutator,
        ttl: int | None = None,
    ) -> Record | None:
        table = self.table(namespace)
        stmt = (
            select(StorageRecord)
            .where(StorageRecord.namespace == table, StorageRecord.record_id == record_id)
            .with_for_update()
        )
        for _ in range(_MAX_INSERT_RETRIES):
            try:
                with self._sessions() as session, session.begin():
                    row = session.execute(stmt).scalar_one_or_none()
                    current = None
                    if row is not None and (row.expires_at is None or row.expires_at > self._clock()):
                        current = _loads(row.payload)
                    new_record = mutator(current)
                    if new_record is None:
                        if row is not None:
                            session.delete(row)
                        return None
                    if row is None:
                        row = StorageRecord(namespace=table, record_id=record_id, counter=0)
                        session.add(row)
                    row.payload = json.dumps(new_record)
                    row.expires_at = self._expiry(ttl)
                    session.flush()
                    return new_record
            except IntegrityError:
                continue
            except SQLAlchemyError as err:
                raise StorageUnavailableError(f"sql update failed: {err}") from err
        raise StorageUnavailableError(f"sql update kept conflicting on {table}/{record_id}")

    def _drop(self, table: str) -> None:
        try:
            with self._sessions() as session, session.begin():
                result = session.execute(delete(StorageRecord).where(StorageRecord.namespace == table))
        except SQLAlchemyError as err:
            raise StorageUnavailableError(f"sql rebuild failed: {err}") from err
        logger.debug("Dropped %d rows from namespace %s", result.rowcount, table)


def _loads(payload: str | None) -> Record | None:
    if not payload:
        return None
    try:
        value = json.loads(payload)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None
