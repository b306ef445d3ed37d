# src/shieldon_core/models/storage_record.py
"""Generic key/value row backing the SQL storage provider."""

from sqlalchemy import BigInteger, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shieldon_core.db.session import Base


class StorageRecord(Base):
    """One record of one namespace (session, counter, attempt...).

    ``payload`` holds the JSON-encoded record for document-style namespaces;
    ``counter`` holds the integer for atomically incremented keys.
    """

    __tablename__ = "shieldon_record"

    namespace: Mapped[str] = mapped_column(String(128), primary_key=True)
    record_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    counter: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    # Epoch seconds; NULL means the row never expires on its own.
    expires_at: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("ix_shieldon_record_expires_at", "expires_at"),)
