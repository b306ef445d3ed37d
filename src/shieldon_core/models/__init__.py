# src/shieldon_core/models/__init__.py
"""SQLAlchemy models for the Shieldon SQL storage backend."""

from .storage_record import StorageRecord

__all__ = ["StorageRecord"]
