"""Storage providers for per-visitor state."""

from .base import (
    ATTEMPT_NAMESPACE,
    COUNTER_NAMESPACE,
    FILTER_LOG_NAMESPACE,
    NAMESPACES,
    SESSION_NAMESPACE,
    StorageProvider,
)
from .factory import get_storage
from .memory import MemoryStorage

__all__ = [
    "ATTEMPT_NAMESPACE",
    "COUNTER_NAMESPACE",
    "FILTER_LOG_NAMESPACE",
    "NAMESPACES",
    "SESSION_NAMESPACE",
    "MemoryStorage",
    "StorageProvider",
    "get_storage",
]
