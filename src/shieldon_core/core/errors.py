"""Exception types raised by the Shieldon core.

Quota and escalation breaches are never raised; they are reported as
verdicts. The exceptions here signal programming errors, backend failures
and bad configuration.
"""

from __future__ import annotations


class ShieldonError(RuntimeError):
    """Base exception for all Shieldon core failures."""


class UninitializedError(ShieldonError):
    """Raised when a session operation runs before ``init``/``load``.

    This is a programming error in the caller's pipeline, not a security event.
    """


class StorageUnavailableError(ShieldonError):
    """Raised when the storage backend cannot complete a read or write.

    Backends wrap their native errors (``redis.RedisError``,
    ``sqlalchemy.exc.SQLAlchemyError``) into this type so the core can apply
    one recovery policy regardless of the driver in use.
    """


class InvalidIdentityError(ShieldonError, ValueError):
    """Raised when a counter or session operation receives an unusable identity."""


class ConfigurationError(ShieldonError, ValueError):
    """Raised at wiring time when the firewall configuration is invalid."""


__all__ = [
    "ShieldonError",
    "UninitializedError",
    "StorageUnavailableError",
    "InvalidIdentityError",
    "ConfigurationError",
]
