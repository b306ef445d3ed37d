"""Build a storage provider from process settings."""

from __future__ import annotations

import logging

from shieldon_core.core.errors import ConfigurationError
from shieldon_core.core.settings import Settings, settings as default_settings
from shieldon_core.storage.base import StorageProvider

logger = logging.getLogger(__name__)

DRIVERS = ("memory", "redis", "sql")


def get_storage(config: Settings | None = None, *, channel_id: str = "") -> StorageProvider:
    """Return the provider selected by ``SHIELDON_STORAGE_DRIVER``.

    Raises:
        ConfigurationError: If the driver name is unknown.
    """
    config = config or default_settings
    driver = config.storage_driver.strip().lower()

    if driver == "memory":
        from shieldon_core.storage.memory import MemoryStorage

        storage: StorageProvider = MemoryStorage(channel_id=channel_id)
    elif driver == "redis":
        from shieldon_core.storage.redis import RedisStorage

        storage = RedisStorage.from_url(
            config.redis_url,
            prefix=config.redis_key_prefix,
            channel_id=channel_id,
        )
    elif driver == "sql":
        from shieldon_core.storage.sql import SqlStorage

        storage = SqlStorage.from_url(config.database_url, channel_id=channel_id, echo=config.sql_debug)
    else:
        raise ConfigurationError(f"Unknown storage driver {driver!r}; expected one of {', '.join(DRIVERS)}")

    logger.info("Using %s storage driver", driver)
    return storage
