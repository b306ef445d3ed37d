"""Traffic-triggered periodic reset of all counters.

There is no scheduler: every evaluated request calls :meth:`ResetCycle.maybe_run`,
which costs one comparison in the common case. When more than ``period``
seconds have passed since ``last_update``, the storage namespaces are rebuilt
and ``last_update`` moves forward and is written back to the configuration.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from datetime import UTC, datetime, timedelta

from shieldon_core.core.config import LAST_UPDATE_FORMAT, FirewallConfig
from shieldon_core.core.errors import ConfigurationError, StorageUnavailableError
from shieldon_core.db.time import start_of_day
from shieldon_core.storage.base import NAMESPACES, StorageProvider

logger = logging.getLogger(__name__)

LAST_UPDATE_OPTION = "cronjob.reset_circle.config.last_update"


def reset_anchor(now: float, period: int) -> datetime:
    """Return the timestamp ``last_update`` advances to when a reset runs at ``now``.

    Midnight (UTC) of the current day; for periods shorter than a day, the
    latest multiple of ``period`` after midnight that is not later than ``now``.
    """
    midnight = start_of_day(now)
    if period >= 86400:
        return midnight
    elapsed = now - midnight.timestamp()
    return midnight + timedelta(seconds=math.floor(elapsed / period) * period)


class ResetCycle:
    """Rebuild storage once per configured period."""

    def __init__(
        self,
        config: FirewallConfig,
        storage: StorageProvider,
        *,
        namespaces: tuple[str, ...] | None = None,
    ) -> None:
        self._config = config
        self._storage = storage
        self._namespaces = namespaces or NAMESPACES
        self._lock = threading.Lock()

    def last_reset(self, now: float) -> float:
        """Return ``last_update`` as epoch seconds (midnight today when unset)."""
        value = self._config.options.cronjob.reset_circle.config.last_update
        if not value:
            return start_of_day(now).timestamp()
        return datetime.strptime(value, LAST_UPDATE_FORMAT).replace(tzinfo=UTC).timestamp()

    def maybe_run(self, now: float | None = None) -> bool:
        """Run the reset when the period has elapsed.

        Returns:
            True if this call rebuilt the storage.
        """
        options = self._config.options.cronjob.reset_circle
        if not options.enable:
            return False
        now = time.time() if now is None else now
        period = options.config.period

        if now - self.last_reset(now) <= period:
            return False

        with self._lock:
            # Another thread may have advanced the clock while we waited.
            if now - self.last_reset(now) <= period:
                return False
            anchor = reset_anchor(now, period)
            self._config.set_option(LAST_UPDATE_OPTION, anchor.strftime(LAST_UPDATE_FORMAT))
            try:
                self._config.save()
            except ConfigurationError as err:
                logger.error("Reset cycle could not persist %s: %s", LAST_UPDATE_OPTION, err)
            self._rebuild()

        logger.info("Reset cycle ran; next window starts at %s", anchor.strftime(LAST_UPDATE_FORMAT))
        return True

    def _rebuild(self) -> None:
        for namespace in self._namespaces:
            try:
                self._storage.rebuild(namespace)
            except StorageUnavailableError as err:
                logger.warning("Reset cycle could not rebuild %s: %s", namespace, err)
