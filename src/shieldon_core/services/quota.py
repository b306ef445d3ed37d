"""Quota accounting for behavioral signals.

``frequency`` counts page views in four fixed windows (second, minute, hour,
day) anchored at ``floor(now / window) * window``; each window is its own
counter key and expires with the window. ``session``, ``cookie`` and
``referer`` count "unusual behavior" points in a single counter per visitor
that lives until the reset cycle or an explicit :meth:`QuotaTracker.reset`.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Final, Literal

from shieldon_core.core.config import FirewallConfig
from shieldon_core.core.errors import InvalidIdentityError
from shieldon_core.storage.base import COUNTER_NAMESPACE, StorageProvider

logger = logging.getLogger(__name__)

Signal = Literal["session", "cookie", "referer", "frequency"]
TimeUnit = Literal["s", "m", "h", "d"]

SIGNALS: Final[tuple[str, ...]] = ("session", "cookie", "referer", "frequency")
UNUSUAL_BEHAVIOR_SIGNALS: Final[tuple[str, ...]] = ("session", "cookie", "referer")
TIME_UNITS: Final[dict[str, int]] = {"s": 1, "m": 60, "h": 3600, "d": 86400}


@dataclass(frozen=True)
class QuotaVerdict:
    """Result of one counter increment."""

    within_limit: bool
    count: int
    ceiling: int
    signal: str = ""
    unit: str | None = None


@dataclass(frozen=True)
class QuotaLimits:
    """Ceilings for every signal."""

    session: int = 5
    cookie: int = 5
    referer: int = 5
    quota_s: int = 2
    quota_m: int = 10
    quota_h: int = 30
    quota_d: int = 60

    @classmethod
    def from_config(cls, config: FirewallConfig) -> "QuotaLimits":
        filters = config.options.filters
        frequency = filters.frequency.config
        return cls(
            session=filters.session.config.quota,
            cookie=filters.cookie.config.quota,
            referer=filters.referer.config.quota,
            quota_s=frequency.quota_s,
            quota_m=frequency.quota_m,
            quota_h=frequency.quota_h,
            quota_d=frequency.quota_d,
        )

    def ceiling(self, signal: str, unit: str | None = None) -> int:
        if signal == "frequency":
            return int(getattr(self, f"quota_{unit}"))
        return int(getattr(self, signal))


class QuotaTracker:
    """Increment and evaluate per-visitor signal counters."""

    def __init__(self, storage: StorageProvider, limits: QuotaLimits | None = None) -> None:
        self._storage = storage
        self.limits = limits or QuotaLimits()

    @staticmethod
    def _validate(identity: str, signal: str, unit: str | None) -> None:
        if not identity:
            raise InvalidIdentityError("A visitor identity is required for quota accounting")
        if signal not in SIGNALS:
            raise ValueError(f"Unknown signal {signal!r}")
        if signal == "frequency":
            if unit not in TIME_UNITS:
                raise ValueError(f"frequency requires a time unit in {tuple(TIME_UNITS)}, got {unit!r}")
        elif unit is not None:
            raise ValueError(f"Signal {signal!r} does not take a time unit")

    @staticmethod
    def _key(identity: str, signal: str, unit: str | None, now: float) -> str:
        if signal != "frequency":
            return f"{identity}:{signal}"
        window = TIME_UNITS[unit]  # type: ignore[index]
        slot = int(math.floor(now / window))
        return f"{identity}:frequency:{unit}:{slot}"

    def record_and_check(
        self,
        identity: str,
        signal: str,
        unit: str | None = None,
        *,
        now: float | None = None,
    ) -> QuotaVerdict:
        """Count one occurrence of ``signal`` and compare against its ceiling.

        Raises:
            InvalidIdentityError: If ``identity`` is empty.
            ValueError: If ``signal``/``unit`` do not form a valid counter.
            StorageUnavailableError: If the backend fails.
        """
        self._validate(identity, signal, unit)
        now = time.time() if now is None else now
        ttl = TIME_UNITS[unit] if signal == "frequency" else None  # type: ignore[index]
        count = self._storage.incr(self._key(identity, signal, unit, now), COUNTER_NAMESPACE, ttl=ttl)
        ceiling = self.limits.ceiling(signal, unit)
        verdict = QuotaVerdict(
            within_limit=count <= ceiling,
            count=count,
            ceiling=ceiling,
            signal=signal,
            unit=unit,
        )
        if not verdict.within_limit:
            logger.debug("Visitor %s over %s%s quota: %d/%d",
                         identity, signal, f".{unit}" if unit else "", count, ceiling)
        return verdict

    def check_frequency(self, identity: str, *, now: float | None = None) -> list[QuotaVerdict]:
        """Record one page view in every frequency window."""
        now = time.time() if now is None else now
        return [self.record_and_check(identity, "frequency", unit, now=now) for unit in TIME_UNITS]

    def peek(self, identity: str, signal: str, unit: str | None = None, *, now: float | None = None) -> int:
        """Return the current counter value without incrementing it."""
        self._validate(identity, signal, unit)
        now = time.time() if now is None else now
        return self._storage.get_counter(self._key(identity, signal, unit, now), COUNTER_NAMESPACE)

    def reset(self, identity: str, *, now: float | None = None) -> None:
        """Forget the visitor's unusual-behavior points and current frequency windows."""
        if not identity:
            raise InvalidIdentityError("A visitor identity is required for quota accounting")
        now = time.time() if now is None else now
        for signal in UNUSUAL_BEHAVIOR_SIGNALS:
            self._storage.delete(self._key(identity, signal, None, now), COUNTER_NAMESPACE)
        for unit in TIME_UNITS:
            self._storage.delete(self._key(identity, "frequency", unit, now), COUNTER_NAMESPACE)
