"""Consecutive failed-check tracking.

A visitor's streak grows while failures arrive within ``detection_period`` of
each other; a longer gap restarts it at one. A streak left untouched for
``time_to_reset`` seconds is forgotten. Two escalation paths read the streak:

- ``data_circle``: soft consequence, used for internal scoring;
- ``system_firewall``: hard consequence, eligible for outright denial.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from shieldon_core.core.config import FirewallConfig
from shieldon_core.core.errors import InvalidIdentityError
from shieldon_core.storage.base import ATTEMPT_NAMESPACE, Record, StorageProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptPolicy:
    """Escalation thresholds and streak timing."""

    data_circle_enabled: bool = True
    data_circle_buffer: int = 10
    system_firewall_enabled: bool = False
    system_firewall_buffer: int = 10
    detection_period: int = 5
    time_to_reset: int = 1800

    @classmethod
    def from_config(cls, config: FirewallConfig) -> "AttemptPolicy":
        paths = config.options.events.failed_attempts_in_a_row
        timing = config.options.record_attempt
        return cls(
            data_circle_enabled=paths.data_circle.enable,
            data_circle_buffer=paths.data_circle.buffer,
            system_firewall_enabled=paths.system_firewall.enable,
            system_firewall_buffer=paths.system_firewall.buffer,
            detection_period=timing.detection_period,
            time_to_reset=timing.time_to_reset,
        )


@dataclass(frozen=True)
class EscalationVerdict:
    data_circle_triggered: bool
    system_firewall_triggered: bool
    streak: int = 0


class AttemptTracker:
    """Maintain the failure streak of each visitor."""

    def __init__(self, storage: StorageProvider, policy: AttemptPolicy | None = None) -> None:
        self._storage = storage
        self.policy = policy or AttemptPolicy()

    def _expired(self, state: Record, now: float) -> bool:
        return now - float(state.get("last_failure", 0)) > self.policy.time_to_reset

    def record_failure(self, identity: str, *, now: float | None = None) -> EscalationVerdict:
        """Add one failed check to the visitor's streak and evaluate both paths.

        Raises:
            InvalidIdentityError: If ``identity`` is empty.
            StorageUnavailableError: If the backend fails.
        """
        if not identity:
            raise InvalidIdentityError("A visitor identity is required to record a failure")
        now = time.time() if now is None else now
        policy = self.policy

        def _bump(state: Record | None) -> Record:
            count = 0
            if state is not None and not self._expired(state, now):
                count = int(state.get("count", 0))
                if now - float(state.get("last_failure", 0)) > policy.detection_period:
                    count = 0
            return {"count": count + 1, "last_failure": now}

        state = self._storage.update(identity, ATTEMPT_NAMESPACE, _bump, ttl=policy.time_to_reset)
        streak = int(state["count"]) if state else 1

        data_circle = policy.data_circle_enabled and streak >= policy.data_circle_buffer
        system_firewall = policy.system_firewall_enabled and streak >= policy.system_firewall_buffer
        if data_circle or system_firewall:
            logger.info(
                "Visitor %s failed %d checks in a row (data_circle=%s, system_firewall=%s)",
                identity, streak, data_circle, system_firewall,
            )
        return EscalationVerdict(
            data_circle_triggered=data_circle,
            system_firewall_triggered=system_firewall,
            streak=streak,
        )

    def streak(self, identity: str, *, now: float | None = None) -> int:
        """Return the visitor's current streak, 0 once it has been forgotten."""
        now = time.time() if now is None else now
        state = self._storage.get(identity, ATTEMPT_NAMESPACE)
        if state is None or self._expired(state, now):
            return 0
        return int(state.get("count", 0))

    def reset(self, identity: str) -> None:
        self._storage.delete(identity, ATTEMPT_NAMESPACE)
