"""Per-request evaluation pipeline.

The firewall kernel wires the components together for one request:

1. resolve the visitor identity from the identity cookie;
2. load (or create) the visitor's session record, sampling session GC;
   when the online-session limit is on, queue visitors past the limit;
3. detect unusual-behavior signals and count them, plus one page view in
   every frequency window;
4. on any breached quota, extend the visitor's failure streak;
5. give the reset cycle its chance to run;
6. return an aggregate verdict.

Saving the session is not implicit: the caller invokes :meth:`Firewall.on_response`
when the response is about to be sent and :meth:`Firewall.on_login` when the
visitor authenticated successfully.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from shieldon_core.core.config import FirewallConfig
from shieldon_core.core.errors import ConfigurationError, StorageUnavailableError
from shieldon_core.services.captcha import Captcha, build_captchas
from shieldon_core.services.escalation import AttemptPolicy, AttemptTracker, EscalationVerdict
from shieldon_core.services.identity import CookieInstruction, IdentityResolution, IdentityResolver
from shieldon_core.services.quota import QuotaLimits, QuotaTracker, QuotaVerdict
from shieldon_core.services.reset_cycle import ResetCycle
from shieldon_core.services.session import SessionStore
from shieldon_core.services.signals import RequestContext, SignalDetector
from shieldon_core.storage.base import FILTER_LOG_NAMESPACE, StorageProvider
from shieldon_core.storage.factory import get_storage

logger = logging.getLogger(__name__)


class Action(str, Enum):
    """Aggregate decision handed back to the caller."""

    PASS = "pass"
    QUOTA_EXCEEDED = "quota_exceeded"
    DENY = "deny"
    SESSION_LIMIT = "session_limit"


@dataclass
class FirewallVerdict:
    """Outcome of :meth:`Firewall.evaluate`."""

    action: Action
    identity: str | None
    cookie: CookieInstruction | None = None
    signals: frozenset[str] = frozenset()
    quotas: list[QuotaVerdict] = field(default_factory=list)
    escalation: EscalationVerdict | None = None
    reset_cycle_ran: bool = False
    # True when storage failed and the storage-failure policy chose the action.
    unknown: bool = False
    excluded: bool = False
    # Place among the online sessions, set when the session limit is on.
    queue_position: int | None = None
    session: SessionStore | None = field(default=None, repr=False)

    @property
    def allowed(self) -> bool:
        return self.action is Action.PASS

    @property
    def breached(self) -> list[QuotaVerdict]:
        return [verdict for verdict in self.quotas if not verdict.within_limit]


class Firewall:
    """Behavioral-tracking kernel evaluated once per inbound request."""

    def __init__(
        self,
        config: FirewallConfig,
        storage: StorageProvider | None = None,
        *,
        resolver: IdentityResolver | None = None,
        captchas: Iterable[Captcha] | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        options = config.options
        if storage is None:
            storage = get_storage(channel_id=options.channel_id)
        elif options.channel_id and storage.channel_id != options.channel_id:
            raise ConfigurationError(
                f"Storage channel {storage.channel_id!r} does not match "
                f"configured channel_id {options.channel_id!r}"
            )

        self.config = config
        self.storage = storage
        self.resolver = resolver or IdentityResolver()
        self.captchas = list(captchas) if captchas is not None else build_captchas(config)
        self.quota = QuotaTracker(storage, QuotaLimits.from_config(config))
        self.attempts = AttemptTracker(storage, AttemptPolicy.from_config(config))
        self.reset_cycle = ResetCycle(config, storage)
        self.detector = SignalDetector(options.filters)
        self._clock = clock
        self._rng = rng

    def is_excluded(self, url: str) -> bool:
        return any(url.startswith(item.url) for item in self.config.options.excluded_urls)

    def evaluate(self, request: RequestContext, *, response: Any = None) -> FirewallVerdict:
        """Run the tracking pipeline for one request.

        Args:
            request: Facts about the inbound request.
            response: Optional response object; a new identity cookie is set on
                it directly. Without it, apply ``verdict.cookie`` yourself.

        Raises:
            StorageUnavailableError: If the session record cannot be loaded.
                Failures during quota accounting do not raise; they resolve
                through ``policy.on_storage_failure``.
        """
        if self.is_excluded(request.url):
            return FirewallVerdict(action=Action.PASS, identity=None, excluded=True)

        now = self._clock()
        cookie_value = request.cookies.get(self.resolver.cookie_name)
        resolution = self.resolver.resolve(cookie_value, response=response, now=now)

        session_options = self.config.options.session
        store = SessionStore(self.storage, clock=self._clock, rng=self._rng)
        store.init(
            self.storage,
            gc_expire=session_options.expire,
            gc_probability=session_options.gc_probability,
            gc_divisor=session_options.gc_divisor,
        )
        record = store.load(resolution.identity, ip=request.ip)

        try:
            verdict = self._track(request, resolution, store, now)
        except StorageUnavailableError as err:
            policy = self.config.options.policy.on_storage_failure
            logger.warning(
                "Quota check for %s failed (%s); applying %r storage-failure policy",
                resolution.identity, err, policy,
            )
            verdict = FirewallVerdict(
                action=Action.PASS if policy == "allow" else Action.DENY,
                identity=resolution.identity,
                cookie=resolution.cookie,
                unknown=True,
                session=store,
            )

        verdict.reset_cycle_ran = self.reset_cycle.maybe_run(now)
        logger.debug(
            "Visitor %s (%s) -> %s signals=%s",
            record.id, request.ip, verdict.action.value, sorted(verdict.signals),
        )
        return verdict

    def _track(
        self,
        request: RequestContext,
        resolution: IdentityResolution,
        store: SessionStore,
        now: float,
    ) -> FirewallVerdict:
        identity = resolution.identity
        limit = self.config.options.online_session_limit
        position = None
        if limit.enable:
            position = store.queue_position(limit.config.period, now=now)
            if position > limit.config.count:
                logger.info("Visitor %s queued at %d of %d online", identity, position, limit.config.count)
                return FirewallVerdict(
                    action=Action.SESSION_LIMIT,
                    identity=identity,
                    cookie=resolution.cookie,
                    queue_position=position,
                    session=store,
                )

        first_seen = None
        if self.detector.enabled("session") and request.ip:
            first_seen = self._first_seen(request.ip, now)
        signals = self.detector.detect(
            request,
            store.record,  # type: ignore[arg-type]
            identity_cookie=request.cookies.get(self.resolver.cookie_name),
            identity_reissued=resolution.is_new,
            session_created=store.created,
            now=now,
            first_seen=first_seen,
        )

        quotas = [self.quota.record_and_check(identity, signal, now=now) for signal in sorted(signals)]
        if self.detector.enabled("frequency"):
            quotas.extend(self.quota.check_frequency(identity, now=now))

        escalation = None
        action = Action.PASS
        if any(not verdict.within_limit for verdict in quotas):
            action = Action.QUOTA_EXCEEDED
            escalation = self.attempts.record_failure(identity, now=now)
            if escalation.system_firewall_triggered:
                action = Action.DENY

        return FirewallVerdict(
            action=action,
            identity=identity,
            cookie=resolution.cookie,
            signals=frozenset(signals),
            quotas=quotas,
            escalation=escalation,
            queue_position=position,
            session=store,
        )

    def _first_seen(self, ip: str, now: float) -> float:
        log = self.storage.get(ip, FILTER_LOG_NAMESPACE)
        if log is None:
            log = self.storage.update(
                ip, FILTER_LOG_NAMESPACE, lambda current: current or {"first_seen": now}
            )
        return float(log["first_seen"])  # type: ignore[index]

    def on_response(self, verdict: FirewallVerdict) -> None:
        """Persist the visitor's session; call when the response is about to be sent."""
        self._save(verdict)

    def on_login(self, verdict: FirewallVerdict) -> None:
        """Persist the visitor's session after a successful authentication."""
        self._save(verdict)

    @staticmethod
    def _save(verdict: FirewallVerdict) -> None:
        if verdict.session is not None and verdict.session.record is not None:
            verdict.session.save()

    def solve_captcha(self, identity: str, form: Mapping[str, str], remote_ip: str = "") -> bool:
        """Forgive a visitor whose CAPTCHA answer every verifier accepts.

        Clears the visitor's quota counters and failure streak.
        """
        if not all(captcha.verify(form, remote_ip) for captcha in self.captchas):
            return False
        self.quota.reset(identity, now=self._clock())
        self.attempts.reset(identity)
        logger.info("Visitor %s solved the CAPTCHA; counters cleared", identity)
        return True
