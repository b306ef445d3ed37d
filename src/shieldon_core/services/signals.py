"""Derive behavioral signals from the inbound request.

The detector turns request facts into the set of "unusual behavior" signals
the quota tracker counts:

- ``cookie``: the JavaScript-set cookie is missing or wrong once the visitor
  is older than the cookie filter's time buffer (real browsers run the script
  on their first page view);
- ``referer``: no ``Referer`` header once the visitor is older than the
  referer filter's time buffer;
- ``session``: session continuity broke, i.e. the request carried an identity
  cookie that failed validation, or a valid identity whose record was gone.
  A broken session always starts a fresh record, so its time buffer counts from
  the first time the client IP was seen (``first_seen``) instead.

Callers may add their own flags (from IP, rDNS or user-agent components)
through :attr:`RequestContext.flags`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from shieldon_core.core.config import FilterOptions
from shieldon_core.services.session import SessionRecord


@dataclass(frozen=True)
class RequestContext:
    """Request facts consumed by the firewall kernel."""

    url: str = "/"
    ip: str = ""
    cookies: Mapping[str, str] = field(default_factory=dict)
    referer: str = ""
    user_agent: str = ""
    flags: frozenset[str] = frozenset()


class SignalDetector:
    """Flag the unusual-behavior signals enabled in the filter options."""

    def __init__(self, filters: FilterOptions) -> None:
        self._filters = filters

    def enabled(self, signal: str) -> bool:
        return bool(getattr(self._filters, signal).enable)

    def detect(
        self,
        request: RequestContext,
        session: SessionRecord,
        *,
        identity_cookie: str | None,
        identity_reissued: bool,
        session_created: bool,
        now: float,
        first_seen: float | None = None,
    ) -> set[str]:
        """Return the signals this request raises."""
        flags: set[str] = {flag for flag in request.flags if flag in ("session", "cookie", "referer")}
        age = now - session.created_at

        cookie = self._filters.cookie
        if cookie.enable and age > cookie.config.time_buffer:
            if request.cookies.get(cookie.config.cookie_name) != cookie.config.cookie_value:
                flags.add("cookie")

        referer = self._filters.referer
        if referer.enable and age > referer.config.time_buffer and not request.referer:
            flags.add("referer")

        continuity = self._filters.session
        since = session.created_at if first_seen is None else first_seen
        if continuity.enable and now - since > continuity.config.time_buffer:
            tampered = identity_reissued and bool(identity_cookie)
            lost = not identity_reissued and session_created
            if tampered or lost:
                flags.add("session")

        return {flag for flag in flags if self.enabled(flag)}
