"""Visitor identity resolution.

The identity is an opaque 128-bit token kept in a cookie (``_shieldon`` by
default). It is independent of the storage backend: resolving never performs
I/O beyond reading the inbound cookie value and emitting a set-cookie
instruction.
"""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import formatdate
from typing import Any, Final

from shieldon_core.core.settings import settings

IDENTITY_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-f0-9]{32}$")
DEFAULT_COOKIE_NAME: Final[str] = "_shieldon"
DEFAULT_COOKIE_LIFETIME: Final[int] = 3600


@dataclass(frozen=True)
class CookieInstruction:
    """A request to set the identity cookie on the outgoing response."""

    name: str
    value: str
    path: str
    expires: int
    domain: str = ""

    def header_value(self) -> str:
        """Render the ``Set-Cookie`` header value."""
        parts = [f"{self.name}={self.value}", f"Path={self.path}"]
        if self.domain:
            parts.append(f"Domain={self.domain}")
        parts.append(f"Expires={formatdate(self.expires, usegmt=True)}")
        return "; ".join(parts)

    def apply(self, response: Any) -> None:
        """Set the cookie on a response object.

        Accepts Starlette/FastAPI responses (``set_cookie``) or any object with
        a ``headers`` mapping supporting ``append``.
        """
        if hasattr(response, "set_cookie"):
            response.set_cookie(
                key=self.name,
                value=self.value,
                path=self.path,
                expires=datetime.fromtimestamp(self.expires, UTC),
                domain=self.domain or None,
            )
            return
        headers = getattr(response, "headers", None)
        if headers is None or not hasattr(headers, "append"):
            raise TypeError(f"Cannot set a cookie on {type(response).__name__}")
        headers.append("Set-Cookie", self.header_value())


@dataclass(frozen=True)
class IdentityResolution:
    """Outcome of :meth:`IdentityResolver.resolve`."""

    identity: str
    is_new: bool
    cookie: CookieInstruction | None = None


class IdentityResolver:
    """Derive or assign the visitor identity carried by the identity cookie."""

    def __init__(
        self,
        cookie_name: str | None = None,
        *,
        cookie_path: str = "/",
        cookie_domain: str = "",
        lifetime: int | None = None,
    ) -> None:
        self.cookie_name = cookie_name or settings.cookie_name or DEFAULT_COOKIE_NAME
        self.cookie_path = cookie_path
        self.cookie_domain = cookie_domain
        self.lifetime = int(lifetime if lifetime is not None else settings.cookie_lifetime_seconds)

    @staticmethod
    def generate() -> str:
        """Return a fresh identity token."""
        return secrets.token_hex(16)

    @staticmethod
    def validate(value: str | None) -> bool:
        """Return True when ``value`` has the shape of an issued identity."""
        return bool(value) and IDENTITY_PATTERN.match(value) is not None  # type: ignore[arg-type]

    def resolve(
        self,
        existing_cookie_value: str | None,
        *,
        response: Any = None,
        now: float | None = None,
    ) -> IdentityResolution:
        """Return the visitor identity, issuing a new one when needed.

        Args:
            existing_cookie_value: Value of the identity cookie on the request.
            response: Optional response to set the cookie on directly. When
                omitted, the caller applies ``resolution.cookie`` itself.
            now: Current epoch seconds, for the cookie expiry.
        """
        if self.validate(existing_cookie_value):
            return IdentityResolution(identity=existing_cookie_value, is_new=False)  # type: ignore[arg-type]

        identity = self.generate()
        issued_at = int(now if now is not None else time.time())
        cookie = CookieInstruction(
            name=self.cookie_name,
            value=identity,
            path=self.cookie_path,
            expires=issued_at + self.lifetime,
            domain=self.cookie_domain,
        )
        if response is not None:
            cookie.apply(response)
        return IdentityResolution(identity=identity, is_new=True, cookie=cookie)
