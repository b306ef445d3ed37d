"""Starlette middleware running the firewall in front of every route."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from shieldon_core.core.errors import StorageUnavailableError
from shieldon_core.core.settings import settings
from shieldon_core.schemas import VerdictOut
from shieldon_core.services.firewall import Action, Firewall, FirewallVerdict
from shieldon_core.services.signals import RequestContext

logger = logging.getLogger(__name__)


def client_ip(request: Request, ip_header: str | None = None) -> str:
    """Return the client address, preferring ``ip_header`` when configured."""
    if ip_header:
        forwarded = request.headers.get(ip_header, "")
        if forwarded:
            # X-Forwarded-For style lists carry the client first.
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def request_context(request: Request, ip_header: str | None = None) -> RequestContext:
    """Collect the request facts the firewall kernel needs."""
    return RequestContext(
        url=request.url.path,
        ip=client_ip(request, ip_header),
        cookies=dict(request.cookies),
        referer=request.headers.get("referer", ""),
        user_agent=request.headers.get("user-agent", ""),
    )


def _status_for(verdict: FirewallVerdict) -> int:
    if verdict.unknown or verdict.action is Action.SESSION_LIMIT:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if verdict.action is Action.DENY:
        return status.HTTP_403_FORBIDDEN
    return status.HTTP_429_TOO_MANY_REQUESTS


class FirewallMiddleware(BaseHTTPMiddleware):
    """Evaluate each request and stop the ones the firewall does not let through."""

    def __init__(
        self,
        app: ASGIApp,
        firewall: Firewall,
        exempt_paths: Iterable[str] = (),
        ip_header: str | None = None,
    ) -> None:
        super().__init__(app)
        self.firewall = firewall
        self.exempt_paths = tuple(exempt_paths)
        self.ip_header = ip_header if ip_header is not None else settings.ip_header

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        context = request_context(request, self.ip_header)
        try:
            # Storage drivers are synchronous; keep them off the event loop.
            verdict = await run_in_threadpool(self.firewall.evaluate, context)
        except StorageUnavailableError as err:
            logger.error("Firewall could not load the session for %s: %s", context.ip, err)
            return JSONResponse(
                {"detail": "Service temporarily unavailable"},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        request.state.shieldon = verdict
        if verdict.allowed:
            response = await call_next(request)
        else:
            response = JSONResponse(
                VerdictOut.from_verdict(verdict).model_dump(),
                status_code=_status_for(verdict),
            )

        if verdict.cookie is not None:
            verdict.cookie.apply(response)
        try:
            await run_in_threadpool(self.firewall.on_response, verdict)
        except StorageUnavailableError as err:
            logger.error("Firewall could not save the session of %s: %s", verdict.identity, err)
        return response
