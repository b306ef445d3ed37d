"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends, Request

from shieldon_core.services.firewall import Firewall, FirewallVerdict


def get_firewall(request: Request) -> Firewall:
    """Return the firewall attached to the application by ``create_app``."""
    return request.app.state.firewall


def get_verdict(request: Request) -> FirewallVerdict | None:
    """Return the verdict the middleware computed for this request, if any."""
    return getattr(request.state, "shieldon", None)


FirewallDep = Annotated[Firewall, Depends(get_firewall)]
VerdictDep = Annotated[FirewallVerdict | None, Depends(get_verdict)]
