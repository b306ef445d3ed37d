"""CAPTCHA endpoint letting a rate-limited visitor clear their counters."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from shieldon_core.api.dependencies import FirewallDep
from shieldon_core.api.middleware import client_ip
from shieldon_core.core.settings import settings
from shieldon_core.schemas import CaptchaResult, CaptchaSubmission
from shieldon_core.services.captcha import RECAPTCHA_FIELD

CAPTCHA_PATH = "/shieldon/captcha"

router = APIRouter(tags=["firewall"])


@router.post(CAPTCHA_PATH, response_model=CaptchaResult)
async def solve_captcha(
    payload: CaptchaSubmission,
    request: Request,
    firewall: FirewallDep,
) -> CaptchaResult:
    """Verify the visitor's CAPTCHA answer.

    Args:
        payload: Token produced by the CAPTCHA widget
        request: Incoming request, carrying the identity cookie
        firewall: Firewall attached to the application

    Returns:
        Whether the answer was accepted and the visitor forgiven

    Raises:
        HTTPException: If the request carries no valid identity cookie
    """
    identity = request.cookies.get(firewall.resolver.cookie_name)
    if not firewall.resolver.validate(identity):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing or invalid visitor identity",
        )
    solved = await run_in_threadpool(
        firewall.solve_captcha,
        identity,
        {RECAPTCHA_FIELD: payload.response},
        client_ip(request, settings.ip_header),
    )
    return CaptchaResult(solved=solved)
