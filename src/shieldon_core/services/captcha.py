"""CAPTCHA verification collaborators.

The core never renders a challenge; it only asks the configured verifiers
whether the visitor's answer is valid, and forgives the visitor when all of
them agree.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

import httpx

from shieldon_core.core.config import FirewallConfig, RecaptchaConfig

logger = logging.getLogger(__name__)

RECAPTCHA_FIELD = "g-recaptcha-response"


class Captcha(Protocol):
    """Anything able to verify a submitted CAPTCHA form."""

    def verify(self, form: Mapping[str, str], remote_ip: str = "") -> bool: ...


class AlwaysFail:
    """Verifier used when no CAPTCHA module is enabled; nobody gets forgiven."""

    def verify(self, form: Mapping[str, str], remote_ip: str = "") -> bool:
        return False


class Recaptcha:
    """Google reCAPTCHA (v2/v3) server-side verification."""

    def __init__(self, config: RecaptchaConfig, client: httpx.Client | None = None) -> None:
        self._config = config
        self._client = client

    def verify(self, form: Mapping[str, str], remote_ip: str = "") -> bool:
        token = form.get(RECAPTCHA_FIELD, "")
        if not token:
            return False

        payload = {"secret": self._config.secret_key, "response": token}
        if remote_ip:
            payload["remoteip"] = remote_ip

        try:
            if self._client is not None:
                response = self._client.post(self._config.verify_url, data=payload)
            else:
                with httpx.Client(timeout=self._config.timeout_seconds) as client:
                    response = client.post(self._config.verify_url, data=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as err:
            logger.warning("reCAPTCHA verification request failed: %s", err)
            return False
        except ValueError as err:
            logger.warning("reCAPTCHA returned an unreadable body: %s", err)
            return False

        return bool(body.get("success")) if isinstance(body, dict) else False


def build_captchas(config: FirewallConfig) -> list[Captcha]:
    """Instantiate the verifiers enabled under ``captcha_modules``."""
    captchas: list[Captcha] = []
    recaptcha = config.options.captcha_modules.recaptcha
    if recaptcha.enable and recaptcha.config.secret_key:
        captchas.append(Recaptcha(recaptcha.config))
    return captchas or [AlwaysFail()]
