# src/shieldon_core/services/__init__.py
"""Behavioral-tracking services of the Shieldon core."""

from .captcha import AlwaysFail, Captcha, Recaptcha, build_captchas
from .escalation import AttemptPolicy, AttemptTracker, EscalationVerdict
from .firewall import Action, Firewall, FirewallVerdict
from .identity import CookieInstruction, IdentityResolution, IdentityResolver
from .quota import QuotaLimits, QuotaTracker, QuotaVerdict
from .reset_cycle import ResetCycle
from .session import SessionRecord, SessionStore
from .signals import RequestContext, SignalDetector

__all__ = [
    "Action", "Firewall", "FirewallVerdict",
    "AlwaysFail", "Captcha", "Recaptcha", "build_captchas",
    "AttemptPolicy", "AttemptTracker", "EscalationVerdict",
    "CookieInstruction", "IdentityResolution", "IdentityResolver",
    "QuotaLimits", "QuotaTracker", "QuotaVerdict",
    "ResetCycle",
    "SessionRecord", "SessionStore",
    "RequestContext", "SignalDetector",
]
