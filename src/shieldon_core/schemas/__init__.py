"""
Pydantic schemas for the HTTP surface of the firewall.

These schemas define the JSON bodies returned to blocked visitors and the
CAPTCHA submission payload.
"""

from .verdict import CaptchaResult, CaptchaSubmission, QuotaOut, VerdictOut

__all__ = ["CaptchaResult", "CaptchaSubmission", "QuotaOut", "VerdictOut"]
