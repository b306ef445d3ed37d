"""Schemas describing firewall verdicts over HTTP."""
from __future__ import annotations

from pydantic import BaseModel, Field

from shieldon_core.services.firewall import FirewallVerdict


class QuotaOut(BaseModel):
    """One breached counter."""

    signal: str
    unit: str | None = None
    count: int
    ceiling: int


class VerdictOut(BaseModel):
    """Body returned when a request is stopped by the firewall."""

    action: str
    signals: list[str] = Field(default_factory=list)
    breached: list[QuotaOut] = Field(default_factory=list)
    streak: int = 0
    unknown: bool = False
    queue_position: int | None = None

    @classmethod
    def from_verdict(cls, verdict: FirewallVerdict) -> "VerdictOut":
        return cls(
            action=verdict.action.value,
            signals=sorted(verdict.signals),
            breached=[
                QuotaOut(signal=q.signal, unit=q.unit, count=q.count, ceiling=q.ceiling)
                for q in verdict.breached
            ],
            streak=verdict.escalation.streak if verdict.escalation else 0,
            unknown=verdict.unknown,
            queue_position=verdict.queue_position,
        )


class CaptchaSubmission(BaseModel):
    """Answer to the CAPTCHA challenge shown to a rate-limited visitor."""

    response: str = Field(..., min_length=1, description="Token issued by the CAPTCHA widget.")


class CaptchaResult(BaseModel):
    solved: bool
