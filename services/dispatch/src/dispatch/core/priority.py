"""Deterministic priority resolution from a 0-100 risk score.

  score >= 80  -> Critical, auto-escalate
  60 .. 79     -> High
  30 .. 59     -> Medium
  score < 30   -> Low

Resolved once at intake; reassignment never recomputes it.
"""

from __future__ import annotations

from typing import NamedTuple

from services.dispatch.src.dispatch.schemas.enums import PriorityTier

CRITICAL_THRESHOLD = 80
HIGH_THRESHOLD = 60
MEDIUM_THRESHOLD = 30


class PriorityDecision(NamedTuple):
    tier: PriorityTier
    auto_escalate: bool


def resolve_priority(risk_score: int) -> PriorityDecision:
    """Map a risk score to a priority tier and auto-escalation flag."""
    if isinstance(risk_score, bool) or not isinstance(risk_score, int):
        raise TypeError(f"risk_score must be an int, got {type(risk_score).__name__}")
    if not 0 <= risk_score <= 100:
        raise ValueError(f"risk_score must be within 0-100, got {risk_score}")

    if risk_score >= CRITICAL_THRESHOLD:
        return PriorityDecision(PriorityTier.CRITICAL, True)
    if risk_score >= HIGH_THRESHOLD:
        return PriorityDecision(PriorityTier.HIGH, False)
    if risk_score >= MEDIUM_THRESHOLD:
        return PriorityDecision(PriorityTier.MEDIUM, False)
    return PriorityDecision(PriorityTier.LOW, False)


def escalation_reason(risk_score: int) -> str:
    return f"risk score {risk_score}"
