"""Tests for the priority resolver."""

import pytest

from services.dispatch.src.dispatch.core.priority import escalation_reason, resolve_priority
from services.dispatch.src.dispatch.schemas.enums import PriorityTier


@pytest.mark.parametrize("score,tier,escalate", [
    (0, PriorityTier.LOW, False),
    (29, PriorityTier.LOW, False),
    (30, PriorityTier.MEDIUM, False),
    (59, PriorityTier.MEDIUM, False),
    (60, PriorityTier.HIGH, False),
    (79, PriorityTier.HIGH, False),
    (80, PriorityTier.CRITICAL, True),
    (100, PriorityTier.CRITICAL, True),
])
def test_tier_boundaries(score, tier, escalate):
    decision = resolve_priority(score)
    assert decision.tier == tier
    assert decision.auto_escalate is escalate


@pytest.mark.parametrize("score", [-1, 101, 1000])
def test_out_of_range_rejected(score):
    with pytest.raises(ValueError):
        resolve_priority(score)


@pytest.mark.parametrize("score", [55.5, "70", True, None])
def test_non_integer_rejected(score):
    with pytest.raises(TypeError):
        resolve_priority(score)


def test_only_critical_auto_escalates():
    flags = {resolve_priority(s).auto_escalate for s in range(0, 80)}
    assert flags == {False}


def test_escalation_reason_names_score():
    assert escalation_reason(92) == "risk score 92"
