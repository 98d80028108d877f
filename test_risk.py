"""
test_risk.py - Risk scoring tests

Usage: python test_risk.py
"""

from __future__ import annotations

import os
import sys
from decimal import Decimal

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from models import (
    ChargeType,
    ClassificationResult,
    LineItem,
    ReconciliationResult,
    RiskTier,
    VarianceStatistics,
)
from risk import INDICATORS, TIER_RECOMMENDATIONS, assess_risk, risk_tier


def _stats(original: str, supplement: str, pct, new_total: str = "0") -> VarianceStatistics:
    return VarianceStatistics(
        original_total=Decimal(original),
        supplement_total=Decimal(supplement),
        total_variance=Decimal(supplement) - Decimal(original),
        total_variance_percent=pct,
        new_item_total=Decimal(new_total),
    )


def _unknown_supplement(count: int):
    items = [LineItem(id=f"s{n}", description="Thing", total=Decimal("10")) for n in range(count)]
    reconciliation = ReconciliationResult(new_items=items)
    classifications = {
        ("supplement", item.id): ClassificationResult(line_item_id=item.id, charge_type=ChargeType.UNKNOWN, confidence=0.0)
        for item in items
    }
    return reconciliation, classifications


@pytest.mark.parametrize(
    "score,tier",
    [(0, RiskTier.LOW), (32, RiskTier.LOW), (33, RiskTier.MEDIUM), (66, RiskTier.MEDIUM), (67, RiskTier.HIGH), (100, RiskTier.HIGH)],
)
def test_risk_tier_boundaries(score, tier):
    assert risk_tier(score) == tier


def test_weights_sum_to_one():
    assert sum(indicator.weight for indicator in INDICATORS.values()) == pytest.approx(1.0)


def test_no_change_is_zero_risk():
    assessment = assess_risk(_stats("1000", "1000", 0.0), ReconciliationResult(), {})
    assert assessment.overall_score == 0
    assert assessment.risk_tier == RiskTier.LOW
    assert assessment.risk_factors == []
    assert assessment.recommendations == [TIER_RECOMMENDATIONS[RiskTier.LOW]]


def test_moderate_increase():
    # 35% increase, new items are 18.5% of the supplement.
    assessment = assess_risk(_stats("1200", "1620", 35.0, new_total="300"), ReconciliationResult(), {})
    assert assessment.overall_score == 27
    assert assessment.risk_tier == RiskTier.LOW
    assert [factor.type for factor in assessment.risk_factors] == ["variance_percent"]
    assert assessment.risk_factors[0].impact == pytest.approx(21.0)
    assert assessment.indicators["new_item_share"] == pytest.approx(18.52)


def test_large_increase_is_high_risk():
    assessment = assess_risk(_stats("1000", "3000", 200.0, new_total="1500"), ReconciliationResult(), {})
    # variance clipped to 100 -> 60, new share 50% -> 15
    assert assessment.overall_score == 75
    assert assessment.risk_tier == RiskTier.HIGH
    assert assessment.indicators["variance_percent"] == 100.0
    assert {factor.type for factor in assessment.risk_factors} == {"variance_percent", "new_item_share"}
    assert len(assessment.recommendations) == 3


def test_decrease_does_not_add_risk():
    assessment = assess_risk(_stats("1000", "500", -50.0), ReconciliationResult(), {})
    assert assessment.overall_score == 0
    assert assessment.indicators["variance_percent"] == 0.0


def test_unknown_items_raise_score():
    reconciliation, classifications = _unknown_supplement(2)
    assessment = assess_risk(_stats("0", "20", None, new_total="20"), reconciliation, classifications)
    # new share 100% -> 30, two unknown items -> 40 points -> 4
    assert assessment.indicators["unknown_items"] == 40.0
    assert assessment.overall_score == 34
    assert assessment.risk_tier == RiskTier.MEDIUM
    factor = next(f for f in assessment.risk_factors if f.type == "unknown_items")
    assert factor.description.startswith("2 supplement line item(s)")


def test_unknown_points_are_clipped():
    reconciliation, classifications = _unknown_supplement(8)
    assessment = assess_risk(_stats("0", "80", None), reconciliation, classifications)
    assert assessment.indicators["unknown_items"] == 100.0


def test_score_always_bounded():
    assessment = assess_risk(_stats("1", "100000", 9999999.0, new_total="100000"), ReconciliationResult(), {})
    assert 0 <= assessment.overall_score <= 100


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-q"]))
