"""
risk.py - Bounded 0-100 risk score for a supplement.

Three weighted indicators, each clipped to 0-100 before weighting:

    variance_percent  0.6   total variance % (increases only)
    new_item_share    0.3   new-item dollars as % of supplement total
    unknown_items     0.1   20 points per unclassifiable supplement line

Tiers: low < 33, medium 33-66, high > 66.
"""

from __future__ import annotations

from typing import Mapping, NamedTuple

from logging_config import get_logger
from models import (
    ChargeType,
    ClassificationResult,
    ReconciliationResult,
    RiskAssessment,
    RiskFactor,
    RiskTier,
    VarianceStatistics,
)

logger = get_logger(__name__)


class Indicator(NamedTuple):
    weight: float
    trigger: float
    likelihood: float
    mitigation: str


INDICATORS: dict[str, Indicator] = {
    "variance_percent": Indicator(
        weight=0.6,
        trigger=10.0,
        likelihood=0.8,
        mitigation="Request itemized justification for the cost increase and compare against the original estimate",
    ),
    "new_item_share": Indicator(
        weight=0.3,
        trigger=20.0,
        likelihood=0.7,
        mitigation="Verify each new line item against photos or a re-inspection of the damage",
    ),
    "unknown_items": Indicator(
        weight=0.1,
        trigger=1.0,
        likelihood=0.5,
        mitigation="Manually review unclassified line items and request clarification from the shop",
    ),
}

UNKNOWN_ITEM_POINTS = 20.0

LOW_TIER_CEILING = 33
HIGH_TIER_FLOOR = 66

TIER_RECOMMENDATIONS: dict[RiskTier, str] = {
    RiskTier.LOW: "Low risk - standard processing",
    RiskTier.MEDIUM: "Medium risk - review flagged items before approval",
    RiskTier.HIGH: "High risk - detailed review and re-inspection recommended before approval",
}


def _clip(value: float) -> float:
    return max(0.0, min(100.0, value))


def risk_tier(score: int) -> RiskTier:
    if score < LOW_TIER_CEILING:
        return RiskTier.LOW
    if score <= HIGH_TIER_FLOOR:
        return RiskTier.MEDIUM
    return RiskTier.HIGH


def _indicator_values(
    statistics: VarianceStatistics,
    reconciliation: ReconciliationResult,
    classifications: Mapping[tuple[str, str], ClassificationResult],
) -> dict[str, float]:
    variance_percent = statistics.total_variance_percent or 0.0

    new_item_share = 0.0
    if statistics.supplement_total > 0:
        new_item_share = float(statistics.new_item_total / statistics.supplement_total * 100)

    unknown = 0
    for item in reconciliation.supplement_items:
        result = classifications.get(("supplement", item.id))
        if result is not None and result.charge_type == ChargeType.UNKNOWN:
            unknown += 1

    return {
        "variance_percent": round(_clip(variance_percent), 2),
        "new_item_share": round(_clip(new_item_share), 2),
        "unknown_items": _clip(unknown * UNKNOWN_ITEM_POINTS),
    }


def _describe(name: str, value: float) -> str:
    if name == "variance_percent":
        return f"Supplement total increased {value:.1f}% over the original estimate"
    if name == "new_item_share":
        return f"New line items account for {value:.1f}% of the supplement total"
    return f"{int(value // UNKNOWN_ITEM_POINTS)} supplement line item(s) could not be classified"


def assess_risk(
    statistics: VarianceStatistics,
    reconciliation: ReconciliationResult,
    classifications: Mapping[tuple[str, str], ClassificationResult],
) -> RiskAssessment:
    """Score a comparison and explain what drove the score."""
    values = _indicator_values(statistics, reconciliation, classifications)

    weighted = {name: values[name] * INDICATORS[name].weight for name in INDICATORS}
    score = int(round(max(0.0, min(100.0, sum(weighted.values())))))
    tier = risk_tier(score)

    factors: list[RiskFactor] = []
    for name, indicator in INDICATORS.items():
        value = values[name]
        triggered = value >= indicator.trigger if name == "unknown_items" else value > indicator.trigger
        if not triggered:
            continue
        factors.append(
            RiskFactor(
                type=name,
                description=_describe(name, value),
                impact=round(weighted[name], 2),
                likelihood=indicator.likelihood,
                mitigation=indicator.mitigation,
            )
        )

    recommendations = [TIER_RECOMMENDATIONS[tier]]
    recommendations.extend(factor.mitigation for factor in factors)

    logger.info(
        "risk_assessed | score=%s | tier=%s | factors=%s | indicators=%s",
        score,
        tier.value,
        [factor.type for factor in factors],
        values,
    )
    return RiskAssessment(
        overall_score=score,
        risk_tier=tier,
        risk_factors=factors,
        recommendations=recommendations,
        indicators=values,
    )
