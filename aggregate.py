"""
aggregate.py - Variance statistics over one reconciled comparison.

Inputs are keyed by (invoice, line_item_id) where invoice is "original" or
"supplement", so the same id may appear on both sides:

    classifications[(invoice, id)] -> ClassificationResult
    details[(invoice, id)]         -> ChargeDetail

Descriptive statistics (mean, median, population standard deviation, range)
are computed with pandas over the signed total variance of every item
variance. Suspicious pricing patterns and data quality metrics ride along.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Mapping, Optional

import pandas as pd

from config import ComparisonOptions
from logging_config import get_logger
from models import (
    CENT,
    COST_TOLERANCE,
    CategoryVariance,
    ChargeDetail,
    ChargeType,
    ChargeTypeDistribution,
    ClassificationResult,
    CostComponentTotals,
    DataQualityIssue,
    DataQualityMetrics,
    ItemVariance,
    LaborOnlyCharge,
    LineItem,
    MaterialCharge,
    MiscellaneousCharge,
    PartWithLaborCharge,
    ReconciliationResult,
    Severity,
    SubletCharge,
    SuspiciousPattern,
    UnknownCharge,
    VarianceRange,
    VarianceStatistics,
)
from separate import infer_vehicle_system
from variance import calculate_item_variances, percentage_change

logger = get_logger(__name__)

AnalysisKey = tuple[str, str]

# Round-number bias fires when more than this share of matched pairs moved
# to a price divisible by 10.
ROUND_NUMBER_SHARE = 0.3
ROUND_NUMBER_CONFIDENCE = 0.6

INFLATED_PRICE_PERCENT = 50.0
INFLATED_PRICE_CONFIDENCE = 0.7

DUPLICATE_ITEMS_CONFIDENCE = 0.8

# Upper bound of plausible labor hours on one line, by vehicle system.
MAX_REASONABLE_LABOR_HOURS: dict[str, Decimal] = {
    "BODY": Decimal("12"),
    "PAINT": Decimal("12"),
    "FRAME": Decimal("20"),
    "MECHANICAL": Decimal("15"),
    "ELECTRICAL": Decimal("8"),
}
DEFAULT_MAX_LABOR_HOURS = Decimal("8")
EXCESSIVE_LABOR_CONFIDENCE = 0.8

LABOR_BEARING_TYPES = (ChargeType.PART_WITH_LABOR, ChargeType.LABOR_ONLY)


def _charge_type(
    classifications: Mapping[AnalysisKey, ClassificationResult],
    invoice: str,
    item_id: Optional[str],
) -> ChargeType:
    result = classifications.get((invoice, item_id or ""))
    return result.charge_type if result is not None else ChargeType.UNKNOWN


def _variance_charge_type(
    variance: ItemVariance,
    classifications: Mapping[AnalysisKey, ClassificationResult],
) -> ChargeType:
    # Pairs and new items take the supplement side, removed items the original.
    if variance.supplement_id is not None:
        return _charge_type(classifications, "supplement", variance.supplement_id)
    return _charge_type(classifications, "original", variance.original_id)


def is_high_variance(variance: ItemVariance, options: ComparisonOptions) -> bool:
    if abs(variance.total_variance) > options.significance_dollar_floor:
        return True
    pct = variance.percentage_change
    return pct is not None and abs(pct) > options.significance_percent


def cost_component_totals(
    items: list[LineItem],
    invoice: str,
    details: Mapping[AnalysisKey, ChargeDetail],
) -> CostComponentTotals:
    """Dollars of one invoice attributed to parts, labor, materials, ..."""
    sums: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))

    for item in items:
        detail = details.get((invoice, item.id))
        if isinstance(detail, PartWithLaborCharge):
            sums["parts"] += detail.breakdown.part_cost
            sums["labor"] += detail.breakdown.labor_cost
        elif isinstance(detail, LaborOnlyCharge):
            sums["labor"] += detail.labor.cost
        elif isinstance(detail, MaterialCharge):
            sums["materials"] += detail.material.cost
        elif isinstance(detail, SubletCharge):
            sums["sublet"] += detail.sublet.cost
        elif isinstance(detail, MiscellaneousCharge):
            sums["miscellaneous"] += detail.amount
        elif isinstance(detail, UnknownCharge):
            sums["unknown"] += detail.amount
        else:
            sums["unknown"] += item.total

    return CostComponentTotals(**sums)


def _category_variances(
    variances: list[ItemVariance],
    reconciliation: ReconciliationResult,
    classifications: Mapping[AnalysisKey, ClassificationResult],
    high_variance_ids: set[str],
) -> dict[str, CategoryVariance]:
    original_totals = {item.id: item.total for item in reconciliation.original_items}

    grouped: dict[str, list[ItemVariance]] = defaultdict(list)
    for variance in variances:
        grouped[_variance_charge_type(variance, classifications).value].append(variance)

    categories: dict[str, CategoryVariance] = {}
    for charge_type, members in grouped.items():
        total = sum((member.total_variance for member in members), Decimal("0"))
        baseline = sum(
            (original_totals.get(member.original_id, Decimal("0")) for member in members if member.original_id),
            Decimal("0"),
        )
        categories[charge_type] = CategoryVariance(
            variance=total,
            variance_percent=percentage_change(baseline, baseline + total),
            item_count=len(members),
            average_variance=round(float(total) / len(members), 2),
            significant_items=[member.item_id for member in members if member.item_id in high_variance_ids],
        )
    return categories


def _charge_type_distribution(
    items: list[LineItem],
    classifications: Mapping[AnalysisKey, ClassificationResult],
) -> dict[str, ChargeTypeDistribution]:
    if not items:
        return {}

    frame = pd.DataFrame(
        {
            "charge_type": [_charge_type(classifications, "supplement", item.id).value for item in items],
            "total": [item.total for item in items],
        }
    )

    distribution: dict[str, ChargeTypeDistribution] = {}
    for charge_type, group in frame.groupby("charge_type", sort=True):
        amount = sum(group["total"], Decimal("0"))
        count = len(group)
        distribution[str(charge_type)] = ChargeTypeDistribution(
            count=count,
            total_amount=amount,
            average_amount=round(float(amount) / count, 2),
            percentage=round(count / len(items) * 100, 2),
        )
    return distribution


def _descriptive(values: list[Decimal]) -> dict[str, float]:
    if not values:
        return {"mean": 0.0, "median": 0.0, "std": 0.0, "min": 0.0, "max": 0.0}

    series = pd.Series([float(value) for value in values], dtype="float64")
    return {
        "mean": round(float(series.mean()), 2),
        "median": round(float(series.median()), 2),
        "std": round(float(series.std(ddof=0)), 2),
        "min": round(float(series.min()), 2),
        "max": round(float(series.max()), 2),
    }


def find_suspicious_patterns(
    reconciliation: ReconciliationResult,
    classifications: Mapping[AnalysisKey, ClassificationResult],
) -> list[SuspiciousPattern]:
    """Pricing patterns that warrant a closer look at the supplement."""
    patterns: list[SuspiciousPattern] = []
    pairs = reconciliation.matched_items

    duplicate_groups = [d for d in reconciliation.duplicate_descriptions if d.invoice == "supplement"]
    if duplicate_groups:
        totals = {item.id: item.total for item in reconciliation.supplement_items}
        affected = [item_id for group in duplicate_groups for item_id in group.item_ids]
        # Everything past the first occurrence of a description is the exposure.
        impact = sum(
            (totals.get(item_id, Decimal("0")) for group in duplicate_groups for item_id in group.item_ids[1:]),
            Decimal("0"),
        )
        patterns.append(
            SuspiciousPattern(
                type="duplicate_items",
                description=f"Found {len(affected) - len(duplicate_groups)} potential duplicate items",
                confidence=DUPLICATE_ITEMS_CONFIDENCE,
                affected_items=affected,
                potential_impact=impact,
            )
        )

    round_pairs = [
        pair
        for pair in pairs
        if pair.supplement.price != 0
        and pair.supplement.price % 10 == 0
        and pair.supplement.price != pair.original.price
    ]
    if pairs and len(round_pairs) > len(pairs) * ROUND_NUMBER_SHARE:
        patterns.append(
            SuspiciousPattern(
                type="round_number_bias",
                description=f"{len(round_pairs)} items have suspiciously round pricing",
                confidence=ROUND_NUMBER_CONFIDENCE,
                affected_items=[pair.supplement.id for pair in round_pairs],
                potential_impact=sum((abs(pair.variance.total_variance) for pair in round_pairs), Decimal("0")),
            )
        )

    inflated = [
        pair
        for pair in pairs
        if pair.variance.price_variance is not None
        and (pair.variance.price_variance.percentage or 0.0) > INFLATED_PRICE_PERCENT
    ]
    if inflated:
        patterns.append(
            SuspiciousPattern(
                type="inflated_prices",
                description=f"{len(inflated)} items have inflated prices (>{INFLATED_PRICE_PERCENT:.0f}% increase)",
                confidence=INFLATED_PRICE_CONFIDENCE,
                affected_items=[pair.supplement.id for pair in inflated],
                potential_impact=sum((abs(pair.variance.total_variance) for pair in inflated), Decimal("0")),
            )
        )

    excessive = [
        item
        for item in reconciliation.supplement_items
        if item.has_labor_hours
        and _charge_type(classifications, "supplement", item.id) in LABOR_BEARING_TYPES
        and item.labor_hours
        > MAX_REASONABLE_LABOR_HOURS.get(infer_vehicle_system(item.description), DEFAULT_MAX_LABOR_HOURS)
    ]
    if excessive:
        patterns.append(
            SuspiciousPattern(
                type="excessive_labor_hours",
                description=f"{len(excessive)} items have excessive labor hours",
                confidence=EXCESSIVE_LABOR_CONFIDENCE,
                affected_items=[item.id for item in excessive],
                potential_impact=sum((item.total for item in excessive), Decimal("0")),
            )
        )

    for pattern in patterns:
        logger.info(
            "suspicious_pattern | type=%s | affected=%s | impact=%s",
            pattern.type,
            len(pattern.affected_items),
            pattern.potential_impact,
        )
    return patterns


def assess_data_quality(items: list[LineItem]) -> DataQualityMetrics:
    """Completeness and arithmetic accuracy over every line of both invoices."""
    if not items:
        return DataQualityMetrics()

    issues: list[DataQualityIssue] = []
    completeness = 1.0
    accuracy = 1.0

    incomplete = [item for item in items if not item.description.strip() or item.quantity <= 0 or item.price <= 0]
    if incomplete:
        completeness = round(1 - len(incomplete) / len(items), 4)
        issues.append(
            DataQualityIssue(
                type="missing_data",
                description=f"{len(incomplete)} items have missing or invalid data",
                severity=Severity.HIGH,
                affected_items=[item.id for item in incomplete],
                suggested_fix="Review and complete missing item information",
            )
        )

    miscalculated = [
        item for item in items if abs(item.total - (item.quantity * item.price).quantize(CENT)) > COST_TOLERANCE
    ]
    if miscalculated:
        accuracy = round(1 - len(miscalculated) / len(items), 4)
        issues.append(
            DataQualityIssue(
                type="calculation_error",
                description=f"{len(miscalculated)} items have calculation errors",
                severity=Severity.CRITICAL,
                affected_items=[item.id for item in miscalculated],
                suggested_fix="Recalculate totals: quantity x price = total",
            )
        )

    return DataQualityMetrics(completeness=completeness, accuracy=accuracy, issues=issues)


def calculate_variance_statistics(
    reconciliation: ReconciliationResult,
    classifications: Mapping[AnalysisKey, ClassificationResult],
    details: Mapping[AnalysisKey, ChargeDetail],
    options: Optional[ComparisonOptions] = None,
) -> VarianceStatistics:
    """Aggregate a reconciliation into totals, per-category and descriptive statistics."""
    opts = options or ComparisonOptions()

    original_items = reconciliation.original_items
    supplement_items = reconciliation.supplement_items
    variances = calculate_item_variances(reconciliation)

    original_total = sum((item.total for item in original_items), Decimal("0"))
    supplement_total = sum((item.total for item in supplement_items), Decimal("0"))
    total_variance = supplement_total - original_total

    high_variance = [variance.item_id for variance in variances if is_high_variance(variance, opts)]
    described = _descriptive([variance.total_variance for variance in variances])

    statistics = VarianceStatistics(
        original_total=original_total,
        supplement_total=supplement_total,
        total_variance=total_variance,
        total_variance_percent=percentage_change(original_total, supplement_total),
        item_count=len(variances),
        category_variances=_category_variances(variances, reconciliation, classifications, set(high_variance)),
        charge_type_distribution=_charge_type_distribution(supplement_items, classifications),
        cost_components={
            "original": cost_component_totals(original_items, "original", details),
            "supplement": cost_component_totals(supplement_items, "supplement", details),
        },
        average_variance=described["mean"],
        median_variance=described["median"],
        standard_deviation=described["std"],
        variance_range=VarianceRange(min=described["min"], max=described["max"]),
        high_variance_items=high_variance,
        new_item_total=sum((item.total for item in reconciliation.new_items), Decimal("0")),
        removed_item_total=sum((item.total for item in reconciliation.removed_items), Decimal("0")),
        suspicious_patterns=find_suspicious_patterns(reconciliation, classifications),
        data_quality=assess_data_quality(original_items + supplement_items),
    )

    logger.info(
        "statistics_complete | items=%s | total_variance=%s | pct=%s | high_variance=%s | patterns=%s",
        statistics.item_count,
        statistics.total_variance,
        statistics.total_variance_percent,
        len(statistics.high_variance_items),
        len(statistics.suspicious_patterns),
    )
    return statistics
