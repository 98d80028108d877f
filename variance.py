"""
variance.py - Per-item variance between original and supplement line items.

Three cases:
- matched pair:  supplement - original for quantity, price and total
- new item:      total variance = supplement total, no percentage baseline
- removed item:  total variance = -original total, percentage = -100

All arithmetic is Decimal. Percentages are floats rounded to 2 places and are
None whenever the original value is zero - never NaN or Infinity.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from logging_config import get_logger
from models import (
    ChangeType,
    ItemVariance,
    LineItem,
    ReconciliationResult,
    Severity,
    Significance,
    VarianceDetail,
)
from normalize import normalize_description

logger = get_logger(__name__)

# Significance bands on |percentage change| for one field.
SIGNIFICANCE_BANDS: list[tuple[float, Significance]] = [
    (1.0, Significance.NEGLIGIBLE),
    (5.0, Significance.MINOR),
    (15.0, Significance.MODERATE),
    (50.0, Significance.MAJOR),
]

# Severity bands on |total percentage change| for one item.
SEVERITY_BANDS: list[tuple[float, Severity]] = [
    (5.0, Severity.LOW),
    (15.0, Severity.MEDIUM),
    (50.0, Severity.HIGH),
]

# New items have no baseline; at or above this dollar amount they rate HIGH.
NEW_ITEM_HIGH_SEVERITY_FLOOR = Decimal("100")


def percentage_change(original: Decimal, current: Decimal) -> Optional[float]:
    """(current - original) / original x 100, or None for a zero baseline."""
    if original == 0:
        return None
    return round(float((current - original) / original * 100), 2)


def _significance(percentage: Optional[float]) -> Significance:
    magnitude = abs(percentage or 0.0)
    for upper, label in SIGNIFICANCE_BANDS:
        if magnitude < upper:
            return label
    return Significance.EXTREME


def _severity(percentage: Optional[float]) -> Severity:
    magnitude = abs(percentage or 0.0)
    for upper, label in SEVERITY_BANDS:
        if magnitude < upper:
            return label
    return Severity.CRITICAL


def variance_detail(original: Decimal, current: Decimal) -> VarianceDetail:
    """Signed change of one field with its percentage and significance."""
    absolute = current - original
    percentage = percentage_change(original, current)
    return VarianceDetail(
        absolute=absolute,
        percentage=percentage,
        is_increase=absolute > 0,
        significance=_significance(percentage),
    )


def determine_change_type(original: LineItem, supplement: LineItem) -> ChangeType:
    """Classify what changed inside a matched pair.

    Quantity wins over price when both moved; a total that moved while
    quantity and price held is reported as a total change.
    """
    if normalize_description(original.description) != normalize_description(supplement.description):
        return ChangeType.DESCRIPTION_CHANGE
    if original.quantity != supplement.quantity:
        return ChangeType.QUANTITY_CHANGE
    if original.price != supplement.price:
        return ChangeType.PRICE_CHANGE
    if original.total != supplement.total:
        return ChangeType.TOTAL_CHANGE
    return ChangeType.UNCHANGED


def calculate_pair_variance(original: LineItem, supplement: LineItem) -> ItemVariance:
    """Variance record for a matched original/supplement pair."""
    total_detail = variance_detail(original.total, supplement.total)
    variance = ItemVariance(
        item_id=supplement.id,
        original_id=original.id,
        supplement_id=supplement.id,
        description=supplement.description,
        change_type=determine_change_type(original, supplement),
        quantity_variance=variance_detail(original.quantity, supplement.quantity),
        price_variance=variance_detail(original.price, supplement.price),
        total_variance=total_detail.absolute,
        percentage_change=total_detail.percentage,
        severity=_severity(total_detail.percentage),
    )
    logger.debug(
        "pair_variance | original_id=%s | supplement_id=%s | total_variance=%s | pct=%s | change=%s",
        original.id,
        supplement.id,
        variance.total_variance,
        variance.percentage_change,
        variance.change_type.value,
    )
    return variance


def calculate_new_item_variance(item: LineItem) -> ItemVariance:
    """A supplement-only item adds its whole total; there is no baseline."""
    severity = Severity.HIGH if abs(item.total) >= NEW_ITEM_HIGH_SEVERITY_FLOOR else Severity.MEDIUM
    return ItemVariance(
        item_id=item.id,
        supplement_id=item.id,
        description=item.description,
        change_type=ChangeType.NEW_ITEM,
        total_variance=item.total,
        percentage_change=None,
        severity=severity,
    )


def calculate_removed_item_variance(item: LineItem) -> ItemVariance:
    """An original-only item drops its whole total: -100% by convention."""
    return ItemVariance(
        item_id=item.id,
        original_id=item.id,
        description=item.description,
        change_type=ChangeType.REMOVED_ITEM,
        total_variance=-item.total,
        percentage_change=-100.0,
        severity=Severity.CRITICAL,
    )


def calculate_item_variances(reconciliation: ReconciliationResult) -> list[ItemVariance]:
    """Every item variance of a reconciliation: matched, then new, then removed."""
    variances = [pair.variance for pair in reconciliation.matched_items]
    variances.extend(calculate_new_item_variance(item) for item in reconciliation.new_items)
    variances.extend(calculate_removed_item_variance(item) for item in reconciliation.removed_items)
    return variances
