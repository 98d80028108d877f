"""
separate.py - Part / labor cost separation and charge detail construction.

Only part-with-labor items are split. Methods, strongest first:

    zero_total           total is 0 but hours exist: labor = hours x rate, part = 0
    explicit_rate        hours and rate on the line: labor = hours x rate
    inferred_rate        hours only: rate from sibling lines, else regional rate
    standard_labor_time  no hours: industry labor time for (operation, part)
    typical_ratio        nothing else: fixed part/labor ratio per operation

Only explicit_rate can come out validated. Every other method is an
estimate and is reported unvalidated.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import Optional, Sequence

import pandas as pd

from classify import classify_charge
from logging_config import get_logger, graceful
from models import (
    CENT,
    COST_TOLERANCE,
    ChargeDetail,
    ChargeType,
    ClassificationResult,
    CostBreakdown,
    CostMethod,
    LaborInfo,
    LaborOnlyCharge,
    LineItem,
    MaterialCharge,
    MaterialInfo,
    MiscellaneousCharge,
    PartInfo,
    PartWithLaborCharge,
    SubletCharge,
    SubletInfo,
    UnknownCharge,
)
from normalize import normalize_description, normalize_operation

logger = get_logger(__name__)

# Dollars per hour by vehicle system when the line carries no rate.
REGIONAL_LABOR_RATES: dict[str, Decimal] = {
    "BODY": Decimal("120"),
    "PAINT": Decimal("120"),
    "MECHANICAL": Decimal("150"),
    "ELECTRICAL": Decimal("140"),
    "FRAME": Decimal("130"),
    "DEFAULT": Decimal("120"),
}

# (part share, labor share) keyed by canonical operation code.
TYPICAL_COST_RATIOS: dict[str, tuple[Decimal, Decimal]] = {
    "repl": (Decimal("0.60"), Decimal("0.40")),
    "r&r": (Decimal("0.55"), Decimal("0.45")),
    "o/h": (Decimal("0.70"), Decimal("0.30")),
}
DEFAULT_COST_RATIO = (Decimal("0.60"), Decimal("0.40"))

# Ratio splits are a guess; classification confidence is capped here.
RATIO_CONFIDENCE_CAP = 0.65

# Book labor hours for a single named part, by operation family.
STANDARD_LABOR_HOURS: dict[tuple[str, str], Decimal] = {
    ("replace", "bumper cover"): Decimal("2.5"),
    ("replace", "fender"): Decimal("2.0"),
    ("replace", "hood"): Decimal("1.5"),
    ("replace", "headlamp"): Decimal("0.8"),
    ("replace", "headlight"): Decimal("0.8"),
    ("replace", "tail lamp"): Decimal("0.5"),
    ("replace", "taillight"): Decimal("0.5"),
    ("replace", "grille"): Decimal("0.5"),
    ("replace", "mirror"): Decimal("0.6"),
    ("replace", "door shell"): Decimal("3.5"),
    ("replace", "quarter panel"): Decimal("8.0"),
    ("replace", "radiator"): Decimal("2.0"),
    ("overhaul", "bumper"): Decimal("3.0"),
    ("overhaul", "door"): Decimal("2.5"),
}

_MULTI_PART_PATTERN = re.compile(r",|\band\b|&")
_OPERATION_PREFIX = re.compile(r"^(repl|r\s*&\s*r|r\s*&\s*i|replace|install|o/h|overhaul|refn|blnd|rpr|subl)\b\.?\s*", re.IGNORECASE)

# Labor type code from description, first hit wins.
_LABOR_TYPE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("D", re.compile(r"diagnos|scan|test")),
    ("P", re.compile(r"paint|refinish|blend")),
    ("G", re.compile(r"glass|windshield")),
    ("F", re.compile(r"frame|rail")),
    ("S", re.compile(r"body|panel|bumper|fender")),
    ("E", re.compile(r"electrical|wiring|sensor|module")),
    ("M", re.compile(r"engine|transmission|brake|suspension|alignment")),
]

_LABOR_TYPE_SYSTEM = {
    "P": "PAINT",
    "F": "FRAME",
    "E": "ELECTRICAL",
    "M": "MECHANICAL",
    "S": "BODY",
    "G": "BODY",
}


def infer_labor_type(description: str) -> Optional[str]:
    text = normalize_description(description)
    for code, pattern in _LABOR_TYPE_PATTERNS:
        if pattern.search(text):
            return code
    return None


def infer_vehicle_system(description: str) -> str:
    """Vehicle system (BODY, PAINT, MECHANICAL, ...) implied by a description."""
    return _LABOR_TYPE_SYSTEM.get(infer_labor_type(description) or "", "DEFAULT")


def regional_labor_rate(description: str) -> Decimal:
    return REGIONAL_LABOR_RATES[infer_vehicle_system(description)]


def part_name(description: str) -> str:
    """Description with a leading operation code removed."""
    name = _OPERATION_PREFIX.sub("", description.strip())
    return name or description.strip()


def _canonical_operation(operation: Optional[str]) -> str:
    code = re.sub(r"\s+", "", (operation or "").lower())
    if code in ("replace", "replacement"):
        return "repl"
    if code == "overhaul":
        return "o/h"
    return code


def _operation_family(item: LineItem) -> Optional[str]:
    family = normalize_operation(item.operation)
    if family is None:
        match = _OPERATION_PREFIX.match(item.description.strip())
        if match:
            family = normalize_operation(match.group(1))
    return family


def _median_rate(values: list[Decimal]) -> Optional[Decimal]:
    if not values:
        return None
    median = pd.Series([float(v) for v in values]).median()
    return Decimal(str(median)).quantize(CENT)


@graceful(default_factory=lambda: None, log_level=logging.WARNING)
def infer_labor_rate(item: LineItem, siblings: Sequence[LineItem]) -> Optional[Decimal]:
    """Labor rate implied by the other lines of the same invoice.

    Median of explicit sibling rates; failing that, median of total / hours
    over labor-only siblings. None when the invoice gives no evidence.
    """
    others = [s for s in siblings if s.id != item.id]

    explicit = [s.labor_rate for s in others if s.labor_rate is not None and s.labor_rate > 0]
    rate = _median_rate(explicit)
    if rate is not None:
        logger.debug("labor_rate_inferred | item_id=%s | source=explicit_siblings | n=%s | rate=%s", item.id, len(explicit), rate)
        return rate

    implied = [
        s.total / s.labor_hours
        for s in others
        if s.has_labor_hours
        and s.total > 0
        and classify_charge(s).charge_type == ChargeType.LABOR_ONLY
    ]
    rate = _median_rate(implied)
    if rate is not None:
        logger.debug("labor_rate_inferred | item_id=%s | source=labor_only_siblings | n=%s | rate=%s", item.id, len(implied), rate)
    return rate


def standard_labor_hours(item: LineItem) -> Optional[Decimal]:
    """Book hours for a single-part replacement line, or None."""
    family = _operation_family(item)
    if family is None:
        return None

    name = normalize_description(part_name(item.description))
    if not name or _MULTI_PART_PATTERN.search(name):
        return None

    hits = [
        (part, hours)
        for (op_family, part), hours in STANDARD_LABOR_HOURS.items()
        if op_family == family and re.search(r"\b" + re.escape(part) + r"\b", name)
    ]
    if not hits:
        return None
    # "bumper cover" beats "bumper" when both are listed.
    hits.sort(key=lambda hit: len(hit[0]), reverse=True)
    return hits[0][1]


def _residual(total: Decimal, part: Decimal, labor: Decimal) -> Optional[Decimal]:
    variance = total - (part + labor)
    return variance if variance != 0 else None


def _estimated(total: Decimal, labor: Decimal, method: CostMethod) -> CostBreakdown:
    labor = labor.quantize(CENT)
    part = total - labor
    if part < 0:
        part = Decimal("0.00")
    return CostBreakdown(
        part_cost=part,
        labor_cost=labor,
        total=total,
        is_validated=False,
        validation_variance=_residual(total, part, labor),
        method=method,
    )


def separate_costs(
    item: LineItem,
    classification: ClassificationResult,
    siblings: Sequence[LineItem] = (),
) -> Optional[CostBreakdown]:
    """Split a part-with-labor line into part and labor cost.

    Returns None for every other charge type.
    """
    if classification.charge_type != ChargeType.PART_WITH_LABOR:
        return None

    total = item.total
    hours = item.labor_hours if item.has_labor_hours else None
    rate = item.labor_rate if item.labor_rate is not None and item.labor_rate > 0 else None

    if total == 0 and hours is not None:
        labor = (hours * (rate or regional_labor_rate(item.description))).quantize(CENT)
        return CostBreakdown(
            part_cost=Decimal("0.00"),
            labor_cost=labor,
            total=total,
            is_validated=False,
            validation_variance=_residual(total, Decimal("0.00"), labor),
            method=CostMethod.ZERO_TOTAL,
        )

    if hours is not None and rate is not None:
        labor = (hours * rate).quantize(CENT)
        part = total - labor
        if part < 0:
            part = Decimal("0.00")
        variance = total - (part + labor)
        validated = abs(variance) <= COST_TOLERANCE
        if not validated:
            logger.warning(
                "cost_validation_failed | item_id=%s | total=%s | labor=%s | variance=%s",
                item.id,
                total,
                labor,
                variance,
            )
        return CostBreakdown(
            part_cost=part,
            labor_cost=labor,
            total=total,
            is_validated=validated,
            validation_variance=None if validated else variance,
            method=CostMethod.EXPLICIT_RATE,
        )

    if hours is not None:
        inferred = infer_labor_rate(item, siblings) or regional_labor_rate(item.description)
        return _estimated(total, hours * inferred, CostMethod.INFERRED_RATE)

    book_hours = standard_labor_hours(item)
    if book_hours is not None:
        labor = (book_hours * regional_labor_rate(item.description)).quantize(CENT)
        if labor <= total:
            return _estimated(total, labor, CostMethod.STANDARD_LABOR_TIME)
        logger.debug("standard_time_skipped | item_id=%s | labor=%s | total=%s", item.id, labor, total)

    part_share, _ = TYPICAL_COST_RATIOS.get(_canonical_operation(item.operation), DEFAULT_COST_RATIO)
    part = (total * part_share).quantize(CENT)
    return CostBreakdown(
        part_cost=part,
        labor_cost=total - part,
        total=total,
        is_validated=False,
        method=CostMethod.TYPICAL_RATIO,
    )


def _material_type(description: str) -> str:
    text = normalize_description(description)
    if re.search(r"paint|primer|clear coat|sealer", text):
        return "paint"
    if re.search(r"fluid|oil|coolant|refrigerant", text):
        return "fluids"
    if re.search(r"suppl|material", text):
        return "supplies"
    return "other"


def _sublet_type(description: str) -> str:
    text = normalize_description(description)
    if re.search(r"glass|windshield", text):
        return "glass"
    if "alignment" in text:
        return "alignment"
    if re.search(r"adas|calibration|camera|radar", text):
        return "adas"
    if re.search(r"upholstery|interior", text):
        return "upholstery"
    return "other"


def _adjust_classification(
    classification: ClassificationResult,
    breakdown: CostBreakdown,
) -> ClassificationResult:
    warnings = list(classification.warnings)
    confidence = classification.confidence

    if breakdown.method == CostMethod.TYPICAL_RATIO:
        confidence = min(confidence, RATIO_CONFIDENCE_CAP)
        warnings.append(
            "Part/labor split estimated from a typical ratio - verify labor hours and part price"
        )
    elif breakdown.method in (CostMethod.INFERRED_RATE, CostMethod.STANDARD_LABOR_TIME):
        warnings.append(f"Labor cost estimated ({breakdown.method.value}) - breakdown not validated")
    elif breakdown.method == CostMethod.ZERO_TOTAL:
        warnings.append("Line total is zero - labor cost computed from hours and rate")
    elif not breakdown.is_validated:
        warnings.append(
            f"Labor cost exceeds line total - cost breakdown off by ${breakdown.validation_variance:.2f}"
        )

    if confidence == classification.confidence and warnings == classification.warnings:
        return classification
    return classification.model_copy(update={"confidence": confidence, "warnings": warnings})


def build_charge_detail(
    item: LineItem,
    classification: ClassificationResult,
    siblings: Sequence[LineItem] = (),
) -> tuple[ChargeDetail, ClassificationResult]:
    """Charge detail variant for a classified item.

    Returns the detail and the classification, which comes back with a
    lowered confidence and extra warnings when the cost split was estimated.
    """
    charge_type = classification.charge_type

    breakdown = separate_costs(item, classification, siblings)
    if breakdown is not None:
        effective_rate = item.labor_rate
        if effective_rate is None and item.has_labor_hours and breakdown.labor_cost > 0:
            effective_rate = (breakdown.labor_cost / item.labor_hours).quantize(CENT)

        detail = PartWithLaborCharge(
            part=PartInfo(
                name=part_name(item.description),
                part_number=item.part_number,
                quantity=item.quantity,
                category=item.part_category,
                cost=breakdown.part_cost,
            ),
            labor=LaborInfo(
                description=item.description,
                operation_code=item.operation,
                hours=item.labor_hours,
                rate=effective_rate,
                labor_type=infer_labor_type(item.description),
                cost=breakdown.labor_cost,
            ),
            breakdown=breakdown,
        )
        logger.debug(
            "cost_separated | item_id=%s | method=%s | part=%s | labor=%s | validated=%s",
            item.id,
            breakdown.method.value,
            breakdown.part_cost,
            breakdown.labor_cost,
            breakdown.is_validated,
        )
        return detail, _adjust_classification(classification, breakdown)

    if charge_type == ChargeType.LABOR_ONLY:
        labor = LaborInfo(
            description=item.description,
            operation_code=item.operation,
            hours=item.labor_hours,
            rate=item.labor_rate,
            labor_type=infer_labor_type(item.description),
            cost=item.total,
        )
        return LaborOnlyCharge(labor=labor), classification

    if charge_type == ChargeType.MATERIAL:
        material = MaterialInfo(
            description=item.description,
            type=_material_type(item.description),
            cost=item.total,
        )
        return MaterialCharge(material=material), classification

    if charge_type == ChargeType.SUBLET:
        sublet = SubletInfo(
            description=item.description,
            type=_sublet_type(item.description),
            cost=item.total,
        )
        return SubletCharge(sublet=sublet), classification

    if charge_type == ChargeType.MISCELLANEOUS:
        return MiscellaneousCharge(amount=item.total), classification

    return UnknownCharge(amount=item.total), classification
