"""
test_separate.py - Cost separation and charge detail tests

Checks for:
- explicit hours x rate split and its tolerance validation
- sibling rate inference, standard labor times and typical ratios
- charge detail variants for every charge type

Usage: python test_separate.py
"""

from __future__ import annotations

import os
import sys
from decimal import Decimal

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from classify import classify_charge
from models import (
    COST_TOLERANCE,
    CostMethod,
    LaborOnlyCharge,
    LineItem,
    MaterialCharge,
    MiscellaneousCharge,
    PartWithLaborCharge,
    SubletCharge,
    UnknownCharge,
)
from separate import (
    RATIO_CONFIDENCE_CAP,
    build_charge_detail,
    infer_labor_rate,
    infer_vehicle_system,
    part_name,
    separate_costs,
    standard_labor_hours,
)


def _li(**data) -> LineItem:
    data.setdefault("id", "line-1")
    return LineItem.model_validate(data)


def _split(item: LineItem, siblings=()):
    return separate_costs(item, classify_charge(item), siblings)


class TestExplicitRate:
    def test_bumper_cover_reference(self):
        item = _li(
            description="Repl Rear Bumper Cover",
            operation="Repl",
            partNumber="3CN807421BGRU",
            laborHours=2.5,
            laborRate=120,
            total=750,
        )
        breakdown = _split(item)
        assert breakdown.part_cost == Decimal("450")
        assert breakdown.labor_cost == Decimal("300")
        assert breakdown.is_validated
        assert breakdown.validation_variance is None
        assert breakdown.method == CostMethod.EXPLICIT_RATE

    def test_labor_rounded_to_cents(self):
        item = _li(description="Repl Fender", operation="Repl", partNumber="F1", laborHours="1.3", laborRate="97.77", total=500)
        breakdown = _split(item)
        assert breakdown.labor_cost == Decimal("127.10")
        assert breakdown.part_cost + breakdown.labor_cost == breakdown.total

    def test_labor_exceeding_total_fails_validation(self):
        item = _li(description="Repl Hood", operation="Repl", partNumber="H1", laborHours=10, laborRate=100, total=500)
        breakdown = _split(item)
        assert breakdown.part_cost == Decimal("0")
        assert breakdown.labor_cost == Decimal("1000")
        assert not breakdown.is_validated
        assert breakdown.validation_variance == Decimal("-500")

    def test_validated_breakdowns_respect_tolerance(self):
        items = [
            _li(id=str(n), description="Repl Door", operation="Repl", partNumber="D", laborHours=hours, laborRate=rate, total=total)
            for n, (hours, rate, total) in enumerate([(1, 100, 500), ("2.2", "88.5", 999), ("0.1", 60, "6.01")])
        ]
        for item in items:
            breakdown = _split(item)
            if breakdown.is_validated:
                assert abs(breakdown.part_cost + breakdown.labor_cost - breakdown.total) <= COST_TOLERANCE

    def test_zero_total_with_hours(self):
        item = _li(description="Repl Bumper Cover", operation="Repl", laborHours=2, laborRate=100, total=0)
        breakdown = _split(item)
        assert breakdown.method == CostMethod.ZERO_TOTAL
        assert breakdown.labor_cost == Decimal("200")
        assert breakdown.part_cost == Decimal("0")
        assert not breakdown.is_validated
        assert breakdown.validation_variance == Decimal("-200")


class TestEstimatedSplits:
    def test_rate_inferred_from_explicit_siblings(self):
        item = _li(id="x", description="Repl Fender", operation="Repl", partNumber="F1", laborHours=2, total=800)
        siblings = [
            item,
            _li(id="a", description="Repl Hood", laborHours=1, laborRate=100, total=400),
            _li(id="b", description="Repl Door", laborHours=1, laborRate=120, total=400),
        ]
        breakdown = _split(item, siblings)
        assert breakdown.method == CostMethod.INFERRED_RATE
        assert breakdown.labor_cost == Decimal("220.00")
        assert breakdown.part_cost == Decimal("580.00")
        assert not breakdown.is_validated
        assert breakdown.validation_variance is None

    def test_inferred_labor_exceeding_total_keeps_residual(self):
        item = _li(description="Repl Fender", operation="Repl", partNumber="F1", laborHours=10, total=500)
        breakdown = _split(item)
        assert breakdown.method == CostMethod.INFERRED_RATE
        assert breakdown.labor_cost == Decimal("1200.00")
        assert breakdown.part_cost == Decimal("0")
        assert not breakdown.is_validated
        assert breakdown.validation_variance == Decimal("-700")

    def test_rate_inferred_from_labor_only_siblings(self):
        item = _li(id="x", description="Repl Fender", operation="Repl", partNumber="F1", laborHours=2, total=800)
        siblings = [item, _li(id="a", description="Wheel Alignment", laborHours=1, total=130)]
        assert infer_labor_rate(item, siblings) == Decimal("130.00")
        assert _split(item, siblings).labor_cost == Decimal("260.00")

    def test_regional_rate_without_sibling_evidence(self):
        item = _li(description="Repl Fender", operation="Repl", partNumber="F1", laborHours=2, total=800)
        breakdown = _split(item)
        assert breakdown.method == CostMethod.INFERRED_RATE
        assert breakdown.labor_cost == Decimal("240.00")

    def test_rate_inference_degrades_to_none_on_bad_siblings(self):
        item = _li(description="Repl Fender", laborHours=2, total=800)
        assert infer_labor_rate(item, [object()]) is None

    def test_standard_labor_time(self):
        item = _li(description="Repl Hood", operation="Repl", partNumber="H1", total=900)
        assert standard_labor_hours(item) == Decimal("1.5")
        breakdown = _split(item)
        assert breakdown.method == CostMethod.STANDARD_LABOR_TIME
        assert breakdown.labor_cost == Decimal("180.00")
        assert breakdown.part_cost == Decimal("720.00")
        assert not breakdown.is_validated

    def test_longest_part_name_wins(self):
        item = _li(description="Repl Bumper Cover", operation="Repl", total=900)
        assert standard_labor_hours(item) == Decimal("2.5")

    def test_multi_part_line_skips_standard_time(self):
        item = _li(description="Front Bumper Cover, Grille, and Fog Lamps", operation="Repl", total=1250)
        assert standard_labor_hours(item) is None

    def test_combined_line_uses_typical_ratio(self):
        item = _li(description="Front Bumper Cover, Grille, and Fog Lamps", operation="Repl", total=1250)
        detail, classification = build_charge_detail(item, classify_charge(item))

        assert isinstance(detail, PartWithLaborCharge)
        assert detail.breakdown.method == CostMethod.TYPICAL_RATIO
        assert detail.breakdown.part_cost == Decimal("750.00")
        assert detail.breakdown.labor_cost == Decimal("500.00")
        assert not detail.breakdown.is_validated
        assert 0.6 <= classification.confidence <= 0.7
        assert any("typical ratio" in w for w in classification.warnings)

    def test_ratio_caps_high_confidence(self):
        item = _li(description="Repl Widget Assembly", operation="Repl", partNumber="W1", total=1000)
        original = classify_charge(item)
        assert original.confidence == pytest.approx(0.95)

        detail, classification = build_charge_detail(item, original)
        assert classification.confidence == pytest.approx(RATIO_CONFIDENCE_CAP)
        assert detail.breakdown.part_cost == Decimal("600.00")

    def test_remove_and_replace_ratio(self):
        item = _li(description="R&R Mystery Unit", operation="R&R", total=1000)
        breakdown = _split(item)
        assert breakdown.method == CostMethod.TYPICAL_RATIO
        assert breakdown.part_cost == Decimal("550.00")
        assert breakdown.labor_cost == Decimal("450.00")


class TestChargeDetails:
    def test_labor_only_has_no_breakdown(self):
        item = _li(description="Wheel Alignment", laborHours=1, laborRate=120, total=120)
        classification = classify_charge(item)
        assert separate_costs(item, classification) is None

        detail, same = build_charge_detail(item, classification)
        assert isinstance(detail, LaborOnlyCharge)
        assert detail.labor.cost == Decimal("120")
        assert detail.labor.labor_type == "M"
        assert same == classification

    def test_material(self):
        item = _li(description="Paint Supplies", laborHours=10.5, laborRate=42, total=441)
        detail, _ = build_charge_detail(item, classify_charge(item))
        assert isinstance(detail, MaterialCharge)
        assert detail.material.cost == Decimal("441")
        assert detail.material.type == "paint"

    def test_sublet(self):
        item = _li(description="Sublet Windshield Replacement", operation="Subl", total=450)
        detail, _ = build_charge_detail(item, classify_charge(item))
        assert isinstance(detail, SubletCharge)
        assert detail.sublet.cost == Decimal("450")
        assert detail.sublet.type == "glass"

    def test_miscellaneous_and_unknown(self):
        rental = _li(description="Rental Car", partCategory="Rental", total=210)
        detail, _ = build_charge_detail(rental, classify_charge(rental))
        assert isinstance(detail, MiscellaneousCharge)
        assert detail.amount == Decimal("210")

        thing = _li(description="Thing", total=10)
        detail, _ = build_charge_detail(thing, classify_charge(thing))
        assert isinstance(detail, UnknownCharge)
        assert detail.amount == Decimal("10")

    def test_part_info_strips_operation_prefix(self):
        item = _li(description="Repl Rear Bumper Cover", operation="Repl", partNumber="P", laborHours=2.5, laborRate=120, total=750)
        detail, classification = build_charge_detail(item, classify_charge(item))
        assert detail.part.name == "Rear Bumper Cover"
        assert detail.part.cost == Decimal("450")
        assert detail.labor.cost == Decimal("300")
        assert detail.labor.labor_type == "S"
        assert classification.confidence == pytest.approx(0.95)

    def test_estimated_detail_carries_residual(self):
        item = _li(description="Repl Fender", operation="Repl", partNumber="F1", laborHours=10, total=500)
        detail, classification = build_charge_detail(item, classify_charge(item))
        assert isinstance(detail, PartWithLaborCharge)
        assert detail.breakdown.validation_variance == Decimal("-700")
        assert detail.labor.rate == Decimal("120.00")
        assert any("not validated" in w for w in classification.warnings)


@pytest.mark.parametrize(
    "description,system",
    [
        ("Refinish Hood", "PAINT"),
        ("Frame Rail Pull", "FRAME"),
        ("Wiring Harness", "ELECTRICAL"),
        ("Brake Caliper", "MECHANICAL"),
        ("Bumper Cover", "BODY"),
        ("Widget", "DEFAULT"),
    ],
)
def test_infer_vehicle_system(description, system):
    assert infer_vehicle_system(description) == system


def test_part_name_without_prefix_is_unchanged():
    assert part_name("Rear Bumper Cover") == "Rear Bumper Cover"


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-q"]))
