"""
test_compare.py - End-to-end comparison tests

Checks for:
- reference line items through the full pipeline
- self-comparison (zero variance, full matching)
- every input item accounted for exactly once
- malformed input surfacing as warnings, never exceptions
- JSON-serializable report payload
- classification cache reuse across comparisons

Usage: python test_compare.py
"""

from __future__ import annotations

import json
import os
import sys
from decimal import Decimal

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest

from classify import ClassificationCache
from compare import ENGINE_VERSION, compare_invoices
from config import ComparisonOptions
from models import ChargeType, CostMethod, RiskTier
from report import format_report_json


BUMPER = {
    "id": "1",
    "description": "Repl Rear Bumper Cover",
    "operation": "Repl",
    "partNumber": "3CN807421BGRU",
    "laborHours": 2.5,
    "laborRate": 120,
    "total": 750,
}
ALIGNMENT = {"id": "2", "description": "Wheel Alignment", "laborHours": 1.0, "laborRate": 120, "total": 120}
PAINT_SUPPLIES = {"id": "3", "description": "Paint Supplies", "laborHours": 10.5, "laborRate": 42, "total": 441}
WINDSHIELD = {"id": "4", "description": "Sublet Windshield Replacement", "operation": "Subl", "total": 450}
COMBINED = {"id": "5", "description": "Front Bumper Cover, Grille, and Fog Lamps", "operation": "Repl", "total": 1250}

INVOICE = [BUMPER, ALIGNMENT, PAINT_SUPPLIES, WINDSHIELD, COMBINED]


@pytest.fixture(scope="module")
def self_report():
    return compare_invoices(INVOICE, INVOICE)


class TestReferenceItems:
    def test_bumper(self, self_report):
        analysis = self_report.analysis_for("1")
        assert analysis.classification.charge_type == ChargeType.PART_WITH_LABOR
        assert analysis.classification.confidence == pytest.approx(0.95)
        assert analysis.cost_breakdown.part_cost == Decimal("450")
        assert analysis.cost_breakdown.labor_cost == Decimal("300")
        assert analysis.cost_breakdown.is_validated

    def test_alignment(self, self_report):
        analysis = self_report.analysis_for("2")
        assert analysis.classification.charge_type == ChargeType.LABOR_ONLY
        assert analysis.classification.confidence == pytest.approx(0.90)
        assert analysis.charge_detail.labor.cost == Decimal("120")
        assert analysis.cost_breakdown is None

    def test_paint_supplies(self, self_report):
        analysis = self_report.analysis_for("3")
        assert analysis.classification.charge_type == ChargeType.MATERIAL
        assert analysis.classification.confidence == pytest.approx(0.85)
        assert analysis.charge_detail.material.cost == Decimal("441")

    def test_windshield(self, self_report):
        analysis = self_report.analysis_for("4")
        assert analysis.classification.charge_type == ChargeType.SUBLET
        assert analysis.classification.confidence == pytest.approx(0.95)
        assert analysis.charge_detail.sublet.cost == Decimal("450")

    def test_combined_line(self, self_report):
        analysis = self_report.analysis_for("5")
        assert analysis.classification.charge_type == ChargeType.PART_WITH_LABOR
        assert 0.6 <= analysis.classification.confidence <= 0.7
        assert analysis.cost_breakdown.method == CostMethod.TYPICAL_RATIO
        assert analysis.cost_breakdown.part_cost == Decimal("750.00")
        assert analysis.cost_breakdown.labor_cost == Decimal("500.00")
        assert not analysis.cost_breakdown.is_validated
        assert analysis.classification.warnings
        assert any(w.startswith("supplement item 5: ") for w in self_report.warnings)


class TestSelfComparison:
    def test_zero_variance_and_full_matching(self, self_report):
        assert self_report.reconciliation.matching_accuracy == 1.0
        assert self_report.statistics.total_variance == Decimal("0")
        assert all(v.total_variance == 0 for v in self_report.item_variances)
        assert self_report.statistics.high_variance_items == []

    def test_both_sides_classified_alike(self, self_report):
        for pair in self_report.reconciliation.matched_items:
            original = self_report.classification_for(pair.original.id, "original")
            supplement = self_report.classification_for(pair.supplement.id, "supplement")
            assert original.charge_type == supplement.charge_type

    def test_low_risk(self, self_report):
        assert self_report.risk_assessment.overall_score == 0
        assert self_report.risk_assessment.risk_tier == RiskTier.LOW


def test_every_item_accounted_for_once():
    original = [BUMPER, ALIGNMENT, {"id": "9", "description": "Towing", "total": 80}]
    supplement = [
        {**BUMPER, "total": 900},
        ALIGNMENT,
        {"id": "7", "description": "Headlamp Assembly", "operation": "Repl", "total": 400},
        {"id": "8", "description": "Shop Supplies", "total": 60},
    ]
    report = compare_invoices(original, supplement)
    recon = report.reconciliation

    assert recon.total_items_processed == len(original) + len(supplement)
    assert report.original_totals.item_count == 3
    assert report.supplement_totals.item_count == 4
    assert [a.invoice for a in report.items] == ["original"] * 3 + ["supplement"] * 4
    assert len(report.item_variances) == recon.matched_count + recon.new_count + recon.removed_count

    stats = report.statistics
    assert stats.total_variance == stats.supplement_total - stats.original_total
    assert stats.total_variance == Decimal("530")


def test_items_follow_each_invoice_input_order():
    towing = {"id": "9", "description": "Towing", "total": 80}
    headlamp = {"id": "7", "description": "Headlamp Assembly", "operation": "Repl", "total": 400}
    report = compare_invoices([BUMPER, towing, ALIGNMENT], [ALIGNMENT, headlamp, BUMPER])

    assert [(a.invoice, a.line_item_id) for a in report.items] == [
        ("original", "1"),
        ("original", "9"),
        ("original", "2"),
        ("supplement", "2"),
        ("supplement", "7"),
        ("supplement", "1"),
    ]


def test_blank_description_self_comparison():
    blank = [{"id": "1", "description": "", "total": 50}]
    report = compare_invoices(blank, blank)
    assert report.reconciliation.matched_count == 1
    assert report.reconciliation.matching_accuracy == 1.0
    assert report.statistics.total_variance == Decimal("0")


def test_increase_scores_higher_than_self_comparison(self_report):
    supplement = [{**item, "total": item["total"] * 2} for item in INVOICE]
    report = compare_invoices(INVOICE, supplement)
    assert report.risk_assessment.overall_score > self_report.risk_assessment.overall_score
    # +100% clips to the top of the variance indicator: 0.6 x 100
    assert report.risk_assessment.overall_score == 60
    assert report.risk_assessment.risk_tier == RiskTier.MEDIUM


class TestMalformedInput:
    @pytest.mark.parametrize("bad", [None, "junk", 12, {"id": "x"}])
    def test_never_raises(self, bad):
        report = compare_invoices(bad, bad)
        assert report.reconciliation.total_items_processed == 0
        assert report.warnings
        assert format_report_json(report)["status"] == "no_items"

    @pytest.mark.parametrize("total", ["Infinity", "1e30"])
    def test_unrepresentable_total_becomes_warning(self, total):
        original = [{"id": "1", "description": "Bumper", "total": total}, ALIGNMENT]
        report = compare_invoices(original, [ALIGNMENT])
        assert report.reconciliation.matched_count == 1
        assert report.original_totals.item_count == 1
        assert any(w.startswith("original line 1 skipped") for w in report.warnings)

    def test_bad_rows_skipped(self):
        report = compare_invoices(
            [BUMPER, {"description": "no id"}],
            [BUMPER, {"id": "z", "total": "not money"}],
        )
        assert report.reconciliation.matched_count == 1
        assert len([w for w in report.warnings if "skipped" in w]) == 2


def test_report_payload_is_json_serializable(self_report):
    payload = format_report_json(self_report)
    text = json.dumps(payload)
    decoded = json.loads(text)
    assert decoded["analysis_id"].startswith("cmp_")
    assert decoded["report"]["version"] == ENGINE_VERSION
    assert decoded["report"]["statistics"]["original_total"] == pytest.approx(3011.0)


def test_analysis_ids_are_unique():
    assert compare_invoices([BUMPER], [BUMPER]).analysis_id != compare_invoices([BUMPER], [BUMPER]).analysis_id


def test_cache_reused_across_comparisons():
    cache = ClassificationCache()
    first = compare_invoices(INVOICE, INVOICE, cache=cache)
    misses = cache.misses
    second = compare_invoices(INVOICE, INVOICE, cache=cache)

    assert cache.misses == misses
    assert cache.hits > 0
    assert [a.classification for a in first.items] == [a.classification for a in second.items]


def test_threaded_classification_matches_inline():
    inline = compare_invoices(INVOICE, INVOICE)
    pooled = compare_invoices(INVOICE, INVOICE, ComparisonOptions(classification_workers=3))
    assert [a.classification for a in pooled.items] == [a.classification for a in inline.items]


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-q"]))
