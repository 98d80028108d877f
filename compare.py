"""
compare.py - End-to-end comparison of an original estimate and its supplement.

This module is orchestration-only:
1. match      reconcile supplement items against original items
2. classify   charge type for every item of both invoices
3. separate   part / labor split and charge detail per item
4. aggregate  item variances and statistics
5. risk       bounded risk score with factors and recommendations
"""

from __future__ import annotations

import secrets
import time
from decimal import Decimal
from typing import Any, Optional

from aggregate import calculate_variance_statistics
from classify import ClassificationCache, classify_items
from config import ComparisonOptions
from logging_config import get_logger
from match import reconcile_line_items
from models import (
    ChargeDetail,
    ClassificationResult,
    ComparisonReport,
    InvoiceTotals,
    ItemAnalysis,
    LineItem,
    PartWithLaborCharge,
)
from risk import assess_risk
from separate import build_charge_detail
from variance import calculate_item_variances

logger = get_logger(__name__)

ENGINE_VERSION = "1.0.0"


def _generate_analysis_id() -> str:
    return f"cmp_{secrets.token_hex(6)}"


def _invoice_totals(items: list[LineItem]) -> InvoiceTotals:
    return InvoiceTotals(item_count=len(items), total=sum((item.total for item in items), Decimal("0")))


def _analyze_invoice(
    items: list[LineItem],
    invoice: str,
    options: ComparisonOptions,
    cache: Optional[ClassificationCache],
) -> list[ItemAnalysis]:
    classifications = classify_items(items, cache=cache, max_workers=options.classification_workers)

    analyses: list[ItemAnalysis] = []
    for item, classification in zip(items, classifications):
        detail, classification = build_charge_detail(item, classification, siblings=items)
        analyses.append(
            ItemAnalysis(
                line_item_id=item.id,
                invoice=invoice,
                description=item.description,
                total=item.total,
                classification=classification,
                charge_detail=detail,
                cost_breakdown=detail.breakdown if isinstance(detail, PartWithLaborCharge) else None,
            )
        )
    return analyses


def compare_invoices(
    original: Any,
    supplement: Any,
    options: Optional[ComparisonOptions] = None,
    cache: Optional[ClassificationCache] = None,
) -> ComparisonReport:
    """Compare two invoices and build the full report.

    `original` and `supplement` are sequences of LineItem objects or raw
    line-item dicts. Bad input never raises; it surfaces as report warnings.
    """
    opts = options or ComparisonOptions()
    analysis_id = _generate_analysis_id()
    pipeline_start = time.time()
    logger.info("comparison_start | analysis_id=%s | fuzzy=%s", analysis_id, opts.enable_fuzzy_matching)

    # Stage 1: match.
    stage_start = time.time()
    reconciliation = reconcile_line_items(original, supplement, opts)
    match_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=1/5 | name=match | status=complete | matched=%s | new=%s | removed=%s | duration_s=%.3f",
        reconciliation.matched_count,
        reconciliation.new_count,
        reconciliation.removed_count,
        match_time,
    )

    original_items = reconciliation.original_items
    supplement_items = reconciliation.supplement_items

    # Stages 2 and 3: classify and separate, per invoice.
    stage_start = time.time()
    analyses = _analyze_invoice(original_items, "original", opts, cache)
    analyses.extend(_analyze_invoice(supplement_items, "supplement", opts, cache))
    classify_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=2-3/5 | name=classify_separate | status=complete | items=%s | duration_s=%.3f",
        len(analyses),
        classify_time,
    )

    classifications: dict[tuple[str, str], ClassificationResult] = {
        (analysis.invoice, analysis.line_item_id): analysis.classification for analysis in analyses
    }
    details: dict[tuple[str, str], ChargeDetail] = {
        (analysis.invoice, analysis.line_item_id): analysis.charge_detail for analysis in analyses
    }

    # Stage 4: aggregate.
    stage_start = time.time()
    statistics = calculate_variance_statistics(reconciliation, classifications, details, opts)
    aggregate_time = time.time() - stage_start
    logger.info(
        "pipeline_stage | stage=4/5 | name=aggregate | status=complete | total_variance=%s | duration_s=%.3f",
        statistics.total_variance,
        aggregate_time,
    )

    # Stage 5: risk.
    risk_assessment = assess_risk(statistics, reconciliation, classifications)

    warnings = list(reconciliation.warnings)
    for analysis in analyses:
        for warning in analysis.classification.warnings:
            warnings.append(f"{analysis.invoice} item {analysis.line_item_id}: {warning}")

    report = ComparisonReport(
        analysis_id=analysis_id,
        version=ENGINE_VERSION,
        original_totals=_invoice_totals(original_items),
        supplement_totals=_invoice_totals(supplement_items),
        reconciliation=reconciliation,
        items=analyses,
        item_variances=calculate_item_variances(reconciliation),
        statistics=statistics,
        risk_assessment=risk_assessment,
        warnings=warnings,
    )

    logger.info(
        "comparison_complete | analysis_id=%s | risk_score=%s | tier=%s | warnings=%s | total_duration_s=%.3f",
        analysis_id,
        risk_assessment.overall_score,
        risk_assessment.risk_tier.value,
        len(warnings),
        time.time() - pipeline_start,
    )
    return report
