"""
report.py - Human-readable and JSON-ready comparison report formatting.

This module converts a structured `ComparisonReport` into:
- terminal-friendly text output for CLI usage
- machine-friendly dictionary output for APIs/logging/storage
"""

from __future__ import annotations

from typing import Any

from logging_config import get_logger
from models import ChangeType, ComparisonReport, RiskTier

logger = get_logger(__name__)

CHARGE_TYPE_NAMES: dict[str, str] = {
    "part_with_labor": "Part + Labor",
    "labor_only": "Labor Only",
    "material": "Material",
    "sublet": "Sublet",
    "miscellaneous": "Miscellaneous",
    "unknown": "Unknown",
}

OUTPUT_WIDTH = 64
SEPARATOR = "=" * OUTPUT_WIDTH
MAX_ITEMS_DISPLAY = 12
MAX_WARNINGS_DISPLAY = 8


def _money(value: Any) -> str:
    amount = float(value)
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def _signed_money(value: Any) -> str:
    amount = float(value)
    return ("+" if amount > 0 else "") + _money(amount)


def _percent(value: float | None) -> str:
    return "n/a" if value is None else f"{value:+.1f}%"


def _error_block(message: str) -> str:
    return "\n" + SEPARATOR + "\n" + f"  ERROR: {message}\n" + SEPARATOR + "\n"


def format_report(report: ComparisonReport | None) -> str:
    """Format a ComparisonReport into a clean, human-readable text block."""
    if report is None:
        logger.error("report_input_error | report_none=True | fallback=error_block")
        return _error_block("No comparison data available")

    stats = report.statistics
    risk = report.risk_assessment
    recon = report.reconciliation
    lines: list[str] = [""]

    lines.append(SEPARATOR)
    lines.append(f"  Supplement Review - {risk.risk_tier.value.upper()} RISK ({risk.overall_score}/100)")
    lines.append(SEPARATOR)

    lines.append("")
    lines.append(
        f"  Original:     {_money(report.original_totals.total)}  |  {report.original_totals.item_count} item(s)"
    )
    lines.append(
        f"  Supplement:   {_money(report.supplement_totals.total)}  |  {report.supplement_totals.item_count} item(s)"
    )
    lines.append(
        f"  Variance:     {_signed_money(stats.total_variance)}  ({_percent(stats.total_variance_percent)})"
    )

    lines.append("")
    lines.append(
        f"  Matching:     {recon.matched_count} matched, {recon.new_count} new, "
        f"{recon.removed_count} removed  |  accuracy {recon.matching_accuracy:.0%}"
    )

    if stats.charge_type_distribution:
        lines.append("")
        lines.append("  Supplement by charge type:")
        for charge_type, dist in stats.charge_type_distribution.items():
            name = CHARGE_TYPE_NAMES.get(charge_type, charge_type)
            lines.append(f"    • {name:<16} {dist.count:>3} item(s)  {_money(dist.total_amount):>12}")

    changed = [v for v in report.item_variances if v.change_type != ChangeType.UNCHANGED]
    lines.append("")
    lines.append("  Changes:")
    if not changed:
        lines.append("    • (no changes)")
    else:
        for variance in changed[:MAX_ITEMS_DISPLAY]:
            lines.append(
                f"    • [{variance.change_type.value}] {variance.description or variance.item_id}: "
                f"{_signed_money(variance.total_variance)} ({_percent(variance.percentage_change)})"
            )
        if len(changed) > MAX_ITEMS_DISPLAY:
            lines.append(f"    • ... and {len(changed) - MAX_ITEMS_DISPLAY} more change(s)")

    if stats.suspicious_patterns:
        lines.append("")
        lines.append("  Suspicious patterns:")
        for pattern in stats.suspicious_patterns:
            lines.append(f"    • {pattern.description} (impact {_money(pattern.potential_impact)})")

    if risk.risk_factors:
        lines.append("")
        lines.append("  Risk factors:")
        for factor in risk.risk_factors:
            lines.append(f"    • {factor.description} (+{factor.impact:.0f} pts)")

    lines.append("")
    lines.append("  Recommendations:")
    for recommendation in risk.recommendations:
        lines.append(f"    • {recommendation}")

    if report.warnings:
        lines.append("")
        lines.append(f"  WARNING: {len(report.warnings)} item(s) need attention")
        for warning in report.warnings[:MAX_WARNINGS_DISPLAY]:
            lines.append(f"    {warning}")
        if len(report.warnings) > MAX_WARNINGS_DISPLAY:
            lines.append(f"    ... and {len(report.warnings) - MAX_WARNINGS_DISPLAY} more warning(s)")

    lines.append("")
    lines.append(SEPARATOR)
    lines.append("")
    return "\n".join(lines)


def format_report_json(report: ComparisonReport | None) -> dict:
    """Format a ComparisonReport as a JSON-compatible dictionary with a status."""
    if report is None:
        logger.error("report_json_input_error | report_none=True | fallback=error_payload")
        return {
            "status": "error",
            "report": None,
            "warnings": ["Comparison report was None"],
        }

    tier = report.risk_assessment.risk_tier
    if report.reconciliation.total_items_processed == 0:
        status = "no_items"
    elif tier == RiskTier.LOW:
        status = "approved_for_processing"
    else:
        status = "review_required"

    payload = report.model_dump(mode="json")
    return {
        "status": status,
        "analysis_id": report.analysis_id,
        "risk_score": report.risk_assessment.overall_score,
        "risk_tier": tier.value,
        "report": payload,
        "warnings": list(report.warnings),
    }
