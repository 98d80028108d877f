"""
main.py - CLI for the supplement comparison engine.

This module is orchestration-only:
1. load both invoices (JSON or CSV line items)
2. compare
3. print the text report or the JSON payload
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Any

import pandas as pd

from compare import compare_invoices
from config import load_options, options_from_env
from logging_config import get_logger, setup_logging
from normalize import records_from_frame
from report import format_report, format_report_json

logger = get_logger("supplement-compare")

REQUIRED_COLUMNS = ["description", "total"]

# Lower-cased CSV headers mapped onto LineItem field names.
CSV_COLUMN_ALIASES = {
    "partnumber": "part_number",
    "part number": "part_number",
    "laborhours": "labor_hours",
    "labor hours": "labor_hours",
    "laborrate": "labor_rate",
    "labor rate": "labor_rate",
    "partcategory": "part_category",
    "part category": "part_category",
    "qty": "quantity",
    "op": "operation",
}


def _load_csv(path: str) -> list[dict[str, Any]]:
    try:
        df = pd.read_csv(path, dtype=str, encoding="utf-8-sig")
    except UnicodeDecodeError:
        logger.warning(
            "csv_encoding_warning | path=%s | reason='utf-8 decode failed' | fallback=latin-1",
            path,
        )
        df = pd.read_csv(path, dtype=str, encoding="latin-1")
    except Exception as exc:
        raise ValueError(f"Failed to read CSV '{path}': {exc}") from exc

    df.columns = [str(col).strip().lower() for col in df.columns]
    df = df.rename(columns=CSV_COLUMN_ALIASES)
    df = df.dropna(how="all").copy()

    if df.empty:
        raise ValueError(f"Line item CSV is empty: {path}")

    missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(
            f"Line item CSV missing required columns: {missing}\n"
            f"Required: {REQUIRED_COLUMNS}\n"
            f"Found: {list(df.columns)}"
        )

    return records_from_frame(df)


def _load_json(path: str) -> list[dict[str, Any]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Line item file '{path}' is not valid JSON: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("line_items", data.get("items"))
    if not isinstance(data, list):
        raise ValueError(
            f"Line item file '{path}' must hold a list of line items "
            "or an object with a 'line_items' list"
        )
    return data


def load_line_items(path: str) -> list[dict[str, Any]]:
    """Load one invoice's line items from a .json or .csv file."""
    if path is None:
        raise ValueError("path cannot be None")

    path = str(path).strip()
    if not path:
        raise ValueError("path cannot be empty")

    if not os.path.exists(path):
        raise FileNotFoundError(f"Line item file not found: {path}")

    suffix = Path(path).suffix.lower()
    if suffix == ".csv":
        records = _load_csv(path)
    elif suffix == ".json":
        records = _load_json(path)
    else:
        raise ValueError(f"Unsupported line item file type '{suffix}' - use .json or .csv")

    logger.info("line_items_loaded | path=%s | rows=%s", path, len(records))
    return records


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the supplement comparison engine."""
    parser = argparse.ArgumentParser(
        prog="supplement-compare",
        description=(
            "Supplement Comparison Engine\n"
            "Reconciles a repair estimate against its supplement, classifies "
            "every charge and scores the supplement's risk."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s --original estimate.json --supplement supplement.json\n"
            "  %(prog)s -o estimate.csv -s supplement.csv --json\n"
            "  %(prog)s -o estimate.csv -s supplement.csv --fuzzy --verbose\n"
        ),
    )
    parser.add_argument(
        "--original",
        "-o",
        type=str,
        required=True,
        help="Path to the original estimate line items (.json or .csv)",
    )
    parser.add_argument(
        "--supplement",
        "-s",
        type=str,
        required=True,
        help="Path to the supplement line items (.json or .csv)",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to a JSON options file (defaults, then RECON_* environment variables otherwise)",
    )
    parser.add_argument(
        "--fuzzy",
        action="store_true",
        help="Enable fuzzy description matching for items without an exact match",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG-level) logging",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output the full report as JSON instead of formatted text",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON lines (for production/log aggregation)",
    )

    args = parser.parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_format=args.log_json,
    )

    try:
        options = load_options(args.config) if args.config else options_from_env()
        if args.fuzzy:
            options = options.model_copy(update={"enable_fuzzy_matching": True})

        logger.info(
            "cli_mode | original=%s | supplement=%s | fuzzy=%s",
            args.original,
            args.supplement,
            options.enable_fuzzy_matching,
        )
        original = load_line_items(args.original)
        supplement = load_line_items(args.supplement)
        report = compare_invoices(original, supplement, options)

        if args.json:
            print(json.dumps(format_report_json(report), indent=2))
        else:
            print(format_report(report))
    except FileNotFoundError as exc:
        logger.error("cli_error | type=FileNotFoundError | error=%s", exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except ValueError as exc:
        logger.error("cli_error | type=ValueError | error=%s", exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        print("\nInterrupted.")
        raise SystemExit(130)


if __name__ == "__main__":
    main()
