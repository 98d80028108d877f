"""
normalize.py - Line item normalization module.

Core normalizers:
    normalize_description(text)   -> lower-cased, trimmed, single-spaced text
    normalize_operation(code)     -> canonical operation family or None
    normalize_amount(value)       -> Decimal rounded to cents

Convenience wrappers:
    coerce_line_items(raw, invoice)   -> (list[LineItem], warnings)
    records_from_frame(df)            -> list[dict] ready for coerce_line_items

Design principles:
    - SAME normalization on BOTH invoices
    - Pure transformations, no external calls
    - Invalid input degrades to neutral defaults plus a warning, never raises
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import pandas as pd
from pydantic import ValidationError

from logging_config import get_logger
from models import CENT, LineItem

logger = get_logger(__name__)

# Operation families in match priority. R&I must be tested before the
# replacement family because "remove and install" is not a replacement.
OPERATION_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("sublet", re.compile(r"subl", re.IGNORECASE)),
    ("remove_install", re.compile(r"r\s*&\s*i|remove.*install", re.IGNORECASE)),
    ("replace", re.compile(r"repl|r\s*&\s*r|replace", re.IGNORECASE)),
    ("overhaul", re.compile(r"o/h|overhaul", re.IGNORECASE)),
    ("refinish", re.compile(r"refn|blnd|refinish|blend", re.IGNORECASE)),
    ("repair", re.compile(r"rpr|repair", re.IGNORECASE)),
]

NULL_TOKENS = {"n/a", "na", "none", "null", "unknown", "nan"}


def normalize_description(description: Any) -> str:
    """Normalize a line description for matching and keyword analysis."""
    if description is None:
        return ""

    if not isinstance(description, str):
        try:
            description = str(description)
        except Exception:
            return ""

    text = unicodedata.normalize("NFKC", description).lower().strip()
    return re.sub(r"\s+", " ", text)


def normalize_operation(code: Any) -> Optional[str]:
    """Map a raw operation code ('Repl', 'R&I', 'Subl', ...) to its family."""
    if code is None:
        return None

    text = str(code).strip()
    if not text or text.lower() in NULL_TOKENS:
        return None

    for family, pattern in OPERATION_PATTERNS:
        if pattern.search(text):
            return family

    logger.debug("normalize_operation | unrecognized=%r | fallback=None", code)
    return None


def normalize_amount(value: Any) -> Decimal:
    """Normalize money input into a Decimal rounded to cents.

    Credits keep their sign: "(25.00)" and "-$25" both become -25.00.
    Unparseable or non-finite input becomes 0.00.
    """
    if value is None:
        return Decimal("0.00")

    if isinstance(value, Decimal):
        if not value.is_finite():
            logger.warning("normalize_amount | non_finite=%r | fallback=0.00", value)
            return Decimal("0.00")
        return value.quantize(CENT)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if isinstance(value, float) and not math.isfinite(value):
            logger.warning("normalize_amount | non_finite=%r | fallback=0.00", value)
            return Decimal("0.00")
        return Decimal(str(value)).quantize(CENT)

    cleaned = str(value).strip()
    if not cleaned or cleaned.lower() in NULL_TOKENS:
        return Decimal("0.00")

    is_negative = (
        cleaned.startswith("-")
        or (cleaned.startswith("(") and cleaned.endswith(")"))
        or "-$" in cleaned
        or "$-" in cleaned
    )
    cleaned = (
        cleaned.replace("$", "")
        .replace("(", "")
        .replace(")", "")
        .replace(",", "")
        .replace("-", "")
        .strip()
    )

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        logger.warning("normalize_amount | parse_failed | raw=%r | fallback=0.00", value)
        return Decimal("0.00")

    if not amount.is_finite():
        logger.warning("normalize_amount | non_finite_parsed=%r | fallback=0.00", value)
        return Decimal("0.00")

    amount = amount.quantize(CENT)
    return -amount if is_negative else amount


def coerce_line_items(raw_items: Any, invoice: str = "invoice") -> tuple[list[LineItem], list[str]]:
    """Turn an upstream line-item collection into validated LineItem objects.

    Returns the valid items in their original order plus a warning for every
    problem found. A missing or non-sequence collection yields ([], [warning]).
    """
    warnings: list[str] = []

    if raw_items is None:
        warnings.append(f"{invoice} line items are missing")
        logger.warning("line_items_input_warning | invoice=%s | items_none=True | fallback=[]", invoice)
        return [], warnings

    if isinstance(raw_items, (str, bytes, dict)) or not isinstance(raw_items, Sequence):
        warnings.append(
            f"{invoice} line items must be a sequence, got {type(raw_items).__name__}"
        )
        logger.warning(
            "line_items_input_warning | invoice=%s | expected_type=sequence | got_type=%s | fallback=[]",
            invoice,
            type(raw_items).__name__,
        )
        return [], warnings

    items: list[LineItem] = []
    seen_ids: set[str] = set()

    for index, raw in enumerate(raw_items):
        if isinstance(raw, LineItem):
            item = raw
        else:
            try:
                item = LineItem.model_validate(raw)
            except ValidationError as exc:
                fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
                warnings.append(
                    f"{invoice} line {index + 1} skipped: invalid fields {fields or ['<row>']}"
                )
                logger.warning(
                    "line_item_invalid | invoice=%s | row_index=%s | fields=%s | fallback='skip row'",
                    invoice,
                    index,
                    fields,
                )
                continue
            except ArithmeticError as exc:
                warnings.append(f"{invoice} line {index + 1} skipped: amount out of range")
                logger.warning(
                    "line_item_invalid | invoice=%s | row_index=%s | error_type=%s | fallback='skip row'",
                    invoice,
                    index,
                    type(exc).__name__,
                )
                continue

        if item.id in seen_ids:
            warnings.append(f"{invoice} line id {item.id!r} appears more than once")
            logger.warning("line_item_duplicate_id | invoice=%s | id=%r", invoice, item.id)
        seen_ids.add(item.id)
        items.append(item)

    logger.debug(
        "line_items_coerced | invoice=%s | received=%s | valid=%s",
        invoice,
        len(raw_items),
        len(items),
    )
    return items, warnings


def records_from_frame(frame: pd.DataFrame | None) -> list[dict[str, Any]]:
    """Convert a line-item DataFrame (CSV export) into plain record dicts.

    Column names are stripped; NaN cells become None so optional fields stay
    unset instead of turning into the string 'nan'.
    """
    if frame is None or not isinstance(frame, pd.DataFrame) or frame.empty:
        return []

    df = frame.copy()
    df.columns = [str(col).strip() for col in df.columns]
    df = df.dropna(how="all")
    df = df.astype(object).where(pd.notna(df), None)

    records = df.to_dict(orient="records")
    for position, record in enumerate(records, start=1):
        if record.get("id") is None:
            record["id"] = f"line-{position}"
    return records
