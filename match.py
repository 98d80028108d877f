"""
match.py - Line item reconciliation between an original estimate and a supplement.

Each supplement item, in order, is paired with the first unconsumed original
item whose normalized description is identical. When fuzzy matching is
enabled, an item without an exact partner falls back to the most similar
unconsumed original above the configured threshold.

Outputs a `ReconciliationResult`: matched pairs with variance records, new
supplement items, removed original items, and matching accuracy.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Optional

from rapidfuzz import fuzz

from config import ComparisonOptions
from logging_config import get_logger
from models import (
    DuplicateDescription,
    LineItem,
    MatchedPair,
    ReconciliationResult,
)
from normalize import coerce_line_items, normalize_description
from variance import calculate_pair_variance, percentage_change

logger = get_logger(__name__)

EXACT_MATCH_SCORE = 1.0


def score_description(original_description: str, supplement_description: str) -> float:
    """Normalized description similarity in [0, 1]."""
    od = normalize_description(original_description)
    sd = normalize_description(supplement_description)

    if not od or not sd:
        score = 0.0
    elif od == sd:
        score = EXACT_MATCH_SCORE
    else:
        score = round(float(fuzz.ratio(od, sd)) / 100.0, 4)
        score = max(0.0, min(1.0, score))

    logger.debug(
        "description_scoring | original_norm=%r | supplement_norm=%r | score=%.4f",
        od,
        sd,
        score,
    )
    return score


def _is_potential_duplicate(original: LineItem, supplement: LineItem, threshold_percent: float) -> bool:
    """Textual match whose total moved by more than the threshold."""
    if original.total == 0:
        return supplement.total != 0
    pct = percentage_change(original.total, supplement.total)
    return pct is not None and abs(pct) > threshold_percent


def _find_exact(
    target: str,
    original_norms: list[str],
    consumed: set[int],
) -> Optional[int]:
    for index, norm in enumerate(original_norms):
        if index not in consumed and norm == target:
            return index
    return None


def _find_fuzzy(
    supplement: LineItem,
    originals: list[LineItem],
    consumed: set[int],
    threshold: float,
) -> tuple[Optional[int], float]:
    """Best unconsumed candidate at or above threshold.

    Ties on similarity go to the smallest absolute total difference, then to
    the earliest original.
    """
    candidates: list[tuple[float, Any, int]] = []
    for index, original in enumerate(originals):
        if index in consumed:
            continue
        score = score_description(original.description, supplement.description)
        if score < threshold:
            continue
        candidates.append((score, abs(original.total - supplement.total), index))

    if not candidates:
        return None, 0.0

    candidates.sort(key=lambda candidate: (-candidate[0], candidate[1], candidate[2]))
    best_score, _, best_index = candidates[0]
    return best_index, best_score


def find_duplicate_descriptions(items: list[LineItem], invoice: str) -> list[DuplicateDescription]:
    """Groups of items inside one invoice sharing a normalized description."""
    groups: dict[str, list[LineItem]] = defaultdict(list)
    for item in items:
        norm = normalize_description(item.description)
        if norm:
            groups[norm].append(item)

    return [
        DuplicateDescription(
            invoice=invoice,
            description=members[0].description,
            item_ids=[member.id for member in members],
        )
        for members in groups.values()
        if len(members) > 1
    ]


def reconcile_line_items(
    original_items: Any,
    supplement_items: Any,
    options: Optional[ComparisonOptions] = None,
) -> ReconciliationResult:
    """Pair supplement items against original items.

    Never raises on bad input: malformed collections produce an empty (or
    partial) result with warnings and zero accuracy.
    """
    opts = options or ComparisonOptions()

    originals, warnings = coerce_line_items(original_items, invoice="original")
    supplements, supplement_warnings = coerce_line_items(supplement_items, invoice="supplement")
    warnings.extend(supplement_warnings)

    if not originals and not supplements:
        warnings.append("No valid line items found in either invoice - nothing to reconcile")
        logger.warning("matching_input_warning | no_valid_items=True | fallback=empty_result")
        return ReconciliationResult(matching_accuracy=0.0, warnings=warnings)

    duplicates = find_duplicate_descriptions(originals, "original")
    duplicates.extend(find_duplicate_descriptions(supplements, "supplement"))
    for duplicate in duplicates:
        warnings.append(
            f"Duplicate description in {duplicate.invoice} invoice: "
            f"'{duplicate.description}' on items {', '.join(duplicate.item_ids)}"
        )
        logger.warning(
            "matching_duplicate_description | invoice=%s | description=%r | item_ids=%s",
            duplicate.invoice,
            duplicate.description,
            duplicate.item_ids,
        )

    original_norms = [normalize_description(item.description) for item in originals]
    consumed: set[int] = set()
    matched: list[MatchedPair] = []
    new_items: list[LineItem] = []
    fuzzy_matches = 0

    for supplement in supplements:
        index = _find_exact(normalize_description(supplement.description), original_norms, consumed)
        score = EXACT_MATCH_SCORE

        if index is None and opts.enable_fuzzy_matching:
            index, score = _find_fuzzy(supplement, originals, consumed, opts.fuzzy_threshold)
            if index is not None:
                fuzzy_matches += 1

        if index is None:
            new_items.append(supplement)
            logger.debug("matching_new_item | supplement_id=%s | description=%r", supplement.id, supplement.description)
            continue

        consumed.add(index)
        original = originals[index]
        potential_duplicate = _is_potential_duplicate(original, supplement, opts.potential_duplicate_percent)
        if potential_duplicate:
            warnings.append(
                f"Item '{supplement.description}' matched by description but its total changed "
                f"from ${original.total:.2f} to ${supplement.total:.2f} - possible duplicate or mismatch"
            )
            logger.warning(
                "matching_potential_duplicate | original_id=%s | supplement_id=%s | original_total=%s | supplement_total=%s",
                original.id,
                supplement.id,
                original.total,
                supplement.total,
            )

        matched.append(
            MatchedPair(
                original=original,
                supplement=supplement,
                matching_score=score,
                variance=calculate_pair_variance(original, supplement),
                is_potential_duplicate=potential_duplicate,
            )
        )

    removed = [item for index, item in enumerate(originals) if index not in consumed]

    denominator = len(matched) + len(new_items) + len(removed)
    accuracy = round(len(matched) / denominator, 4) if denominator else 0.0

    logger.info(
        "matching_complete | matched=%s | fuzzy=%s | new=%s | removed=%s | accuracy=%.1f%% | duplicates=%s",
        len(matched),
        fuzzy_matches,
        len(new_items),
        len(removed),
        accuracy * 100.0,
        len(duplicates),
    )

    return ReconciliationResult(
        matched_items=matched,
        removed_items=removed,
        new_items=new_items,
        matching_accuracy=accuracy,
        duplicate_descriptions=duplicates,
        warnings=warnings,
        original_input=originals,
        supplement_input=supplements,
    )
