"""
classify.py - Charge type classification for repair invoice line items.

Rules are evaluated in a fixed order and the first rule that returns a
decision wins:

    1. operation_code        Repl / R&I / Refn / Subl ...
    2. part_category         OEM, LABOR, PAINT_MATERIALS, RENTAL ...
    3. part_number           a part number implies a part
    4. description_keywords  curated keyword sets, parts first
    5. labor_hours_fallback  hours with nothing else -> labor only
    6. unclassified          unknown, confidence 0.0

Every rule is a pure function of the line item, so classification is
deterministic and safe to run on a thread pool.
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Callable, Iterable, Optional

from logging_config import get_logger
from models import ChargeType, ClassificationEvidence, ClassificationResult, LineItem
from normalize import normalize_description, normalize_operation

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------

LOW_CONFIDENCE_THRESHOLD = 0.7
LOW_CONFIDENCE_WARNING = "Low confidence classification - manual review recommended"

OPERATION_SUBLET_CONFIDENCE = 0.95
OPERATION_REPLACE_WITH_PART_NUMBER = 0.95
OPERATION_REPLACE_WITH_HOURS = 0.75
OPERATION_REPLACE_BARE = 0.60
OPERATION_REMOVE_INSTALL_CONFIDENCE = 0.90
OPERATION_REFINISH_CONFIDENCE = 0.85

PART_CATEGORY_CONFIDENCE = 0.85

PART_NUMBER_CONFIDENCE = 0.80
PART_NUMBER_WITH_HOURS_CONFIDENCE = 0.90

# Keyword confidences; labor gains a bonus when hours back it up.
KEYWORD_PART_CONFIDENCE = 0.75
KEYWORD_LABOR_CONFIDENCE = 0.75
KEYWORD_LABOR_HOURS_BONUS = 0.15
KEYWORD_MATERIAL_CONFIDENCE = 0.85
KEYWORD_SUBLET_CONFIDENCE = 0.90

LABOR_HOURS_FALLBACK_CONFIDENCE = 0.50

# ---------------------------------------------------------------------------
# Keyword sets
# ---------------------------------------------------------------------------

PART_KEYWORDS: tuple[str, ...] = (
    "bumper", "fender", "door", "hood", "panel", "mirror", "lamp",
    "headlight", "taillight", "grille", "molding", "trim", "bracket",
    "sensor", "camera", "module", "switch", "actuator", "motor",
    "pump", "compressor", "alternator", "starter", "battery",
    "brake pad", "rotor", "caliper", "strut", "shock", "spring",
    "control arm", "tie rod", "ball joint", "bearing", "hub",
    "filter", "belt", "hose", "gasket", "seal", "headlamp",
    "replace", "install", "r&r", "r & r",
)

# No "paint" here: paint lines are materials.
LABOR_KEYWORDS: tuple[str, ...] = (
    "labor", "diagnostic", "diagnosis", "inspection", "test", "testing",
    "alignment", "balance", "calibration", "adjustment", "setup",
    "programming", "scan", "check", "verify", "measure",
    "remove and install", "r&i", "r & i", "disassemble", "reassemble",
    "refinish", "blend", "prep", "sand", "mask",
    "detail", "clean", "polish", "buff",
)

MATERIAL_KEYWORDS: tuple[str, ...] = (
    "paint", "primer", "clear coat", "sealer", "adhesive",
    "fluid", "oil", "coolant", "refrigerant",
    "supplies", "shop supplies", "materials", "consumables",
    "sandpaper", "masking", "tape", "thinner", "reducer",
)

SUBLET_KEYWORDS: tuple[str, ...] = (
    "sublet", "outside", "vendor", "third party",
    "glass shop", "windshield", "tire shop",
    "adas", "upholstery", "interior repair", "dent repair", "pdr",
)

PAINT_MATERIAL_KEYWORDS: tuple[str, ...] = (
    "paint", "primer", "clear coat", "sealer", "base coat", "supplies", "materials",
)

PART_CATEGORY_MAP: dict[str, ChargeType] = {
    "OEM": ChargeType.PART_WITH_LABOR,
    "AFTERMARKET": ChargeType.PART_WITH_LABOR,
    "LABOR": ChargeType.LABOR_ONLY,
    "PAINT_MATERIALS": ChargeType.MATERIAL,
    "CONSUMABLES": ChargeType.MATERIAL,
    "RENTAL": ChargeType.MISCELLANEOUS,
    "STORAGE": ChargeType.MISCELLANEOUS,
}

_KEYWORD_PATTERNS: dict[str, re.Pattern[str]] = {}


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    pattern = _KEYWORD_PATTERNS.get(keyword)
    if pattern is None:
        # Whole words, optional plural: "oil" never fires inside "spoiler".
        pattern = re.compile(r"(?<![a-z0-9])" + re.escape(keyword.strip()) + r"(?:s|es)?(?![a-z0-9])")
        _KEYWORD_PATTERNS[keyword] = pattern
    return pattern


def find_keywords(description: str, keywords: Iterable[str]) -> list[str]:
    """Keywords from `keywords` present in an already-normalized description."""
    return [kw.strip() for kw in keywords if _keyword_pattern(kw).search(description)]


def is_paint_material(description: str) -> bool:
    return bool(find_keywords(normalize_description(description), PAINT_MATERIAL_KEYWORDS))


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

# A rule returns (charge_type, confidence, evidence, warnings) or None.
RuleOutcome = tuple[ChargeType, float, ClassificationEvidence, list[str]]
Rule = Callable[[LineItem], Optional[RuleOutcome]]


def _evidence(item: LineItem, **overrides) -> ClassificationEvidence:
    data = {
        "has_part_number": item.has_part_number,
        "has_labor_hours": item.has_labor_hours,
    }
    data.update(overrides)
    return ClassificationEvidence(**data)


def operation_code_rule(item: LineItem) -> Optional[RuleOutcome]:
    family = normalize_operation(item.operation)
    if family is None or family == "repair":
        return None

    evidence = _evidence(item, operation_code_match=True)

    if family == "sublet":
        return ChargeType.SUBLET, OPERATION_SUBLET_CONFIDENCE, evidence, []

    if family in ("replace", "overhaul"):
        if item.has_part_number:
            confidence = OPERATION_REPLACE_WITH_PART_NUMBER
        elif item.has_labor_hours:
            confidence = OPERATION_REPLACE_WITH_HOURS
        else:
            confidence = OPERATION_REPLACE_BARE
        return ChargeType.PART_WITH_LABOR, confidence, evidence, []

    if family == "remove_install":
        return ChargeType.LABOR_ONLY, OPERATION_REMOVE_INSTALL_CONFIDENCE, evidence, []

    if family == "refinish":
        charge_type = ChargeType.MATERIAL if is_paint_material(item.description) else ChargeType.LABOR_ONLY
        return charge_type, OPERATION_REFINISH_CONFIDENCE, evidence, []

    return None


def part_category_rule(item: LineItem) -> Optional[RuleOutcome]:
    if not item.part_category:
        return None
    key = re.sub(r"[\s\-]+", "_", item.part_category.strip()).upper()
    charge_type = PART_CATEGORY_MAP.get(key)
    if charge_type is None:
        return None
    return charge_type, PART_CATEGORY_CONFIDENCE, _evidence(item, part_category_match=True), []


def part_number_rule(item: LineItem) -> Optional[RuleOutcome]:
    if not item.has_part_number:
        return None
    confidence = PART_NUMBER_WITH_HOURS_CONFIDENCE if item.has_labor_hours else PART_NUMBER_CONFIDENCE
    return ChargeType.PART_WITH_LABOR, confidence, _evidence(item), []


def description_keyword_rule(item: LineItem) -> Optional[RuleOutcome]:
    description = normalize_description(item.description)
    if not description:
        return None

    hits = find_keywords(description, PART_KEYWORDS)
    if hits:
        return ChargeType.PART_WITH_LABOR, KEYWORD_PART_CONFIDENCE, _evidence(item, description_keywords=hits), []

    hits = find_keywords(description, LABOR_KEYWORDS)
    if hits:
        confidence = KEYWORD_LABOR_CONFIDENCE
        if item.has_labor_hours:
            confidence = min(1.0, confidence + KEYWORD_LABOR_HOURS_BONUS)
        return ChargeType.LABOR_ONLY, round(confidence, 2), _evidence(item, description_keywords=hits), []

    hits = find_keywords(description, MATERIAL_KEYWORDS)
    if hits:
        return ChargeType.MATERIAL, KEYWORD_MATERIAL_CONFIDENCE, _evidence(item, description_keywords=hits), []

    hits = find_keywords(description, SUBLET_KEYWORDS)
    if hits:
        return ChargeType.SUBLET, KEYWORD_SUBLET_CONFIDENCE, _evidence(item, description_keywords=hits), []

    return None


def labor_hours_fallback_rule(item: LineItem) -> Optional[RuleOutcome]:
    if not item.has_labor_hours:
        return None
    warning = "Classified as labor only from labor hours alone - no operation, category or keyword support"
    return ChargeType.LABOR_ONLY, LABOR_HOURS_FALLBACK_CONFIDENCE, _evidence(item), [warning]


def unclassified_rule(item: LineItem) -> Optional[RuleOutcome]:
    warning = f"Unable to classify line item '{item.description}' - no matching rule"
    return ChargeType.UNKNOWN, 0.0, _evidence(item), [warning]


CLASSIFICATION_RULES: tuple[tuple[str, Rule], ...] = (
    ("operation_code", operation_code_rule),
    ("part_category", part_category_rule),
    ("part_number", part_number_rule),
    ("description_keywords", description_keyword_rule),
    ("labor_hours_fallback", labor_hours_fallback_rule),
    ("unclassified", unclassified_rule),
)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

CacheKey = tuple[str, str, str, str, Optional[Decimal]]


class ClassificationCache:
    """Caller-owned memo of classification outcomes.

    Keyed by (description, operation, part number, part category, labor
    hours). The item id is not part of the key; hits are re-stamped with the
    requesting item's id.
    There is no invalidation: a classification never changes for a given key.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, ClassificationResult] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(item: LineItem) -> CacheKey:
        return (
            normalize_description(item.description),
            (item.operation or "").strip().lower(),
            (item.part_number or "").strip().upper(),
            re.sub(r"[\s\-]+", "_", (item.part_category or "").strip()).upper(),
            item.labor_hours,
        )

    def get(self, item: LineItem) -> Optional[ClassificationResult]:
        cached = self._entries.get(self.key_for(item))
        if cached is None:
            self.misses += 1
            return None
        self.hits += 1
        if cached.line_item_id == item.id:
            return cached
        return cached.model_copy(update={"line_item_id": item.id})

    def put(self, item: LineItem, result: ClassificationResult) -> None:
        self._entries[self.key_for(item)] = result

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _first_outcome(item: LineItem) -> tuple[str, RuleOutcome]:
    for name, rule in CLASSIFICATION_RULES:
        outcome = rule(item)
        if outcome is not None:
            return name, outcome
    return "unclassified", unclassified_rule(item)


def _classify_uncached(item: LineItem) -> ClassificationResult:
    name, (charge_type, confidence, evidence, warnings) = _first_outcome(item)
    confidence = max(0.0, min(1.0, confidence))
    if confidence < LOW_CONFIDENCE_THRESHOLD and charge_type != ChargeType.UNKNOWN:
        warnings = warnings + [LOW_CONFIDENCE_WARNING]

    logger.debug(
        "classification_rule_hit | item_id=%s | rule=%s | charge_type=%s | confidence=%.2f",
        item.id,
        name,
        charge_type.value,
        confidence,
    )
    return ClassificationResult(
        line_item_id=item.id,
        charge_type=charge_type,
        confidence=confidence,
        rule=name,
        evidence=evidence,
        warnings=warnings,
    )


def classify_charge(item: LineItem, cache: Optional[ClassificationCache] = None) -> ClassificationResult:
    """Classify one line item into a charge type with confidence and evidence."""
    if cache is not None:
        cached = cache.get(item)
        if cached is not None:
            return cached

    result = _classify_uncached(item)
    if result.charge_type == ChargeType.UNKNOWN:
        logger.warning(
            "classification_unknown | item_id=%s | description=%r | fallback=unknown",
            item.id,
            item.description,
        )

    if cache is not None:
        cache.put(item, result)
    return result


def classify_items(
    items: list[LineItem],
    cache: Optional[ClassificationCache] = None,
    max_workers: Optional[int] = None,
) -> list[ClassificationResult]:
    """Classify every item; output order equals input order.

    With max_workers > 1 the items are classified on a thread pool. The
    result is identical either way because each rule is a pure function.
    """
    if max_workers and max_workers > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(lambda item: classify_charge(item, cache), items))
    else:
        results = [classify_charge(item, cache) for item in items]

    counts: dict[str, int] = {}
    for result in results:
        counts[result.charge_type.value] = counts.get(result.charge_type.value, 0) + 1
    low_confidence = sum(1 for result in results if result.is_low_confidence)

    logger.info(
        "classification_complete | items=%s | by_type=%s | low_confidence=%s | workers=%s",
        len(results),
        counts,
        low_confidence,
        max_workers or 1,
    )
    return results
