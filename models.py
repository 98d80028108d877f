"""
models.py - Data Models for the Supplement Comparison Engine

This file defines ALL data structures used across the comparison engine.
Every module in the pipeline communicates exclusively through these models:

    normalize.py -> list[LineItem]
    match.py     -> ReconciliationResult
    classify.py  -> ClassificationResult
    separate.py  -> CostBreakdown / ChargeDetail
    variance.py  -> ItemVariance
    aggregate.py -> VarianceStatistics
    risk.py      -> RiskAssessment
    compare.py   -> ComparisonReport

Design principles:
1. Each layer's output is the next layer's input
2. Money is Decimal end to end; it only becomes float when serialized to JSON
3. Models are frozen - every entity is a derived, read-only output of one
   comparison and is never mutated after creation
4. Models carry evidence and warning strings so every decision is traceable

Schema relationships:
    LineItem             --used by--> MatchedPair.original / .supplement
    ChargeType           --used by--> ClassificationResult.charge_type
    CostBreakdown        --used by--> PartWithLaborCharge.breakdown
    ItemVariance         --used by--> MatchedPair.variance
    VarianceStatistics   --used by--> RiskAssessment inputs, ComparisonReport
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)

# Maximum absolute difference between part + labor and the stated line total
# for a cost breakdown to count as validated. Fixed so results reproduce.
COST_TOLERANCE = Decimal("0.01")

CENT = Decimal("0.01")

# Largest money or hours magnitude a line item may carry. Anything beyond it
# cannot be quantized to cents at the default decimal precision.
MAX_AMOUNT = Decimal("1000000000000")

Money = Annotated[
    Decimal,
    PlainSerializer(lambda value: float(value), return_type=float, when_used="json"),
]


def _to_decimal(value: Any) -> Any:
    """Coerce money-like input ("$1,250.00", 750, 2.5) to Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    Anything unparseable is returned unchanged and left for pydantic to reject.
    """
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return value
    return value


def _is_amount(value: Any) -> bool:
    return isinstance(value, Decimal) and value.is_finite() and abs(value) <= MAX_AMOUNT


class ChargeType(str, Enum):
    """Economic nature of a repair invoice line item."""

    # A physical part plus the labor to fit it ("Repl Rear Bumper Cover").
    PART_WITH_LABOR = "part_with_labor"

    # Technician time only - no part supplied (alignment, R&I, diagnostics).
    LABOR_ONLY = "labor_only"

    # Consumables billed as a lump (paint materials, shop supplies, fluids).
    MATERIAL = "material"

    # Work outsourced to a third-party vendor (glass shop, ADAS calibration).
    SUBLET = "sublet"

    # Rental, storage, towing and other non-repair charges.
    MISCELLANEOUS = "miscellaneous"

    # Nothing in the item supports a classification. Always confidence 0.0.
    UNKNOWN = "unknown"


class CostMethod(str, Enum):
    """How a part/labor split was derived, strongest first."""

    EXPLICIT_RATE = "explicit_rate"
    INFERRED_RATE = "inferred_rate"
    STANDARD_LABOR_TIME = "standard_labor_time"
    TYPICAL_RATIO = "typical_ratio"
    ZERO_TOTAL = "zero_total"


class ChangeType(str, Enum):
    """What changed between the original and supplement version of an item."""

    UNCHANGED = "unchanged"
    QUANTITY_CHANGE = "quantity_change"
    PRICE_CHANGE = "price_change"
    TOTAL_CHANGE = "total_change"
    DESCRIPTION_CHANGE = "description_change"
    NEW_ITEM = "new_item"
    REMOVED_ITEM = "removed_item"


class Significance(str, Enum):
    NEGLIGIBLE = "negligible"
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    EXTREME = "extreme"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LineItem(BaseModel):
    """One billable entry on a repair invoice, as supplied by extraction.

    Field names follow the upstream wire contract (`partNumber`,
    `laborHours`, ...) through aliases; snake_case names are accepted too.
    When `price` is missing it is derived from total / quantity so that
    hand-built items only need a description and a total.
    """

    id: str = Field(..., description="Identifier unique within its invoice.")
    description: str = Field(
        default="",
        description=(
            "Line description exactly as printed on the estimate. "
            "Examples: 'Repl Rear Bumper Cover', 'Wheel Alignment', "
            "'Paint Supplies', 'Sublet Windshield Replacement'."
        ),
    )
    quantity: Money = Field(default=Decimal("1"), description="Billed quantity.")
    price: Money = Field(default=Decimal("0"), description="Unit price.")
    total: Money = Field(default=Decimal("0"), description="Extended line total.")
    operation: Optional[str] = Field(
        default=None,
        description=(
            "Estimating-system operation code when present: 'Repl', 'R&R', "
            "'R&I', 'Refn', 'Blnd', 'Subl', 'Rpr', 'O/H'."
        ),
    )
    part_number: Optional[str] = Field(default=None, alias="partNumber")
    labor_hours: Optional[Money] = Field(default=None, alias="laborHours", ge=0)
    labor_rate: Optional[Money] = Field(default=None, alias="laborRate", ge=0)
    part_category: Optional[str] = Field(
        default=None,
        alias="partCategory",
        description="Category hint: OEM, Aftermarket, Labor, Paint_Materials, Rental, ...",
    )

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "id": "line-1",
                    "description": "Repl Rear Bumper Cover",
                    "quantity": 1,
                    "price": 750,
                    "total": 750,
                    "operation": "Repl",
                    "partNumber": "3CN807421BGRU",
                    "laborHours": 2.5,
                    "laborRate": 120,
                }
            ]
        },
    )

    @model_validator(mode="before")
    @classmethod
    def _fill_price(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("price") in (None, ""):
            total = _to_decimal(data.get("total"))
            quantity = _to_decimal(data.get("quantity")) or Decimal("1")
            if _is_amount(total) and _is_amount(quantity) and quantity != 0:
                price = total / quantity
                # A fractional quantity can push the unit price out of range.
                if _is_amount(price):
                    data["price"] = price.quantize(CENT)
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("description", mode="before")
    @classmethod
    def _description_to_str(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("quantity", "price", "total", "labor_hours", "labor_rate", mode="before")
    @classmethod
    def _coerce_money(cls, value: Any) -> Any:
        value = _to_decimal(value)
        if isinstance(value, Decimal) and not _is_amount(value):
            raise ValueError(f"amount must be finite and at most {MAX_AMOUNT} in magnitude")
        return value

    @field_validator("quantity", "price", "total", mode="before")
    @classmethod
    def _required_money_default(cls, value: Any) -> Any:
        return Decimal("0") if value is None else value

    @field_validator("operation", "part_number", "part_category", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @property
    def has_part_number(self) -> bool:
        return bool(self.part_number)

    @property
    def has_labor_hours(self) -> bool:
        return self.labor_hours is not None and self.labor_hours > 0


class ClassificationEvidence(BaseModel):
    """Which signals supported a classification decision."""

    operation_code_match: bool = False
    has_part_number: bool = False
    has_labor_hours: bool = False
    description_keywords: list[str] = Field(default_factory=list)
    part_category_match: bool = False

    model_config = ConfigDict(frozen=True)


class ClassificationResult(BaseModel):
    """Charge-type decision for one line item.

    `rule` names the classification rule that produced the decision
    (operation_code, part_category, part_number, description_keywords,
    labor_hours_fallback, unclassified) so the rule order can be audited.
    """

    line_item_id: str
    charge_type: ChargeType
    confidence: float = Field(..., ge=0.0, le=1.0)
    rule: str = ""
    evidence: ClassificationEvidence = Field(default_factory=ClassificationEvidence)
    warnings: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def is_low_confidence(self) -> bool:
        """Whether confidence is below the manual-review threshold (0.7)."""
        return self.confidence < 0.7


class CostBreakdown(BaseModel):
    """Split of a part-with-labor line total into part and labor cost."""

    part_cost: Money
    labor_cost: Money
    total: Money
    is_validated: bool = False
    validation_variance: Optional[Money] = Field(
        default=None,
        description="Signed total - (part + labor); set whenever the split does not add up.",
    )
    method: CostMethod

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _validated_within_tolerance(self) -> "CostBreakdown":
        if self.is_validated and abs(self.part_cost + self.labor_cost - self.total) > COST_TOLERANCE:
            raise ValueError("validated cost breakdown must satisfy the $0.01 tolerance")
        return self

    @property
    def is_estimate(self) -> bool:
        return self.method in (
            CostMethod.INFERRED_RATE,
            CostMethod.STANDARD_LABOR_TIME,
            CostMethod.TYPICAL_RATIO,
            CostMethod.ZERO_TOTAL,
        )


class PartInfo(BaseModel):
    name: str
    part_number: Optional[str] = None
    quantity: Money = Decimal("1")
    category: Optional[str] = None
    cost: Money = Decimal("0")

    model_config = ConfigDict(frozen=True)


class LaborInfo(BaseModel):
    description: str
    operation_code: Optional[str] = None
    hours: Optional[Money] = None
    rate: Optional[Money] = None
    # M mechanical, S structural, F frame, E electrical, G glass, D diagnostic, P paint
    labor_type: Optional[Literal["M", "S", "F", "E", "G", "D", "P"]] = None
    cost: Money = Decimal("0")

    model_config = ConfigDict(frozen=True)


class MaterialInfo(BaseModel):
    description: str
    type: Literal["paint", "fluids", "supplies", "other"] = "other"
    cost: Money = Decimal("0")

    model_config = ConfigDict(frozen=True)


class SubletInfo(BaseModel):
    description: str
    type: Literal["glass", "alignment", "adas", "upholstery", "other"] = "other"
    cost: Money = Decimal("0")

    model_config = ConfigDict(frozen=True)


class PartWithLaborCharge(BaseModel):
    charge_type: Literal[ChargeType.PART_WITH_LABOR] = ChargeType.PART_WITH_LABOR
    part: PartInfo
    labor: LaborInfo
    breakdown: CostBreakdown

    model_config = ConfigDict(frozen=True)


class LaborOnlyCharge(BaseModel):
    charge_type: Literal[ChargeType.LABOR_ONLY] = ChargeType.LABOR_ONLY
    labor: LaborInfo

    model_config = ConfigDict(frozen=True)


class MaterialCharge(BaseModel):
    charge_type: Literal[ChargeType.MATERIAL] = ChargeType.MATERIAL
    material: MaterialInfo

    model_config = ConfigDict(frozen=True)


class SubletCharge(BaseModel):
    charge_type: Literal[ChargeType.SUBLET] = ChargeType.SUBLET
    sublet: SubletInfo

    model_config = ConfigDict(frozen=True)


class MiscellaneousCharge(BaseModel):
    charge_type: Literal[ChargeType.MISCELLANEOUS] = ChargeType.MISCELLANEOUS
    amount: Money

    model_config = ConfigDict(frozen=True)


class UnknownCharge(BaseModel):
    charge_type: Literal[ChargeType.UNKNOWN] = ChargeType.UNKNOWN
    amount: Money

    model_config = ConfigDict(frozen=True)


ChargeDetail = Annotated[
    Union[
        PartWithLaborCharge,
        LaborOnlyCharge,
        MaterialCharge,
        SubletCharge,
        MiscellaneousCharge,
        UnknownCharge,
    ],
    Field(discriminator="charge_type"),
]


class VarianceDetail(BaseModel):
    """Signed change of one numeric field between original and supplement."""

    absolute: Money
    percentage: Optional[float] = Field(
        default=None,
        description="absolute / original x 100, rounded to 2 places. None when original is zero.",
    )
    is_increase: bool = False
    significance: Significance = Significance.NEGLIGIBLE

    model_config = ConfigDict(frozen=True)


class ItemVariance(BaseModel):
    """Variance record for one reconciled item (matched, new or removed)."""

    item_id: str = Field(..., description="Supplement id when present, else original id.")
    original_id: Optional[str] = None
    supplement_id: Optional[str] = None
    description: str = ""
    change_type: ChangeType
    quantity_variance: Optional[VarianceDetail] = None
    price_variance: Optional[VarianceDetail] = None
    total_variance: Money
    percentage_change: Optional[float] = None
    severity: Severity = Severity.LOW

    model_config = ConfigDict(frozen=True)


class MatchedPair(BaseModel):
    """Exactly one original item paired with exactly one supplement item."""

    original: LineItem
    supplement: LineItem
    matching_score: float = Field(..., ge=0.0, le=1.0)
    variance: ItemVariance
    is_potential_duplicate: bool = Field(
        default=False,
        description=(
            "Set when descriptions match but the total changed by more than "
            "the potential-duplicate threshold (default 500%). The pair is "
            "still treated as matched - identity wins over price."
        ),
    )

    model_config = ConfigDict(frozen=True)


class DuplicateDescription(BaseModel):
    """Several items inside one invoice share a normalized description."""

    invoice: Literal["original", "supplement"]
    description: str
    item_ids: list[str]

    model_config = ConfigDict(frozen=True)


class ReconciliationResult(BaseModel):
    """Partition of both invoices into matched, removed and new items."""

    matched_items: list[MatchedPair] = Field(default_factory=list)
    removed_items: list[LineItem] = Field(
        default_factory=list,
        description="Original items with no supplement counterpart.",
    )
    new_items: list[LineItem] = Field(
        default_factory=list,
        description="Supplement items with no original counterpart.",
    )
    matching_accuracy: float = Field(default=0.0, ge=0.0, le=1.0)
    duplicate_descriptions: list[DuplicateDescription] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    original_input: list[LineItem] = Field(
        default_factory=list,
        exclude=True,
        repr=False,
        description="Valid original items in invoice order.",
    )
    supplement_input: list[LineItem] = Field(
        default_factory=list,
        exclude=True,
        repr=False,
        description="Valid supplement items in invoice order.",
    )

    model_config = ConfigDict(frozen=True)

    @property
    def matched_count(self) -> int:
        return len(self.matched_items)

    @property
    def new_count(self) -> int:
        return len(self.new_items)

    @property
    def removed_count(self) -> int:
        return len(self.removed_items)

    @property
    def total_items_processed(self) -> int:
        """Items across both invoices (a matched pair counts twice)."""
        return 2 * self.matched_count + self.new_count + self.removed_count

    @property
    def original_items(self) -> list[LineItem]:
        """Every valid original item, in invoice order when the input is known."""
        if self.original_input:
            return list(self.original_input)
        return [pair.original for pair in self.matched_items] + list(self.removed_items)

    @property
    def supplement_items(self) -> list[LineItem]:
        """Every valid supplement item, in invoice order when the input is known."""
        if self.supplement_input:
            return list(self.supplement_input)
        return [pair.supplement for pair in self.matched_items] + list(self.new_items)


class CategoryVariance(BaseModel):
    variance: Money = Decimal("0")
    variance_percent: Optional[float] = None
    item_count: int = 0
    average_variance: float = 0.0
    significant_items: list[str] = Field(default_factory=list)


class ChargeTypeDistribution(BaseModel):
    count: int = 0
    total_amount: Money = Decimal("0")
    average_amount: float = 0.0
    percentage: float = 0.0


class CostComponentTotals(BaseModel):
    """Dollar totals of one invoice attributed to each cost component."""

    parts: Money = Decimal("0")
    labor: Money = Decimal("0")
    materials: Money = Decimal("0")
    sublet: Money = Decimal("0")
    miscellaneous: Money = Decimal("0")
    unknown: Money = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.parts + self.labor + self.materials + self.sublet + self.miscellaneous + self.unknown


class VarianceRange(BaseModel):
    min: float = 0.0
    max: float = 0.0


class SuspiciousPattern(BaseModel):
    type: str
    description: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    affected_items: list[str] = Field(default_factory=list)
    potential_impact: Money = Decimal("0")


class DataQualityIssue(BaseModel):
    type: str
    description: str
    severity: Severity
    affected_items: list[str] = Field(default_factory=list)
    suggested_fix: str = ""


class DataQualityMetrics(BaseModel):
    completeness: float = Field(default=1.0, ge=0.0, le=1.0)
    accuracy: float = Field(default=1.0, ge=0.0, le=1.0)
    issues: list[DataQualityIssue] = Field(default_factory=list)


class VarianceStatistics(BaseModel):
    """Aggregate view over every item variance of one comparison."""

    original_total: Money = Decimal("0")
    supplement_total: Money = Decimal("0")
    total_variance: Money = Decimal("0")
    total_variance_percent: Optional[float] = None
    item_count: int = 0
    category_variances: dict[str, CategoryVariance] = Field(default_factory=dict)
    charge_type_distribution: dict[str, ChargeTypeDistribution] = Field(default_factory=dict)
    cost_components: dict[str, CostComponentTotals] = Field(default_factory=dict)
    average_variance: float = 0.0
    median_variance: float = 0.0
    standard_deviation: float = 0.0
    variance_range: VarianceRange = Field(default_factory=VarianceRange)
    high_variance_items: list[str] = Field(default_factory=list)
    new_item_total: Money = Decimal("0")
    removed_item_total: Money = Decimal("0")
    suspicious_patterns: list[SuspiciousPattern] = Field(default_factory=list)
    data_quality: DataQualityMetrics = Field(default_factory=DataQualityMetrics)


class RiskFactor(BaseModel):
    type: str
    description: str
    impact: float = Field(..., ge=0.0, le=100.0)
    likelihood: float = Field(..., ge=0.0, le=1.0)
    mitigation: str


class RiskAssessment(BaseModel):
    overall_score: int = Field(default=0, ge=0, le=100)
    risk_tier: RiskTier = RiskTier.LOW
    risk_factors: list[RiskFactor] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    indicators: dict[str, float] = Field(
        default_factory=dict,
        description="Clipped raw value (0-100) of every risk indicator, triggered or not.",
    )


class ItemAnalysis(BaseModel):
    """Classification and cost decomposition for one item of one invoice."""

    line_item_id: str
    invoice: Literal["original", "supplement"]
    description: str = ""
    total: Money = Decimal("0")
    classification: ClassificationResult
    charge_detail: ChargeDetail
    cost_breakdown: Optional[CostBreakdown] = None


class InvoiceTotals(BaseModel):
    item_count: int = 0
    total: Money = Decimal("0")


class ComparisonReport(BaseModel):
    """Final output of the engine. JSON-safe via model_dump(mode="json")."""

    analysis_id: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = "1.0.0"
    original_totals: InvoiceTotals = Field(default_factory=InvoiceTotals)
    supplement_totals: InvoiceTotals = Field(default_factory=InvoiceTotals)
    reconciliation: ReconciliationResult = Field(default_factory=ReconciliationResult)
    items: list[ItemAnalysis] = Field(default_factory=list)
    item_variances: list[ItemVariance] = Field(default_factory=list)
    statistics: VarianceStatistics = Field(default_factory=VarianceStatistics)
    risk_assessment: RiskAssessment = Field(default_factory=RiskAssessment)
    warnings: list[str] = Field(default_factory=list)

    def classification_for(self, line_item_id: str, invoice: str = "supplement") -> Optional[ClassificationResult]:
        for item in self.items:
            if item.line_item_id == line_item_id and item.invoice == invoice:
                return item.classification
        return None

    def analysis_for(self, line_item_id: str, invoice: str = "supplement") -> Optional[ItemAnalysis]:
        for item in self.items:
            if item.line_item_id == line_item_id and item.invoice == invoice:
                return item
        return None
