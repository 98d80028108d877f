"""
config.py - Tunable comparison options.

Options are declarative: pass a ComparisonOptions, load one from a JSON file,
or read RECON_* environment variables. Anything not set keeps its default.
The cost-validation tolerance and the rule confidences are fixed constants,
not options.
"""

from __future__ import annotations

import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from logging_config import get_logger

logger = get_logger(__name__)


class ComparisonOptions(BaseModel):
    """Settings for one comparison run."""

    enable_fuzzy_matching: bool = Field(
        default=False,
        description=(
            "When True, supplement items without an exact description match "
            "are paired with the most similar unconsumed original item."
        ),
    )
    fuzzy_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Minimum normalized description similarity (0-1) for a fuzzy match.",
    )
    potential_duplicate_percent: float = Field(
        default=500.0,
        gt=0,
        description="Total change (%) above which a textual match is flagged is_potential_duplicate.",
    )
    significance_percent: float = Field(
        default=25.0,
        ge=0,
        description="|percentage change| above which an item is high-variance.",
    )
    significance_dollar_floor: Decimal = Field(
        default=Decimal("100"),
        ge=0,
        description="|dollar variance| above which an item is high-variance.",
    )
    classification_workers: Optional[int] = Field(
        default=None,
        ge=1,
        description="Thread pool size for classification. None classifies inline.",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")


ENV_PREFIX = "RECON_"


def load_options(config_path: str | Path | None = None) -> ComparisonOptions:
    """Load options from a JSON file; a missing path returns defaults.

    Raises:
        FileNotFoundError: the path was given but does not exist.
        ValueError: the file is not valid JSON or holds unknown/invalid keys.
    """
    if config_path is None:
        return ComparisonOptions()

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Options file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Options file '{path}' is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Options file '{path}' must hold a JSON object")

    options = ComparisonOptions.model_validate(data)
    logger.info("options_loaded | path=%s | keys=%s", path, sorted(data))
    return options


def options_from_env(environ: Optional[dict[str, str]] = None) -> ComparisonOptions:
    """Build options from RECON_* environment variables.

    Example: RECON_ENABLE_FUZZY_MATCHING=true RECON_FUZZY_THRESHOLD=0.9
    """
    env = os.environ if environ is None else environ
    data: dict[str, object] = {}

    for name in ComparisonOptions.model_fields:
        raw = env.get(f"{ENV_PREFIX}{name.upper()}", "").strip()
        if not raw:
            continue
        if name == "enable_fuzzy_matching":
            data[name] = raw.lower() in {"1", "true", "yes", "on"}
        else:
            data[name] = raw

    if data:
        logger.debug("options_from_env | keys=%s", sorted(data))
    return ComparisonOptions.model_validate(data)
