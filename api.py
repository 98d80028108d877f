"""
api.py - FastAPI HTTP layer for the supplement comparison engine.

Endpoints:
  - GET  /health
  - POST /compare   {"original": [...], "supplement": [...], "options": {...}}

No matching/classification logic is implemented here.
"""

from __future__ import annotations

import os
from typing import Any, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from compare import compare_invoices
from config import ComparisonOptions
from logging_config import get_logger, setup_logging
from report import format_report_json

logger = get_logger("supplement-api")

app = FastAPI(
    title="Supplement Comparison API",
    version="1.0.0",
)

# Allows local UI use from file:// or another local host/port.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _options_from_payload(raw: Any) -> ComparisonOptions:
    if raw is None:
        return ComparisonOptions()
    if not isinstance(raw, dict):
        raise ValueError("'options' must be an object")
    try:
        return ComparisonOptions.model_validate(raw)
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise ValueError(f"Invalid options: {fields}") from exc


@app.get("/health")
def health() -> dict[str, str]:
    """Service health check."""
    return {"status": "ok"}


@app.post("/compare")
def compare(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    """Compare an original estimate with its supplement."""
    try:
        options = _options_from_payload(payload.get("options"))
        original: Optional[Any] = payload.get("original")
        supplement: Optional[Any] = payload.get("supplement")
        if original is None and supplement is None:
            raise ValueError("Provide 'original' and 'supplement' line item lists")

        report = compare_invoices(original, supplement, options)
        logger.info(
            "api_compare_complete | analysis_id=%s | risk_score=%s | items=%s",
            report.analysis_id,
            report.risk_assessment.overall_score,
            report.reconciliation.total_items_processed,
        )
        return format_report_json(report)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(
            "api_compare_error | error_type=%s | error=%s",
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        raise HTTPException(
            status_code=500,
            detail="Unexpected server error while comparing invoices.",
        ) from exc


if __name__ == "__main__":
    setup_logging()
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=False)
