"""
test_api.py - HTTP layer tests

Usage: python test_api.py
"""

from __future__ import annotations

import os
import sys

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest
from fastapi.testclient import TestClient

import api
from api import app

client = TestClient(app)

ORIGINAL = [
    {"id": "1", "description": "Repl Rear Bumper Cover", "operation": "Repl", "partNumber": "3CN807421BGRU",
     "laborHours": 2.5, "laborRate": 120, "total": 750},
    {"id": "2", "description": "Wheel Alignment", "laborHours": 1.0, "laborRate": 120, "total": 120},
]
SUPPLEMENT = ORIGINAL + [
    {"id": "3", "description": "Sublet Windshield Replacement", "operation": "Subl", "total": 450},
]


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_compare():
    response = client.post("/compare", json={"original": ORIGINAL, "supplement": SUPPLEMENT})
    assert response.status_code == 200

    body = response.json()
    assert body["analysis_id"].startswith("cmp_")
    assert body["status"] in {"approved_for_processing", "review_required"}
    reconciliation = body["report"]["reconciliation"]
    assert len(reconciliation["matched_items"]) == 2
    assert [item["id"] for item in reconciliation["new_items"]] == ["3"]
    assert body["report"]["statistics"]["total_variance"] == pytest.approx(450.0)


def test_compare_with_options():
    response = client.post(
        "/compare",
        json={
            "original": [{"id": "1", "description": "Repl Rear Bumper Cover", "total": 750}],
            "supplement": [{"id": "1", "description": "Repl Rear Bumper Cvr", "total": 750}],
            "options": {"enable_fuzzy_matching": True},
        },
    )
    assert response.status_code == 200
    assert len(response.json()["report"]["reconciliation"]["matched_items"]) == 1


def test_malformed_items_become_warnings():
    response = client.post("/compare", json={"original": "junk", "supplement": SUPPLEMENT})
    assert response.status_code == 200
    assert response.json()["warnings"]


def test_invalid_options_rejected():
    response = client.post(
        "/compare",
        json={"original": ORIGINAL, "supplement": SUPPLEMENT, "options": {"fuzzy_threshold": 7}},
    )
    assert response.status_code == 400
    assert "fuzzy_threshold" in response.json()["detail"]


def test_missing_invoices_rejected():
    response = client.post("/compare", json={})
    assert response.status_code == 400


def test_unexpected_error_is_500(monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(api, "compare_invoices", boom)
    response = client.post("/compare", json={"original": ORIGINAL, "supplement": SUPPLEMENT})
    assert response.status_code == 500
    assert "kaboom" not in response.json()["detail"]


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-q"]))
