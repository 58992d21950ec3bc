from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.core.db import get_db
from app.models.models import Forecast
from app.services.ai_engine import get_engine
from tests.test_utils import add_daily_demand, create_category, create_recent_product


@pytest.fixture
def client(db_session, ai_engine):
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_engine] = lambda: ai_engine
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _setup_product(db_session, sku: str, **kwargs):
    """Product with 20 days of flat demand, i.e. on the statistical model."""
    category = create_category(db_session, f"cat-{sku}")
    # endpoints forecast from the real current date
    today = date.today()
    product = create_recent_product(db_session, sku, category, days_old=20, today=today, **kwargs)
    add_daily_demand(db_session, product, [10] * 20, end=today)
    return product


def test_get_forecast_endpoint(client, db_session):
    product = _setup_product(db_session, "API-F1")

    resp = client.get(f"/api/v1/ai/forecast/{product.id}", params={"days": 14})
    assert resp.status_code == 200, resp.text
    body = resp.json()

    assert body["forecast_days"] == 14
    assert body["data"]["product_id"] == product.id
    assert body["data"]["model_type"] == "STATISTICAL"
    assert len(body["data"]["predictions"]) == 14
    assert "generated_at" in body


@pytest.mark.parametrize("days", [0, 366])
def test_get_forecast_rejects_out_of_range_days(client, db_session, days):
    product = _setup_product(db_session, f"API-F2-{days}")

    resp = client.get(f"/api/v1/ai/forecast/{product.id}", params={"days": days})
    assert resp.status_code == 422


def test_unknown_product_returns_404(client):
    for path in (
        "/api/v1/ai/forecast/777777",
        "/api/v1/ai/optimize/777777",
        "/api/v1/ai/anomalies/777777",
        "/api/v1/ai/insights/777777",
        "/api/v1/ai/forecast/777777/accuracy",
    ):
        resp = client.get(path)
        assert resp.status_code == 404, path
        assert resp.json()["detail"] == "Product not found"


def test_generate_forecast_saves_predictions(client, db_session):
    product = _setup_product(db_session, "API-G1")
    product_id = product.id

    resp = client.post(f"/api/v1/ai/forecast/{product_id}/generate", json={"days": 10})
    assert resp.status_code == 200, resp.text

    saved = db_session.query(Forecast).filter(Forecast.product_id == product_id).count()
    assert saved == 10

    resp = client.get(f"/api/v1/ai/forecast/{product_id}/accuracy")
    assert resp.status_code == 200
    assert resp.json()["product_id"] == product_id


def test_bulk_forecast_validation_and_partial_failure(client, db_session):
    product = _setup_product(db_session, "API-B1")

    assert client.post("/api/v1/ai/forecast/bulk", json={"product_ids": []}).status_code == 422
    too_many = list(range(1, 52))
    assert client.post("/api/v1/ai/forecast/bulk", json={"product_ids": too_many}).status_code == 422

    resp = client.post(
        "/api/v1/ai/forecast/bulk",
        json={"product_ids": [product.id, 888888], "days": 5},
    )
    assert resp.status_code == 200, resp.text
    summary = resp.json()["summary"]
    assert summary == {"total": 2, "successful": 1, "failed": 1}


def test_optimize_and_apply(client, db_session):
    product = _setup_product(db_session, "API-O1", current_stock=40)
    product_id = product.id

    resp = client.get(f"/api/v1/ai/optimize/{product_id}")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["reorder_point"] == 70
    assert body["risk_level"] in ("LOW", "MEDIUM", "HIGH")

    resp = client.post(f"/api/v1/ai/optimize/{product_id}/apply")
    assert resp.status_code == 200, resp.text
    applied = resp.json()
    assert applied["message"] == "Optimization applied successfully"
    assert applied["reference_number"].startswith("AI-OPT-")


def test_bulk_optimize_and_recommendations(client, db_session):
    product = _setup_product(db_session, "API-O2", current_stock=5000)

    resp = client.post("/api/v1/ai/optimize/bulk", json={"product_ids": [product.id]})
    assert resp.status_code == 200, resp.text
    assert resp.json()["summary"]["successful"] == 1

    resp = client.get("/api/v1/ai/optimize/recommendations", params={"limit": 5})
    assert resp.status_code == 200, resp.text
    ids = [r["product"]["id"] for r in resp.json()["data"]]
    assert product.id in ids


def test_anomaly_and_insight_endpoints(client, db_session):
    product = _setup_product(db_session, "API-A1", velocity="HIGH")

    resp = client.get(f"/api/v1/ai/anomalies/{product.id}")
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"product_id": product.id, "anomalies": []}

    assert client.get("/api/v1/ai/anomalies", params={"severity": "HIGH"}).status_code == 200
    assert client.get("/api/v1/ai/anomalies", params={"severity": "BOGUS"}).status_code == 422

    resp = client.get(f"/api/v1/ai/insights/{product.id}")
    assert resp.status_code == 200, resp.text
    report = resp.json()
    assert report["product_id"] == product.id
    assert len(report["forecast"]["predictions"]) == 30

    resp = client.get("/api/v1/ai/insights")
    assert resp.status_code == 200
    assert "total_insights" in resp.json()


def test_model_endpoints_and_cache_clear(client, db_session):
    product = _setup_product(db_session, "API-M1")
    product_id = product.id
    client.get(f"/api/v1/ai/forecast/{product_id}", params={"days": 7})

    resp = client.delete(f"/api/v1/ai/forecast/{product_id}/cache")
    assert resp.status_code == 200
    assert resp.json() == {"product_id": product_id, "removed": 1}

    resp = client.post("/api/v1/ai/models/retrain", json={})
    assert resp.status_code == 200, resp.text
    assert resp.json()["total"] >= 1

    resp = client.get("/api/v1/ai/models/status")
    assert resp.status_code == 200
    assert any(row["product_count"] == 1 for row in resp.json())
