from sqlalchemy import func, select

from db.models import AbcClassification, DemandForecast, InventoryRecommendation


def _count(flask_app, model, **filters):
    import app as service

    with service.SessionLocal() as db:
        stmt = select(func.count()).select_from(model).where(
            *[getattr(model, column) == value for column, value in filters.items()]
        )
        return db.execute(stmt).scalar_one()


def test_health(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["database"] == "ok"
    assert body["trained_models"] == ["FASHION", "GENERAL", "MANUFACTURING", "TEMPORAL"]


def test_forecast_is_returned_and_persisted(client, flask_app):
    payload = {"product_id": "APP-002", "horizon_days": 14, "location": "London,GB"}
    resp = client.post("/api/v1/forecast", json=payload)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "success"
    assert len(body["forecast"]) == 14
    assert body["degraded"] is True
    assert body["model_used"] == "FASHION"

    # upserted on repeat, not duplicated
    client.post("/api/v1/forecast", json=payload)
    assert _count(flask_app, DemandForecast, product_id="APP-002") == 14


def test_forecast_get(client):
    resp = client.get("/api/v1/forecast/GEN-001?horizon_days=7&include_external_factors=false")
    assert resp.status_code == 200
    body = resp.get_json()
    assert len(body["forecast"]) == 7
    assert "external_factors" not in body


def test_forecast_errors(client):
    resp = client.post("/api/v1/forecast", json={"horizon_days": 5})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "INVALID_INPUT"

    resp = client.post("/api/v1/forecast", json={"product_id": "APP-002", "horizon_days": 0})
    assert resp.status_code == 400

    resp = client.post("/api/v1/forecast", json={"product_id": "ZZZ-404"})
    assert resp.status_code == 404
    assert resp.get_json() == {"status": "error", "code": "NOT_FOUND", "message": "Product ZZZ-404 not found"}

    # APP-001 is on the starter tier
    resp = client.post("/api/v1/forecast", json={"product_id": "APP-001", "horizon_days": 60})
    assert resp.status_code == 400


def test_optimize_is_returned_and_persisted(client, flask_app):
    resp = client.post("/api/v1/inventory/optimize", json={
        "product_id": "IND-002",
        "current_stock": 5,
        "lead_time_days": 7,
        "service_level": 0.95,
        "holding_cost": 2.0,
        "stockout_cost": 40.0,
        "demand_forecast": [{"date": "2025-07-01", "predicted_quantity": 12.0, "confidence": 0.9}] * 30,
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["action"] == "REORDER"
    assert body["metrics"]["reorder_point"] >= 84
    assert _count(flask_app, InventoryRecommendation, product_id="IND-002") == 1


def test_optimize_validation(client):
    resp = client.post("/api/v1/inventory/optimize", json={"product_id": "IND-002", "demand_forecast": []})
    assert resp.status_code == 400
    resp = client.post("/api/v1/inventory/optimize", json={
        "product_id": "IND-002", "demand_forecast": [5.0], "service_level": 1.2,
    })
    assert resp.status_code == 400


def test_recommendation_get(client):
    resp = client.get("/api/v1/inventory/optimize/IND-001?horizon_days=10")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["forecast_horizon_days"] == 10
    assert body["priority"] in ("HIGH", "MEDIUM", "LOW")


def test_inventory_health(client):
    resp = client.get("/api/v1/inventory/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "success"
    assert body["products"] == 12
    assert 0.0 <= body["health_score"] <= 1.0
    assert {i["product_id"] for i in body["items"]} >= {"IND-001", "APP-002"}

    assert client.get("/api/v1/inventory/health?service_level=high").status_code == 400


def test_abc_with_products(client, flask_app):
    resp = client.post("/api/v1/analytics/abc", json={"products": [
        {"product_id": "X1", "annual_value": 500},
        {"product_id": "X2", "annual_value": 300},
        {"product_id": "X3", "annual_value": 100},
        {"product_id": "X4", "annual_value": 50},
        {"product_id": "X5", "annual_value": 30},
        {"product_id": "X6", "annual_value": 20},
    ]})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["count"] == 6
    assert body["A"] == ["X1", "X2"]
    assert _count(flask_app, AbcClassification, product_id="X1", category="A") == 1


def test_abc_catalog_and_errors(client):
    resp = client.post("/api/v1/analytics/abc", json={})
    assert resp.status_code == 200
    assert resp.get_json()["count"] == 12

    resp = client.post("/api/v1/analytics/abc", json={"products": "all"})
    assert resp.status_code == 400
    resp = client.post("/api/v1/analytics/abc", json={"products": [{"product_id": "a", "annual_value": -2}]})
    assert resp.status_code == 400


def test_external_factors(client):
    resp = client.post("/api/v1/external/factors", json={
        "location": "Nairobi,KE", "start_date": "2025-06-01", "end_date": "2025-06-03", "vertical": "APPAREL",
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["degraded"] is True
    assert [f["date"] for f in body["factors"]] == ["2025-06-01", "2025-06-02", "2025-06-03"]
    assert all(-1 <= f["impact_score"] <= 1 for f in body["factors"])
    assert "Weather conditions significantly impact apparel sales" in body["insights"]


def test_external_factors_validation(client):
    assert client.post("/api/v1/external/factors", json={"location": "x"}).status_code == 400
    assert client.post("/api/v1/external/factors", json={
        "start_date": "2025-06-03", "end_date": "2025-06-01",
    }).status_code == 400
    assert client.post("/api/v1/external/factors", json={
        "start_date": "2024-01-01", "end_date": "2025-06-01",
    }).status_code == 400
    assert client.post("/api/v1/external/factors", json={
        "start_date": "2025-06-01", "vertical": "FOOD",
    }).status_code == 400


def test_retrain_and_weights(client):
    before = client.get("/api/v1/models/weights").get_json()
    resp = client.post("/api/v1/models/retrain")
    assert resp.status_code == 200
    report = resp.get_json()
    assert report["weights_version"] == before["version"] + 1

    after = client.get("/api/v1/models/weights").get_json()
    assert after["version"] == report["weights_version"]
    assert abs(sum(after["weights"].values()) - 1.0) < 1e-5
    assert "Dominant component" in after["explanation"]


def test_unknown_route(client):
    assert client.get("/api/v1/nothing").status_code == 404
