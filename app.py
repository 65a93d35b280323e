import logging
from datetime import datetime

from flask import Flask, request, jsonify
from flask_cors import CORS
from sqlalchemy import text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from config import config
from db.connection import engine, SessionLocal
from db.data_provider import build_provider
from db.models import Base, DemandForecast, InventoryRecommendation, AbcClassification
from models.abc_model import classify, classify_catalog
from models.ensemble_model import WeightStore, explain_weights
from models.entities import Vertical
from models.forecast_model import ForecastEngine
from models.inventory_optimization_model import portfolio_health_score
from models.training_model import ModelRegistry, load_state, retrain
from services.external_factors import ExternalFactorAdapter, impact_score, insights
from utils.ai_config import DEFAULT_FORECAST_DAYS, MODEL_VERSION
from utils.cache import TTLCache
from utils.date_utils import parse_date
from utils.errors import ForecastEngineError, InternalEngineError, ValidationError

# ✅ Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger("IntellectForecast")

app = Flask(__name__)
CORS(app)

# ✅ Database initialization and health check
try:
    Base.metadata.create_all(bind=engine)
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    logger.info("✅ Database connection established successfully.")
except SQLAlchemyError as e:
    logger.error(f"❌ Database connection failed: {e}")
else:
    logger.info("✅ All forecasting result tables ensured in database.")

# ✅ Engine wiring
provider = build_provider(config, engine)
adapter = ExternalFactorAdapter.from_config(config)
weight_store = WeightStore()
registry = ModelRegistry()
forecast_engine = ForecastEngine(
    provider, adapter, weight_store, registry,
    cache=TTLCache(default_ttl=config.FORECAST_CACHE_TTL_SECONDS),
    ordering_cost=config.ORDERING_COST,
    cache_ttl=config.FORECAST_CACHE_TTL_SECONDS,
)

try:
    if load_state(config.MODEL_STATE_PATH, weight_store, registry):
        logger.info("✅ Restored trained ensemble state.")
    elif config.TRAIN_ON_STARTUP:
        retrain(provider, weight_store, registry, workers=config.TRAINING_WORKERS,
                state_path=config.MODEL_STATE_PATH)
except Exception:
    logger.exception("❌ Startup training failed; models stay untrained until /api/v1/models/retrain")

logger.info("🚀 Forecasting service initialized successfully.")


def _insert():
    return sqlite.insert if engine.dialect.name == "sqlite" else postgresql.insert


def _persist(model, rows, index_elements, update_columns):
    """Upsert result rows; a no-op when persistence is switched off."""
    if not config.PERSIST_RESULTS or not rows:
        return 0
    db = SessionLocal()
    try:
        stmt = _insert()(model).values(rows)
        set_ = {col: getattr(stmt.excluded, col) for col in update_columns}
        set_["generated_at"] = datetime.utcnow()
        stmt = stmt.on_conflict_do_update(index_elements=index_elements, set_=set_)
        db.execute(stmt)
        db.commit()
        return len(rows)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"❌ Failed to persist {model.__tablename__}: {e}")
        raise InternalEngineError(f"failed to persist {model.__tablename__}") from e
    finally:
        db.close()


@app.errorhandler(ForecastEngineError)
def handle_engine_error(e):
    return jsonify(e.to_dict()), e.status


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return e
    logger.exception("❌ Unhandled error")
    return jsonify(InternalEngineError("internal error").to_dict()), 500


@app.route("/api/v1/health", methods=["GET"])
def health():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        database = "unavailable"
    return jsonify({
        "status": "ok",
        "database": database,
        "data_provider": config.DATA_PROVIDER,
        "model_version": MODEL_VERSION,
        "trained_models": sorted(registry.summary()),
        "weights_version": weight_store.version,
    })


@app.route("/api/v1/forecast", methods=["POST"])
def forecast():
    """
    Body:
    {
      "product_id": "APP-001",
      "horizon_days": 30,                 # optional (default 30)
      "include_external_factors": true,   # optional
      "location": "London,GB",            # optional
      "vertical": "APPAREL"               # optional; defaults to the product's vertical
    }
    """
    data = request.get_json(silent=True) or {}
    result = forecast_engine.generate_forecast(data)
    _persist_forecast(result)
    return jsonify({"status": "success", **result})


@app.route("/api/v1/forecast/<product_id>", methods=["GET"])
def get_forecast(product_id):
    result = forecast_engine.generate_forecast({
        "product_id": product_id,
        "horizon_days": request.args.get("horizon_days", DEFAULT_FORECAST_DAYS),
        "include_external_factors": request.args.get("include_external_factors", "true"),
        "location": request.args.get("location", ""),
        "vertical": request.args.get("vertical"),
    })
    return jsonify({"status": "success", **result})


def _persist_forecast(result):
    rows = [
        {
            "product_id": result["product_id"],
            "forecast_date": parse_date(p["date"]),
            "predicted_quantity": p["predicted_quantity"],
            "confidence": p["confidence"],
            "lower_bound": p["lower_bound"],
            "upper_bound": p["upper_bound"],
            "model_used": result["model_used"],
            "model_version": result["model_version"],
        }
        for p in result["forecast"]
    ]
    _persist(
        DemandForecast, rows,
        index_elements=["product_id", "forecast_date", "model_version"],
        update_columns=["predicted_quantity", "confidence", "lower_bound", "upper_bound", "model_used"],
    )


@app.route("/api/v1/inventory/optimize", methods=["POST"])
def optimize_inventory():
    """
    Body:
    {
      "product_id": "IND-002",
      "current_stock": 120,
      "lead_time_days": 7,
      "service_level": 0.95,
      "holding_cost": 2.5,
      "stockout_cost": 40,
      "demand_forecast": [{"date": "...", "predicted_quantity": 12.0, "confidence": 0.9}, ...]
    }
    """
    data = request.get_json(silent=True) or {}
    result = forecast_engine.optimize(data)
    _persist_recommendation(result)
    return jsonify({"status": "success", **result})


@app.route("/api/v1/inventory/optimize/<product_id>", methods=["GET"])
def get_inventory_recommendation(product_id):
    try:
        service_level = float(request.args.get("service_level", 0.95))
    except ValueError:
        raise ValidationError("service_level must be a number")
    result = forecast_engine.recommend(
        product_id,
        horizon_days=request.args.get("horizon_days", DEFAULT_FORECAST_DAYS),
        location=request.args.get("location", ""),
        service_level=service_level,
    )
    return jsonify({"status": "success", **result})


def _persist_recommendation(result):
    metrics = result["metrics"]
    _persist(
        InventoryRecommendation,
        [{
            "product_id": result["product_id"],
            "action": result["action"],
            "quantity": result["quantity"],
            "priority": result["priority"],
            "confidence": result["confidence"],
            "reason": result["reason"],
            "safety_stock": metrics["safety_stock"],
            "reorder_point": metrics["reorder_point"],
            "eoq": metrics["eoq"],
            "stock_status": metrics["stock_status"],
            "inventory_health_score": metrics["inventory_health_score"],
            "model_version": result["model_version"],
        }],
        index_elements=["product_id", "model_version"],
        update_columns=["action", "quantity", "priority", "confidence", "reason", "safety_stock",
                        "reorder_point", "eoq", "stock_status", "inventory_health_score"],
    )


@app.route("/api/v1/inventory/health", methods=["GET"])
def inventory_health():
    try:
        service_level = float(request.args.get("service_level", 0.95))
    except ValueError:
        raise ValidationError("service_level must be a number")
    result = portfolio_health_score(provider, service_level=service_level)
    logger.info(f"📦 Portfolio health {result['health_score']} over {result['products']} products")
    return jsonify({"status": "success", **result})


@app.route("/api/v1/analytics/abc", methods=["POST"])
def abc_analysis():
    """
    Body (optional):
    {
      "products": [{"product_id": "A1", "price": 10.0, "quantity": 500}, ...]
    }
    Without "products" the provider catalog is classified from last-year sales.
    """
    data = request.get_json(silent=True) or {}
    products = data.get("products")
    if products is not None and not isinstance(products, list):
        raise ValidationError("products must be a list")
    result = classify(products) if products is not None else classify_catalog(provider)

    _persist(
        AbcClassification,
        [
            {
                "product_id": p["product_id"],
                "category": p["category"],
                "annual_value": p["annual_value"],
                "cumulative_percentage": p["cumulative_percentage"],
                "model_version": MODEL_VERSION,
            }
            for p in result["products"]
        ],
        index_elements=["product_id", "model_version"],
        update_columns=["category", "annual_value", "cumulative_percentage"],
    )
    return jsonify({"status": "success", "count": len(result["products"]), **result})


@app.route("/api/v1/external/factors", methods=["POST"])
def external_factors():
    """
    Body:
    {
      "location": "London,GB",
      "start_date": "2025-06-01",
      "end_date": "2025-06-07",
      "category": "apparel"        # optional, drives impact scoring
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        start = parse_date(data["start_date"])
        end = parse_date(data.get("end_date") or data["start_date"])
    except (KeyError, ValueError):
        raise ValidationError("start_date (and optional end_date) must be ISO dates")
    if end < start:
        raise ValidationError("end_date must not precede start_date")
    if (end - start).days > 365:
        raise ValidationError("date range is limited to 366 days")

    try:
        vertical = Vertical.parse(data.get("vertical"))
    except ValueError as e:
        raise ValidationError(str(e))
    category = data.get("category") or vertical
    snapshots = adapter.fetch(data.get("location", ""), (start, end))
    return jsonify({
        "status": "success",
        "location": data.get("location", ""),
        "degraded": any(s.degraded for s in snapshots),
        "factors": [
            {**s.to_dict(), "impact_score": round(impact_score(s, category), 4)}
            for s in snapshots
        ],
        "insights": insights(snapshots, vertical),
    })


@app.route("/api/v1/models/retrain", methods=["POST"])
def retrain_models():
    report = retrain(provider, weight_store, registry, workers=config.TRAINING_WORKERS,
                     state_path=config.MODEL_STATE_PATH)
    # cached forecasts were blended with the previous weights
    forecast_engine.cache.clear()
    return jsonify({"status": "success", **report})


@app.route("/api/v1/models/weights", methods=["GET"])
def model_weights():
    weights = weight_store.snapshot()
    state = weight_store.state()
    return jsonify({
        "status": "success",
        "weights": weights.as_dict(),
        "version": state["version"],
        "updated_at": state["updated_at"].isoformat() if state["updated_at"] else None,
        "explanation": explain_weights(weights),
        "models": registry.summary(),
    })


if __name__ == "__main__":
    app.run(host=config.FLASK_HOST, port=config.FLASK_PORT)
