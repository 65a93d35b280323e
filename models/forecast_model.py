import copy
import dataclasses
import logging
import zlib
from datetime import date, datetime, timedelta, timezone

import numpy as np

from models.ensemble_model import band_width, blend, component_predictions, explain_weights
from models.inventory_optimization_model import DEFAULT_ORDERING_COST, optimize
from models.vertical_models import describe_forecast, model_for_vertical
from models.entities import Vertical
from services.external_factors import insights, summarize
from utils.ai_config import DEFAULT_FORECAST_DAYS, MODEL_VERSION
from utils.cache import TTLCache
from utils.errors import ForecastEngineError, InternalEngineError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_LEVEL = 0.95
DEGRADED_CONFIDENCE_FACTOR = 0.9


def _as_int(value, name):
    try:
        if isinstance(value, bool):
            raise TypeError
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if not number.is_integer():
        raise ValidationError(f"{name} must be an integer")
    return int(number)


def _as_float(value, name):
    try:
        if isinstance(value, bool):
            raise TypeError
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not np.isfinite(number):
        raise ValidationError(f"{name} must be finite")
    return number


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _check_forecast(points, horizon_days):
    if len(points) != horizon_days:
        raise InternalEngineError(f"forecast has {len(points)} points, expected {horizon_days}")
    for p in points:
        if not (p.predicted_quantity >= 0 and 0 <= p.confidence <= 1
                and 0 <= p.lower_bound <= p.upper_bound):
            raise InternalEngineError(f"forecast point for {p.date} violates output invariants")


def degrade_point(point, factor: float = DEGRADED_CONFIDENCE_FACTOR):
    """Lower a point's confidence and widen its band to match."""
    confidence = point.confidence * factor
    band = band_width(confidence)
    value = point.predicted_quantity
    return dataclasses.replace(
        point,
        confidence=confidence,
        lower_bound=max(0.0, value * (1.0 - band)),
        upper_bound=value * (1.0 + band),
    )


def forecast_cache_key(product_id, horizon_days, vertical, location, include_external) -> str:
    return (
        f"forecast:{str(product_id).lower()}:{horizon_days}:{Vertical.parse(vertical).value}:"
        f"{(location or '-').strip().lower()}:{int(bool(include_external))}"
    )


class ForecastEngine:
    """Request-level entry points: demand forecasts and inventory recommendations."""

    def __init__(self, provider, adapter, weight_store, registry, cache: TTLCache | None = None,
                 ordering_cost: float = DEFAULT_ORDERING_COST, cache_ttl: int = 900):
        self.provider = provider
        self.adapter = adapter
        self.weight_store = weight_store
        self.registry = registry
        self.cache = cache if cache is not None else TTLCache(default_ttl=cache_ttl)
        self.cache_ttl = cache_ttl
        self.ordering_cost = ordering_cost

    # ---------------- forecast ----------------
    def generate_forecast(self, request: dict) -> dict:
        request = request or {}
        product_id = request.get("product_id")
        if product_id is None or str(product_id).strip() == "":
            raise ValidationError("product_id is required")
        horizon_days = _as_int(request.get("horizon_days", DEFAULT_FORECAST_DAYS), "horizon_days")
        if horizon_days <= 0:
            raise ValidationError("horizon_days must be positive")
        include_external = _as_bool(request.get("include_external_factors", True))
        location = (request.get("location") or "").strip()

        product = self.provider.get_product(product_id)
        try:
            vertical = Vertical.parse(request.get("vertical"), default=product.vertical)
        except ValueError as e:
            raise ValidationError(str(e))
        product = dataclasses.replace(product, vertical=vertical)

        limits = self.provider.get_limits(product.id)
        if horizon_days > limits["max_horizon_days"]:
            raise ValidationError(
                f"horizon_days {horizon_days} exceeds the {limits['tier']} tier limit of {limits['max_horizon_days']}"
            )

        kind = model_for_vertical(vertical)
        trained = self.registry.require(kind)

        key = forecast_cache_key(product.id, horizon_days, vertical, location, include_external)
        cached = self.cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        try:
            result = self._forecast(product, kind, trained, horizon_days, include_external, location)
        except ForecastEngineError:
            raise
        except Exception as e:
            logger.exception(f"❌ Forecast failed for product {product.id}")
            raise InternalEngineError(f"forecast failed: {e}") from e

        self.cache.set(key, result, ttl=self.cache_ttl)
        return copy.deepcopy(result)

    def _forecast(self, product, kind, trained, horizon_days, include_external, location):
        start = date.today()
        history = self.provider.get_sales_history(product.id)

        factors = None
        if include_external:
            first = start + timedelta(days=1)
            last = start + timedelta(days=horizon_days)
            factors = self.adapter.fetch(location, (first, last))
        degraded = bool(factors) and any(f.degraded for f in factors)

        # noise is seeded per product so identical requests give identical forecasts
        rng = np.random.default_rng(zlib.crc32(product.id.encode("utf-8")))
        curves = component_predictions(history, horizon_days, rng, product, factors, include_external)
        weights = self.weight_store.snapshot()
        points = blend(curves, weights, start=start)
        if degraded:
            points = [degrade_point(p) for p in points]
        _check_forecast(points, horizon_days)

        quantities = [p.predicted_quantity for p in points]
        lines = [describe_forecast(kind, quantities, history, product)]
        lines += insights(factors or [], product.vertical)
        lines.append(explain_weights(weights.subset(curves)))

        accuracy = trained["accuracy"]
        result = {
            "product_id": product.id,
            "forecast": [p.to_dict() for p in points],
            "model_used": kind.value,
            "components": sorted(curves),
            "accuracy": accuracy.accuracy,
            "mape": accuracy.mape,
            "insights": lines,
            "degraded": degraded,
            "model_version": MODEL_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        if include_external:
            result["external_factors"] = {
                "summary": summarize(factors),
                "daily": [f.to_dict() for f in factors],
            }
        return result

    # ---------------- optimization ----------------
    def optimize(self, request: dict) -> dict:
        request = request or {}
        product_id = request.get("product_id")
        if product_id is None or str(product_id).strip() == "":
            raise ValidationError("product_id is required")
        product = self.provider.get_product(product_id)
        self.registry.require(model_for_vertical(product.vertical))

        demand_forecast = request.get("demand_forecast")
        if not isinstance(demand_forecast, list) or not demand_forecast:
            raise ValidationError("demand_forecast must be a non-empty list")

        current_stock = _as_float(request.get("current_stock", product.current_stock), "current_stock")
        lead_time_days = _as_float(request.get("lead_time_days", product.lead_time_days), "lead_time_days")
        service_level = _as_float(request.get("service_level", DEFAULT_SERVICE_LEVEL), "service_level")
        holding_cost = _as_float(request.get("holding_cost", product.holding_cost), "holding_cost")
        stockout_cost = _as_float(request.get("stockout_cost", product.unit_price), "stockout_cost")

        history_points = len(self.provider.get_sales_history(product.id))
        try:
            recommendation = optimize(
                current_stock=current_stock,
                demand_forecast=demand_forecast,
                lead_time_days=lead_time_days,
                service_level=service_level,
                holding_cost=holding_cost,
                stockout_cost=stockout_cost,
                ordering_cost=self.ordering_cost,
                history_points=history_points,
            )
        except ForecastEngineError:
            raise
        except Exception as e:
            logger.exception(f"❌ Optimization failed for product {product.id}")
            raise InternalEngineError(f"optimization failed: {e}") from e

        return {
            "product_id": product.id,
            **recommendation.to_dict(),
            "model_version": MODEL_VERSION,
        }

    def recommend(self, product_id: str, horizon_days: int = DEFAULT_FORECAST_DAYS, location: str = "",
                  service_level: float = DEFAULT_SERVICE_LEVEL) -> dict:
        """Forecast then optimize with the product's own stock, lead time and costs."""
        forecast = self.generate_forecast({
            "product_id": product_id,
            "horizon_days": horizon_days,
            "include_external_factors": bool(location),
            "location": location,
        })
        result = self.optimize({
            "product_id": product_id,
            "service_level": service_level,
            "demand_forecast": forecast["forecast"],
        })
        result["forecast_horizon_days"] = len(forecast["forecast"])
        return result
