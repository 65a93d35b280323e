import math

import numpy as np

from models.entities import Action, OptimizationRecommendation, Priority
from utils.ai_config import (
    DEFAULT_Z,
    FULL_CONFIDENCE_POINTS,
    LEAD_TIME_VARIABILITY_RATIO,
    Z_SCORES,
)
from utils.errors import ValidationError

DEFAULT_ORDERING_COST = 50.0
Z_LOOKUP_TOLERANCE = 1e-9

BASE_CONFIDENCE = {
    Action.REORDER: 0.85,
    Action.REDUCE: 0.75,
    Action.PROMOTE: 0.70,
    Action.MAINTAIN: 0.90,
}


# ----------------------------------------------------------
# BUILDING BLOCKS
# ----------------------------------------------------------
def z_factor(service_level: float) -> float:
    """Exact table lookup; any other level resolves to the 90% quantile."""
    level = float(service_level)
    for supported, z in Z_SCORES.items():
        if math.isclose(level, supported, rel_tol=0.0, abs_tol=Z_LOOKUP_TOLERANCE):
            return z
    return DEFAULT_Z


def safety_stock(demand_mean: float, demand_std: float, lead_time_days: float, service_level: float,
                 lead_time_variability: float | None = None) -> int:
    if lead_time_variability is None:
        lead_time_variability = LEAD_TIME_VARIABILITY_RATIO * lead_time_days
    variance = lead_time_days * demand_std ** 2 + demand_mean ** 2 * lead_time_variability ** 2
    return max(0, math.ceil(z_factor(service_level) * math.sqrt(max(variance, 0.0))))


def reorder_point(demand_mean: float, lead_time_days: float, safety: float) -> int:
    return max(0, math.ceil(demand_mean * lead_time_days + safety))


def annualize(horizon_demand: float, horizon_days: int) -> float:
    if horizon_days <= 0:
        return 0.0
    if 28 <= horizon_days <= 31:
        return horizon_demand * 12
    return horizon_demand * 365.0 / horizon_days


def economic_order_quantity(annual_demand: float, ordering_cost: float, holding_cost: float) -> int:
    if holding_cost <= 0 or annual_demand <= 0 or ordering_cost <= 0:
        return 0
    return math.ceil(math.sqrt(2 * annual_demand * ordering_cost / holding_cost))


def stockout_risk(current_stock: float, demand_mean: float, lead_time_days: float) -> float:
    days_of_stock = current_stock / demand_mean if demand_mean > 0 else math.inf
    if days_of_stock <= lead_time_days:
        return 1.0
    if days_of_stock <= lead_time_days + 7:
        return 0.7
    return 0.2


def excess_stock(current_stock: float, safety: float, demand_mean: float, lead_time_days: float) -> float:
    return max(0.0, current_stock - (safety + demand_mean * lead_time_days))


def decide(current_stock: float, reorder_pt: float, eoq: int, excess: float, risk: float):
    """Priority-ordered decision rules -> (action, quantity, priority)."""
    if current_stock <= reorder_pt:
        return Action.REORDER, int(eoq), Priority.HIGH if risk > 0.3 else Priority.MEDIUM
    if excess > 2 * eoq:
        return Action.REDUCE, math.ceil(excess / 2), Priority.MEDIUM
    if risk > 0.5:
        return Action.PROMOTE, None, Priority.HIGH
    return Action.MAINTAIN, None, Priority.LOW


def _health_score(current: float, optimal: float) -> float:
    # 100 at optimal; linearly penalize absolute deviation as a fraction of optimal
    denom = max(optimal, 1.0)
    deviation = abs(current - optimal) / denom
    return float(max(0.0, 100.0 - 100.0 * deviation))


def _status(current: float, safety: float, optimal: float) -> str:
    if current <= 0.0001:
        return "STOCKOUT"
    if current < safety:
        return "LOW"
    if current <= optimal * 1.2:  # within +20% of optimal
        return "HEALTHY"
    return "OVERSTOCK"


def _expected_impact(action, risk, eoq, excess, holding_cost, stockout_cost) -> dict:
    if action == Action.REORDER:
        return {
            "service_level_improvement": round(min(0.2, risk), 4),
            "cost_savings": round(stockout_cost * 0.1 - holding_cost * eoq * 0.05, 2),
        }
    if action == Action.REDUCE:
        return {"cost_savings": round(excess * holding_cost * 0.1, 2)}
    if action == Action.PROMOTE:
        return {"risk_reduction": round(risk * 0.3, 4)}
    return {"cost_savings": 0.0, "service_level_improvement": 0.0}


def _reason(action, current_stock, reorder_pt, excess, risk) -> str:
    if action == Action.REORDER:
        return f"Current stock ({current_stock:g}) is at or below the reorder point ({reorder_pt})"
    if action == Action.REDUCE:
        return f"Excess stock of {excess:g} units exceeds twice the economic order quantity"
    if action == Action.PROMOTE:
        return f"Stockout risk of {risk:.0%} within the replenishment window; stimulate sell-through"
    return "Stock level is within the optimal range"


def _demand_series(demand_forecast):
    quantities, confidences = [], []
    for point in demand_forecast:
        if isinstance(point, dict):
            quantities.append(float(point["predicted_quantity"]))
            confidences.append(float(point.get("confidence", 1.0)))
        elif hasattr(point, "predicted_quantity"):
            quantities.append(float(point.predicted_quantity))
            confidences.append(float(point.confidence))
        else:
            quantities.append(float(point))
            confidences.append(1.0)
    return np.asarray(quantities), np.asarray(confidences)


# ----------------------------------------------------------
# OPTIMIZATION
# ----------------------------------------------------------
def optimize(
        current_stock: float,
        demand_forecast,
        lead_time_days: float,
        service_level: float,
        holding_cost: float,
        stockout_cost: float,
        ordering_cost: float = DEFAULT_ORDERING_COST,
        lead_time_variability: float | None = None,
        history_points: int | None = None,
) -> OptimizationRecommendation:
    """
    Turns a demand forecast (ForecastPoints, dicts or plain daily quantities) and the
    cost/service parameters into one recommendation. Deterministic for identical inputs.
    """
    if demand_forecast is None or len(demand_forecast) == 0:
        raise ValidationError("demand_forecast must not be empty")
    if lead_time_days is None or lead_time_days <= 0:
        raise ValidationError("lead_time_days must be positive")
    if service_level is None or not 0 < service_level <= 1:
        raise ValidationError("service_level must be in (0, 1]")
    if current_stock is None or current_stock < 0:
        raise ValidationError("current_stock must be non-negative")
    if holding_cost is None or holding_cost < 0 or stockout_cost is None or stockout_cost < 0:
        raise ValidationError("holding_cost and stockout_cost must be non-negative")

    try:
        demand, point_confidence = _demand_series(demand_forecast)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"invalid demand_forecast: {e}") from e
    if (demand < 0).any() or not np.isfinite(demand).all():
        raise ValidationError("demand_forecast quantities must be finite and non-negative")

    demand_mean = float(np.mean(demand))
    demand_std = float(np.std(demand, ddof=0))
    horizon = len(demand)

    ss = safety_stock(demand_mean, demand_std, lead_time_days, service_level, lead_time_variability)
    rop = reorder_point(demand_mean, lead_time_days, ss)
    eoq = economic_order_quantity(annualize(float(demand.sum()), horizon), ordering_cost, holding_cost)
    risk = stockout_risk(current_stock, demand_mean, lead_time_days)
    excess = excess_stock(current_stock, ss, demand_mean, lead_time_days)

    action, quantity, priority = decide(current_stock, rop, eoq, excess, risk)

    points = history_points if history_points is not None else horizon
    data_factor = 0.5 + 0.5 * min(1.0, points / FULL_CONFIDENCE_POINTS)
    forecast_factor = 0.5 + 0.5 * float(np.mean(np.clip(point_confidence, 0.0, 1.0)))
    confidence = BASE_CONFIDENCE[action] * data_factor * forecast_factor

    optimal = rop + eoq
    return OptimizationRecommendation(
        action=action,
        quantity=quantity,
        priority=priority,
        confidence=round(confidence, 4),
        reason=_reason(action, current_stock, rop, excess, risk),
        expected_impact=_expected_impact(action, risk, eoq, excess, holding_cost, stockout_cost),
        metrics={
            "safety_stock": ss,
            "reorder_point": rop,
            "eoq": eoq,
            "demand_mean": round(demand_mean, 3),
            "demand_std": round(demand_std, 3),
            "stockout_risk": risk,
            "excess_stock": round(excess, 3),
            "z_factor": z_factor(service_level),
            "stock_status": _status(current_stock, ss, optimal),
            "inventory_health_score": round(_health_score(current_stock, optimal), 2),
        },
    )


# ----------------------------------------------------------
# PORTFOLIO HEALTH
# ----------------------------------------------------------
HEALTH_WINDOW_DAYS = 30
TURNOVER_CREDIT = 0.2


def item_stockout_risk(current_stock: float, reorder_pt: float) -> float:
    if current_stock <= reorder_pt:
        return 0.8
    if current_stock <= reorder_pt * 1.2:
        return 0.4
    return 0.1


def item_excess_stock(current_stock: float, safety: float) -> float:
    if current_stock > safety * 3:
        return 0.3
    if current_stock > safety * 2:
        return 0.1
    return 0.0


def item_health_score(current_stock: float, safety: float, reorder_pt: float,
                      turnover: float = TURNOVER_CREDIT) -> float:
    """1 - stockout risk - excess + turnover credit, clamped to [0, 1]."""
    score = 1.0 - item_stockout_risk(current_stock, reorder_pt) - item_excess_stock(current_stock, safety) + turnover
    return float(max(0.0, min(1.0, score)))


def portfolio_health_score(provider, service_level: float = 0.95) -> dict:
    """
    Equal-weight mean of per-product health over the provider catalog.
    Safety stock and reorder point come from each product's recent daily demand.
    """
    items = []
    for product in provider.list_products():
        history = provider.get_sales_history(product.id, HEALTH_WINDOW_DAYS)
        demand = np.asarray([obs.quantity for obs in history], dtype=float)
        demand_mean = float(np.mean(demand)) if demand.size else 0.0
        demand_std = float(np.std(demand, ddof=0)) if demand.size else 0.0

        ss = safety_stock(demand_mean, demand_std, product.lead_time_days, service_level)
        rop = reorder_point(demand_mean, product.lead_time_days, ss)
        items.append({
            "product_id": product.id,
            "current_stock": product.current_stock,
            "safety_stock": ss,
            "reorder_point": rop,
            "stockout_risk": item_stockout_risk(product.current_stock, rop),
            "excess_stock": item_excess_stock(product.current_stock, ss),
            "health_score": round(item_health_score(product.current_stock, ss, rop), 4),
        })

    score = float(np.mean([i["health_score"] for i in items])) if items else 0.0
    return {"health_score": round(score, 4), "products": len(items), "items": items}
