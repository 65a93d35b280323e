"""
Vertical demand models.

Each model turns a historical series (plus optional external factors) into a raw
demand curve of `horizon_days` non-negative values. Dispatch is by `ModelKind`;
the product vertical decides which kind serves a request.
"""
import logging
from enum import Enum

import numpy as np

from models.entities import Criticality, LifecycleStage, ModelAccuracy, Vertical
from utils.ai_config import MIN_TS_POINTS
from utils.metrics import score_predictions

logger = logging.getLogger(__name__)

RECENT_WINDOW = 30
DEFAULT_SEED = 7


class ModelKind(str, Enum):
    TEMPORAL = "TEMPORAL"
    FASHION = "FASHION"
    MANUFACTURING = "MANUFACTURING"
    GENERAL = "GENERAL"

    @classmethod
    def _missing_(cls, value):
        # case-insensitive: "temporal" -> TEMPORAL
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().upper():
                    return member
        return None


# Reference base levels; component amplitudes below are expressed against them
DEFAULT_BASES = {
    ModelKind.TEMPORAL: 100.0,
    ModelKind.FASHION: 80.0,
    ModelKind.MANUFACTURING: 120.0,
}

GENERAL_BLEND = {
    ModelKind.TEMPORAL: 0.4,
    ModelKind.FASHION: 0.3,
    ModelKind.MANUFACTURING: 0.3,
}

CRITICALITY_MULTIPLIERS = {
    Criticality.CRITICAL: 1.2,
    Criticality.IMPORTANT: 1.1,
    Criticality.STANDARD: 1.0,
}

MAINTENANCE_SPIKE_PROBABILITY = 0.1
MAINTENANCE_SPIKE = 50.0


def model_for_vertical(vertical) -> ModelKind:
    vertical = Vertical.parse(vertical)
    if vertical == Vertical.APPAREL:
        return ModelKind.FASHION
    if vertical == Vertical.INDUSTRIAL:
        return ModelKind.MANUFACTURING
    return ModelKind.TEMPORAL


def specialized_model_for_vertical(vertical) -> ModelKind:
    """Model used for the product-specific ensemble component."""
    vertical = Vertical.parse(vertical)
    if vertical == Vertical.APPAREL:
        return ModelKind.FASHION
    if vertical == Vertical.INDUSTRIAL:
        return ModelKind.MANUFACTURING
    return ModelKind.GENERAL


def quantities(history) -> np.ndarray:
    """Accepts SalesObservation-like objects or plain numbers."""
    values = [getattr(h, "quantity", h) for h in (history or [])]
    return np.asarray(values, dtype=float)


def base_level(history, kind: ModelKind = ModelKind.TEMPORAL) -> float:
    q = quantities(history)
    if q.size == 0:
        return DEFAULT_BASES.get(kind, DEFAULT_BASES[ModelKind.TEMPORAL])
    return float(max(0.0, np.mean(q[-RECENT_WINDOW:])))


# ----------------------------------------------------------
# LIFECYCLE / MAINTENANCE HELPERS
# ----------------------------------------------------------
def detect_lifecycle_stage(history) -> LifecycleStage:
    """Stage from the relative slope of the last three observations."""
    q = quantities(history)
    if q.size < MIN_TS_POINTS:
        return LifecycleStage.INTRODUCTION

    recent = q[-3:]
    slope = (recent[-1] - recent[0]) / 2.0
    rel = slope / max(float(np.mean(recent)), 1e-9)

    if rel > 0.15:
        return LifecycleStage.INTRODUCTION
    if rel > 0.03:
        return LifecycleStage.GROWTH
    if rel >= -0.03:
        return LifecycleStage.MATURITY
    return LifecycleStage.DECLINE


def lifecycle_multiplier(stage: LifecycleStage, step: int) -> float:
    multipliers = {
        LifecycleStage.INTRODUCTION: 0.8 + step * 0.01,
        LifecycleStage.GROWTH: 1.0 + step * 0.005,
        LifecycleStage.MATURITY: 1.0 - step * 0.002,
        LifecycleStage.DECLINE: 0.9 - step * 0.01,
    }
    return max(0.0, multipliers.get(stage, 1.0))


def maintenance_multiplier(days_to_maintenance: int | None, step: int = 0) -> float:
    if days_to_maintenance is None:
        return 1.0
    days_left = days_to_maintenance - step
    if 0 <= days_left <= 7:
        return 1.3
    if 7 < days_left <= 14:
        return 1.1
    return 1.0


def apply_external_factors(curve: np.ndarray, external_factors) -> np.ndarray:
    """Multiplicative weather/economic/sentiment adjustment, one snapshot per step."""
    if not external_factors:
        return curve
    adjusted = curve.copy()
    for i in range(min(len(curve), len(external_factors))):
        snap = external_factors[i]
        adjustment = 1.0 + (snap.temperature - 20.0) * 0.01
        adjustment *= 1.0 + snap.gdp_growth * 0.001
        adjustment *= 1.0 + snap.sentiment * 0.1
        adjusted[i] = curve[i] * adjustment
    return adjusted


# ----------------------------------------------------------
# MODEL CURVES
# ----------------------------------------------------------
def _temporal_curve(history, horizon_days, rng):
    base = base_level(history, ModelKind.TEMPORAL)
    scale = base / DEFAULT_BASES[ModelKind.TEMPORAL]
    i = np.arange(horizon_days)
    seasonal = np.sin(i / 10.0) * 20.0 * scale
    trend = i * 0.5 * scale
    noise = (rng.random(horizon_days) - 0.5) * 10.0 * scale
    return base + seasonal + trend + noise


def _fashion_curve(history, horizon_days, rng):
    base = base_level(history, ModelKind.FASHION)
    scale = base / DEFAULT_BASES[ModelKind.FASHION]
    i = np.arange(horizon_days)
    trend_cycle = np.cos(i / 5.0) * 15.0 * scale
    seasonal_boost = np.sin(i / 12.0) * 10.0 * scale
    noise = (rng.random(horizon_days) - 0.5) * 8.0 * scale

    stage = detect_lifecycle_stage(history)
    stage_scale = np.array([lifecycle_multiplier(stage, step) for step in range(horizon_days)])
    return (base + trend_cycle + seasonal_boost + noise) * stage_scale


def _manufacturing_curve(history, horizon_days, rng, product=None):
    base = base_level(history, ModelKind.MANUFACTURING)
    scale = base / DEFAULT_BASES[ModelKind.MANUFACTURING]
    i = np.arange(horizon_days)
    project_cycle = np.sin(i / 8.0) * 25.0 * scale
    spikes = (rng.random(horizon_days) < MAINTENANCE_SPIKE_PROBABILITY) * MAINTENANCE_SPIKE * scale
    noise = (rng.random(horizon_days) - 0.5) * 12.0 * scale

    criticality = getattr(product, "criticality", Criticality.STANDARD)
    days_to_maintenance = getattr(product, "days_to_maintenance", None)
    multipliers = np.array([
        CRITICALITY_MULTIPLIERS.get(criticality, 1.0) * maintenance_multiplier(days_to_maintenance, step)
        for step in range(horizon_days)
    ])
    return (base + project_cycle + spikes + noise) * multipliers


def predict(kind: ModelKind, history, external_factors=None, horizon_days: int = 30,
            rng: np.random.Generator | None = None, product=None) -> np.ndarray:
    """
    Raw demand curve of length `horizon_days`, clamped at zero.
    `rng` drives the noise terms; pass a seeded generator for reproducible output.
    """
    if horizon_days <= 0:
        raise ValueError("horizon_days must be positive")
    rng = rng if rng is not None else np.random.default_rng(DEFAULT_SEED)
    kind = ModelKind(kind)

    if kind == ModelKind.TEMPORAL:
        curve = _temporal_curve(history, horizon_days, rng)
    elif kind == ModelKind.FASHION:
        curve = _fashion_curve(history, horizon_days, rng)
    elif kind == ModelKind.MANUFACTURING:
        curve = _manufacturing_curve(history, horizon_days, rng, product)
    else:
        curve = sum(
            weight * predict(component, history, None, horizon_days, rng, product)
            for component, weight in GENERAL_BLEND.items()
        )

    curve = apply_external_factors(np.asarray(curve, dtype=float), external_factors)
    return np.clip(curve, 0.0, None)


def backtest(kind: ModelKind, history, holdout_days: int | None = None,
             rng: np.random.Generator | None = None, product=None) -> ModelAccuracy:
    """Hold out the tail of the history, predict it from the head, and score it."""
    q = quantities(history)
    if holdout_days is None:
        holdout_days = max(MIN_TS_POINTS, min(14, q.size // 4))
    if q.size < holdout_days + MIN_TS_POINTS:
        raise ValueError(
            f"history of {q.size} points is too short for a {holdout_days}-day backtest"
        )

    train = list(history)[:-holdout_days]
    actual = q[-holdout_days:]
    predicted = predict(kind, train, None, holdout_days, rng, product)
    return ModelAccuracy(**score_predictions(actual, predicted))


def describe_forecast(kind: ModelKind, predictions, history=None, product=None) -> str:
    predictions = np.asarray(predictions, dtype=float)
    avg = float(np.mean(predictions)) if predictions.size else 0.0
    change = float(predictions[-1] - predictions[0]) if predictions.size > 1 else 0.0

    text = f"{ModelKind(kind).value.title()} model predicts an average demand of {avg:.1f} units per day."
    if kind == ModelKind.FASHION:
        stage = detect_lifecycle_stage(history)
        text += f" The product is in the {stage.value} stage of its lifecycle."
    elif kind == ModelKind.MANUFACTURING:
        days = getattr(product, "days_to_maintenance", None)
        if days is not None and days <= 14:
            text += f" Scheduled maintenance in {days} days raises expected demand."

    if change > 0:
        text += f" Demand is expected to increase by {change:.1f} units over the forecast period."
    elif change < 0:
        text += f" Demand is expected to decrease by {abs(change):.1f} units over the forecast period."
    else:
        text += " Demand is expected to remain stable."
    return text
