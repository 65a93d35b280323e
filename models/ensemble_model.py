"""
Ensemble blender.

Component curves (temporal, external, product, market) are blended with the current
weight snapshot into ForecastPoints carrying a confidence and a relative band. Weights
live in a process-wide `WeightStore` and are only replaced by the retraining pass.
"""
import logging
import threading
from datetime import date, datetime, timezone
from types import MappingProxyType

import joblib
import numpy as np
from sklearn.model_selection import KFold

from models.entities import ForecastPoint
from models.vertical_models import (
    ModelKind,
    base_level,
    predict,
    quantities,
    specialized_model_for_vertical,
)
from services.external_factors import fallback_snapshots, impact_score
from utils.ai_config import (
    BAND_MAX,
    BAND_MIN,
    CONFIDENCE_CEILING,
    CONFIDENCE_DECAY,
    CONFIDENCE_FLOOR,
    CV_FOLDS,
    ENSEMBLE_PRIORS,
    HIGH_ACCURACY,
    MEDIUM_ACCURACY,
    META_LEARNING_RATE,
    MIN_TS_POINTS,
    OPTIMIZATION_EPOCHS,
)
from utils.date_utils import horizon_dates
from utils.metrics import score_predictions

logger = logging.getLogger(__name__)

COMPONENTS = ("temporal", "external", "product", "market")
WEIGHT_TOLERANCE = 1e-6


class EnsembleWeights:
    """Immutable, normalized {component -> weight} mapping."""

    __slots__ = ("_weights",)

    def __init__(self, weights: dict):
        cleaned = {str(k): max(0.0, float(v)) for k, v in weights.items()}
        total = sum(cleaned.values())
        if not cleaned or total <= 0:
            raise ValueError("ensemble weights must contain at least one positive weight")
        # already-normalized input (e.g. a persisted snapshot) is kept bit-for-bit
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            cleaned = {k: v / total for k, v in cleaned.items()}
        object.__setattr__(self, "_weights", MappingProxyType(cleaned))

    def __setattr__(self, key, value):
        raise AttributeError("EnsembleWeights is immutable")

    @classmethod
    def priors(cls):
        return cls(ENSEMBLE_PRIORS)

    def __getitem__(self, name):
        return self._weights[name]

    def __contains__(self, name):
        return name in self._weights

    def __iter__(self):
        return iter(self._weights)

    def __len__(self):
        return len(self._weights)

    def __eq__(self, other):
        return isinstance(other, EnsembleWeights) and dict(self._weights) == dict(other._weights)

    def __hash__(self):
        return hash(tuple(sorted(self._weights.items())))

    def __repr__(self):
        return f"EnsembleWeights({self.as_dict()})"

    def items(self):
        return self._weights.items()

    def as_dict(self) -> dict:
        return {k: round(v, 6) for k, v in self._weights.items()}

    def subset(self, names) -> "EnsembleWeights":
        """Weights restricted to `names`, renormalized; falls back to equal weights if all are zero."""
        names = list(names)
        missing = [n for n in names if n not in self._weights]
        if missing:
            raise ValueError(f"unknown ensemble components: {missing}")
        picked = {n: self._weights[n] for n in names}
        if sum(picked.values()) <= 0:
            picked = {n: 1.0 for n in names}
        return EnsembleWeights(picked)

    def check(self):
        total = sum(self._weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE or any(v < 0 for v in self._weights.values()):
            raise ValueError(f"ensemble weights violate invariants: {self.as_dict()}")
        return self


class WeightStore:
    """Holds the current weight snapshot; readers always see a complete snapshot."""

    def __init__(self, initial: EnsembleWeights | None = None):
        self._lock = threading.Lock()
        self._weights = initial or EnsembleWeights.priors()
        self.version = 0
        self.updated_at = None

    def snapshot(self) -> EnsembleWeights:
        with self._lock:
            return self._weights

    def replace(self, weights: EnsembleWeights) -> EnsembleWeights:
        weights.check()
        with self._lock:
            previous = self._weights
            self._weights = weights
            self.version += 1
            self.updated_at = datetime.now(timezone.utc)
        return previous

    def state(self) -> dict:
        with self._lock:
            return {
                "weights": dict(self._weights.items()),
                "version": self.version,
                "updated_at": self.updated_at,
            }

    def save(self, path: str, extra: dict | None = None):
        payload = self.state()
        payload.update(extra or {})
        joblib.dump(payload, path)
        logger.info(f"💾 Saved ensemble state v{payload['version']} to {path}")

    def load(self, path: str) -> dict:
        payload = joblib.load(path)
        weights = EnsembleWeights(payload["weights"])
        with self._lock:
            self._weights = weights
            self.version = payload.get("version", 0)
            self.updated_at = payload.get("updated_at")
        return payload


# ----------------------------------------------------------
# COMPONENTS
# ----------------------------------------------------------
def _factors_for(external_factors, horizon_days, start=None):
    if external_factors:
        factors = list(external_factors)[:horizon_days]
        if len(factors) < horizon_days:
            factors += [factors[-1]] * (horizon_days - len(factors))
        return factors
    return fallback_snapshots(horizon_dates(horizon_days, start))


def component_predictions(history, horizon_days: int, rng: np.random.Generator, product=None,
                          external_factors=None, include_external: bool = True) -> dict:
    """
    Raw curves keyed by component name. Without external factors only the temporal and
    product components are produced.
    """
    vertical = getattr(product, "vertical", None)
    category = getattr(product, "category", "") or vertical
    product_kind = specialized_model_for_vertical(vertical)

    curves = {
        "temporal": predict(ModelKind.TEMPORAL, history, None, horizon_days, rng, product),
        "product": predict(product_kind, history, external_factors if include_external else None,
                           horizon_days, rng, product),
    }
    if not include_external:
        return curves

    factors = _factors_for(external_factors, horizon_days)
    base = base_level(history, ModelKind.TEMPORAL)
    curves["external"] = np.array([base * (1.0 + impact_score(f, category)) for f in factors])
    curves["market"] = np.array([
        base * (1.0 + 0.1 * f.sentiment) * (1.0 + (f.search_interest - 50.0) / 500.0)
        for f in factors
    ])
    return {name: np.clip(curve, 0.0, None) for name, curve in curves.items()}


# ----------------------------------------------------------
# BLENDING
# ----------------------------------------------------------
def step_confidence(values_at_step, step: int, horizon_days: int) -> float:
    values = np.asarray(values_at_step, dtype=float)
    # std relative to (mean + 1) keeps all-zero steps finite
    variation = float(np.std(values) / (np.mean(values) + 1.0)) if values.size > 1 else 0.0
    agreement = max(CONFIDENCE_FLOOR, min(CONFIDENCE_CEILING, 1.0 - variation))
    decay = max(CONFIDENCE_FLOOR, CONFIDENCE_CEILING - CONFIDENCE_DECAY * step / horizon_days)
    return min(agreement, decay)


def band_width(confidence: float) -> float:
    """Relative half-width of the bound band; ±10% at top confidence, ±15% at or below the floor."""
    span = CONFIDENCE_CEILING - CONFIDENCE_FLOOR
    band = BAND_MIN + (BAND_MAX - BAND_MIN) * (CONFIDENCE_CEILING - confidence) / span
    return float(max(BAND_MIN, min(BAND_MAX, band)))


def blend(component_predictions, weights: EnsembleWeights, start: date | None = None) -> list[ForecastPoint]:
    """
    Weighted per-step blend of component curves.
    `component_predictions` is either {name: curve} or a list of curves taken in weight order.
    """
    if isinstance(component_predictions, dict):
        names = list(component_predictions)
        curves = [component_predictions[n] for n in names]
    else:
        curves = list(component_predictions)
        names = list(weights)[:len(curves)]
        if len(names) < len(curves):
            raise ValueError("more component curves than weights")

    if not curves:
        raise ValueError("no component predictions to blend")
    matrix = np.vstack([np.asarray(c, dtype=float) for c in curves]) if len({len(c) for c in curves}) == 1 else None
    if matrix is None or matrix.shape[1] == 0:
        raise ValueError("component predictions must be non-empty and of equal length")

    active = weights.subset(names)
    w = np.array([active[n] for n in names])
    horizon_days = matrix.shape[1]
    blended = np.clip(w @ matrix, 0.0, None)

    points = []
    for step, (d, value) in enumerate(zip(horizon_dates(horizon_days, start), blended)):
        confidence = step_confidence(matrix[:, step], step, horizon_days)
        band = band_width(confidence)
        points.append(ForecastPoint(
            date=d,
            predicted_quantity=float(value),
            confidence=float(confidence),
            lower_bound=float(max(0.0, value * (1.0 - band))),
            upper_bound=float(value * (1.0 + band)),
        ))
    return points


# ----------------------------------------------------------
# CROSS-VALIDATION / WEIGHT ADAPTATION
# ----------------------------------------------------------
def cross_validate(training_set, weights: EnsembleWeights, folds: int = CV_FOLDS,
                   rng: np.random.Generator | None = None) -> dict:
    """
    k-fold validation over the tail of each history in `training_set` [(product, history)].
    Folds are contiguous blocks; each is predicted only from the observations preceding it.
    """
    rng = rng if rng is not None else np.random.default_rng(0)
    fold_accuracies = []
    per_component = {name: [] for name in weights}

    for product, history in training_set:
        q = quantities(history)
        fold_len = max(MIN_TS_POINTS, min(7, q.size // (folds + 1)))
        tail = folds * fold_len
        if q.size < tail + MIN_TS_POINTS:
            continue

        offset = q.size - tail
        for _, test_idx in KFold(n_splits=folds, shuffle=False).split(np.arange(tail)):
            first = offset + int(test_idx[0])
            train = list(history)[:first]
            actual = q[first:first + len(test_idx)]
            curves = component_predictions(train, len(test_idx), rng, product)
            curves = {n: c for n, c in curves.items() if n in weights}
            points = blend(curves, weights)
            fold_accuracies.append(score_predictions(actual, [p.predicted_quantity for p in points])["accuracy"])
            for name, curve in curves.items():
                per_component[name].append(score_predictions(actual, curve)["accuracy"])

    component_accuracies = {n: round(float(np.mean(v)), 4) for n, v in per_component.items() if v}
    return {
        "folds": len(fold_accuracies),
        "fold_accuracies": [round(a, 4) for a in fold_accuracies],
        "average_accuracy": round(float(np.mean(fold_accuracies)), 4) if fold_accuracies else None,
        "component_accuracies": component_accuracies,
    }


def adapt_weights(weights: EnsembleWeights, avg_accuracy: float | None, component_accuracies: dict,
                  epochs: int = OPTIMIZATION_EPOCHS,
                  learning_rate: float = META_LEARNING_RATE) -> EnsembleWeights:
    """Shift weight toward the best-validating component; unchanged once accuracy is high."""
    if avg_accuracy is None or avg_accuracy >= HIGH_ACCURACY:
        return weights
    scored = {n: a for n, a in component_accuracies.items() if n in weights}
    if not scored:
        return weights

    step = 0.1 * learning_rate if avg_accuracy >= MEDIUM_ACCURACY else 0.2 * learning_rate
    best = max(scored, key=lambda n: (scored[n], -list(weights).index(n)))
    current = dict(weights.items())

    for _ in range(epochs):
        others = sum(v for n, v in current.items() if n != best)
        if others <= 0:
            break
        moved = min(step, others)
        for n in current:
            if n != best:
                current[n] -= moved * current[n] / others
        current[best] += moved
        current = {n: max(0.0, v) for n, v in current.items()}
        total = sum(current.values())
        current = {n: v / total for n, v in current.items()}

    return EnsembleWeights(current).check()


def explain_weights(weights: EnsembleWeights) -> str:
    ordered = sorted(weights.items(), key=lambda kv: kv[1], reverse=True)
    mix = ", ".join(f"{name} {value:.0%}" for name, value in ordered)
    return f"Ensemble mix: {mix}. Dominant component: {ordered[0][0]}."
