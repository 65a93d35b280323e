"""
Out-of-band retraining pass.

Every vertical model kind is backtested in parallel; once all of them are done the
ensemble is cross-validated, its weights adapted and the new snapshot swapped in.
"""
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone

import numpy as np

from models.ensemble_model import adapt_weights, cross_validate
from models.entities import ModelAccuracy
from models.vertical_models import (
    ModelKind,
    backtest,
    model_for_vertical,
    specialized_model_for_vertical,
)
from utils.ai_config import HISTORY_LOOKBACK_DAYS, MODEL_VERSION
from utils.errors import ModelNotTrainedError
from utils.metrics import average_scores

logger = logging.getLogger(__name__)

_RETRAIN_LOCK = threading.Lock()


class ModelRegistry:
    """Thread-safe record of which model kinds have been trained, with their backtest metrics."""

    def __init__(self):
        self._lock = threading.Lock()
        self._models = {}

    def record(self, kind: ModelKind, accuracy: ModelAccuracy, samples: int, trained_at=None):
        entry = {
            "accuracy": accuracy,
            "samples": samples,
            "trained_at": trained_at or datetime.now(timezone.utc),
        }
        with self._lock:
            self._models[ModelKind(kind)] = entry

    def is_trained(self, kind: ModelKind) -> bool:
        with self._lock:
            return ModelKind(kind) in self._models

    def require(self, kind: ModelKind) -> dict:
        with self._lock:
            entry = self._models.get(ModelKind(kind))
        if entry is None:
            raise ModelNotTrainedError(f"{ModelKind(kind).value} model has not been trained yet")
        return entry

    def summary(self) -> dict:
        with self._lock:
            items = list(self._models.items())
        return {
            kind.value: {
                **entry["accuracy"].to_dict(),
                "samples": entry["samples"],
                "trained_at": entry["trained_at"].isoformat(),
            }
            for kind, entry in items
        }

    def state(self) -> dict:
        with self._lock:
            return {
                kind.value: {
                    "accuracy": entry["accuracy"].to_dict(),
                    "samples": entry["samples"],
                    "trained_at": entry["trained_at"],
                }
                for kind, entry in self._models.items()
            }

    def load_state(self, state: dict):
        for kind, entry in (state or {}).items():
            self.record(ModelKind(kind), ModelAccuracy(**entry["accuracy"]), entry["samples"], entry["trained_at"])


def load_state(path: str, weight_store, registry: ModelRegistry) -> bool:
    """Restore a persisted weight snapshot and registry; False when nothing was saved yet."""
    if not path or not os.path.exists(path):
        return False
    payload = weight_store.load(path)
    registry.load_state(payload.get("registry"))
    logger.info(f"Loaded ensemble state v{weight_store.version} from {path}")
    return True


def _relevant(kind: ModelKind, training_set):
    picked = [
        (product, history) for product, history in training_set
        if kind in (model_for_vertical(product.vertical), specialized_model_for_vertical(product.vertical))
    ]
    return picked or list(training_set)


def _backtest_kind(kind: ModelKind, training_set, seed: int):
    rng = np.random.default_rng(seed)
    scores = []
    for product, history in _relevant(kind, training_set):
        try:
            scores.append(backtest(kind, history, rng=rng, product=product).to_dict())
        except ValueError as e:
            logger.debug(f"Skipping {product.id} for {kind.value}: {e}")
    if not scores:
        return kind, None, 0
    return kind, ModelAccuracy(**average_scores(scores)), len(scores)


def retrain(provider, weight_store, registry: ModelRegistry, workers: int = 4,
            state_path: str | None = None, seed: int = 0) -> dict:
    with _RETRAIN_LOCK:
        started = time.perf_counter()
        training_set = [
            (product, provider.get_sales_history(product.id, HISTORY_LOOKBACK_DAYS))
            for product in provider.list_products()
        ]
        logger.info(f"🏋️ Retraining on {len(training_set)} products with {workers} workers")

        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            futures = [pool.submit(_backtest_kind, kind, training_set, seed) for kind in ModelKind]
            wait(futures)

        for future in futures:
            kind, accuracy, samples = future.result()
            if accuracy is None:
                logger.warning(f"⚠️ No usable history to train {kind.value}")
                continue
            registry.record(kind, accuracy, samples)

        before = weight_store.snapshot()
        cv = cross_validate(training_set, before, rng=np.random.default_rng(seed))
        after = adapt_weights(before, cv["average_accuracy"], cv["component_accuracies"])
        weight_store.replace(after)

        if state_path:
            os.makedirs(os.path.dirname(state_path) or ".", exist_ok=True)
            weight_store.save(state_path, extra={"registry": registry.state(), "model_version": MODEL_VERSION})

        duration = round(time.perf_counter() - started, 3)
        logger.info(
            f"✅ Retraining done in {duration}s: cv accuracy={cv['average_accuracy']}, "
            f"weights={after.as_dict()}"
        )
        return {
            "model_version": MODEL_VERSION,
            "products": len(training_set),
            "models": registry.summary(),
            "cross_validation": cv,
            "weights_before": before.as_dict(),
            "weights_after": after.as_dict(),
            "weights_version": weight_store.version,
            "duration_seconds": duration,
        }
