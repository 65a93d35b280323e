import numpy as np
from sklearn.metrics import (
    mean_absolute_error,
    mean_absolute_percentage_error,
    mean_squared_error,
    r2_score,
)


def mape(actual, predicted) -> float:
    """MAPE as a fraction; zero actuals are skipped (0.0 when nothing is left)."""
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    mask = actual != 0
    if not mask.any():
        return 0.0
    return float(mean_absolute_percentage_error(actual[mask], predicted[mask]))


def accuracy_from_mape(value: float) -> float:
    return float(max(0.0, min(1.0, 1.0 - value)))


def score_predictions(actual, predicted) -> dict:
    """R2, MAPE, MAE, RMSE and the derived accuracy for one backtest window."""
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    if actual.size == 0 or actual.size != predicted.size:
        raise ValueError("actual and predicted must be non-empty and of equal length")

    m = mape(actual, predicted)
    r2 = float(r2_score(actual, predicted)) if actual.size > 1 else 0.0
    return {
        "r2": round(r2, 4),
        "mape": round(m, 4),
        "mae": round(float(mean_absolute_error(actual, predicted)), 4),
        "rmse": round(float(np.sqrt(mean_squared_error(actual, predicted))), 4),
        "accuracy": round(accuracy_from_mape(m), 4),
    }


def average_scores(scores: list[dict]) -> dict:
    if not scores:
        return {"r2": 0.0, "mape": 0.0, "mae": 0.0, "rmse": 0.0, "accuracy": 0.0}
    keys = ("r2", "mape", "mae", "rmse", "accuracy")
    return {k: round(float(np.mean([s[k] for s in scores])), 4) for k in keys}
