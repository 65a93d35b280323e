import dataclasses

import numpy as np
import pytest

from models.entities import Criticality, LifecycleStage, ModelAccuracy, Vertical
from models.vertical_models import (
    ModelKind,
    backtest,
    base_level,
    describe_forecast,
    detect_lifecycle_stage,
    lifecycle_multiplier,
    maintenance_multiplier,
    model_for_vertical,
    predict,
    specialized_model_for_vertical,
)


@pytest.mark.parametrize("kind", list(ModelKind))
@pytest.mark.parametrize("horizon", [1, 30, 90])
def test_predict_returns_horizon_non_negative_values(kind, horizon, steady_history, rng, industrial_product):
    curve = predict(kind, steady_history, None, horizon, rng, industrial_product)
    assert len(curve) == horizon
    assert (curve >= 0).all()


@pytest.mark.parametrize("kind", list(ModelKind))
def test_zero_demand_history_never_goes_negative(kind, rng):
    curve = predict(kind, [0.0] * 30, None, 45, rng)
    assert (curve >= 0).all()


def test_empty_history_uses_default_base():
    assert base_level([], ModelKind.FASHION) == 80.0
    assert base_level([], ModelKind.MANUFACTURING) == 120.0
    assert base_level([], ModelKind.TEMPORAL) == 100.0


def test_base_level_uses_recent_window():
    history = [1000.0] * 10 + [50.0] * 30
    assert base_level(history) == 50.0


def test_same_seed_gives_same_curve(steady_history):
    a = predict(ModelKind.GENERAL, steady_history, None, 20, np.random.default_rng(9))
    b = predict(ModelKind.GENERAL, steady_history, None, 20, np.random.default_rng(9))
    assert np.array_equal(a, b)


def test_rejects_non_positive_horizon(steady_history):
    with pytest.raises(ValueError):
        predict(ModelKind.TEMPORAL, steady_history, None, 0)


def test_general_is_cross_vertical_blend(steady_history):
    expected_rng = np.random.default_rng(5)
    t = predict(ModelKind.TEMPORAL, steady_history, None, 15, expected_rng)
    f = predict(ModelKind.FASHION, steady_history, None, 15, expected_rng)
    m = predict(ModelKind.MANUFACTURING, steady_history, None, 15, expected_rng)

    general = predict(ModelKind.GENERAL, steady_history, None, 15, np.random.default_rng(5))
    assert np.allclose(general, 0.4 * t + 0.3 * f + 0.3 * m)


@pytest.mark.parametrize("series,stage", [
    ([100, 100, 100], LifecycleStage.MATURITY),
    ([50, 70, 100], LifecycleStage.INTRODUCTION),
    ([100, 105, 110], LifecycleStage.GROWTH),
    ([100, 95, 90], LifecycleStage.DECLINE),
    ([1, 2], LifecycleStage.INTRODUCTION),
])
def test_detect_lifecycle_stage(series, stage):
    assert detect_lifecycle_stage(series) == stage


def test_lifecycle_multipliers():
    assert lifecycle_multiplier(LifecycleStage.INTRODUCTION, 0) == pytest.approx(0.8)
    assert lifecycle_multiplier(LifecycleStage.GROWTH, 10) > lifecycle_multiplier(LifecycleStage.GROWTH, 0)
    assert lifecycle_multiplier(LifecycleStage.DECLINE, 10) < lifecycle_multiplier(LifecycleStage.DECLINE, 0) < 1.0
    assert lifecycle_multiplier(LifecycleStage.DECLINE, 500) == 0.0


@pytest.mark.parametrize("days,step,expected", [
    (5, 0, 1.3),
    (7, 0, 1.3),
    (10, 0, 1.1),
    (14, 0, 1.1),
    (20, 0, 1.0),
    (None, 0, 1.0),
    (10, 5, 1.3),
    (3, 5, 1.0),
])
def test_maintenance_multiplier(days, step, expected):
    assert maintenance_multiplier(days, step) == expected


def test_criticality_scales_manufacturing_curve(industrial_product):
    history = [120.0] * 30
    critical = dataclasses.replace(industrial_product, criticality=Criticality.CRITICAL)
    important = dataclasses.replace(industrial_product, criticality=Criticality.IMPORTANT)

    standard_curve = predict(ModelKind.MANUFACTURING, history, None, 20, np.random.default_rng(1), industrial_product)
    critical_curve = predict(ModelKind.MANUFACTURING, history, None, 20, np.random.default_rng(1), critical)
    important_curve = predict(ModelKind.MANUFACTURING, history, None, 20, np.random.default_rng(1), important)

    assert np.allclose(critical_curve, standard_curve * 1.2)
    assert np.allclose(important_curve, standard_curve * 1.1)


def test_upcoming_maintenance_raises_demand(industrial_product):
    history = [120.0] * 30
    soon = dataclasses.replace(industrial_product, days_to_maintenance=3)
    base = predict(ModelKind.MANUFACTURING, history, None, 5, np.random.default_rng(2), industrial_product)
    boosted = predict(ModelKind.MANUFACTURING, history, None, 5, np.random.default_rng(2), soon)
    assert np.allclose(boosted[:4], base[:4] * 1.3)


@pytest.mark.parametrize("vertical,model,specialized", [
    (Vertical.APPAREL, ModelKind.FASHION, ModelKind.FASHION),
    (Vertical.INDUSTRIAL, ModelKind.MANUFACTURING, ModelKind.MANUFACTURING),
    (Vertical.GENERAL, ModelKind.TEMPORAL, ModelKind.GENERAL),
    (None, ModelKind.TEMPORAL, ModelKind.GENERAL),
    ("apparel", ModelKind.FASHION, ModelKind.FASHION),
])
def test_vertical_dispatch(vertical, model, specialized):
    assert model_for_vertical(vertical) == model
    assert specialized_model_for_vertical(vertical) == specialized


def test_unknown_vertical_is_rejected():
    with pytest.raises(ValueError):
        model_for_vertical("FOOD")


def test_backtest_reports_accuracy(steady_history):
    accuracy = backtest(ModelKind.TEMPORAL, steady_history, holdout_days=10, rng=np.random.default_rng(0))
    assert isinstance(accuracy, ModelAccuracy)
    assert 0.0 <= accuracy.accuracy <= 1.0
    assert accuracy.mae >= 0 and accuracy.rmse >= accuracy.mae - 1e-9
    assert accuracy.accuracy == pytest.approx(max(0.0, 1 - accuracy.mape), abs=1e-3)


def test_backtest_needs_enough_history():
    with pytest.raises(ValueError):
        backtest(ModelKind.TEMPORAL, [10.0] * 5, holdout_days=4)


def test_describe_forecast_mentions_direction_and_lifecycle():
    text = describe_forecast(ModelKind.FASHION, [10, 12, 15], history=[100, 100, 100])
    assert "increase" in text
    assert "maturity" in text
    assert "stable" in describe_forecast(ModelKind.TEMPORAL, [5, 5])
