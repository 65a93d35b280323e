from datetime import date

import numpy as np
import pytest

from models.ensemble_model import (
    EnsembleWeights,
    WeightStore,
    adapt_weights,
    band_width,
    blend,
    component_predictions,
    cross_validate,
    explain_weights,
)
from models.entities import ExternalFactorSnapshot


def _assert_valid(weights):
    values = [v for _, v in weights.items()]
    assert sum(values) == pytest.approx(1.0, abs=1e-6)
    assert all(v >= 0 for v in values)


def test_priors_are_normalized():
    weights = EnsembleWeights.priors()
    _assert_valid(weights)
    assert weights["temporal"] == pytest.approx(0.35)
    assert weights["market"] == pytest.approx(0.15)


def test_weights_normalize_and_clamp_negatives():
    weights = EnsembleWeights({"a": 2, "b": 2, "c": -1})
    assert weights["a"] == pytest.approx(0.5)
    assert weights["c"] == 0.0
    _assert_valid(weights)


def test_weights_need_positive_mass():
    with pytest.raises(ValueError):
        EnsembleWeights({"a": 0, "b": 0})


def test_weights_are_immutable():
    weights = EnsembleWeights.priors()
    with pytest.raises(AttributeError):
        weights.foo = 1
    with pytest.raises(TypeError):
        weights._weights["temporal"] = 1.0


def test_blend_shape_and_bounds():
    curves = {"temporal": np.linspace(10, 40, 30), "product": np.linspace(12, 30, 30)}
    points = blend(curves, EnsembleWeights.priors(), start=date(2025, 1, 1))
    assert len(points) == 30
    assert points[0].date == date(2025, 1, 2)
    for p in points:
        assert p.predicted_quantity >= 0
        assert 0.5 <= p.confidence <= 0.95
        assert 0 <= p.lower_bound <= p.predicted_quantity <= p.upper_bound


def test_blend_renormalizes_subset_of_components():
    points = blend({"temporal": [10.0] * 5, "product": [20.0] * 5}, EnsembleWeights.priors())
    assert points[0].predicted_quantity == pytest.approx((0.35 * 10 + 0.25 * 20) / 0.6)


def test_blend_list_follows_weight_order():
    weights = EnsembleWeights({"a": 0.75, "b": 0.25})
    points = blend([[10.0] * 3, [20.0] * 3], weights)
    assert [p.predicted_quantity for p in points] == pytest.approx([12.5] * 3)


def test_agreeing_components_give_top_confidence_that_decays():
    horizon = 20
    points = blend({"temporal": [50.0] * horizon, "product": [50.0] * horizon}, EnsembleWeights.priors())
    assert points[0].confidence == pytest.approx(0.95)
    assert band_width(points[0].confidence) == pytest.approx(0.10)
    assert points[0].upper_bound == pytest.approx(55.0)
    assert points[-1].confidence == pytest.approx(0.95 - 0.3 * (horizon - 1) / horizon)
    confidences = [p.confidence for p in points]
    assert all(a >= b for a, b in zip(confidences, confidences[1:]))


def test_disagreement_lowers_confidence_to_floor():
    points = blend({"temporal": [0.0] * 3, "product": [100.0] * 3}, EnsembleWeights({"temporal": 1, "product": 1}))
    assert points[0].confidence == pytest.approx(0.5)
    assert band_width(points[0].confidence) == pytest.approx(0.15)


def test_band_width_is_clamped():
    assert band_width(0.3) == pytest.approx(0.15)
    assert band_width(1.0) == pytest.approx(0.10)
    assert band_width(0.725) == pytest.approx(0.125)


def test_blend_rejects_bad_input():
    with pytest.raises(ValueError):
        blend({"temporal": [1.0, 2.0], "product": [1.0]}, EnsembleWeights.priors())
    with pytest.raises(ValueError):
        blend({}, EnsembleWeights.priors())
    with pytest.raises(ValueError):
        blend({"unknown": [1.0]}, EnsembleWeights.priors())


def test_component_predictions(steady_history, rng, industrial_product):
    local = component_predictions(steady_history, 10, rng, industrial_product, include_external=False)
    assert set(local) == {"temporal", "product"}

    factors = [ExternalFactorSnapshot(date=date(2025, 3, i + 1), search_interest=80.0, sentiment=0.5)
               for i in range(10)]
    full = component_predictions(steady_history, 10, rng, industrial_product, factors)
    assert set(full) == {"temporal", "external", "product", "market"}
    assert all(len(c) == 10 and (c >= 0).all() for c in full.values())
    assert full["market"][0] == pytest.approx(100.0 * 1.05 * 1.06)


def test_weight_store_snapshots_are_stable(tmp_path):
    store = WeightStore()
    before = store.snapshot()
    store.replace(EnsembleWeights({"temporal": 0.5, "external": 0.2, "product": 0.2, "market": 0.1}))
    assert before == EnsembleWeights.priors()
    assert store.snapshot()["temporal"] == pytest.approx(0.5)
    assert store.version == 1

    path = tmp_path / "state.pkl"
    store.save(str(path), extra={"note": "x"})
    restored = WeightStore()
    payload = restored.load(str(path))
    assert payload["note"] == "x"
    assert restored.snapshot() == store.snapshot()
    assert restored.version == 1


def test_normalized_weights_rebuild_exactly():
    gen = np.random.default_rng(21)
    for _ in range(50):
        weights = EnsembleWeights(dict(zip(["temporal", "external", "product", "market"], gen.random(4) + 1e-3)))
        rebuilt = EnsembleWeights(dict(weights.items()))
        assert rebuilt == weights
        assert dict(rebuilt.items()) == dict(weights.items())


def test_adapt_weights_leaves_high_accuracy_alone():
    weights = EnsembleWeights.priors()
    assert adapt_weights(weights, 0.9, {"market": 0.95}) is weights


def test_adapt_weights_moves_mass_to_best_component():
    weights = EnsembleWeights.priors()
    accuracies = {"temporal": 0.6, "external": 0.5, "product": 0.55, "market": 0.7}

    low = adapt_weights(weights, 0.6, accuracies)
    medium = adapt_weights(weights, 0.8, accuracies)

    _assert_valid(low)
    _assert_valid(medium)
    assert low["market"] == pytest.approx(0.15 + 50 * 0.2 * 0.001)
    assert medium["market"] == pytest.approx(0.15 + 50 * 0.1 * 0.001)
    assert low["temporal"] < medium["temporal"] < weights["temporal"]


def test_adapt_weights_invariants_hold_for_random_inputs():
    gen = np.random.default_rng(11)
    names = ["temporal", "external", "product", "market"]
    for _ in range(50):
        weights = EnsembleWeights(dict(zip(names, gen.random(4) + 1e-3)))
        accuracies = dict(zip(names, gen.random(4)))
        adapted = adapt_weights(weights, float(gen.random()), accuracies,
                                epochs=int(gen.integers(1, 200)), learning_rate=float(gen.random()))
        _assert_valid(adapted)


def test_adapt_weights_without_validation_data():
    weights = EnsembleWeights.priors()
    assert adapt_weights(weights, None, {}) is weights


def test_cross_validate_on_synthetic_catalog(synthetic_provider):
    training_set = [(p, synthetic_provider.get_sales_history(p.id)) for p in synthetic_provider.list_products()]
    result = cross_validate(training_set, EnsembleWeights.priors(), folds=5, rng=np.random.default_rng(0))
    assert result["folds"] == 5 * len(training_set)
    assert 0.0 <= result["average_accuracy"] <= 1.0
    assert set(result["component_accuracies"]) == {"temporal", "external", "product", "market"}


def test_cross_validate_skips_short_histories(industrial_product):
    result = cross_validate([(industrial_product, [5.0] * 4)], EnsembleWeights.priors())
    assert result["folds"] == 0
    assert result["average_accuracy"] is None


def test_explain_weights():
    text = explain_weights(EnsembleWeights.priors())
    assert "temporal 35%" in text
    assert "Dominant component: temporal" in text
