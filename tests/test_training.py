"""Tests for ``paradigm_inflect.training``: objective, optimizer, checkpoints, CV."""

import numpy as np
import pytest

from paradigm_inflect.config import JointModelConfig
from paradigm_inflect.models import JointInflectionPredictor
from paradigm_inflect.preprocessing import Form
from paradigm_inflect.training import (
    check_gradient,
    generate_model_id,
    lbfgs_minimize,
    load_checkpoint,
    make_objective,
    run_kfold_cv,
    save_checkpoint,
    train_predictor,
)

from conftest import PAST, make_paradigm


def quadratic_oracle(target):
    def oracle(w):
        diff = w - target
        return float(diff @ diff), 2 * diff
    return oracle


class TestOptimization:
    def test_lbfgs_finds_quadratic_minimum(self):
        target = np.array([3.0, -1.0, 0.5])
        result = lbfgs_minimize(np.zeros(3), quadratic_oracle(target))
        assert isinstance(result, np.ndarray)
        np.testing.assert_allclose(result, target, atol=1e-4)

    def test_check_gradient_on_quadratic(self):
        target = np.array([1.0, 2.0])
        assert check_gradient(quadratic_oracle(target), np.array([0.3, -0.7])) < 1e-6

    def test_objective_gradient(self, verb_inventory):
        predictor = JointInflectionPredictor(verb_inventory, JointModelConfig(rule_max_distance=2, preserve_max_distance=1))
        lattices = [predictor.build_lattice(p.base_form, p.changes) for p in verb_inventory.analyzed]
        oracle = make_objective(lattices, l2_reg=0.1)
        weights = np.random.default_rng(0).normal(scale=0.1, size=len(predictor.feature_indexer))
        assert check_gradient(oracle, weights) < 1e-5

    def test_objective_is_negated_regularized_likelihood(self, verb_inventory):
        predictor = JointInflectionPredictor(verb_inventory)
        lattices = [predictor.build_lattice(p.base_form, p.changes) for p in verb_inventory.analyzed]
        weights = np.full(len(predictor.feature_indexer), 0.01)
        value, _ = make_objective(lattices, l2_reg=0.5)(weights)
        expected = -sum(lattice.log_likelihood(weights) for lattice in lattices) + 0.5 * weights @ weights
        assert value == pytest.approx(expected)


class TestCheckpoints:
    def test_model_id_is_deterministic(self):
        a = generate_model_id(l2_reg=1e-5, max_iterations=30)
        b = generate_model_id(max_iterations=30, l2_reg=1e-5)
        assert a == b
        assert len(a) == 16
        assert generate_model_id(l2_reg=1e-4) != a

    def test_round_trip(self, trained_predictor, slot_keys, tmp_path):
        model_id = generate_model_id(**trained_predictor.config.to_dict())
        save_checkpoint(trained_predictor, model_id, str(tmp_path))
        restored = load_checkpoint(model_id, str(tmp_path))
        assert restored is not None
        np.testing.assert_allclose(restored.weights, trained_predictor.weights)
        assert restored.config == trained_predictor.config
        for word in ("kick", "rake", "walk"):
            expected = trained_predictor.predict(Form(word), slot_keys)
            actual = restored.predict(Form(word), slot_keys)
            assert actual.predicted_instance == expected.predicted_instance
            assert actual.score == pytest.approx(expected.score)

    def test_missing_checkpoint(self, tmp_path):
        assert load_checkpoint("nope", str(tmp_path)) is None


class TestCrossValidation:
    def test_train_predictor(self, verb_paradigms, slot_keys):
        predictor = train_predictor(verb_paradigms)
        assert len(predictor.inventory) == 2
        assert predictor.predict(Form("walk"), slot_keys).predicted_instance.inflected_form(PAST) == Form("walked")

    def test_kfold(self, verb_paradigms):
        paradigms = verb_paradigms + [
            make_paradigm("kick", "kicked", "kicking"),
            make_paradigm("rake", "raked", "raking"),
        ]
        results = run_kfold_cv(paradigms, JointModelConfig(max_iterations=10), n_folds=2)
        assert [r["fold"] for r in results] == [1, 2]
        assert sum(r["val_size"] for r in results) == len(paradigms)
        for r in results:
            assert 0.0 <= r["paradigm_accuracy"] <= 1.0
            assert 0.0 <= r["change_metrics"]["f1"] <= 1.0
            assert "per_paradigm" not in r
