"""Tests for ``paradigm_inflect.evaluation``: accuracy, edit distance, change P/R/F1."""

import pytest

from paradigm_inflect.changes import AnchoredChange, MorphChange, Span
from paradigm_inflect.evaluation import (
    compute_change_prf,
    compute_cv_summary,
    cv_results_frame,
    evaluate_changes,
    evaluate_predictions,
)
from paradigm_inflect.preprocessing import STAR, Form, ParadigmInstance

from conftest import PAST, PROG, make_paradigm


class TestEvaluatePredictions:
    def test_all_correct(self):
        gold = [make_paradigm("walk", "walked", "walking")]
        results = evaluate_predictions(gold, gold)
        assert results["paradigm_accuracy"] == 1.0
        assert results["form_accuracy"] == 1.0
        assert results["edit_distance"] == 0

    def test_partial_credit(self):
        gold = [make_paradigm("bake", "baked", "baking")]
        pred = [make_paradigm("bake", "baked", "bakeing")]
        results = evaluate_predictions(pred, gold)
        assert results["paradigm_accuracy"] == 0.0
        assert results["form_accuracy"] == 0.5
        assert results["edit_distance"] == 1
        assert results["per_paradigm"][0]["wrong_slots"] == [str(PROG)]

    def test_any_variant_counts(self):
        gold = [ParadigmInstance(Form("dream"), {PAST: [Form("dreamed"), Form("dreamt")]})]
        pred = [ParadigmInstance(Form("dream"), {PAST: Form("dreamt")})]
        assert evaluate_predictions(pred, gold)["form_accuracy"] == 1.0

    def test_star_slots(self):
        gold = [
            ParadigmInstance(Form("must"), {PAST: STAR, PROG: Form("musting")}),
            make_paradigm("walk", "walked", "walking"),
        ]
        pred = [
            make_paradigm("must", "musted", "musting"),
            make_paradigm("walk", "walked", "walkinging"),
        ]
        results = evaluate_predictions(pred, gold)
        # Starred paradigm only counts when stars are allowed
        assert results["n_paradigms"] == 1
        assert results["paradigm_accuracy"] == 0.0
        assert results["paradigm_accuracy_allow_stars"] == 0.5
        assert results["n_forms"] == 3
        assert results["forms_correct"] == 2
        assert results["form_accuracy_allow_stars"] == 0.75

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            evaluate_predictions([], [make_paradigm("walk", "walked", "walking")])


class TestChangeMetrics:
    RULE = MorphChange(Form(""), {PAST: Form("ed")})

    def anchored(self, word, start, end):
        return AnchoredChange(self.RULE, Span(Form(word), start, end))

    def test_prf(self):
        pred = {self.anchored("walk", 4, 4), self.anchored("walk", 0, 0)}
        gold = {self.anchored("walk", 4, 4)}
        p, r, f1, tp, fp, fn = compute_change_prf(pred, gold)
        assert (tp, fp, fn) == (1, 1, 0)
        assert p == 0.5 and r == 1.0
        assert f1 == pytest.approx(2 / 3)

    def test_empty_sets_are_perfect(self):
        p, r, f1, *_ = compute_change_prf(set(), set())
        assert (p, r, f1) == (1.0, 1.0, 1.0)

    def test_micro_average(self):
        metrics = evaluate_changes(
            [[self.anchored("walk", 4, 4)], []],
            [[self.anchored("walk", 4, 4)], [self.anchored("talk", 4, 4)]],
        )
        assert metrics["tp"] == 1 and metrics["fn"] == 1
        assert metrics["recall"] == 0.5


class TestCVSummary:
    FOLDS = [
        {"fold": 1, "paradigm_accuracy": 0.5, "form_accuracy": 0.75, "change_metrics": {"f1": 0.6}},
        {"fold": 2, "paradigm_accuracy": 1.0, "form_accuracy": 1.0, "change_metrics": {"f1": 1.0}},
    ]

    def test_summary(self):
        summary = compute_cv_summary(self.FOLDS)
        assert summary["paradigm_accuracy_mean"] == pytest.approx(0.75)
        assert summary["paradigm_accuracy_std"] == pytest.approx(0.25)
        assert summary["change_f1_mean"] == pytest.approx(0.8)

    def test_frame(self):
        frame = cv_results_frame(self.FOLDS)
        assert list(frame["fold"]) == [1, 2]
        assert list(frame["change_f1"]) == [0.6, 1.0]
