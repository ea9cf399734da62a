"""
Evaluation utilities for paradigm prediction.

Metrics:
- Paradigm exact match (all slots correct), with and without unattested slots
- Form accuracy, with and without unattested slots
- Edit distance to the closest gold variant
- Change precision / recall / F1
"""

from typing import Any, Dict, Iterable, List, Sequence, Set, Tuple

import numpy as np
import pandas as pd

from .alignment import edit_distance
from .changes import AnchoredChange
from .preprocessing import ParadigmInstance


# ==============================================================================
# Change Metrics
# ==============================================================================

def compute_change_prf(
    pred_changes: Set[AnchoredChange],
    gold_changes: Set[AnchoredChange]
) -> Tuple[float, float, float, int, int, int]:
    """
    Compute precision, recall, F1 from sets of anchored changes.

    Args:
        pred_changes: Predicted changes
        gold_changes: Changes extracted from the gold paradigm

    Returns:
        Tuple of (precision, recall, f1, tp, fp, fn)
    """
    pred_changes, gold_changes = set(pred_changes), set(gold_changes)
    tp = len(pred_changes & gold_changes)
    fp = len(pred_changes - gold_changes)
    fn = len(gold_changes - pred_changes)
    metrics = aggregate_change_metrics(tp, fp, fn)
    return metrics["precision"], metrics["recall"], metrics["f1"], tp, fp, fn


def aggregate_change_metrics(all_tp: int, all_fp: int, all_fn: int) -> Dict[str, float]:
    """Micro-averaged precision / recall / F1 from aggregated counts."""
    if all_tp + all_fp == 0:
        precision = 1.0 if all_tp + all_fn == 0 else 0.0
    else:
        precision = all_tp / (all_tp + all_fp)

    if all_tp + all_fn == 0:
        recall = 1.0 if all_tp + all_fp == 0 else 0.0
    else:
        recall = all_tp / (all_tp + all_fn)

    if precision + recall == 0:
        f1 = 1.0 if (all_tp + all_fp + all_fn) == 0 else 0.0
    else:
        f1 = 2 * precision * recall / (precision + recall)

    return {
        "precision": precision,
        "recall": recall,
        "f1": f1,
        "tp": all_tp,
        "fp": all_fp,
        "fn": all_fn
    }


def evaluate_changes(
    pred_change_lists: Sequence[Iterable[AnchoredChange]],
    gold_change_lists: Sequence[Iterable[AnchoredChange]]
) -> Dict[str, float]:
    """Micro-averaged change P/R/F1 over paired per-paradigm change lists."""
    all_tp = all_fp = all_fn = 0
    for pred, gold in zip(pred_change_lists, gold_change_lists):
        _, _, _, tp, fp, fn = compute_change_prf(set(pred), set(gold))
        all_tp += tp
        all_fp += fp
        all_fn += fn
    return aggregate_change_metrics(all_tp, all_fp, all_fn)


# ==============================================================================
# Full Evaluation
# ==============================================================================

def evaluate_predictions(
    predicted: Sequence[ParadigmInstance],
    gold: Sequence[ParadigmInstance]
) -> Dict[str, Any]:
    """
    Compare predicted paradigms against gold ones slot by slot.

    A predicted form is correct if it equals any gold variant. Unattested
    (STAR) gold slots count as correct in the "allow stars" totals and are
    left out of the others; paradigms with any STAR slot are left out of the
    strict paradigm accuracy.

    Args:
        predicted: Predicted paradigms
        gold: Gold paradigms, aligned with ``predicted``

    Returns:
        Evaluation results dict
    """
    if len(predicted) != len(gold):
        raise ValueError(f"Got {len(predicted)} predictions for {len(gold)} gold paradigms")

    results = {
        "n_paradigms": 0,
        "paradigms_correct": 0,
        "n_paradigms_allow_stars": len(gold),
        "paradigms_correct_allow_stars": 0,
        "n_forms": 0,
        "forms_correct": 0,
        "n_forms_allow_stars": 0,
        "forms_correct_allow_stars": 0,
        "edit_distance": 0,
        "per_paradigm": []
    }

    for pred, gold_inst in zip(predicted, gold):
        all_correct = True
        has_stars = False
        distance = 0
        wrong_slots = []

        for attrs in gold_inst.slot_keys:
            gold_forms = gold_inst.all_inflected_forms(attrs)
            if gold_inst.is_star(attrs):
                has_stars = True
                correct = True
            else:
                pred_form = pred.inflected_form(attrs)
                correct = pred_form in gold_forms
                distance += min(edit_distance(pred_form, g) for g in gold_forms)
                results["forms_correct"] += int(correct)
                results["n_forms"] += 1
                if not correct:
                    wrong_slots.append(str(attrs))
            all_correct = all_correct and correct
            results["forms_correct_allow_stars"] += int(correct)
            results["n_forms_allow_stars"] += 1

        if not has_stars:
            results["paradigms_correct"] += int(all_correct)
            results["n_paradigms"] += 1
        results["paradigms_correct_allow_stars"] += int(all_correct)
        results["edit_distance"] += distance

        results["per_paradigm"].append({
            "base_form": str(gold_inst.base_form),
            "correct": all_correct,
            "has_stars": has_stars,
            "edit_distance": distance,
            "wrong_slots": wrong_slots
        })

    def rate(num, den):
        return num / den if den > 0 else 0

    results["paradigm_accuracy"] = rate(results["paradigms_correct"], results["n_paradigms"])
    results["paradigm_accuracy_allow_stars"] = rate(
        results["paradigms_correct_allow_stars"], results["n_paradigms_allow_stars"]
    )
    results["form_accuracy"] = rate(results["forms_correct"], results["n_forms"])
    results["form_accuracy_allow_stars"] = rate(results["forms_correct_allow_stars"], results["n_forms_allow_stars"])
    return results


def print_evaluation_summary(results: Dict[str, Any], name: str = "Model"):
    """Print formatted evaluation summary."""
    print(f"\n{'=' * 60}")
    print(f"Evaluation Results: {name}")
    print(f"{'=' * 60}")
    print(f"Paradigms correct: {results['paradigm_accuracy']:.4f} "
          f"({results['paradigms_correct']}/{results['n_paradigms']})")
    print(f"Paradigms correct (allowing stars): {results['paradigm_accuracy_allow_stars']:.4f} "
          f"({results['paradigms_correct_allow_stars']}/{results['n_paradigms_allow_stars']})")
    print(f"Forms correct: {results['form_accuracy']:.4f} ({results['forms_correct']}/{results['n_forms']})")
    print(f"Forms correct (allowing stars): {results['form_accuracy_allow_stars']:.4f} "
          f"({results['forms_correct_allow_stars']}/{results['n_forms_allow_stars']})")
    print(f"Total edit distance: {results['edit_distance']}")
    if "change_metrics" in results:
        cm = results["change_metrics"]
        print(f"\nChange P/R/F1: {cm['precision']:.4f} / {cm['recall']:.4f} / {cm['f1']:.4f}")
    print(f"{'=' * 60}\n")


# ==============================================================================
# Cross-Validation Utilities
# ==============================================================================

def compute_cv_summary(fold_results: List[Dict]) -> Dict[str, Any]:
    """
    Compute summary statistics across CV folds.

    Args:
        fold_results: List of per-fold result dicts

    Returns:
        Summary dict with means and stds
    """
    metrics = {}

    for key in ["paradigm_accuracy", "paradigm_accuracy_allow_stars", "form_accuracy", "edit_distance"]:
        values = [r[key] for r in fold_results if key in r]
        if values:
            metrics[f"{key}_mean"] = float(np.mean(values))
            metrics[f"{key}_std"] = float(np.std(values))

    f1s = [r["change_metrics"]["f1"] for r in fold_results if "change_metrics" in r]
    if f1s:
        metrics["change_f1_mean"] = float(np.mean(f1s))
        metrics["change_f1_std"] = float(np.std(f1s))

    return metrics


def cv_results_frame(fold_results: List[Dict]) -> pd.DataFrame:
    """One row per fold with its scalar metrics."""
    rows = []
    for r in fold_results:
        row = {k: v for k, v in r.items() if np.isscalar(v)}
        for k, v in r.get("change_metrics", {}).items():
            row[f"change_{k}"] = v
        rows.append(row)
    return pd.DataFrame(rows)


def print_cv_summary(fold_results: List[Dict], name: str = "Model"):
    """Print CV summary across folds."""
    print(f"\n{'=' * 60}")
    print(f"Cross-Validation Summary: {name}")
    print(f"{'=' * 60}")

    for i, r in enumerate(fold_results, 1):
        acc = r.get("paradigm_accuracy", 0)
        form_acc = r.get("form_accuracy", 0)
        print(f"  Fold {i}: Paradigms={acc:.4f}, Forms={form_acc:.4f}")

    summary = compute_cv_summary(fold_results)

    print(f"\nMean ± Std over {len(fold_results)} folds:")
    if "paradigm_accuracy_mean" in summary:
        print(f"  Paradigms: {summary['paradigm_accuracy_mean']:.4f} ± {summary['paradigm_accuracy_std']:.4f}")
    if "form_accuracy_mean" in summary:
        print(f"  Forms:     {summary['form_accuracy_mean']:.4f} ± {summary['form_accuracy_std']:.4f}")
    if "change_f1_mean" in summary:
        print(f"  Change F1: {summary['change_f1_mean']:.4f} ± {summary['change_f1_std']:.4f}")

    print(f"{'=' * 60}\n")
