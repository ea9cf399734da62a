"""
Training utilities for the joint inflection model.

Includes:
- Regularized objective oracle over segmentation lattices
- L-BFGS minimization
- Empirical gradient check
- Checkpoint management
- Cross-validation
"""

import os
import json
import hashlib
import logging
import pickle
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch
from sklearn.model_selection import KFold

from .changes import ChangeInventory, analyze_paradigm
from .config import JointModelConfig
from .evaluation import evaluate_changes, evaluate_predictions
from .models import FeatureVocabulary, JointInflectionPredictor, SegmentationLattice
from .preprocessing import ParadigmInstance

logger = logging.getLogger(__name__)

Oracle = Callable[[np.ndarray], Tuple[float, np.ndarray]]

# ==============================================================================
# Objective
# ==============================================================================

def make_objective(lattices: Sequence[SegmentationLattice], l2_reg: float = 1e-5) -> Oracle:
    """
    Build the function/gradient oracle minimized during training.

    The value is the negated sum of gold log-likelihoods plus
    ``l2_reg * ||w||^2``.

    Args:
        lattices: Training lattices with gold segmentations
        l2_reg: L2 regularization strength

    Returns:
        ``oracle(weights) -> (value, gradient)``
    """
    def oracle(weights: np.ndarray) -> Tuple[float, np.ndarray]:
        objective = 0.0
        gradient = np.zeros_like(weights, dtype=float)
        num_correct = 0
        for lattice in lattices:
            ll, grad = lattice.value_and_gradient(weights)
            objective += ll
            gradient += grad
            num_correct += lattice.predicts_correctly(weights)
        objective -= l2_reg * float(weights @ weights)
        gradient -= 2 * l2_reg * weights
        logger.info(
            "Objective = %.6f, weight norm = %.4f, train accuracy = %d / %d",
            objective, float(np.linalg.norm(weights)), num_correct, len(lattices)
        )
        return -objective, -gradient

    return oracle


# ==============================================================================
# Optimization
# ==============================================================================

def lbfgs_minimize(
    initial_weights: np.ndarray,
    oracle: Oracle,
    max_iterations: int = 30,
    tolerance: float = 1e-4,
    history_size: int = 10
) -> np.ndarray:
    """
    Minimize an oracle with L-BFGS (strong Wolfe line search).

    The oracle supplies value and gradient directly; no autograd graph is built.

    Args:
        initial_weights: Starting point
        oracle: ``oracle(weights) -> (value, gradient)``
        max_iterations: Maximum optimizer iterations
        tolerance: Gradient / step tolerance for termination
        history_size: Number of curvature pairs kept

    Returns:
        Final weights as a numpy array
    """
    params = torch.tensor(np.asarray(initial_weights, dtype=np.float64), requires_grad=True)
    optimizer = torch.optim.LBFGS(
        [params],
        lr=1.0,
        max_iter=max_iterations,
        tolerance_grad=tolerance,
        tolerance_change=tolerance * 1e-3,
        history_size=history_size,
        line_search_fn="strong_wolfe"
    )

    def closure():
        optimizer.zero_grad()
        value, gradient = oracle(params.detach().numpy().copy())
        params.grad = torch.from_numpy(np.asarray(gradient, dtype=np.float64))
        return torch.tensor(value, dtype=torch.float64)

    optimizer.step(closure)
    return params.detach().numpy().copy()


def check_gradient(oracle: Oracle, weights: np.ndarray, step: float = 1e-5) -> float:
    """
    Compare the analytic gradient with central finite differences.

    Returns:
        Maximum absolute difference over all dimensions
    """
    weights = np.asarray(weights, dtype=float)
    _, analytic = oracle(weights)
    max_diff = 0.0
    for i in range(len(weights)):
        bumped = weights.copy()
        bumped[i] += step
        value_up, _ = oracle(bumped)
        bumped[i] -= 2 * step
        value_down, _ = oracle(bumped)
        empirical = (value_up - value_down) / (2 * step)
        max_diff = max(max_diff, abs(empirical - analytic[i]))
    return max_diff


# ==============================================================================
# Checkpoint Management
# ==============================================================================

def generate_model_id(**params) -> str:
    """Generate unique model ID from hyperparameters."""
    param_str = json.dumps(params, sort_keys=True)
    return hashlib.md5(param_str.encode()).hexdigest()[:16]


def save_checkpoint(
    predictor: JointInflectionPredictor,
    model_id: str,
    save_dir: str,
    extra_data: Optional[Dict] = None
) -> str:
    """Save weights, feature vocabulary, config and change inventory."""
    assert predictor.vocabulary is not None and predictor.weights is not None, "Call fit() first"
    model_path = os.path.join(save_dir, model_id)
    os.makedirs(model_path, exist_ok=True)

    torch.save(torch.from_numpy(predictor.weights), os.path.join(model_path, "weights.pt"))

    vocab_data = {
        "features": list(predictor.vocabulary.features),
        "config": predictor.config.to_dict()
    }
    if extra_data:
        vocab_data.update(extra_data)
    with open(os.path.join(model_path, "vocab.json"), "w", encoding="utf-8") as f:
        json.dump(vocab_data, f, ensure_ascii=False)

    with open(os.path.join(model_path, "inventory.pkl"), "wb") as f:
        pickle.dump(predictor.inventory, f)

    logger.info("Saved checkpoint to %s", model_path)
    return model_path


def load_checkpoint(model_id: str, save_dir: str) -> Optional[JointInflectionPredictor]:
    """Restore a fitted predictor, or None if no checkpoint exists."""
    model_path = os.path.join(save_dir, model_id)
    if not os.path.exists(model_path):
        return None

    weights = torch.load(os.path.join(model_path, "weights.pt"), map_location="cpu")
    with open(os.path.join(model_path, "vocab.json"), "r", encoding="utf-8") as f:
        vocab_data = json.load(f)
    with open(os.path.join(model_path, "inventory.pkl"), "rb") as f:
        inventory: ChangeInventory = pickle.load(f)

    predictor = JointInflectionPredictor(inventory, JointModelConfig.from_dict(vocab_data["config"]))
    predictor.vocabulary = FeatureVocabulary(vocab_data["features"])
    predictor.weights = weights.numpy().astype(float)
    predictor._fitted = True
    return predictor


# ==============================================================================
# Cross-Validation
# ==============================================================================

def train_predictor(
    instances: Sequence[ParadigmInstance],
    config: Optional[JointModelConfig] = None
) -> JointInflectionPredictor:
    """Extract rules from ``instances`` and fit a joint predictor on them."""
    config = config or JointModelConfig()
    inventory = ChangeInventory.build(
        instances,
        alignment_type=config.alignment_type,
        merge_touching=config.merge_touching_spans,
        switch_cost=config.switch_cost,
        max_iterations=config.max_alignment_iterations
    )
    return JointInflectionPredictor(inventory, config).fit()


def run_kfold_cv(
    instances: Sequence[ParadigmInstance],
    config: Optional[JointModelConfig] = None,
    n_folds: int = 5,
    random_state: int = 42
) -> List[Dict]:
    """
    Run k-fold cross-validation over paradigms.

    Args:
        instances: Paradigms over a single slot-key set
        config: Model configuration
        n_folds: Number of CV folds
        random_state: Random seed

    Returns:
        List of fold result dicts
    """
    kfold = KFold(n_splits=n_folds, shuffle=True, random_state=random_state)
    indices = np.arange(len(instances))

    fold_results = []
    for fold_idx, (train_idx, val_idx) in enumerate(kfold.split(indices), 1):
        logger.info("--- Fold %d/%d ---", fold_idx, n_folds)
        train = [instances[i] for i in train_idx]
        val = [instances[i] for i in val_idx]

        predictor = train_predictor(train, config)
        hypotheses = predictor.predict_all(val)
        results = evaluate_predictions([h.predicted_instance for h in hypotheses], val)

        # Changes are only meaningful against fully attested paradigms
        scored = [(h, inst) for h, inst in zip(hypotheses, val) if not inst.contains_star()]
        gold_changes = [
            analyze_paradigm(
                inst, predictor.config.alignment_type, predictor.config.merge_touching_spans,
                predictor.config.switch_cost, predictor.config.max_alignment_iterations
            ).changes
            for _, inst in scored
        ]
        change_metrics = evaluate_changes([h.applied_changes for h, _ in scored], gold_changes)

        fold_results.append({
            "fold": fold_idx,
            "train_size": len(train_idx),
            "val_size": len(val_idx),
            "num_rules": len(predictor.inventory),
            "train_accuracy": predictor.training_accuracy(),
            "change_metrics": change_metrics,
            **{k: v for k, v in results.items() if k != "per_paradigm"}
        })

    accuracies = [r["paradigm_accuracy"] for r in fold_results]
    logger.info("CV paradigm accuracy: %.4f ± %.4f", np.mean(accuracies), np.std(accuracies))
    return fold_results
