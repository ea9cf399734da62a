"""
Joint segmentation model for paradigm prediction.

Includes:
- Span n-gram featurizer
- Two-phase feature indexing (builder during training, frozen lookup at prediction)
- Semi-Markov segmentation lattice over a base form (forward-backward, Viterbi)
- Joint predictor choosing which extracted rules to apply and where
"""

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .changes import AnchoredChange, ChangeFilter, ChangeInventory, MorphChange, Span, build_predicted_instance
from .config import MAX_NGRAM_ORDER, JointModelConfig
from .preprocessing import Attributes, Form, ParadigmInstance

logger = logging.getLogger(__name__)

UNK_FEAT = "UNK_FEAT"

# ==============================================================================
# Span Features
# ==============================================================================

_BEFORE_NAMES = ("BUNI", "BBI", "BTRI", "BFOUR")
_AFTER_NAMES = ("AUNI", "ABI", "ATRI", "AFOUR")


class SpanFeaturizer:
    """
    N-gram context features around a span.

    For each offset up to ``max_distance`` before the span start, emits the
    n-grams starting there (reading rightwards, possibly into the span); for
    each offset after the span end, the n-grams ending there.
    """

    def __init__(self, ngram_order: int = 4, max_distance: int = 5):
        if ngram_order > MAX_NGRAM_ORDER:
            raise ValueError(f"N-gram order {ngram_order} not supported (max {MAX_NGRAM_ORDER})")
        self.ngram_order = ngram_order
        self.max_distance = max_distance

    def features(self, span: Span) -> List[str]:
        form = span.form
        features = []
        for i in range(span.start - self.max_distance, span.start):
            offset = i - span.start
            for k in range(self.ngram_order):
                gram = "".join(str(form.symbol_at_or_boundary(i + d)) for d in range(k + 1))
                features.append(f"{_BEFORE_NAMES[k]}:{offset}-{gram}")
        for i in range(span.end, span.end + self.max_distance):
            offset = i - span.end
            for k in range(self.ngram_order):
                gram = "".join(str(form.symbol_at_or_boundary(i - d)) for d in range(k, -1, -1))
                features.append(f"{_AFTER_NAMES[k]}:{offset}-{gram}")
        return features


# ==============================================================================
# Feature Indexing
# ==============================================================================

class FeatureVocabulary:
    """Frozen feature -> index table. Unseen features map to ``UNK_FEAT`` (index 0)."""

    def __init__(self, features: Sequence[str]):
        if not features or features[0] != UNK_FEAT:
            raise ValueError(f"Feature list must start with {UNK_FEAT}")
        self._features: Tuple[str, ...] = tuple(features)
        self._index: Dict[str, int] = {feat: i for i, feat in enumerate(self._features)}

    def lookup(self, feature: str) -> int:
        return self._index.get(feature, 0)

    @property
    def features(self) -> Tuple[str, ...]:
        return self._features

    def __contains__(self, feature):
        return feature in self._index

    def __len__(self):
        return len(self._features)


class FeatureIndexer:
    """Assigns indices to features as they are first seen during training."""

    def __init__(self):
        self._index: Dict[str, int] = {UNK_FEAT: 0}

    def index(self, feature: str) -> int:
        idx = self._index.get(feature)
        if idx is None:
            idx = len(self._index)
            self._index[feature] = idx
        return idx

    def __len__(self):
        return len(self._index)

    def freeze(self) -> FeatureVocabulary:
        return FeatureVocabulary(list(self._index))


# ==============================================================================
# Segmentation Lattice
# ==============================================================================

def _index_features(features: Iterable[str], index_fn: Callable[[str], int]) -> np.ndarray:
    return np.array([index_fn(f) for f in features], dtype=np.int64)


class SegmentationLattice:
    """
    All segmentations of one base form into applied changes and preserved
    symbols.

    Fencepost ``i`` carries the score of preserving symbol ``i``; the extra
    fencepost ``n`` after the last symbol has no features. A change over
    ``[s, e)`` also consumes the preserve score at ``e``, so two changes can
    never touch. ``alpha`` and ``beta`` have ``n + 2`` entries; the log
    partition function is ``alpha[n + 1] == beta[0]``.
    """

    def __init__(
        self,
        base_form: Form,
        candidates: List[AnchoredChange],
        change_features: List[np.ndarray],
        preserve_features: List[np.ndarray],
        gold_changes: Optional[Sequence[AnchoredChange]] = None
    ):
        n = len(base_form)
        if len(preserve_features) != n + 1:
            raise ValueError(f"Expected {n + 1} preserve feature sets, got {len(preserve_features)}")
        self.base_form = base_form
        self.candidates = candidates
        self.change_features = change_features
        self.preserve_features = preserve_features
        self.gold_changes = None if gold_changes is None else list(gold_changes)

        # Candidate indices by end / start fencepost, in (start, candidate) order
        self.by_end: List[List[int]] = [[] for _ in range(n + 1)]
        self.by_start: List[List[int]] = [[] for _ in range(n + 1)]
        for k in sorted(range(len(candidates)), key=lambda k: (candidates[k].start, k)):
            self.by_end[candidates[k].end].append(k)
            self.by_start[candidates[k].start].append(k)

        gold = set(self.gold_changes or ())
        self.gold_on = np.array([c in gold for c in candidates], dtype=bool)
        self.gold_preserved = np.ones(n + 1, dtype=bool)
        for change in gold:
            # The symbol right after a change is scored with the change
            self.gold_preserved[change.start:change.end + 1] = False
        self.gold_preserved[n] = True
        if gold and int(self.gold_on.sum()) != len(gold):
            logger.warning("Some gold changes for %s are not among its candidates", base_form)

    def __len__(self):
        return len(self.base_form)

    # -- scores ---------------------------------------------------------------

    def change_scores(self, weights: np.ndarray) -> np.ndarray:
        return np.array([weights[feats].sum() for feats in self.change_features], dtype=float)

    def preserve_scores(self, weights: np.ndarray) -> np.ndarray:
        return np.array([weights[feats].sum() for feats in self.preserve_features], dtype=float)

    def _forward(self, cs: np.ndarray, ps: np.ndarray, use_max: bool) -> np.ndarray:
        combine = np.maximum if use_max else np.logaddexp
        n = len(self)
        alpha = np.full(n + 2, -np.inf)
        alpha[0] = 0.0
        for i in range(n + 1):
            for k in self.by_end[i]:
                alpha[i + 1] = combine(alpha[i + 1], alpha[self.candidates[k].start] + cs[k] + ps[i])
            alpha[i + 1] = combine(alpha[i + 1], alpha[i] + ps[i])
        return alpha

    def _backward(self, cs: np.ndarray, ps: np.ndarray, use_max: bool) -> np.ndarray:
        combine = np.maximum if use_max else np.logaddexp
        n = len(self)
        beta = np.full(n + 2, -np.inf)
        beta[n + 1] = 0.0
        for i in range(n, -1, -1):
            for k in self.by_start[i]:
                end = self.candidates[k].end
                beta[i] = combine(beta[i], beta[end + 1] + cs[k] + ps[end])
            beta[i] = combine(beta[i], beta[i + 1] + ps[i])
        return beta

    def forward(self, weights: np.ndarray, use_max: bool = False) -> np.ndarray:
        return self._forward(self.change_scores(weights), self.preserve_scores(weights), use_max)

    def backward(self, weights: np.ndarray, use_max: bool = False) -> np.ndarray:
        return self._backward(self.change_scores(weights), self.preserve_scores(weights), use_max)

    def log_partition(self, weights: np.ndarray) -> float:
        return float(self.forward(weights)[-1])

    # -- training -------------------------------------------------------------

    def _gold_score(self, cs: np.ndarray, ps: np.ndarray) -> float:
        score = 0.0
        for k in np.flatnonzero(self.gold_on):
            score += cs[k] + ps[self.candidates[k].end]
        score += ps[:len(self)][self.gold_preserved[:len(self)]].sum()
        return float(score)

    def log_likelihood(self, weights: np.ndarray) -> float:
        if self.gold_changes is None:
            raise ValueError(f"No gold segmentation for {self.base_form}")
        cs, ps = self.change_scores(weights), self.preserve_scores(weights)
        return self._gold_score(cs, ps) - float(self._forward(cs, ps, False)[-1])

    def value_and_gradient(self, weights: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        Log-likelihood of the gold segmentation and its gradient.

        Gradient is empirical feature counts minus expected counts, with the
        expected count of a segment ``exp(alpha[start] + score + beta[end] - Z)``.
        """
        if self.gold_changes is None:
            raise ValueError(f"No gold segmentation for {self.base_form}")
        cs, ps = self.change_scores(weights), self.preserve_scores(weights)
        alpha = self._forward(cs, ps, False)
        beta = self._backward(cs, ps, False)
        log_z = alpha[-1]
        gradient = np.zeros_like(weights, dtype=float)

        for k, change in enumerate(self.candidates):
            start, end = change.start, change.end
            expected = np.exp(alpha[start] + cs[k] + ps[end] + beta[end + 1] - log_z)
            scale = (1.0 if self.gold_on[k] else 0.0) - expected
            np.add.at(gradient, self.change_features[k], scale)
            np.add.at(gradient, self.preserve_features[end], scale)

        for i in range(len(self)):
            expected = np.exp(alpha[i] + ps[i] + beta[i + 1] - log_z)
            scale = (1.0 if self.gold_preserved[i] else 0.0) - expected
            np.add.at(gradient, self.preserve_features[i], scale)

        return self._gold_score(cs, ps) - float(log_z), gradient

    # -- decoding -------------------------------------------------------------

    def viterbi(self, weights: np.ndarray) -> Tuple[List[AnchoredChange], float]:
        """
        Best-scoring set of applied changes and its score.

        Among equal-scoring changes ending at the same fencepost the first in
        (start, candidate order) wins, and a change beats preserving on a tie.
        """
        if not self.candidates:
            score = float(self.preserve_scores(weights).sum()) if len(weights) else 0.0
            return [], score

        cs, ps = self.change_scores(weights), self.preserve_scores(weights)
        alpha = self._forward(cs, ps, True)
        prediction = []
        i = len(self) + 1
        while i > 0:
            best, best_score = None, -np.inf
            for k in self.by_end[i - 1]:
                score = alpha[self.candidates[k].start] + cs[k] + ps[i - 1]
                if score > best_score:
                    best, best_score = k, score
            if best_score < alpha[i - 1] + ps[i - 1]:
                best = None
            if best is None:
                i -= 1
            else:
                prediction.append(self.candidates[best])
                i = self.candidates[best].start
        prediction.reverse()
        return prediction, float(alpha[-1])

    def decode(self, weights: np.ndarray) -> List[AnchoredChange]:
        return self.viterbi(weights)[0]

    def predicts_correctly(self, weights: np.ndarray) -> bool:
        return set(self.decode(weights)) == set(self.gold_changes or ())


# ==============================================================================
# Joint Predictor
# ==============================================================================

class SlotKeyMismatchError(ValueError):
    """Prediction requested for slot keys the inventory was not trained on."""


@dataclass
class ParadigmHypothesis:
    predicted_instance: ParadigmInstance
    applied_changes: List[AnchoredChange] = field(default_factory=list)
    score: float = 0.0


class JointInflectionPredictor:
    """
    Log-linear semi-Markov model over rule applications.

    Candidate changes for a base form are every inventory rule at every span
    its filter pattern matches. Training maximizes the conditional likelihood
    of the changes extracted from each training paradigm; prediction applies
    the Viterbi-best set of changes to the base form.
    """

    def __init__(self, inventory: ChangeInventory, config: Optional[JointModelConfig] = None):
        for paradigm in inventory.analyzed:
            changes = sorted(paradigm.changes, key=lambda c: (c.start, c.end))
            for left, right in zip(changes, changes[1:]):
                if left.conflicts_with(right):
                    raise ValueError(
                        f"Changes {left} and {right} of {paradigm.base_form} touch; "
                        "build the inventory with merge_touching=True"
                    )
        self.inventory = inventory
        self.config = config or JointModelConfig()
        self.rule_featurizer = SpanFeaturizer(self.config.rule_ngram_order, self.config.rule_max_distance)
        self.preserve_featurizer = SpanFeaturizer(self.config.preserve_ngram_order, self.config.preserve_max_distance)
        self.rule_index: Dict[MorphChange, int] = {rule: i for i, rule in enumerate(inventory.rules)}
        self.change_filter = ChangeFilter(inventory, self.config.use_match_filtering)

        self.feature_indexer = FeatureIndexer()
        self.vocabulary: Optional[FeatureVocabulary] = None
        self.weights: Optional[np.ndarray] = None
        self.train_lattices: List[SegmentationLattice] = []
        self._fitted = False

    @property
    def num_features(self) -> int:
        return len(self.vocabulary) if self.vocabulary is not None else len(self.feature_indexer)

    def candidate_changes(self, base_form: Form) -> List[AnchoredChange]:
        candidates = []
        for rule in self.rule_index:
            for span in self.change_filter.find_matching_spans(base_form, rule):
                candidates.append(AnchoredChange(rule, span))
        return candidates

    def _change_feature_strings(self, change: AnchoredChange) -> List[str]:
        prefixes = []
        if self.config.use_change_features:
            prefixes.append(f"CHANGE-{self.rule_index[change.change]}:")
        if self.config.use_factored_features:
            for attrs, rewrite in change.change.rewrite.items():
                prefixes.append(f"{attrs}:{change.change.base}=>{rewrite}:")
        span_features = self.rule_featurizer.features(change.span)
        return [prefix + feat for prefix in prefixes for feat in span_features]

    def _preserve_feature_strings(self, base_form: Form, i: int) -> List[str]:
        mode = self.config.preserve_features
        if mode == "indicator":
            return ["PRESERVE"]
        if mode == "simple":
            return [f"PRESERVE:{base_form[i]}"]
        if mode == "all":
            prefix = f"PRESERVE:{base_form[i]}"
            return [prefix + feat for feat in self.preserve_featurizer.features(Span(base_form, i, i + 1))]
        return []

    def build_lattice(
        self,
        base_form: Form,
        gold_changes: Optional[Sequence[AnchoredChange]] = None
    ) -> SegmentationLattice:
        """
        Featurize every candidate over ``base_form``.

        Before ``fit`` has frozen the vocabulary, new features are indexed;
        afterwards unseen features fall back to ``UNK_FEAT``.
        """
        index_fn = self.feature_indexer.index if self.vocabulary is None else self.vocabulary.lookup
        candidates = self.candidate_changes(base_form)
        change_features = [_index_features(self._change_feature_strings(c), index_fn) for c in candidates]
        preserve_features = [
            _index_features(self._preserve_feature_strings(base_form, i), index_fn)
            for i in range(len(base_form))
        ]
        preserve_features.append(np.zeros(0, dtype=np.int64))
        return SegmentationLattice(base_form, candidates, change_features, preserve_features, gold_changes)

    def fit(self, minimize: Optional[Callable] = None) -> "JointInflectionPredictor":
        """
        Featurize the training paradigms and fit the weights.

        Args:
            minimize: ``minimize(initial_weights, oracle) -> weights``; defaults
                to L-BFGS with the configured iteration budget

        Returns:
            self
        """
        from .training import lbfgs_minimize, make_objective

        self.train_lattices = []
        for i, paradigm in enumerate(self.inventory.analyzed):
            if i % 200 == 0:
                logger.info("Featurized %d / %d", i, len(self.inventory.analyzed))
            self.train_lattices.append(self.build_lattice(paradigm.base_form, paradigm.changes))
        self.vocabulary = self.feature_indexer.freeze()

        num_candidates = [len(lattice.candidates) for lattice in self.train_lattices]
        logger.info(
            "%d training lattices, %d features, %d rules; candidates per form: avg %.2f, max %d",
            len(self.train_lattices), len(self.vocabulary), len(self.rule_index),
            float(np.mean(num_candidates)) if num_candidates else 0.0, max(num_candidates, default=0)
        )

        if not self.rule_index:
            logger.info("No rules extracted; every prediction preserves the base form")
            self.weights = np.zeros(0)
        else:
            if minimize is None:
                minimize = partial(
                    lbfgs_minimize,
                    max_iterations=self.config.max_iterations,
                    tolerance=self.config.tolerance,
                    history_size=self.config.history_size
                )
            oracle = make_objective(self.train_lattices, self.config.l2_reg)
            self.weights = np.asarray(minimize(np.zeros(len(self.vocabulary)), oracle), dtype=float)
        self._fitted = True
        return self

    def predict(self, base_form: Form, slot_keys: Iterable[Attributes]) -> ParadigmHypothesis:
        """
        Predict the full paradigm of ``base_form``.

        Raises:
            SlotKeyMismatchError: if ``slot_keys`` differ from the training slot keys
        """
        slot_keys = tuple(sorted(slot_keys))
        if self.inventory.slot_keys is not None and set(slot_keys) != self.inventory.slot_keys:
            raise SlotKeyMismatchError(
                f"Requested slots {[str(a) for a in slot_keys]} do not match the "
                f"{len(self.inventory.slot_keys)} training slots"
            )
        assert self._fitted, "Call fit() first"

        if not self.rule_index:
            return ParadigmHypothesis(build_predicted_instance(base_form, slot_keys, []), [], 0.0)

        lattice = self.build_lattice(base_form)
        changes, score = lattice.viterbi(self.weights)
        return ParadigmHypothesis(build_predicted_instance(base_form, slot_keys, changes), changes, score)

    def predict_all(self, instances: Sequence[ParadigmInstance]) -> List[ParadigmHypothesis]:
        return [self.predict(inst.base_form, inst.slot_keys) for inst in instances]

    def training_accuracy(self) -> float:
        assert self._fitted, "Call fit() first"
        if not self.train_lattices:
            return 0.0
        correct = sum(lattice.predicts_correctly(self.weights) for lattice in self.train_lattices)
        return correct / len(self.train_lattices)
