"""
Hyperparameters for rule extraction and the joint segmentation model.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict

from .alignment import MAX_CONSISTENT_ITERATIONS, SWITCH_COST, AlignmentType

PRESERVE_FEATURE_MODES = ("all", "simple", "indicator", "none")
MAX_NGRAM_ORDER = 4


@dataclass
class JointModelConfig:
    # Extraction
    alignment_type: AlignmentType = AlignmentType.CONSISTENT
    switch_cost: float = SWITCH_COST
    max_alignment_iterations: int = MAX_CONSISTENT_ITERATIONS
    merge_touching_spans: bool = True
    use_match_filtering: bool = True

    # Features
    use_change_features: bool = True
    use_factored_features: bool = True
    preserve_features: str = "all"
    rule_ngram_order: int = 4
    rule_max_distance: int = 5
    preserve_ngram_order: int = 4
    preserve_max_distance: int = 5

    # Optimization
    l2_reg: float = 1e-5
    max_iterations: int = 30
    history_size: int = 10
    tolerance: float = 1e-4

    def __post_init__(self):
        if isinstance(self.alignment_type, str):
            self.alignment_type = AlignmentType(self.alignment_type)
        if self.preserve_features not in PRESERVE_FEATURE_MODES:
            raise ValueError(
                f"preserve_features must be one of {PRESERVE_FEATURE_MODES}, got {self.preserve_features!r}"
            )
        for name in ("rule_ngram_order", "preserve_ngram_order"):
            order = getattr(self, name)
            if not 0 <= order <= MAX_NGRAM_ORDER:
                raise ValueError(f"{name} must be between 0 and {MAX_NGRAM_ORDER}, got {order}")
        for name in ("rule_max_distance", "preserve_max_distance"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        for name in ("max_alignment_iterations", "max_iterations", "history_size"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if not self.merge_touching_spans:
            # The lattice cannot represent two touching changes
            raise ValueError("The joint model requires merge_touching_spans=True")
        if self.l2_reg < 0:
            raise ValueError("l2_reg must be non-negative")
        if self.tolerance <= 0:
            raise ValueError("tolerance must be positive")

    def to_dict(self) -> Dict[str, Any]:
        params = asdict(self)
        params["alignment_type"] = self.alignment_type.value
        return params

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> "JointModelConfig":
        return cls(**params)
