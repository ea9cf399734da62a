"""
Paradigm Inflection

Supervised prediction of full morphological paradigms: rewrite rules are
extracted from aligned training paradigms, and a semi-Markov log-linear
model learns which rules to apply to a new base form and where.
"""

from .preprocessing import (
    Symbol,
    Form,
    Attributes,
    ParadigmInstance,
    normalize_text,
    to_symbols,
    parse_paradigm_lines,
    read_paradigm_instances,
    read_wiktionary_instances,
    read_celex_instances,
    filter_noncanonical_instances,
    filter_star_instances,
    BEGIN, END,
    STAR
)

from .alignment import (
    Operation,
    EditCosts,
    Alignment,
    AlignmentError,
    AlignmentType,
    ParadigmAlignment,
    align,
    align_paradigm,
    edit_distance,
    ops_to_string,
    string_to_ops
)

from .changes import (
    Span,
    MorphChange,
    AnchoredChange,
    AnalyzedParadigm,
    ChangeInventory,
    PatternType,
    Pattern,
    ChangeFilter,
    collapse_spans,
    changed_spans,
    extract_changes,
    analyze_paradigm,
    inflect,
    build_predicted_instance
)

from .config import JointModelConfig

from .models import (
    SpanFeaturizer,
    FeatureIndexer,
    FeatureVocabulary,
    SegmentationLattice,
    ParadigmHypothesis,
    SlotKeyMismatchError,
    JointInflectionPredictor
)

from .evaluation import (
    compute_change_prf,
    evaluate_changes,
    evaluate_predictions,
    print_evaluation_summary,
    compute_cv_summary,
    cv_results_frame,
    print_cv_summary
)

from .training import (
    make_objective,
    lbfgs_minimize,
    check_gradient,
    train_predictor,
    save_checkpoint,
    load_checkpoint,
    generate_model_id,
    run_kfold_cv
)

__version__ = "0.1.0"
__author__ = "Anonymous"
