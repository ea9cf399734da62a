#!/usr/bin/env python
"""
Example: Paradigm Inflection

Demonstrates basic usage of the paradigm inflection toolkit.
"""

import logging

from paradigm_inflect import (
    Attributes,
    ChangeInventory,
    Form,
    JointInflectionPredictor,
    JointModelConfig,
    ParadigmInstance,
    align,
    align_paradigm,
    evaluate_predictions,
    ops_to_string,
    print_evaluation_summary
)


def make_paradigm(base, past, prog):
    return ParadigmInstance(Form(base), {
        Attributes.parse("tense=past"): Form(past),
        Attributes.parse("tense=prog"): Form(prog),
    })


def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("Paradigm Inflection Demo")
    print("=" * 60)

    train = [
        make_paradigm("walk", "walked", "walking"),
        make_paradigm("talk", "talked", "talking"),
        make_paradigm("jump", "jumped", "jumping"),
        make_paradigm("play", "played", "playing"),
        make_paradigm("bake", "baked", "baking"),
        make_paradigm("hike", "hiked", "hiking"),
    ]
    test = [
        make_paradigm("kick", "kicked", "kicking"),
        make_paradigm("rake", "raked", "raking"),
    ]

    # Step 1: Edit-distance alignment
    print("\n1. Alignment")
    print("-" * 40)
    for src, trg in [("staffed", "stuff"), ("bake", "baking")]:
        alignment = align(Form(src), Form(trg))
        print(f"  {src} → {trg}: {ops_to_string(alignment.ops)} (cost {alignment.cost:.4f})")

    paradigm_alignment = align_paradigm(train[4])
    for attrs, alignment in paradigm_alignment.alignments.items():
        print(f"  {attrs}: {alignment}")
    print(f"  Converged after {paradigm_alignment.iterations} iteration(s)")

    # Step 2: Rule extraction
    print("\n2. Change Inventory")
    print("-" * 40)
    inventory = ChangeInventory.build(train)
    print(inventory.to_frame().to_string(index=False))

    # Step 3: Training
    print("\n3. Training")
    print("-" * 40)
    predictor = JointInflectionPredictor(inventory, JointModelConfig(max_iterations=50))
    predictor.fit()
    print(f"  Features: {predictor.num_features:,}")
    print(f"  Training accuracy: {predictor.training_accuracy():.2f}")

    # Step 4: Prediction
    print("\n4. Prediction")
    print("-" * 40)
    hypotheses = predictor.predict_all(test)
    for hyp in hypotheses:
        print(hyp.predicted_instance)
        print(f"  Applied: {[str(c) for c in hyp.applied_changes]} (score {hyp.score:.3f})")

    results = evaluate_predictions([h.predicted_instance for h in hypotheses], test)
    print_evaluation_summary(results, name="Joint")

    print("=" * 60)
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
