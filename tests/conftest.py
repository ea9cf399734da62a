"""
Shared pytest fixtures for paradigm_inflect tests.

This module provides:
- A helper for building two-slot English verb paradigms
- A small training set with a suffix rule and an e-deletion rule
- A fitted joint predictor (module scope, training takes a moment)
"""

import sys
from pathlib import Path

import pytest

# Ensure the package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from paradigm_inflect import (
    Attributes,
    ChangeInventory,
    Form,
    JointInflectionPredictor,
    JointModelConfig,
    ParadigmInstance,
)

PAST = Attributes.parse("tense=past")
PROG = Attributes.parse("tense=prog")


def make_paradigm(base: str, past: str, prog: str) -> ParadigmInstance:
    return ParadigmInstance(Form(base), {PAST: Form(past), PROG: Form(prog)})


@pytest.fixture
def slot_keys():
    return (PAST, PROG)


@pytest.fixture
def verb_paradigms():
    return [
        make_paradigm("walk", "walked", "walking"),
        make_paradigm("talk", "talked", "talking"),
        make_paradigm("jump", "jumped", "jumping"),
        make_paradigm("play", "played", "playing"),
        make_paradigm("bake", "baked", "baking"),
        make_paradigm("hike", "hiked", "hiking"),
    ]


@pytest.fixture
def verb_inventory(verb_paradigms):
    return ChangeInventory.build(verb_paradigms)


@pytest.fixture(scope="module")
def trained_predictor():
    paradigms = [
        make_paradigm("walk", "walked", "walking"),
        make_paradigm("talk", "talked", "talking"),
        make_paradigm("jump", "jumped", "jumping"),
        make_paradigm("play", "played", "playing"),
        make_paradigm("bake", "baked", "baking"),
        make_paradigm("hike", "hiked", "hiking"),
    ]
    inventory = ChangeInventory.build(paradigms)
    return JointInflectionPredictor(inventory, JointModelConfig(max_iterations=50)).fit()
