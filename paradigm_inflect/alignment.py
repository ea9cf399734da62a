"""
Alignment of inflected forms to their base form.

Includes:
- Markov edit distance with position-dependent EQUAL/SUBST costs and a
  switching penalty between matching and non-matching regions
- Standard, max-alignment and weighted max-alignment cost settings
- Per-paradigm alignment pass, either independent per slot or iteratively
  re-estimated so that every slot agrees on which base symbols are preserved
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .preprocessing import Attributes, Form, ParadigmInstance

logger = logging.getLogger(__name__)

# Small enough to act only as a tie-breaker in favour of fewer switches
SWITCH_COST = 0.00001
MAX_CONSISTENT_ITERATIONS = 10


class AlignmentError(RuntimeError):
    """Raised when the aligner reaches a state that legality checks should prevent."""


# ==============================================================================
# Edit Operations
# ==============================================================================

class Operation(Enum):
    EQUAL = "="
    SUBST = "S"
    INSERT = "I"
    DELETE = "D"

    @property
    def advances_source(self) -> bool:
        return self is not Operation.INSERT

    @property
    def advances_target(self) -> bool:
        return self is not Operation.DELETE

    def __str__(self):
        return self.value


# Fixed order of the last-operation axis of the chart
OPERATIONS: Tuple[Operation, ...] = (Operation.EQUAL, Operation.SUBST, Operation.INSERT, Operation.DELETE)


def ops_to_string(ops: Sequence[Operation]) -> str:
    return "".join(op.value for op in ops)


def string_to_ops(s: str) -> List[Operation]:
    try:
        return [Operation(ch) for ch in s]
    except ValueError:
        raise ValueError(f"Bad op string: {s!r}") from None


# ==============================================================================
# Cost Settings
# ==============================================================================

@dataclass(frozen=True, eq=False)
class EditCosts:
    """
    Parameters of the Markov edit distance.

    ``equal_costs`` and ``subst_costs`` are indexed by source position so
    that rewriting can be cheaper or dearer at particular places.
    ``switch_cost`` is charged whenever the operation moves into or out of
    EQUAL (never at the start of the sequence).
    """

    equal_costs: np.ndarray
    subst_costs: np.ndarray
    insert_cost: float
    delete_cost: float
    switch_cost: float

    @classmethod
    def standard(cls, src_len: int, switch_cost: float = SWITCH_COST) -> "EditCosts":
        return cls(np.zeros(src_len), np.ones(src_len), 1.0, 1.0, switch_cost)

    @classmethod
    def max_alignment(cls, src_len: int, switch_cost: float = SWITCH_COST) -> "EditCosts":
        return cls(np.full(src_len, -1.0), np.zeros(src_len), 0.0, 0.0, switch_cost)

    @classmethod
    def weighted_max_alignment(cls, equal_costs: Sequence[float], switch_cost: float = SWITCH_COST) -> "EditCosts":
        equal_costs = np.asarray(equal_costs, dtype=float)
        return cls(equal_costs, np.zeros(len(equal_costs)), 0.0, 0.0, switch_cost)


# ==============================================================================
# Alignments
# ==============================================================================

@dataclass(frozen=True)
class Alignment:
    """Source form, target form, the edit operations producing one from the other, and their cost."""

    src: Form
    trg: Form
    ops: Tuple[Operation, ...]
    cost: float

    def replay(self) -> Form:
        """
        Rebuild the target by applying ``ops`` to the source.

        EQUAL copies the source symbol, SUBST and INSERT take the aligned
        target symbol, DELETE drops the source symbol.
        """
        i = j = 0
        out = []
        for op in self.ops:
            if op is Operation.EQUAL:
                if i >= len(self.src) or j >= len(self.trg) or self.src[i] != self.trg[j]:
                    raise AlignmentError(f"EQUAL at ({i}, {j}) does not pair equal symbols in {self.src}-{self.trg}")
                out.append(self.src[i])
            elif op is not Operation.DELETE:
                if j >= len(self.trg):
                    raise AlignmentError(f"{op.name} past the end of {self.trg}")
                if op is Operation.SUBST and (i >= len(self.src) or self.src[i] == self.trg[j]):
                    raise AlignmentError(f"SUBST at ({i}, {j}) does not pair different symbols in {self.src}-{self.trg}")
                out.append(self.trg[j])
            elif i >= len(self.src):
                raise AlignmentError(f"DELETE past the end of {self.src}")
            if op.advances_source:
                i += 1
            if op.advances_target:
                j += 1
        if i != len(self.src) or j != len(self.trg):
            raise AlignmentError(f"Ops {ops_to_string(self.ops)} do not consume {self.src}-{self.trg}")
        return Form(out)

    def __str__(self):
        return f"{self.src}-{self.trg}: {ops_to_string(self.ops)} ({self.cost:g})"


# ==============================================================================
# Markov Edit Distance
# ==============================================================================

def _is_legal(op: Operation, src: Form, trg: Form, i: int, j: int) -> bool:
    room_on_src = i < len(src)
    room_on_trg = j < len(trg)
    if op is Operation.INSERT:
        return room_on_trg
    if op is Operation.DELETE:
        return room_on_src
    if not (room_on_src and room_on_trg):
        return False
    symbols_equal = src[i] == trg[j]
    return symbols_equal if op is Operation.EQUAL else not symbols_equal


def _cost_to_apply(
    op: Operation, last_op: Optional[Operation], costs: EditCosts, src: Form, trg: Form, i: int, j: int
) -> float:
    if not _is_legal(op, src, trg, i, j):
        raise AlignmentError(f"Illegal operation; applying {op.name} to {i}, {j} of {src}-{trg}")
    if op is Operation.INSERT:
        cost = costs.insert_cost
    elif op is Operation.DELETE:
        cost = costs.delete_cost
    elif op is Operation.SUBST:
        cost = costs.subst_costs[i]
    else:
        cost = costs.equal_costs[i]
    # No switch is charged for the first operation
    if last_op is not None and (last_op is Operation.EQUAL) != (op is Operation.EQUAL):
        cost += costs.switch_cost
    return float(cost)


def align(src: Form, trg: Form, costs: Optional[EditCosts] = None) -> Alignment:
    """
    Minimum-cost edit sequence turning ``src`` into ``trg``.

    The chart is indexed by (source index, target index, last operation)
    because the switching cost depends on the previous operation. Ties keep
    the first candidate reached in (source, target, last op, op) order.

    Args:
        src: Source (base) form
        trg: Target (inflected) form
        costs: Cost settings; standard edit distance when omitted

    Returns:
        Best Alignment
    """
    if costs is None:
        costs = EditCosts.standard(len(src))
    n, m = len(src), len(trg)
    num_ops = len(OPERATIONS)

    chart = np.full((n + 1, m + 1, num_ops), np.inf)
    # Last-op index of the predecessor state; -1 marks the start state
    backptr = np.full((n + 1, m + 1, num_ops), -1, dtype=np.int8)
    # A single start state; its last-op slot is a placeholder
    chart[0, 0, 0] = 0.0

    for i in range(n + 1):
        for j in range(m + 1):
            for prev in range(num_ops):
                prev_cost = chart[i, j, prev]
                if prev_cost == np.inf:
                    continue
                last_op = None if (i, j) == (0, 0) else OPERATIONS[prev]
                for k, op in enumerate(OPERATIONS):
                    if not _is_legal(op, src, trg, i, j):
                        continue
                    ni = i + 1 if op.advances_source else i
                    nj = j + 1 if op.advances_target else j
                    new_cost = prev_cost + _cost_to_apply(op, last_op, costs, src, trg, i, j)
                    if new_cost < chart[ni, nj, k]:
                        chart[ni, nj, k] = new_cost
                        backptr[ni, nj, k] = prev

    best = None
    for k in range(num_ops):
        if chart[n, m, k] == np.inf:
            continue
        if best is None or chart[n, m, k] < chart[n, m, best]:
            best = k
    if best is None:
        raise AlignmentError(f"Edit distance returned nothing for {src}-{trg}")

    cost = float(chart[n, m, best])
    ops: List[Operation] = []
    i, j, k = n, m, best
    while (i, j) != (0, 0):
        op = OPERATIONS[k]
        ops.append(op)
        k = int(backptr[i, j, k])
        if op.advances_source:
            i -= 1
        if op.advances_target:
            j -= 1
    ops.reverse()
    return Alignment(src, trg, tuple(ops), cost)


def edit_distance(src: Form, trg: Form) -> int:
    """Plain edit distance (unit costs, no switching penalty)."""
    return int(round(align(src, trg, EditCosts.standard(len(src), 0.0)).cost))


# ==============================================================================
# Paradigm Alignment Pass
# ==============================================================================

class AlignmentType(Enum):
    BASIC = "basic"
    MAX_ALIGN = "max_align"
    CONSISTENT = "consistent"


@dataclass
class ParadigmAlignment:
    """Per-slot alignments of one paradigm, and whether re-estimation converged."""

    instance: ParadigmInstance
    alignments: Dict[Attributes, Alignment]
    converged: bool = True
    iterations: int = 1

    @property
    def base_form(self) -> Form:
        return self.instance.base_form


def align_paradigm(
    instance: ParadigmInstance,
    alignment_type: AlignmentType = AlignmentType.CONSISTENT,
    switch_cost: float = SWITCH_COST,
    max_iterations: int = MAX_CONSISTENT_ITERATIONS
) -> ParadigmAlignment:
    """
    Align every slot's inflected form to the paradigm's base form.

    Args:
        instance: Paradigm to align
        alignment_type: BASIC / MAX_ALIGN (independent per slot) or CONSISTENT
        switch_cost: Switching penalty passed to the aligner
        max_iterations: Cap on re-estimation rounds in CONSISTENT mode

    Returns:
        ParadigmAlignment
    """
    if alignment_type is AlignmentType.CONSISTENT:
        return _align_consistent(instance, switch_cost, max_iterations)

    base = instance.base_form
    alignments = {}
    for attrs, infl_form in instance.forms_by_slot().items():
        if alignment_type is AlignmentType.BASIC:
            costs = EditCosts.standard(len(base), switch_cost)
        else:
            costs = EditCosts.max_alignment(len(base), switch_cost)
        alignments[attrs] = align(base, infl_form, costs)
    return ParadigmAlignment(instance, alignments)


def accumulate_equal_costs(costs: np.ndarray, ops: Sequence[Operation]) -> None:
    """Decrement the cost of every source position an EQUAL consumes."""
    src_index = 0
    for op in ops:
        if op is Operation.EQUAL:
            costs[src_index] -= 1
        if op.advances_source:
            src_index += 1


def _align_consistent(instance: ParadigmInstance, switch_cost: float, max_iterations: int) -> ParadigmAlignment:
    base = instance.base_form
    forms = instance.forms_by_slot()
    # First round is plain max-alignment; later rounds reward positions
    # preserved by many slots
    equal_costs = np.full(len(base), -1.0)
    previous: Dict[Attributes, Alignment] = {}

    for iteration in range(1, max_iterations + 1):
        current = {}
        new_costs = np.zeros(len(base))
        some_change = False
        for attrs, infl_form in forms.items():
            alignment = align(base, infl_form, EditCosts.weighted_max_alignment(equal_costs, switch_cost))
            if attrs not in previous or previous[attrs].ops != alignment.ops:
                some_change = True
            accumulate_equal_costs(new_costs, alignment.ops)
            current[attrs] = alignment
        previous = current
        equal_costs = new_costs
        if not some_change:
            return ParadigmAlignment(instance, current, converged=True, iterations=iteration)

    logger.warning("Alignment of %s did not converge after %d iterations", base, max_iterations)
    return ParadigmAlignment(instance, previous, converged=False, iterations=max_iterations)
