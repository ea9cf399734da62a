"""
Morphological change extraction.

Turns per-slot alignments into paradigm-wide rewrite rules:
- Spans over a base form and their transitive collapse
- Changed-span detection, span merging and per-slot target-side recovery
- The change inventory (rule -> anchored occurrences), i.e. model capacity
- Match-site filtering patterns for proposing rules on new base forms
- Applying a set of anchored changes to inflect a base form
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .alignment import (
    MAX_CONSISTENT_ITERATIONS, SWITCH_COST,
    Alignment, AlignmentType, Operation, ParadigmAlignment, align_paradigm
)
from .preprocessing import BEGIN, END, Attributes, Form, ParadigmInstance, Symbol, filter_star_instances

logger = logging.getLogger(__name__)

# ==============================================================================
# Spans
# ==============================================================================


@dataclass(frozen=True, order=True)
class Span:
    """
    Half-open interval ``[start, end)`` of fenceposts over a particular form.

    Spans over different forms are never merged.
    """

    form: Form
    start: int
    end: int

    def __post_init__(self):
        if not 0 <= self.start <= self.end <= len(self.form):
            raise ValueError(f"Bad span [{self.start}, {self.end}) over {self.form!s}")

    def __len__(self):
        return self.end - self.start

    @property
    def text(self) -> Form:
        return self.form.substring(self.start, self.end)

    def union(self, other: "Span") -> "Span":
        if self.form != other.form:
            raise ValueError(f"Cannot union spans over {self.form!s} and {other.form!s}")
        return Span(self.form, min(self.start, other.start), max(self.end, other.end))

    def intersects(self, other: "Span") -> bool:
        return self.start < other.end and self.end > other.start

    def touches(self, other: "Span") -> bool:
        """True if the spans overlap or are adjacent."""
        return self.start <= other.end and self.end >= other.start

    def __str__(self):
        return f"{self.form}({self.start}, {self.end})"


def collapse_spans(spans: Iterable[Span], merge_touching: bool = False) -> List[Span]:
    """
    Merge spans until none of the survivors overlap (or touch, when
    ``merge_touching`` is set).

    The first pending span absorbs the first span it should merge with and is
    then rechecked against everything, since growing may create new overlaps.
    """
    # Identical zero-width spans never intersect, so drop repeats up front
    pending = list(dict.fromkeys(spans))
    final = []
    while pending:
        current = pending[0]
        for i in range(1, len(pending)):
            other = pending[i]
            should_merge = current.touches(other) if merge_touching else current.intersects(other)
            if should_merge:
                del pending[i]
                pending[0] = current.union(other)
                break
        else:
            final.append(current)
            del pending[0]
    return final


def changed_spans(base_form: Form, ops: Sequence[Operation]) -> List[Span]:
    """Source-side spans covered by maximal runs of non-EQUAL operations."""
    spans = []
    src_index = 0
    change_start = None
    for op in ops:
        if op is not Operation.EQUAL and change_start is None:
            change_start = src_index
        elif op is Operation.EQUAL and change_start is not None:
            spans.append(Span(base_form, change_start, src_index))
            change_start = None
        if op.advances_source:
            src_index += 1
    # A suffix change never switches back to EQUAL
    if change_start is not None:
        spans.append(Span(base_form, change_start, src_index))
    return spans


# ==============================================================================
# Rules
# ==============================================================================


class MorphChange:
    """
    Unanchored rewrite rule: a base-form substring and what it becomes in
    every slot of the paradigm.
    """

    __slots__ = ("base", "rewrite", "_key")

    def __init__(self, base: Form, rewrite: Mapping[Attributes, Form]):
        frozen = MappingProxyType(dict(sorted(rewrite.items())))
        object.__setattr__(self, "base", base)
        object.__setattr__(self, "rewrite", frozen)
        object.__setattr__(self, "_key", (base, tuple(frozen.items())))

    def __setattr__(self, name, value):
        raise AttributeError("MorphChange is immutable")

    def __reduce__(self):
        return (MorphChange, (self.base, dict(self.rewrite)))

    @property
    def slot_keys(self) -> Tuple[Attributes, ...]:
        return tuple(self.rewrite)

    def __eq__(self, other):
        if not isinstance(other, MorphChange):
            return NotImplemented
        return self._key == other._key

    def __hash__(self):
        return hash(self._key)

    def __str__(self):
        return f"{self.base}=>" + ",".join(str(f) for f in self.rewrite.values())

    def __repr__(self):
        return f"MorphChange({str(self)!r})"


@dataclass(frozen=True)
class AnchoredChange:
    """
    A rule bound to one span of one base form.

    ``source_key`` names the training paradigm (by base form) the change was
    extracted from; it is only for diagnostics and takes no part in equality.
    """

    change: MorphChange
    span: Span
    source_key: Optional[Form] = field(default=None, compare=False)

    @property
    def start(self) -> int:
        return self.span.start

    @property
    def end(self) -> int:
        return self.span.end

    def conflicts_with(self, other: "AnchoredChange") -> bool:
        return self.span.touches(other.span)

    def __str__(self):
        return f"{self.span}: {self.change}"


def target_side(alignment: Alignment, span: Span) -> Form:
    """
    Target substring aligned opposite a source span.

    Insertions sitting at the span start and immediately after the span end
    belong to the span, never to the preserved region around it.
    """
    src_index = trg_index = 0
    trg_start = trg_end = None
    for op in alignment.ops:
        if src_index == span.start and trg_start is None:
            trg_start = trg_index
        if src_index == span.end and op is not Operation.INSERT:
            trg_end = trg_index
            break
        if op.advances_source:
            src_index += 1
        if op.advances_target:
            trg_index += 1
    # Zero-width span at the very end of the form
    if trg_start is None:
        trg_start = trg_index
    # Ops ended with insertions
    if trg_end is None:
        trg_end = trg_index
    return alignment.trg.substring(trg_start, trg_end)


def extract_changes(paradigm_alignment: ParadigmAlignment, merge_touching: bool = True) -> List[AnchoredChange]:
    """
    Extract one anchored change per merged changed span of a paradigm.

    Args:
        paradigm_alignment: Alignments of every slot against the base form
        merge_touching: Also merge adjacent spans, not just overlapping ones

    Returns:
        List of AnchoredChanges over the paradigm's base form
    """
    base = paradigm_alignment.base_form
    spans: List[Span] = []
    for alignment in paradigm_alignment.alignments.values():
        spans.extend(changed_spans(base, alignment.ops))
        spans = collapse_spans(spans, merge_touching)

    changes = []
    for span in spans:
        rewrite = {
            attrs: target_side(alignment, span)
            for attrs, alignment in paradigm_alignment.alignments.items()
        }
        changes.append(AnchoredChange(MorphChange(span.text, rewrite), span, source_key=base))
    return changes


@dataclass
class AnalyzedParadigm:
    """A paradigm with its slot alignments and the changes extracted from them."""

    alignment: ParadigmAlignment
    changes: List[AnchoredChange]

    @property
    def instance(self) -> ParadigmInstance:
        return self.alignment.instance

    @property
    def base_form(self) -> Form:
        return self.alignment.base_form


def analyze_paradigm(
    instance: ParadigmInstance,
    alignment_type: AlignmentType = AlignmentType.CONSISTENT,
    merge_touching: bool = True,
    switch_cost: float = SWITCH_COST,
    max_iterations: int = MAX_CONSISTENT_ITERATIONS
) -> AnalyzedParadigm:
    paradigm_alignment = align_paradigm(instance, alignment_type, switch_cost, max_iterations)
    return AnalyzedParadigm(paradigm_alignment, extract_changes(paradigm_alignment, merge_touching))


# ==============================================================================
# Change Inventory
# ==============================================================================


class ChangeInventory:
    """
    Every rule observed in training and the anchored changes it came from.

    This is the capacity of the model: only rules present here can ever be
    predicted. Read-only once built.
    """

    def __init__(self, analyzed: Sequence[AnalyzedParadigm]):
        self.analyzed: List[AnalyzedParadigm] = list(analyzed)
        self.occurrences: Dict[MorphChange, List[AnchoredChange]] = {}
        seen = set()
        for paradigm in self.analyzed:
            for change in paradigm.changes:
                if change in seen:
                    continue
                seen.add(change)
                self.occurrences.setdefault(change.change, []).append(change)

        slot_key_sets = {frozenset(p.instance.slot_keys) for p in self.analyzed}
        if len(slot_key_sets) > 1:
            raise ValueError(
                f"Training paradigms use {len(slot_key_sets)} different slot-key sets; "
                "filter them with filter_noncanonical_instances first"
            )
        self.slot_keys: Optional[FrozenSet[Attributes]] = next(iter(slot_key_sets)) if slot_key_sets else None

    @classmethod
    def build(
        cls,
        instances: Sequence[ParadigmInstance],
        alignment_type: AlignmentType = AlignmentType.CONSISTENT,
        merge_touching: bool = True,
        switch_cost: float = SWITCH_COST,
        max_iterations: int = MAX_CONSISTENT_ITERATIONS,
        log_every: int = 500
    ) -> "ChangeInventory":
        """
        Analyze every training paradigm and group the extracted changes by rule.

        Paradigms with unattested (STAR) slots are skipped.
        """
        usable = filter_star_instances(list(instances))
        if len(usable) < len(instances):
            logger.info("Skipping %d paradigms with unattested slots", len(instances) - len(usable))

        analyzed = []
        for i, instance in enumerate(usable):
            if log_every and i % log_every == 0:
                logger.info("Analyzing paradigm %d / %d", i, len(usable))
            analyzed.append(analyze_paradigm(instance, alignment_type, merge_touching, switch_cost, max_iterations))

        inventory = cls(analyzed)
        logger.info(
            "Extracted %d rules from %d paradigms (%d alignments did not converge)",
            len(inventory), len(analyzed), inventory.unconverged_count
        )
        return inventory

    @property
    def rules(self) -> List[MorphChange]:
        return list(self.occurrences)

    @property
    def unconverged_count(self) -> int:
        return sum(1 for p in self.analyzed if not p.alignment.converged)

    def occurrence_counts(self) -> Counter:
        return Counter({rule: len(occ) for rule, occ in self.occurrences.items()})

    def __len__(self):
        return len(self.occurrences)

    def __contains__(self, rule):
        return rule in self.occurrences

    def __iter__(self) -> Iterator[MorphChange]:
        return iter(self.occurrences)

    def log_summary(self, max_examples: int = 5):
        counts = self.occurrence_counts()
        logger.info(
            "Found %d changes, %d occurred in >=2 forms, %d in >=3",
            len(counts), sum(1 for c in counts.values() if c >= 2), sum(1 for c in counts.values() if c >= 3)
        )
        for rule, count in counts.most_common():
            examples = ", ".join(str(c.span.form) for c in self.occurrences[rule][:max_examples])
            logger.info("%s\n   found in %d forms, such as: %s", rule, count, examples)

    def to_frame(self) -> pd.DataFrame:
        """One row per rule: base text, the rewrite for each slot, and occurrence count."""
        slot_keys = sorted(self.slot_keys) if self.slot_keys else []
        rows = []
        for rule, occurrences in self.occurrences.items():
            row = {"base": str(rule.base)}
            for attrs in slot_keys:
                row[str(attrs)] = str(rule.rewrite.get(attrs, ""))
            row["count"] = len(occurrences)
            rows.append(row)
        columns = ["base"] + [str(a) for a in slot_keys] + ["count"]
        frame = pd.DataFrame(rows, columns=columns)
        return frame.sort_values("count", ascending=False, kind="stable").reset_index(drop=True)


# ==============================================================================
# Match Filtering Patterns
# ==============================================================================

class PatternType(Enum):
    BEFORE = "before"
    AFTER = "after"
    SUFFIX = "suffix"


@dataclass(frozen=True)
class PatternElement:
    type: PatternType
    symbol: Symbol


class _FormReader:
    """Pointers stepping outward from a span, and backwards from the end of the form."""

    def __init__(self, form: Form, span_start: int, span_end: int):
        self.form = form
        self.before_index = span_start - 1
        self.after_index = span_end
        self.suffix_index = len(form) - 1

    def read_and_advance(self, pattern_type: PatternType) -> Symbol:
        if pattern_type is PatternType.BEFORE:
            index = self.before_index
            self.before_index -= 1
        elif pattern_type is PatternType.AFTER:
            index = self.after_index
            self.after_index += 1
        else:
            index = self.suffix_index
            self.suffix_index -= 1
        return self.form.symbol_at_or_boundary(index)


class Pattern:
    """
    Span text plus ordered context elements.

    Each element advances its own pointer: BEFORE reads leftwards from the
    span, AFTER rightwards, SUFFIX leftwards from the end of the form. With
    elements (a, BEFORE), (b, BEFORE) the span text "form" matches in "baform".
    """

    def __init__(self, span_text: Form, elements: Sequence[PatternElement] = ()):
        self.span_text = span_text
        self.elements: Tuple[PatternElement, ...] = tuple(elements)

    def extend(self, element: PatternElement) -> "Pattern":
        return Pattern(self.span_text, self.elements + (element,))

    def _is_start(self, form: Form, start: int) -> bool:
        if form.substring(start, start + len(self.span_text)) != self.span_text:
            return False
        reader = _FormReader(form, start, start + len(self.span_text))
        return all(reader.read_and_advance(e.type) == e.symbol for e in self.elements)

    def find_matching_starts(self, form: Form) -> List[int]:
        return [i for i in range(len(form) + 1 - len(self.span_text)) if self._is_start(form, i)]

    def find_matching_spans(self, form: Form) -> List[Span]:
        return [Span(form, i, i + len(self.span_text)) for i in self.find_matching_starts(form)]

    def is_start_pattern(self) -> bool:
        for element in self.elements:
            if element.type is PatternType.BEFORE:
                return element.symbol == BEGIN
        return False

    def is_end_pattern(self) -> bool:
        for element in self.elements:
            if element.type is PatternType.AFTER:
                return element.symbol == END
        return False

    def _span_and_neighborhood(self) -> str:
        before, after = "", ""
        for element in self.elements:
            if element.type is PatternType.BEFORE:
                before = str(element.symbol) + before
            elif element.type is PatternType.AFTER:
                after += str(element.symbol)
        return before + str(self.span_text) + after

    def _suffix_string(self) -> str:
        suffix = ""
        for i, element in enumerate(self.elements):
            if element.type is PatternType.SUFFIX:
                suffix = f"{element.symbol}({i})" + suffix
        return suffix

    def is_less_restrictive_than(self, other: "Pattern") -> bool:
        return (self._span_and_neighborhood() in other._span_and_neighborhood()
                and self._suffix_string() in other._suffix_string())

    def matches_same_spans_as(self, other: "Pattern") -> bool:
        return (self._span_and_neighborhood() == other._span_and_neighborhood()
                and self._suffix_string() == other._suffix_string())

    def is_strictly_less_restrictive_than(self, other: "Pattern") -> bool:
        return self.is_less_restrictive_than(other) and not self.matches_same_spans_as(other)

    def __eq__(self, other):
        if not isinstance(other, Pattern):
            return NotImplemented
        return self.span_text == other.span_text and self.elements == other.elements

    def __hash__(self):
        return hash((self.span_text, self.elements))

    def __str__(self):
        before, after, suffix = "", "", ""
        for i, element in enumerate(self.elements):
            if element.type is PatternType.BEFORE:
                before = f"{element.symbol}({i})" + before
            elif element.type is PatternType.AFTER:
                after += f"{element.symbol}({i})"
            else:
                suffix = f"{element.symbol}({i})" + suffix
        return f"{before}{{{self.span_text}}}{after},end={suffix}"


class ChangeFilter:
    """
    Where each inventory rule may apply on a new base form.

    Without match filtering a rule matches wherever its base text occurs.
    With it, a rule additionally requires the symbol just before (after) the
    span whenever that symbol was the same across all training occurrences;
    this sharply cuts the match sites of insertion-only rules.
    """

    def __init__(self, inventory: ChangeInventory, use_match_filtering: bool = True):
        self.use_match_filtering = use_match_filtering
        self.patterns: Dict[MorphChange, Pattern] = {}
        for rule, occurrences in inventory.occurrences.items():
            if use_match_filtering:
                pattern = self._context_pattern(rule, occurrences)
                logger.debug("Pattern for %s: %s", rule, pattern)
            else:
                pattern = Pattern(rule.base)
            self.patterns[rule] = pattern

    @staticmethod
    def _context_pattern(rule: MorphChange, occurrences: Sequence[AnchoredChange]) -> Pattern:
        befores = {c.span.form.symbol_at_or_boundary(c.start - 1) for c in occurrences}
        afters = {c.span.form.symbol_at_or_boundary(c.end) for c in occurrences}
        elements = []
        if len(befores) == 1:
            elements.append(PatternElement(PatternType.BEFORE, befores.pop()))
        if len(afters) == 1:
            elements.append(PatternElement(PatternType.AFTER, afters.pop()))
        return Pattern(rule.base, elements)

    def filter_pattern(self, rule: MorphChange) -> Pattern:
        return self.patterns[rule]

    def find_matching_spans(self, form: Form, rule: MorphChange) -> List[Span]:
        if rule not in self.patterns:
            raise KeyError(f"Rule {rule} is not in the change inventory")
        return self.patterns[rule].find_matching_spans(form)


# ==============================================================================
# Inflection
# ==============================================================================

def inflect(
    base_form: Form,
    slot_keys: Iterable[Attributes],
    changes: Sequence[AnchoredChange]
) -> Dict[Attributes, Form]:
    """
    Splice each slot's rewrite into the changed spans, copying preserved
    text verbatim.

    Raises:
        ValueError: if changes overlap or a change does not rewrite exactly
            the requested slots
    """
    slot_keys = sorted(slot_keys)
    ordered = sorted(changes, key=lambda c: c.span)
    for change in ordered:
        if set(change.change.rewrite) != set(slot_keys):
            raise ValueError(f"Change {change} is not defined over the requested slot keys")

    forms = {}
    for attrs in slot_keys:
        pieces = []
        index = 0
        for change in ordered:
            if change.start < index:
                raise ValueError(
                    f"Bad sequence of changes; last change ended at {index} but {change} starts at {change.start}"
                )
            pieces.append(base_form.substring(index, change.start))
            pieces.append(change.change.rewrite[attrs])
            index = change.end
        pieces.append(base_form.substring(index))
        forms[attrs] = Form(symbol for piece in pieces for symbol in piece)
    return forms


def build_predicted_instance(
    base_form: Form,
    slot_keys: Iterable[Attributes],
    changes: Sequence[AnchoredChange]
) -> ParadigmInstance:
    return ParadigmInstance(base_form, inflect(base_form, slot_keys, changes))
