"""
Preprocessing utilities for paradigm inflection.

Handles text normalization, symbol segmentation, slot keys and paradigm
instances, and reading paradigm tables from disk.
"""

import logging
import unicodedata
from collections import Counter
from functools import total_ordering
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import regex

logger = logging.getLogger(__name__)

# ==============================================================================
# Symbols
# ==============================================================================


@total_ordering
class Symbol:
    """One atomic unit of a word (a grapheme cluster)."""

    __slots__ = ("value",)

    def __init__(self, value: str):
        object.__setattr__(self, "value", value)

    def __setattr__(self, name, value):
        raise AttributeError("Symbol is immutable")

    def __reduce__(self):
        return (Symbol, (self.value,))

    def __eq__(self, other):
        if not isinstance(other, Symbol):
            return NotImplemented
        return self.value == other.value

    def __lt__(self, other):
        if not isinstance(other, Symbol):
            return NotImplemented
        return self.value < other.value

    def __hash__(self):
        return hash(self.value)

    def __str__(self):
        return self.value

    def __repr__(self):
        return f"Symbol({self.value!r})"


# Read when looking past the left / right edge of a form
BEGIN = Symbol("<w>")
END = Symbol("</w>")


# ==============================================================================
# Text Normalization
# ==============================================================================

def normalize_text(s: str) -> str:
    """NFC-normalize and strip surrounding whitespace."""
    return unicodedata.normalize("NFC", str(s)).strip()


def to_symbols(s: str, normalize: bool = True) -> List[Symbol]:
    """
    Split a string into Symbols, one per extended grapheme cluster.

    Args:
        s: Input string (word or word fragment)
        normalize: Whether to apply text normalization first

    Returns:
        List of Symbols
    """
    if normalize:
        s = normalize_text(s)
    return [Symbol(g) for g in regex.findall(r"\X", s)]


# ==============================================================================
# Forms
# ==============================================================================


@total_ordering
class Form:
    """
    Immutable ordered sequence of Symbols.

    Equality and ordering are structural (lexicographic over Symbols).
    Slicing and ``substring`` return new Forms; nothing mutates a Form.
    """

    __slots__ = ("_symbols",)

    def __init__(self, symbols: Union[str, Iterable[Symbol]] = ()):
        if isinstance(symbols, str):
            symbols = to_symbols(symbols)
        object.__setattr__(self, "_symbols", tuple(symbols))

    def __setattr__(self, name, value):
        raise AttributeError("Form is immutable")

    def __reduce__(self):
        return (Form, (self._symbols,))

    @property
    def symbols(self) -> Tuple[Symbol, ...]:
        return self._symbols

    def __len__(self):
        return len(self._symbols)

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self._symbols)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Form(self._symbols[index])
        return self._symbols[index]

    def substring(self, start: int, end: Optional[int] = None) -> "Form":
        if end is None:
            end = len(self._symbols)
        if not 0 <= start <= end <= len(self._symbols):
            raise ValueError(f"Bad substring [{start}, {end}) of {self}")
        return Form(self._symbols[start:end])

    def append(self, other: "Form") -> "Form":
        return Form(self._symbols + other._symbols)

    def __add__(self, other):
        if not isinstance(other, Form):
            return NotImplemented
        return self.append(other)

    def reverse(self) -> "Form":
        return Form(self._symbols[::-1])

    def symbol_at_or_boundary(self, index: int) -> Symbol:
        """Symbol at index, or BEGIN / END when reading past either edge."""
        if index < 0:
            return BEGIN
        if index >= len(self._symbols):
            return END
        return self._symbols[index]

    def __eq__(self, other):
        if not isinstance(other, Form):
            return NotImplemented
        return self._symbols == other._symbols

    def __lt__(self, other):
        if not isinstance(other, Form):
            return NotImplemented
        return self._symbols < other._symbols

    def __hash__(self):
        return hash(self._symbols)

    def __str__(self):
        return "".join(s.value for s in self._symbols)

    def __repr__(self):
        return f"Form({str(self)!r})"


# Marks a slot that is never attested (Dreyer and Eisner CELEX convention)
STAR = Form("STAR")


# ==============================================================================
# Slot Keys
# ==============================================================================


@total_ordering
class Attributes:
    """
    Immutable set of feature=value bindings identifying one paradigm cell,
    e.g. ``Person=1st:Number=Singular:Tense=Past``.
    """

    __slots__ = ("_bindings",)

    def __init__(self, bindings: Union[Mapping[str, str], Iterable[Tuple[str, str]]] = ()):
        if isinstance(bindings, Mapping):
            bindings = bindings.items()
        object.__setattr__(self, "_bindings", tuple(sorted(dict(bindings).items())))

    def __setattr__(self, name, value):
        raise AttributeError("Attributes is immutable")

    def __reduce__(self):
        return (Attributes, (self._bindings,))

    @classmethod
    def parse(cls, line: str) -> "Attributes":
        """Parse ``name=value:name=value`` into Attributes."""
        bindings = []
        for entry in line.strip().split(":"):
            parts = entry.split("=")
            if len(parts) != 2 or not parts[0]:
                raise ValueError(f"Bad attributes line: {line!r}")
            bindings.append((parts[0], parts[1]))
        return cls(bindings)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self._bindings)

    def items(self) -> Tuple[Tuple[str, str], ...]:
        return self._bindings

    def get(self, name: str, default: str = "") -> str:
        for bound_name, value in self._bindings:
            if bound_name == name:
                return value
        return default

    def with_value(self, name: str, value: str) -> "Attributes":
        bindings = dict(self._bindings)
        bindings[name] = value
        return Attributes(bindings)

    def to_short_string(self) -> str:
        return "".join(value[:6] for _, value in self._bindings)

    def _sort_key(self) -> Tuple[str, ...]:
        return tuple(f"{name}={value}" for name, value in self._bindings)

    def __eq__(self, other):
        if not isinstance(other, Attributes):
            return NotImplemented
        return self._bindings == other._bindings

    def __lt__(self, other):
        if not isinstance(other, Attributes):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __hash__(self):
        return hash(self._bindings)

    def __str__(self):
        return ":".join(self._sort_key())

    def __repr__(self):
        return f"Attributes({str(self)!r})"


# ==============================================================================
# Paradigm Instances
# ==============================================================================


class ParadigmInstance:
    """
    A base form plus, for every slot key, one or more attested inflected forms.

    More than one form per slot records lexical variants; the first one is
    the form used for alignment and rule extraction.
    """

    def __init__(self, base_form: Form, forms: Mapping[Attributes, Union[Form, Sequence[Form]]]):
        self.base_form = base_form
        self._forms: Dict[Attributes, Tuple[Form, ...]] = {}
        for attrs in sorted(forms):
            variants = forms[attrs]
            if isinstance(variants, Form):
                variants = (variants,)
            if not variants:
                raise ValueError(f"No forms given for slot {attrs} of {base_form}")
            self._forms[attrs] = tuple(variants)

    @property
    def slot_keys(self) -> Tuple[Attributes, ...]:
        return tuple(self._forms)

    def inflected_form(self, attrs: Attributes) -> Form:
        return self._forms[attrs][0]

    def all_inflected_forms(self, attrs: Attributes) -> Tuple[Form, ...]:
        return self._forms[attrs]

    def forms_by_slot(self) -> Dict[Attributes, Form]:
        return {attrs: variants[0] for attrs, variants in self._forms.items()}

    def is_star(self, attrs: Attributes) -> bool:
        return STAR in self._forms[attrs]

    def contains_star(self) -> bool:
        return any(self.is_star(attrs) for attrs in self._forms)

    def __eq__(self, other):
        if not isinstance(other, ParadigmInstance):
            return NotImplemented
        return self.base_form == other.base_form and self._forms == other._forms

    def __hash__(self):
        return hash((self.base_form, tuple(self._forms.items())))

    def __str__(self):
        lines = []
        for attrs, variants in self._forms.items():
            rendered = ",".join(str(f) for f in variants)
            lines.append(f"{self.base_form} => {rendered} ({attrs.to_short_string()})")
        return "\n".join(lines)

    def __repr__(self):
        return f"ParadigmInstance({str(self.base_form)!r}, {len(self._forms)} slots)"


# ==============================================================================
# Corpus Reading
# ==============================================================================

WIKTIONARY_FIELD_DELIMITER = ","
# Never matches; the Wiktionary tables give no alternatives
WIKTIONARY_ALTERNATIVE_DELIMITER = "====="
CELEX_FIELD_DELIMITER = "\t"
CELEX_ALTERNATIVE_DELIMITER = ","


def parse_paradigm_lines(
    lines: Iterable[str],
    field_delimiter: str = CELEX_FIELD_DELIMITER,
    alternative_delimiter: str = CELEX_ALTERNATIVE_DELIMITER
) -> List[ParadigmInstance]:
    """
    Group ``inflected<delim>base<delim>attrs`` lines into paradigm instances.

    Args:
        lines: Iterable of text lines
        field_delimiter: Separator between the three fields
        alternative_delimiter: Separator between variant inflected forms

    Returns:
        List of ParadigmInstances in first-seen order of base form
    """
    proto: Dict[Form, Dict[Attributes, List[Form]]] = {}
    num_duplicates = 0

    for line_no, line in enumerate(lines, 1):
        line = line.rstrip("\n")
        if not line.strip():
            continue
        fields = line.split(field_delimiter)
        if len(fields) != 3:
            raise ValueError(f"Line {line_no}: expected 3 fields, got {len(fields)}: {line!r}")
        variants = [Form(alt) for alt in fields[0].split(alternative_delimiter)]
        base = Form(fields[1])
        attrs = Attributes.parse(fields[2])
        slots = proto.setdefault(base, {})
        if attrs in slots:
            num_duplicates += 1
        slots[attrs] = variants

    instances = [ParadigmInstance(base, slots) for base, slots in proto.items()]
    logger.info("%d paradigms read, %d duplicate entries discarded", len(instances), num_duplicates)
    return instances


def read_paradigm_instances(
    path: str,
    field_delimiter: str = CELEX_FIELD_DELIMITER,
    alternative_delimiter: str = CELEX_ALTERNATIVE_DELIMITER,
    canonical_only: bool = True
) -> List[ParadigmInstance]:
    """Read a paradigm table and keep only paradigms over the most common slot set."""
    logger.info("Loading from %s", path)
    with open(path, "r", encoding="utf-8") as f:
        instances = parse_paradigm_lines(f, field_delimiter, alternative_delimiter)
    if canonical_only:
        instances = filter_noncanonical_instances(instances)
    return instances


def read_wiktionary_instances(path: str) -> List[ParadigmInstance]:
    return read_paradigm_instances(path, WIKTIONARY_FIELD_DELIMITER, WIKTIONARY_ALTERNATIVE_DELIMITER)


def read_celex_instances(path: str) -> List[ParadigmInstance]:
    return read_paradigm_instances(path, CELEX_FIELD_DELIMITER, CELEX_ALTERNATIVE_DELIMITER)


# ==============================================================================
# Filters
# ==============================================================================

def filter_noncanonical_instances(instances: List[ParadigmInstance]) -> List[ParadigmInstance]:
    """
    Keep only paradigms defined over the most common slot-key set.

    Rejects paradigms with too few cells (filtered data) or too many
    (duplicated entries); usually only a handful are discarded.
    """
    if not instances:
        return []
    slot_set_counts = Counter(frozenset(inst.slot_keys) for inst in instances)
    most_common, num_kept = slot_set_counts.most_common(1)[0]
    logger.info(
        "Keeping %d / %d paradigms (%.3f) over the most common slot set",
        num_kept, len(instances), num_kept / len(instances)
    )
    return [inst for inst in instances if frozenset(inst.slot_keys) == most_common]


def filter_star_instances(instances: List[ParadigmInstance]) -> List[ParadigmInstance]:
    """Drop paradigms with any unattested (STAR) slot."""
    return [inst for inst in instances if not inst.contains_star()]
