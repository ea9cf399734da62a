"""Tests for ``paradigm_inflect.preprocessing``: symbols, forms, slot keys, readers."""

import pickle

import pytest

from paradigm_inflect.preprocessing import (
    BEGIN,
    END,
    STAR,
    Attributes,
    Form,
    ParadigmInstance,
    Symbol,
    filter_noncanonical_instances,
    filter_star_instances,
    parse_paradigm_lines,
    read_paradigm_instances,
    to_symbols,
)


class TestSymbols:
    def test_graphemes_not_code_points(self):
        # "e" + combining acute is one symbol
        assert len(to_symbols("cafe\u0301", normalize=False)) == 4

    def test_value_equality_and_order(self):
        assert Symbol("a") == Symbol("a")
        assert Symbol("a") < Symbol("b")
        assert BEGIN != END

    def test_immutable(self):
        with pytest.raises(AttributeError):
            Symbol("a").value = "b"


class TestForm:
    def test_lengths(self):
        assert len(Form("hießen")) == 6
        assert len(Form("русский")) == 7

    def test_substring_and_append(self):
        form = Form("walking")
        assert form.substring(0, 4) == Form("walk")
        assert form.substring(4) == Form("ing")
        assert Form("walk") + Form("ed") == Form("walked")
        assert str(form) == "walking"

    def test_substring_bad_bounds(self):
        with pytest.raises(ValueError):
            Form("abc").substring(2, 1)
        with pytest.raises(ValueError):
            Form("abc").substring(0, 4)

    def test_reverse(self):
        assert Form("abc").reverse() == Form("cba")

    def test_boundary_access(self):
        form = Form("ab")
        assert form.symbol_at_or_boundary(-1) == BEGIN
        assert form.symbol_at_or_boundary(0) == Symbol("a")
        assert form.symbol_at_or_boundary(2) == END

    def test_ordering_is_lexicographic(self):
        assert Form("ab") < Form("abc") < Form("b")

    def test_pickle(self):
        form = Form("русский")
        assert pickle.loads(pickle.dumps(form)) == form


class TestAttributes:
    def test_parse_and_render(self):
        attrs = Attributes.parse("Person=1st:Number=Sg")
        assert attrs.get("Person") == "1st"
        assert attrs.get("Tense") == ""
        assert str(attrs) == "Number=Sg:Person=1st"

    def test_equality_ignores_order(self):
        assert Attributes.parse("a=1:b=2") == Attributes.parse("b=2:a=1")

    def test_with_value(self):
        attrs = Attributes.parse("a=1:b=2")
        changed = attrs.with_value("a", "3")
        assert changed.get("a") == "3"
        assert attrs.get("a") == "1"

    def test_short_string(self):
        assert Attributes.parse("Tense=Present:Number=Plural").to_short_string() == "PluralPresen"

    def test_bad_line(self):
        with pytest.raises(ValueError):
            Attributes.parse("novalue")


class TestParadigmInstance:
    def test_slots_and_variants(self):
        past = Attributes.parse("tense=past")
        inst = ParadigmInstance(Form("dream"), {past: [Form("dreamed"), Form("dreamt")]})
        assert inst.slot_keys == (past,)
        assert inst.inflected_form(past) == Form("dreamed")
        assert inst.all_inflected_forms(past) == (Form("dreamed"), Form("dreamt"))
        assert not inst.contains_star()

    def test_star(self):
        past = Attributes.parse("tense=past")
        inst = ParadigmInstance(Form("must"), {past: STAR})
        assert inst.is_star(past)
        assert inst.contains_star()


class TestReaders:
    LINES = [
        "walked\twalk\ttense=past",
        "walking\twalk\ttense=prog",
        "dreamed,dreamt\tdream\ttense=past",
        "dreaming\tdream\ttense=prog",
        "be\tbe\ttense=inf",
        "",
    ]

    def test_parse_lines(self):
        instances = parse_paradigm_lines(self.LINES)
        assert [str(i.base_form) for i in instances] == ["walk", "dream", "be"]
        dream = instances[1]
        assert len(dream.all_inflected_forms(Attributes.parse("tense=past"))) == 2

    def test_bad_field_count(self):
        with pytest.raises(ValueError):
            parse_paradigm_lines(["walked\twalk"])

    def test_filter_noncanonical(self):
        instances = filter_noncanonical_instances(parse_paradigm_lines(self.LINES))
        assert [str(i.base_form) for i in instances] == ["walk", "dream"]

    def test_filter_star(self):
        instances = parse_paradigm_lines(["STAR\tmust\ttense=past", "walked\twalk\ttense=past"])
        assert [str(i.base_form) for i in filter_star_instances(instances)] == ["walk"]

    def test_read_from_disk(self, tmp_path):
        path = tmp_path / "paradigms.txt"
        path.write_text("\n".join(self.LINES), encoding="utf-8")
        instances = read_paradigm_instances(str(path))
        assert len(instances) == 2
