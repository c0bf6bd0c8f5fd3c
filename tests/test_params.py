"""
Tests for yeslite/params.py
"""

import pytest
from yeslite.errors import MissingParameter, ParameterCountMismatch, TypeMismatch
from yeslite.params import (
    Named, NamedSource, ParameterLayout, Positional, PositionalSource,
    bind_parameters, is_blank, parameter_source,
)


class TestParameterSource:
    """Test classification of caller parameters."""

    def test_none_is_empty_positional(self):
        assert parameter_source(None) == PositionalSource(())

    def test_list_and_tuple(self):
        assert parameter_source([1, 2]) == PositionalSource((1, 2))
        assert parameter_source((1,)) == PositionalSource((1,))

    def test_mapping(self):
        source = parameter_source({"a": 1})
        assert isinstance(source, NamedSource)

    def test_scalar_is_single_value(self):
        assert parameter_source("x") == PositionalSource(("x",))
        assert parameter_source(b"ab") == PositionalSource((b"ab",))
        assert parameter_source(5) == PositionalSource((5,))


class TestScan:
    """Test placeholder scanning and slot numbering."""

    def test_unlabelled(self):
        layout = ParameterLayout.scan("SELECT ?, ?, ?")
        assert layout.count == 3
        assert [p.ordinal for p in layout.parameters] == [1, 2, 3]

    def test_explicit_numbers(self):
        layout = ParameterLayout.scan("SELECT ?2, ?1, ?2")
        assert layout.count == 2
        assert layout.parameters[0] == Positional(2, explicit=True)
        assert layout.parameters[0].literal == "?2"

    def test_unlabelled_after_explicit(self):
        layout = ParameterLayout.scan("SELECT ?5, ?")
        assert layout.count == 6
        assert layout.parameters[1].ordinal == 6

    def test_named_reuse_slot(self):
        layout = ParameterLayout.scan("SELECT :a, $b, :a")
        assert layout.count == 2
        assert layout.parameters[0] == Named(":", "a", 1)
        assert layout.parameters[2].ordinal == 1
        assert layout.is_named

    def test_prefix_is_part_of_name(self):
        layout = ParameterLayout.scan("SELECT :a, @a")
        assert layout.count == 2

    def test_ignores_literals_and_comments(self):
        sql = """SELECT '?', "a?", [b?], `c?` -- ?
                 /* :x */ FROM t WHERE x = ?"""
        layout = ParameterLayout.scan(sql)
        assert layout.count == 1

    def test_dollar_inside_identifier(self):
        assert ParameterLayout.scan("SELECT a$b FROM t").count == 0

    def test_out_of_range_number(self):
        with pytest.raises(ParameterCountMismatch):
            ParameterLayout.scan("SELECT ?0")
        with pytest.raises(ParameterCountMismatch):
            ParameterLayout.scan("SELECT ?40000")

    def test_null_bindings(self):
        assert ParameterLayout.scan("SELECT ?, :a").null_bindings() == (None, None)


class TestBind:
    """Test resolving parameters into slot values."""

    def test_positional_in_order(self):
        assert bind_parameters("SELECT ?, ?", ["a", "b"]) == ("a", "b")

    def test_positional_count_mismatch(self):
        with pytest.raises(ParameterCountMismatch):
            bind_parameters("SELECT ?, ?", ["a"])
        with pytest.raises(ParameterCountMismatch):
            bind_parameters("SELECT ?", ["a", "b"])

    def test_no_parameters(self):
        assert bind_parameters("SELECT 1") == ()

    def test_named_with_prefix(self):
        assert bind_parameters("SELECT $x, :y", {"$x": 1, ":y": 2}) == (1, 2)

    def test_named_without_prefix(self):
        assert bind_parameters("SELECT @x", {"x": 1}) == (1,)

    def test_named_repeats_bind_same_value(self):
        assert bind_parameters("SELECT :a, :a, :b", {"a": 1, "b": 2}) == (1, 2)

    def test_extra_keys_are_ignored(self):
        assert bind_parameters("SELECT :a", {"a": 1, "unused": 2}) == (1,)

    def test_missing_named(self):
        with pytest.raises(MissingParameter) as exc_info:
            bind_parameters("SELECT :a, :b", {"a": 1})
        assert ":b" in str(exc_info.value)

    def test_missing_parameter_is_key_error(self):
        with pytest.raises(KeyError):
            bind_parameters("SELECT :a", {})

    def test_mapping_for_numbered(self):
        assert bind_parameters("SELECT ?2, ?1", {1: "one", "?2": "two"}) == ("one", "two")

    def test_gap_in_numbering_binds_null(self):
        assert bind_parameters("SELECT ?3", {3: "x"}) == (None, None, "x")

    def test_values_are_converted(self):
        assert bind_parameters("SELECT ?, ?", [True, bytearray(b"z")]) == (1, b"z")

    def test_type_mismatch(self):
        with pytest.raises(TypeMismatch):
            bind_parameters("SELECT ?", [2 ** 64])


class TestIsBlank:

    def test_blank(self):
        assert is_blank("")
        assert is_blank("  ;\n -- trailing comment")
        assert is_blank("/* c */ ;")

    def test_not_blank(self):
        assert not is_blank("; SELECT 1")
