"""Tests for schemalint.engine.template: placeholder rendering and binding."""

from __future__ import annotations

import pytest

from schemalint.engine.errors import MissingParameter, RenderError, TypeMismatch, ValueOutOfRange
from schemalint.engine.rules import ParameterSpec
from schemalint.engine.template import (
    RenderedQuery,
    placeholders,
    render,
    render_text,
    strip_terminator,
)

LIMIT = {"limit": ParameterSpec(name="limit", type="integer", minimum=1)}
PREFIX = {"prefix": ParameterSpec(name="prefix", type="string")}


class TestPlaceholders:
    def test_first_appearance_order(self) -> None:
        template = "SELECT {{ b }}, {{a}}, {{  b  }} FROM t WHERE x > {{ c }}"
        assert placeholders(template) == ["b", "a", "c"]

    def test_no_placeholders(self) -> None:
        assert placeholders("SELECT 1") == []

    def test_ignores_non_identifiers(self) -> None:
        assert placeholders("SELECT '{{ 1abc }}', '{{}}'") == []


class TestStripTerminator:
    def test_strips_trailing_semicolons_and_whitespace(self) -> None:
        assert strip_terminator("  SELECT 1 ;;\n") == "SELECT 1"

    def test_keeps_inner_semicolons(self) -> None:
        assert strip_terminator("SELECT ';'") == "SELECT ';'"


class TestRender:
    def test_integer_rendered_as_literal(self) -> None:
        rendered = render("SELECT * FROM t WHERE length(name) > {{ limit }};", LIMIT, {"limit": 30})
        assert rendered == RenderedQuery(sql="SELECT * FROM t WHERE length(name) > 30", params={})

    def test_integer_from_string(self) -> None:
        rendered = render("SELECT {{ limit }}", LIMIT, {"limit": "42"})
        assert rendered.sql == "SELECT 42"

    def test_negative_integer_parenthesised(self) -> None:
        spec = {"n": ParameterSpec("n", "integer")}
        rendered = render("SELECT 10 -{{ n }} AS v", spec, {"n": -3})
        assert rendered.sql == "SELECT 10 -(-3) AS v"
        assert "--" not in rendered.sql

    def test_string_becomes_bind_marker(self) -> None:
        rendered = render("SELECT * FROM t WHERE name LIKE {{ prefix }} || '%'", PREFIX, {"prefix": "tmp_"})
        assert rendered.sql == "SELECT * FROM t WHERE name LIKE :prefix || '%'"
        assert rendered.params == {"prefix": "tmp_"}

    def test_string_value_never_interpolated(self) -> None:
        hostile = "x'; DROP TABLE t; --"
        rendered = render("SELECT {{ prefix }}", PREFIX, {"prefix": hostile})
        assert hostile not in rendered.sql
        assert rendered.params["prefix"] == hostile

    def test_boolean_bound(self) -> None:
        params = {"flag": ParameterSpec(name="flag", type="boolean")}
        rendered = render("SELECT {{ flag }}", params, {"flag": "yes"})
        assert rendered.sql == "SELECT :flag"
        assert rendered.params == {"flag": True}

    def test_repeated_placeholder_binds_once(self) -> None:
        rendered = render("SELECT {{ prefix }}, {{ prefix }}", PREFIX, {"prefix": "a"})
        assert rendered.sql == "SELECT :prefix, :prefix"
        assert rendered.params == {"prefix": "a"}

    def test_deterministic(self) -> None:
        template = "SELECT {{ limit }} WHERE x = {{ prefix }}"
        specs = {**LIMIT, **PREFIX}
        values = {"limit": 5, "prefix": "p"}
        assert render(template, specs, values) == render(template, specs, values)

    def test_missing_parameter(self) -> None:
        with pytest.raises(MissingParameter) as exc_info:
            render("SELECT {{ limit }}", LIMIT, {})
        assert exc_info.value.name == "limit"

    def test_missing_reported_before_type_mismatch(self) -> None:
        specs = {**LIMIT, **PREFIX}
        with pytest.raises(MissingParameter):
            render("SELECT {{ limit }}, {{ prefix }}", specs, {"limit": "not-a-number"})

    def test_type_mismatch(self) -> None:
        with pytest.raises(TypeMismatch):
            render("SELECT {{ limit }}", LIMIT, {"limit": "thirty"})

    def test_bool_is_not_an_integer(self) -> None:
        with pytest.raises(TypeMismatch):
            render("SELECT {{ limit }}", LIMIT, {"limit": True})

    def test_out_of_range(self) -> None:
        with pytest.raises(ValueOutOfRange):
            render("SELECT {{ limit }}", LIMIT, {"limit": 0})

    def test_undeclared_placeholder(self) -> None:
        with pytest.raises(RenderError):
            render("SELECT {{ other }}", LIMIT, {"other": 1})

    def test_unused_values_ignored(self) -> None:
        rendered = render("SELECT 1", LIMIT, {"limit": 5})
        assert rendered == RenderedQuery(sql="SELECT 1")


class TestRenderText:
    def test_substitutes_plain_text(self) -> None:
        text = render_text("Table {{ scope }}.{{ table }}", {"scope": "main", "table": "t"})
        assert text == "Table main.t"

    def test_none_renders_empty(self) -> None:
        assert render_text("[{{ column }}]", {"column": None}) == "[]"

    def test_missing_name(self) -> None:
        with pytest.raises(MissingParameter):
            render_text("{{ nope }}", {})
