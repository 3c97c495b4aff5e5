"""
Tests for paths, templates and the expression evaluator.
"""

import pytest

from flowexec.engine.expressions import (
    build_bindings,
    evaluate,
    render,
    resolve_path,
    set_path,
)
from flowexec.errors import ExpressionError


BINDINGS = {
    "topic": "graphs",
    "review": {"score": 7, "tags": ["a", "b"]},
    "items": [{"name": "first"}, {"name": "second"}],
    "empty_list": [],
}


class TestPaths:
    """Tests for path resolution and assignment."""

    def test_resolve_nested(self):
        assert resolve_path(BINDINGS, "review.score") == 7
        assert resolve_path(BINDINGS, "$.items[1].name") == "second"
        assert resolve_path(BINDINGS, "items[-1].name") == "second"
        assert resolve_path(BINDINGS, "review.tags[0]") == "a"

    def test_missing_segments_resolve_to_none(self):
        assert resolve_path(BINDINGS, "review.missing.deeper") is None
        assert resolve_path(BINDINGS, "items[5].name") is None
        assert resolve_path(BINDINGS, "topic.__class__") is None

    def test_set_path_creates_intermediates(self):
        target = {"a": 1}
        set_path(target, "b.c.d", 2)
        assert target == {"a": 1, "b": {"c": {"d": 2}}}

    def test_set_path_rejects_empty(self):
        with pytest.raises(ExpressionError):
            set_path({}, "$", 1)


class TestTemplates:
    """Tests for template rendering."""

    def test_raw_value(self):
        assert render("$.review", BINDINGS) == {"score": 7, "tags": ["a", "b"]}
        assert render("${review.score}", BINDINGS) == 7

    def test_text_substitution(self):
        assert render("About ${topic} (${review.score}/10)", BINDINGS) == "About graphs (7/10)"
        assert render("Tags: ${review.tags}", BINDINGS) == 'Tags: ["a", "b"]'
        assert render("Missing: ${nothing}", BINDINGS) == "Missing: "

    def test_recursive(self):
        rendered = render({"t": "${topic}", "list": ["$.review.score", 3]}, BINDINGS)
        assert rendered == {"t": "graphs", "list": [7, 3]}


class TestEvaluate:
    """Tests for the safe expression evaluator."""

    @pytest.mark.parametrize("expression,expected", [
        ("review.score >= 7", True),
        ("review.score === 7 && topic == 'graphs'", True),
        ("review.score !== 7 || false", False),
        ("!empty(review.tags)", True),
        ("empty(empty_list)", True),
        ("len(items) + 1", 3),
        ("'a' in review.tags", True),
        ("items[0].name", "first"),
        ("${review.score} > 5", True),
        ("$.topic", "graphs"),
        ("upper(topic)", "GRAPHS"),
        ("max(1, review.score)", 7),
        ("unknown == null", True),
        ("exists(unknown)", False),
    ])
    def test_supported_subset(self, expression, expected):
        assert evaluate(expression, BINDINGS) == expected

    @pytest.mark.parametrize("expression,bindings", [
        ('label == "ok!"', {"label": "ok!"}),
        ('note == "a && b"', {"note": "a && b"}),
        ("note === 'x || y' && !empty(note)", {"note": "x || y"}),
        ('ref == "$.topic"', {"ref": "$.topic"}),
        ('tpl == "${name}"', {"tpl": "${name}"}),
        (r'quote == "say \"hi!\""', {"quote": 'say "hi!"'}),
        ("${label} == 'a!==b'", {"label": "a!==b"}),
    ])
    def test_string_literals_are_not_rewritten(self, expression, bindings):
        assert evaluate(expression, bindings) is True

    def test_dict_literal_beside_template(self):
        assert evaluate("{'k': ${review.score}}['k'] == 7", BINDINGS) is True

    def test_literal_booleans_pass_through(self):
        assert evaluate(True, {}) is True

    @pytest.mark.parametrize("expression", [
        "__import__('os')",
        "open('x')",
        "topic.upper()",
        "lambda: 1",
        "review.score >",
        "",
    ])
    def test_rejected(self, expression):
        with pytest.raises(ExpressionError):
            evaluate(expression, BINDINGS)

    def test_runtime_error_is_wrapped(self):
        with pytest.raises(ExpressionError):
            evaluate("topic + 1", BINDINGS)


def test_build_bindings_reserved_keys():
    bindings = build_bindings({"a": 1, "input": "shadowed"}, {"x": 2}, {"n1": "out"}, {"nodeId": "n2"})
    assert bindings == {
        "a": 1,
        "input": {"x": 2},
        "nodes": {"n1": "out"},
        "context": {"nodeId": "n2"},
    }
