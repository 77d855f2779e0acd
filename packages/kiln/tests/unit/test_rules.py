"""Unit tests for path rules."""

from __future__ import annotations

import re
from unittest.mock import MagicMock

import pytest

from kiln.errors import ConfigError
from kiln.rules import (
    AnyOf,
    PathPrefix,
    Pattern,
    Predicate,
    coerce_rule,
    matches_rule,
    normalize_path,
    rule_predicate,
)


class TestNormalizePath:
    """Tests for normalize_path()."""

    def test_converts_backslashes(self) -> None:
        assert normalize_path("app\\assets\\logo.png") == "app/assets/logo.png"

    def test_collapses_redundant_parts(self) -> None:
        assert normalize_path("app/./views/../main.js") == "app/main.js"

    def test_keeps_trailing_slash(self) -> None:
        assert normalize_path("app/vendor/") == "app/vendor/"


class TestMatchesRule:
    """Tests for matches_rule() on each variant."""

    def test_pattern_searches_anywhere(self) -> None:
        rule = Pattern(re.compile(r"[\\/]_"))
        assert matches_rule(rule, "app/_partial.js") is True
        assert matches_rule(rule, "app/partial.js") is False

    def test_predicate_is_called_with_path(self) -> None:
        func = MagicMock(return_value=True)
        assert matches_rule(Predicate(func), "app/a.js") is True
        func.assert_called_once_with("app/a.js")

    def test_path_prefix_uses_normalized_paths(self) -> None:
        rule = PathPrefix("./app/legacy")
        assert matches_rule(rule, "app/legacy/old.js") is True
        assert matches_rule(rule, "app/modern/new.js") is False

    def test_path_prefix_with_trailing_slash_requires_directory(self) -> None:
        rule = PathPrefix("app/")
        assert matches_rule(rule, "app/main.js") is True
        assert matches_rule(rule, "application.js") is False

    def test_any_of_matches_if_any_member_matches(self) -> None:
        rule = AnyOf((PathPrefix("vendor/"), Pattern(re.compile(r"\.tmp$"))))
        assert matches_rule(rule, "app/cache.tmp") is True
        assert matches_rule(rule, "vendor/lib.js") is True
        assert matches_rule(rule, "app/main.js") is False

    def test_any_of_short_circuits(self) -> None:
        later = MagicMock(return_value=True)
        rule = AnyOf((PathPrefix("app/"), Predicate(later)))
        assert matches_rule(rule, "app/main.js") is True
        later.assert_not_called()

    def test_empty_any_of_never_matches(self) -> None:
        assert matches_rule(AnyOf(()), "app/main.js") is False


class TestCoerceRule:
    """Tests for coerce_rule() conversions."""

    def test_regex_becomes_pattern(self) -> None:
        regex = re.compile("x")
        assert coerce_rule(regex) == Pattern(regex)

    def test_string_becomes_prefix(self) -> None:
        assert coerce_rule("app/") == PathPrefix("app/")

    def test_callable_becomes_predicate(self) -> None:
        def func(path: str) -> bool:
            return True

        assert coerce_rule(func) == Predicate(func)

    def test_list_becomes_any_of(self) -> None:
        rule = coerce_rule(["a/", ["b/"]])
        assert rule == AnyOf((PathPrefix("a/"), AnyOf((PathPrefix("b/"),))))

    def test_variants_pass_through(self) -> None:
        rule = PathPrefix("a/")
        assert coerce_rule(rule) is rule

    def test_unsupported_value_raises(self) -> None:
        with pytest.raises(ConfigError, match="Unsupported rule"):
            coerce_rule(42)

    def test_invalid_pattern_raises(self) -> None:
        with pytest.raises(ConfigError, match="Invalid regular expression"):
            Pattern.compile("(unclosed")


def test_rule_predicate_wraps_raw_value() -> None:
    predicate = rule_predicate(["vendor/", re.compile(r"\.map$")])
    assert predicate("vendor/x.js") is True
    assert predicate("app/x.js.map") is True
    assert predicate("app/x.js") is False
