"""Path rules used for ignore checks and conventions.

A rule is one of four explicit variants:
- Pattern: regular expression searched in the path
- Predicate: callable taking the path
- PathPrefix: path starts with the normalized prefix
- AnyOf: matches when any contained rule matches (short-circuit OR)

Raw configuration values (compiled regex, callable, string, list) are
converted with coerce_rule() so evaluation only ever sees the variants.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Union

from kiln.errors import ConfigError


def normalize_path(path: str) -> str:
    """Normalize a watcher path to forward slashes without redundant parts.

    Example:
        >>> normalize_path("app\\\\assets\\\\.\\\\logo.png")
        'app/assets/logo.png'
    """
    forward = path.replace("\\", "/")
    normalized = posixpath.normpath(forward)
    if forward.endswith("/") and not normalized.endswith("/"):
        normalized += "/"
    return normalized


@dataclass(frozen=True)
class Pattern:
    """Rule that matches when the regular expression is found in the path."""

    regex: re.Pattern[str]

    @classmethod
    def compile(cls, expression: str) -> Pattern:
        """Build a Pattern rule from a regular expression string."""
        try:
            return cls(re.compile(expression))
        except re.error as e:
            msg = f"Invalid regular expression: {expression!r}"
            raise ConfigError(msg, internal_details=str(e)) from e


@dataclass(frozen=True)
class Predicate:
    """Rule that delegates to a callable."""

    func: Callable[[str], bool]


@dataclass(frozen=True)
class PathPrefix:
    """Rule that matches paths under a directory or file prefix."""

    prefix: str


@dataclass(frozen=True)
class AnyOf:
    """Rule that matches when any of its members match."""

    rules: tuple[IgnoreRule, ...]


IgnoreRule = Union[Pattern, Predicate, PathPrefix, AnyOf]


def coerce_rule(value: Any) -> IgnoreRule:
    """Convert a raw rule value into an IgnoreRule variant.

    Args:
        value: A rule variant, compiled regex, callable, path prefix or
            sequence of any of these.

    Returns:
        The equivalent IgnoreRule.

    Raises:
        ConfigError: If the value has no rule interpretation.

    Example:
        >>> coerce_rule(["vendor/", "tmp/"])
        AnyOf(rules=(PathPrefix(prefix='vendor/'), PathPrefix(prefix='tmp/')))
    """
    if isinstance(value, (Pattern, Predicate, PathPrefix, AnyOf)):
        return value
    if isinstance(value, re.Pattern):
        return Pattern(value)
    if isinstance(value, str):
        return PathPrefix(value)
    if isinstance(value, Sequence):
        return AnyOf(tuple(coerce_rule(item) for item in value))
    if callable(value):
        return Predicate(value)

    msg = f"Unsupported rule of type {type(value).__name__}"
    raise ConfigError(msg)


def matches_rule(rule: IgnoreRule, path: str) -> bool:
    """Evaluate a rule against a path.

    Args:
        rule: Rule to evaluate.
        path: Path relative to the project root.

    Returns:
        True if the rule matches the path.
    """
    if isinstance(rule, Pattern):
        return rule.regex.search(path) is not None
    if isinstance(rule, Predicate):
        return bool(rule.func(path))
    if isinstance(rule, PathPrefix):
        return normalize_path(path).startswith(normalize_path(rule.prefix))
    if isinstance(rule, AnyOf):
        return any(matches_rule(member, path) for member in rule.rules)

    msg = f"Unknown rule variant: {rule!r}"
    raise TypeError(msg)


def rule_predicate(value: Any) -> Callable[[str], bool]:
    """Turn a raw rule value into a path predicate."""
    rule = coerce_rule(value)
    return lambda path: matches_rule(rule, path)
