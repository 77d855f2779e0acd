"""Naming conventions that classify project paths.

A convention table maps a name ("assets", "vendor", "ignored", or any
project-specific name) to a predicate over paths. This module also knows
the dependency namespace (the third-party package directory), which is
exempt from ignore rules.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from kiln.rules import AnyOf, IgnoreRule, Pattern, normalize_path, rule_predicate

DEFAULT_DEPENDENCY_DIR = "node_modules"
"""Directory holding third-party packages."""

ASSETS_RULE: IgnoreRule = Pattern(re.compile(r"assets[\\/]"))
VENDOR_RULE: IgnoreRule = Pattern(re.compile(r"(^bower_components|node_modules|vendor)[\\/]"))
IGNORED_RULE: IgnoreRule = AnyOf(
    (
        Pattern(re.compile(r"[\\/]_")),
        Pattern(re.compile(r"vendor[\\/](node|j?ruby-.*|bundle)[\\/]")),
    )
)

DEFAULT_CONVENTIONS: dict[str, IgnoreRule] = {
    "assets": ASSETS_RULE,
    "vendor": VENDOR_RULE,
    "ignored": IGNORED_RULE,
}

ConventionTable = dict[str, Any]


def normalize_conventions(raw: Mapping[str, Any]) -> ConventionTable:
    """Build a convention table from raw convention values.

    Values with a rule interpretation (rule variants, compiled regex,
    callables, path prefixes, lists) become predicates. None and any other
    value are kept unchanged so that classification can reject them.

    Args:
        raw: Mapping of convention name to raw value.

    Returns:
        Convention table keyed by name.
    """
    table: ConventionTable = {}
    for name, value in raw.items():
        if value is None or isinstance(value, (bool, int, float, dict)):
            table[name] = value
        else:
            table[name] = rule_predicate(value)
    return table


def default_convention_table() -> ConventionTable:
    """Return the convention table built from DEFAULT_CONVENTIONS."""
    return normalize_conventions(DEFAULT_CONVENTIONS)


def is_dependency(path: str, dependency_dir: str = DEFAULT_DEPENDENCY_DIR) -> bool:
    """Check whether a path lives in the dependency namespace.

    Example:
        >>> is_dependency("node_modules/react/index.js")
        True
        >>> is_dependency("app/node_modules.js")
        False
    """
    return normalize_path(path).startswith(f"{dependency_dir}/")


def is_dependency_json(path: str, dependency_dir: str = DEFAULT_DEPENDENCY_DIR) -> bool:
    """Check whether a path is a JSON file in the dependency namespace.

    Example:
        >>> is_dependency_json("node_modules/lib/package.json")
        True
    """
    return is_dependency(path, dependency_dir) and normalize_path(path).endswith(".json")


def convention_predicate(table: Mapping[str, Any], name: str) -> Callable[[str], bool] | None:
    """Return the callable registered under name, or None when it is absent."""
    convention = table.get(name)
    return convention if callable(convention) else None
