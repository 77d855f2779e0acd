"""Module wrappers applied to compiled scripts and templates.

A wrapper receives (path, compiled data, is_module) and returns either a
Wrapped value or a plain string containing the compiled data. Helper and
vendor files (is_module=False) pass through with an empty prefix and suffix
so downstream bundling can leave them out of the module graph.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Callable
from dataclasses import dataclass

from kiln.config import WrapperKind


@dataclass(frozen=True)
class Wrapped:
    """Compiled data split into wrapper prefix, body and suffix."""

    prefix: str
    suffix: str
    data: str
    is_module: bool = True

    def to_string(self) -> str:
        return f"{self.prefix}{self.data}{self.suffix}"


ModuleWrapper = Callable[[str, str, bool], "Wrapped | str"]


def module_name(path: str) -> str:
    """Derive a module name from a source path.

    Example:
        >>> module_name("app/views/home.coffee")
        'views/home'
    """
    name = re.sub(r"^app/", "", path.replace("\\", "/"))
    return posixpath.splitext(name)[0]


def commonjs_wrapper(path: str, data: str, is_module: bool) -> Wrapped:
    """Wrap data as a CommonJS module registration."""
    if not is_module:
        return Wrapped("", "", data, is_module=False)
    prefix = f'require.register("{module_name(path)}", function(exports, require, module) {{\n'
    return Wrapped(prefix, "\n});\n\n", data)


def amd_wrapper(path: str, data: str, is_module: bool) -> Wrapped:
    """Wrap data as an AMD module definition."""
    if not is_module:
        return Wrapped("", "", data, is_module=False)
    prefix = (
        f'define("{module_name(path)}", ["require", "exports", "module"], '
        "function(require, exports, module) {\n"
    )
    return Wrapped(prefix, "\n});\n\n", data)


def no_wrapper(path: str, data: str, is_module: bool) -> Wrapped:
    """Leave data unwrapped."""
    return Wrapped("", "", data, is_module=is_module)


WRAPPERS: dict[WrapperKind, ModuleWrapper] = {
    WrapperKind.COMMONJS: commonjs_wrapper,
    WrapperKind.AMD: amd_wrapper,
    WrapperKind.NONE: no_wrapper,
}


def get_wrapper(kind: WrapperKind | str) -> ModuleWrapper:
    """Return the wrapper function for a wrapper kind."""
    return WRAPPERS[WrapperKind(kind)]


def split_wrapped(compiled: str, wrapped: Wrapped | str) -> Wrapped:
    """Normalize a wrapper result into prefix, body and suffix.

    String results are decomposed by locating the compiled text inside
    them. When it cannot be found, the whole string becomes the body.

    Example:
        >>> split_wrapped("x;", "(function(){x;})();")
        Wrapped(prefix='(function(){', suffix='})();', data='x;', is_module=True)
    """
    if isinstance(wrapped, Wrapped):
        return wrapped
    position = wrapped.find(compiled)
    if position < 0:
        return Wrapped("", "", wrapped)
    return Wrapped(wrapped[:position], wrapped[position + len(compiled) :], compiled)
