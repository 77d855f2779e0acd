"""Compiler and linter plugin interfaces.

kiln never parses source code itself. Compilers and linters are plugins
matched against paths by pattern; the watcher asks the registry for the
plugins that apply to a changed file and hands them to the manifest.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class CompileOutput:
    """Result of one compiler run.

    Attributes:
        data: Compiled text.
        source_map: Optional source map (JSON string or decoded dict).
        dependencies: Paths the compiled file depends on.
    """

    data: str
    source_map: str | dict[str, Any] | None = None
    dependencies: tuple[str, ...] = field(default_factory=tuple)


@runtime_checkable
class Compiler(Protocol):
    """Protocol for compiler plugins.

    Attributes:
        type: Output type ("javascript", "stylesheet", "template").
        pattern: Paths this compiler handles.
    """

    type: str
    pattern: re.Pattern[str]

    async def compile(self, data: str, path: str) -> CompileOutput:
        """Compile data read from path.

        Raises:
            Exception: Any failure; the pipeline reports it as a CompileError.
        """
        ...


@runtime_checkable
class Linter(Protocol):
    """Protocol for linter plugins."""

    pattern: re.Pattern[str]

    async def lint(self, data: str, path: str) -> str | None:
        """Return a problem description, or None when the file is clean."""
        ...


class PassthroughCompiler:
    """Compiler that returns its input unchanged.

    Example:
        >>> compiler = PassthroughCompiler("javascript", r"\\.js$")
        >>> bool(compiler.pattern.search("app/main.js"))
        True
    """

    def __init__(self, type: str, pattern: str) -> None:
        self.type = type
        self.pattern = re.compile(pattern)

    async def compile(self, data: str, path: str) -> CompileOutput:
        return CompileOutput(data=data)

    def __repr__(self) -> str:
        return f"PassthroughCompiler({self.type!r}, {self.pattern.pattern!r})"


def default_compilers() -> list[Compiler]:
    """Return the built-in compilers for plain scripts and stylesheets."""
    return [
        PassthroughCompiler("javascript", r"\.js$"),
        PassthroughCompiler("stylesheet", r"\.css$"),
    ]


class PluginRegistry:
    """Registered compilers and linters.

    Attributes:
        compilers: Compiler plugins, in priority order.
        linters: Linter plugins.
    """

    def __init__(
        self,
        compilers: Sequence[Compiler] | None = None,
        linters: Sequence[Linter] | None = None,
    ) -> None:
        self.compilers: list[Compiler] = list(default_compilers() if compilers is None else compilers)
        self.linters: list[Linter] = list(linters or [])

    def compilers_for(self, path: str) -> list[Compiler]:
        """Return the compilers whose pattern matches path."""
        return [compiler for compiler in self.compilers if compiler.pattern.search(path)]

    def linters_for(self, path: str) -> list[Linter]:
        """Return the linters whose pattern matches path."""
        return [linter for linter in self.linters if linter.pattern.search(path)]
