"""Compile pipeline contract and default implementation.

A pipeline takes (path, linters, compilers, manifest) and returns a
PipelineResult, None for a deliberately empty result, or raises a
BuildError. The manifest treats it as an opaque collaborator.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from kiln.conventions import is_dependency_json
from kiln.errors import BuildError, CompileError, LintError

if TYPE_CHECKING:
    from kiln.manifest import BuildManifest
    from kiln.plugins import Compiler, Linter

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Output of a successful pipeline run.

    Attributes:
        source: Original file content.
        compiled: Compiled text.
        dependencies: Paths the file depends on, in reported order.
        source_map: Source map of compiled relative to the originals, if any.
    """

    source: str
    compiled: str
    dependencies: tuple[str, ...] = field(default_factory=tuple)
    source_map: str | dict[str, Any] | None = None


class Pipeline(Protocol):
    """Callable that compiles one file."""

    def __call__(
        self,
        path: str,
        linters: Sequence[Linter],
        compilers: Sequence[Compiler],
        manifest: BuildManifest,
    ) -> Awaitable[PipelineResult | None]: ...


async def run_pipeline(
    path: str,
    linters: Sequence[Linter],
    compilers: Sequence[Compiler],
    manifest: BuildManifest,
) -> PipelineResult:
    """Lint and compile a file through its registered plugins.

    Compilers are chained: each receives the previous compiler's output.
    Dependencies from every compiler are collected in order without
    duplicates, and the last source map produced wins. Dependency-namespace
    JSON without a compiler is turned into a CommonJS module body.

    Raises:
        LintError: If a linter reports a problem.
        CompileError: If a compiler raises.
    """
    source = await manifest.content_cache.read(path)
    log = logger.bind(path=path)

    for linter in linters:
        try:
            problem = await linter.lint(source, path)
        except Exception as e:
            raise LintError(str(e), path=path, cause=e) from e
        if problem:
            raise LintError(problem, path=path)

    data = source
    source_map: str | dict[str, Any] | None = None
    dependencies: list[str] = []

    for compiler in compilers:
        try:
            output = await compiler.compile(data, path)
        except BuildError:
            raise
        except Exception as e:
            raise CompileError(str(e), path=path, cause=e) from e
        data = output.data
        if output.source_map is not None:
            source_map = output.source_map
        dependencies.extend(dep for dep in output.dependencies if dep not in dependencies)

    if not compilers and is_dependency_json(path, manifest.config.dependency_dir):
        data = _json_module(source, path)

    log.debug("pipeline_completed", compilers=len(compilers), dependencies=len(dependencies))
    return PipelineResult(
        source=source,
        compiled=data,
        dependencies=tuple(dependencies),
        source_map=source_map,
    )


def _json_module(source: str, path: str) -> str:
    try:
        json.loads(source)
    except json.JSONDecodeError as e:
        raise CompileError(f"Invalid JSON: {e}", path=path, cause=e) from e
    return f"module.exports = {source.strip()};"
