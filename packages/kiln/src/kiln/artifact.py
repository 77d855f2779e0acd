"""Per-file compiled state and output composition.

CompiledArtifact wraps one source file's current compiled state and
exposes a single compile() operation that runs the external pipeline and
updates the record transactionally:

    uncompiled -> compiling -> compiled | errored -> compiling ... -> disposed

On success the compiled text is wrapped (scripts and templates only) and
composed into a SourceNode that maps the emitted output back to the
originals. Disposal is terminal and returns an immutable snapshot.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field

from kiln.conventions import is_dependency_json
from kiln.errors import ArtifactDisposedError, BuildError, CompileError, KilnError
from kiln.sourcemap import SourceMapConsumer, SourceNode, identity_node, parse_source_map
from kiln.wrappers import ModuleWrapper, Wrapped, split_wrapped

if TYPE_CHECKING:
    from kiln.manifest import BuildManifest
    from kiln.pipeline import PipelineResult
    from kiln.plugins import Compiler, Linter

logger = structlog.get_logger(__name__)

WRAPPED_TYPES = frozenset({"javascript", "template"})
"""Output types that receive the module wrapper."""


class ArtifactState(enum.Enum):
    """Lifecycle state of a CompiledArtifact."""

    UNCOMPILED = "uncompiled"
    COMPILING = "compiling"
    COMPILED = "compiled"
    ERRORED = "errored"
    DISPOSED = "disposed"


class ArtifactSnapshot(BaseModel):
    """Immutable view of a record taken at disposal.

    Attributes:
        path: Path the record tracked.
        type: Output type, if known.
        dependencies: Dependencies reported by the last successful compile.
        compilation_time: When the record last settled.
        error: Message of the last error, if any.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = Field(..., description="Tracked path")
    type: str | None = Field(default=None, description="Output type")
    dependencies: tuple[str, ...] = Field(default=(), description="Reported dependencies")
    compilation_time: datetime | None = Field(default=None, description="Last settle time")
    error: str | None = Field(default=None, description="Last error message")


def infer_type(path: str, compilers: Sequence[Compiler], dependency_dir: str) -> str | None:
    """Derive an output type from the first compiler, or dependency JSON."""
    if compilers:
        return compilers[0].type
    if is_dependency_json(path, dependency_dir):
        return "javascript"
    return None


class CompiledArtifact:
    """A source file tracked by the manifest.

    Attributes:
        path: Stable identity key ("" once disposed).
        type: Output type derived from the first compiler.
        source: Original content from the last successful compile.
        data: Compiled (unwrapped) text from the last successful compile.
        node: Composed output node, or None.
        dependencies: Paths this file depends on.
        compilation_time: When the last compile settled.
        error: Last compile or lint error, or None.
        is_helper: Whether the file is a bundler helper.
        is_vendor: Whether the file is vendor code.
        removed: Soft-delete flag set on unlink.
        disposed: Terminal hard-delete flag.

    Example:
        >>> artifact = CompiledArtifact("app/a.js", compilers, [], manifest=manifest)
        >>> await artifact.compile()
        >>> artifact.node.to_string()
        'require.register("a", function(exports, require, module) {\\n...'
    """

    def __init__(
        self,
        path: str,
        compilers: Sequence[Compiler],
        linters: Sequence[Linter],
        *,
        manifest: BuildManifest,
        wrapper: ModuleWrapper,
        is_helper: bool = False,
        is_vendor: bool = False,
    ) -> None:
        self._manifest = manifest
        self._compilers = list(compilers)
        self._linters = list(linters)
        self._wrapper = wrapper

        self._path = path
        self._type = infer_type(path, compilers, manifest.config.dependency_dir)
        self._is_helper = is_helper
        self._is_vendor = is_vendor
        self._source = ""
        self._data: str | None = ""
        self._node: SourceNode | None = None
        self._dependencies: list[str] = []
        self._compilation_time: datetime | None = None
        self._error: BaseException | None = None
        self._removed = False
        self._state = ArtifactState.UNCOMPILED
        self._log = logger.bind(path=path)

        self._log.debug(
            "artifact_created",
            type=self._type,
            is_module=self.is_module,
            is_wrapped=self.is_wrapped,
        )

    @property
    def path(self) -> str:
        return self._path

    @property
    def type(self) -> str | None:
        return self._type

    @property
    def source(self) -> str:
        return self._source

    @property
    def data(self) -> str | None:
        return self._data

    @property
    def node(self) -> SourceNode | None:
        return self._node

    @property
    def dependencies(self) -> list[str]:
        return list(self._dependencies)

    @property
    def compilation_time(self) -> datetime | None:
        return self._compilation_time

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def is_helper(self) -> bool:
        return self._is_helper

    @property
    def is_vendor(self) -> bool:
        return self._is_vendor

    @property
    def is_module(self) -> bool:
        """Helpers and vendor files are excluded from the module graph."""
        return not (self._is_helper or self._is_vendor)

    @property
    def is_wrapped(self) -> bool:
        return self._type in WRAPPED_TYPES

    @property
    def state(self) -> ArtifactState:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._state is ArtifactState.DISPOSED

    @property
    def removed(self) -> bool:
        return self._removed

    @removed.setter
    def removed(self, value: bool) -> None:
        self._ensure_active()
        self._removed = value

    async def compile(self) -> None:
        """Run the pipeline and update this record.

        Errors are stored on the record and re-raised as BuildError so the
        caller can observe the outcome. A record disposed while the
        pipeline was running is left untouched.

        Raises:
            BuildError: CompileError or LintError for this file.
        """
        if self.disposed:
            return
        path = self._path
        self._state = ArtifactState.COMPILING
        self._log.debug("compile_started")

        try:
            result = await self._manifest.pipeline(path, self._linters, self._compilers, self._manifest)
            if result is not None:
                wrapped = self._wrap(result.compiled)
                node = await self._compose(path, result, wrapped)
        except BuildError as e:
            self._fail(e)
            raise
        except Exception as e:
            error = CompileError(str(e), path=path, cause=e)
            self._fail(error)
            raise error from e

        if self.disposed:
            self._log.debug("stale_compile_discarded")
            return

        self._compilation_time = datetime.now(timezone.utc)
        self._error = None
        self._state = ArtifactState.COMPILED
        if result is None:
            self._data = None
            self._node = None
            self._log.debug("compile_result_empty")
            return

        self._source = result.source
        self._data = result.compiled
        self._dependencies = list(result.dependencies)
        self._node = node
        self._log.debug(
            "compile_completed",
            dependencies=len(self._dependencies),
            identity=node.is_identity,
        )

    def dispose(self) -> ArtifactSnapshot:
        """Permanently retire this record.

        Clears path, data, dependencies and node. Any later mutation raises
        ArtifactDisposedError.

        Returns:
            Snapshot of the record as it was before disposal.

        Raises:
            ArtifactDisposedError: If the record was already disposed.
        """
        self._ensure_active()
        self._log.debug("artifact_disposed")
        snapshot = ArtifactSnapshot(
            path=self._path,
            type=self._type,
            dependencies=tuple(self._dependencies),
            compilation_time=self._compilation_time,
            error=str(self._error) if self._error is not None else None,
        )
        self._path = ""
        self._source = ""
        self._data = ""
        self._dependencies = []
        self._node = None
        self._error = None
        self._state = ArtifactState.DISPOSED
        return snapshot

    def _ensure_active(self) -> None:
        if self.disposed:
            msg = "Disposed records cannot be modified"
            raise ArtifactDisposedError(msg)

    def _fail(self, error: BuildError) -> None:
        if self.disposed:
            return
        self._error = error
        self._compilation_time = datetime.now(timezone.utc)
        self._state = ArtifactState.ERRORED
        self._log.warning("compile_failed", error=str(error), error_type=type(error).__name__)

    def _wrap(self, compiled: str) -> Wrapped | str:
        if not self.is_wrapped:
            return compiled
        return self._wrapper(self._path, compiled, self.is_module)

    async def _compose(self, path: str, result: PipelineResult, wrapped: Wrapped | str) -> SourceNode:
        """Compose the output node for a compiled result.

        Mapped output is rebuilt from the compiler's source map; unmapped
        output gets an identity node. The wrapper text is added around it
        and every original referenced by the map has its content attached
        before the node is returned.
        """
        parts = split_wrapped(result.compiled, wrapped)
        sources: list[str] = []

        try:
            if result.source_map is not None:
                mapping = parse_source_map(result.source_map)
                mapping["sources"] = [source.replace("\\", "/") for source in mapping.get("sources", [])]
                sources = list(mapping["sources"])
                node = SourceNode.from_string_with_source_map(parts.data, SourceMapConsumer(mapping))
            else:
                node = identity_node(parts.data, path)
        except KilnError as e:
            raise CompileError(f"Invalid source map: {e}", path=path, cause=e) from e

        node.is_identity = result.source_map is None
        if parts.prefix:
            node.prepend(parts.prefix)
        if parts.suffix:
            node.add(parts.suffix)
        node.source = path
        node.set_source_content(path, parts.data)

        cache = self._manifest.content_cache

        async def attach(source: str) -> None:
            node.set_source_content(source, await cache.read(source))

        await asyncio.gather(*(attach(source) for source in sources))
        return node

    def __repr__(self) -> str:
        return f"CompiledArtifact({self._path!r}, state={self._state.value})"
