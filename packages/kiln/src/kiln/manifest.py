"""Build manifest: the incremental build scheduler.

BuildManifest owns every known source file and asset of a build session.
It receives change/unlink events, decides whether a path is ignored, an
asset or a compilable source, drives compiles and copies, and decides
when a burst of activity has settled into one finished build.

Architecture:
- A single debounce timer measures the quiet period since the last
  activity. Every state change resets it; when it fires with nothing in
  flight, `ready` is emitted and the per-build compiled markers cleared.
- At most one compile per path is in flight. A second trigger for a
  compiling path only extends the debounce window.
- Once the first build has completed, a change cascades recompilation to
  every file that declared the changed path as a dependency.
- Per-file failures stay on the record. Read failures are fatal.

Usage:
    >>> manifest = BuildManifest(BuildConfig(), root=project_dir)
    >>> manifest.on_ready(lambda: print("built", len(manifest.source_files)))
    >>> await manifest.change_event("app/main.js", compilers, linters)
    >>> await manifest.wait_until_ready()
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from kiln.artifact import ArtifactSnapshot, CompiledArtifact
from kiln.asset import AssetRecord
from kiln.config import BuildConfig
from kiln.content import ContentCache
from kiln.conventions import convention_predicate, is_dependency, is_dependency_json
from kiln.errors import BuildError, ConfigError, FormattedError, format_error
from kiln.pipeline import Pipeline, run_pipeline
from kiln.rules import IgnoreRule, coerce_rule, matches_rule, normalize_path
from kiln.wrappers import get_wrapper

if TYPE_CHECKING:
    from kiln.plugins import Compiler, Linter

logger = structlog.get_logger(__name__)

ReadyCallback = Callable[[], None]
CompiledCallback = Callable[[str], None]


class BuildManifest:
    """Tracks source files and assets and schedules their processing.

    Attributes:
        config: Build settings.
        root: Project directory that paths are relative to.
        pipeline: Compile pipeline used by every record.
        content_cache: Cache refreshed on every change event.
        has_completed_first_build: False until the first `ready`; while
            False, dependency cascades are skipped.
    """

    def __init__(
        self,
        config: BuildConfig | None = None,
        *,
        root: Path | str = ".",
        pipeline: Pipeline = run_pipeline,
        content_cache: ContentCache | None = None,
        has_completed_first_build: bool = False,
    ) -> None:
        self.config = config or BuildConfig()
        self.root = Path(root)
        self.pipeline = pipeline
        self.content_cache = content_cache or ContentCache(self.root)
        self.has_completed_first_build = has_completed_first_build

        self.conventions = self.config.convention_table()
        self.reset_time = self.config.file_list_interval / 1000
        self.config_paths = frozenset(normalize_path(p) for p in self.config.config_files)
        self.wrapper = get_wrapper(self.config.wrapper)

        self._files: list[CompiledArtifact] = []
        self._assets: list[AssetRecord] = []
        self._compiling: set[str] = set()
        self._copying: dict[str, asyncio.Task[None]] = {}
        self._compiled: dict[str, bool] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._ready_callbacks: list[ReadyCallback] = []
        self._compiled_callbacks: list[CompiledCallback] = []
        self._ready_waiters: list[asyncio.Future[None]] = []

    @property
    def source_files(self) -> list[CompiledArtifact]:
        """Non-disposed source records, in insertion order."""
        return [file for file in self._files if not file.disposed]

    @property
    def assets(self) -> list[AssetRecord]:
        return list(self._assets)

    @property
    def compiling(self) -> frozenset[str]:
        return frozenset(self._compiling)

    @property
    def copying(self) -> frozenset[str]:
        return frozenset(self._copying)

    def on_ready(self, callback: ReadyCallback) -> None:
        """Register a callback fired once per settled build."""
        self._ready_callbacks.append(callback)

    def on_compiled(self, callback: CompiledCallback) -> None:
        """Register a callback fired with the path of every settled compile."""
        self._compiled_callbacks.append(callback)

    def wait_until_ready(self) -> asyncio.Future[None]:
        """Return a future resolved by the next `ready` signal."""
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._ready_waiters.append(future)
        return future

    def is_ignored(self, path: str, rule: IgnoreRule | Any = None) -> bool:
        """Evaluate an ignore rule against a path.

        The dependency namespace is never ignored; configuration files are
        always ignored. Otherwise the given rule, or the `ignored`
        convention when none is given, decides.

        Args:
            path: Project-relative path.
            rule: Optional rule (variant or raw value) to evaluate instead
                of the configured convention.

        Returns:
            True if the path is ignored.
        """
        if is_dependency(path, self.config.dependency_dir):
            return False
        if normalize_path(path) in self.config_paths:
            return True
        if rule is None:
            rule = self.config.conventions.get("ignored")
            if rule is None:
                return False
        return matches_rule(coerce_rule(rule), path)

    def classify(self, name: str, path: str) -> bool:
        """Apply a named convention to a path.

        Raises:
            ConfigError: If the convention entry is not callable.
        """
        convention = self.conventions.get(name)
        if convention is None:
            return False
        if not callable(convention):
            msg = f"Invalid convention {name!r}: {convention!r}"
            raise ConfigError(msg, field_path=f"conventions.{name}")
        return bool(convention(path))

    def has_pending_work(self) -> bool:
        """True while any compile or copy is in flight."""
        return bool(self._compiling or self._copying)

    def reset_timer(self) -> None:
        """Restart the debounce timer."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.reset_time, self._on_timer)

    def close(self) -> None:
        """Cancel the debounce timer and any in-flight work."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._tasks):
            task.cancel()

    def find_source(self, path: str) -> CompiledArtifact | None:
        return next((file for file in self._files if file.path == path), None)

    def find_asset(self, path: str) -> AssetRecord | None:
        return next((asset for asset in self._assets if asset.path == path), None)

    def cascade_dependents(self, path: str) -> None:
        """Recompile every live record that depends on path.

        Records already compiled during the current build are skipped.
        """
        parents = [
            file
            for file in self._files
            if not file.disposed and path in file.dependencies and not self._compiled.get(file.path)
        ]
        if not parents:
            return
        logger.debug(
            "compiling_dependency_parents",
            dependency=path,
            parents=[parent.path for parent in parents],
        )
        for parent in parents:
            self.compile(parent)

    def compile(self, record: CompiledArtifact) -> asyncio.Task[None] | None:
        """Start compiling a record unless it is already compiling.

        Returns:
            The task settling the compile, or None when the call only
            extended the debounce window.
        """
        if record.disposed:
            return None
        path = record.path
        record.removed = False
        if path in self._compiling:
            self.reset_timer()
            return None

        self._compiling.add(path)
        return self._spawn(self._run_compile(record, path))

    def copy(self, asset: AssetRecord) -> asyncio.Task[None]:
        """Start copying an asset unless it is already being copied.

        Returns:
            The task settling the copy. A call for an asset already in
            flight extends the debounce window and returns the running task.
        """
        running = self._copying.get(asset.path)
        if running is not None:
            self.reset_timer()
            return running

        task = self._spawn(self._run_copy(asset))
        self._copying[asset.path] = task
        return task

    async def change_event(
        self,
        path: str,
        compilers: Sequence[Compiler] | None = None,
        linters: Sequence[Linter] | None = None,
        is_helper: bool = False,
    ) -> None:
        """Handle a created or modified file.

        Raises:
            FatalIOError: If the file cannot be read.
        """
        ignored = self.is_ignored(path)
        if self.classify("assets", path):
            if not ignored:
                asset = self.find_asset(path) or self._add_asset(path)
                self.copy(asset)
            self.reset_timer()
            return

        logger.debug("reading_file", path=path)
        await self.content_cache.update(path)

        if (not ignored and compilers) or is_dependency_json(path, self.config.dependency_dir):
            record = self.find_source(path) or self._add(path, compilers or [], linters or [], is_helper)
            self.compile(record)
        if self.has_completed_first_build:
            self.cascade_dependents(path)
        self.reset_timer()

    def unlink_event(self, path: str) -> None:
        """Handle a deleted file."""
        ignored = self.is_ignored(path)
        if self.classify("assets", path):
            asset = self.find_asset(path)
            if not ignored and asset is not None:
                self._assets.remove(asset)
        elif ignored:
            self.cascade_dependents(path)
        else:
            record = self.find_source(path)
            if record is not None and not record.disposed:
                record.removed = True
            self.content_cache.evict(path)
        self.reset_timer()

    def dispose_removed(self) -> list[ArtifactSnapshot]:
        """Dispose every record flagged as removed.

        Disposed records are pruned from the list on the next timer fire.
        """
        return [file.dispose() for file in self.source_files if file.removed]

    def get_asset_errors(self) -> list[FormattedError] | None:
        """Return formatted asset copy errors, or None if there are none."""
        invalid = [asset for asset in self._assets if asset.error is not None]
        if not invalid:
            return None
        return [format_error(asset.error, asset.path) for asset in invalid if asset.error is not None]

    def get_compile_errors(self) -> list[FormattedError] | None:
        """Return formatted source file errors, or None if there are none."""
        invalid = [file for file in self.source_files if file.error is not None]
        if not invalid:
            return None
        return [format_error(file.error, file.path) for file in invalid if file.error is not None]

    def _add(
        self,
        path: str,
        compilers: Sequence[Compiler],
        linters: Sequence[Linter],
        is_helper: bool,
    ) -> CompiledArtifact:
        record = CompiledArtifact(
            path,
            compilers,
            linters,
            manifest=self,
            wrapper=self.wrapper,
            is_helper=is_helper,
            is_vendor=self.classify("vendor", path),
        )
        self._files.append(record)
        return record

    def _add_asset(self, path: str) -> AssetRecord:
        asset = AssetRecord(
            path,
            self.config.public_path,
            convention_predicate(self.conventions, "assets"),
            root=self.root,
        )
        self._assets.append(asset)
        return asset

    def _spawn(self, coro: Any) -> asyncio.Task[None]:
        task: asyncio.Task[None] = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_compile(self, record: CompiledArtifact, path: str) -> None:
        try:
            await record.compile()
        except BuildError as e:
            logger.info("compile_error_recorded", path=path, error=str(e))
        finally:
            self._compiling.discard(path)
            self.reset_timer()
        logger.debug("compiled", path=path)
        self._compiled[path] = True
        for callback in list(self._compiled_callbacks):
            self._notify(callback, path)

    async def _run_copy(self, asset: AssetRecord) -> None:
        try:
            await asset.copy()
        finally:
            self._copying.pop(asset.path, None)
            self.reset_timer()

    def _on_timer(self) -> None:
        self._timer = None
        self._files = [file for file in self._files if not file.disposed]
        if self.has_pending_work():
            self.reset_timer()
            return

        logger.info(
            "build_ready",
            files=len(self._files),
            assets=len(self._assets),
            compiled=len(self._compiled),
        )
        for callback in list(self._ready_callbacks):
            self._notify(callback)
        self._compiled = {}
        self.has_completed_first_build = True
        waiters, self._ready_waiters = self._ready_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    @staticmethod
    def _notify(callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("listener_failed", listener=getattr(callback, "__name__", repr(callback)))
