"""Filesystem watcher feeding a BuildManifest.

This module provides a watchdog-based watcher that scans a project once,
then forwards filesystem events to the manifest running on an asyncio
loop.

Architecture:
- SourceWatcher: Main watcher class with start/stop lifecycle
- _SourceEventHandler: watchdog handler, runs on the observer thread
- Events cross into the loop thread with run_coroutine_threadsafe and
  call_soon_threadsafe; the manifest is only touched on its own loop
- Created/modified -> change_event, deleted -> unlink_event,
  moved -> unlink_event(src) + change_event(dest)

Usage:
    >>> watcher = SourceWatcher(root, manifest, registry, loop=loop)
    >>> with watcher:
    ...     await stop_event.wait()
"""

from __future__ import annotations

import asyncio
import enum
import os
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from kiln.errors import KilnError
from kiln.plugins import PluginRegistry

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from kiln.manifest import BuildManifest

logger = structlog.get_logger(__name__)


class WatcherState(enum.Enum):
    """State of the SourceWatcher.

    Attributes:
        STOPPED: Watcher is not running
        RUNNING: Watcher is actively monitoring
    """

    STOPPED = "stopped"
    RUNNING = "running"


class WatcherError(KilnError):
    """Error in SourceWatcher operation.

    Raised when:
    - Watcher is started while already running
    - Watched directory does not exist
    """


FatalCallback = Callable[[BaseException], None]

SKIPPED_DIRECTORIES = frozenset({".git", ".hg", ".svn", "__pycache__"})


class _SourceEventHandler(FileSystemEventHandler):
    """Internal handler translating watchdog events into manifest events."""

    def __init__(self, watcher: SourceWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify_change(_decode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify_change(_decode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify_unlink(_decode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._watcher.notify_unlink(_decode(event.src_path))
        self._watcher.notify_change(_decode(event.dest_path))


def _decode(path: str | bytes) -> str:
    return path.decode("utf-8") if isinstance(path, bytes) else path


class SourceWatcher:
    """Watches a project directory and drives a BuildManifest.

    Attributes:
        root: Watched project directory.
        manifest: Manifest receiving the events.
        registry: Plugins used to pick compilers and linters per path.
        state: Current watcher state (STOPPED or RUNNING).

    Example:
        >>> watcher = SourceWatcher(Path("."), manifest, PluginRegistry(), loop=loop)
        >>> watcher.start()
        >>> try:
        ...     await manifest.wait_until_ready()
        ... finally:
        ...     watcher.stop()
    """

    def __init__(
        self,
        root: Path | str,
        manifest: BuildManifest,
        registry: PluginRegistry | None = None,
        *,
        loop: asyncio.AbstractEventLoop,
        on_fatal: FatalCallback | None = None,
    ) -> None:
        """Initialize SourceWatcher.

        Args:
            root: Project directory to watch.
            manifest: Manifest receiving change and unlink events.
            registry: Plugin registry, defaults to the built-in compilers.
            loop: Event loop the manifest runs on.
            on_fatal: Called when a change event fails fatally.

        Raises:
            WatcherError: If the root directory does not exist.
        """
        self._root = Path(root).resolve()
        if not self._root.is_dir():
            msg = f"Watched directory does not exist: {self._root}"
            raise WatcherError(msg)

        self.manifest = manifest
        self.registry = registry or PluginRegistry()
        self._loop = loop
        self._on_fatal = on_fatal
        self._state = WatcherState.STOPPED
        self._observer: BaseObserver | None = None
        self._lock = threading.Lock()
        self._log = logger.bind(root=str(self._root))

    @property
    def root(self) -> Path:
        return self._root

    @property
    def state(self) -> WatcherState:
        with self._lock:
            return self._state

    def scan(self) -> list[str]:
        """Emit a change event for every file currently under root.

        Returns:
            The relative paths that were scheduled.
        """
        paths: list[str] = []
        for absolute in iter_project_files(self._root):
            scheduled = self.notify_change(str(absolute))
            if scheduled is not None:
                paths.append(scheduled)
        self._log.info("initial_scan_scheduled", files=len(paths))
        return paths

    def start(self, *, initial_scan: bool = True) -> None:
        """Start watching.

        Raises:
            WatcherError: If the watcher is already running.
        """
        with self._lock:
            if self._state == WatcherState.RUNNING:
                raise WatcherError("Watcher is already running")

            self._log.info("starting_watcher")
            self._observer = Observer()
            self._observer.schedule(_SourceEventHandler(self), str(self._root), recursive=True)
            self._observer.start()
            self._state = WatcherState.RUNNING

        if initial_scan:
            self.scan()
        self._log.info("watcher_started")

    def stop(self) -> None:
        """Stop watching. Safe to call even if not running."""
        with self._lock:
            if self._state == WatcherState.STOPPED:
                return

            self._log.info("stopping_watcher")
            if self._observer is not None:
                self._observer.stop()
                self._observer.join(timeout=5.0)
                self._observer = None

            self._state = WatcherState.STOPPED
            self._log.info("watcher_stopped")

    def __enter__(self) -> SourceWatcher:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.stop()

    def relative(self, path: str) -> str:
        """Convert an absolute event path into a project-relative path."""
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = candidate.resolve()
        return candidate.relative_to(self._root).as_posix()

    def is_output(self, relative: str) -> bool:
        """True for paths inside the public directory the build writes to."""
        public = Path(self.manifest.config.public_path)
        if public.is_absolute():
            try:
                public = public.relative_to(self._root)
            except ValueError:
                return False
        return relative == public.as_posix() or relative.startswith(f"{public.as_posix()}/")

    def notify_change(self, path: str) -> str | None:
        """Schedule a change event for path on the manifest loop."""
        relative = self.relative(path)
        if self.is_output(relative):
            return None
        coro = self.manifest.change_event(
            relative,
            self.registry.compilers_for(relative),
            self.registry.linters_for(relative),
        )
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        future.add_done_callback(self._check_change)
        return relative

    def notify_unlink(self, path: str) -> str | None:
        """Schedule an unlink event for path on the manifest loop."""
        relative = self.relative(path)
        if self.is_output(relative):
            return None
        self._loop.call_soon_threadsafe(self.manifest.unlink_event, relative)
        return relative

    def _check_change(self, future: Future[None]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is None:
            return
        self._log.error("change_event_failed", error=str(error), error_type=type(error).__name__)
        if self._on_fatal is not None:
            self._on_fatal(error)


def iter_project_files(root: Path) -> Iterator[Path]:
    """Yield every file under root in a stable order, skipping VCS directories."""
    for directory, subdirs, filenames in os.walk(root):
        subdirs[:] = sorted(d for d in subdirs if d not in SKIPPED_DIRECTORIES)
        for filename in sorted(filenames):
            yield Path(directory) / filename


async def run_single_build(
    root: Path | str,
    manifest: BuildManifest,
    registry: PluginRegistry | None = None,
) -> BuildManifest:
    """Feed every project file to the manifest once and wait for `ready`.

    Raises:
        FatalIOError: If a file cannot be read.
    """
    registry = registry or PluginRegistry()
    watcher = SourceWatcher(root, manifest, registry, loop=asyncio.get_running_loop())
    ready = manifest.wait_until_ready()

    for absolute in iter_project_files(watcher.root):
        relative = watcher.relative(str(absolute))
        if watcher.is_output(relative):
            continue
        await manifest.change_event(
            relative,
            registry.compilers_for(relative),
            registry.linters_for(relative),
        )

    manifest.reset_timer()
    await ready
    return manifest
