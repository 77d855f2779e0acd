"""Shared pytest fixtures for kiln tests.

This module provides a temporary project directory, a manifest factory
with a short debounce interval, and a scriptable fake pipeline.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
import structlog

from kiln.config import BuildConfig
from kiln.manifest import BuildManifest
from kiln.pipeline import PipelineResult
from kiln.plugins import PassthroughCompiler

READY_TIMEOUT = 2.0
"""Seconds a test waits for a `ready` signal before failing."""


@pytest.fixture(autouse=True)
def configure_structlog_for_tests() -> None:
    """Configure structlog to output to stdout for test capture."""
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


class Project:
    """Temporary project directory with helpers to write files."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def write(self, path: str, content: str = "") -> str:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return path

    def read(self, path: str) -> str:
        return (self.root / path).read_text(encoding="utf-8")


@pytest.fixture
def project(tmp_path: Path) -> Project:
    """Return an empty temporary project."""
    return Project(tmp_path)


class FakePipeline:
    """Pipeline double returning scripted outcomes per path.

    Outcomes may be a PipelineResult, None (deliberately empty result) or
    an exception to raise. Unscripted paths compile to their own content.
    A path with a gate blocks until the gate is set.
    """

    def __init__(self) -> None:
        self.outcomes: dict[str, Any] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self.in_flight: dict[str, int] = {}
        self.max_in_flight: dict[str, int] = {}

    def gate(self, path: str) -> asyncio.Event:
        self.gates[path] = asyncio.Event()
        return self.gates[path]

    async def __call__(
        self,
        path: str,
        linters: Sequence[Any],
        compilers: Sequence[Any],
        manifest: BuildManifest,
    ) -> PipelineResult | None:
        self.calls.append(path)
        self.in_flight[path] = self.in_flight.get(path, 0) + 1
        self.max_in_flight[path] = max(self.max_in_flight.get(path, 0), self.in_flight[path])
        try:
            if path in self.gates:
                await self.gates[path].wait()
            else:
                await asyncio.sleep(0)
            if path not in self.outcomes:
                content = manifest.content_cache.get(path) or ""
                return PipelineResult(source=content, compiled=content)
            outcome = self.outcomes[path]
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight[path] -= 1


@pytest.fixture
def fake_pipeline() -> FakePipeline:
    """Return a fresh FakePipeline."""
    return FakePipeline()


@pytest.fixture
def make_manifest(project: Project, fake_pipeline: FakePipeline) -> Callable[..., BuildManifest]:
    """Return a factory for manifests rooted at the temporary project.

    The factory uses the fake pipeline and a 10 ms debounce unless
    overridden.
    """

    def factory(**kwargs: Any) -> BuildManifest:
        config = kwargs.pop("config", None) or BuildConfig(file_list_interval=10)
        kwargs.setdefault("pipeline", fake_pipeline)
        return BuildManifest(config, root=project.root, **kwargs)

    return factory


@pytest.fixture
def js_compilers() -> list[PassthroughCompiler]:
    """Return a compiler set for plain scripts."""
    return [PassthroughCompiler("javascript", r"\.js$")]


async def wait_ready(manifest: BuildManifest) -> None:
    """Wait for the next `ready` signal with a timeout."""
    await asyncio.wait_for(manifest.wait_until_ready(), timeout=READY_TIMEOUT)


async def settle(manifest: BuildManifest) -> None:
    """Wait until no compile or copy is in flight."""
    for _ in range(200):
        if not manifest.has_pending_work():
            return
        await asyncio.sleep(0.005)
    msg = "manifest still has pending work"
    raise AssertionError(msg)
