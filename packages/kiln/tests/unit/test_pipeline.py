"""Unit tests for the default pipeline, plugins and content cache."""

from __future__ import annotations

import re

import pytest

from kiln.content import ContentCache
from kiln.errors import CompileError, FatalIOError, LintError
from kiln.manifest import BuildManifest
from kiln.pipeline import run_pipeline
from kiln.plugins import CompileOutput, Compiler, Linter, PassthroughCompiler, PluginRegistry


class UpperCompiler:
    type = "javascript"

    def __init__(self, dependencies=(), source_map=None) -> None:
        self.pattern = re.compile(r"\.js$")
        self.dependencies = tuple(dependencies)
        self.source_map = source_map

    async def compile(self, data: str, path: str) -> CompileOutput:
        return CompileOutput(data.upper(), self.source_map, self.dependencies)


class BrokenCompiler(PassthroughCompiler):
    async def compile(self, data: str, path: str) -> CompileOutput:
        raise ValueError("unexpected token")


class ScriptedLinter:
    def __init__(self, problem=None, raises=None) -> None:
        self.pattern = re.compile(r"\.js$")
        self.problem = problem
        self.raises = raises

    async def lint(self, data: str, path: str):
        if self.raises is not None:
            raise self.raises
        return self.problem


@pytest.fixture
def manifest(project) -> BuildManifest:
    return BuildManifest(root=project.root)


class TestRunPipeline:
    """Tests for run_pipeline()."""

    @pytest.mark.asyncio
    async def test_chains_compilers(self, project, manifest) -> None:
        project.write("app/a.js", "a")
        compilers = [PassthroughCompiler("javascript", r"\.js$"), UpperCompiler()]

        result = await run_pipeline("app/a.js", [], compilers, manifest)

        assert result.source == "a"
        assert result.compiled == "A"
        assert result.source_map is None

    @pytest.mark.asyncio
    async def test_collects_dependencies_in_order(self, project, manifest) -> None:
        project.write("app/a.js", "a")
        compilers = [UpperCompiler(["b.js", "c.js"]), UpperCompiler(["c.js", "d.js"])]

        result = await run_pipeline("app/a.js", [], compilers, manifest)

        assert result.dependencies == ("b.js", "c.js", "d.js")

    @pytest.mark.asyncio
    async def test_last_source_map_wins(self, project, manifest) -> None:
        project.write("app/a.js", "a")
        compilers = [UpperCompiler(source_map="first"), UpperCompiler(), UpperCompiler(source_map="last")]

        result = await run_pipeline("app/a.js", [], compilers, manifest)

        assert result.source_map == "last"

    @pytest.mark.asyncio
    async def test_compiler_failure(self, project, manifest) -> None:
        project.write("app/a.js", "a(")
        with pytest.raises(CompileError, match="unexpected token") as exc_info:
            await run_pipeline("app/a.js", [], [BrokenCompiler("javascript", r"\.js$")], manifest)
        assert isinstance(exc_info.value.cause, ValueError)
        assert exc_info.value.path == "app/a.js"

    @pytest.mark.asyncio
    async def test_linter_problem(self, project, manifest) -> None:
        project.write("app/a.js", "a")
        with pytest.raises(LintError, match="missing semicolon"):
            await run_pipeline("app/a.js", [ScriptedLinter(problem="missing semicolon")], [], manifest)

    @pytest.mark.asyncio
    async def test_linter_crash(self, project, manifest) -> None:
        project.write("app/a.js", "a")
        with pytest.raises(LintError, match="linter exploded"):
            await run_pipeline("app/a.js", [ScriptedLinter(raises=RuntimeError("linter exploded"))], [], manifest)

    @pytest.mark.asyncio
    async def test_clean_lint_continues(self, project, manifest) -> None:
        project.write("app/a.js", "a")
        result = await run_pipeline("app/a.js", [ScriptedLinter()], [UpperCompiler()], manifest)
        assert result.compiled == "A"

    @pytest.mark.asyncio
    async def test_dependency_json_module(self, project, manifest) -> None:
        project.write("node_modules/lib/package.json", '{"name": "lib"}')
        result = await run_pipeline("node_modules/lib/package.json", [], [], manifest)
        assert result.compiled == 'module.exports = {"name": "lib"};'

    @pytest.mark.asyncio
    async def test_invalid_dependency_json(self, project, manifest) -> None:
        project.write("node_modules/lib/data.json", "{broken")
        with pytest.raises(CompileError, match="Invalid JSON"):
            await run_pipeline("node_modules/lib/data.json", [], [], manifest)


class TestPluginRegistry:
    """Tests for plugin selection."""

    def test_default_compilers(self) -> None:
        registry = PluginRegistry()
        assert [c.type for c in registry.compilers_for("app/a.js")] == ["javascript"]
        assert [c.type for c in registry.compilers_for("app/a.css")] == ["stylesheet"]
        assert registry.compilers_for("app/a.md") == []

    def test_linters_for(self) -> None:
        linter = ScriptedLinter()
        registry = PluginRegistry(compilers=[], linters=[linter])
        assert registry.linters_for("app/a.js") == [linter]
        assert registry.linters_for("app/a.css") == []

    def test_protocols(self) -> None:
        assert isinstance(UpperCompiler(), Compiler)
        assert isinstance(ScriptedLinter(), Linter)


class TestContentCache:
    """Tests for ContentCache."""

    @pytest.mark.asyncio
    async def test_update_and_get(self, project) -> None:
        project.write("app/a.js", "v1")
        cache = ContentCache(project.root)

        assert await cache.update("app/a.js") == "v1"
        project.write("app/a.js", "v2")
        assert cache.get("app/a.js") == "v1"
        assert await cache.read("app/a.js") == "v1"
        assert await cache.update("app/a.js") == "v2"

    @pytest.mark.asyncio
    async def test_read_miss_loads_file(self, project) -> None:
        project.write("app/a.js", "a")
        cache = ContentCache(project.root)
        assert await cache.read("app/a.js") == "a"
        assert cache.get("app/a.js") == "a"

    @pytest.mark.asyncio
    async def test_missing_file_is_fatal(self, project) -> None:
        cache = ContentCache(project.root)
        with pytest.raises(FatalIOError):
            await cache.update("app/missing.js")

    @pytest.mark.asyncio
    async def test_undecodable_file_is_fatal(self, project) -> None:
        (project.root / "logo.png").write_bytes(b"\x89PNG\xff\xfe")
        cache = ContentCache(project.root)
        with pytest.raises(FatalIOError):
            await cache.update("logo.png")

    def test_evict(self, project) -> None:
        cache = ContentCache(project.root)
        cache.evict("never-read.js")
        assert cache.get("never-read.js") is None
