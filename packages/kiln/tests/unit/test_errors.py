"""Unit tests for the exception hierarchy."""

from __future__ import annotations

import pytest

from kiln.errors import (
    AssetCopyError,
    BuildError,
    CompileError,
    ConfigError,
    FatalIOError,
    FormattedError,
    KilnError,
    LintError,
    format_error,
)


class TestKilnError:
    """Tests for the base exception."""

    def test_message(self) -> None:
        error = KilnError("Build failed")
        assert str(error) == "Build failed"
        assert error.user_message == "Build failed"
        assert error.internal_details is None

    def test_internal_details_are_not_shown(self) -> None:
        error = KilnError("Build failed", internal_details="stack trace here")
        assert "stack trace here" not in str(error)
        assert error.internal_details == "stack trace here"


class TestHierarchy:
    """Tests for subclass relationships used by the propagation policy."""

    @pytest.mark.parametrize("cls", [CompileError, LintError, AssetCopyError])
    def test_per_file_errors_are_build_errors(self, cls: type[BuildError]) -> None:
        assert issubclass(cls, BuildError)
        assert issubclass(cls, KilnError)

    def test_fatal_io_error_is_not_a_build_error(self) -> None:
        assert not issubclass(FatalIOError, BuildError)

    def test_fatal_io_error_message(self) -> None:
        cause = FileNotFoundError("no such file")
        error = FatalIOError("app/a.js", cause)
        assert error.path == "app/a.js"
        assert error.cause is cause
        assert str(error) == "Reading failed for app/a.js: no such file"

    def test_build_error_keeps_path_and_cause(self) -> None:
        cause = ValueError("bad")
        error = CompileError("bad", path="app/a.js", cause=cause)
        assert error.path == "app/a.js"
        assert error.cause is cause


class TestConfigError:
    """Tests for ConfigError context formatting."""

    def test_with_context(self) -> None:
        error = ConfigError("Bad rule", file_path="kiln.yaml", field_path="conventions.ignored")
        assert str(error) == "Bad rule (in kiln.yaml, field 'conventions.ignored')"

    def test_without_context(self) -> None:
        assert str(ConfigError("Bad rule")) == "Bad rule"


class TestFormatError:
    """Tests for format_error()."""

    @pytest.mark.parametrize(
        ("error", "label"),
        [
            (CompileError("unexpected token"), "Compiling"),
            (LintError("missing semicolon"), "Linting"),
            (AssetCopyError("permission denied"), "Copying"),
        ],
    )
    def test_labels(self, error: BuildError, label: str) -> None:
        formatted = format_error(error, "app/a.js")
        assert formatted.message == f"{label} error in app/a.js: {error}"
        assert formatted.path == "app/a.js"

    def test_unlabelled_error(self) -> None:
        formatted = format_error(RuntimeError("boom"), "app/a.js")
        assert formatted == FormattedError(message="Processing error in app/a.js: boom", path="app/a.js")
