"""Exception hierarchy for kiln.

This module defines the exception classes used throughout kiln:
- KilnError: Base exception for all kiln-related errors
- FatalIOError: Content read failure, aborts the triggering change event
- BuildError: Base for per-file failures captured on a record
- CompileError / LintError: Captured on CompiledArtifact.error
- AssetCopyError: Captured on AssetRecord.error
- ConfigError: Malformed configuration or convention entry
- SourceMapError: Malformed source map returned by a compiler
- ArtifactDisposedError: Mutation attempted on a disposed record

Propagation policy:
- Per-file failures (BuildError subclasses) never escape the manifest
- FatalIOError and ConfigError always propagate to the caller
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger(__name__)


class KilnError(Exception):
    """Base exception for kiln.

    Args:
        user_message: Message safe to display to the user.
        internal_details: Optional technical details, logged but not displayed.

    Example:
        >>> raise KilnError(
        ...     "Build failed",
        ...     internal_details="compiler returned a non-string result",
        ... )
    """

    def __init__(
        self,
        user_message: str,
        *,
        internal_details: str | None = None,
    ) -> None:
        """Initialize KilnError with user message and optional internal details.

        Args:
            user_message: Safe message to display to the user.
            internal_details: Technical details for internal logging only.
        """
        super().__init__(user_message)
        self.user_message = user_message
        self.internal_details = internal_details

        if internal_details:
            logger.error(
                "kiln_error",
                error_type=self.__class__.__name__,
                user_message=user_message,
                internal_details=internal_details,
            )


class FatalIOError(KilnError):
    """Raised when a source file cannot be read into the content cache.

    A read failure during a change event is never absorbed into a record:
    it aborts the event and is expected to end the watch session.

    Attributes:
        path: Path that could not be read.
        cause: Original OS-level exception.
    """

    def __init__(self, path: str, cause: Exception | None = None) -> None:
        """Initialize FatalIOError.

        Args:
            path: Path that could not be read.
            cause: Original exception raised by the filesystem.
        """
        super().__init__(f"Reading failed for {path}: {cause}")
        self.path = path
        self.cause = cause


class BuildError(KilnError):
    """Base for failures that belong to a single file.

    Attributes:
        path: Path of the file the failure belongs to.
        cause: Original exception, when the failure wraps one.
    """

    label = "Build"

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        cause: BaseException | None = None,
        internal_details: str | None = None,
    ) -> None:
        """Initialize BuildError.

        Args:
            message: Human-readable failure description.
            path: Path of the failing file.
            cause: Original exception.
            internal_details: Technical details for internal logging only.
        """
        super().__init__(message, internal_details=internal_details)
        self.path = path
        self.cause = cause


class CompileError(BuildError):
    """Raised when a compiler (or source-map composition) fails for a file."""

    label = "Compiling"


class LintError(BuildError):
    """Raised when a linter reports a problem for a file."""

    label = "Linting"


class AssetCopyError(BuildError):
    """Raised when an asset cannot be copied to the public directory."""

    label = "Copying"


class SourceMapError(KilnError):
    """Raised when a source map cannot be parsed or decoded."""


class ArtifactDisposedError(KilnError):
    """Raised when a disposed record is mutated."""


class ConfigError(KilnError):
    """Raised when configuration or a convention entry is malformed.

    Raised synchronously since it indicates a configuration mistake,
    not a transient file condition.

    Attributes:
        file_path: Configuration file the error came from (if known).
        field_path: Dot-separated path to the invalid field (if known).
    """

    def __init__(
        self,
        user_message: str,
        *,
        file_path: str | None = None,
        field_path: str | None = None,
        internal_details: str | None = None,
    ) -> None:
        """Initialize ConfigError with context.

        Args:
            user_message: Safe message to display to the user.
            file_path: Path to the configuration file (optional).
            field_path: Dot-separated path to the field (optional).
            internal_details: Technical details for internal logging only.
        """
        context_parts: list[str] = []
        if file_path:
            context_parts.append(f"in {file_path}")
        if field_path:
            context_parts.append(f"field '{field_path}'")

        if context_parts:
            full_message = f"{user_message} ({', '.join(context_parts)})"
        else:
            full_message = user_message

        super().__init__(full_message, internal_details=internal_details)

        self.file_path = file_path
        self.field_path = field_path


class FormattedError(BaseModel):
    """A per-file error prepared for display by the writing stage.

    Attributes:
        message: Formatted, human-readable message.
        path: Path of the file the error belongs to.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    message: str = Field(..., description="Formatted error message")
    path: str = Field(..., description="Path of the failing file")


def format_error(error: BaseException, path: str) -> FormattedError:
    """Format a per-file error for display.

    Args:
        error: The captured exception.
        path: Path of the file the error belongs to.

    Returns:
        FormattedError with a message of the form "<Label> error in <path>: <text>".

    Example:
        >>> format_error(CompileError("unexpected token"), "app/a.js").message
        'Compiling error in app/a.js: unexpected token'
    """
    label = getattr(error, "label", "Processing")
    return FormattedError(message=f"{label} error in {path}: {error}", path=path)
