"""kiln: incremental build manifest for file-watching asset bundlers.

This package provides:
- BuildManifest: tracks sources and assets, debounces builds, cascades
  recompilation to dependents
- CompiledArtifact: per-file compile state and source-mapped output
- SourceWatcher: watchdog-based watcher feeding a manifest

Example:
    >>> from kiln import BuildConfig, BuildManifest
    >>>
    >>> manifest = BuildManifest(BuildConfig(), root=".")
    >>> manifest.on_ready(lambda: print(len(manifest.source_files)))
    >>> await manifest.change_event("app/main.js", compilers, linters)
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "BuildConfig",
    "WrapperKind",
    "load_config",
    # Scheduler
    "BuildManifest",
    # Records
    "CompiledArtifact",
    "ArtifactSnapshot",
    "ArtifactState",
    "AssetRecord",
    # Pipeline and plugins
    "PipelineResult",
    "run_pipeline",
    "PluginRegistry",
    "CompileOutput",
    # Watcher
    "SourceWatcher",
    "WatcherState",
    # Errors
    "KilnError",
    "FatalIOError",
    "CompileError",
    "LintError",
    "AssetCopyError",
    "ConfigError",
]


def __getattr__(name: str) -> object:
    """Lazy import of public API members.

    Args:
        name: The attribute name to look up.

    Returns:
        The requested class or function.

    Raises:
        AttributeError: If the attribute is not found.
    """
    if name in ("BuildConfig", "WrapperKind", "load_config"):
        from kiln import config as config_module

        return getattr(config_module, name)

    if name == "BuildManifest":
        from kiln.manifest import BuildManifest

        return BuildManifest

    if name in ("CompiledArtifact", "ArtifactSnapshot", "ArtifactState"):
        from kiln import artifact as artifact_module

        return getattr(artifact_module, name)

    if name == "AssetRecord":
        from kiln.asset import AssetRecord

        return AssetRecord

    if name in ("PipelineResult", "run_pipeline"):
        from kiln import pipeline as pipeline_module

        return getattr(pipeline_module, name)

    if name in ("PluginRegistry", "CompileOutput"):
        from kiln import plugins as plugins_module

        return getattr(plugins_module, name)

    if name in ("SourceWatcher", "WatcherState"):
        from kiln import watcher as watcher_module

        return getattr(watcher_module, name)

    if name in ("KilnError", "FatalIOError", "CompileError", "LintError", "AssetCopyError", "ConfigError"):
        from kiln import errors as errors_module

        return getattr(errors_module, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
