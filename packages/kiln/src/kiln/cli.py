"""CLI entry point for kiln.

Commands:
- kiln build [ROOT]: process every file once and report the result
- kiln watch [ROOT]: keep the manifest up to date until interrupted
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
import rich_click as rclick

from kiln import __version__
from kiln.config import BuildConfig, load_config
from kiln.errors import ConfigError, FatalIOError, KilnError
from kiln.manifest import BuildManifest
from kiln.observability import configure_logging
from kiln.output import error, info, set_no_color, success, warning
from kiln.plugins import PluginRegistry
from kiln.watcher import SourceWatcher, run_single_build

rclick.rich_click.TEXT_MARKUP = "markdown"
rclick.rich_click.SHOW_ARGUMENTS = True

EXIT_SUCCESS = 0
EXIT_USER_ERROR = 1
EXIT_SYSTEM_ERROR = 2


class CLIError(click.ClickException):
    """CLI-specific exception with exit code support."""

    def __init__(self, message: str, exit_code: int = EXIT_USER_ERROR) -> None:
        super().__init__(message)
        self.exit_code = exit_code

    def show(self, file: object = None) -> None:
        error(self.format_message())


def report_build(manifest: BuildManifest) -> bool:
    """Print the outcome of a settled build.

    Removed records are disposed here, as the writing stage would.

    Returns:
        True when the build has no errors.
    """
    removed = manifest.dispose_removed()
    errors = (manifest.get_compile_errors() or []) + (manifest.get_asset_errors() or [])
    for item in errors:
        error(item.message)
    for snapshot in removed:
        warning(f"Removed {snapshot.path}")

    summary = f"{len(manifest.source_files)} files, {len(manifest.assets)} assets"
    if errors:
        error(f"Build finished with {len(errors)} error(s): {summary}")
        return False
    success(f"Built {summary}")
    return True


def _load(root: Path, config_path: Path | None) -> BuildConfig:
    try:
        return load_config(config_path or root)
    except ConfigError as e:
        raise CLIError(str(e)) from e


@click.group(cls=rclick.RichGroup)
@click.version_option(version=__version__, prog_name="kiln")
@click.option(
    "--no-color",
    is_flag=True,
    default=False,
    help="Disable colored output.",
    is_eager=True,
    expose_value=False,
    callback=lambda ctx, param, value: set_no_color(value) if value else None,
)
def cli() -> None:
    """kiln - incremental build manifest for asset bundling.

    - `kiln build` - Process every file once
    - `kiln watch` - Rebuild on every change
    """


root_argument = click.argument(
    "root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
)
config_option = click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to kiln.yaml [default: ROOT/kiln.yaml]",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")


@cli.command()
@root_argument
@config_option
@verbose_option
def build(root: Path, config_path: Path | None, verbose: bool) -> None:
    """Process every project file once and report errors.

    Examples:

        kiln build

        kiln build path/to/project --config kiln.yaml
    """
    configure_logging(log_level="DEBUG" if verbose else "WARNING", json_format=False)
    config = _load(root, config_path)
    manifest = BuildManifest(config, root=root)

    try:
        asyncio.run(run_single_build(root, manifest, PluginRegistry()))
    except FatalIOError as e:
        raise CLIError(str(e), exit_code=EXIT_SYSTEM_ERROR) from e

    if not report_build(manifest):
        raise SystemExit(EXIT_USER_ERROR)


@cli.command()
@root_argument
@config_option
@verbose_option
def watch(root: Path, config_path: Path | None, verbose: bool) -> None:
    """Watch a project and report every settled build.

    Stops on Ctrl+C, or when a file cannot be read.
    """
    configure_logging(log_level="DEBUG" if verbose else "INFO", json_format=False)
    config = _load(root, config_path)

    try:
        asyncio.run(_watch(root, config))
    except KeyboardInterrupt:
        info("Stopped watching")
    except KilnError as e:
        raise CLIError(str(e), exit_code=EXIT_SYSTEM_ERROR) from e


async def _watch(root: Path, config: BuildConfig) -> None:
    manifest = BuildManifest(config, root=root)
    stop = asyncio.Event()
    fatal: list[BaseException] = []

    def on_fatal(exc: BaseException) -> None:
        fatal.append(exc)
        stop.set()

    manifest.on_ready(lambda: report_build(manifest))
    info(f"Watching {root.resolve()}")
    watcher = SourceWatcher(root, manifest, PluginRegistry(), loop=asyncio.get_running_loop(), on_fatal=on_fatal)
    try:
        with watcher:
            await stop.wait()
    finally:
        manifest.close()

    if fatal:
        raise fatal[0]
