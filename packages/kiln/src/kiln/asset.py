"""Static assets copied verbatim to the public directory."""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Callable
from pathlib import Path

import structlog

from kiln.errors import AssetCopyError
from kiln.rules import normalize_path

logger = structlog.get_logger(__name__)


def asset_directory(path: str, is_asset: Callable[[str], bool] | None) -> str:
    """Return the leading directory that makes path an asset.

    Example:
        >>> asset_directory("app/assets/img/logo.png", lambda p: "assets/" in p)
        'app/assets/'
    """
    parts = normalize_path(path).split("/")
    prefix = ""
    for part in parts[:-1]:
        prefix = f"{prefix}{part}/"
        if is_asset is not None and is_asset(prefix):
            return prefix
    return ""


class AssetRecord:
    """A non-compiled file tracked by the manifest.

    Attributes:
        path: Stable identity key.
        destination_path: Where copy() writes the file.
        error: Last copy error, or None.
    """

    def __init__(
        self,
        path: str,
        public_path: Path | str,
        is_asset: Callable[[str], bool] | None,
        *,
        root: Path | str = ".",
    ) -> None:
        self.path = path
        self.root = Path(root)
        directory = asset_directory(path, is_asset)
        relative = normalize_path(path)[len(directory) :]
        self.destination_path = Path(public_path) / relative
        self.error: AssetCopyError | None = None
        self._log = logger.bind(path=path, destination=str(self.destination_path))

    async def copy(self) -> None:
        """Copy the asset to its destination.

        Failures are stored on error and never raised.
        """
        try:
            await asyncio.to_thread(self._copy)
        except OSError as e:
            self.error = AssetCopyError(str(e), path=self.path, cause=e)
            self._log.warning("asset_copy_failed", error=str(e))
            return
        self.error = None
        self._log.debug("asset_copied")

    def _copy(self) -> None:
        destination = self.root / self.destination_path
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.root / self.path, destination)

    def __repr__(self) -> str:
        return f"AssetRecord({self.path!r})"
