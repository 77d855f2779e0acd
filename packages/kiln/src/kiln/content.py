"""In-memory cache of source file contents.

The manifest refreshes the cache on every change event before anything
else happens; a failed read there is fatal. The pipeline and source-map
composition read through the cache afterwards.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from kiln.errors import FatalIOError

logger = structlog.get_logger(__name__)


class ContentCache:
    """Cache of decoded file contents keyed by project-relative path.

    Attributes:
        root: Directory paths are resolved against.

    Example:
        >>> cache = ContentCache(Path("."))
        >>> await cache.update("app/main.js")
        >>> cache.get("app/main.js")
        'console.log(1);\\n'
    """

    def __init__(self, root: Path | str = ".") -> None:
        self.root = Path(root)
        self._contents: dict[str, str] = {}

    async def update(self, path: str) -> str:
        """Re-read a file into the cache.

        Raises:
            FatalIOError: If the file cannot be read or decoded.
        """
        try:
            content = await asyncio.to_thread(self._read, path)
        except (OSError, UnicodeDecodeError) as e:
            logger.error("content_read_failed", path=path, error=str(e))
            raise FatalIOError(path, e) from e
        self._contents[path] = content
        return content

    async def read(self, path: str) -> str:
        """Return cached content, reading the file on a cache miss."""
        if path in self._contents:
            return self._contents[path]
        return await self.update(path)

    def get(self, path: str) -> str | None:
        """Return cached content without touching the filesystem."""
        return self._contents.get(path)

    def evict(self, path: str) -> None:
        """Drop a path from the cache."""
        self._contents.pop(path, None)

    def _read(self, path: str) -> str:
        return (self.root / path).read_text(encoding="utf-8")
