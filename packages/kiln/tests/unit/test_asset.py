"""Unit tests for AssetRecord."""

from __future__ import annotations

from pathlib import Path

import pytest

from kiln.asset import AssetRecord, asset_directory
from kiln.conventions import default_convention_table
from kiln.errors import AssetCopyError

IS_ASSET = default_convention_table()["assets"]


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("app/assets/img/logo.png", "app/assets/"),
        ("assets/index.html", "assets/"),
        ("app\\assets\\font.woff", "app/assets/"),
        ("app/main.js", ""),
    ],
)
def test_asset_directory(path: str, expected: str) -> None:
    assert asset_directory(path, IS_ASSET) == expected


def test_asset_directory_without_predicate() -> None:
    assert asset_directory("app/assets/logo.png", None) == ""


class TestAssetRecord:
    """Tests for destination paths and copying."""

    def test_destination_strips_asset_directory(self, project) -> None:
        asset = AssetRecord("app/assets/img/logo.png", "public", IS_ASSET, root=project.root)
        assert asset.destination_path == Path("public/img/logo.png")
        assert asset.error is None

    @pytest.mark.asyncio
    async def test_copy(self, project) -> None:
        project.write("app/assets/index.html", "<html></html>")
        asset = AssetRecord("app/assets/index.html", "public", IS_ASSET, root=project.root)

        await asset.copy()

        assert project.read("public/index.html") == "<html></html>"
        assert asset.error is None

    @pytest.mark.asyncio
    async def test_copy_failure_is_stored(self, project) -> None:
        asset = AssetRecord("app/assets/missing.png", "public", IS_ASSET, root=project.root)

        await asset.copy()

        assert isinstance(asset.error, AssetCopyError)
        assert asset.error.path == "app/assets/missing.png"

    @pytest.mark.asyncio
    async def test_successful_copy_clears_error(self, project) -> None:
        asset = AssetRecord("app/assets/logo.png", "public", IS_ASSET, root=project.root)
        await asset.copy()
        assert asset.error is not None

        project.write("app/assets/logo.png", "PNG")
        await asset.copy()

        assert asset.error is None
