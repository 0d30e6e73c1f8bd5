"""Asset sources: async producers of one namespace's file tree.

WHY: The builder only understands finished ``{path: bytes}`` mappings.
Something has to produce them: a build output directory on disk, an
in-memory mapping in tests, or any other async step. Sources give those
producers one shape the packager can schedule concurrently.

HOW: An AssetSource is a zero-argument callable returning an awaitable
mapping. directory_source() reads a directory tree in a worker thread so
several namespaces can be read concurrently without blocking the loop.

RULES:
- Paths are relative to the source root, posix-style, sorted
- Only regular files are collected; directories are implied by paths
- A missing root raises FileNotFoundError when the source runs, not before
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Dict, Mapping, Union

AssetSource = Callable[[], Awaitable[Mapping[str, bytes]]]


def read_tree(root: Path) -> Dict[str, bytes]:
    """Read every regular file under ``root`` into a path → bytes dict."""
    if not root.is_dir():
        raise FileNotFoundError("Asset directory not found: {}".format(root))

    assets: Dict[str, bytes] = {}
    for path in sorted(root.rglob("*")):
        if path.is_file():
            assets[path.relative_to(root).as_posix()] = path.read_bytes()
    return assets


def directory_source(root: Union[str, Path]) -> AssetSource:
    root = Path(root)

    async def produce() -> Mapping[str, bytes]:
        return await asyncio.to_thread(read_tree, root)

    return produce


def static_source(assets: Mapping[str, bytes]) -> AssetSource:
    """Wrap an in-memory mapping as a source."""
    snapshot = dict(assets)

    async def produce() -> Mapping[str, bytes]:
        return snapshot

    return produce
