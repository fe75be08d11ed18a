"""Content hashing and asset classification for bundle outputs.

This module handles:
- Computing file and content digests
- Deriving content-hashed file names for long-term caching
- Classifying emitted files by kind
- Snapshotting a directory tree for comparison
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from wasmex.types import AssetKind

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

# Hex digits of the SHA-256 digest used in file names
CONTENT_HASH_LENGTH = 16

SCRIPT_SUFFIXES = (".js", ".mjs")
STYLESHEET_SUFFIXES = (".css",)


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def content_hash(data: bytes, length: int = CONTENT_HASH_LENGTH) -> str:
    """Return the truncated SHA-256 hex digest of data."""
    return hashlib.sha256(data).hexdigest()[:length]


def split_name(name: str) -> tuple[str, str]:
    """Split a file name into stem and full extension.

    ``bundle.js.map`` splits into ``("bundle", ".js.map")`` so hashed names
    keep compound extensions together.
    """
    if name.endswith(".map"):
        stem, ext = split_name(name[: -len(".map")])
        return stem, f"{ext}.map"
    dot = name.rfind(".")
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot:]


def hashed_name(name: str, digest: str) -> str:
    """Insert a digest before a file name's extension.

    Args:
        name: Original file name, e.g. ``bundle.js``.
        digest: Content digest.

    Returns:
        Name like ``bundle.<digest>.js``.
    """
    stem, ext = split_name(name)
    return f"{stem}.{digest}{ext}"


def classify_asset(name: str) -> AssetKind:
    """Classify an emitted file by its name.

    Args:
        name: File name.

    Returns:
        AssetKind of the file.
    """
    lower = name.lower()
    if lower.endswith(".map"):
        return AssetKind.SOURCEMAP
    if lower.endswith(".wasm"):
        return AssetKind.WASM
    if lower.endswith(SCRIPT_SUFFIXES):
        return AssetKind.SCRIPT
    if lower.endswith(STYLESHEET_SUFFIXES):
        return AssetKind.STYLESHEET
    return AssetKind.OTHER


def snapshot_tree(root: Path) -> dict[str, str]:
    """Map every file below root (relative posix path) to its SHA-256.

    Args:
        root: Directory to snapshot.

    Returns:
        Sorted mapping; empty if root does not exist.
    """
    if not root.is_dir():
        return {}
    return {
        path.relative_to(root).as_posix(): compute_file_hash(path)
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


__all__ = [
    "CONTENT_HASH_LENGTH",
    "HASH_CHUNK_SIZE",
    "classify_asset",
    "compute_file_hash",
    "content_hash",
    "hashed_name",
    "snapshot_tree",
    "split_name",
]
