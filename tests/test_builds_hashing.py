"""Tests for content hashing and asset classification."""

import hashlib

import pytest

from wasmex.builds.hashing import (
    CONTENT_HASH_LENGTH,
    classify_asset,
    compute_file_hash,
    content_hash,
    hashed_name,
    snapshot_tree,
    split_name,
)
from wasmex.types import AssetKind


class TestComputeFileHash:
    """Tests for compute_file_hash function."""

    def test_matches_hashlib(self, tmp_path):
        path = tmp_path / "bundle.js"
        path.write_bytes(b"console.log(1);\n")
        expected = hashlib.sha256(b"console.log(1);\n").hexdigest()
        assert compute_file_hash(path) == expected

    def test_small_chunks(self, tmp_path):
        """Chunked hashing should not change the digest."""
        path = tmp_path / "data.bin"
        path.write_bytes(b"x" * 1000)
        assert compute_file_hash(path, chunk_size=7) == compute_file_hash(path)


class TestContentHash:
    """Tests for content_hash function."""

    def test_length_and_stability(self):
        digest = content_hash(b"abc")
        assert len(digest) == CONTENT_HASH_LENGTH
        assert digest == content_hash(b"abc")

    def test_differs_for_different_content(self):
        assert content_hash(b"a") != content_hash(b"b")


class TestNames:
    """Tests for split_name and hashed_name."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("bundle.js", ("bundle", ".js")),
            ("bundle.js.map", ("bundle", ".js.map")),
            ("index_bg.wasm", ("index_bg", ".wasm")),
            ("bundle.styles.js", ("bundle.styles", ".js")),
            ("LICENSE", ("LICENSE", "")),
            (".hidden", (".hidden", "")),
        ],
    )
    def test_split_name(self, name, expected):
        assert split_name(name) == expected

    def test_hashed_name(self):
        assert hashed_name("bundle.js", "abc123") == "bundle.abc123.js"
        assert hashed_name("bundle.js.map", "abc123") == "bundle.abc123.js.map"


class TestClassifyAsset:
    """Tests for classify_asset function."""

    @pytest.mark.parametrize(
        ("name", "kind"),
        [
            ("bundle.js", AssetKind.SCRIPT),
            ("chunk.mjs", AssetKind.SCRIPT),
            ("bundle.css", AssetKind.STYLESHEET),
            ("bundle.js.map", AssetKind.SOURCEMAP),
            ("bundle.css.map", AssetKind.SOURCEMAP),
            ("index_bg.wasm", AssetKind.WASM),
            ("logo.png", AssetKind.OTHER),
        ],
    )
    def test_classify(self, name, kind):
        assert classify_asset(name) == kind


class TestSnapshotTree:
    """Tests for snapshot_tree function."""

    def test_missing_dir(self, tmp_path):
        assert snapshot_tree(tmp_path / "missing") == {}

    def test_nested_files(self, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "b.txt").write_text("b")
        (tmp_path / "c.txt").write_text("c")
        snapshot = snapshot_tree(tmp_path)
        assert list(snapshot) == ["a/b.txt", "c.txt"]
        assert snapshot["c.txt"] == hashlib.sha256(b"c").hexdigest()
