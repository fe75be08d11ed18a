"""Tests for manifest discovery and target construction."""

from pathlib import Path

import pytest

from conftest import make_example
from wasmex.errors import DiscoveryError, OutputConflictError
from wasmex.targets.discovery import (
    check_output_conflicts,
    discover_manifests,
    discover_targets,
    resolve_entry,
    select_targets,
    validate_pattern,
)
from wasmex.targets.schema import TargetOptions
from wasmex.types import BuildMode

PATTERN = "examples/*/Cargo.toml"


class TestValidatePattern:
    """Test validate_pattern function."""

    @pytest.mark.parametrize("pattern", ["", "   "])
    def test_empty_pattern(self, pattern: str) -> None:
        with pytest.raises(DiscoveryError, match="empty"):
            validate_pattern(pattern)

    def test_absolute_pattern(self) -> None:
        with pytest.raises(DiscoveryError, match="relative"):
            validate_pattern("/examples/*/Cargo.toml")

    def test_parent_escape(self) -> None:
        with pytest.raises(DiscoveryError, match="leave the root"):
            validate_pattern("../examples/*/Cargo.toml")

    def test_valid_pattern(self) -> None:
        validate_pattern("examples/**/Cargo.toml")


class TestDiscoverManifests:
    """Test discover_manifests function."""

    def test_finds_sorted_manifests(self, tmp_path: Path) -> None:
        """Manifests should be returned sorted by relative path."""
        for name in ("zeta", "alpha", "mid"):
            make_example(tmp_path, name)
        manifests = discover_manifests(tmp_path, PATTERN)
        assert [m.parent.name for m in manifests] == ["alpha", "mid", "zeta"]

    def test_no_matches_is_empty(self, tmp_path: Path) -> None:
        """Zero matches is not an error."""
        assert discover_manifests(tmp_path, PATTERN) == []

    def test_directories_ignored(self, tmp_path: Path) -> None:
        """A directory named like a manifest should not match."""
        (tmp_path / "examples" / "odd" / "Cargo.toml").mkdir(parents=True)
        assert discover_manifests(tmp_path, PATTERN) == []

    def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(DiscoveryError, match="does not exist"):
            discover_manifests(tmp_path / "missing", PATTERN)

    def test_recursive_pattern(self, tmp_path: Path) -> None:
        """** should match nested manifests."""
        make_example(tmp_path, "app1")
        nested = tmp_path / "examples" / "group" / "inner"
        nested.mkdir(parents=True)
        (nested / "Cargo.toml").write_text("[package]\n")
        manifests = discover_manifests(tmp_path, "examples/**/Cargo.toml")
        assert len(manifests) == 2


class TestDiscoverTargets:
    """Test discover_targets function."""

    def test_two_examples(self, project: Path) -> None:
        """app1 and app2 should yield two targets with separate outputs."""
        targets = discover_targets(project, PATTERN)

        assert [t.name for t in targets] == ["examples/app1", "examples/app2"]
        root = project.resolve()
        assert targets[0].output_dir == root / "examples" / "app1" / "dist"
        assert targets[1].output_dir == root / "examples" / "app2" / "dist"
        assert targets[0].entry_path == root / "examples" / "app1" / "index.js"
        assert all(t.mode == BuildMode.DEVELOPMENT for t in targets)

    def test_deterministic(self, project: Path) -> None:
        """Discovering twice should produce equal target lists."""
        assert discover_targets(project, PATTERN) == discover_targets(project, PATTERN)

    def test_manifest_only_target(self, tmp_path: Path) -> None:
        """A target without an entry file has entry_path None."""
        make_example(tmp_path, "bare", entry=None)
        (target,) = discover_targets(tmp_path, PATTERN)
        assert target.entry_path is None

    def test_options_file_applied(self, tmp_path: Path) -> None:
        """wasmex.yaml options should shape the target."""
        make_example(
            tmp_path,
            "app1",
            options={
                "output_dir": "www",
                "dev_server_port": 8081,
                "mode": "production",
            },
        )
        (target,) = discover_targets(tmp_path, PATTERN)
        assert target.output_dir.name == "www"
        assert target.dev_server_port == 8081
        assert target.mode == BuildMode.PRODUCTION

    def test_global_mode_used_when_unset(self, project: Path) -> None:
        targets = discover_targets(project, PATTERN, mode=BuildMode.PRODUCTION)
        assert all(t.is_production for t in targets)

    def test_overrides_beat_options_file(self, tmp_path: Path) -> None:
        """CLI overrides should take precedence over the options file."""
        make_example(tmp_path, "app1", options={"mode": "production"})
        (target,) = discover_targets(
            tmp_path, PATTERN, overrides={"mode": "development"}
        )
        assert target.mode == BuildMode.DEVELOPMENT

    def test_defaults_below_options_file(self, tmp_path: Path) -> None:
        """Global defaults should apply only where the file is silent."""
        make_example(tmp_path, "app1", options={"public_path": "/app1"})
        defaults = TargetOptions(public_path="/static", clean=True)
        (target,) = discover_targets(tmp_path, PATTERN, defaults=defaults)
        assert target.options.public_path == "/app1/"
        assert target.options.clean is True

    def test_invalid_options_file(self, tmp_path: Path) -> None:
        """An invalid options file aborts discovery."""
        make_example(tmp_path, "app1", options={"no_such_option": 1})
        with pytest.raises(DiscoveryError, match="Invalid options file"):
            discover_targets(tmp_path, PATTERN)

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        make_example(tmp_path, "app1")
        (tmp_path / "examples" / "app1" / "wasmex.yaml").write_text("a: [b\n")
        with pytest.raises(DiscoveryError):
            discover_targets(tmp_path, PATTERN)

    def test_shared_output_dir_conflict(self, tmp_path: Path) -> None:
        """Two targets writing to one directory is a fatal conflict."""
        shared = str(tmp_path / "public")
        make_example(tmp_path, "app1", options={"output_dir": shared})
        make_example(tmp_path, "app2", options={"output_dir": shared})
        with pytest.raises(OutputConflictError) as exc_info:
            discover_targets(tmp_path, PATTERN)
        assert exc_info.value.code == "output_conflict"
        assert len(exc_info.value.manifests) == 2

    def test_nested_output_dir_conflict(self, tmp_path: Path) -> None:
        """An output dir inside another target's output dir conflicts."""
        make_example(
            tmp_path, "app1", options={"output_dir": str(tmp_path / "public")}
        )
        make_example(
            tmp_path, "app2", options={"output_dir": str(tmp_path / "public" / "b")}
        )
        with pytest.raises(OutputConflictError):
            discover_targets(tmp_path, PATTERN)

    @pytest.mark.parametrize("output_dir", [".", "..", "../.."])
    def test_output_dir_containing_crate_rejected(
        self, tmp_path: Path, output_dir: str
    ) -> None:
        """A clean build must never be able to replace the crate sources."""
        manifest = make_example(
            tmp_path, "app1", options={"output_dir": output_dir, "clean": True}
        )
        with pytest.raises(DiscoveryError, match="contains its crate directory"):
            discover_targets(tmp_path, PATTERN)
        assert manifest.is_file()

    @pytest.mark.parametrize("output_dir", ["pkg", "pkg/www", ".wasmex"])
    def test_output_dir_overlapping_pipeline_dirs_rejected(
        self, tmp_path: Path, output_dir: str
    ) -> None:
        make_example(tmp_path, "app1", options={"output_dir": output_dir})
        with pytest.raises(DiscoveryError, match="overlaps"):
            discover_targets(tmp_path, PATTERN)

    def test_output_dir_outside_crate_allowed(self, tmp_path: Path) -> None:
        make_example(tmp_path, "app1", options={"output_dir": "../app1-dist"})
        (target,) = discover_targets(tmp_path, PATTERN)
        expected = tmp_path / "examples" / "app1-dist"
        assert target.output_dir.resolve() == expected.resolve()


class TestResolveEntry:
    """Test resolve_entry function."""

    def test_explicit_entry(self, tmp_path: Path) -> None:
        options = TargetOptions(entry="web/main.ts")
        assert resolve_entry(tmp_path, options) == tmp_path / "web" / "main.ts"

    def test_candidate_order(self, tmp_path: Path) -> None:
        """index.js should win over index.ts."""
        (tmp_path / "index.ts").write_text("")
        (tmp_path / "index.js").write_text("")
        assert resolve_entry(tmp_path, TargetOptions()) == tmp_path / "index.js"


class TestSelectTargets:
    """Test select_targets function."""

    def test_empty_selects_all(self, project: Path) -> None:
        targets = discover_targets(project, PATTERN)
        assert select_targets(targets, []) == targets

    def test_select_by_basename(self, project: Path) -> None:
        targets = discover_targets(project, PATTERN)
        selected = select_targets(targets, ["app2"])
        assert [t.name for t in selected] == ["examples/app2"]

    def test_select_by_full_name(self, project: Path) -> None:
        targets = discover_targets(project, PATTERN)
        assert len(select_targets(targets, ["examples/app1"])) == 1

    def test_unknown_name(self, project: Path) -> None:
        targets = discover_targets(project, PATTERN)
        with pytest.raises(DiscoveryError, match="Unknown target"):
            select_targets(targets, ["app3"])


class TestCheckOutputConflicts:
    """Test check_output_conflicts function."""

    def test_sibling_dirs_ok(self, project: Path) -> None:
        check_output_conflicts(discover_targets(project, PATTERN))

