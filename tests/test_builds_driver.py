"""Tests for the multi-target build driver."""

import re
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine

from conftest import FakeBundler, FakeCompiler, make_example
from wasmex.builds.driver import (
    BuildDriver,
    DriverResult,
    build_targets,
    effective_concurrency,
)
from wasmex.builds.history import list_records
from wasmex.builds.process import ProcessRegistry
from wasmex.config import Settings
from wasmex.db import Base, get_session_factory
from wasmex.errors import DiscoveryError
from wasmex.targets.discovery import discover_targets
from wasmex.types import BatchMode, Stage, TargetStatus

PATTERN = "examples/*/Cargo.toml"


class InterruptingCompiler(FakeCompiler):
    """Simulates Ctrl+C arriving while the first target compiles."""

    def compile(self, manifest_path, flags, out_dir, log_path):
        super().compile(manifest_path, flags, out_dir, log_path)
        raise KeyboardInterrupt


class TestEffectiveConcurrency:
    """Tests for effective_concurrency function."""

    def test_bounded_by_cpus(self):
        with patch("os.cpu_count", return_value=4):
            assert effective_concurrency(16) == 4
            assert effective_concurrency(2) == 2

    def test_at_least_one(self):
        with patch("os.cpu_count", return_value=None):
            assert effective_concurrency(8) == 1
        assert effective_concurrency(0) == 1


class TestBuildTargets:
    """Tests for build_targets function."""

    def test_partial_failure(self, project):
        """app2 failing to compile must not affect app1."""
        targets = discover_targets(project, PATTERN)
        compiler = FakeCompiler(fail={"app2"})

        outcome = build_targets(targets, compiler, FakeBundler(), max_workers=2)

        assert outcome.success is False
        assert [r.target.name for r in outcome.results] == [
            "examples/app1",
            "examples/app2",
        ]
        app1, app2 = outcome.results
        assert app1.status == TargetStatus.SUCCEEDED
        assert app2.status == TargetStatus.FAILED
        assert app2.error_code == "compile_failed"

        html = (project / "examples" / "app1" / "dist" / "index.html").read_text()
        scripts = re.findall(r'<script type="module" src="/([^"]+)"', html)
        assert scripts == ["bundle.js"]
        assert (project / "examples" / "app1" / "dist" / "bundle.js").is_file()
        assert not (project / "examples" / "app2" / "dist").exists()

    def test_all_succeed(self, project, compiler, bundler):
        targets = discover_targets(project, PATTERN)
        outcome = build_targets(targets, compiler, bundler, max_workers=4)
        assert outcome.success is True
        assert outcome.succeeded == 2
        assert compiler.compiled == ["app1", "app2"]

    def test_no_targets(self, compiler, bundler):
        """An empty target list is a vacuous success."""
        outcome = build_targets([], compiler, bundler)
        assert outcome.success is True
        assert outcome.total == 0

    def test_fail_fast_skips_remaining(self, project):
        targets = discover_targets(project, PATTERN)
        compiler = FakeCompiler(fail={"app1"})

        outcome = build_targets(
            targets, compiler, FakeBundler(), max_workers=1, mode=BatchMode.FAIL_FAST
        )

        assert [r.status for r in outcome.results] == [
            TargetStatus.FAILED,
            TargetStatus.SKIPPED,
        ]
        assert compiler.compiled == ["app1"]
        assert outcome.skipped == 1

    def test_best_effort_runs_everything(self, project):
        targets = discover_targets(project, PATTERN)
        compiler = FakeCompiler(fail={"app1"})
        outcome = build_targets(targets, compiler, FakeBundler(), max_workers=1)
        assert compiler.compiled == ["app1", "app2"]
        assert outcome.failed == 1
        assert outcome.succeeded == 1

    def test_on_result_called_per_target(self, project, compiler, bundler):
        seen = []
        build_targets(
            discover_targets(project, PATTERN),
            compiler,
            bundler,
            max_workers=2,
            on_result=lambda r: seen.append(r.target.name),
        )
        assert sorted(seen) == ["examples/app1", "examples/app2"]

    def test_many_targets_parallel(self, tmp_path, compiler, bundler):
        """Outputs stay separate under parallel execution."""
        for i in range(8):
            make_example(tmp_path, f"app{i}")
        targets = discover_targets(tmp_path, PATTERN)
        outcome = build_targets(targets, compiler, bundler, max_workers=4)
        assert outcome.success is True
        for target in targets:
            assert (target.output_dir / "index.html").is_file()

    def test_bad_stylesheet_fails_only_its_target(self, tmp_path, bundler):
        """A non-UTF-8 stylesheet fails app2 without aborting the run."""
        make_example(tmp_path, "app1")
        make_example(tmp_path, "app2", stylesheet="")
        (tmp_path / "examples" / "app2" / "style.css").write_bytes(
            b"body{content:'\xff'}"
        )
        targets = discover_targets(tmp_path, PATTERN)

        outcome = build_targets(targets, FakeCompiler(), bundler, max_workers=1)

        app1, app2 = outcome.results
        assert app1.status == TargetStatus.SUCCEEDED
        assert app2.status == TargetStatus.FAILED
        assert app2.failed_stage == Stage.BUNDLE
        assert app2.error_code == "bundle_failed"
        assert "UTF-8" in app2.error_message
        assert (tmp_path / "examples" / "app1" / "dist" / "index.html").is_file()

    def test_interrupt_cancels_queued_targets(self, tmp_path, bundler):
        """An interrupt stops queued targets and terminates subprocesses."""
        for i in range(4):
            make_example(tmp_path, f"app{i}")
        targets = discover_targets(tmp_path, PATTERN)
        compiler = InterruptingCompiler()
        registry = ProcessRegistry()

        with pytest.raises(KeyboardInterrupt):
            build_targets(
                targets, compiler, bundler, max_workers=1, registry=registry
            )

        assert compiler.compiled == ["app0"]
        assert registry.cancelled is True


class TestDriverResult:
    """Tests for DriverResult."""

    def test_to_dict(self, project, compiler, bundler):
        outcome = build_targets(discover_targets(project, PATTERN), compiler, bundler)
        data = outcome.to_dict()
        assert data["success"] is True
        assert data["total"] == 2
        assert [r["target"] for r in data["results"]] == [
            "examples/app1",
            "examples/app2",
        ]

    def test_empty(self):
        assert DriverResult().to_dict()["results"] == []


class TestBuildDriver:
    """Tests for BuildDriver."""

    @pytest.fixture
    def session_factory(self, tmp_path):
        """File-backed database shared by worker threads."""
        engine = create_engine(f"sqlite:///{tmp_path / 'history.db'}")
        Base.metadata.create_all(engine)
        return get_session_factory(engine)

    def test_discover_and_build(self, project, compiler, bundler):
        driver = BuildDriver(
            settings=Settings(root_dir=project, history=False),
            compiler=compiler,
            bundler=bundler,
        )
        targets = driver.discover()
        outcome = driver.build(targets)
        assert outcome.success is True
        assert driver.latest("examples/app1").success is True

    def test_discover_by_name(self, project, compiler, bundler):
        driver = BuildDriver(
            settings=Settings(root_dir=project), compiler=compiler, bundler=bundler
        )
        assert [t.name for t in driver.discover(names=["app2"])] == ["examples/app2"]

    def test_discover_bad_pattern(self, project, compiler, bundler):
        driver = BuildDriver(
            settings=Settings(root_dir=project, pattern="/abs/Cargo.toml"),
            compiler=compiler,
            bundler=bundler,
        )
        with pytest.raises(DiscoveryError):
            driver.discover()

    def test_rebuild_keeps_last_good(self, project, bundler):
        """A failed rebuild updates latest but not last_good."""
        compiler = FakeCompiler()
        driver = BuildDriver(
            settings=Settings(root_dir=project), compiler=compiler, bundler=bundler
        )
        target = driver.discover(names=["app1"])[0]
        driver.build([target])

        compiler.fail.add("app1")
        result = driver.rebuild(target)

        assert result.success is False
        assert driver.latest(target.name) is result
        assert driver.last_good(target.name).success is True
        assert (target.output_dir / "index.html").is_file()

    def test_records_history(self, project, session_factory):
        driver = BuildDriver(
            settings=Settings(root_dir=project),
            compiler=FakeCompiler(fail={"app2"}),
            bundler=FakeBundler(),
            session_factory=session_factory,
        )
        driver.build(driver.discover())

        with session_factory() as session:
            records = list_records(session)
        assert sorted((r.target_name, r.status) for r in records) == [
            ("examples/app1", "succeeded"),
            ("examples/app2", "failed"),
        ]
        assert {r.trigger for r in records} == {"build"}

    def test_default_collaborators_from_settings(self, project):
        settings = Settings(
            root_dir=project, compiler="/opt/wasm-pack", bundler="/opt/esbuild"
        )
        driver = BuildDriver(settings=settings)
        assert driver.compiler.program == "/opt/wasm-pack"
        assert driver.bundler.program == "/opt/esbuild"
        assert driver.compiler.timeout == settings.compile_timeout

    def test_concurrency_from_settings(self, project, compiler, bundler):
        driver = BuildDriver(
            settings=Settings(root_dir=project, max_concurrent_builds=1),
            compiler=compiler,
            bundler=bundler,
        )
        with patch("wasmex.builds.driver.build_targets") as mock_build:
            driver.build(driver.discover())
        assert mock_build.call_args.kwargs["max_workers"] == 1

