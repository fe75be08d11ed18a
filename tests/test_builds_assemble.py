"""Tests for builds/assemble.py module."""

from unittest.mock import patch

import pytest
from markupsafe import Markup

from conftest import FakeBundler, FakeCompiler, make_example
from wasmex.builds.assemble import (
    assemble_target,
    inject_tags,
    render_html,
    render_tags,
)
from wasmex.builds.bundle import bundle_target
from wasmex.builds.compile import compile_target
from wasmex.builds.hashing import snapshot_tree
from wasmex.errors import AssemblyError
from wasmex.targets.discovery import make_target
from wasmex.types import BuildMode, BundleManifest


def bundled(tmp_path, mode=BuildMode.DEVELOPMENT, **example):
    manifest = make_example(tmp_path, "app1", **example)
    target = make_target(tmp_path, manifest, mode=mode)
    artifact = compile_target(target, FakeCompiler())
    return target, bundle_target(target, artifact, FakeBundler())


class TestRenderTags:
    """Tests for render_tags function."""

    def test_tags_in_order(self):
        manifest = BundleManifest(
            entry_name="bundle", output_files=["theme.css", "bundle.js"]
        )
        links, scripts = render_tags(manifest, "/app/")
        assert links == Markup('<link rel="stylesheet" href="/app/theme.css">')
        assert scripts == Markup(
            '<script type="module" src="/app/bundle.js"></script>'
        )

    def test_urls_escaped(self):
        manifest = BundleManifest(entry_name="bundle", output_files=['a"b.js'])
        _, scripts = render_tags(manifest, "/")
        assert 'src="/a&#34;b.js"' in scripts


class TestInjectTags:
    """Tests for inject_tags function."""

    def test_before_closing_tags(self):
        html = "<html><head></head><body><p>x</p></body></html>"
        result = inject_tags(html, "<link>", "<script></script>")
        assert result.index("<link>") < result.index("</head>")
        assert result.index("<script></script>") < result.index("</body>")

    def test_fragment_appended(self):
        result = inject_tags("<canvas></canvas>", "", "<script></script>")
        assert result == "<canvas></canvas><script></script>\n"


class TestRenderHtml:
    """Tests for render_html function."""

    def test_default_template(self, tmp_path):
        target, manifest = bundled(tmp_path)
        html = render_html(target, manifest)
        assert "<title>examples/app1</title>" in html
        assert '<script type="module" src="/bundle.js"></script>' in html

    def test_custom_template_with_variables(self, tmp_path):
        """A template placing assets itself is not injected into."""
        target, manifest = bundled(tmp_path, options={"title": "Demo"})
        template = target.crate_dir / "index.html"
        template.write_text(
            "<title>{{ title }}</title>\n"
            "{% for s in scripts %}<script src=\"{{ public_path }}{{ s }}\">"
            "</script>{% endfor %}\n"
        )
        html = render_html(target, manifest, template)
        assert "<title>Demo</title>" in html
        assert html.count("bundle.js") == 1

    def test_plain_template_gets_injection(self, tmp_path):
        """A plain HTML page gets the tags injected."""
        target, manifest = bundled(tmp_path)
        template = target.crate_dir / "index.html"
        template.write_text("<html><head></head><body><canvas></canvas></body></html>")
        html = render_html(target, manifest, template)
        assert html.index("bundle.js") > html.index("<canvas>")

    def test_title_escaped(self, tmp_path):
        target, manifest = bundled(tmp_path, options={"title": "<b>x</b>"})
        assert "&lt;b&gt;x&lt;/b&gt;" in render_html(target, manifest)


class TestAssembleTarget:
    """Tests for assemble_target function."""

    def test_output_layout(self, tmp_path):
        """The output holds index.html, the bundle files and static files."""
        target, manifest = bundled(tmp_path)
        static = target.crate_dir / "static"
        static.mkdir()
        (static / "favicon.ico").write_bytes(b"ico")

        result = assemble_target(target, manifest)

        assert result.output_dir == target.output_dir
        assert result.html_path == target.output_dir / "index.html"
        assert result.static_files == ["favicon.ico"]
        assert sorted(p.name for p in target.output_dir.iterdir()) == sorted(
            ["index.html", "favicon.ico", *manifest.all_files]
        )
        html = result.html_path.read_text()
        for name in manifest.output_files:
            assert (target.output_dir / name).is_file()
            assert f'src="/{name}"' in html

    def test_idempotent(self, tmp_path):
        """Assembling unchanged inputs twice gives identical trees."""
        target, manifest = bundled(tmp_path)
        assemble_target(target, manifest)
        first = snapshot_tree(target.output_dir)
        assemble_target(target, manifest)
        assert snapshot_tree(target.output_dir) == first

    def test_static_files_cannot_clobber_html(self, tmp_path):
        target, manifest = bundled(tmp_path)
        static = target.crate_dir / "static"
        static.mkdir()
        (static / "index.html").write_text("static page")
        assemble_target(target, manifest)
        assert "bundle.js" in (target.output_dir / "index.html").read_text()

    def test_static_file_globs(self, tmp_path):
        target, manifest = bundled(
            tmp_path, options={"static_files": ["*.txt", "index.html"]}
        )
        (target.crate_dir / "robots.txt").write_text("User-agent: *\n")
        (target.crate_dir / "index.html").write_text("<body></body>")
        result = assemble_target(target, manifest)
        assert result.static_files == ["robots.txt"]

    def test_merge_keeps_unrelated_files(self, tmp_path):
        """Without clean, existing files in the output dir remain."""
        target, manifest = bundled(tmp_path)
        target.output_dir.mkdir(parents=True)
        (target.output_dir / "old.txt").write_text("old")
        assemble_target(target, manifest)
        assert (target.output_dir / "old.txt").exists()

    def test_clean_replaces_output(self, tmp_path):
        """Clean mode replaces the whole output directory."""
        target, manifest = bundled(tmp_path, options={"clean": True})
        target.output_dir.mkdir(parents=True)
        (target.output_dir / "old.txt").write_text("old")

        assemble_target(target, manifest)

        assert not (target.output_dir / "old.txt").exists()
        assert (target.output_dir / "index.html").is_file()
        siblings = [p.name for p in target.output_dir.parent.iterdir()]
        assert not [n for n in siblings if n.startswith(".dist-")]

    def test_clean_failure_keeps_previous_output(self, tmp_path):
        """A failed clean assembly leaves the previous output in place."""
        target, manifest = bundled(tmp_path, options={"clean": True})
        assemble_target(target, manifest)
        before = snapshot_tree(target.output_dir)

        with patch(
            "wasmex.builds.assemble.render_html", side_effect=OSError("disk full")
        ):
            with pytest.raises(AssemblyError) as exc_info:
                assemble_target(target, manifest)

        assert exc_info.value.code == "assembly_failed"
        assert snapshot_tree(target.output_dir) == before
        siblings = [p.name for p in target.output_dir.parent.iterdir()]
        assert not [n for n in siblings if n.startswith(".dist-")]

    def test_template_error(self, tmp_path):
        target, manifest = bundled(tmp_path)
        (target.crate_dir / "index.html").write_text("{% for %}")
        with pytest.raises(AssemblyError) as exc_info:
            assemble_target(target, manifest)
        assert exc_info.value.code == "template_error"

    def test_template_not_utf8(self, tmp_path):
        target, manifest = bundled(tmp_path)
        (target.crate_dir / "index.html").write_bytes(b"<title>\xff</title>")
        with pytest.raises(AssemblyError) as exc_info:
            assemble_target(target, manifest)
        assert exc_info.value.code == "template_error"

    def test_production_output_names_hashed(self, tmp_path):
        target, manifest = bundled(tmp_path, mode=BuildMode.PRODUCTION)
        result = assemble_target(target, manifest)
        (entry,) = manifest.output_files
        assert entry.startswith("bundle.") and entry != "bundle.js"
        assert f'src="/{entry}"' in result.html_path.read_text()
