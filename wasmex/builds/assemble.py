"""Output assembly step.

This module handles:
- Rendering the HTML document that loads a target's bundle
- Publishing bundle files and static files into the output directory
- Clean builds that replace the output directory as a whole

Assembly only runs after a successful bundle, so a clean build never
removes the previous output before a replacement exists.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path

import jinja2
from jinja2 import meta
from markupsafe import Markup, escape

from wasmex.errors import TEMPLATE_ERROR, AssemblyError
from wasmex.targets.models import BuildTarget
from wasmex.types import AssemblyResult, BundleManifest

logger = logging.getLogger(__name__)

HTML_FILENAME = "index.html"

DEFAULT_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{{ title }}</title>
    {{ stylesheet_tags }}
  </head>
  <body>
    {{ script_tags }}
  </body>
</html>
"""

# Variables that place asset tags themselves; templates using none of them
# get the tags injected
ASSET_VARIABLES = frozenset(
    {"assets", "scripts", "stylesheets", "script_tags", "stylesheet_tags"}
)


def render_tags(manifest: BundleManifest, public_path: str) -> tuple[Markup, Markup]:
    """Render stylesheet and script tags for a bundle.

    Args:
        manifest: Bundle manifest.
        public_path: Base path for asset URLs.

    Returns:
        Tuple of (stylesheet tags, script tags) in load order.
    """
    links: list[str] = []
    scripts: list[str] = []
    for name in manifest.output_files:
        url = escape(f"{public_path}{name}")
        if name.endswith(".css"):
            links.append(f'<link rel="stylesheet" href="{url}">')
        else:
            scripts.append(f'<script type="module" src="{url}"></script>')
    return Markup("\n".join(links)), Markup("\n".join(scripts))


def inject_tags(html: str, stylesheet_tags: str, script_tags: str) -> str:
    """Insert tags before ``</head>`` and ``</body>`` (or append them)."""
    if stylesheet_tags:
        if "</head>" in html:
            html = html.replace("</head>", f"{stylesheet_tags}\n</head>", 1)
        else:
            html = f"{stylesheet_tags}\n{html}"
    if script_tags:
        if "</body>" in html:
            index = html.rfind("</body>")
            html = f"{html[:index]}{script_tags}\n{html[index:]}"
        else:
            html = f"{html}{script_tags}\n"
    return html


def render_html(
    target: BuildTarget,
    manifest: BundleManifest,
    template_path: Path | None = None,
) -> str:
    """Render the HTML document for a target.

    Args:
        target: Build target.
        manifest: Bundle manifest whose files the document references.
        template_path: Jinja2 template; the built-in template when None.

    Returns:
        Rendered HTML text.

    Raises:
        jinja2.TemplateError: If the template is invalid.
        UnicodeDecodeError: If the template is not UTF-8.
        OSError: If the template cannot be read.
    """
    loader: jinja2.BaseLoader
    if template_path is None:
        loader = jinja2.DictLoader({HTML_FILENAME: DEFAULT_TEMPLATE})
        name = HTML_FILENAME
    else:
        loader = jinja2.FileSystemLoader(template_path.parent)
        name = template_path.name
    env = jinja2.Environment(loader=loader, autoescape=True, keep_trailing_newline=True)

    source = loader.get_source(env, name)[0]
    referenced = meta.find_undeclared_variables(env.parse(source))

    public_path = target.options.public_path
    stylesheet_tags, script_tags = render_tags(manifest, public_path)
    html = env.get_template(name).render(
        title=target.options.title or target.name,
        public_path=public_path,
        scripts=[n for n in manifest.output_files if not n.endswith(".css")],
        stylesheets=[n for n in manifest.output_files if n.endswith(".css")],
        script_tags=script_tags,
        stylesheet_tags=stylesheet_tags,
        assets=Markup("\n".join(s for s in (stylesheet_tags, script_tags) if s)),
    )
    if not referenced & ASSET_VARIABLES:
        html = inject_tags(html, stylesheet_tags, script_tags)
    return html


def copy_static_files(target: BuildTarget, dest: Path) -> list[str]:
    """Copy the static dir and declared static files into dest.

    Args:
        target: Build target.
        dest: Destination directory.

    Returns:
        Sorted relative paths of copied files.
    """
    copied: set[str] = set()
    static_dir = target.static_dir
    if static_dir.is_dir():
        for path in sorted(static_dir.rglob("*")):
            if path.is_file():
                rel = path.relative_to(static_dir)
                (dest / rel).parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(path, dest / rel)
                copied.add(rel.as_posix())

    template = target.template_path
    for pattern in target.options.static_files:
        for path in sorted(target.crate_dir.glob(pattern)):
            if not path.is_file() or path == template:
                continue
            rel = path.relative_to(target.crate_dir)
            (dest / rel).parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, dest / rel)
            copied.add(rel.as_posix())
    return sorted(copied)


def _publish_bundle(manifest: BundleManifest, dest: Path) -> list[str]:
    if manifest.staging_dir is None:
        raise AssemblyError("Bundle manifest has no staging directory")
    for name in manifest.all_files:
        (dest / name).parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(manifest.staging_dir / name, dest / name)
    return manifest.all_files


def _swap_directory(new: Path, current: Path) -> None:
    previous: Path | None = None
    if current.exists():
        previous = current.with_name(f"{new.name}-old")
        current.rename(previous)
    new.rename(current)
    if previous is not None:
        shutil.rmtree(previous, ignore_errors=True)


def assemble_target(target: BuildTarget, manifest: BundleManifest) -> AssemblyResult:
    """Assemble a target's output directory.

    Args:
        target: Build target.
        manifest: Bundle manifest from a successful bundle step.

    Returns:
        AssemblyResult for the published output directory.

    Raises:
        AssemblyError: If the template is invalid or writing fails. The
            previous output is left in place.
    """
    output_dir = target.output_dir
    work_dir: Path | None = None
    try:
        output_dir.parent.mkdir(parents=True, exist_ok=True)
        if target.options.clean:
            work_dir = Path(
                tempfile.mkdtemp(prefix=f".{output_dir.name}-", dir=output_dir.parent)
            )
            dest = work_dir
        else:
            output_dir.mkdir(exist_ok=True)
            dest = output_dir

        static = copy_static_files(target, dest)
        published = _publish_bundle(manifest, dest)
        html = render_html(target, manifest, target.template_path)
        (dest / HTML_FILENAME).write_text(html, encoding="utf-8")

        if work_dir is not None:
            _swap_directory(work_dir, output_dir)
            work_dir = None
    except (jinja2.TemplateError, UnicodeDecodeError) as e:
        raise AssemblyError(
            f"Failed to render template for {target.name}: {e}",
            code=TEMPLATE_ERROR,
        ) from e
    except OSError as e:
        raise AssemblyError(f"Failed to write {output_dir}: {e}") from e
    finally:
        if work_dir is not None:
            shutil.rmtree(work_dir, ignore_errors=True)

    logger.info("[%s] Assembled %s", target.name, output_dir)
    return AssemblyResult(
        output_dir=output_dir,
        html_path=output_dir / HTML_FILENAME,
        published_files=published,
        static_files=static,
    )


__all__ = [
    "ASSET_VARIABLES",
    "DEFAULT_TEMPLATE",
    "HTML_FILENAME",
    "assemble_target",
    "copy_static_files",
    "inject_tags",
    "render_html",
    "render_tags",
]
