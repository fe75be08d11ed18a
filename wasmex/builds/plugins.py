"""Asset transform plugins applied to bundler output.

A plugin is any object with a ``name`` and a
``transform(asset) -> asset`` method. The bundling step applies plugins
in order to every emitted file before naming and publishing them; a
plugin returning None drops the file from the bundle.
"""

from __future__ import annotations

import fnmatch
import json
import re
from typing import Protocol

from wasmex.errors import BundleError
from wasmex.targets.models import BuildTarget
from wasmex.types import AssetKind, OutputAsset

CSS_SOURCEMAP_COMMENT = re.compile(rb"/\*# sourceMappingURL=[^*]*\*/\s*")

# Emitted by bundlers or copied from the package dir, never loaded by a page
CLEANED_PATTERNS = (
    "*.d.ts",
    "*.LICENSE.txt",
    "*.tsbuildinfo",
    "package.json",
    ".gitignore",
)

STYLE_INJECTOR_TEMPLATE = """(() => {{
  const style = document.createElement("style");
  style.setAttribute("data-source", {source});
  style.textContent = {css};
  document.head.appendChild(style);
}})();
"""


class BundlePlugin(Protocol):
    """Transform applied to each emitted bundle file."""

    name: str

    def transform(self, asset: OutputAsset) -> OutputAsset | None:
        """Return the transformed asset (may be the same object), or None."""
        ...


class StylesheetLoader:
    """Load imported stylesheets into the page.

    With ``inject`` on, every emitted stylesheet is replaced by a script
    that appends its rules in a ``<style>`` element when loaded. Otherwise
    stylesheets pass through and are linked from the HTML document.
    Stylesheet sourcemaps are dropped along with injected stylesheets.
    """

    name = "stylesheet-loader"

    def __init__(self, inject: bool = True) -> None:
        self.inject = inject

    def transform(self, asset: OutputAsset) -> OutputAsset | None:
        if not self.inject:
            return asset
        if asset.kind == AssetKind.SOURCEMAP and asset.name.endswith(".css.map"):
            return None
        if asset.kind != AssetKind.STYLESHEET:
            return asset
        try:
            css = CSS_SOURCEMAP_COMMENT.sub(b"", asset.data).decode("utf-8")
        except UnicodeDecodeError as e:
            raise BundleError(
                f"Stylesheet {asset.name} is not valid UTF-8: {e}"
            ) from e
        stem = asset.name[: -len(".css")]
        script = STYLE_INJECTOR_TEMPLATE.format(
            source=json.dumps(asset.name),
            css=json.dumps(css),
        )
        return OutputAsset(
            name=f"{stem}.styles.js",
            data=script.encode("utf-8"),
            kind=AssetKind.SCRIPT,
        )


class OutputCleaner:
    """Drop bundler byproducts that are never served.

    Attributes:
        patterns: Glob patterns matched against emitted file names.
    """

    name = "output-cleaner"

    def __init__(self, patterns: tuple[str, ...] = CLEANED_PATTERNS) -> None:
        self.patterns = patterns

    def transform(self, asset: OutputAsset) -> OutputAsset | None:
        basename = asset.name.rsplit("/", 1)[-1]
        if any(fnmatch.fnmatchcase(basename, p) for p in self.patterns):
            return None
        return asset


def default_plugins(target: BuildTarget) -> list[BundlePlugin]:
    """Return the plugin list used for a target."""
    return [
        OutputCleaner(),
        StylesheetLoader(inject=target.options.inject_styles),
    ]


__all__ = [
    "CLEANED_PATTERNS",
    "BundlePlugin",
    "OutputCleaner",
    "StylesheetLoader",
    "default_plugins",
]
