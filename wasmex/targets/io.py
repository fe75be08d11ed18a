"""Loading of per-target options files.

A target may carry a ``wasmex.yaml``, ``wasmex.yml`` or ``wasmex.json``
file beside its manifest. The first one found wins.
"""

import json
from pathlib import Path
from typing import Any

import yaml

OPTIONS_FILENAMES = ("wasmex.yaml", "wasmex.yml", "wasmex.json")


def find_options_file(crate_dir: Path) -> Path | None:
    """Return the options file beside a manifest, if any."""
    for name in OPTIONS_FILENAMES:
        candidate = crate_dir / name
        if candidate.is_file():
            return candidate
    return None


def load_options_file(path: Path) -> dict[str, Any]:
    """Load a per-target options file.

    The format follows the extension. An empty YAML document means no
    options.

    Args:
        path: Path to the options file.

    Returns:
        Raw option mapping.

    Raises:
        OSError: If the file cannot be read.
        yaml.YAMLError: If a YAML file does not parse.
        ValueError: If the extension is unsupported, a JSON file does not
            parse, or the document is not a mapping.
    """
    suffix = path.suffix.lower()
    if suffix not in (".yaml", ".yml", ".json"):
        raise ValueError(f"Unsupported options file extension: {suffix}")
    text = path.read_text(encoding="utf-8")
    if suffix == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
        if data is None:
            data = {}
    if not isinstance(data, dict):
        raise ValueError(
            f"{path.name} must hold a mapping of options, "
            f"got {type(data).__name__}"
        )
    return data


__all__ = [
    "OPTIONS_FILENAMES",
    "find_options_file",
    "load_options_file",
]
