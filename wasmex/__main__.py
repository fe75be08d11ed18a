"""Entry point for ``python -m wasmex``."""

from wasmex.cli import app

app(prog_name="wasmex")
