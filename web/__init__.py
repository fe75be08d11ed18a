"""Local dev servers for wasmex targets.

Serves a target's assembled output directory and exposes its build
status. Not part of the build success or failure contract.
"""

from web.app import create_app
from web.server import DevServer

__all__ = ["DevServer", "create_app"]
