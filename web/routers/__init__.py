"""Router modules for the dev server API."""

from web.routers import health, status

__all__ = ["health", "status"]
