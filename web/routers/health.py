"""Health check endpoint."""

from fastapi import APIRouter, Depends

from wasmex import __version__
from wasmex.targets.models import BuildTarget
from web.deps import get_target

router = APIRouter()


@router.get("/health")
def health(target: BuildTarget = Depends(get_target)) -> dict[str, str]:
    """Health check endpoint.

    Returns:
        Health status with version and served target.
    """
    return {"status": "ok", "version": __version__, "target": target.name}
