"""Build status endpoints.

- GET /status - Latest pipeline result of the served target
- GET /history - Recorded runs of the served target
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from wasmex.builds.history import list_records, record_to_dict
from wasmex.targets.models import BuildTarget
from web.deps import get_db, get_target

router = APIRouter()


@router.get("/status")
def status(
    request: Request, target: BuildTarget = Depends(get_target)
) -> dict[str, Any]:
    """Latest build result of the served target.

    Reports "pending" until the first pipeline run finishes.
    """
    provider = request.app.state.status_provider
    result = provider(target.name) if provider is not None else None
    if result is None:
        return {"target": target.name, "status": "pending"}
    return result.to_dict()


@router.get("/history")
def history(
    limit: int = Query(default=20, ge=1, le=500),
    target: BuildTarget = Depends(get_target),
    db: Session = Depends(get_db),
) -> list[dict[str, Any]]:
    """Recorded runs of the served target, newest first."""
    records = list_records(db, target_name=target.name, limit=limit)
    return [record_to_dict(r) for r in records]
