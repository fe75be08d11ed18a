"""Build history persistence.

This module provides:
- record_result(): store one TargetResult as a BuildRecord
- list_records(): query recent runs, optionally per target
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from wasmex.builds.models import BuildRecord
from wasmex.types import TargetStatus

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from wasmex.builds.pipeline import TargetResult

logger = logging.getLogger(__name__)


def result_to_record(result: TargetResult, trigger: str = "build") -> BuildRecord:
    """Create an unsaved BuildRecord from a TargetResult."""
    return BuildRecord(
        target_name=result.target.name,
        manifest_path=str(result.target.manifest_path),
        mode=result.target.mode.value,
        trigger=trigger,
        status=result.status.value,
        started_at=result.started_at,
        finished_at=result.finished_at,
        duration=result.duration,
        content_hash=result.bundle.content_hash if result.bundle else None,
        output_files=result.bundle.output_files if result.bundle else [],
        failed_stage=result.failed_stage.value if result.failed_stage else None,
        error_code=result.error_code,
        error_message=result.error_message,
        log_path=str(result.log_path) if result.log_path else None,
    )


def record_result(
    session_factory: sessionmaker[Session],
    result: TargetResult,
    trigger: str = "build",
) -> BuildRecord | None:
    """Persist a pipeline result.

    History is best effort: a database failure is logged and never fails
    the build.

    Args:
        session_factory: Session factory.
        result: Pipeline result.
        trigger: What started the run.

    Returns:
        Saved BuildRecord, or None if saving failed.
    """
    record = result_to_record(result, trigger)
    try:
        with session_factory() as session:
            session.add(record)
            session.commit()
    except SQLAlchemyError as e:
        logger.warning("Failed to record build of %s: %s", result.target.name, e)
        return None
    return record


def list_records(
    session: Session,
    target_name: str | None = None,
    status: TargetStatus | None = None,
    limit: int = 50,
) -> list[BuildRecord]:
    """List build records, newest first.

    Args:
        session: Database session.
        target_name: Filter by target name.
        status: Filter by status.
        limit: Maximum results to return.

    Returns:
        List of BuildRecord instances.
    """
    stmt = select(BuildRecord)
    if target_name is not None:
        stmt = stmt.where(BuildRecord.target_name == target_name)
    if status is not None:
        stmt = stmt.where(BuildRecord.status == status.value)
    stmt = stmt.order_by(BuildRecord.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def record_to_dict(record: BuildRecord) -> dict[str, Any]:
    """Convert a BuildRecord to a JSON-serializable dict."""
    return {
        "id": record.id,
        "target": record.target_name,
        "manifest_path": record.manifest_path,
        "mode": record.mode,
        "trigger": record.trigger,
        "status": record.status,
        "started_at": record.started_at.isoformat() if record.started_at else None,
        "finished_at": record.finished_at.isoformat() if record.finished_at else None,
        "duration": record.duration,
        "content_hash": record.content_hash,
        "output_files": record.output_files or [],
        "failed_stage": record.failed_stage,
        "error_code": record.error_code,
        "error_message": record.error_message,
    }


__all__ = ["list_records", "record_result", "record_to_dict", "result_to_record"]
