"""Build history ORM models.

A BuildRecord stores one target pipeline run: which target, in which
mode, how it ended and what it published.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from wasmex.db import Base
from wasmex.types import TargetStatus


class BuildRecord(Base):
    """ORM model for target pipeline runs.

    Attributes:
        id: Primary key.
        target_name: Target name.
        manifest_path: Manifest of the target.
        mode: Build mode.
        trigger: What started the run (build, watch).
        status: Final status.
        requested_at: Timestamp the record was created.
        started_at: Pipeline start time.
        finished_at: Pipeline finish time.
        duration: Run time in seconds.
        content_hash: Entry script content hash (production builds).
        output_files: Loadable files in load order.
        failed_stage: Stage that failed.
        error_code: Stable error code.
        error_message: Error message.
        log_path: Log of the failing tool.
    """

    __tablename__ = "build_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    target_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    manifest_path: Mapped[str] = mapped_column(String(500), nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger: Mapped[str] = mapped_column(String(20), nullable=False, default="build")

    # Status and timing
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TargetStatus.PENDING.value, index=True
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Outputs
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    output_files: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True, default=list
    )

    # Error tracking
    failed_stage: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_path: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        Index("ix_build_records_target_status", "target_name", "status"),
    )

    def __repr__(self) -> str:
        """Return string representation of BuildRecord."""
        return (
            f"<BuildRecord(id={self.id}, target='{self.target_name}', "
            f"status='{self.status}')>"
        )

    def is_succeeded(self) -> bool:
        """Check if this run succeeded."""
        return self.status == TargetStatus.SUCCEEDED.value


__all__ = ["BuildRecord"]
