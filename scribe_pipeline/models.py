"""Scribe Pipeline - SQLAlchemy ORM models.

Database tables:
1. recordings           - Record Store rows (one per artifact)
2. transfer_tasks       - Task Registry persistence (live + terminal tasks)
3. handled_task_events  - task_ids whose terminal event was already handled
"""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class RecordingRow(Base):
    """Persisted Artifact record.

    Always written as a whole record by RecordStore; the pipeline never
    issues field-level updates against this table.
    """

    __tablename__ = "recordings"

    recording_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source_file_path: Mapped[str] = mapped_column(Text, nullable=False)

    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    # pending | processing | complete | error
    pipeline_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending", index=True
    )
    title_user_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Best-effort capture metadata
    recorded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_sec: Mapped[float | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class TransferTask(Base):
    """Durable Task Registry entry.

    A row exists from start() until clear(). Terminal rows (succeeded/failed)
    keep the outcome so the event can be redelivered after a restart.
    """

    __tablename__ = "transfer_tasks"

    task_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    stage_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    # Weak reference: lookup key only, no foreign key to recordings
    artifact_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    # Serialized TaskSpec (endpoint, headers, body, file path)
    request_json: Mapped[str] = mapped_column(Text, nullable=False)

    # pending | running | succeeded | failed
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)

    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Huey message id, used to revoke a queued transfer on cancel
    queue_message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_tasks_artifact_status", "artifact_id", "status"),)


class HandledTaskEvent(Base):
    """Marker that a task's terminal event has been applied to its artifact."""

    __tablename__ = "handled_task_events"

    task_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    artifact_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    stage_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    # advanced | completed | failed | ignored
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    handled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
