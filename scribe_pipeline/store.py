"""Scribe Pipeline - Record Store.

Durable keyed storage for recordings (the pipeline's Artifacts) on top of the
SQLAlchemy session factory from scribe_pipeline.db.

Callers only ever see detached, immutable Artifact snapshots. A change is
made by building a modified copy (dataclasses.replace) and writing the whole
record back.

Concurrency:
    Whole-record writes race with each other (a user title edit against a
    completion write, for example). RecordStore.update() closes that race by
    holding a per-artifact lock around the read-modify-write cycle and running
    the cycle in a single transaction. All pipeline writes go through
    update(); upsert() is for creating records and for callers that already
    own the lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from scribe_pipeline.errors import ArtifactNotFoundError, StoreError
from scribe_pipeline.models import RecordingRow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


class PipelineStatus(StrEnum):
    """Per-artifact pipeline status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({PipelineStatus.COMPLETE, PipelineStatus.ERROR})


@dataclass(frozen=True)
class Artifact:
    """Snapshot of one recording as stored in the Record Store."""

    id: str
    title: str
    source_file_path: str
    transcript: str | None = None
    summary: str | None = None
    pipeline_status: str = PipelineStatus.PENDING
    title_user_locked: bool = False
    recorded_at: datetime | None = None
    duration_sec: float | None = None

    def with_status(self, status: str) -> Artifact:
        return replace(self, pipeline_status=status)

    @property
    def is_terminal(self) -> bool:
        return self.pipeline_status in TERMINAL_STATUSES


def _row_to_artifact(row: RecordingRow) -> Artifact:
    return Artifact(
        id=row.recording_id,
        title=row.title,
        source_file_path=row.source_file_path,
        transcript=row.transcript,
        summary=row.summary,
        pipeline_status=row.pipeline_status,
        title_user_locked=row.title_user_locked,
        recorded_at=row.recorded_at,
        duration_sec=row.duration_sec,
    )


def _copy_into_row(row: RecordingRow, artifact: Artifact) -> None:
    row.title = artifact.title
    row.source_file_path = artifact.source_file_path
    row.transcript = artifact.transcript
    row.summary = artifact.summary
    row.pipeline_status = str(artifact.pipeline_status)
    row.title_user_locked = artifact.title_user_locked
    row.recorded_at = artifact.recorded_at
    row.duration_sec = artifact.duration_sec


class RecordStore:
    """Record Store over a SQLAlchemy session factory.

    Every public method runs in its own session (one session per unit of
    work) and raises StoreError when the database rejects the operation.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, artifact_id: str) -> threading.RLock:
        """Return the re-entrant per-artifact lock that update() holds.

        Callers hold it to make a longer check-then-write sequence on one
        recording atomic with respect to other threads of this process.
        """
        with self._locks_guard:
            lock = self._locks.get(artifact_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[artifact_id] = lock
            return lock

    @staticmethod
    def _find_row(session: Session, artifact_id: str) -> RecordingRow | None:
        stmt = select(RecordingRow).where(RecordingRow.recording_id == artifact_id)
        return session.execute(stmt).scalar_one_or_none()

    # --- Read ---

    def get(self, artifact_id: str) -> Artifact | None:
        """Return the current snapshot for artifact_id, or None if absent."""
        session = self._session_factory()
        try:
            row = self._find_row(session, artifact_id)
            return _row_to_artifact(row) if row is not None else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read recording {artifact_id}: {e}") from e
        finally:
            session.close()

    def require(self, artifact_id: str) -> Artifact:
        """Like get(), but raises ArtifactNotFoundError when absent."""
        artifact = self.get(artifact_id)
        if artifact is None:
            raise ArtifactNotFoundError(artifact_id)
        return artifact

    def list_all(self) -> list[Artifact]:
        """Return all recordings, newest first."""
        session = self._session_factory()
        try:
            stmt = select(RecordingRow).order_by(RecordingRow.created_at.desc())
            return [_row_to_artifact(row) for row in session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list recordings: {e}") from e
        finally:
            session.close()

    # --- Write ---

    def upsert(self, artifact: Artifact) -> None:
        """Insert or replace the whole record for artifact.id."""
        with self.lock_for(artifact.id):
            session = self._session_factory()
            try:
                row = self._find_row(session, artifact.id)
                if row is None:
                    row = RecordingRow(recording_id=artifact.id)
                    session.add(row)
                _copy_into_row(row, artifact)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Failed to write recording {artifact.id}: {e}") from e
            finally:
                session.close()

    def update(self, artifact_id: str, mutate: Callable[[Artifact], Artifact]) -> Artifact:
        """Atomically apply mutate to the current record and write it back.

        The read, the mutation and the write happen under the artifact's lock
        and in one transaction, so concurrent updates to the same artifact
        are serialized instead of overwriting each other.

        Args:
            artifact_id: Recording to update.
            mutate: Pure function from the current snapshot to the new one.
                Must not change the id.

        Returns:
            The snapshot that was written.

        Raises:
            ArtifactNotFoundError: If the recording does not exist.
            StoreError: If the read or write fails.
        """
        with self.lock_for(artifact_id):
            session = self._session_factory()
            try:
                row = self._find_row(session, artifact_id)
                if row is None:
                    raise ArtifactNotFoundError(artifact_id)
                updated = mutate(_row_to_artifact(row))
                if updated.id != artifact_id:
                    raise StoreError(f"Update may not change recording id {artifact_id}")
                _copy_into_row(row, updated)
                session.commit()
                return updated
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Failed to update recording {artifact_id}: {e}") from e
            except StoreError:
                session.rollback()
                raise
            finally:
                session.close()

    def set_status(self, artifact_id: str, status: str) -> Artifact:
        """Convenience wrapper: update only pipeline_status."""
        return self.update(artifact_id, lambda current: current.with_status(status))

    def delete(self, artifact_id: str) -> bool:
        """Delete the record. Returns False if it did not exist."""
        with self.lock_for(artifact_id):
            session = self._session_factory()
            try:
                row = self._find_row(session, artifact_id)
                if row is None:
                    return False
                session.delete(row)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Failed to delete recording {artifact_id}: {e}") from e
            finally:
                session.close()

        with self._locks_guard:
            self._locks.pop(artifact_id, None)
        logger.info("Deleted recording %s", artifact_id)
        return True
