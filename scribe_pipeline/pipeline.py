"""Scribe Pipeline - Pipeline service.

PipelineService owns the wiring between the Record Store, the Task Registry,
the Stage Submitter and the Completion Handler, and gives the outside world
(HTTP API, huey consumer, recovery script) one object to call.

Lifecycle:
    service = PipelineService.from_session_factory(SessionFactory)
    service.start()   # reconcile, subscribe, redeliver stored outcomes
    ...
    service.stop()    # unsubscribe

start() must run before any task event is handled: the Reconciler repairs
what a crash left behind, and only then is the Completion Handler attached.
"""

from __future__ import annotations

import logging
import shutil
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from scribe_pipeline.completion import CompletionHandler, HandledTaskLog
from scribe_pipeline.errors import (
    PipelineErrorCode,
    PreconditionError,
    StoreError,
    SubmissionError,
    ValidationError,
)
from scribe_pipeline.reconciler import Reconciler, ReconcileReport
from scribe_pipeline.registry import TaskRegistry, TaskRegistryError
from scribe_pipeline.stages import StageKind, first_unmet_stage
from scribe_pipeline.store import Artifact, PipelineStatus, RecordStore
from scribe_pipeline.submitter import StageSubmitter
from scribe_pipeline.utils.atomic_io import atomic_copy_file
from scribe_pipeline.utils.paths import is_managed_path, recording_dir, recording_source_path

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.orm import sessionmaker

    from scribe_pipeline.registry import Subscription

logger = logging.getLogger(__name__)


def generate_recording_id() -> str:
    """Generate a unique recording ID (uuid4 hex, 32 chars)."""
    return uuid.uuid4().hex


class PipelineService:
    """Recording pipeline with an explicit start()/stop() lifecycle.

    Args:
        store: Record Store holding the recordings.
        registry: Task Registry executing stage tasks.
        handled_log: Durable record of task events already applied.
    """

    def __init__(self, store: RecordStore, registry: TaskRegistry, handled_log: HandledTaskLog):
        self._store = store
        self._registry = registry
        self._submitter = StageSubmitter(store, registry)
        self._handler = CompletionHandler(store, registry, self._submitter, handled_log)
        self._subscription: Subscription | None = None
        self._lifecycle_lock = threading.Lock()

    @classmethod
    def from_session_factory(
        cls,
        session_factory: sessionmaker,
        enqueue: Callable[[str], str | None] | None = None,
        revoke: Callable[[str], None] | None = None,
    ) -> PipelineService:
        """Build a service whose store, registry and handled log share one database."""
        return cls(
            RecordStore(session_factory),
            TaskRegistry(session_factory, enqueue=enqueue, revoke=revoke),
            HandledTaskLog(session_factory),
        )

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    @property
    def completion_handler(self) -> CompletionHandler:
        return self._handler

    @property
    def is_running(self) -> bool:
        return self._subscription is not None

    # --- Lifecycle ---

    def start(self) -> ReconcileReport | None:
        """Reconcile, then attach the Completion Handler.

        Returns:
            The reconciliation report, or None if the service was already
            running.
        """
        with self._lifecycle_lock:
            if self._subscription is not None:
                return None

            report = Reconciler(self._store, self._registry).run()
            self._subscription = self._registry.subscribe(
                self._handler.on_complete, self._handler.on_error
            )
            logger.info("Pipeline service started")

        # Outcomes recorded while no handler was attached
        self._registry.redeliver_outcomes()
        return report

    def stop(self) -> None:
        with self._lifecycle_lock:
            if self._subscription is None:
                return
            self._registry.unsubscribe(self._subscription)
            self._subscription = None
        logger.info("Pipeline service stopped")

    # --- Recordings ---

    def get_recording(self, recording_id: str) -> Artifact:
        return self._store.require(recording_id)

    def list_recordings(self) -> list[Artifact]:
        return self._store.list_all()

    def register_recording(
        self,
        source_path: str | Path,
        title: str | None = None,
        recorded_at: datetime | None = None,
        duration_sec: float | None = None,
        start_pipeline: bool = True,
    ) -> Artifact:
        """Copy a finished recording into the data directory and create its record.

        Args:
            source_path: Audio file produced by the capture side.
            title: Initial title. Defaults to the file name without extension.
            recorded_at: When the capture started.
            duration_sec: Capture duration.
            start_pipeline: Submit the first stage right away.

        Returns:
            The stored recording (after the first submission, if started).

        Raises:
            PreconditionError: If source_path does not exist.
            StoreError: If the copy or the record write fails.
            SubmissionError: If start_pipeline is set and the first stage
                could not be submitted. The record exists with status error.
        """
        source_path = Path(source_path)
        if not source_path.is_file():
            raise PreconditionError(StageKind.TRANSCRIBE, f"source file not found: {source_path}")

        recording_id = generate_recording_id()
        dest_path = recording_source_path(recording_id, source_path.suffix)
        try:
            atomic_copy_file(source_path, dest_path)
        except OSError as e:
            raise StoreError(f"Failed to copy recording: {e}") from e

        artifact = Artifact(
            id=recording_id,
            title=(title or "").strip() or source_path.stem,
            source_file_path=str(dest_path),
            recorded_at=recorded_at,
            duration_sec=duration_sec,
        )
        try:
            self._store.upsert(artifact)
        except StoreError:
            self._remove_files(artifact)
            raise
        logger.info("Registered recording %s from %s", recording_id, source_path)

        if start_pipeline:
            self.process_recording(recording_id)
        return self._store.require(recording_id)

    def process_recording(self, recording_id: str) -> tuple[StageKind | None, str | None]:
        """Start the pipeline, or retry it from the first stage without a result.

        Used both for the initial submission and for manual retry after an
        error. A recording left in processing without a live task (a crash
        between the status write and the task start) is resubmitted too.

        Returns:
            (stage_kind, task_id) of the submitted stage, or (None, None) if
            every required stage already has a result and the recording was
            marked complete.

        Raises:
            ArtifactNotFoundError: If the recording does not exist.
            SubmissionError: If an uncleared task already exists (error_code
                ALREADY_PROCESSING) or the submission failed.
        """
        with self._store.lock_for(recording_id):
            artifact = self._store.require(recording_id)

            # A finished task whose outcome was not handled yet still owns the
            # recording: handling it submits the next stage.
            uncleared = self._registry.tasks_for(recording_id)
            if uncleared:
                raise SubmissionError(
                    f"Recording {recording_id} is already processing "
                    f"(task {uncleared[0]} not yet cleared)",
                    error_code=PipelineErrorCode.ALREADY_PROCESSING,
                )

            stage = first_unmet_stage(artifact)
            if stage is None:
                logger.info(
                    "Recording %s has transcript and summary; marking complete", recording_id
                )
                self._store.set_status(recording_id, PipelineStatus.COMPLETE)
                return None, None

            task_id = self._submitter.submit_stage(stage, artifact)
            return stage, task_id

    def update_title(self, recording_id: str, title: str) -> Artifact:
        """Set a user-chosen title. Generated titles never replace it afterwards.

        Raises:
            ValidationError: If the title is blank.
            ArtifactNotFoundError: If the recording does not exist.
        """
        title = title.strip()
        if not title:
            raise ValidationError("Title must not be blank", candidate=title)
        updated = self._store.update(
            recording_id, lambda current: replace(current, title=title, title_user_locked=True)
        )
        logger.info("Title of recording %s set by user", recording_id)
        return updated

    def delete_recording(self, recording_id: str) -> bool:
        """Cancel and clear the recording's tasks, then delete it.

        Returns:
            False if the recording did not exist.
        """
        artifact = self._store.get(recording_id)

        for task_id in self._registry.tasks_for(recording_id):
            try:
                self._registry.cancel(task_id)
            except TaskRegistryError:
                logger.exception("Failed to cancel task %s of recording %s", task_id, recording_id)

        if artifact is None:
            return False
        deleted = self._store.delete(recording_id)
        self._remove_files(artifact)
        return deleted

    @staticmethod
    def _remove_files(artifact: Artifact) -> None:
        if not is_managed_path(artifact.source_file_path):
            return
        directory = recording_dir(artifact.id)
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Could not remove files of recording %s", artifact.id, exc_info=True)
