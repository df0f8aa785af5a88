"""Scribe Pipeline - Stage Submitter.

submit_stage() is the only way a stage task gets started. Ordering:

1. Check the stage precondition and that no live task exists for the artifact.
2. Write pipeline_status = processing to the Record Store.
3. Ask the Task Registry to start the task.

The status write comes first so that a crash between 2 and 3 leaves an
artifact marked processing with no task, which a manual retry can resubmit,
rather than a task nobody is tracking. A crash the other way round (task
started, status still pending) is repaired by the Reconciler.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from scribe_pipeline.errors import (
    PipelineErrorCode,
    PreconditionError,
    StoreError,
    SubmissionError,
)
from scribe_pipeline.stages import (
    StageKind,
    build_task_spec,
    check_precondition,
    parse_stage_kind,
)
from scribe_pipeline.store import Artifact, PipelineStatus
from scribe_pipeline.utils.failpoints import maybe_fail

if TYPE_CHECKING:
    from scribe_pipeline.registry import TaskRegistry
    from scribe_pipeline.store import RecordStore

logger = logging.getLogger(__name__)


class StageSubmitter:
    """Builds stage requests and starts them on the Task Registry."""

    def __init__(self, store: RecordStore, registry: TaskRegistry):
        self._store = store
        self._registry = registry

    def _mark_error(self, artifact_id: str) -> None:
        try:
            self._store.update(
                artifact_id,
                lambda current: current
                if current.is_terminal
                else current.with_status(PipelineStatus.ERROR),
            )
        except StoreError:
            logger.exception("Failed to mark recording %s as error", artifact_id)

    def submit_stage(
        self,
        stage_kind: StageKind,
        artifact: Artifact,
        exclude_task_id: str | None = None,
    ) -> str:
        """Start stage_kind for artifact.

        Args:
            stage_kind: Stage to run.
            artifact: Current snapshot of the artifact (inputs are read from it).
            exclude_task_id: Task being handled by the caller; ignored by the
                one-live-task check.

        Returns:
            The Task Registry task_id.

        Raises:
            PreconditionError: The artifact lacks the stage's input. Status is
                set to error.
            SubmissionError: A live task already exists for the artifact
                (status untouched), or the status write / task registration
                failed (status set to error).
        """
        stage_kind = parse_stage_kind(stage_kind)

        try:
            check_precondition(stage_kind, artifact)
        except PreconditionError:
            logger.warning(
                "Cannot submit %s for recording %s: precondition unmet", stage_kind, artifact.id
            )
            self._mark_error(artifact.id)
            raise

        live = [
            task
            for task in self._registry.live_tasks_for(artifact.id)
            if task.task_id != exclude_task_id
        ]
        if live:
            raise SubmissionError(
                f"Recording {artifact.id} already has live task {live[0].task_id} "
                f"({live[0].stage_kind})",
                error_code=PipelineErrorCode.ALREADY_PROCESSING,
            )

        try:
            self._store.set_status(artifact.id, PipelineStatus.PROCESSING)
        except StoreError as e:
            logger.error("Failed to mark recording %s processing: %s", artifact.id, e)
            self._mark_error(artifact.id)
            raise SubmissionError(f"Could not record processing status: {e}") from e

        maybe_fail("SUBMIT_AFTER_STATUS_WRITE")

        spec = build_task_spec(stage_kind, artifact)
        try:
            task_id = self._registry.start(spec)
        except Exception as e:
            logger.error("Failed to start %s task for recording %s: %s", stage_kind, artifact.id, e)
            self._mark_error(artifact.id)
            raise SubmissionError(f"Failed to start {stage_kind} task: {e}") from e

        maybe_fail("SUBMIT_AFTER_TASK_START")

        logger.info("Submitted %s task %s for recording %s", stage_kind, task_id, artifact.id)
        return task_id
