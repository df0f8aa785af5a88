"""Scribe Pipeline - Completion Handler.

Subscribed to Task Registry events. Drives the per-recording state machine:

    pending -> processing(transcribe) -> processing(summarize)
            -> processing(titleGenerate) -> complete
    (any stage) -> error

On a success event:
1. Re-fetch the recording (never trust a cached copy).
2. Parse the stage response.
3. Apply the stage's mutation, then submit the next stage or finish.
4. Clear the task.

Failure Semantics:
------------------
- ParseError / StoreError / SubmissionError while handling a success event
  collapse to pipeline_status = error, exactly like a failure event. A
  recording is never left in processing because of a local bug.
- titleGenerate only improves the title: an unparseable or rejected title
  (ValidationError) keeps the old title and still completes, and so does a
  failure to submit the title task.
- A recording already complete is never moved back to error.
- A failed status update is logged, not retried.

Events are delivered at least once. Each handled task_id is recorded in
handled_task_events before the next stage is submitted; a repeated event
for a handled task only clears the task again. Handling of one recording's
events is serialized under the Record Store's per-recording lock, so two
deliveries of the same task cannot both pass the handled check.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from scribe_pipeline.errors import (
    ArtifactNotFoundError,
    ParseError,
    PipelineError,
    StoreError,
    SubmissionError,
    TransferError,
    ValidationError,
)
from scribe_pipeline.models import HandledTaskEvent
from scribe_pipeline.parsing import parse_stage_response, validate_title
from scribe_pipeline.registry import TaskRegistryError
from scribe_pipeline.stages import (
    OPTIONAL_STAGES,
    StageKind,
    is_eligible,
    next_stage,
    parse_stage_kind,
)
from scribe_pipeline.store import Artifact, PipelineStatus
from scribe_pipeline.utils.failpoints import maybe_fail

if TYPE_CHECKING:
    from sqlalchemy.orm import sessionmaker

    from scribe_pipeline.registry import TaskRegistry
    from scribe_pipeline.schemas import TaskCompleted, TaskFailed
    from scribe_pipeline.store import RecordStore
    from scribe_pipeline.submitter import StageSubmitter

logger = logging.getLogger(__name__)

# Outcomes returned by the handlers (for logging and tests)
OUTCOME_ADVANCED = "advanced"
OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"


class HandledTaskLog:
    """Durable set of task_ids whose terminal event was applied."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def was_handled(self, task_id: str) -> bool:
        session = self._session_factory()
        try:
            stmt = select(HandledTaskEvent).where(HandledTaskEvent.task_id == task_id)
            return session.execute(stmt).scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read handled marker for task {task_id}: {e}") from e
        finally:
            session.close()

    def mark_handled(
        self, task_id: str, artifact_id: str | None, stage_kind: str, outcome: str
    ) -> None:
        session = self._session_factory()
        try:
            session.add(
                HandledTaskEvent(
                    task_id=task_id,
                    artifact_id=artifact_id,
                    stage_kind=stage_kind,
                    outcome=outcome,
                )
            )
            session.commit()
        except IntegrityError:
            # Already marked by an earlier delivery
            session.rollback()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Failed to record handled marker for task {task_id}: {e}") from e
        finally:
            session.close()


class CompletionHandler:
    """Applies task outcomes to recordings and advances the pipeline."""

    def __init__(
        self,
        store: RecordStore,
        registry: TaskRegistry,
        submitter: StageSubmitter,
        handled_log: HandledTaskLog,
    ):
        self._store = store
        self._registry = registry
        self._submitter = submitter
        self._handled = handled_log

    # --- Event entry points ---

    def on_complete(self, event: TaskCompleted) -> str:
        """Handle a success event. Returns one of the OUTCOME_* labels."""
        with self._event_lock(event):
            return self._handle_complete(event)

    def on_error(self, event: TaskFailed) -> str:
        """Handle a failure event. Returns one of the OUTCOME_* labels."""
        with self._event_lock(event):
            return self._handle_error(event)

    def _event_lock(self, event: TaskCompleted | TaskFailed) -> threading.RLock:
        # The handled check, the mutation and the next submission form one
        # step per recording; concurrent deliveries of the same task wait here.
        return self._store.lock_for(event.artifact_id or event.task_id)

    def _handle_complete(self, event: TaskCompleted) -> str:
        if self._already_handled(event.task_id):
            logger.info("Task %s already handled; clearing duplicate delivery", event.task_id)
            self._clear(event.task_id)
            return OUTCOME_DUPLICATE

        try:
            outcome = self._apply_completion(event)
        except PipelineError as e:
            logger.error(
                "Handling %s completion for recording %s failed: %s",
                event.stage_kind,
                event.artifact_id,
                e,
            )
            self._mark_failed(event.task_id, event.artifact_id, event.stage_kind)
            outcome = OUTCOME_FAILED
        except Exception:
            logger.exception(
                "Unexpected error handling %s completion for recording %s",
                event.stage_kind,
                event.artifact_id,
            )
            self._mark_failed(event.task_id, event.artifact_id, event.stage_kind)
            outcome = OUTCOME_FAILED

        maybe_fail("COMPLETION_BEFORE_CLEAR")
        self._clear(event.task_id)
        return outcome

    def _handle_error(self, event: TaskFailed) -> str:
        if self._already_handled(event.task_id):
            logger.info("Task %s already handled; clearing duplicate delivery", event.task_id)
            self._clear(event.task_id)
            return OUTCOME_DUPLICATE

        error = TransferError(event.error_message)
        logger.error(
            "%s task %s for recording %s failed: %s",
            event.stage_kind,
            event.task_id,
            event.artifact_id,
            error,
        )
        self._mark_failed(event.task_id, event.artifact_id, event.stage_kind)
        self._clear(event.task_id)
        return OUTCOME_FAILED

    # --- Stage application ---

    def _apply_completion(self, event: TaskCompleted) -> str:
        try:
            stage_kind = parse_stage_kind(event.stage_kind)
        except ValueError as e:
            raise ParseError(event.stage_kind, "unknown stage kind") from e

        if not event.artifact_id:
            raise ParseError(stage_kind, "event carries no artifact id")

        artifact = self._store.get(event.artifact_id)
        if artifact is None:
            raise ArtifactNotFoundError(event.artifact_id)

        if artifact.pipeline_status == PipelineStatus.COMPLETE:
            logger.warning(
                "Recording %s already complete; ignoring %s result of task %s",
                artifact.id,
                stage_kind,
                event.task_id,
            )
            self._mark_handled(event.task_id, artifact.id, stage_kind, OUTCOME_IGNORED)
            return OUTCOME_IGNORED

        if stage_kind == StageKind.TRANSCRIBE:
            return self._apply_transcript(event, artifact)
        if stage_kind == StageKind.SUMMARIZE:
            return self._apply_summary(event, artifact)
        return self._apply_title(event, artifact)

    def _apply_transcript(self, event: TaskCompleted, artifact: Artifact) -> str:
        transcript = parse_stage_response(StageKind.TRANSCRIBE, event.raw_response).unwrap()
        updated = self._store.update(
            artifact.id,
            lambda current: replace(
                current, transcript=transcript, pipeline_status=PipelineStatus.PROCESSING
            ),
        )
        logger.info(
            "Transcription complete for recording %s (%d chars), starting summarization",
            artifact.id,
            len(transcript),
        )
        self._mark_handled(event.task_id, artifact.id, StageKind.TRANSCRIBE, OUTCOME_ADVANCED)
        self._submitter.submit_stage(StageKind.SUMMARIZE, updated, exclude_task_id=event.task_id)
        return OUTCOME_ADVANCED

    def _apply_summary(self, event: TaskCompleted, artifact: Artifact) -> str:
        if artifact.transcript is None:
            raise ParseError(StageKind.SUMMARIZE, "recording has no transcript")

        summary = parse_stage_response(StageKind.SUMMARIZE, event.raw_response).unwrap()
        updated = self._store.update(
            artifact.id,
            lambda current: replace(
                current, summary=summary, pipeline_status=PipelineStatus.PROCESSING
            ),
        )
        logger.info("Summarization complete for recording %s", artifact.id)
        self._mark_handled(event.task_id, artifact.id, StageKind.SUMMARIZE, OUTCOME_ADVANCED)

        title_stage = next_stage(StageKind.SUMMARIZE)
        if title_stage is None or not is_eligible(title_stage, updated):
            self._store.set_status(artifact.id, PipelineStatus.COMPLETE)
            return OUTCOME_COMPLETED

        try:
            self._submitter.submit_stage(title_stage, updated, exclude_task_id=event.task_id)
        except SubmissionError as e:
            if title_stage not in OPTIONAL_STAGES:
                raise
            logger.warning(
                "Could not start title generation for recording %s, completing: %s",
                artifact.id,
                e,
            )
            self._store.set_status(artifact.id, PipelineStatus.COMPLETE)
            return OUTCOME_COMPLETED
        return OUTCOME_ADVANCED

    def _apply_title(self, event: TaskCompleted, artifact: Artifact) -> str:
        new_title: str | None = None

        if artifact.title_user_locked:
            logger.info("Title of recording %s set by user; keeping it", artifact.id)
        else:
            try:
                candidate = parse_stage_response(
                    StageKind.TITLE_GENERATE, event.raw_response
                ).unwrap()
                new_title = validate_title(candidate)
            except (ParseError, ValidationError) as e:
                logger.warning(
                    "Generated title for recording %s unusable, keeping original: %s",
                    artifact.id,
                    e,
                )

        def finish(current: Artifact) -> Artifact:
            # Lock is re-checked here: the user may have edited the title
            # while the task was running.
            if new_title is not None and not current.title_user_locked:
                current = replace(current, title=new_title)
            return current.with_status(PipelineStatus.COMPLETE)

        self._store.update(artifact.id, finish)
        self._mark_handled(
            event.task_id, artifact.id, StageKind.TITLE_GENERATE, OUTCOME_COMPLETED
        )
        logger.info("Pipeline complete for recording %s", artifact.id)
        return OUTCOME_COMPLETED

    # --- Helpers ---

    def _already_handled(self, task_id: str) -> bool:
        try:
            return self._handled.was_handled(task_id)
        except StoreError:
            logger.exception("Could not check handled marker for task %s", task_id)
            return False

    def _mark_handled(
        self, task_id: str, artifact_id: str | None, stage_kind: str, outcome: str
    ) -> None:
        self._handled.mark_handled(task_id, artifact_id, str(stage_kind), outcome)

    def _mark_failed(self, task_id: str, artifact_id: str | None, stage_kind: str) -> None:
        """Set error unless the recording is already complete; never raises."""
        if artifact_id:
            try:
                self._store.update(
                    artifact_id,
                    lambda current: current
                    if current.is_terminal
                    else current.with_status(PipelineStatus.ERROR),
                )
            except ArtifactNotFoundError:
                logger.warning("Recording %s not found while recording failure", artifact_id)
            except StoreError:
                logger.exception("Failed to set error status for recording %s", artifact_id)

        try:
            self._mark_handled(task_id, artifact_id, stage_kind, OUTCOME_FAILED)
        except StoreError:
            logger.exception("Failed to record handled marker for task %s", task_id)

    def _clear(self, task_id: str) -> None:
        try:
            self._registry.clear(task_id)
        except TaskRegistryError:
            logger.exception("Failed to clear task %s", task_id)
