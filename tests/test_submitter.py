"""Tests for the Stage Submitter."""

import pytest

from scribe_pipeline.errors import PreconditionError, SubmissionError
from scribe_pipeline.stages import StageKind
from scribe_pipeline.store import PipelineStatus
from scribe_pipeline.submitter import StageSubmitter


@pytest.fixture
def submitter(store, registry):
    return StageSubmitter(store, registry)


class TestSubmitStage:
    """Tests for submit_stage ordering and failure handling."""

    def test_submit_sets_processing_and_starts_task(self, submitter, store, registry, queue,
                                                     make_artifact):
        artifact = make_artifact("A1")

        task_id = submitter.submit_stage(StageKind.TRANSCRIBE, artifact)

        assert store.get("A1").pipeline_status == PipelineStatus.PROCESSING
        assert queue.enqueued == [task_id]
        active = registry.list_active()[task_id]
        assert active.stage_kind == "transcribe"
        assert active.metadata.artifact_id == "A1"

    def test_accepts_wire_name(self, submitter, registry, make_artifact):
        artifact = make_artifact("A1", transcript="words")

        task_id = submitter.submit_stage("summarize", artifact)

        assert registry.list_active()[task_id].stage_kind == "summarize"

    def test_precondition_unmet_sets_error(self, submitter, store, queue, make_artifact):
        artifact = make_artifact("A1")

        with pytest.raises(PreconditionError):
            submitter.submit_stage(StageKind.SUMMARIZE, artifact)

        assert store.get("A1").pipeline_status == PipelineStatus.ERROR
        assert queue.enqueued == []

    def test_live_task_rejected_without_touching_status(self, submitter, store, queue,
                                                        make_artifact):
        artifact = make_artifact("A1")
        submitter.submit_stage(StageKind.TRANSCRIBE, artifact)

        with pytest.raises(SubmissionError) as exc_info:
            submitter.submit_stage(StageKind.TRANSCRIBE, store.get("A1"))

        assert exc_info.value.error_code == "ALREADY_PROCESSING"
        assert store.get("A1").pipeline_status == PipelineStatus.PROCESSING
        assert len(queue.enqueued) == 1

    def test_excluded_task_does_not_block(self, submitter, store, make_artifact):
        artifact = make_artifact("A1", transcript="words")
        first = submitter.submit_stage(StageKind.TRANSCRIBE, artifact)

        second = submitter.submit_stage(
            StageKind.SUMMARIZE, store.get("A1"), exclude_task_id=first
        )

        assert second != first

    def test_registry_failure_sets_error(self, submitter, store, queue, make_artifact):
        artifact = make_artifact("A1")
        queue.fail_with = RuntimeError("queue unavailable")

        with pytest.raises(SubmissionError) as exc_info:
            submitter.submit_stage(StageKind.TRANSCRIBE, artifact)

        assert exc_info.value.error_code == "SUBMISSION_FAILED"
        assert store.get("A1").pipeline_status == PipelineStatus.ERROR

    def test_failure_never_downgrades_complete(self, submitter, store, make_artifact):
        artifact = make_artifact("A1", pipeline_status=PipelineStatus.COMPLETE)

        with pytest.raises(PreconditionError):
            submitter.submit_stage(StageKind.TITLE_GENERATE, artifact)

        assert store.get("A1").pipeline_status == PipelineStatus.COMPLETE
