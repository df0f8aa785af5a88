"""Tests for the startup Reconciler."""

from unittest import mock

from scribe_pipeline.errors import StoreError
from scribe_pipeline.reconciler import Reconciler, ReconcileReport
from scribe_pipeline.schemas import TaskMetadata, TaskSpec
from scribe_pipeline.stages import StageKind, build_task_spec
from scribe_pipeline.store import PipelineStatus


def _unattributed_spec() -> TaskSpec:
    return TaskSpec(
        endpoint_url="https://example.test/v1/responses",
        body="{}",
        stage_kind="summarize",
        metadata=TaskMetadata(artifact_id=None),
    )


def _reconcile(store, registry) -> ReconcileReport:
    return Reconciler(store, registry).run()


class TestReconcileRules:
    """One test per reconciliation rule."""

    def test_pending_with_live_task_promoted(self, store, registry, make_artifact):
        artifact = make_artifact("A2", pipeline_status=PipelineStatus.PENDING)
        task_id = registry.start(build_task_spec(StageKind.TRANSCRIBE, artifact))

        report = _reconcile(store, registry)

        assert report.promoted_pending == 1
        assert store.get("A2").pipeline_status == PipelineStatus.PROCESSING
        assert task_id in registry.list_active()

    def test_orphan_cleared_without_store_write(self, store, registry, make_artifact):
        artifact = make_artifact("A3")
        task_id = registry.start(build_task_spec(StageKind.TRANSCRIBE, artifact))
        store.delete("A3")

        with mock.patch.object(store, "update") as update, \
                mock.patch.object(store, "upsert") as upsert:
            report = _reconcile(store, registry)

        assert report.cleared_orphans == 1
        assert task_id not in registry.list_active()
        update.assert_not_called()
        upsert.assert_not_called()
        assert store.get("A3") is None

    def test_unattributed_task_cleared(self, store, registry):
        task_id = registry.start(_unattributed_spec())

        report = _reconcile(store, registry)

        assert report.cleared_unattributed == 1
        assert task_id not in registry.list_active()

    def test_zombie_for_complete_recording_cleared(self, store, registry, make_artifact):
        artifact = make_artifact(
            "A1", transcript="t", summary="s", pipeline_status=PipelineStatus.COMPLETE
        )
        registry.start(build_task_spec(StageKind.TITLE_GENERATE, artifact))

        report = _reconcile(store, registry)

        assert report.cleared_zombies == 1
        assert registry.list_active() == {}
        assert store.get("A1").pipeline_status == PipelineStatus.COMPLETE

    def test_zombie_for_errored_recording_cleared(self, store, registry, make_artifact):
        artifact = make_artifact("A1", pipeline_status=PipelineStatus.ERROR)
        registry.start(build_task_spec(StageKind.TRANSCRIBE, artifact))

        report = _reconcile(store, registry)

        assert report.cleared_zombies == 1
        assert store.get("A1").pipeline_status == PipelineStatus.ERROR

    def test_processing_left_alone(self, store, registry, make_artifact):
        artifact = make_artifact("A1", pipeline_status=PipelineStatus.PROCESSING)
        task_id = registry.start(build_task_spec(StageKind.TRANSCRIBE, artifact))

        report = _reconcile(store, registry)

        assert report.unchanged == 1
        assert report.cleared == 0
        assert task_id in registry.list_active()
        assert store.get("A1").pipeline_status == PipelineStatus.PROCESSING


class TestReconcileProperties:
    """Whole-pass behavior."""

    def test_every_remaining_task_points_at_processing_recording(
        self, store, registry, make_artifact
    ):
        pending = make_artifact("A1", pipeline_status=PipelineStatus.PENDING)
        done = make_artifact(
            "A2", transcript="t", summary="s", pipeline_status=PipelineStatus.COMPLETE
        )
        gone = make_artifact("A3")
        registry.start(build_task_spec(StageKind.TRANSCRIBE, pending))
        registry.start(build_task_spec(StageKind.TITLE_GENERATE, done))
        registry.start(build_task_spec(StageKind.TRANSCRIBE, gone))
        registry.start(_unattributed_spec())
        store.delete("A3")

        report = _reconcile(store, registry)

        assert report.cleared == 3
        for task in registry.list_active().values():
            artifact = store.get(task.metadata.artifact_id)
            assert artifact is not None
            assert artifact.pipeline_status == PipelineStatus.PROCESSING

    def test_second_pass_changes_nothing(self, store, registry, make_artifact):
        artifact = make_artifact("A1", pipeline_status=PipelineStatus.PENDING)
        registry.start(build_task_spec(StageKind.TRANSCRIBE, artifact))
        _reconcile(store, registry)

        report = _reconcile(store, registry)

        assert report.cleared == 0
        assert report.promoted_pending == 0
        assert report.unchanged == 1

    def test_no_tasks(self, store, registry):
        report = _reconcile(store, registry)

        assert report.as_dict() == ReconcileReport().as_dict()

    def test_list_failure_returns_empty_report(self, store, registry):
        with mock.patch.object(registry, "list_active", side_effect=RuntimeError("db gone")):
            report = _reconcile(store, registry)

        assert report.cleared == 0
        assert report.failures == 0

    def test_per_task_failure_does_not_stop_pass(self, store, registry, make_artifact):
        first = make_artifact("A1", pipeline_status=PipelineStatus.PENDING)
        second = make_artifact("A2", pipeline_status=PipelineStatus.PENDING)
        registry.start(build_task_spec(StageKind.TRANSCRIBE, first))
        registry.start(build_task_spec(StageKind.TRANSCRIBE, second))
        real_update = store.update

        def flaky_update(artifact_id, mutate):
            if artifact_id == "A1":
                raise StoreError("disk full")
            return real_update(artifact_id, mutate)

        with mock.patch.object(store, "update", side_effect=flaky_update):
            report = _reconcile(store, registry)

        assert report.failures == 1
        assert report.promoted_pending == 1
        assert store.get("A2").pipeline_status == PipelineStatus.PROCESSING


class TestServiceStart:
    """Reconciliation runs before the handler is attached."""

    def test_start_reconciles_and_subscribes(self, service, store, registry, make_artifact):
        artifact = make_artifact("A2", pipeline_status=PipelineStatus.PENDING)
        registry.start(build_task_spec(StageKind.TRANSCRIBE, artifact))

        report = service.start()
        try:
            assert report.promoted_pending == 1
            assert service.is_running
            assert registry.has_subscribers
            assert service.start() is None
        finally:
            service.stop()

        assert not service.is_running
        assert not registry.has_subscribers
