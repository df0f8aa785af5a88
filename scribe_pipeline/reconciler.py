"""Scribe Pipeline - Startup Reconciler.

Runs once at startup, before any task events are processed, and brings the
Record Store back in line with the tasks the Task Registry still holds.

For each task returned by list_active():
1. No artifact_id in its metadata  -> clear (unattributable)
2. Recording no longer exists      -> clear (orphan)
3. Recording complete or error     -> clear (zombie)
4. Recording pending               -> set processing (submit crashed after
                                      starting the task)
5. Recording processing            -> leave alone

The Reconciler never starts or cancels queued work. It only clears registry
bookkeeping and repairs pipeline_status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from scribe_pipeline.errors import StoreError
from scribe_pipeline.registry import TaskRegistryError
from scribe_pipeline.store import PipelineStatus

if TYPE_CHECKING:
    from scribe_pipeline.registry import TaskRegistry
    from scribe_pipeline.schemas import ActiveTask
    from scribe_pipeline.store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """Counts of what one reconciliation pass did."""

    cleared_unattributed: int = 0
    cleared_orphans: int = 0
    cleared_zombies: int = 0
    promoted_pending: int = 0
    unchanged: int = 0
    failures: int = 0

    @property
    def cleared(self) -> int:
        return self.cleared_unattributed + self.cleared_orphans + self.cleared_zombies

    def as_dict(self) -> dict[str, int]:
        return {
            "cleared_unattributed": self.cleared_unattributed,
            "cleared_orphans": self.cleared_orphans,
            "cleared_zombies": self.cleared_zombies,
            "promoted_pending": self.promoted_pending,
            "unchanged": self.unchanged,
            "failures": self.failures,
        }


class Reconciler:
    """Repairs Record Store state against the Task Registry's active tasks."""

    def __init__(self, store: RecordStore, registry: TaskRegistry):
        self._store = store
        self._registry = registry

    def run(self) -> ReconcileReport:
        report = ReconcileReport()

        try:
            active = self._registry.list_active()
        except Exception:
            logger.exception("Could not list active tasks; skipping reconciliation")
            return report

        logger.info("Reconciling %d active tasks", len(active))
        for task_id, task in active.items():
            try:
                self._reconcile_task(task_id, task, report)
            except (StoreError, TaskRegistryError):
                report.failures += 1
                logger.exception("Failed to reconcile task %s", task_id)

        logger.info("Reconciliation finished: %s", report.as_dict())
        return report

    def _reconcile_task(self, task_id: str, task: ActiveTask, report: ReconcileReport) -> None:
        artifact_id = task.metadata.artifact_id
        if not artifact_id:
            logger.warning("Clearing task %s: no artifact id in metadata", task_id)
            self._registry.clear(task_id)
            report.cleared_unattributed += 1
            return

        artifact = self._store.get(artifact_id)
        if artifact is None:
            logger.warning(
                "Clearing orphan task %s: recording %s no longer exists", task_id, artifact_id
            )
            self._registry.clear(task_id)
            report.cleared_orphans += 1
            return

        status = artifact.pipeline_status
        if status in (PipelineStatus.COMPLETE, PipelineStatus.ERROR):
            logger.warning(
                "Clearing zombie task %s: recording %s is already %s", task_id, artifact_id, status
            )
            self._registry.clear(task_id)
            report.cleared_zombies += 1
        elif status == PipelineStatus.PENDING:
            logger.info(
                "Recording %s has %s task %s but was pending; marking processing",
                artifact_id,
                task.stage_kind,
                task_id,
            )
            self._store.update(
                artifact_id,
                lambda current: current.with_status(PipelineStatus.PROCESSING)
                if current.pipeline_status == PipelineStatus.PENDING
                else current,
            )
            report.promoted_pending += 1
        else:
            report.unchanged += 1
