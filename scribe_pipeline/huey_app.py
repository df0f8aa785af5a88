"""Scribe Pipeline - Huey task queue configuration.

Huey setup with SQLite backend. The queue carries one kind of task: the
HTTP transfer of a pipeline stage, identified by its Task Registry task_id.

How to run:
1. Start the recordings API:
   uvicorn services.recordings_api.main:app --reload

2. Start the Huey consumer (runs transfers and handles their outcomes):
   huey_consumer.py scribe_pipeline.huey_app.huey

The consumer process owns the pipeline state machine: on startup it runs the
Reconciler and attaches the Completion Handler, so every transfer outcome
recorded by a worker is applied in the same process.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from huey import SqliteHuey

from scribe_pipeline.config import HUEY_DB_PATH, QUEUE_DIR

if TYPE_CHECKING:
    from scribe_pipeline.pipeline import PipelineService

logger = logging.getLogger(__name__)


def _ensure_queue_dir() -> None:
    """Ensure the queue directory exists."""
    Path(QUEUE_DIR).mkdir(parents=True, exist_ok=True)


# Ensure queue directory exists before creating Huey instance
_ensure_queue_dir()

# SQLite-backed Huey instance (offline-friendly)
huey = SqliteHuey(
    name="scribe_pipeline",
    filename=str(HUEY_DB_PATH),
    immediate=False,  # Tasks queued for consumer processing
)

# --- Consumer-side pipeline service ---

_service: PipelineService | None = None
_service_lock = threading.Lock()


def get_pipeline_service() -> PipelineService:
    """Return the process-wide PipelineService, building it on first use."""
    global _service
    with _service_lock:
        if _service is None:
            # Import here to avoid circular imports
            from scribe_pipeline.db import init_db
            from scribe_pipeline.pipeline import PipelineService

            _, SessionFactory = init_db()
            _service = PipelineService.from_session_factory(SessionFactory)
        return _service


def set_pipeline_service(service: PipelineService | None) -> None:
    """Replace the process-wide PipelineService (for testing)."""
    global _service
    with _service_lock:
        _service = service


@huey.on_startup()
def start_pipeline_service() -> None:
    """Reconcile and attach the Completion Handler when a consumer worker starts.

    Huey calls startup hooks once per worker; start() is a no-op after the
    first call.
    """
    report = get_pipeline_service().start()
    if report is not None:
        logger.info("Consumer startup reconciliation: %s", report.as_dict())


@huey.task()
def transfer_task(task_id: str) -> dict:
    """Huey task performing the HTTP transfer of one stage task.

    Args:
        task_id: Task Registry id of the stage task.

    Returns:
        Dict with the transfer result (for logging/debugging).
    """
    # Import here to avoid circular imports
    from services.transfer_worker.run import run_transfer

    service = get_pipeline_service()
    if not service.is_running:
        service.start()

    logger.info("Transfer task started: task_id=%s", task_id)
    result = run_transfer(service.registry, task_id)
    logger.info("Transfer task finished: task_id=%s, result=%s", task_id, result)
    return result


def enqueue_transfer(task_id: str) -> str:
    """Enqueue the transfer for task_id.

    Non-blocking: returns immediately even if the Huey consumer is not
    running. The message is persisted in SQLite and processed when the
    consumer starts.

    Returns:
        The huey message id (used to revoke the transfer on cancel).
    """
    logger.info("Enqueueing transfer for task_id=%s", task_id)
    result = transfer_task(task_id)
    return result.id


def revoke_transfer(message_id: str) -> None:
    """Revoke a queued transfer so the consumer skips it."""
    logger.info("Revoking transfer message %s", message_id)
    huey.revoke_by_id(message_id)
