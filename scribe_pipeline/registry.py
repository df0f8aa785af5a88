"""Scribe Pipeline - Task Registry.

Durable job runner for pipeline stage tasks:
- start(spec) persists a transfer_tasks row, then enqueues the transfer on
  the huey queue (scribe_pipeline.huey_app).
- The huey consumer runs the HTTP transfer out of process and reports back
  through record_outcome(), which stores the terminal outcome exactly once
  and delivers one event to the in-process subscribers.
- A row stays until clear(). Outcomes recorded while nobody is subscribed
  (or delivered to a process that crashed before clearing) are delivered
  again by redeliver_outcomes(), so delivery is at-least-once across
  restarts. Subscribers must be idempotent per task_id.

Task status lifecycle:
    pending -> running -> succeeded | failed
"Live" means pending or running; a terminal row is only waiting for its
event to be handled and cleared.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from scribe_pipeline.models import TransferTask, utc_now
from scribe_pipeline.schemas import (
    ActiveTask,
    TaskCompleted,
    TaskFailed,
    TaskMetadata,
    TaskSpec,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

TASK_PENDING = "pending"
TASK_RUNNING = "running"
TASK_SUCCEEDED = "succeeded"
TASK_FAILED = "failed"

LIVE_TASK_STATUSES = (TASK_PENDING, TASK_RUNNING)
TERMINAL_TASK_STATUSES = (TASK_SUCCEEDED, TASK_FAILED)

CompleteListener = Callable[[TaskCompleted], None]
ErrorListener = Callable[[TaskFailed], None]


class TaskRegistryError(Exception):
    """The registry could not persist or enqueue a task."""


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it to unsubscribe()."""

    on_complete: CompleteListener
    on_error: ErrorListener


def _default_enqueue(task_id: str) -> str | None:
    # Import here to avoid circular imports
    from scribe_pipeline.huey_app import enqueue_transfer

    return enqueue_transfer(task_id)


def _default_revoke(message_id: str) -> None:
    from scribe_pipeline.huey_app import revoke_transfer

    revoke_transfer(message_id)


def _metadata_of(row: TransferTask) -> TaskMetadata:
    try:
        raw = json.loads(row.metadata_json) if row.metadata_json else {}
    except (json.JSONDecodeError, TypeError):
        raw = {}
    if not isinstance(raw, dict):
        raw = {}
    return TaskMetadata.model_validate(raw)


class TaskRegistry:
    """SQL-backed Task Registry executing tasks on the huey queue.

    Args:
        session_factory: Session factory for the database holding
            transfer_tasks.
        enqueue: Callable scheduling the transfer for a task_id and returning
            the queue message id. Defaults to huey_app.enqueue_transfer.
        revoke: Callable revoking a queued message id on cancel.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        enqueue: Callable[[str], str | None] | None = None,
        revoke: Callable[[str], None] | None = None,
    ):
        self._session_factory = session_factory
        self._enqueue = enqueue or _default_enqueue
        self._revoke = revoke or _default_revoke
        self._subscriptions: list[Subscription] = []
        self._subscriptions_lock = threading.Lock()

    # --- Subscription ---

    def subscribe(self, on_complete: CompleteListener, on_error: ErrorListener) -> Subscription:
        subscription = Subscription(on_complete=on_complete, on_error=on_error)
        with self._subscriptions_lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._subscriptions_lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def has_subscribers(self) -> bool:
        with self._subscriptions_lock:
            return bool(self._subscriptions)

    # --- Lifecycle ---

    @staticmethod
    def _find(session: Session, task_id: str) -> TransferTask | None:
        stmt = select(TransferTask).where(TransferTask.task_id == task_id)
        return session.execute(stmt).scalar_one_or_none()

    def start(self, spec: TaskSpec) -> str:
        """Persist a task and hand it to the queue.

        Returns:
            The new task_id.

        Raises:
            TaskRegistryError: If the task could not be persisted or enqueued.
                Nothing is left behind in that case.
        """
        task_id = uuid.uuid4().hex
        session = self._session_factory()
        try:
            row = TransferTask(
                task_id=task_id,
                stage_kind=spec.stage_kind,
                artifact_id=spec.metadata.artifact_id,
                metadata_json=spec.metadata.model_dump_json(),
                request_json=spec.model_dump_json(),
                status=TASK_PENDING,
            )
            session.add(row)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            session.close()
            raise TaskRegistryError(f"Failed to persist task: {e}") from e

        try:
            message_id = self._enqueue(task_id)
        except Exception as e:
            logger.error("Failed to enqueue task %s: %s", task_id, e)
            try:
                stale = self._find(session, task_id)
                if stale is not None:
                    session.delete(stale)
                    session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.warning("Could not remove unqueued task %s", task_id, exc_info=True)
            finally:
                session.close()
            raise TaskRegistryError(f"Failed to enqueue task: {e}") from e

        try:
            if message_id:
                row = self._find(session, task_id)
                if row is not None:
                    row.queue_message_id = str(message_id)
                    session.commit()
        except SQLAlchemyError:
            # Only cancel() needs the message id; the task itself is queued.
            session.rollback()
            logger.warning("Could not store queue message id for task %s", task_id, exc_info=True)
        finally:
            session.close()

        logger.info(
            "Started task %s: stage=%s, artifact_id=%s",
            task_id,
            spec.stage_kind,
            spec.metadata.artifact_id,
        )
        return task_id

    def list_active(self) -> dict[str, ActiveTask]:
        """Return every task that has not been cleared, keyed by task_id."""
        session = self._session_factory()
        try:
            stmt = select(TransferTask).order_by(TransferTask.created_at)
            rows = session.execute(stmt).scalars().all()
            return {
                row.task_id: ActiveTask(
                    task_id=row.task_id,
                    stage_kind=row.stage_kind,
                    metadata=_metadata_of(row),
                    status=row.status,
                )
                for row in rows
            }
        finally:
            session.close()

    def live_tasks_for(self, artifact_id: str) -> list[ActiveTask]:
        """Return the pending/running tasks referencing artifact_id."""
        session = self._session_factory()
        try:
            stmt = select(TransferTask).where(
                TransferTask.artifact_id == artifact_id,
                TransferTask.status.in_(LIVE_TASK_STATUSES),
            )
            return [
                ActiveTask(
                    task_id=row.task_id,
                    stage_kind=row.stage_kind,
                    metadata=_metadata_of(row),
                    status=row.status,
                )
                for row in session.execute(stmt).scalars().all()
            ]
        finally:
            session.close()

    def active_task_for(self, artifact_id: str) -> ActiveTask | None:
        """Return the live task for artifact_id, if any."""
        live = self.live_tasks_for(artifact_id)
        return live[0] if live else None

    def tasks_for(self, artifact_id: str) -> list[str]:
        """Return all uncleared task ids referencing artifact_id."""
        session = self._session_factory()
        try:
            stmt = select(TransferTask.task_id).where(TransferTask.artifact_id == artifact_id)
            return list(session.execute(stmt).scalars().all())
        finally:
            session.close()

    def clear(self, task_id: str) -> bool:
        """Remove a task from the registry. Returns False if it was unknown."""
        session = self._session_factory()
        try:
            row = self._find(session, task_id)
            if row is None:
                logger.debug("Task %s not found for clearing", task_id)
                return False
            session.delete(row)
            session.commit()
            logger.info("Cleared task %s", task_id)
            return True
        except SQLAlchemyError as e:
            session.rollback()
            raise TaskRegistryError(f"Failed to clear task {task_id}: {e}") from e
        finally:
            session.close()

    def cancel(self, task_id: str) -> bool:
        """Revoke a queued transfer (best-effort) and clear the task."""
        session = self._session_factory()
        try:
            row = self._find(session, task_id)
            message_id = row.queue_message_id if row is not None else None
            status = row.status if row is not None else None
        finally:
            session.close()

        if message_id and status in LIVE_TASK_STATUSES:
            try:
                self._revoke(message_id)
            except Exception:
                logger.warning(
                    "Could not revoke queued transfer for task %s", task_id, exc_info=True
                )
        return self.clear(task_id)

    # --- Execution side (called from the huey consumer) ---

    def claim(self, task_id: str) -> TaskSpec | None:
        """Mark a pending task running and return its request.

        Returns None if the task was cleared/cancelled or already finished,
        in which case the transfer must not run.
        """
        session = self._session_factory()
        try:
            row = self._find(session, task_id)
            if row is None or row.status in TERMINAL_TASK_STATUSES:
                return None
            row.status = TASK_RUNNING
            session.commit()
            return TaskSpec.model_validate_json(row.request_json)
        finally:
            session.close()

    def record_outcome(
        self,
        task_id: str,
        *,
        ok: bool,
        response_body: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Persist the terminal outcome of a task and deliver its event.

        The first outcome wins; later outcomes for the same task are ignored.

        Returns:
            True if this call recorded the outcome.
        """
        session = self._session_factory()
        try:
            row = self._find(session, task_id)
            if row is None:
                logger.warning("Outcome for unknown or cleared task %s dropped", task_id)
                return False
            if row.status in TERMINAL_TASK_STATUSES:
                logger.warning("Task %s already has outcome %s", task_id, row.status)
                return False
            row.status = TASK_SUCCEEDED if ok else TASK_FAILED
            row.response_body = response_body
            row.error_message = None if ok else (error_message or "Transfer failed")
            row.finished_at = utc_now()
            session.commit()
        finally:
            session.close()

        self.deliver(task_id)
        return True

    # --- Event delivery ---

    def _event_for(self, task_id: str) -> TaskCompleted | TaskFailed | None:
        session = self._session_factory()
        try:
            row = self._find(session, task_id)
            if row is None or row.status not in TERMINAL_TASK_STATUSES:
                return None
            artifact_id = _metadata_of(row).artifact_id
            if row.status == TASK_SUCCEEDED:
                return TaskCompleted(
                    task_id=row.task_id,
                    stage_kind=row.stage_kind,
                    artifact_id=artifact_id,
                    raw_response=row.response_body or "",
                )
            return TaskFailed(
                task_id=row.task_id,
                stage_kind=row.stage_kind,
                artifact_id=artifact_id,
                error_message=row.error_message or "Transfer failed",
            )
        finally:
            session.close()

    def deliver(self, task_id: str) -> bool:
        """Deliver the stored terminal event for task_id to all subscribers.

        Returns:
            True if at least one subscriber received the event.
        """
        with self._subscriptions_lock:
            subscriptions = list(self._subscriptions)
        if not subscriptions:
            logger.debug("No subscribers; outcome of task %s kept for redelivery", task_id)
            return False

        event = self._event_for(task_id)
        if event is None:
            return False

        for subscription in subscriptions:
            try:
                if isinstance(event, TaskCompleted):
                    subscription.on_complete(event)
                else:
                    subscription.on_error(event)
            except Exception:
                logger.exception("Subscriber failed handling event for task %s", task_id)
        return True

    def redeliver_outcomes(self) -> int:
        """Deliver every stored terminal outcome that has not been cleared.

        Returns:
            Number of events delivered.
        """
        session = self._session_factory()
        try:
            stmt = (
                select(TransferTask.task_id)
                .where(TransferTask.status.in_(TERMINAL_TASK_STATUSES))
                .order_by(TransferTask.finished_at)
            )
            task_ids = list(session.execute(stmt).scalars().all())
        finally:
            session.close()

        delivered = 0
        for task_id in task_ids:
            if self.deliver(task_id):
                delivered += 1
        if delivered:
            logger.info("Redelivered %d stored task outcomes", delivered)
        return delivered
