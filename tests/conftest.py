"""Shared pytest fixtures for Scribe Pipeline tests.

This module contains common fixtures used across multiple test files,
reducing duplication and improving test maintainability.
"""

import os
import tempfile

# Keep the default data directory (queue db, recordings) out of the repo.
# Must run before scribe_pipeline.config is imported.
os.environ.setdefault("SCRIBE_DATA_DIR", tempfile.mkdtemp(prefix="scribe-test-data-"))

from pathlib import Path  # noqa: E402
from unittest import mock  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from scribe_pipeline.db import init_db  # noqa: E402
from scribe_pipeline.pipeline import PipelineService  # noqa: E402
from scribe_pipeline.store import Artifact, PipelineStatus  # noqa: E402
from services.recordings_api.main import app, override_pipeline_service  # noqa: E402


class FakeQueue:
    """Stands in for the huey enqueue/revoke seam of the Task Registry."""

    def __init__(self):
        self.enqueued: list[str] = []
        self.revoked: list[str] = []
        self.fail_with: Exception | None = None

    def enqueue(self, task_id: str) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.enqueued.append(task_id)
        return f"msg-{task_id}"

    def revoke(self, message_id: str) -> None:
        self.revoked.append(message_id)

    def drain(self) -> list[str]:
        """Return and forget the task ids enqueued so far."""
        task_ids, self.enqueued = self.enqueued, []
        return task_ids


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Creates an isolated SQLite database in a temporary directory.
    The database is cleaned up after the test completes.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        yield db_path, engine, SessionFactory
        engine.dispose()


@pytest.fixture
def queue():
    """Fake huey queue recording enqueued task ids."""
    return FakeQueue()


@pytest.fixture
def service(temp_db, queue):
    """PipelineService over the temp database and the fake queue (not started)."""
    _, _, SessionFactory = temp_db
    return PipelineService.from_session_factory(
        SessionFactory, enqueue=queue.enqueue, revoke=queue.revoke
    )


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def registry(service):
    return service.registry


@pytest.fixture
def recordings_dir():
    """Point canonical recording paths at a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir)
        with mock.patch("scribe_pipeline.utils.paths.RECORDINGS_DIR", path):
            yield path


@pytest.fixture
def audio_file():
    """Create a small fake audio file.

    Yields:
        Path: Path to the temporary .m4a file.
    """
    with tempfile.NamedTemporaryFile(suffix=".m4a", delete=False) as f:
        f.write(b"fake m4a content " * 64)

    yield Path(f.name)

    try:
        Path(f.name).unlink()
    except OSError:
        pass


@pytest.fixture
def make_artifact(store, audio_file):
    """Factory inserting a recording into the store.

    Usage: make_artifact("A1", transcript="...", pipeline_status="processing")
    """

    def _make(artifact_id: str = "A1", **fields) -> Artifact:
        fields.setdefault("title", "Lesson 2024-03-01")
        fields.setdefault("source_file_path", str(audio_file))
        fields.setdefault("pipeline_status", PipelineStatus.PENDING)
        artifact = Artifact(id=artifact_id, **fields)
        store.upsert(artifact)
        return artifact

    return _make


@pytest.fixture
def client(service, recordings_dir):
    """Create a FastAPI test client backed by the test pipeline service.

    Yields:
        tuple: (test_client, service)
    """
    override_pipeline_service(service)
    with TestClient(app) as test_client:
        yield test_client, service
    override_pipeline_service(None)
