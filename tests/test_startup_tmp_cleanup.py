"""Tests for startup temp file cleanup.

Interrupted recording copies and text exports leave *.tmp files behind;
the API lifespan removes them before serving requests.
"""

import tempfile
from pathlib import Path
from unittest import mock

import pytest
from fastapi.testclient import TestClient

from scribe_pipeline.utils.atomic_io import cleanup_orphan_temp_files
from services.recordings_api.main import app, override_pipeline_service


@pytest.fixture
def temp_recordings_dir():
    """Create a recordings directory with two recording subdirectories."""
    with tempfile.TemporaryDirectory() as tmpdir:
        recordings = Path(tmpdir) / "recordings"
        (recordings / "rec-001").mkdir(parents=True)
        (recordings / "rec-002").mkdir()
        yield recordings


class TestOrphanTempCleanup:
    """Tests for cleanup_orphan_temp_files function."""

    def test_removes_only_tmp_files(self, temp_recordings_dir):
        (temp_recordings_dir / "a.m4a.tmp").write_bytes(b"orphan")
        (temp_recordings_dir / "b.m4a.tmp").write_bytes(b"orphan")
        (temp_recordings_dir / "kept.m4a").write_bytes(b"real file")

        removed = cleanup_orphan_temp_files(temp_recordings_dir)

        assert removed == 2
        assert (temp_recordings_dir / "kept.m4a").exists()

    def test_non_recursive_skips_subdirectories(self, temp_recordings_dir):
        orphan = temp_recordings_dir / "rec-001" / "original.m4a.tmp"
        orphan.write_bytes(b"orphan")

        assert cleanup_orphan_temp_files(temp_recordings_dir) == 0
        assert orphan.exists()

    def test_recursive(self, temp_recordings_dir):
        (temp_recordings_dir / "rec-001" / "original.m4a.tmp").write_bytes(b"orphan")
        (temp_recordings_dir / "rec-002" / "original.wav.tmp").write_bytes(b"orphan")
        (temp_recordings_dir / "rec-002" / "original.wav").write_bytes(b"real")

        removed = cleanup_orphan_temp_files(temp_recordings_dir, recursive=True)

        assert removed == 2
        assert (temp_recordings_dir / "rec-002" / "original.wav").exists()

    def test_nonexistent_directory(self):
        assert cleanup_orphan_temp_files("/nonexistent/path/12345") == 0


class TestLifespanCleanup:
    """The API lifespan runs the cleanup over the recordings directory."""

    def test_startup_removes_orphans(self, temp_recordings_dir, service):
        orphan = temp_recordings_dir / "rec-001" / "original.m4a.tmp"
        orphan.write_bytes(b"orphan")

        override_pipeline_service(service)
        try:
            with mock.patch("scribe_pipeline.config.RECORDINGS_DIR", temp_recordings_dir):
                with TestClient(app) as test_client:
                    assert test_client.get("/health").status_code == 200
        finally:
            override_pipeline_service(None)

        assert not orphan.exists()

    def test_cleanup_failure_does_not_block_startup(self, service):
        override_pipeline_service(service)
        try:
            with mock.patch(
                "scribe_pipeline.utils.atomic_io.cleanup_orphan_temp_files",
                side_effect=PermissionError("denied"),
            ):
                with TestClient(app) as test_client:
                    assert test_client.get("/health").status_code == 200
        finally:
            override_pipeline_service(None)
