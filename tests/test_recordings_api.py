"""Tests for the Recordings API endpoints."""

from scribe_pipeline.store import PipelineStatus


class TestHealthCheck:
    """Tests for health check endpoint."""

    def test_health_check(self, client):
        test_client, _ = client
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestRegisterRecording:
    """Tests for POST /v1/recordings."""

    def test_register_success(self, client, audio_file, queue):
        """Should copy the file, create the record and submit transcription."""
        test_client, service = client

        response = test_client.post(
            "/v1/recordings",
            json={
                "source_path": str(audio_file),
                "title": "Lesson 2024-03-01",
                "recorded_at": "2024-03-01T17:30:00Z",
                "duration_sec": 1800,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Lesson 2024-03-01"
        assert data["pipeline_status"] == "processing"
        assert data["transcript"] is None
        assert data["duration_sec"] == 1800
        assert len(queue.enqueued) == 1
        assert service.store.get(data["id"]) is not None

    def test_register_without_start(self, client, audio_file, queue):
        test_client, _ = client

        response = test_client.post(
            "/v1/recordings",
            json={"source_path": str(audio_file), "start_pipeline": False},
        )

        assert response.status_code == 200
        assert response.json()["pipeline_status"] == "pending"
        assert queue.enqueued == []

    def test_register_missing_file(self, client, tmp_path):
        test_client, _ = client

        response = test_client.post(
            "/v1/recordings", json={"source_path": str(tmp_path / "gone.m4a")}
        )

        assert response.status_code == 422
        data = response.json()
        assert data["status"] == "error"
        assert data["error_code"] == "PRECONDITION_FAILED"

    def test_register_queue_failure_returns_500(self, client, audio_file, queue):
        test_client, service = client
        queue.fail_with = RuntimeError("queue unavailable")

        response = test_client.post("/v1/recordings", json={"source_path": str(audio_file)})

        assert response.status_code == 500
        assert response.json()["error_code"] == "SUBMISSION_FAILED"
        recordings = service.list_recordings()
        assert [r.pipeline_status for r in recordings] == [PipelineStatus.ERROR]

    def test_register_rejects_unknown_fields(self, client, audio_file):
        test_client, _ = client

        response = test_client.post(
            "/v1/recordings", json={"source_path": str(audio_file), "owner": "x"}
        )

        assert response.status_code == 422


class TestReadRecordings:
    """Tests for GET endpoints."""

    def test_get_recording(self, client, make_artifact):
        test_client, _ = client
        make_artifact("A1", transcript="words")

        response = test_client.get("/v1/recordings/A1")

        assert response.status_code == 200
        assert response.json()["transcript"] == "words"

    def test_get_missing(self, client):
        test_client, _ = client

        response = test_client.get("/v1/recordings/nope")

        assert response.status_code == 404
        assert response.json()["error_code"] == "ARTIFACT_NOT_FOUND"

    def test_list(self, client, make_artifact):
        test_client, _ = client
        make_artifact("A1")
        make_artifact("A2")

        response = test_client.get("/v1/recordings")

        assert response.status_code == 200
        assert {r["id"] for r in response.json()} == {"A1", "A2"}


class TestProcessRecording:
    """Tests for POST /v1/recordings/{id}/process."""

    def test_process_submits_first_missing_stage(self, client, make_artifact):
        test_client, _ = client
        make_artifact("A1", transcript="words", pipeline_status=PipelineStatus.ERROR)

        response = test_client.post("/v1/recordings/A1/process")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "submitted"
        assert data["stage_kind"] == "summarize"
        assert data["task_id"]

    def test_process_twice_conflicts(self, client, make_artifact):
        test_client, _ = client
        make_artifact("A1")
        test_client.post("/v1/recordings/A1/process")

        response = test_client.post("/v1/recordings/A1/process")

        assert response.status_code == 409
        assert response.json()["error_code"] == "ALREADY_PROCESSING"

    def test_process_finished_recording_completes(self, client, make_artifact):
        test_client, service = client
        make_artifact("A1", transcript="t", summary="s", pipeline_status=PipelineStatus.ERROR)

        response = test_client.post("/v1/recordings/A1/process")

        assert response.status_code == 200
        assert response.json()["status"] == "complete"
        assert response.json()["task_id"] is None
        assert service.store.get("A1").pipeline_status == PipelineStatus.COMPLETE

    def test_process_missing(self, client):
        test_client, _ = client

        assert test_client.post("/v1/recordings/nope/process").status_code == 404


class TestUpdateTitle:
    """Tests for PUT /v1/recordings/{id}/title."""

    def test_update_title_locks(self, client, make_artifact):
        test_client, _ = client
        make_artifact("A1")

        response = test_client.put("/v1/recordings/A1/title", json={"title": "Week 3"})

        assert response.status_code == 200
        assert response.json()["title"] == "Week 3"
        assert response.json()["title_user_locked"] is True

    def test_blank_title(self, client, make_artifact):
        test_client, _ = client
        make_artifact("A1")

        response = test_client.put("/v1/recordings/A1/title", json={"title": "   "})

        assert response.status_code == 422
        assert response.json()["error_code"] == "TITLE_REJECTED"

    def test_missing_recording(self, client):
        test_client, _ = client

        response = test_client.put("/v1/recordings/nope/title", json={"title": "Week 3"})

        assert response.status_code == 404


class TestDeleteRecording:
    """Tests for DELETE /v1/recordings/{id}."""

    def test_delete(self, client, make_artifact, queue):
        test_client, service = client
        make_artifact("A1")
        test_client.post("/v1/recordings/A1/process")

        response = test_client.delete("/v1/recordings/A1")

        assert response.status_code == 200
        assert response.json() == {"status": "deleted", "recording_id": "A1"}
        assert service.store.get("A1") is None
        assert service.registry.list_active() == {}
        assert len(queue.revoked) == 1

    def test_delete_missing(self, client):
        test_client, _ = client

        assert test_client.delete("/v1/recordings/nope").status_code == 404
