"""Scribe Pipeline - Recordings API FastAPI application.

FastAPI service through which the capture side hands finished recordings to
the pipeline and through which they are inspected, retried, retitled and
deleted.

This process only submits work. Task outcomes are handled by the Huey
consumer (scribe_pipeline.huey_app), which runs the Reconciler at startup and
owns the Completion Handler.

Run with:
    uvicorn services.recordings_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI

from scribe_pipeline.errors import PipelineError, PipelineErrorCode
from scribe_pipeline.pipeline import PipelineService
from scribe_pipeline.schemas import (
    ErrorResponse,
    ProcessResponse,
    RecordingResponse,
    RegisterRecordingRequest,
    UpdateTitleRequest,
)
from services.recordings_api.service import make_error_response, to_recording_response

logger = logging.getLogger(__name__)

# --- Pipeline Setup ---

# Module-level service (initialized on startup)
_service: PipelineService | None = None


def get_pipeline_service() -> PipelineService:
    """Dependency that provides the pipeline service.

    Raises:
        RuntimeError: If the service is not initialized (app lifespan not invoked).
    """
    if _service is None:
        raise RuntimeError("Pipeline service not initialized. App lifespan not invoked?")
    return _service


# --- Lifespan ---


def _cleanup_orphan_temp_files_safe() -> None:
    """Remove temp files left by interrupted recording copies (best-effort)."""
    from scribe_pipeline.config import RECORDINGS_DIR
    from scribe_pipeline.utils.atomic_io import cleanup_orphan_temp_files

    try:
        removed = cleanup_orphan_temp_files(RECORDINGS_DIR, recursive=True)
        if removed > 0:
            logger.info("Startup cleanup: removed %d orphan temp files", removed)
    except Exception:
        # Best-effort: never crash startup
        logger.warning("Startup cleanup failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Builds the pipeline service on startup (unless a test installed one) and
    cleans up orphan temp files.
    """
    global _service
    if _service is None:
        from scribe_pipeline.db import init_db

        _, SessionFactory = init_db()
        _service = PipelineService.from_session_factory(SessionFactory)

    _cleanup_orphan_temp_files_safe()

    yield


# --- FastAPI App ---


app = FastAPI(
    title="Scribe Pipeline - Recordings API",
    description="Register lesson recordings and track their transcription pipeline.",
    version="0.1.0",
    lifespan=lifespan,
)

_ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Recording not found"},
    500: {"model": ErrorResponse, "description": "Pipeline failure"},
}


def _unexpected(action: str):
    # Log full exception server-side, return generic message to client
    logger.exception("Unexpected error during %s", action)
    return make_error_response(
        PipelineErrorCode.STORE_FAILED,
        f"An unexpected error occurred during {action}",
    )


# --- Endpoints ---


@app.post(
    "/v1/recordings",
    response_model=RecordingResponse,
    responses={
        **_ERROR_RESPONSES,
        422: {"model": ErrorResponse, "description": "Source file missing"},
    },
    summary="Register a finished recording",
    description="Copy a local recording into the data directory and start its pipeline.",
)
def register_recording(
    request: RegisterRecordingRequest,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
):
    """Register a recording.

    If start_pipeline is true and the first stage cannot be submitted, the
    recording is still created (status error) and the error is returned.
    """
    try:
        artifact = service.register_recording(
            request.source_path,
            title=request.title,
            recorded_at=request.recorded_at,
            duration_sec=request.duration_sec,
            start_pipeline=request.start_pipeline,
        )
        return to_recording_response(artifact)
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        return _unexpected("registration")


@app.get(
    "/v1/recordings",
    response_model=list[RecordingResponse],
    summary="List recordings",
)
def list_recordings(service: Annotated[PipelineService, Depends(get_pipeline_service)]):
    try:
        return [to_recording_response(a) for a in service.list_recordings()]
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)


@app.get(
    "/v1/recordings/{recording_id}",
    response_model=RecordingResponse,
    responses=_ERROR_RESPONSES,
    summary="Get one recording",
)
def get_recording(
    recording_id: str,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
):
    try:
        return to_recording_response(service.get_recording(recording_id))
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)


@app.post(
    "/v1/recordings/{recording_id}/process",
    response_model=ProcessResponse,
    responses={
        **_ERROR_RESPONSES,
        409: {"model": ErrorResponse, "description": "Recording already processing"},
        422: {"model": ErrorResponse, "description": "Stage input missing"},
    },
    summary="Start or retry the pipeline",
    description="Submit the first stage that has no result yet.",
)
def process_recording(
    recording_id: str,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
):
    """Start or retry processing.

    Returns status "complete" (no task) when transcript and summary already
    exist.
    """
    try:
        stage_kind, task_id = service.process_recording(recording_id)
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        return _unexpected("submission")

    if stage_kind is None:
        return ProcessResponse(status="complete", recording_id=recording_id)
    return ProcessResponse(
        recording_id=recording_id,
        stage_kind=str(stage_kind),
        task_id=task_id,
    )


@app.put(
    "/v1/recordings/{recording_id}/title",
    response_model=RecordingResponse,
    responses={
        **_ERROR_RESPONSES,
        422: {"model": ErrorResponse, "description": "Blank title"},
    },
    summary="Set the title",
    description="A user-set title is never replaced by a generated one.",
)
def update_title(
    recording_id: str,
    request: UpdateTitleRequest,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
):
    try:
        return to_recording_response(service.update_title(recording_id, request.title))
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)


@app.delete(
    "/v1/recordings/{recording_id}",
    responses=_ERROR_RESPONSES,
    summary="Delete a recording",
    description="Cancel any task of the recording, then delete it and its files.",
)
def delete_recording(
    recording_id: str,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
):
    try:
        deleted = service.delete_recording(recording_id)
    except PipelineError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        return _unexpected("deletion")

    if not deleted:
        return make_error_response(
            PipelineErrorCode.ARTIFACT_NOT_FOUND, f"Recording {recording_id} not found"
        )
    return {"status": "deleted", "recording_id": recording_id}


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


# --- For testing: allow overriding the pipeline service ---


def override_pipeline_service(service: PipelineService | None) -> None:
    """Override the pipeline service for testing."""
    global _service
    _service = service
