"""Scribe Pipeline - Recordings API helpers.

Maps pipeline errors to HTTP responses and recordings to response models.
All pipeline behavior lives in scribe_pipeline.pipeline.PipelineService;
this module only translates.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse

from scribe_pipeline.errors import PipelineErrorCode
from scribe_pipeline.schemas import ErrorResponse, RecordingResponse

if TYPE_CHECKING:
    from scribe_pipeline.store import Artifact


_STATUS_BY_ERROR_CODE: dict[str, int] = {
    PipelineErrorCode.ARTIFACT_NOT_FOUND: 404,
    PipelineErrorCode.ALREADY_PROCESSING: 409,
    PipelineErrorCode.PRECONDITION_FAILED: 422,
    PipelineErrorCode.TITLE_REJECTED: 422,
}


def error_code_to_status(error_code: str) -> int:
    """Map pipeline error codes to HTTP status codes.

    - ARTIFACT_NOT_FOUND -> 404
    - ALREADY_PROCESSING -> 409
    - PRECONDITION_FAILED, TITLE_REJECTED -> 422
    - anything else -> 500
    """
    return _STATUS_BY_ERROR_CODE.get(error_code, 500)


def make_error_response(error_code: str, error_message: str) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=ErrorResponse(
            error_code=error_code,
            error_message=error_message,
        ).model_dump(),
    )


def to_recording_response(artifact: Artifact) -> RecordingResponse:
    return RecordingResponse(
        id=artifact.id,
        title=artifact.title,
        source_file_path=artifact.source_file_path,
        transcript=artifact.transcript,
        summary=artifact.summary,
        pipeline_status=str(artifact.pipeline_status),
        title_user_locked=artifact.title_user_locked,
        recorded_at=artifact.recorded_at,
        duration_sec=artifact.duration_sec,
    )
