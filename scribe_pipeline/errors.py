"""Scribe Pipeline - Error taxonomy.

Every pipeline error carries a stable error_code so API responses and logs
can classify failures without string matching.
"""

from enum import StrEnum


class PipelineErrorCode(StrEnum):
    """Error codes for the recording pipeline."""

    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    ALREADY_PROCESSING = "ALREADY_PROCESSING"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    TRANSFER_FAILED = "TRANSFER_FAILED"
    PARSE_FAILED = "PARSE_FAILED"
    TITLE_REJECTED = "TITLE_REJECTED"
    STORE_FAILED = "STORE_FAILED"
    ARTIFACT_NOT_FOUND = "ARTIFACT_NOT_FOUND"
    UPLOAD_FAILED = "UPLOAD_FAILED"


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class SubmissionError(PipelineError):
    """A stage task could not be registered with the Task Registry."""

    def __init__(self, message: str, error_code: str = PipelineErrorCode.SUBMISSION_FAILED):
        super().__init__(error_code, message)


class PreconditionError(SubmissionError):
    """A stage's input is missing (no audio file, transcript or summary)."""

    def __init__(self, stage_kind: str, reason: str):
        self.stage_kind = stage_kind
        super().__init__(
            f"Stage {stage_kind} not eligible: {reason}",
            error_code=PipelineErrorCode.PRECONDITION_FAILED,
        )


class TransferError(PipelineError):
    """The Task Registry reported that a task failed."""

    def __init__(self, message: str):
        super().__init__(PipelineErrorCode.TRANSFER_FAILED, message)


class ParseError(PipelineError):
    """A terminal response did not have the shape its stage expects."""

    def __init__(self, stage_kind: str, reason: str):
        self.stage_kind = stage_kind
        super().__init__(PipelineErrorCode.PARSE_FAILED, f"{stage_kind} response: {reason}")


class ValidationError(PipelineError):
    """A generated title was rejected. Never fatal to the pipeline."""

    def __init__(self, reason: str, candidate: str | None = None):
        self.candidate = candidate
        super().__init__(PipelineErrorCode.TITLE_REJECTED, reason)


class StoreError(PipelineError):
    """Record Store read or write failed."""

    def __init__(self, message: str, error_code: str = PipelineErrorCode.STORE_FAILED):
        super().__init__(error_code, message)


class ArtifactNotFoundError(StoreError):
    """No record exists for the requested artifact id."""

    def __init__(self, artifact_id: str):
        self.artifact_id = artifact_id
        super().__init__(
            f"Recording {artifact_id} not found",
            error_code=PipelineErrorCode.ARTIFACT_NOT_FOUND,
        )


class UploadError(PipelineError):
    """A direct (non-queued) text upload was rejected by the remote store."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(PipelineErrorCode.UPLOAD_FAILED, message)
