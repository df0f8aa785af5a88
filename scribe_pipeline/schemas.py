"""Scribe Pipeline - Pydantic models.

Three groups:
- Task Registry contracts (task start request, active task info, events).
  Correspond to specs/task_request.schema.json and specs/task_event.schema.json.
- Upstream response schemas consumed by the Completion Handler.
- API request/response models for services.recordings_api.
"""

from datetime import datetime  # noqa: I001
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# --- Task Registry Contracts ---


class TaskMetadata(BaseModel):
    """Metadata attached to every task; the only link back to an artifact."""

    model_config = ConfigDict(extra="allow")

    artifact_id: str | None = Field(default=None, description="Artifact the task works for")


class TaskSpec(BaseModel):
    """Task start request handed to TaskRegistry.start()."""

    model_config = ConfigDict(extra="forbid")

    file_path: str | None = Field(
        default=None, description="Local file uploaded as the request body (transcribe only)"
    )
    endpoint_url: str = Field(..., min_length=1, description="Upstream endpoint")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    body: str = Field(default="", description="Serialized request payload (JSON text)")
    stage_kind: str = Field(..., min_length=1, description="Pipeline stage of this task")
    metadata: TaskMetadata = Field(default_factory=TaskMetadata)


class ActiveTask(BaseModel):
    """One entry of TaskRegistry.list_active()."""

    model_config = ConfigDict(extra="forbid")

    task_id: str
    stage_kind: str
    metadata: TaskMetadata
    status: str


class TaskCompleted(BaseModel):
    """Success event: the task finished with a 2xx upstream response."""

    model_config = ConfigDict(extra="forbid")

    event: Literal["complete"] = "complete"
    task_id: str
    stage_kind: str
    artifact_id: str | None = None
    raw_response: str


class TaskFailed(BaseModel):
    """Failure event: transport error or non-2xx upstream response."""

    model_config = ConfigDict(extra="forbid")

    event: Literal["error"] = "error"
    task_id: str
    stage_kind: str
    artifact_id: str | None = None
    error_message: str


# --- Upstream Response Schemas ---


class TranscriptionResponse(BaseModel):
    """Speech-to-text response. Only the top-level text is consumed."""

    model_config = ConfigDict(extra="ignore")

    text: str


class OutputText(BaseModel):
    """One content part of a Responses API output message."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["output_text"]
    text: str = Field(..., min_length=1)


class OutputMessage(BaseModel):
    """One output item of a Responses API response."""

    model_config = ConfigDict(extra="ignore")

    type: Literal["message"]
    content: list[dict[str, Any]] = Field(..., min_length=1)

    def first_text(self) -> OutputText:
        return OutputText.model_validate(self.content[0])


class ResponsesApiResponse(BaseModel):
    """Responses API payload: output message -> content -> text.

    Only the first output item is interpreted; later items may have other
    shapes, so they are kept as raw dicts.
    """

    model_config = ConfigDict(extra="ignore")

    output: list[dict[str, Any]] = Field(..., min_length=1)

    def first_message(self) -> OutputMessage:
        """Validate and return the first output item as a message.

        Raises:
            pydantic.ValidationError: If the first item is not a message with
                a non-empty output_text part.
        """
        return OutputMessage.model_validate(self.output[0])


# --- API Request Models ---


class RegisterRecordingRequest(BaseModel):
    """Request payload for registering a finished recording."""

    model_config = ConfigDict(extra="forbid")

    source_path: str = Field(
        ...,
        min_length=1,
        description="Absolute path to the finished audio file",
    )
    title: str | None = Field(default=None, description="Initial title (defaults to file stem)")
    recorded_at: datetime | None = Field(default=None, description="Capture start time")
    duration_sec: float | None = Field(default=None, ge=0, description="Duration in seconds")
    start_pipeline: bool = Field(
        default=True, description="Submit the transcribe stage right away"
    )


class UpdateTitleRequest(BaseModel):
    """User title edit. Locks the title against pipeline overwrites."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, description="New title")


# --- API Response Models ---


class RecordingResponse(BaseModel):
    """Recording response model for API serialization."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., description="Recording identifier")
    title: str = Field(..., description="Current title")
    source_file_path: str = Field(..., description="Stored audio file path")
    transcript: str | None = Field(default=None, description="Transcript text")
    summary: str | None = Field(default=None, description="Summary markdown")
    pipeline_status: str = Field(..., description="pending | processing | complete | error")
    title_user_locked: bool = Field(default=False, description="Title edited by the user")
    recorded_at: datetime | None = Field(default=None, description="Capture start time")
    duration_sec: float | None = Field(default=None, description="Duration in seconds")


class ProcessResponse(BaseModel):
    """Response for a pipeline (re)submission."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="submitted", description="Operation status")
    recording_id: str = Field(..., description="Recording identifier")
    stage_kind: str | None = Field(default=None, description="Stage that was submitted")
    task_id: str | None = Field(default=None, description="Task Registry id")


class ErrorResponse(BaseModel):
    """Response for failed operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Pipeline error code")
    error_message: str = Field(..., description="Human-readable error description")


__all__ = [
    "TaskMetadata",
    "TaskSpec",
    "ActiveTask",
    "TaskCompleted",
    "TaskFailed",
    "TranscriptionResponse",
    "OutputText",
    "OutputMessage",
    "ResponsesApiResponse",
    "RegisterRecordingRequest",
    "UpdateTitleRequest",
    "RecordingResponse",
    "ProcessResponse",
    "ErrorResponse",
]
