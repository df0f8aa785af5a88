"""Scribe Pipeline - Stage definitions.

Stage progression: transcribe -> summarize -> titleGenerate

Each stage has:
- an explicit precondition (what the artifact must already carry),
- a request builder producing the TaskSpec handed to the Task Registry,
- a successor (None for the last stage).

titleGenerate is optional: it only tries to improve the title, so a missing
summary or a rejected title never blocks completion.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from enum import StrEnum
from pathlib import Path

from scribe_pipeline import config
from scribe_pipeline.errors import PreconditionError
from scribe_pipeline.prompts import SUMMARY_INSTRUCTIONS, TITLE_INSTRUCTIONS
from scribe_pipeline.schemas import TaskMetadata, TaskSpec
from scribe_pipeline.store import Artifact


class StageKind(StrEnum):
    """Pipeline stages, in execution order."""

    TRANSCRIBE = "transcribe"
    SUMMARIZE = "summarize"
    TITLE_GENERATE = "titleGenerate"


STAGE_ORDER: tuple[StageKind, ...] = (
    StageKind.TRANSCRIBE,
    StageKind.SUMMARIZE,
    StageKind.TITLE_GENERATE,
)

# Stages whose failure to run must not fail the pipeline
OPTIONAL_STAGES = frozenset({StageKind.TITLE_GENERATE})


def parse_stage_kind(value: str) -> StageKind:
    """Convert a stored stage name to StageKind.

    Raises:
        ValueError: If value is not a known stage.
    """
    return StageKind(value)


def next_stage(stage_kind: StageKind) -> StageKind | None:
    """Return the stage that follows stage_kind, or None after the last one."""
    index = STAGE_ORDER.index(stage_kind)
    if index + 1 < len(STAGE_ORDER):
        return STAGE_ORDER[index + 1]
    return None


# --- Preconditions ---


def _transcribe_unmet(artifact: Artifact) -> str | None:
    if not artifact.source_file_path:
        return "no source file path"
    if not Path(artifact.source_file_path).is_file():
        return f"source file not reachable: {artifact.source_file_path}"
    return None


def _summarize_unmet(artifact: Artifact) -> str | None:
    if artifact.transcript is None:
        return "transcript is missing"
    return None


def _title_generate_unmet(artifact: Artifact) -> str | None:
    if artifact.summary is None:
        return "summary is missing"
    return None


_PRECONDITIONS: dict[StageKind, Callable[[Artifact], str | None]] = {
    StageKind.TRANSCRIBE: _transcribe_unmet,
    StageKind.SUMMARIZE: _summarize_unmet,
    StageKind.TITLE_GENERATE: _title_generate_unmet,
}


def unmet_precondition(stage_kind: StageKind, artifact: Artifact) -> str | None:
    """Return why artifact cannot enter stage_kind, or None if it can."""
    return _PRECONDITIONS[stage_kind](artifact)


def is_eligible(stage_kind: StageKind, artifact: Artifact) -> bool:
    return unmet_precondition(stage_kind, artifact) is None


def check_precondition(stage_kind: StageKind, artifact: Artifact) -> None:
    """Raise PreconditionError if artifact cannot enter stage_kind."""
    reason = unmet_precondition(stage_kind, artifact)
    if reason is not None:
        raise PreconditionError(stage_kind, reason)


def first_unmet_stage(artifact: Artifact) -> StageKind | None:
    """Return the first stage whose output the artifact does not have yet.

    Used for a manual retry: resubmit from where the pipeline stopped.
    Returns None when transcript and summary are both present (the optional
    title stage is not retried).
    """
    if artifact.transcript is None:
        return StageKind.TRANSCRIBE
    if artifact.summary is None:
        return StageKind.SUMMARIZE
    return None


# --- Request Builders ---


def _build_transcribe_spec(artifact: Artifact) -> TaskSpec:
    form_fields = {
        "model_id": config.TRANSCRIPTION_MODEL,
        "language_detection": True,
        "timestamps_granularity": "word",
        "diarize": True,
    }
    return TaskSpec(
        file_path=artifact.source_file_path,
        endpoint_url=config.TRANSCRIPTION_API_URL,
        headers={
            "xi-api-key": config.get_transcription_api_key(),
            "Content-Type": "multipart/form-data",
        },
        body=json.dumps(form_fields),
        stage_kind=StageKind.TRANSCRIBE,
        metadata=TaskMetadata(artifact_id=artifact.id),
    )


def _responses_spec(
    stage_kind: StageKind,
    artifact: Artifact,
    model: str,
    instructions: str,
    text_input: str,
    temperature: float,
) -> TaskSpec:
    request_body = {
        "model": model,
        "instructions": instructions,
        "input": text_input,
        "temperature": temperature,
        "store": False,
    }
    return TaskSpec(
        file_path=None,
        endpoint_url=config.RESPONSES_API_URL,
        headers={
            "Authorization": f"Bearer {config.get_responses_api_key()}",
            "Content-Type": "application/json",
        },
        body=json.dumps(request_body),
        stage_kind=stage_kind,
        metadata=TaskMetadata(artifact_id=artifact.id),
    )


def _build_summarize_spec(artifact: Artifact) -> TaskSpec:
    return _responses_spec(
        StageKind.SUMMARIZE,
        artifact,
        config.SUMMARY_MODEL,
        SUMMARY_INSTRUCTIONS,
        artifact.transcript or "",
        config.SUMMARY_TEMPERATURE,
    )


def _build_title_generate_spec(artifact: Artifact) -> TaskSpec:
    return _responses_spec(
        StageKind.TITLE_GENERATE,
        artifact,
        config.TITLE_MODEL,
        TITLE_INSTRUCTIONS,
        artifact.summary or "",
        config.TITLE_TEMPERATURE,
    )


_REQUEST_BUILDERS: dict[StageKind, Callable[[Artifact], TaskSpec]] = {
    StageKind.TRANSCRIBE: _build_transcribe_spec,
    StageKind.SUMMARIZE: _build_summarize_spec,
    StageKind.TITLE_GENERATE: _build_title_generate_spec,
}


def build_task_spec(stage_kind: StageKind, artifact: Artifact) -> TaskSpec:
    """Build the Task Registry request for running stage_kind on artifact."""
    return _REQUEST_BUILDERS[stage_kind](artifact)
