"""Scribe Pipeline - Stage response parsing and title validation.

Raw upstream responses are parsed against explicit per-stage schemas
(scribe_pipeline.schemas). parse_stage_response() never raises for a bad
payload; it returns a ParseResult tagged ok/failed so the Completion Handler
can branch on the outcome instead of catching exceptions from deep inside
the payload.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

import pydantic

from scribe_pipeline.config import MIN_TITLE_LENGTH, TITLE_FAILURE_PHRASES
from scribe_pipeline.errors import ParseError, ValidationError
from scribe_pipeline.schemas import ResponsesApiResponse, TranscriptionResponse
from scribe_pipeline.stages import StageKind

# Opening ```lang / closing ``` delimiters plus the whitespace after them
_CODE_FENCE_RE = re.compile(r"```\w*\s*")


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing one stage response.

    Exactly one of value / error is set.
    """

    stage_kind: StageKind
    value: str | None = None
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, stage_kind: StageKind, value: str) -> ParseResult:
        return cls(stage_kind=stage_kind, value=value)

    @classmethod
    def failure(cls, stage_kind: StageKind, reason: str) -> ParseResult:
        return cls(stage_kind=stage_kind, error=ParseError(stage_kind, reason))

    def unwrap(self) -> str:
        """Return the parsed value or raise the ParseError."""
        if self.error is not None:
            raise self.error
        return self.value or ""


def strip_code_fences(text: str | None) -> str:
    """Remove fenced-code-block delimiters and trim the result.

    The summary model wraps its markdown in ```markdown ... ``` despite being
    asked for plain markdown. Idempotent: the output contains no fences, so a
    second pass only re-trims.
    """
    if not text:
        return ""
    return _CODE_FENCE_RE.sub("", text).strip()


def _describe(exc: pydantic.ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "<root>"
    return f"{location}: {first['msg']}"


def _load_json(raw_response: str) -> tuple[object | None, str | None]:
    try:
        return json.loads(raw_response), None
    except (json.JSONDecodeError, TypeError) as e:
        return None, f"response is not valid JSON ({e})"


def _parse_transcription(raw_response: str) -> ParseResult:
    data, problem = _load_json(raw_response)
    if problem is not None:
        return ParseResult.failure(StageKind.TRANSCRIBE, problem)
    try:
        parsed = TranscriptionResponse.model_validate(data)
    except pydantic.ValidationError as e:
        return ParseResult.failure(StageKind.TRANSCRIBE, f"no transcript field ({_describe(e)})")
    return ParseResult.success(StageKind.TRANSCRIBE, parsed.text)


def _parse_generated_text(stage_kind: StageKind, raw_response: str) -> ParseResult:
    data, problem = _load_json(raw_response)
    if problem is not None:
        return ParseResult.failure(stage_kind, problem)
    try:
        text = ResponsesApiResponse.model_validate(data).first_message().first_text().text
    except pydantic.ValidationError as e:
        return ParseResult.failure(stage_kind, f"no output message text ({_describe(e)})")
    return ParseResult.success(stage_kind, text)


def parse_stage_response(stage_kind: StageKind, raw_response: str) -> ParseResult:
    """Parse a terminal response for stage_kind.

    - transcribe: top-level "text"
    - summarize: output[0].content[0].text, code fences stripped
    - titleGenerate: output[0].content[0].text, trimmed (not validated here)
    """
    if stage_kind == StageKind.TRANSCRIBE:
        return _parse_transcription(raw_response)

    result = _parse_generated_text(stage_kind, raw_response)
    if not result.ok:
        return result

    if stage_kind == StageKind.SUMMARIZE:
        summary = strip_code_fences(result.value)
        if not summary:
            return ParseResult.failure(stage_kind, "summary text is empty after cleanup")
        return ParseResult.success(stage_kind, summary)

    return ParseResult.success(stage_kind, (result.value or "").strip())


def title_rejection_reason(candidate: str | None) -> str | None:
    """Return why a generated title is unusable, or None if it is acceptable.

    Rejected when empty, shorter than MIN_TITLE_LENGTH characters, or when it
    contains any TITLE_FAILURE_PHRASES entry (case-insensitive).
    """
    if not candidate:
        return "title is empty"
    if len(candidate) < MIN_TITLE_LENGTH:
        return f"title shorter than {MIN_TITLE_LENGTH} characters"
    lowered = candidate.lower()
    for phrase in TITLE_FAILURE_PHRASES:
        if phrase in lowered:
            return f"title matches failure phrase '{phrase}'"
    return None


def validate_title(candidate: str | None) -> str:
    """Return the candidate title if usable.

    Raises:
        ValidationError: If the title is rejected.
    """
    reason = title_rejection_reason(candidate)
    if reason is not None:
        raise ValidationError(reason, candidate=candidate)
    return candidate or ""
