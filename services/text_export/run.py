"""Scribe Pipeline - Text Export.

Uploads the transcript and summary of a finished recording to a secondary
text store. Unlike stage tasks, these uploads are direct calls made by the
current process, so transient failures are retried in place with
exponential backoff (scribe_pipeline.retry.call_with_retry).

Files per recording:
- "<title>_Transcript.txt" (text/plain)
- "<title>_Summary.md"     (text/markdown)

Upload failures are per file: one failed upload does not stop the other,
and both outcomes are reported in the ExportReport.

Error messages (classified by scribe_pipeline.retry.is_retryable_error):
- "Upload failed: <status> <reason> - <body>" for a non-2xx response
- "Request timeout: ..." / "Network error: ..." for transport failures
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from scribe_pipeline.config import EXPORT_API_URL, get_export_token
from scribe_pipeline.errors import UploadError
from scribe_pipeline.retry import RetryStats, call_with_retry
from scribe_pipeline.store import PipelineStatus
from scribe_pipeline.utils.atomic_io import atomic_write_text

if TYPE_CHECKING:
    from scribe_pipeline.store import RecordStore

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT_SECONDS = 60.0


# --- Result Types ---


@dataclass
class ExportReport:
    """Outcome of exporting one recording."""

    recording_id: str
    uploads: list[dict] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


# --- Client ---


class TextExportClient:
    """Minimal client for the text store's multipart upload endpoint.

    Args:
        base_url: Upload endpoint. Defaults to SCRIBE_EXPORT_URL.
        token: Bearer token. Defaults to SCRIBE_EXPORT_TOKEN.
        client: Optional httpx client (tests pass one with a MockTransport).
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        client: httpx.Client | None = None,
    ):
        self._base_url = base_url if base_url is not None else EXPORT_API_URL
        self._token = token if token is not None else get_export_token()
        self._client = client or httpx.Client(timeout=UPLOAD_TIMEOUT_SECONDS)

    def close(self) -> None:
        self._client.close()

    def upload_text_file(self, content: str, file_name: str) -> str:
        """Upload one text file and return the id the store assigned to it.

        Raises:
            UploadError: For invalid input, a transport failure or a non-2xx
                response. The message tells call_with_retry whether the
                failure is transient.
        """
        if not content or not isinstance(content, str):
            raise UploadError("Invalid content provided")
        if not file_name:
            raise UploadError("Missing required parameter: file_name")
        if not self._base_url:
            raise UploadError("No export endpoint configured (set SCRIBE_EXPORT_URL)")

        mime_type = "text/markdown" if file_name.endswith(".md") else "text/plain"
        files = {
            "metadata": (None, json.dumps({"name": file_name}), "application/json"),
            "file": (file_name, content.encode("utf-8"), mime_type),
        }
        try:
            response = self._client.post(
                self._base_url,
                headers={"Authorization": f"Bearer {self._token}"},
                files=files,
            )
        except httpx.TimeoutException as e:
            raise UploadError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise UploadError(f"Network error: {e}") from e

        if not response.is_success:
            raise UploadError(
                f"Upload failed: {response.status_code} {response.reason_phrase}"
                f" - {response.text}",
                status_code=response.status_code,
            )

        try:
            file_id = response.json().get("id")
        except (ValueError, AttributeError):
            file_id = None
        logger.info("Text file uploaded: %s (%s)", file_name, file_id)
        return str(file_id) if file_id is not None else ""


# --- Export ---


def _export_files(
    title: str, transcript: str | None, summary: str | None
) -> list[tuple[str, str, str]]:
    base = title.strip() or "Recording"
    files = []
    if transcript:
        files.append(("transcript", f"{base}_Transcript.txt", transcript))
    if summary:
        files.append(("summary", f"{base}_Summary.md", summary))
    return files


def export_recording_text(
    store: RecordStore,
    recording_id: str,
    client: TextExportClient,
    local_dir: str | Path | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ExportReport:
    """Upload the transcript and summary of a complete recording.

    Args:
        store: Record Store to read the recording from.
        recording_id: Recording to export.
        client: Upload client.
        local_dir: Optional directory receiving a local copy of each file.
        sleep: Sleep function used between retries (injected by tests).

    Returns:
        ExportReport listing uploaded files and per-file errors.

    Raises:
        ArtifactNotFoundError: If the recording does not exist.
        UploadError: If the recording is not complete.
    """
    artifact = store.require(recording_id)
    if artifact.pipeline_status != PipelineStatus.COMPLETE:
        raise UploadError(
            f"Recording {recording_id} is {artifact.pipeline_status}, only complete "
            "recordings are exported"
        )

    report = ExportReport(recording_id=recording_id)
    for kind, file_name, content in _export_files(
        artifact.title, artifact.transcript, artifact.summary
    ):
        if local_dir is not None:
            atomic_write_text(Path(local_dir) / recording_id / file_name, content)

        stats = RetryStats()
        try:
            file_id = call_with_retry(
                lambda content=content, file_name=file_name: client.upload_text_file(
                    content, file_name
                ),
                sleep=sleep,
                description=f"Upload of {file_name}",
                stats=stats,
            )
        except UploadError as e:
            logger.error("Failed to export %s of recording %s: %s", kind, recording_id, e)
            report.errors.append(
                {"type": kind, "file_name": file_name, "error": str(e), "attempts": stats.attempts}
            )
            continue

        report.uploads.append(
            {"type": kind, "file_name": file_name, "file_id": file_id, "attempts": stats.attempts}
        )
    return report


def run_text_export(recording_id: str, local_dir: str | Path | None = None) -> ExportReport:
    """Export one recording using the configured database and endpoint."""
    # Import here to keep module import free of database side effects
    from scribe_pipeline.db import init_db
    from scribe_pipeline.store import RecordStore

    _, SessionFactory = init_db()
    client = TextExportClient()
    try:
        return export_recording_text(RecordStore(SessionFactory), recording_id, client, local_dir)
    finally:
        client.close()


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) not in (2, 3):
        print(f"Usage: {sys.argv[0]} <recording_id> [local_dir]")
        sys.exit(1)

    result = run_text_export(sys.argv[1], sys.argv[2] if len(sys.argv) == 3 else None)
    for upload in result.uploads:
        print(f"Uploaded {upload['type']}: {upload['file_name']} ({upload['file_id']})")
    for error in result.errors:
        print(f"Error {error['type']}: {error['error']}")
    sys.exit(0 if result.ok else 1)
