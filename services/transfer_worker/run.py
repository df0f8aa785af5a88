"""Scribe Pipeline - Transfer Worker.

Performs the HTTP request of one stage task inside the huey consumer and
reports the terminal outcome to the Task Registry.

Request shapes (from TaskSpec):
- file_path set (transcribe): multipart/form-data POST. The file goes in the
  "file" part; body is a JSON object of form fields. Booleans are sent as
  "true"/"false".
- file_path unset (summarize, titleGenerate): POST of body as-is with the
  spec's headers.

Outcome classification:
- 2xx                -> success, raw_response = response text
- any other status   -> failure "HTTP Error: <status>"
- transport failure  -> failure carrying the exception text
- missing input file -> failure "Source file not found: <path>"

Retries are not done here. A failed transfer surfaces as a failure event and
the recording moves to error; retry is a user action.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from scribe_pipeline.config import TRANSFER_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from scribe_pipeline.registry import TaskRegistry
    from scribe_pipeline.schemas import TaskSpec

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 30.0


# --- Result Types ---


@dataclass
class TransferResult:
    """Result of one HTTP transfer."""

    ok: bool
    status_code: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    elapsed_ms: int = 0


# --- Request building ---


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _form_fields(body: str) -> dict[str, str]:
    if not body:
        return {}
    fields = json.loads(body)
    if not isinstance(fields, dict):
        raise ValueError("multipart body must be a JSON object of form fields")
    return {name: _form_value(value) for name, value in fields.items()}


def _without_content_type(headers: dict[str, str]) -> dict[str, str]:
    # httpx sets multipart Content-Type with the boundary itself
    return {k: v for k, v in headers.items() if k.lower() != "content-type"}


def _send(client: httpx.Client, spec: TaskSpec) -> httpx.Response:
    if spec.file_path is None:
        return client.post(spec.endpoint_url, headers=spec.headers, content=spec.body)

    file_path = Path(spec.file_path)
    content_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
    with open(file_path, "rb") as fh:
        return client.post(
            spec.endpoint_url,
            headers=_without_content_type(spec.headers),
            data=_form_fields(spec.body),
            files={"file": (file_path.name, fh, content_type)},
        )


# --- Transfer ---


def execute_transfer(
    spec: TaskSpec,
    client: httpx.Client | None = None,
    timeout_seconds: float = TRANSFER_TIMEOUT_SECONDS,
) -> TransferResult:
    """Run the HTTP request described by spec.

    Args:
        spec: Stage request.
        client: Optional httpx client (tests pass one with a MockTransport).
        timeout_seconds: Overall read/write timeout for the transfer.

    Returns:
        TransferResult. Never raises for HTTP or transport failures.
    """
    if spec.file_path is not None and not Path(spec.file_path).is_file():
        return TransferResult(ok=False, error_message=f"Source file not found: {spec.file_path}")

    owns_client = client is None
    if client is None:
        client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=CONNECT_TIMEOUT_SECONDS)
        )

    start_time = time.monotonic()
    try:
        response = _send(client, spec)
    except httpx.TimeoutException as e:
        logger.warning("Transfer to %s timed out: %s", spec.endpoint_url, e)
        return TransferResult(ok=False, error_message=f"Request timeout: {e}")
    except httpx.HTTPError as e:
        logger.warning("Transfer to %s failed: %s", spec.endpoint_url, e)
        return TransferResult(ok=False, error_message=f"Network error: {e}")
    except (OSError, ValueError) as e:
        logger.warning("Could not build request for %s: %s", spec.endpoint_url, e)
        return TransferResult(ok=False, error_message=str(e))
    finally:
        if owns_client:
            client.close()

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    if response.is_success:
        return TransferResult(
            ok=True,
            status_code=response.status_code,
            response_body=response.text,
            elapsed_ms=elapsed_ms,
        )
    return TransferResult(
        ok=False,
        status_code=response.status_code,
        response_body=response.text,
        error_message=f"HTTP Error: {response.status_code}",
        elapsed_ms=elapsed_ms,
    )


def run_transfer(
    registry: TaskRegistry,
    task_id: str,
    client: httpx.Client | None = None,
) -> dict:
    """Claim task_id, perform its transfer and record the outcome.

    Args:
        registry: Task Registry holding the task.
        task_id: Task to run.
        client: Optional httpx client.

    Returns:
        Dict with task_id, ok and (when run) status_code / error_message.
    """
    spec = registry.claim(task_id)
    if spec is None:
        logger.info("Task %s was cleared or already finished; skipping transfer", task_id)
        return {"task_id": task_id, "ok": False, "skipped": True}

    logger.info("Transferring %s task %s to %s", spec.stage_kind, task_id, spec.endpoint_url)
    result = execute_transfer(spec, client=client)

    if result.ok:
        logger.info("Task %s succeeded in %dms", task_id, result.elapsed_ms)
    else:
        logger.warning("Task %s failed: %s", task_id, result.error_message)

    registry.record_outcome(
        task_id,
        ok=result.ok,
        response_body=result.response_body if result.ok else None,
        error_message=result.error_message,
    )
    return {
        "task_id": task_id,
        "ok": result.ok,
        "status_code": result.status_code,
        "error_message": result.error_message,
    }
