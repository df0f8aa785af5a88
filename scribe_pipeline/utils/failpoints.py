"""Scribe Pipeline - Failpoint injection for crash-recovery testing.

Lets a test kill the process at a chosen point between two durable writes,
to prove the Reconciler repairs what the crash left behind.

Safety gate: failpoints are only active when SCRIBE_ENABLE_FAILPOINTS=1.
Otherwise maybe_fail() returns immediately.

Environment variables:
- SCRIBE_ENABLE_FAILPOINTS: "1" enables the system (default: disabled)
- SCRIBE_FAILPOINT: Name of the point to trigger, e.g. "SUBMIT_AFTER_STATUS_WRITE"
- SCRIBE_FAILPOINT_EXIT_CODE: Exit code used when crashing (default: 42)

Known points:
- SUBMIT_AFTER_STATUS_WRITE: status written as processing, task not yet started
- SUBMIT_AFTER_TASK_START: task started, submitter has not returned yet
- COMPLETION_BEFORE_CLEAR: completion applied, task not yet cleared
"""

from __future__ import annotations

import os

KNOWN_FAILPOINTS = frozenset(
    {
        "SUBMIT_AFTER_STATUS_WRITE",
        "SUBMIT_AFTER_TASK_START",
        "COMPLETION_BEFORE_CLEAR",
    }
)

DEFAULT_EXIT_CODE = 42


def _normalize(name: str) -> str:
    name = name.strip().upper()
    if name.startswith("FAILPOINT_"):
        name = name[len("FAILPOINT_") :]
    return name


def is_failpoint_enabled() -> bool:
    """True if SCRIBE_ENABLE_FAILPOINTS=1."""
    return os.environ.get("SCRIBE_ENABLE_FAILPOINTS") == "1"


def get_active_failpoint() -> str | None:
    """Return the configured failpoint name (normalized), or None."""
    if not is_failpoint_enabled():
        return None
    target = os.environ.get("SCRIBE_FAILPOINT", "")
    return _normalize(target) if target else None


def maybe_fail(point: str) -> None:
    """Crash the process with os._exit() if point is the active failpoint.

    os._exit() skips finally blocks and atexit handlers, which is what a
    power loss or a killed process looks like to the pipeline.
    """
    active = get_active_failpoint()
    if active is None or active != _normalize(point):
        return

    try:
        exit_code = int(os.environ.get("SCRIBE_FAILPOINT_EXIT_CODE", str(DEFAULT_EXIT_CODE)))
    except ValueError:
        exit_code = DEFAULT_EXIT_CODE

    os._exit(exit_code)
