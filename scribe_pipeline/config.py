"""Scribe Pipeline - Configuration constants.

Module-level constants with a few environment overrides. No external config
libraries. All paths are relative to the repository root by default.
"""

import os
from pathlib import Path

# Repository root (parent of scribe_pipeline/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_data_dir() -> Path:
    """Get the data directory from environment or use default.

    Environment variable SCRIBE_DATA_DIR allows relocating all state
    (record database, copied recordings, queue) for tests and deployments.

    Returns:
        Absolute data directory path.
    """
    env_val = os.environ.get("SCRIBE_DATA_DIR")
    if env_val:
        return Path(env_val).expanduser().resolve()
    return REPO_ROOT / "data"


def _get_positive_int(name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to default."""
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


# Data directories
DATA_DIR = _get_data_dir()
RECORDINGS_DIR = DATA_DIR / "recordings"

# Record store database path
DB_PATH = DATA_DIR / "scribe.db"

# Queue directory and Huey database path
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"

# --- Upstream endpoints ---

TRANSCRIPTION_API_URL = os.environ.get(
    "SCRIBE_TRANSCRIPTION_URL", "https://api.elevenlabs.io/v1/speech-to-text"
)
# Shared Responses endpoint for both summary and title generation
RESPONSES_API_URL = os.environ.get("SCRIBE_RESPONSES_URL", "https://api.openai.com/v1/responses")

TRANSCRIPTION_MODEL = "scribe_v1"
SUMMARY_MODEL = os.environ.get("SCRIBE_SUMMARY_MODEL", "gpt-4o")
TITLE_MODEL = os.environ.get("SCRIBE_TITLE_MODEL", "gpt-4.1-mini")
SUMMARY_TEMPERATURE = 0.25
TITLE_TEMPERATURE = 0.2

# Secondary store for finished text artifacts (direct upload, not queued)
EXPORT_API_URL = os.environ.get("SCRIBE_EXPORT_URL", "")


def get_transcription_api_key() -> str:
    """Speech-to-text API key, read at call time so tests can set it."""
    return os.environ.get("ELEVENLABS_API_KEY", "")


def get_responses_api_key() -> str:
    """Responses API key, read at call time so tests can set it."""
    return os.environ.get("OPENAI_API_KEY", "")


def get_export_token() -> str:
    """Bearer token for the text export endpoint."""
    return os.environ.get("SCRIBE_EXPORT_TOKEN", "")


# Upper bound for a single out-of-process transfer (upload + response)
TRANSFER_TIMEOUT_SECONDS = _get_positive_int("SCRIBE_TRANSFER_TIMEOUT_SEC", 600)

# --- Direct upload retry policy ---
# Delay before retry n (0-based) is RETRY_BASE_DELAY_MS * 2**n: 1s, 2s, 4s
RETRY_BASE_DELAY_MS = 1000
MAX_UPLOAD_RETRIES = 3
RETRYABLE_ERROR_PATTERNS = (
    r"network",
    r"timeout",
    r"502",
    r"503",
    r"504",
    r"rate limit",
    r"quota",
)

# --- Title validation ---
MIN_TITLE_LENGTH = 5
# Phrases signalling the model had nothing usable to title
TITLE_FAILURE_PHRASES = (
    "no violin content",
    "no musical content",
    "transcription failed",
)
