"""Scribe Pipeline - Canonical path utilities.

Returns canonical Paths for stored recordings. Does NOT create directories.
Directory creation is the responsibility of the calling code.
"""

from pathlib import Path

from scribe_pipeline.config import RECORDINGS_DIR


def recording_dir(recording_id: str) -> Path:
    """Get the directory holding one recording's files.

    Args:
        recording_id: Unique recording identifier.

    Returns:
        Path: data/recordings/{recording_id}
    """
    return RECORDINGS_DIR / recording_id


def recording_source_path(recording_id: str, ext: str) -> Path:
    """Get canonical path for the stored audio file of a recording.

    Args:
        recording_id: Unique recording identifier.
        ext: File extension (without leading dot, e.g., "m4a", "wav").

    Returns:
        Path: data/recordings/{recording_id}/original.{ext}
    """
    # Normalize extension (remove leading dot if present)
    ext = ext.lstrip(".") or "bin"
    return recording_dir(recording_id) / f"original.{ext}"


def is_managed_path(path: str | Path) -> bool:
    """True if path lies inside the recordings directory."""
    try:
        Path(path).resolve().relative_to(RECORDINGS_DIR.resolve())
    except ValueError:
        return False
    return True
