"""Scribe Pipeline - Utility modules."""

from scribe_pipeline.utils.atomic_io import (
    atomic_copy_file,
    atomic_write_text,
    cleanup_orphan_temp_files,
)
from scribe_pipeline.utils.paths import is_managed_path, recording_dir, recording_source_path

__all__ = [
    # atomic_io
    "atomic_copy_file",
    "atomic_write_text",
    "cleanup_orphan_temp_files",
    # paths
    "is_managed_path",
    "recording_dir",
    "recording_source_path",
]
