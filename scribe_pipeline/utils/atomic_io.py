"""Scribe Pipeline - Atomic file publishing.

Recordings copied into the data directory and exported text files are
published the same way:
1. Write to a temp path next to the final path
2. Flush + best-effort fsync
3. Rename temp -> final

A reader therefore sees either the complete file or no file. A crash
leaves at most a *.tmp file behind, which cleanup_orphan_temp_files()
removes at startup.
"""

import os
from pathlib import Path

TEMP_SUFFIX = ".tmp"
CHUNK_SIZE = 65536


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes to fd, looping over partial writes."""
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        if written <= 0:
            raise OSError("os.write returned 0 bytes")
        view = view[written:]


def _fsync_directory(dir_path: Path) -> None:
    """Best-effort fsync on a directory so the rename itself is durable."""
    try:
        fd = os.open(dir_path, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def _temp_path_for(final_path: Path) -> Path:
    return final_path.with_name(final_path.name + TEMP_SUFFIX)


def _publish(chunks, final_path: Path) -> int:
    """Write an iterable of byte chunks to final_path atomically."""
    temp_path = _temp_path_for(final_path)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    total = 0
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        for chunk in chunks:
            _write_all(fd, chunk)
            total += len(chunk)
        os.fsync(fd)
    except BaseException:
        os.close(fd)
        try:
            os.remove(temp_path)
        except OSError:
            pass
        raise
    os.close(fd)

    os.replace(temp_path, final_path)
    _fsync_directory(final_path.parent)
    return total


def atomic_write_text(final_path: str | Path, text: str, encoding: str = "utf-8") -> int:
    """Atomically write text to final_path.

    Returns:
        Number of bytes written.
    """
    return _publish([text.encode(encoding)], Path(final_path))


def atomic_copy_file(source_path: str | Path, final_path: str | Path) -> int:
    """Atomically copy source_path to final_path.

    Args:
        source_path: File to copy.
        final_path: Destination. Parent directories are created.

    Returns:
        Number of bytes copied.

    Raises:
        FileNotFoundError: If source_path does not exist.
        OSError: If the copy or the rename fails. No temp file is left behind.
    """
    source_path = Path(source_path)
    if not source_path.is_file():
        raise FileNotFoundError(f"Source file not found: {source_path}")

    with open(source_path, "rb") as src:
        return _publish(iter(lambda: src.read(CHUNK_SIZE), b""), Path(final_path))


def cleanup_orphan_temp_files(directory: str | Path, recursive: bool = False) -> int:
    """Remove leftover *.tmp files from interrupted writes.

    Args:
        directory: Directory to scan. A missing directory is not an error.
        recursive: Also scan subdirectories.

    Returns:
        Number of files removed.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0

    pattern = f"**/*{TEMP_SUFFIX}" if recursive else f"*{TEMP_SUFFIX}"
    removed = 0
    for temp_file in directory.glob(pattern):
        if not temp_file.is_file():
            continue
        try:
            temp_file.unlink()
            removed += 1
        except OSError:
            pass
    return removed
