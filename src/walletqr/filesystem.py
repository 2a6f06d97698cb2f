"""Filesystem helpers for walletqr."""

from __future__ import annotations

import os
import tempfile
import time
from pathlib import Path

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
TEMP_MARKER = ".walletqr-tmp-"


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_bytes(destination: Path, data: bytes) -> None:
    """Write ``data`` to ``destination`` so readers never observe a partial file.

    The bytes go to a temporary file in the destination directory which is then
    renamed into place. The temporary file is removed if anything fails.
    """

    ensure_parent(destination)
    fd, temp_name = tempfile.mkstemp(prefix=f".{destination.name}{TEMP_MARKER}", dir=destination.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, destination)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def probe_writable(directory: Path) -> bool:
    """Return ``True`` if a file can actually be created and removed in ``directory``."""

    try:
        fd, probe_name = tempfile.mkstemp(prefix=".write-probe-", dir=directory)
    except OSError:
        return False
    try:
        os.write(fd, b"probe")
    except OSError:
        return False
    finally:
        os.close(fd)
        Path(probe_name).unlink(missing_ok=True)
    return True


def has_png_signature(path: Path) -> bool:
    """Return ``True`` when the first bytes of ``path`` are the PNG signature."""

    with path.open("rb") as handle:
        return handle.read(len(PNG_SIGNATURE)) == PNG_SIGNATURE


def file_age_seconds(path: Path, *, now: float | None = None) -> float:
    current = time.time() if now is None else now
    return current - path.stat().st_mtime


def remove_file(path: Path) -> int:
    """Delete ``path`` and return the number of bytes freed (0 if it was already gone)."""

    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return 0
    path.unlink(missing_ok=True)
    return size
