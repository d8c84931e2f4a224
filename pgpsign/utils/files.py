"""File writing helpers with durability guarantees."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Ensure directory exists, creating if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` atomically.

    The write goes to a temporary file in the destination directory, which is
    flushed, fsynced and then moved into place with ``os.replace``. Readers
    never observe a partially written file.
    """
    destination = Path(path)
    ensure_dir(destination.parent)

    fd: int | None = None
    tmp_path: str | None = None

    try:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(destination.parent),
            prefix=destination.name,
            suffix=".tmp",
            text=True,
        )

        with os.fdopen(fd, "w", encoding="ascii", newline="\n") as handle:
            fd = None  # Ownership transferred to file object
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())

        os.replace(tmp_path, destination)
        tmp_path = None
    finally:
        if fd is not None:
            os.close(fd)
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass


@contextmanager
def atomic_output(path: Path) -> Iterator[Path]:
    """Yield a not-yet-existing temporary path that replaces ``path`` on success.

    Meant for external tools that write their own output file (and refuse to
    overwrite one). If the block raises, the temporary file is removed and
    ``path`` is left untouched.
    """
    destination = Path(path)
    ensure_dir(destination.parent)

    fd, tmp_name = tempfile.mkstemp(
        dir=str(destination.parent),
        prefix=destination.name,
        suffix=".tmp",
    )
    os.close(fd)
    os.unlink(tmp_name)
    tmp_path = Path(tmp_name)

    try:
        yield tmp_path
        os.replace(tmp_path, destination)
    finally:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
