"""
Atomic file primitives with fsync, so the reverse proxy never reads a
half-written PEM file or config fragment.

Pattern:
  1. Write (or copy) into a temporary file in the destination directory
  2. Call fsync to flush to disk
  3. Rename atomically (atomic on POSIX filesystems)

A crash at any point leaves the previous destination file intact.
"""
from __future__ import annotations

import errno
import os
import shutil
import tempfile
from pathlib import Path


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Atomically write text to a file with fsync.

    Writes to a temp file in the same directory, fsyncs, then renames atomically.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory → same filesystem → os.replace is atomic
    fd, temp_path = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
        text=False,
    )

    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def atomic_move(src: Path, dst: Path) -> None:
    """
    Move *src* to *dst* so that *dst* switches from old to new content in one step.

    Regular files on the same filesystem are renamed directly.  Symlinks
    (certbot's live/ directory links into archive/) and cross-device sources
    are copied by content into a temp file next to *dst*, fsynced and renamed
    over *dst*; the source entry is removed afterwards.
    """
    if not src.is_symlink():
        try:
            os.replace(src, dst)
            return
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise

    fd, temp_path = tempfile.mkstemp(
        prefix=f".{dst.name}.",
        suffix=".tmp",
        dir=str(dst.parent),
    )

    try:
        with open(src, "rb") as source, os.fdopen(fd, "wb") as f:
            shutil.copyfileobj(source, f)
            f.flush()
            os.fsync(f.fileno())

        os.replace(temp_path, dst)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise

    os.unlink(src)
