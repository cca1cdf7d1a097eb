"""Filesystem helpers for atomic writes and timestamped backups."""
from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def atomic_write_bytes(path: Path, payload: bytes, *, mode: int = 0o644) -> None:
    """Write *payload* to *path* via a temporary sibling and ``os.replace``.

    The permission bits are applied to the temporary file before the rename, so
    readers never observe the final path with a partial body or looser mode.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def atomic_write_text(path: Path, content: str, *, mode: int = 0o644) -> None:
    """Write UTF-8 *content* to *path* atomically."""
    atomic_write_bytes(path, content.encode("utf-8"), mode=mode)


def write_if_changed(path: Path, content: str, *, mode: int = 0o644) -> bool:
    """Atomically write *content* unless the file already matches; return ``True`` on change."""
    if path.exists():
        try:
            current = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            current = None
        if current == content and (path.stat().st_mode & 0o777) == mode:
            return False
    atomic_write_text(path, content, mode=mode)
    return True


def backup_path_for(path: Path, *, now: datetime | None = None) -> Path:
    """Return an unused ``<path>.bak.<YYYYmmddHHMMSS>`` sibling of *path*."""
    moment = (now or datetime.now()).replace(microsecond=0)
    candidate = path.with_name(f"{path.name}.bak.{moment.strftime(BACKUP_TIMESTAMP_FORMAT)}")
    while candidate.exists():
        moment += timedelta(seconds=1)
        candidate = path.with_name(
            f"{path.name}.bak.{moment.strftime(BACKUP_TIMESTAMP_FORMAT)}"
        )
    return candidate


def back_up(path: Path, *, now: datetime | None = None) -> Path | None:
    """Copy *path* verbatim to a timestamped backup, returning the backup path."""
    if not path.exists():
        return None
    backup_path = backup_path_for(path, now=now)
    mode = path.stat().st_mode & 0o777
    atomic_write_bytes(backup_path, path.read_bytes(), mode=mode)
    return backup_path


__all__ = [
    "BACKUP_TIMESTAMP_FORMAT",
    "atomic_write_bytes",
    "atomic_write_text",
    "back_up",
    "backup_path_for",
    "write_if_changed",
]
