"""Tests for atomic writes and timestamped backups."""
from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path

from vlinkctl.files import atomic_write_text, back_up, backup_path_for, write_if_changed

BACKUP_PATTERN = re.compile(r"\.bak\.\d{14}$")


def test_atomic_write_sets_mode_and_leaves_no_temp_files(tmp_path: Path) -> None:
    """Atomic writes create parents, apply the mode and clean up temporaries."""
    target = tmp_path / "nested" / "server.yaml"

    atomic_write_text(target, "a: 1\n", mode=0o600)

    assert target.read_text(encoding="utf-8") == "a: 1\n"
    assert target.stat().st_mode & 0o777 == 0o600
    assert sorted(p.name for p in target.parent.iterdir()) == ["server.yaml"]


def test_write_if_changed_reports_changes(tmp_path: Path) -> None:
    """Identical content with the same mode is not rewritten."""
    target = tmp_path / "unit.service"

    assert write_if_changed(target, "x\n") is True
    assert write_if_changed(target, "x\n") is False
    assert write_if_changed(target, "x\n", mode=0o600) is True
    assert write_if_changed(target, "y\n", mode=0o600) is True
    assert target.read_text(encoding="utf-8") == "y\n"


def test_backup_copies_content_and_mode(tmp_path: Path) -> None:
    """Backups are verbatim siblings with a fourteen digit timestamp suffix."""
    original = tmp_path / ".env"
    atomic_write_text(original, "JWT_SECRET=abc\n", mode=0o600)

    backup = back_up(original)

    assert backup is not None
    assert backup.parent == tmp_path
    assert BACKUP_PATTERN.search(backup.name)
    assert backup.read_text(encoding="utf-8") == "JWT_SECRET=abc\n"
    assert backup.stat().st_mode & 0o777 == 0o600
    assert original.exists()


def test_backup_of_missing_file_is_none(tmp_path: Path) -> None:
    """Nothing is backed up when the source does not exist."""
    assert back_up(tmp_path / "absent.yaml") is None


def test_backup_path_avoids_collisions(tmp_path: Path) -> None:
    """A taken timestamp advances by one second."""
    original = tmp_path / "node.yaml"
    moment = datetime(2026, 1, 2, 3, 4, 5)
    (tmp_path / "node.yaml.bak.20260102030405").write_text("old", encoding="utf-8")

    candidate = backup_path_for(original, now=moment)

    assert candidate.name == "node.yaml.bak.20260102030406"
