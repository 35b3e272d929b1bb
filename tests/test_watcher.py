"""Tests for the watchdog event adapter."""

import time
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from syncforge.ledger import ChangeKind
from syncforge.watcher import ProjectWatcher


def _collecting_watcher(root: Path) -> tuple[ProjectWatcher, list[tuple[str, ChangeKind]]]:
    seen: list[tuple[str, ChangeKind]] = []
    return ProjectWatcher(root, lambda path, kind: seen.append((path, kind))), seen


def test_file_events_map_to_change_kinds(tmp_path: Path) -> None:
    watcher, seen = _collecting_watcher(tmp_path)

    watcher.dispatch(FileCreatedEvent(str(tmp_path / "a.py")))
    watcher.dispatch(FileModifiedEvent(str(tmp_path / "a.py")))
    watcher.dispatch(FileDeletedEvent(str(tmp_path / "b.py")))

    assert seen == [
        (str(tmp_path / "a.py"), ChangeKind.ADDED),
        (str(tmp_path / "a.py"), ChangeKind.MODIFIED),
        (str(tmp_path / "b.py"), ChangeKind.DELETED),
    ]


def test_move_is_delete_plus_add(tmp_path: Path) -> None:
    watcher, seen = _collecting_watcher(tmp_path)

    watcher.dispatch(FileMovedEvent(str(tmp_path / "old.py"), str(tmp_path / "new.py")))

    assert seen == [
        (str(tmp_path / "old.py"), ChangeKind.DELETED),
        (str(tmp_path / "new.py"), ChangeKind.ADDED),
    ]


def test_directory_events_are_ignored(tmp_path: Path) -> None:
    watcher, seen = _collecting_watcher(tmp_path)

    watcher.dispatch(DirCreatedEvent(str(tmp_path / "pkg")))

    assert seen == []


def test_sink_errors_are_logged_not_raised(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    def broken(_path: str, _kind: ChangeKind) -> None:
        raise RuntimeError("sink down")

    watcher = ProjectWatcher(tmp_path, broken)
    watcher.dispatch(FileCreatedEvent(str(tmp_path / "a.py")))

    assert "WATCH: Failed to record added" in caplog.text


def test_observer_reports_real_changes(tmp_path: Path) -> None:
    watcher, seen = _collecting_watcher(tmp_path)
    watcher.start()
    try:
        (tmp_path / "live.py").write_text("x = 1\n")
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline and not seen:
            time.sleep(0.05)
    finally:
        watcher.stop()

    assert any(path.endswith("live.py") for path, _ in seen)
