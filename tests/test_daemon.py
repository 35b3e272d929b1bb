"""Tests for the daemon runner and one-off sync."""

import datetime
import logging
import os
from collections.abc import Iterator
from concurrent.futures import Future
from logging.handlers import RotatingFileHandler
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from syncforge import daemon
from syncforge.config import Config
from syncforge.ledger import ChangeKind


@pytest.fixture
def clean_logger() -> Iterator[logging.Logger]:
    """Removes any handlers a test attaches to the application logger."""
    before = list(daemon.logger.handlers)
    yield daemon.logger
    for handler in daemon.logger.handlers[:]:
        if handler not in before:
            daemon.logger.removeHandler(handler)
            handler.close()


def test_setup_logging_daemon_mode_rotates_to_file(
    tmp_path: Path, clean_logger: logging.Logger
) -> None:
    log_file = tmp_path / "logs" / "daemon.log"

    daemon.setup_logging(interactive=False, log_file=log_file, max_bytes=1024)
    clean_logger.info("SUCCESS demo: Pushed main.")

    rotating = [h for h in clean_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(rotating) == 1
    assert rotating[0].maxBytes == 1024
    assert rotating[0].backupCount == 5
    rotating[0].flush()
    assert "INFO: SUCCESS demo: Pushed main." in log_file.read_text()


def test_setup_logging_interactive_has_no_file(
    tmp_path: Path, clean_logger: logging.Logger
) -> None:
    log_file = tmp_path / "daemon.log"

    daemon.setup_logging(interactive=True, log_file=log_file)

    assert not any(isinstance(h, RotatingFileHandler) for h in clean_logger.handlers)
    assert not log_file.exists()


def test_iter_modified_files_respects_threshold_and_skips(tmp_path: Path) -> None:
    old = tmp_path / "old.py"
    new = tmp_path / "src" / "new.py"
    new.parent.mkdir()
    old.write_text("old")
    new.write_text("new")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config.py").write_text("ignored")
    (tmp_path / "track").mkdir()
    (tmp_path / "track" / "x.py").write_text("ignored")

    past = datetime.datetime(2020, 1, 1, tzinfo=datetime.timezone.utc)
    os.utime(old, (past.timestamp(), past.timestamp()))
    since = past + datetime.timedelta(days=1)

    found = set(daemon.iter_modified_files(tmp_path, since, skip=[tmp_path / "track"]))
    assert found == {new}

    everything = set(daemon.iter_modified_files(tmp_path, None, skip=[tmp_path / "track"]))
    assert everything == {old, new}


def test_environment_collaborator(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config = Config()
    config.core.remote_url = "https://example.com/me/track.git"
    monkeypatch.setenv("SYNCFORGE_TOKEN", "tok")

    collaborator = daemon.EnvironmentCollaborator(tmp_path, config)
    assert collaborator.get_remote_url() == "https://example.com/me/track.git"
    assert collaborator.get_credentials() == "tok"

    override = daemon.EnvironmentCollaborator(tmp_path, config, remote_url="/srv/track.git")
    assert override.get_remote_url() == "/srv/track.git"


def test_sync_once_records_changed_files_and_waits(
    tmp_path: Path, mocker: MagicMock
) -> None:
    """Verifies the one-off sync records modified files, flushes and tears down."""
    project = tmp_path / "project"
    project.mkdir()
    (project / "a.py").write_text("a")

    pipeline = MagicMock()
    pipeline.project_root = project
    pipeline.tracking_dir = tmp_path / "tracking"
    pipeline.executor.state.last_sync = None
    future: Future = Future()
    future.set_result("abc123")
    pipeline.flush_now.return_value = future
    mocker.patch("syncforge.daemon.build_pipeline", return_value=pipeline)

    assert daemon.sync_once(project, Config(), remote_url="/srv/track.git") == "abc123"

    pipeline.executor.ensure_repository.assert_called_once()
    pipeline.on_file_event.assert_called_once_with(project / "a.py", ChangeKind.MODIFIED)
    pipeline.stop.assert_called_once_with()


def test_sync_once_with_nothing_to_do(tmp_path: Path, mocker: MagicMock) -> None:
    pipeline = MagicMock()
    pipeline.project_root = tmp_path
    pipeline.tracking_dir = tmp_path / "tracking"
    pipeline.executor.state.last_sync = datetime.datetime.now(
        datetime.timezone.utc
    ).isoformat()
    pipeline.flush_now.return_value = None
    mocker.patch("syncforge.daemon.build_pipeline", return_value=pipeline)

    assert daemon.sync_once(tmp_path, Config()) is None
    pipeline.stop.assert_called_once_with()


def test_run_stops_with_final_flush_on_signal(tmp_path: Path, mocker: MagicMock) -> None:
    pipeline = MagicMock()
    pipeline.project_root = tmp_path
    mocker.patch("syncforge.daemon.build_pipeline", return_value=pipeline)
    watcher_cls = mocker.patch("syncforge.daemon.ProjectWatcher")
    handlers = {}
    mocker.patch(
        "syncforge.daemon.signal.signal",
        side_effect=lambda signum, handler: handlers.setdefault(signum, handler),
    )

    # Deliver SIGTERM as soon as the watcher starts.
    watcher_cls.return_value.start.side_effect = lambda: handlers[
        daemon.signal.SIGTERM
    ](daemon.signal.SIGTERM, None)

    daemon.run(tmp_path, Config())

    pipeline.start.assert_called_once_with()
    watcher_cls.assert_called_once_with(tmp_path, pipeline.on_file_event)
    watcher_cls.return_value.stop.assert_called_once_with()
    pipeline.stop.assert_called_once_with(flush=True)
