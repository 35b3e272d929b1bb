"""Tests for the Command Line Interface (CLI) module."""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from syncforge import cli
from syncforge.config import Config
from syncforge.errors import AuthenticationError, ConfigurationError
from syncforge.pipeline import tracking_dir_for


@pytest.fixture
def config(tmp_path: Path, mocker: MagicMock) -> Config:
    conf = Config()
    conf.tracking.tracking_base = str(tmp_path / "tracking")
    mocker.patch("syncforge.cli.Config.load", return_value=conf)
    mocker.patch.object(Path, "cwd", return_value=tmp_path / "project")
    mocker.patch("syncforge.cli.daemon.setup_logging")
    return conf


def _run_cli(mocker: MagicMock, *argv: str) -> None:
    mocker.patch.object(sys, "argv", ["syncforge", *argv])
    cli.main()


def test_show_status_uninitialized(
    tmp_path: Path, config: Config, capsys: pytest.CaptureFixture
) -> None:
    cli.show_status(tmp_path / "project")

    out = capsys.readouterr().out
    assert "Not initialized" in out


def test_show_status_reads_persisted_state(
    tmp_path: Path, config: Config, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that `show_status` reports the last sync from the state file.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        config (Config): The patched configuration.
        capsys (pytest.CaptureFixture): Pytest fixture for capturing stdout.
    """
    project = tmp_path / "project"
    tracking = tracking_dir_for(project.resolve(), tmp_path / "tracking")
    (tracking / ".git").mkdir(parents=True)
    (tracking / ".git" / "syncforge_state.json").write_text(
        json.dumps(
            {
                "branch": "main",
                "remote_url": "git@example.com:me/track.git",
                "last_commit": "0123456789abcdef",
                "last_sync": "2024-05-01T10:00:00+00:00",
                "last_change_count": 3,
            }
        )
    )

    cli.show_status(project)

    out = capsys.readouterr().out
    assert "git@example.com:me/track.git" in out
    assert "0123456789ab" in out
    assert "3 changes" in out


def test_watch_requires_remote(
    config: Config, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    run = mocker.patch("syncforge.cli.daemon.run")

    with pytest.raises(SystemExit) as exc_info:
        _run_cli(mocker, "watch")

    assert exc_info.value.code == 1
    run.assert_not_called()
    assert "No remote configured" in capsys.readouterr().out


def test_watch_passes_interval_and_remote(
    tmp_path: Path, config: Config, mocker: MagicMock
) -> None:
    run = mocker.patch("syncforge.cli.daemon.run")

    _run_cli(mocker, "watch", "--remote", "/srv/track.git", "--interval", "10m")

    run.assert_called_once_with(tmp_path / "project", config, remote_url="/srv/track.git")
    assert config.scheduler.frequency == 600


def test_now_reports_commit(
    config: Config, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    mocker.patch("syncforge.cli.daemon.sync_once", return_value="abcdef1234567890")

    _run_cli(mocker, "now")

    assert "Synced (abcdef123456)" in capsys.readouterr().out


def test_sync_errors_exit_nonzero(
    config: Config, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    mocker.patch(
        "syncforge.cli.daemon.sync_once",
        side_effect=ConfigurationError("Invalid remote URL: 'nope'"),
    )

    with pytest.raises(SystemExit) as exc_info:
        _run_cli(mocker, "now")

    assert exc_info.value.code == 1
    assert "ERROR:" in capsys.readouterr().out


def test_auth_errors_hint_at_token(
    config: Config,
    mocker: MagicMock,
    capsys: pytest.CaptureFixture,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("SYNCFORGE_TOKEN", raising=False)
    mocker.patch(
        "syncforge.cli.daemon.sync_once",
        side_effect=AuthenticationError(["push"], 128, "Authentication failed"),
    )

    with pytest.raises(SystemExit):
        _run_cli(mocker, "now")

    assert "SYNCFORGE_TOKEN" in capsys.readouterr().out


def test_config_list_prints_schema(
    config: Config, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    _run_cli(mocker, "config", "--list")

    out = capsys.readouterr().out
    assert "Syncforge Configuration Schema" in out
    assert "scheduler" in out


def test_open_config_creates_template(tmp_path: Path, mocker: MagicMock) -> None:
    config_file = tmp_path / "conf" / "config.toml"
    mocker.patch("syncforge.cli.CONFIG_FILE", config_file)
    mocker.patch.dict("os.environ", {"EDITOR": "true"})
    mock_run = mocker.patch("syncforge.cli.subprocess.run")

    cli.open_config()

    assert "[scheduler]" in config_file.read_text()
    mock_run.assert_called_once_with(["true", str(config_file)])
