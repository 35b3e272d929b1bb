import datetime
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterator, Sequence
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType

from .config import Config
from .constants import APP_NAME, LOG_FILE, TOKEN_ENV
from .ledger import ChangeKind, ChangeRecord
from .pipeline import SyncPipeline
from .summary import MessageComposer
from .watcher import ProjectWatcher

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


class EnvironmentCollaborator:
    """Supplies the remote from config and the token from the environment.

    Attributes:
        config (Config): The merged configuration for the project.
        composer (MessageComposer): Builds commit messages for each batch.
    """

    def __init__(self, project_root: Path, config: Config, remote_url: str | None = None):
        self.config = config
        self.remote_url = remote_url or config.core.remote_url
        self.composer = MessageComposer(project_root, config.limits.snippet_lines)

    def compose_message(self, batch: Sequence[ChangeRecord]) -> str:
        return self.composer(batch)

    def get_remote_url(self) -> str:
        return self.remote_url or ""

    def get_credentials(self) -> str | None:
        return os.environ.get(TOKEN_ENV)


def setup_logging(
    interactive: bool, log_file: Path = LOG_FILE, max_bytes: int = 5 * 1024 * 1024
) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr
                            and to a rotating log file.
        log_file (Path): Destination of the rotating file handler.
        max_bytes (int): Size at which the log file is rotated.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def build_pipeline(
    project_root: Path, config: Config, remote_url: str | None = None
) -> SyncPipeline:
    collaborator = EnvironmentCollaborator(project_root, config, remote_url)
    return SyncPipeline(project_root, collaborator, config=config)


def iter_modified_files(
    project_root: Path, since: datetime.datetime | None, skip: Sequence[Path] = ()
) -> Iterator[Path]:
    """Yields files under `project_root` modified after `since` (all files if None).

    `.git` directories and anything under `skip` are not descended into.
    """
    threshold = since.timestamp() if since else None
    skipped = {p.resolve() for p in skip}

    for dirpath, dirnames, filenames in os.walk(project_root):
        current = Path(dirpath)
        dirnames[:] = [
            d for d in dirnames if d != ".git" and (current / d).resolve() not in skipped
        ]
        for name in filenames:
            path = current / name
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if threshold is None or mtime > threshold:
                yield path


def sync_once(
    project_root: Path, config: Config, remote_url: str | None = None
) -> str | None:
    """Records every file changed since the last sync and syncs them immediately.

    Returns:
        str | None: The pushed commit SHA, or None if nothing had changed.

    Raises:
        SyncError: If setting up the repository or the sync itself failed.
    """
    pipeline = build_pipeline(project_root, config, remote_url)
    try:
        pipeline.executor.ensure_repository(pipeline.collaborator.get_remote_url())

        last_sync = pipeline.executor.state.last_sync
        since = datetime.datetime.fromisoformat(last_sync) if last_sync else None
        for path in iter_modified_files(
            pipeline.project_root, since, skip=[pipeline.tracking_dir]
        ):
            pipeline.on_file_event(path, ChangeKind.MODIFIED)

        future = pipeline.flush_now()
        if future is None:
            return None
        return future.result()
    finally:
        pipeline.stop()


def run(project_root: Path, config: Config, remote_url: str | None = None) -> None:
    """Watches `project_root` in the foreground until interrupted.

    SIGINT and SIGTERM stop the watcher, let the in-flight sync finish and
    flush whatever is left in the ledger one last time.
    """
    pipeline = build_pipeline(project_root, config, remote_url)
    pipeline.start()

    watcher = ProjectWatcher(pipeline.project_root, pipeline.on_file_event)
    stopped = threading.Event()

    def shutdown_handler(signum: int, _frame: FrameType | None) -> None:
        logger.info(f"SHUTDOWN: Received signal {signum}, stopping.")
        stopped.set()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    watcher.start()
    logger.info(
        f"WATCHING {pipeline.project_root.name}: syncing every "
        f"{config.scheduler.interval_minutes:g} minutes to {pipeline.tracking_dir}"
    )
    try:
        while not stopped.wait(1.0):
            pass
    finally:
        watcher.stop()
        pipeline.stop(flush=True)
        logger.info("SHUTDOWN: Complete.")
