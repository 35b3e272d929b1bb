import base64
import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future
from pathlib import Path
from typing import Protocol

from .classifier import ChangeClassifier, ClassifierRules, relative_path
from .config import Config
from .constants import APP_NAME
from .events import EventBus
from .executor import SyncExecutor
from .ledger import ChangeKind, ChangeLedger, ChangeRecord
from .scheduler import SyncScheduler

logger = logging.getLogger(APP_NAME)


class Collaborator(Protocol):
    """What the surrounding product supplies to the pipeline."""

    def compose_message(self, batch: Sequence[ChangeRecord]) -> str: ...

    def get_remote_url(self) -> str: ...

    def get_credentials(self) -> str | None: ...


def project_identifier(project_root: Path) -> str:
    """Derives a filesystem-safe, stable identifier from a project path."""
    encoded = base64.b64encode(str(project_root).encode()).decode()
    return encoded.replace("/", "_").replace("+", "_").replace("=", "_")


def tracking_dir_for(project_root: Path, tracking_base: Path) -> Path:
    return tracking_base / project_identifier(project_root)


class SyncPipeline:
    """Wires classifier, ledger, scheduler and executor for one project.

    This is the surface the outside world talks to: a file watcher feeds
    `on_file_event`, settings arrive via `set_exclude_patterns` and
    `set_interval`, and callers observe progress through `subscribe`.

    Attributes:
        project_root (Path): The watched project directory.
        tracking_dir (Path): The tracking repository (our bookkeeping directory).
    """

    def __init__(
        self,
        project_root: Path,
        collaborator: Collaborator,
        config: Config | None = None,
        tracking_dir: Path | None = None,
        bus: EventBus | None = None,
    ):
        self.config = config or Config()
        self.project_root = project_root.resolve()
        self.tracking_dir = (
            tracking_dir
            or tracking_dir_for(
                self.project_root, Path(self.config.tracking.tracking_base).expanduser()
            )
        ).resolve()
        self.collaborator = collaborator
        self.bus = bus or EventBus()

        self.classifier = ChangeClassifier(
            ClassifierRules(
                project_root=self.project_root,
                tracking_dir=self.tracking_dir,
                exclude=tuple(self.config.tracking.exclude),
                extensions=frozenset(self.config.tracking.extensions),
            )
        )
        self.ledger = ChangeLedger()
        self.executor = SyncExecutor(
            self.tracking_dir,
            config=self.config,
            bus=self.bus,
            credentials=collaborator.get_credentials,
        )
        self.scheduler = SyncScheduler(
            self.ledger,
            self.executor,
            collaborator.compose_message,
            bus=self.bus,
            pending_delay=self.config.scheduler.pending_delay,
        )
        self._interval = self.config.scheduler.interval_minutes

    # --- Inbound events ---

    def on_file_event(self, path: str | Path, kind: ChangeKind) -> bool:
        """Records a filesystem event if the classifier accepts its path.

        Returns:
            bool: True if the event was recorded.
        """
        if not self.classifier.accepts(path):
            return False
        relative = relative_path(path, self.project_root)
        if relative is None:
            return False
        self.ledger.record(relative, kind)
        logger.debug(f"TRACKED: {kind.value} in {relative} ({self.ledger.size()} pending)")
        return True

    # --- Inbound config ---

    def set_exclude_patterns(self, patterns: Iterable[str]) -> None:
        self.classifier.update_exclude_patterns(patterns)

    def set_interval(self, minutes: float) -> None:
        self._interval = minutes
        if self.scheduler.is_running:
            self.scheduler.update_frequency(minutes)

    # --- Triggers ---

    def flush_now(self) -> "Future[str] | None":
        """Forces a flush immediately, bypassing the timer."""
        return self.scheduler.flush()

    def subscribe(self, event_type: type, handler: Callable) -> Callable[[], None]:
        return self.bus.subscribe(event_type, handler)

    # --- Lifecycle ---

    def start(self) -> None:
        """Sets up the tracking repository, then arms the flush timer.

        Raises:
            SyncError: If the repository could not be set up; nothing is scheduled.
        """
        self.executor.ensure_repository(self.collaborator.get_remote_url())
        self.scheduler.start(self._interval)

    def stop(self, flush: bool = False, timeout: float | None = None) -> None:
        """Stops scheduling; optionally drains the ledger with one last flush.

        The in-flight flush (if any) is always allowed to finish.
        """
        self.scheduler.stop()
        self.scheduler.wait_idle(timeout)
        if flush:
            future = self.flush_now()
            if future is not None:
                try:
                    future.result(timeout)
                except Exception as e:
                    logger.warning(f"Final flush did not complete: {e}")
        self.executor.close()
