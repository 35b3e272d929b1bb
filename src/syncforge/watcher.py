import logging
import os
from collections.abc import Callable
from pathlib import Path

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from .constants import APP_NAME
from .ledger import ChangeKind

logger = logging.getLogger(APP_NAME)

EventSink = Callable[[str, ChangeKind], object]


class ProjectWatcher(FileSystemEventHandler):
    """Translates watchdog events for a project tree into ledger events.

    Directory events are ignored. A move is reported as a deletion of the
    source path followed by a creation at the destination.
    """

    def __init__(self, project_root: Path, sink: EventSink):
        super().__init__()
        self.project_root = project_root
        self.sink = sink
        self._observer: Observer | None = None

    def _emit(self, path: bytes | str, kind: ChangeKind) -> None:
        try:
            self.sink(os.fsdecode(path), kind)
        except Exception:
            logger.exception(f"WATCH: Failed to record {kind.value} for {path!r}")

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.ADDED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.DELETED)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            return
        self._emit(event.src_path, ChangeKind.DELETED)
        self._emit(event.dest_path, ChangeKind.ADDED)

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(self, str(self.project_root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"WATCH: Observing {self.project_root}")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info(f"WATCH: Stopped observing {self.project_root}")
