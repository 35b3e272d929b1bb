import datetime
import enum
import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class ChangeKind(enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class ChangeRecord:
    """The coalesced state of one path awaiting synchronization.

    Attributes:
        path (str): POSIX path relative to the project root; the ledger key.
        kind (ChangeKind): The net change since the last flush.
        observed_at (datetime): Time of the most recent event for this path.
    """

    path: str
    kind: ChangeKind
    observed_at: datetime.datetime = field(default_factory=_now)


@dataclass(frozen=True)
class SyncJob:
    """An immutable batch handed to the executor exactly once.

    Attributes:
        records (tuple[ChangeRecord, ...]): The snapshot, in capture order.
        message (str): The composed commit message.
        created_at (datetime): When the snapshot was taken.
    """

    records: tuple[ChangeRecord, ...]
    message: str
    created_at: datetime.datetime = field(default_factory=_now)

    @property
    def paths(self) -> list[str]:
        return [r.path for r in self.records]


def transition(existing: ChangeKind | None, new: ChangeKind) -> ChangeKind | None:
    """Resolves the net kind after `new` is observed on a path currently `existing`.

    Returns:
        ChangeKind | None: The resulting kind, or None when the path nets out
        to no change (added, then deleted before a flush).
    """
    if existing is None:
        return new
    if existing is ChangeKind.ADDED:
        if new is ChangeKind.DELETED:
            return None
        # Added then edited before flush is still a new file.
        return ChangeKind.ADDED
    return new


class ChangeLedger:
    """Coalesces file events into at most one `ChangeRecord` per path.

    All access goes through a single lock. `snapshot_and_clear` swaps the
    underlying map inside that lock, so a concurrent `record` lands either in
    the returned snapshot or in the fresh map, never both and never neither.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, ChangeRecord] = {}

    def record(
        self,
        path: str,
        kind: ChangeKind,
        observed_at: datetime.datetime | None = None,
    ) -> ChangeKind | None:
        """Applies one event to the ledger.

        Args:
            path (str): The project-relative path.
            kind (ChangeKind): The observed event kind.
            observed_at (datetime | None): Event time; defaults to now.

        Returns:
            ChangeKind | None: The path's resulting kind, or None if it was removed.
        """
        observed_at = observed_at or _now()
        with self._lock:
            existing = self._records.get(path)
            result = transition(existing.kind if existing else None, kind)
            if result is None:
                self._records.pop(path, None)
            else:
                # Reassigning an existing key keeps its first-observation position.
                self._records[path] = ChangeRecord(path, result, observed_at)
            size = len(self._records)

        logger.debug(
            f"LEDGER: {kind.value} {path} -> {result.value if result else 'removed'} "
            f"({size} tracked)"
        )
        return result

    def snapshot_and_clear(self) -> list[ChangeRecord]:
        """Atomically drains the ledger.

        Returns:
            list[ChangeRecord]: The records, in first-observation order.
        """
        with self._lock:
            records, self._records = self._records, {}
        if records:
            logger.debug(f"LEDGER: Drained {len(records)} tracked changes")
        return list(records.values())

    def restore(self, records: Iterable[ChangeRecord]) -> None:
        """Re-inserts the records of a failed job.

        The restored records are older than anything recorded since the
        snapshot, so each one is replayed *before* the current entry for its
        path, and restored paths regain their place ahead of newer paths.
        """
        with self._lock:
            merged: dict[str, ChangeRecord] = {}
            for old in records:
                merged[old.path] = old

            for path, current in self._records.items():
                previous = merged.get(path)
                if previous is None:
                    merged[path] = current
                    continue
                result = transition(previous.kind, current.kind)
                if result is None:
                    del merged[path]
                else:
                    merged[path] = ChangeRecord(path, result, current.observed_at)

            self._records = merged
            size = len(merged)

        logger.info(f"LEDGER: Restored failed changes ({size} tracked)")

    def size(self) -> int:
        with self._lock:
            return len(self._records)

    def __len__(self) -> int:
        return self.size()

    def paths(self) -> list[str]:
        with self._lock:
            return list(self._records)
