"""Tests for change coalescing in the ledger."""

import datetime
import threading

import pytest

from syncforge.ledger import ChangeKind, ChangeLedger, ChangeRecord, SyncJob, transition

A, M, D = ChangeKind.ADDED, ChangeKind.MODIFIED, ChangeKind.DELETED


@pytest.mark.parametrize(
    "existing, new, expected",
    [
        (None, A, A),
        (None, M, M),
        (None, D, D),
        (A, M, A),  # a new file edited before flush is still new
        (A, D, None),  # created and removed between flushes: nothing to sync
        (A, A, A),
        (M, M, M),
        (M, D, D),
        (M, A, A),
        (D, A, A),
        (D, M, M),
        (D, D, D),
    ],
)
def test_transition_table(
    existing: ChangeKind | None, new: ChangeKind, expected: ChangeKind | None
) -> None:
    assert transition(existing, new) is expected


def test_record_coalesces_per_path() -> None:
    ledger = ChangeLedger()

    assert ledger.record("a.py", A) is A
    assert ledger.record("a.py", M) is A
    assert ledger.record("b.py", M) is M
    assert ledger.size() == 2

    assert ledger.record("a.py", D) is None
    assert ledger.paths() == ["b.py"]
    assert len(ledger) == 1


def test_record_keeps_latest_timestamp() -> None:
    ledger = ChangeLedger()
    first = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    second = first + datetime.timedelta(minutes=5)

    ledger.record("a.py", M, observed_at=first)
    ledger.record("a.py", M, observed_at=second)

    (record,) = ledger.snapshot_and_clear()
    assert record.observed_at == second


def test_snapshot_preserves_first_observation_order() -> None:
    ledger = ChangeLedger()
    for path in ["c.py", "a.py", "b.py"]:
        ledger.record(path, M)
    ledger.record("c.py", M)  # re-touching does not move it to the back

    assert [r.path for r in ledger.snapshot_and_clear()] == ["c.py", "a.py", "b.py"]
    assert ledger.size() == 0
    assert ledger.snapshot_and_clear() == []


def test_restore_replays_failed_records_before_newer_events() -> None:
    """A failed batch is older than anything recorded after the snapshot."""
    ledger = ChangeLedger()
    ledger.record("new.py", A)
    ledger.record("gone.py", A)
    failed = ledger.snapshot_and_clear()

    # Events arriving while the failed job was in flight.
    ledger.record("new.py", M)
    ledger.record("gone.py", D)
    ledger.record("later.py", M)

    ledger.restore(failed)

    records = {r.path: r.kind for r in ledger.snapshot_and_clear()}
    assert records == {"new.py": A, "later.py": M}


def test_restore_puts_failed_paths_first() -> None:
    ledger = ChangeLedger()
    ledger.record("old.py", M)
    failed = ledger.snapshot_and_clear()
    ledger.record("fresh.py", M)

    ledger.restore(failed)

    assert ledger.paths() == ["old.py", "fresh.py"]


def test_sync_job_paths() -> None:
    job = SyncJob(records=(ChangeRecord("a.ts", A), ChangeRecord("b.ts", M)), message="m")
    assert job.paths == ["a.ts", "b.ts"]
    assert job.created_at.tzinfo is not None


def test_concurrent_record_and_snapshot_lose_nothing() -> None:
    """Every recorded path ends up in exactly one snapshot."""
    ledger = ChangeLedger()
    snapshots: list[ChangeRecord] = []
    done = threading.Event()

    def writer(prefix: str) -> None:
        for i in range(500):
            ledger.record(f"{prefix}/{i}.py", M)

    def drainer() -> None:
        while not done.is_set():
            snapshots.extend(ledger.snapshot_and_clear())

    threads = [threading.Thread(target=writer, args=(p,)) for p in ("x", "y", "z")]
    drain_thread = threading.Thread(target=drainer)
    drain_thread.start()
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    done.set()
    drain_thread.join()
    snapshots.extend(ledger.snapshot_and_clear())

    paths = [r.path for r in snapshots]
    assert len(paths) == 1500
    assert len(set(paths)) == 1500
