from hypothesis import given
from hypothesis import strategies as st

from syncforge.ledger import ChangeKind, ChangeLedger, transition

# Strategy: a stream of (path, kind) events over a small set of paths, so the
# same path is hit repeatedly and every transition gets exercised.
events_strategy = st.lists(
    st.tuples(
        st.sampled_from(["a.py", "b.ts", "src/c.go", "docs/d.md"]),
        st.sampled_from(list(ChangeKind)),
    ),
    max_size=60,
)


def _fold(events: list[tuple[str, ChangeKind]]) -> dict[str, ChangeKind]:
    model: dict[str, ChangeKind] = {}
    for path, kind in events:
        result = transition(model.get(path), kind)
        if result is None:
            model.pop(path, None)
        else:
            model[path] = result
    return model


@given(events=events_strategy)
def test_ledger_matches_transition_fold(events: list[tuple[str, ChangeKind]]) -> None:
    """
    Property: After any event stream the ledger holds exactly the per-path fold
    of the transition table, with one record per path.
    """
    ledger = ChangeLedger()
    for path, kind in events:
        ledger.record(path, kind)

    snapshot = ledger.snapshot_and_clear()

    assert {r.path: r.kind for r in snapshot} == _fold(events)
    assert len({r.path for r in snapshot}) == len(snapshot)
    assert ledger.size() == 0


@given(first=events_strategy, second=events_strategy)
def test_snapshot_splits_stream_without_loss(
    first: list[tuple[str, ChangeKind]], second: list[tuple[str, ChangeKind]]
) -> None:
    """
    Property: Snapshotting mid-stream partitions the events; each half is
    coalesced on its own and nothing from either half is dropped or duplicated.
    """
    ledger = ChangeLedger()
    for path, kind in first:
        ledger.record(path, kind)
    head = ledger.snapshot_and_clear()
    for path, kind in second:
        ledger.record(path, kind)
    tail = ledger.snapshot_and_clear()

    assert {r.path: r.kind for r in head} == _fold(first)
    assert {r.path: r.kind for r in tail} == _fold(second)


@given(events=events_strategy)
def test_restore_without_new_events_is_identity(
    events: list[tuple[str, ChangeKind]],
) -> None:
    """
    Property: Restoring a failed snapshot into an idle ledger reproduces the
    snapshot exactly, order included.
    """
    ledger = ChangeLedger()
    for path, kind in events:
        ledger.record(path, kind)

    snapshot = ledger.snapshot_and_clear()
    ledger.restore(snapshot)

    assert ledger.snapshot_and_clear() == snapshot
