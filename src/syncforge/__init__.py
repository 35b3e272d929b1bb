"""Syncforge: Periodic checkpointing of file changes into a tracking repository.

This package watches a project directory, coalesces file-level changes in a
ledger, and periodically commits and pushes each batch as one checkpoint to a
dedicated remote git repository.
"""

from . import (
    classifier,
    cli,
    config,
    constants,
    daemon,
    errors,
    events,
    executor,
    gate,
    git_wrapper,
    ledger,
    pipeline,
    scheduler,
    summary,
    watcher,
)

__all__ = [
    "classifier",
    "cli",
    "config",
    "constants",
    "daemon",
    "errors",
    "events",
    "executor",
    "gate",
    "git_wrapper",
    "ledger",
    "pipeline",
    "scheduler",
    "summary",
    "watcher",
]
