import enum
import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import PurePath

import pathspec

from .constants import APP_NAME, TRACKED_EXTENSIONS

logger = logging.getLogger(APP_NAME)


class Verdict(enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True)
class ClassifierRules:
    """An immutable rule set for `classify`.

    Attributes:
        project_root (PurePath): Absolute root of the watched project.
        tracking_dir (PurePath): Absolute path of our own bookkeeping directory.
        exclude (tuple[str, ...]): Gitignore-style glob patterns, in order.
        extensions (frozenset[str]): Lowercase extensions (no dot) to accept.
    """

    project_root: PurePath
    tracking_dir: PurePath
    exclude: tuple[str, ...] = ()
    extensions: frozenset[str] = TRACKED_EXTENSIONS
    _spec: pathspec.PathSpec = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_spec", pathspec.GitIgnoreSpec.from_lines(list(self.exclude))
        )

    def with_exclude(self, patterns: Iterable[str]) -> "ClassifierRules":
        return ClassifierRules(
            project_root=self.project_root,
            tracking_dir=self.tracking_dir,
            exclude=tuple(patterns),
            extensions=self.extensions,
        )


def _absolute(path: str | PurePath, root: PurePath) -> PurePath:
    candidate = PurePath(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    # Collapse '..' segments lexically; no filesystem access.
    return PurePath(os.path.normpath(candidate))


def relative_path(path: str | PurePath, project_root: PurePath) -> str | None:
    """Returns `path` relative to `project_root` in POSIX form, or None if outside."""
    absolute = _absolute(path, project_root)
    if not absolute.is_relative_to(project_root):
        return None
    return absolute.relative_to(project_root).as_posix()


def classify(path: str | PurePath, rules: ClassifierRules) -> Verdict:
    """Decides whether a filesystem event path should be tracked.

    Rules, first match wins:
    1. Inside the bookkeeping directory: reject (avoids self-tracking loops).
    2. Outside the project root: reject.
    3. Matches an exclude pattern: reject.
    4. Extension not in the allow-list: reject.
    5. Otherwise accept.

    Args:
        path (str | PurePath): Absolute path, or a path relative to the project root.
        rules (ClassifierRules): The rule set to evaluate against.

    Returns:
        Verdict: ACCEPT or REJECT.
    """
    absolute = _absolute(path, rules.project_root)

    if absolute.is_relative_to(rules.tracking_dir):
        return Verdict.REJECT

    relative = relative_path(absolute, rules.project_root)
    if not relative or relative == ".":
        return Verdict.REJECT

    if rules._spec.match_file(relative):
        return Verdict.REJECT

    extension = PurePath(relative).suffix.lower().lstrip(".")
    if not extension or extension not in rules.extensions:
        return Verdict.REJECT

    return Verdict.ACCEPT


class ChangeClassifier:
    """Holds the current `ClassifierRules` and applies them to event paths.

    The rule set is replaced wholesale on update, so readers on other threads
    always see either the old or the new rules, never a mix.
    """

    def __init__(self, rules: ClassifierRules):
        self._rules = rules
        self._lock = threading.Lock()

    @property
    def rules(self) -> ClassifierRules:
        return self._rules

    def classify(self, path: str | PurePath) -> Verdict:
        verdict = classify(path, self._rules)
        logger.debug(f"CLASSIFY: {path} -> {verdict.value}")
        return verdict

    def accepts(self, path: str | PurePath) -> bool:
        return self.classify(path) is Verdict.ACCEPT

    def update_exclude_patterns(self, patterns: Iterable[str]) -> None:
        """Replaces the exclude patterns used for subsequent classifications."""
        patterns = list(patterns)
        with self._lock:
            self._rules = self._rules.with_exclude(patterns)
        logger.info(f"CONFIG: Updated exclude patterns to: {', '.join(patterns)}")
