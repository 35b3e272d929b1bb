"""Tests for path classification."""

from pathlib import Path, PurePath

import pytest

from syncforge.classifier import (
    ChangeClassifier,
    ClassifierRules,
    Verdict,
    classify,
    relative_path,
)

ROOT = PurePath("/work/project")
TRACKING = PurePath("/work/project/.syncforge")


@pytest.fixture
def rules() -> ClassifierRules:
    return ClassifierRules(
        project_root=ROOT,
        tracking_dir=TRACKING,
        exclude=("node_modules/", "*.min.js", "build/**"),
    )


@pytest.mark.parametrize(
    "path, verdict",
    [
        ("/work/project/src/app.py", Verdict.ACCEPT),
        ("src/app.TS", Verdict.ACCEPT),  # extension match is case-insensitive
        ("README.md", Verdict.ACCEPT),
        ("/work/project/.syncforge/changes/x.py", Verdict.REJECT),  # bookkeeping dir
        ("/elsewhere/app.py", Verdict.REJECT),  # outside the project
        ("../sibling/app.py", Verdict.REJECT),  # escapes the project
        ("node_modules/pkg/index.js", Verdict.REJECT),
        ("static/app.min.js", Verdict.REJECT),
        ("build/out/main.py", Verdict.REJECT),
        ("notes.txt", Verdict.REJECT),  # extension not tracked
        ("Makefile", Verdict.REJECT),  # no extension
        ("/work/project", Verdict.REJECT),  # the root itself
    ],
)
def test_classify_rules(rules: ClassifierRules, path: str, verdict: Verdict) -> None:
    assert classify(path, rules) is verdict


def test_bookkeeping_dir_wins_over_everything() -> None:
    """A tracked file inside the tracking directory is still rejected."""
    rules = ClassifierRules(project_root=ROOT, tracking_dir=ROOT / "track")
    assert classify("track/app.py", rules) is Verdict.REJECT
    assert classify("tracker/app.py", rules) is Verdict.ACCEPT


def test_relative_path_normalizes() -> None:
    assert relative_path("/work/project/a/../b/c.py", ROOT) == "b/c.py"
    assert relative_path("a/b.py", ROOT) == "a/b.py"
    assert relative_path("/tmp/x.py", ROOT) is None


def test_update_exclude_patterns_applies_to_subsequent_calls(
    rules: ClassifierRules, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies the rule set is swapped and the change is logged."""
    classifier = ChangeClassifier(rules)
    assert classifier.accepts("docs/guide.md")

    with caplog.at_level("INFO", logger="syncforge"):
        classifier.update_exclude_patterns(["docs/"])

    assert not classifier.accepts("docs/guide.md")
    # Old patterns are replaced, not extended.
    assert classifier.accepts("node_modules/pkg/index.js")
    assert classifier.rules.exclude == ("docs/",)
    assert "Updated exclude patterns to: docs/" in caplog.text


def test_classifier_accepts_path_objects(tmp_path: Path) -> None:
    classifier = ChangeClassifier(
        ClassifierRules(project_root=tmp_path, tracking_dir=tmp_path / ".track")
    )
    assert classifier.classify(tmp_path / "main.go") is Verdict.ACCEPT
    assert classifier.classify(tmp_path / ".track" / "main.go") is Verdict.REJECT
