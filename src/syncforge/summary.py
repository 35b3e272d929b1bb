"""Default commit message composition for a batch of changes.

The message is plain text with three parts: a timestamped title, a `Changes:`
list, and a `Code Snippets:` section of fenced blocks. The executor parses the
fenced blocks back out (`extract_snippets`) and materializes each one as a file
in the tracking repository.
"""

import datetime
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, MESSAGE_HEADER, SNIPPET_LINES
from .errors import GitCommandError
from .git_wrapper import GitRepo
from .ledger import ChangeKind, ChangeRecord

logger = logging.getLogger(APP_NAME)

SNIPPET_PATTERN = re.compile(r"```\n(.*?):\n([\s\S]*?)```")
HEADER_PATTERN = re.compile(rf"{re.escape(MESSAGE_HEADER)} - [0-9T:.+\-Z]+")

_SYMBOL_PATTERN = re.compile(
    r"^([+-])\s*(?:async\s+)?(?:(?:def|function|class|const|let|var)\s+)?([A-Za-z_$][\w$]*)"
)
_COMMENT_PATTERN = re.compile(r"^[+-]\s*(//|#)")


@dataclass(frozen=True)
class TimestampFormat:
    """A timestamp rendered for filenames (sortable) and for humans (readable)."""

    sortable: str
    readable: str


def format_timestamp(moment: datetime.datetime | None = None) -> TimestampFormat:
    """Formats a moment in local time.

    The sortable form orders lexicographically and carries microseconds, so
    two jobs materialized back to back never share a prefix.
    """
    moment = (moment or datetime.datetime.now()).astimezone()
    return TimestampFormat(
        sortable=moment.strftime("%Y-%m-%d-%H%M%S-%f"),
        readable=moment.strftime("%B %d, %Y at %I:%M:%S %p %Z").strip(),
    )


def rewrite_header(message: str, stamp: TimestampFormat) -> str:
    """Replaces the ISO timestamp in the message title with a readable one."""
    return HEADER_PATTERN.sub(f"{MESSAGE_HEADER} - {stamp.readable}", message, count=1)


def extract_snippets(message: str) -> list[tuple[str, str]]:
    """Returns `(filename, code)` pairs for every fenced snippet, in message order."""
    return [
        (name.strip(), code.strip())
        for name, code in SNIPPET_PATTERN.findall(message)
        if name.strip()
    ]


def condense_message(message: str, limit: int = 500) -> str:
    """Shortens a composed message to its summary part plus a file count."""
    condensed = message.split("Code Snippets:")[0].strip()
    blocks = message.count("```") // 2
    condensed += f"\n({blocks} file{'s' if blocks != 1 else ''} modified)"
    if len(condensed) > limit:
        condensed = condensed[: limit - 3] + "..."
    return condensed


def describe_diff(diff: str, filename: str) -> str:
    """Summarizes a unified diff as the symbols it added, removed, or modified.

    A name that is both added and removed counts as modified.

    Args:
        diff (str): The unified diff text.
        filename (str): The base name used as the description prefix.

    Returns:
        str: e.g. ``"app.py (modified run; added helper)"`` or just the file name.
    """
    if not diff:
        return filename

    added: dict[str, None] = {}
    removed: dict[str, None] = {}
    modified: dict[str, None] = {}

    for line in diff.splitlines():
        if not line.strip() or line.startswith(("+++", "---")):
            continue
        if _COMMENT_PATTERN.match(line):
            continue
        match = _SYMBOL_PATTERN.match(line)
        if not match:
            continue

        sign, name = match.groups()
        if sign == "+":
            added[name] = None
        else:
            removed[name] = None

        if name in added and name in removed:
            modified[name] = None
            del added[name]
            del removed[name]

    parts = []
    if modified:
        parts.append(f"modified {', '.join(modified)}")
    if added:
        parts.append(f"added {', '.join(added)}")
    if removed:
        parts.append(f"removed {', '.join(removed)}")

    return f"{filename} ({'; '.join(parts)})" if parts else filename


def format_snippet(content: str, filename: str, max_lines: int = SNIPPET_LINES) -> str:
    lines = content.split("\n")
    shown = lines[:max_lines]
    if len(lines) > max_lines:
        shown.append("... (truncated for brevity)")
    body = "\n".join(shown)
    return f"```\n{filename}:\n{body}\n```"


class MessageComposer:
    """Builds commit messages for a batch of `ChangeRecord`s.

    Callable as ``composer(records) -> str``. If the project root is itself a
    git repository, each file's diff against HEAD is summarized into the
    change list; otherwise only file names are listed.
    """

    def __init__(
        self,
        project_root: Path,
        snippet_lines: int = SNIPPET_LINES,
        repo: GitRepo | None = None,
    ):
        self.project_root = project_root
        self.snippet_lines = snippet_lines
        if repo is None and GitRepo.is_repository(project_root):
            repo = GitRepo(project_root)
        self.repo = repo

    def __call__(self, records: Sequence[ChangeRecord]) -> str:
        timestamp = datetime.datetime.now(datetime.timezone.utc).isoformat()
        try:
            details = []
            snippets = []
            for record in records:
                detail, snippet = self._describe(record)
                details.append(f"- {record.kind.value}: {detail}")
                if snippet:
                    snippets.append(snippet)

            summary = f"{MESSAGE_HEADER} - {timestamp}\n\n"
            summary += "Changes:\n" + "".join(f"{line}\n" for line in details)
            summary += "\nCode Snippets:\n" + "".join(f"\n{s}\n" for s in snippets)

            logger.debug(f"COMPOSE: Generated summary for {len(records)} changes")
            return summary

        except Exception as e:
            logger.error(f"COMPOSE ERROR: {e}")
            return f"{MESSAGE_HEADER} - {timestamp}\nUpdated files"

    def _describe(self, record: ChangeRecord) -> tuple[str, str]:
        filename = Path(record.path).name
        if record.kind is ChangeKind.DELETED:
            return filename, ""

        diff = ""
        if self.repo is not None and record.kind is ChangeKind.MODIFIED:
            try:
                diff = self.repo.diff(record.path)
            except GitCommandError as e:
                logger.debug(f"Diff unavailable for {record.path}: {e}")

        try:
            content = (self.project_root / record.path).read_text(errors="replace")
        except OSError as e:
            logger.warning(f"Failed to read {record.path} for snippet: {e}")
            return describe_diff(diff, filename), ""

        return (
            describe_diff(diff, filename),
            format_snippet(content, filename, self.snippet_lines),
        )
