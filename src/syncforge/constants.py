from pathlib import Path

"""Global constants and default path definitions for Syncforge.

This module defines the default filesystem layout, application identifiers,
the file-type allow-list and the limits used by the synchronization pipeline.
Components receive these values through explicit arguments; nothing here is
read implicitly at call time.
"""

# --- Identity ---
APP_NAME = "syncforge"
"""str: The human-readable application name (also the logger name)."""

COMMIT_AUTHOR_NAME = "Syncforge"
"""str: The local git identity used inside the tracking repository."""

COMMIT_AUTHOR_EMAIL = "syncforge@localhost"
"""str: The local git email used inside the tracking repository."""

MESSAGE_HEADER = "Syncforge Update"
"""str: Prefix of every composed commit message title."""

# --- Paths ---
STATE_DIR = Path.home() / ".local/state/syncforge"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

CONFIG_DIR: Path = Path.home() / ".config/syncforge"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

TRACKING_BASE: Path = Path.home() / ".syncforge/tracking"
"""Path: Default parent directory of the per-project tracking repositories."""

CHANGES_DIR = "changes"
"""str: Directory (inside the tracking repository) holding materialized changes."""

STATE_FILE = "syncforge_state.json"
"""str: Name of the persisted repository state file inside `.git`."""

# --- Git / Remote ---
DEFAULT_REMOTE = "origin"
DEFAULT_BRANCH = "main"

TRACKING_GITIGNORE = """\
# Syncforge - ignore system files only
.DS_Store
node_modules/
.vscode/
*.log

# Ensure changes directory is tracked
!changes/
!changes/*
"""
"""str: Seed `.gitignore` written into a freshly initialized tracking repository."""

GIT_LOCK_FILES = [
    "MERGE_HEAD",
    "REBASE_HEAD",
    "CHERRY_PICK_HEAD",
    "rebase-merge",
    "rebase-apply",
]
"""
list[str]: Git internal files indicating an interrupted operation
(merge/rebase) left behind by a crash.
"""

# --- Tracking ---
TRACKED_EXTENSIONS = frozenset(
    {
        "ts",
        "js",
        "py",
        "java",
        "c",
        "cpp",
        "h",
        "hpp",
        "css",
        "scss",
        "html",
        "jsx",
        "tsx",
        "vue",
        "php",
        "rb",
        "go",
        "rs",
        "swift",
        "md",
        "json",
        "yml",
        "yaml",
    }
)
"""frozenset[str]: File extensions (without the dot) eligible for tracking."""

# --- Limits ---
PROCESS_LIMIT = 5
"""int: Maximum concurrent git subprocesses across the executor."""

MAX_RETRIES = 3
"""int: Attempts made for a git call failing with resource exhaustion."""

RETRY_DELAY = 1.0
"""float: Base backoff in seconds; attempt N waits RETRY_DELAY * N."""

PENDING_FLUSH_DELAY = 5.0
"""float: Seconds to wait before re-flushing after a flush that found work queued."""

DEFAULT_FREQUENCY = 30 * 60
"""int: Default seconds between scheduled flushes."""

SNIPPET_LINES = 50
"""int: Maximum lines of file content included per code snippet."""

# --- Credentials ---
TOKEN_ENV = "SYNCFORGE_TOKEN"
"""str: Environment variable holding the access token for HTTPS remotes."""
