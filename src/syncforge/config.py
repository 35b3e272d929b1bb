import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    COMMIT_AUTHOR_EMAIL,
    COMMIT_AUTHOR_NAME,
    CONFIG_FILE,
    DEFAULT_BRANCH,
    DEFAULT_FREQUENCY,
    DEFAULT_REMOTE,
    MAX_RETRIES,
    PENDING_FLUSH_DELAY,
    PROCESS_LIMIT,
    RETRY_DELAY,
    SNIPPET_LINES,
    TRACKED_EXTENSIONS,
    TRACKING_BASE,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, (int, float)):
        return int(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


@dataclass
class CoreConfig:
    """Core repository settings.

    Attributes:
        remote_name (str): The git remote the tracking repository pushes to.
        branch (str): The default branch of the tracking repository.
        remote_url (str | None): URL of the remote tracking repository.
        author_name (str): Local commit identity name.
        author_email (str): Local commit identity email.
    """

    remote_name: str = DEFAULT_REMOTE
    branch: str = DEFAULT_BRANCH
    remote_url: str | None = None
    author_name: str = COMMIT_AUTHOR_NAME
    author_email: str = COMMIT_AUTHOR_EMAIL


@dataclass
class TrackingConfig:
    """Change tracking settings.

    Attributes:
        exclude (list[str]): Glob patterns excluded from tracking (appended across layers).
        extensions (list[str]): File extensions eligible for tracking.
        tracking_base (str): Parent directory of the per-project tracking repositories.
    """

    exclude: list[str] = field(default_factory=list)
    extensions: list[str] = field(default_factory=lambda: sorted(TRACKED_EXTENSIONS))
    tracking_base: str = str(TRACKING_BASE)


@dataclass
class SchedulerConfig:
    """Flush scheduling settings.

    Attributes:
        frequency (int): Seconds between scheduled flushes.
        pending_delay (int): Seconds before re-flushing queued work.
        preset (str | None): A named frequency preset (e.g. 'paranoid').
    """

    frequency: int = DEFAULT_FREQUENCY
    pending_delay: int = int(PENDING_FLUSH_DELAY)
    preset: str | None = None

    def apply_preset(self) -> None:
        """Overwrites the frequency based on the selected preset."""
        if self.preset == "paranoid":
            self.frequency = 300  # 5 mins
        elif self.preset == "balanced":
            self.frequency = 1800  # 30 mins
        elif self.preset == "lazy":
            self.frequency = 7200  # 2 hours

    @property
    def interval_minutes(self) -> float:
        return self.frequency / 60


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        process_limit (int): Max concurrent git subprocesses.
        max_retries (int): Attempts for git calls failing with resource exhaustion.
        retry_delay (float): Base backoff (seconds) between those attempts.
        max_log_size (int): Max bytes for log files before rotation.
        snippet_lines (int): Max lines per code snippet in composed messages.
    """

    process_limit: int = PROCESS_LIMIT
    max_retries: int = MAX_RETRIES
    retry_delay: float = RETRY_DELAY
    max_log_size: int = 5 * 1024 * 1024
    snippet_lines: int = SNIPPET_LINES


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Repository settings.
        tracking (TrackingConfig): Change tracking settings.
        scheduler (SchedulerConfig): Flush scheduling settings.
        limits (LimitsConfig): Resource limits.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # Cache for the base global configuration
    _global_cache: "Config | None" = None

    @classmethod
    def load(cls, project_root: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            project_root (Path | None): The project root to search for local config.

        Returns:
            Config: The fully merged configuration object.
        """
        # 1. Load or Retrieve Global Config
        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        # Copy every section so local layers never mutate the cache
        cached = cls._global_cache
        instance = cls(
            core=replace(cached.core),
            tracking=replace(
                cached.tracking,
                exclude=list(cached.tracking.exclude),
                extensions=list(cached.tracking.extensions),
            ),
            scheduler=replace(cached.scheduler),
            limits=replace(cached.limits),
        )

        # 2. Load Local Config (if applicable)
        if project_root:
            local_toml = project_root / "syncforge.toml"
            pyproject = project_root / "pyproject.toml"

            if local_toml.exists():
                instance._merge_from_file(local_toml)
            elif pyproject.exists():
                instance._merge_from_file(pyproject, section="tool.syncforge")

        return instance

    def _merge_from_file(self, path: Path, section: str | None = None) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated section path (e.g., 'tool.syncforge').
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if section:
                for key in section.split("."):
                    data = data.get(key, {})

            if not data:
                return

            if "core" in data:
                self.core = self._update_dataclass("core", self.core, data["core"])
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )
            if "scheduler" in data:
                self.scheduler = self._update_dataclass(
                    "scheduler", self.scheduler, data["scheduler"]
                )
                self.scheduler.apply_preset()
            if "tracking" in data:
                # Extract exclude list to prevent it from being overwritten during dataclass update
                tracking = dict(data["tracking"])
                new_excludes = tracking.pop("exclude", [])
                self.tracking = self._update_dataclass(
                    "tracking", self.tracking, tracking
                )
                if new_excludes:
                    self.tracking.exclude.extend(new_excludes)
                    self.tracking.exclude = list(dict.fromkeys(self.tracking.exclude))

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["frequency", "pending_delay"]:
                    filtered_updates[k] = parse_time(v)
                elif k == "extensions":
                    filtered_updates[k] = [str(e).lower().lstrip(".") for e in v]
                else:
                    filtered_updates[k] = v
            except (ValueError, TypeError) as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
