import base64
import contextlib
import datetime
import json
import logging
import os
import queue
import re
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, TypeVar

from .config import Config
from .constants import APP_NAME, CHANGES_DIR, STATE_FILE, TRACKING_GITIGNORE
from .errors import (
    ConfigurationError,
    ConflictError,
    GitCommandError,
    PushRejectedError,
)
from .events import (
    CommitEvent,
    ErrorEvent,
    EventBus,
    OperationEndEvent,
    OperationStartEvent,
    PushEvent,
)
from .gate import ProcessGate
from .git_wrapper import GitRepo
from .ledger import SyncJob
from .summary import extract_snippets, format_timestamp, rewrite_header

logger = logging.getLogger(APP_NAME)

T = TypeVar("T")

_REMOTE_URL_PATTERN = re.compile(
    r"^(?:(?:https?|ssh|git|file)://\S+|[\w.\-]+@[\w.\-]+:\S+)$"
)


@dataclass
class RepositoryState:
    """Bookkeeping owned by the executor's worker thread.

    Attributes:
        branch (str): The tracking branch.
        remote_url (str | None): The configured remote, once set up.
        last_commit (str | None): SHA of the last successfully pushed commit.
        last_sync (str | None): ISO timestamp of the last successful sync.
        last_change_count (int): Number of records in the last synced job.
    """

    branch: str
    remote_url: str | None = None
    last_commit: str | None = None
    last_sync: str | None = None
    last_change_count: int = 0


def load_state(repo_root: Path, branch: str) -> RepositoryState:
    """Reads the persisted state, falling back to an empty state."""
    state_file = repo_root / ".git" / STATE_FILE
    if not state_file.exists():
        return RepositoryState(branch=branch)

    try:
        data = json.loads(state_file.read_text() or "{}")
        return RepositoryState(
            branch=data.get("branch") or branch,
            remote_url=data.get("remote_url"),
            last_commit=data.get("last_commit"),
            last_sync=data.get("last_sync"),
            last_change_count=int(data.get("last_change_count", 0)),
        )
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Failed to read tracking state: {e}")
        return RepositoryState(branch=branch)


def save_state(repo_root: Path, state: RepositoryState) -> None:
    """Persists the state to disk atomically."""
    state_file = repo_root / ".git" / STATE_FILE
    tmp_file = state_file.with_suffix(".tmp")

    try:
        with open(tmp_file, "w") as f:
            json.dump(asdict(state), f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_file, state_file)
    except OSError as e:
        logger.warning(f"Failed to write tracking state: {e}")
        if tmp_file.exists():
            with contextlib.suppress(OSError):
                tmp_file.unlink()


def validate_remote_url(url: str | None) -> str:
    """Checks that `url` looks like something git can push to.

    Accepts http(s)/ssh/git/file URLs, scp-style `user@host:path`, and
    absolute local paths.

    Raises:
        ConfigurationError: If the URL is empty or malformed.
    """
    if not url or not url.strip():
        raise ConfigurationError("No remote URL configured for the tracking repository.")
    url = url.strip()
    if _REMOTE_URL_PATTERN.match(url) or Path(url).is_absolute():
        return url
    raise ConfigurationError(f"Invalid remote URL: '{url}'")


class SyncExecutor:
    """Serializes every mutation of the tracking repository.

    All operations run, in submission order, on a single worker thread that
    drains an explicit FIFO queue. Git subprocesses additionally pass through a
    shared `ProcessGate`. A failing operation fails only its own future; the
    worker moves on to the next queued operation.

    Attributes:
        root (Path): The tracking repository directory (exclusively owned).
        state (RepositoryState): Branch, remote and last commit bookkeeping.
        gate (ProcessGate): Bounds concurrent git subprocesses.
        repo (GitRepo | None): The repository wrapper, once it exists on disk.
    """

    def __init__(
        self,
        root: Path,
        config: Config | None = None,
        bus: EventBus | None = None,
        credentials: Callable[[], str | None] | None = None,
    ):
        self.root = root
        self.config = config or Config()
        self.bus = bus or EventBus()
        self.credentials = credentials
        self.gate = ProcessGate(self.config.limits.process_limit)
        self.state = RepositoryState(branch=self.config.core.branch)
        self.repo: GitRepo | None = None
        self._ready = False

        self._queue: queue.Queue[tuple[str, Callable[[], Any], Future] | None] = (
            queue.Queue()
        )
        self._closed = False
        self._close_lock = threading.Lock()
        self._worker = threading.Thread(
            target=self._work, name=f"{APP_NAME}-executor", daemon=True
        )
        self._worker.start()

    # --- Queue ---

    def depth(self) -> int:
        """Number of operations waiting behind the one currently running."""
        return self._queue.qsize()

    def close(self, wait: bool = True) -> None:
        """Stops accepting work; queued operations still run before the worker exits."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)
        if wait and threading.current_thread() is not self._worker:
            self._worker.join()

    def _enqueue(self, name: str, operation: Callable[[], T]) -> "Future[T]":
        future: Future[T] = Future()
        with self._close_lock:
            closed = self._closed
            if not closed:
                self._queue.put((name, operation, future))
        if closed:
            error = ConfigurationError("Executor is closed")
            self._report(name, error)
            future.set_exception(error)
        return future

    def _work(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break

            name, operation, future = item
            if not future.set_running_or_notify_cancel():
                continue

            self.bus.publish(OperationStartEvent(name))
            try:
                result = operation()
            except Exception as e:
                self._report(name, e)
                future.set_exception(e)
            else:
                future.set_result(result)
            finally:
                self.bus.publish(OperationEndEvent(name))

    def _report(self, name: str, error: Exception) -> None:
        logger.error(f"{name.upper()} FAILED {self.root.name}: {error}")
        self.bus.publish(ErrorEvent(error))

    # --- Git helpers ---

    def _open_repo(self) -> GitRepo:
        limits = self.config.limits
        return GitRepo(
            self.root,
            gate=self.gate,
            max_retries=limits.max_retries,
            retry_delay=limits.retry_delay,
        )

    def _remote_env(self) -> dict[str, str]:
        """Environment for network operations: no prompts, optional auth header."""
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"

        url = self.state.remote_url or ""
        if self.credentials and url.startswith(("http://", "https://")):
            token = self.credentials()
            if token:
                basic = base64.b64encode(f"x-access-token:{token}".encode()).decode()
                env["GIT_CONFIG_COUNT"] = "1"
                env["GIT_CONFIG_KEY_0"] = "http.extraHeader"
                env["GIT_CONFIG_VALUE_0"] = f"Authorization: Basic {basic}"
        return env

    def _check_credentials(self, url: str) -> None:
        if self.credentials is None or not url.startswith(("http://", "https://")):
            return
        if not self.credentials():
            raise ConfigurationError(f"No credentials available for remote '{url}'")

    # --- ensure_repository ---

    def ensure_repository(self, remote_url: str) -> None:
        """Creates or repairs the tracking repository and its remote. Idempotent.

        Blocks until the setup operation has run on the worker thread.

        Args:
            remote_url (str): The remote the tracking branch is pushed to.

        Raises:
            ConfigurationError: Invalid URL or missing credentials (before queueing).
            SyncError: Any failure while setting up; the executor stays unready.
        """
        try:
            url = validate_remote_url(remote_url)
            self._check_credentials(url)
        except ConfigurationError as e:
            self._report("ensure_repository", e)
            raise

        self._enqueue("ensure_repository", lambda: self._ensure(url)).result()

    def _ensure(self, url: str) -> None:
        self._ready = False
        core = self.config.core
        branch = core.branch

        if GitRepo.is_repository(self.root):
            self.repo = self._open_repo()
            self._recover_interrupted(self.repo)
        else:
            self.repo = self._initialize(branch)

        repo = self.repo
        repo.config_set("user.name", core.author_name)
        repo.config_set("user.email", core.author_email)
        repo.config_set("commit.gpgsign", "false")

        # Restore persisted bookkeeping before it is updated below.
        self.state = load_state(self.root, branch)
        self.state.branch = branch

        current = repo.get_remote_url(core.remote_name)
        if current is None:
            repo.add_remote(core.remote_name, url)
            logger.info(f"REMOTE {self.root.name}: Added {core.remote_name} -> {url}")
        elif current != url:
            repo.set_remote_url(core.remote_name, url)
            logger.info(f"REMOTE {self.root.name}: Updated {core.remote_name} -> {url}")
        self.state.remote_url = url

        if repo.current_branch() != branch:
            repo.checkout(branch)

        self._align_with_remote(repo)
        (self.root / CHANGES_DIR).mkdir(exist_ok=True)

        save_state(self.root, self.state)
        self._ready = True
        logger.info(f"READY {self.root.name}: Tracking repository on '{branch}'.")

    def _initialize(self, branch: str) -> GitRepo:
        limits = self.config.limits
        repo = GitRepo.init(
            self.root,
            branch,
            gate=self.gate,
            max_retries=limits.max_retries,
            retry_delay=limits.retry_delay,
        )
        repo.config_set("user.name", self.config.core.author_name)
        repo.config_set("user.email", self.config.core.author_email)
        repo.config_set("commit.gpgsign", "false")

        changes_dir = self.root / CHANGES_DIR
        changes_dir.mkdir(exist_ok=True)
        (changes_dir / ".gitkeep").touch()
        (self.root / ".gitignore").write_text(TRACKING_GITIGNORE)

        repo.add([".gitignore", f"{CHANGES_DIR}/.gitkeep"])
        repo.commit("Syncforge: Initializing tracking repository")
        logger.info(f"INIT {self.root.name}: Created tracking repository.")
        return repo

    def _recover_interrupted(self, repo: GitRepo) -> None:
        """Undoes merge/rebase state and stale locks left by a crash."""
        leftovers = repo.interrupted_operations()
        if "rebase-merge" in leftovers or "rebase-apply" in leftovers:
            logger.warning(f"RECOVERY {self.root.name}: Aborting interrupted rebase.")
            repo.rebase_abort()
        elif "MERGE_HEAD" in leftovers:
            logger.warning(f"RECOVERY {self.root.name}: Aborting interrupted merge.")
            repo.merge_abort()

        # Only this executor writes here, so a lock at startup is always stale.
        lock_file = repo.git_dir / "index.lock"
        if lock_file.exists():
            logger.warning(f"RECOVERY {self.root.name}: Removing stale index.lock.")
            lock_file.unlink(missing_ok=True)

    def _align_with_remote(self, repo: GitRepo) -> None:
        remote = self.config.core.remote_name
        branch = self.state.branch
        remote_ref = f"{remote}/{branch}"

        if not repo.fetch(remote, branch, env=self._remote_env()):
            logger.info(
                f"REMOTE {self.root.name}: '{remote_ref}' does not exist yet (first sync)."
            )
            return

        if repo.is_ancestor("HEAD", remote_ref):
            repo.merge(remote_ref)  # fast-forward
            logger.info(f"SYNCED {self.root.name}: Fast-forwarded to {remote_ref}.")
        elif repo.is_ancestor(remote_ref, "HEAD"):
            logger.info(f"SYNCED {self.root.name}: Local is ahead of {remote_ref}.")
        elif repo.merge_base("HEAD", remote_ref) is None:
            # Unrelated history: a fresh seed commit against an existing remote.
            repo.reset_hard(remote_ref)
            logger.info(f"SYNCED {self.root.name}: Reset to {remote_ref}.")
        else:
            self._rebase_onto(repo, remote_ref)
            logger.info(f"SYNCED {self.root.name}: Rebased onto {remote_ref}.")

    def _rebase_onto(self, repo: GitRepo, remote_ref: str) -> None:
        head = repo.rev_parse("HEAD")
        try:
            repo.rebase(remote_ref)
        except GitCommandError as e:
            with contextlib.suppress(GitCommandError):
                repo.rebase_abort()
            raise ConflictError(
                f"Rebase of {self.state.branch} onto {remote_ref} conflicted; "
                "manual resolution required.",
                branch=self.state.branch,
                commit=head,
            ) from e

    # --- submit ---

    def submit(self, job: SyncJob) -> "Future[str]":
        """Queues a commit-and-push of `job`.

        Returns:
            Future[str]: Resolves to the pushed commit SHA, or fails with a `SyncError`.
        """
        if not self._ready:
            future: Future[str] = Future()
            error = ConfigurationError(
                "Tracking repository is not set up; call ensure_repository first."
            )
            self._report("commit_and_push", error)
            future.set_exception(error)
            return future

        return self._enqueue("commit_and_push", lambda: self._commit_and_push(job))

    def _commit_and_push(self, job: SyncJob) -> str:
        repo = self.repo
        if repo is None:
            raise ConfigurationError("Tracking repository is not set up.")

        stamp = format_timestamp()
        files = self._materialize(job, stamp.sortable)
        message = rewrite_header(job.message, stamp)

        try:
            repo.add(files)
            repo.commit(message)
        except GitCommandError:
            self._discard(repo, files)
            raise
        commit = repo.rev_parse("HEAD")
        self.bus.publish(CommitEvent(message))
        logger.info(f"COMMITTED {self.root.name}: {len(job.records)} changes ({commit}).")

        self._integrate_remote(repo, commit)
        self._push(repo, commit)

        head = repo.rev_parse("HEAD") or ""
        self.state.last_commit = head
        self.state.last_sync = datetime.datetime.now(datetime.timezone.utc).isoformat()
        self.state.last_change_count = len(job.records)
        save_state(self.root, self.state)
        return head

    def _materialize(self, job: SyncJob, sortable: str) -> list[str]:
        """Writes the job's snippets and change manifest under `changes/`.

        Returns:
            list[str]: Repository-relative paths of the written files, in order.
        """
        changes_dir = self.root / CHANGES_DIR
        changes_dir.mkdir(exist_ok=True)
        written: list[str] = []

        for filename, code in extract_snippets(job.message):
            target = self._unique_path(changes_dir, f"{sortable}-{Path(filename).name}")
            target.write_text(code)
            written.append(f"{CHANGES_DIR}/{target.name}")

        manifest = self._unique_path(changes_dir, f"{sortable}-changes.json")
        manifest.write_text(
            json.dumps(
                {
                    "timestamp": job.created_at.isoformat(),
                    "message": job.message,
                    "changes": [
                        {
                            "path": r.path,
                            "kind": r.kind.value,
                            "observed_at": r.observed_at.isoformat(),
                        }
                        for r in job.records
                    ],
                },
                indent=2,
            )
        )
        written.append(f"{CHANGES_DIR}/{manifest.name}")
        return written

    def _discard(self, repo: GitRepo, files: list[str]) -> None:
        """Unstages and deletes materialized files of a job that failed to commit."""
        with contextlib.suppress(GitCommandError):
            repo.unstage(files)
        for name in files:
            (self.root / name).unlink(missing_ok=True)

    @staticmethod
    def _unique_path(directory: Path, name: str) -> Path:
        candidate = directory / name
        stem, suffix = Path(name).stem, Path(name).suffix
        counter = 1
        while candidate.exists():
            candidate = directory / f"{stem}-{counter}{suffix}"
            counter += 1
        return candidate

    def _integrate_remote(self, repo: GitRepo, commit: str | None) -> None:
        remote = self.config.core.remote_name
        remote_ref = f"{remote}/{self.state.branch}"

        if not repo.fetch(remote, self.state.branch, env=self._remote_env()):
            return
        try:
            repo.merge(remote_ref)
        except GitCommandError as e:
            with contextlib.suppress(GitCommandError):
                repo.merge_abort()
            raise ConflictError(
                f"Merging {remote_ref} into {self.state.branch} conflicted; "
                "manual resolution required.",
                branch=self.state.branch,
                commit=commit,
            ) from e

    def _push(self, repo: GitRepo, commit: str | None) -> None:
        remote = self.config.core.remote_name
        branch = self.state.branch

        try:
            repo.push(remote, branch, env=self._remote_env())
        except PushRejectedError:
            logger.warning(
                f"PUSH REJECTED {self.root.name}: Remote advanced, rebasing and retrying."
            )
            repo.fetch(remote, branch, env=self._remote_env())
            self._rebase_onto(repo, f"{remote}/{branch}")
            repo.push(remote, branch, env=self._remote_env())

        self.bus.publish(PushEvent(branch))
        logger.info(f"SUCCESS {self.root.name}: Pushed {branch}.")
