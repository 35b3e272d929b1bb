import contextlib
import logging
import subprocess
import time
from pathlib import Path

from .constants import APP_NAME, GIT_LOCK_FILES
from .errors import (
    TRANSIENT_ERRNOS,
    GitCommandError,
    TransientExecutionError,
    classify_git_failure,
)
from .gate import ProcessGate

logger = logging.getLogger(APP_NAME)


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Every invocation passes through an optional `ProcessGate`, which bounds how
    many git subprocesses run at once, and is retried with linear backoff when
    it fails for resource-exhaustion reasons. Any other failure is raised
    immediately as a classified `GitCommandError`.

    Attributes:
        path (Path): The file system path to the repository root.
        max_retries (int): Total attempts for a transiently failing command.
        retry_delay (float): Base backoff; attempt N sleeps `retry_delay * N`.
    """

    def __init__(
        self,
        path: Path,
        gate: ProcessGate | None = None,
        max_retries: int = 1,
        retry_delay: float = 0.0,
        must_exist: bool = True,
    ):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.
            gate (ProcessGate | None): Shared concurrency gate for subprocesses.
            max_retries (int): Attempts for transient failures. Defaults to 1.
            retry_delay (float): Base backoff in seconds. Defaults to 0.
            must_exist (bool): Whether to require an existing `.git` directory.

        Raises:
            ValueError: If `must_exist` and the path does not contain a .git directory.
        """
        self.path = path
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._gate = gate
        if must_exist and not self.is_repository(path):
            raise ValueError(f"Not a git repository: {self.path}")

    @staticmethod
    def is_repository(path: Path) -> bool:
        return (path / ".git").exists()

    @classmethod
    def init(
        cls,
        path: Path,
        branch: str,
        gate: ProcessGate | None = None,
        max_retries: int = 1,
        retry_delay: float = 0.0,
    ) -> "GitRepo":
        """Creates a new repository at `path` whose HEAD points at `branch`.

        Args:
            path (Path): The directory to initialize (created if missing).
            branch (str): The initial branch name.

        Returns:
            GitRepo: A wrapper for the new repository.
        """
        path.mkdir(parents=True, exist_ok=True)
        repo = cls(path, gate, max_retries, retry_delay, must_exist=False)
        repo._run(["init", "--quiet"])
        repo._run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"])
        return repo

    @property
    def git_dir(self) -> Path:
        return self.path / ".git"

    def _run(self, args: list[str], env: dict | None = None) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            env (dict | None, optional): Environment variables for the subprocess.
                                         Defaults to None (inherit).

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitCommandError: The classified failure once retries are exhausted.
        """
        gate = self._gate or contextlib.nullcontext()

        for attempt in range(1, self.max_retries + 1):
            try:
                with gate:
                    res = subprocess.run(
                        ["git", *args],
                        cwd=self.path,
                        capture_output=True,
                        text=True,
                        check=True,
                        env=env,
                    )
                return res.stdout.strip()
            except subprocess.CalledProcessError as e:
                error = classify_git_failure(args, e.returncode, e.stderr or "")
                cause: BaseException = e
            except OSError as e:
                if e.errno not in TRANSIENT_ERRNOS:
                    raise GitCommandError(args, None, str(e)) from e
                error = TransientExecutionError(args, None, str(e))
                cause = e

            if isinstance(error, TransientExecutionError) and attempt < self.max_retries:
                delay = self.retry_delay * attempt
                logger.warning(
                    f"RETRY: git {args[0]} hit a process limit, "
                    f"retrying ({attempt}/{self.max_retries}) in {delay:.1f}s"
                )
                time.sleep(delay)
                continue
            raise error from cause

        raise TransientExecutionError(args, None, "Maximum retry attempts reached")

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch."""
        return self._run(["branch", "--show-current"])

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'origin/main').

        Returns:
            str | None: The full SHA-1 hash, or None if it could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except GitCommandError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def config_set(self, key: str, value: str) -> None:
        self._run(["config", "--local", key, value])

    def get_remote_url(self, name: str) -> str | None:
        try:
            return self._run(["remote", "get-url", name])
        except GitCommandError:
            return None

    def add_remote(self, name: str, url: str) -> None:
        self._run(["remote", "add", name, url])

    def set_remote_url(self, name: str, url: str) -> None:
        self._run(["remote", "set-url", name, url])

    def fetch(self, remote: str, branch: str, env: dict | None = None) -> bool:
        """Fetches one branch from a remote.

        Returns:
            bool: True if the branch was fetched, False if it does not exist remotely.

        Raises:
            GitCommandError: For any failure other than a missing remote branch.
        """
        try:
            self._run(
                ["fetch", "--quiet", remote, f"+refs/heads/{branch}:refs/remotes/{remote}/{branch}"],
                env=env,
            )
            return True
        except GitCommandError as e:
            if e.remote_ref_missing:
                return False
            raise

    def checkout(self, branch: str) -> None:
        self._run(["checkout", "--quiet", branch])

    def merge(self, ref: str) -> None:
        self._run(["merge", "--no-edit", "--quiet", ref])

    def merge_abort(self) -> None:
        self._run(["merge", "--abort"])

    def rebase(self, onto: str) -> None:
        self._run(["rebase", onto])

    def rebase_abort(self) -> None:
        self._run(["rebase", "--abort"])

    def reset_hard(self, target: str) -> None:
        self._run(["reset", "--hard", "--quiet", target])

    def push(self, remote: str, branch: str, env: dict | None = None) -> None:
        self._run(["push", "--set-upstream", remote, f"{branch}:{branch}"], env=env)

    def add(self, paths: list[str]) -> None:
        """Stages exactly the given paths (never a blanket `add .`)."""
        if not paths:
            return
        self._run(["add", "--", *paths])

    def unstage(self, paths: list[str]) -> None:
        if not paths:
            return
        self._run(["reset", "--quiet", "--", *paths])

    def commit(self, message: str, no_verify: bool = True) -> None:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.
            no_verify (bool, optional): Whether to bypass hooks. Defaults to True.
        """
        cmd = ["commit", "--quiet", "-m", message]
        if no_verify:
            cmd.append("--no-verify")
        self._run(cmd)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Returns True if `ancestor` is reachable from `descendant`."""
        try:
            self._run(["merge-base", "--is-ancestor", ancestor, descendant])
            return True
        except GitCommandError as e:
            if e.returncode == 1:
                return False
            raise

    def merge_base(self, a: str, b: str) -> str | None:
        try:
            return self._run(["merge-base", a, b]) or None
        except GitCommandError as e:
            if e.returncode == 1:
                return None
            raise

    def diff(self, path: str, target: str = "HEAD") -> str:
        """Returns the unified diff of a working-tree path against `target`."""
        return self._run(["diff", "--no-color", target, "--", path])

    def interrupted_operations(self) -> list[str]:
        """Lists git state markers left by an interrupted merge/rebase."""
        return [name for name in GIT_LOCK_FILES if (self.git_dir / name).exists()]
