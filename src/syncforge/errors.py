"""Exception taxonomy for the synchronization pipeline.

Every failure that can leave the executor is a `SyncError`. Failures of a git
subprocess are `GitCommandError`s, refined by `classify_git_failure` into the
subclass that decides how the executor reacts (retry, rebase, or give up).
"""

import errno
import re

TRANSIENT_ERRNOS = frozenset({errno.EAGAIN, errno.ENOMEM, errno.EMFILE, errno.ENFILE})

_TRANSIENT_PATTERNS = re.compile(
    r"EAGAIN|resource temporarily unavailable|cannot allocate memory"
    r"|unable to create thread|too many open files|cannot fork",
    re.IGNORECASE,
)
_AUTH_PATTERNS = re.compile(
    r"authentication failed|permission denied|could not read username"
    r"|invalid username or password|\b403\b",
    re.IGNORECASE,
)
_NETWORK_PATTERNS = re.compile(
    r"could not resolve host|unable to access|connection timed out"
    r"|connection refused|could not read from remote repository"
    r"|network is unreachable|the remote end hung up|early eof",
    re.IGNORECASE,
)
_REJECTED_PATTERNS = re.compile(
    r"\[rejected\]|non-fast-forward|fetch first|stale info",
    re.IGNORECASE,
)
_MISSING_REF_PATTERNS = re.compile(
    r"couldn't find remote ref|could not find remote ref", re.IGNORECASE
)


class SyncError(Exception):
    """Base class for every error surfaced by the synchronization pipeline."""


class ConfigurationError(SyncError):
    """Missing credentials, invalid remote URL, or an executor that was never set up."""


class ConflictError(SyncError):
    """A merge or rebase against the remote produced conflicts.

    Terminal: the local repository is returned to its pre-operation state and
    the conflict must be resolved manually.

    Attributes:
        branch (str): The branch being synchronized.
        commit (str | None): The local commit that could not be integrated.
    """

    def __init__(self, message: str, branch: str, commit: str | None = None):
        super().__init__(message)
        self.branch = branch
        self.commit = commit


class GitCommandError(SyncError, RuntimeError):
    """A git subprocess exited with a non-zero status.

    Attributes:
        args_list (list[str]): The git arguments that were executed.
        returncode (int | None): The exit status, or None if spawning failed.
        stderr (str): The captured standard error output.
    """

    def __init__(
        self,
        args_list: list[str],
        returncode: int | None = None,
        stderr: str = "",
    ):
        self.args_list = list(args_list)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        command = " ".join(["git", *self.args_list[:2]])
        super().__init__(f"Git error ({command}): {self.stderr or returncode}")

    @property
    def remote_ref_missing(self) -> bool:
        """True when a fetch failed only because the remote branch does not exist."""
        return bool(_MISSING_REF_PATTERNS.search(self.stderr))


class TransientExecutionError(GitCommandError):
    """Resource exhaustion while spawning or running git; safe to retry."""


class NetworkError(GitCommandError):
    """The remote could not be reached."""


class AuthenticationError(GitCommandError):
    """The remote refused our credentials."""


class PushRejectedError(GitCommandError):
    """The remote branch advanced past our base (non-fast-forward / stale info)."""


def classify_git_failure(
    args_list: list[str], returncode: int | None, stderr: str
) -> GitCommandError:
    """Builds the most specific `GitCommandError` for a failed git invocation.

    Args:
        args_list (list[str]): The git arguments that were executed.
        returncode (int | None): The exit status.
        stderr (str): The captured standard error output.

    Returns:
        GitCommandError: An instance of the matching subclass.
    """
    text = stderr or ""
    if _TRANSIENT_PATTERNS.search(text):
        cls: type[GitCommandError] = TransientExecutionError
    elif args_list and args_list[0] == "push" and _REJECTED_PATTERNS.search(text):
        cls = PushRejectedError
    elif _AUTH_PATTERNS.search(text):
        cls = AuthenticationError
    elif _NETWORK_PATTERNS.search(text):
        cls = NetworkError
    else:
        cls = GitCommandError
    return cls(args_list, returncode, text)
