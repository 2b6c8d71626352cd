"""Version control client boundary.

RepositoryClient is the capability interface the lifecycle manager needs;
GitCommandClient implements it by running the git binary through
utils.git_runner and translating failures into the extraction error types.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import GitTimeoutError, VCSCommandError
from ..utils.git_runner import (
    get_toplevel,
    run_git_command,
    run_git_command_with_retry,
)

logger = logging.getLogger(__name__)


class RepositoryClient(ABC):
    """Abstract interface over the version control operations of a run.

    All methods take the repository directory first and raise
    VCSCommandError (or GitTimeoutError) when the operation fails.
    """

    @abstractmethod
    def init(self, repo_dir: Path, initial_branch: str) -> None:
        """Create an empty repository at repo_dir."""
        pass

    @abstractmethod
    def clone(self, url: str, repo_dir: Path, origin_name: str) -> None:
        """Clone url into repo_dir naming the remote origin_name."""
        pass

    @abstractmethod
    def is_repository(self, repo_dir: Path) -> bool:
        """Whether repo_dir is the top level of a git working tree."""
        pass

    @abstractmethod
    def checkout(self, repo_dir: Path, branch: str, create: bool = False) -> None:
        """Check out branch, creating it from HEAD when create is set."""
        pass

    @abstractmethod
    def fetch(self, repo_dir: Path, remote: str) -> None:
        pass

    @abstractmethod
    def rebase(self, repo_dir: Path, onto: str) -> None:
        pass

    @abstractmethod
    def list_branches(self, repo_dir: Path) -> List[str]:
        pass

    @abstractmethod
    def delete_branch(self, repo_dir: Path, branch: str) -> None:
        pass

    @abstractmethod
    def remove_paths(self, repo_dir: Path, paths: Sequence[str]) -> None:
        """Remove paths from the working tree and the index."""
        pass

    @abstractmethod
    def has_staged_changes(self, repo_dir: Path) -> bool:
        pass

    @abstractmethod
    def commit(self, repo_dir: Path, message: str) -> str:
        """Commit the index and return the new commit id."""
        pass

    @abstractmethod
    def list_remotes(self, repo_dir: Path) -> List[str]:
        pass

    @abstractmethod
    def remove_remote(self, repo_dir: Path, remote: str) -> None:
        pass

    @abstractmethod
    def list_tags(self, repo_dir: Path) -> List[str]:
        pass

    @abstractmethod
    def delete_tag(self, repo_dir: Path, tag: str) -> None:
        pass

    @abstractmethod
    def checkout_branch_head(self, repo_dir: Path, branch: str) -> None:
        """Point HEAD at branch and make the working tree match it."""
        pass


class GitCommandClient(RepositoryClient):
    """RepositoryClient backed by the git command line."""

    def __init__(
        self,
        timeout: Optional[float] = 600,
        fetch_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        """Initialize the client.

        Args:
            timeout: Seconds each git invocation may take (None = no limit)
            fetch_retries: Retries for fetch, which is safe to repeat
            retry_delay: Seconds between retries
        """
        self.timeout = timeout
        self.fetch_retries = fetch_retries
        self.retry_delay = retry_delay

    def _git(
        self,
        args: List[str],
        cwd: Path,
        retries: int = 0,
    ) -> subprocess.CompletedProcess:
        cmd = ["git"] + args
        logger.debug(f"Running {' '.join(cmd)} in {cwd}")
        try:
            return run_git_command_with_retry(
                cmd,
                cwd=cwd,
                timeout=self.timeout,
                max_retries=retries,
                retry_delay=self.retry_delay,
                retry_on_timeout=retries > 0,
            )
        except subprocess.TimeoutExpired as e:
            raise GitTimeoutError(
                f"git {args[0]} timed out after {self.timeout}s",
                command=cmd,
                timeout=self.timeout,
            ) from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise VCSCommandError(
                f"git {args[0]} failed with exit code {e.returncode}: {stderr}",
                command=cmd,
                returncode=e.returncode,
                stderr=stderr,
            ) from e
        except FileNotFoundError as e:
            raise VCSCommandError(
                f"Cannot run git in {cwd}: {e}", command=cmd
            ) from e

    def init(self, repo_dir: Path, initial_branch: str) -> None:
        repo_dir.parent.mkdir(parents=True, exist_ok=True)
        self._git(
            ["init", "-q", "-b", initial_branch, str(repo_dir)], cwd=repo_dir.parent
        )

    def clone(self, url: str, repo_dir: Path, origin_name: str) -> None:
        repo_dir.parent.mkdir(parents=True, exist_ok=True)
        self._git(
            ["clone", "-q", "--origin", origin_name, url, str(repo_dir)],
            cwd=repo_dir.parent,
        )

    def is_repository(self, repo_dir: Path) -> bool:
        if not repo_dir.is_dir():
            return False
        return get_toplevel(repo_dir) == repo_dir.resolve()

    def checkout(self, repo_dir: Path, branch: str, create: bool = False) -> None:
        args = ["checkout", "-q"]
        if create:
            args.append("-b")
        self._git(args + [branch], cwd=repo_dir)

    def fetch(self, repo_dir: Path, remote: str) -> None:
        self._git(["fetch", "-q", remote], cwd=repo_dir, retries=self.fetch_retries)

    def rebase(self, repo_dir: Path, onto: str) -> None:
        self._git(["rebase", "-q", onto], cwd=repo_dir)

    def list_branches(self, repo_dir: Path) -> List[str]:
        result = self._git(
            ["for-each-ref", "--format=%(refname:short)", "refs/heads"], cwd=repo_dir
        )
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def delete_branch(self, repo_dir: Path, branch: str) -> None:
        self._git(["branch", "-q", "-D", branch], cwd=repo_dir)

    def remove_paths(self, repo_dir: Path, paths: Sequence[str]) -> None:
        self._git(
            ["rm", "-r", "-q", "--ignore-unmatch", "--"] + list(paths), cwd=repo_dir
        )

    def has_staged_changes(self, repo_dir: Path) -> bool:
        cmd = ["git", "diff", "--cached", "--quiet"]
        try:
            result = run_git_command(cmd, cwd=repo_dir, check=False, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise GitTimeoutError(
                "git diff timed out", command=cmd, timeout=self.timeout
            ) from e
        # --quiet exits 1 when there are differences
        if result.returncode not in (0, 1):
            raise VCSCommandError(
                f"git diff failed with exit code {result.returncode}",
                command=cmd,
                returncode=result.returncode,
                stderr=(result.stderr or "").strip(),
            )
        return result.returncode == 1

    def commit(self, repo_dir: Path, message: str) -> str:
        self._git(["commit", "-q", "-m", message], cwd=repo_dir)
        result = self._git(["rev-parse", "HEAD"], cwd=repo_dir)
        return result.stdout.strip()

    def list_remotes(self, repo_dir: Path) -> List[str]:
        result = self._git(["remote"], cwd=repo_dir)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def remove_remote(self, repo_dir: Path, remote: str) -> None:
        self._git(["remote", "remove", remote], cwd=repo_dir)

    def list_tags(self, repo_dir: Path) -> List[str]:
        result = self._git(["tag", "--list"], cwd=repo_dir)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def delete_tag(self, repo_dir: Path, tag: str) -> None:
        self._git(["tag", "-d", tag], cwd=repo_dir)

    def checkout_branch_head(self, repo_dir: Path, branch: str) -> None:
        self._git(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], cwd=repo_dir)
        self._git(["reset", "-q", "--hard"], cwd=repo_dir)
