"""
Shared pytest fixtures for Code Extractor tests.

Provides real git repositories built in tmp_path with a fixed identity and
monotonically increasing commit dates, so rewritten commit ids are stable
across runs.
"""

import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from code_extractor.utils.exception_logger import ExceptionLogger

BASE_TIMESTAMP = 1700000000

IDENTITY_ENV = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
    "GIT_CONFIG_GLOBAL": os.devnull,
}


@pytest.fixture(autouse=True)
def git_identity(monkeypatch):
    """Give every git invocation (ours and the code's) a fixed identity."""
    for key, value in IDENTITY_ENV.items():
        monkeypatch.setenv(key, value)


@pytest.fixture(autouse=True)
def reset_exception_logger():
    """Tests must not share the exception logger singleton."""
    ExceptionLogger._instance = None
    yield
    ExceptionLogger._instance = None


class GitRepo:
    """Thin helper for building test repositories with the git CLI."""

    _clock = 0

    def __init__(self, path: Path, init: bool = True, bare: bool = False):
        self.path = Path(path)
        if init:
            self.path.mkdir(parents=True, exist_ok=True)
            args = ["init", "-q", "-b", "master"]
            if bare:
                args.append("--bare")
            self.git(*args)

    def _env(self) -> Dict[str, str]:
        GitRepo._clock += 1
        date = f"{BASE_TIMESTAMP + GitRepo._clock * 60} +0100"
        env = os.environ.copy()
        env["GIT_AUTHOR_DATE"] = date
        env["GIT_COMMITTER_DATE"] = date
        return env

    def git(self, *args: str) -> str:
        result = subprocess.run(
            ["git"] + list(args),
            cwd=self.path,
            check=True,
            capture_output=True,
            text=True,
            env=self._env(),
        )
        return result.stdout.strip()

    def write(self, relpath: str, content: str) -> None:
        file_path = self.path / relpath
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)

    def commit(
        self,
        message: str,
        files: Optional[Dict[str, str]] = None,
        remove: Iterable[str] = (),
    ) -> str:
        for relpath, content in (files or {}).items():
            self.write(relpath, content)
        for relpath in remove:
            self.git("rm", "-q", "-r", relpath)
        self.git("add", "-A")
        self.git("commit", "-q", "--allow-empty", "-m", message)
        return self.head()

    def head(self, ref: str = "HEAD") -> str:
        return self.git("rev-parse", ref)

    def checkout(self, branch: str, create: bool = False) -> None:
        if create:
            self.git("checkout", "-q", "-b", branch)
        else:
            self.git("checkout", "-q", branch)

    def merge(self, branch: str, message: str) -> str:
        self.git("merge", "-q", "--no-ff", "-m", message, branch)
        return self.head()

    def log(self, ref: str = "HEAD") -> List[str]:
        """Commit ids reachable from ref, oldest first."""
        output = self.git("rev-list", "--topo-order", "--reverse", ref)
        return output.splitlines()

    def parents(self, commit: str) -> List[str]:
        return self.git("rev-list", "--parents", "-n", "1", commit).split()[1:]

    def message(self, commit: str) -> str:
        return self.git("log", "-1", "--format=%B", commit)

    def files(self, ref: str = "HEAD") -> List[str]:
        output = self.git("ls-tree", "-r", "--name-only", ref)
        return output.splitlines()

    def show(self, ref: str, relpath: str) -> str:
        return self.git("show", f"{ref}:{relpath}")

    def branches(self) -> List[str]:
        output = self.git("for-each-ref", "--format=%(refname:short)", "refs/heads")
        return output.splitlines()

    def tags(self) -> List[str]:
        return self.git("tag", "--list").splitlines()


@pytest.fixture
def make_repo(tmp_path) -> Callable[..., GitRepo]:
    """Factory creating a fresh git repository under tmp_path."""

    def _make(name: str = "repo", bare: bool = False) -> GitRepo:
        return GitRepo(tmp_path / name, bare=bare)

    return _make


@pytest.fixture
def open_repo() -> Callable[[Path], GitRepo]:
    """Wrap an existing repository (e.g. one the code created)."""

    def _open(path: Path) -> GitRepo:
        return GitRepo(path, init=False)

    return _open
