"""Immutable records for the commit graph being filtered.

Commits, trees and signatures mirror git's objects closely enough that their
content hashes can be computed without touching a repository (see objects.py).
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Tuple

# git tree entry modes
MODE_TREE = 0o040000
MODE_BLOB = 0o100644
MODE_EXECUTABLE = 0o100755
MODE_SYMLINK = 0o120000
MODE_GITLINK = 0o160000


@dataclass(frozen=True)
class Signature:
    """Author or committer identity with its timestamp."""

    name: bytes
    email: bytes
    time: int  # seconds since epoch
    offset: int  # minutes east of UTC


@dataclass(frozen=True)
class Commit:
    """A commit as stored in (or about to be written to) a repository."""

    id: str
    parents: Tuple[str, ...]
    tree: str
    author: Signature
    committer: Signature
    message: bytes
    message_encoding: Optional[str] = None

    @property
    def timestamp(self) -> int:
        return self.committer.time


@dataclass(frozen=True)
class TreeEntry:
    """One named entry of a tree.

    subtree is only set for directories rebuilt by pruning; untouched
    directories are referenced by id and loaded on demand.
    """

    name: str
    id: str
    filemode: int
    subtree: Optional["Tree"] = None

    @property
    def is_tree(self) -> bool:
        return self.filemode == MODE_TREE

    @property
    def is_gitlink(self) -> bool:
        return self.filemode == MODE_GITLINK


@dataclass(frozen=True)
class Tree:
    """Ordered directory listing, addressed by content."""

    id: str
    entries: Tuple[TreeEntry, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def normalize_path(path: str) -> str:
    """Normalize a repository-relative path for prefix matching.

    Raises:
        ValueError: If the path is empty or escapes the repository root
    """
    parts = [part for part in path.replace("\\", "/").split("/") if part not in ("", ".")]
    if not parts:
        raise ValueError(f"Empty extraction path: {path!r}")
    if ".." in parts:
        raise ValueError(f"Extraction path must stay inside the repository: {path!r}")
    return "/".join(parts)


@dataclass(frozen=True)
class PathSet:
    """Set of path prefixes to keep.

    A path is of interest if it equals one of the prefixes or is nested
    under one of them.
    """

    prefixes: FrozenSet[str]

    @classmethod
    def of(cls, paths: Iterable[str]) -> "PathSet":
        return cls(frozenset(normalize_path(p) for p in paths))

    def __contains__(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix + "/") for prefix in self.prefixes
        )

    def descends(self, directory: str) -> bool:
        """Whether some prefix lies strictly below directory."""
        lead = directory + "/"
        return any(prefix.startswith(lead) for prefix in self.prefixes)

    def __iter__(self):
        return iter(sorted(self.prefixes))

    def __len__(self) -> int:
        return len(self.prefixes)

    def __bool__(self) -> bool:
        return bool(self.prefixes)
