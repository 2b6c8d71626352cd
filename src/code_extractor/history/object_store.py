"""pygit2-backed access to the source and target object databases.

ObjectStore is the read-only view the engine walks; ObjectWriter persists the
rewritten graph into the target repository. Objects are written through the
ODB as raw bodies so their ids match the ones computed by objects.py.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

import pygit2
from pygit2.enums import ObjectType

from ..errors import CorruptRepositoryError, NotARepositoryError, RefNotFoundError
from .models import MODE_GITLINK, MODE_TREE, Commit, Signature, Tree, TreeEntry
from .objects import NULL_ID, decode_name, encode_commit, encode_tree, iter_tree

logger = logging.getLogger(__name__)

COMMIT_MAP_DIR = "code-extractor"


def open_repository(path: Path) -> pygit2.Repository:
    """Open the repository at path.

    Raises:
        NotARepositoryError: If path does not hold a git repository
    """
    try:
        return pygit2.Repository(str(path))
    except (KeyError, ValueError, pygit2.GitError) as e:
        raise NotARepositoryError(f"Not a git repository: {path}") from e


def _signature(sig: pygit2.Signature) -> Signature:
    return Signature(
        name=sig.raw_name,
        email=sig.raw_email,
        time=sig.time,
        offset=sig.offset,
    )


def _is_ancestor(
    repo: pygit2.Repository, repo_path: Path, ancestor: str, descendant: str
) -> bool:
    if ancestor == descendant:
        return False
    try:
        return repo.descendant_of(pygit2.Oid(hex=descendant), pygit2.Oid(hex=ancestor))
    except (KeyError, ValueError, pygit2.GitError) as e:
        raise CorruptRepositoryError(
            f"Cannot compare {ancestor} and {descendant} in {repo_path}"
        ) from e


class ObjectStore:
    """Read-only view over a repository's commit, tree and blob graph."""

    def __init__(self, repo_path: Path):
        """Open the object store.

        Args:
            repo_path: Working tree or git directory of the repository

        Raises:
            NotARepositoryError: If repo_path is not a git repository
        """
        self.repo_path = Path(repo_path)
        self.repo = open_repository(self.repo_path)

    def read_raw(self, object_id: str, expected: ObjectType) -> bytes:
        try:
            obj_type, data = self.repo.odb.read(pygit2.Oid(hex=object_id))
        except (KeyError, ValueError, pygit2.GitError) as e:
            raise CorruptRepositoryError(
                f"Unreadable object {object_id} in {self.repo_path}"
            ) from e
        if obj_type != expected:
            raise CorruptRepositoryError(
                f"Object {object_id} is a {ObjectType(obj_type).name.lower()}, "
                f"expected a {expected.name.lower()}"
            )
        return data

    def contains(self, object_id: str) -> bool:
        return pygit2.Oid(hex=object_id) in self.repo

    def resolve(self, ref: str) -> str:
        """Resolve ref to the id of the commit it names.

        Raises:
            RefNotFoundError: If ref does not resolve to a commit
        """
        try:
            commit = self.repo.revparse_single(ref).peel(pygit2.Commit)
        except (KeyError, ValueError, pygit2.GitError) as e:
            raise RefNotFoundError(
                f"Ref '{ref}' not found in {self.repo_path}"
            ) from e
        return str(commit.id)

    def read_commit(self, commit_id: str) -> Commit:
        """Load a commit record.

        Raises:
            CorruptRepositoryError: If the commit is missing or unreadable
        """
        try:
            commit = self.repo[pygit2.Oid(hex=commit_id)]
        except (KeyError, ValueError, pygit2.GitError) as e:
            raise CorruptRepositoryError(
                f"Unreadable commit {commit_id} in {self.repo_path}"
            ) from e
        if not isinstance(commit, pygit2.Commit):
            raise CorruptRepositoryError(f"Object {commit_id} is not a commit")

        return Commit(
            id=commit_id,
            parents=tuple(str(parent) for parent in commit.parent_ids),
            tree=str(commit.tree_id),
            author=_signature(commit.author),
            committer=_signature(commit.committer),
            message=commit.raw_message,
            message_encoding=commit.message_encoding,
        )

    def commits_in_topological_order(self, ref: str) -> Iterator[Commit]:
        """Yield the ancestry of ref, every commit after all of its parents.

        Depth-first from the tip with first parents explored first, so the
        order is fully determined by the graph.

        Raises:
            RefNotFoundError: If ref does not resolve
            CorruptRepositoryError: On an unreadable object or a cycle
        """
        tip = self.resolve(ref)

        loaded: Dict[str, Commit] = {}
        on_path: Set[str] = set()
        emitted: Set[str] = set()
        stack: List[Tuple[str, bool]] = [(tip, False)]

        while stack:
            commit_id, expanded = stack.pop()
            if commit_id in emitted:
                continue

            if expanded:
                on_path.discard(commit_id)
                emitted.add(commit_id)
                yield loaded.pop(commit_id)
                continue

            if commit_id in on_path:
                raise CorruptRepositoryError(
                    f"Commit graph contains a cycle through {commit_id}"
                )

            commit = self.read_commit(commit_id)
            loaded[commit_id] = commit
            on_path.add(commit_id)
            stack.append((commit_id, True))
            for parent in reversed(commit.parents):
                if parent not in emitted:
                    stack.append((parent, False))

    def read_tree(self, tree_id: str) -> Tree:
        """Load a tree's entries (subtrees are referenced, not loaded)."""
        data = self.read_raw(tree_id, ObjectType.TREE)
        try:
            entries = tuple(
                TreeEntry(name=decode_name(name), id=entry_id, filemode=mode)
                for mode, name, entry_id in iter_tree(data)
            )
        except ValueError as e:
            raise CorruptRepositoryError(f"Malformed tree {tree_id}: {e}") from e
        return Tree(id=tree_id, entries=entries)

    def tree_of(self, commit: Commit) -> Tree:
        return self.read_tree(commit.tree)

    def blob_content(self, blob_id: str) -> bytes:
        return self.read_raw(blob_id, ObjectType.BLOB)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return _is_ancestor(self.repo, self.repo_path, ancestor, descendant)


class ObjectWriter:
    """Persists rewritten trees and commits into the target repository.

    Blobs and untouched subtrees are copied from the source object store on
    first use. Branch refs are only touched through update_branch and
    delete_branch, which the engine calls once the whole pass succeeded.
    """

    def __init__(self, repo_path: Path, source: ObjectStore):
        self.repo_path = Path(repo_path)
        self.repo = open_repository(self.repo_path)
        self.source = source
        self.objects_written = 0

    def _has(self, object_id: str) -> bool:
        return pygit2.Oid(hex=object_id) in self.repo

    def _write_raw(self, obj_type: ObjectType, data: bytes, expected_id: str) -> str:
        try:
            written = str(self.repo.odb.write(obj_type, data))
        except (OSError, ValueError, pygit2.GitError) as e:
            raise CorruptRepositoryError(
                f"Cannot write {obj_type.name.lower()} {expected_id} to {self.repo_path}"
            ) from e
        if written != expected_id:
            raise CorruptRepositoryError(
                f"Wrote {obj_type.name.lower()} {written}, expected {expected_id}"
            )
        self.objects_written += 1
        return written

    def _import_object(self, object_id: str, filemode: int) -> None:
        """Copy an object and everything it references from the source.

        Trees are copied byte for byte, so non-canonical source trees keep
        their ids.
        """
        if self._has(object_id):
            return
        if filemode == MODE_TREE:
            data = self.source.read_raw(object_id, ObjectType.TREE)
            try:
                children = list(iter_tree(data))
            except ValueError as e:
                raise CorruptRepositoryError(f"Malformed tree {object_id}: {e}") from e
            for mode, _, child_id in children:
                if mode != MODE_GITLINK:
                    self._import_object(child_id, mode)
            self._write_raw(ObjectType.TREE, data, object_id)
        else:
            data = self.source.blob_content(object_id)
            self._write_raw(ObjectType.BLOB, data, object_id)

    def write_tree(self, tree: Tree) -> str:
        """Write a (possibly pruned) tree and return its id.

        Trees that exist in the source are copied as they are; trees rebuilt
        by pruning are encoded from their entries.
        """
        if self._has(tree.id):
            return tree.id
        if self.source.contains(tree.id):
            self._import_object(tree.id, MODE_TREE)
            return tree.id
        for entry in tree:
            if entry.subtree is not None:
                self.write_tree(entry.subtree)
            elif not entry.is_gitlink:
                self._import_object(entry.id, entry.filemode)
        return self._write_raw(ObjectType.TREE, encode_tree(tree.entries), tree.id)

    def write_commit(self, commit: Commit) -> str:
        if self._has(commit.id):
            return commit.id
        body = encode_commit(
            commit.tree,
            commit.parents,
            commit.author,
            commit.committer,
            commit.message,
            commit.message_encoding,
        )
        return self._write_raw(ObjectType.COMMIT, body, commit.id)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return _is_ancestor(self.repo, self.repo_path, ancestor, descendant)

    def branch_tip(self, branch: str) -> Optional[str]:
        ref = self.repo.references.get(f"refs/heads/{branch}")
        return str(ref.target) if ref is not None else None

    def update_branch(self, branch: str, commit_id: str) -> None:
        try:
            self.repo.references.create(
                f"refs/heads/{branch}", pygit2.Oid(hex=commit_id), force=True
            )
        except (OSError, KeyError, ValueError, pygit2.GitError) as e:
            raise CorruptRepositoryError(
                f"Cannot point branch {branch} at {commit_id} in {self.repo_path}"
            ) from e
        logger.info(f"Branch {branch} now points at {commit_id}")

    @property
    def head_is_unborn(self) -> bool:
        return self.repo.head_is_unborn

    def set_head(self, branch: str) -> None:
        """Point HEAD at branch without touching the index or working tree."""
        try:
            self.repo.set_head(f"refs/heads/{branch}")
        except (KeyError, ValueError, pygit2.GitError) as e:
            raise CorruptRepositoryError(
                f"Cannot point HEAD at {branch} in {self.repo_path}"
            ) from e

    def delete_branch(self, branch: str) -> None:
        name = f"refs/heads/{branch}"
        if self.repo.references.get(name) is None:
            return
        try:
            self.repo.references.delete(name)
        except (KeyError, pygit2.GitError) as e:
            raise CorruptRepositoryError(
                f"Cannot delete branch {branch} in {self.repo_path}"
            ) from e
        logger.info(f"Deleted branch {branch}")

    def write_commit_map(self, entries: Iterable[Tuple[str, Optional[str]]]) -> Path:
        """Record which original commit became which rewritten commit.

        Dropped commits map to the null id.
        """
        map_dir = Path(self.repo.path) / COMMIT_MAP_DIR
        map_dir.mkdir(parents=True, exist_ok=True)
        map_path = map_dir / "commit-map"
        with open(map_path, "w") as f:
            f.write(f"{'old':<40} new\n")
            for old, new in entries:
                f.write(f"{old} {new or NULL_ID}\n")
        return map_path
