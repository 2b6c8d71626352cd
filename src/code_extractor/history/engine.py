"""
History Filter Engine.

Walks the ancestry of a source ref in topological order, prunes every tree to
the extraction paths, rewrites the commits that still carry relevant history
and writes them into the target repository. The target branch is only moved
once the whole pass has succeeded, so an aborted run never leaves a branch
pointing into a half-written history.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

from .commit_rewriter import CommitRewriter
from .identity_map import IdentityMap
from .models import Commit, PathSet
from .objects import EMPTY_TREE_ID
from .object_store import ObjectStore, ObjectWriter
from .path_filter import PathFilter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class FilterResult:
    """Outcome of one filtering pass."""

    branch: str
    tip: Optional[str]
    commits_seen: int
    commits_kept: int
    commits_dropped: int
    commit_map: Dict[str, Optional[str]] = field(default_factory=dict)
    commit_map_path: Optional[Path] = None
    elapsed_seconds: float = 0.0

    @property
    def is_empty(self) -> bool:
        """True when no commit touched the extraction paths."""
        return self.tip is None


class HistoryFilterEngine:
    """Rewrites the history of one ref into a target repository.

    The engine holds no state between runs; each run builds its own
    IdentityMap. Re-running against an unchanged source with the same path
    set yields the same commit ids.
    """

    def __init__(
        self,
        source: ObjectStore,
        target: ObjectWriter,
        rewriter: Optional[CommitRewriter] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """Initialize the engine.

        Args:
            source: Object store of the repository being extracted from
            target: Writer for the repository receiving the history
            rewriter: Commit rewriter (defaults to CommitRewriter())
            progress_callback: Called with (processed, kept) after each commit
        """
        self.source = source
        self.target = target
        self.rewriter = rewriter or CommitRewriter()
        self.progress_callback = progress_callback

    @classmethod
    def for_repositories(
        cls,
        source_dir: Path,
        target_dir: Path,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> "HistoryFilterEngine":
        source = ObjectStore(source_dir)
        return cls(
            source,
            ObjectWriter(target_dir, source),
            progress_callback=progress_callback,
        )

    def run(
        self,
        source_ref: str,
        path_set: PathSet,
        provenance_label: str,
        target_branch: Optional[str] = None,
    ) -> FilterResult:
        """Filter the history of source_ref down to path_set.

        Args:
            source_ref: Ref in the source repository whose ancestry is filtered
            path_set: Paths of interest
            provenance_label: Upstream name written into every trailer
            target_branch: Branch to create in the target (defaults to
                           source_ref)

        Returns:
            FilterResult describing the rewritten branch

        Raises:
            RefNotFoundError: If source_ref does not resolve
            CorruptRepositoryError: If an object cannot be read or written
        """
        branch = target_branch or source_ref
        started = time.time()
        logger.info(
            f"Filtering {source_ref} down to {', '.join(path_set)} into branch {branch}"
        )

        identity_map = IdentityMap()
        path_filter = PathFilter(self.source.read_tree)
        rewritten_trees: Dict[str, str] = {}
        original_trees: Dict[str, str] = {}
        tip: Optional[str] = None
        processed = 0

        for commit in self.source.commits_in_topological_order(source_ref):
            new_parents = identity_map.resolve_parents(commit.parents)
            if len(new_parents) > 1:
                new_parents = self._drop_redundant_parents(commit, new_parents)

            pruned_tree = path_filter.prune(self.source.tree_of(commit), path_set)
            result = self.rewriter.rewrite(
                commit,
                new_parents,
                pruned_tree,
                provenance_label,
                parent_trees=rewritten_trees,
                originally_empty=self._is_originally_empty(
                    commit, original_trees, identity_map
                ),
            )
            original_trees[commit.id] = commit.tree

            if result is None:
                identity_map.record_dropped(commit.id, new_parents)
            else:
                self.target.write_tree(pruned_tree)
                self.target.write_commit(result)
                rewritten_trees[result.id] = result.tree
                identity_map.record_kept(commit.id, result.id)

            processed += 1
            if self.progress_callback:
                self.progress_callback(processed, len(rewritten_trees))

        # The tip of the rewritten branch is whatever the source tip became,
        # which for a dropped tip is its first surviving ancestor.
        if processed:
            tip_id = self.source.resolve(source_ref)
            resolved = identity_map.resolve_parents([tip_id])
            tip = resolved[0] if resolved else None

        if tip is None:
            logger.warning(
                f"No commit in {source_ref} touches {', '.join(path_set)}; "
                f"branch {branch} left empty"
            )
            self.target.delete_branch(branch)
        else:
            self.target.update_branch(branch, tip)

        commit_map = dict(identity_map.items())
        commit_map_path = self.target.write_commit_map(identity_map.items())

        elapsed = time.time() - started
        logger.info(
            f"Filtered {processed} commits: kept {identity_map.kept_count}, "
            f"dropped {identity_map.dropped_count} in {elapsed:.1f}s"
        )

        return FilterResult(
            branch=branch,
            tip=tip,
            commits_seen=processed,
            commits_kept=identity_map.kept_count,
            commits_dropped=identity_map.dropped_count,
            commit_map=commit_map,
            commit_map_path=commit_map_path,
            elapsed_seconds=elapsed,
        )

    @staticmethod
    def _is_originally_empty(
        commit: Commit, original_trees: Dict[str, str], identity_map: IdentityMap
    ) -> bool:
        """True when commit changed nothing in the source and its parent was kept.

        An empty commit following a dropped parent is pruned like any other
        unchanged commit. Merges never count as empty.
        """
        if not commit.parents:
            return commit.tree == EMPTY_TREE_ID
        if len(commit.parents) > 1:
            return False
        parent = commit.parents[0]
        return (
            original_trees.get(parent) == commit.tree
            and identity_map.rewritten(parent) is not None
        )

    def _drop_redundant_parents(
        self, commit: Commit, new_parents: Sequence[str]
    ) -> Tuple[str, ...]:
        """Remove rewritten merge parents made redundant by filtering.

        When dropping commits turns one rewritten parent into an ancestor of
        another, the merge no longer joins two lines of history and the
        ancestor parent is removed. Merges whose original parents were already
        ancestor-related (e.g. --no-ff merges) keep all their parents.
        """
        original = commit.parents
        for i, a in enumerate(original):
            for b in original[i + 1 :]:
                if self.source.is_ancestor(a, b) or self.source.is_ancestor(b, a):
                    return tuple(new_parents)

        kept = tuple(
            candidate
            for candidate in new_parents
            if not any(
                self.target.is_ancestor(candidate, other)
                for other in new_parents
                if other != candidate
            )
        )
        if len(kept) < len(new_parents):
            logger.debug(
                f"Merge {commit.id} lost {len(new_parents) - len(kept)} redundant parent(s)"
            )
        return kept
