"""Rewrites one commit onto a pruned tree and rewritten parents."""

import logging
from typing import Mapping, Optional, Sequence

from .identity_map import dedupe
from .models import Commit, Tree
from .objects import calc_hash, encode_commit

logger = logging.getLogger(__name__)


def provenance_trailer(provenance_label: str, original_id: str) -> bytes:
    """The trailer recording where a commit was transferred from."""
    return f"(transferred from {provenance_label}@{original_id})".encode("utf-8")


class CommitRewriter:
    """Builds rewritten commits.

    The result depends only on the arguments: identical inputs give a
    byte-identical commit with the same id.
    """

    def rewrite(
        self,
        original: Commit,
        new_parents: Sequence[str],
        pruned_tree: Tree,
        provenance_label: str,
        parent_trees: Optional[Mapping[str, str]] = None,
        originally_empty: bool = False,
    ) -> Optional[Commit]:
        """Rewrite original, or return None when it should be dropped.

        A commit is dropped when it has nothing to contribute: its pruned tree
        is empty and it has no rewritten parents, or it changed something in
        the source but has a single rewritten parent whose tree is identical
        to the pruned tree. Commits flagged originally_empty are exempt from
        the second rule, so empty commits of the source (release markers and
        the like) survive.

        Args:
            original: Commit being rewritten
            new_parents: Rewritten ids of its parents (duplicates allowed)
            pruned_tree: Its tree restricted to the paths of interest
            provenance_label: Upstream name recorded in the trailer
            parent_trees: Tree id of each rewritten parent
            originally_empty: Whether original changed nothing in the source
                              and its parent was kept

        Returns:
            The rewritten commit, or None
        """
        parents = dedupe(new_parents)

        if not parents and pruned_tree.is_empty:
            logger.debug(f"Dropping {original.id}: nothing under the extracted paths")
            return None

        if len(parents) == 1 and parent_trees is not None and not originally_empty:
            if parent_trees.get(parents[0]) == pruned_tree.id:
                logger.debug(f"Dropping {original.id}: no change to the extracted paths")
                return None

        message = (
            original.message
            + b"\n\n"
            + provenance_trailer(provenance_label, original.id)
        )
        body = encode_commit(
            pruned_tree.id,
            parents,
            original.author,
            original.committer,
            message,
            original.message_encoding,
        )
        return Commit(
            id=calc_hash(b"commit", body),
            parents=parents,
            tree=pruned_tree.id,
            author=original.author,
            committer=original.committer,
            message=message,
            message_encoding=original.message_encoding,
        )
