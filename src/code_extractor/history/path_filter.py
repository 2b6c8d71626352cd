"""Tree pruning down to a set of paths of interest."""

import logging
from typing import Callable, Dict, List, Tuple

from .models import PathSet, Tree, TreeEntry
from .objects import EMPTY_TREE_ID, tree_id

logger = logging.getLogger(__name__)

TreeLoader = Callable[[str], Tree]

EMPTY_TREE = Tree(id=EMPTY_TREE_ID, entries=())


class PathFilter:
    """Rebuilds trees keeping only the entries under a path set.

    Pruning is a pure function of (tree id, path set): results are memoized,
    and the loader is only asked for subtrees that lie on the way to an
    extraction path. Directories that are wholly of interest are kept by id
    without being read.
    """

    def __init__(self, load_tree: TreeLoader):
        """Initialize the path filter.

        Args:
            load_tree: Callable returning the Tree for a tree id, usually
                       ObjectStore.read_tree
        """
        self.load_tree = load_tree
        self._cache: Dict[Tuple[str, str, PathSet], Tree] = {}

    def prune(self, tree: Tree, path_set: PathSet) -> Tree:
        """Return tree restricted to the paths of interest.

        Args:
            tree: Root tree of a commit
            path_set: Prefixes to keep

        Returns:
            Pruned tree; EMPTY_TREE when nothing survives
        """
        return self._prune(tree, "", path_set)

    def _prune(self, tree: Tree, base: str, path_set: PathSet) -> Tree:
        key = (tree.id, base, path_set)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        kept: List[TreeEntry] = []
        for entry in tree:
            path = f"{base}{entry.name}"
            if path in path_set:
                kept.append(entry)
            elif entry.is_tree and path_set.descends(path):
                subtree = self._prune(self.load_tree(entry.id), path + "/", path_set)
                if subtree.is_empty:
                    continue
                if subtree.id == entry.id:
                    kept.append(entry)
                else:
                    kept.append(
                        TreeEntry(
                            name=entry.name,
                            id=subtree.id,
                            filemode=entry.filemode,
                            subtree=subtree,
                        )
                    )

        if not kept:
            pruned = EMPTY_TREE
        elif len(kept) == len(tree.entries) and all(
            k is e for k, e in zip(kept, tree.entries)
        ):
            pruned = tree
        else:
            pruned = Tree(id=tree_id(kept), entries=tuple(kept))

        self._cache[key] = pruned
        return pruned
