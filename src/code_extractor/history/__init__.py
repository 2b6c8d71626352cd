"""History filtering: object access, tree pruning and commit rewriting."""

from .commit_rewriter import CommitRewriter, provenance_trailer
from .engine import FilterResult, HistoryFilterEngine
from .identity_map import IdentityMap
from .models import Commit, PathSet, Signature, Tree, TreeEntry
from .object_store import ObjectStore, ObjectWriter
from .path_filter import PathFilter

__all__ = [
    "Commit",
    "CommitRewriter",
    "FilterResult",
    "HistoryFilterEngine",
    "IdentityMap",
    "ObjectStore",
    "ObjectWriter",
    "PathFilter",
    "PathSet",
    "Signature",
    "Tree",
    "TreeEntry",
    "provenance_trailer",
]
