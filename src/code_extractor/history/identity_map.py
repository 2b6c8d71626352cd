"""Original-to-rewritten commit id bookkeeping for one filtering run."""

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class Kept:
    """The original commit was rewritten to new_id."""

    new_id: str


@dataclass(frozen=True)
class Dropped:
    """The original commit was dropped.

    resolved_parents are the rewritten ids its children inherit in its place.
    """

    resolved_parents: Tuple[str, ...]


Outcome = Union[Kept, Dropped]


def dedupe(ids: Sequence[str]) -> Tuple[str, ...]:
    """Remove duplicates, keeping first-seen order."""
    seen = set()
    result: List[str] = []
    for commit_id in ids:
        if commit_id not in seen:
            seen.add(commit_id)
            result.append(commit_id)
    return tuple(result)


class IdentityMap:
    """Mapping from original commit id to its outcome.

    Filled strictly in topological order: recording a commit whose parents
    are not recorded yet is a programming error.
    """

    def __init__(self):
        self._outcomes: Dict[str, Outcome] = {}
        self._order: List[str] = []

    def __contains__(self, commit_id: str) -> bool:
        return commit_id in self._outcomes

    def __len__(self) -> int:
        return len(self._outcomes)

    def get(self, commit_id: str) -> Optional[Outcome]:
        return self._outcomes.get(commit_id)

    def resolve_parents(self, parents: Sequence[str]) -> Tuple[str, ...]:
        """Translate original parent ids into rewritten ones.

        Dropped parents are replaced by their own resolved parents, which are
        already flattened, so one level of substitution is enough.

        Raises:
            KeyError: If a parent has not been recorded yet
        """
        resolved: List[str] = []
        for parent in parents:
            outcome = self._outcomes[parent]
            if isinstance(outcome, Kept):
                resolved.append(outcome.new_id)
            else:
                resolved.extend(outcome.resolved_parents)
        return dedupe(resolved)

    def record_kept(self, commit_id: str, new_id: str) -> None:
        self._record(commit_id, Kept(new_id))

    def record_dropped(self, commit_id: str, resolved_parents: Sequence[str]) -> None:
        self._record(commit_id, Dropped(tuple(resolved_parents)))

    def _record(self, commit_id: str, outcome: Outcome) -> None:
        if commit_id in self._outcomes:
            raise ValueError(f"Commit {commit_id} recorded twice")
        self._outcomes[commit_id] = outcome
        self._order.append(commit_id)

    def rewritten(self, commit_id: str) -> Optional[str]:
        """Rewritten id of commit_id, or None if it was dropped."""
        outcome = self._outcomes.get(commit_id)
        return outcome.new_id if isinstance(outcome, Kept) else None

    def items(self) -> Iterator[Tuple[str, Optional[str]]]:
        """(original, rewritten or None) pairs in processing order."""
        for commit_id in self._order:
            yield commit_id, self.rewritten(commit_id)

    @property
    def kept_count(self) -> int:
        return sum(1 for o in self._outcomes.values() if isinstance(o, Kept))

    @property
    def dropped_count(self) -> int:
        return len(self._outcomes) - self.kept_count
