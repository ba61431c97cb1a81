# genstream/core/merge_gate.py
"""
The only path by which generated files reach the working set: merge the batch
over the current files and hand the result to a review boundary. Nothing here
writes to disk or to any store.
"""
import logging
from typing import Iterable, List, Optional, Protocol

from genstream.models import FileSet, Proposal

logger = logging.getLogger(__name__)


class ReviewBoundary(Protocol):
    def propose_files(self, label: str, files: FileSet) -> None:
        ...


class CollectingReviewBoundary:
    """Keeps every proposal in memory; the HTTP layer returns the last one to the client."""

    def __init__(self):
        self.proposals: List[Proposal] = []

    def propose_files(self, label: str, files: FileSet) -> None:
        self.proposals.append(Proposal(label=label, files=dict(files)))

    @property
    def last(self) -> Optional[Proposal]:
        return self.proposals[-1] if self.proposals else None


def merge_files(working: FileSet, batch: FileSet, deleted: Iterable[str] = ()) -> FileSet:
    """
    Union of working and batch, batch winning on conflicts, then deleted paths
    removed. Neither input is mutated and merging the same batch twice is a no-op.
    """
    merged = dict(working or {})
    merged.update(batch or {})
    for path in deleted or ():
        merged.pop(path, None)
    return merged


def propose(boundary: ReviewBoundary,
            label: str,
            working: FileSet,
            batch: FileSet,
            deleted: Iterable[str] = ()) -> Proposal:
    deleted = list(deleted or ())
    merged = merge_files(working, batch, deleted)
    logger.info("Proposing %r: %d files (%d from batch, %d deleted)",
                label, len(merged), len(batch or {}), len(deleted))
    boundary.propose_files(label, merged)
    return Proposal(label=label, files=merged)
