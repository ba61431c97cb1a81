# genstream/core/continuation.py
"""
Multi-batch continuation.

When a batch leaves planned files unproduced, further requests ask only for the
missing files until the plan is satisfied, the batch ceiling is reached, a batch
makes no progress or the caller cancels. The transition out of each batch is a
pure function (decide) so it can be tested without a provider.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from genstream.core.errors import NoFilesProduced, ParseError, RecoveryExhausted
from genstream.core.merge_gate import merge_files
from genstream.models import ContinuationState, FileSet, GenerationPlan, GenerationProgress, ParsedBatch
from genstream.utils.config import (
    CONTINUATION_BATCH_SIZE,
    CONTINUATION_MAX_RETRIES,
    CONTINUATION_RETRY_BACKOFF,
    MAX_CONTINUATION_BATCHES,
    MIN_ACCEPTED_CONTENT,
)
from genstream.utils.file_helpers import is_malformed_path, producible_paths

logger = logging.getLogger(__name__)

# fetch_batch(state, missing_paths) -> ParsedBatch
FetchBatchFn = Callable[[ContinuationState, List[str]], Awaitable[ParsedBatch]]
StatusFn = Callable[[str], None]


class ContinuationPhase(str, Enum):
    IDLE = "idle"
    AWAITING_BATCH = "awaiting_batch"
    MORE_NEEDED = "more_needed"
    COMPLETE = "complete"
    ABORTED = "aborted"


@dataclass
class Complete:
    pass


@dataclass
class MoreNeeded:
    missing: List[str] = field(default_factory=list)


@dataclass
class Aborted:
    reason: str
    missing: List[str] = field(default_factory=list)


Transition = Union[Complete, MoreNeeded, Aborted]


def decide(plan: Optional[GenerationPlan],
           progress: Optional[GenerationProgress],
           accumulated_paths: Iterable[str]) -> Union[Complete, MoreNeeded]:
    have = set(accumulated_paths)
    if plan is not None and plan.create:
        planned, unproducible = producible_paths(plan.create)
        if unproducible:
            logger.info("Ignoring planned paths that would never be accepted: %s", ", ".join(unproducible))
        missing = [p for p in planned if p not in have]
        if missing:
            return MoreNeeded(missing=missing)
    if progress is not None and not progress.is_complete:
        missing = [p for p in progress.remaining_files if p not in have]
        if missing:
            return MoreNeeded(missing=missing)
    return Complete()


def compute_total_batches(total_files: int,
                          batch_size: int = CONTINUATION_BATCH_SIZE,
                          max_batches: int = MAX_CONTINUATION_BATCHES) -> int:
    return min(max_batches, max(1, math.ceil(total_files / max(1, batch_size))))


def validate_accumulated(files: FileSet, min_content: int = MIN_ACCEPTED_CONTENT) -> FileSet:
    valid: FileSet = {}
    for path, content in files.items():
        if is_malformed_path(path):
            logger.warning("Dropping %r: malformed path", path)
            continue
        if len((content or "").strip()) < min_content:
            logger.warning("Dropping %s: content too short (%d chars)", path, len(content or ""))
            continue
        valid[path] = content
    return valid


class ContinuationResult(BaseModel):
    status: str = Field(..., description="complete | aborted")
    files: FileSet = Field(default_factory=dict)
    deleted_files: List[str] = Field(default_factory=list)
    missing_files: List[str] = Field(default_factory=list)
    batches: int = 0
    reason: str = ""
    explanations: List[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.status == "complete"


class ContinuationOrchestrator:
    def __init__(self,
                 fetch_batch: FetchBatchFn,
                 batch_size: int = CONTINUATION_BATCH_SIZE,
                 max_batches: int = MAX_CONTINUATION_BATCHES,
                 max_retries: int = CONTINUATION_MAX_RETRIES,
                 retry_backoff: float = CONTINUATION_RETRY_BACKOFF,
                 min_content: int = MIN_ACCEPTED_CONTENT,
                 on_status: Optional[StatusFn] = None,
                 abort_event: Optional[asyncio.Event] = None):
        self._fetch_batch = fetch_batch
        self.batch_size = batch_size
        self.max_batches = max_batches
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.min_content = min_content
        self._on_status = on_status
        self._abort_event = abort_event or asyncio.Event()
        self.phase = ContinuationPhase.IDLE

    def abort(self):
        self._abort_event.set()

    def _status(self, msg: str):
        if self._on_status:
            self._on_status(msg)

    async def _fetch_with_retries(self, state: ContinuationState, missing: List[str]) -> Optional[ParsedBatch]:
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._fetch_batch(state, missing)
            except (ParseError, NoFilesProduced) as e:
                state.retry_attempts += 1
                logger.warning("Continuation batch %d attempt %d/%d failed: %s",
                               state.current_batch, attempt, self.max_retries, e)
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_backoff * attempt)
        return None

    def _finish(self, state: ContinuationState, transition: Transition, deleted: List[str],
                explanations: List[str]) -> ContinuationResult:
        state.is_active = False
        files = validate_accumulated(state.accumulated_files, self.min_content)
        if isinstance(transition, Aborted):
            self.phase = ContinuationPhase.ABORTED
            logger.warning("Continuation aborted after %d batches: %s (missing: %s)",
                           state.current_batch, transition.reason, ", ".join(transition.missing))
        else:
            self.phase = ContinuationPhase.COMPLETE
            logger.info("Continuation complete: %d files in %d batches", len(files), state.current_batch)
        if not files:
            raise RecoveryExhausted("Continuation produced no valid files",
                                    raw_text=state.last_response.raw if state.last_response else "")
        return ContinuationResult(status="aborted" if isinstance(transition, Aborted) else "complete",
                                  files=files,
                                  deleted_files=deleted,
                                  missing_files=getattr(transition, "missing", []),
                                  batches=state.current_batch,
                                  reason=getattr(transition, "reason", ""),
                                  explanations=explanations)

    async def run(self, state: ContinuationState, plan: Optional[GenerationPlan] = None) -> ContinuationResult:
        total_files = plan.total if plan is not None else state.progress.total_files_planned
        total_batches = compute_total_batches(total_files, self.batch_size, self.max_batches)
        state.progress.total_batches = total_batches
        deleted: List[str] = []
        explanations: List[str] = []

        while True:
            transition = decide(plan, state.progress, state.accumulated_files)
            if isinstance(transition, Complete):
                return self._finish(state, transition, deleted, explanations)

            self.phase = ContinuationPhase.MORE_NEEDED
            missing = transition.missing
            if self._abort_event.is_set():
                return self._finish(state, Aborted("cancelled", missing), deleted, explanations)
            if state.current_batch + 1 > total_batches:
                return self._finish(state, Aborted(f"batch ceiling of {total_batches} reached", missing),
                                    deleted, explanations)

            state.current_batch += 1
            self.phase = ContinuationPhase.AWAITING_BATCH
            self._status(f"Generating batch {state.current_batch}/{total_batches} ({len(missing)} files remaining)")
            logger.info("Continuation batch %d/%d for: %s", state.current_batch, total_batches, ", ".join(missing))

            batch = await self._fetch_with_retries(state, missing)
            if batch is None:
                return self._finish(state, Aborted("batch failed after retries", missing), deleted, explanations)

            delivered = [p for p in missing if p in batch.files]
            state.accumulated_files = merge_files(state.accumulated_files, batch.files, batch.deleted_files)
            deleted.extend(p for p in batch.deleted_files if p not in deleted)
            if batch.explanation:
                explanations.append(batch.explanation)
            if not delivered:
                return self._finish(state, Aborted("batch made no progress", missing), deleted, explanations)

            remaining = [p for p in missing if p not in state.accumulated_files]
            if batch.progress is not None:
                progress = batch.progress.model_copy()
            else:
                progress = GenerationProgress(total_files_planned=state.progress.total_files_planned,
                                              remaining_files=remaining,
                                              is_complete=not remaining)
            progress.files_in_this_batch = list(batch.files)
            progress.completed_files = list(state.accumulated_files)
            progress.current_batch = state.current_batch + 1
            progress.total_batches = total_batches
            state.progress = progress
            self._status(f"{len(state.accumulated_files)} files generated")
