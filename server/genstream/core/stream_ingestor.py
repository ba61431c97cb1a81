# genstream/core/stream_ingestor.py
"""
One provider subscription per request: accumulate the streamed text, sniff the
plan and file boundaries as it grows, and publish a status line for progress
displays. Provider errors propagate to the caller; nothing is retried here.
"""
import logging
import time
from typing import Awaitable, Callable, List, Optional

from genstream.core.boundary_sniffer import BoundarySniffer
from genstream.core.plan_sniffer import parse_file_plan_from_stream
from genstream.models import (
    GenerationPlan,
    GenerationRequest,
    LastResponse,
    ProviderResponse,
    StreamChunk,
    StreamResult,
)
from genstream.utils.config import PLAN_SNIFF_MIN_CHARS, STATUS_LOG_EVERY

logger = logging.getLogger(__name__)

# generate_stream(request, on_chunk, model) -> ProviderResponse
StreamFn = Callable[[GenerationRequest, Callable[[StreamChunk], None], Optional[str]], Awaitable[ProviderResponse]]
StatusFn = Callable[[str], None]
PlanFn = Callable[[GenerationPlan], None]
FilesFn = Callable[[List[str]], None]


class DebugChannel:
    """
    Read-only view of the last raw response and inferred plan, for post-mortem
    recovery tooling. Owned by whoever creates the pipeline, not global.
    """

    def __init__(self):
        self.last_response: Optional[LastResponse] = None

    def record(self, last: LastResponse):
        self.last_response = last

    @property
    def last_plan(self) -> Optional[GenerationPlan]:
        return self.last_response.plan if self.last_response else None


def _kb(n: int) -> int:
    return round(n / 1024)


class StreamIngestor:
    def __init__(self,
                 generate_stream: StreamFn,
                 on_status: Optional[StatusFn] = None,
                 on_plan: Optional[PlanFn] = None,
                 on_files: Optional[FilesFn] = None,
                 debug_channel: Optional[DebugChannel] = None,
                 plan_min_chars: int = PLAN_SNIFF_MIN_CHARS,
                 log_every: int = STATUS_LOG_EVERY):
        self._generate_stream = generate_stream
        self._on_status = on_status
        self._on_plan = on_plan
        self._on_files = on_files
        self._debug_channel = debug_channel
        self._plan_min_chars = plan_min_chars
        self._log_every = max(1, log_every)

    def _status(self, msg: str):
        if self._on_status:
            self._on_status(msg)

    async def ingest(self, request: GenerationRequest, model: Optional[str] = None) -> StreamResult:
        parts: List[str] = []
        size = 0
        chunk_count = 0
        plan: Optional[GenerationPlan] = None
        sniffer = BoundarySniffer()
        start_ts = time.time()

        def on_chunk(chunk: StreamChunk):
            nonlocal size, chunk_count, plan
            if chunk.done and not chunk.text:
                return
            parts.append(chunk.text or "")
            size += len(chunk.text or "")
            chunk_count += 1
            full_text = "".join(parts)

            if plan is None and size > self._plan_min_chars:
                plan = parse_file_plan_from_stream(full_text)
                if plan is not None:
                    logger.info("File plan detected: %d files (%s)", plan.total, ", ".join(plan.create))
                    if self._on_plan:
                        self._on_plan(plan)
                    self._status(f"Plan: {plan.total} files ({len(plan.create)} to generate)")

            if chunk_count % self._log_every == 0:
                logger.debug("Streaming... %dKB received, %d chunks, %d files detected",
                             _kb(size), chunk_count, len(sniffer.detected))

            new_files = sniffer.feed(full_text)
            if new_files:
                if self._on_files:
                    self._on_files(sniffer.detected)
                if plan is not None:
                    sniffer.update_plan(plan)
                    if self._on_plan:
                        self._on_plan(plan)
                    if len(plan.completed) >= plan.total:
                        self._status(f"{plan.total} files received, finalizing...")
                    else:
                        self._status(f"{len(plan.completed)}/{plan.total} files received")
                else:
                    self._status(f"{len(sniffer.detected)} files detected")

            if not sniffer.detected:
                self._status(f"Generating... ({_kb(size)}KB)")

        response = await self._generate_stream(request, on_chunk, model)

        full_text = "".join(parts)
        if not full_text and response is not None and response.text:
            # providers that only return the final text
            full_text = response.text
        detected = sniffer.detected
        logger.info("Stream complete: %d chars, %d chunks, %d files detected in %.1fs",
                    len(full_text), chunk_count, len(detected), time.time() - start_ts)

        last = LastResponse(raw=full_text,
                            timestamp=time.time(),
                            chars=len(full_text),
                            files_detected=detected,
                            plan=plan)
        if self._debug_channel is not None:
            self._debug_channel.record(last)

        return StreamResult(full_text=full_text,
                            chunk_count=chunk_count,
                            detected_files=detected,
                            provider_response=response,
                            final_plan=plan,
                            last_response=last)
