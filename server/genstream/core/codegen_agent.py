# genstream/core/codegen_agent.py
"""
Code Generation Agent
- Exposes GenerationPipeline with:
    async def generate(req) -> GenerationOutcome
    async def stream_generate(req) -> AsyncGenerator[str, None]
    async def retry_truncated(req) -> GenerationOutcome
- Single place that wires the stages together:
    - stream ingestion with plan and file-boundary sniffing
    - standard or diff-mode parsing
    - continuation for planned files the first batch left out
    - truncation recovery when the payload cannot be parsed
    - the merge gate that hands every result to the review boundary
"""
import asyncio
import contextlib
import json
import logging
import time
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

from genstream.core import llm_client
from genstream.core.continuation import (
    ContinuationOrchestrator,
    ContinuationResult,
    MoreNeeded,
    decide,
)
from genstream.core.errors import (
    DiffNotApplicable,
    GenerationError,
    NoFilesProduced,
    ParseError,
    RecoveryExhausted,
    TruncatedResponse,
)
from genstream.core.extraction import extract_files_from_truncated_response
from genstream.core.merge_gate import CollectingReviewBoundary, ReviewBoundary, propose
from genstream.core.prompts import (
    build_continuation_prompt,
    build_continuation_system_prompt,
    build_regenerate_prompt,
    build_system_prompt,
    build_truncation_retry_prompt,
    build_user_prompt,
)
from genstream.core.response_parser import parse_standard_response
from genstream.core.search_replace import parse_diff_response
from genstream.core.stream_ingestor import DebugChannel, StreamFn, StreamIngestor
from genstream.core.truncation_recovery import (
    LABEL_GENERATED,
    LABEL_PARTIAL,
    LABEL_UPDATED,
    RecoveryAction,
    TruncationRecoveryEngine,
)
from genstream.models import (
    ContinuationState,
    FileSet,
    GenerateRequest,
    GenerationOutcome,
    GenerationPlan,
    GenerationProgress,
    GenerationRequest,
    ParsedBatch,
    RetryTruncatedRequest,
    StreamResult,
    TruncatedContent,
)
from genstream.utils.config import AGENT_TEMPERATURES, DEFAULT_MODEL, STREAM_CHUNK_SZ, TRUNCATION_RETRY_MAX

logger = logging.getLogger(__name__)

STATUS_BY_ACTION = {
    RecoveryAction.SUCCESS: "complete",
    RecoveryAction.PARTIAL: "partial",
    RecoveryAction.RECOVERED: "recovered",
}


# ----------------------------
# Streaming helpers (events -> newline-delimited JSON)
# ----------------------------
async def _yield_event(event_type: str, payload: Any) -> str:
    try:
        out = {"event": event_type, "payload": payload}
        return json.dumps(out, ensure_ascii=False) + "\n"
    except (TypeError, ValueError):
        return json.dumps({"event": "error", "payload": f"failed to serialize {event_type}"}) + "\n"


class _Callbacks:
    """Progress hooks for one run. Unset hooks are no-ops."""

    def __init__(self, on_event=None):
        self._on_event = on_event

    def emit(self, event_type: str, payload: Any):
        if self._on_event:
            self._on_event(event_type, payload)

    def status(self, msg: str):
        self.emit("status", msg)

    def plan(self, plan: GenerationPlan):
        self.emit("plan", plan.model_dump())

    def files(self, paths: List[str]):
        self.emit("file_detected", paths)


class GenerationPipeline:
    def __init__(self,
                 generate_stream: Optional[StreamFn] = None,
                 review: Optional[ReviewBoundary] = None,
                 debug_channel: Optional[DebugChannel] = None,
                 recovery: Optional[TruncationRecoveryEngine] = None,
                 continuation_options: Optional[Dict[str, Any]] = None,
                 truncation_retry_max: int = TRUNCATION_RETRY_MAX):
        self._generate_stream = generate_stream or llm_client.generate_stream
        self.review = review or CollectingReviewBoundary()
        self.debug_channel = debug_channel or DebugChannel()
        self.recovery = recovery or TruncationRecoveryEngine()
        self.continuation_options = continuation_options or {}
        self.truncation_retry_max = truncation_retry_max

    # ----------------------------
    # Stages
    # ----------------------------
    async def _ingest(self, request: GenerationRequest, model: Optional[str], cb: _Callbacks,
                      with_plan: bool = True) -> StreamResult:
        ingestor = StreamIngestor(self._generate_stream,
                                  on_status=cb.status,
                                  on_plan=cb.plan if with_plan else None,
                                  on_files=cb.files,
                                  debug_channel=self.debug_channel)
        return await ingestor.ingest(request, model)

    def _fetcher(self, model: Optional[str], cb: _Callbacks, regenerate: bool = False):
        async def fetch_batch(state: ContinuationState, missing: List[str]) -> ParsedBatch:
            if regenerate:
                prompt = build_regenerate_prompt(state.original_prompt, missing, state.accumulated_files)
            else:
                prompt = build_continuation_prompt(state.original_prompt, missing, state.accumulated_files,
                                                   state.current_batch, state.progress.total_batches)
            cb.emit("continuation", {"batch": state.current_batch,
                                     "total_batches": state.progress.total_batches,
                                     "missing": missing})
            request = GenerationRequest(prompt=prompt,
                                        system_instruction=build_continuation_system_prompt(state.system_instruction),
                                        temperature=AGENT_TEMPERATURES["continuation"])
            result = await self._ingest(request, model, cb, with_plan=False)
            state.last_response = result.last_response
            try:
                return parse_standard_response(result.full_text)
            except TruncatedResponse:
                extraction = extract_files_from_truncated_response(result.full_text)
                if not extraction.complete_files:
                    raise
                logger.warning("Continuation batch %d truncated; keeping %d complete files",
                               state.current_batch, len(extraction.complete_files))
                return ParsedBatch(explanation=f"Recovered {len(extraction.complete_files)} files from a truncated batch.",
                                   files=extraction.complete_files,
                                   truncated=True)
        return fetch_batch

    async def _continue(self,
                        original_prompt: str,
                        system_instruction: str,
                        seed: FileSet,
                        plan: Optional[GenerationPlan],
                        progress: Optional[GenerationProgress],
                        model: Optional[str],
                        cb: _Callbacks,
                        abort_event: Optional[asyncio.Event],
                        regenerate: bool = False) -> ContinuationResult:
        if progress is None:
            progress = GenerationProgress(total_files_planned=plan.total if plan else len(seed),
                                          files_in_this_batch=list(seed),
                                          completed_files=list(seed),
                                          is_complete=False)
        state = ContinuationState(original_prompt=original_prompt,
                                  system_instruction=system_instruction,
                                  progress=progress,
                                  accumulated_files=dict(seed),
                                  last_response=self.debug_channel.last_response)
        orchestrator = ContinuationOrchestrator(self._fetcher(model, cb, regenerate=regenerate),
                                                on_status=cb.status,
                                                abort_event=abort_event,
                                                **self.continuation_options)
        return await orchestrator.run(state, plan)

    def _outcome(self,
                 label: str,
                 status: str,
                 working: FileSet,
                 files: FileSet,
                 deleted: List[str],
                 explanation: str,
                 result: StreamResult,
                 model: Optional[str],
                 start_ts: float,
                 **extra) -> GenerationOutcome:
        proposal = propose(self.review, label, working, files, deleted)
        response = result.provider_response
        metadata: Dict[str, Any] = {
            "model": model or DEFAULT_MODEL,
            "duration": round(time.time() - start_ts, 3),
            "chars": len(result.full_text),
            "chunks": result.chunk_count,
            "finish_reason": response.finish_reason if response else None,
            "usage": response.usage.model_dump() if response and response.usage else None,
            "plan": result.final_plan.model_dump() if result.final_plan else None,
            "generated_files": sorted(files),
        }
        metadata.update(extra.pop("metadata", {}))
        return GenerationOutcome(status=status,
                                 label=label,
                                 files=proposal.files,
                                 changed_files=files,
                                 deleted_files=deleted,
                                 explanation=explanation,
                                 metadata=metadata,
                                 **extra)

    async def _recover(self,
                       raw: str,
                       plan: Optional[GenerationPlan],
                       prompt: str,
                       system_instruction: str,
                       working: FileSet,
                       model: Optional[str],
                       cb: _Callbacks,
                       abort_event: Optional[asyncio.Event],
                       continuation_instruction: Optional[str] = None) -> Tuple[str, str, FileSet, Dict[str, Any]]:
        """
        Returns (label, status, files, extra outcome fields). continuation_instruction
        is the caller's own system instruction carried into follow-up batches; it
        defaults to system_instruction.
        """
        outcome = self.recovery.recover(raw, plan=plan, has_working_set=bool(working),
                                        prompt=prompt, system_instruction=system_instruction)
        cb.status(outcome.message)
        extra: Dict[str, Any] = {"truncated": True, "metadata": {"recovery_action": outcome.action.value}}

        if not outcome.needs_continuation:
            return outcome.label, STATUS_BY_ACTION[outcome.action], outcome.files, extra

        regenerate = outcome.action == RecoveryAction.REGENERATE
        cont_plan = plan
        if regenerate or plan is None:
            cont_plan = GenerationPlan(create=list(outcome.missing_files), total=len(outcome.missing_files))
        if continuation_instruction is None:
            continuation_instruction = system_instruction
        cont = await self._continue(prompt, continuation_instruction, outcome.files, cont_plan, None,
                                    model, cb, abort_event, regenerate=regenerate)
        extra.update(batches=cont.batches, missing_files=cont.missing_files)
        extra["metadata"]["continuation"] = {"status": cont.status, "reason": cont.reason}
        if cont.complete:
            return outcome.label, "complete", cont.files, extra
        extra["warnings"] = [f"Generation incomplete: {cont.reason}"]
        return LABEL_PARTIAL, "partial", cont.files, extra

    # ----------------------------
    # Entry points
    # ----------------------------
    async def generate(self,
                       req: GenerateRequest,
                       on_event=None,
                       abort_event: Optional[asyncio.Event] = None) -> GenerationOutcome:
        cb = _Callbacks(on_event)
        start_ts = time.time()
        debug = bool((req.options or {}).get("debug", False))
        working = dict(req.files or {})
        diff_mode = req.diff_mode and bool(working)
        system_instruction = req.system_instruction or build_system_prompt(diff_mode)
        caller_instruction = req.system_instruction or ""
        request = GenerationRequest(prompt=build_user_prompt(req.prompt, working, diff_mode),
                                    system_instruction=system_instruction,
                                    images=req.images,
                                    conversation_history=req.conversation_history,
                                    temperature=AGENT_TEMPERATURES["generation"])

        result = await self._ingest(request, req.model, cb)
        raw = result.full_text
        plan = result.final_plan
        if debug:
            llm_client._save_debug_log("generate_raw", {"prompt": req.prompt, "raw": raw})

        base_label = LABEL_UPDATED if working else LABEL_GENERATED
        warnings: List[str] = []

        if diff_mode:
            try:
                batch = parse_diff_response(raw, working)
                warnings.extend(f"{f.path}: {f.reason}" for f in batch.failed_edits)
                return self._outcome(base_label, "complete", working, batch.files, batch.deleted_files,
                                     batch.explanation, result, req.model, start_ts,
                                     warnings=warnings,
                                     metadata={"diff_mode": True, "failed_edits": len(batch.failed_edits)})
            except DiffNotApplicable as e:
                logger.warning("Diff mode not applicable, falling back to full files: %s", e)
                warnings.append(f"diff mode fallback: {e}")

        try:
            batch = parse_standard_response(raw)
        except NoFilesProduced as e:
            llm_client._save_debug_log("no_files", {"prompt": req.prompt, "raw": raw, "error": str(e)})
            raise
        except ParseError as e:
            logger.warning("Response could not be parsed (%s); starting truncation recovery", e)
            try:
                label, status, files, extra = await self._recover(raw, plan, req.prompt, system_instruction,
                                                                  working, req.model, cb, abort_event,
                                                                  continuation_instruction=caller_instruction)
            except RecoveryExhausted as exhausted:
                llm_client._save_debug_log("recovery_exhausted", {"prompt": req.prompt, "raw": raw,
                                                                  "error": str(exhausted)})
                raise
            extra["warnings"] = warnings + extra.get("warnings", [])
            return self._outcome(label, status, working, files, [], f"Recovered {len(files)} files.",
                                 result, req.model, start_ts, **extra)

        transition = decide(plan, batch.progress, batch.files)
        if not isinstance(transition, MoreNeeded):
            return self._outcome(base_label, "complete", working, batch.files, batch.deleted_files,
                                 batch.explanation, result, req.model, start_ts,
                                 truncated=batch.truncated, warnings=warnings)

        logger.info("Batch is missing %d planned files: %s", len(transition.missing), ", ".join(transition.missing))
        cont = await self._continue(req.prompt, caller_instruction, batch.files, plan, batch.progress,
                                    req.model, cb, abort_event)
        deleted = batch.deleted_files + [p for p in cont.deleted_files if p not in batch.deleted_files]
        explanation = " ".join([batch.explanation] + cont.explanations)
        meta = {"continuation": {"status": cont.status, "reason": cont.reason}}
        if cont.complete:
            return self._outcome(base_label, "complete", working, cont.files, deleted, explanation,
                                 result, req.model, start_ts, batches=cont.batches, truncated=batch.truncated,
                                 warnings=warnings, metadata=meta)
        warnings.append(f"Generation incomplete: {cont.reason}")
        return self._outcome(LABEL_PARTIAL, "partial", working, cont.files, deleted, explanation,
                             result, req.model, start_ts, batches=cont.batches, truncated=batch.truncated,
                             missing_files=cont.missing_files, warnings=warnings, metadata=meta)

    async def retry_truncated(self, req: RetryTruncatedRequest, on_event=None) -> GenerationOutcome:
        """
        Ask the model to continue a truncated response, append the continuation
        to the raw text and parse again. Each failure re-raises with the combined
        text and the attempt count advanced.
        """
        cb = _Callbacks(on_event)
        start_ts = time.time()
        truncated = req.truncated
        if truncated.attempt >= self.truncation_retry_max:
            raise RecoveryExhausted(f"Maximum retry attempts ({self.truncation_retry_max}) reached",
                                    raw_text=truncated.raw_response, truncated=truncated)
        working = dict(req.files or {})
        request = GenerationRequest(prompt=build_truncation_retry_prompt(truncated.raw_response, truncated.prompt),
                                    system_instruction=truncated.system_instruction,
                                    temperature=AGENT_TEMPERATURES["continuation"])
        cb.status(f"Retrying truncated response (attempt {truncated.attempt + 1}/{self.truncation_retry_max})")
        result = await self._ingest(request, req.model, cb, with_plan=False)
        combined = truncated.raw_response + result.full_text
        result = result.model_copy(update={"full_text": combined})
        base_label = LABEL_UPDATED if working else LABEL_GENERATED

        try:
            batch = parse_standard_response(combined)
            return self._outcome(base_label, "complete", working, batch.files, batch.deleted_files,
                                 batch.explanation, result, req.model, start_ts,
                                 truncated=True, metadata={"retry_attempt": truncated.attempt + 1})
        except ParseError:
            try:
                label, status, files, extra = await self._recover(combined, None, truncated.prompt,
                                                                  truncated.system_instruction, working,
                                                                  req.model, cb, None)
            except RecoveryExhausted as e:
                e.truncated = TruncatedContent(raw_response=combined,
                                               prompt=truncated.prompt,
                                               system_instruction=truncated.system_instruction,
                                               attempt=truncated.attempt + 1)
                raise
            extra["metadata"]["retry_attempt"] = truncated.attempt + 1
            return self._outcome(label, status, working, files, [], f"Recovered {len(files)} files.",
                                 result, req.model, start_ts, **extra)

    async def stream_generate(self, req: GenerateRequest) -> AsyncGenerator[str, None]:
        """
        Async generator that yields newline-delimited JSON events (strings).
        Never raises: failures become an 'error' event followed by 'done'.
        """
        queue: asyncio.Queue = asyncio.Queue()
        abort_event = asyncio.Event()

        def on_event(event_type: str, payload: Any):
            queue.put_nowait((event_type, payload))

        task = asyncio.create_task(self.generate(req, on_event=on_event, abort_event=abort_event))
        task.add_done_callback(lambda _: queue.put_nowait(None))

        files_count = 0
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield await _yield_event(*item)

            try:
                outcome = task.result()
            except GenerationError as e:
                logger.error("Generation failed: %s", e)
                yield await _yield_event("error", e.to_detail())
            except Exception as e:
                logger.exception("Generation crashed")
                yield await _yield_event("error", {"error": str(e), "kind": "internal_error", "raw": ""})
            else:
                files_count = len(outcome.files)
                async for ev in _stream_files(outcome.changed_files):
                    yield ev
                yield await _yield_event("proposal", outcome.model_dump())
        finally:
            if not task.done():
                # client went away mid-stream
                abort_event.set()
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, GenerationError):
                    await task

        yield await _yield_event("done", {"files_count": files_count})


async def _stream_files(files: FileSet, chunk_sz: int = STREAM_CHUNK_SZ) -> AsyncGenerator[str, None]:
    for path, content in files.items():
        yield await _yield_event("file_start", {"path": path})
        for i in range(0, len(content), chunk_sz):
            chunk = content[i:i + chunk_sz]
            final = (i + chunk_sz) >= len(content)
            yield await _yield_event("file_chunk", {"path": path, "chunk": chunk, "index": i // chunk_sz, "final": final})
        yield await _yield_event("file_complete", {"path": path, "size": len(content)})
