# genstream/api/generate.py
import json
import logging
import os
import time
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import StreamingResponse

from genstream.core.codegen_agent import GenerationPipeline
from genstream.core.errors import GenerationBusy, GenerationError
from genstream.models import GenerateRequest, RetryTruncatedRequest
from genstream.utils.config import LOG_DIR

logger = logging.getLogger(__name__)

router = APIRouter()

_pipeline = None
# session ids with a generation in flight; one at a time per session
_active_sessions: Dict[str, "_SessionLease"] = {}


def get_pipeline() -> GenerationPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = GenerationPipeline()
    return _pipeline


class _SessionLease:
    """Marks a session busy until released. Releasing twice is a no-op."""

    def __init__(self, session_id: str):
        if session_id in _active_sessions:
            raise GenerationBusy(f"A generation is already running for session {session_id!r}")
        _active_sessions[session_id] = self
        self.session_id = session_id

    def release(self):
        if _active_sessions.get(self.session_id) is self:
            del _active_sessions[self.session_id]


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, GenerationBusy):
        return HTTPException(status_code=409, detail=e.to_detail())
    if isinstance(e, GenerationError):
        return HTTPException(status_code=422, detail=e.to_detail())
    logger.exception("Unhandled error in generation endpoint")
    return HTTPException(status_code=500, detail=str(e))


@router.post("/", response_model=Dict[str, Any])
async def generate(req: GenerateRequest, pipeline: GenerationPipeline = Depends(get_pipeline)):
    if (req.options or {}).get("debug"):
        _log_incoming_request("generate", req.model_dump(exclude={"images"}))
    try:
        lease = _SessionLease(req.session_id)
        try:
            outcome = await pipeline.generate(req)
        finally:
            lease.release()
        return outcome.model_dump()
    except HTTPException:
        raise
    except Exception as e:
        raise _http_error(e)


@router.post("/stream")
async def generate_stream(req: GenerateRequest, pipeline: GenerationPipeline = Depends(get_pipeline)):
    """
    Streaming version of /generate that yields newline-delimited JSON events.
    The client should read the response line-by-line and parse each JSON event.

    Events: status, plan, file_detected, continuation, file_start, file_chunk,
    file_complete, proposal, error, done.
    """
    try:
        lease = _SessionLease(req.session_id)
    except GenerationBusy as e:
        raise _http_error(e)

    async def event_generator():
        try:
            async for line in pipeline.stream_generate(req):
                yield line.encode("utf-8")
        finally:
            lease.release()

    # the body may never be iterated if the client leaves first
    cleanup = BackgroundTasks()
    cleanup.add_task(lease.release)
    return StreamingResponse(event_generator(), media_type="application/x-ndjson", background=cleanup)


@router.post("/retry-truncated", response_model=Dict[str, Any])
async def retry_truncated(req: RetryTruncatedRequest, pipeline: GenerationPipeline = Depends(get_pipeline)):
    try:
        lease = _SessionLease(req.session_id)
        try:
            outcome = await pipeline.retry_truncated(req)
        finally:
            lease.release()
        return outcome.model_dump()
    except HTTPException:
        raise
    except Exception as e:
        raise _http_error(e)


@router.get("/debug/last-response", response_model=Dict[str, Any])
async def last_response(pipeline: GenerationPipeline = Depends(get_pipeline)):
    last = pipeline.debug_channel.last_response
    if last is None:
        raise HTTPException(status_code=404, detail="No response recorded yet")
    return last.model_dump()


def _log_incoming_request(tag: str, payload: dict):
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        fname = os.path.join(LOG_DIR, f"{int(time.time())}_{tag}_incoming.json")
        with open(fname, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
    except OSError as e:
        logger.warning("failed to log incoming request: %s", e)
