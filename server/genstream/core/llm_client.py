# genstream/core/llm_client.py
import os
import json
import time
import logging
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.messages.ai import add_usage
from langchain_google_genai import ChatGoogleGenerativeAI

from genstream.core.errors import ProviderError
from genstream.models import GenerationRequest, ProviderResponse, StreamChunk, TokenUsage
from genstream.utils.config import AGENT_TEMPERATURES, DEFAULT_MODEL, LOG_DIR, MAX_OUTPUT_TOKENS

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[StreamChunk], None]


# -------------------------
# LLM init
# -------------------------
def get_llm(model: Optional[str] = None,
            temperature: Optional[float] = None,
            max_tokens: Optional[int] = None,
            json_output: bool = False):
    api_key = os.getenv("GOOGLE_API_KEY_GEMINI")
    if not api_key and "GOOGLE_API_KEY" not in os.environ:
        raise ProviderError("Please set GOOGLE_API_KEY_GEMINI environment variable for Gemini access.")
    if api_key and "GOOGLE_API_KEY" not in os.environ:
        os.environ["GOOGLE_API_KEY"] = api_key
    kwargs: Dict[str, Any] = {
        "model": model or DEFAULT_MODEL,
        "temperature": AGENT_TEMPERATURES["generation"] if temperature is None else temperature,
        "max_output_tokens": max_tokens or MAX_OUTPUT_TOKENS,
    }
    if json_output:
        kwargs["response_mime_type"] = "application/json"
    return ChatGoogleGenerativeAI(**kwargs)


def _save_debug_log(prefix: str, payload: Dict[str, Any]):
    fname = f"{int(time.time())}_{prefix}.json"
    path = os.path.join(LOG_DIR, fname)
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
    except OSError:
        logger.exception("Failed to write debug log")


# -------------------------
# Message building
# -------------------------
def build_messages(request: GenerationRequest) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    if request.system_instruction:
        messages.append(SystemMessage(content=request.system_instruction))
    for turn in request.conversation_history or []:
        if turn.role in ("assistant", "model"):
            messages.append(AIMessage(content=turn.content))
        else:
            messages.append(HumanMessage(content=turn.content))
    if request.images:
        parts: List[Any] = [{"type": "text", "text": request.prompt}]
        for img in request.images:
            parts.append({"type": "image_url", "image_url": f"data:{img.mime_type};base64,{img.data}"})
        messages.append(HumanMessage(content=parts))
    else:
        messages.append(HumanMessage(content=request.prompt))
    return messages


def _chunk_text(content: Any) -> str:
    # Gemini chunks carry either a plain string or a list of content parts
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        out = []
        for part in content:
            if isinstance(part, str):
                out.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                out.append(part["text"])
        return "".join(out)
    return ""


def _usage_from(meta: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not meta:
        return None
    inp = int(meta.get("input_tokens") or 0)
    out = int(meta.get("output_tokens") or 0)
    return TokenUsage(input_tokens=inp, output_tokens=out, total_tokens=int(meta.get("total_tokens") or inp + out))


# -------------------------
# Streaming call
# -------------------------
async def generate_stream(request: GenerationRequest,
                          on_chunk: ChunkCallback,
                          model: Optional[str] = None) -> ProviderResponse:
    """
    Stream one request through Gemini, calling on_chunk for every text delta.
    Returns the final text with finish reason and token usage. Provider failures
    are raised as ProviderError and never retried here.
    """
    llm = get_llm(model,
                  temperature=request.temperature,
                  max_tokens=request.max_tokens,
                  json_output=request.response_format == "json")
    messages = build_messages(request)

    parts: List[str] = []
    usage_meta = None
    finish_reason: Optional[str] = None
    start_ts = time.time()
    try:
        async for chunk in llm.astream(messages):
            text = _chunk_text(chunk.content)
            if text:
                parts.append(text)
                on_chunk(StreamChunk(text=text, done=False))
            # streamed usage arrives as per-chunk deltas
            chunk_usage = getattr(chunk, "usage_metadata", None)
            if chunk_usage:
                usage_meta = add_usage(usage_meta, chunk_usage)
            meta = getattr(chunk, "response_metadata", None) or {}
            if meta.get("finish_reason"):
                finish_reason = str(meta["finish_reason"])
    except ProviderError:
        raise
    except Exception as e:
        logger.exception("LLM stream failed after %.1fs: %s", time.time() - start_ts, e)
        _save_debug_log("llm_stream_error", {
            "prompt": request.prompt[:2000],
            "partial": "".join(parts)[-2000:],
            "error": repr(e),
        })
        raise ProviderError(f"LLM stream failed: {e}", raw_text="".join(parts)) from e

    on_chunk(StreamChunk(text="", done=True))
    return ProviderResponse(text="".join(parts), finish_reason=finish_reason, usage=_usage_from(usage_meta))
