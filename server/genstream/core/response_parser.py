# genstream/core/response_parser.py
"""
Turn a complete model response into a ParsedBatch.

The payload is a single JSON object, optionally preceded by the PLAN line and
optionally wrapped in a ```json fence. Accepted file keys are "files",
"fileChanges", "changes" or a root object of path -> content. Small structural
damage is repaired (trailing commas, missing closers after the last complete
value). A payload that ends inside a string was cut off mid-file and is raised
as TruncatedResponse so truncation recovery can salvage it.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from genstream.core.errors import NoFilesProduced, ParseError, TruncatedResponse
from genstream.core.plan_sniffer import strip_plan_comment
from genstream.models import GenerationProgress, ParsedBatch
from genstream.utils.config import MAX_RESPONSE_CHARS, MIN_FILE_CONTENT
from genstream.utils.file_helpers import (
    clean_generated_code,
    is_extension_only,
    is_ignored_file_path,
    is_malformed_path,
    normalize_path,
)

logger = logging.getLogger(__name__)

FILE_KEYS = ("files", "fileChanges", "changes")
_JSON_FENCE = re.compile(r"^```(?:json)?[ \t]*\n?([\s\S]*?)\n?```", re.IGNORECASE)
_DANGLING_TAIL = re.compile(r'(?:,\s*)?"(?:[^"\\]|\\.)*"\s*:\s*$|,\s*$')
_PATH_KEY = re.compile(r"\.[a-z]+$", re.IGNORECASE)
RESERVED_KEYS = ("explanation", "generationMeta", "continuation", "deletedFiles")
_CLOSERS = {"{": "}", "[": "]"}
DEFAULT_EXPLANATION = "App generated successfully."

_decoder = json.JSONDecoder()


# -------------------------
# JSON helpers
# -------------------------
def scan_json_state(s: str) -> Tuple[List[str], bool]:
    """Return (open containers, inside-a-string) at the end of s."""
    stack: List[str] = []
    in_str = False
    esc = False
    for ch in s:
        if esc:
            esc = False
            continue
        if in_str:
            if ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            if stack and _CLOSERS[stack[-1]] == ch:
                stack.pop()
    return stack, in_str


def drop_trailing_commas(s: str) -> str:
    """Remove commas directly before a closer, leaving string contents untouched."""
    out: List[str] = []
    in_str = False
    esc = False
    i, n = 0, len(s)
    while i < n:
        ch = s[i]
        if in_str:
            out.append(ch)
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            i += 1
            continue
        if ch == '"':
            in_str = True
        elif ch == ",":
            j = i + 1
            while j < n and s[j] in " \t\r\n":
                j += 1
            if j < n and s[j] in "}]":
                i = j
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def repair_json(s: str) -> Tuple[str, bool]:
    """
    Light repair of a JSON object. Returns (text, closed) where closed says
    whether missing closers had to be appended. Raises TruncatedResponse when
    the text ends inside a string value.
    """
    s = drop_trailing_commas(s.rstrip())
    stack, in_str = scan_json_state(s)
    if in_str:
        raise TruncatedResponse("Response ends inside a string value", raw_text=s)
    if not stack:
        return s, False
    s = _DANGLING_TAIL.sub("", s.rstrip())
    # the dangling key strip can only remove complete tokens, so the stack is unchanged
    return s + "".join(_CLOSERS[c] for c in reversed(stack)), True


def json_candidate(text: str) -> str:
    """Locate the JSON object in a response: after the plan line, inside a leading fence if any."""
    body = strip_plan_comment(text)
    m = _JSON_FENCE.match(body)
    if m:
        body = m.group(1).strip()
    start = body.find("{")
    if start == -1:
        raise ParseError("No JSON object found in response", raw_text=text)
    return body[start:]


def load_json_object(text: str, max_chars: int = MAX_RESPONSE_CHARS) -> Tuple[Dict[str, Any], bool]:
    """Parse the response payload into a dict. Returns (obj, truncated)."""
    if len(text or "") > max_chars:
        raise ParseError(f"Response too large ({len(text)} chars, limit {max_chars})", raw_text=text)
    candidate = json_candidate(text or "")
    truncated = False
    try:
        obj, _ = _decoder.raw_decode(candidate)
    except ValueError as e:
        logger.debug("strict JSON parse failed (%s), attempting repair", e)
        repaired, truncated = repair_json(candidate)
        try:
            obj, _ = _decoder.raw_decode(repaired)
        except ValueError as e2:
            raise ParseError(f"Invalid JSON in response: {e2}", raw_text=text) from e2
        if truncated:
            logger.warning("Response JSON was missing closers; repaired %d chars", len(candidate))
    if not isinstance(obj, dict):
        raise ParseError("Response JSON is not an object", raw_text=text)
    return obj, truncated


# -------------------------
# File extraction
# -------------------------
def _file_map(obj: Dict[str, Any]) -> Dict[str, Any]:
    for key in FILE_KEYS:
        value = obj.get(key)
        if isinstance(value, dict):
            return value
        if isinstance(value, list):
            # [{"path": ..., "content": ...}]
            out: Dict[str, Any] = {}
            for item in value:
                if isinstance(item, dict) and isinstance(item.get("path"), str):
                    out[item["path"]] = item
            return out
    # root object of path -> content
    return {k: v for k, v in obj.items() if k not in RESERVED_KEYS and _PATH_KEY.search(k)}


def _content_of(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("content", "code", "diff"):
            if isinstance(value.get(key), str):
                return value[key]
    return None


def _progress_of(obj: Dict[str, Any], files: List[str]) -> Optional[GenerationProgress]:
    meta = obj.get("generationMeta")
    if isinstance(meta, dict):
        data = dict(meta)
        completed = meta.get("completedFiles") if isinstance(meta.get("completedFiles"), list) else files
        remaining = meta.get("remainingFiles") if isinstance(meta.get("remainingFiles"), list) else []
        data.setdefault("totalFilesPlanned", len({p for p in list(completed) + list(remaining) if isinstance(p, str)}))
        data.setdefault("filesInThisBatch", files)
        data.setdefault("completedFiles", files)
        data.setdefault("remainingFiles", [])
        try:
            return GenerationProgress.model_validate(data)
        except ValueError:
            logger.warning("Ignoring malformed generationMeta: %r", meta)
            return None
    legacy = obj.get("continuation")
    if isinstance(legacy, dict):
        remaining = [p for p in legacy.get("remainingFiles") or [] if isinstance(p, str)]
        completed = [p for p in legacy.get("completedFiles") or files if isinstance(p, str)]
        return GenerationProgress(
            total_files_planned=len(completed) + len(remaining),
            files_in_this_batch=files,
            completed_files=completed,
            remaining_files=remaining,
            current_batch=int(legacy.get("currentBatch") or 1),
            total_batches=int(legacy.get("totalBatches") or 1),
            is_complete=not remaining,
        )
    return None


def collect_files(raw: Dict[str, Any], min_content: int = MIN_FILE_CONTENT) -> Tuple[Dict[str, str], List[str]]:
    """Apply path and content filters. Returns (accepted files, rejected paths)."""
    files: Dict[str, str] = {}
    rejected: List[str] = []
    for path, value in raw.items():
        content = _content_of(value)
        if content is None or not isinstance(path, str):
            rejected.append(str(path))
            continue
        path = normalize_path(path)
        if path is None or is_malformed_path(path) or is_ignored_file_path(path):
            logger.warning("Skipping file with bad path: %r", path)
            rejected.append(str(path))
            continue
        cleaned = clean_generated_code(content)
        if len(cleaned) < min_content or is_extension_only(cleaned):
            logger.warning("Skipping %s: content too short (%d chars)", path, len(cleaned))
            rejected.append(path)
            continue
        files[path] = cleaned
    return files, rejected


def parse_standard_response(text: str,
                            min_content: int = MIN_FILE_CONTENT,
                            max_chars: int = MAX_RESPONSE_CHARS) -> ParsedBatch:
    obj, truncated = load_json_object(text, max_chars=max_chars)

    files, rejected = collect_files(_file_map(obj), min_content=min_content)
    if not files:
        raise NoFilesProduced(
            f"Response contained no usable files ({len(rejected)} rejected)", raw_text=text)

    deleted = [p.strip() for p in obj.get("deletedFiles") or [] if isinstance(p, str) and p.strip()]

    explanation = next((v for v in (obj.get("explanation"), obj.get("description"))
                        if isinstance(v, str) and v.strip()), DEFAULT_EXPLANATION)

    return ParsedBatch(explanation=explanation,
                       files=files,
                       deleted_files=deleted,
                       progress=_progress_of(obj, list(files)),
                       truncated=truncated)
