# genstream/core/plan_sniffer.py
"""
Detect the early "// PLAN: {...}" line the model is asked to emit before the
file payload. Pure function over the text accumulated so far: the caller
re-invokes it as more text arrives and gets None until a plan is readable.
"""
import json
import logging
import re
from typing import List, Optional

from genstream.models import GenerationPlan

logger = logging.getLogger(__name__)

PLAN_MARKER = "// PLAN:"
INVISIBLE_PREFIX = "\ufeff\u200b\u200c\u200d\u00a0"

_PLAN_LINE = re.compile(r"//\s*PLAN:\s*(\{.+)", re.DOTALL)
_CREATE_ARRAY = re.compile(r'"create"\s*:\s*\[([^\]]*)\]')
_UPDATE_ARRAY = re.compile(r'"update"\s*:\s*\[([^\]]*)\]')
_QUOTED = re.compile(r'"([^"]+)"')


def _balanced_object(text: str) -> Optional[str]:
    """Return the leading {...} of text, or None if its closing brace has not streamed in yet."""
    depth = 0
    for i, ch in enumerate(text):
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[: i + 1]
    return None


def _repair_plan_json(s: str) -> str:
    s = re.sub(r'"total"\s*:\s*(?=[}\]])', "", s)  # dangling "total": with no value
    s = re.sub(r",\s*}", "}", s)
    s = re.sub(r",\s*]", "]", s)
    return s


def _quoted_items(m: Optional[re.Match]) -> List[str]:
    if not m:
        return []
    return _QUOTED.findall(m.group(1))


def _as_paths(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str) and v]


def parse_file_plan_from_stream(full_text: str) -> Optional[GenerationPlan]:
    m = _PLAN_LINE.search(full_text or "")
    if not m:
        return None

    body = _balanced_object(m.group(1))
    if body is not None:
        try:
            raw = json.loads(_repair_plan_json(body))
        except ValueError:
            raw = None
        if isinstance(raw, dict):
            files = _as_paths(raw.get("create")) + _as_paths(raw.get("update"))
            if not files:
                return None
            total = raw.get("total")
            if not isinstance(total, int) or isinstance(total, bool) or total <= 0:
                total = len(files)
            return GenerationPlan(create=files, delete=_as_paths(raw.get("delete")), total=total)

    # object still streaming in, or unparseable: read the arrays directly
    files = _quoted_items(_CREATE_ARRAY.search(full_text)) + _quoted_items(_UPDATE_ARRAY.search(full_text))
    if files:
        logger.debug("plan object unreadable, recovered %d paths from arrays", len(files))
        return GenerationPlan(create=files, delete=[], total=len(files))
    return None


def strip_plan_comment(response: str) -> str:
    """
    Drop a leading "// PLAN: {...}" line so the remainder can be parsed as the
    file payload. The plan is only recognised at the start of the response.
    """
    if not response:
        return ""
    cleaned = response.lstrip().lstrip(INVISIBLE_PREFIX)
    idx = cleaned.find(PLAN_MARKER)
    if idx == -1 or cleaned[:idx].strip():
        return cleaned
    first_brace = cleaned.find("{", idx)
    if first_brace == -1:
        return cleaned
    body = _balanced_object(cleaned[first_brace:])
    if body is None:
        return cleaned
    return cleaned[first_brace + len(body):].lstrip()
