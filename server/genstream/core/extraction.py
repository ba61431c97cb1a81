# genstream/core/extraction.py
"""
Tolerant file extraction from text that is not valid JSON.

Walks `"path.ext": "..."` (or backtick-quoted) pairs honoring escapes. A value
with a closing delimiter is a complete file; a value that runs off the end of
the text is the half-written last file and is reported as partial.
"""
import json
import logging
import re
from typing import Dict, Optional, Tuple, Union

from genstream.core.errors import GenerationError
from genstream.core.response_parser import collect_files, load_json_object
from genstream.models import ExtractionResult, PartialFile
from genstream.utils.config import MIN_FILE_CONTENT
from genstream.utils.file_helpers import (
    clean_generated_code,
    is_ignored_file_path,
    is_malformed_path,
    unescape_json_text,
)

logger = logging.getLogger(__name__)

_FILE_VALUE = re.compile(r'"([^"\n\\]+\.[A-Za-z0-9]+)"\s*:\s*(["`])')


def _scan_value(text: str, start: int, quote: str) -> Tuple[str, Optional[int]]:
    """Return (raw value, index of closing delimiter or None if unterminated)."""
    i = start
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return text[start:i], i
        i += 1
    return text[start:], None


def _decode(raw: str, quote: str) -> str:
    if quote == '"':
        try:
            return json.loads(f'"{raw}"')
        except ValueError:
            pass
    return unescape_json_text(raw)


def _strict(text: str, min_content: int) -> Optional[Dict[str, str]]:
    try:
        obj, truncated = load_json_object(text)
    except GenerationError:
        return None
    if truncated:
        return None
    for key in ("files", "fileChanges"):
        if isinstance(obj.get(key), dict):
            files, _ = collect_files(obj[key], min_content=min_content)
            return files or None
    return None


def extract_files_from_truncated_response(text: str, min_content: int = MIN_FILE_CONTENT) -> ExtractionResult:
    strict = _strict(text or "", min_content)
    if strict:
        return ExtractionResult(complete_files=strict, summary=f"{len(strict)} complete, 0 partial (valid JSON)")

    complete: Dict[str, str] = {}
    partial: Dict[str, Union[str, PartialFile]] = {}
    pos = 0
    text = text or ""
    while True:
        m = _FILE_VALUE.search(text, pos)
        if not m:
            break
        path, quote = m.group(1).strip(), m.group(2)
        raw, end = _scan_value(text, m.end(), quote)
        pos = len(text) if end is None else end + 1

        if is_malformed_path(path) or is_ignored_file_path(path):
            continue
        content = clean_generated_code(_decode(raw, quote) if end is not None else unescape_json_text(raw))
        if len(content) < min_content:
            logger.debug("Dropping %s: only %d chars", path, len(content))
            continue
        if end is None:
            partial[path] = PartialFile(content=content, is_complete=False)
        else:
            complete[path] = content
            partial.pop(path, None)

    summary = f"{len(complete)} complete, {len(partial)} partial"
    logger.info("Extracted from truncated response: %s", summary)
    return ExtractionResult(complete_files=complete, partial_files=partial, summary=summary)
