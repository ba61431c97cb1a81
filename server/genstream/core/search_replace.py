# genstream/core/search_replace.py
"""
Diff-mode responses: per-file search/replace directives applied to the working
set instead of full file contents.

{
  "explanation": "...",
  "changes": {
    "src/App.tsx": {"replacements": [{"search": "old", "replace": "new"}]},
    "src/New.tsx": {"isNew": true, "content": "..."},
    "src/Old.tsx": {"isDeleted": true}
  },
  "deletedFiles": ["src/Gone.tsx"]
}
"""
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from genstream.core.errors import DiffNotApplicable, GenerationError
from genstream.core.response_parser import load_json_object
from genstream.models import EditFailure, FileSet, ParsedBatch
from genstream.utils.config import MIN_FILE_CONTENT
from genstream.utils.file_helpers import clean_generated_code, is_ignored_file_path, unescape_json_text

logger = logging.getLogger(__name__)


class Replacement(BaseModel):
    search: str
    replace: str = ""


class FileChange(BaseModel):
    is_new: bool = False
    is_deleted: bool = False
    content: Optional[str] = None
    replacements: List[Replacement] = Field(default_factory=list)


class SearchReplaceResponse(BaseModel):
    explanation: str = ""
    changes: Dict[str, FileChange] = Field(default_factory=dict)
    deleted_files: List[str] = Field(default_factory=list)


class MergeStats(BaseModel):
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    replacements_applied: int = 0
    replacements_failed: int = 0


class SearchReplaceMergeResult(BaseModel):
    files: FileSet = Field(default_factory=dict, description="Full working set after the edits")
    changed: FileSet = Field(default_factory=dict, description="Only created or updated files")
    deleted: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    failed_edits: List[EditFailure] = Field(default_factory=list)
    stats: MergeStats = Field(default_factory=MergeStats)

    @property
    def success(self) -> bool:
        return self.stats.failed == 0 and self.stats.replacements_failed == 0

    @property
    def applied_any(self) -> bool:
        return bool(self.stats.created or self.stats.updated or self.stats.deleted)


def parse_search_replace_response(text: str) -> SearchReplaceResponse:
    obj, _ = load_json_object(text)
    changes = obj.get("changes") or obj.get("files") or {}
    if not isinstance(changes, dict):
        raise DiffNotApplicable("Diff response has no changes object", raw_text=text)

    result = SearchReplaceResponse(
        explanation=obj.get("explanation") if isinstance(obj.get("explanation"), str) else "",
        deleted_files=[p for p in obj.get("deletedFiles") or [] if isinstance(p, str)],
    )
    for path, change in changes.items():
        if "." not in path and "/" not in path:
            continue
        if isinstance(change, str):
            result.changes[path] = FileChange(is_new=True, content=change)
        elif isinstance(change, dict):
            fc = FileChange(is_new=bool(change.get("isNew")), is_deleted=bool(change.get("isDeleted")))
            if fc.is_new:
                fc.content = change.get("content") or change.get("diff") or ""
            for r in change.get("replacements") or []:
                if isinstance(r, dict) and isinstance(r.get("search"), str) and r["search"]:
                    fc.replacements.append(Replacement(search=r["search"], replace=r.get("replace") or ""))
            result.changes[path] = fc

    logger.info("Parsed diff response: %d files changed, %d deleted",
                len(result.changes), len(result.deleted_files))
    return result


def _replace_first(content: str, search: str, replace: str, path: str) -> str:
    occurrences = content.count(search)
    if occurrences > 1:
        logger.warning("%s: search fragment occurs %d times, replacing the first only: %r",
                       path, occurrences, search[:60])
    return content.replace(search, replace, 1)


def apply_search_replace(content: str, replacements: List[Replacement], path: str = "") -> Tuple[str, int, List[str]]:
    """
    Apply replacements in order, each to the first occurrence of its search
    fragment. A fragment that is not found verbatim is retried with CRLF
    normalized and then JSON-unescaped. Returns (content, applied, failed searches).
    """
    applied = 0
    failed: List[str] = []
    for r in replacements:
        if r.search in content:
            content = _replace_first(content, r.search, r.replace, path)
            applied += 1
            continue
        normalized = content.replace("\r\n", "\n")
        search = r.search.replace("\r\n", "\n")
        if search in normalized:
            content = _replace_first(normalized, search, r.replace, path)
            applied += 1
            continue
        unescaped = unescape_json_text(search)
        if unescaped != search and unescaped in normalized:
            content = _replace_first(normalized, unescaped, unescape_json_text(r.replace), path)
            applied += 1
            continue
        logger.warning("%s: search fragment not found: %r", path, r.search[:100])
        failed.append(r.search)
    return content, applied, failed


def merge_search_replace_changes(working: FileSet,
                                 response: SearchReplaceResponse,
                                 min_content: int = MIN_FILE_CONTENT) -> SearchReplaceMergeResult:
    result = SearchReplaceMergeResult(files=dict(working))
    stats = result.stats

    def _delete(path: str):
        if path in result.files:
            del result.files[path]
            result.deleted.append(path)
            stats.deleted += 1

    for path in response.deleted_files:
        _delete(path)

    for path, change in response.changes.items():
        if is_ignored_file_path(path):
            logger.info("Skipping ignored path: %s", path)
            continue
        if change.is_deleted:
            _delete(path)
            continue

        if change.is_new or path not in working:
            content = clean_generated_code(change.content or "")
            if len(content) >= min_content:
                result.files[path] = content
                result.changed[path] = content
                stats.created += 1
            else:
                result.errors.append(f"New file {path} has invalid content")
                stats.failed += 1
            continue

        if not change.replacements:
            continue
        content, applied, failed = apply_search_replace(working[path], change.replacements, path)
        stats.replacements_applied += applied
        stats.replacements_failed += len(failed)
        for search in failed:
            result.failed_edits.append(EditFailure(path=path, search=search))
        if failed:
            result.errors.append(f"{path}: {len(failed)} search(es) not found")
        if applied:
            result.files[path] = content
            result.changed[path] = content
            stats.updated += 1

    logger.info("Diff merge: %s", stats.model_dump())
    return result


def parse_diff_response(text: str, working: FileSet) -> ParsedBatch:
    """
    Parse and apply a diff-mode response. The batch holds only created and
    updated files; unresolved edits are reported in failed_edits. Raises
    DiffNotApplicable when nothing could be applied.
    """
    try:
        response = parse_search_replace_response(text)
    except DiffNotApplicable:
        raise
    except GenerationError as e:
        raise DiffNotApplicable(f"Diff response could not be parsed: {e}", raw_text=text) from e

    merged = merge_search_replace_changes(working, response)
    if not merged.applied_any:
        raise DiffNotApplicable(
            f"No edits applied ({merged.stats.replacements_failed} search fragments not found)", raw_text=text)

    return ParsedBatch(explanation=response.explanation or f"Updated {len(merged.changed)} files.",
                       files=merged.changed,
                       deleted_files=merged.deleted,
                       failed_edits=merged.failed_edits)
