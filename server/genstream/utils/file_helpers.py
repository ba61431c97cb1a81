import os
import re
from typing import Iterable, List, Optional, Tuple

# dependency caches, build output and VCS metadata never enter a file set
IGNORED_PATHS = [".git", "node_modules", ".next", ".nuxt", "dist", "build", ".cache", ".DS_Store", "Thumbs.db"]

_FENCE_OPEN = re.compile(
    r"^```(?:javascript|typescript|tsx|jsx|ts|js|react|html|css|json|sql|markdown|md|plaintext|text|sh|bash|shell)?[ \t]*\n?",
    re.IGNORECASE | re.MULTILINE,
)
_FENCE_CLOSE = re.compile(r"\n?```[ \t]*$", re.MULTILINE)
_LANG_LINE = re.compile(r"^(javascript|typescript|tsx|jsx|ts|js|react)[ \t]*\n", re.IGNORECASE)
_EXTENSION_ONLY = re.compile(r"^(tsx|jsx|ts|js|css|json|md|html);?$", re.IGNORECASE)


def is_ignored_file_path(path: str) -> bool:
    segments = path.replace("\\", "/").split("/")
    return any(seg in IGNORED_PATHS for seg in segments)


def is_malformed_path(path: str) -> bool:
    """e.g. "src/components/.tsx", "src/", "README" """
    if not path or "/." in path or path.endswith("/"):
        return True
    return re.search(r"\.[a-z]+$", path, re.IGNORECASE) is None


def is_extension_only(content: str) -> bool:
    return bool(_EXTENSION_ONLY.match(content.strip()))


def clean_generated_code(code: str) -> str:
    """
    Remove markdown artifacts the model wraps around file contents:
    code fences (with or without a language tag) and a lone language line.
    """
    if not code:
        return ""
    cleaned = _FENCE_OPEN.sub("", code)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    cleaned = _LANG_LINE.sub("", cleaned)
    cleaned = cleaned.replace("```", "")
    return cleaned.strip()


def unescape_json_text(s: str) -> str:
    """Decode the common JSON escapes in text that never went through a JSON parser."""
    if not s:
        return s
    return (
        s.replace("\\n", "\n")
        .replace("\\t", "\t")
        .replace("\\r", "\r")
        .replace('\\"', '"')
        .replace("\\'", "'")
        .replace("\\\\", "\\")
    )


def normalize_path(p: str) -> Optional[str]:
    if not isinstance(p, str) or p.strip() == "":
        return None
    p = p.strip().replace("\\", "/")
    # disallow absolute paths
    if os.path.isabs(p):
        return None
    clean = os.path.normpath(p).replace("\\", "/")
    if clean.startswith("..") or "/.." in clean or clean == "..":
        return None
    if clean.startswith("./"):
        clean = clean[2:]
    return clean


def producible_paths(paths: Iterable[str]) -> Tuple[List[str], List[str]]:
    """
    Split planned paths into ones the parser can ever accept (normalized) and
    ones it always rejects, e.g. "Dockerfile" or "node_modules/x.js".
    """
    kept: List[str] = []
    dropped: List[str] = []
    for raw in paths:
        p = normalize_path(raw)
        if p is None or is_malformed_path(p) or is_ignored_file_path(p):
            dropped.append(raw)
        elif p not in kept:
            kept.append(p)
    return kept, dropped
