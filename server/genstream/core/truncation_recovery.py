# genstream/core/truncation_recovery.py
"""
Decide what to do with a response that could not be parsed.

Stages, first match wins:
  1. too short to hold anything useful            -> RecoveryExhausted
  2. plan files missing from the extraction       -> CONTINUATION (seeded with complete files)
  3. plan satisfied, nothing partial              -> SUCCESS
  4. complete files that look cut short           -> REGENERATE those files only
  5. complete files                               -> SUCCESS
  6. only partial files, salvageable              -> PARTIAL
  7. fenced code blocks in a long response        -> RECOVERED
The engine never calls the model itself; the pipeline runs the continuation.
"""
import logging
import re
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from genstream.core.errors import RecoveryExhausted
from genstream.core.extraction import extract_files_from_truncated_response
from genstream.models import FileSet, GenerationPlan, PartialFile, TruncatedContent
from genstream.utils.config import (
    EMERGENCY_BLOCK_MIN,
    EMERGENCY_MIN_CHARS,
    MIN_FILE_CONTENT,
    MIN_RECOVERY_CHARS,
    PARTIAL_SALVAGE_MIN,
)
from genstream.utils.file_helpers import producible_paths, unescape_json_text

logger = logging.getLogger(__name__)

LABEL_GENERATED = "Generated App"
LABEL_UPDATED = "Updated App"
LABEL_PARTIAL = "Generated App (Partial)"
LABEL_RECOVERED = "Generated App (Recovered)"

_CODE_BLOCK = re.compile(r"```(tsx?|jsx?|typescript|javascript|js|ts|css|json|html)?[ \t]*\n([\s\S]*?)\n```")
_LANG_EXT = {"typescript": "ts", "javascript": "js"}


class RecoveryAction(str, Enum):
    SUCCESS = "success"
    CONTINUATION = "continuation"
    REGENERATE = "regenerate"
    PARTIAL = "partial"
    RECOVERED = "recovered"


class RecoveryOutcome(BaseModel):
    action: RecoveryAction
    label: str = LABEL_GENERATED
    files: FileSet = Field(default_factory=dict, description="Files to propose, or to seed a continuation with")
    missing_files: List[str] = Field(default_factory=list, description="Files a continuation must still produce")
    message: str = ""

    @property
    def needs_continuation(self) -> bool:
        return self.action in (RecoveryAction.CONTINUATION, RecoveryAction.REGENERATE)


def looks_truncated(path: str, content: str) -> bool:
    """Heuristic for a file whose closing delimiter was emitted but whose body was cut short."""
    text = content.strip()
    if text.count("{") - text.count("}") > 1:
        return True
    if text.count("(") - text.count(")") > 2:
        return True
    if text.endswith("\\"):
        return True
    if path.endswith((".tsx", ".jsx")) and not text.rstrip(";").rstrip().endswith("}"):
        return True
    return False


def salvage_partial(content: str, min_chars: int = PARTIAL_SALVAGE_MIN) -> Optional[str]:
    if not content or len(content) <= min_chars:
        return None
    cleaned = unescape_json_text(content).strip()
    cleaned = re.sub(r',\s*"[^"]*"?\s*:?\s*$', "", cleaned)  # incomplete trailing key
    cleaned = re.sub(r",\s*$", "", cleaned)
    cleaned = re.sub(r"\{[^}]*$", lambda m: m.group(0) + "\n}", cleaned)
    return cleaned if len(cleaned) > min_chars else None


def emergency_harvest(raw: str,
                      min_chars: int = EMERGENCY_MIN_CHARS,
                      block_min: int = EMERGENCY_BLOCK_MIN) -> FileSet:
    """Lift fenced code blocks out of a long response that holds no structured payload."""
    if len(raw or "") < min_chars:
        return {}
    files: FileSet = {}
    for m in _CODE_BLOCK.finditer(raw):
        code = m.group(2).strip()
        if len(code) <= block_min:
            continue
        lang = (m.group(1) or "tsx").lower()
        files[f"recovered{len(files) + 1}.{_LANG_EXT.get(lang, lang)}"] = code
    return files


def _content(value: Union[str, PartialFile]) -> str:
    return value if isinstance(value, str) else value.content


class TruncationRecoveryEngine:
    def __init__(self,
                 min_chars: int = MIN_RECOVERY_CHARS,
                 min_content: int = MIN_FILE_CONTENT,
                 salvage_min: int = PARTIAL_SALVAGE_MIN,
                 emergency_min_chars: int = EMERGENCY_MIN_CHARS,
                 emergency_block_min: int = EMERGENCY_BLOCK_MIN):
        self.min_chars = min_chars
        self.min_content = min_content
        self.salvage_min = salvage_min
        self.emergency_min_chars = emergency_min_chars
        self.emergency_block_min = emergency_block_min

    def _exhausted(self, raw: str, prompt: str, system_instruction: str, why: str) -> RecoveryExhausted:
        logger.error("Truncation recovery failed: %s (%d chars)", why, len(raw))
        return RecoveryExhausted(
            f"Response was truncated and could not be recovered: {why}",
            raw_text=raw,
            truncated=TruncatedContent(raw_response=raw, prompt=prompt, system_instruction=system_instruction),
        )

    def recover(self,
                raw: str,
                plan: Optional[GenerationPlan] = None,
                has_working_set: bool = False,
                prompt: str = "",
                system_instruction: str = "") -> RecoveryOutcome:
        raw = raw or ""
        if len(raw) < self.min_chars:
            raise self._exhausted(raw, prompt, system_instruction,
                                  f"response shorter than {self.min_chars} chars")

        extraction = extract_files_from_truncated_response(raw, min_content=self.min_content)
        complete = extraction.complete_files
        partial = extraction.partial_files
        success_label = LABEL_UPDATED if has_working_set else LABEL_GENERATED

        if not complete and not partial:
            return self._emergency(raw, prompt, system_instruction)

        if plan is not None and plan.create:
            planned, _ = producible_paths(plan.create)
            missing = [p for p in planned if p not in complete]
            if missing:
                logger.info("Recovered %d/%d planned files; %d left for continuation",
                            len(complete), plan.total, len(missing))
                return RecoveryOutcome(action=RecoveryAction.CONTINUATION,
                                       label=success_label,
                                       files=complete,
                                       missing_files=missing,
                                       message=f"Generating... {len(complete)}/{plan.total} files")
            if not partial:
                return RecoveryOutcome(action=RecoveryAction.SUCCESS,
                                       label=success_label,
                                       files=complete,
                                       message=f"Generated {len(complete)} files!")

            flagged = [p for p, c in complete.items() if looks_truncated(p, c)]
            if flagged:
                good = {p: c for p, c in complete.items() if p not in flagged}
                logger.warning("Files look cut short, regenerating: %s", ", ".join(flagged))
                return RecoveryOutcome(action=RecoveryAction.REGENERATE,
                                       label=success_label,
                                       files=good,
                                       missing_files=flagged,
                                       message=f"Generating... {len(good)}/{plan.total} files")

        if complete:
            return RecoveryOutcome(action=RecoveryAction.SUCCESS,
                                   label=success_label,
                                   files=complete,
                                   message=f"Generated {len(complete)} files!")

        salvaged: Dict[str, str] = {}
        for path, value in partial.items():
            fixed = salvage_partial(_content(value), self.salvage_min)
            if fixed:
                salvaged[path] = fixed
        if salvaged:
            logger.warning("Only partial files recovered: %s", ", ".join(salvaged))
            return RecoveryOutcome(action=RecoveryAction.PARTIAL,
                                   label=LABEL_PARTIAL,
                                   files=salvaged,
                                   message=f"Recovered {len(salvaged)} partial files")

        return self._emergency(raw, prompt, system_instruction)

    def _emergency(self, raw: str, prompt: str, system_instruction: str) -> RecoveryOutcome:
        harvested = emergency_harvest(raw, self.emergency_min_chars, self.emergency_block_min)
        if not harvested:
            raise self._exhausted(raw, prompt, system_instruction, "no files could be extracted")
        logger.warning("Emergency recovery: %d code blocks", len(harvested))
        return RecoveryOutcome(action=RecoveryAction.RECOVERED,
                               label=LABEL_RECOVERED,
                               files=harvested,
                               message=f"Recovered {len(harvested)} code sections")
