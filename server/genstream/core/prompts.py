# genstream/core/prompts.py
"""
Prompts used by the generation pipeline.

Goals:
- Force a single JSON object the backend can parse, preceded by a one-line PLAN.
- Keep continuation prompts narrow: name exactly the files still missing.
- Give the model enough of a truncated response to pick up where it stopped.
"""
from typing import Dict, List, Optional

from genstream.models import FileSet

REFERENCE_FILES_SHOWN = 5


def build_system_prompt(diff_mode: bool = False) -> str:
    """
    System prompt for the main generation call.
    Clear, short rules to reduce accidental extra text.
    """
    if diff_mode:
        return (
            "You are an expert React developer editing an existing project.\n"
            "OUTPUT RULES:\n"
            " - First line: // PLAN: {\"create\":[...],\"update\":[...],\"delete\":[...],\"total\":N}\n"
            " - Then EXACTLY one valid JSON object and nothing else.\n"
            " - Top-level keys: explanation, changes, deletedFiles.\n"
            " - 'changes' maps a relative path to either {\"replacements\":[{\"search\":\"...\",\"replace\":\"...\"}]}\n"
            "   for an existing file or {\"isNew\":true,\"content\":\"...\"} for a new one.\n"
            " - Each 'search' must be copied verbatim from the current file and be unique within it.\n"
        )
    return (
        "You are an expert React developer generating complete projects.\n"
        "OUTPUT RULES:\n"
        " - First line: // PLAN: {\"create\":[...],\"update\":[...],\"delete\":[...],\"total\":N}\n"
        " - Then EXACTLY one valid JSON object and nothing else.\n"
        " - Top-level keys: explanation, files, deletedFiles, generationMeta.\n"
        " - 'files' maps a relative path to the COMPLETE file content as a string.\n"
        " - If you cannot fit every planned file, stop after a complete file and set generationMeta\n"
        "   {totalFilesPlanned, filesInThisBatch, completedFiles, remainingFiles, currentBatch, totalBatches, isComplete}.\n"
        " - Keep files small and modular; entry point is src/App.tsx.\n"
        " - Do NOT include secrets or tokens in files; reference env vars instead.\n"
    )


def build_continuation_system_prompt(base_instruction: Optional[str] = None) -> str:
    """Continuation output rules, appended to the caller's own system instruction when there is one."""
    rules = (
        "You are an expert React developer. Continue generating the remaining files for the project.\n"
        "OUTPUT RULES:\n"
        " - Return EXACTLY one valid JSON object: {\"explanation\": \"...\", \"files\": {\"path\": \"content\"}}.\n"
        " - Each file MUST be complete and functional.\n"
        " - Use relative imports and keep files under 300 lines.\n"
    )
    if not base_instruction or not base_instruction.strip():
        return rules
    return base_instruction.rstrip() + "\n\nCONTINUATION BATCH:\n" + rules


def _reference_list(files: FileSet, limit: int = REFERENCE_FILES_SHOWN) -> str:
    paths = list(files)
    lines = [f"- {p}" for p in paths[:limit]]
    if len(paths) > limit:
        lines.append(f"... and {len(paths) - limit} more files")
    return "\n".join(lines) if lines else "(none yet)"


def build_continuation_prompt(original_prompt: str,
                              missing_files: List[str],
                              accumulated_files: FileSet,
                              batch: int,
                              total_batches: int) -> str:
    """
    Prompt for one continuation batch. Lists exactly the missing paths and
    carries the original request verbatim.
    """
    missing = "\n".join(f"{i}. {p}" for i, p in enumerate(missing_files, 1))
    completed = "\n".join(f"- {p}" for p in accumulated_files) or "(none yet)"
    return (
        f"Continue generating the remaining files for the project (batch {batch} of {total_batches}).\n\n"
        f"Already completed: {len(accumulated_files)} files\n"
        f"{completed}\n\n"
        f"REQUIRED FILES (generate ALL of these and nothing else):\n{missing}\n\n"
        f"ORIGINAL REQUEST:\n{original_prompt}\n\n"
        "Each file must be COMPLETE and FUNCTIONAL. Output: the single JSON object described by the system prompt."
    )


def build_regenerate_prompt(original_prompt: str, files_to_regenerate: List[str], good_files: FileSet) -> str:
    """Narrow prompt for files that arrived cut short."""
    required = "\n".join(f"{i}. {p}" for i, p in enumerate(files_to_regenerate, 1))
    return (
        "Generate ONLY the following specific files. Their previous versions were cut off.\n\n"
        f"REQUIRED FILES (generate ALL of these):\n{required}\n\n"
        "These files must integrate with the existing project. Existing files for reference:\n"
        f"{_reference_list(good_files)}\n\n"
        f"ORIGINAL REQUEST:\n{original_prompt}\n\n"
        "Return complete file contents, no truncation. Output: the single JSON object described by the system prompt."
    )


def build_truncation_retry_prompt(raw_response: str,
                                  original_prompt: str,
                                  head_chars: int = 2000,
                                  tail_chars: int = 500) -> str:
    return (
        "Continue generating from where you left off. Your previous response was truncated.\n\n"
        f"Previous incomplete response (first {head_chars} chars):\n{raw_response[:head_chars]}\n\n"
        f"Last {tail_chars} chars of incomplete response:\n{raw_response[-tail_chars:]}\n\n"
        "Continue from exactly where you stopped. Make sure to:\n"
        " 1) Complete any incomplete JSON structure\n"
        " 2) Finish any cut-off file content\n"
        " 3) Provide all remaining files\n"
        " 4) Emit nothing that was already emitted\n\n"
        f"Original prompt: {original_prompt}"
    )


def build_user_prompt(prompt: str, working_files: Optional[Dict[str, str]] = None, diff_mode: bool = False) -> str:
    """
    Prompt body for the main generation step. Combined with build_system_prompt above.
    In diff mode the current contents are included so search fragments can be copied verbatim.
    """
    if not working_files:
        return prompt
    if diff_mode:
        listing = "\n\n".join(f"### {p}\n{c}" for p, c in working_files.items())
    else:
        listing = "\n".join(f"- {p}" for p in working_files)
    return (
        "Context:\n"
        f"Current project files:\n{listing}\n\n"
        f"Request:\n{prompt}"
    )
