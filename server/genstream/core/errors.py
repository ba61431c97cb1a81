# genstream/core/errors.py
"""
Failure taxonomy of the generation pipeline.

Only conditions that escape the pipeline are exceptions. A plan that cannot be
parsed is just "no plan" (None), a plan/output divergence is a MoreNeeded
transition and a hit batch ceiling is an Aborted transition; see
core/continuation.py.
"""
from typing import Optional


class GenerationError(Exception):
    """Base class. Every terminal failure keeps the raw provider text."""

    kind = "generation_error"

    def __init__(self, message: str, raw_text: str = "", truncated: Optional[object] = None):
        super().__init__(message)
        self.raw_text = raw_text or ""
        # TruncatedContent the caller can hand to retry_truncated()
        self.truncated = truncated

    def to_detail(self) -> dict:
        return {"error": str(self), "kind": self.kind, "raw": self.raw_text}


class ProviderError(GenerationError):
    kind = "provider_error"


class ParseError(GenerationError):
    kind = "parse_error"


class NoFilesProduced(GenerationError):
    """The payload parsed but held no usable file. Fatal for the batch."""

    kind = "no_files_produced"


class TruncatedResponse(ParseError):
    kind = "truncated_response"


class DiffNotApplicable(ParseError):
    """No edit directive applied; the caller falls back to standard parsing."""

    kind = "diff_not_applicable"


class RecoveryExhausted(GenerationError):
    kind = "recovery_exhausted"


class GenerationBusy(GenerationError):
    kind = "generation_busy"
