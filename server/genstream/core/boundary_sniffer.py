# genstream/core/boundary_sniffer.py
import re
from typing import List, Optional

from genstream.models import GenerationPlan

_FILE_KEY = re.compile(r'"([^"]+\.(?:tsx?|jsx?|css|json|md|sql))"\s*:')


class BoundarySniffer:
    """
    Reports file paths as their `"path.ext":` keys appear in the stream.

    Each path is reported once. Paths containing a backslash come from text the
    model double-escaped and are never reported.
    """

    def __init__(self):
        self._seen: List[str] = []

    @property
    def detected(self) -> List[str]:
        return list(self._seen)

    def feed(self, full_text: str) -> List[str]:
        """Scan the accumulated text and return only the paths not reported before."""
        new: List[str] = []
        for m in _FILE_KEY.finditer(full_text):
            path = m.group(1).strip()
            if "\\" in path or path in self._seen:
                continue
            self._seen.append(path)
            new.append(path)
        return new

    def update_plan(self, plan: Optional[GenerationPlan]) -> Optional[GenerationPlan]:
        if plan is None:
            return None
        plan.completed = [p for p in self._seen if p in plan.create]
        return plan
