import json
from typing import List, Optional, Union

import pytest

from genstream.core import llm_client
from genstream.models import GenerationRequest, ProviderResponse, StreamChunk, TokenUsage


class FakeProvider:
    """
    Scripted stand-in for llm_client.generate_stream. Each call consumes the
    next script entry: a string is streamed in small chunks, an exception is
    raised before any text is sent.
    """

    def __init__(self, *responses: Union[str, Exception], chunk_size: int = 40):
        self.responses = list(responses)
        self.chunk_size = chunk_size
        self.requests: List[GenerationRequest] = []

    async def __call__(self, request: GenerationRequest, on_chunk, model: Optional[str] = None) -> ProviderResponse:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError("FakeProvider script exhausted")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        for i in range(0, len(item), self.chunk_size):
            on_chunk(StreamChunk(text=item[i:i + self.chunk_size]))
        on_chunk(StreamChunk(text="", done=True))
        return ProviderResponse(text=item, finish_reason="STOP",
                                usage=TokenUsage(input_tokens=10, output_tokens=20, total_tokens=30))

    @property
    def calls(self) -> int:
        return len(self.requests)


class RecordingReview:
    def __init__(self):
        self.proposals = []

    def propose_files(self, label, files):
        self.proposals.append((label, dict(files)))


def files_response(files, plan=None, **extra) -> str:
    body = {"explanation": "done", "files": files}
    body.update(extra)
    text = json.dumps(body)
    if plan is not None:
        text = "// PLAN: " + json.dumps(plan) + "\n" + text
    return text


def component(name: str) -> str:
    return f"export default function {name}() {{\n  return <div>{name}</div>;\n}}\n"


def long_component(name: str, lines: int = 30) -> str:
    body = "\n".join(f"      <li key=\"{i}\">{name} item {i}</li>" for i in range(lines))
    return f"export default function {name}() {{\n  return (\n    <ul>\n{body}\n    </ul>\n  );\n}}\n"


def truncated_payload(complete: dict, partial_path: str, partial_text: str) -> str:
    """A files payload cut off inside the value of partial_path."""
    head = json.dumps({"explanation": "x", "files": complete})[:-2]
    return head + ", " + json.dumps(partial_path) + ": \"" + json.dumps(partial_text)[1:-1]


@pytest.fixture(autouse=True)
def _debug_logs_to_tmp(tmp_path, monkeypatch):
    monkeypatch.setattr(llm_client, "LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def review():
    return RecordingReview()
