import asyncio

import pytest
from langchain_core.messages import AIMessageChunk, HumanMessage, SystemMessage

from genstream.core import llm_client
from genstream.core.errors import ProviderError
from genstream.models import GenerationRequest


class FakeLLM:
    def __init__(self, chunks, fail_after=None):
        self.chunks = chunks
        self.fail_after = fail_after

    async def astream(self, messages):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise ConnectionError("socket closed")
            yield chunk


def usage(inp, out):
    return {"input_tokens": inp, "output_tokens": out, "total_tokens": inp + out}


def use_llm(monkeypatch, llm):
    monkeypatch.setattr(llm_client, "get_llm", lambda *args, **kwargs: llm)


def test_usage_deltas_are_summed(monkeypatch):
    use_llm(monkeypatch, FakeLLM([
        AIMessageChunk(content='{"files": ', usage_metadata=usage(12, 40)),
        AIMessageChunk(content='{"a.tsx": ', usage_metadata=usage(0, 60)),
        AIMessageChunk(content='"x"}}', usage_metadata=usage(0, 5), response_metadata={"finish_reason": "STOP"}),
    ]))
    chunks = []
    response = asyncio.run(llm_client.generate_stream(GenerationRequest(prompt="p"), chunks.append))
    assert response.text == '{"files": {"a.tsx": "x"}}'
    assert response.finish_reason == "STOP"
    assert response.usage.input_tokens == 12
    assert response.usage.output_tokens == 105
    assert response.usage.total_tokens == 117
    assert chunks[-1].done is True
    assert "".join(c.text for c in chunks) == response.text


def test_no_usage_reported(monkeypatch):
    use_llm(monkeypatch, FakeLLM([AIMessageChunk(content="hello")]))
    response = asyncio.run(llm_client.generate_stream(GenerationRequest(prompt="p"), lambda c: None))
    assert response.usage is None


def test_stream_failure_is_provider_error_with_partial_text(monkeypatch):
    use_llm(monkeypatch, FakeLLM([AIMessageChunk(content="partial "), AIMessageChunk(content="never")], fail_after=1))
    with pytest.raises(ProviderError) as exc:
        asyncio.run(llm_client.generate_stream(GenerationRequest(prompt="p"), lambda c: None))
    assert exc.value.raw_text == "partial "


def test_build_messages_order():
    request = GenerationRequest(prompt="now this", system_instruction="rules",
                                conversation_history=[{"role": "user", "content": "hi"},
                                                      {"role": "assistant", "content": "hello"}])
    messages = llm_client.build_messages(request)
    assert isinstance(messages[0], SystemMessage)
    assert [m.content for m in messages[1:]] == ["hi", "hello", "now this"]
    assert isinstance(messages[-1], HumanMessage)
