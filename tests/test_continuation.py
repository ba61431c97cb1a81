import asyncio

import pytest

from genstream.core.continuation import (
    Complete,
    ContinuationOrchestrator,
    ContinuationPhase,
    MoreNeeded,
    compute_total_batches,
    decide,
    validate_accumulated,
)
from genstream.core.errors import ParseError, ProviderError, RecoveryExhausted
from genstream.models import ContinuationState, GenerationPlan, GenerationProgress, ParsedBatch

from conftest import component


def make_state(accumulated, remaining=None, total=0):
    progress = GenerationProgress(total_files_planned=total or len(accumulated) + len(remaining or []),
                                  remaining_files=remaining or [],
                                  is_complete=not remaining)
    return ContinuationState(original_prompt="build it", progress=progress, accumulated_files=dict(accumulated))


class ScriptedFetch:
    def __init__(self, *batches):
        self.batches = list(batches)
        self.calls = []

    async def __call__(self, state, missing):
        self.calls.append((state.current_batch, list(missing)))
        item = self.batches.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def test_decide_plan_subset_is_complete():
    plan = GenerationPlan(create=["a.tsx", "b.tsx"], total=2)
    assert isinstance(decide(plan, None, ["a.tsx", "b.tsx", "c.tsx"]), Complete)


def test_decide_plan_missing_files():
    plan = GenerationPlan(create=["a.tsx", "b.tsx", "c.tsx"], total=3)
    transition = decide(plan, None, ["b.tsx"])
    assert isinstance(transition, MoreNeeded)
    assert transition.missing == ["a.tsx", "c.tsx"]


def test_decide_uses_progress_without_plan():
    progress = GenerationProgress(remaining_files=["x.tsx", "y.tsx"], is_complete=False)
    assert decide(None, progress, ["x.tsx"]).missing == ["y.tsx"]
    assert isinstance(decide(None, progress, ["x.tsx", "y.tsx"]), Complete)
    progress.is_complete = True
    assert isinstance(decide(None, progress, []), Complete)


def test_total_batches():
    assert compute_total_batches(1) == 1
    assert compute_total_batches(5) == 1
    assert compute_total_batches(12) == 3
    assert compute_total_batches(200) == 10
    assert compute_total_batches(0) == 1


def test_completes_plan():
    plan = GenerationPlan(create=["a.tsx", "b.tsx"], total=2)
    fetch = ScriptedFetch(ParsedBatch(files={"a.tsx": component("A")}))
    orch = ContinuationOrchestrator(fetch)
    result = asyncio.run(orch.run(make_state({"b.tsx": component("B")}), plan))
    assert result.complete
    assert set(result.files) == {"a.tsx", "b.tsx"}
    assert result.batches == 1
    assert fetch.calls == [(1, ["a.tsx"])]
    assert orch.phase == ContinuationPhase.COMPLETE


def test_never_complete_stops_at_ceiling():
    def batch(path, nxt):
        return ParsedBatch(files={path: component(path[0].upper())},
                           progress=GenerationProgress(remaining_files=[nxt], is_complete=False))

    fetch = ScriptedFetch(batch("f1.tsx", "f2.tsx"), batch("f2.tsx", "f3.tsx"), batch("f3.tsx", "f4.tsx"))
    state = make_state({"f0.tsx": component("F")}, remaining=["f1.tsx"], total=10)
    orch = ContinuationOrchestrator(fetch)
    result = asyncio.run(orch.run(state, None))
    assert len(fetch.calls) == 2
    assert state.current_batch == 2 == state.progress.total_batches
    assert result.status == "aborted"
    assert "ceiling" in result.reason
    assert result.missing_files == ["f3.tsx"]
    assert set(result.files) == {"f0.tsx", "f1.tsx", "f2.tsx"}
    assert orch.phase == ContinuationPhase.ABORTED


def test_no_progress_aborts():
    plan = GenerationPlan(create=["a.tsx", "b.tsx", "c.tsx"], total=3)
    fetch = ScriptedFetch(ParsedBatch(files={"z.tsx": component("Z")}))
    result = asyncio.run(ContinuationOrchestrator(fetch).run(make_state({"a.tsx": component("A")}), plan))
    assert result.status == "aborted"
    assert result.reason == "batch made no progress"
    assert result.missing_files == ["b.tsx", "c.tsx"]
    assert "z.tsx" in result.files


def test_parse_failures_retry_without_advancing_batch():
    plan = GenerationPlan(create=["a.tsx", "b.tsx"], total=2)
    fetch = ScriptedFetch(ParseError("bad"), ParseError("bad again"), ParsedBatch(files={"b.tsx": component("B")}))
    state = make_state({"a.tsx": component("A")})
    result = asyncio.run(ContinuationOrchestrator(fetch, retry_backoff=0).run(state, plan))
    assert result.complete
    assert [c[0] for c in fetch.calls] == [1, 1, 1]
    assert state.retry_attempts == 2


def test_retries_exhausted_aborts_with_partial_result():
    plan = GenerationPlan(create=["a.tsx", "b.tsx"], total=2)
    fetch = ScriptedFetch(ParseError("1"), ParseError("2"), ParseError("3"))
    result = asyncio.run(ContinuationOrchestrator(fetch, retry_backoff=0).run(make_state({"a.tsx": component("A")}), plan))
    assert result.status == "aborted"
    assert list(result.files) == ["a.tsx"]


def test_provider_error_propagates():
    plan = GenerationPlan(create=["a.tsx", "b.tsx"], total=2)
    fetch = ScriptedFetch(ProviderError("quota"))
    with pytest.raises(ProviderError):
        asyncio.run(ContinuationOrchestrator(fetch).run(make_state({"a.tsx": component("A")}), plan))


def test_cancelled_before_next_batch():
    plan = GenerationPlan(create=["a.tsx", "b.tsx"], total=2)
    fetch = ScriptedFetch()
    orch = ContinuationOrchestrator(fetch)
    orch.abort()
    result = asyncio.run(orch.run(make_state({"a.tsx": component("A")}), plan))
    assert result.reason == "cancelled"
    assert fetch.calls == []


def test_empty_validated_set_is_exhausted():
    plan = GenerationPlan(create=["a.tsx", "b.tsx"], total=2)
    fetch = ScriptedFetch()
    orch = ContinuationOrchestrator(fetch, max_batches=0)
    with pytest.raises(RecoveryExhausted):
        asyncio.run(orch.run(make_state({"a.tsx": "tiny"}), plan))


def test_validate_accumulated():
    files = {"src/App.tsx": component("App"), "src/.tsx": component("X"), "README": component("R"), "src/a.css": "a{}"}
    assert list(validate_accumulated(files)) == ["src/App.tsx"]


def test_decide_ignores_plan_paths_that_are_never_accepted():
    plan = GenerationPlan(create=["src/App.tsx", "Dockerfile", "node_modules/x.js", "./src/b.tsx"], total=4)
    assert decide(plan, None, ["src/App.tsx"]).missing == ["src/b.tsx"]
    assert isinstance(decide(plan, None, ["src/App.tsx", "src/b.tsx"]), Complete)
