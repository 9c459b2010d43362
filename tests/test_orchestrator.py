from typing import List, Tuple

import pytest

from portfolio_analyst.errors import (
    BackendRateLimitError,
    EmptyResponseError,
    InvalidStructureError,
    NonConvergentLoopError,
    UnexpectedBackendStateError,
)
from portfolio_analyst.llm import BackendTurn
from portfolio_analyst.orchestrator import default_max_iterations, run_analysis, run_conversation
from portfolio_analyst.progress import RISK_SUMMARY_POLICY
from portfolio_analyst.schemas import AnalyzeRequest
from portfolio_analyst.search import SearchResult
from portfolio_analyst.tools import ToolRegistry, ToolSpec, build_registry
from tests.conftest import make_profile, make_request, make_settings
from tests.fakes import FakeBackend, json_turn, text_turn, tool_turn


USER_CONTENT = [{"type": "text", "text": "Analyse this portfolio"}]


class Recorder:
    def __init__(self) -> None:
        self.events: List[Tuple[int, int, str]] = []

    async def __call__(self, step: int, total: int, label: str) -> None:
        self.events.append((step, total, label))


def _static_registry() -> ToolRegistry:
    return build_registry(None, include_returns=False)


@pytest.mark.asyncio
async def test_final_answer_without_tools():
    backend = FakeBackend([text_turn("done")])
    recorder = Recorder()
    outcome = await run_conversation(backend, "sys", USER_CONTENT, _static_registry(), on_progress=recorder)
    assert outcome.text == "done"
    assert outcome.iterations == 1
    assert outcome.tool_calls == 0
    assert not outcome.truncated
    assert outcome.usage == {"inputTokens": 100, "outputTokens": 50}
    assert recorder.events == [(0, 100, "Starting analysis..."), (100, 100, "Finalising analysis...")]
    assert backend.calls[0]["system"] == "sys"
    assert len(backend.calls[0]["tools"]) == 3


@pytest.mark.asyncio
async def test_one_progress_event_per_tool_call_and_monotonic():
    backend = FakeBackend(
        [
            tool_turn(
                {"name": "search_asset_class_metrics", "input": {"asset_class": "Cash", "metric": "volatility"}},
                {"name": "search_asset_class_correlation", "input": {"asset_class_a": "Cash", "asset_class_b": "Property"}},
            ),
            tool_turn({"name": "get_portfolio_risk_data", "input": {"asset_classes": ["Cash", "Property"]}}),
            text_turn("final"),
        ]
    )
    recorder = Recorder()
    outcome = await run_conversation(
        backend, "sys", USER_CONTENT, _static_registry(), on_progress=recorder, policy=RISK_SUMMARY_POLICY
    )
    assert outcome.tool_calls == 3
    tool_events = recorder.events[1:-1]
    assert len(tool_events) == 3
    steps = [step for step, _, _ in recorder.events]
    assert steps == sorted(steps)
    assert all(step <= RISK_SUMMARY_POLICY.cap for step, _, _ in tool_events)
    assert recorder.events[-1][0] == 100
    assert tool_events[0][2] == "Searching Volatility for 'Cash'"


@pytest.mark.asyncio
async def test_tool_results_preserve_order_and_ids():
    backend = FakeBackend(
        [
            tool_turn(
                {"id": "a", "name": "search_asset_class_metrics", "input": {"asset_class": "Cash", "metric": "volatility"}},
                {"id": "b", "name": "search_asset_class_metrics", "input": {"asset_class": "Alternatives", "metric": "volatility"}},
            ),
            text_turn("final"),
        ]
    )
    await run_conversation(backend, "sys", USER_CONTENT, _static_registry())
    second_call = backend.calls[1]["messages"]
    assert [m["role"] for m in second_call] == ["user", "assistant", "user"]
    results = second_call[2]["content"]
    assert [r["tool_use_id"] for r in results] == ["a", "b"]
    assert results[0]["content"].startswith("Cash:")
    assert results[1]["content"].startswith("Alternatives:")
    assert second_call[1]["content"][1]["type"] == "tool_use"


@pytest.mark.asyncio
async def test_failing_tool_still_succeeds():
    async def broken(tool_input):
        raise RuntimeError("network unreachable")

    registry = ToolRegistry()
    registry.register(ToolSpec("broken", "always fails", {"type": "object"}, broken))
    backend = FakeBackend([tool_turn({"name": "broken", "input": {}}), text_turn("final")])
    outcome = await run_conversation(backend, "sys", USER_CONTENT, registry)
    assert outcome.text == "final"
    result_block = backend.calls[1]["messages"][2]["content"][0]
    assert result_block["content"] == "Error executing broken: network unreachable"


@pytest.mark.asyncio
async def test_iteration_ceiling_raises_non_convergent():
    backend = FakeBackend([tool_turn({"name": "get_portfolio_risk_data", "input": {"asset_classes": ["Cash"]}})], repeat_last=True)
    with pytest.raises(NonConvergentLoopError) as excinfo:
        await run_conversation(backend, "sys", USER_CONTENT, _static_registry(), max_iterations=3)
    assert len(backend.calls) == 3
    assert "Max iterations (3)" in excinfo.value.message


def test_default_ceiling_depends_on_live_tools():
    assert default_max_iterations(_static_registry()) == 100

    async def live(tool_input):
        return SearchResult("x")

    registry = _static_registry()
    registry.register(ToolSpec("live", "live", {"type": "object"}, live, live=True))
    assert default_max_iterations(registry) == 25


@pytest.mark.asyncio
async def test_unexpected_stop_reason():
    backend = FakeBackend([BackendTurn(content=[{"type": "text", "text": "x"}], stop_reason="pause_turn")])
    with pytest.raises(UnexpectedBackendStateError):
        await run_conversation(backend, "sys", USER_CONTENT, _static_registry())


@pytest.mark.asyncio
async def test_tool_use_without_blocks():
    backend = FakeBackend([BackendTurn(content=[{"type": "text", "text": "hmm"}], stop_reason="tool_use")])
    with pytest.raises(UnexpectedBackendStateError):
        await run_conversation(backend, "sys", USER_CONTENT, _static_registry())


@pytest.mark.asyncio
async def test_empty_final_text():
    backend = FakeBackend([BackendTurn(content=[], stop_reason="end_turn")])
    with pytest.raises(EmptyResponseError):
        await run_conversation(backend, "sys", USER_CONTENT, _static_registry())


@pytest.mark.asyncio
async def test_max_tokens_is_final_but_flagged():
    backend = FakeBackend([text_turn('{"markdown": "# cut', stop_reason="max_tokens", output_tokens=990)])
    outcome = await run_conversation(backend, "sys", USER_CONTENT, _static_registry(), max_tokens=1000)
    assert outcome.truncated
    assert outcome.stop_reason == "max_tokens"


@pytest.mark.asyncio
async def test_backend_errors_propagate_unretried():
    backend = FakeBackend([BackendRateLimitError("Rate limit exceeded", status_code=429)])
    with pytest.raises(BackendRateLimitError):
        await run_conversation(backend, "sys", USER_CONTENT, _static_registry())
    assert len(backend.calls) == 1


@pytest.mark.asyncio
async def test_run_analysis_builds_result_and_metadata():
    backend = FakeBackend([json_turn()])
    request = AnalyzeRequest.model_validate(make_request())
    settings = make_settings()
    data = await run_analysis(backend, settings, request, _static_registry())
    assert data["analysis"]["markdown"].startswith("# Report")
    assert data["analysis"]["chartData"]["portfolioValue"] == 100000
    metadata = data["metadata"]
    assert metadata["model"] == "claude-test"
    assert metadata["usage"] == {"inputTokens": 100, "outputTokens": 50}
    assert metadata["investorProfile"] == {"type": "Balanced", "phase": "Accumulation", "ageRange": "40-60"}
    assert backend.calls[0]["max_tokens"] == settings.claude_max_tokens


@pytest.mark.asyncio
async def test_run_analysis_rejects_result_without_chart_data():
    backend = FakeBackend([json_turn({"markdown": "# Report"})])
    request = AnalyzeRequest.model_validate(make_request(profile=make_profile(includeRiskSummary=True)))
    with pytest.raises(InvalidStructureError):
        await run_analysis(backend, make_settings(), request, _static_registry())
