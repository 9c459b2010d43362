import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .config import AppSettings
from .errors import EmptyResponseError, NonConvergentLoopError, UnexpectedBackendStateError
from .extractor import extract_analysis
from .llm import BackendTurn
from .progress import (
    FINAL_LABEL,
    PROGRESS_TOTAL,
    START_LABEL,
    STANDARD_POLICY,
    ProgressPolicy,
    ProgressTracker,
    policy_for,
    tool_label,
)
from .prompts import build_analysis_prompt
from .schemas import AnalyzeRequest
from .tools import ToolRegistry

logger = logging.getLogger("uvicorn.error")

ProgressCallback = Callable[[int, int, str], Awaitable[None]]

STATIC_ITERATION_LIMIT = 100
LIVE_ITERATION_LIMIT = 25
FINAL_STOP_REASONS = {"end_turn", "max_tokens"}


class Backend(Protocol):
    async def create_message(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        max_tokens: int = 8000,
        temperature: float = 0.3,
        model: Optional[str] = None,
    ) -> BackendTurn: ...


class LoopState(str, Enum):
    AWAITING_BACKEND = "awaiting_backend"
    DISPATCHING_TOOLS = "dispatching_tools"
    DONE = "done"


@dataclass
class LoopOutcome:
    text: str
    stop_reason: str
    truncated: bool
    input_tokens: int
    output_tokens: int
    model: str
    iterations: int
    tool_calls: int

    @property
    def usage(self) -> Dict[str, int]:
        return {"inputTokens": self.input_tokens, "outputTokens": self.output_tokens}


def default_max_iterations(registry: ToolRegistry) -> int:
    # Live tools are slow and rate limited, so a runaway loop is cut off sooner.
    return LIVE_ITERATION_LIMIT if registry.has_live_tools else STATIC_ITERATION_LIMIT


async def _notify(on_progress: Optional[ProgressCallback], step: int, label: str) -> None:
    if on_progress is not None:
        await on_progress(step, PROGRESS_TOTAL, label)


async def run_conversation(
    backend: Backend,
    system: str,
    user_content: List[Dict[str, Any]],
    registry: ToolRegistry,
    *,
    on_progress: Optional[ProgressCallback] = None,
    policy: ProgressPolicy = STANDARD_POLICY,
    max_iterations: Optional[int] = None,
    max_tokens: int = 16000,
    temperature: float = 0.3,
    model: Optional[str] = None,
) -> LoopOutcome:
    """Drive the backend until it produces a final answer, running requested tools in between.

    Tool calls run one at a time in the order the backend emitted them. Every
    tool_use turn is answered by exactly one user turn of tool_result blocks.
    """
    limit = max_iterations or default_max_iterations(registry)
    tracker = ProgressTracker(policy)
    messages: List[Dict[str, Any]] = [{"role": "user", "content": user_content}]
    tool_schemas = registry.schemas() or None
    input_tokens = 0
    output_tokens = 0
    iterations = 0
    state = LoopState.AWAITING_BACKEND

    await _notify(on_progress, 0, START_LABEL)

    while iterations < limit:
        iterations += 1
        state = LoopState.AWAITING_BACKEND
        turn = await backend.create_message(
            system=system,
            messages=messages,
            tools=tool_schemas,
            max_tokens=max_tokens,
            temperature=temperature,
            model=model,
        )
        input_tokens += turn.input_tokens
        output_tokens += turn.output_tokens

        if turn.stop_reason in FINAL_STOP_REASONS:
            text = turn.text
            if not text:
                raise EmptyResponseError("No text content in backend response")
            truncated = turn.stop_reason == "max_tokens"
            if truncated:
                logger.warning(
                    "Response hit max_tokens limit, output may be truncated "
                    "(input=%s output=%s max=%s utilisation=%s%%, %s chars)",
                    input_tokens,
                    output_tokens,
                    max_tokens,
                    round(output_tokens / max_tokens * 100) if max_tokens else 0,
                    len(text),
                )
            state = LoopState.DONE
            await _notify(on_progress, PROGRESS_TOTAL, FINAL_LABEL)
            logger.info(
                "Analysis finished after %s iterations and %s tool calls (input=%s output=%s)",
                iterations,
                tracker.count,
                input_tokens,
                output_tokens,
            )
            return LoopOutcome(
                text=text,
                stop_reason=str(turn.stop_reason),
                truncated=truncated,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                model=turn.model or model or "",
                iterations=iterations,
                tool_calls=tracker.count,
            )

        if turn.stop_reason != "tool_use":
            raise UnexpectedBackendStateError(f"Unexpected stop reason: {turn.stop_reason}")

        tool_uses = turn.tool_uses
        if not tool_uses:
            raise UnexpectedBackendStateError("Backend requested tool use but no tool blocks found")

        state = LoopState.DISPATCHING_TOOLS
        messages.append({"role": "assistant", "content": turn.content})
        results: List[Dict[str, Any]] = []
        for block in tool_uses:
            name = str(block.get("name") or "")
            tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
            await _notify(on_progress, tracker.advance(), tool_label(name, tool_input))
            content = await registry.execute(name, tool_input)
            results.append({"type": "tool_result", "tool_use_id": block.get("id"), "content": content})
        messages.append({"role": "user", "content": results})

    logger.error("Conversation stopped in state %s after %s iterations", state.value, iterations)
    raise NonConvergentLoopError(limit)


async def run_analysis(
    backend: Backend,
    settings: AppSettings,
    request: AnalyzeRequest,
    registry: ToolRegistry,
    on_progress: Optional[ProgressCallback] = None,
) -> Dict[str, Any]:
    profile = request.profile
    system, user_content = build_analysis_prompt(profile, request.files, request.precomputedReturns)
    logger.info(
        "Starting analysis for %s files (%s tools registered, risk summary=%s)",
        len(request.files),
        len(registry),
        profile.includeRiskSummary,
    )
    outcome = await run_conversation(
        backend,
        system,
        user_content,
        registry,
        on_progress=on_progress,
        policy=policy_for(profile.includeRiskSummary),
        max_iterations=settings.max_iterations,
        max_tokens=settings.claude_max_tokens,
        temperature=settings.claude_temperature,
        model=settings.claude_model,
    )
    analysis = extract_analysis(
        outcome.text,
        stop_reason=outcome.stop_reason,
        output_tokens=outcome.output_tokens,
        max_tokens=settings.claude_max_tokens,
    )
    return {
        "analysis": analysis.model_dump(),
        "metadata": {
            "analysedAt": datetime.now(timezone.utc).isoformat(),
            "model": outcome.model or settings.claude_model,
            "usage": outcome.usage,
            "investorProfile": {
                "type": profile.investorType,
                "phase": profile.phase,
                "ageRange": profile.ageRange,
            },
        },
    }
