"""Bounded multi-step tool-calling loop with dependency-aware execution.

One run drives a provider step by step: each assistant turn's tool calls
are grouped into dependency waves by their resource keys, waves run one
after another, calls inside a wave run concurrently, and every call gets
a tool-role reply. When the primary provider fails, the run restarts on
the fallback provider with the same tools, bounds and caller messages.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ValidationError

from . import config
from .llm import ChatProvider, RateLimitError, ToolChoice
from .models import ChatMessage, GenerateResult, StepResult, ToolCall, ToolResult
from .tools import ResourceKey, Tool

logger = logging.getLogger(__name__)

StepCallback = Callable[[StepResult], Union[None, Awaitable[None]]]
ChunkCallback = Callable[[str, str], Union[None, Awaitable[None]]]
ToolChoiceSetting = Union[ToolChoice, Callable[[int], ToolChoice]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


@dataclass
class PreparedCall:
    """A tool call resolved against the registry, ready to schedule."""

    index: int
    call: ToolCall
    tool: Optional[Tool] = None
    args: Optional[BaseModel] = None
    error: Optional[str] = None
    key: Optional[ResourceKey] = None


def prepare_calls(calls: Sequence[ToolCall], tools: Dict[str, Tool]) -> List[PreparedCall]:
    prepared: List[PreparedCall] = []
    for index, call in enumerate(calls):
        item = PreparedCall(index=index, call=call, tool=tools.get(call.name))
        if item.tool is None:
            item.error = f"Tool not found: {call.name}"
        else:
            try:
                item.args = item.tool.parse_arguments(call.arguments)
                item.key = item.tool.resource_key(item.args)
            except ValidationError as exc:
                item.error = f"Invalid arguments for {call.name}: {exc.errors(include_url=False)}"
        prepared.append(item)
    return prepared


def group_tool_calls(prepared: Sequence[PreparedCall]) -> List[List[PreparedCall]]:
    """Partition calls into dependency waves.

    A call lands one wave after the latest earlier call whose resource key
    conflicts with its own. Calls without a key never wait.
    """
    waves: List[List[PreparedCall]] = []
    placed: List[tuple] = []
    for item in prepared:
        wave = 0
        if item.key is not None:
            for other, other_wave in placed:
                if other.key is not None and item.key.conflicts_with(other.key):
                    wave = max(wave, other_wave + 1)
        placed.append((item, wave))
        while len(waves) <= wave:
            waves.append([])
        waves[wave].append(item)
    return waves


async def execute_call(item: PreparedCall) -> ToolResult:
    """Run one call; failures become error results, never exceptions."""
    result = ToolResult(tool_call_id=item.call.id, tool_name=item.call.name)
    if item.error is not None:
        logger.debug("Rejected tool call %s: %s", item.call.id, item.error)
        result.error = item.error
        return result
    try:
        result.result = await item.tool.execute(item.args)
    except Exception as exc:
        logger.warning("Tool %s failed: %s", item.call.name, exc)
        result.error = str(exc) or type(exc).__name__
    return result


class ToolOrchestrator:
    """Drives a bounded tool-calling conversation across primary and fallback providers."""

    def __init__(
        self,
        primary: ChatProvider,
        tools: Sequence[Tool],
        fallback: Optional[ChatProvider] = None,
        system: Optional[str] = None,
        max_steps: int = config.DEFAULT_MAX_STEPS,
        max_tokens: int = config.DEFAULT_MAX_TOKENS,
        temperature: float = config.DEFAULT_TEMPERATURE,
        tool_choice: ToolChoiceSetting = "auto",
    ):
        self.primary = primary
        self.fallback = fallback
        self.tools: Dict[str, Tool] = {t.name: t for t in tools}
        self.system = system
        self.max_steps = max_steps
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.tool_choice = tool_choice

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        on_step_finish: Optional[StepCallback] = None,
    ) -> GenerateResult:
        return await self._run_with_fallback(messages, False, None, on_step_finish)

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        on_text_chunk: Optional[ChunkCallback] = None,
        on_step_finish: Optional[StepCallback] = None,
    ) -> GenerateResult:
        """Like :meth:`generate`, delivering text chunks as they arrive.

        ``on_text_chunk(chunk, full_text)`` is awaited before the next chunk
        is read; ``full_text`` accumulates over the whole run.
        """
        return await self._run_with_fallback(messages, True, on_text_chunk, on_step_finish)

    async def execute_tool_calls(self, calls: Sequence[ToolCall]) -> List[ToolResult]:
        """Execute calls wave by wave; results come back in the model's call order."""
        waves = group_tool_calls(prepare_calls(calls, self.tools))
        results: Dict[int, ToolResult] = {}
        for number, wave in enumerate(waves):
            logger.debug("Running tool wave %d with %d call(s)", number, len(wave))
            outcomes = await asyncio.gather(*(execute_call(item) for item in wave))
            for item, outcome in zip(wave, outcomes):
                results[item.index] = outcome
        return [results[i] for i in sorted(results)]

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run_with_fallback(
        self,
        messages: Sequence[ChatMessage],
        streaming: bool,
        on_text_chunk: Optional[ChunkCallback],
        on_step_finish: Optional[StepCallback],
    ) -> GenerateResult:
        try:
            return await self._run(self.primary, messages, streaming, on_text_chunk, on_step_finish)
        except Exception as exc:
            if self.fallback is None:
                raise
            if isinstance(exc, RateLimitError):
                logger.warning("Primary provider %s rate limited; using fallback %s",
                               self.primary.provider_name, self.fallback.provider_name)
            else:
                logger.warning("Primary provider %s failed (%s); using fallback %s",
                               self.primary.provider_name, exc, self.fallback.provider_name)
        result = await self._run(self.fallback, messages, streaming, on_text_chunk, on_step_finish)
        result.used_fallback = True
        return result

    def _choice_for(self, step: int) -> ToolChoice:
        return self.tool_choice(step) if callable(self.tool_choice) else self.tool_choice

    async def _run(
        self,
        provider: ChatProvider,
        messages: Sequence[ChatMessage],
        streaming: bool,
        on_text_chunk: Optional[ChunkCallback],
        on_step_finish: Optional[StepCallback],
    ) -> GenerateResult:
        history: List[ChatMessage] = []
        if self.system:
            history.append(ChatMessage.system(self.system))
        history.extend(messages)
        tool_list = list(self.tools.values())
        streamed: List[str] = []

        async def on_text(chunk: str) -> None:
            streamed.append(chunk)
            if on_text_chunk is not None:
                await _maybe_await(on_text_chunk(chunk, "".join(streamed)))

        steps: List[StepResult] = []
        text = ""
        for step in range(self.max_steps):
            options = dict(tool_choice=self._choice_for(step), max_tokens=self.max_tokens,
                           temperature=self.temperature)
            if streaming:
                turn = await provider.stream(history, tool_list, on_text, **options)
            else:
                turn = await provider.complete(history, tool_list, **options)

            history.append(ChatMessage.assistant(turn.text, turn.tool_calls))
            if turn.text:
                text = turn.text
            results = await self.execute_tool_calls(turn.tool_calls) if turn.tool_calls else []
            history.extend(ChatMessage.tool(r) for r in results)

            step_result = StepResult(step=step, text=turn.text, tool_calls=list(turn.tool_calls),
                                     tool_results=results)
            steps.append(step_result)
            if on_step_finish is not None:
                await _maybe_await(on_step_finish(step_result))
            if not turn.tool_calls:
                break
        else:
            logger.info("Run stopped after %d step(s)", self.max_steps)

        return GenerateResult(
            text=text,
            provider=provider.provider_name,
            model=provider.model,
            steps=steps,
            history=history,
        )
