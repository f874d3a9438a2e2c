"""Tests for dependency waves and the multi-step tool loop."""

import asyncio
import threading
from typing import List

import pytest

from polaris_engine.llm import ProviderError, RateLimitError
from polaris_engine.models import AssistantTurn, ChatMessage, NativeFunctionCall, NormalizedToolCall
from polaris_engine.orchestrator import ToolOrchestrator, group_tool_calls, prepare_calls
from polaris_engine.tools import FilePathInput, FunctionTool, create_default_tools

PROJECT_ID = "proj-1"


class ScriptedProvider:
    """Replays a fixed list of assistant turns (or raises a given error)."""

    def __init__(self, turns: List[AssistantTurn], name: str = "scripted", error: Exception = None):
        self.turns = list(turns)
        self.provider_name = name
        self.model = f"{name}-model"
        self.error = error
        self.calls = []

    async def complete(self, messages, tools, **options):
        self.calls.append((list(messages), options))
        if self.error is not None:
            raise self.error
        return self.turns.pop(0)

    async def stream(self, messages, tools, on_text, **options):
        turn = await self.complete(messages, tools, **options)
        for word in turn.text.split(" "):
            if word:
                await on_text(word + " ")
        return turn


def _call(call_id, name, **arguments):
    return NormalizedToolCall(id=call_id, name=name, input=arguments)


class TestGrouping:
    """Tests for wave assignment."""

    def _waves(self, project_store, calls):
        tools = {t.name: t for t in create_default_tools(project_store, PROJECT_ID)}
        return [[item.call.id for item in wave] for wave in group_tool_calls(prepare_calls(calls, tools))]

    def test_write_then_read_same_path(self, project_store):
        waves = self._waves(project_store, [
            _call("1", "writeFile", path="src/c.ts", content="x"),
            _call("2", "readFile", path="src/c.ts"),
            _call("3", "readFile", path="src/a.ts"),
        ])
        assert waves == [["1", "3"], ["2"]]

    def test_folder_delete_orders_writes_beneath_it(self, project_store):
        waves = self._waves(project_store, [
            _call("1", "deleteFile", path="src"),
            _call("2", "writeFile", path="src/new.ts", content="x"),
            _call("3", "writeFile", path="lib/other.ts", content="x"),
        ])
        assert waves == [["1", "3"], ["2"]]

    def test_project_reads_are_ordered_between_writes(self, project_store):
        waves = self._waves(project_store, [
            _call("1", "writeFile", path="src/c.ts", content="x"),
            _call("2", "findSymbol", query="c"),
            _call("3", "writeFile", path="src/d.ts", content="y"),
        ])
        assert waves == [["1"], ["2"], ["3"]]

    def test_dotted_path_orders_against_write(self, project_store):
        waves = self._waves(project_store, [
            _call("1", "writeFile", path="src/a.ts", content="x"),
            _call("2", "readFile", path="src/../src/a.ts"),
        ])
        assert waves == [["1"], ["2"]]

    def test_chain_of_writes(self, project_store):
        waves = self._waves(project_store, [
            _call("1", "writeFile", path="a.ts", content="1"),
            _call("2", "writeFile", path="a.ts", content="2"),
            _call("3", "readFile", path="a.ts"),
        ])
        assert waves == [["1"], ["2"], ["3"]]

    def test_rejected_calls_run_first(self, project_store):
        waves = self._waves(project_store, [
            _call("1", "noSuchTool"),
            _call("2", "readFile"),
        ])
        assert waves == [["1", "2"]]


class TestExecuteToolCalls:
    """Tests for execution and error containment."""

    @pytest.mark.asyncio
    async def test_results_keep_call_order(self, project_store):
        orchestrator = ToolOrchestrator(ScriptedProvider([]), create_default_tools(project_store, PROJECT_ID))
        results = await orchestrator.execute_tool_calls([
            _call("w", "writeFile", path="src/c.ts", content="export const c = 1;"),
            _call("r", "readFile", path="src/c.ts"),
            NativeFunctionCall(id="n", name="readFile", raw_arguments='{"path": "src/a.ts"}'),
        ])
        assert [r.tool_call_id for r in results] == ["w", "r", "n"]
        assert results[1].result == "export const c = 1;"
        assert results[2].result == "export function foo(){}"

    @pytest.mark.asyncio
    async def test_unknown_tool_and_bad_arguments(self, project_store):
        orchestrator = ToolOrchestrator(ScriptedProvider([]), create_default_tools(project_store, PROJECT_ID))
        unknown, invalid = await orchestrator.execute_tool_calls([
            _call("1", "launchRocket"),
            _call("2", "readFile"),
        ])
        assert unknown.content == "Error: Tool not found: launchRocket"
        assert invalid.is_error
        assert invalid.content.startswith("Error: Invalid arguments for readFile")

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_error_result(self):
        def explode(path):
            raise RuntimeError(f"cannot open {path}")

        orchestrator = ToolOrchestrator(ScriptedProvider([]), [FunctionTool("explode", "", explode, FilePathInput)])
        [result] = await orchestrator.execute_tool_calls([_call("1", "explode", path="x")])
        assert result.content == "Error: cannot open x"

    @pytest.mark.asyncio
    async def test_same_wave_runs_concurrently(self):
        running = []
        peak = []

        async def slow(path):
            running.append(path)
            peak.append(len(running))
            await asyncio.sleep(0.01)
            running.remove(path)
            return path

        tool = FunctionTool("slow", "", slow, FilePathInput)
        orchestrator = ToolOrchestrator(ScriptedProvider([]), [tool])
        await orchestrator.execute_tool_calls([_call("1", "slow", path="a"), _call("2", "slow", path="b")])
        assert max(peak) == 2

        peak.clear()
        await orchestrator.execute_tool_calls([_call("1", "slow", path="a"), _call("2", "slow", path="a")])
        assert max(peak) == 1


    @pytest.mark.asyncio
    async def test_analysis_wave_keeps_event_loop_responsive(self, project_store, monkeypatch):
        release = threading.Event()

        def blocking_find_symbol(files, query, kind=None):
            return f"done {query}" if release.wait(timeout=2) else "timed out"

        monkeypatch.setattr("polaris_engine.lsp.find_symbol", blocking_find_symbol)
        ticks = 0

        async def ticker():
            nonlocal ticks
            while not release.is_set():
                await asyncio.sleep(0.005)
                ticks += 1
                if ticks == 3:
                    release.set()

        orchestrator = ToolOrchestrator(ScriptedProvider([]), create_default_tools(project_store, PROJECT_ID))
        results, _ = await asyncio.gather(
            orchestrator.execute_tool_calls([_call("1", "findSymbol", query="a"), _call("2", "findSymbol", query="b")]),
            ticker(),
        )
        assert [r.content for r in results] == ["done a", "done b"]
        assert ticks == 3


class TestLoop:
    """Tests for the generate/stream loop."""

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, project_store):
        provider = ScriptedProvider([
            AssistantTurn(tool_calls=[_call("c1", "readFile", path="src/a.ts")]),
            AssistantTurn(text="foo is a function."),
        ])
        steps = []
        orchestrator = ToolOrchestrator(provider, create_default_tools(project_store, PROJECT_ID), system="sys")
        result = await orchestrator.generate([ChatMessage.user("what is foo?")], on_step_finish=steps.append)

        assert result.text == "foo is a function."
        assert result.provider == "scripted"
        assert not result.used_fallback
        assert [s.step for s in steps] == [0, 1]
        assert [m.role for m in result.history] == ["system", "user", "assistant", "tool", "assistant"]
        tool_message = result.history[3]
        assert tool_message.tool_call_id == "c1"
        assert tool_message.content == "export function foo(){}"
        second_request = provider.calls[1][0]
        assert second_request[-1].role == "tool"

    @pytest.mark.asyncio
    async def test_unknown_tool_does_not_stop_run(self, project_store):
        provider = ScriptedProvider([
            AssistantTurn(tool_calls=[_call("c1", "doesNotExist")]),
            AssistantTurn(text="Sorry, that tool is unavailable."),
        ])
        orchestrator = ToolOrchestrator(provider, create_default_tools(project_store, PROJECT_ID))
        result = await orchestrator.generate([ChatMessage.user("go")])
        assert result.text == "Sorry, that tool is unavailable."
        assert result.steps[0].tool_results[0].content == "Error: Tool not found: doesNotExist"

    @pytest.mark.asyncio
    async def test_max_steps_bound(self, project_store):
        turns = [AssistantTurn(text=f"step {i}", tool_calls=[_call(str(i), "getProjectStructure")]) for i in range(5)]
        provider = ScriptedProvider(turns)
        orchestrator = ToolOrchestrator(provider, create_default_tools(project_store, PROJECT_ID), max_steps=3)
        result = await orchestrator.generate([ChatMessage.user("loop")])
        assert len(result.steps) == 3
        assert len(provider.calls) == 3
        assert result.text == "step 2"

    @pytest.mark.asyncio
    async def test_options_forwarded(self):
        provider = ScriptedProvider([AssistantTurn(text="ok")])
        orchestrator = ToolOrchestrator(provider, [], max_tokens=123, temperature=0.1,
                                        tool_choice=lambda step: "required" if step == 0 else "auto")
        await orchestrator.generate([ChatMessage.user("hi")])
        options = provider.calls[0][1]
        assert options == {"tool_choice": "required", "max_tokens": 123, "temperature": 0.1}

    @pytest.mark.asyncio
    async def test_rate_limit_falls_back(self, project_store):
        primary = ScriptedProvider([], name="primary", error=RateLimitError("slow down", status_code=429))
        fallback = ScriptedProvider([AssistantTurn(text="answer from fallback")], name="fallback")
        orchestrator = ToolOrchestrator(primary, create_default_tools(project_store, PROJECT_ID), fallback=fallback)
        result = await orchestrator.generate([ChatMessage.user("hi")])
        assert result.text == "answer from fallback"
        assert result.used_fallback
        assert result.provider == "fallback"

    @pytest.mark.asyncio
    async def test_fallback_failure_propagates(self):
        primary = ScriptedProvider([], error=ProviderError("primary down"))
        fallback = ScriptedProvider([], error=ProviderError("fallback down"))
        orchestrator = ToolOrchestrator(primary, [], fallback=fallback)
        with pytest.raises(ProviderError, match="fallback down"):
            await orchestrator.generate([ChatMessage.user("hi")])

    @pytest.mark.asyncio
    async def test_no_fallback_reraises(self):
        orchestrator = ToolOrchestrator(ScriptedProvider([], error=ProviderError("down")), [])
        with pytest.raises(ProviderError):
            await orchestrator.generate([ChatMessage.user("hi")])

    @pytest.mark.asyncio
    async def test_stream_reports_chunks_and_full_text(self, project_store):
        provider = ScriptedProvider([
            AssistantTurn(text="Looking", tool_calls=[_call("c1", "listFiles")]),
            AssistantTurn(text="Done now"),
        ])
        chunks = []

        async def on_chunk(chunk, full_text):
            chunks.append((chunk, full_text))

        orchestrator = ToolOrchestrator(provider, create_default_tools(project_store, PROJECT_ID))
        result = await orchestrator.stream([ChatMessage.user("hi")], on_text_chunk=on_chunk)
        assert result.text == "Done now"
        assert [c for c, _ in chunks] == ["Looking ", "Done ", "now "]
        assert chunks[-1][1] == "Looking Done now "
