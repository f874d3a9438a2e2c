"""Integration tests for CLI commands."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from polaris_engine import __version__, config_manager
from polaris_engine.cli import app
from polaris_engine.models import AssistantTurn, NormalizedToolCall
from polaris_engine.orchestrator import ToolOrchestrator
from polaris_engine.tools import create_default_tools

runner = CliRunner()


@pytest.fixture
def project_dir(temp_dir: Path) -> Path:
    """Write the two-file scenario project to disk."""
    (temp_dir / "src").mkdir()
    (temp_dir / "src" / "a.ts").write_text("export function foo(){}")
    (temp_dir / "src" / "b.ts").write_text("import {foo} from './a'; foo();")
    return temp_dir


class TestGlobalOptions:
    """Tests for the app callback."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"v{__version__}" in result.stdout

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "symbols" in result.stdout


class TestAnalysisCommands:
    """Tests for the analysis commands against a directory on disk."""

    def test_symbols(self, project_dir: Path):
        result = runner.invoke(app, ["symbols", "foo", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert "[function] foo - src/a.ts:1:1" in result.stdout

    def test_symbols_bad_kind(self, project_dir: Path):
        result = runner.invoke(app, ["symbols", "foo", "--kind", "widget", "--root", str(project_dir)])
        assert result.exit_code != 0

    def test_definition(self, project_dir: Path):
        result = runner.invoke(app, ["definition", "src/b.ts", "1", "26", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert "src/a.ts:1:17" in result.stdout

    def test_references_rejects_zero_position(self, project_dir: Path):
        result = runner.invoke(app, ["references", "src/a.ts", "0", "1", "--root", str(project_dir)])
        assert result.exit_code != 0

    def test_diagnostics(self, project_dir: Path):
        result = runner.invoke(app, ["diagnostics", "src/a.ts", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert "No diagnostics found for src/a.ts." in result.stdout

    def test_grep(self, project_dir: Path):
        result = runner.invoke(app, ["grep", "foo\\(\\)", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert "src/b.ts:1:26" in result.stdout

    def test_patterns(self, project_dir: Path):
        result = runner.invoke(app, ["patterns", "call", "--term", "foo", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert "Found 1 call(s):" in result.stdout

    def test_patterns_bad_type(self, project_dir: Path):
        result = runner.invoke(app, ["patterns", "macro", "--root", str(project_dir)])
        assert result.exit_code != 0

    def test_files(self, project_dir: Path):
        result = runner.invoke(app, ["files", "**/*.ts", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert 'Found 2 file(s) matching "**/*.ts":' in result.stdout

    def test_relevant(self, project_dir: Path):
        result = runner.invoke(app, ["relevant", "foo", "--current", "src/b.ts", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert "1. src/a.ts" in result.stdout

    def test_missing_root(self):
        result = runner.invoke(app, ["files", "*", "--root", "/nonexistent/path"])
        assert result.exit_code != 0


class TestProviderCommands:
    """Tests for set-llm / show-llm."""

    def test_set_llm(self):
        result = runner.invoke(app, ["set-llm", "primary", "-m", "new-model", "-k", "secret-key-123"])
        assert result.exit_code == 0
        assert "Updated primary provider: cerebras (new-model)" in result.stdout
        assert config_manager.load_provider_config("primary")["api_key"] == "secret-key-123"

    def test_set_llm_protocol(self):
        result = runner.invoke(app, ["set-llm", "primary", "--protocol", "anthropic"])
        assert result.exit_code == 0
        assert config_manager.load_provider_config("primary")["protocol"] == "anthropic"

    def test_set_llm_unknown_protocol(self):
        result = runner.invoke(app, ["set-llm", "primary", "--protocol", "grpc"])
        assert result.exit_code != 0
        assert "protocol" not in config_manager.load_full_config().get("primary", {})

    def test_set_llm_unknown_role(self):
        result = runner.invoke(app, ["set-llm", "tertiary", "-m", "x"])
        assert result.exit_code != 0

    def test_show_llm(self):
        result = runner.invoke(app, ["show-llm"])
        assert result.exit_code == 0
        assert "primary" in result.stdout
        assert "fallback" in result.stdout
        assert "cerebras" in result.stdout


class FakeProvider:
    provider_name = "fake"
    model = "fake-model"

    def __init__(self, turns):
        self.turns = list(turns)

    async def complete(self, messages, tools, **options):
        return self.turns.pop(0)

    async def stream(self, messages, tools, on_text, **options):
        turn = await self.complete(messages, tools, **options)
        if turn.text:
            await on_text(turn.text)
        return turn


class TestAskCommand:
    """Tests for the ask command with a scripted provider."""

    def _patch(self, monkeypatch, turns):
        def build(store, project_id):
            return ToolOrchestrator(FakeProvider(turns), create_default_tools(store, project_id))

        monkeypatch.setattr("polaris_engine.cli.build_orchestrator", build)

    def test_ask_streams_answer(self, project_dir: Path, monkeypatch):
        self._patch(monkeypatch, [
            AssistantTurn(tool_calls=[NormalizedToolCall(id="1", name="readFile", input={"path": "src/a.ts"})]),
            AssistantTurn(text="foo takes no arguments."),
        ])
        result = runner.invoke(app, ["ask", "what does foo take?", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert "readFile" in result.stdout
        assert "foo takes no arguments." in result.stdout
        assert "2 step(s)" in result.stdout

    def test_ask_no_stream(self, project_dir: Path, monkeypatch):
        self._patch(monkeypatch, [AssistantTurn(text="plain answer")])
        result = runner.invoke(app, ["ask", "hi", "--no-stream", "--root", str(project_dir)])
        assert result.exit_code == 0
        assert "plain answer" in result.stdout

    def test_ask_failure(self, project_dir: Path):
        # no API keys are configured in tests
        result = runner.invoke(app, ["ask", "hi", "--root", str(project_dir)])
        assert result.exit_code == 1
        assert "Request failed" in result.stdout
