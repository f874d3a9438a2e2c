"""Tests for the compiler-backed symbol, reference, diagnostic and definition tools."""

import pytest

from polaris_engine import lsp
from polaris_engine.models import ProjectFile


class TestPositionHelpers:
    """Tests for offset and line/column conversion."""

    def test_line_and_column(self):
        content = "ab\ncd\nef"
        assert lsp.line_and_column(content, 0) == (1, 1)
        assert lsp.line_and_column(content, 4) == (2, 2)
        assert lsp.line_and_column(content, 6) == (3, 1)

    def test_position_to_offset_round_trip(self):
        content = "const a = 1;\nconst b = a;\n"
        offset = lsp.position_to_offset(content, 2, 11)
        assert content[offset] == "a"
        assert lsp.line_and_column(content, offset) == (2, 11)

    def test_line_context_trims_and_truncates(self):
        content = "   hello   \n" + "x" * 200
        assert lsp.line_context(content, 1) == "hello"
        assert len(lsp.line_context(content, 2)) == 80
        assert lsp.line_context(content, 9) == ""

    def test_kind_and_severity_mapping(self):
        assert lsp.symbol_kind("method") == "function"
        assert lsp.symbol_kind("const") == "variable"
        assert lsp.symbol_kind("alias") == "other"
        assert lsp.diagnostic_severity("suggestion") == "hint"
        assert lsp.diagnostic_severity("message") == "info"


class TestFindSymbol:
    """Tests for find_symbol."""

    def test_scenario_function_and_import(self, scenario_files):
        output = lsp.find_symbol(scenario_files, "foo")
        assert output.startswith("Found 2 symbol(s):")
        assert "[function] foo - src/a.ts:1:1" in output
        assert "src/b.ts" in output

    def test_kind_filter(self, sample_ts_project):
        output = lsp.find_symbol(sample_ts_project, "User", "interface")
        assert "[interface] User - src/models/user.ts:1:1" in output
        assert "[class]" not in output

    def test_nested_names_are_dotted(self, sample_ts_project):
        output = lsp.find_symbol(sample_ts_project, "addUser")
        assert "UserService.addUser" in output
        assert "[function]" in output

    def test_case_insensitive(self, sample_ts_project):
        output = lsp.find_symbol(sample_ts_project, "userservice", "class")
        assert "[class] UserService - src/models/user.ts:6:1" in output

    def test_no_match(self, scenario_files):
        assert lsp.find_symbol(scenario_files, "zzz") == 'No symbols found matching "zzz".'
        assert lsp.find_symbol(scenario_files, "zzz", "class") == 'No symbols found matching "zzz" of kind "class".'

    def test_empty_project(self):
        assert lsp.find_symbol([], "foo") == "No files found in project."

    def test_no_script_files(self):
        files = [ProjectFile(path="README.md", content="# foo")]
        assert lsp.find_symbol(files, "foo") == "No TypeScript/JavaScript files found in project."

    def test_results_capped(self):
        content = "\n".join(f"export const item{i} = {i};" for i in range(60))
        output = lsp.find_symbol([ProjectFile(path="many.ts", content=content)], "item")
        lines = output.splitlines()
        assert lines[0] == "Found 60 symbol(s):"
        assert len(lines) == 51


class TestReferencesAndDefinitions:
    """Tests for get_references and go_to_definition."""

    def test_references_across_files(self, scenario_files):
        # "foo" in `export function foo(){}` starts at column 17
        output = lsp.get_references(scenario_files, "src/a.ts", 1, 17)
        assert output.startswith("Found ")
        assert "src/a.ts:1:17" in output
        assert "src/b.ts:1:26" in output

    def test_references_nothing_at_position(self, scenario_files):
        output = lsp.get_references(scenario_files, "src/a.ts", 1, 1)
        assert output == "No references found at src/a.ts:1:1"

    def test_references_missing_file(self, scenario_files):
        assert lsp.get_references(scenario_files, "src/nope.ts", 1, 1) == "File not found: src/nope.ts"

    def test_definition_through_import(self, scenario_files):
        output = lsp.go_to_definition(scenario_files, "src/b.ts", 1, 26)
        assert output.startswith("Definition found:")
        assert "src/a.ts:1:17" in output
        assert "function: foo" in output
        assert "export function foo(){}" in output

    def test_definition_of_method_call(self, sample_ts_project):
        # `service.addUser(...)` on line 4 of src/index.ts
        output = lsp.go_to_definition(sample_ts_project, "src/index.ts", 4, 10)
        assert "src/models/user.ts:9:" in output
        assert "addUser" in output

    def test_no_definition(self, scenario_files):
        assert lsp.go_to_definition(scenario_files, "src/a.ts", 1, 1) == "No definition found at src/a.ts:1:1"

    def test_definition_empty_project(self):
        assert lsp.go_to_definition([], "a.ts", 1, 1) == "No files found in project."


class TestDiagnostics:
    """Tests for get_diagnostics."""

    def test_clean_file(self, scenario_files):
        assert lsp.get_diagnostics(scenario_files, "src/a.ts") == "No diagnostics found for src/a.ts."

    def test_unresolved_module(self):
        files = [ProjectFile(path="src/a.ts", content="import { x } from './missing';\nconsole.log(x);\n")]
        output = lsp.get_diagnostics(files, "src/a.ts")
        assert "(1 errors, 0 warnings, 0 other)" in output
        assert "TS2307: Cannot find module './missing'" in output

    def test_missing_export(self, scenario_files):
        files = scenario_files + [
            ProjectFile(path="src/c.ts", content="import { bar } from './a';\nbar();\n"),
        ]
        output = lsp.get_diagnostics(files, "src/c.ts")
        assert "TS2305" in output
        assert "has no exported member 'bar'" in output

    def test_assign_to_const(self):
        files = [ProjectFile(path="a.ts", content="export const x = 1;\nx = 2;\n")]
        output = lsp.get_diagnostics(files, "a.ts", "error")
        assert "[error] a.ts:2:1 - TS2588: Cannot assign to 'x' because it is a constant." in output

    def test_syntax_error(self):
        files = [ProjectFile(path="a.ts", content="export const x = ;\n")]
        output = lsp.get_diagnostics(files, "a.ts", "error")
        assert output.startswith("Found ")
        assert "[error]" in output

    def test_unused_local_is_hint(self):
        files = [ProjectFile(path="a.ts", content="export function f() {\n  const unused = 1;\n}\n")]
        output = lsp.get_diagnostics(files, "a.ts")
        assert "[hint] a.ts:2:9 - TS6133: 'unused' is declared but its value is never read." in output
        assert lsp.get_diagnostics(files, "a.ts", "error") == 'No diagnostics found for a.ts with severity "error".'

    def test_unreachable_code_is_hint(self):
        files = [ProjectFile(path="a.ts", content="export function f() {\n  return 1;\n  f();\n}\n")]
        output = lsp.get_diagnostics(files, "a.ts")
        assert "[hint] a.ts:3:3 - TS7027: Unreachable code detected." in output
        assert lsp.get_diagnostics(files, "a.ts", "warning") == 'No diagnostics found for a.ts with severity "warning".'

    def test_javascript_skips_semantic_checks(self):
        files = [ProjectFile(path="a.js", content="const x = 1;\nx = 2;\nmodule.exports = x;\n")]
        output = lsp.get_diagnostics(files, "a.js")
        assert "TS2588" not in output

    def test_not_analyzable(self, scenario_files):
        assert lsp.get_diagnostics(scenario_files, "README.md") == "File not found: README.md"


MIXED_DIAGNOSTICS = [
    ProjectFile(path="src/a.ts", content=(
        "import { missing } from './nowhere';\n"
        "export const x = 1;\n"
        "x = 2;\n"
        "export function f() {\n"
        "  const unused = 1;\n"
        "  return 1;\n"
        "  f();\n"
        "}\n"
        "export const broken = ;\n"
    )),
]


class TestDiagnosticFilters:
    """Tests for how severity filters nest."""

    def _keys(self, severity):
        diagnostics = lsp.collect_diagnostics(MIXED_DIAGNOSTICS, "src/a.ts", severity)
        return [(d.severity, d.line, d.column, d.code) for d in diagnostics]

    def test_error_within_warning_within_all(self):
        errors, warnings, everything = self._keys("error"), self._keys("warning"), self._keys("all")
        assert set(errors) <= set(warnings) <= set(everything)
        assert errors
        assert len(everything) > len(warnings)
        assert self._keys(None) == everything

    @pytest.mark.parametrize("severity,allowed", [
        ("error", {"error"}),
        ("warning", {"error", "warning"}),
        ("all", {"error", "warning", "hint", "info"}),
    ])
    def test_filter_keeps_only_allowed_levels(self, severity, allowed):
        assert {level for level, _, _, _ in self._keys(severity)} <= allowed


class TestSymbolKindFilter:
    """Tests that kind filters never leak other concrete kinds."""

    @pytest.mark.parametrize("kind", ["function", "class", "variable", "interface", "type"])
    def test_only_requested_kind_or_other(self, sample_ts_project, kind):
        results = lsp.collect_symbols(sample_ts_project, "", kind)
        assert results
        assert {s.kind for s in results} <= {kind, "other"}

    def test_all_matches_unfiltered(self, sample_ts_project):
        assert lsp.collect_symbols(sample_ts_project, "", "all") == lsp.collect_symbols(sample_ts_project, "")
