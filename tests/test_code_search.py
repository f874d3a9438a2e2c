"""Tests for regex search, structural pattern search and glob file lookup."""

import pytest

from polaris_engine import code_search
from polaris_engine.code_search import find_code_patterns, match_glob
from polaris_engine.models import ProjectFile


@pytest.mark.parametrize("path,pattern,expected", [
    ("index.ts", "*.ts", True),
    ("src/index.ts", "*.ts", False),
    ("src/index.ts", "**/*.ts", True),
    ("index.ts", "**/*.ts", True),
    ("src/components/Button.tsx", "src/**/*.tsx", True),
    ("src/a.ts", "src/?.ts", True),
    ("src/ab.ts", "src/?.ts", False),
    ("src/a+b.ts", "src/a+b.ts", True),
    ("srcXa.ts", "src.a.ts", False),
])
def test_match_glob(path, pattern, expected):
    """Test glob semantics: * stops at separators, ** crosses them."""
    assert match_glob(path, pattern) is expected


class TestFindCodePatterns:
    """Tests for the line heuristics."""

    def test_imports(self):
        content = "import React from 'react';\nimport { a, b } from \"./ab\";\nimport './side.css';\n"
        names = [p.name for p in find_code_patterns(content, "import")]
        assert names == ["react", "./ab", "./side.css"]

    def test_functions_include_arrows(self):
        content = "function one() {}\nexport async function two() {}\nconst three = (x) => x;\nconst four = async () => 1;\n"
        names = [p.name for p in find_code_patterns(content, "function")]
        assert names == ["one", "two", "three", "four"]

    def test_calls_skip_keywords_and_declarations(self):
        content = "function build() {\n  if (ready()) {\n    return run(1);\n  }\n}\n"
        names = [p.name for p in find_code_patterns(content, "call")]
        assert names == ["ready", "run"]

    def test_export_list_keeps_original_names(self):
        content = "export { alpha, beta as gamma };\n"
        names = [p.name for p in find_code_patterns(content, "export")]
        assert names == ["alpha", "beta"]

    def test_search_term_filter(self):
        content = "const useThing = 1;\nconst other = 2;\n"
        found = find_code_patterns(content, "variable", "THING")
        assert [(p.name, p.line) for p in found] == [("useThing", 1)]


class TestSearchFiles:
    """Tests for search_files."""

    def test_matches_with_columns(self, sample_ts_project):
        output = code_search.search_files(sample_ts_project, "todo")
        assert output == "Found 1 match(es):\nREADME.md:3:1 - TODO: write docs"

    def test_case_sensitive(self, sample_ts_project):
        assert code_search.search_files(sample_ts_project, "todo", case_sensitive=True) == \
            'No matches found for pattern "todo".'

    def test_file_pattern_filter(self, sample_ts_project):
        output = code_search.search_files(sample_ts_project, "User", file_pattern="src/*.ts")
        assert output.startswith("Found ")
        assert "src/models" not in output
        assert "src/index.ts:1:" in output

    def test_no_files_match_pattern(self, sample_ts_project):
        assert code_search.search_files(sample_ts_project, "x", file_pattern="**/*.py") == \
            'No files matching pattern "**/*.py" found.'

    def test_invalid_regex(self, sample_ts_project):
        assert code_search.search_files(sample_ts_project, "(").startswith("Invalid regex pattern:")

    def test_empty_project(self):
        assert code_search.search_files([], "x") == "No files found in project."

    def test_capped_at_fifty(self):
        files = [ProjectFile(path="big.txt", content="x\n" * 80)]
        output = code_search.search_files(files, "x")
        assert output.startswith("Found 50 match(es) (showing first 50):")

    @pytest.mark.parametrize("pattern,expected", [
        ("x*", ["f.txt:1:1", "f.txt:1:2", "f.txt:1:3", "f.txt:2:1", "f.txt:2:2", "f.txt:2:3"]),
        ("^", ["f.txt:1:1", "f.txt:2:1"]),
    ])
    def test_zero_length_matches_advance(self, pattern, expected):
        files = [ProjectFile(path="f.txt", content="ab\ncd")]
        output = code_search.search_files(files, pattern)
        assert [line.split(" - ")[0] for line in output.splitlines()[1:]] == expected

    @pytest.mark.parametrize("pattern", ["User", "x*", "(", "todo"])
    def test_repeated_search_is_identical(self, sample_ts_project, pattern):
        first = code_search.search_files(sample_ts_project, pattern)
        assert code_search.search_files(sample_ts_project, pattern) == first
        assert code_search.search_files(sample_ts_project, pattern) == first


class TestSearchCodebase:
    """Tests for search_codebase."""

    def test_scenario_call(self, scenario_files):
        output = code_search.search_codebase(scenario_files, "call", "foo")
        assert output == "Found 1 call(s):\n[call] foo - src/b.ts:1\n    import {foo} from './a'; foo();"

    def test_all_patterns(self, scenario_files):
        output = code_search.search_codebase(scenario_files, "all", "foo")
        assert output.startswith("Found ")
        assert "pattern(s)" in output
        assert "[export] foo - src/a.ts:1" in output

    def test_no_results(self, scenario_files):
        assert code_search.search_codebase(scenario_files, "class") == "No classs found."
        assert code_search.search_codebase(scenario_files, "all", "zzz") == 'No code patterns found matching "zzz".'

    def test_non_code_files_ignored(self):
        files = [ProjectFile(path="notes.md", content="function x() {}")]
        assert code_search.search_codebase(files, "function") == "No code files found in project."


class TestFindFilesByPattern:
    """Tests for find_files_by_pattern."""

    def test_glob(self, sample_ts_project):
        output = code_search.find_files_by_pattern(sample_ts_project, "src/**/*.ts")
        assert output.splitlines()[0] == 'Found 3 file(s) matching "src/**/*.ts":'

    def test_no_match(self, sample_ts_project):
        assert code_search.find_files_by_pattern(sample_ts_project, "*.py") == 'No files matching pattern "*.py" found.'

    def test_folders_excluded(self, scenario_files):
        output = code_search.find_files_by_pattern(scenario_files, "src*")
        assert output == 'No files matching pattern "src*" found.'
