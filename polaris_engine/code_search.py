"""Textual and line-heuristic structural search over a project snapshot.

This is the cheap tier next to the compiler-backed tools in :mod:`lsp`:
it scans any text file, tolerates false positives (method declarations
read as calls, multi-line constructs missed) and never parses.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Optional, Pattern, Sequence

from . import config
from .models import ProjectFile

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")
PATTERN_TYPES = ("import", "function", "class", "variable", "export", "call")

# Keywords that look like calls when followed by "("
CALL_KEYWORDS = {"if", "for", "while", "switch", "catch", "function", "return"}

_PATTERNS: Dict[str, Pattern] = {
    "import": re.compile(r"""import\s+(?:(?:\{[^}]*\}|\*\s+as\s+\w+|\w+)\s+from\s+)?['"]([^'"]+)['"]"""),
    "function": re.compile(
        r"(?:async\s+)?function\s+(\w+)|(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s+)?(?:\([^)]*\)|[^=])\s*=>"
    ),
    "class": re.compile(r"class\s+(\w+)"),
    "variable": re.compile(r"(?:const|let|var)\s+(\w+)\s*="),
    "export": re.compile(
        r"export\s+(?:default\s+)?(?:(?:async\s+)?function\s+(\w+)|class\s+(\w+)"
        r"|const\s+(\w+)|let\s+(\w+)|var\s+(\w+)|\{([^}]+)\})"
    ),
}
_CALL = re.compile(r"(\w+)\s*\(")
_DECLARED_FUNCTION = re.compile(r"function\s*\*?\s*$")


@dataclass
class SearchMatch:
    path: str
    line: int
    column: int
    match: str
    context: str


@dataclass
class CodePattern:
    type: str
    name: str
    line: int
    context: str
    path: str = ""


# ===================================================================
# Glob matching
# ===================================================================

@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> Pattern:
    """Compile a glob into an anchored regex.

    ``*`` matches a run of non-separator characters, ``**`` any run
    including separators (``**/`` also matches zero directories) and ``?``
    a single character. Everything else is literal.
    """
    parts: List[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append(".")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def match_glob(path: str, pattern: str) -> bool:
    return glob_to_regex(pattern).match(path) is not None


def _context(line: str, limit: int = 120) -> str:
    return line.strip()[:limit]


# ===================================================================
# Structural heuristics
# ===================================================================

def find_code_patterns(content: str, pattern_type: str, search_term: Optional[str] = None) -> List[CodePattern]:
    """Extract code patterns of *pattern_type* (or ``all``) line by line."""
    types = PATTERN_TYPES if pattern_type == "all" else (pattern_type,)
    needle = search_term.lower() if search_term else None
    results: List[CodePattern] = []

    def keep(name: str) -> bool:
        return needle is None or needle in name.lower()

    for number, line in enumerate(content.split("\n"), start=1):
        context = _context(line)
        for kind in types:
            if kind == "call":
                for match in _CALL.finditer(line):
                    name = match.group(1)
                    if name in CALL_KEYWORDS or _DECLARED_FUNCTION.search(line[: match.start()]):
                        continue
                    if keep(name):
                        results.append(CodePattern("call", name, number, context))
                continue

            match = _PATTERNS[kind].search(line)
            if match is None:
                continue
            name = next((g for g in match.groups() if g is not None), "")
            if kind == "export" and match.group(6) is not None:
                names = [n.strip().split(" as ")[0].strip() for n in name.split(",")]
                for n in names:
                    if n and keep(n):
                        results.append(CodePattern(kind, n, number, context))
            elif keep(name):
                results.append(CodePattern(kind, name, number, context))
    return results


# ===================================================================
# Tool renderings
# ===================================================================

def search_files(
    files: Sequence[ProjectFile],
    pattern: str,
    file_pattern: Optional[str] = None,
    case_sensitive: bool = False,
) -> str:
    """Regex search across file contents, capped at ``MAX_RESULTS`` matches."""
    try:
        if not files:
            return "No files found in project."
        searchable = [f for f in files if f.is_file and f.content is not None]
        if file_pattern:
            searchable = [f for f in searchable if match_glob(f.path, file_pattern)]
        if not searchable:
            if file_pattern:
                return f'No files matching pattern "{file_pattern}" found.'
            return "No searchable files found in project."

        try:
            regex = re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
        except re.error as exc:
            return f"Invalid regex pattern: {exc}"

        matches: List[SearchMatch] = []
        limit = config.MAX_RESULTS
        for f in searchable:
            for number, line in enumerate(f.content.split("\n"), start=1):
                pos = 0
                while pos <= len(line) and len(matches) < limit:
                    match = regex.search(line, pos)
                    if match is None:
                        break
                    matches.append(SearchMatch(f.path, number, match.start() + 1, match.group(0), _context(line)))
                    # zero-length matches must still advance
                    pos = match.end() if match.end() > match.start() else match.end() + 1
                if len(matches) >= limit:
                    break
            if len(matches) >= limit:
                break

        if not matches:
            where = f' in files matching "{file_pattern}"' if file_pattern else ""
            return f'No matches found for pattern "{pattern}"{where}.'
        formatted = "\n".join(f"{m.path}:{m.line}:{m.column} - {m.context}" for m in matches)
        truncated = f" (showing first {limit})" if len(matches) >= limit else ""
        return f"Found {len(matches)} match(es){truncated}:\n{formatted}"
    except Exception as exc:
        logger.warning("File search failed: %s", exc)
        return f"Error searching files: {exc}"


def search_codebase(
    files: Sequence[ProjectFile],
    pattern_type: str,
    search_term: Optional[str] = None,
    file_pattern: Optional[str] = None,
) -> str:
    try:
        if not files:
            return "No files found in project."
        code_files = [
            f for f in files
            if f.is_file and f.content is not None and f.path.endswith(CODE_EXTENSIONS)
        ]
        if file_pattern:
            code_files = [f for f in code_files if match_glob(f.path, file_pattern)]
        if not code_files:
            if file_pattern:
                return f'No code files matching pattern "{file_pattern}" found.'
            return "No code files found in project."

        limit = config.MAX_RESULTS
        results: List[CodePattern] = []
        for f in code_files:
            for found in find_code_patterns(f.content, pattern_type, search_term):
                found.path = f.path
                results.append(found)
                if len(results) >= limit:
                    break
            if len(results) >= limit:
                break

        if not results:
            what = "code patterns" if pattern_type == "all" else f"{pattern_type}s"
            term = f' matching "{search_term}"' if search_term else ""
            where = f' in files matching "{file_pattern}"' if file_pattern else ""
            return f"No {what} found{term}{where}."
        formatted = "\n".join(f"[{r.type}] {r.name} - {r.path}:{r.line}\n    {r.context}" for r in results)
        label = "pattern" if pattern_type == "all" else pattern_type
        truncated = f" (showing first {limit})" if len(results) >= limit else ""
        return f"Found {len(results)} {label}(s){truncated}:\n{formatted}"
    except Exception as exc:
        logger.warning("Codebase search failed: %s", exc)
        return f"Error searching codebase: {exc}"


def find_files_by_pattern(files: Sequence[ProjectFile], pattern: str) -> str:
    try:
        if not files:
            return "No files found in project."
        matching = [f.path for f in files if f.is_file and match_glob(f.path, pattern)]
        if not matching:
            return f'No files matching pattern "{pattern}" found.'
        limit = config.MAX_RESULTS
        formatted = "\n".join(matching[:limit])
        truncated = f"\n\n(Showing {limit} of {len(matching)} matches)" if len(matching) > limit else ""
        return f'Found {len(matching)} file(s) matching "{pattern}":\n{formatted}{truncated}'
    except Exception as exc:
        logger.warning("File pattern search failed: %s", exc)
        return f"Error finding files: {exc}"
