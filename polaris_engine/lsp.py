"""Compiler-backed symbol tools: outline search, references, diagnostics, definitions.

Every entry point takes a fresh project snapshot, builds a
:class:`VirtualCompilerHost` over its script files and answers with a plain
text summary meant for a language model. Missing files and empty results
are reported as text, never raised.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from . import config
from .compiler_host import VirtualCompilerHost, filter_script_files
from .language_service import LanguageService, NavigationItem
from .models import DefinitionEntry, Diagnostic, ProjectFile, ReferenceEntry, SymbolResult
from .resolution import normalize_path

logger = logging.getLogger(__name__)

SYMBOL_KINDS = ("function", "class", "variable", "interface", "type", "all")
SEVERITY_FILTERS = ("error", "warning", "all")

_KIND_MAP = {
    "function": "function",
    "method": "function",
    "constructor": "function",
    "class": "class",
    "var": "variable",
    "let": "variable",
    "const": "variable",
    "parameter": "variable",
    "local var": "variable",
    "interface": "interface",
    "type": "type",
    "type parameter": "type",
}

_SEVERITY_MAP = {"error": "error", "warning": "warning", "suggestion": "hint"}


# ===================================================================
# Position helpers
# ===================================================================

def line_and_column(content: str, offset: int) -> Tuple[int, int]:
    """Return the 1-based (line, column) of character *offset*."""
    before = content[:offset].split("\n")
    return len(before), len(before[-1]) + 1


def position_to_offset(content: str, line: int, column: int) -> int:
    """Convert a 1-based line/column into a flat character offset."""
    lines = content.split("\n")
    offset = 0
    for i in range(min(line - 1, len(lines))):
        offset += len(lines[i]) + 1
    return offset + column - 1


def line_context(content: str, line: int, max_length: int = 80) -> str:
    lines = content.split("\n")
    if line < 1 or line > len(lines):
        return ""
    return lines[line - 1].strip()[:max_length]


def symbol_kind(kind: str) -> str:
    """Map a script element kind onto the coarse symbol kinds exposed to callers."""
    return _KIND_MAP.get(kind, "other")


def diagnostic_severity(category: str) -> str:
    return _SEVERITY_MAP.get(category, "info")


def _open(files: Sequence[ProjectFile]) -> Tuple[List[ProjectFile], LanguageService]:
    scripts = filter_script_files(files)
    host = VirtualCompilerHost(scripts)
    return scripts, host.create_language_service()


def _content_of(service: LanguageService, path: str) -> str:
    return service.host.read_file(path) or ""


# ===================================================================
# Structured queries
# ===================================================================

def collect_symbols(files: Sequence[ProjectFile], query: str, kind: Optional[str] = None) -> List[SymbolResult]:
    """Walk every outline and return matching symbols (unbounded)."""
    scripts, service = _open(files)
    needle = query.lower()
    results: List[SymbolResult] = []
    for f in scripts:
        path = normalize_path(f.path)
        try:
            items = service.navigation_items(path)
        except Exception as exc:
            logger.debug("Skipping outline of %s: %s", path, exc)
            continue
        content = f.content or ""
        stack: List[Tuple[NavigationItem, str]] = [(item, "") for item in reversed(items)]
        while stack:
            item, parent = stack.pop()
            mapped = symbol_kind(item.kind)
            name = f"{parent}.{item.text}" if parent else item.text
            if needle in item.text.lower() and (not kind or kind == "all" or mapped in (kind, "other")):
                line, column = line_and_column(content, item.start)
                results.append(SymbolResult(name=name, kind=mapped, path=path, line=line, column=column))
            stack.extend((child, name) for child in reversed(item.children))
    return results


def collect_references(
    files: Sequence[ProjectFile], path: str, line: int, column: int
) -> Optional[List[ReferenceEntry]]:
    """Return reference entries, or None when *path* is not an analyzable file."""
    _, service = _open(files)
    path = normalize_path(path)
    if not service.host.is_script(path):
        return None
    offset = position_to_offset(_content_of(service, path), line, column)
    entries: List[ReferenceEntry] = []
    for site in service.references_at(path, offset) or []:
        content = _content_of(service, site.path)
        ref_line, ref_column = line_and_column(content, site.start)
        entries.append(ReferenceEntry(
            path=site.path,
            line=ref_line,
            column=ref_column,
            access="write" if site.is_write else "read",
            context=line_context(content, ref_line),
        ))
    return entries


def collect_diagnostics(
    files: Sequence[ProjectFile], path: str, severity: Optional[str] = None
) -> Optional[List[Diagnostic]]:
    """Return diagnostics for *path* filtered by *severity*, or None if not analyzable."""
    _, service = _open(files)
    path = normalize_path(path)
    if not service.host.is_script(path):
        return None
    content = _content_of(service, path)
    raw = (
        service.syntactic_diagnostics(path)
        + service.semantic_diagnostics(path)
        + service.suggestion_diagnostics(path)
    )
    results: List[Diagnostic] = []
    for diag in raw:
        level = diagnostic_severity(diag.category)
        if severity == "error" and level != "error":
            continue
        if severity == "warning" and level not in ("error", "warning"):
            continue
        line, column = line_and_column(content, diag.start)
        results.append(Diagnostic(severity=level, line=line, column=column, message=diag.message, code=diag.code))
    return results


def collect_definitions(
    files: Sequence[ProjectFile], path: str, line: int, column: int
) -> Optional[List[DefinitionEntry]]:
    _, service = _open(files)
    path = normalize_path(path)
    if not service.host.is_script(path):
        return None
    offset = position_to_offset(_content_of(service, path), line, column)
    entries: List[DefinitionEntry] = []
    for site in service.definitions_at(path, offset) or []:
        content = _content_of(service, site.path)
        def_line, def_column = line_and_column(content, site.start)
        entries.append(DefinitionEntry(
            path=site.path,
            line=def_line,
            column=def_column,
            kind=site.kind,
            name=site.name,
            context=line_context(content, def_line, 100),
        ))
    return entries


# ===================================================================
# Text renderings
# ===================================================================

def find_symbol(files: Sequence[ProjectFile], query: str, kind: Optional[str] = None) -> str:
    kind = kind or "all"
    try:
        if not files:
            return "No files found in project."
        if not filter_script_files(files):
            return "No TypeScript/JavaScript files found in project."
        results = collect_symbols(files, query, kind)
        if not results:
            suffix = f' of kind "{kind}"' if kind != "all" else ""
            return f'No symbols found matching "{query}"{suffix}.'
        formatted = "\n".join(
            f"[{r.kind}] {r.name} - {r.path}:{r.line}:{r.column}" for r in results[: config.MAX_RESULTS]
        )
        return f"Found {len(results)} symbol(s):\n{formatted}"
    except Exception as exc:
        logger.warning("Symbol search failed: %s", exc)
        return f"Error searching symbols: {exc}"


def get_references(files: Sequence[ProjectFile], path: str, line: int, column: int) -> str:
    try:
        if not files:
            return "No files found in project."
        results = collect_references(files, path, line, column)
        if results is None:
            return f"File not found: {path}"
        if not results:
            return f"No references found at {path}:{line}:{column}"
        formatted = "\n".join(f"[{r.access}] {r.path}:{r.line}:{r.column} - {r.context}" for r in results)
        return f"Found {len(results)} reference(s):\n{formatted}"
    except Exception as exc:
        logger.warning("Reference lookup failed for %s: %s", path, exc)
        return f"Error finding references: {exc}"


def get_diagnostics(files: Sequence[ProjectFile], path: str, severity: Optional[str] = None) -> str:
    severity = severity or "all"
    try:
        if not files:
            return "No files found in project."
        results = collect_diagnostics(files, path, severity)
        if results is None:
            return f"File not found: {path}"
        if not results:
            suffix = f' with severity "{severity}"' if severity != "all" else ""
            return f"No diagnostics found for {path}{suffix}."
        errors = sum(1 for r in results if r.severity == "error")
        warnings = sum(1 for r in results if r.severity == "warning")
        formatted = "\n".join(
            f"[{r.severity}] {path}:{r.line}:{r.column} - TS{r.code}: {r.message}" for r in results
        )
        return (
            f"Found {len(results)} diagnostic(s) ({errors} errors, {warnings} warnings, "
            f"{len(results) - errors - warnings} other):\n{formatted}"
        )
    except Exception as exc:
        logger.warning("Diagnostics failed for %s: %s", path, exc)
        return f"Error getting diagnostics: {exc}"


def go_to_definition(files: Sequence[ProjectFile], path: str, line: int, column: int) -> str:
    try:
        if not files:
            return "No files found in project."
        results = collect_definitions(files, path, line, column)
        if results is None:
            return f"File not found: {path}"
        if not results:
            return f"No definition found at {path}:{line}:{column}"
        if len(results) == 1:
            r = results[0]
            return f"Definition found:\n  {r.path}:{r.line}:{r.column}\n  {r.kind}: {r.name}\n  {r.context}"
        formatted = "\n".join(
            f"[{r.kind}] {r.name} - {r.path}:{r.line}:{r.column}\n    {r.context}" for r in results
        )
        return f"Found {len(results)} definition(s):\n{formatted}"
    except Exception as exc:
        logger.warning("Definition lookup failed for %s: %s", path, exc)
        return f"Error finding definition: {exc}"
