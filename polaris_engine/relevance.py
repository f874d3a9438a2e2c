"""Multi-signal relevance ranking of project files for context injection.

Each file collects additive weighted contributions with a human-readable
reason per signal. Ranking is heuristic: it must never raise for an
absent or unresolvable current file.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Collection, List, Optional, Sequence, Set

from . import config
from .models import ProjectFile, RelevanceScore
from .resolution import CONTEXT_SUFFIXES, normalize_path, resolve_import

logger = logging.getLogger(__name__)

# Signal weights
DIRECT_IMPORT = 10.0
SHARED_SYMBOL = 7.0
RECENT_EDIT = 5.0
FILE_PROXIMITY = 3.0
SIMILAR_TYPE = 2.0
QUERY_TEXT = 3.0

ONE_HOUR = 3600.0
ONE_DAY = 24 * ONE_HOUR
ONE_WEEK = 168 * ONE_HOUR

_ES_IMPORT = re.compile(r"""import\s+(?:[\w\s{},*]+\s+from\s+)?['"]([^'"]+)['"]""")
_REQUIRE = re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)""")
_DYNAMIC_IMPORT = re.compile(r"""import\s*\(\s*['"]([^'"]+)['"]\s*\)""")

_NAMED_EXPORT = re.compile(r"export\s+(?:const|let|var|function|class|interface|type|enum)\s+(\w+)")
_EXPORT_LIST = re.compile(r"export\s*\{([^}]+)\}")
_DEFAULT_EXPORT = re.compile(r"export\s+default\s+(?:function|class)\s+(\w+)")
_IDENTIFIER = re.compile(r"\b([A-Z][a-zA-Z0-9]*|[a-z][a-zA-Z0-9]*[A-Z][a-zA-Z0-9]*)\b")

KEYWORDS = {
    "if", "else", "for", "while", "do", "switch", "case", "break", "continue",
    "return", "throw", "try", "catch", "finally", "new", "delete", "typeof",
    "instanceof", "void", "this", "super", "class", "extends", "implements",
    "interface", "type", "enum", "const", "let", "var", "function", "async",
    "await", "import", "export", "from", "as", "default", "true", "false",
    "null", "undefined", "in", "of", "with", "debugger", "yield", "static",
    "public", "private", "protected", "readonly", "abstract", "declare",
}

FILE_CATEGORIES = {
    "typescript": ("ts", "tsx"),
    "javascript": ("js", "jsx", "mjs", "cjs"),
    "style": ("css", "scss", "sass", "less"),
    "markup": ("html", "htm", "xml"),
    "config": ("json", "yaml", "yml", "toml"),
    "markdown": ("md", "mdx"),
}


# ===================================================================
# Extraction helpers
# ===================================================================

def extract_imports(content: str) -> List[str]:
    """Module specifiers from ES imports, ``require()`` and dynamic ``import()``."""
    imports = [m.group(1) for m in _ES_IMPORT.finditer(content)]
    imports.extend(m.group(1) for m in _REQUIRE.finditer(content))
    imports.extend(m.group(1) for m in _DYNAMIC_IMPORT.finditer(content))
    return imports


def extract_exports(content: str) -> List[str]:
    exports = [m.group(1) for m in _NAMED_EXPORT.finditer(content)]
    for m in _EXPORT_LIST.finditer(content):
        for name in m.group(1).split(","):
            name = re.split(r"\s+as\s+", name.strip())[0].strip()
            if name:
                exports.append(name)
    exports.extend(m.group(1) for m in _DEFAULT_EXPORT.finditer(content))
    return exports


def extract_symbols(content: str) -> Set[str]:
    """PascalCase / camelCase identifiers longer than two characters."""
    return {
        m.group(1) for m in _IDENTIFIER.finditer(content)
        if m.group(1) not in KEYWORDS and len(m.group(1)) > 2
    }


def calculate_proximity(path1: str, path2: str) -> float:
    """Fraction of shared leading directories (filenames excluded)."""
    parts1 = path1.split("/")
    parts2 = path2.split("/")
    common = 0
    for a, b in zip(parts1[:-1], parts2[:-1]):
        if a != b:
            break
        common += 1
    total_depth = max(len(parts1), len(parts2)) - 1
    if total_depth == 0:
        return 1.0
    return common / total_depth


def file_type_category(path: str) -> str:
    ext = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    for category, extensions in FILE_CATEGORIES.items():
        if ext in extensions:
            return category
    return ext


def _resolves_to(specifiers: Sequence[str], from_path: str, target: str, known: Collection[str]) -> bool:
    return any(resolve_import(s, from_path, known, CONTEXT_SUFFIXES) == target for s in specifiers)


# ===================================================================
# Scoring
# ===================================================================

def score_file(
    candidate: ProjectFile,
    query: str,
    current: Optional[ProjectFile],
    known_paths: Collection[str],
    now: Optional[float] = None,
) -> RelevanceScore:
    result = RelevanceScore(path=candidate.path)
    if not candidate.is_file or not candidate.content:
        return result

    content = candidate.content
    query_lower = query.lower()
    terms = [t for t in query_lower.split() if len(t) > 2]

    if current is not None and current.content:
        if _resolves_to(extract_imports(current.content), current.path, candidate.path, known_paths):
            result.score += DIRECT_IMPORT
            result.reasons.append("Imported by current file")
        if _resolves_to(extract_imports(content), candidate.path, current.path, known_paths):
            result.score += DIRECT_IMPORT
            result.reasons.append("Imports current file")
        used = extract_symbols(current.content)
        shared = [name for name in extract_exports(content) if name in used]
        if shared:
            result.score += DIRECT_IMPORT * 0.5
            result.reasons.append(f"Exports used symbols: {', '.join(shared[:3])}")

    if terms:
        symbols = [s.lower() for s in extract_symbols(content)]
        matched = [t for t in terms if any(t in s for s in symbols)]
        if matched:
            result.score += SHARED_SYMBOL * (len(matched) / len(terms))
            result.reasons.append(f"Contains query terms: {', '.join(matched[:3])}")

    compact = "".join(query_lower.split())
    if compact and compact in candidate.path.lower():
        result.score += SHARED_SYMBOL
        result.reasons.append("Path matches query")

    if candidate.last_modified is not None:
        age = (time.time() if now is None else now) - candidate.last_modified
        if age < ONE_HOUR:
            result.score += RECENT_EDIT
            result.reasons.append("Edited within last hour")
        elif age < ONE_DAY:
            result.score += RECENT_EDIT * 0.5
            result.reasons.append("Edited within last day")
        elif age < ONE_WEEK:
            result.score += RECENT_EDIT * 0.2
            result.reasons.append("Edited within last week")

    if current is not None:
        proximity = calculate_proximity(current.path, candidate.path)
        if proximity > 0.5:
            result.score += FILE_PROXIMITY * proximity
            result.reasons.append("Near current file")
        if file_type_category(current.path) == file_type_category(candidate.path):
            result.score += SIMILAR_TYPE
            result.reasons.append("Same file type")

    if query_lower.strip() and query_lower in content.lower():
        result.score += QUERY_TEXT
        result.reasons.append("Contains query text")
    return result


def rank_files(
    files: Sequence[ProjectFile],
    query: str,
    current_file: Optional[str] = None,
    max_files: int = config.DEFAULT_MAX_RELEVANT_FILES,
    now: Optional[float] = None,
) -> List[RelevanceScore]:
    """Score every file and return the top *max_files* with a positive score."""
    candidates = [f for f in files if f.is_file]
    known = {f.path for f in candidates}
    current: Optional[ProjectFile] = None
    if current_file:
        wanted = normalize_path(current_file)
        current = next((f for f in candidates if f.path == wanted), None)
        if current is None:
            logger.debug("Current file %s not in snapshot", current_file)

    scored = [score_file(f, query, current, known, now) for f in candidates]
    ranked = sorted((s for s in scored if s.score > 0), key=lambda s: s.score, reverse=True)
    return ranked[: max(max_files, 0)]


def get_relevant_files(
    files: Sequence[ProjectFile],
    query: str,
    current_file: Optional[str] = None,
    max_files: Optional[int] = None,
) -> str:
    try:
        if not files or not any(f.is_file for f in files):
            return "No files found in project."
        ranked = rank_files(files, query, current_file, max_files or config.DEFAULT_MAX_RELEVANT_FILES)
        if not ranked:
            return f'No relevant files found for query: "{query}"'
        lines = []
        for i, item in enumerate(ranked, start=1):
            reasons = f" ({', '.join(item.reasons)})" if item.reasons else ""
            lines.append(f"{i}. {item.path} [score: {item.score:.1f}]{reasons}")
        return f"Found {len(ranked)} relevant file(s):\n" + "\n".join(lines)
    except Exception as exc:
        logger.warning("Relevance ranking failed: %s", exc)
        return f"Error finding relevant files: {exc}"
