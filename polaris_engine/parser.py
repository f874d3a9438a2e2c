"""Tree-sitter grammar loading for the TypeScript / JavaScript family.

Parsers are created once per grammar and shared; trees are produced on
demand by the language service and never outlive one analysis session.
"""

from __future__ import annotations

import importlib
import logging
import threading
from functools import lru_cache
from typing import Dict, Optional, Tuple

from tree_sitter import Language, Parser, Tree

logger = logging.getLogger(__name__)

_thread_state = threading.local()

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "tsx",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
}

# Map grammar name -> (module, factory) providing the tree-sitter Language
_GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
    "javascript": ("tree_sitter_javascript", "language"),
}


def extension_of(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    if name.endswith(".d.ts"):
        return ".ts"
    dot = name.rfind(".")
    return name[dot:].lower() if dot > 0 else ""


def language_for_path(path: str) -> Optional[str]:
    """Return the grammar name used for *path*, or None if unsupported."""
    return LANGUAGE_MAP.get(extension_of(path))


def is_javascript(path: str) -> bool:
    return language_for_path(path) == "javascript"


@lru_cache(maxsize=None)
def get_language(language: str) -> Language:
    """Load the tree-sitter grammar for *language* once per process.

    Raises:
        ValueError: If no grammar is mapped for *language*.
    """
    if language not in _GRAMMAR_MODULES:
        raise ValueError(f"No grammar module mapped for language '{language}'")
    mod_name, factory = _GRAMMAR_MODULES[language]
    mod = importlib.import_module(mod_name)
    # tree-sitter >=0.22 per-language packages expose a function returning
    # the Language capsule.
    grammar = Language(getattr(mod, factory)())
    logger.debug("Loaded tree-sitter grammar for %s", language)
    return grammar


def get_parser(language: str) -> Parser:
    """Return the calling thread's parser for *language*.

    Grammars are shared; parsers are kept per thread since analysis runs
    in worker threads.
    """
    parsers = getattr(_thread_state, "parsers", None)
    if parsers is None:
        parsers = _thread_state.parsers = {}
    if language not in parsers:
        parsers[language] = Parser(get_language(language))
    return parsers[language]


def parse_source(path: str, source: str) -> Optional[Tree]:
    """Parse *source* with the grammar matching *path*'s extension."""
    language = language_for_path(path)
    if language is None:
        return None
    return get_parser(language).parse(source.encode("utf-8"))
