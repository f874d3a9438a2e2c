"""Path normalization and import specifier resolution over a set of known paths."""

from __future__ import annotations

from typing import Callable, Collection, Dict, Optional, Sequence

# Suffixes tried, in order, when resolving a relative or aliased specifier.
CONTEXT_SUFFIXES: Sequence[str] = (
    "", ".ts", ".tsx", ".js", ".jsx",
    "/index.ts", "/index.tsx", "/index.js", "/index.jsx",
)

COMPILER_SUFFIXES: Sequence[str] = (
    "", ".ts", ".tsx", ".d.ts", ".js", ".jsx", ".mjs", ".cjs", ".json",
    "/index.ts", "/index.tsx", "/index.d.ts", "/index.js", "/index.jsx",
)

# Bundler resolution lets `./a.js` name a TypeScript source file.
_EXTENSION_SUBSTITUTES: Dict[str, Sequence[str]] = {
    ".js": (".ts", ".tsx"),
    ".jsx": (".tsx",),
    ".mjs": (".mts",),
    ".cjs": (".cts",),
}

DEFAULT_ALIASES: Dict[str, str] = {"@/": "src/"}


def normalize_path(path: str) -> str:
    """Return a slash-separated, root-relative form of *path*."""
    path = path.replace("\\", "/").strip()
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def parent_dir(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def join_segments(base_dir: str, relative: str) -> str:
    """Join *relative* onto *base_dir*, collapsing ``.`` and ``..`` segments."""
    resolved = []
    for part in (base_dir.split("/") + relative.split("/")):
        if part in (".", ""):
            continue
        if part == "..":
            if resolved:
                resolved.pop()
        else:
            resolved.append(part)
    return "/".join(resolved)


def is_local_specifier(specifier: str, aliases: Optional[Dict[str, str]] = None) -> bool:
    """True for relative, root-absolute and aliased specifiers (never bare packages)."""
    if specifier.startswith((".", "/")):
        return True
    return any(specifier.startswith(prefix) for prefix in (aliases or DEFAULT_ALIASES))


def specifier_base(
    specifier: str,
    from_path: str,
    aliases: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Map *specifier* to a root-relative path stem, or None for bare packages."""
    aliases = DEFAULT_ALIASES if aliases is None else aliases
    for prefix, target in aliases.items():
        if specifier.startswith(prefix):
            return join_segments("", target + specifier[len(prefix):])
    if specifier.startswith("/"):
        return join_segments("", specifier)
    if specifier.startswith("."):
        return join_segments(parent_dir(normalize_path(from_path)), specifier)
    return None


def resolve_import(
    specifier: str,
    from_path: str,
    known_paths: Collection[str],
    suffixes: Sequence[str] = CONTEXT_SUFFIXES,
    aliases: Optional[Dict[str, str]] = None,
    substitute_extensions: bool = False,
    directory_exists: Optional[Callable[[str], bool]] = None,
) -> Optional[str]:
    """Resolve an import specifier against *known_paths*.

    Returns the first known path produced by appending each suffix in order,
    or None when the specifier is a bare package or nothing matches. When
    *directory_exists* is given, index suffixes are only tried for folders
    it reports.
    """
    base = specifier_base(specifier, from_path, aliases)
    if base is None:
        return None

    has_folder = directory_exists(base) if directory_exists is not None else True
    for suffix in suffixes:
        if suffix.startswith("/") and not has_folder:
            continue
        candidate = base + suffix
        if candidate in known_paths:
            return candidate

    if substitute_extensions:
        for ext, replacements in _EXTENSION_SUBSTITUTES.items():
            if base.endswith(ext):
                stem = base[: -len(ext)]
                for replacement in replacements:
                    if stem + replacement in known_paths:
                        return stem + replacement
    return None
