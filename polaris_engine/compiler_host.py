"""In-memory compilation host built from a project snapshot.

The host answers every file-system question an analysis session asks
(existence, content, directory listing, module resolution) from a
path -> source map. Nothing touches the disk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence

from .models import ProjectFile
from .parser import is_javascript
from .resolution import COMPILER_SUFFIXES, normalize_path, parent_dir, resolve_import

if TYPE_CHECKING:
    from .language_service import LanguageService

logger = logging.getLogger(__name__)

SCRIPT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx")
JSX_EXTENSIONS = (".tsx", ".jsx")

# Resolution modes that let `./a.js` name `a.ts`.
EXTENSION_MAPPING_RESOLUTIONS = ("bundler", "node16", "nodenext")


@dataclass
class CompilerOptions:
    module_resolution: str = "bundler"
    # None disables JSX: .tsx/.jsx files stay resolvable but are not analyzed.
    jsx: Optional[str] = "react-jsx"
    allow_js: bool = True
    check_js: bool = False
    resolve_json_module: bool = True
    allow_importing_ts_extensions: bool = True
    paths: Dict[str, List[str]] = field(default_factory=lambda: {"@/*": ["src/*"]})

    def path_aliases(self) -> Dict[str, str]:
        """Return ``paths`` as prefix substitutions (``@/`` -> ``src/``)."""
        aliases: Dict[str, str] = {}
        for pattern, targets in self.paths.items():
            if not targets or not pattern.endswith("*"):
                continue
            aliases[pattern[:-1]] = targets[0].rstrip("*")
        return aliases

    def module_suffixes(self) -> Sequence[str]:
        suffixes = [s for s in COMPILER_SUFFIXES if self.resolve_json_module or not s.endswith(".json")]
        if not self.allow_js:
            suffixes = [s for s in suffixes if not s.endswith((".js", ".jsx", ".mjs", ".cjs"))]
        return suffixes

    def maps_extensions(self) -> bool:
        return self.module_resolution.lower() in EXTENSION_MAPPING_RESOLUTIONS

    def script_extensions(self) -> Sequence[str]:
        extensions = [ext for ext in SCRIPT_EXTENSIONS if self.allow_js or ext not in (".js", ".jsx")]
        if not self.jsx:
            extensions = [ext for ext in extensions if ext not in JSX_EXTENSIONS]
        return extensions


def is_script_file(path: str) -> bool:
    return path.endswith(SCRIPT_EXTENSIONS)


def filter_script_files(files: Iterable[ProjectFile]) -> List[ProjectFile]:
    """Return the analyzable subset: TS/JS files that carry content."""
    return [f for f in files if f.is_file and f.content is not None and is_script_file(f.path)]


class VirtualCompilerHost:
    """Addressable source set for one analysis session."""

    def __init__(self, files: Iterable[ProjectFile], options: Optional[CompilerOptions] = None) -> None:
        self.options = options or CompilerOptions()
        self._sources: Dict[str, str] = {}
        for f in files:
            if not f.is_file or f.content is None:
                continue
            path = normalize_path(f.path)
            if is_script_file(path) and (self.options.allow_js or not is_javascript(path)):
                self._sources[path] = f.content
            elif self.options.resolve_json_module and path.endswith(".json"):
                self._sources[path] = f.content
        self._directories = {""}
        for path in self._sources:
            folder = parent_dir(path)
            while folder and folder not in self._directories:
                self._directories.add(folder)
                folder = parent_dir(folder)
        logger.debug("Compilation host holds %d source(s)", len(self._sources))

    # ------------------------------------------------------------------
    # Host callbacks
    # ------------------------------------------------------------------

    def script_file_names(self) -> List[str]:
        return self.read_directory("", self.options.script_extensions())

    def file_exists(self, path: str) -> bool:
        return normalize_path(path) in self._sources

    def read_file(self, path: str) -> Optional[str]:
        return self._sources.get(normalize_path(path))

    def directory_exists(self, path: str) -> bool:
        return normalize_path(path).rstrip("/") in self._directories

    def read_directory(self, path: str, extensions: Optional[Sequence[str]] = None) -> List[str]:
        """Return every file below *path*, optionally limited to *extensions*."""
        folder = normalize_path(path).rstrip("/")
        prefix = folder + "/" if folder else ""
        return [
            p for p in self._sources
            if p.startswith(prefix) and (not extensions or p.endswith(tuple(extensions)))
        ]

    def is_script(self, path: str) -> bool:
        path = normalize_path(path)
        return path in self._sources and path.endswith(tuple(self.options.script_extensions()))

    def resolve_module(self, specifier: str, containing_file: str) -> Optional[str]:
        """Resolve a module specifier against the source map.

        Index files are probed only below existing directories. Bare
        package names resolve to None; that is tolerated, not an error.
        """
        return resolve_import(
            specifier,
            containing_file,
            self._sources,
            suffixes=self.options.module_suffixes(),
            aliases=self.options.path_aliases(),
            substitute_extensions=self.options.maps_extensions(),
            directory_exists=self.directory_exists,
        )

    def create_language_service(self) -> "LanguageService":
        from .language_service import LanguageService

        return LanguageService(self)
