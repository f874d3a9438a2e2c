"""Model-callable tools over the project store and the analysis services.

Every tool declares a pydantic input schema (camelCase on the wire) and a
resource key extractor. The orchestrator uses the resource keys to order
calls that touch overlapping paths; the tool bodies never raise for input
or not-found conditions, they answer with text.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import code_search, lsp, relevance
from .models import ProjectFile
from .resolution import join_segments, normalize_path
from .store import ProjectStore, fetch_snapshot

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 500


# ═══════════════════════════════════════════════════════════════
# Resource keys
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ResourceKey:
    """A path a tool call touches; ``""`` stands for the whole project."""

    path: str
    write: bool = False

    @classmethod
    def for_path(cls, path: str, write: bool = False) -> "ResourceKey":
        """Key on the canonical form of *path* (`.` and `..` collapsed)."""
        return cls(join_segments("", normalize_path(path)), write=write)

    def overlaps(self, other: "ResourceKey") -> bool:
        a, b = self.path, other.path
        if not a or not b or a == b:
            return True
        return a.startswith(b + "/") or b.startswith(a + "/")

    def conflicts_with(self, other: "ResourceKey") -> bool:
        return (self.write or other.write) and self.overlaps(other)


PROJECT_READ = ResourceKey("", write=False)


# ═══════════════════════════════════════════════════════════════
# Tool input schemas (Pydantic v2)
# ═══════════════════════════════════════════════════════════════

class ToolInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmptyInput(ToolInput):
    pass


class FilePathInput(ToolInput):
    path: str = Field(..., description="File path relative to project root (e.g., 'src/index.ts')")


class WriteFileInput(ToolInput):
    path: str = Field(..., description="File path relative to project root (e.g., 'src/utils/helpers.ts')")
    content: str = Field(..., description="The content to write to the file")


class DeletePathInput(ToolInput):
    path: str = Field(..., description="File or folder path relative to project root")


class ListFilesInput(ToolInput):
    path: Optional[str] = Field(
        default=None,
        description="Directory path relative to project root. Leave empty for root directory.",
    )


class FindSymbolInput(ToolInput):
    query: str = Field(..., description="Symbol name or partial name to search for")
    kind: Optional[Literal["function", "class", "variable", "interface", "type", "all"]] = Field(
        default=None, description="Filter by symbol kind (default: all)"
    )


class PositionInput(ToolInput):
    path: str = Field(..., description="File path relative to project root (e.g., 'src/index.ts')")
    line: int = Field(..., description="Line number (1-based)")
    column: int = Field(..., description="Column number (1-based)")


class DiagnosticsInput(ToolInput):
    path: str = Field(..., description="File path relative to project root (e.g., 'src/index.ts')")
    severity: Optional[Literal["error", "warning", "all"]] = Field(
        default=None, description="Filter by severity (default: all)"
    )


class SearchFilesInput(ToolInput):
    pattern: str = Field(..., description="Regex pattern to search for (e.g., 'TODO', 'import.*react')")
    file_pattern: Optional[str] = Field(
        default=None, description="Optional glob pattern to filter files (e.g., '*.ts', 'src/**/*.tsx')"
    )
    case_sensitive: Optional[bool] = Field(
        default=False, description="Whether the search is case-sensitive (default: false)"
    )


class SearchCodebaseInput(ToolInput):
    pattern_type: Literal["import", "function", "class", "variable", "export", "call", "all"] = Field(
        ..., description="Type of code pattern to search for"
    )
    search_term: Optional[str] = Field(
        default=None, description="Optional name or partial name to filter results (e.g., 'useState')"
    )
    file_pattern: Optional[str] = Field(
        default=None, description="Optional glob pattern to filter files (e.g., '*.ts', 'src/**/*.tsx')"
    )


class FilePatternInput(ToolInput):
    pattern: str = Field(..., description="Glob pattern to match file paths (e.g., '*.ts', 'src/**/*.tsx')")


class RelevantFilesInput(ToolInput):
    query: str = Field(..., description="Search query or context description")
    current_file: Optional[str] = Field(
        default=None, description="Current file path for context (improves relevance)"
    )
    max_files: Optional[int] = Field(default=None, description="Maximum files to return (default: 5)")


# ═══════════════════════════════════════════════════════════════
# Base tools
# ═══════════════════════════════════════════════════════════════

class Tool:
    """A named, schema-described operation the model may call."""

    name: str = ""
    description: str = ""
    args_schema: Type[BaseModel] = EmptyInput

    def json_schema(self) -> Dict[str, Any]:
        return self.args_schema.model_json_schema(by_alias=True)

    def parse_arguments(self, arguments: Dict[str, Any]) -> BaseModel:
        """Validate raw model arguments. Raises pydantic.ValidationError."""
        return self.args_schema.model_validate(arguments or {})

    def resource_key(self, args: BaseModel) -> Optional[ResourceKey]:
        """Resource touched by a call; a bare ``path`` argument counts as a write."""
        path = getattr(args, "path", None)
        if isinstance(path, str):
            return ResourceKey.for_path(path, write=True)
        return None

    async def _run(self, **kwargs: Any) -> Any:
        raise NotImplementedError

    async def execute(self, args: BaseModel) -> Any:
        result = self._run(**args.model_dump())
        while inspect.isawaitable(result):
            result = await result
        if hasattr(result, "__aiter__"):
            chunks = [str(chunk) async for chunk in result]
            result = "".join(chunks)
        return result


class FunctionTool(Tool):
    """Wrap a plain (sync or async) callable as a tool."""

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[..., Union[Any, Awaitable[Any]]],
        args_schema: Type[BaseModel] = EmptyInput,
        resource_key: Optional[Callable[[BaseModel], Optional[ResourceKey]]] = None,
    ) -> None:
        self.name = name
        self.description = description
        self.args_schema = args_schema
        self._func = func
        self._resource_key = resource_key

    def resource_key(self, args: BaseModel) -> Optional[ResourceKey]:
        if self._resource_key is not None:
            return self._resource_key(args)
        return super().resource_key(args)

    async def _run(self, **kwargs: Any) -> Any:
        return self._func(**kwargs)


class ProjectTool(Tool):
    """Base class that holds the project store and id."""

    def __init__(self, store: ProjectStore, project_id: str) -> None:
        self.store = store
        self.project_id = project_id

    async def snapshot(self) -> List[ProjectFile]:
        return await fetch_snapshot(self.store, self.project_id)


class SnapshotTool(ProjectTool):
    """Analysis tools read the whole project snapshot."""

    def resource_key(self, args: BaseModel) -> Optional[ResourceKey]:
        return PROJECT_READ

    async def analyze(self, func: Callable[..., str], *args: Any) -> str:
        """Run *func* over a fresh snapshot in the default executor."""
        files = await self.snapshot()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, files, *args)


# ═══════════════════════════════════════════════════════════════
# FILE OPERATIONS TOOLS
# ═══════════════════════════════════════════════════════════════

class ReadFileTool(ProjectTool):
    name = "readFile"
    description = "Read the contents of a file in the project"
    args_schema = FilePathInput

    def resource_key(self, args: BaseModel) -> Optional[ResourceKey]:
        return ResourceKey.for_path(args.path)

    async def _run(self, path: str) -> str:
        try:
            entry = await self.store.read_file(self.project_id, path)
            if entry is None:
                return f"File not found: {path}"
            return entry.content or ""
        except Exception as e:
            return f"Error reading file: {e}"


class WriteFileTool(ProjectTool):
    name = "writeFile"
    description = (
        "Create a new file or update an existing file. "
        "Parent folders are created automatically if they don't exist."
    )
    args_schema = WriteFileInput

    async def _run(self, path: str, content: str) -> str:
        try:
            await self.store.write_file(self.project_id, path, content)
        except Exception as e:
            return f"Error writing file: {e}"
        preview = f"{content[:PREVIEW_LIMIT]}…" if len(content) > PREVIEW_LIMIT else content
        try:
            await self.store.append_generation_event(self.project_id, f"Wrote {path}", file_path=path, preview=preview)
        except Exception as e:
            logger.debug("Generation event for %s not recorded: %s", path, e)
        return f"Successfully wrote to {path}"


class DeleteFileTool(ProjectTool):
    name = "deleteFile"
    description = "Delete a file or folder. If deleting a folder, all contents are deleted recursively."
    args_schema = DeletePathInput

    async def _run(self, path: str) -> str:
        try:
            await self.store.delete_file(self.project_id, path)
        except Exception as e:
            return f"Error deleting file: {e}"
        try:
            await self.store.append_generation_event(self.project_id, f"Deleted {path}", file_path=path)
        except Exception as e:
            logger.debug("Generation event for %s not recorded: %s", path, e)
        return f"Successfully deleted {path}"


class ListFilesTool(ProjectTool):
    name = "listFiles"
    description = "List all files and folders in a directory. Returns the direct contents of the directory."
    args_schema = ListFilesInput

    def resource_key(self, args: BaseModel) -> Optional[ResourceKey]:
        return ResourceKey.for_path(args.path or "")

    async def _run(self, path: Optional[str] = None) -> str:
        try:
            entries = await self.store.list_files(self.project_id, path or "")
            if not entries:
                return f"Directory is empty: {path}" if path else "Project has no files yet."
            return "\n".join(
                f"{'[file]' if e.is_file else '[folder]'} {e.path.rsplit('/', 1)[-1]}" for e in entries
            )
        except Exception as e:
            return f"Error listing files: {e}"


class GetProjectStructureTool(ProjectTool):
    name = "getProjectStructure"
    description = "Get the complete file structure of the project. Useful for understanding the project layout."
    args_schema = EmptyInput

    def resource_key(self, args: BaseModel) -> Optional[ResourceKey]:
        return PROJECT_READ

    async def _run(self) -> str:
        try:
            structure = await self.store.get_project_structure(self.project_id)
            return structure or "Project has no files yet."
        except Exception as e:
            return f"Error getting project structure: {e}"


# ═══════════════════════════════════════════════════════════════
# CODE INTELLIGENCE TOOLS
# ═══════════════════════════════════════════════════════════════

class FindSymbolTool(SnapshotTool):
    name = "findSymbol"
    description = (
        "Search for symbols (functions, classes, variables, interfaces, types) in the codebase by name. "
        "Returns matching symbols with their location and kind."
    )
    args_schema = FindSymbolInput

    async def _run(self, query: str, kind: Optional[str] = None) -> str:
        return await self.analyze(lsp.find_symbol, query, kind)


class GetReferencesTool(SnapshotTool):
    name = "getReferences"
    description = (
        "Find all references to a symbol at a specific location in a file. "
        "Returns all places where the symbol is used."
    )
    args_schema = PositionInput

    async def _run(self, path: str, line: int, column: int) -> str:
        return await self.analyze(lsp.get_references, path, line, column)


class GetDiagnosticsTool(SnapshotTool):
    name = "getDiagnostics"
    description = (
        "Get TypeScript errors, warnings, and suggestions for a specific file. "
        "Useful for checking code quality and finding issues."
    )
    args_schema = DiagnosticsInput

    async def _run(self, path: str, severity: Optional[str] = None) -> str:
        return await self.analyze(lsp.get_diagnostics, path, severity)


class GoToDefinitionTool(SnapshotTool):
    name = "goToDefinition"
    description = (
        "Find the definition location of a symbol at a specific position in a file. "
        "Useful for navigating to where a function, class, or variable is defined."
    )
    args_schema = PositionInput

    async def _run(self, path: str, line: int, column: int) -> str:
        return await self.analyze(lsp.go_to_definition, path, line, column)


class SearchFilesTool(SnapshotTool):
    name = "searchFiles"
    description = (
        "Search file contents using regex patterns. "
        "Returns matching lines with file path, line number, and context."
    )
    args_schema = SearchFilesInput

    async def _run(self, pattern: str, file_pattern: Optional[str] = None,
                   case_sensitive: Optional[bool] = False) -> str:
        return await self.analyze(code_search.search_files, pattern, file_pattern, bool(case_sensitive))


class SearchCodebaseTool(SnapshotTool):
    name = "searchCodebase"
    description = (
        "Code search for imports, function declarations, class definitions, "
        "variable declarations, exports, and function calls."
    )
    args_schema = SearchCodebaseInput

    async def _run(self, pattern_type: str, search_term: Optional[str] = None,
                   file_pattern: Optional[str] = None) -> str:
        return await self.analyze(code_search.search_codebase, pattern_type, search_term, file_pattern)


class FindFilesByPatternTool(SnapshotTool):
    name = "findFilesByPattern"
    description = (
        "Find files by name using glob patterns. Supports wildcards (*, **) and "
        "single character match (?)."
    )
    args_schema = FilePatternInput

    async def _run(self, pattern: str) -> str:
        return await self.analyze(code_search.find_files_by_pattern, pattern)


class GetRelevantFilesTool(SnapshotTool):
    name = "getRelevantFiles"
    description = (
        "Find files most relevant to a query or current context. Uses import analysis, "
        "symbol matching, edit history, and file proximity to score relevance."
    )
    args_schema = RelevantFilesInput

    async def _run(self, query: str, current_file: Optional[str] = None,
                   max_files: Optional[int] = None) -> str:
        return await self.analyze(relevance.get_relevant_files, query, current_file, max_files)


# ═══════════════════════════════════════════════════════════════
# Factories
# ═══════════════════════════════════════════════════════════════

def create_file_tools(store: ProjectStore, project_id: str) -> List[Tool]:
    return [
        ReadFileTool(store, project_id),
        WriteFileTool(store, project_id),
        DeleteFileTool(store, project_id),
        ListFilesTool(store, project_id),
        GetProjectStructureTool(store, project_id),
    ]


def create_lsp_tools(store: ProjectStore, project_id: str) -> List[Tool]:
    return [
        FindSymbolTool(store, project_id),
        GetReferencesTool(store, project_id),
        GetDiagnosticsTool(store, project_id),
        GoToDefinitionTool(store, project_id),
    ]


def create_search_tools(store: ProjectStore, project_id: str) -> List[Tool]:
    return [
        SearchFilesTool(store, project_id),
        SearchCodebaseTool(store, project_id),
        FindFilesByPatternTool(store, project_id),
    ]


def create_context_tools(store: ProjectStore, project_id: str) -> List[Tool]:
    return [GetRelevantFilesTool(store, project_id)]


def create_default_tools(store: ProjectStore, project_id: str) -> List[Tool]:
    """The full tool set: file operations, code intelligence, search and context."""
    return (
        create_file_tools(store, project_id)
        + create_lsp_tools(store, project_id)
        + create_search_tools(store, project_id)
        + create_context_tools(store, project_id)
    )
