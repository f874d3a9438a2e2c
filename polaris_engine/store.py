"""Project file store and message sink contracts, with in-memory and local-disk backends."""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from .models import ProjectFile
from .resolution import normalize_path, parent_dir

logger = logging.getLogger(__name__)

T = TypeVar("T")

SKIP_DIRS = {
    "node_modules", ".git", ".next", "dist", "build", "coverage",
    ".turbo", ".cache", ".venv", "venv", "__pycache__", ".polaris",
}


# ===================================================================
# Contracts
# ===================================================================

class ProjectStore(ABC):
    """Remote, versioned file store addressed by project id and path."""

    @abstractmethod
    async def get_all_project_files(self, project_id: str) -> List[ProjectFile]:
        """Return every file and folder of the project (one snapshot)."""
        ...

    @abstractmethod
    async def read_file(self, project_id: str, path: str) -> Optional[ProjectFile]:
        ...

    @abstractmethod
    async def write_file(self, project_id: str, path: str, content: str) -> None:
        """Create or replace a file; missing parent folders are created."""
        ...

    @abstractmethod
    async def delete_file(self, project_id: str, path: str) -> None:
        """Delete a file, or a folder together with everything beneath it."""
        ...

    @abstractmethod
    async def list_files(self, project_id: str, path: str = "") -> List[ProjectFile]:
        """Return the direct children of the folder at *path*."""
        ...

    async def get_project_structure(self, project_id: str) -> str:
        files = await self.get_all_project_files(project_id)
        return "\n".join(sorted(f.path for f in files if f.is_file))

    async def append_generation_event(
        self,
        project_id: str,
        message: str,
        file_path: Optional[str] = None,
        preview: Optional[str] = None,
    ) -> None:
        """Record a user-visible generation event. No-op by default."""
        return None


class MessageStore(ABC):
    """Append-only sinks for assistant output of one conversation message."""

    @abstractmethod
    async def append_tool_call(self, message_id: str, tool_call: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def append_tool_result(self, message_id: str, tool_call_id: str, result: Any) -> None:
        ...

    @abstractmethod
    async def stream_message_content(self, message_id: str, content: str, is_complete: bool) -> None:
        ...

    @abstractmethod
    async def update_message_content(self, message_id: str, content: str, status: str) -> None:
        ...


async def fetch_snapshot(store: ProjectStore, project_id: str) -> List[ProjectFile]:
    """Fetch one whole-project snapshot with unique, normalized paths.

    When the store reports the same path twice the later entry wins.
    """
    files = await store.get_all_project_files(project_id)
    snapshot: Dict[str, ProjectFile] = {}
    for f in files:
        path = normalize_path(f.path)
        if path in snapshot:
            logger.warning("Duplicate path %s in snapshot of project %s", path, project_id)
        if path != f.path:
            f = ProjectFile(path=path, kind=f.kind, content=f.content, last_modified=f.last_modified)
        snapshot[path] = f
    return list(snapshot.values())


def _ancestors(path: str) -> List[str]:
    parts = path.split("/")[:-1]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def _is_within(path: str, folder: str) -> bool:
    return path == folder or path.startswith(folder + "/")


# ===================================================================
# In-memory backend
# ===================================================================

class InMemoryProjectStore(ProjectStore, MessageStore):
    """Dictionary-backed store used by tests and embedded callers."""

    def __init__(self, projects: Optional[Dict[str, Iterable[ProjectFile]]] = None) -> None:
        self._projects: Dict[str, Dict[str, ProjectFile]] = {}
        self.generation_events: List[Dict[str, Any]] = []
        self.messages: Dict[str, Dict[str, Any]] = {}
        for project_id, files in (projects or {}).items():
            for f in files:
                self._files(project_id)[normalize_path(f.path)] = f

    def _files(self, project_id: str) -> Dict[str, ProjectFile]:
        return self._projects.setdefault(project_id, {})

    def _message(self, message_id: str) -> Dict[str, Any]:
        return self.messages.setdefault(
            message_id,
            {"content": "", "status": "processing", "tool_calls": [], "tool_results": [], "updates": 0},
        )

    def add_file(
        self,
        project_id: str,
        path: str,
        content: Optional[str] = "",
        last_modified: Optional[float] = None,
    ) -> ProjectFile:
        path = normalize_path(path)
        files = self._files(project_id)
        for folder in _ancestors(path):
            files.setdefault(folder, ProjectFile(path=folder, kind="folder"))
        entry = ProjectFile(path=path, kind="file", content=content, last_modified=last_modified)
        files[path] = entry
        return entry

    async def get_all_project_files(self, project_id: str) -> List[ProjectFile]:
        return list(self._files(project_id).values())

    async def read_file(self, project_id: str, path: str) -> Optional[ProjectFile]:
        entry = self._files(project_id).get(normalize_path(path))
        return entry if entry is not None and entry.is_file else None

    async def write_file(self, project_id: str, path: str, content: str) -> None:
        path = normalize_path(path)
        if not path:
            raise ValueError("Cannot write to the project root")
        existing = self._files(project_id).get(path)
        if existing is not None and not existing.is_file:
            raise IsADirectoryError(f"{path} is a folder")
        self.add_file(project_id, path, content, last_modified=time.time())

    async def delete_file(self, project_id: str, path: str) -> None:
        path = normalize_path(path)
        files = self._files(project_id)
        if path not in files:
            raise FileNotFoundError(f"File not found: {path}")
        for key in [k for k in files if _is_within(k, path)]:
            del files[key]

    async def list_files(self, project_id: str, path: str = "") -> List[ProjectFile]:
        folder = normalize_path(path)
        children = [f for f in self._files(project_id).values() if parent_dir(f.path) == folder]
        return sorted(children, key=lambda f: (f.is_file, f.path))

    async def append_generation_event(
        self,
        project_id: str,
        message: str,
        file_path: Optional[str] = None,
        preview: Optional[str] = None,
    ) -> None:
        self.generation_events.append(
            {"project_id": project_id, "message": message, "file_path": file_path, "preview": preview}
        )

    async def append_tool_call(self, message_id: str, tool_call: Dict[str, Any]) -> None:
        self._message(message_id)["tool_calls"].append(tool_call)

    async def append_tool_result(self, message_id: str, tool_call_id: str, result: Any) -> None:
        self._message(message_id)["tool_results"].append({"tool_call_id": tool_call_id, "result": result})

    async def stream_message_content(self, message_id: str, content: str, is_complete: bool) -> None:
        message = self._message(message_id)
        message["content"] = content
        message["updates"] += 1
        if is_complete:
            message["status"] = "completed"

    async def update_message_content(self, message_id: str, content: str, status: str) -> None:
        message = self._message(message_id)
        message["content"] = content
        message["status"] = status


# ===================================================================
# Local directory backend
# ===================================================================

class LocalDirectoryStore(ProjectStore):
    """Serve a directory on disk as a single project.

    The project id is ignored; every path is resolved below *root* and
    paths escaping it are rejected. Disk access runs in the default
    executor so the event loop keeps serving other calls.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    async def _offload(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _resolve(self, path: str) -> Path:
        target = (self.root / normalize_path(path)).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path escapes project root: {path}")
        return target

    def _entry(self, file_path: Path) -> ProjectFile:
        rel_path = file_path.relative_to(self.root).as_posix()
        if file_path.is_dir():
            return ProjectFile(path=rel_path, kind="folder")
        try:
            content: Optional[str] = file_path.read_bytes().decode("utf-8")
        except UnicodeDecodeError:
            content = None
        return ProjectFile(
            path=rel_path,
            kind="file",
            content=content,
            last_modified=file_path.stat().st_mtime,
        )

    def _walk(self, current: Path, entries: List[ProjectFile]) -> None:
        try:
            children = sorted(current.iterdir(), key=lambda p: p.name)
        except PermissionError as exc:
            logger.warning("Cannot list %s: %s", current, exc)
            return
        for child in children:
            if child.name in SKIP_DIRS:
                continue
            try:
                entries.append(self._entry(child))
            except OSError as exc:
                logger.warning("Failed to read %s: %s", child, exc)
                continue
            if child.is_dir() and not child.is_symlink():
                self._walk(child, entries)

    def _snapshot(self) -> List[ProjectFile]:
        entries: List[ProjectFile] = []
        self._walk(self.root, entries)
        return entries

    def _read(self, path: str) -> Optional[ProjectFile]:
        target = self._resolve(path)
        if not target.is_file():
            return None
        return self._entry(target)

    def _write(self, path: str, content: str) -> None:
        target = self._resolve(path)
        if target == self.root:
            raise ValueError("Cannot write to the project root")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def _delete(self, path: str) -> None:
        target = self._resolve(path)
        if target == self.root:
            raise ValueError("Cannot delete the project root")
        if not target.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()

    def _list(self, path: str) -> List[ProjectFile]:
        folder = self._resolve(path)
        if not folder.is_dir():
            return []
        children = [
            self._entry(child)
            for child in folder.iterdir()
            if child.name not in SKIP_DIRS
        ]
        return sorted(children, key=lambda f: (f.is_file, f.path))

    async def get_all_project_files(self, project_id: str) -> List[ProjectFile]:
        return await self._offload(self._snapshot)

    async def read_file(self, project_id: str, path: str) -> Optional[ProjectFile]:
        return await self._offload(self._read, path)

    async def write_file(self, project_id: str, path: str, content: str) -> None:
        await self._offload(self._write, path, content)

    async def delete_file(self, project_id: str, path: str) -> None:
        await self._offload(self._delete, path)

    async def list_files(self, project_id: str, path: str = "") -> List[ProjectFile]:
        return await self._offload(self._list, path)
