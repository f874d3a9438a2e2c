"""Pytest configuration and fixtures for Polaris Engine tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Generator, List

import pytest

from polaris_engine.models import ProjectFile
from polaris_engine.store import InMemoryProjectStore

PROJECT_ID = "proj-1"


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch):
    """Point the config directory at a temp dir and clear provider keys.

    Tests must never read the developer's ~/.polaris/config.toml or make
    network calls with real credentials.
    """
    base_dir = tmp_path / "polaris_home"
    monkeypatch.setattr("polaris_engine.config.BASE_DIR", base_dir)
    monkeypatch.setattr("polaris_engine.config.CONFIG_FILE", base_dir / "config.toml")
    monkeypatch.delenv("CEREBRAS_API_KEY", raising=False)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def scenario_files() -> List[ProjectFile]:
    """Two-file project: b.ts imports and calls foo from a.ts."""
    return [
        ProjectFile(path="src", kind="folder"),
        ProjectFile(path="src/a.ts", content="export function foo(){}"),
        ProjectFile(path="src/b.ts", content="import {foo} from './a'; foo();"),
    ]


@pytest.fixture
def sample_ts_project() -> List[ProjectFile]:
    """A small TypeScript project with classes, interfaces and cross-file imports."""
    return [
        ProjectFile(path="src/models/user.ts", content=(
            "export interface User {\n"
            "  id: string;\n"
            "  name: string;\n"
            "}\n"
            "\n"
            "export class UserService {\n"
            "  private users: User[] = [];\n"
            "\n"
            "  addUser(user: User): void {\n"
            "    this.users.push(user);\n"
            "  }\n"
            "\n"
            "  findUser(id: string): User | undefined {\n"
            "    return this.users.find((u) => u.id === id);\n"
            "  }\n"
            "}\n"
        )),
        ProjectFile(path="src/index.ts", content=(
            "import { UserService } from './models/user';\n"
            "\n"
            "const service = new UserService();\n"
            "service.addUser({ id: '1', name: 'Ada' });\n"
            "export default service;\n"
        )),
        ProjectFile(path="src/utils/format.ts", content=(
            "export type Formatter = (value: string) => string;\n"
            "\n"
            "export const upper: Formatter = (value) => value.toUpperCase();\n"
        )),
        ProjectFile(path="README.md", content="# Sample\n\nTODO: write docs\n"),
    ]


@pytest.fixture
def project_store(scenario_files: List[ProjectFile]) -> InMemoryProjectStore:
    """In-memory store seeded with the two-file scenario under PROJECT_ID."""
    return InMemoryProjectStore({PROJECT_ID: scenario_files})
