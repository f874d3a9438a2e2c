"""Core data models shared by the analysis services and the orchestration loop."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class ProjectFile:
    path: str
    kind: str = "file"
    content: Optional[str] = None
    last_modified: Optional[float] = None

    @property
    def is_file(self) -> bool:
        return self.kind == "file"


@dataclass
class SymbolResult:
    name: str
    kind: str
    path: str
    line: int
    column: int


@dataclass
class Diagnostic:
    severity: str
    line: int
    column: int
    message: str
    code: int


@dataclass
class ReferenceEntry:
    path: str
    line: int
    column: int
    access: str
    context: str


@dataclass
class DefinitionEntry:
    path: str
    line: int
    column: int
    kind: str
    name: str
    context: str


@dataclass
class RelevanceScore:
    path: str
    score: float = 0.0
    reasons: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------

@dataclass
class NativeFunctionCall:
    """A tool call as emitted by an OpenAI-style function-calling backend.

    Arguments stay as the raw JSON text the model produced; they are only
    decoded when the call is executed.
    """

    id: str
    name: str
    raw_arguments: str = "{}"
    kind: str = field(default="native-function-call", init=False)

    @property
    def arguments(self) -> Dict[str, Any]:
        try:
            parsed = json.loads(self.raw_arguments or "{}")
        except (TypeError, ValueError):
            return {}
        return parsed if isinstance(parsed, dict) else {}


@dataclass
class NormalizedToolCall:
    """A tool call delivered with already-decoded input (tool_use blocks)."""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="normalized-tool-call", init=False)

    @property
    def arguments(self) -> Dict[str, Any]:
        return dict(self.input)


ToolCall = Union[NativeFunctionCall, NormalizedToolCall]


@dataclass
class ToolResult:
    tool_call_id: str
    tool_name: str
    result: Any = None
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def content(self) -> str:
        """Text fed back to the model for this call."""
        if self.error is not None:
            return f"Error: {self.error}"
        if isinstance(self.result, str):
            return self.result
        try:
            return json.dumps(self.result)
        except (TypeError, ValueError):
            return "[unserializable tool result]"


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

@dataclass
class ChatMessage:
    role: str
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "ChatMessage":
        return cls(role="assistant", content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, result: ToolResult) -> "ChatMessage":
        return cls(
            role="tool",
            content=result.content,
            tool_call_id=result.tool_call_id,
            name=result.tool_name,
        )


@dataclass
class AssistantTurn:
    """One assistant reply as returned by a provider."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None


@dataclass
class StepResult:
    step: int
    text: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)


@dataclass
class GenerateResult:
    text: str
    provider: str
    model: str
    used_fallback: bool = False
    steps: List[StepResult] = field(default_factory=list)
    history: List[ChatMessage] = field(default_factory=list)
