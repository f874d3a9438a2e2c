"""Process one user message end to end: run the tool loop and persist its output."""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

from . import config
from .config_manager import load_agent_config
from .llm import create_provider
from .models import ChatMessage, GenerateResult, StepResult
from .orchestrator import ToolOrchestrator
from .retry import RetryPolicy, with_retry
from .store import MessageStore, ProjectStore
from .tools import create_default_tools

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are Polaris, an AI coding assistant integrated into a cloud IDE. You help users write, edit, and understand code.

You have access to the following tools to work with the user's project files:

File Management:
- readFile: Read the contents of a file
- writeFile: Create or update a file (parent folders are created automatically)
- deleteFile: Delete a file or folder
- listFiles: List files in a directory
- getProjectStructure: Get the complete file list of the project

Code Analysis:
- findSymbol: Search for functions, classes, variables, interfaces, types by name
- getReferences: Find all references to a symbol at a specific location
- getDiagnostics: Get TypeScript errors, warnings, and suggestions for a file
- goToDefinition: Find where a symbol is defined

Code Search:
- searchFiles: Search file contents using regex patterns
- searchCodebase: Search for imports, functions, classes, variables, exports, calls
- findFilesByPattern: Find files by name using glob patterns

Context & Relevance:
- getRelevantFiles: Find files most relevant to a query using import analysis, symbol matching, edit history, and file proximity

When the user asks you to create, modify, or delete files, use the file management tools.
When you need to understand code structure or find specific symbols, use the code analysis and search tools.
When you need to find related files for context, use the context tools.
When writing code, ensure it is well-structured, follows best practices, and includes proper error handling.

Be concise in your responses. Focus on helping the user accomplish their coding tasks."""

COMPLETED_TEXT = "I've completed the task."
FAILURE_TEXT = (
    "My apologies, I encountered an error while processing your request. "
    "Let me know if you need anything else!"
)


def build_orchestrator(store: ProjectStore, project_id: str) -> ToolOrchestrator:
    """Orchestrator over the default tool set with the configured providers."""
    agent = load_agent_config()
    return ToolOrchestrator(
        primary=create_provider("primary"),
        fallback=create_provider("fallback"),
        tools=create_default_tools(store, project_id),
        system=SYSTEM_PROMPT,
        max_steps=agent["max_steps"],
        max_tokens=agent["max_tokens"],
        temperature=agent["temperature"],
    )


async def process_message(
    store: ProjectStore,
    message_store: MessageStore,
    project_id: str,
    message_id: str,
    messages: Sequence[ChatMessage],
    orchestrator: Optional[ToolOrchestrator] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> GenerateResult:
    """Stream an assistant reply into *message_id*.

    Partial content is pushed at most every ``STREAM_THROTTLE_MS``; tool
    calls and results are persisted after each step. When every attempt
    fails the message is marked ``failed`` with a generic apology and the
    error is re-raised.
    """
    orchestrator = orchestrator or build_orchestrator(store, project_id)
    policy = retry_policy or RetryPolicy(max_attempts=1)
    throttle = config.STREAM_THROTTLE_MS / 1000.0

    async def attempt() -> GenerateResult:
        started = time.monotonic()
        last_update: Optional[float] = None
        first_token: Optional[float] = None

        async def on_text_chunk(chunk: str, full_text: str) -> None:
            nonlocal last_update, first_token
            now = time.monotonic()
            if first_token is None:
                first_token = now - started
                logger.info("Time to first token: %.0fms", first_token * 1000)
            if last_update is None or now - last_update >= throttle:
                last_update = now
                await message_store.stream_message_content(message_id, full_text, False)

        async def on_step_finish(step: StepResult) -> None:
            for call in step.tool_calls:
                await message_store.append_tool_call(
                    message_id, {"id": call.id, "name": call.name, "args": call.arguments}
                )
            for result in step.tool_results:
                await message_store.append_tool_result(message_id, result.tool_call_id, result.content)

        result = await orchestrator.stream(messages, on_text_chunk=on_text_chunk, on_step_finish=on_step_finish)
        await message_store.stream_message_content(message_id, result.text or COMPLETED_TEXT, True)
        logger.info("Message %s answered by %s/%s in %.0fms%s", message_id, result.provider, result.model,
                    (time.monotonic() - started) * 1000, " (fallback)" if result.used_fallback else "")
        return result

    try:
        return await with_retry(attempt, policy)
    except Exception:
        logger.exception("Error processing message %s", message_id)
        await message_store.update_message_content(message_id, FAILURE_TEXT, "failed")
        raise
