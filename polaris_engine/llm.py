"""Tool-calling chat providers: OpenAI-compatible and Anthropic messages.

Both providers translate the canonical :class:`ChatMessage` / tool-call
representation to and from their wire format at this boundary, so the
orchestrator never sees provider-specific shapes. HTTP goes through an
``httpx.AsyncClient`` that callers (and tests) may inject.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import httpx

from . import config
from .config_manager import load_provider_config
from .models import AssistantTurn, ChatMessage, NativeFunctionCall, NormalizedToolCall, ToolCall
from .tools import Tool

logger = logging.getLogger(__name__)

ToolChoice = Union[str, Dict[str, str]]
TextCallback = Callable[[str], Awaitable[None]]

ANTHROPIC_VERSION = "2023-06-01"


class ProviderError(Exception):
    """A provider call failed (transport, HTTP status, or malformed reply)."""

    def __init__(self, message: str, status_code: Optional[int] = None, provider: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class RateLimitError(ProviderError):
    """The provider answered HTTP 429."""


class ChatProvider(ABC):
    """Base class for tool-calling chat providers."""

    protocol: str = ""

    def __init__(
        self,
        model: str,
        api_key: str,
        endpoint: str,
        provider_name: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.provider_name = provider_name or self.protocol
        self._http = client
        self.timeout = timeout

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        ...

    @abstractmethod
    def _payload(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[Tool],
        tool_choice: ToolChoice,
        max_tokens: int,
        temperature: float,
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _parse_response(self, data: Dict[str, Any]) -> AssistantTurn:
        ...

    @abstractmethod
    async def _consume_stream(self, lines: AsyncIterator[str], on_text: TextCallback) -> AssistantTurn:
        ...

    def _check_key(self) -> None:
        if not self.api_key:
            raise ProviderError(f"No API key configured for {self.provider_name}", provider=self.provider_name)

    def _raise_for_status(self, status_code: int, body: str) -> None:
        if status_code == 429:
            raise RateLimitError(
                f"{self.provider_name} rate limit exceeded", status_code=429, provider=self.provider_name
            )
        if status_code >= 400:
            raise ProviderError(
                f"{self.provider_name} returned HTTP {status_code}: {body[:200]}",
                status_code=status_code,
                provider=self.provider_name,
            )

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[Tool] = (),
        *,
        tool_choice: ToolChoice = "auto",
        max_tokens: int = config.DEFAULT_MAX_TOKENS,
        temperature: float = config.DEFAULT_TEMPERATURE,
    ) -> AssistantTurn:
        """Request one assistant turn."""
        self._check_key()
        payload = self._payload(messages, tools, tool_choice, max_tokens, temperature)
        try:
            async with self._client() as client:
                response = await client.post(self.endpoint, headers=self._headers(), json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider_name} request failed: {exc}", provider=self.provider_name) from exc
        self._raise_for_status(response.status_code, response.text)
        try:
            return self._parse_response(response.json())
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(f"Malformed {self.provider_name} response: {exc}", provider=self.provider_name) from exc

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[Tool],
        on_text: TextCallback,
        *,
        tool_choice: ToolChoice = "auto",
        max_tokens: int = config.DEFAULT_MAX_TOKENS,
        temperature: float = config.DEFAULT_TEMPERATURE,
    ) -> AssistantTurn:
        """Request one assistant turn over SSE, awaiting *on_text* for every text chunk."""
        self._check_key()
        payload = self._payload(messages, tools, tool_choice, max_tokens, temperature)
        payload["stream"] = True
        try:
            async with self._client() as client:
                async with client.stream("POST", self.endpoint, headers=self._headers(), json=payload) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        self._raise_for_status(response.status_code, body)
                    return await self._consume_stream(response.aiter_lines(), on_text)
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.provider_name} stream failed: {exc}", provider=self.provider_name) from exc


async def _sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the payload of every ``data:`` line of an SSE stream."""
    async for line in lines:
        if line.startswith("data:"):
            yield line[5:].strip()


# ═══════════════════════════════════════════════════════════════
# OpenAI-compatible chat completions (native function calls)
# ═══════════════════════════════════════════════════════════════

class OpenAICompatibleProvider(ChatProvider):
    """Chat-completions API with raw ``tool_calls`` (Cerebras, OpenAI, Groq...)."""

    protocol = "openai"

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def _wire_call(call: ToolCall) -> Dict[str, Any]:
        raw = call.raw_arguments if isinstance(call, NativeFunctionCall) else json.dumps(call.input)
        return {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": raw}}

    def _payload(self, messages, tools, tool_choice, max_tokens, temperature) -> Dict[str, Any]:
        wire: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.role == "assistant":
                entry: Dict[str, Any] = {"role": "assistant", "content": msg.content or None}
                if msg.tool_calls:
                    entry["tool_calls"] = [self._wire_call(c) for c in msg.tool_calls]
                wire.append(entry)
            elif msg.role == "tool":
                wire.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
            else:
                wire.append({"role": msg.role, "content": msg.content})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": wire,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.json_schema()},
                }
                for t in tools
            ]
            if isinstance(tool_choice, dict):
                payload["tool_choice"] = {"type": "function", "function": {"name": tool_choice["tool"]}}
            else:
                payload["tool_choice"] = tool_choice
        return payload

    def _parse_response(self, data: Dict[str, Any]) -> AssistantTurn:
        choice = data["choices"][0]
        message = choice.get("message") or {}
        calls: List[ToolCall] = [
            NativeFunctionCall(
                id=c["id"],
                name=c["function"]["name"],
                raw_arguments=c["function"].get("arguments") or "{}",
            )
            for c in message.get("tool_calls") or []
        ]
        return AssistantTurn(text=message.get("content") or "", tool_calls=calls,
                             finish_reason=choice.get("finish_reason"))

    async def _consume_stream(self, lines: AsyncIterator[str], on_text: TextCallback) -> AssistantTurn:
        text_parts: List[str] = []
        pending: Dict[int, Dict[str, str]] = {}
        finish_reason: Optional[str] = None
        async for data in _sse_data(lines):
            if data == "[DONE]":
                break
            try:
                event = json.loads(data)
            except ValueError:
                logger.debug("Skipping malformed stream chunk: %s", data[:80])
                continue
            for choice in event.get("choices") or []:
                delta = choice.get("delta") or {}
                chunk = delta.get("content")
                if chunk:
                    text_parts.append(chunk)
                    await on_text(chunk)
                for part in delta.get("tool_calls") or []:
                    slot = pending.setdefault(part.get("index", 0), {"id": "", "name": "", "arguments": ""})
                    if part.get("id"):
                        slot["id"] = part["id"]
                    function = part.get("function") or {}
                    if function.get("name"):
                        slot["name"] += function["name"]
                    if function.get("arguments"):
                        slot["arguments"] += function["arguments"]
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]
        calls: List[ToolCall] = [
            NativeFunctionCall(id=slot["id"], name=slot["name"], raw_arguments=slot["arguments"] or "{}")
            for _, slot in sorted(pending.items())
        ]
        return AssistantTurn(text="".join(text_parts), tool_calls=calls, finish_reason=finish_reason)


# ═══════════════════════════════════════════════════════════════
# Anthropic messages API (normalized tool_use blocks)
# ═══════════════════════════════════════════════════════════════

class AnthropicMessagesProvider(ChatProvider):
    """Messages API with ``tool_use`` / ``tool_result`` content blocks."""

    protocol = "anthropic"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _payload(self, messages, tools, tool_choice, max_tokens, temperature) -> Dict[str, Any]:
        system_parts: List[str] = []
        wire: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            elif msg.role == "assistant":
                blocks: List[Dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                for call in msg.tool_calls:
                    blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
                wire.append({"role": "assistant", "content": blocks or msg.content})
            elif msg.role == "tool":
                block = {"type": "tool_result", "tool_use_id": msg.tool_call_id, "content": msg.content}
                # consecutive tool results share one user turn
                previous = wire[-1] if wire else None
                if previous and previous["role"] == "user" and isinstance(previous["content"], list) \
                        and all(b.get("type") == "tool_result" for b in previous["content"]):
                    previous["content"].append(block)
                else:
                    wire.append({"role": "user", "content": [block]})
            else:
                wire.append({"role": "user", "content": msg.content})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": wire,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.json_schema()} for t in tools
            ]
            if isinstance(tool_choice, dict):
                payload["tool_choice"] = {"type": "tool", "name": tool_choice["tool"]}
            elif tool_choice == "required":
                payload["tool_choice"] = {"type": "any"}
            else:
                payload["tool_choice"] = {"type": tool_choice}
        return payload

    def _parse_response(self, data: Dict[str, Any]) -> AssistantTurn:
        text_parts: List[str] = []
        calls: List[ToolCall] = []
        for block in data["content"]:
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                calls.append(NormalizedToolCall(id=block["id"], name=block["name"], input=block.get("input") or {}))
        return AssistantTurn(text="".join(text_parts), tool_calls=calls, finish_reason=data.get("stop_reason"))

    async def _consume_stream(self, lines: AsyncIterator[str], on_text: TextCallback) -> AssistantTurn:
        text_parts: List[str] = []
        blocks: Dict[int, Dict[str, Any]] = {}
        finish_reason: Optional[str] = None
        async for data in _sse_data(lines):
            try:
                event = json.loads(data)
            except ValueError:
                logger.debug("Skipping malformed stream event: %s", data[:80])
                continue
            kind = event.get("type")
            if kind == "content_block_start":
                block = event.get("content_block") or {}
                if block.get("type") == "tool_use":
                    blocks[event.get("index", 0)] = {"id": block.get("id", ""), "name": block.get("name", ""),
                                                     "json": ""}
            elif kind == "content_block_delta":
                delta = event.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    text_parts.append(delta["text"])
                    await on_text(delta["text"])
                elif delta.get("type") == "input_json_delta":
                    slot = blocks.get(event.get("index", 0))
                    if slot is not None:
                        slot["json"] += delta.get("partial_json", "")
            elif kind == "message_delta":
                finish_reason = (event.get("delta") or {}).get("stop_reason") or finish_reason
            elif kind == "error":
                message = (event.get("error") or {}).get("message", "unknown error")
                raise ProviderError(f"{self.provider_name} stream error: {message}", provider=self.provider_name)
            elif kind == "message_stop":
                break

        calls: List[ToolCall] = []
        for _, slot in sorted(blocks.items()):
            try:
                decoded = json.loads(slot["json"]) if slot["json"] else {}
            except ValueError:
                decoded = {}
            calls.append(NormalizedToolCall(id=slot["id"], name=slot["name"],
                                            input=decoded if isinstance(decoded, dict) else {}))
        return AssistantTurn(text="".join(text_parts), tool_calls=calls, finish_reason=finish_reason)


PROVIDER_CLASSES = {
    "openai": OpenAICompatibleProvider,
    "anthropic": AnthropicMessagesProvider,
}


def create_provider(role: str, client: Optional[httpx.AsyncClient] = None) -> ChatProvider:
    """Build the provider configured for *role* (``primary`` or ``fallback``).

    Raises:
        ValueError: If the role or its configured protocol is unknown.
    """
    settings = load_provider_config(role)
    protocol = settings.get("protocol", "openai")
    if protocol not in PROVIDER_CLASSES:
        raise ValueError(f"Unknown provider protocol '{protocol}'. Choose from: {', '.join(PROVIDER_CLASSES)}")
    provider = PROVIDER_CLASSES[protocol](
        model=settings["model"],
        api_key=settings.get("api_key", ""),
        endpoint=settings["endpoint"],
        provider_name=settings.get("provider", protocol),
        client=client,
    )
    logger.debug("Configured %s provider %s (%s)", role, provider.provider_name, provider.model)
    return provider
