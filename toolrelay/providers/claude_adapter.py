"""Anthropic Messages API adapter.

The adapter takes an already-constructed async client exposing
``messages.create(..., stream=True)``; it only shapes requests and
forwards stream events.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple

from toolrelay.core.logger import get_logger
from toolrelay.core.models import Message, ToolDefinition, ToolExecutionResult, ToolServerInfo
from toolrelay.providers.base import ProviderAdapter, ToolCatalog
from toolrelay.providers.parsers import ClaudeToolResponseParser
from toolrelay.services.discovery import ToolDiscoveryCache


logger = get_logger(__name__)


class MessagesAPI(Protocol):
    async def create(self, **params: Any) -> AsyncIterator[Any]:
        ...


class ClaudeClient(Protocol):
    messages: MessagesAPI


def to_claude_tool(tool: ToolDefinition) -> Dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description or "",
        "input_schema": tool.input_schema or {"type": "object", "properties": {}},
    }


def format_claude_messages(messages: List[Message]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Split out the system prompt and map the rest onto content blocks."""
    system_parts: List[str] = []
    formatted: List[Dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            system_parts.append(message.content)
            continue
        if message.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content,
            }
            # Consecutive tool results belong to a single user turn.
            previous = formatted[-1] if formatted else None
            if previous and previous["role"] == "user" and isinstance(previous["content"], list):
                previous["content"].append(block)
            else:
                formatted.append({"role": "user", "content": [block]})
            continue
        if message.tool_calls:
            blocks: List[Dict[str, Any]] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            blocks.extend(
                {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
                for call in message.tool_calls
            )
            formatted.append({"role": "assistant", "content": blocks})
            continue
        formatted.append({"role": message.role, "content": message.content})

    system = "\n\n".join(part for part in system_parts if part) or None
    return system, formatted


class ClaudeProviderAdapter(ProviderAdapter):
    def __init__(
        self,
        client: ClaudeClient,
        cache: ToolDiscoveryCache,
        *,
        model: str,
        max_tokens: int = 4096,
    ) -> None:
        self._client = client
        self._catalog = ToolCatalog(cache)
        self.model = model
        self._max_tokens = max_tokens
        self._parser = ClaudeToolResponseParser()

    async def initialize(self) -> None:
        await self._catalog.refresh()

    async def send_request(self, messages: List[Message]) -> AsyncIterator[Any]:
        tools = [to_claude_tool(tool) for tool in await self._catalog.definitions()]
        system, formatted = format_claude_messages(messages)
        params: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._max_tokens,
            "messages": formatted,
            "stream": True,
        }
        if system:
            params["system"] = system
        if tools:
            params["tools"] = tools

        logger.debug("Claude request: %d messages, %d tools", len(formatted), len(tools))
        stream = await self._client.messages.create(**params)
        async for event in stream:
            yield event

    def get_parser(self) -> ClaudeToolResponseParser:
        return self._parser

    def find_server(self, tool_name: str) -> Optional[ToolServerInfo]:
        return self._catalog.find_server(tool_name)

    def format_tool_result(self, tool_call_id: str, result: ToolExecutionResult) -> Message:
        message = super().format_tool_result(tool_call_id, result)
        if not message.content:
            message.content = "(empty result)"
        return message
