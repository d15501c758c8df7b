"""OpenAI chat-completions adapter (also serves Azure OpenAI through the pool)."""
from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, List, Optional

from toolrelay.core.logger import get_logger
from toolrelay.core.models import Message, ToolDefinition, ToolServerInfo
from toolrelay.providers.base import ProviderAdapter, ToolCatalog
from toolrelay.providers.parsers import OpenAIToolResponseParser
from toolrelay.services.discovery import ToolDiscoveryCache
from toolrelay.services.llm_pool import LLMPool


logger = get_logger(__name__)


def to_openai_tool(tool: ToolDefinition) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description or "",
            "parameters": tool.input_schema,
        },
    }


def format_openai_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    formatted: List[Dict[str, Any]] = []
    for message in messages:
        if message.role == "tool":
            formatted.append(
                {"role": "tool", "tool_call_id": message.tool_call_id, "content": message.content}
            )
        elif message.tool_calls:
            formatted.append(
                {
                    "role": "assistant",
                    "content": message.content or "",
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                        }
                        for call in message.tool_calls
                    ],
                }
            )
        else:
            formatted.append({"role": message.role, "content": message.content})
    return formatted


class OpenAIProviderAdapter(ProviderAdapter):
    def __init__(
        self,
        pool: LLMPool,
        cache: ToolDiscoveryCache,
        *,
        model: str,
        pool_key: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> None:
        self._pool = pool
        self._catalog = ToolCatalog(cache)
        self.model = model
        self._pool_key = pool_key or model
        self._temperature = temperature
        self._parser = OpenAIToolResponseParser()

    async def initialize(self) -> None:
        await self._catalog.refresh()

    async def send_request(self, messages: List[Message]) -> AsyncIterator[Any]:
        tools = [to_openai_tool(tool) for tool in await self._catalog.definitions()]
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": format_openai_messages(messages),
            "stream": True,
        }
        if tools:
            params["tools"] = tools
        if self._temperature is not None:
            params["temperature"] = self._temperature

        logger.debug("OpenAI request: %d messages, %d tools", len(messages), len(tools))
        async with self._pool.acquire(self._pool_key) as client:
            stream = await client.chat.completions.create(**params)
            async for chunk in stream:
                yield chunk

    def get_parser(self) -> OpenAIToolResponseParser:
        return self._parser

    def find_server(self, tool_name: str) -> Optional[ToolServerInfo]:
        return self._catalog.find_server(tool_name)
