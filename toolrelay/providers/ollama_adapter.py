"""Ollama ``/api/chat`` adapter streaming newline-delimited JSON over httpx."""
from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from toolrelay.core.errors import ServerConnectionError
from toolrelay.core.logger import get_logger
from toolrelay.core.models import Message, ToolDefinition, ToolServerInfo
from toolrelay.providers.base import ProviderAdapter, ToolCatalog
from toolrelay.providers.parsers import OllamaToolResponseParser
from toolrelay.services.discovery import ToolDiscoveryCache


logger = get_logger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def to_ollama_tool(tool: ToolDefinition) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description or "",
            "parameters": tool.input_schema,
        },
    }


def format_ollama_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    formatted: List[Dict[str, Any]] = []
    for message in messages:
        entry: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.tool_calls:
            # Ollama takes arguments as objects, not JSON strings.
            entry["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}}
                for call in message.tool_calls
            ]
        formatted.append(entry)
    return formatted


class OllamaProviderAdapter(ProviderAdapter):
    def __init__(
        self,
        cache: ToolDiscoveryCache,
        *,
        model: str,
        base_url: str = DEFAULT_OLLAMA_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 120.0,
    ) -> None:
        self._catalog = ToolCatalog(cache)
        self.model = model
        self._base_url = base_url.rstrip("/")
        self._http = http_client
        self._timeout_s = timeout_s
        self._parser = OllamaToolResponseParser()

    async def initialize(self) -> None:
        await self._catalog.refresh()

    async def send_request(self, messages: List[Message]) -> AsyncIterator[Any]:
        tools = [to_ollama_tool(tool) for tool in await self._catalog.definitions()]
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": format_ollama_messages(messages),
            "stream": True,
        }
        if tools:
            payload["tools"] = tools

        client = self._http or httpx.AsyncClient(timeout=self._timeout_s)
        try:
            async with client.stream("POST", f"{self._base_url}/api/chat", json=payload) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    yield json.loads(line)
        except httpx.HTTPError as exc:
            raise ServerConnectionError(
                f"Ollama request failed: {exc}", details={"base_url": self._base_url}
            ) from exc
        finally:
            if self._http is None:
                await client.aclose()

    def get_parser(self) -> OllamaToolResponseParser:
        return self._parser

    def find_server(self, tool_name: str) -> Optional[ToolServerInfo]:
        return self._catalog.find_server(tool_name)
