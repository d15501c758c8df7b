"""CLI demonstration of a tool-calling conversation against an in-process server."""
from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, NoReturn, Optional

from toolrelay.core.logger import configure_logging
from toolrelay.core.models import Message, ServerDescriptor, ToolServerInfo
from toolrelay.orchestration.coordinator import create_tool_calling_coordinator
from toolrelay.orchestration.formatting import format_utility_section_callout
from toolrelay.providers.base import ProviderAdapter, ToolCatalog
from toolrelay.providers.parsers import OpenAIToolResponseParser
from toolrelay.services.discovery import ToolDiscoveryCache
from toolrelay.services.executor import ToolExecutor
from toolrelay.services.local import LocalToolClient
from toolrelay.services.registry import MCPRegistry


class ScriptedAdapter(ProviderAdapter):
    """Replays OpenAI-style chunks: first a weather call, then an answer built from its result."""

    def __init__(self, cache: ToolDiscoveryCache) -> None:
        self._catalog = ToolCatalog(cache)
        self._parser = OpenAIToolResponseParser()

    async def initialize(self) -> None:
        await self._catalog.refresh()

    async def send_request(self, messages: List[Message]) -> AsyncIterator[Dict[str, Any]]:
        await self._catalog.refresh()
        tool_messages = [message for message in messages if message.role == "tool"]
        if not tool_messages:
            arguments = json.dumps({"location": "San Francisco"})
            yield _chunk(tool_calls=[_tool_call(0, "call_demo", "get_weather", arguments[:12])])
            yield _chunk(tool_calls=[_tool_call(0, None, None, arguments[12:])])
            yield _chunk(finish_reason="tool_calls")
            return

        report = json.loads(tool_messages[-1].content)
        for part in ("It is ", f"{report['temperature']}°F ", f"and {report['conditions']} ", "in San Francisco."):
            yield _chunk(content=part)
        yield _chunk(finish_reason="stop")

    def get_parser(self) -> OpenAIToolResponseParser:
        return self._parser

    def find_server(self, tool_name: str) -> Optional[ToolServerInfo]:
        return self._catalog.find_server(tool_name)


def _chunk(
    content: Optional[str] = None,
    tool_calls: Optional[List[Dict[str, Any]]] = None,
    finish_reason: Optional[str] = None,
) -> Dict[str, Any]:
    delta: Dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    return {"choices": [{"delta": delta, "finish_reason": finish_reason}]}


def _tool_call(index: int, call_id: Optional[str], name: Optional[str], arguments: str) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"index": index, "function": {"arguments": arguments}}
    if call_id:
        entry["id"] = call_id
    if name:
        entry["function"]["name"] = name
    return entry


def build_weather_client() -> LocalToolClient:
    client = LocalToolClient("Weather")

    @client.tool(
        description="Current weather for a location",
        input_schema={
            "type": "object",
            "properties": {"location": {"type": "string"}},
            "required": ["location"],
        },
    )
    async def get_weather(location: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        return {"location": location, "temperature": 72, "conditions": "sunny"}

    return client


class _PrintWriter:
    def append(self, markdown: str) -> None:
        print(markdown, end="")


async def main() -> None:
    configure_logging()
    registry = MCPRegistry()
    cache = ToolDiscoveryCache(registry)
    registry.attach_cache(cache)
    registry.register(ServerDescriptor(id="weather", name="Weather"), build_weather_client())

    executor = ToolExecutor(registry)
    adapter = ScriptedAdapter(cache)
    await adapter.initialize()

    snapshot = await cache.get_snapshot()
    print(format_utility_section_callout("Scripted", "demo", snapshot.servers), end="")

    coordinator = create_tool_calling_coordinator()
    answer = []
    async for text in coordinator.generate_with_tools(
        [Message(role="user", content="What's the weather in San Francisco?")],
        adapter,
        executor,
        document_path="demo.md",
        editor=_PrintWriter(),
    ):
        answer.append(text)
    print("".join(answer))
    print(f"Executions: {executor.get_stats()['total_executed']}")


def run() -> NoReturn:
    asyncio.run(main())


if __name__ == "__main__":
    run()
