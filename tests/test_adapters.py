"""Tests for provider adapters and the shared tool catalog."""
from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, AsyncIterator, Dict, List

import httpx
import pytest

from toolrelay.core.errors import ServerConnectionError
from toolrelay.core.models import Message, ServerDescriptor, ToolCall, ToolExecutionResult
from toolrelay.providers.base import ToolCatalog
from toolrelay.providers.claude_adapter import ClaudeProviderAdapter, format_claude_messages
from toolrelay.providers.ollama_adapter import OllamaProviderAdapter, format_ollama_messages
from toolrelay.providers.openai_adapter import OpenAIProviderAdapter, format_openai_messages
from toolrelay.services.discovery import ToolDiscoveryCache
from toolrelay.services.llm_pool import LLMPool
from toolrelay.services.local import LocalToolClient
from toolrelay.services.registry import MCPRegistry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


SEARCH_SCHEMA = {"type": "object", "properties": {"q": {"type": "string"}}}


def build_cache() -> tuple:
    registry = MCPRegistry()
    cache = ToolDiscoveryCache(registry)
    registry.attach_cache(cache)

    docs = LocalToolClient("Docs")
    docs.add_tool("search", lambda q: q, description="Search docs", input_schema=SEARCH_SCHEMA)
    web = LocalToolClient("Web")
    web.add_tool("search", lambda q: q)
    web.add_tool("fetch", lambda url: url)
    registry.register(ServerDescriptor(id="docs", name="Docs"), docs)
    registry.register(ServerDescriptor(id="web", name="Web"), web)
    return registry, cache


async def replay(chunks: List[Any]) -> AsyncIterator[Any]:
    for chunk in chunks:
        yield chunk


class FakeCompletions:
    def __init__(self, chunks: List[Any]) -> None:
        self.chunks = chunks
        self.params: Dict[str, Any] = {}

    async def create(self, **params: Any) -> AsyncIterator[Any]:
        self.params = params
        return replay(self.chunks)


class FakeOpenAI:
    def __init__(self, chunks: List[Any]) -> None:
        self.chat = SimpleNamespace(completions=FakeCompletions(chunks))


class FakeClaude:
    def __init__(self, events: List[Any]) -> None:
        self.messages = FakeCompletions(events)


CONVERSATION = [
    Message("system", "Be brief."),
    Message("user", "Find docs"),
    Message("assistant", "", tool_calls=[ToolCall("call_1", "search", {"q": "x"}), ToolCall("call_2", "fetch", {})]),
    Message("tool", "result one", tool_call_id="call_1"),
    Message("tool", "result two", tool_call_id="call_2"),
]


@pytest.mark.anyio
async def test_catalog_skips_shadowed_tools_and_tracks_invalidation() -> None:
    registry, cache = build_cache()
    catalog = ToolCatalog(cache)

    with pytest.raises(RuntimeError):
        catalog.find_server("search")

    definitions = await catalog.definitions()
    assert [tool.name for tool in definitions] == ["search", "fetch"]
    assert definitions[0].description == "Search docs"
    assert catalog.find_server("search").id == "docs"

    registry.set_enabled("docs", False)
    assert catalog.find_server("search").id == "docs"
    await catalog.refresh()
    assert catalog.find_server("search").id == "web"


@pytest.mark.anyio
async def test_openai_adapter_streams_through_pool() -> None:
    _, cache = build_cache()
    chunk = {"choices": [{"delta": {"content": "hi"}, "finish_reason": "stop"}]}
    client = FakeOpenAI([chunk])
    pool = LLMPool()
    pool.register_client("gpt-test", client, max_concurrent=1)
    adapter = OpenAIProviderAdapter(pool, cache, model="gpt-test")
    await adapter.initialize()

    received = [item async for item in adapter.send_request([Message("user", "hi")])]

    assert received == [chunk]
    params = client.chat.completions.params
    assert params["stream"] is True
    assert params["tools"][0] == {
        "type": "function",
        "function": {"name": "search", "description": "Search docs", "parameters": SEARCH_SCHEMA},
    }
    assert adapter.find_server("fetch").id == "web"


def test_openai_message_format() -> None:
    formatted = format_openai_messages(CONVERSATION)

    assert formatted[0] == {"role": "system", "content": "Be brief."}
    assert formatted[2]["tool_calls"][0] == {
        "id": "call_1",
        "type": "function",
        "function": {"name": "search", "arguments": '{"q": "x"}'},
    }
    assert formatted[3] == {"role": "tool", "tool_call_id": "call_1", "content": "result one"}


@pytest.mark.anyio
async def test_claude_adapter_request_shape() -> None:
    _, cache = build_cache()
    event = {"type": "message_stop"}
    client = FakeClaude([event])
    adapter = ClaudeProviderAdapter(client, cache, model="claude-test", max_tokens=256)

    received = [item async for item in adapter.send_request(CONVERSATION)]

    assert received == [event]
    params = client.messages.params
    assert params["system"] == "Be brief."
    assert params["max_tokens"] == 256
    assert params["tools"][1] == {
        "name": "fetch",
        "description": "",
        "input_schema": {"type": "object", "properties": {}},
    }
    assert params["messages"][0] == {"role": "user", "content": "Find docs"}


def test_claude_message_format_groups_tool_results() -> None:
    system, formatted = format_claude_messages(CONVERSATION)

    assert system == "Be brief."
    assert formatted[1] == {
        "role": "assistant",
        "content": [
            {"type": "tool_use", "id": "call_1", "name": "search", "input": {"q": "x"}},
            {"type": "tool_use", "id": "call_2", "name": "fetch", "input": {}},
        ],
    }
    assert formatted[2] == {
        "role": "user",
        "content": [
            {"type": "tool_result", "tool_use_id": "call_1", "content": "result one"},
            {"type": "tool_result", "tool_use_id": "call_2", "content": "result two"},
        ],
    }


def test_claude_empty_tool_result_is_not_blank() -> None:
    _, cache = build_cache()
    adapter = ClaudeProviderAdapter(FakeClaude([]), cache, model="claude-test")

    message = adapter.format_tool_result("toolu_1", ToolExecutionResult(content=""))

    assert message.content == "(empty result)"


@pytest.mark.anyio
async def test_ollama_adapter_streams_ndjson() -> None:
    _, cache = build_cache()
    captured: List[Dict[str, Any]] = []
    lines = [
        {"message": {"role": "assistant", "content": "Hel"}, "done": False},
        {"message": {"role": "assistant", "content": "lo"}, "done": True},
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        body = "\n".join(json.dumps(line) for line in lines) + "\n\n"
        return httpx.Response(200, content=body.encode())

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        adapter = OllamaProviderAdapter(cache, model="llama3", http_client=http_client)
        received = [item async for item in adapter.send_request([Message("user", "hi")])]

    assert received == lines
    assert captured[0]["model"] == "llama3"
    assert captured[0]["stream"] is True
    assert {tool["function"]["name"] for tool in captured[0]["tools"]} == {"search", "fetch"}


@pytest.mark.anyio
async def test_ollama_http_errors_become_connection_errors() -> None:
    _, cache = build_cache()
    transport = httpx.MockTransport(lambda request: httpx.Response(500, content=b"boom"))

    async with httpx.AsyncClient(transport=transport) as http_client:
        adapter = OllamaProviderAdapter(cache, model="llama3", http_client=http_client)
        with pytest.raises(ServerConnectionError):
            async for _ in adapter.send_request([Message("user", "hi")]):
                pass


def test_ollama_message_format_keeps_object_arguments() -> None:
    formatted = format_ollama_messages(CONVERSATION)

    assert formatted[2]["tool_calls"][0] == {"function": {"name": "search", "arguments": {"q": "x"}}}
    assert formatted[3] == {"role": "tool", "content": "result one"}
