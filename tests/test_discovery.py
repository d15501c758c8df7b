"""Tests for the tool discovery cache."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from toolrelay.core.models import ServerDescriptor, ToolDefinition, ToolExecutionResult
from toolrelay.services.discovery import ToolDiscoveryCache
from toolrelay.services.registry import MCPRegistry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeClient:
    def __init__(self, tools: List[Any], gate: Optional[asyncio.Event] = None, fail: bool = False) -> None:
        self._tools = tools
        self._gate = gate
        self._fail = fail
        self.list_calls = 0

    async def list_tools(self) -> List[Any]:
        self.list_calls += 1
        if self._gate is not None:
            await self._gate.wait()
        if self._fail:
            raise ConnectionError("server unreachable")
        return self._tools

    async def call_tool(self, name: str, arguments: Dict[str, Any], timeout_ms: float) -> ToolExecutionResult:
        return ToolExecutionResult(content="ok")


def build(*servers: tuple) -> tuple:
    registry = MCPRegistry()
    cache = ToolDiscoveryCache(registry)
    registry.attach_cache(cache)
    for server_id, client in servers:
        registry.register(ServerDescriptor(id=server_id, name=server_id.title()), client)
    return registry, cache


@pytest.mark.anyio
async def test_first_server_wins_on_name_collision() -> None:
    _, cache = build(
        ("alpha", FakeClient([ToolDefinition("search"), ToolDefinition("fetch")])),
        ("beta", FakeClient([{"name": "search", "inputSchema": {"type": "object"}}])),
    )

    snapshot = await cache.get_snapshot()

    assert snapshot.mapping["search"].id == "alpha"
    assert snapshot.mapping["fetch"].id == "alpha"
    assert [server.server_id for server in snapshot.servers] == ["alpha", "beta"]
    assert snapshot.servers[1].tools[0].input_schema == {"type": "object"}


@pytest.mark.anyio
async def test_concurrent_requests_share_one_build() -> None:
    gate = asyncio.Event()
    alpha = FakeClient([ToolDefinition("search")], gate=gate)
    beta = FakeClient([ToolDefinition("fetch")], gate=gate)
    _, cache = build(("alpha", alpha), ("beta", beta))

    waiters = [asyncio.ensure_future(cache.get_snapshot()) for _ in range(5)]
    for _ in range(3):
        await asyncio.sleep(0)
    assert cache.get_metrics().in_flight is True
    gate.set()
    snapshots = await asyncio.gather(*waiters)

    assert alpha.list_calls == 1
    assert beta.list_calls == 1
    assert all(set(snapshot.mapping) == {"search", "fetch"} for snapshot in snapshots)
    metrics = cache.get_metrics()
    assert metrics.misses == 1
    assert metrics.batched == 4
    assert metrics.in_flight is False


@pytest.mark.anyio
async def test_cache_hit_returns_copy() -> None:
    client = FakeClient([ToolDefinition("search")])
    _, cache = build(("alpha", client))

    first = await cache.get_snapshot()
    first.mapping.clear()
    second = await cache.get_snapshot()

    assert "search" in second.mapping
    assert client.list_calls == 1
    assert cache.get_metrics().hits == 1


@pytest.mark.anyio
async def test_invalidation_triggers_exactly_one_rebuild() -> None:
    client = FakeClient([ToolDefinition("search")])
    registry, cache = build(("alpha", client))
    await cache.get_snapshot()
    before = cache.get_metrics().invalidations

    registry.notify_stopped("alpha")
    assert cache.get_cached_snapshot() is None
    await asyncio.gather(cache.get_snapshot(), cache.get_snapshot(), cache.get_snapshot())

    assert client.list_calls == 2
    metrics = cache.get_metrics()
    assert metrics.invalidations == before + 1
    assert metrics.last_invalidation_reason == "server-stopped:alpha"


@pytest.mark.anyio
async def test_server_started_triggers_one_rebuild() -> None:
    alpha = FakeClient([ToolDefinition("search")])
    registry, cache = build(("alpha", alpha))
    await cache.get_snapshot()

    beta = FakeClient([ToolDefinition("fetch")])
    registry.register(ServerDescriptor(id="beta", name="Beta"), beta)
    assert cache.get_metrics().last_invalidation_reason == "server-started:beta"
    snapshots = await asyncio.gather(cache.get_snapshot(), cache.get_snapshot())

    assert alpha.list_calls == 2
    assert beta.list_calls == 1
    assert all(set(snapshot.mapping) == {"search", "fetch"} for snapshot in snapshots)
    assert cache.get_metrics().misses == 2


@pytest.mark.anyio
async def test_invalidation_during_build_is_not_lost() -> None:
    gate = asyncio.Event()
    alpha = FakeClient([ToolDefinition("search")], gate=gate)
    registry, cache = build(("alpha", alpha))

    pending = asyncio.ensure_future(cache.get_snapshot())
    for _ in range(3):
        await asyncio.sleep(0)
    registry.register(ServerDescriptor(id="beta", name="Beta"), FakeClient([ToolDefinition("fetch")]))
    gate.set()
    stale = await pending

    assert set(stale.mapping) == {"search"}
    assert cache.get_cached_snapshot() is None
    fresh = await cache.get_snapshot()
    assert set(fresh.mapping) == {"search", "fetch"}


@pytest.mark.anyio
async def test_force_refresh_rebuilds() -> None:
    client = FakeClient([ToolDefinition("search")])
    _, cache = build(("alpha", client))

    await cache.get_snapshot()
    await cache.get_snapshot(force_refresh=True)

    assert client.list_calls == 2


@pytest.mark.anyio
async def test_failing_server_contributes_no_tools() -> None:
    _, cache = build(
        ("broken", FakeClient([ToolDefinition("search")], fail=True)),
        ("alpha", FakeClient([ToolDefinition("search")])),
    )

    snapshot = await cache.get_snapshot()

    assert snapshot.mapping["search"].id == "alpha"
    assert snapshot.servers[0].tools == []
    assert cache.get_metrics().last_error is None


@pytest.mark.anyio
async def test_disabled_and_auto_disabled_servers_are_skipped() -> None:
    registry, cache = build(
        ("alpha", FakeClient([ToolDefinition("search")])),
        ("beta", FakeClient([ToolDefinition("fetch")])),
        ("gamma", FakeClient([ToolDefinition("write")])),
    )
    registry.set_enabled("alpha", False)
    registry.notify_auto_disabled("beta")

    mapping = await cache.get_tool_mapping()

    assert set(mapping) == {"write"}
    assert cache.get_metrics().last_server_count == 1
