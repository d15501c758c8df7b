"""Caching tool-discovery index over every enabled tool server."""
from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from toolrelay.core.logger import get_logger
from toolrelay.core.models import (
    ServerDescriptor,
    ServerTools,
    ToolDefinition,
    ToolDiscoveryMetrics,
    ToolDiscoverySnapshot,
    ToolServerInfo,
)
from toolrelay.services.registry import ServerRegistry


logger = get_logger(__name__)


def normalize_tool(tool: Any) -> ToolDefinition:
    """Accept ToolDefinition, plain dicts or SDK tool objects."""
    if isinstance(tool, ToolDefinition):
        return ToolDefinition(tool.name, tool.description or "", tool.input_schema)
    if isinstance(tool, dict):
        schema = tool.get("input_schema", tool.get("inputSchema")) or {}
        return ToolDefinition(tool["name"], tool.get("description") or "", schema)
    schema = getattr(tool, "input_schema", None) or getattr(tool, "inputSchema", None) or {}
    return ToolDefinition(tool.name, getattr(tool, "description", None) or "", schema)


class ToolDiscoveryCache:
    """Single-flight cache of the tool name -> server mapping.

    Concurrent callers that miss the cache share one build. The snapshot is
    replaced wholesale on rebuild and callers always receive copies.
    """

    def __init__(self, registry: ServerRegistry) -> None:
        self._registry = registry
        self._snapshot: Optional[ToolDiscoverySnapshot] = None
        self._build_task: Optional[asyncio.Task[ToolDiscoverySnapshot]] = None
        self._metrics = ToolDiscoveryMetrics()

    async def get_snapshot(self, force_refresh: bool = False) -> ToolDiscoverySnapshot:
        self._metrics.requests += 1

        if not force_refresh and self._snapshot is not None:
            self._metrics.hits += 1
            return self._snapshot.copy()

        # No await between the in-flight check and task creation.
        task = self._build_task
        if task is not None:
            self._metrics.batched += 1
            snapshot = await asyncio.shield(task)
            self._metrics.hits += 1
            return snapshot.copy()

        self._metrics.misses += 1
        task = asyncio.ensure_future(self._build_snapshot())
        task.add_done_callback(self._clear_build_task)
        self._build_task = task
        snapshot = await asyncio.shield(task)
        return snapshot.copy()

    def get_cached_snapshot(self) -> Optional[ToolDiscoverySnapshot]:
        return self._snapshot.copy() if self._snapshot is not None else None

    async def get_tool_mapping(self, force_refresh: bool = False) -> Dict[str, ToolServerInfo]:
        snapshot = await self.get_snapshot(force_refresh=force_refresh)
        return snapshot.mapping

    def get_cached_mapping(self) -> Optional[Dict[str, ToolServerInfo]]:
        return dict(self._snapshot.mapping) if self._snapshot is not None else None

    async def preload(self) -> None:
        await self.get_snapshot()

    def invalidate(self, reason: str = "unknown") -> None:
        """Drop the cached snapshot; the next request rebuilds it."""
        self._snapshot = None
        self._metrics.invalidations += 1
        self._metrics.last_invalidation_at = time.time()
        self._metrics.last_invalidation_reason = reason
        logger.debug("Tool discovery cache invalidated: %s", reason)

    def get_metrics(self) -> ToolDiscoveryMetrics:
        return replace(self._metrics)

    @property
    def generation(self) -> int:
        """Changes every time the cached snapshot is dropped."""
        return self._metrics.invalidations

    def _clear_build_task(self, task: asyncio.Task[ToolDiscoverySnapshot]) -> None:
        if self._build_task is task:
            self._build_task = None

    async def _build_snapshot(self) -> ToolDiscoverySnapshot:
        self._metrics.in_flight = True
        generation = self.generation
        started = time.perf_counter()
        try:
            servers = [
                server
                for server in self._registry.list_servers()
                if server.enabled and not server.auto_disabled
            ]
            results = await asyncio.gather(*(self._list_server_tools(server) for server in servers))

            mapping: Dict[str, ToolServerInfo] = {}
            snapshot_servers: List[ServerTools] = []
            total_tools = 0
            for server, tools in results:
                snapshot_servers.append(ServerTools(server.id, server.name, tools))
                for tool in tools:
                    # First server wins on name collisions.
                    mapping.setdefault(tool.name, ToolServerInfo(server.id, server.name))
                total_tools += len(tools)

            snapshot = ToolDiscoverySnapshot(mapping=mapping, servers=snapshot_servers)
            # Invalidated mid-build: serve the result but do not cache it.
            if generation == self.generation:
                self._snapshot = snapshot
            else:
                logger.debug("Tool discovery cache invalidated during build; result not cached")
            self._metrics.last_updated_at = time.time()
            self._metrics.last_build_duration_ms = (time.perf_counter() - started) * 1000
            self._metrics.last_server_count = len(results)
            self._metrics.last_tool_count = total_tools
            self._metrics.last_error = None
            logger.info(
                "Discovered %d tools across %d servers in %.1fms",
                total_tools,
                len(results),
                self._metrics.last_build_duration_ms,
            )
            return snapshot
        except Exception as exc:
            self._metrics.last_error = str(exc)
            raise
        finally:
            self._metrics.in_flight = False

    async def _list_server_tools(
        self, server: ServerDescriptor
    ) -> Tuple[ServerDescriptor, List[ToolDefinition]]:
        client = self._registry.get_client(server.id)
        if client is None:
            return server, []
        try:
            tools = await client.list_tools()
        except Exception:  # noqa: BLE001
            logger.warning("Failed to list tools for server %s", server.id, exc_info=True)
            return server, []
        return server, [normalize_tool(tool) for tool in tools]
