"""Provider adapter interface and the shared tool catalog used by adapters."""
from __future__ import annotations

import abc
import json
from typing import Any, AsyncIterator, Dict, List, Optional

from toolrelay.core.models import (
    Message,
    ToolDefinition,
    ToolDiscoverySnapshot,
    ToolExecutionResult,
    ToolServerInfo,
)
from toolrelay.providers.parsers import ToolResponseParser
from toolrelay.services.discovery import ToolDiscoveryCache


class ProviderAdapter(abc.ABC):
    """Hides one vendor's wire format from the tool-calling coordinator."""

    @abc.abstractmethod
    def send_request(self, messages: List[Message]) -> AsyncIterator[Any]:
        """Stream raw vendor chunks for one turn."""

    @abc.abstractmethod
    def get_parser(self) -> ToolResponseParser:
        ...

    @abc.abstractmethod
    def find_server(self, tool_name: str) -> Optional[ToolServerInfo]:
        ...

    def format_tool_result(self, tool_call_id: str, result: ToolExecutionResult) -> Message:
        content = result.content if isinstance(result.content, str) else json.dumps(result.content)
        return Message(role="tool", tool_call_id=tool_call_id, content=content)


class ToolCatalog:
    """Tool definitions and server mapping taken from the discovery cache.

    The catalog is rebuilt whenever the cache has been invalidated since the
    last build.
    """

    def __init__(self, cache: ToolDiscoveryCache) -> None:
        self._cache = cache
        self._snapshot: Optional[ToolDiscoverySnapshot] = None
        self._generation = -1

    async def refresh(self) -> ToolDiscoverySnapshot:
        if self._snapshot is None or self._generation != self._cache.generation:
            generation = self._cache.generation
            self._snapshot = await self._cache.get_snapshot()
            self._generation = generation
        return self._snapshot

    async def definitions(self) -> List[ToolDefinition]:
        """Definitions in server order, skipping names shadowed by an earlier server."""
        snapshot = await self.refresh()
        definitions: List[ToolDefinition] = []
        for server in snapshot.servers:
            for tool in server.tools:
                owner = snapshot.mapping.get(tool.name)
                if owner is not None and owner.id == server.server_id:
                    definitions.append(tool)
        return definitions

    def mapping(self) -> Dict[str, ToolServerInfo]:
        if self._snapshot is not None and self._generation == self._cache.generation:
            return self._snapshot.mapping
        cached = self._cache.get_cached_mapping()
        if cached is not None:
            return cached
        if self._snapshot is not None:
            # Invalidated mid-turn: resolve against the tools the model was offered.
            return self._snapshot.mapping
        raise RuntimeError("Tool mapping not initialized - call initialize() first")

    def find_server(self, tool_name: str) -> Optional[ToolServerInfo]:
        return self.mapping().get(tool_name)
