"""Server registry and the client protocols the orchestration layer consumes."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from toolrelay.core.errors import ServerConnectionError
from toolrelay.core.logger import get_logger
from toolrelay.core.models import ServerDescriptor, ToolDefinition, ToolExecutionResult

if TYPE_CHECKING:
    from toolrelay.services.discovery import ToolDiscoveryCache
    from toolrelay.services.health import HealthMonitor


logger = get_logger(__name__)


@runtime_checkable
class ToolClient(Protocol):
    """Already-connected client for one tool server."""

    async def list_tools(self) -> List[ToolDefinition]:
        ...

    async def call_tool(
        self, name: str, arguments: Dict[str, Any], timeout_ms: float
    ) -> ToolExecutionResult:
        ...


ClientConnector = Callable[[], Any]


class ServerRegistry(Protocol):
    def list_servers(self) -> List[ServerDescriptor]:
        ...

    def get_client(self, server_id: str) -> Optional[ToolClient]:
        ...


class MCPRegistry:
    """In-memory registry of tool servers and their connected clients.

    Lifecycle transitions are pushed directly to the attached discovery
    cache and health monitor.
    """

    def __init__(self) -> None:
        self._servers: Dict[str, ServerDescriptor] = {}
        self._clients: Dict[str, ToolClient] = {}
        self._connectors: Dict[str, ClientConnector] = {}
        self._caches: List[ToolDiscoveryCache] = []
        self._monitors: List[HealthMonitor] = []

    def attach_cache(self, cache: ToolDiscoveryCache) -> None:
        self._caches.append(cache)

    def attach_monitor(self, monitor: HealthMonitor) -> None:
        self._monitors.append(monitor)

    def register(
        self,
        server: ServerDescriptor,
        client: Optional[ToolClient] = None,
        *,
        connector: Optional[ClientConnector] = None,
    ) -> None:
        """Add a server, optionally with its live client.

        ``connector`` opens a new, unconnected client for the server; health
        probes use it so they never touch the live connection.
        """
        self._servers[server.id] = server
        if connector is not None:
            self._connectors[server.id] = connector
        if client is not None:
            self._clients[server.id] = client
            self.notify_started(server.id)

    def unregister(self, server_id: str) -> None:
        self._servers.pop(server_id, None)
        self._connectors.pop(server_id, None)
        if self._clients.pop(server_id, None) is not None:
            self.notify_stopped(server_id)

    def get(self, server_id: str) -> ServerDescriptor:
        if server_id not in self._servers:
            raise KeyError(f"No MCP server registered with id: {server_id}")
        return self._servers[server_id]

    def list_servers(self) -> List[ServerDescriptor]:
        return list(self._servers.values())

    def get_client(self, server_id: str) -> Optional[ToolClient]:
        server = self._servers.get(server_id)
        if server is None or not server.enabled or server.auto_disabled:
            return None
        return self._clients.get(server_id)

    def create_probe_client(self, server: ServerDescriptor) -> Any:
        """Open a throwaway client for a health probe, regardless of enabled state."""
        connector = self._connectors.get(server.id)
        if connector is None:
            raise ServerConnectionError(f"No connector registered for server {server.id}")
        return connector()

    def attach_client(self, server_id: str, client: ToolClient) -> None:
        self.get(server_id)
        self._clients[server_id] = client
        self.notify_started(server_id)

    def detach_client(self, server_id: str) -> None:
        if self._clients.pop(server_id, None) is not None:
            self.notify_stopped(server_id)

    def set_enabled(self, server_id: str, enabled: bool) -> None:
        server = self.get(server_id)
        if server.enabled == enabled:
            return
        server.enabled = enabled
        if enabled:
            self.reenable(server_id)
        else:
            self.notify_stopped(server_id)

    def reenable(self, server_id: str) -> None:
        """Clear auto-disable state and make the server selectable again."""
        server = self.get(server_id)
        server.auto_disabled = False
        server.failure_count = 0
        for monitor in self._monitors:
            monitor.reenable_server(server_id)
        self.notify_started(server_id)

    def notify_started(self, server_id: str) -> None:
        self._invalidate(f"server-started:{server_id}")

    def notify_stopped(self, server_id: str) -> None:
        self._invalidate(f"server-stopped:{server_id}")

    def notify_failed(self, server_id: str, error: Optional[BaseException] = None) -> None:
        server = self._servers.get(server_id)
        if server is not None:
            server.failure_count += 1
        logger.warning("Server %s failed: %s", server_id, error)
        for monitor in self._monitors:
            monitor.record_failure(server_id)
        self._invalidate(f"server-failed:{server_id}")

    def notify_auto_disabled(self, server_id: str) -> None:
        server = self._servers.get(server_id)
        if server is not None:
            server.auto_disabled = True
        self._invalidate(f"server-auto-disabled:{server_id}")

    def _invalidate(self, reason: str) -> None:
        for cache in self._caches:
            cache.invalidate(reason)
