"""Application runtime composition helpers."""
from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from toolrelay.config import config
from toolrelay.core.models import ExecutionTracker, ServerDescriptor
from toolrelay.orchestration.coordinator import ToolCallingCoordinator, create_tool_calling_coordinator
from toolrelay.providers.openai_adapter import OpenAIProviderAdapter
from toolrelay.services.discovery import ToolDiscoveryCache
from toolrelay.services.executor import ToolExecutor
from toolrelay.services.health import HealthMonitor
from toolrelay.services.llm_pool import LLMPool
from toolrelay.services.local import LocalToolClient
from toolrelay.services.registry import MCPRegistry

BUILTIN_SERVER_ID = "builtin"


def build_builtin_client() -> LocalToolClient:
    client = LocalToolClient("Builtin")

    @client.tool(
        description="Echo the given text back",
        input_schema={
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    )
    def echo(text: str) -> str:
        return text

    @client.tool(description="Current UTC time in ISO 8601 format")
    def current_time() -> str:
        return datetime.now(timezone.utc).isoformat()

    return client


@lru_cache
def get_mcp_registry() -> MCPRegistry:
    registry = MCPRegistry()
    client = build_builtin_client()
    registry.register(
        ServerDescriptor(id=BUILTIN_SERVER_ID, name="Builtin"), client, connector=client.open_connection
    )
    return registry


@lru_cache
def get_discovery_cache() -> ToolDiscoveryCache:
    registry = get_mcp_registry()
    cache = ToolDiscoveryCache(registry)
    registry.attach_cache(cache)
    return cache


@lru_cache
def get_executor() -> ToolExecutor:
    tracker = ExecutionTracker(
        concurrent_limit=config.executor.concurrent_limit,
        session_limit=config.executor.session_limit,
    )
    return ToolExecutor(get_mcp_registry(), tracker, timeout_ms=config.executor.timeout_ms)


@lru_cache
def get_health_monitor() -> HealthMonitor:
    registry = get_mcp_registry()
    monitor = HealthMonitor(
        client_factory=registry.create_probe_client,
        check_interval_s=config.health.check_interval_s,
        backoff_intervals_ms=config.health.backoff_intervals_ms,
        on_auto_disabled=registry.notify_auto_disabled,
    )
    registry.attach_monitor(monitor)
    return monitor


@lru_cache
def get_llm_pool() -> LLMPool:
    pool = LLMPool()

    if config.openai:
        pool.register_openai(config.openai.model, config.openai)

    if config.azure_openai:
        pool.register_azure_openai(config.azure_openai.deployment_name, config.azure_openai)

    return pool


@lru_cache
def get_coordinator() -> ToolCallingCoordinator:
    return create_tool_calling_coordinator()


@lru_cache
def get_default_adapter() -> Optional[OpenAIProviderAdapter]:
    """OpenAI-family adapter for the first configured model, if any."""
    pool = get_llm_pool()
    models = pool.models()
    if not models:
        return None
    return OpenAIProviderAdapter(pool, get_discovery_cache(), model=models[0])
