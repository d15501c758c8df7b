"""In-process tool server: plain Python callables exposed through the client protocol."""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from toolrelay.core.errors import ServerConnectionError, ToolNotFoundError, ToolTimeoutError
from toolrelay.core.models import ToolDefinition, ToolExecutionResult

ToolHandler = Callable[..., Union[Any, Awaitable[Any]]]


@dataclass(slots=True)
class _LocalTool:
    definition: ToolDefinition
    handler: ToolHandler


class LocalToolClient:
    """Client backed by registered Python callables.

    Handlers receive the tool arguments as keyword arguments. String results
    are returned as ``text`` content, everything else as ``json``.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._tools: Dict[str, _LocalTool] = {}
        self.connected = False

    def add_tool(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        input_schema: Optional[Dict[str, Any]] = None,
    ) -> None:
        schema = input_schema or {"type": "object", "properties": {}}
        self._tools[name] = _LocalTool(ToolDefinition(name, description, schema), handler)

    def tool(self, name: Optional[str] = None, **kwargs: Any) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`add_tool`."""

        def decorator(func: ToolHandler) -> ToolHandler:
            self.add_tool(
                name or func.__name__,
                func,
                description=kwargs.get("description") or (func.__doc__ or "").strip(),
                input_schema=kwargs.get("input_schema"),
            )
            return func

        return decorator

    def open_connection(self) -> LocalToolClient:
        """New unconnected client over the same tool table."""
        client = LocalToolClient(self.name)
        client._tools = self._tools
        return client

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def list_tools(self) -> List[ToolDefinition]:
        return [entry.definition for entry in self._tools.values()]

    async def call_tool(
        self, name: str, arguments: Dict[str, Any], timeout_ms: float = 30000
    ) -> ToolExecutionResult:
        entry = self._tools.get(name)
        if entry is None:
            raise ToolNotFoundError(name, self.name)

        started = time.perf_counter()
        try:
            content = await asyncio.wait_for(self._invoke(entry.handler, arguments), timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise ToolTimeoutError(timeout_ms, f"{self.name}.{name}") from exc
        except ConnectionError as exc:
            raise ServerConnectionError(str(exc), {"server": self.name}) from exc

        return ToolExecutionResult(
            content=content,
            content_type="text" if isinstance(content, str) else "json",
            execution_duration=round((time.perf_counter() - started) * 1000, 3),
        )

    @staticmethod
    async def _invoke(handler: ToolHandler, arguments: Dict[str, Any]) -> Any:
        result = handler(**arguments)
        if inspect.isawaitable(result):
            result = await result
        return result
