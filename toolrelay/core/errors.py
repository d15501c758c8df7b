"""Error taxonomy for tool discovery, execution and server management."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional


class MCPError(Exception):
    """Base error carrying a machine-readable code and details."""

    def __init__(self, message: str, code: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class ServerConnectionError(MCPError):
    """Server unreachable or handshake failed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "CONNECTION_ERROR", details)


class ToolNotFoundError(MCPError):
    def __init__(self, tool_name: str, server_name: str) -> None:
        super().__init__(
            f"Tool '{tool_name}' not found on server '{server_name}'",
            "TOOL_NOT_FOUND",
            {"tool_name": tool_name, "server_name": server_name},
        )


class ValidationError(MCPError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "VALIDATION_ERROR", details)


class ToolTimeoutError(MCPError):
    def __init__(self, timeout_ms: float, operation: str) -> None:
        super().__init__(
            f"Operation '{operation}' timed out after {timeout_ms:g}ms",
            "TIMEOUT_ERROR",
            {"timeout_ms": timeout_ms, "operation": operation},
        )


class ExecutionLimitError(MCPError):
    """Raised when the executor refuses admission.

    ``limit_type`` names the resource that blocked the call: ``stopped``,
    ``concurrent`` or ``session``.
    """

    def __init__(self, limit_type: str, current: int, limit: int, **context: Any) -> None:
        shown_limit = "∞" if limit < 0 else str(limit)
        if limit_type == "stopped":
            message = "Tool execution is stopped"
        else:
            message = f"{limit_type.capitalize()} limit reached: {current}/{shown_limit}"
        super().__init__(
            message,
            "EXECUTION_LIMIT_ERROR",
            {"limit_type": limit_type, "current": current, "limit": limit, **context},
        )
        self.limit_type = limit_type
        self.current = current
        self.limit = limit


class ServerNotAvailableError(MCPError):
    def __init__(self, server_name: str, reason: str) -> None:
        super().__init__(
            f"Server '{server_name}' is not available: {reason}",
            "SERVER_NOT_AVAILABLE",
            {"server_name": server_name, "reason": reason},
        )


class ToolExecutionError(MCPError):
    """Wraps an arbitrary failure with server and tool context."""

    def __init__(self, tool_name: str, server_name: str, original: BaseException) -> None:
        super().__init__(
            f"Tool '{tool_name}' execution failed on server '{server_name}': {original}",
            "TOOL_EXECUTION_ERROR",
            {"tool_name": tool_name, "server_name": server_name, "original_error": str(original)},
        )
        self.original = original


class ToolCancelledError(MCPError):
    def __init__(self, message: str = "Tool execution was cancelled") -> None:
        super().__init__(message, "CANCELLED")


def is_timeout_error(exc: BaseException) -> bool:
    return isinstance(exc, (ToolTimeoutError, asyncio.TimeoutError))


def is_execution_limit_error(exc: BaseException) -> bool:
    return isinstance(exc, ExecutionLimitError)
