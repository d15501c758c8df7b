"""Core data models shared across the tool orchestration components."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Set, Union


class DeploymentType(str, Enum):
    """How a tool server is reached."""

    MANAGED = "managed"
    EXTERNAL = "external"


class ConnectionState(str, Enum):
    """Connection states tracked by the health monitor."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class ExecutionStatus(str, Enum):
    """Outcome recorded for each tool execution."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ToolSource(str, Enum):
    """Who asked for a tool execution."""

    USER_CODEBLOCK = "user-codeblock"
    AI_AUTONOMOUS = "ai-autonomous"


ContentType = Literal["text", "json", "markdown", "image"]
Role = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True)
class ServerDescriptor:
    """Identity and reachability of one tool-providing server."""

    id: str
    name: str
    enabled: bool = True
    deployment_type: DeploymentType = DeploymentType.EXTERNAL
    container_name: Optional[str] = None
    failure_count: int = 0
    auto_disabled: bool = False


@dataclass(slots=True)
class ToolDefinition:
    """Tool published by a server; input_schema is a JSON Schema object."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ToolServerInfo:
    """Pointer from a tool name back to the server that owns it."""

    id: str
    name: str


@dataclass(slots=True)
class ServerTools:
    server_id: str
    server_name: str
    tools: List[ToolDefinition] = field(default_factory=list)


@dataclass(slots=True)
class ToolDiscoverySnapshot:
    """Tool index over every enabled server.

    ``mapping`` is derived from ``servers`` with first-server-wins on name
    collisions, so it only depends on server iteration order.
    """

    mapping: Dict[str, ToolServerInfo] = field(default_factory=dict)
    servers: List[ServerTools] = field(default_factory=list)

    def copy(self) -> ToolDiscoverySnapshot:
        return ToolDiscoverySnapshot(
            mapping=dict(self.mapping),
            servers=[
                ServerTools(
                    server_id=server.server_id,
                    server_name=server.server_name,
                    tools=[
                        ToolDefinition(
                            name=tool.name,
                            description=tool.description,
                            input_schema=tool.input_schema,
                        )
                        for tool in server.tools
                    ],
                )
                for server in self.servers
            ],
        )


@dataclass(slots=True)
class ToolDiscoveryMetrics:
    requests: int = 0
    hits: int = 0
    misses: int = 0
    batched: int = 0
    invalidations: int = 0
    in_flight: bool = False
    last_updated_at: Optional[float] = None
    last_build_duration_ms: Optional[float] = None
    last_server_count: int = 0
    last_tool_count: int = 0
    last_error: Optional[str] = None
    last_invalidation_at: Optional[float] = None
    last_invalidation_reason: Optional[str] = None


@dataclass(slots=True)
class ExecutionHistoryEntry:
    """Record of one execution, finalized exactly once."""

    request_id: str
    server_id: str
    server_name: str
    tool_name: str
    timestamp: float
    duration: float = 0.0
    status: ExecutionStatus = ExecutionStatus.PENDING
    error_message: Optional[str] = None


@dataclass(slots=True)
class ExecutionTracker:
    """Counters guarded by the tool executor.

    ``session_limit == -1`` disables the session cap.
    """

    concurrent_limit: int = 3
    session_limit: int = 25
    active_executions: Set[str] = field(default_factory=set)
    total_executed: int = 0
    stopped: bool = False
    execution_history: List[ExecutionHistoryEntry] = field(default_factory=list)


@dataclass(slots=True)
class DocumentSessionState:
    document_path: str
    total_session_count: int = 0
    last_accessed: float = 0.0


@dataclass(slots=True)
class ToolExecutionRequest:
    """Execution request; ``signal`` is set to cancel the call."""

    server_id: str
    tool_name: str
    parameters: Dict[str, Any]
    source: ToolSource = ToolSource.USER_CODEBLOCK
    document_path: str = ""
    section_line: Optional[int] = None
    signal: Optional[asyncio.Event] = None


@dataclass(slots=True)
class ToolExecutionResult:
    content: Any
    content_type: ContentType = "text"
    execution_duration: float = 0.0
    tokens_used: Optional[int] = None


@dataclass(slots=True)
class ToolExecutionResultWithId(ToolExecutionResult):
    request_id: str = ""


@dataclass(slots=True)
class RetryState:
    is_retrying: bool = False
    current_attempt: int = 0
    next_retry_at: Optional[float] = None
    backoff_intervals: List[float] = field(default_factory=lambda: [1000.0, 5000.0, 15000.0])


@dataclass(slots=True)
class ServerHealthStatus:
    """Health record kept per server by the health monitor."""

    server_id: str
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_ping_at: Optional[float] = None
    ping_latency: Optional[float] = None
    consecutive_failures: int = 0
    retry_state: RetryState = field(default_factory=RetryState)
    auto_disabled_at: Optional[float] = None


@dataclass(slots=True)
class ToolCall:
    """Vendor-independent tool call produced by a response parser."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TextChunk:
    content: str
    type: Literal["text"] = "text"


@dataclass(slots=True)
class ToolCallChunk:
    id: str
    name: Optional[str] = None
    arguments: Optional[str] = None
    index: Optional[int] = None
    type: Literal["tool_call"] = "tool_call"


StreamChunk = Union[TextChunk, ToolCallChunk]


@dataclass(slots=True)
class Message:
    """Conversation unit passed between the coordinator and adapters."""

    role: Role
    content: str = ""
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
