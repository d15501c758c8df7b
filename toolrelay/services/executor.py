"""Tool executor: admission limits, per-document sessions, cancellation and history."""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Set, Tuple

from toolrelay.core.errors import (
    ExecutionLimitError,
    ServerNotAvailableError,
    ToolCancelledError,
    is_timeout_error,
)
from toolrelay.core.logger import get_logger
from toolrelay.core.models import (
    DocumentSessionState,
    ExecutionHistoryEntry,
    ExecutionStatus,
    ExecutionTracker,
    ToolExecutionRequest,
    ToolExecutionResult,
    ToolExecutionResultWithId,
)
from toolrelay.services.registry import ServerRegistry


logger = get_logger(__name__)

UNTITLED_DOCUMENT = "__untitled__"

LimitDecision = Literal["continue", "cancel"]
LimitReachedHandler = Callable[[str, int, int], Awaitable[LimitDecision]]
SessionResetHandler = Callable[[str], None]


class ToolExecutor:
    """Gatekeeper for every tool execution.

    Admission is checked in order: the manual stop switch, the concurrency
    limit, then the per-document session limit. Every admitted execution is
    finalized in a ``finally`` block, so in-flight state cannot leak on
    errors or cancellation.
    """

    def __init__(
        self,
        registry: ServerRegistry,
        tracker: Optional[ExecutionTracker] = None,
        *,
        timeout_ms: float = 30000,
        max_history: int = 500,
        on_limit_reached: Optional[LimitReachedHandler] = None,
        on_session_reset: Optional[SessionResetHandler] = None,
    ) -> None:
        self._registry = registry
        self._tracker = tracker or ExecutionTracker()
        self._timeout_ms = timeout_ms
        self._max_history = max_history
        self._on_limit_reached = on_limit_reached
        self._on_session_reset = on_session_reset
        self._controllers: Dict[str, asyncio.Event] = {}
        self._document_sessions: Dict[str, DocumentSessionState] = {}
        self._current_document: Optional[str] = None
        self._pending_reset_notice: Set[str] = set()

    @property
    def tracker(self) -> ExecutionTracker:
        return self._tracker

    async def execute_tool(self, request: ToolExecutionRequest) -> ToolExecutionResult:
        """Execute a tool request with all checks and tracking."""
        result, _ = await self._execute(request)
        return result

    async def execute_tool_with_id(self, request: ToolExecutionRequest) -> ToolExecutionResultWithId:
        """Execute a tool request and report the request id used for tracking."""
        result, entry = await self._execute(request)
        return ToolExecutionResultWithId(
            content=result.content,
            content_type=result.content_type,
            execution_duration=result.execution_duration,
            tokens_used=result.tokens_used,
            request_id=entry.request_id,
        )

    async def _execute(
        self, request: ToolExecutionRequest
    ) -> Tuple[ToolExecutionResult, ExecutionHistoryEntry]:
        document_path = self._normalize_path(request.document_path)
        self._set_current_document(document_path)

        violation = self._check_admission(document_path)
        if violation is not None and violation.limit_type == "session" and self._on_limit_reached:
            decision = await self._on_limit_reached(
                document_path, self._tracker.session_limit, violation.current
            )
            if decision == "continue":
                self._reset_document_session(document_path, emit_notice=True)
                self._set_current_document(document_path)
            violation = self._check_admission(document_path)
        if violation is not None:
            raise violation

        # From here until the call is registered there is no await.
        client = self._registry.get_client(request.server_id)
        if client is None:
            raise ServerNotAvailableError(request.server_id, "no connected client")

        entry = self._create_entry(request)
        controller = None if request.signal is not None else asyncio.Event()
        signal = request.signal if request.signal is not None else controller
        self._tracker.active_executions.add(entry.request_id)
        if controller is not None:
            self._controllers[entry.request_id] = controller

        try:
            if signal.is_set():
                raise ToolCancelledError()
            result = await self._call_with_abort(
                client.call_tool(request.tool_name, request.parameters, self._timeout_ms),
                signal,
            )
            entry.duration = self._elapsed_ms(entry)
            entry.status = ExecutionStatus.SUCCESS
            return result, entry
        except asyncio.CancelledError:
            entry.duration = self._elapsed_ms(entry)
            entry.status = ExecutionStatus.CANCELLED
            entry.error_message = "Tool execution was cancelled"
            raise
        except Exception as exc:
            entry.duration = self._elapsed_ms(entry)
            if signal.is_set():
                entry.status = ExecutionStatus.CANCELLED
                entry.error_message = "Tool execution was cancelled"
            else:
                entry.status = ExecutionStatus.TIMEOUT if is_timeout_error(exc) else ExecutionStatus.ERROR
                entry.error_message = str(exc)
                logger.error(
                    "Tool execution failed: %s on %s (source=%s, document=%s, parameters=%s): %s",
                    request.tool_name,
                    entry.server_name,
                    request.source.value if hasattr(request.source, "value") else request.source,
                    document_path,
                    sorted(request.parameters),
                    exc,
                )
            raise
        finally:
            self._tracker.active_executions.discard(entry.request_id)
            self._controllers.pop(entry.request_id, None)
            self._tracker.total_executed = self._increment_session_count(document_path)
            self._tracker.execution_history.append(entry)
            overflow = len(self._tracker.execution_history) - self._max_history
            if overflow > 0:
                del self._tracker.execution_history[:overflow]

    async def _call_with_abort(self, call: Awaitable[ToolExecutionResult], signal: asyncio.Event) -> ToolExecutionResult:
        call_task = asyncio.ensure_future(call)
        abort_task = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait({call_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_task.cancel()
            if not call_task.done():
                call_task.cancel()
        if call_task in done:
            return call_task.result()
        raise ToolCancelledError()

    def can_execute(self, document_path: Optional[str] = None) -> bool:
        """Check if tool execution is currently allowed."""
        path = self._normalize_path(document_path) if document_path is not None else self._current_document
        return self._check_admission(path) is None

    def _check_admission(self, document_path: Optional[str]) -> Optional[ExecutionLimitError]:
        tracker = self._tracker
        if tracker.stopped:
            return ExecutionLimitError("stopped", len(tracker.active_executions), tracker.concurrent_limit)
        if len(tracker.active_executions) >= tracker.concurrent_limit:
            return ExecutionLimitError(
                "concurrent",
                len(tracker.active_executions),
                tracker.concurrent_limit,
                document_path=document_path,
            )
        if tracker.session_limit != -1:
            count = (
                self.get_document_session_count(document_path)
                if document_path
                else tracker.total_executed
            )
            if count >= tracker.session_limit:
                return ExecutionLimitError(
                    "session", count, tracker.session_limit, document_path=document_path
                )
        return None

    def get_stats(self) -> Dict[str, Any]:
        """Current execution statistics."""
        return {
            "active_executions": len(self._tracker.active_executions),
            "total_executed": self._tracker.total_executed,
            "session_limit": self._tracker.session_limit,
            "concurrent_limit": self._tracker.concurrent_limit,
            "stopped": self._tracker.stopped,
            "current_document_path": self._current_document,
            "document_sessions": [replace(state) for state in self._document_sessions.values()],
        }

    def update_limits(
        self, concurrent_limit: Optional[int] = None, session_limit: Optional[int] = None
    ) -> None:
        if concurrent_limit is not None and concurrent_limit > 0:
            self._tracker.concurrent_limit = concurrent_limit
        if session_limit is not None and session_limit >= -1:
            self._tracker.session_limit = session_limit

    def stop(self) -> None:
        """Block all future executions until :meth:`reset`."""
        self._tracker.stopped = True

    def reset(self) -> None:
        """Clear the stop switch, counters, history and document sessions."""
        self._tracker.stopped = False
        self._tracker.total_executed = 0
        self._tracker.execution_history.clear()
        self._document_sessions.clear()
        self._current_document = None
        self._pending_reset_notice.clear()

    def get_history(self) -> List[ExecutionHistoryEntry]:
        return list(self._tracker.execution_history)

    async def cancel_execution(self, request_id: str) -> None:
        """Abort an active execution; unknown or finished ids are ignored."""
        controller = self._controllers.pop(request_id, None)
        if controller is not None:
            controller.set()
            logger.info("Cancelled tool execution %s", request_id)
        self._tracker.active_executions.discard(request_id)

    def switch_document(self, document_path: str) -> None:
        self._set_current_document(self._normalize_path(document_path))

    def clear_document_session(self, document_path: str) -> None:
        """Forget a document's counter entirely, e.g. when the file is deleted."""
        path = self._normalize_path(document_path)
        existed = self._document_sessions.pop(path, None) is not None
        if existed:
            self._pending_reset_notice.add(path)
        if self._current_document == path:
            self._current_document = None
            self._tracker.total_executed = 0

    def reset_session_count(self, document_path: str) -> None:
        self._reset_document_session(self._normalize_path(document_path), emit_notice=True)

    def get_total_session_count(self, document_path: str) -> int:
        return self.get_document_session_count(self._normalize_path(document_path))

    def get_document_session_count(self, document_path: Optional[str]) -> int:
        state = self._document_sessions.get(document_path) if document_path else None
        return state.total_session_count if state else 0

    @staticmethod
    def _normalize_path(document_path: Optional[str]) -> str:
        return document_path if document_path and document_path.strip() else UNTITLED_DOCUMENT

    def _ensure_document_session(self, document_path: str) -> DocumentSessionState:
        state = self._document_sessions.get(document_path)
        if state is None:
            state = DocumentSessionState(document_path=document_path)
            self._document_sessions[document_path] = state
        state.last_accessed = time.time()
        return state

    def _set_current_document(self, document_path: str) -> DocumentSessionState:
        existed = document_path in self._document_sessions
        state = self._ensure_document_session(document_path)
        self._current_document = document_path
        self._tracker.total_executed = state.total_session_count
        if not existed and document_path in self._pending_reset_notice:
            self._pending_reset_notice.discard(document_path)
            self._notify_session_reset(document_path)
        return state

    def _increment_session_count(self, document_path: str) -> int:
        state = self._ensure_document_session(document_path)
        state.total_session_count += 1
        return state.total_session_count

    def _reset_document_session(self, document_path: str, emit_notice: bool = False) -> None:
        state = self._document_sessions.get(document_path)
        if state is not None:
            state.total_session_count = 0
            state.last_accessed = time.time()
        self._pending_reset_notice.discard(document_path)
        if emit_notice:
            self._notify_session_reset(document_path)
        if self._current_document == document_path:
            self._tracker.total_executed = 0

    def _notify_session_reset(self, document_path: str) -> None:
        if self._on_session_reset is not None:
            self._on_session_reset(document_path)

    def _create_entry(self, request: ToolExecutionRequest) -> ExecutionHistoryEntry:
        server_name = next(
            (server.name for server in self._registry.list_servers() if server.id == request.server_id),
            "unknown",
        )
        return ExecutionHistoryEntry(
            request_id=f"exec_{uuid.uuid4().hex[:12]}",
            server_id=request.server_id,
            server_name=server_name,
            tool_name=request.tool_name,
            timestamp=time.time(),
        )

    @staticmethod
    def _elapsed_ms(entry: ExecutionHistoryEntry) -> float:
        return round((time.time() - entry.timestamp) * 1000, 3)
