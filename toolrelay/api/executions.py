"""HTTP API for direct tool execution and executor controls."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from toolrelay.api.errors import to_http_exception
from toolrelay.core.errors import MCPError
from toolrelay.core.models import ExecutionHistoryEntry, ToolExecutionRequest, ToolSource
from toolrelay.runtime import get_executor
from toolrelay.services.executor import ToolExecutor

router = APIRouter(prefix="/executions", tags=["executions"])


class ExecutionRequest(BaseModel):
    server_id: str = Field(..., description="Server that owns the tool")
    tool_name: str = Field(..., description="Tool to invoke")
    parameters: Dict[str, Any] = Field(default_factory=dict)
    document_path: str = Field("", description="Document whose session counter is charged")
    section_line: Optional[int] = None


class ExecutionResponse(BaseModel):
    request_id: str
    content: Any
    content_type: str
    execution_duration: float
    tokens_used: Optional[int] = None


class DocumentSessionResponse(BaseModel):
    document_path: str
    total_session_count: int
    last_accessed: float


class StatsResponse(BaseModel):
    active_executions: int
    total_executed: int
    session_limit: int
    concurrent_limit: int
    stopped: bool
    current_document_path: Optional[str]
    document_sessions: List[DocumentSessionResponse]


class HistoryEntryResponse(BaseModel):
    request_id: str
    server_id: str
    server_name: str
    tool_name: str
    timestamp: float
    duration: float
    status: str
    error_message: Optional[str]

    @classmethod
    def from_entry(cls, entry: ExecutionHistoryEntry) -> "HistoryEntryResponse":
        return cls(
            request_id=entry.request_id,
            server_id=entry.server_id,
            server_name=entry.server_name,
            tool_name=entry.tool_name,
            timestamp=entry.timestamp,
            duration=entry.duration,
            status=entry.status.value,
            error_message=entry.error_message,
        )


class LimitsRequest(BaseModel):
    concurrent_limit: Optional[int] = Field(None, gt=0)
    session_limit: Optional[int] = Field(None, ge=-1)


@router.post("", response_model=ExecutionResponse)
async def execute_tool(
    request: ExecutionRequest,
    executor: ToolExecutor = Depends(get_executor),
) -> ExecutionResponse:
    try:
        result = await executor.execute_tool_with_id(
            ToolExecutionRequest(
                server_id=request.server_id,
                tool_name=request.tool_name,
                parameters=request.parameters,
                source=ToolSource.USER_CODEBLOCK,
                document_path=request.document_path,
                section_line=request.section_line,
            )
        )
    except MCPError as exc:
        raise to_http_exception(exc) from exc
    return ExecutionResponse(
        request_id=result.request_id,
        content=result.content,
        content_type=result.content_type,
        execution_duration=result.execution_duration,
        tokens_used=result.tokens_used,
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(executor: ToolExecutor = Depends(get_executor)) -> StatsResponse:
    stats = executor.get_stats()
    stats["document_sessions"] = [asdict(state) for state in stats["document_sessions"]]
    return StatsResponse(**stats)


@router.get("/history", response_model=List[HistoryEntryResponse])
async def get_history(executor: ToolExecutor = Depends(get_executor)) -> List[HistoryEntryResponse]:
    return [HistoryEntryResponse.from_entry(entry) for entry in executor.get_history()]


@router.put("/limits", response_model=StatsResponse)
async def update_limits(
    request: LimitsRequest,
    executor: ToolExecutor = Depends(get_executor),
) -> StatsResponse:
    executor.update_limits(
        concurrent_limit=request.concurrent_limit, session_limit=request.session_limit
    )
    return await get_stats(executor)


@router.post("/stop", status_code=status.HTTP_204_NO_CONTENT)
async def stop_executions(executor: ToolExecutor = Depends(get_executor)) -> None:
    executor.stop()


@router.post("/reset", status_code=status.HTTP_204_NO_CONTENT)
async def reset_executions(executor: ToolExecutor = Depends(get_executor)) -> None:
    executor.reset()


@router.post("/{request_id}/cancel", status_code=status.HTTP_202_ACCEPTED)
async def cancel_execution(request_id: str, executor: ToolExecutor = Depends(get_executor)) -> None:
    await executor.cancel_execution(request_id)
