"""Chat endpoint running a tool-calling conversation against the default model."""
from __future__ import annotations

import asyncio
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from toolrelay.config import config
from toolrelay.core.logger import get_logger
from toolrelay.core.models import Message
from toolrelay.orchestration.coordinator import ToolCallingCoordinator
from toolrelay.providers.base import ProviderAdapter
from toolrelay.runtime import get_coordinator, get_default_adapter, get_executor
from toolrelay.services.executor import ToolExecutor

logger = get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str = Field(..., description="User message to answer")
    history: List[ChatMessage] = Field(default_factory=list, description="Earlier conversation turns")
    document_path: str = Field("", description="Document whose session counter is charged")
    max_turns: Optional[int] = Field(None, ge=1, description="Overrides TOOLRELAY_MAX_TURNS")


class ChatResponse(BaseModel):
    response: str
    tools_called: List[str]
    missing_tools: List[str]
    timed_out: bool = False


@router.post("", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    coordinator: ToolCallingCoordinator = Depends(get_coordinator),
    adapter: Optional[ProviderAdapter] = Depends(get_default_adapter),
    executor: ToolExecutor = Depends(get_executor),
) -> ChatResponse:
    """Answer a message, letting the model call tools along the way."""
    if adapter is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No LLM model configured")

    messages = [Message(role=entry.role, content=entry.content) for entry in request.history]
    messages.append(Message(role="user", content=request.message))
    tools_called: List[str] = []
    missing_tools: List[str] = []
    parts: List[str] = []

    async def converse() -> None:
        async for text in coordinator.generate_with_tools(
            messages,
            adapter,
            executor,
            max_turns=request.max_turns or config.max_turns,
            document_path=request.document_path,
            on_tool_call=tools_called.append,
            on_missing_server=missing_tools.append,
        ):
            parts.append(text)

    try:
        await asyncio.wait_for(converse(), timeout=config.chat_timeout_s)
    except asyncio.TimeoutError:
        logger.warning("Chat conversation timed out after %.0fs", config.chat_timeout_s)
        return ChatResponse(
            response="".join(parts),
            tools_called=tools_called,
            missing_tools=missing_tools,
            timed_out=True,
        )

    return ChatResponse(response="".join(parts), tools_called=tools_called, missing_tools=missing_tools)
