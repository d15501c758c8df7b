"""Multi-turn tool-calling loop between a provider adapter and the tool executor."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, List, Optional, Protocol, Tuple

from toolrelay.core.logger import get_logger
from toolrelay.core.models import (
    Message,
    TextChunk,
    ToolCall,
    ToolExecutionRequest,
    ToolExecutionResult,
    ToolServerInfo,
    ToolSource,
)
from toolrelay.orchestration.formatting import format_tool_call_callout, format_tool_result_callout
from toolrelay.providers.base import ProviderAdapter
from toolrelay.services.executor import ToolExecutor


logger = get_logger(__name__)

DEFAULT_MAX_TURNS = 5


class DocumentWriter(Protocol):
    """Sink for the markdown callouts written while tools run."""

    def append(self, markdown: str) -> None:
        ...


class ToolCallingCoordinator:
    """Drive a conversation until the model stops asking for tools.

    Each turn streams one model response, yielding its text as it arrives.
    Tool calls requested in that turn are executed one after another and
    their results are appended to the conversation before the next turn.
    """

    async def generate_with_tools(
        self,
        messages: List[Message],
        adapter: ProviderAdapter,
        executor: ToolExecutor,
        *,
        max_turns: int = DEFAULT_MAX_TURNS,
        document_path: str = "",
        editor: Optional[DocumentWriter] = None,
        on_tool_call: Optional[Callable[[str], None]] = None,
        on_tool_result: Optional[Callable[[str, float], None]] = None,
        on_missing_server: Optional[Callable[[str], None]] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        conversation = list(messages)
        turn = 0

        while turn < max_turns:
            if signal is not None and signal.is_set():
                logger.info("Tool-calling conversation cancelled before turn %d", turn + 1)
                return

            parser = adapter.get_parser()
            parser.reset()
            async for chunk in adapter.send_request(conversation):
                parsed = parser.parse_chunk(chunk)
                if isinstance(parsed, TextChunk) and parsed.content:
                    yield parsed.content

            turn += 1
            if not parser.has_complete_tool_calls():
                logger.debug("Turn %d finished without tool calls", turn)
                return

            tool_calls = parser.get_tool_calls()
            logger.debug("Turn %d requested tools: %s", turn, [call.name for call in tool_calls])
            dispatchable = self._resolve_servers(tool_calls, adapter, on_missing_server)
            # Every call in the assistant message must be answered by a tool message.
            if dispatchable:
                conversation.append(
                    Message(role="assistant", content="", tool_calls=[call for call, _ in dispatchable])
                )

            for call, server in dispatchable:
                if signal is not None and signal.is_set():
                    logger.info("Tool-calling conversation cancelled before %s", call.name)
                    return
                message = await self._run_tool_call(
                    call,
                    server,
                    adapter,
                    executor,
                    document_path=document_path,
                    editor=editor,
                    on_tool_call=on_tool_call,
                    on_tool_result=on_tool_result,
                    signal=signal,
                )
                conversation.append(message)

        logger.info("Tool-calling conversation stopped after %d turns", max_turns)

    @staticmethod
    def _resolve_servers(
        tool_calls: List[ToolCall],
        adapter: ProviderAdapter,
        on_missing_server: Optional[Callable[[str], None]],
    ) -> List[Tuple[ToolCall, ToolServerInfo]]:
        resolved = []
        for call in tool_calls:
            server = adapter.find_server(call.name)
            if server is None:
                logger.warning("No server found for tool %s; skipping call", call.name)
                if on_missing_server is not None:
                    on_missing_server(call.name)
                continue
            resolved.append((call, server))
        return resolved

    async def _run_tool_call(
        self,
        call: ToolCall,
        server: ToolServerInfo,
        adapter: ProviderAdapter,
        executor: ToolExecutor,
        *,
        document_path: str,
        editor: Optional[DocumentWriter],
        on_tool_call: Optional[Callable[[str], None]],
        on_tool_result: Optional[Callable[[str, float], None]],
        signal: Optional[asyncio.Event],
    ) -> Message:
        if on_tool_call is not None:
            on_tool_call(call.name)
        if editor is not None:
            editor.append(format_tool_call_callout(call.name, server, call.arguments))

        try:
            result = await executor.execute_tool(
                ToolExecutionRequest(
                    server_id=server.id,
                    tool_name=call.name,
                    parameters=call.arguments,
                    source=ToolSource.AI_AUTONOMOUS,
                    document_path=document_path,
                    signal=signal,
                )
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Tool %s failed on %s: %s", call.name, server.name, exc)
            result = ToolExecutionResult(content={"error": str(exc)}, content_type="json")

        if on_tool_result is not None:
            on_tool_result(call.name, result.execution_duration)
        if editor is not None:
            editor.append(
                format_tool_result_callout(
                    result, collapsible=True, show_metadata=False, include_timestamp=True
                )
            )
        return adapter.format_tool_result(call.id, result)


def create_tool_calling_coordinator() -> ToolCallingCoordinator:
    return ToolCallingCoordinator()
