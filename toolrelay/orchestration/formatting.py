"""Markdown callouts written into the document around tool calls."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from toolrelay.core.models import ServerTools, ToolExecutionResult, ToolServerInfo


def _format_ms(duration: float) -> str:
    return str(int(duration)) if float(duration).is_integer() else str(round(duration, 3))


def _quote(lines: Iterable[str]) -> List[str]:
    return [f"> {line}" for line in lines]


def format_tool_call_callout(tool_name: str, server: ToolServerInfo, arguments: Dict[str, Any]) -> str:
    body = [
        f"Tool: {tool_name}",
        f"Server Name: {server.name}",
        f"Server ID: {server.id}",
        "```json",
        *json.dumps(arguments, indent=2).split("\n"),
        "```",
    ]
    lines = [f"> [!tool]- Tool Call ({server.name}: {tool_name})", *_quote(body)]
    return "\n" + "\n".join(lines) + "\n"


def format_result_content(result: ToolExecutionResult) -> str:
    """Render result content according to its content type."""
    content = result.content

    if result.content_type == "json":
        # A single MCP text item is shown as plain text.
        if (
            isinstance(content, list)
            and len(content) == 1
            and isinstance(content[0], dict)
            and content[0].get("type") == "text"
        ):
            text = str(content[0].get("text", "")).replace("\\n", "\n").strip()
            return f"{text}\n\n"
        return f"```json\n{json.dumps(content, indent=2)}\n```"

    if result.content_type == "markdown":
        return str(content)

    if result.content_type == "image":
        return f"![Tool Result]({content})" if isinstance(content, str) else str(content)

    return f"```text\n{content}\n```"


def format_tool_result_callout(
    result: ToolExecutionResult,
    *,
    collapsible: bool = False,
    show_metadata: bool = True,
    include_timestamp: bool = False,
) -> str:
    duration = _format_ms(result.execution_duration)
    symbol = "-" if collapsible else "+"
    lines = [f"> [!tool]{symbol} Tool Result ({duration}ms)"]

    if show_metadata:
        metadata = [f"Duration: {duration}ms"]
        if result.tokens_used:
            metadata.append(f"Tokens: {result.tokens_used}")
        metadata.append(f"Type: {result.content_type}")
        lines.append(f"> {', '.join(metadata)}")

    if include_timestamp:
        lines.append(f"> Executed: {datetime.now(timezone.utc).isoformat()}")

    lines.extend(_quote(format_result_content(result).split("\n")))
    return "\n" + "\n".join(lines) + "\n"


def _text_or(value: Optional[str], fallback: str) -> str:
    if not value:
        return fallback
    return value.strip() or fallback


def format_utility_section_callout(
    provider: Optional[str],
    model: Optional[str],
    servers: Iterable[Union[ServerTools, Dict[str, Any]]],
) -> str:
    """Summarize the provider, model and offered tools as an ``[!llm]`` callout.

    ``servers`` holds :class:`ServerTools` entries or dicts with
    ``server_name`` and ``tool_names`` keys.
    """
    summaries = []
    for server in servers:
        if isinstance(server, ServerTools):
            name, tool_names = server.server_name, [tool.name for tool in server.tools]
        else:
            name, tool_names = server.get("server_name"), server.get("tool_names") or []
        tools = [tool.strip() for tool in tool_names if tool and tool.strip()]
        summaries.append(f"{_text_or(name, 'Server')}:({', '.join(tools) if tools else 'none'})")

    tools_summary = ", ".join(summaries) if summaries else "none"
    return (
        f"\n> [!llm] {_text_or(provider, 'Unknown')} model: {_text_or(model, 'unknown')}"
        f"\n> Tools: {tools_summary}\n\n"
    )
