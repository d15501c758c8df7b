"""Streaming response parsers that normalize vendor tool calls into ToolCall values.

Each vendor streams tool calls differently:

* OpenAI sends ``tool_calls`` deltas addressed by a numeric ``index`` whose
  ``arguments`` JSON is split across chunks; ``finish_reason`` ends the turn.
* Claude opens a ``tool_use`` content block, streams ``input_json_delta``
  fragments into it, and closes it with ``content_block_stop``.
* Ollama sends complete calls with object arguments in a single chunk.

Chunks may be SDK objects or plain dicts.
"""
from __future__ import annotations

import abc
import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from toolrelay.core.logger import get_logger
from toolrelay.core.models import StreamChunk, TextChunk, ToolCall, ToolCallChunk


logger = get_logger(__name__)

_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def parse_arguments(raw: str, *, vendor: str) -> Dict[str, Any]:
    """Parse accumulated argument JSON, degrading to ``{"_raw": raw}``."""
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse %s tool call arguments %r: %s", vendor, raw, exc)
        return {"_raw": raw}
    if not isinstance(parsed, dict):
        logger.warning("%s tool call arguments are not an object: %r", vendor, raw)
        return {"_raw": raw}
    return parsed


class ToolResponseParser(abc.ABC):
    """Accumulates one turn of a vendor stream."""

    @abc.abstractmethod
    def parse_chunk(self, chunk: Any) -> Optional[StreamChunk]:
        """Return text, tool-call progress, or None for bookkeeping chunks."""

    @abc.abstractmethod
    def has_complete_tool_calls(self) -> bool:
        ...

    @abc.abstractmethod
    def get_tool_calls(self) -> List[ToolCall]:
        ...

    @abc.abstractmethod
    def reset(self) -> None:
        ...


@dataclass(slots=True)
class _PendingCall:
    id: str
    name: str = ""
    arguments: str = ""


class OpenAIToolResponseParser(ToolResponseParser):
    def __init__(self) -> None:
        self._pending: Dict[int, _PendingCall] = {}
        self._finished: List[ToolCall] = []

    def parse_chunk(self, chunk: Any) -> Optional[StreamChunk]:
        choices = _field(chunk, "choices") or []
        if not choices:
            return None
        choice = choices[0]
        delta = _field(choice, "delta")
        result: Optional[StreamChunk] = None

        content = _field(delta, "content")
        if content is not None and content != "":
            result = TextChunk(content=content)

        for entry in _field(delta, "tool_calls") or []:
            progress = self._accumulate(entry)
            if progress is not None and result is None:
                result = progress

        if _field(choice, "finish_reason") in ("tool_calls", "stop"):
            self._finalize()

        return result

    def _accumulate(self, entry: Any) -> Optional[ToolCallChunk]:
        index = _field(entry, "index", 0)
        call_id = _field(entry, "id")
        function = _field(entry, "function")
        name = _field(function, "name")
        arguments = _field(function, "arguments")

        pending = self._pending.get(index)
        if pending is None:
            if not call_id:
                # Fragments before the id arrives cannot be attributed.
                return None
            pending = _PendingCall(id=call_id)
            self._pending[index] = pending

        if name:
            pending.name = name
        if arguments:
            pending.arguments += arguments

        return ToolCallChunk(id=pending.id, name=name, arguments=arguments, index=index)

    def _finalize(self) -> None:
        for index in sorted(self._pending):
            pending = self._pending[index]
            if not pending.name:
                continue
            self._finished.append(
                ToolCall(
                    id=pending.id,
                    name=pending.name,
                    arguments=parse_arguments(pending.arguments, vendor="OpenAI"),
                )
            )
        self._pending.clear()

    def has_complete_tool_calls(self) -> bool:
        return bool(self._finished)

    def get_tool_calls(self) -> List[ToolCall]:
        return list(self._finished)

    def reset(self) -> None:
        self._pending.clear()
        self._finished = []


class ClaudeToolResponseParser(ToolResponseParser):
    def __init__(self) -> None:
        self._pending: Dict[int, _PendingCall] = {}
        self._finished: List[ToolCall] = []

    def parse_chunk(self, chunk: Any) -> Optional[StreamChunk]:
        event_type = _field(chunk, "type")
        index = _field(chunk, "index", 0)

        if event_type == "content_block_start":
            block = _field(chunk, "content_block")
            block_type = _field(block, "type")
            if block_type == "tool_use":
                call_id, name = _field(block, "id"), _field(block, "name")
                self._pending[index] = _PendingCall(id=call_id, name=name)
                return ToolCallChunk(id=call_id, name=name, index=index)
            if block_type == "text":
                text = _field(block, "text") or ""
                return TextChunk(content=text) if text else None
            return None

        if event_type == "content_block_delta":
            delta = _field(chunk, "delta")
            delta_type = _field(delta, "type")
            if delta_type == "text_delta":
                return TextChunk(content=_field(delta, "text") or "")
            if delta_type == "input_json_delta":
                pending = self._pending.get(index)
                fragment = _field(delta, "partial_json") or ""
                if pending is not None:
                    pending.arguments += fragment
                    return ToolCallChunk(id=pending.id, arguments=fragment, index=index)
            return None

        if event_type == "content_block_stop":
            pending = self._pending.pop(index, None)
            if pending is not None:
                self._finished.append(
                    ToolCall(
                        id=pending.id,
                        name=pending.name,
                        arguments=parse_arguments(pending.arguments, vendor="Claude"),
                    )
                )
            return None

        return None

    def has_complete_tool_calls(self) -> bool:
        return bool(self._finished)

    def get_tool_calls(self) -> List[ToolCall]:
        return list(self._finished)

    def reset(self) -> None:
        self._pending.clear()
        self._finished = []


class OllamaToolResponseParser(ToolResponseParser):
    def __init__(self) -> None:
        self._calls: List[ToolCall] = []

    def parse_chunk(self, chunk: Any) -> Optional[StreamChunk]:
        message = _field(chunk, "message")
        content = _field(message, "content")

        for entry in _field(message, "tool_calls") or []:
            function = _field(entry, "function")
            arguments = self._coerce_arguments(_field(function, "arguments"))
            self._calls.append(
                ToolCall(
                    id=_field(entry, "id") or f"ollama_{uuid.uuid4().hex[:12]}",
                    name=_field(function, "name"),
                    arguments=arguments,
                )
            )

        if content:
            return TextChunk(content=content)
        return None

    def has_complete_tool_calls(self) -> bool:
        return bool(self._calls)

    def get_tool_calls(self) -> List[ToolCall]:
        return list(self._calls)

    def reset(self) -> None:
        self._calls = []

    def _coerce_arguments(self, arguments: Any) -> Dict[str, Any]:
        if not arguments:
            return {}
        if isinstance(arguments, dict):
            return self._normalize_arguments(arguments)
        if isinstance(arguments, str):
            parsed = parse_arguments(arguments, vendor="Ollama")
            if parsed == {"_raw": arguments}:
                return parsed
            return self._normalize_arguments(parsed)
        logger.warning("Ollama tool call arguments are not an object: %r", arguments)
        return {"_raw": json.dumps(arguments)}

    def _normalize_arguments(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self._normalize_value(value) for key, value in arguments.items()}

    def _normalize_value(self, value: Any) -> Any:
        # Smaller models often quote scalars; recover JSON types.
        if isinstance(value, str):
            trimmed = value.strip()
            if trimmed == "true":
                return True
            if trimmed == "false":
                return False
            if trimmed == "null":
                return None
            if _NUMBER.match(trimmed):
                return float(trimmed) if "." in trimmed else int(trimmed)
            return value
        if isinstance(value, list):
            return [self._normalize_value(item) for item in value]
        if isinstance(value, dict):
            return self._normalize_arguments(value)
        return value
