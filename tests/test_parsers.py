"""Tests for the vendor streaming parsers."""
from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List, Optional

from toolrelay.core.models import TextChunk, ToolCallChunk
from toolrelay.providers.parsers import (
    ClaudeToolResponseParser,
    OllamaToolResponseParser,
    OpenAIToolResponseParser,
    parse_arguments,
)


def openai_chunk(
    content: Optional[str] = None,
    tool_calls: Optional[List[Dict[str, Any]]] = None,
    finish_reason: Optional[str] = None,
) -> Dict[str, Any]:
    delta: Dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    return {"choices": [{"delta": delta, "finish_reason": finish_reason}]}


def fragment(index: int, arguments: str, call_id: Optional[str] = None, name: Optional[str] = None) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"index": index, "function": {"arguments": arguments}}
    if call_id is not None:
        entry["id"] = call_id
        entry["type"] = "function"
    if name is not None:
        entry["function"]["name"] = name
    return entry


def test_openai_arguments_split_across_six_chunks() -> None:
    parser = OpenAIToolResponseParser()
    pieces = ['{"loca', 'tion":"San ', 'Francisco, CA"', ',"unit":"fa', 'hrenheit"}']
    chunks = [openai_chunk(tool_calls=[fragment(0, "", call_id="call_1", name="get_weather")])]
    chunks += [openai_chunk(tool_calls=[fragment(0, piece)]) for piece in pieces[:-1]]
    chunks.append(openai_chunk(tool_calls=[fragment(0, pieces[-1])], finish_reason="tool_calls"))
    assert len(chunks) == 6

    for chunk in chunks[:-1]:
        parser.parse_chunk(chunk)
        assert not parser.has_complete_tool_calls()
    parser.parse_chunk(chunks[-1])

    calls = parser.get_tool_calls()
    assert len(calls) == 1
    assert calls[0].id == "call_1"
    assert calls[0].name == "get_weather"
    assert calls[0].arguments == {"location": "San Francisco, CA", "unit": "fahrenheit"}


def test_openai_parallel_calls_tracked_by_index() -> None:
    parser = OpenAIToolResponseParser()
    parser.parse_chunk(
        openai_chunk(
            tool_calls=[
                fragment(0, '{"q":', call_id="call_a", name="search"),
                fragment(1, '{"url":', call_id="call_b", name="fetch"),
            ]
        )
    )
    parser.parse_chunk(openai_chunk(tool_calls=[fragment(1, '"https://x"}'), fragment(0, '"docs"}')]))
    parser.parse_chunk(openai_chunk(finish_reason="tool_calls"))

    calls = parser.get_tool_calls()
    assert [(call.id, call.name, call.arguments) for call in calls] == [
        ("call_a", "search", {"q": "docs"}),
        ("call_b", "fetch", {"url": "https://x"}),
    ]


def test_openai_text_and_progress_chunks() -> None:
    parser = OpenAIToolResponseParser()

    text = parser.parse_chunk(openai_chunk(content="Hello"))
    progress = parser.parse_chunk(openai_chunk(tool_calls=[fragment(0, "", call_id="call_1", name="search")]))
    empty = parser.parse_chunk({"choices": []})

    assert text == TextChunk(content="Hello")
    assert isinstance(progress, ToolCallChunk)
    assert progress.name == "search"
    assert empty is None


def test_openai_accepts_sdk_objects() -> None:
    parser = OpenAIToolResponseParser()
    function = SimpleNamespace(name="search", arguments='{"q": "x"}')
    entry = SimpleNamespace(index=0, id="call_1", function=function)
    delta = SimpleNamespace(content=None, tool_calls=[entry])
    chunk = SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason="tool_calls")])

    parser.parse_chunk(chunk)

    assert parser.get_tool_calls()[0].arguments == {"q": "x"}


def test_openai_malformed_arguments_become_raw() -> None:
    parser = OpenAIToolResponseParser()
    parser.parse_chunk(openai_chunk(tool_calls=[fragment(0, '{"q": ', call_id="call_1", name="search")]))
    parser.parse_chunk(openai_chunk(finish_reason="tool_calls"))

    assert parser.get_tool_calls()[0].arguments == {"_raw": '{"q": '}


def test_openai_reset_clears_state() -> None:
    parser = OpenAIToolResponseParser()
    parser.parse_chunk(openai_chunk(tool_calls=[fragment(0, "{}", call_id="call_1", name="search")]))
    parser.parse_chunk(openai_chunk(finish_reason="tool_calls"))

    parser.reset()

    assert not parser.has_complete_tool_calls()
    assert parser.get_tool_calls() == []


def test_parse_arguments_edge_cases() -> None:
    assert parse_arguments("", vendor="test") == {}
    assert parse_arguments("[1, 2]", vendor="test") == {"_raw": "[1, 2]"}
    assert parse_arguments('{"a": 1}', vendor="test") == {"a": 1}


def claude_events() -> List[Dict[str, Any]]:
    return [
        {"type": "message_start", "message": {"id": "msg_1"}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Checking "}},
        {
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {}},
        },
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "weather."}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"city": '}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '"Paris"}'}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
        {"type": "message_stop"},
    ]


def test_claude_interleaved_text_and_tool_use() -> None:
    parser = ClaudeToolResponseParser()

    text = []
    for event in claude_events():
        parsed = parser.parse_chunk(event)
        if isinstance(parsed, TextChunk):
            text.append(parsed.content)

    assert "".join(text) == "Checking weather."
    calls = parser.get_tool_calls()
    assert len(calls) == 1
    assert calls[0].id == "toolu_1"
    assert calls[0].arguments == {"city": "Paris"}


def test_claude_malformed_and_empty_input() -> None:
    parser = ClaudeToolResponseParser()
    events = [
        {"type": "content_block_start", "index": 0, "content_block": {"type": "tool_use", "id": "t1", "name": "a"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": "{bad"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "id": "t2", "name": "b"}},
        {"type": "content_block_stop", "index": 1},
    ]
    for event in events:
        parser.parse_chunk(event)

    calls = parser.get_tool_calls()
    assert calls[0].arguments == {"_raw": "{bad"}
    assert calls[1].arguments == {}


def test_ollama_complete_calls_are_normalized() -> None:
    parser = OllamaToolResponseParser()
    chunk = {
        "message": {
            "role": "assistant",
            "content": "",
            "tool_calls": [
                {
                    "function": {
                        "name": "set_alarm",
                        "arguments": {
                            "enabled": "true",
                            "hour": "7",
                            "snooze": "1.5",
                            "label": "null",
                            "days": ["1", "weekday"],
                            "options": {"loud": "false"},
                        },
                    }
                }
            ],
        },
        "done": False,
    }

    assert parser.parse_chunk(chunk) is None
    call = parser.get_tool_calls()[0]
    assert call.id.startswith("ollama_")
    assert call.arguments == {
        "enabled": True,
        "hour": 7,
        "snooze": 1.5,
        "label": None,
        "days": [1, "weekday"],
        "options": {"loud": False},
    }


def test_ollama_string_arguments_and_text() -> None:
    parser = OllamaToolResponseParser()

    text = parser.parse_chunk({"message": {"content": "Sure."}})
    parser.parse_chunk(
        {"message": {"tool_calls": [{"id": "c1", "function": {"name": "search", "arguments": '{"q": "x"}'}}]}}
    )

    assert text == TextChunk(content="Sure.")
    assert parser.get_tool_calls()[0].id == "c1"
    assert parser.get_tool_calls()[0].arguments == {"q": "x"}
    parser.reset()
    assert not parser.has_complete_tool_calls()


def test_ollama_non_object_arguments_keep_raw_text() -> None:
    parser = OllamaToolResponseParser()
    parser.parse_chunk(
        {
            "message": {
                "tool_calls": [
                    {"function": {"name": "a", "arguments": "12"}},
                    {"function": {"name": "b", "arguments": "{oops"}},
                    {"function": {"name": "c", "arguments": [1, 2]}},
                ]
            }
        }
    )

    calls = parser.get_tool_calls()
    assert calls[0].arguments == {"_raw": "12"}
    assert calls[1].arguments == {"_raw": "{oops"}
    assert calls[2].arguments == {"_raw": "[1, 2]"}
