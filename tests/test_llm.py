from __future__ import annotations

import json

import pytest

from axon_agent.llm import (
    FakeResponsesClient,
    LLMParseError,
    drop_unsupported_param_from_error,
    normalize_response,
    sanitize_input_items,
)


class _Obj:
    def __init__(self, **kw: object) -> None:
        self.__dict__.update(kw)


def test_normalize_function_calls_in_order() -> None:
    resp = {
        "output": [
            {"type": "function_call", "call_id": "c1", "name": "create_plan", "arguments": '{"steps": []}'},
            {"type": "function_call", "call_id": "c2", "name": "web_search", "arguments": '{"query": "x"}'},
        ],
        "output_text": "",
    }
    out = normalize_response(resp)
    assert [c.id for c in out.tool_calls] == ["c1", "c2"]
    assert out.tool_calls[1].args == {"query": "x"}
    assert out.text == ""
    assert not out.is_final


def test_normalize_text_and_grounding_from_sdk_like_objects() -> None:
    msg = _Obj(
        type="message",
        content=[
            _Obj(
                type="output_text",
                text="Paris is sunny.",
                annotations=[
                    _Obj(type="url_citation", url="https://weather.example/paris", title="Paris weather"),
                    _Obj(type="url_citation", url="https://weather.example/paris", title="dup"),
                ],
            )
        ],
    )
    out = normalize_response(_Obj(output=[msg], output_text=None))
    assert out.text == "Paris is sunny."
    assert out.is_final
    assert out.grounding_metadata is not None
    assert out.grounding_metadata.to_dict() == {
        "grounding_chunks": [{"web": {"uri": "https://weather.example/paris", "title": "Paris weather"}}]
    }


def test_normalize_rejects_missing_output() -> None:
    with pytest.raises(LLMParseError):
        normalize_response({"output_text": "hi"})


def test_normalize_rejects_call_without_id() -> None:
    with pytest.raises(LLMParseError):
        normalize_response({"output": [{"type": "function_call", "name": "web_search", "arguments": "{}"}]})


def test_sanitize_drops_reasoning_and_status() -> None:
    items = [
        {"type": "reasoning", "id": "r1"},
        {"type": "function_call", "call_id": "c1", "name": "x", "arguments": "{}", "status": "completed"},
    ]
    out = sanitize_input_items(items)
    assert out == [{"type": "function_call", "call_id": "c1", "name": "x", "arguments": "{}"}]


def test_sanitize_strips_nested_reasoning_references() -> None:
    items = [
        {"type": "reasoning", "id": "rs_1", "summary": []},
        {
            "type": "message",
            "role": "assistant",
            "reasoning_id": "rs_1",
            "content": [{"type": "output_text", "text": "hi", "reasoning": {"id": "rs_1"}}],
        },
    ]
    out = sanitize_input_items(items)
    assert out == [
        {"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "hi"}]}
    ]
    assert items[1]["reasoning_id"] == "rs_1"


def test_drop_unsupported_param_from_error_body() -> None:
    class _E(Exception):
        body = {"error": {"message": "Unsupported parameter: 'temperature'", "param": "temperature"}}

    kw = {"temperature": 0.2, "max_output_tokens": 10}
    assert drop_unsupported_param_from_error(_E(), kw) == "temperature"
    assert kw == {"max_output_tokens": 10}


def test_drop_unsupported_param_ignores_other_errors() -> None:
    kw = {"temperature": 0.2}
    assert drop_unsupported_param_from_error(RuntimeError("rate limited"), kw) is None
    assert kw == {"temperature": 0.2}


def _user(text: str) -> dict:
    return {"role": "user", "content": [{"type": "input_text", "text": text}]}


def test_fake_client_search_script_then_answer() -> None:
    fake = FakeResponsesClient()
    history = [_user("search for today's weather in Paris")]
    names: list[str] = []
    for _ in range(10):
        resp = fake.responses_create(model="x", input=history)
        calls = [it for it in resp["output"] if it["type"] == "function_call"]
        if not calls:
            break
        names.append(calls[0]["name"])
        history.append(calls[0])
        payload = {"results": "Answer: 18C and sunny"} if calls[0]["name"] == "web_search" else {"status": "updated"}
        history.append({"type": "function_call_output", "call_id": calls[0]["call_id"], "output": json.dumps(payload)})
    assert names == ["create_plan", "update_status", "web_search", "update_status"]
    assert "18C and sunny" in resp["output_text"]


def test_fake_client_without_script_echoes() -> None:
    resp = FakeResponsesClient().responses_create(model="x", input=[_user("hi there")])
    assert "FAKE MODE" in resp["output_text"]
