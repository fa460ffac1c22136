from __future__ import annotations

import json

import httpx
import pytest

from axon_agent.errors import ToolExecutionError, ToolTimeoutError
from axon_agent.search import TAVILY_SEARCH_URL, SearchClient


def test_search_without_key_returns_labelled_simulation() -> None:
    res = SearchClient(api_key=None).search("weather in Paris")
    d = res.to_dict()
    assert d["simulated"] is True
    assert d["results"][0]["title"] == "Search results for: weather in Paris"
    assert d["results"][0]["url"] == "https://example.com"
    assert "SIMULATED" in res.format_for_model()


def test_search_posts_tavily_request_and_parses_results() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == TAVILY_SEARCH_URL
        seen.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "answer": "It is 18C and sunny in Paris.",
                "results": [
                    {"title": "Paris forecast", "url": "https://weather.example/paris", "content": "Sunny", "score": 0.97},
                    {"title": "no url"},
                ],
            },
        )

    client = SearchClient(api_key="tvly-test", transport=httpx.MockTransport(handler))
    res = client.search("  today's weather in Paris ")
    assert seen[0]["api_key"] == "tvly-test"
    assert seen[0]["query"] == "today's weather in Paris"
    assert seen[0]["include_answer"] is True
    assert seen[0]["max_results"] == 5
    assert res.answer == "It is 18C and sunny in Paris."
    assert [h.url for h in res.results] == ["https://weather.example/paris"]
    text = res.format_for_model()
    assert text.startswith("Answer: It is 18C")
    assert "1. Paris forecast (https://weather.example/paris)" in text


def test_search_upstream_error_raises_tool_error() -> None:
    client = SearchClient(api_key="k", transport=httpx.MockTransport(lambda r: httpx.Response(500, text="down")))
    with pytest.raises(ToolExecutionError) as ei:
        client.search("x")
    assert "500" in ei.value.reason


def test_search_timeout_raises_timeout_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client = SearchClient(api_key="k", timeout_s=3, transport=httpx.MockTransport(handler))
    with pytest.raises(ToolTimeoutError) as ei:
        client.search("x")
    assert ei.value.reason == "timed out after 3s"


def test_search_rejects_empty_query() -> None:
    with pytest.raises(ValueError):
        SearchClient(api_key=None).search("  ")
