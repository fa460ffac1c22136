"""axon_agent.search

Web search backend (Tavily search API over httpx).

Without a credential the client returns a clearly labelled simulated result so
the rest of the system keeps working during development. Real failures raise
`ToolExecutionError`; deciding on a fallback is the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .errors import ToolExecutionError, ToolTimeoutError

JsonDict = dict[str, Any]

_LOG = logging.getLogger("axon_agent.search")

TAVILY_SEARCH_URL = "https://api.tavily.com/search"


@dataclass(frozen=True)
class SearchHit:
    title: str
    url: str
    content: str = ""
    score: float = 0.0

    def to_dict(self) -> JsonDict:
        return {"title": self.title, "url": self.url, "content": self.content, "score": self.score}


@dataclass(frozen=True)
class SearchResult:
    query: str
    answer: Optional[str]
    results: tuple[SearchHit, ...]
    simulated: bool = False

    def to_dict(self) -> JsonDict:
        d: JsonDict = {
            "query": self.query,
            "answer": self.answer,
            "results": [h.to_dict() for h in self.results],
        }
        if self.simulated:
            d["simulated"] = True
        return d

    def format_for_model(self, *, max_sources: int = 5, max_chars_per_source: int = 400) -> str:
        lines: list[str] = []
        if self.simulated:
            lines.append("[SIMULATED RESULTS - search API key not configured]")
        if self.answer:
            lines.append(f"Answer: {self.answer}")
        if self.results:
            lines.append("Top sources:")
            for i, h in enumerate(self.results[:max_sources], start=1):
                snippet = h.content.strip().replace("\n", " ")
                if len(snippet) > max_chars_per_source:
                    snippet = snippet[:max_chars_per_source].rstrip() + "..."
                lines.append(f"{i}. {h.title} ({h.url})")
                if snippet:
                    lines.append(f"   {snippet}")
        if not lines:
            lines.append(f'No results found for "{self.query}".')
        return "\n".join(lines)


def simulated_result(query: str) -> SearchResult:
    return SearchResult(
        query=query,
        answer=f'Based on available information about "{query}"...',
        results=(
            SearchHit(
                title=f"Search results for: {query}",
                url="https://example.com",
                content=(
                    f'Found relevant information about "{query}". '
                    "This is simulated data - configure TAVILY_API_KEY for real results."
                ),
                score=0.9,
            ),
        ),
        simulated=True,
    )


def _parse_hits(raw: Any) -> tuple[SearchHit, ...]:
    if not isinstance(raw, list):
        return ()
    hits: list[SearchHit] = []
    for r in raw:
        if not isinstance(r, dict):
            continue
        url = r.get("url")
        if not isinstance(url, str) or not url:
            continue
        try:
            score = float(r.get("score") or 0.0)
        except (TypeError, ValueError):
            score = 0.0
        hits.append(
            SearchHit(
                title=str(r.get("title") or url),
                url=url,
                content=str(r.get("content") or ""),
                score=score,
            )
        )
    return tuple(hits)


class SearchClient:
    def __init__(
        self,
        *,
        api_key: Optional[str],
        timeout_s: float = 20.0,
        max_results: int = 5,
        search_depth: str = "basic",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._timeout_s = float(timeout_s)
        self._max_results = int(max_results)
        self._search_depth = search_depth
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def search(self, query: str) -> SearchResult:
        if not isinstance(query, str) or not query.strip():
            raise ValueError("query must be a non-empty string")
        query = query.strip()

        if not self._api_key:
            _LOG.warning("search_simulated reason=missing_api_key query=%s", query)
            return simulated_result(query)

        body = {
            "api_key": self._api_key,
            "query": query,
            "search_depth": self._search_depth,
            "include_answer": True,
            "include_raw_content": False,
            "max_results": self._max_results,
        }
        try:
            with httpx.Client(timeout=self._timeout_s, transport=self._transport) as client:
                r = client.post(TAVILY_SEARCH_URL, json=body)
        except httpx.TimeoutException as e:
            raise ToolTimeoutError("web_search", self._timeout_s) from e
        except httpx.HTTPError as e:
            raise ToolExecutionError("web_search", f"{type(e).__name__}: {e}") from e

        if r.status_code != 200:
            _LOG.warning("search_http_error status=%d body=%s", r.status_code, r.text[:300])
            raise ToolExecutionError("web_search", f"search API error: {r.status_code}")

        try:
            data = r.json()
        except ValueError as e:
            raise ToolExecutionError("web_search", "search API returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ToolExecutionError("web_search", "search API returned an unexpected payload")

        answer = data.get("answer")
        result = SearchResult(
            query=query,
            answer=answer if isinstance(answer, str) and answer.strip() else None,
            results=_parse_hits(data.get("results")),
        )
        _LOG.info("search_ok query=%s results=%d", query, len(result.results))
        return result
