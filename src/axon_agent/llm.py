"""axon_agent.llm

Model adapter layer over the OpenAI Responses API.

- `ResponsesClient` is the minimal surface the conversation needs; tests and
  demo mode inject their own implementation.
- `OpenAIResponsesClient` is the real adapter (SDK imported lazily).
- `FakeResponsesClient` is an offline, scripted model that follows the
  plan -> tool -> answer pattern so the service can be demoed without keys.
- `normalize_response` turns a raw Responses payload (SDK object or dict) into
  a `ModelResponse`: text, tool calls, grounding metadata.

This module does *not* implement the tool loop; see `axon_agent.agent`.
"""

from __future__ import annotations

import json
import re
import secrets
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from .models import GroundingChunk, GroundingMetadata
from .protocol import parse_arguments

JsonDict = dict[str, Any]


# ---- Public types ----


class LLMError(RuntimeError):
    pass


class LLMParseError(LLMError):
    """The model backend returned a payload with an unexpected shape."""


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    # Raw `arguments` as sent by the model (JSON string, or dict from fakes).
    arguments: Any = ""

    @property
    def args(self) -> JsonDict:
        """Decoded arguments. Raises MalformedToolCallError on bad JSON."""

        return parse_arguments(self.name, self.arguments)

    def to_dict(self) -> JsonDict:
        try:
            args: Any = self.args
        except ValueError:
            args = self.arguments
        return {"id": self.id, "name": self.name, "args": args}


@dataclass(frozen=True)
class ModelResponse:
    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    grounding_metadata: Optional[GroundingMetadata] = None
    # Output items to replay into the conversation history.
    output_items: list[JsonDict] = field(default_factory=list, compare=False, repr=False)

    @property
    def is_final(self) -> bool:
        return not self.tool_calls


class ResponsesClient(Protocol):
    """Minimal client surface for dependency injection / mocking."""

    def responses_create(self, *, model: str, input: Any, **kwargs: Any) -> Any:
        """Return the raw Responses API result (SDK object or dict)."""


# ---- OpenAI implementation ----


class OpenAIResponsesClient:
    """Adapter over the `openai` SDK Responses API.

    This wrapper exists so tests can inject a fake client without importing
    `openai`.
    """

    def __init__(self, api_key: str, *, timeout_s: float = 60.0) -> None:
        from openai import OpenAI  # imported lazily

        # Retries are owned by the caller; the turn never retries silently.
        self._client = OpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)

    def responses_create(self, *, model: str, input: Any, **kwargs: Any) -> Any:
        return self._client.responses.create(model=model, input=input, **kwargs)


# ---- Response normalization ----


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def as_dict(x: Any) -> JsonDict:
    if isinstance(x, dict):
        return x
    if hasattr(x, "model_dump"):
        d = x.model_dump(exclude_none=True)
        if isinstance(d, dict):
            return d
    if hasattr(x, "to_dict"):
        d = x.to_dict()
        if isinstance(d, dict):
            return d
    # Best-effort fallback for SDK-like objects
    return json.loads(json.dumps(x, default=lambda o: getattr(o, "__dict__", str(o))))


def _deep_pop(obj: Any, *, keys: set[str]) -> Any:
    if isinstance(obj, dict):
        return {k: _deep_pop(v, keys=keys) for k, v in obj.items() if k not in keys}
    if isinstance(obj, list):
        return [_deep_pop(x, keys=keys) for x in obj]
    return obj


def sanitize_input_items(items: list[JsonDict]) -> list[JsonDict]:
    """Make output items replay-safe as `input` for the next request.

    - Output-only `reasoning` items are dropped (replaying them causes 400s).
    - With those gone, `reasoning` / `reasoning_id` references left on other
      items (top-level or nested) point at missing items, so they go too.
    - The top-level `status` field is rejected by the API on input items.
    """

    out: list[JsonDict] = []
    for it in items:
        if it.get("type") in {"reasoning", "reasoning_summary"}:
            continue
        d = dict(it)
        d.pop("status", None)
        out.append(_deep_pop(d, keys={"reasoning", "reasoning_id"}))
    return out


def _extract_text(resp: Any, output: list[Any]) -> str:
    txt = _get(resp, "output_text")
    if isinstance(txt, str):
        return txt
    parts: list[str] = []
    for item in output:
        if _get(item, "type") != "message":
            continue
        for c in _get(item, "content") or []:
            if _get(c, "type") == "output_text" and isinstance(_get(c, "text"), str):
                parts.append(_get(c, "text"))
    return "".join(parts)


def _extract_grounding(output: list[Any]) -> Optional[GroundingMetadata]:
    chunks: list[GroundingChunk] = []
    seen: set[str] = set()
    for item in output:
        if _get(item, "type") != "message":
            continue
        for c in _get(item, "content") or []:
            for ann in _get(c, "annotations") or []:
                if _get(ann, "type") != "url_citation":
                    continue
                url = _get(ann, "url")
                if not isinstance(url, str) or not url or url in seen:
                    continue
                seen.add(url)
                chunks.append(GroundingChunk(uri=url, title=str(_get(ann, "title") or "")))
    if not chunks:
        return None
    return GroundingMetadata(grounding_chunks=tuple(chunks))


def normalize_response(resp: Any) -> ModelResponse:
    """Normalize a raw Responses API result.

    Raises:
        LLMParseError: if the payload is not shaped like a Responses result.
    """

    output = _get(resp, "output")
    if not isinstance(output, list):
        raise LLMParseError("Malformed model response: missing 'output' list")

    calls: list[ToolCall] = []
    for item in output:
        if _get(item, "type") != "function_call":
            continue
        call_id = _get(item, "call_id")
        name = _get(item, "name")
        if not isinstance(call_id, str) or not call_id:
            raise LLMParseError("Malformed function_call: missing call_id")
        if not isinstance(name, str) or not name:
            raise LLMParseError("Malformed function_call: missing name")
        calls.append(ToolCall(id=call_id, name=name, arguments=_get(item, "arguments", "")))

    return ModelResponse(
        text=_extract_text(resp, output),
        tool_calls=tuple(calls),
        grounding_metadata=_extract_grounding(output),
        output_items=sanitize_input_items([as_dict(it) for it in output]),
    )


def drop_unsupported_param_from_error(e: Exception, create_kwargs: dict[str, Any]) -> str | None:
    """If OpenAI returns 'Unsupported parameter', drop it and return the param name."""

    body = getattr(e, "body", None)
    if isinstance(body, dict):
        err = body.get("error", body)
        if isinstance(err, dict):
            param = err.get("param")
            msg = err.get("message")
            if isinstance(param, str) and param in create_kwargs and isinstance(msg, str) and "Unsupported parameter" in msg:
                create_kwargs.pop(param, None)
                return param

    # Fallback: string-match on common error shapes.
    msg = str(e)
    if "Unsupported parameter" in msg:
        for p in list(create_kwargs.keys()):
            if f"'{p}'" in msg or f"\"{p}\"" in msg:
                create_kwargs.pop(p, None)
                return p
    return None


# ---- Offline fake ----


_SEARCH_PREFIX_RE = re.compile(r"^(please\s+)?(search( the web)?( for)?|look up|find( out)?)\s+", re.IGNORECASE)
_TERMINAL_WORDS = ("python", "file", "script", "code", "program")
_SEARCH_WORDS = ("search", "weather", "news", "latest", "find", "look up", "who", "what", "when")


class FakeResponsesClient:
    """Offline scripted model.

    Deterministic: the stage is derived from how many function calls were
    made since the last user message, so the client itself is stateless.
    """

    def responses_create(self, *, model: str, input: Any, **kwargs: Any) -> Any:  # noqa: ARG002
        items = [as_dict(x) for x in (input or [])]
        last_user = 0
        for i, it in enumerate(items):
            if it.get("role") == "user":
                last_user = i
        goal = self._user_text(items[last_user]) if items else ""
        since = items[last_user + 1 :]
        stage = sum(1 for it in since if it.get("type") == "function_call")
        outputs = [str(it.get("output") or "") for it in since if it.get("type") == "function_call_output"]

        lowered = goal.lower()
        if any(w in lowered for w in _TERMINAL_WORDS):
            script = self._terminal_script(goal)
        elif any(w in lowered for w in _SEARCH_WORDS):
            script = self._search_script(goal)
        else:
            script = []

        if stage < len(script):
            name, args = script[stage]
            return {
                "output": [
                    {
                        "type": "function_call",
                        "call_id": f"call_fake_{stage}_{secrets.token_hex(3)}",
                        "name": name,
                        "arguments": json.dumps(args),
                    }
                ],
                "output_text": "",
            }
        return self._message(self._final_text(goal, outputs))

    @staticmethod
    def _user_text(item: JsonDict) -> str:
        content = item.get("content")
        if isinstance(content, str):
            return content
        for part in content or []:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                return part["text"]
        return ""

    @staticmethod
    def _search_script(goal: str) -> list[tuple[str, JsonDict]]:
        query = _SEARCH_PREFIX_RE.sub("", goal.strip()).rstrip("?.! ") or goal.strip()
        return [
            (
                "create_plan",
                {"steps": [{"id": "1", "title": "Search the web"}, {"id": "2", "title": "Summarize the findings"}]},
            ),
            ("update_status", {"message": f"Searching for {query}", "activeStepId": "1", "toolUsed": "search"}),
            ("web_search", {"query": query}),
            ("update_status", {"message": "Summarizing results", "activeStepId": "2", "toolUsed": "thinking"}),
        ]

    @staticmethod
    def _terminal_script(goal: str) -> list[tuple[str, JsonDict]]:
        lowered = goal.lower()
        filename = "hello.py" if "hello" in lowered else "main.py"
        body = "print('hello')\\n" if "hello" in lowered else "print('done')\\n"
        code = f"with open('{filename}', 'w') as f:\n    f.write(\"{body}\")\nprint('Wrote {filename}')\n"
        return [
            (
                "create_plan",
                {"steps": [{"id": "1", "title": "Write the code"}, {"id": "2", "title": "Run it in the sandbox"}]},
            ),
            ("update_status", {"message": "Writing the code", "activeStepId": "1", "toolUsed": "thinking"}),
            ("update_status", {"message": f"Creating {filename}", "activeStepId": "2", "toolUsed": "terminal"}),
            ("execute_terminal", {"command": code}),
        ]

    @staticmethod
    def _final_text(goal: str, outputs: list[str]) -> str:
        if not outputs:
            return f"(FAKE MODE) You said: {goal or 'hello'}. Set OPENAI_API_KEY to talk to the real model."
        payload: Any = {}
        # Newest output that carries results, files or an error; status acks are skipped.
        for raw in reversed(outputs):
            try:
                candidate = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(candidate, dict) and any(k in candidate for k in ("results", "files", "error", "content")):
                payload = candidate
                break
        if isinstance(payload, dict) and isinstance(payload.get("results"), str):
            return f"**Here is what I found**\n\n{payload['results'][:1500]}"
        if isinstance(payload, dict) and payload.get("files"):
            names = ", ".join(str(f.get("name")) for f in payload["files"] if isinstance(f, dict))
            return f"Done. I created **{names}** for you to download."
        if isinstance(payload, dict) and payload.get("error"):
            return f"I could not finish the task: {payload['error']}"
        return "Done."

    @staticmethod
    def _message(text: str) -> JsonDict:
        return {
            "output": [
                {
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": text, "annotations": []}],
                }
            ],
            "output_text": text,
        }
