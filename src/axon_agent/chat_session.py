"""axon_agent.chat_session

Stateful conversation over the OpenAI Responses API with function tools.

`ConversationClient` owns the model-visible transcript. Each call appends to
it, so the client must be used by one turn at a time; a request issued while
another is in flight is rejected rather than interleaved.

Tool results are fed back as `function_call_output` items. The Responses API
requires every function call of a response to be answered before the next
request, so `send_tool_responses` submits a whole batch (in the order the
model emitted the calls); `send_tool_response` is the single-call form.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

from .config import DEFAULT_MODEL, ConfigurationError
from .llm import (
    FakeResponsesClient,
    LLMError,
    LLMParseError,
    ModelResponse,
    OpenAIResponsesClient,
    ResponsesClient,
    drop_unsupported_param_from_error,
    normalize_response,
)
from .prompts import system_prompt
from .protocol import tool_specs

JsonDict = dict[str, Any]

_LOG = logging.getLogger("axon_agent.chat_session")

_NOT_CONFIGURED = "Model API key not configured. Please add OPENAI_API_KEY to your environment variables."


def _input_text(role: str, text: str) -> JsonDict:
    return {"role": role, "content": [{"type": "input_text", "text": text}]}


@dataclass
class ConversationConfig:
    model: str = DEFAULT_MODEL
    timeout_s: float = 60.0
    temperature: float | None = None
    max_output_tokens: int | None = None
    # Also expose the provider's hosted web search (its citations become grounding metadata).
    enable_hosted_web_search: bool = False


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    name: str
    payload: Any


class ConversationClient:
    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        client: Optional[ResponsesClient] = None,
        config: Optional[ConversationConfig] = None,
        fake: bool = False,
        instructions: Optional[str] = None,
    ) -> None:
        self.cfg = config or ConversationConfig()
        self._client: Optional[ResponsesClient]
        if client is not None:
            self._client = client
        elif fake:
            self._client = FakeResponsesClient()
        elif api_key:
            self._client = OpenAIResponsesClient(api_key, timeout_s=self.cfg.timeout_s)
        else:
            self._client = None

        self._instructions = instructions if instructions is not None else system_prompt()
        self._conversation: list[JsonDict] = []
        self._pending_calls: dict[str, str] = {}
        self._unsupported: set[str] = set()
        self._in_flight = threading.Lock()

    # ---- state ----

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def history(self) -> list[JsonDict]:
        return list(self._conversation)

    @property
    def pending_call_ids(self) -> list[str]:
        return list(self._pending_calls)

    def reset(self) -> None:
        self._conversation = []
        self._pending_calls = {}

    # ---- send ----

    def send_message(self, text: str) -> ModelResponse:
        self._require_configured()
        if not isinstance(text, str) or not text.strip():
            raise ValueError("text must be non-empty")
        with self._exclusive():
            if self._pending_calls:
                # The previous turn was aborted mid-tool-call; those calls can no longer be answered.
                _LOG.warning("conversation_drop_pending calls=%s", ",".join(self._pending_calls))
                self._close_pending_calls()
            self._conversation.append(_input_text("user", text.strip()))
            return self._request()

    def send_tool_response(self, call_id: str, tool_name: str, payload: Any) -> ModelResponse:
        return self.send_tool_responses([ToolResult(call_id=call_id, name=tool_name, payload=payload)])

    def send_tool_responses(self, results: Sequence[ToolResult]) -> ModelResponse:
        self._require_configured()
        if not results:
            raise ValueError("results must be non-empty")
        with self._exclusive():
            for r in results:
                if r.call_id not in self._pending_calls:
                    raise LLMError(f"No pending tool call with id {r.call_id!r}")
            answered = {r.call_id for r in results}
            missing = [cid for cid in self._pending_calls if cid not in answered]
            if missing:
                raise LLMError(f"Tool calls left unanswered: {', '.join(missing)}")

            for r in results:
                self._conversation.append(
                    {
                        "type": "function_call_output",
                        "call_id": r.call_id,
                        "output": json.dumps(r.payload, ensure_ascii=False, default=str),
                    }
                )
            self._pending_calls = {}
            return self._request()

    # ---- internals ----

    def _require_configured(self) -> None:
        if self._client is None:
            raise ConfigurationError(_NOT_CONFIGURED)

    def _close_pending_calls(self) -> None:
        for cid in self._pending_calls:
            self._conversation.append(
                {
                    "type": "function_call_output",
                    "call_id": cid,
                    "output": json.dumps({"error": "turn aborted before this tool ran"}),
                }
            )
        self._pending_calls = {}

    def _tools(self) -> list[JsonDict]:
        tools = tool_specs()
        if self.cfg.enable_hosted_web_search:
            tools.append({"type": "web_search"})
        return tools

    def _create_kwargs(self) -> dict[str, Any]:
        kw: dict[str, Any] = {}
        if self.cfg.temperature is not None:
            kw["temperature"] = float(self.cfg.temperature)
        if self.cfg.max_output_tokens is not None:
            kw["max_output_tokens"] = int(self.cfg.max_output_tokens)
        for p in self._unsupported:
            kw.pop(p, None)
        return kw

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._in_flight.acquire(blocking=False):
            raise LLMError("A model request is already in flight for this conversation")
        try:
            yield
        finally:
            self._in_flight.release()

    def _request(self) -> ModelResponse:
        """Send the transcript. Caller holds `_exclusive()`."""

        self._require_configured()
        kw = self._create_kwargs()
        resp: Any = None
        for _drop_try in range(4):
            try:
                resp = self._client.responses_create(
                    model=self.cfg.model,
                    input=list(self._conversation),
                    tools=self._tools(),
                    instructions=self._instructions,
                    **kw,
                )
                break
            except Exception as e:  # noqa: BLE001
                dropped = drop_unsupported_param_from_error(e, kw)
                if dropped is None:
                    _LOG.warning("model_request_failed model=%s error=%s", self.cfg.model, f"{type(e).__name__}: {e}")
                    raise LLMError(f"{type(e).__name__}: {e}") from e
                self._unsupported.add(dropped)
                _LOG.info("model_param_dropped model=%s param=%s", self.cfg.model, dropped)
        else:
            raise LLMError("Model rejected every request parameter combination")

        try:
            out = normalize_response(resp)
        except LLMParseError:
            _LOG.warning("model_response_malformed model=%s", self.cfg.model)
            raise

        self._conversation.extend(out.output_items)
        self._pending_calls = {c.id: c.name for c in out.tool_calls}
        _LOG.info(
            "model_response model=%s text_chars=%d tool_calls=%s",
            self.cfg.model,
            len(out.text),
            ",".join(c.name for c in out.tool_calls) or "-",
        )
        return out
