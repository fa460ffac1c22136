"""axon_agent.agent

Response loop and session lifecycle.

A turn:
1. send the user text, get a `ModelResponse`;
2. while the response carries tool calls, dispatch them in emitted order and
   send the results back as one batch;
3. a response without tool calls is final: complete every step, move pending
   files onto the answer, log success, stop.

The loop is an explicit work queue with a ceiling on model round-trips, and a
cancellation token checked before every model request and every dispatch.
Only conversation-client failures abort a turn; tool failures are already
folded into payloads by the dispatcher.

There is no module-level agent: `SessionManager` creates, hands out and
discards `AgentSession` objects, each with its own conversation context.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

import httpx

from .chat_session import ConversationClient, ConversationConfig, ToolResult
from .config import AppConfig, ConfigurationError
from .llm import LLMError, ModelResponse, ResponsesClient
from .models import (
    ChatMessage,
    ChatSession,
    GeneratedFile,
    GroundingMetadata,
    IconType,
    JsonDict,
    new_chat_id,
    session_preview,
    session_title,
    utc_now,
)
from .plan import PlanState
from .sandbox import ArtifactStore, SandboxFactory, SandboxRunner
from .search import SearchClient
from .tools import ToolDispatcher
from .web import PageFetcher

_LOG = logging.getLogger("axon_agent.agent")


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class TurnResult:
    status: TurnStatus
    message: Optional[ChatMessage] = None
    error: str = ""
    rounds: int = 0

    def to_dict(self) -> JsonDict:
        return {
            "status": self.status.value,
            "message": self.message.to_dict() if self.message is not None else None,
            "error": self.error,
            "rounds": self.rounds,
        }


@dataclass
class AgentConfig:
    # Model round-trips per turn (the first request included).
    max_tool_rounds: int = 16


class AgentBusyError(RuntimeError):
    """A turn is already running on this session."""


class TurnCancelled(RuntimeError):
    pass


class SessionNotFound(KeyError):
    pass


def icon_for(tools_used: Iterable[str], files: list[GeneratedFile]) -> IconType:
    used = set(tools_used)
    if files:
        return "file"
    if "execute_terminal" in used:
        return "code"
    if "web_search" in used:
        return "search"
    return "globe"


class AgentSession:
    def __init__(
        self,
        *,
        conversation: ConversationClient,
        search: SearchClient,
        sandbox: SandboxRunner,
        fetcher: PageFetcher,
        config: AgentConfig | None = None,
        session_id: str | None = None,
        capabilities: dict[str, bool] | None = None,
    ) -> None:
        self.id = session_id or new_chat_id()
        self.conversation = conversation
        self._cfg = config or AgentConfig()
        self._capabilities = dict(capabilities or {})

        self.plan = PlanState(on_change=self._on_plan_change)
        self.dispatcher = ToolDispatcher(
            self.plan,
            search=search,
            sandbox=sandbox,
            fetcher=fetcher,
            sandbox_metadata={"sessionId": self.id},
        )

        self.messages: list[ChatMessage] = []
        self.record: Optional[ChatSession] = None
        self._turn_message: Optional[ChatMessage] = None
        self._processing = False
        self._cancel_evt = threading.Event()
        self._busy = threading.Lock()

    # ---- state ----

    @property
    def is_processing(self) -> bool:
        return self._processing

    def cancel(self) -> None:
        self._cancel_evt.set()

    def new_chat(self) -> None:
        """Start over: no messages, steps or logs, fresh model context."""

        if self._processing:
            raise AgentBusyError("Cannot reset while a turn is running")
        self.messages = []
        self.record = None
        self._turn_message = None
        self.plan.reset()
        self.conversation.reset()

    def snapshot(self) -> JsonDict:
        d: JsonDict = {
            "id": self.id,
            "processing": self._processing,
            "messages": [m.to_dict() for m in self.messages],
            "capabilities": dict(self._capabilities),
        }
        d.update(self.plan.snapshot())
        d["session"] = self.record.summary() if self.record is not None else None
        return d

    # ---- turn ----

    def run_turn(self, text: str) -> TurnResult:
        if not isinstance(text, str) or not text.strip():
            raise ValueError("message must be non-empty")
        if not self._busy.acquire(blocking=False):
            raise AgentBusyError("A turn is already running on this session")
        try:
            return self._run_turn(text.strip())
        finally:
            self._busy.release()

    def _run_turn(self, text: str) -> TurnResult:
        self._cancel_evt.clear()
        self._processing = True
        self._turn_message = None

        self.messages.append(ChatMessage(role="user", content=text))
        if self.record is None:
            self.record = ChatSession(id=self.id, title=session_title(text), messages=self.messages)
        self.record.preview = "Thinking..."
        self.record.timestamp = utc_now()
        self.plan.clear_steps()
        self.dispatcher.take_citations()
        self.dispatcher.take_used()
        self.plan.log(f"User objective: {text}")

        rounds = 0
        try:
            self._check_cancel()
            queue: deque[ModelResponse] = deque([self.conversation.send_message(text)])
            rounds = 1
            while queue:
                resp = queue.popleft()
                if resp.is_final:
                    return self._finish(resp, rounds)
                if rounds >= self._cfg.max_tool_rounds:
                    return self._give_up(rounds)

                results: list[ToolResult] = []
                for call in resp.tool_calls:
                    self._check_cancel()
                    payload = self.dispatcher.dispatch(call)
                    if call.name == "create_plan":
                        self._ensure_turn_message()
                    results.append(ToolResult(call_id=call.id, name=call.name, payload=payload))

                self._check_cancel()
                queue.append(self.conversation.send_tool_responses(results))
                rounds += 1
            raise LLMError("Response loop ended without a final answer")
        except TurnCancelled:
            _LOG.info("turn_cancelled session=%s rounds=%d", self.id, rounds)
            self.plan.log("Task cancelled.", "warning")
            return TurnResult(status=TurnStatus.CANCELLED, message=self._turn_message, rounds=rounds)
        except (ConfigurationError, LLMError) as e:
            _LOG.warning("turn_failed session=%s rounds=%d error=%s", self.id, rounds, e)
            self.plan.log("An error occurred during task execution.", "error")
            return TurnResult(status=TurnStatus.ERROR, message=self._turn_message, error=str(e), rounds=rounds)
        finally:
            self._processing = False

    def _finish(self, resp: ModelResponse, rounds: int) -> TurnResult:
        files = self.plan.take_pending_files()
        self.plan.complete_all()

        msg = self._ensure_turn_message()
        msg.content = resp.text
        msg.steps = self.plan.steps
        msg.generated_files = files
        citations = self.dispatcher.take_citations()
        if resp.grounding_metadata is not None:
            msg.grounding_metadata = resp.grounding_metadata
        elif citations:
            msg.grounding_metadata = GroundingMetadata(grounding_chunks=tuple(citations))

        if not resp.text.strip():
            _LOG.warning("turn_empty_answer session=%s", self.id)
            self.plan.log("The model returned an empty answer.", "warning")

        if self.record is not None:
            self.record.preview = session_preview(resp.text)
            self.record.icon_type = icon_for(self.dispatcher.take_used(), files)
            self.record.timestamp = utc_now()

        self.plan.log("Task completed successfully.", "success")
        self.plan.clear_steps()
        self._turn_message = None
        _LOG.info("turn_completed session=%s rounds=%d files=%d", self.id, rounds, len(files))
        return TurnResult(status=TurnStatus.COMPLETED, message=msg, rounds=rounds)

    def _give_up(self, rounds: int) -> TurnResult:
        _LOG.warning("turn_round_limit session=%s rounds=%d", self.id, rounds)
        self.plan.fail_active()
        self.plan.log(
            f"Stopped after {rounds} model round-trips without a final answer.",
            "error",
        )
        return TurnResult(
            status=TurnStatus.ERROR,
            message=self._turn_message,
            error=f"Tool round limit reached ({self._cfg.max_tool_rounds})",
            rounds=rounds,
        )

    # ---- internals ----

    def _ensure_turn_message(self) -> ChatMessage:
        if self._turn_message is None:
            self._turn_message = ChatMessage(role="assistant", content="", steps=self.plan.steps)
            self.messages.append(self._turn_message)
        return self._turn_message

    def _on_plan_change(self, plan: PlanState) -> None:
        if self._turn_message is not None and plan.steps:
            self._turn_message.steps = plan.steps

    def _check_cancel(self) -> None:
        if self._cancel_evt.is_set():
            raise TurnCancelled("turn cancelled")


SessionFactory = Callable[[str], AgentSession]


def session_factory_from_config(
    config: AppConfig,
    *,
    responses_client: Optional[ResponsesClient] = None,
    sandbox_factory: Optional[SandboxFactory] = None,
    search_transport: Optional[httpx.BaseTransport] = None,
    fetch_transport: Optional[httpx.BaseTransport] = None,
    artifacts: Optional[ArtifactStore] = None,
) -> SessionFactory:
    """Build sessions wired to the configured backends (injectables for tests)."""

    def _factory(session_id: str) -> AgentSession:
        conversation = ConversationClient(
            api_key=config.openai_api_key,
            client=responses_client,
            config=ConversationConfig(
                model=config.openai_model,
                timeout_s=config.model_timeout_s,
                enable_hosted_web_search=config.hosted_web_search,
            ),
            fake=config.fake_llm,
        )
        return AgentSession(
            session_id=session_id,
            conversation=conversation,
            search=SearchClient(
                api_key=config.tavily_api_key,
                timeout_s=config.search_timeout_s,
                transport=search_transport,
            ),
            sandbox=SandboxRunner(
                api_key=config.e2b_api_key,
                timeout_s=config.sandbox_timeout_s,
                lifetime_s=int(config.sandbox_lifetime_s),
                sandbox_factory=sandbox_factory,
                artifacts=artifacts,
            ),
            fetcher=PageFetcher(timeout_s=config.browse_timeout_s, transport=fetch_transport),
            config=AgentConfig(max_tool_rounds=config.max_tool_rounds),
            capabilities=config.capabilities(),
        )

    return _factory


class SessionManager:
    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._sessions: dict[str, AgentSession] = {}
        self._lock = threading.Lock()

    def create(self, session_id: str | None = None) -> AgentSession:
        sid = session_id or new_chat_id()
        with self._lock:
            if sid in self._sessions:
                raise ValueError(f"Session already exists: {sid}")
            session = self._factory(sid)
            self._sessions[sid] = session
        _LOG.info("session_created id=%s", sid)
        return session

    def get(self, session_id: str) -> AgentSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def get_or_create(self, session_id: str | None) -> AgentSession:
        sid = session_id or new_chat_id()
        with self._lock:
            session = self._sessions.get(sid)
            if session is not None:
                return session
            session = self._factory(sid)
            self._sessions[sid] = session
        _LOG.info("session_created id=%s", sid)
        return session

    def discard(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.cancel()
        _LOG.info("session_discarded id=%s", session_id)
        return True

    def summaries(self) -> list[JsonDict]:
        with self._lock:
            sessions = list(self._sessions.values())
        records = [s.record for s in sessions if s.record is not None]
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return [r.summary() for r in records]
