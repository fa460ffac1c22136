"""axon_agent.models

Data model shared by the response loop, the tool dispatcher and the HTTP layer.

Everything here is in-memory; `to_dict()` produces the JSON shape served to
the UI.
"""

from __future__ import annotations

import itertools
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional

JsonDict = dict[str, Any]

Role = Literal["user", "assistant"]
StepStatus = Literal["pending", "active", "completed", "failed"]
ToolUsed = Literal["search", "browse", "terminal", "thinking"]
ToolInputType = Literal["browsing", "typing", "terminal"]
LogType = Literal["info", "success", "warning", "error", "tool"]
FileType = Literal["code", "zip", "document"]
IconType = Literal["search", "code", "globe", "file"]
WorkspaceView = Literal["browser", "terminal", "editor", "canvas"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
TOOLS_USED: tuple[str, ...] = ("search", "browse", "terminal", "thinking")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_chat_id() -> str:
    # e.g. 20260206T012233Z_ab12cd34
    ts = utc_now().strftime("%Y%m%dT%H%M%SZ")
    return f"{ts}_{secrets.token_hex(4)}"


# Millisecond timestamps collide when several entries are created in one tick.
_seq = itertools.count(1)


def new_entry_id() -> str:
    return f"{int(utc_now().timestamp() * 1000)}-{next(_seq)}"


@dataclass(frozen=True)
class AgentLog:
    """One audit-trail entry. Frozen: logs are never edited once emitted."""

    type: LogType
    message: str
    tool_data: Optional[JsonDict] = None
    id: str = field(default_factory=new_entry_id)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> JsonDict:
        d: JsonDict = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type,
            "message": self.message,
        }
        if self.tool_data is not None:
            d["tool_data"] = dict(self.tool_data)
        return d


@dataclass(frozen=True)
class ToolInput:
    type: ToolInputType
    value: str

    def to_dict(self) -> JsonDict:
        return {"type": self.type, "value": self.value}


@dataclass
class PlanStep:
    id: str
    title: str
    status: StepStatus = "pending"
    description: Optional[str] = None
    tool_used: Optional[ToolUsed] = None
    search_query: Optional[str] = None
    tool_input: Optional[ToolInput] = None
    logs: list[AgentLog] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> JsonDict:
        d: JsonDict = {"id": self.id, "title": self.title, "status": self.status}
        if self.description is not None:
            d["description"] = self.description
        if self.tool_used is not None:
            d["tool_used"] = self.tool_used
        if self.search_query is not None:
            d["search_query"] = self.search_query
        if self.tool_input is not None:
            d["tool_input"] = self.tool_input.to_dict()
        if self.logs:
            d["logs"] = [log.to_dict() for log in self.logs]
        return d


@dataclass(frozen=True)
class GeneratedFile:
    name: str
    type: FileType = "code"
    size: Optional[str] = None
    path: Optional[str] = None

    def to_dict(self) -> JsonDict:
        d: JsonDict = {"name": self.name, "type": self.type}
        if self.size is not None:
            d["size"] = self.size
        if self.path is not None:
            d["path"] = self.path
        return d


@dataclass(frozen=True)
class GroundingChunk:
    uri: str
    title: str = ""

    def to_dict(self) -> JsonDict:
        return {"web": {"uri": self.uri, "title": self.title}}


@dataclass(frozen=True)
class GroundingMetadata:
    grounding_chunks: tuple[GroundingChunk, ...] = ()

    def to_dict(self) -> JsonDict:
        return {"grounding_chunks": [c.to_dict() for c in self.grounding_chunks]}


@dataclass
class ChatMessage:
    role: Role
    content: str
    id: str = field(default_factory=new_entry_id)
    timestamp: datetime = field(default_factory=utc_now)
    steps: Optional[list[PlanStep]] = None
    generated_files: Optional[list[GeneratedFile]] = None
    grounding_metadata: Optional[GroundingMetadata] = None

    def to_dict(self) -> JsonDict:
        d: JsonDict = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.steps is not None:
            d["steps"] = [s.to_dict() for s in self.steps]
        if self.generated_files is not None:
            d["generated_files"] = [f.to_dict() for f in self.generated_files]
        if self.grounding_metadata is not None:
            d["grounding_metadata"] = self.grounding_metadata.to_dict()
        return d


@dataclass
class WorkspaceState:
    view: WorkspaceView = "browser"
    url: Optional[str] = None
    content: Optional[str] = None
    language: Optional[str] = None

    def to_dict(self) -> JsonDict:
        d: JsonDict = {"view": self.view}
        for key in ("url", "content", "language"):
            v = getattr(self, key)
            if v is not None:
                d[key] = v
        return d


@dataclass
class ChatSession:
    """History entry for one conversation (what the history list shows)."""

    id: str
    title: str
    preview: str = "Thinking..."
    messages: list[ChatMessage] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    icon_type: IconType = "globe"

    def summary(self) -> JsonDict:
        return {
            "id": self.id,
            "title": self.title,
            "preview": self.preview,
            "timestamp": self.timestamp.isoformat(),
            "icon_type": self.icon_type,
        }

    def to_dict(self) -> JsonDict:
        d = self.summary()
        d["messages"] = [m.to_dict() for m in self.messages]
        return d


def session_title(first_message: str) -> str:
    text = first_message.strip()
    return text[:30] + "..." if len(text) > 30 else text


def session_preview(answer: str) -> str:
    return answer[:50] + "..."
