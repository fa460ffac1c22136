"""axon_agent.plan

Plan/step state for one conversation: the ordered step list, the append-only
log feed and the workspace view the UI shows next to the chat.

Step lifecycle:

    pending -> active -> completed
                      -> failed

Invariants (enforced here, nowhere else):
- at most one step is `active`;
- activating a step first demotes the current `active` step to `completed`;
- `completed` / `failed` are terminal, a terminal step is never reactivated;
- steps only arrive as a batch via `replace_steps` (a new plan replaces the old).

Unknown step ids and attempts to reactivate terminal steps are logged no-ops.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from .models import (
    AgentLog,
    GeneratedFile,
    JsonDict,
    LogType,
    PlanStep,
    ToolInput,
    ToolUsed,
    WorkspaceState,
    WorkspaceView,
)

_LOG = logging.getLogger("axon_agent.plan")

ChangeCallback = Callable[["PlanState"], None]


class PlanState:
    def __init__(self, *, on_change: Optional[ChangeCallback] = None) -> None:
        self._steps: list[PlanStep] = []
        self._logs: list[AgentLog] = []
        self._pending_files: list[GeneratedFile] = []
        self.workspace = WorkspaceState()
        self._on_change = on_change

    # ---- read side ----

    @property
    def steps(self) -> list[PlanStep]:
        return list(self._steps)

    @property
    def logs(self) -> list[AgentLog]:
        return list(self._logs)

    @property
    def pending_files(self) -> list[GeneratedFile]:
        return list(self._pending_files)

    def get(self, step_id: str) -> Optional[PlanStep]:
        for s in self._steps:
            if s.id == step_id:
                return s
        return None

    def active_step(self) -> Optional[PlanStep]:
        for s in self._steps:
            if s.status == "active":
                return s
        return None

    def target_step(self) -> Optional[PlanStep]:
        """Step a tool call is attributed to: the active one, else the first pending."""

        active = self.active_step()
        if active is not None:
            return active
        for s in self._steps:
            if s.status == "pending":
                return s
        return None

    # ---- transitions ----

    def replace_steps(self, steps: Sequence[JsonDict]) -> list[PlanStep]:
        self._steps = [
            PlanStep(
                id=str(s["id"]),
                title=str(s["title"]),
                description=str(s["description"]) if s.get("description") is not None else None,
            )
            for s in steps
        ]
        _LOG.info("plan_created steps=%d", len(self._steps))
        self._changed()
        return self.steps

    def activate(
        self,
        step_id: str,
        *,
        description: Optional[str] = None,
        tool_used: Optional[ToolUsed] = None,
    ) -> Optional[PlanStep]:
        step = self.get(step_id)
        if step is None:
            _LOG.info("plan_activate_unknown step_id=%s", step_id)
            return None
        if step.is_terminal:
            _LOG.info("plan_activate_terminal step_id=%s status=%s", step_id, step.status)
            return None
        current = self.active_step()
        if current is not None and current is not step:
            current.status = "completed"
        step.status = "active"
        if description is not None:
            step.description = description
        if tool_used is not None:
            step.tool_used = tool_used
        self._changed()
        return step

    def focus_target(
        self,
        *,
        tool_input: ToolInput,
        tool_used: Optional[ToolUsed] = None,
        search_query: Optional[str] = None,
        log: Optional[AgentLog] = None,
    ) -> Optional[PlanStep]:
        """Attribute a tool call to the target step, activating it if needed."""

        step = self.target_step()
        if step is None:
            return None
        if step.status != "active":
            self.activate(step.id)
        step.tool_input = tool_input
        if tool_used is not None:
            step.tool_used = tool_used
        if search_query is not None:
            step.search_query = search_query
        if log is not None:
            step.logs.append(log)
        self._changed()
        return step

    def append_step_log(self, step_id: str, log: AgentLog) -> None:
        step = self.get(step_id)
        if step is None:
            return
        step.logs.append(log)
        self._changed()

    def fail_active(self) -> Optional[PlanStep]:
        step = self.active_step()
        if step is None:
            return None
        step.status = "failed"
        self._changed()
        return step

    def complete_all(self) -> list[PlanStep]:
        """Final answer: every step is done, whatever it was doing."""

        for s in self._steps:
            s.status = "completed"
        self._changed()
        return self.steps

    def clear_steps(self) -> None:
        self._steps = []
        self._changed()

    # ---- logs / files / workspace ----

    def log(self, message: str, type: LogType = "info", *, tool_data: Optional[JsonDict] = None) -> AgentLog:
        entry = AgentLog(type=type, message=message, tool_data=tool_data)
        self._logs.append(entry)
        self._changed()
        return entry

    def add_files(self, files: Sequence[GeneratedFile]) -> None:
        self._pending_files.extend(files)
        self._changed()

    def take_pending_files(self) -> list[GeneratedFile]:
        files, self._pending_files = self._pending_files, []
        return files

    def set_workspace(
        self,
        view: WorkspaceView,
        *,
        url: Optional[str] = None,
        content: Optional[str] = None,
        language: Optional[str] = None,
    ) -> None:
        self.workspace = WorkspaceState(view=view, url=url, content=content, language=language)
        self._changed()

    def reset(self) -> None:
        self._steps = []
        self._logs = []
        self._pending_files = []
        self.workspace = WorkspaceState()
        self._changed()

    def snapshot(self) -> JsonDict:
        return {
            "steps": [s.to_dict() for s in self._steps],
            "logs": [entry.to_dict() for entry in self._logs],
            "pending_files": [f.to_dict() for f in self._pending_files],
            "workspace": self.workspace.to_dict(),
        }

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
