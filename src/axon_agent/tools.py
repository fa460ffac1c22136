"""axon_agent.tools

Tool dispatcher: one model tool call in, one JSON-serialisable payload out.

Every call is validated against its declared schema before anything else
happens; a malformed call is answered with an error payload and never reaches
a backend. Backend failures (`ToolExecutionError`, timeouts included) are
recovered here with a fallback payload so the model can carry on. Anything
unexpected becomes `{"ok": false, "error": ...}`.

Side effects on the plan (step attribution, logs, files, workspace) go through
`PlanState`, which owns the step invariants.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from .errors import ToolExecutionError
from .llm import ToolCall
from .models import AgentLog, GroundingChunk, JsonDict, ToolInput, ToolUsed
from .plan import PlanState
from .protocol import MalformedToolCallError, validate_tool_call
from .sandbox import SandboxRunner
from .search import SearchClient
from .web import PageFetcher

_LOG = logging.getLogger("axon_agent.tools")

FunctionHandler = Callable[[JsonDict], JsonDict]


class ToolDispatcher:
    def __init__(
        self,
        plan: PlanState,
        *,
        search: SearchClient,
        sandbox: SandboxRunner,
        fetcher: PageFetcher,
        sandbox_metadata: Optional[JsonDict] = None,
    ) -> None:
        self.plan = plan
        self._search = search
        self._sandbox = sandbox
        self._fetcher = fetcher
        self._sandbox_metadata = dict(sandbox_metadata or {})
        self._citations: list[GroundingChunk] = []
        self._used: set[str] = set()
        self.handlers: dict[str, FunctionHandler] = {
            "create_plan": self._create_plan,
            "update_status": self._update_status,
            "browse_url": self._browse_url,
            "web_search": self._web_search,
            "execute_terminal": self._execute_terminal,
        }

    def dispatch(self, call: ToolCall) -> JsonDict:
        try:
            args = validate_tool_call(call.name, call.args)
        except MalformedToolCallError as e:
            _LOG.warning("tool_rejected name=%s call_id=%s reason=%s", call.name, call.id, e.reason)
            self.plan.log(f"Rejected malformed {call.name} call: {e.reason}", "warning")
            return {"ok": False, "error": f"Malformed tool call: {e}"}

        _LOG.info("tool_dispatch name=%s call_id=%s", call.name, call.id)
        self._used.add(call.name)
        try:
            return self.handlers[call.name](args)
        except Exception as e:  # noqa: BLE001
            _LOG.exception("tool_crashed name=%s call_id=%s", call.name, call.id)
            return {"ok": False, "error": f"{type(e).__name__}: {e}"}

    def take_used(self) -> set[str]:
        """Names of the tools that passed validation since the last call."""

        out, self._used = self._used, set()
        return out

    def take_citations(self) -> list[GroundingChunk]:
        """Sources seen by `web_search` since the last call (deduped by URL)."""

        out, self._citations = self._citations, []
        return out

    # ---- handlers ----

    def _create_plan(self, args: JsonDict) -> JsonDict:
        self.plan.replace_steps(args["steps"])
        return {"success": True}

    def _update_status(self, args: JsonDict) -> JsonDict:
        message = str(args["message"]).strip()
        tool_used: ToolUsed = args.get("toolUsed") or "thinking"
        self.plan.log(message, "success")

        step_id = args.get("activeStepId")
        if step_id:
            step = self.plan.activate(str(step_id), description=message, tool_used=tool_used)
            if step is not None:
                self.plan.append_step_log(
                    step.id,
                    AgentLog(
                        type="info" if tool_used == "thinking" else "tool",
                        message=message,
                        tool_data={"tool": tool_used},
                    ),
                )
        return {"status": "updated"}

    def _browse_url(self, args: JsonDict) -> JsonDict:
        url = str(args["url"]).strip()
        self.plan.set_workspace("browser", url=url)
        self.plan.focus_target(
            tool_input=ToolInput(type="browsing", value=url),
            tool_used="browse",
            log=AgentLog(type="tool", message=f"Browsing {url}", tool_data={"tool": "browse", "url": url}),
        )
        self.plan.log(f"Browsing: {url}", "tool", tool_data={"tool": "browse", "url": url})

        try:
            page = self._fetcher.fetch(url)
        except ToolExecutionError as e:
            self.plan.log(f"Could not load {url}: {e.reason}", "warning")
            return {"content": f"Could not load {url} ({e.reason}). Continue with what you already know."}
        return {"content": page.summary()}

    def _web_search(self, args: JsonDict) -> JsonDict:
        query = str(args["query"]).strip()
        self.plan.focus_target(
            tool_input=ToolInput(type="typing", value=query),
            tool_used="search",
            search_query=query,
            log=AgentLog(type="tool", message=f"Searching for {query}", tool_data={"tool": "search", "query": query}),
        )
        self.plan.log(f"Searching: {query}", "tool", tool_data={"tool": "search", "query": query})

        try:
            result = self._search.search(query)
        except ToolExecutionError as e:
            self.plan.log(f"Search failed: {e.reason}", "warning")
            return {
                "results": (
                    f'Search for "{query}" is unavailable right now ({e.reason}). '
                    "Answer from general knowledge and say that live results could not be retrieved."
                )
            }

        seen = {c.uri for c in self._citations}
        for hit in result.results:
            if not result.simulated and hit.url not in seen:
                seen.add(hit.url)
                self._citations.append(GroundingChunk(uri=hit.url, title=hit.title))
        return {"results": result.format_for_model()}

    def _execute_terminal(self, args: JsonDict) -> JsonDict:
        command = str(args["command"])
        self.plan.set_workspace("terminal", content=command, language="python")
        self.plan.focus_target(
            tool_input=ToolInput(type="terminal", value=command),
            tool_used="terminal",
            log=AgentLog(
                type="tool",
                message=f"Running command: {command}",
                tool_data={"tool": "terminal", "command": command},
            ),
        )
        self.plan.log(f"Executing command: {command}", "tool", tool_data={"tool": "terminal", "command": command})

        try:
            result = self._sandbox.execute(command, metadata=self._sandbox_metadata)
        except ToolExecutionError as e:
            self.plan.log(f"Sandbox error: {e.reason}", "error")
            return {"success": False, "error": e.reason}

        self.plan.set_workspace("terminal", content=result.output, language="python")
        if not result.success:
            self.plan.log(f"Execution failed: {result.error}", "error")
            out: dict[str, Any] = {"success": False, "error": result.error or "execution failed"}
            if result.output:
                out["output"] = result.output
            return out

        if result.files:
            self.plan.add_files(result.files)
            self.plan.log(
                f"Created {len(result.files)} file(s): {', '.join(f.name for f in result.files)}",
                "success",
            )
        return {"output": result.output, "files": [f.to_dict() for f in result.files]}
