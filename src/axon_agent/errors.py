"""Tool backend failures shared by the search, browse and sandbox backends.

The dispatcher catches these at its boundary and substitutes a fallback
payload; they never abort a turn.
"""

from __future__ import annotations


class ToolError(RuntimeError):
    pass


class ToolExecutionError(ToolError):
    """A remote tool backend failed (network, 5xx, bad payload)."""

    def __init__(self, tool: str, reason: str) -> None:
        self.tool = tool
        self.reason = reason
        super().__init__(f"{tool} failed: {reason}")


class ToolTimeoutError(ToolExecutionError):
    """A remote tool backend did not answer within its time budget."""

    def __init__(self, tool: str, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(tool, f"timed out after {timeout_s:g}s")
