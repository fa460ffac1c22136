"""Tool-call protocol: the function tools declared to the model, and validation.

The specs returned by `tool_specs()` are passed verbatim to the Responses API
`tools` parameter, and `validate_tool_call` checks model-supplied arguments
against those same schemas. One source of truth means the declared schema and
what the dispatcher accepts cannot drift apart.

Design goals:
- Keep schema stable and explicit
- Validate early with clear errors
- Keep it testable (pure functions where possible)
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from .models import TOOLS_USED

JsonDict = dict[str, Any]


class ProtocolError(ValueError):
    """Raised when a tool call fails validation."""


class MalformedToolCallError(ProtocolError):
    """Model supplied a tool call that does not match its declared schema."""

    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(f"{tool_name}: {reason}")
        self.tool_name = tool_name
        self.reason = reason


# ---- Tool specs (Responses API function tools) ----


def create_plan_tool_spec() -> JsonDict:
    return {
        "type": "function",
        "name": "create_plan",
        "description": (
            "Declare a step-by-step plan for the user's task before starting work. "
            "Calling it again replaces the whole plan."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "steps": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string", "minLength": 1, "description": "Short unique step id, e.g. '1'."},
                            "title": {"type": "string", "minLength": 1, "description": "What this step does."},
                            "description": {"type": "string"},
                        },
                        "required": ["id", "title"],
                        "additionalProperties": False,
                    },
                },
            },
            "required": ["steps"],
            "additionalProperties": False,
        },
    }


def update_status_tool_spec() -> JsonDict:
    return {
        "type": "function",
        "name": "update_status",
        "description": "Report progress. Setting activeStepId marks that step as the one being worked on.",
        "parameters": {
            "type": "object",
            "properties": {
                "message": {"type": "string", "minLength": 1, "description": "Short progress message for the user."},
                "activeStepId": {"type": "string", "description": "Id of the plan step now in progress."},
                "toolUsed": {"type": "string", "enum": list(TOOLS_USED)},
            },
            "required": ["message"],
            "additionalProperties": False,
        },
    }


def browse_url_tool_spec() -> JsonDict:
    return {
        "type": "function",
        "name": "browse_url",
        "description": "Open a web page and return a summary of its text content.",
        "parameters": {
            "type": "object",
            "properties": {"url": {"type": "string", "minLength": 1, "description": "Absolute http(s) URL."}},
            "required": ["url"],
            "additionalProperties": False,
        },
    }


def web_search_tool_spec() -> JsonDict:
    return {
        "type": "function",
        "name": "web_search",
        "description": "Search the web. Returns a short answer plus the top sources.",
        "parameters": {
            "type": "object",
            "properties": {"query": {"type": "string", "minLength": 1}},
            "required": ["query"],
            "additionalProperties": False,
        },
    }


def execute_terminal_tool_spec() -> JsonDict:
    return {
        "type": "function",
        "name": "execute_terminal",
        "description": (
            "Run Python code in a remote sandbox (working directory /home/user). "
            "Files written there are offered to the user for download."
        ),
        "parameters": {
            "type": "object",
            "properties": {"command": {"type": "string", "minLength": 1, "description": "Python source to execute."}},
            "required": ["command"],
            "additionalProperties": False,
        },
    }


def tool_specs() -> list[JsonDict]:
    return [
        create_plan_tool_spec(),
        update_status_tool_spec(),
        browse_url_tool_spec(),
        web_search_tool_spec(),
        execute_terminal_tool_spec(),
    ]


TOOL_NAMES: tuple[str, ...] = tuple(s["name"] for s in tool_specs())


# ---- Validation ----

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "object": (dict,),
    "array": (list,),
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
}


def _check(schema: Mapping[str, Any], value: Any, path: str) -> None:
    expected = schema.get("type")
    if isinstance(expected, str):
        types = _JSON_TYPES[expected]
        # bool is an int subclass; JSON keeps them apart.
        if isinstance(value, bool) and expected != "boolean":
            raise ProtocolError(f"'{path}' must be a {expected}")
        if not isinstance(value, types):
            raise ProtocolError(f"'{path}' must be a {expected}")

    enum = schema.get("enum")
    if enum is not None and value not in enum:
        raise ProtocolError(f"'{path}' must be one of: {', '.join(map(str, enum))}")

    if isinstance(value, str):
        min_len = schema.get("minLength")
        if min_len is not None and len(value.strip()) < int(min_len):
            raise ProtocolError(f"'{path}' must be a non-empty string")

    if isinstance(value, list):
        min_items = schema.get("minItems")
        if min_items is not None and len(value) < int(min_items):
            raise ProtocolError(f"'{path}' must have at least {min_items} item(s)")
        items = schema.get("items")
        if isinstance(items, Mapping):
            for i, item in enumerate(value):
                _check(items, item, f"{path}[{i}]")

    if isinstance(value, dict):
        props: Mapping[str, Any] = schema.get("properties") or {}
        for key in schema.get("required") or []:
            if key not in value or value[key] is None:
                raise ProtocolError(f"Missing '{path}.{key}'" if path else f"Missing '{key}'")
        if schema.get("additionalProperties") is False:
            extra = sorted(set(value) - set(props))
            if extra:
                raise ProtocolError(f"Unexpected field(s): {', '.join(extra)}")
        for key, sub in props.items():
            if key in value and value[key] is not None:
                _check(sub, value[key], f"{path}.{key}" if path else key)


_SPECS_BY_NAME: dict[str, JsonDict] = {s["name"]: s for s in tool_specs()}


def parse_arguments(tool_name: str, raw: Any) -> JsonDict:
    """Decode function-call arguments (JSON string or already-decoded dict)."""

    if isinstance(raw, dict):
        return raw
    if raw is None or raw == "":
        return {}
    if not isinstance(raw, str):
        raise MalformedToolCallError(tool_name, "arguments must be a JSON object")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MalformedToolCallError(tool_name, f"arguments are not valid JSON ({e.msg})") from e
    if not isinstance(parsed, dict):
        raise MalformedToolCallError(tool_name, "arguments must decode to an object")
    return parsed


def validate_tool_call(tool_name: str, args: Any) -> JsonDict:
    """Validate arguments for `tool_name` and return them.

    Raises:
        MalformedToolCallError: unknown tool, or arguments failing the schema.
    """

    spec = _SPECS_BY_NAME.get(tool_name)
    if spec is None:
        raise MalformedToolCallError(tool_name, "unknown tool")
    if not isinstance(args, dict):
        raise MalformedToolCallError(tool_name, "arguments must be an object")
    try:
        _check(spec["parameters"], args, "")
    except ProtocolError as e:
        raise MalformedToolCallError(tool_name, str(e)) from e
    return args
