import pytest

from axon_agent.protocol import MalformedToolCallError, TOOL_NAMES, parse_arguments, tool_specs, validate_tool_call


def test_tool_specs_declare_all_tools():
    assert set(TOOL_NAMES) == {"create_plan", "update_status", "browse_url", "web_search", "execute_terminal"}
    for spec in tool_specs():
        assert spec["type"] == "function"
        assert spec["parameters"]["additionalProperties"] is False


def test_validate_create_plan_ok():
    args = validate_tool_call("create_plan", {"steps": [{"id": "1", "title": "Search"}, {"id": "2", "title": "Answer"}]})
    assert len(args["steps"]) == 2


def test_validate_create_plan_requires_at_least_one_step():
    with pytest.raises(MalformedToolCallError):
        validate_tool_call("create_plan", {"steps": []})


def test_validate_create_plan_step_missing_title():
    with pytest.raises(MalformedToolCallError) as ei:
        validate_tool_call("create_plan", {"steps": [{"id": "1"}]})
    assert ei.value.tool_name == "create_plan"
    assert "title" in ei.value.reason


def test_validate_update_status_tool_used_enum():
    validate_tool_call("update_status", {"message": "ok", "toolUsed": "search"})
    with pytest.raises(MalformedToolCallError):
        validate_tool_call("update_status", {"message": "ok", "toolUsed": "banana"})


def test_validate_rejects_blank_strings():
    with pytest.raises(MalformedToolCallError):
        validate_tool_call("web_search", {"query": "   "})


def test_validate_rejects_wrong_type():
    with pytest.raises(MalformedToolCallError):
        validate_tool_call("execute_terminal", {"command": 42})


def test_validate_rejects_extra_fields():
    with pytest.raises(MalformedToolCallError):
        validate_tool_call("browse_url", {"url": "https://example.com", "depth": 2})


def test_validate_unknown_tool():
    with pytest.raises(MalformedToolCallError):
        validate_tool_call("rm_rf", {})


def test_parse_arguments_json_string():
    assert parse_arguments("web_search", '{"query": "paris"}') == {"query": "paris"}
    assert parse_arguments("web_search", "") == {}


def test_parse_arguments_bad_json():
    with pytest.raises(MalformedToolCallError):
        parse_arguments("web_search", "{not json")
    with pytest.raises(MalformedToolCallError):
        parse_arguments("web_search", "[1, 2]")
