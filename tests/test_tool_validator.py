import pytest

from convo_agent.domain.tool.tool_validator import ToolArgumentError, ToolParameterValidator, parse_tool_arguments

SCHEMA = {
    "type": "object",
    "required": ["scope", "count"],
    "properties": {
        "scope": {"type": "string", "enum": ["user", "conversation"]},
        "count": {"type": "integer"},
    },
    "additionalProperties": False,
}


def test_parse_tool_arguments():
    assert parse_tool_arguments(None) is None
    assert parse_tool_arguments("") is None
    assert parse_tool_arguments('{"a": 1}') == {"a": 1}

    with pytest.raises(ToolArgumentError):
        parse_tool_arguments("{oops")
    with pytest.raises(ToolArgumentError):
        parse_tool_arguments('"just a string"')


def test_valid_parameters():
    result = ToolParameterValidator.validate_tool_call(SCHEMA, {"scope": "user", "count": 2})
    assert result.is_valid
    assert result.errors == []


def test_no_schema_accepts_anything():
    assert ToolParameterValidator.validate_tool_call(None, {"anything": True}).is_valid


def test_corrective_actions():
    result = ToolParameterValidator.validate_tool_call(
        SCHEMA, {"scope": "team", "count": "two", "extra": 1}
    )

    assert not result.is_valid
    assert 'remove the "extra" property from the JSON object' in result.errors
    assert 'convert "count" to a integer' in result.errors
    assert 'change the "scope" property to be one of these values: user, conversation' in result.errors


def test_missing_required_property():
    result = ToolParameterValidator.validate_tool_call(SCHEMA, {"scope": "user"})

    assert result.errors == ['add the "count" property to the JSON object']
