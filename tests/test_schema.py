"""Tests for argument schemas and the runtime validator."""

from __future__ import annotations

import pytest

from athena.core.schema import (
    Argument,
    ArgType,
    Event,
    SchemaError,
    Tool,
    schema_from_dict,
    schema_to_dict,
    validate_arguments,
)

FILES = {
    "files": Argument(
        ArgType.ARRAY,
        "Attached files.",
        required=False,
        of=Argument(
            ArgType.OBJECT,
            "A file.",
            of={
                "name": Argument(ArgType.STRING, "File name."),
                "size": Argument(ArgType.NUMBER, "Bytes.", required=False),
            },
        ),
    )
}


def test_argument_coerces_type_strings():
    argument = Argument("string", "A value.")
    assert argument.type is ArgType.STRING


def test_scalar_arguments_cannot_declare_children():
    with pytest.raises(SchemaError):
        Argument(ArgType.STRING, "bad", of={"x": Argument(ArgType.STRING, "x")})
    with pytest.raises(SchemaError):
        Argument(ArgType.ARRAY, "bad", of={"x": Argument(ArgType.STRING, "x")})


def test_schema_json_shape_round_trips():
    data = schema_to_dict(FILES)

    assert data["files"]["type"] == "array"
    assert data["files"]["required"] is False
    assert data["files"]["of"]["of"]["name"] == {"type": "string", "desc": "File name.", "required": True}
    assert schema_from_dict(data) == FILES


def test_validator_accepts_nested_values_and_extras():
    validate_arguments(
        FILES,
        {"files": [{"name": "a.txt", "size": 3}, {"name": "b.txt"}], "extra": 1},
    )
    validate_arguments(FILES, {})


@pytest.mark.parametrize(
    "values, fragment",
    [
        ({"files": "a.txt"}, "args.files"),
        ({"files": [{"size": 1}]}, "args.files[0].name"),
        ({"files": [{"name": 5}]}, "args.files[0].name"),
        ({"files": [{"name": "a", "size": "big"}]}, "args.files[0].size"),
    ],
)
def test_validator_names_offending_path(values, fragment):
    with pytest.raises(SchemaError) as excinfo:
        validate_arguments(FILES, values)
    assert fragment in str(excinfo.value)


def test_booleans_are_not_numbers():
    schema = {"n": Argument(ArgType.NUMBER, "A number.")}
    validate_arguments(schema, {"n": 1.5})
    with pytest.raises(SchemaError):
        validate_arguments(schema, {"n": False})
    with pytest.raises(SchemaError):
        validate_arguments({"b": Argument(ArgType.BOOLEAN, "A flag.")}, {"b": 0})


def test_tool_and_event_describe_themselves():
    async def handler(args):
        return {}

    tool = Tool(
        name="demo/tool",
        desc="Demo.",
        handler=handler,
        args={"q": Argument(ArgType.STRING, "Query.")},
    )
    event = Event(name="demo/event", desc="Happened.")

    assert tool.to_dict() == {
        "name": "demo/tool",
        "desc": "Demo.",
        "args": {"q": {"type": "string", "desc": "Query.", "required": True}},
        "retvals": {},
    }
    assert event.to_dict() == {"name": "demo/event", "desc": "Happened.", "args": {}}
