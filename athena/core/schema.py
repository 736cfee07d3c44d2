"""Typed argument schemas plus tool and event descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union


class ArgType(str, Enum):
    """Value kinds an argument may carry."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


class SchemaError(ValueError):
    """Raised when arguments do not match a declared schema."""


@dataclass(frozen=True)
class Argument:
    """One argument (or return value) in a tool/event schema.

    ``of`` is only meaningful for containers: a mapping of field name to
    ``Argument`` for objects, or a single ``Argument`` describing each
    element of an array.
    """

    type: ArgType
    desc: str
    required: bool = True
    of: Union[Dict[str, "Argument"], "Argument", None] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", ArgType(self.type))
        if self.of is None:
            return
        if self.type is ArgType.OBJECT and not isinstance(self.of, Mapping):
            raise SchemaError("object arguments describe their fields with a mapping.")
        if self.type is ArgType.ARRAY and not isinstance(self.of, Argument):
            raise SchemaError("array arguments describe their elements with a single Argument.")
        if self.type not in (ArgType.OBJECT, ArgType.ARRAY):
            raise SchemaError(f"'{self.type.value}' arguments cannot declare 'of'.")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "desc": self.desc,
            "required": self.required,
        }
        if isinstance(self.of, Argument):
            data["of"] = self.of.to_dict()
        elif self.of is not None:
            data["of"] = schema_to_dict(self.of)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Argument":
        raw_of = data.get("of")
        of: Union[Dict[str, Argument], Argument, None] = None
        kind = ArgType(data["type"])
        if raw_of is not None:
            if kind is ArgType.ARRAY:
                of = cls.from_dict(raw_of)
            else:
                of = schema_from_dict(raw_of)
        return cls(
            type=kind,
            desc=str(data.get("desc", "")),
            required=bool(data.get("required", True)),
            of=of,
        )


ArgumentSchema = Dict[str, Argument]


@dataclass
class Explanation:
    """Short human-readable summary of a call, used for observability only."""

    summary: str
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"summary": self.summary, "details": self.details}


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]
ExplainArgs = Callable[[Dict[str, Any]], Explanation]
ExplainRetvals = Callable[[Dict[str, Any], Any], Explanation]


@dataclass
class Tool:
    """A named asynchronous capability exposed by a plugin."""

    name: str
    desc: str
    handler: ToolHandler
    args: ArgumentSchema = field(default_factory=dict)
    retvals: ArgumentSchema = field(default_factory=dict)
    explain_args: Optional[ExplainArgs] = None
    explain_retvals: Optional[ExplainRetvals] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "desc": self.desc,
            "args": schema_to_dict(self.args),
            "retvals": schema_to_dict(self.retvals),
        }


@dataclass
class Event:
    """A named fact a plugin broadcasts on the domain event bus."""

    name: str
    desc: str
    args: ArgumentSchema = field(default_factory=dict)
    explain_args: Optional[ExplainArgs] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "desc": self.desc,
            "args": schema_to_dict(self.args),
        }


def schema_to_dict(schema: Mapping[str, Argument]) -> Dict[str, Any]:
    return {name: argument.to_dict() for name, argument in schema.items()}


def schema_from_dict(data: Mapping[str, Any]) -> ArgumentSchema:
    return {str(name): Argument.from_dict(spec) for name, spec in data.items()}


def validate_arguments(
    schema: Mapping[str, Argument],
    values: Any,
    path: str = "args",
) -> None:
    """Check ``values`` against ``schema``; raise ``SchemaError`` on mismatch.

    Extra keys not named in the schema are tolerated so that schemas can
    evolve without breaking older callers.
    """

    if values is None:
        values = {}
    if not isinstance(values, Mapping):
        raise SchemaError(f"'{path}' must be an object.")
    for name, argument in schema.items():
        child = f"{path}.{name}"
        if name not in values or values[name] is None:
            if argument.required:
                raise SchemaError(f"'{child}' is required.")
            continue
        _validate_value(argument, values[name], child)


def _validate_value(argument: Argument, value: Any, path: str) -> None:
    kind = argument.type
    if kind is ArgType.STRING:
        if not isinstance(value, str):
            raise SchemaError(f"'{path}' must be a string.")
    elif kind is ArgType.NUMBER:
        # bool is an int subclass; reject it explicitly.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise SchemaError(f"'{path}' must be a number.")
    elif kind is ArgType.BOOLEAN:
        if not isinstance(value, bool):
            raise SchemaError(f"'{path}' must be a boolean.")
    elif kind is ArgType.OBJECT:
        if not isinstance(value, Mapping):
            raise SchemaError(f"'{path}' must be an object.")
        if isinstance(argument.of, Mapping):
            validate_arguments(argument.of, value, path)
    elif kind is ArgType.ARRAY:
        if not isinstance(value, (list, tuple)):
            raise SchemaError(f"'{path}' must be an array.")
        if isinstance(argument.of, Argument):
            for idx, item in enumerate(value):
                _validate_value(argument.of, item, f"{path}[{idx}]")


__all__ = [
    "ArgType",
    "Argument",
    "ArgumentSchema",
    "Event",
    "Explanation",
    "SchemaError",
    "Tool",
    "ToolHandler",
    "schema_from_dict",
    "schema_to_dict",
    "validate_arguments",
]
