"""Declarative tool definitions and the validators built from them.

A :class:`ToolDefinition` is what users edit: a name, a description and a
JSON-schema-like ``parameters`` object. :func:`build_validator` turns the
parameter block into a pydantic model with ``extra="forbid"`` so tool calls
are checked exactly against what was declared.

Only "strict" shapes are representable: every declared property is required
and no additional properties are accepted. The editing helpers at the bottom
of the module keep ``required`` in sync with the property keys.
"""

from __future__ import annotations

import copy
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from ..errors import SchemaError, ToolArgumentError

SUPPORTED_TYPES = ("string", "number", "integer", "boolean")


class ToolDefinition(BaseModel):
    """A user-editable tool declaration."""

    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)
    strict: bool = True


# -----------------------------
# Parsing
# -----------------------------
def parse_definitions(raw: Sequence[Any]) -> List[ToolDefinition]:
    """Parse request payload entries, reporting the offending index on failure."""
    out: List[ToolDefinition] = []
    for i, item in enumerate(raw):
        if isinstance(item, ToolDefinition):
            out.append(item)
            continue
        try:
            out.append(ToolDefinition.model_validate(item))
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            where = f"toolDefinitions[{i}]" + (f".{loc}" if loc else "")
            raise SchemaError(f"{where}: {first.get('msg', 'invalid value')}") from e
    return out


def _properties(defn: ToolDefinition) -> Dict[str, Dict[str, Any]]:
    params = defn.parameters
    if not isinstance(params, Mapping) or params.get("type") != "object":
        raise SchemaError(f"Tool {defn.name!r}: parameters must be an object schema (type: 'object').")
    props = params.get("properties")
    if not isinstance(props, Mapping) or not props:
        raise SchemaError(f"Tool {defn.name!r}: parameters.properties must declare at least one property.")
    return dict(props)


def _check_number(tool: str, prop: str, key: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SchemaError(f"Tool {tool!r}: property {prop!r} has non-numeric {key}.")
    return value


def _annotation(tool: str, prop: str, spec: Any) -> Any:
    if not isinstance(spec, Mapping):
        raise SchemaError(f"Tool {tool!r}: property {prop!r} must be an object.")
    ptype = spec.get("type")
    if ptype is None:
        raise SchemaError(f"Tool {tool!r}: property {prop!r} is missing a type.")
    if ptype not in SUPPORTED_TYPES:
        raise SchemaError(
            f"Tool {tool!r}: property {prop!r} has unsupported type {ptype!r} "
            f"(expected one of {', '.join(SUPPORTED_TYPES)})."
        )

    if ptype == "string":
        enum = spec.get("enum")
        if enum is not None:
            if not isinstance(enum, list) or not enum or not all(isinstance(v, str) for v in enum):
                raise SchemaError(f"Tool {tool!r}: property {prop!r} enum must be a non-empty list of strings.")
            return Literal[tuple(enum)]  # type: ignore[valid-type]
        min_len = _check_number(tool, prop, "minLength", spec.get("minLength"))
        max_len = _check_number(tool, prop, "maxLength", spec.get("maxLength"))
        return Annotated[
            str,
            Field(
                strict=True,
                min_length=int(min_len) if min_len is not None else None,
                max_length=int(max_len) if max_len is not None else None,
            ),
        ]

    if ptype == "boolean":
        return Annotated[bool, Field(strict=True)]

    lo = _check_number(tool, prop, "minimum", spec.get("minimum"))
    hi = _check_number(tool, prop, "maximum", spec.get("maximum"))
    if lo is not None and hi is not None and lo > hi:
        raise SchemaError(f"Tool {tool!r}: property {prop!r} has minimum greater than maximum.")
    base = int if ptype == "integer" else float
    return Annotated[base, Field(strict=True, ge=lo, le=hi)]


class ParameterValidator:
    """Validates tool-call arguments against one definition."""

    def __init__(self, tool_name: str, model: Type[BaseModel], properties: Tuple[str, ...]) -> None:
        self.tool_name = tool_name
        self.model = model
        self.properties = properties

    def validate(self, arguments: Any) -> Dict[str, Any]:
        if not isinstance(arguments, Mapping):
            raise ToolArgumentError(self.tool_name, "arguments must be a JSON object")
        try:
            parsed = self.model.model_validate(dict(arguments))
        except PydanticValidationError as e:
            problems = []
            for err in e.errors():
                loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
                problems.append(f"{loc}: {err.get('msg')}")
            raise ToolArgumentError(self.tool_name, "; ".join(problems)) from e
        return parsed.model_dump(by_alias=True)

    def accepts(self, arguments: Any) -> bool:
        try:
            self.validate(arguments)
        except ToolArgumentError:
            return False
        return True


def build_validator(defn: ToolDefinition) -> ParameterValidator:
    """Turn a definition's parameter schema into a :class:`ParameterValidator`."""
    props = _properties(defn)
    required = defn.parameters.get("required")
    if required is not None:
        if not isinstance(required, list) or set(required) != set(props) or len(required) != len(props):
            raise SchemaError(
                f"Tool {defn.name!r}: required must list every property "
                f"({', '.join(props)}); optional parameters are not supported."
            )
    if defn.parameters.get("additionalProperties", False) is not False:
        raise SchemaError(f"Tool {defn.name!r}: additionalProperties must be false.")

    fields: Dict[str, Any] = {}
    for i, (prop, spec) in enumerate(props.items()):
        if not isinstance(prop, str) or not prop:
            raise SchemaError(f"Tool {defn.name!r}: property names must be non-empty strings.")
        description = spec.get("description") if isinstance(spec, Mapping) else None
        # Positional field names keep arbitrary property names away from BaseModel attributes.
        fields[f"p{i}"] = (
            _annotation(defn.name, prop, spec),
            Field(..., alias=prop, description=description),
        )

    model = create_model(  # type: ignore[call-overload]
        f"{defn.name.title().replace('_', '')}Arguments",
        __config__=ConfigDict(extra="forbid"),
        **fields,
    )
    return ParameterValidator(defn.name, model, tuple(props))


def check_definition(defn: ToolDefinition) -> None:
    if not defn.name.strip():
        raise SchemaError("Tool definitions need a name.")
    if not defn.description.strip():
        raise SchemaError(f"Tool {defn.name!r}: description must not be empty.")


# -----------------------------
# Editing helpers
# -----------------------------
def normalize_definition(defn: ToolDefinition) -> ToolDefinition:
    """Return a copy whose ``required`` matches the property keys exactly."""
    params = copy.deepcopy(defn.parameters) if isinstance(defn.parameters, Mapping) else {}
    props = params.get("properties")
    if not isinstance(props, Mapping):
        props = {}
    params["type"] = "object"
    params["properties"] = dict(props)
    params["required"] = list(props)
    params["additionalProperties"] = False
    return defn.model_copy(update={"parameters": params})


def with_property(defn: ToolDefinition, name: str, spec: Mapping[str, Any]) -> ToolDefinition:
    """Add or replace a property; it becomes required."""
    out = normalize_definition(defn)
    out.parameters["properties"][name] = dict(spec)
    return normalize_definition(out)


def without_property(defn: ToolDefinition, name: str) -> ToolDefinition:
    out = normalize_definition(defn)
    out.parameters["properties"].pop(name, None)
    return normalize_definition(out)


def rename_property(defn: ToolDefinition, old: str, new: str) -> ToolDefinition:
    """Rename a property in place, keeping declaration order."""
    out = normalize_definition(defn)
    props = out.parameters["properties"]
    if old not in props or old == new:
        return out
    if new in props:
        raise SchemaError(f"Tool {defn.name!r}: property {new!r} already exists.")
    out.parameters["properties"] = {(new if k == old else k): v for k, v in props.items()}
    return normalize_definition(out)


def to_openai_tool(defn: ToolDefinition) -> Dict[str, Any]:
    """Render the function-tool payload for the chat completions API."""
    params = normalize_definition(defn).parameters
    return {
        "type": "function",
        "function": {
            "name": defn.name,
            "description": defn.description,
            "parameters": params,
            "strict": bool(defn.strict),
        },
    }
