"""
Structured output: schema definition, pseudo-tool wrapping and response parsing.

A structured-output schema plays two roles:

1. It is disguised as an ordinary tool (``structured_output``) so providers that
   only support function calling can still be steered toward the shape, and is
   sent as a ``json_schema`` response format for providers that support it.
2. It is used to parse the model's final text back into data: direct JSON first,
   then a fenced ```json block as a fallback.

When tools and structured output are combined, the final answer is restated by
the model in response to a coercion prompt built from ``describe()``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sapiens.agent.errors import StructuredParseFailed
from sapiens.llm.models import ToolDeclaration

logger = logging.getLogger(__name__)

STRUCTURED_OUTPUT_TOOL = "structured_output"

# Matches every fenced block in turn: group 1 is the language tag, group 2 the body
_FENCED_BLOCK = re.compile(r"```([\w+-]*)[ \t]*\n?(.*?)```", re.DOTALL)


class Schema(BaseModel):
    """
    JSON-Schema-like object tree.

    Example:
        >>> Schema(
        ...     type="object",
        ...     properties={
        ...         "answer": Schema(type="string", description="The answer"),
        ...         "confidence": Schema(type="number"),
        ...     },
        ...     required=["answer", "confidence"],
        ... )
    """

    type: str = Field(default="object", description="string, number, integer, boolean, object, array")
    description: str = ""
    format: str = ""
    nullable: bool = False
    enum: list[str] = Field(default_factory=list)
    items: Schema | None = None
    properties: dict[str, Schema] = Field(default_factory=dict)
    required: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    def to_json_schema(self) -> dict[str, Any]:
        """Render as a plain JSON-Schema dict, omitting unset keywords."""
        result: dict[str, Any] = {"type": self.type}
        if self.description:
            result["description"] = self.description
        if self.format:
            result["format"] = self.format
        if self.nullable:
            result["nullable"] = True
        if self.enum:
            result["enum"] = list(self.enum)
        if self.items is not None:
            result["items"] = self.items.to_json_schema()
        if self.type == "object" or self.properties:
            result["properties"] = {
                name: prop.to_json_schema() for name, prop in self.properties.items()
            }
        if self.required:
            result["required"] = list(self.required)
        return result


class StructuredOutput:
    """
    A structured-output target as set on an Agent.

    Accepts a ``Schema``, a JSON-Schema dict, or a pydantic model class. With a
    model class, parsed data is validated into a model instance.
    """

    def __init__(self, schema: Schema | dict[str, Any] | type[BaseModel]):
        self.model: type[BaseModel] | None = None
        if isinstance(schema, Schema):
            self.json_schema = schema.to_json_schema()
        elif isinstance(schema, dict):
            self.json_schema = dict(schema)
        elif isinstance(schema, type) and issubclass(schema, BaseModel):
            self.model = schema
            self.json_schema = schema.model_json_schema()
        else:
            raise TypeError(f"Unsupported structured output schema: {schema!r}")

    @property
    def description(self) -> str:
        return self.json_schema.get("description", "")

    def parse(self, raw_text: str) -> Any:
        """Parse model text; returns a dict/list or a model instance."""
        data = parse(raw_text, self.json_schema)
        if self.model is None:
            return data
        try:
            return self.model.model_validate(data)
        except ValidationError as e:
            raise StructuredParseFailed(f"Structured output failed validation: {e}") from e

    def validate_data(self, data: Any) -> Any:
        """Validate already-decoded data (e.g. pseudo-tool arguments)."""
        _check_shape(data, self.json_schema)
        if self.model is None:
            return data
        try:
            return self.model.model_validate(data)
        except ValidationError as e:
            raise StructuredParseFailed(f"Structured output failed validation: {e}") from e


def to_pseudo_tool(schema: dict[str, Any]) -> ToolDeclaration:
    """Wrap a structured-output schema as a tool declaration."""
    return ToolDeclaration(
        name=STRUCTURED_OUTPUT_TOOL,
        description=(
            "Return the final answer as structured output. Call this tool with "
            "arguments matching the schema instead of replying in prose."
        ),
        parameter_schema=schema,
    )


def to_response_format(schema: dict[str, Any]) -> dict[str, Any]:
    """Build an OpenAI-style ``json_schema`` response format directive."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": STRUCTURED_OUTPUT_TOOL,
            "schema": schema,
            "strict": False,
        },
    }


def extract_fenced_json(text: str) -> str | None:
    """
    Return the body of the fenced JSON block in ``text``, if any.

    A block tagged ``json`` wins; otherwise the first untagged block is used.
    Blocks in other languages are ignored.
    """
    untagged = None
    for match in _FENCED_BLOCK.finditer(text):
        language = match.group(1).lower()
        if language == "json":
            return match.group(2).strip()
        if not language and untagged is None:
            untagged = match.group(2).strip()
    return untagged


def parse(raw_text: str, schema: dict[str, Any]) -> Any:
    """
    Parse model output into data matching ``schema``.

    Tries a direct JSON decode first; if that fails, looks for a fenced
    ```json block and decodes its body.

    Raises:
        StructuredParseFailed: If neither attempt yields data of the right shape
    """
    text = (raw_text or "").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        fenced = extract_fenced_json(text)
        if fenced is None:
            raise StructuredParseFailed("Response is not JSON and has no fenced JSON block")
        try:
            data = json.loads(fenced)
        except json.JSONDecodeError as e:
            raise StructuredParseFailed(f"Fenced block is not valid JSON: {e}") from e
    _check_shape(data, schema)
    return data


def _check_shape(data: Any, schema: dict[str, Any]) -> None:
    expected = schema.get("type", "object")
    if expected == "object":
        if not isinstance(data, dict):
            raise StructuredParseFailed(f"Expected a JSON object, got {type(data).__name__}")
        missing = [field for field in schema.get("required", []) if field not in data]
        if missing:
            raise StructuredParseFailed(f"Missing required field(s): {', '.join(missing)}")
    elif expected == "array" and not isinstance(data, list):
        raise StructuredParseFailed(f"Expected a JSON array, got {type(data).__name__}")


def describe(schema: dict[str, Any]) -> str:
    """
    Render a human-readable field list, e.g.
    ``answer (string, required): The answer; confidence (number)``.
    """
    properties = schema.get("properties") or {}
    if not properties:
        return f"a JSON {schema.get('type', 'object')}"

    required = set(schema.get("required", []))
    parts = []
    for name, prop in properties.items():
        qualifiers = [prop.get("type", "any")]
        if name in required:
            qualifiers.append("required")
        entry = f"{name} ({', '.join(qualifiers)})"
        if prop.get("description"):
            entry += f": {prop['description']}"
        if prop.get("enum"):
            entry += f" [one of: {', '.join(map(str, prop['enum']))}]"
        parts.append(entry)
    return "; ".join(parts)


def coercion_prompt(schema: dict[str, Any]) -> str:
    """Prompt asking the model to restate its answer strictly as JSON."""
    return (
        "Based on the information provided, respond ONLY with a valid JSON object "
        f"containing these fields: {describe(schema)}. "
        "Do not include any text outside the JSON."
    )
