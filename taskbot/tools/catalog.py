"""Catalog of model-callable tools and their argument contracts."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import ValidationError, create_model

from taskbot.tools.base import Tool


class ArgumentError(Exception):
    """Arguments do not satisfy a tool's parameter schema."""

    def __init__(self, message: str, field: str | None = None, missing: bool = False) -> None:
        super().__init__(message)
        self.field = field
        self.missing = missing


class ToolCatalog:
    """Explicit registry of the tools offered to the model."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def prepare(self) -> None:
        for tool in self._tools.values():
            await tool.prepare()

    def list_tool_specs(self) -> list[dict[str, Any]]:
        """Tool definitions in the Responses API function format."""

        return [
            {
                "type": "function",
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters_schema,
            }
            for tool in self._tools.values()
        ]


def missing_required_field(schema: dict[str, Any], payload: dict[str, Any]) -> str | None:
    """First required field that is absent or blank, in schema order."""

    for name in schema.get("required", []):
        value = payload.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return name
    return None


def validate_arguments(schema: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    """Check required fields and coerce declared properties to their types.

    Raises:
        ArgumentError: naming the offending field.
    """
    missing = missing_required_field(schema, payload)
    if missing is not None:
        raise ArgumentError(f"Обязательное поле '{missing}' не заполнено", field=missing, missing=True)

    props = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, tuple[Any, Any]] = {}
    for name, config in props.items():
        typ = _field_type(config)
        if name in required:
            fields[name] = (typ, ...)
        else:
            fields[name] = (typ | None, None)

    model = create_model("ToolInputModel", **fields)
    known = {key: value for key, value in payload.items() if key in props}
    try:
        value = model(**known)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else None
        raise ArgumentError(f"Некорректное значение поля '{field}': {first['msg']}", field=field) from exc
    return value.model_dump(exclude_none=True)


def _python_type(schema_type: str) -> type[Any]:
    mapping: dict[str, type[Any]] = {
        "string": str,
        "integer": int,
        "number": float,
        "boolean": bool,
        "object": dict,
        "array": list,
    }
    return mapping.get(schema_type, str)


def _field_type(config: dict[str, Any]) -> Any:
    choices = config.get("enum")
    if choices:
        return Literal[tuple(choices)]
    return _python_type(config.get("type", "string"))
