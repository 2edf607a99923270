"""Registry of the audit operations exposed over HTTP.

Each operation is registered with a Pydantic input and output model. The
registry validates parameters against the input model, runs the handler
(sync or async) and returns its output as a plain dictionary. The manifest
flattens both models into parameter lists so callers can discover what an
operation accepts and returns.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel


def _json_type(prop: Dict[str, Any]) -> str:
    # Optional[X] renders as anyOf [X, null]
    if "type" in prop:
        return prop["type"]
    for option in prop.get("anyOf", []):
        if option.get("type") not in (None, "null"):
            return option["type"]
    return "string"


def schema_parameters(schema: Type[BaseModel]) -> List[Dict[str, Any]]:
    """Flatten a model's JSON schema into ``{name, type, description, required[, default]}`` entries."""
    json_schema = schema.model_json_schema()
    required = set(json_schema.get("required", []))

    parameters = []
    for name, prop in json_schema.get("properties", {}).items():
        entry = {
            "name": name,
            "type": _json_type(prop),
            "description": prop.get("description", ""),
            "required": name in required,
        }
        if "default" in prop:
            entry["default"] = prop["default"]
        parameters.append(entry)
    return parameters


@dataclass
class ToolDefinition:
    """A registered audit operation.

    Attributes:
        name: Operation identifier, e.g. ``unifi_security_audit``
        description: What the operation does
        input_schema: Model the parameters are validated against
        output_schema: Model dictionary results are coerced into
        handler: Callable taking the validated input model
        tags: Labels used to filter the manifest
    """
    name: str
    description: str
    input_schema: Type[BaseModel]
    output_schema: Type[BaseModel]
    handler: Callable
    tags: List[str] = field(default_factory=list)

    def to_manifest_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "tags": self.tags,
            "parameters": schema_parameters(self.input_schema),
            "returns": schema_parameters(self.output_schema),
        }

    def coerce_output(self, result: Any) -> Any:
        if isinstance(result, BaseModel):
            return result.model_dump()
        if isinstance(result, dict):
            return self.output_schema(**result).model_dump()
        return result


class ToolRegistry:
    """Name-indexed collection of audit operations."""

    def __init__(self):
        self._tools: Dict[str, ToolDefinition] = {}

    def register(
        self,
        name: str,
        description: str,
        input_schema: Type[BaseModel],
        output_schema: Type[BaseModel],
        handler: Callable,
        tags: Optional[List[str]] = None
    ) -> None:
        """Add an operation. Raises ValueError if the name is taken."""
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered")
        self._tools[name] = ToolDefinition(name, description, input_schema, output_schema, handler, list(tags or []))

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def list_tools(self, tag: Optional[str] = None) -> List[ToolDefinition]:
        if tag is None:
            return list(self._tools.values())
        return [t for t in self._tools.values() if tag in t.tags]

    def get_manifest(self, tag: Optional[str] = None) -> List[Dict[str, Any]]:
        return [t.to_manifest_dict() for t in self.list_tools(tag)]

    async def execute(self, name: str, parameters: Dict[str, Any]) -> Any:
        """Validate ``parameters`` and run the named operation.

        Raises:
            ValueError: Unknown operation
            ValidationError: Parameters rejected by the input model
        """
        definition = self.get(name)
        if definition is None:
            raise ValueError(f"Tool '{name}' not found")

        params = definition.input_schema(**parameters)
        if asyncio.iscoroutinefunction(definition.handler):
            result = await definition.handler(params)
        else:
            result = definition.handler(params)
        return definition.coerce_output(result)


_registry: Optional[ToolRegistry] = None


def get_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = ToolRegistry()
    return _registry


def tool(
    name: str,
    description: str,
    input_schema: Type[BaseModel],
    output_schema: Type[BaseModel],
    tags: Optional[List[str]] = None
) -> Callable:
    """Register the decorated function on the shared registry.

    Example:
        @tool(
            name="unifi_audit_summary",
            description="Latest audit score for a site",
            input_schema=AuditSummaryInput,
            output_schema=AuditSummaryOutput,
            tags=["unifi", "audit"]
        )
        async def unifi_audit_summary(params: AuditSummaryInput) -> AuditSummaryOutput:
            ...
    """
    def decorator(func: Callable) -> Callable:
        get_registry().register(name, description, input_schema, output_schema, func, tags)
        return func
    return decorator
