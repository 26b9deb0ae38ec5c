"""Tool registry: name -> handler, argument model and capability tags."""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel

from neptune.models.tools import ToolContext, ToolResult

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any, ToolContext], Awaitable[ToolResult]]


class ToolSpec:
    """A registered tool"""

    def __init__(
        self,
        name: str,
        description: str,
        args_model: Type[BaseModel],
        handler: ToolHandler,
        capabilities: Iterable[str] = (),
    ):
        self.name = name
        self.description = description
        self.args_model = args_model
        self.handler = handler
        self.capabilities = frozenset(capabilities)

    def definition(self) -> Dict[str, Any]:
        """OpenAI-style function schema derived from the argument model."""
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": schema,
            },
        }

    def validate(self, args: Dict[str, Any]) -> BaseModel:
        """Raises pydantic.ValidationError when the arguments do not match the schema."""
        return self.args_model.model_validate(args)


class ToolRegistry:
    def __init__(self):
        self._tools: Dict[str, ToolSpec] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def add(self, spec: ToolSpec) -> ToolSpec:
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._tools[spec.name] = spec
        logger.debug(f"Registered tool {spec.name} (capabilities={sorted(spec.capabilities)})")
        return spec

    def register(
        self,
        name: str,
        description: str,
        args_model: Type[BaseModel],
        capabilities: Iterable[str] = (),
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`add`."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.add(ToolSpec(name, description, args_model, handler, capabilities))
            return handler

        return decorator

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self, feature: Optional[str] = None) -> List[Dict[str, Any]]:
        """Tool schemas offered to the model.

        A feature that no tool is tagged with falls back to the full set.
        """
        specs = list(self._tools.values())
        if feature:
            tagged = [spec for spec in specs if feature in spec.capabilities]
            if tagged:
                specs = tagged
        return [spec.definition() for spec in specs]
