"""
Tool Registry for the Execution Engine.

Tool nodes, and agent nodes through function calling, call capabilities
by name. A tool is any Python callable, sync or async, registered here
together with a description and a parameter listing derived from its
signature.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional
from dataclasses import dataclass, field
import asyncio
import inspect
import logging


logger = logging.getLogger(__name__)

_JSON_TYPES = {
    "int": "integer",
    "float": "number",
    "str": "string",
    "bool": "boolean",
    "dict": "object",
    "list": "array",
}


def describe_parameters(func: Callable) -> Dict[str, Dict[str, Any]]:
    """Parameter listing from a function signature."""
    params: Dict[str, Dict[str, Any]] = {}
    for name, param in inspect.signature(func).parameters.items():
        if name in ("self", "cls") or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = param.annotation
        if annotation is inspect.Parameter.empty:
            type_name = "Any"
        else:
            type_name = getattr(annotation, "__name__", str(annotation))
        params[name] = {
            "type": type_name,
            "required": param.default is inspect.Parameter.empty,
        }
    return params


@dataclass
class Tool:
    """
    A registered tool.

    Attributes:
        name: Unique identifier used by ``config.tool``
        func: The callable; coroutine functions are awaited
        description: Human-readable description
        parameters: Parameter name to ``{type, required}``
    """
    name: str
    func: Callable
    description: str = ""
    parameters: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.func)

    async def invoke(self, **params: Any) -> Any:
        """Call the tool; plain functions run in a worker thread."""
        if self.is_async:
            return await self.func(**params)
        return await asyncio.to_thread(self.func, **params)

    def to_function_schema(self) -> Dict[str, Any]:
        """Function-calling spec offered to agent nodes."""
        properties: Dict[str, Dict[str, Any]] = {}
        for name, spec in self.parameters.items():
            json_type = _JSON_TYPES.get(spec["type"])
            properties[name] = {"type": json_type} if json_type else {}
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": [name for name, spec in self.parameters.items() if spec["required"]],
                },
            },
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "isAsync": self.is_async,
        }


class ToolRegistry:
    """
    Registry of tools available to tool nodes.

    Usage:
        registry = ToolRegistry()

        @registry.register("shout")
        def shout(text: str) -> dict:
            return {"text": text.upper()}
    """

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(
        self,
        name: Optional[str] = None,
        description: str = "",
    ) -> Callable:
        """Decorator form of :meth:`add`; returns the function unchanged."""
        def decorator(func: Callable) -> Callable:
            self.add(func, name=name, description=description)
            return func

        return decorator

    def add(self, func: Callable, name: Optional[str] = None, description: str = "") -> Tool:
        tool_name = name or func.__name__
        tool_desc = description or inspect.getdoc(func) or ""

        tool = Tool(
            name=tool_name,
            func=func,
            description=tool_desc.strip().split("\n\n")[0],
            parameters=describe_parameters(func),
        )
        if tool_name in self._tools:
            logger.warning(f"Replacing registered tool: {tool_name}")
        self._tools[tool_name] = tool
        logger.debug(f"Registered tool: {tool_name}")
        return tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_dict() for tool in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())


# Global tool registry instance
tool_registry = ToolRegistry()


def register_tool(name: Optional[str] = None, description: str = "") -> Callable:
    """Register a tool in the global registry."""
    return tool_registry.register(name, description)
