"""
Tools package - Tool registry and built-in tools.
"""

from flowexec.tools.registry import Tool, ToolRegistry, tool_registry, register_tool

__all__ = [
    "Tool",
    "ToolRegistry",
    "tool_registry",
    "register_tool",
]
