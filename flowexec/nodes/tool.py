"""Tool node: invokes a registered tool with templated parameters."""

import logging
import time

from flowexec.engine.expressions import render
from flowexec.errors import ExecutorError
from flowexec.nodes.base import NodeContext, NodeResult, node_timeout, with_timeout
from flowexec.tools.registry import ToolRegistry


logger = logging.getLogger(__name__)


class ToolExecutor:
    """
    Looks a tool up by name and calls it with keyword parameters.

    Coroutine tools are awaited; plain functions run in a worker thread
    so they never block the event loop. Exceptions raised by the tool are
    reported as node errors carrying the tool name.
    """

    def __init__(self, tools: ToolRegistry):
        self.tools = tools

    async def execute(self, ctx: NodeContext) -> NodeResult:
        config = ctx.config
        node_id = ctx.node.id
        name = config.get("tool") or config.get("toolId")

        tool = self.tools.get(name) if name else None
        if tool is None:
            raise ExecutorError(f"Tool '{name}' not found", node_id=node_id, code="UNKNOWN_TOOL")

        params = render(config.get("parameters") or {}, ctx.bindings)
        if not isinstance(params, dict):
            raise ExecutorError(
                f"Parameters for tool '{name}' must be an object",
                node_id=node_id,
                code="INVALID_CONFIG",
            )

        started = time.perf_counter()
        try:
            output = await with_timeout(tool.invoke(**params), node_timeout(ctx), node_id)
        except ExecutorError:
            raise
        except TypeError as e:
            raise ExecutorError(f"Invalid parameters for tool '{name}': {e}", node_id=node_id, code="TOOL_ERROR")
        except Exception as e:
            raise ExecutorError(f"Tool '{name}' failed: {e}", node_id=node_id, code="TOOL_ERROR")

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(f"Tool '{name}' finished in {duration_ms}ms")
        return NodeResult(output=output, metrics={"durationMs": duration_ms, "tool": name})
