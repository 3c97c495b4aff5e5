"""End node: shapes the execution output."""

from typing import Any, Dict

from flowexec.engine.expressions import render, resolve_path
from flowexec.engine.state import ExecutionStatus
from flowexec.nodes.base import NodeContext, NodeResult


TERMINAL_OVERRIDES = {ExecutionStatus.APPROVED.value, ExecutionStatus.REJECTED.value}


class EndExecutor:
    """
    Builds the workflow output from the variables.

    Config:
        outputMapping: ``{key: path-or-template}``
        includeFields / excludeFields: select variables to expose
        status: ``approved`` or ``rejected`` for approval workflows
    """

    async def execute(self, ctx: NodeContext) -> NodeResult:
        config = ctx.config
        variables = ctx.variables

        mapping = config.get("outputMapping")
        if mapping:
            output: Dict[str, Any] = {key: render(source, ctx.bindings) for key, source in mapping.items()}
        elif config.get("includeFields"):
            output = {
                field: resolve_path(ctx.bindings, field)
                for field in config["includeFields"]
            }
        else:
            excluded = set(config.get("excludeFields") or [])
            output = {k: v for k, v in variables.items() if k not in excluded}

        status = config.get("status")
        return NodeResult(
            output=output,
            terminal_status=status if status in TERMINAL_OVERRIDES else None,
        )
