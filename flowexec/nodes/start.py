"""Start node: seeds workflow variables from the execution input."""

from typing import Any, Dict
from copy import deepcopy
import logging

from flowexec.engine.expressions import render
from flowexec.errors import ExecutorError
from flowexec.nodes.base import NodeContext, NodeResult


logger = logging.getLogger(__name__)


class StartExecutor:
    """
    Validates required inputs, applies defaults and maps input variables
    into workflow variables.

    Config:
        requiredInputs: names that must be present and non-empty
        defaults: values for inputs that were not supplied
        inputMapping: ``{target: path-or-literal}``; when omitted every
            input variable is copied as-is
    """

    async def execute(self, ctx: NodeContext) -> NodeResult:
        config = ctx.config
        inputs: Dict[str, Any] = dict(config.get("defaults") or {})
        inputs.update(deepcopy(ctx.input_variables))

        missing = [
            name for name in config.get("requiredInputs") or []
            if inputs.get(name) in (None, "")
        ]
        if missing:
            raise ExecutorError(
                f"Missing required inputs: {', '.join(missing)}",
                node_id=ctx.node.id,
                code="MISSING_INPUT",
            )

        mapping = config.get("inputMapping")
        if mapping:
            scope = {**ctx.bindings, **inputs, "input": inputs}
            updates = {target: render(source, scope) for target, source in mapping.items()}
        else:
            updates = inputs

        logger.debug(f"Start node '{ctx.node.id}' seeded variables: {sorted(updates)}")
        return NodeResult(output=deepcopy(updates), state_updates=updates)
