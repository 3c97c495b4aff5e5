"""Decision node: evaluates a condition and names the branch to take."""

from typing import Any, Dict, Optional
import re

from flowexec.engine.expressions import evaluate, resolve_path
from flowexec.errors import ExecutorError, ExpressionError
from flowexec.nodes.base import NodeContext, NodeResult


def _compare(value: Any, case: Dict[str, Any]) -> bool:
    """Check a switch case against a value; comparisons of unlike types never match."""
    try:
        if "equals" in case:
            return value == case["equals"]
        if "notEquals" in case:
            return value != case["notEquals"]
        if "greaterThan" in case:
            return value is not None and value > case["greaterThan"]
        if "lessThan" in case:
            return value is not None and value < case["lessThan"]
        if "greaterThanOrEqual" in case:
            return value is not None and value >= case["greaterThanOrEqual"]
        if "lessThanOrEqual" in case:
            return value is not None and value <= case["lessThanOrEqual"]
    except TypeError:
        return False

    if "contains" in case:
        if isinstance(value, str):
            return str(case["contains"]) in value
        if isinstance(value, (list, tuple)):
            return case["contains"] in value
        return False
    if "matches" in case:
        if not isinstance(value, str):
            return False
        try:
            return re.search(case["matches"], value) is not None
        except re.error as e:
            raise ExpressionError(f"Invalid pattern '{case['matches']}': {e}")
    if "in" in case and isinstance(case["in"], list):
        return value in case["in"]
    if "notIn" in case and isinstance(case["notIn"], list):
        return value not in case["notIn"]
    return False


class DecisionExecutor:
    """
    Picks a branch label; the engine uses the label to select edges.

    Modes:
        expression: ``expression`` evaluates to a bool, branch ``"true"``
            or ``"false"``; a non-boolean result is used as the label
        switch: ``variable`` path compared against ``cases`` in order,
            falling back to ``defaultBranch``
    """

    async def execute(self, ctx: NodeContext) -> NodeResult:
        config = ctx.config
        mode = config.get("mode") or ("switch" if "variable" in config else "expression")

        if mode == "expression":
            return self._expression(ctx)
        if mode == "switch":
            return self._switch(ctx)
        raise ExecutorError(
            f"Unknown decision mode '{mode}'",
            node_id=ctx.node.id,
            code="INVALID_CONFIG",
        )

    def _expression(self, ctx: NodeContext) -> NodeResult:
        expression = ctx.config.get("expression", ctx.config.get("condition"))
        if expression is None:
            raise ExecutorError(
                f"Decision node '{ctx.node.id}' has no expression",
                node_id=ctx.node.id,
                code="INVALID_CONFIG",
            )
        try:
            value = evaluate(expression, ctx.bindings)
        except ExpressionError as e:
            e.node_id = ctx.node.id
            raise

        if isinstance(value, bool) or value is None:
            branch = "true" if value else "false"
        else:
            branch = str(value)
        return NodeResult(output={"branch": branch, "value": value}, branch=branch)

    def _switch(self, ctx: NodeContext) -> NodeResult:
        config = ctx.config
        variable = config.get("variable")
        if not variable:
            raise ExecutorError(
                f"Decision node '{ctx.node.id}' has no variable to switch on",
                node_id=ctx.node.id,
                code="INVALID_CONFIG",
            )

        value = resolve_path(ctx.bindings, variable)
        matched: Optional[str] = None
        for case in config.get("cases", config.get("conditions")) or []:
            if _compare(value, case):
                matched = str(case.get("branch"))
                break

        branch = matched if matched is not None else str(config.get("defaultBranch", "default"))
        return NodeResult(
            output={"branch": branch, "value": value, "matched": matched is not None},
            branch=branch,
        )
