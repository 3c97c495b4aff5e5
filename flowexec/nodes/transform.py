"""Transform node: pure reshaping of workflow variables."""

from typing import Any, Dict
from copy import deepcopy
import logging

from flowexec.engine.expressions import evaluate, render, resolve_path, set_path
from flowexec.errors import ExpressionError
from flowexec.nodes.base import NodeContext, NodeResult


logger = logging.getLogger(__name__)


class TransformExecutor:
    """
    Applies ``config.operations`` in order to a copy of the variables and
    returns the top-level variables that changed.

    Operations:
        {set, value}                  literal or template value
        {copy, to}                    path to path
        {increment, by}               numeric add (missing counts as 0)
        {push, to} / {push, value}    append a path's value or a literal
        {merge, into}                 shallow-merge one object into another
        {lengthOf, to}                length of a list/string/object
        {arrayGet, index, to}         list item by index (negative or "last")
        {condition, then, else, to}   conditional assignment
        {expression, to}              evaluated expression
    """

    async def execute(self, ctx: NodeContext) -> NodeResult:
        original = ctx.variables
        working: Dict[str, Any] = deepcopy(original)

        for operation in ctx.config.get("operations") or []:
            scope = {
                **working,
                "input": ctx.bindings.get("input", {}),
                "nodes": ctx.bindings.get("nodes", {}),
                "context": ctx.bindings.get("context", {}),
            }
            try:
                self._apply(operation, working, scope)
            except ExpressionError as e:
                e.node_id = ctx.node.id
                raise

        updates = {
            key: value for key, value in working.items()
            if key not in original or original[key] != value
        }
        logger.debug(f"Transform node '{ctx.node.id}' updated: {sorted(updates)}")
        return NodeResult(output=deepcopy(updates), state_updates=updates)

    def _apply(self, op: Dict[str, Any], working: Dict[str, Any], scope: Dict[str, Any]) -> None:
        if not isinstance(op, dict):
            raise ExpressionError(f"Transform operation must be an object, got {op!r}")

        if "set" in op:
            set_path(working, op["set"], render(op.get("value"), scope))

        elif "copy" in op and "to" in op:
            set_path(working, op["to"], deepcopy(resolve_path(scope, op["copy"])))

        elif "increment" in op:
            current = resolve_path(scope, op["increment"])
            by = render(op.get("by", 1), scope)
            if current is None:
                current = 0
            if not isinstance(current, (int, float)) or not isinstance(by, (int, float)):
                raise ExpressionError(f"Cannot increment non-numeric '{op['increment']}'")
            set_path(working, op["increment"], current + by)

        elif "push" in op and "to" in op:
            if "value" in op:
                item = render(op["value"], scope)
            else:
                item = deepcopy(resolve_path(scope, op["push"]))
            target = resolve_path(scope, op["to"])
            if target is None:
                target = []
            if not isinstance(target, list):
                raise ExpressionError(f"Cannot push to non-list '{op['to']}'")
            set_path(working, op["to"], [*target, item])

        elif "merge" in op and "into" in op:
            source = resolve_path(scope, op["merge"]) or {}
            target = resolve_path(scope, op["into"]) or {}
            if not isinstance(source, dict) or not isinstance(target, dict):
                raise ExpressionError(f"Cannot merge '{op['merge']}' into '{op['into']}'")
            set_path(working, op["into"], {**target, **deepcopy(source)})

        elif "lengthOf" in op and "to" in op:
            value = resolve_path(scope, op["lengthOf"])
            set_path(working, op["to"], 0 if value is None else len(value))

        elif "arrayGet" in op and "to" in op:
            items = resolve_path(scope, op["arrayGet"])
            index = op.get("index", 0)
            if isinstance(index, str) and index != "last":
                index = render(index, scope)
            if not isinstance(items, list):
                set_path(working, op["to"], None)
                return
            if index == "last":
                index = -1
            try:
                value = items[int(index)]
            except (IndexError, ValueError, TypeError):
                value = None
            set_path(working, op["to"], deepcopy(value))

        elif "condition" in op and "to" in op:
            branch = "then" if evaluate(op["condition"], scope) else "else"
            set_path(working, op["to"], render(op.get(branch), scope))

        elif "expression" in op and "to" in op:
            set_path(working, op["to"], evaluate(op["expression"], scope))

        else:
            raise ExpressionError(f"Unknown transform operation: {sorted(op)}")
