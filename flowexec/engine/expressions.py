"""
Bindings, paths, templates and expressions.

Node configs refer to execution data in three ways:

- paths:        ``review.score``, ``$.items[0].name``
- templates:    ``"Review ${$.topic} (round ${context.iteration})"``
- expressions:  ``score >= 7 && not empty(feedback)``

Expressions are parsed with :mod:`ast` and evaluated by walking a small
whitelisted subset of the tree; nothing is ever passed to ``eval``.
"""

from typing import Any, Callable, Dict, List, Optional
from functools import lru_cache
import ast
import json
import operator
import re

from flowexec.errors import ExpressionError


_SEGMENT = re.compile(r"([^.\[\]]+)|\[(-?\d+|'[^']*'|\"[^\"]*\")\]")
_RAW_PATH = re.compile(r"^\$\.?([A-Za-z_][\w.\[\]'\"-]*)$")
_TEMPLATE = re.compile(r"\$\{\s*([^}]+?)\s*\}")
_STRING = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"")
_JS_OPERATORS = [("===", "=="), ("!==", "!="), ("&&", " and "), ("||", " or ")]


# ============================================================
# Paths
# ============================================================

def _split_path(path: str) -> List[Any]:
    path = path.strip()
    if path.startswith("$"):
        path = path[1:].lstrip(".")

    segments: List[Any] = []
    for name, index in _SEGMENT.findall(path):
        if name:
            segments.append(name)
        elif index[0] in "'\"":
            segments.append(index[1:-1])
        else:
            segments.append(int(index))
    return segments


def _step(current: Any, segment: Any) -> Any:
    if current is None:
        return None
    if isinstance(current, dict):
        if segment in current:
            return current[segment]
        return current.get(str(segment))
    if isinstance(current, (list, tuple)):
        try:
            return current[int(segment)]
        except (ValueError, IndexError, TypeError):
            return None
    if str(segment).startswith("_"):
        return None
    return getattr(current, str(segment), None)


def resolve_path(bindings: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted/indexed path against bindings; missing segments give None."""
    current: Any = bindings
    for segment in _split_path(path):
        current = _step(current, segment)
        if current is None:
            return None
    return current


def set_path(target: Dict[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at a dotted path, creating intermediate dicts."""
    segments = [str(s) for s in _split_path(path)]
    if not segments:
        raise ExpressionError(f"Empty target path '{path}'")

    current = target
    for segment in segments[:-1]:
        nxt = current.get(segment)
        if not isinstance(nxt, dict):
            nxt = {}
            current[segment] = nxt
        current = nxt
    current[segments[-1]] = value


# ============================================================
# Templates
# ============================================================

def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render(value: Any, bindings: Dict[str, Any]) -> Any:
    """
    Render templates inside a config value.

    Strings that are exactly ``$.path`` or ``${path}`` resolve to the raw
    value; other strings get each ``${path}`` substituted as text. Dicts
    and lists are rendered recursively.
    """
    if isinstance(value, dict):
        return {k: render(v, bindings) for k, v in value.items()}
    if isinstance(value, list):
        return [render(v, bindings) for v in value]
    if not isinstance(value, str):
        return value

    raw = _RAW_PATH.match(value.strip())
    if raw:
        return resolve_path(bindings, raw.group(1))

    whole = _TEMPLATE.fullmatch(value.strip())
    if whole:
        return resolve_path(bindings, whole.group(1))

    return _TEMPLATE.sub(lambda m: _stringify(resolve_path(bindings, m.group(1))), value)


# ============================================================
# Expressions
# ============================================================

def _exists(value: Any) -> bool:
    return value is not None


def _empty(value: Any) -> bool:
    if value is None:
        return True
    try:
        return len(value) == 0
    except TypeError:
        return False


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "len": len,
    "exists": _exists,
    "empty": _empty,
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "min": min,
    "max": max,
    "abs": abs,
    "round": round,
}

CONSTANTS = {
    "true": True,
    "false": False,
    "null": None,
    "True": True,
    "False": False,
    "None": None,
}

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_CMP_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}


def _rewrite_code(code: str, braces: List[bool]) -> str:
    # braces: open ``{`` stack, True where the brace opened a ``${`` template
    chars: List[str] = []
    i = 0
    while i < len(code):
        if code.startswith("${", i):
            braces.append(True)
            chars.append("(")
            i += 2
            continue
        char = code[i]
        if char == "{":
            braces.append(False)
        elif char == "}" and braces:
            char = ")" if braces.pop() else "}"
        chars.append(char)
        i += 1

    text = "".join(chars)
    for js, py in _JS_OPERATORS:
        text = text.replace(js, py)
    text = re.sub(r"!(?!=)", " not ", text)
    return re.sub(r"\$\.?(?=[A-Za-z_])", "", text)


def _normalize(expression: str) -> str:
    """
    Accept the JavaScript-style spellings workflow authors tend to use.

    Only the code between string literals is rewritten; quoted text such
    as ``"yes!"`` or ``'a && b'`` reaches the parser untouched.
    """
    parts: List[str] = []
    braces: List[bool] = []
    pos = 0
    for literal in _STRING.finditer(expression):
        parts.append(_rewrite_code(expression[pos:literal.start()], braces))
        parts.append(literal.group(0))
        pos = literal.end()
    parts.append(_rewrite_code(expression[pos:], braces))
    return "".join(parts).strip()


@lru_cache(maxsize=512)
def _parse(expression: str) -> ast.Expression:
    normalized = _normalize(expression)
    try:
        return ast.parse(normalized, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression '{expression}': {e.msg}")


class _Evaluator:
    def __init__(self, bindings: Dict[str, Any]):
        self.bindings = bindings

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")
        return method(node)

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.bindings:
            return self.bindings[node.id]
        return CONSTANTS.get(node.id)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        return _step(self.visit(node.value), node.attr)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        return _step(self.visit(node.value), self.visit(node.slice))

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(e) for e in node.elts)

    def visit_Dict(self, node: ast.Dict) -> Any:
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values)}

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not operand
        if isinstance(node.op, ast.USub):
            return -operand
        if isinstance(node.op, ast.UAdd):
            return +operand
        raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
        return op(self.visit(node.left), self.visit(node.right))

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not _CMP_OPS[type(op_node)](left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Call(self, node: ast.Call) -> Any:
        if not isinstance(node.func, ast.Name) or node.func.id not in FUNCTIONS:
            name = getattr(node.func, "id", type(node.func).__name__)
            raise ExpressionError(f"Function '{name}' is not allowed")
        if node.keywords:
            raise ExpressionError("Keyword arguments are not supported")
        args = [self.visit(a) for a in node.args]
        return FUNCTIONS[node.func.id](*args)


def evaluate(expression: Any, bindings: Dict[str, Any]) -> Any:
    """
    Evaluate an expression against bindings.

    Raises:
        ExpressionError: If the expression is malformed, uses an element
            outside the supported subset, or fails while evaluating
    """
    if isinstance(expression, bool) or expression is None:
        return expression
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionError(f"Expression must be a non-empty string, got {expression!r}")

    tree = _parse(expression)
    try:
        return _Evaluator(bindings).visit(tree)
    except ExpressionError:
        raise
    except Exception as e:
        raise ExpressionError(f"Error evaluating '{expression}': {e}")


def build_bindings(
    variables: Dict[str, Any],
    input_variables: Dict[str, Any],
    node_outputs: Dict[str, Any],
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Workflow variables overlaid with the reserved ``input``, ``nodes`` and ``context`` keys."""
    bindings = dict(variables)
    bindings["input"] = input_variables
    bindings["nodes"] = node_outputs
    bindings["context"] = context or {}
    return bindings
