"""Sandboxed evaluation of custom branch conditions.

Conditions are short boolean expressions over a fixed set of variables, for
example ``draft.length > 200 && hashtags.includes('kayak')``. JavaScript-style
operators are rewritten to Python before parsing; the parsed tree is then
checked against a whitelist and evaluated by walking it directly, so no name
lookup ever reaches builtins, modules or object attributes.
"""

from __future__ import annotations

import ast
import operator
import re
from collections.abc import Mapping
from functools import lru_cache
from typing import Any


class ExpressionError(ValueError):
    """Raised when a condition cannot be parsed or evaluated safely."""


CONDITION_VARIABLES = ("draft", "image", "platform", "hashtags")

_STRING_RE = re.compile(r"(\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*')")
_REWRITES = (
    (re.compile(r"!=="), "!="),
    (re.compile(r"==="), "=="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(?:null|undefined)\b"), "None"),
)

_CONSTANT_NAMES = {"True": True, "False": False, "None": None}
_MAX_SOURCE_LENGTH = 500

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}
_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}
_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_METHODS = {
    "includes": lambda value, item: item in value,
    "startsWith": lambda value, prefix: value.startswith(prefix),
    "endsWith": lambda value, suffix: value.endswith(suffix),
    "startswith": lambda value, prefix: value.startswith(prefix),
    "endswith": lambda value, suffix: value.endswith(suffix),
    "toLowerCase": lambda value: value.lower(),
    "toUpperCase": lambda value: value.upper(),
    "lower": lambda value: value.lower(),
    "upper": lambda value: value.upper(),
    "trim": lambda value: value.strip(),
    "strip": lambda value: value.strip(),
}
_FUNCTIONS = {"len": len}


def normalise_expression(source: str) -> str:
    """Rewrite JavaScript-style operators outside string literals."""
    parts = _STRING_RE.split(source)
    for position in range(0, len(parts), 2):
        chunk = parts[position]
        for pattern, replacement in _REWRITES:
            chunk = pattern.sub(replacement, chunk)
        parts[position] = chunk
    return "".join(parts).strip()


@lru_cache(maxsize=256)
def compile_expression(source: str, variables: tuple[str, ...] = CONDITION_VARIABLES) -> ast.Expression:
    if not source or not source.strip():
        raise ExpressionError("Condition expression is empty.")
    if len(source) > _MAX_SOURCE_LENGTH:
        raise ExpressionError(f"Condition expression exceeds {_MAX_SOURCE_LENGTH} characters.")

    normalised = normalise_expression(source)
    try:
        tree = ast.parse(normalised, mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"Invalid condition syntax: {exc.msg}") from exc

    _check_tree(tree, set(variables))
    return tree


def evaluate_expression(
    source: str,
    values: Mapping[str, Any],
    *,
    variables: tuple[str, ...] = CONDITION_VARIABLES,
) -> Any:
    tree = compile_expression(source, variables)
    try:
        return _evaluate(tree.body, values)
    except ExpressionError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise ExpressionError(f"Condition evaluation failed: {exc}") from exc


def evaluate_condition(source: str, values: Mapping[str, Any]) -> bool:
    return bool(evaluate_expression(source, values))


def _check_tree(tree: ast.Expression, variables: set[str]) -> None:
    for node in ast.walk(tree):
        if isinstance(node, ast.Name):
            if node.id not in variables and node.id not in _CONSTANT_NAMES and node.id not in _FUNCTIONS:
                raise ExpressionError(f"Unknown name '{node.id}' in condition.")
        elif isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise ExpressionError(f"Access to '{node.attr}' is not allowed.")
        elif isinstance(node, ast.Call):
            if node.keywords:
                raise ExpressionError("Keyword arguments are not allowed in conditions.")
            func = node.func
            if isinstance(func, ast.Attribute):
                if func.attr not in _METHODS:
                    raise ExpressionError(f"Method '{func.attr}' is not allowed.")
            elif not (isinstance(func, ast.Name) and func.id in _FUNCTIONS):
                raise ExpressionError("Only whitelisted calls are allowed in conditions.")
        elif not isinstance(
            node,
            (
                ast.Expression,
                ast.BoolOp,
                ast.And,
                ast.Or,
                ast.UnaryOp,
                ast.BinOp,
                ast.Compare,
                ast.IfExp,
                ast.Constant,
                ast.Subscript,
                ast.List,
                ast.Tuple,
                ast.Load,
                *_BINARY_OPS,
                *_UNARY_OPS,
                *_COMPARE_OPS,
            ),
        ):
            raise ExpressionError(f"Unsupported syntax '{type(node).__name__}' in condition.")


def _evaluate(node: ast.AST, values: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value

    if isinstance(node, ast.Name):
        if node.id in _CONSTANT_NAMES:
            return _CONSTANT_NAMES[node.id]
        return values.get(node.id)

    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            result: Any = True
            for item in node.values:
                result = _evaluate(item, values)
                if not result:
                    return result
            return result
        result = False
        for item in node.values:
            result = _evaluate(item, values)
            if result:
                return result
        return result

    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand, values))

    if isinstance(node, ast.BinOp):
        return _BINARY_OPS[type(node.op)](_evaluate(node.left, values), _evaluate(node.right, values))

    if isinstance(node, ast.Compare):
        left = _evaluate(node.left, values)
        for op, comparator in zip(node.ops, node.comparators):
            right = _evaluate(comparator, values)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True

    if isinstance(node, ast.IfExp):
        branch = node.body if _evaluate(node.test, values) else node.orelse
        return _evaluate(branch, values)

    if isinstance(node, ast.Attribute):
        target = _evaluate(node.value, values)
        if node.attr == "length":
            return len(target)
        if isinstance(target, Mapping):
            return target.get(node.attr)
        raise ExpressionError(f"Cannot read '{node.attr}' of {type(target).__name__}.")

    if isinstance(node, ast.Subscript):
        return _evaluate(node.value, values)[_evaluate(node.slice, values)]

    if isinstance(node, (ast.List, ast.Tuple)):
        return [_evaluate(item, values) for item in node.elts]

    if isinstance(node, ast.Call):
        args = [_evaluate(item, values) for item in node.args]
        if isinstance(node.func, ast.Attribute):
            target = _evaluate(node.func.value, values)
            if target is None:
                raise ExpressionError(f"Cannot call '{node.func.attr}' on null.")
            return _METHODS[node.func.attr](target, *args)
        return _FUNCTIONS[node.func.id](*args)

    raise ExpressionError(f"Unsupported syntax '{type(node).__name__}' in condition.")
