# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Step Conditions

Conditions are compiled into a small closed expression tree and interpreted
against completed step outputs. Nothing is ever executed as code.

Supported:
- references: ${step1.flag}, ${step2.count}
- literals: numbers, strings, true/false/null (or True/False/None), lists
- comparisons: == != < <= > >= in, not in, is, is not (=== and !== too)
- boolean operators: and/or/not, &&/||/!

Examples:
    ${step1.flag}
    ${scan.open_ports} > 0 && ${scan.host} != "localhost"
    not ${step1.errors}
"""

import ast
import operator
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, Tuple

from toolvault.core.errors import ConditionError
from toolvault.workflow.references import REFERENCE_PATTERN, resolve_reference


# ============================================================================
# EXPRESSION TREE
# ============================================================================

@dataclass(frozen=True)
class Reference:
    path: str  # "stepId.a.b"


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Comparison:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class BoolOp:
    op: str  # "and" | "or"
    operands: Tuple["Expr", ...]


@dataclass(frozen=True)
class Not:
    operand: "Expr"


Expr = Any  # Reference | Literal | Comparison | BoolOp | Not


COMPARISON_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda x, y: x in y,
    "not in": lambda x, y: x not in y,
    "is": operator.is_,
    "is not": operator.is_not,
}

_AST_COMPARISONS = {
    ast.Eq: "==",
    ast.NotEq: "!=",
    ast.Lt: "<",
    ast.LtE: "<=",
    ast.Gt: ">",
    ast.GtE: ">=",
    ast.In: "in",
    ast.NotIn: "not in",
    ast.Is: "is",
    ast.IsNot: "is not",
}


# ============================================================================
# COMPILER
# ============================================================================

_STRING_LITERAL = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')""")

_JS_SYNTAX = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"\btrue\b"), "True"),
    (re.compile(r"\bfalse\b"), "False"),
    (re.compile(r"\b(null|undefined)\b"), "None"),
]


def _normalize(expression: str) -> str:
    """Rewrite JavaScript-style operators outside of string literals."""
    parts = _STRING_LITERAL.split(expression)
    for i in range(0, len(parts), 2):
        for pattern, replacement in _JS_SYNTAX:
            parts[i] = pattern.sub(replacement, parts[i])
    return "".join(parts)


class _TreeBuilder(ast.NodeVisitor):
    """Turns a restricted Python AST into the closed expression tree."""

    def __init__(self, references: Dict[str, str]):
        self.references = references

    def visit_Expression(self, node):
        return self.visit(node.body)

    def visit_Constant(self, node):
        return Literal(node.value)

    def visit_Name(self, node):
        if node.id in self.references:
            return Reference(self.references[node.id])
        raise ValueError(f"Unknown name: {node.id}")

    def visit_List(self, node):
        return Literal(tuple(self._literal(elt) for elt in node.elts))

    visit_Tuple = visit_List

    def visit_UnaryOp(self, node):
        if isinstance(node.op, ast.Not):
            return Not(self.visit(node.operand))
        if isinstance(node.op, (ast.USub, ast.UAdd)) and isinstance(node.operand, ast.Constant):
            value = node.operand.value
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return Literal(-value if isinstance(node.op, ast.USub) else value)
        raise ValueError(f"Operator not allowed: {type(node.op).__name__}")

    def visit_BoolOp(self, node):
        op = "and" if isinstance(node.op, ast.And) else "or"
        return BoolOp(op, tuple(self.visit(value) for value in node.values))

    def visit_Compare(self, node):
        comparisons = []
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            op_name = _AST_COMPARISONS.get(type(op))
            if op_name is None:
                raise ValueError(f"Operator not allowed: {type(op).__name__}")
            right = self.visit(comparator)
            comparisons.append(Comparison(op_name, left, right))
            left = right

        # a < b < c  ->  a < b and b < c
        if len(comparisons) == 1:
            return comparisons[0]
        return BoolOp("and", tuple(comparisons))

    def generic_visit(self, node):
        raise ValueError(f"Expression not allowed: {type(node).__name__}")

    def _literal(self, node) -> Any:
        expr = self.visit(node)
        if not isinstance(expr, Literal):
            raise ValueError("List elements must be literals")
        return expr.value


@lru_cache(maxsize=512)
def compile_condition(condition: str) -> Expr:
    """
    Compile a condition string into an expression tree.

    Raises:
        ConditionError: If the condition is empty, malformed or uses
            anything outside the supported grammar
    """
    if not condition or not condition.strip():
        raise ConditionError("Condition is empty", condition=condition)

    # Replace ${ref} with safe variable names before parsing
    references: Dict[str, str] = {}

    def to_name(match) -> str:
        name = f"var_{len(references)}"
        references[name] = match.group(1).strip()
        return f" {name} "

    expression = _normalize(REFERENCE_PATTERN.sub(to_name, condition))

    try:
        tree = ast.parse(expression.strip(), mode="eval")
        return _TreeBuilder(references).visit(tree)
    except SyntaxError as e:
        raise ConditionError(f"Invalid condition syntax '{condition}': {e.msg}", condition=condition)
    except ValueError as e:
        raise ConditionError(f"Invalid condition '{condition}': {e}", condition=condition)


# ============================================================================
# INTERPRETER
# ============================================================================

def evaluate(expr: Expr, outputs: Dict[str, Any]) -> Any:
    """
    Interpret an expression tree against completed step outputs.

    Raises:
        ReferenceResolutionError: A reference is not resolvable
        TypeError: Operands can't be compared (e.g. None > 3)
    """
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, Reference):
        return resolve_reference(expr.path, outputs)
    if isinstance(expr, Not):
        return not evaluate(expr.operand, outputs)
    if isinstance(expr, BoolOp):
        if expr.op == "and":
            return all(evaluate(operand, outputs) for operand in expr.operands)
        return any(evaluate(operand, outputs) for operand in expr.operands)
    if isinstance(expr, Comparison):
        left = evaluate(expr.left, outputs)
        right = evaluate(expr.right, outputs)
        return COMPARISON_OPERATORS[expr.op](left, right)
    raise TypeError(f"Unknown expression node: {type(expr).__name__}")


def evaluate_condition(condition: str, outputs: Dict[str, Any]) -> bool:
    """Compile (cached) and evaluate a condition to a boolean."""
    return bool(evaluate(compile_condition(condition), outputs))
