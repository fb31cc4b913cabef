"""AST nodes and the closed table of supported math functions."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Union


@dataclass(frozen=True)
class Constant:
    value: float


@dataclass(frozen=True)
class Variable:
    name: str


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Expr"
    right: "Expr"


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Expr"


@dataclass(frozen=True)
class Call:
    function: str
    args: tuple["Expr", ...]


Expr = Union[Constant, Variable, BinaryOp, UnaryOp, Call]

BINARY_OPS = ("+", "-", "*", "/", "^")
UNARY_OPS = ("neg",)

NAMED_CONSTANTS = {
    "pi": math.pi,
    "e": math.e,
}


class MathFunction(str, Enum):
    """Supported functions.

    Each member names the symbol the emitter references and is matched
    exhaustively by the differentiator; members with no derivative rule
    parse and evaluate but fail differentiation.
    """

    SIN = "sin"
    COS = "cos"
    TAN = "tan"
    EXP = "exp"
    LOG = "log"
    LOG10 = "log10"
    SQRT = "sqrt"
    ABS = "abs"
    SIGN = "sign"
    ASIN = "asin"
    ACOS = "acos"
    ATAN = "atan"
    SINH = "sinh"
    COSH = "cosh"
    TANH = "tanh"
    FLOOR = "floor"
    CEIL = "ceil"

    @property
    def arity(self) -> int:
        return 1

    @property
    def symbol(self) -> str:
        return self.value

    @property
    def differentiable(self) -> bool:
        return self not in (MathFunction.FLOOR, MathFunction.CEIL)

    @classmethod
    def lookup(cls, name: str) -> "MathFunction | None":
        try:
            return cls(name)
        except ValueError:
            return None


def depends_on(expr: Expr, variable: str) -> bool:
    if isinstance(expr, Constant):
        return False
    if isinstance(expr, Variable):
        return expr.name == variable
    if isinstance(expr, BinaryOp):
        return depends_on(expr.left, variable) or depends_on(expr.right, variable)
    if isinstance(expr, UnaryOp):
        return depends_on(expr.operand, variable)
    if isinstance(expr, Call):
        return any(depends_on(arg, variable) for arg in expr.args)
    raise TypeError(f"Unknown AST node {type(expr).__name__}")


def expression_depth(expr: Expr) -> int:
    """Longest root-to-leaf path, counted in nodes. Walks with an explicit stack."""
    deepest = 0
    stack: list[tuple[Expr, int]] = [(expr, 1)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        if isinstance(node, BinaryOp):
            stack.append((node.left, depth + 1))
            stack.append((node.right, depth + 1))
        elif isinstance(node, UnaryOp):
            stack.append((node.operand, depth + 1))
        elif isinstance(node, Call):
            stack.extend((arg, depth + 1) for arg in node.args)
    return deepest


def free_variables(expr: Expr) -> frozenset[str]:
    if isinstance(expr, Constant):
        return frozenset()
    if isinstance(expr, Variable):
        return frozenset((expr.name,))
    if isinstance(expr, BinaryOp):
        return free_variables(expr.left) | free_variables(expr.right)
    if isinstance(expr, UnaryOp):
        return free_variables(expr.operand)
    if isinstance(expr, Call):
        out: frozenset[str] = frozenset()
        for arg in expr.args:
            out = out | free_variables(arg)
        return out
    raise TypeError(f"Unknown AST node {type(expr).__name__}")


def render(expr: Expr) -> str:
    """Canonical, fully parenthesized text of `expr`.

    Equal trees render identically; fingerprints are taken over this text.
    """
    if isinstance(expr, Constant):
        return repr(float(expr.value))
    if isinstance(expr, Variable):
        return expr.name
    if isinstance(expr, BinaryOp):
        return f"({render(expr.left)} {expr.op} {render(expr.right)})"
    if isinstance(expr, UnaryOp):
        return f"(-{render(expr.operand)})"
    if isinstance(expr, Call):
        return f"{expr.function}({', '.join(render(arg) for arg in expr.args)})"
    raise TypeError(f"Unknown AST node {type(expr).__name__}")
