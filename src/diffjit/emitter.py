"""Render an AST as source for a single-argument numeric function."""

from __future__ import annotations

import math

from .ast import BinaryOp, Call, Constant, Expr, MathFunction, UnaryOp, Variable
from .errors import CompileError, CompileErrorKind

ARGUMENT_NAME = "_x"
POW_SYMBOL = "pow"
_INT_EXPONENT_LIMIT = 2**31

# Python binding strength of what each node emits as.
_ATOM = 4
_NEG = 3
_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2}


def _emit_constant(value: float) -> str:
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "(-inf)"
    text = repr(float(value))
    if value < 0 or text.startswith("-"):
        return f"({text})"
    return text


def _emit_exponent(expr: Expr) -> str:
    # Integral exponents stay integers so negative bases keep a real result.
    if isinstance(expr, Constant) and math.isfinite(expr.value) and float(expr.value).is_integer():
        if abs(expr.value) < _INT_EXPONENT_LIMIT:
            exponent = int(expr.value)
            return f"({exponent})" if exponent < 0 else str(exponent)
    return _emit_expr(expr)[0]


def _wrap(emitted: tuple[str, int], needs_parens: bool) -> str:
    text, _ = emitted
    return f"({text})" if needs_parens else text


def _emit_expr(expr: Expr) -> tuple[str, int]:
    """Source text and its binding strength; parentheses only where Python needs them."""
    if isinstance(expr, Constant):
        return _emit_constant(expr.value), _ATOM
    if isinstance(expr, Variable):
        return ARGUMENT_NAME, _ATOM
    if isinstance(expr, UnaryOp):
        operand = _emit_expr(expr.operand)
        return f"-{_wrap(operand, operand[1] <= _NEG)}", _NEG
    if isinstance(expr, BinaryOp):
        if expr.op == "^":
            return f"{POW_SYMBOL}({_emit_expr(expr.left)[0]}, {_emit_exponent(expr.right)})", _ATOM
        prec = _PRECEDENCE[expr.op]
        left = _emit_expr(expr.left)
        right = _emit_expr(expr.right)
        # Left-associative: a right operand of equal strength keeps its grouping.
        return f"{_wrap(left, left[1] < prec)} {expr.op} {_wrap(right, right[1] <= prec)}", prec
    if isinstance(expr, Call):
        func = MathFunction.lookup(expr.function)
        if func is None:
            raise AssertionError(f"unchecked function {expr.function!r}")
        args = ", ".join(_emit_expr(arg)[0] for arg in expr.args)
        return f"{func.symbol}({args})", _ATOM
    raise TypeError(f"Unknown AST node {type(expr).__name__}")


def _unbound_names(expr: Expr, variable: str) -> list[str]:
    names: set[str] = set()
    stack = [expr]
    while stack:
        node = stack.pop()
        if isinstance(node, Variable):
            if node.name != variable:
                names.add(node.name)
        elif isinstance(node, Call):
            if MathFunction.lookup(node.function) is None:
                names.add(node.function)
            stack.extend(node.args)
        elif isinstance(node, BinaryOp):
            stack.append(node.left)
            stack.append(node.right)
        elif isinstance(node, UnaryOp):
            stack.append(node.operand)
    return sorted(names)


def emit(expr: Expr, function_name: str = "derivative", *, variable: str = "x") -> str:
    """Return the source of `def function_name(_x): return <expr>`.

    `variable` is bound to the single argument. Any other free name, or a
    call outside the `MathFunction` table, raises a SYMBOL_RESOLUTION_ERROR
    `CompileError` instead of being written into the source. Equal trees
    always produce byte-identical text.
    """
    if not function_name.isidentifier():
        raise ValueError(f"Invalid function name {function_name!r}")
    unbound = _unbound_names(expr, variable)
    if unbound:
        raise CompileError(
            CompileErrorKind.SYMBOL_RESOLUTION_ERROR,
            function_name,
            f"unresolved symbol(s): {', '.join(unbound)}",
        )
    try:
        body, _ = _emit_expr(expr)
    except RecursionError as err:
        raise CompileError(CompileErrorKind.SYNTAX_ERROR, function_name, "expression nests too deeply to emit") from err
    return f"def {function_name}({ARGUMENT_NAME}):\n    return {body}\n"
