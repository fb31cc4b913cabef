"""Symbolic differentiation in forward and reverse mode."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from .ast import BinaryOp, Call, Constant, Expr, MathFunction, UnaryOp, Variable, depends_on
from .errors import DifferentiationError, DifferentiationErrorKind

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    FORWARD = "forward"
    REVERSE = "reverse"


ZERO = Constant(0.0)
ONE = Constant(1.0)
TWO = Constant(2.0)
MINUS_ONE = Constant(-1.0)


def _is_const(expr: Expr, value: float | None = None) -> bool:
    if not isinstance(expr, Constant):
        return False
    return value is None or expr.value == value


def _add(a: Expr, b: Expr) -> Expr:
    if isinstance(a, Constant) and isinstance(b, Constant):
        return Constant(a.value + b.value)
    if _is_const(a, 0.0):
        return b
    if _is_const(b, 0.0):
        return a
    return BinaryOp("+", a, b)


def _sub(a: Expr, b: Expr) -> Expr:
    if isinstance(a, Constant) and isinstance(b, Constant):
        return Constant(a.value - b.value)
    if _is_const(b, 0.0):
        return a
    if _is_const(a, 0.0):
        return _neg(b)
    return BinaryOp("-", a, b)


def _mul(a: Expr, b: Expr) -> Expr:
    if isinstance(a, Constant) and isinstance(b, Constant):
        return Constant(a.value * b.value)
    if _is_const(a, 0.0) or _is_const(b, 0.0):
        return ZERO
    if _is_const(a, 1.0):
        return b
    if _is_const(b, 1.0):
        return a
    if _is_const(a, -1.0):
        return _neg(b)
    if _is_const(b, -1.0):
        return _neg(a)
    return BinaryOp("*", a, b)


def _div(a: Expr, b: Expr) -> Expr:
    if isinstance(a, Constant) and isinstance(b, Constant) and b.value != 0.0:
        return Constant(a.value / b.value)
    if _is_const(b, 1.0):
        return a
    if _is_const(a, 0.0) and not _is_const(b, 0.0):
        return ZERO
    return BinaryOp("/", a, b)


def _neg(a: Expr) -> Expr:
    if isinstance(a, Constant):
        return Constant(-a.value)
    if isinstance(a, UnaryOp) and a.op == "neg":
        return a.operand
    return UnaryOp("neg", a)


def _pow(a: Expr, b: Expr) -> Expr:
    if isinstance(a, Constant) and isinstance(b, Constant):
        try:
            return Constant(math.pow(a.value, b.value))
        except (ValueError, OverflowError):
            return BinaryOp("^", a, b)
    if _is_const(b, 1.0):
        return a
    if _is_const(b, 0.0):
        return ONE
    return BinaryOp("^", a, b)


def _call(func: MathFunction, arg: Expr) -> Expr:
    return Call(func.value, (arg,))


_CONSTANT_FUNCTIONS = {
    MathFunction.SIN: math.sin,
    MathFunction.COS: math.cos,
    MathFunction.TAN: math.tan,
    MathFunction.EXP: math.exp,
    MathFunction.LOG: math.log,
    MathFunction.LOG10: math.log10,
    MathFunction.SQRT: math.sqrt,
    MathFunction.ABS: abs,
    MathFunction.SIGN: lambda v: 0.0 if v == 0.0 else math.copysign(1.0, v),
    MathFunction.ASIN: math.asin,
    MathFunction.ACOS: math.acos,
    MathFunction.ATAN: math.atan,
    MathFunction.SINH: math.sinh,
    MathFunction.COSH: math.cosh,
    MathFunction.TANH: math.tanh,
    MathFunction.FLOOR: math.floor,
    MathFunction.CEIL: math.ceil,
}


def _constant_value(expr: Expr) -> float | None:
    """Value of a variable-free subtree, or None when it has free names or no finite value."""
    if isinstance(expr, Constant):
        return expr.value
    if isinstance(expr, Variable):
        return None
    try:
        if isinstance(expr, UnaryOp):
            operand = _constant_value(expr.operand)
            return None if operand is None else -operand
        if isinstance(expr, BinaryOp):
            left = _constant_value(expr.left)
            right = _constant_value(expr.right)
            if left is None or right is None:
                return None
            if expr.op == "+":
                return left + right
            if expr.op == "-":
                return left - right
            if expr.op == "*":
                return left * right
            if expr.op == "/":
                return left / right
            return float(math.pow(left, right))
        if isinstance(expr, Call):
            func = MathFunction.lookup(expr.function)
            if func is None or len(expr.args) != func.arity:
                return None
            arg = _constant_value(expr.args[0])
            return None if arg is None else float(_CONSTANT_FUNCTIONS[func](arg))
    except (ArithmeticError, ValueError):
        return None
    return None


def _guard_denominator(denominator: Expr) -> None:
    if _constant_value(denominator) == 0.0:
        raise DifferentiationError(
            DifferentiationErrorKind.DIVISION_BY_ZERO_SYMBOLIC,
            "Quotient rule applied to a denominator that folds to zero",
        )


def _unsupported(name: str, reason: str) -> DifferentiationError:
    return DifferentiationError(
        DifferentiationErrorKind.UNSUPPORTED_FUNCTION,
        f"Cannot differentiate {name!r}: {reason}",
        function=name,
    )


def _resolve_function(call: Call) -> MathFunction:
    func = MathFunction.lookup(call.function)
    if func is None:
        raise _unsupported(call.function, "not in the function table")
    if len(call.args) != func.arity:
        raise _unsupported(call.function, f"expected {func.arity} argument(s), got {len(call.args)}")
    return func


def _function_derivative(func: MathFunction, u: Expr) -> Expr:
    """d/du func(u); the chain-rule factor is applied by the caller."""
    if func is MathFunction.SIN:
        return _call(MathFunction.COS, u)
    if func is MathFunction.COS:
        return _neg(_call(MathFunction.SIN, u))
    if func is MathFunction.TAN:
        return _div(ONE, _pow(_call(MathFunction.COS, u), TWO))
    if func is MathFunction.EXP:
        return _call(MathFunction.EXP, u)
    if func is MathFunction.LOG:
        return _div(ONE, u)
    if func is MathFunction.LOG10:
        return _div(ONE, _mul(u, Constant(math.log(10.0))))
    if func is MathFunction.SQRT:
        return _div(ONE, _mul(TWO, _call(MathFunction.SQRT, u)))
    if func is MathFunction.ABS:
        return _call(MathFunction.SIGN, u)
    if func is MathFunction.SIGN:
        return ZERO
    if func is MathFunction.ASIN:
        return _div(ONE, _call(MathFunction.SQRT, _sub(ONE, _pow(u, TWO))))
    if func is MathFunction.ACOS:
        return _neg(_div(ONE, _call(MathFunction.SQRT, _sub(ONE, _pow(u, TWO)))))
    if func is MathFunction.ATAN:
        return _div(ONE, _add(ONE, _pow(u, TWO)))
    if func is MathFunction.SINH:
        return _call(MathFunction.COSH, u)
    if func is MathFunction.COSH:
        return _call(MathFunction.SINH, u)
    if func is MathFunction.TANH:
        return _sub(ONE, _pow(_call(MathFunction.TANH, u), TWO))
    if func in (MathFunction.FLOOR, MathFunction.CEIL):
        raise _unsupported(func.value, "no derivative rule")
    raise AssertionError(f"MathFunction {func!r} has no derivative branch")


def _check_functions(expr: Expr) -> None:
    if isinstance(expr, Call):
        _resolve_function(expr)
        for arg in expr.args:
            _check_functions(arg)
    elif isinstance(expr, BinaryOp):
        _check_functions(expr.left)
        _check_functions(expr.right)
    elif isinstance(expr, UnaryOp):
        _check_functions(expr.operand)


# Forward mode


def _forward(expr: Expr, variable: str) -> Expr:
    if not depends_on(expr, variable):
        return ZERO

    if isinstance(expr, Variable):
        return ONE

    if isinstance(expr, UnaryOp):
        if expr.op != "neg":
            raise AssertionError(f"Unknown unary op {expr.op!r}")
        return _neg(_forward(expr.operand, variable))

    if isinstance(expr, BinaryOp):
        u, v = expr.left, expr.right
        du = _forward(u, variable)
        dv = _forward(v, variable)
        if expr.op == "+":
            return _add(du, dv)
        if expr.op == "-":
            return _sub(du, dv)
        if expr.op == "*":
            return _add(_mul(du, v), _mul(u, dv))
        if expr.op == "/":
            _guard_denominator(v)
            return _div(_sub(_mul(du, v), _mul(u, dv)), _pow(v, TWO))
        if expr.op == "^":
            base_dep = depends_on(u, variable)
            exp_dep = depends_on(v, variable)
            if base_dep and not exp_dep:
                return _mul(_mul(v, _pow(u, _sub(v, ONE))), du)
            if exp_dep and not base_dep:
                return _mul(_mul(_pow(u, v), _call(MathFunction.LOG, u)), dv)
            # d/dx[f^g] = f^g (g' ln f + g f'/f)
            return _mul(
                _pow(u, v),
                _add(_mul(dv, _call(MathFunction.LOG, u)), _div(_mul(v, du), u)),
            )
        raise AssertionError(f"Unknown binary op {expr.op!r}")

    if isinstance(expr, Call):
        func = _resolve_function(expr)
        arg = expr.args[0]
        return _mul(_function_derivative(func, arg), _forward(arg, variable))

    raise TypeError(f"Unknown AST node {type(expr).__name__}")


# Reverse mode


@dataclass(frozen=True)
class TapeNode:
    """Arena entry; `inputs` are ids of earlier nodes."""

    id: int
    op: str
    expr: Expr
    inputs: tuple[int, ...] = ()
    depends: bool = False
    function: MathFunction | None = None


@dataclass(frozen=True)
class Tape:
    nodes: tuple[TapeNode, ...]
    output: int
    variable: str
    leaf: int | None


class _TapeBuilder:
    def __init__(self, variable: str) -> None:
        self.variable = variable
        self.nodes: list[TapeNode] = []
        self.leaf: int | None = None
        self._expr_cache: dict[Expr, int] = {}

    def _add(
        self,
        op: str,
        expr: Expr,
        *,
        inputs: tuple[int, ...] = (),
        function: MathFunction | None = None,
    ) -> int:
        node_id = len(self.nodes)
        depends = any(self.nodes[idx].depends for idx in inputs)
        if op == "var":
            depends = expr == Variable(self.variable)
        self.nodes.append(TapeNode(id=node_id, op=op, expr=expr, inputs=inputs, depends=depends, function=function))
        self._expr_cache[expr] = node_id
        return node_id

    def record(self, expr: Expr) -> int:
        if expr in self._expr_cache:
            return self._expr_cache[expr]

        if isinstance(expr, Constant):
            return self._add("const", expr)

        if isinstance(expr, Variable):
            node_id = self._add("var", expr)
            if expr.name == self.variable:
                self.leaf = node_id
            return node_id

        if isinstance(expr, UnaryOp):
            operand_id = self.record(expr.operand)
            return self._add(expr.op, expr, inputs=(operand_id,))

        if isinstance(expr, BinaryOp):
            left_id = self.record(expr.left)
            right_id = self.record(expr.right)
            return self._add(expr.op, expr, inputs=(left_id, right_id))

        if isinstance(expr, Call):
            func = _resolve_function(expr)
            arg_id = self.record(expr.args[0])
            return self._add("call", expr, inputs=(arg_id,), function=func)

        raise TypeError(f"Unknown AST node {type(expr).__name__}")

    def tape(self, output: int) -> Tape:
        return Tape(nodes=tuple(self.nodes), output=output, variable=self.variable, leaf=self.leaf)


def build_tape(expr: Expr, variable: str) -> Tape:
    """Record `expr` into an index-addressed arena, sharing equal subtrees."""
    builder = _TapeBuilder(variable)
    out = builder.record(expr)
    return builder.tape(out)


def _local_partials(tape: Tape, node: TapeNode) -> Iterator[tuple[int, Expr]]:
    nodes = tape.nodes
    inputs = node.inputs
    live = tuple(nodes[idx].depends for idx in inputs)

    if node.op == "neg":
        yield inputs[0], MINUS_ONE
        return

    if node.op == "call":
        if node.function is None:
            raise AssertionError("call node without a function")
        yield inputs[0], _function_derivative(node.function, nodes[inputs[0]].expr)
        return

    u = nodes[inputs[0]].expr
    v = nodes[inputs[1]].expr
    if node.op == "+":
        yield inputs[0], ONE
        yield inputs[1], ONE
    elif node.op == "-":
        yield inputs[0], ONE
        yield inputs[1], MINUS_ONE
    elif node.op == "*":
        yield inputs[0], v
        yield inputs[1], u
    elif node.op == "/":
        if live[0]:
            _guard_denominator(v)
            yield inputs[0], _div(ONE, v)
        if live[1]:
            yield inputs[1], _neg(_div(u, _pow(v, TWO)))
    elif node.op == "^":
        if live[0] and not live[1]:
            yield inputs[0], _mul(v, _pow(u, _sub(v, ONE)))
        elif live[1] and not live[0]:
            yield inputs[1], _mul(_pow(u, v), _call(MathFunction.LOG, u))
        else:
            # Same split as the forward generalized power rule.
            yield inputs[0], _div(_mul(_pow(u, v), v), u)
            yield inputs[1], _mul(_pow(u, v), _call(MathFunction.LOG, u))
    else:
        raise AssertionError(f"Unknown tape op {node.op!r}")


def _reverse(expr: Expr, variable: str) -> Expr:
    tape = build_tape(expr, variable)
    if tape.leaf is None:
        return ZERO

    adjoints: list[Expr | None] = [None] * len(tape.nodes)
    adjoints[tape.output] = ONE

    # Consumers always have larger ids than their inputs.
    for node in reversed(tape.nodes):
        adjoint = adjoints[node.id]
        if adjoint is None or not node.depends or not node.inputs:
            continue
        for input_id, partial in _local_partials(tape, node):
            if not tape.nodes[input_id].depends:
                continue
            contribution = _mul(adjoint, partial)
            previous = adjoints[input_id]
            adjoints[input_id] = contribution if previous is None else _add(previous, contribution)

    result = adjoints[tape.leaf]
    return result if result is not None else ZERO


def differentiate(expr: Expr, variable: str, mode: Mode | str = Mode.FORWARD) -> Expr:
    """Return d(expr)/d(variable) as a new AST; `expr` is left untouched."""
    mode = Mode(mode)
    try:
        _check_functions(expr)
        if mode is Mode.FORWARD:
            out = _forward(expr, variable)
        else:
            out = _reverse(expr, variable)
    except RecursionError as err:
        raise DifferentiationError(
            DifferentiationErrorKind.EXPRESSION_TOO_DEEP,
            "Expression nests too deeply to differentiate",
        ) from err
    logger.debug("differentiated w.r.t. %s in %s mode", variable, mode.value)
    return out
