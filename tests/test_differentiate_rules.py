from __future__ import annotations

import math
import unittest

from diffjit.ast import BinaryOp, Call, Constant, UnaryOp, Variable, render
from diffjit.differentiate import Mode, build_tape, differentiate
from diffjit.errors import DifferentiationError, DifferentiationErrorKind
from diffjit.parser import parse

_FUNCS = {
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "exp": math.exp,
    "log": math.log,
    "log10": math.log10,
    "sqrt": math.sqrt,
    "abs": abs,
    "sign": lambda v: 0.0 if v == 0 else math.copysign(1.0, v),
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "sinh": math.sinh,
    "cosh": math.cosh,
    "tanh": math.tanh,
}


def _eval(expr, env: dict[str, float]) -> float:
    if isinstance(expr, Constant):
        return expr.value
    if isinstance(expr, Variable):
        return env[expr.name]
    if isinstance(expr, UnaryOp):
        return -_eval(expr.operand, env)
    if isinstance(expr, Call):
        return _FUNCS[expr.function](_eval(expr.args[0], env))
    left = _eval(expr.left, env)
    right = _eval(expr.right, env)
    if expr.op == "+":
        return left + right
    if expr.op == "-":
        return left - right
    if expr.op == "*":
        return left * right
    if expr.op == "/":
        return left / right
    return left**right


def _central_difference(expr, x: float, h: float = 1e-6) -> float:
    return (_eval(expr, {"x": x + h}) - _eval(expr, {"x": x - h})) / (2.0 * h)


class DerivativeRuleTests(unittest.TestCase):
    def test_leaf_rules(self) -> None:
        self.assertEqual(differentiate(parse("x"), "x"), Constant(1.0))
        self.assertEqual(differentiate(parse("3.5"), "x"), Constant(0.0))
        self.assertEqual(differentiate(parse("y"), "x"), Constant(0.0))
        self.assertEqual(differentiate(parse("sin(y) * y"), "x"), Constant(0.0))

    def test_simple_rules_fold_constants(self) -> None:
        self.assertEqual(differentiate(parse("sin(x)"), "x"), Call("cos", (Variable("x"),)))
        self.assertEqual(
            differentiate(parse("x^2"), "x"),
            BinaryOp("*", Constant(2.0), Variable("x")),
        )
        self.assertEqual(differentiate(parse("3 * x"), "x"), Constant(3.0))
        self.assertEqual(differentiate(parse("-x"), "x"), Constant(-1.0))

    def test_input_tree_is_not_mutated(self) -> None:
        tree = parse("x^3 + sin(x) * x")
        before = render(tree)
        differentiate(tree, "x", Mode.FORWARD)
        differentiate(tree, "x", Mode.REVERSE)
        self.assertEqual(render(tree), before)

    def test_mode_accepts_strings(self) -> None:
        self.assertEqual(differentiate(parse("x"), "x", "reverse"), Constant(1.0))
        with self.assertRaises(ValueError):
            differentiate(parse("x"), "x", "sideways")

    def test_against_central_differences(self) -> None:
        cases = {
            "x^2 - cos(x)": (0.3, 1.0, 2.5),
            "x^3 + 2*x^2 - 5*x + 1": (-1.5, 0.0, 2.0),
            "exp(-x) / (1 + x^2)": (-1.0, 0.5, 2.0),
            "sin(x) * cos(x)": (0.1, 1.2, 3.0),
            "tan(x)": (0.2, 0.7),
            "log(x) + log10(x)": (0.5, 2.0, 10.0),
            "sqrt(x)": (0.25, 4.0),
            "asin(x) + acos(x / 2) + atan(x)": (-0.5, 0.2, 0.7),
            "sinh(x) + cosh(x) + tanh(x)": (-1.0, 0.0, 1.5),
            "abs(x) * 3": (-2.0, 1.5),
            "2^x": (-1.0, 0.5, 3.0),
            "x^x": (0.5, 1.0, 2.0),
            "x^sin(x)": (0.7, 1.3),
            "1 / x": (0.5, 3.0),
            "e^(2*x) - pi*x": (0.0, 1.0),
        }
        for source, points in cases.items():
            tree = parse(source)
            for mode in Mode:
                derivative = differentiate(tree, "x", mode)
                for x in points:
                    with self.subTest(source=source, mode=mode.value, x=x):
                        expected = _central_difference(tree, x)
                        got = _eval(derivative, {"x": x})
                        self.assertAlmostEqual(got, expected, delta=1e-5 * max(1.0, abs(expected)))

    def test_forward_and_reverse_agree(self) -> None:
        sources = (
            "x^2 - cos(x)",
            "x * x * x",
            "sin(x)^2 + cos(x)^2",
            "exp(x) * log(x) / (x + 1)",
            "sqrt(x^2 + 1) - x",
            "x^x",
            "(x + y) * (x - y)",
        )
        for source in sources:
            tree = parse(source)
            fwd = differentiate(tree, "x", Mode.FORWARD)
            rev = differentiate(tree, "x", Mode.REVERSE)
            for x in (0.25, 1.0, 1.75, 3.0):
                with self.subTest(source=source, x=x):
                    env = {"x": x, "y": 0.5}
                    self.assertAlmostEqual(_eval(fwd, env), _eval(rev, env), delta=1e-9)

    def test_partial_with_respect_to_other_variable(self) -> None:
        tree = parse("x * y^2")
        for mode in Mode:
            derivative = differentiate(tree, "y", mode)
            self.assertAlmostEqual(_eval(derivative, {"x": 3.0, "y": 2.0}), 12.0)

    def test_sign_has_zero_derivative(self) -> None:
        self.assertEqual(differentiate(parse("sign(x)"), "x"), Constant(0.0))


class DifferentiationErrorTests(unittest.TestCase):
    def test_unknown_function_is_unsupported(self) -> None:
        tree = parse("foo(x) + 1", allow_unknown_functions=True)
        for mode in Mode:
            with self.assertRaises(DifferentiationError) as ctx:
                differentiate(tree, "x", mode)
            self.assertEqual(ctx.exception.kind, DifferentiationErrorKind.UNSUPPORTED_FUNCTION)
            self.assertEqual(ctx.exception.function, "foo")

    def test_unknown_function_rejected_even_when_constant(self) -> None:
        tree = parse("foo(2) * x", allow_unknown_functions=True)
        with self.assertRaises(DifferentiationError):
            differentiate(tree, "x")

    def test_step_functions_have_no_rule(self) -> None:
        for source in ("floor(x)", "ceil(x) + x"):
            for mode in Mode:
                with self.subTest(source=source, mode=mode.value):
                    with self.assertRaises(DifferentiationError) as ctx:
                        differentiate(parse(source), "x", mode)
                    self.assertEqual(ctx.exception.kind, DifferentiationErrorKind.UNSUPPORTED_FUNCTION)

    def test_wrong_arity_is_unsupported(self) -> None:
        tree = Call("sin", (Variable("x"), Constant(2.0)))
        with self.assertRaises(DifferentiationError):
            differentiate(tree, "x")

    def test_literal_zero_denominator(self) -> None:
        for mode in Mode:
            with self.subTest(mode=mode.value):
                with self.assertRaises(DifferentiationError) as ctx:
                    differentiate(parse("x / 0"), "x", mode)
                self.assertEqual(ctx.exception.kind, DifferentiationErrorKind.DIVISION_BY_ZERO_SYMBOLIC)

    def test_denominator_folding_to_zero(self) -> None:
        for source in ("x / (2 - 2)", "x / (0 * 5)", "sin(x) / -(3 - 3)", "x / sin(0)", "(x + 1) / (2^2 - 4)"):
            for mode in Mode:
                with self.subTest(source=source, mode=mode.value):
                    with self.assertRaises(DifferentiationError) as ctx:
                        differentiate(parse(source), "x", mode)
                    self.assertEqual(ctx.exception.kind, DifferentiationErrorKind.DIVISION_BY_ZERO_SYMBOLIC)

    def test_nonzero_constant_denominators_pass(self) -> None:
        for source in ("x / (2 - 1)", "x / y", "x / (y - y)", "x / log(-1)"):
            for mode in Mode:
                with self.subTest(source=source, mode=mode.value):
                    differentiate(parse(source), "x", mode)

    def test_too_deep_tree_is_a_tagged_error(self) -> None:
        expr = Variable("x")
        for _ in range(5000):
            expr = UnaryOp("neg", expr)
        for mode in Mode:
            with self.subTest(mode=mode.value):
                with self.assertRaises(DifferentiationError) as ctx:
                    differentiate(expr, "x", mode)
                self.assertEqual(ctx.exception.kind, DifferentiationErrorKind.EXPRESSION_TOO_DEEP)


class ReverseTapeTests(unittest.TestCase):
    def test_equal_subtrees_share_one_node(self) -> None:
        tape = build_tape(parse("sin(x) * sin(x)"), "x")
        self.assertEqual([node.op for node in tape.nodes], ["var", "call", "*"])
        out = tape.nodes[tape.output]
        self.assertEqual(out.inputs, (1, 1))
        self.assertEqual(tape.leaf, 0)

    def test_inputs_precede_consumers(self) -> None:
        tape = build_tape(parse("exp(x^2) / (x + y) - 3"), "x")
        for node in tape.nodes:
            for idx in node.inputs:
                self.assertLess(idx, node.id)

    def test_dependency_flags(self) -> None:
        tape = build_tape(parse("x * y + y"), "x")
        deps = {render(node.expr): node.depends for node in tape.nodes}
        self.assertTrue(deps["x"])
        self.assertFalse(deps["y"])
        self.assertTrue(deps["(x * y)"])
        self.assertTrue(deps["((x * y) + y)"])

    def test_tape_without_variable(self) -> None:
        tape = build_tape(parse("2 * y"), "x")
        self.assertIsNone(tape.leaf)
        self.assertEqual(differentiate(parse("2 * y"), "x", Mode.REVERSE), Constant(0.0))


if __name__ == "__main__":
    unittest.main()
