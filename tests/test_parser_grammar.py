from __future__ import annotations

import math
import unittest

from diffjit.ast import BinaryOp, Call, Constant, UnaryOp, Variable, render
from diffjit.errors import ParseError, ParseErrorKind
from diffjit.lexer import tokenize
from diffjit.parser import parse


class LexerTests(unittest.TestCase):
    def test_token_kinds_and_spans(self) -> None:
        tokens = tokenize("sin(x) + 2.5e-1")
        self.assertEqual(
            [tok.kind for tok in tokens],
            ["NAME", "LPAREN", "NAME", "RPAREN", "PLUS", "NUMBER", "EOF"],
        )
        self.assertEqual(tokens[5].text, "2.5e-1")
        self.assertEqual((tokens[5].pos, tokens[5].end), (9, 15))

    def test_operator_aliases(self) -> None:
        tokens = tokenize("x**2 × 3 ÷ y")
        self.assertEqual([tok.text for tok in tokens[:-1]], ["x", "^", "2", "*", "3", "/", "y"])

    def test_leading_dot_number(self) -> None:
        tokens = tokenize(".5")
        self.assertEqual(tokens[0].kind, "NUMBER")
        self.assertEqual(tokens[0].text, ".5")

    def test_bad_character(self) -> None:
        with self.assertRaises(ParseError) as ctx:
            tokenize("x @ y")
        self.assertEqual(ctx.exception.kind, ParseErrorKind.UNEXPECTED_TOKEN)
        self.assertEqual(ctx.exception.start, 2)

    def test_dangling_exponent(self) -> None:
        with self.assertRaises(ParseError):
            tokenize("2e")


class ParserPrecedenceTests(unittest.TestCase):
    def test_additive_is_left_associative(self) -> None:
        self.assertEqual(
            parse("a - b - c"),
            BinaryOp("-", BinaryOp("-", Variable("a"), Variable("b")), Variable("c")),
        )

    def test_multiplicative_binds_tighter(self) -> None:
        self.assertEqual(
            parse("1 + 2 * x"),
            BinaryOp("+", Constant(1.0), BinaryOp("*", Constant(2.0), Variable("x"))),
        )

    def test_power_is_right_associative(self) -> None:
        self.assertEqual(
            parse("2 ^ 3 ^ x"),
            BinaryOp("^", Constant(2.0), BinaryOp("^", Constant(3.0), Variable("x"))),
        )

    def test_power_binds_tighter_than_unary_minus(self) -> None:
        self.assertEqual(parse("-x^2"), UnaryOp("neg", BinaryOp("^", Variable("x"), Constant(2.0))))

    def test_signed_exponent(self) -> None:
        self.assertEqual(parse("x^-1"), BinaryOp("^", Variable("x"), UnaryOp("neg", Constant(1.0))))

    def test_unary_plus_is_dropped(self) -> None:
        self.assertEqual(parse("+x"), Variable("x"))

    def test_parentheses_group(self) -> None:
        self.assertEqual(
            parse("(1 + x) * 2"),
            BinaryOp("*", BinaryOp("+", Constant(1.0), Variable("x")), Constant(2.0)),
        )

    def test_function_call_and_constants(self) -> None:
        self.assertEqual(parse("sin(x)"), Call("sin", (Variable("x"),)))
        self.assertEqual(parse("pi"), Constant(math.pi))
        self.assertEqual(parse("e"), Constant(math.e))

    def test_numeric_literals(self) -> None:
        self.assertEqual(parse("1.5e3"), Constant(1500.0))
        self.assertEqual(parse("2E+2"), Constant(200.0))
        self.assertEqual(parse("3."), Constant(3.0))


class ParserErrorTests(unittest.TestCase):
    def _kind(self, source: str, **kwargs) -> ParseErrorKind:
        with self.assertRaises(ParseError) as ctx:
            parse(source, **kwargs)
        return ctx.exception.kind

    def test_empty_expression(self) -> None:
        self.assertEqual(self._kind(""), ParseErrorKind.EMPTY_EXPRESSION)
        self.assertEqual(self._kind("   "), ParseErrorKind.EMPTY_EXPRESSION)

    def test_unbalanced_parens(self) -> None:
        self.assertEqual(self._kind("sin(x"), ParseErrorKind.UNBALANCED_PARENS)
        self.assertEqual(self._kind("(x + 1"), ParseErrorKind.UNBALANCED_PARENS)
        self.assertEqual(self._kind("x + 1)"), ParseErrorKind.UNBALANCED_PARENS)
        self.assertEqual(self._kind(")"), ParseErrorKind.UNBALANCED_PARENS)

    def test_unknown_function(self) -> None:
        self.assertEqual(self._kind("foo(x)"), ParseErrorKind.UNKNOWN_FUNCTION)

    def test_unknown_function_allowed_when_requested(self) -> None:
        self.assertEqual(parse("foo(x, 2)", allow_unknown_functions=True), Call("foo", (Variable("x"), Constant(2.0))))

    def test_unexpected_tokens(self) -> None:
        self.assertEqual(self._kind("x^"), ParseErrorKind.UNEXPECTED_TOKEN)
        self.assertEqual(self._kind("x +* 2"), ParseErrorKind.UNEXPECTED_TOKEN)
        self.assertEqual(self._kind("2 x"), ParseErrorKind.UNEXPECTED_TOKEN)
        self.assertEqual(self._kind("sin + 1"), ParseErrorKind.UNEXPECTED_TOKEN)
        self.assertEqual(self._kind("sin(x, 2)"), ParseErrorKind.UNEXPECTED_TOKEN)

    def test_empty_groups_are_unexpected_not_unbalanced(self) -> None:
        for source in ("()", "sin()", "x*()", "(x + )", "((x) * ())"):
            with self.subTest(source=source):
                self.assertEqual(self._kind(source), ParseErrorKind.UNEXPECTED_TOKEN)

    def test_nesting_bound(self) -> None:
        self.assertEqual(self._kind("(" * 500 + "x" + ")" * 500), ParseErrorKind.NESTING_TOO_DEEP)
        self.assertEqual(self._kind("-" * 2000 + "x"), ParseErrorKind.NESTING_TOO_DEEP)
        self.assertEqual(self._kind("sin(" * 300 + "x" + ")" * 300), ParseErrorKind.NESTING_TOO_DEEP)
        self.assertEqual(parse("(" * 20 + "x" + ")" * 20), Variable("x"))

    def test_tree_depth_bound(self) -> None:
        self.assertEqual(self._kind(" + ".join(["sin(x)"] * 1200)), ParseErrorKind.NESTING_TOO_DEEP)
        tree = parse(" + ".join(["sin(x)"] * 300))
        self.assertIsInstance(tree, BinaryOp)

    def test_error_message_carries_span_and_found(self) -> None:
        with self.assertRaises(ParseError) as ctx:
            parse("x + ")
        err = ctx.exception
        self.assertEqual(err.found, "EOF")
        self.assertIn("span [4, 4)", str(err))

    def test_parse_error_is_syntax_error(self) -> None:
        with self.assertRaises(SyntaxError):
            parse("(")


class RenderTests(unittest.TestCase):
    def test_whitespace_and_redundant_parens_normalize(self) -> None:
        a = render(parse("x^2 - cos(x)"))
        b = render(parse("  ((x) ^ 2)   -   cos( x ) "))
        self.assertEqual(a, b)
        self.assertEqual(a, "((x ^ 2.0) - cos(x))")

    def test_equivalent_literals_normalize(self) -> None:
        self.assertEqual(render(parse("1.50")), render(parse("1.5")))
        self.assertEqual(render(parse("2")), render(parse("2.0")))

    def test_render_is_deterministic(self) -> None:
        tree = parse("exp(-x) / (1 + x^2)")
        self.assertEqual(render(tree), render(tree))
        self.assertEqual(parse(render(tree)), tree)


if __name__ == "__main__":
    unittest.main()
