"""Recursive-descent parser for scalar math expressions."""

from __future__ import annotations

from dataclasses import dataclass

from .ast import NAMED_CONSTANTS, BinaryOp, Call, Constant, Expr, MathFunction, UnaryOp, Variable, expression_depth
from .errors import ParseError, ParseErrorKind
from .lexer import Token, tokenize

_ADDITIVE = {"PLUS": "+", "MINUS": "-"}
_MULTIPLICATIVE = {"STAR": "*", "SLASH": "/"}
_PRIMARY_START = ("NUMBER", "NAME", "LPAREN")

# Bounds that keep parsing and the recursive tree passes inside the interpreter stack.
MAX_NESTING_DEPTH = 64
MAX_EXPRESSION_DEPTH = 512


@dataclass
class _Parser:
    tokens: list[Token]
    allow_unknown_functions: bool = False
    index: int = 0
    nesting: int = 0
    open_parens: int = 0

    def parse_expression_only(self) -> Expr:
        expr = self._parse_additive()
        tok = self._peek()
        if tok.kind == "RPAREN":
            self._error(
                tok,
                kind=ParseErrorKind.UNBALANCED_PARENS,
                message="Unmatched closing parenthesis",
            )
        self._expect("EOF")
        return expr

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _advance(self) -> Token:
        tok = self.tokens[self.index]
        self.index += 1
        return tok

    def _expect(self, kind: str) -> Token:
        tok = self._peek()
        if tok.kind != kind:
            self._error(tok, expected=(kind,))
        return self._advance()

    def _error(
        self,
        tok: Token | None = None,
        *,
        kind: ParseErrorKind = ParseErrorKind.UNEXPECTED_TOKEN,
        message: str | None = None,
        expected: tuple[str, ...] = (),
    ) -> None:
        token = tok if tok is not None else self._peek()
        detail = message if message is not None else "Unexpected token"
        normalized_expected = tuple(dict.fromkeys(expected))
        if token.kind == "EOF":
            found = "EOF"
        elif token.text:
            found = f"{token.kind}({token.text})"
        else:
            found = token.kind
        raise ParseError(kind, detail, token.pos, token.end, expected=normalized_expected, found=found)

    def _parse_additive(self) -> Expr:
        left = self._parse_multiplicative()
        while self._peek().kind in _ADDITIVE:
            op = _ADDITIVE[self._advance().kind]
            right = self._parse_multiplicative()
            left = BinaryOp(op, left, right)
        return left

    def _parse_multiplicative(self) -> Expr:
        left = self._parse_unary()
        while self._peek().kind in _MULTIPLICATIVE:
            op = _MULTIPLICATIVE[self._advance().kind]
            right = self._parse_unary()
            left = BinaryOp(op, left, right)
        return left

    def _parse_unary(self) -> Expr:
        tok = self._peek()
        if self.nesting >= MAX_NESTING_DEPTH:
            raise ParseError(
                ParseErrorKind.NESTING_TOO_DEEP,
                f"Expression nests deeper than {MAX_NESTING_DEPTH} levels",
                tok.pos,
                tok.end,
            )
        self.nesting += 1
        try:
            return self._parse_unary_inner(tok)
        finally:
            self.nesting -= 1

    def _parse_unary_inner(self, tok: Token) -> Expr:
        if tok.kind == "MINUS":
            self._advance()
            return UnaryOp("neg", self._parse_unary())
        if tok.kind == "PLUS":
            self._advance()
            return self._parse_unary()
        return self._parse_power()

    def _parse_power(self) -> Expr:
        base = self._parse_primary()
        if self._peek().kind == "CARET":
            self._advance()
            # Right-associative; the exponent may carry its own sign (2^-x).
            exponent = self._parse_unary()
            return BinaryOp("^", base, exponent)
        return base

    def _parse_primary(self) -> Expr:
        tok = self._peek()

        if tok.kind == "NUMBER":
            self._advance()
            return Constant(float(tok.text))

        if tok.kind == "NAME":
            self._advance()
            if self._peek().kind == "LPAREN":
                return self._parse_call(tok)
            if tok.text in NAMED_CONSTANTS:
                return Constant(NAMED_CONSTANTS[tok.text])
            if MathFunction.lookup(tok.text) is not None:
                self._error(
                    self._peek(),
                    message=f"Function {tok.text!r} must be called with parentheses",
                    expected=("LPAREN",),
                )
            return Variable(tok.text)

        if tok.kind == "LPAREN":
            self._advance()
            self.open_parens += 1
            inner = self._parse_additive()
            self._expect_close(tok)
            return inner

        if tok.kind == "RPAREN":
            if self.open_parens:
                self._error(tok, message="Empty or incomplete parenthesized group", expected=_PRIMARY_START)
            self._error(tok, kind=ParseErrorKind.UNBALANCED_PARENS, message="Unmatched closing parenthesis")
        self._error(tok, expected=_PRIMARY_START)
        raise AssertionError("unreachable")

    def _expect_close(self, opener: Token) -> None:
        tok = self._peek()
        if tok.kind == "RPAREN":
            self._advance()
            self.open_parens -= 1
            return
        if tok.kind == "EOF":
            raise ParseError(
                ParseErrorKind.UNBALANCED_PARENS,
                "Unclosed parenthesis",
                opener.pos,
                opener.end,
                expected=("RPAREN",),
                found="EOF",
            )
        self._error(tok, expected=("RPAREN",))

    def _parse_call(self, name_tok: Token) -> Expr:
        func = MathFunction.lookup(name_tok.text)
        if func is None and not self.allow_unknown_functions:
            raise ParseError(
                ParseErrorKind.UNKNOWN_FUNCTION,
                f"Unknown function {name_tok.text!r}",
                name_tok.pos,
                name_tok.end,
                expected=tuple(f.value for f in MathFunction),
                found=name_tok.text,
            )

        opener = self._advance()
        self.open_parens += 1
        args: list[Expr] = [self._parse_additive()]
        while self._peek().kind == "COMMA":
            comma = self._advance()
            if func is not None and len(args) >= func.arity:
                self._error(comma, message=f"Function {name_tok.text!r} takes {func.arity} argument(s)")
            args.append(self._parse_additive())
        self._expect_close(opener)
        return Call(name_tok.text, tuple(args))


def parse(source: str, *, allow_unknown_functions: bool = False) -> Expr:
    """Parse one scalar expression.

    Call-form identifiers must name a `MathFunction` unless
    `allow_unknown_functions` is set, in which case they are kept as `Call`
    nodes and rejected later by the differentiator. Trees deeper than
    `MAX_EXPRESSION_DEPTH` raise NESTING_TOO_DEEP.
    """
    if not source.strip():
        raise ParseError(ParseErrorKind.EMPTY_EXPRESSION, "Expression is empty", 0, len(source), found="EOF")
    parser = _Parser(tokenize(source), allow_unknown_functions=allow_unknown_functions)
    expr = parser.parse_expression_only()
    if expression_depth(expr) > MAX_EXPRESSION_DEPTH:
        raise ParseError(
            ParseErrorKind.NESTING_TOO_DEEP,
            f"Expression tree is deeper than {MAX_EXPRESSION_DEPTH} levels",
            0,
            len(source),
        )
    return expr
