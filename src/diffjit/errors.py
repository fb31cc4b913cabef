"""Structured error types for each pipeline stage."""

from __future__ import annotations

from enum import Enum


class DiffJitError(Exception):
    """Base class for structured diffjit errors."""


class ParseErrorKind(str, Enum):
    UNEXPECTED_TOKEN = "unexpected_token"
    UNBALANCED_PARENS = "unbalanced_parens"
    UNKNOWN_FUNCTION = "unknown_function"
    EMPTY_EXPRESSION = "empty_expression"
    NESTING_TOO_DEEP = "nesting_too_deep"


class DifferentiationErrorKind(str, Enum):
    UNSUPPORTED_FUNCTION = "unsupported_function"
    DIVISION_BY_ZERO_SYMBOLIC = "division_by_zero_symbolic"
    EXPRESSION_TOO_DEEP = "expression_too_deep"


class CompileErrorKind(str, Enum):
    SYNTAX_ERROR = "syntax_error"
    LINK_ERROR = "link_error"
    SYMBOL_RESOLUTION_ERROR = "symbol_resolution_error"


class EvalErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    NATIVE_TRAP = "native_trap"


class ParseError(DiffJitError, SyntaxError):
    """Malformed expression text, with the offending span."""

    def __init__(
        self,
        kind: ParseErrorKind,
        message: str,
        start: int,
        end: int,
        expected: tuple[str, ...] = (),
        found: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.start = start
        self.end = end
        self.expected = expected
        self.found = found

    def __str__(self) -> str:
        expected_text = ""
        if self.expected:
            expected_text = f"; expected {', '.join(self.expected)}"
        found_text = ""
        if self.found is not None:
            found_text = f"; found {self.found}"
        return f"{self.message} at span [{self.start}, {self.end}){expected_text}{found_text}"


class DifferentiationError(DiffJitError):
    def __init__(self, kind: DifferentiationErrorKind, message: str, *, function: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.function = function

    def __str__(self) -> str:
        return self.message


class CompileError(DiffJitError):
    """JIT failure; `diagnostic` carries the compiler's own text."""

    def __init__(self, kind: CompileErrorKind, function_name: str, diagnostic: str) -> None:
        super().__init__(diagnostic)
        self.kind = kind
        self.function_name = function_name
        self.diagnostic = diagnostic

    def __str__(self) -> str:
        return f"{self.kind.value} while compiling {self.function_name!r}: {self.diagnostic}"


class EvalError(DiffJitError):
    def __init__(self, kind: EvalErrorKind, function_name: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.function_name = function_name
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} ({self.function_name!r})"


class ContextClosedError(DiffJitError):
    """Raised when a closed DiffContext is used again."""
