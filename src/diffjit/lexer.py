"""Tokenization for scalar math expressions."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import ParseError, ParseErrorKind


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int
    end: int


_SINGLE_TOKENS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "^": "CARET",
    "(": "LPAREN",
    ")": "RPAREN",
    ",": "COMMA",
}

_OP_ALIASES = {
    "**": "^",
    "×": "*",
    "÷": "/",
    "−": "-",
}

_WHITESPACE = {" ", "\t", "\n", "\r", "\f", "\v"}

_NUMBER_RE = re.compile(
    r"""
    (?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)     # mantissa
    (?:[eE][+\-]?[0-9]+)?                # optional exponent
    """,
    re.VERBOSE,
)


def _is_ident_start(ch: str) -> bool:
    return ch.isascii() and ch.isalpha()


def _is_ident_continue(ch: str) -> bool:
    return ch == "_" or (ch.isascii() and ch.isalnum())


def _scan_number(source: str, start: int) -> tuple[str, int]:
    m = _NUMBER_RE.match(source, start)
    if m is None or m.end() == start:
        raise ParseError(
            ParseErrorKind.UNEXPECTED_TOKEN,
            f"Invalid numeric literal {source[start:start + 1]!r}",
            start,
            start + 1,
            expected=("NUMBER",),
            found=source[start:start + 1],
        )
    end = m.end()
    # "2e" or "2e+" without digits is not consumed by the pattern; reject it
    # instead of leaving a dangling identifier behind.
    if end < len(source) and source[end] in {"e", "E"}:
        raise ParseError(
            ParseErrorKind.UNEXPECTED_TOKEN,
            f"Invalid numeric literal {source[start:end + 1]!r}",
            start,
            end + 1,
            expected=("exponent digits",),
            found=source[end:end + 1],
        )
    return source[start:end], end


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0

    while i < len(source):
        ch = source[i]

        if ch in _WHITESPACE:
            i += 1
            continue

        alias = next((a for a in _OP_ALIASES if source.startswith(a, i)), None)
        if alias is not None:
            canonical = _OP_ALIASES[alias]
            tokens.append(Token(_SINGLE_TOKENS[canonical], canonical, i, i + len(alias)))
            i += len(alias)
            continue

        if ch in _SINGLE_TOKENS:
            tokens.append(Token(_SINGLE_TOKENS[ch], ch, i, i + 1))
            i += 1
            continue

        if ch.isdigit() or (ch == "." and i + 1 < len(source) and source[i + 1].isdigit()):
            text, end = _scan_number(source, i)
            tokens.append(Token("NUMBER", text, i, end))
            i = end
            continue

        if _is_ident_start(ch):
            start = i
            i += 1
            while i < len(source) and _is_ident_continue(source[i]):
                i += 1
            tokens.append(Token("NAME", source[start:i], start, i))
            continue

        raise ParseError(
            ParseErrorKind.UNEXPECTED_TOKEN,
            f"Unexpected character {ch!r}",
            i,
            i + 1,
            found=ch,
        )

    tokens.append(Token("EOF", "", len(source), len(source)))
    return tokens
