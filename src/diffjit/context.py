"""Pipeline entry points bound to one explicitly owned JIT context."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .ast import render
from .backend import JitBackend
from .cache import FunctionCache, fingerprint
from .config import ContextConfig
from .differentiate import Mode, differentiate
from .emitter import emit
from .errors import ContextClosedError
from .evaluator import evaluate_derivative
from .numeric import Number, NumericPolicy
from .parser import parse

logger = logging.getLogger(__name__)

_VALUE_TAG = "value"


@dataclass(frozen=True)
class DerivativeHandle:
    """Result of `differentiate`/`compile_expression`; pass it to `evaluate_derivative`."""

    function_name: str
    fingerprint: str
    expression: str
    variable: str
    mode: Mode | None
    source: str


def _check_variable(variable: str) -> None:
    if not variable.isidentifier() or not variable[0].isalpha() or not variable.isascii():
        raise ValueError(f"Invalid variable name {variable!r}")


def _function_name(prefix: str, key: str) -> str:
    return f"{prefix}_{key[:24]}"


class DiffContext:
    """Owns one JitBackend and the FunctionCache that points into it.

    Entry points in the cache are only valid while the backend is open, so
    the two share this single owner and `close()` tears down the cache before
    the backend. Use it as a context manager or call `close()` explicitly.
    """

    def __init__(
        self,
        config: ContextConfig | None = None,
        *,
        symbols: Mapping[str, object] | None = None,
    ) -> None:
        self.config = config if config is not None else ContextConfig.from_env()
        self._backend = JitBackend(symbols)
        self._cache = FunctionCache(self._backend, max_entries=self.config.cache_max_entries)
        self._closed = False

    def __enter__(self) -> "DiffContext":
        return self

    def __exit__(self, *_exc) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def compile_count(self) -> int:
        return self._backend.compile_count

    @property
    def policy(self) -> NumericPolicy:
        """Promotion policy to pass to `Number` arithmetic on evaluation results."""
        return self.config.numeric

    def _ensure_open(self) -> None:
        if self._closed:
            raise ContextClosedError("DiffContext is closed")

    def _resolve_mode(self, mode: Mode | str | None) -> Mode:
        return self.config.default_mode if mode is None else Mode(mode)

    def fingerprint(self, expression: str, variable: str = "x", mode: Mode | str | None = None) -> str:
        _check_variable(variable)
        normalized = render(parse(expression, allow_unknown_functions=True))
        return fingerprint(normalized, variable, self._resolve_mode(mode).value)

    def differentiate(
        self,
        expression: str,
        variable: str = "x",
        mode: Mode | str | None = None,
    ) -> DerivativeHandle:
        """Parse, differentiate, emit and compile; repeated requests hit the cache."""
        self._ensure_open()
        _check_variable(variable)
        resolved = self._resolve_mode(mode)
        expr = parse(expression, allow_unknown_functions=True)
        normalized = render(expr)
        key = fingerprint(normalized, variable, resolved.value)
        name = _function_name("d", key)

        cached = self._cache.get(key)
        if cached is None:
            derivative = differentiate(expr, variable, resolved)
            source = emit(derivative, name, variable=variable)
            logger.debug("emitted %s for d/d%s %s", name, variable, normalized)
            cached = self._cache.get_or_compile(key, source, name)

        return DerivativeHandle(
            function_name=name,
            fingerprint=key,
            expression=normalized,
            variable=variable,
            mode=resolved,
            source=cached.source,
        )

    def compile_expression(self, expression: str, variable: str = "x") -> DerivativeHandle:
        """Compile the expression itself, without differentiating it."""
        self._ensure_open()
        _check_variable(variable)
        expr = parse(expression)
        normalized = render(expr)
        key = fingerprint(normalized, variable, _VALUE_TAG)
        name = _function_name("f", key)

        cached = self._cache.get(key)
        if cached is None:
            cached = self._cache.get_or_compile(key, emit(expr, name, variable=variable), name)

        return DerivativeHandle(
            function_name=name,
            fingerprint=key,
            expression=normalized,
            variable=variable,
            mode=None,
            source=cached.source,
        )

    def derivative_source(self, expression: str, variable: str = "x", mode: Mode | str | None = None) -> str:
        """Emitted source for the derivative, without compiling it."""
        _check_variable(variable)
        resolved = self._resolve_mode(mode)
        expr = parse(expression, allow_unknown_functions=True)
        key = fingerprint(render(expr), variable, resolved.value)
        return emit(differentiate(expr, variable, resolved), _function_name("d", key), variable=variable)

    def evaluate_derivative(self, handle: DerivativeHandle | str, x: Number | float) -> Number:
        self._ensure_open()
        name = handle.function_name if isinstance(handle, DerivativeHandle) else handle
        arg = x if isinstance(x, Number) else Number.from_f64(x)
        return evaluate_derivative(self._cache, name, arg)

    def evaluate(self, handle: DerivativeHandle | str, x: Number | float = 0.0) -> Number:
        return self.evaluate_derivative(handle, x)

    def evaluate_expression(self, expression: str, x: Number | float = 0.0, variable: str = "x") -> Number:
        return self.evaluate(self.compile_expression(expression, variable), x)

    def cache_stats(self, *, reset: bool = False) -> dict[str, float | int | None]:
        return self._cache.stats(reset=reset)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cache.clear()
        self._backend.close()
        logger.debug("closed DiffContext")
