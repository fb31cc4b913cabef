"""In-memory JIT compilation of emitted source through JAX/XLA."""

from __future__ import annotations

import builtins
import logging
import threading
import time
import types
from collections.abc import Mapping
from dataclasses import dataclass, field

import jax
import jax.numpy as jnp

from .ast import MathFunction
from .emitter import POW_SYMBOL
from .errors import CompileError, CompileErrorKind, ContextClosedError

# Derivatives are checked to 1e-9; float32 cannot hold that.
jax.config.update("jax_enable_x64", True)

logger = logging.getLogger(__name__)

_JNP_NAMES = {
    MathFunction.ASIN: "arcsin",
    MathFunction.ACOS: "arccos",
    MathFunction.ATAN: "arctan",
}


def default_link_table() -> dict[str, object]:
    """Symbols emitted code may reference, resolved against jax.numpy."""
    table: dict[str, object] = {}
    for func in MathFunction:
        table[func.symbol] = getattr(jnp, _JNP_NAMES.get(func, func.value))
    table[POW_SYMBOL] = jnp.power
    table["inf"] = jnp.inf
    table["nan"] = jnp.nan
    return table


def _scalar_spec() -> jax.ShapeDtypeStruct:
    return jax.ShapeDtypeStruct((), jnp.float64)


@dataclass(frozen=True)
class CompiledFunction:
    """Handle on one compiled entry point.

    `entry_point` belongs to the JitBackend that produced it and must not be
    called after that backend is closed.
    """

    fingerprint: str
    function_name: str
    entry_point: object = field(repr=False)
    source: str = field(repr=False)
    compiled_at: float = 0.0
    compile_ms: float = 0.0

    def __call__(self, x: float) -> float:
        return float(self.entry_point(jnp.asarray(x, dtype=jnp.float64)))


def _find_function_code(code: types.CodeType, function_name: str) -> types.CodeType | None:
    for const in code.co_consts:
        if isinstance(const, types.CodeType) and const.co_name == function_name:
            return const
    return None


def _referenced_names(code: types.CodeType) -> set[str]:
    names = set(code.co_names)
    for const in code.co_consts:
        if isinstance(const, types.CodeType):
            names |= _referenced_names(const)
    return names


class JitBackend:
    """Compiles emitted source into XLA executables.

    The compilation context is not safe for concurrent use: every call to
    `compile` runs under one lock, so concurrent callers with distinct
    functions are serialized. Use one backend per thread if compiles must run
    in parallel.
    """

    def __init__(self, symbols: Mapping[str, object] | None = None) -> None:
        self._symbols = default_link_table()
        if symbols:
            self._symbols.update(symbols)
        self._lock = threading.Lock()
        self._namespaces: dict[str, dict[str, object]] = {}
        self._closed = False
        self.compile_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def symbols(self) -> frozenset[str]:
        return frozenset(self._symbols)

    def compile(self, source: str, function_name: str, *, fingerprint: str = "") -> CompiledFunction:
        with self._lock:
            if self._closed:
                raise ContextClosedError("JIT backend is closed")
            self.compile_count += 1
            start = time.perf_counter()
            try:
                compiled = self._compile_locked(source, function_name, fingerprint)
            except CompileError as err:
                logger.warning("compile of %s failed: %s", function_name, err)
                raise
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            logger.info("compiled %s in %.2f ms", function_name, elapsed_ms)
            return CompiledFunction(
                fingerprint=fingerprint,
                function_name=function_name,
                entry_point=compiled,
                source=source,
                compiled_at=time.time(),
                compile_ms=elapsed_ms,
            )

    def _compile_locked(self, source: str, function_name: str, fingerprint: str) -> object:
        try:
            code = builtins.compile(source, f"<diffjit:{function_name}>", "exec")
        except SyntaxError as err:
            raise CompileError(CompileErrorKind.SYNTAX_ERROR, function_name, f"line {err.lineno}: {err.msg}") from err
        except RecursionError as err:
            raise CompileError(CompileErrorKind.SYNTAX_ERROR, function_name, "expression nests too deeply to compile") from err

        fn_code = _find_function_code(code, function_name)
        if fn_code is None:
            raise CompileError(
                CompileErrorKind.LINK_ERROR,
                function_name,
                f"source does not define a function named {function_name!r}",
            )

        unresolved = sorted(_referenced_names(fn_code) - set(self._symbols))
        if unresolved:
            raise CompileError(
                CompileErrorKind.SYMBOL_RESOLUTION_ERROR,
                function_name,
                f"unresolved symbol(s): {', '.join(unresolved)}",
            )

        # JAX tracing imports through the function frame; referenced names are
        # already restricted to the link table.
        namespace: dict[str, object] = {"__builtins__": {"__import__": builtins.__import__}}
        namespace.update(self._symbols)
        try:
            exec(code, namespace)
        except Exception as err:
            raise CompileError(CompileErrorKind.LINK_ERROR, function_name, f"{type(err).__name__}: {err}") from err

        fn = namespace.get(function_name)
        if not callable(fn):
            raise CompileError(CompileErrorKind.LINK_ERROR, function_name, f"{function_name!r} is not callable")

        try:
            executable = jax.jit(fn).lower(_scalar_spec()).compile()
        except Exception as err:
            raise CompileError(CompileErrorKind.LINK_ERROR, function_name, f"{type(err).__name__}: {err}") from err

        self._namespaces[fingerprint or function_name] = namespace
        return executable

    def close(self) -> None:
        with self._lock:
            self._namespaces.clear()
            self._closed = True
