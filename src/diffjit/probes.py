"""Request/response contract and the analysis probes built on DiffContext."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass

from .context import DiffContext
from .differentiate import Mode
from .errors import DiffJitError
from .numeric import Number

logger = logging.getLogger(__name__)

STABILITY_POINTS = (0.0, 1.0, -1.0, 100.0)


@dataclass(frozen=True)
class PerformanceReport:
    expression: str
    iterations: int
    compile_ms: float
    mean_eval_ms: float
    compiled: bool


@dataclass(frozen=True)
class StabilityReport:
    expression: str
    results: tuple[tuple[float, float], ...]
    first_non_finite: float | None

    @property
    def stable(self) -> bool:
        return self.first_non_finite is None


def handle_request(ctx: DiffContext, request: Mapping[str, object]) -> dict[str, object]:
    """Serve `{expression, variable, mode, x}`.

    Returns `{derivative_value, error_estimate}` or `{error}`; `x` defaults
    to 1.0 and `mode` to the context's default.
    """
    expression = request.get("expression")
    if not isinstance(expression, str):
        return {"error": "request must carry an 'expression' string"}
    variable = str(request.get("variable", "x"))
    mode = request.get("mode")
    try:
        x = float(request.get("x", 1.0))
        handle = ctx.differentiate(expression, variable, None if mode is None else Mode(str(mode)))
        result = ctx.evaluate_derivative(handle, Number.from_f64(x))
    except (DiffJitError, ValueError, TypeError, RecursionError) as err:
        logger.debug("request for %r failed: %s", expression, err)
        return {"error": str(err)}
    return {"derivative_value": result.to_f64(), "error_estimate": result.error_estimate}


def performance_probe(
    ctx: DiffContext,
    expression: str,
    variable: str = "x",
    *,
    mode: Mode | str | None = None,
    iterations: int = 50,
    x: float = 1.0,
) -> PerformanceReport:
    if iterations < 1:
        raise ValueError("iterations must be positive")
    before = ctx.compile_count
    start = time.perf_counter()
    handle = ctx.differentiate(expression, variable, mode)
    compile_ms = (time.perf_counter() - start) * 1000.0

    arg = Number.from_f64(x)
    start = time.perf_counter()
    for _ in range(iterations):
        ctx.evaluate_derivative(handle, arg)
    mean_eval_ms = (time.perf_counter() - start) * 1000.0 / iterations

    return PerformanceReport(
        expression=handle.expression,
        iterations=iterations,
        compile_ms=compile_ms,
        mean_eval_ms=mean_eval_ms,
        compiled=ctx.compile_count > before,
    )


def _format_number(value: float) -> str:
    if math.isfinite(value) and value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def plot_points(start: float = -5.0, stop: float = 5.0, step: float = 0.5) -> list[float]:
    if step <= 0.0:
        raise ValueError("step must be positive")
    if stop < start:
        raise ValueError("stop must not be below start")
    count = int(round((stop - start) / step)) + 1
    return [round(start + i * step, 12) for i in range(count)]


def plot_derivative(
    ctx: DiffContext,
    expression: str,
    variable: str = "x",
    *,
    mode: Mode | str | None = None,
    start: float = -5.0,
    stop: float = 5.0,
    step: float = 0.5,
) -> str:
    """CSV text `x,derivative` sampled on `[start, stop]`."""
    handle = ctx.differentiate(expression, variable, mode)
    lines = ["x,derivative"]
    for x in plot_points(start, stop, step):
        value = ctx.evaluate_derivative(handle, Number.from_f64(x)).to_f64()
        lines.append(f"{_format_number(x)},{value!r}")
    return "\n".join(lines) + "\n"


def stability_probe(
    ctx: DiffContext,
    expression: str,
    variable: str = "x",
    *,
    mode: Mode | str | None = None,
    points: tuple[float, ...] = STABILITY_POINTS,
) -> StabilityReport:
    """Evaluate at each point and report the first NaN/infinite result."""
    handle = ctx.differentiate(expression, variable, mode)
    results: list[tuple[float, float]] = []
    first_bad: float | None = None
    for x in points:
        value = ctx.evaluate_derivative(handle, Number.from_f64(x))
        results.append((x, value.to_f64()))
        if first_bad is None and not value.is_finite():
            first_bad = x
    return StabilityReport(expression=handle.expression, results=tuple(results), first_non_finite=first_bad)
