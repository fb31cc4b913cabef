"""Invoke cached compiled functions on Number arguments."""

from __future__ import annotations

import math

import jax.numpy as jnp

from .cache import FunctionCache
from .errors import DiffJitError, EvalError, EvalErrorKind
from .numeric import EPSILON, Fast, Number


def evaluate_derivative(cache: FunctionCache, function_name: str, x: Number) -> Number:
    """Call `function_name` at `x`.

    The result is `Fast` and carries `x.error_estimate` plus one epsilon step
    of its own magnitude. NaN and infinite results are returned as values.
    """
    compiled = cache.lookup(function_name)
    if compiled is None:
        raise EvalError(EvalErrorKind.NOT_FOUND, function_name, "No compiled function with this name")

    try:
        raw = compiled.entry_point(jnp.asarray(x.to_f64(), dtype=jnp.float64))
        value = float(raw)
    except DiffJitError:
        raise
    except Exception as err:
        raise EvalError(
            EvalErrorKind.NATIVE_TRAP,
            function_name,
            f"Native execution failed: {type(err).__name__}: {err}",
        ) from err

    if math.isfinite(value):
        error = x.error_estimate + abs(value) * EPSILON
    else:
        error = math.inf
    return Fast(value, error)
