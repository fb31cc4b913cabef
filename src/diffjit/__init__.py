"""diffjit public API."""

from .ast import BinaryOp, Call, Constant, Expr, MathFunction, UnaryOp, Variable, render
from .differentiate import Mode, build_tape, differentiate
from .emitter import emit
from .errors import (
    CompileError,
    CompileErrorKind,
    ContextClosedError,
    DifferentiationError,
    DifferentiationErrorKind,
    DiffJitError,
    EvalError,
    EvalErrorKind,
    ParseError,
    ParseErrorKind,
)
from .numeric import Arbitrary, Fast, Number, NumberKind, NumericPolicy
from .parser import parse

try:
    from .backend import CompiledFunction, JitBackend
    from .cache import FunctionCache, fingerprint
    from .config import ContextConfig
    from .context import DerivativeHandle, DiffContext
    from .evaluator import evaluate_derivative
    from .probes import (
        PerformanceReport,
        StabilityReport,
        handle_request,
        performance_probe,
        plot_derivative,
        stability_probe,
    )
except ModuleNotFoundError as exc:
    if exc.name and exc.name.startswith("jax"):
        _jax_import_error = exc

        class DiffContext:  # pragma: no cover - import-time fallback
            def __init__(self, *_args, **_kwargs) -> None:
                raise ModuleNotFoundError(
                    "jax is required for DiffContext(). Install runtime deps first."
                ) from _jax_import_error

        class JitBackend:  # pragma: no cover - import-time fallback
            def __init__(self, *_args, **_kwargs) -> None:
                raise ModuleNotFoundError(
                    "jax is required for JitBackend(). Install runtime deps first."
                ) from _jax_import_error

    else:
        raise

__all__ = [
    "parse",
    "render",
    "differentiate",
    "build_tape",
    "emit",
    "Mode",
    "Expr",
    "Constant",
    "Variable",
    "BinaryOp",
    "UnaryOp",
    "Call",
    "MathFunction",
    "Number",
    "Fast",
    "Arbitrary",
    "NumberKind",
    "NumericPolicy",
    "DiffContext",
    "DerivativeHandle",
    "ContextConfig",
    "JitBackend",
    "CompiledFunction",
    "FunctionCache",
    "fingerprint",
    "evaluate_derivative",
    "handle_request",
    "performance_probe",
    "plot_derivative",
    "stability_probe",
    "PerformanceReport",
    "StabilityReport",
    "DiffJitError",
    "ParseError",
    "ParseErrorKind",
    "DifferentiationError",
    "DifferentiationErrorKind",
    "CompileError",
    "CompileErrorKind",
    "EvalError",
    "EvalErrorKind",
    "ContextClosedError",
]
