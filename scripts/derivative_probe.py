"""Differentiate an expression and run the analysis probes from the command line."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from diffjit import (
    ContextConfig,
    DiffContext,
    DiffJitError,
    handle_request,
    performance_probe,
    plot_derivative,
    stability_probe,
)


def _run(args: argparse.Namespace) -> tuple[int, Any]:
    config = ContextConfig.from_env()
    with DiffContext(config) as ctx:
        if args.command == "eval":
            request: dict[str, Any] = {"expression": args.expression, "variable": args.variable, "x": args.x}
            if args.mode:
                request["mode"] = args.mode
            response = handle_request(ctx, request)
            return (1 if "error" in response else 0), response

        if args.command == "source":
            return 0, {"source": ctx.derivative_source(args.expression, args.variable, args.mode)}

        if args.command == "plot":
            return 0, plot_derivative(
                ctx,
                args.expression,
                args.variable,
                mode=args.mode,
                start=args.start,
                stop=args.stop,
                step=args.step,
            )

        if args.command == "stability":
            report = stability_probe(ctx, args.expression, args.variable, mode=args.mode)
            return (0 if report.stable else 2), {
                "expression": report.expression,
                "stable": report.stable,
                "first_non_finite": report.first_non_finite,
                "results": [{"x": x, "derivative": value} for x, value in report.results],
            }

        perf = performance_probe(ctx, args.expression, args.variable, mode=args.mode, iterations=args.iterations, x=args.x)
        payload = {
            "expression": perf.expression,
            "iterations": perf.iterations,
            "compile_ms": round(perf.compile_ms, 3),
            "mean_eval_ms": round(perf.mean_eval_ms, 4),
            "compiled": perf.compiled,
            "cache": ctx.cache_stats(),
        }
        return 0, payload


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=("eval", "source", "plot", "stability", "perf"))
    parser.add_argument("expression", help="expression text, e.g. 'x^2 - cos(x)'")
    parser.add_argument("--variable", default="x", help="differentiation variable")
    parser.add_argument("--mode", choices=("forward", "reverse"), default=None, help="differentiation mode")
    parser.add_argument("--x", type=float, default=1.0, help="evaluation point for eval/perf")
    parser.add_argument("--start", type=float, default=-5.0, help="plot start")
    parser.add_argument("--stop", type=float, default=5.0, help="plot stop")
    parser.add_argument("--step", type=float, default=0.5, help="plot step")
    parser.add_argument("--iterations", type=int, default=50, help="perf evaluation iterations")
    parser.add_argument("--verbose", action="store_true", help="log pipeline stages to stderr")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        status, output = _run(args)
    except DiffJitError as err:
        print(json.dumps({"error": str(err)}), file=sys.stderr)
        return 1

    if isinstance(output, str):
        sys.stdout.write(output)
    else:
        print(json.dumps(output, indent=2))
    return status


if __name__ == "__main__":
    raise SystemExit(main())
