"""Benchmark slice: derivative compile latency, cache hits and steady-state evaluation."""

from __future__ import annotations

import argparse
import json
import math
import platform
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path

import jax

from diffjit import ContextConfig, DiffContext, Mode, Number

CASES: dict[str, str] = {
    "poly": "x^3 + 2*x^2 - 5*x + 1",
    "trig": "x^2 - cos(x)",
    "rational": "exp(-x) / (1 + x^2)",
    "nested": "sin(cos(tan(x))) * sqrt(x^2 + 1)",
    "power_tower": "x^x + 2^sin(x)",
    "hyperbolic": "tanh(x) * cosh(x) - sinh(x)^2",
}

PROFILE_PRESETS: dict[str, dict[str, int]] = {
    "quick": {"samples": 3, "evals": 200},
    "full": {"samples": 7, "evals": 2000},
}


@dataclass(frozen=True)
class CompileRow:
    name: str
    mode: str
    compile_ms: float
    cache_hit_ms: float
    eval_mean_us: float
    eval_p95_us: float


def _percentile(values: list[float], pct: float) -> float:
    ordered = sorted(values)
    if not ordered:
        return math.nan
    idx = min(len(ordered) - 1, max(0, int(round((pct / 100.0) * (len(ordered) - 1)))))
    return ordered[idx]


def _bench_case(ctx: DiffContext, name: str, expression: str, mode: Mode, *, samples: int, evals: int) -> CompileRow:
    start = time.perf_counter()
    handle = ctx.differentiate(expression, "x", mode)
    compile_ms = (time.perf_counter() - start) * 1000.0

    start = time.perf_counter()
    ctx.differentiate(expression, "x", mode)
    cache_hit_ms = (time.perf_counter() - start) * 1000.0

    arg = Number.from_f64(0.75)
    per_eval_us: list[float] = []
    for _ in range(samples):
        start = time.perf_counter()
        for _ in range(evals):
            ctx.evaluate_derivative(handle, arg)
        per_eval_us.append((time.perf_counter() - start) * 1e6 / evals)

    return CompileRow(
        name=name,
        mode=mode.value,
        compile_ms=compile_ms,
        cache_hit_ms=cache_hit_ms,
        eval_mean_us=sum(per_eval_us) / len(per_eval_us),
        eval_p95_us=_percentile(per_eval_us, 95.0),
    )


def run_benchmarks(*, samples: int, evals: int) -> list[CompileRow]:
    rows: list[CompileRow] = []
    with DiffContext(ContextConfig(cache_max_entries=None)) as ctx:
        for mode in Mode:
            for name, expression in CASES.items():
                rows.append(_bench_case(ctx, name, expression, mode, samples=samples, evals=evals))
        stats = ctx.cache_stats()

    print("case           mode      compile(ms)  hit(ms)   eval(us)  p95(us)")
    print("-------------  --------  -----------  --------  --------  -------")
    for row in rows:
        print(
            f"{row.name:13}  {row.mode:8}  {row.compile_ms:11.3f}  {row.cache_hit_ms:8.4f}  "
            f"{row.eval_mean_us:8.2f}  {row.eval_p95_us:7.2f}"
        )
    print()
    print(f"cache: hits={stats['hits']} misses={stats['misses']} compiles={stats['compiles']}")
    return rows


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--profile", choices=sorted(PROFILE_PRESETS), default="quick", help="fixed benchmark profile")
    parser.add_argument("--samples", type=int, default=None, help="override sample count")
    parser.add_argument("--evals", type=int, default=None, help="override evaluations per sample")
    parser.add_argument("--json-out", default="", help="optional path to write machine-readable results")
    args = parser.parse_args()

    profile = PROFILE_PRESETS[args.profile]
    samples = int(profile["samples"] if args.samples is None else args.samples)
    evals = int(profile["evals"] if args.evals is None else args.evals)

    rows = run_benchmarks(samples=samples, evals=evals)
    if args.json_out:
        outpath = Path(args.json_out)
        outpath.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "timestamp_utc": datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ"),
            "profile": args.profile,
            "samples": samples,
            "evals": evals,
            "host": {
                "python": platform.python_version(),
                "jax": jax.__version__,
                "backend": jax.default_backend(),
            },
            "rows": [asdict(row) for row in rows],
        }
        outpath.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        print(f"wrote {outpath}")
