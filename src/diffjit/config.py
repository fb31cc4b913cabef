"""Environment-driven defaults for a DiffContext."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .differentiate import Mode
from .numeric import DEFAULT_PRECISION_BITS, DEFAULT_PROMOTE_THRESHOLD, NumericPolicy

DEFAULT_CACHE_MAX = 256


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class ContextConfig:
    """Settings for one DiffContext.

    - `cache_max_entries`: LRU bound on compiled functions; `None` is unbounded.
    - `default_mode`: mode used when a request does not name one.
    - `numeric`: promotion policy for `Number` arithmetic.
    """

    cache_max_entries: int | None = DEFAULT_CACHE_MAX
    default_mode: Mode = Mode.FORWARD
    numeric: NumericPolicy = field(default_factory=NumericPolicy)

    def __post_init__(self) -> None:
        if self.cache_max_entries is not None and self.cache_max_entries < 1:
            raise ValueError("cache_max_entries must be positive or None")

    @classmethod
    def from_env(cls) -> "ContextConfig":
        """Read `DIFFJIT_*` variables; `DIFFJIT_CACHE_MAX=0` disables eviction."""
        cache_max = _env_int("DIFFJIT_CACHE_MAX", DEFAULT_CACHE_MAX)
        mode = Mode(os.environ.get("DIFFJIT_DEFAULT_MODE", Mode.FORWARD.value).strip().lower())
        numeric = NumericPolicy(
            precision_bits=_env_int("DIFFJIT_PRECISION_BITS", DEFAULT_PRECISION_BITS),
            promote_threshold=_env_float("DIFFJIT_PROMOTE_THRESHOLD", DEFAULT_PROMOTE_THRESHOLD),
        )
        return cls(
            cache_max_entries=cache_max if cache_max > 0 else None,
            default_mode=mode,
            numeric=numeric,
        )
