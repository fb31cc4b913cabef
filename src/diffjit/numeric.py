"""Two-tier numeric value with cumulative error tracking."""

from __future__ import annotations

import math
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

import mpmath

EPSILON = sys.float_info.epsilon
DEFAULT_PRECISION_BITS = 113
DEFAULT_PROMOTE_THRESHOLD = 1e-10


class NumberKind(str, Enum):
    FAST = "fast"
    ARBITRARY = "arbitrary"


@dataclass(frozen=True)
class NumericPolicy:
    """When and how `Fast` results fall back to the `Arbitrary` tier.

    A finite `Fast` result whose error estimate exceeds
    `promote_threshold * |result|` is recomputed at `precision_bits`.
    """

    precision_bits: int = DEFAULT_PRECISION_BITS
    promote_threshold: float = DEFAULT_PROMOTE_THRESHOLD

    def __post_init__(self) -> None:
        if self.precision_bits < 53:
            raise ValueError("precision_bits must be at least 53")
        if not self.promote_threshold > 0.0:
            raise ValueError("promote_threshold must be positive")


DEFAULT_POLICY = NumericPolicy()


def _ieee_div(a: float, b: float) -> float:
    if b == 0.0:
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _mp_div(a, b, prec: int):
    if b == 0:
        if a == 0 or mpmath.isnan(a):
            return mpmath.mpf("nan")
        return mpmath.mpf("inf") if a > 0 else mpmath.mpf("-inf")
    return mpmath.fdiv(a, b, prec=prec)


_FLOAT_OPS = {
    "add": lambda a, b: a + b,
    "sub": lambda a, b: a - b,
    "mul": lambda a, b: a * b,
    "div": _ieee_div,
}

_MP_OPS = {
    "add": lambda a, b, prec: mpmath.fadd(a, b, prec=prec),
    "sub": lambda a, b, prec: mpmath.fsub(a, b, prec=prec),
    "mul": lambda a, b, prec: mpmath.fmul(a, b, prec=prec),
    "div": _mp_div,
}


def _accumulate(prior: float, magnitude: float, eps: float) -> float:
    if not math.isfinite(magnitude):
        return math.inf
    return prior + magnitude * eps


class Number(ABC):
    """Tagged numeric value: `Fast` (a float) or `Arbitrary` (an mpmath mpf).

    Arithmetic goes through named methods and always returns a new value.
    `error_estimate` never decreases along a chain of operations.
    """

    kind: NumberKind
    error_estimate: float

    @staticmethod
    def from_f64(value: float, error_estimate: float = 0.0) -> "Fast":
        return Fast(float(value), float(error_estimate))

    @staticmethod
    def from_arbitrary(
        value: object,
        *,
        precision_bits: int = DEFAULT_PRECISION_BITS,
        error_estimate: float = 0.0,
    ) -> "Arbitrary":
        return Arbitrary(mpmath.mpf(value, prec=precision_bits), precision_bits, float(error_estimate))

    @abstractmethod
    def to_f64(self) -> float:
        raise NotImplementedError

    @abstractmethod
    def to_arbitrary(self, precision_bits: int = DEFAULT_PRECISION_BITS) -> "Arbitrary":
        raise NotImplementedError

    @abstractmethod
    def clone(self) -> "Number":
        raise NotImplementedError

    @abstractmethod
    def is_nan(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def is_infinite(self) -> bool:
        raise NotImplementedError

    def is_finite(self) -> bool:
        return not (self.is_nan() or self.is_infinite())

    def same_value(self, other: "Number") -> bool:
        """Value equality where NaN equals NaN; error estimates are ignored."""
        if self.is_nan() or other.is_nan():
            return self.is_nan() and other.is_nan()
        if isinstance(self, Arbitrary) or isinstance(other, Arbitrary):
            bits = max(_bits_of(self), _bits_of(other))
            return self.to_arbitrary(bits).value == other.to_arbitrary(bits).value
        return self.to_f64() == other.to_f64()

    def add(self, other: "Number", policy: NumericPolicy = DEFAULT_POLICY) -> "Number":
        return _binary("add", self, other, policy)

    def sub(self, other: "Number", policy: NumericPolicy = DEFAULT_POLICY) -> "Number":
        return _binary("sub", self, other, policy)

    def mul(self, other: "Number", policy: NumericPolicy = DEFAULT_POLICY) -> "Number":
        return _binary("mul", self, other, policy)

    def div(self, other: "Number", policy: NumericPolicy = DEFAULT_POLICY) -> "Number":
        return _binary("div", self, other, policy)

    @abstractmethod
    def neg(self) -> "Number":
        raise NotImplementedError


@dataclass(frozen=True)
class Fast(Number):
    """Plain float payload; duplicating it is free."""

    value: float
    error_estimate: float = 0.0

    @property
    def kind(self) -> NumberKind:
        return NumberKind.FAST

    def to_f64(self) -> float:
        return self.value

    def to_arbitrary(self, precision_bits: int = DEFAULT_PRECISION_BITS) -> "Arbitrary":
        return Arbitrary(mpmath.mpf(self.value, prec=precision_bits), precision_bits, self.error_estimate)

    def clone(self) -> "Fast":
        return self

    def __copy__(self) -> "Fast":
        return self

    def is_nan(self) -> bool:
        return math.isnan(self.value)

    def is_infinite(self) -> bool:
        return math.isinf(self.value)

    def neg(self) -> "Fast":
        return Fast(-self.value, self.error_estimate)


@dataclass(frozen=True)
class Arbitrary(Number):
    """mpmath payload at `precision_bits`; `clone()` allocates a new payload."""

    value: mpmath.mpf
    precision_bits: int = DEFAULT_PRECISION_BITS
    error_estimate: float = 0.0

    @property
    def kind(self) -> NumberKind:
        return NumberKind.ARBITRARY

    @property
    def epsilon(self) -> float:
        return 2.0 ** -self.precision_bits

    def to_f64(self) -> float:
        return float(self.value)

    def to_arbitrary(self, precision_bits: int = DEFAULT_PRECISION_BITS) -> "Arbitrary":
        if precision_bits == self.precision_bits:
            return self
        return Arbitrary(mpmath.mpf(self.value, prec=precision_bits), precision_bits, self.error_estimate)

    def clone(self) -> "Arbitrary":
        return Arbitrary(mpmath.mpf(self.value, prec=self.precision_bits), self.precision_bits, self.error_estimate)

    def is_nan(self) -> bool:
        return bool(mpmath.isnan(self.value))

    def is_infinite(self) -> bool:
        return bool(mpmath.isinf(self.value))

    def neg(self) -> "Arbitrary":
        return Arbitrary(mpmath.fneg(self.value, prec=self.precision_bits), self.precision_bits, self.error_estimate)


def _bits_of(value: Number) -> int:
    return value.precision_bits if isinstance(value, Arbitrary) else 53


def _arbitrary_op(op: str, a: Number, b: Number, prior: float, bits: int) -> Arbitrary:
    x = a.to_arbitrary(bits).value
    y = b.to_arbitrary(bits).value
    result = _MP_OPS[op](x, y, bits)
    magnitude = math.inf if not mpmath.isfinite(result) else float(abs(result))
    return Arbitrary(result, bits, _accumulate(prior, magnitude, 2.0 ** -bits))


def _binary(op: str, a: Number, b: Number, policy: NumericPolicy) -> Number:
    prior = a.error_estimate + b.error_estimate
    if isinstance(a, Arbitrary) or isinstance(b, Arbitrary):
        bits = max(_bits_of(a), _bits_of(b), policy.precision_bits)
        return _arbitrary_op(op, a, b, prior, bits)

    result = _FLOAT_OPS[op](a.to_f64(), b.to_f64())
    error = _accumulate(prior, abs(result), EPSILON)
    if math.isfinite(result) and error > policy.promote_threshold * abs(result):
        return _arbitrary_op(op, a, b, prior, policy.precision_bits)
    return Fast(result, error)
