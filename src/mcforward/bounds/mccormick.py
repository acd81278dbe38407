"""
McCormick Relaxation Values

A relaxation value carries, for one node of an expression DAG:
- an interval enclosure of the node's range over the box,
- a convex underestimator cv and a concave overestimator cc evaluated
  at the current point,
- subgradients of cv and cc with respect to the decision variables.

Arithmetic follows the McCormick composition rules, with the bilinear
product using the subgradient-propagating form of Mitsos, Chachuat and
Barton (2009). Each binary operation has a fresh form (operands only) and
a kernel form that also takes the interval previously stored at the
output node; the kernel form can only tighten.
"""

from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union
import math

import numpy as np

from .interval import Interval, ROUND_EPS
from ..errors import DomainViolation


Number = Union[int, float]


def _smul(a: float, b: float) -> float:
    """Scalar product with 0 * inf = 0."""
    if a == 0.0 or b == 0.0:
        return 0.0
    return a * b


@dataclass(eq=False)
class Relaxation:
    """
    McCormick relaxation of a function at a point.

    cv: convex underestimator value at the point
    cc: concave overestimator value at the point
    interval: enclosure of the range over the box
    cv_grad: subgradient of cv
    cc_grad: subgradient of cc
    cnst: True if the value does not depend on any variable
    """
    cv: float
    cc: float
    interval: Interval
    cv_grad: np.ndarray
    cc_grad: np.ndarray
    cnst: bool = False

    @classmethod
    def constant(cls, value: float, n: int) -> 'Relaxation':
        """Exact relaxation of a constant."""
        value = float(value)
        return cls(value, value, Interval.point(value), np.zeros(n), np.zeros(n), True)

    @classmethod
    def zero(cls, n: int) -> 'Relaxation':
        return cls.constant(0.0, n)

    @classmethod
    def one(cls, n: int) -> 'Relaxation':
        return cls.constant(1.0, n)

    @classmethod
    def empty(cls, n: int) -> 'Relaxation':
        """The explicit infeasible / domain violation signal."""
        return cls(float('inf'), float('-inf'), Interval.empty(), np.zeros(n), np.zeros(n), False)

    @classmethod
    def entire(cls, n: int) -> 'Relaxation':
        """The trivially sound relaxation of a value with unknown range."""
        return cls(float('-inf'), float('inf'), Interval.entire(), np.zeros(n), np.zeros(n), False)

    @classmethod
    def variable(cls, x: float, lo: float, hi: float, index: int, n: int) -> 'Relaxation':
        """Relaxation of the decision variable x_index at value x."""
        grad = np.zeros(n)
        grad[index] = 1.0
        return cls(float(x), float(x), Interval(lo, hi), grad, grad.copy(), False)

    @property
    def n(self) -> int:
        return len(self.cv_grad)

    @property
    def is_empty(self) -> bool:
        return self.interval.is_empty

    @property
    def lo(self) -> float:
        return self.interval.lo

    @property
    def hi(self) -> float:
        return self.interval.hi

    def cut(self) -> 'Relaxation':
        """Cut cv and cc to the interval bounds."""
        if self.is_empty:
            return self
        cv, cv_grad = self.cv, self.cv_grad
        cc, cc_grad = self.cc, self.cc_grad
        if cv < self.interval.lo:
            cv, cv_grad = self.interval.lo, np.zeros(self.n)
        if cc > self.interval.hi:
            cc, cc_grad = self.interval.hi, np.zeros(self.n)
        # only reachable at points outside a clipped domain
        if cv > self.interval.hi:
            cv, cv_grad = self.interval.hi, np.zeros(self.n)
        if cc < self.interval.lo:
            cc, cc_grad = self.interval.lo, np.zeros(self.n)
        return Relaxation(cv, cc, self.interval, cv_grad, cc_grad, self.cnst)

    def intersect_interval(self, other: Interval) -> 'Relaxation':
        """Intersect the enclosure with another interval and cut."""
        if self.is_empty:
            return self
        iv = self.interval.intersect(other)
        if iv.is_empty:
            return Relaxation.empty(self.n)
        return Relaxation(self.cv, self.cc, iv, self.cv_grad, self.cc_grad, self.cnst).cut()

    def intersect(self, other: 'Relaxation', relaxations: bool = True) -> 'Relaxation':
        """
        Intersect with another relaxation of the same function.

        The interval part is always intersected. The cv/cc part is only
        intersected when `relaxations` is set, which requires both values
        to have been computed at the same point.
        """
        if self.is_empty or other.is_empty:
            return Relaxation.empty(self.n)
        if not relaxations:
            return self.intersect_interval(other.interval)

        iv = self.interval.intersect(other.interval)
        if iv.is_empty:
            return Relaxation.empty(self.n)
        if other.cv > self.cv:
            cv, cv_grad = other.cv, other.cv_grad
        else:
            cv, cv_grad = self.cv, self.cv_grad
        if other.cc < self.cc:
            cc, cc_grad = other.cc, other.cc_grad
        else:
            cc, cc_grad = self.cc, self.cc_grad
        return Relaxation(cv, cc, iv, cv_grad, cc_grad, self.cnst and other.cnst).cut()

    def apply_hint(self, hint: Interval) -> 'Relaxation':
        """Tighten with an interval known to enclose the same range."""
        if hint is None:
            return self
        return self.intersect_interval(hint)

    # Arithmetic

    def __neg__(self) -> 'Relaxation':
        if self.is_empty:
            return self
        return Relaxation(-self.cc, -self.cv, -self.interval,
                          -self.cc_grad, -self.cv_grad, self.cnst)

    def __pos__(self) -> 'Relaxation':
        return self

    def __add__(self, other) -> 'Relaxation':
        return add(self, other)

    def __radd__(self, other) -> 'Relaxation':
        return add(self, other)

    def __sub__(self, other) -> 'Relaxation':
        return sub(self, other)

    def __rsub__(self, other) -> 'Relaxation':
        return sub(other, self)

    def __mul__(self, other) -> 'Relaxation':
        return mul(self, other)

    def __rmul__(self, other) -> 'Relaxation':
        return mul(self, other)

    def __truediv__(self, other) -> 'Relaxation':
        return div(self, other)

    def __rtruediv__(self, other) -> 'Relaxation':
        return div(other, self)

    def __pow__(self, other) -> 'Relaxation':
        from .univariate import power
        return power(self, other)

    def __rpow__(self, other) -> 'Relaxation':
        from .univariate import power
        return power(other, self)

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "cv": self.cv,
            "cc": self.cc,
            "cv_grad": self.cv_grad.tolist(),
            "cc_grad": self.cc_grad.tolist(),
            "interval": self.interval.to_canonical(),
            "cnst": self.cnst,
        }

    def __repr__(self) -> str:
        if self.is_empty:
            return "Relaxation(empty)"
        return f"Relaxation(cv={self.cv:.6g}, cc={self.cc:.6g}, interval={self.interval!r})"


def finalize(cv: float, cv_grad: np.ndarray, cc: float, cc_grad: np.ndarray,
             interval: Interval, cnst: bool = False) -> Relaxation:
    """
    Assemble a relaxation from raw parts.

    Non-finite relaxation values or subgradients are replaced by the
    corresponding interval bound with a zero subgradient, then cv and cc
    are cut to the interval.
    """
    n = len(cv_grad)
    if interval.is_empty:
        return Relaxation.empty(n)
    if not (math.isfinite(cv) and np.all(np.isfinite(cv_grad))):
        cv, cv_grad = interval.lo, np.zeros(n)
    if not (math.isfinite(cc) and np.all(np.isfinite(cc_grad))):
        cc, cc_grad = interval.hi, np.zeros(n)
    return Relaxation(float(cv), float(cc), interval, cv_grad, cc_grad, cnst).cut()


def lift(x: Union[Relaxation, Number], n: int) -> Relaxation:
    """Lift a scalar to a constant relaxation."""
    if isinstance(x, Relaxation):
        return x
    return Relaxation.constant(float(x), n)


def _dimension(*args) -> int:
    for a in args:
        if isinstance(a, Relaxation):
            return a.n
    raise TypeError("at least one operand must be a Relaxation")


def add(x: Union[Relaxation, Number], y: Union[Relaxation, Number]) -> Relaxation:
    """x + y for relaxations and scalars."""
    if not isinstance(x, Relaxation):
        x, y = y, x
    if not isinstance(x, Relaxation):
        raise TypeError("at least one operand must be a Relaxation")
    if x.is_empty:
        return x
    if not isinstance(y, Relaxation):
        c = float(y)
        return Relaxation(x.cv + c, x.cc + c, x.interval + c,
                          x.cv_grad, x.cc_grad, x.cnst)
    if y.is_empty:
        return y
    return Relaxation(x.cv + y.cv, x.cc + y.cc, x.interval + y.interval,
                      x.cv_grad + y.cv_grad, x.cc_grad + y.cc_grad,
                      x.cnst and y.cnst)


def sub(x: Union[Relaxation, Number], y: Union[Relaxation, Number]) -> Relaxation:
    """x - y for relaxations and scalars."""
    if isinstance(y, Relaxation):
        return add(x, -y)
    return add(x, -float(y))


def scale(x: Relaxation, c: float) -> Relaxation:
    """c * x for a scalar c."""
    if x.is_empty:
        return x
    c = float(c)
    if c == 0.0:
        return Relaxation.zero(x.n)
    if c >= 0.0:
        return Relaxation(c * x.cv, c * x.cc, c * x.interval,
                          c * x.cv_grad, c * x.cc_grad, x.cnst)
    return Relaxation(c * x.cc, c * x.cv, c * x.interval,
                      c * x.cc_grad, c * x.cv_grad, x.cnst)


def _bilinear(x: Relaxation, y: Relaxation) -> Relaxation:
    """McCormick product of two relaxations."""
    n = x.n
    xL, xU = x.interval.lo, x.interval.hi
    yL, yU = y.interval.lo, y.interval.hi

    def under(coef: float, r: Relaxation) -> Tuple[float, np.ndarray]:
        # convex underestimator of coef * r
        if coef >= 0.0:
            return _smul(coef, r.cv), coef * r.cv_grad if coef != 0.0 else np.zeros(n)
        return _smul(coef, r.cc), coef * r.cc_grad

    def over(coef: float, r: Relaxation) -> Tuple[float, np.ndarray]:
        # concave overestimator of coef * r
        if coef >= 0.0:
            return _smul(coef, r.cc), coef * r.cc_grad if coef != 0.0 else np.zeros(n)
        return _smul(coef, r.cv), coef * r.cv_grad

    with np.errstate(invalid='ignore', over='ignore'):
        a1x, g1x = under(yL, x)
        a1y, g1y = under(xL, y)
        alpha1 = a1x + a1y - _smul(xL, yL)
        a2x, g2x = under(yU, x)
        a2y, g2y = under(xU, y)
        alpha2 = a2x + a2y - _smul(xU, yU)

        b1x, h1x = over(yL, x)
        b1y, h1y = over(xU, y)
        beta1 = b1x + b1y - _smul(xU, yL)
        b2x, h2x = over(yU, x)
        b2y, h2y = over(xL, y)
        beta2 = b2x + b2y - _smul(xL, yU)

    if alpha1 >= alpha2 or math.isnan(alpha2):
        cv, cv_grad = alpha1, g1x + g1y
    else:
        cv, cv_grad = alpha2, g2x + g2y
    if beta1 <= beta2 or math.isnan(beta2):
        cc, cc_grad = beta1, h1x + h1y
    else:
        cc, cc_grad = beta2, h2x + h2y

    return finalize(cv, cv_grad, cc, cc_grad, x.interval * y.interval,
                    x.cnst and y.cnst)


def mul(x: Union[Relaxation, Number], y: Union[Relaxation, Number]) -> Relaxation:
    """x * y for relaxations and scalars."""
    if not isinstance(x, Relaxation):
        x, y = y, x
    if not isinstance(x, Relaxation):
        raise TypeError("at least one operand must be a Relaxation")
    if x.is_empty:
        return x
    if not isinstance(y, Relaxation):
        return scale(x, y)
    if y.is_empty:
        return y
    if y.cnst and y.interval.lo == y.interval.hi:
        return scale(x, y.interval.lo)
    if x.cnst and x.interval.lo == x.interval.hi:
        return scale(y, x.interval.lo)
    return _bilinear(x, y)


def inv(x: Relaxation) -> Relaxation:
    """
    1/x for a relaxation whose interval excludes zero.

    Raises DomainViolation when zero lies in the enclosure.
    """
    if x.is_empty:
        return x
    a, b = x.interval.lo, x.interval.hi
    if a <= 0.0 <= b:
        raise DomainViolation("inv", x.interval)

    out = x.interval.inv()
    if a == b:
        return Relaxation.constant(1.0 / a, x.n)

    # secant of 1/x through (a, 1/a) and (b, 1/b)
    secant_slope = -1.0 / (a * b)
    if a > 0.0:
        # convex decreasing: min at b, max at a
        cv = 1.0 / x.cc
        cv_grad = -x.cc_grad / (x.cc * x.cc)
        cc = (a + b - x.cv) / (a * b)
        cc_grad = secant_slope * x.cv_grad
    else:
        # concave decreasing
        cv = (a + b - x.cc) / (a * b)
        cv_grad = secant_slope * x.cc_grad
        cc = 1.0 / x.cv
        cc_grad = -x.cv_grad / (x.cv * x.cv)
    return finalize(cv, cv_grad, cc, cc_grad, out, x.cnst)


def div(x: Union[Relaxation, Number], y: Union[Relaxation, Number]) -> Relaxation:
    """x / y; a denominator enclosure containing zero is a domain violation."""
    if isinstance(y, Relaxation):
        if y.is_empty:
            return y
        if isinstance(x, Relaxation) and x.is_empty:
            return x
        return mul(x, inv(y))
    c = float(y)
    if c == 0.0:
        raise DomainViolation("div", c)
    return scale(x, 1.0 / c)


# Kernel forms: the stored output interval tightens the fresh result.

def plus_kernel(x, y, hint: Interval) -> Relaxation:
    return add(x, y).apply_hint(hint)


def minus_kernel(x, y, hint: Interval) -> Relaxation:
    return sub(x, y).apply_hint(hint)


def mult_kernel(x, y, hint: Interval) -> Relaxation:
    return mul(x, y).apply_hint(hint)


def div_kernel(x, y, hint: Interval) -> Relaxation:
    return div(x, y).apply_hint(hint)


def mid3(lo: float, hi: float, z: float) -> Tuple[float, int]:
    """
    Median of (lo, hi, z) for lo <= hi.

    Returns the value and which argument was selected (0, 1 or 2).
    """
    if z <= lo:
        return lo, 0
    if z >= hi:
        return hi, 1
    return z, 2


__all__ = [
    "Relaxation",
    "finalize",
    "lift",
    "add",
    "sub",
    "scale",
    "mul",
    "inv",
    "div",
    "plus_kernel",
    "minus_kernel",
    "mult_kernel",
    "div_kernel",
    "mid3",
    "ROUND_EPS",
]
