"""
Interval Arithmetic

Provides the validated range enclosures carried by every relaxation.
Each operation is computed with outward rounding so the true range is
always contained in the resulting interval.

Outward rounding widens every computed bound by a small absolute
epsilon and one unit in the last place, which covers the error of a
correctly rounded operation at any magnitude. It is not directed
hardware rounding.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union
import math

import numpy as np
from scipy import special

from ..errors import DomainViolation


# Small epsilon for conservative rounding
ROUND_EPS = 1e-15

INF = float('inf')


def _down(x: float) -> float:
    """x rounded outward toward -inf."""
    return float(np.nextafter(x - ROUND_EPS, -INF))


def _up(x: float) -> float:
    """x rounded outward toward +inf."""
    return float(np.nextafter(x + ROUND_EPS, INF))


def _pow(x: float, p: Union[int, float]) -> float:
    """x ** p, inf instead of OverflowError for large magnitudes."""
    with np.errstate(over='ignore'):
        return float(np.power(np.float64(x), p))


def _mul_bound(a: float, b: float) -> float:
    """Product of two bounds with 0 * inf = 0."""
    if a == 0.0 or b == 0.0:
        return 0.0
    return a * b


@dataclass
class Interval:
    """
    A closed interval [lo, hi] with arithmetic operations.

    Empty intervals are represented by [inf, -inf]; every operation on an
    empty operand returns the empty interval.
    """
    lo: float
    hi: float

    def __post_init__(self):
        self.lo = float(self.lo)
        self.hi = float(self.hi)
        if math.isnan(self.lo) or math.isnan(self.hi):
            raise ValueError(f"Invalid interval: [{self.lo}, {self.hi}]")
        if self.lo > self.hi:
            # Intentionally empty
            if self.lo == INF and self.hi == -INF:
                return
            # For small violations due to numerics, collapse to point
            if self.lo <= self.hi + 1e-10:
                mid = (self.lo + self.hi) / 2
                self.lo = mid
                self.hi = mid
            else:
                raise ValueError(f"Invalid interval: [{self.lo}, {self.hi}]")

    @classmethod
    def point(cls, x: float) -> 'Interval':
        """Create a point interval [x, x]."""
        return cls(x, x)

    @classmethod
    def empty(cls) -> 'Interval':
        """Create an empty interval (for infeasibility)."""
        return cls(INF, -INF)

    @classmethod
    def entire(cls) -> 'Interval':
        """Create the entire real line."""
        return cls(-INF, INF)

    @property
    def is_empty(self) -> bool:
        return self.lo > self.hi

    @property
    def is_bounded(self) -> bool:
        return math.isfinite(self.lo) and math.isfinite(self.hi)

    @property
    def width(self) -> float:
        if self.is_empty:
            return 0.0
        return self.hi - self.lo

    @property
    def midpoint(self) -> float:
        if self.is_empty:
            return float('nan')
        return (self.lo + self.hi) / 2.0

    def contains(self, x: float) -> bool:
        return self.lo <= x <= self.hi

    def contains_zero(self) -> bool:
        return self.lo <= 0 <= self.hi

    def issubset(self, other: 'Interval') -> bool:
        if self.is_empty:
            return True
        return other.lo <= self.lo and self.hi <= other.hi

    def intersect(self, other: 'Interval') -> 'Interval':
        """Intersection of two intervals."""
        if self.is_empty or other.is_empty:
            return Interval.empty()
        new_lo = max(self.lo, other.lo)
        new_hi = min(self.hi, other.hi)
        if new_lo > new_hi + ROUND_EPS:
            return Interval.empty()
        return Interval(new_lo, max(new_lo, new_hi))

    def union_hull(self, other: 'Interval') -> 'Interval':
        """Convex hull of two intervals."""
        if self.is_empty:
            return Interval(other.lo, other.hi)
        if other.is_empty:
            return Interval(self.lo, self.hi)
        return Interval(min(self.lo, other.lo), max(self.hi, other.hi))

    # Arithmetic operations with outward rounding

    def __neg__(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        return Interval(-self.hi, -self.lo)

    def __add__(self, other: Union['Interval', float]) -> 'Interval':
        if not isinstance(other, Interval):
            other = Interval.point(float(other))
        if self.is_empty or other.is_empty:
            return Interval.empty()
        return Interval(
            _down(self.lo + other.lo),
            _up(self.hi + other.hi)
        )

    def __radd__(self, other) -> 'Interval':
        return self.__add__(Interval.point(float(other)))

    def __sub__(self, other: Union['Interval', float]) -> 'Interval':
        if not isinstance(other, Interval):
            other = Interval.point(float(other))
        return self + (-other)

    def __rsub__(self, other) -> 'Interval':
        return Interval.point(float(other)).__sub__(self)

    def __mul__(self, other: Union['Interval', float]) -> 'Interval':
        if not isinstance(other, Interval):
            other = Interval.point(float(other))
        if self.is_empty or other.is_empty:
            return Interval.empty()

        products = [
            _mul_bound(self.lo, other.lo),
            _mul_bound(self.lo, other.hi),
            _mul_bound(self.hi, other.lo),
            _mul_bound(self.hi, other.hi)
        ]
        return Interval(_down(min(products)), _up(max(products)))

    def __rmul__(self, other) -> 'Interval':
        return self.__mul__(Interval.point(float(other)))

    def inv(self) -> 'Interval':
        """Reciprocal 1/x; undefined when the interval contains zero."""
        if self.is_empty:
            return Interval.empty()
        if self.contains_zero():
            raise DomainViolation("inv", self)
        return Interval(_down(1.0 / self.hi), _up(1.0 / self.lo))

    def __truediv__(self, other: Union['Interval', float]) -> 'Interval':
        if not isinstance(other, Interval):
            other = Interval.point(float(other))
        return self * other.inv()

    def __rtruediv__(self, other) -> 'Interval':
        return Interval.point(float(other)).__truediv__(self)

    def __pow__(self, n: Union[int, float]) -> 'Interval':
        """Power operation x^n for a scalar exponent."""
        if float(n).is_integer():
            return self.pow_int(int(n))
        return self.pow_real(float(n))

    def pow_int(self, n: int) -> 'Interval':
        """Integer power with proper interval handling."""
        if self.is_empty:
            return Interval.empty()
        if n == 0:
            return Interval.point(1.0)
        elif n == 1:
            return Interval(self.lo, self.hi)
        elif n == 2:
            return self.square()
        elif n < 0:
            return self.pow_int(-n).inv()
        elif n % 2 == 0:
            # Even power
            if self.hi <= 0:
                return Interval(_down(_pow(self.hi, n)), _up(_pow(self.lo, n)))
            elif self.lo >= 0:
                return Interval(_down(_pow(self.lo, n)), _up(_pow(self.hi, n)))
            else:
                return Interval(0.0, _up(max(_pow(self.lo, n), _pow(self.hi, n))))
        else:
            # Odd power is monotone
            return Interval(_down(_pow(self.lo, n)), _up(_pow(self.hi, n)))

    def pow_real(self, a: float) -> 'Interval':
        """Real power x^a, defined for x >= 0 (x > 0 when a < 0)."""
        if self.is_empty:
            return Interval.empty()
        if self.lo < 0 or (a < 0 and self.lo <= 0):
            raise DomainViolation("pow", self)
        vals = [_pow(self.lo, a), _pow(self.hi, a)]
        return Interval(max(0.0, _down(min(vals))), _up(max(vals)))

    def square(self) -> 'Interval':
        """Optimized x^2 computation."""
        if self.is_empty:
            return Interval.empty()
        if self.hi <= 0:
            return Interval(_down(self.hi * self.hi), _up(self.lo * self.lo))
        elif self.lo >= 0:
            return Interval(_down(self.lo * self.lo), _up(self.hi * self.hi))
        else:
            # Interval contains zero
            return Interval(0.0, _up(max(self.lo * self.lo, self.hi * self.hi)))

    def abs(self) -> 'Interval':
        """Absolute value."""
        if self.is_empty:
            return Interval.empty()
        if self.lo >= 0:
            return Interval(self.lo, self.hi)
        elif self.hi <= 0:
            return Interval(-self.hi, -self.lo)
        else:
            return Interval(0, max(-self.lo, self.hi))

    def _monotone(self, func, increasing: bool = True) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        with np.errstate(over='ignore'):
            a, b = float(func(self.lo)), float(func(self.hi))
        if not increasing:
            a, b = b, a
        return Interval(_down(a), _up(b))

    def sqrt(self) -> 'Interval':
        """Square root (defined for non-negative)."""
        if self.is_empty:
            return Interval.empty()
        if self.lo < 0:
            raise DomainViolation("sqrt", self)
        return Interval(
            max(0.0, _down(np.sqrt(self.lo))),
            _up(np.sqrt(self.hi))
        )

    def exp(self) -> 'Interval':
        """Exponential function."""
        iv = self._monotone(np.exp)
        return Interval(max(0.0, iv.lo), iv.hi) if not iv.is_empty else iv

    def exp2(self) -> 'Interval':
        iv = self._monotone(np.exp2)
        return Interval(max(0.0, iv.lo), iv.hi) if not iv.is_empty else iv

    def exp10(self) -> 'Interval':
        iv = self._monotone(lambda t: np.power(10.0, t))
        return Interval(max(0.0, iv.lo), iv.hi) if not iv.is_empty else iv

    def log(self) -> 'Interval':
        """Natural logarithm (log(0) = -inf by convention)."""
        if self.is_empty:
            return Interval.empty()
        if self.lo < 0 or self.hi <= 0:
            raise DomainViolation("log", self)
        with np.errstate(divide='ignore'):
            return self._monotone(np.log)

    def log2(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        if self.lo < 0 or self.hi <= 0:
            raise DomainViolation("log2", self)
        with np.errstate(divide='ignore'):
            return self._monotone(np.log2)

    def log10(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        if self.lo < 0 or self.hi <= 0:
            raise DomainViolation("log10", self)
        with np.errstate(divide='ignore'):
            return self._monotone(np.log10)

    def sin(self) -> 'Interval':
        """Sine function with proper range handling."""
        if self.is_empty:
            return Interval.empty()
        # For wide intervals, return [-1, 1]
        if not self.is_bounded or self.width >= 2 * np.pi:
            return Interval(-1, 1)

        # Reduce to [0, 2*pi]
        lo_red = self.lo % (2 * np.pi)
        hi_red = lo_red + self.width

        vals = [np.sin(self.lo), np.sin(self.hi)]

        # Max at pi/2 + 2k*pi
        if lo_red <= np.pi/2 <= hi_red or lo_red <= np.pi/2 + 2*np.pi <= hi_red:
            vals.append(1)
        # Min at 3*pi/2 + 2k*pi
        if lo_red <= 3*np.pi/2 <= hi_red or lo_red <= 3*np.pi/2 + 2*np.pi <= hi_red:
            vals.append(-1)

        return Interval(max(-1.0, _down(min(vals))), min(1.0, _up(max(vals))))

    def cos(self) -> 'Interval':
        """Cosine function."""
        return (self + np.pi/2).sin()

    def tan(self) -> 'Interval':
        """Tangent function; undefined across a pole."""
        if self.is_empty:
            return Interval.empty()
        if not self.is_bounded or self.width >= np.pi:
            raise DomainViolation("tan", self)

        # Poles at pi/2 + k*pi
        k = math.floor((self.lo + np.pi/2) / np.pi)
        pole = np.pi/2 + k * np.pi
        if self.lo <= pole - np.pi or self.hi >= pole:
            raise DomainViolation("tan", self)

        return self._monotone(np.tan)

    def asin(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        if self.lo < -1 or self.hi > 1:
            raise DomainViolation("asin", self)
        return Interval(
            _down(np.arcsin(self.lo)),
            _up(np.arcsin(self.hi))
        )

    def acos(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        if self.lo < -1 or self.hi > 1:
            raise DomainViolation("acos", self)
        return Interval(
            max(0.0, _down(np.arccos(self.hi))),
            _up(np.arccos(self.lo))
        )

    def atan(self) -> 'Interval':
        return self._monotone(np.arctan)

    def sinh(self) -> 'Interval':
        return self._monotone(np.sinh)

    def cosh(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        if self.lo >= 0:
            iv = self._monotone(np.cosh)
        elif self.hi <= 0:
            iv = self._monotone(np.cosh, increasing=False)
        else:
            with np.errstate(over='ignore'):
                top = max(np.cosh(self.lo), np.cosh(self.hi))
            return Interval(1.0, _up(top))
        return Interval(max(1.0, iv.lo), iv.hi)

    def tanh(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        iv = self._monotone(np.tanh)
        return Interval(max(-1.0, iv.lo), min(1.0, iv.hi))

    def asinh(self) -> 'Interval':
        return self._monotone(np.arcsinh)

    def acosh(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        if self.lo < 1:
            raise DomainViolation("acosh", self)
        return Interval(
            max(0.0, _down(np.arccosh(self.lo))),
            _up(np.arccosh(self.hi))
        )

    def erf(self) -> 'Interval':
        if self.is_empty:
            return Interval.empty()
        iv = self._monotone(special.erf)
        return Interval(max(-1.0, iv.lo), min(1.0, iv.hi))

    def to_canonical(self) -> Dict[str, Any]:
        return {"lo": self.lo, "hi": self.hi}

    def __repr__(self) -> str:
        if self.is_empty:
            return "[empty]"
        return f"[{self.lo:.6g}, {self.hi:.6g}]"
