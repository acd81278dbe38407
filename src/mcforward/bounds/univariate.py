"""
Univariate Relaxations

McCormick relaxations of the elementary univariate functions and of
powers. For an outer function u with convex / concave envelopes u_cv,
u_cc on the argument interval [xL, xU] the composition rule is

    cv = u_cv(mid(x.cv, x.cc, z_min))
    cc = u_cc(mid(x.cv, x.cc, z_max))

where z_min / z_max minimize / maximize u over [xL, xU]. Subgradients
are the envelope slope times the subgradient selected by the mid
operator (zero when the mid selects z).

Functions fall into three families:
- closed form: convex or concave on the whole domain, no tie points;
- single tie point: one inflection (tanh, atan, sinh, asinh, erf,
  asin, acos, tan and odd integer powers);
- double tie point: sin and cos, up to two inflections per interval.

Every function also accepts plain numbers, so user supplied operators
can be written once and evaluated on both.
"""

from functools import lru_cache
from typing import Dict, List, Optional, Tuple, Union
import math

import numpy as np
from scipy import special

from .interval import Interval, INF
from .mccormick import Relaxation, finalize, inv, mid3, mul, scale
from .envelopes import (
    TiePoints,
    UnivariateFunction,
    concave_envelope,
    convex_envelope,
)
from ..errors import DomainViolation


Number = Union[int, float]

LN2 = math.log(2.0)
LN10 = math.log(10.0)
TWO_OVER_SQRT_PI = 2.0 / math.sqrt(math.pi)

NO_TIEPOINTS: TiePoints = (float('nan'), float('nan'))


def _nowhere(lo: float, hi: float) -> List[float]:
    return []


def _at_zero(lo: float, hi: float) -> List[float]:
    return [0.0]


def _multiples(offset: float):
    """Points offset + k*pi inside [lo, hi]."""
    def points(lo: float, hi: float) -> List[float]:
        if not (math.isfinite(lo) and math.isfinite(hi)):
            return []
        k0 = math.ceil((lo - offset) / math.pi)
        k1 = math.floor((hi - offset) / math.pi)
        return [offset + k * math.pi for k in range(k0, k1 + 1)]
    return points


def _convex(t: float) -> bool:
    return True


def _concave(t: float) -> bool:
    return False


def _convex_above_zero(t: float) -> bool:
    return t > 0.0


def _convex_below_zero(t: float) -> bool:
    return t < 0.0


def _sqrt1m(t: float) -> float:
    return np.sqrt(np.float64(1.0) - t * t)


FUNCTIONS: Dict[str, UnivariateFunction] = {
    # closed form
    "abs": UnivariateFunction(
        "abs", lambda t: abs(t), lambda t: float(np.sign(t)), lambda t: 1.0,  # convex through the kink
        Interval.abs, critical_points=_at_zero, convex_at=_convex),
    "exp": UnivariateFunction(
        "exp", lambda t: float(np.exp(t)), lambda t: float(np.exp(t)),
        lambda t: float(np.exp(t)), Interval.exp, convex_at=_convex),
    "exp2": UnivariateFunction(
        "exp2", lambda t: float(np.exp2(t)), lambda t: LN2 * float(np.exp2(t)),
        lambda t: LN2 * LN2 * float(np.exp2(t)), Interval.exp2, convex_at=_convex),
    "exp10": UnivariateFunction(
        "exp10", lambda t: float(np.power(10.0, t)), lambda t: LN10 * float(np.power(10.0, t)),
        lambda t: LN10 * LN10 * float(np.power(10.0, t)), Interval.exp10, convex_at=_convex),
    "log": UnivariateFunction(
        "log", lambda t: float(np.log(t)), lambda t: float(np.divide(1.0, t)),
        lambda t: float(np.divide(-1.0, np.float64(t) * t)), Interval.log,
        domain=Interval(0.0, INF), convex_at=_concave),
    "log2": UnivariateFunction(
        "log2", lambda t: float(np.log2(t)), lambda t: float(np.divide(1.0, LN2 * np.float64(t))),
        lambda t: float(np.divide(-1.0, LN2 * np.float64(t) * t)), Interval.log2,
        domain=Interval(0.0, INF), convex_at=_concave),
    "log10": UnivariateFunction(
        "log10", lambda t: float(np.log10(t)), lambda t: float(np.divide(1.0, LN10 * np.float64(t))),
        lambda t: float(np.divide(-1.0, LN10 * np.float64(t) * t)), Interval.log10,
        domain=Interval(0.0, INF), convex_at=_concave),
    "sqrt": UnivariateFunction(
        "sqrt", lambda t: float(np.sqrt(t)), lambda t: float(np.divide(0.5, np.sqrt(t))),
        lambda t: float(np.divide(-0.25, np.power(np.float64(t), 1.5))), Interval.sqrt,
        domain=Interval(0.0, INF), convex_at=_concave),
    "cosh": UnivariateFunction(
        "cosh", lambda t: float(np.cosh(t)), lambda t: float(np.sinh(t)),
        lambda t: float(np.cosh(t)), Interval.cosh, critical_points=_at_zero, convex_at=_convex),
    "acosh": UnivariateFunction(
        "acosh", lambda t: float(np.arccosh(t)),
        lambda t: float(np.divide(1.0, np.sqrt(np.float64(t) * t - 1.0))),
        lambda t: float(np.divide(-t, np.power(np.float64(t) * t - 1.0, 1.5))), Interval.acosh,
        domain=Interval(1.0, INF), convex_at=_concave),

    # single tie point
    "tanh": UnivariateFunction(
        "tanh", lambda t: float(np.tanh(t)), lambda t: 1.0 - float(np.tanh(t)) ** 2,
        lambda t: -2.0 * float(np.tanh(t)) * (1.0 - float(np.tanh(t)) ** 2), Interval.tanh,
        inflections=_at_zero, convex_at=_convex_below_zero),
    "atan": UnivariateFunction(
        "atan", lambda t: float(np.arctan(t)), lambda t: 1.0 / (1.0 + t * t),
        lambda t: float(np.divide(-2.0 * t, np.square(1.0 + np.float64(t) * t))), Interval.atan,
        inflections=_at_zero, convex_at=_convex_below_zero),
    "sinh": UnivariateFunction(
        "sinh", lambda t: float(np.sinh(t)), lambda t: float(np.cosh(t)),
        lambda t: float(np.sinh(t)), Interval.sinh, inflections=_at_zero, convex_at=_convex_above_zero),
    "asinh": UnivariateFunction(
        "asinh", lambda t: float(np.arcsinh(t)), lambda t: 1.0 / math.sqrt(1.0 + t * t),
        lambda t: float(np.divide(-t, np.power(1.0 + np.float64(t) * t, 1.5))), Interval.asinh,
        inflections=_at_zero, convex_at=_convex_below_zero),
    "erf": UnivariateFunction(
        "erf", lambda t: float(special.erf(t)), lambda t: TWO_OVER_SQRT_PI * float(np.exp(-t * t)),
        lambda t: -2.0 * t * TWO_OVER_SQRT_PI * float(np.exp(-t * t)), Interval.erf,
        inflections=_at_zero, convex_at=_convex_below_zero),
    "asin": UnivariateFunction(
        "asin", lambda t: float(np.arcsin(t)), lambda t: float(np.divide(1.0, _sqrt1m(t))),
        lambda t: float(np.divide(t, np.power(_sqrt1m(t), 3))), Interval.asin,
        inflections=_at_zero, domain=Interval(-1.0, 1.0),
        convex_at=_convex_above_zero),
    "acos": UnivariateFunction(
        "acos", lambda t: float(np.arccos(t)), lambda t: float(np.divide(-1.0, _sqrt1m(t))),
        lambda t: float(np.divide(-t, np.power(_sqrt1m(t), 3))), Interval.acos,
        inflections=_at_zero, domain=Interval(-1.0, 1.0),
        convex_at=_convex_below_zero),
    "tan": UnivariateFunction(
        "tan", lambda t: float(np.tan(t)), lambda t: 1.0 + float(np.tan(t)) ** 2,
        lambda t: 2.0 * float(np.tan(t)) * (1.0 + float(np.tan(t)) ** 2), Interval.tan,
        inflections=_multiples(0.0), convex_at=lambda t: float(np.tan(t)) > 0.0),

    # double tie point
    "sin": UnivariateFunction(
        "sin", lambda t: float(np.sin(t)), lambda t: float(np.cos(t)),
        lambda t: -float(np.sin(t)), Interval.sin,
        inflections=_multiples(0.0), critical_points=_multiples(math.pi / 2),
        convex_at=lambda t: float(np.sin(t)) < 0.0),
    "cos": UnivariateFunction(
        "cos", lambda t: float(np.cos(t)), lambda t: -float(np.sin(t)),
        lambda t: -float(np.cos(t)), Interval.cos,
        inflections=_multiples(math.pi / 2), critical_points=_multiples(0.0),
        convex_at=lambda t: float(np.cos(t)) < 0.0),
}

CLOSED_FORM_OPS = frozenset({"neg", "abs", "exp", "exp2", "exp10", "log", "log2",
                             "log10", "sqrt", "inv", "cosh", "acosh", "square"})
SINGLE_TIEPOINT_OPS = frozenset({"tanh", "atan", "sinh", "asinh", "erf", "asin", "acos", "tan"})
DOUBLE_TIEPOINT_OPS = frozenset({"sin", "cos"})
UNIVARIATE_OPS = CLOSED_FORM_OPS | SINGLE_TIEPOINT_OPS | DOUBLE_TIEPOINT_OPS

LOG_OPS = frozenset({"log", "log2", "log10"})


def domain_of(op: str) -> Optional[Interval]:
    """Interval domain of a partial univariate function (None if total or not an interval)."""
    fn = FUNCTIONS.get(op)
    return fn.domain if fn is not None else None


def compose(fn: UnivariateFunction, x: Relaxation,
            guess_cv: Optional[TiePoints] = None,
            guess_cc: Optional[TiePoints] = None,
            **options) -> Tuple[Relaxation, TiePoints, TiePoints]:
    """
    Relaxation of fn(x) by the composition rule.

    Args:
        fn: Outer function
        x: Relaxation of the argument
        guess_cv, guess_cc: Cached tie points of the convex / concave envelope
        **options: Tie-point solver options (xtol, residual_tol, max_iter)

    Returns:
        (relaxation, convex tie points, concave tie points)

    Raises:
        DomainViolation: if the argument interval leaves the domain of fn
    """
    if x.is_empty:
        return x, NO_TIEPOINTS, NO_TIEPOINTS
    out = fn.interval(x.interval)
    xL, xU = x.lo, x.hi
    zeros = np.zeros(x.n)

    with np.errstate(all='ignore'):
        z_min = fn.argmin(xL, xU)
        z_max = fn.argmax(xL, xU)

        x_cv, which = mid3(x.cv, x.cc, z_min)
        grad_cv = (x.cv_grad, x.cc_grad, zeros)[which]
        cv, slope_cv, tps_cv = convex_envelope(fn, x_cv, xL, xU, guess_cv, **options)

        x_cc, which = mid3(x.cv, x.cc, z_max)
        grad_cc = (x.cv_grad, x.cc_grad, zeros)[which]
        cc, slope_cc, tps_cc = concave_envelope(fn, x_cc, xL, xU, guess_cc, **options)

        cv_grad = slope_cv * grad_cv if slope_cv != 0.0 else zeros.copy()
        cc_grad = slope_cc * grad_cc if slope_cc != 0.0 else zeros.copy()

    return finalize(cv, cv_grad, cc, cc_grad, out, x.cnst), tps_cv, tps_cc


def _trig_saturated(x: Relaxation) -> Relaxation:
    n = x.n
    return Relaxation(-1.0, 1.0, Interval(-1.0, 1.0), np.zeros(n), np.zeros(n), x.cnst)


def relax(op: str, x: Relaxation,
          guess_cv: Optional[TiePoints] = None,
          guess_cc: Optional[TiePoints] = None,
          **options) -> Tuple[Relaxation, TiePoints, TiePoints]:
    """
    Relaxation of a catalogue function applied to x.

    Returns the relaxation and the tie points used by the convex and
    concave envelopes (NaN pairs for functions without tie points).
    """
    if x.is_empty:
        return x, NO_TIEPOINTS, NO_TIEPOINTS
    if op == "neg":
        return -x, NO_TIEPOINTS, NO_TIEPOINTS
    if op == "inv":
        return inv(x), NO_TIEPOINTS, NO_TIEPOINTS
    if op == "square":
        return power(x, 2), NO_TIEPOINTS, NO_TIEPOINTS
    if op in DOUBLE_TIEPOINT_OPS:
        iv = x.interval
        if not iv.is_bounded or iv.width >= 2.0 * math.pi:
            return _trig_saturated(x), NO_TIEPOINTS, NO_TIEPOINTS
    try:
        fn = FUNCTIONS[op]
    except KeyError:
        raise ValueError(f"Unknown univariate op: {op}") from None
    return compose(fn, x, guess_cv, guess_cc, **options)


def scalar(op: str, x: Number) -> float:
    """
    Scalar value of a catalogue function.

    Raises:
        DomainViolation: if x is outside the domain of op
    """
    x = float(x)
    if op == "neg":
        return -x
    if op == "square":
        return x * x
    if op == "inv":
        if x == 0.0:
            raise DomainViolation("inv", x)
        return 1.0 / x
    try:
        fn = FUNCTIONS[op]
    except KeyError:
        raise ValueError(f"Unknown univariate op: {op}") from None
    if fn.domain is not None and not fn.domain.contains(x):
        raise DomainViolation(op, x)
    if op in LOG_OPS and x == 0.0:
        raise DomainViolation(op, x)
    with np.errstate(all='ignore'):
        value = fn.f(x)
    if math.isnan(value):
        raise DomainViolation(op, x)
    return value


@lru_cache(maxsize=64)
def power_function(p: float) -> UnivariateFunction:
    """x^p as a univariate function (p not 0 or 1)."""
    integer = float(p).is_integer()
    e = int(p) if integer else float(p)

    def f(t):
        return float(np.power(np.float64(t), e))

    def df(t):
        return e * float(np.power(np.float64(t), e - 1))

    def d2f(t):
        return e * (e - 1) * float(np.power(np.float64(t), e - 2))

    def convex_at(t):
        # sign of e (e - 1) t^(e - 2); only integer exponents reach t < 0
        if t >= 0.0:
            return e * (e - 1) > 0
        return e % 2 == 0

    odd = integer and e >= 3 and e % 2 == 1
    even = integer and e > 0 and e % 2 == 0
    return UnivariateFunction(
        name=f"pow{e}",
        f=f,
        df=df,
        d2f=d2f,
        interval=lambda iv: iv ** e,
        inflections=_at_zero if odd else _nowhere,
        critical_points=_at_zero if even else _nowhere,
        domain=None if integer else Interval(0.0, INF),
        convex_at=convex_at,
    )


def power(x: Union[Relaxation, Number], y: Union[Relaxation, Number], **options):
    """
    x ** y for relaxations and numbers.

    - relaxation ** number: x^1 is x itself, x^0 the constant one, other
      exponents use the envelopes of t^p (non-integer p needs x >= 0,
      negative integer p needs 0 outside the enclosure);
    - number ** relaxation: exp(y log a) for a > 0;
    - relaxation ** relaxation: exp(y log x).

    Raises:
        DomainViolation: for a base outside the domain of the power
    """
    if isinstance(x, Relaxation):
        if x.is_empty:
            return x
        if isinstance(y, Relaxation):
            if y.is_empty:
                return y
            if y.cnst and y.lo == y.hi:
                return power(x, y.lo, **options)
            log_x = relax("log", x)[0]
            return relax("exp", mul(y, log_x))[0]
        p = float(y)
        if p == 1.0:
            return x
        if p == 0.0:
            return Relaxation.one(x.n)
        return compose(power_function(p), x, **options)[0]

    if isinstance(y, Relaxation):
        if y.is_empty:
            return y
        a = float(x)
        if a == 1.0:
            return Relaxation.one(y.n)
        if a <= 0.0:
            raise DomainViolation("pow", a)
        return relax("exp", scale(y, math.log(a)))[0]

    a, p = float(x), float(y)
    if a < 0.0 and not p.is_integer():
        raise DomainViolation("pow", a)
    if a == 0.0 and p < 0.0:
        raise DomainViolation("pow", a)
    return float(np.power(a, p))


def _polymorphic(op: str):
    def function(x):
        if isinstance(x, Relaxation):
            return relax(op, x)[0]
        return scalar(op, x)
    function.__name__ = op
    function.__doc__ = f"{op}(x) for a number or a relaxation."
    return function


# Functions usable inside user supplied operators
exp = _polymorphic("exp")
exp2 = _polymorphic("exp2")
exp10 = _polymorphic("exp10")
log = _polymorphic("log")
log2 = _polymorphic("log2")
log10 = _polymorphic("log10")
sqrt = _polymorphic("sqrt")
cosh = _polymorphic("cosh")
acosh = _polymorphic("acosh")
tanh = _polymorphic("tanh")
atan = _polymorphic("atan")
sinh = _polymorphic("sinh")
asinh = _polymorphic("asinh")
erf = _polymorphic("erf")
asin = _polymorphic("asin")
acos = _polymorphic("acos")
tan = _polymorphic("tan")
sin = _polymorphic("sin")
cos = _polymorphic("cos")
