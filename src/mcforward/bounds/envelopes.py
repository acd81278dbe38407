"""
Convex and Concave Envelopes of Univariate Functions

For a twice differentiable f on [xL, xU] the interval is split at the
inflection points of f into alternately convex and concave pieces. The
convex envelope follows f on the convex pieces that lie on the lower
hull and is linear elsewhere. The linear pieces are delimited by contact
("tie") points found by solving a tangency condition with Brent's method.

Supported shapes (at most two inflections):
- convex / concave
- convex-concave and concave-convex (one tie point)
- concave-convex-concave and convex-concave-convex (two tie points)

A tie-point pair (t1, t2) fully describes the envelope:
- if f is convex at xL the envelope is linear on [t1, t2] and f elsewhere;
- if f is concave at xL it is linear on [xL, t1] and [t2, xU] and f
  elsewhere.

The concave envelope is the negated convex envelope of -f.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
import logging
import math

from scipy.optimize import brentq

from .interval import Interval

logger = logging.getLogger(__name__)

# Brent's method tolerance on the tie point location
TIEPOINT_XTOL = 1e-14
# Accept a cached tie point when its tangency residual is below this
TIEPOINT_RESIDUAL_TOL = 1e-9
# Iteration cap for the bitangent of two convex pieces
BITANGENT_MAX_ITER = 50

TiePoints = Tuple[float, float]
Piece = Tuple[float, float, bool]


def _no_points(lo: float, hi: float) -> List[float]:
    return []


@dataclass(frozen=True)
class UnivariateFunction:
    """
    A univariate function with the data needed for its envelopes.

    Attributes:
        name: Function name (used in domain errors and logs)
        f, df, d2f: Value, first and second derivative
        interval: Natural interval extension
        inflections: Inflection points inside an interval
        convex_at: Curvature rule, True where f is convex; decides the
            curvature of each piece between inflections. Without it the
            sign of d2f is used, which underflows to zero where f saturates.
        critical_points: Stationary points inside an interval
        domain: Interval domain for partial functions (None = all reals)
    """
    name: str
    f: Callable[[float], float]
    df: Callable[[float], float]
    d2f: Callable[[float], float]
    interval: Callable[[Interval], Interval]
    inflections: Callable[[float, float], List[float]] = field(default=_no_points)
    critical_points: Callable[[float, float], List[float]] = field(default=_no_points)
    domain: Optional[Interval] = None
    convex_at: Optional[Callable[[float], bool]] = None

    def negated(self) -> 'UnivariateFunction':
        f, df, d2f = self.f, self.df, self.d2f
        return UnivariateFunction(
            name=f"-{self.name}",
            f=lambda t: -f(t),
            df=lambda t: -df(t),
            d2f=lambda t: -d2f(t),
            interval=lambda iv: -self.interval(iv),
            inflections=self.inflections,
            critical_points=self.critical_points,
            domain=self.domain,
            convex_at=lambda t: not self.is_convex_at(t),
        )

    def is_convex_at(self, t: float) -> bool:
        if self.convex_at is not None:
            return bool(self.convex_at(t))
        return self.d2f(t) >= 0.0

    def argmin(self, lo: float, hi: float) -> float:
        """Minimizer of f over [lo, hi] among endpoints and stationary points."""
        return self._extremum(lo, hi, minimize=True)

    def argmax(self, lo: float, hi: float) -> float:
        """Maximizer of f over [lo, hi] among endpoints and stationary points."""
        return self._extremum(lo, hi, minimize=False)

    def _extremum(self, lo: float, hi: float, minimize: bool) -> float:
        candidates = [lo, hi] + [c for c in self.critical_points(lo, hi) if lo < c < hi]
        best, best_val = None, None
        for c in candidates:
            v = self.f(c)
            if math.isnan(v):
                continue
            if best is None or (v < best_val if minimize else v > best_val):
                best, best_val = c, v
        if best is None:
            # No point with a defined value
            return lo if minimize else hi
        return best


def _representative(a: float, b: float) -> float:
    """A point strictly inside (a, b), which may be unbounded."""
    if math.isfinite(a) and math.isfinite(b):
        return 0.5 * (a + b)
    if math.isfinite(b):
        return b - 1.0 - abs(b)
    if math.isfinite(a):
        return a + 1.0 + abs(a)
    return 0.0


def pieces(fn: UnivariateFunction, xL: float, xU: float) -> List[Piece]:
    """Split [xL, xU] into maximal convex / concave pieces."""
    cuts = sorted(c for c in fn.inflections(xL, xU) if xL < c < xU)
    bounds = [xL] + cuts + [xU]
    out: List[Piece] = []
    for a, b in zip(bounds[:-1], bounds[1:]):
        convex = fn.is_convex_at(_representative(a, b))
        if out and out[-1][2] == convex:
            out[-1] = (out[-1][0], b, convex)
        else:
            out.append((a, b, convex))
    return out


def _line(fn: UnivariateFunction, p: float, q: float, x: float) -> Tuple[float, float]:
    """Value and slope at x of the chord of f through p and q."""
    fp = fn.f(p)
    if q - p <= 0.0:
        return fp, fn.df(p)
    s = (fn.f(q) - fp) / (q - p)
    return fp + s * (x - p), s


def _finite_end(h: Callable[[float], float], t: float, toward: float) -> Tuple[float, float]:
    """Move an endpoint inward until h is finite there."""
    value = h(t)
    for frac in (0.0, 1e-12, 1e-9, 1e-6, 1e-3):
        t_try = t + frac * (toward - t)
        value = h(t_try)
        if math.isfinite(value):
            return t_try, value
    return t, value


def contact(fn: UnivariateFunction, px: float, py: float, lo: float, hi: float,
            guess: Optional[float] = None, xtol: float = TIEPOINT_XTOL,
            residual_tol: float = TIEPOINT_RESIDUAL_TOL) -> float:
    """
    Contact point on the convex piece [lo, hi] of the lower supporting
    line through P = (px, py), with P outside the piece.

    For P on the left this is the minimum-slope line, for P on the right
    the maximum-slope line. The tangency residual

        h(t) = f(t) + f'(t) (px - t) - py

    is monotone on a convex piece, so the contact is either an endpoint or
    the unique root of h.
    """
    def h(t: float) -> float:
        return fn.f(t) + fn.df(t) * (px - t) - py

    left = px <= lo
    t_lo, h_lo = _finite_end(h, lo, hi)
    t_hi, h_hi = _finite_end(h, hi, lo)

    if left:
        # h is non-increasing
        if h_lo <= 0.0:
            return lo
        if h_hi >= 0.0:
            return hi
    else:
        # h is non-decreasing
        if h_lo >= 0.0:
            return lo
        if h_hi <= 0.0:
            return hi

    if guess is not None and lo <= guess <= hi and math.isfinite(guess):
        r = h(guess)
        if math.isfinite(r) and abs(r) <= residual_tol * (1.0 + abs(py)):
            return guess

    return brentq(h, t_lo, t_hi, xtol=xtol, maxiter=200)


def _bitangent(fn: UnivariateFunction, left: Piece, right: Piece, guess: TiePoints,
               xtol: float, residual_tol: float, max_iter: int) -> TiePoints:
    """Common supporting line of two convex pieces by alternating contacts."""
    b = guess[1] if right[0] <= guess[1] <= right[1] else right[1]
    a_guess = guess[0]
    a_prev = float('nan')
    for _ in range(max_iter):
        a = contact(fn, b, fn.f(b), left[0], left[1], a_guess, xtol, residual_tol)
        b_new = contact(fn, a, fn.f(a), right[0], right[1], b, xtol, residual_tol)
        tol = 10.0 * xtol * (1.0 + abs(b))
        if abs(b_new - b) <= tol and abs(a - a_prev) <= tol:
            return a, b_new
        a_prev, a_guess, b = a, a, b_new
    logger.debug("bitangent of %s did not converge in %d iterations", fn.name, max_iter)
    return a_prev, b


def tie_points(fn: UnivariateFunction, xL: float, xU: float,
               guess: Optional[TiePoints] = None,
               xtol: float = TIEPOINT_XTOL,
               residual_tol: float = TIEPOINT_RESIDUAL_TOL,
               max_iter: int = BITANGENT_MAX_ITER) -> Tuple[TiePoints, bool]:
    """
    Tie points of the convex envelope of fn on [xL, xU].

    Returns ((t1, t2), convex_start).
    """
    parts = pieces(fn, xL, xU)
    convex_start = parts[0][2]
    g1, g2 = guess if guess is not None else (None, None)

    if not (math.isfinite(xL) and math.isfinite(xU)):
        if len(parts) == 1 and convex_start:
            return (xU, xU), True
        return (float('nan'), float('nan')), convex_start

    if len(parts) == 1:
        return (xU, xU), convex_start

    if len(parts) == 2:
        if convex_start:
            a = contact(fn, xU, fn.f(xU), parts[0][0], parts[0][1], g1, xtol, residual_tol)
            return (a, xU), True
        b = contact(fn, xL, fn.f(xL), parts[1][0], parts[1][1], g1, xtol, residual_tol)
        return (b, xU), False

    if len(parts) == 3:
        fL, fU = fn.f(xL), fn.f(xU)
        if not convex_start:
            mid = parts[1]
            p1 = contact(fn, xL, fL, mid[0], mid[1], g1, xtol, residual_tol)
            s1 = (fn.f(p1) - fL) / (p1 - xL)
            sU = (fU - fL) / (xU - xL)
            if sU <= s1:
                return (xU, xU), False
            p2 = contact(fn, xU, fU, mid[0], mid[1], g2, xtol, residual_tol)
            return (p1, max(p1, p2)), False

        left, right = parts[0], parts[2]
        a = contact(fn, xU, fU, left[0], left[1], g1, xtol, residual_tol)
        if a < xU and fn.df(xU) <= (fU - fn.f(a)) / (xU - a):
            return (a, xU), True
        b = contact(fn, xL, fL, right[0], right[1], g2, xtol, residual_tol)
        if b > xL and fn.df(xL) >= (fn.f(b) - fL) / (b - xL):
            return (xL, b), True
        start = (g1 if g1 is not None else a, g2 if g2 is not None else xU)
        return _bitangent(fn, left, right, start, xtol, residual_tol, max_iter), True

    raise ValueError(f"{fn.name}: more than two inflection points on [{xL}, {xU}]")


def evaluate(fn: UnivariateFunction, x: float, xL: float, xU: float,
             tps: TiePoints, convex_start: bool) -> Tuple[float, float]:
    """Value and slope at x of the convex envelope described by tps."""
    t1, t2 = tps
    if math.isnan(t1) or math.isnan(t2):
        return float('nan'), float('nan')
    if convex_start:
        if t1 < t2 and t1 <= x <= t2:
            return _line(fn, t1, t2, x)
        return fn.f(x), fn.df(x)
    if x <= t1 and xL < t1:
        return _line(fn, xL, t1, x)
    if x >= t2 and t2 < xU:
        return _line(fn, t2, xU, x)
    return fn.f(x), fn.df(x)


def convex_envelope(fn: UnivariateFunction, x: float, xL: float, xU: float,
                    guess: Optional[TiePoints] = None, **options) -> Tuple[float, float, TiePoints]:
    """
    Value, slope and tie points of the convex envelope of fn on [xL, xU] at x.
    """
    if xU <= xL:
        return fn.f(x), fn.df(x), (xU, xU)
    tps, convex_start = tie_points(fn, xL, xU, guess, **options)
    value, slope = evaluate(fn, x, xL, xU, tps, convex_start)
    return value, slope, tps


def concave_envelope(fn: UnivariateFunction, x: float, xL: float, xU: float,
                     guess: Optional[TiePoints] = None, **options) -> Tuple[float, float, TiePoints]:
    """
    Value, slope and tie points of the concave envelope of fn on [xL, xU] at x.
    """
    value, slope, tps = convex_envelope(fn.negated(), x, xL, xU, guess, **options)
    return -value, -slope, tps
