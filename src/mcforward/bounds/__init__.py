"""
Bounding arithmetic: intervals, McCormick relaxations, envelopes and the
univariate function catalogue.
"""

from .interval import Interval, ROUND_EPS
from .mccormick import Relaxation, finalize, mid3
from .envelopes import UnivariateFunction, convex_envelope, concave_envelope
from .univariate import power, relax

__all__ = [
    "Interval",
    "ROUND_EPS",
    "Relaxation",
    "finalize",
    "mid3",
    "UnivariateFunction",
    "convex_envelope",
    "concave_envelope",
    "power",
    "relax",
]
