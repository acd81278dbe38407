"""
Guarded Dispatch

Every partial primitive (sqrt, log, asin, acos, acosh, non-integer and
negative powers, division, user supplied operators) is evaluated through
guarded_call. The wrapper returns a tagged GuardResult instead of letting
invalid numeric state or domain errors escape:

- VALID: the primitive produced a usable value (possibly after clipping
  the argument to the primitive's domain);
- DOMAIN_VIOLATION: the value is the empty relaxation, the explicit
  infeasibility signal.

Two policies govern an argument enclosure that leaves an interval domain:
- CLIP: a partial overlap is clipped to the valid sub-domain; an argument
  wholly outside the domain is a violation;
- EMPTY: any departure from the domain is a violation.

Primitives whose domain is not an interval (tan, division, negative
integer powers) can only be checked by evaluation; the DomainViolation
they raise is converted to the violation status.

Overflow of a primitive is not a domain violation: the result is the
unbounded relaxation, which stays sound and keeps the box alive.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional
import logging
import math

import numpy as np

from .bounds.interval import Interval
from .bounds.mccormick import Relaxation
from .errors import ConfigurationError, DomainViolation, MalformedDAGError

logger = logging.getLogger(__name__)


class DomainPolicy(Enum):
    """What to do with an argument enclosure that leaves an interval domain."""
    CLIP = "clip"
    EMPTY = "empty"


class GuardStatus(Enum):
    VALID = "valid"
    DOMAIN_VIOLATION = "domain_violation"


@dataclass
class GuardResult:
    """
    Outcome of a guarded primitive call.

    Attributes:
        status: VALID or DOMAIN_VIOLATION
        value: The result (empty relaxation on violation)
        message: Description of the violation, if any
    """
    status: GuardStatus
    value: Any
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == GuardStatus.VALID

    @classmethod
    def violation(cls, n: Optional[int], message: str) -> 'GuardResult':
        value = Relaxation.empty(n) if n is not None else float('nan')
        return cls(GuardStatus.DOMAIN_VIOLATION, value, message)


# Interval domains of the built-in partial primitives
POWER_DOMAIN = Interval(0.0, float('inf'))


def _dimension(args) -> Optional[int]:
    for a in args:
        if isinstance(a, Relaxation):
            return a.n
    return None


def _is_nan(value: Any) -> bool:
    if isinstance(value, Relaxation):
        if value.is_empty:
            return False
        return math.isnan(value.cv) or math.isnan(value.cc)
    try:
        return math.isnan(float(value))
    except (TypeError, ValueError):
        return False


def _check_domain(arg: Any, domain: Interval, policy: DomainPolicy):
    """
    Apply the domain policy to the first argument.

    Returns (argument, message); message is non-empty on violation.
    """
    if isinstance(arg, Relaxation):
        if arg.is_empty or arg.interval.issubset(domain):
            return arg, ""
        overlap = arg.interval.intersect(domain)
        if policy == DomainPolicy.EMPTY or overlap.is_empty:
            return arg, f"argument {arg.interval!r} outside domain {domain!r}"
        return arg.intersect_interval(domain), ""
    if not domain.contains(float(arg)):
        return arg, f"argument {arg!r} outside domain {domain!r}"
    return arg, ""


def guarded_call(primitive: Callable, *args,
                 domain: Optional[Interval] = None,
                 policy: DomainPolicy = DomainPolicy.CLIP,
                 n: Optional[int] = None,
                 name: str = "") -> GuardResult:
    """
    Evaluate primitive(*args) under the domain policy.

    Args:
        primitive: Function of numbers and/or relaxations
        *args: Operands; `domain` applies to the first one
        domain: Interval domain of the first operand (None = check by evaluation)
        policy: CLIP or EMPTY
        n: Number of variables, for the empty relaxation on violation
        name: Primitive name for messages

    Returns:
        GuardResult with the value or the empty relaxation
    """
    if n is None:
        n = _dimension(args)
    name = name or getattr(primitive, "__name__", "primitive")

    if domain is not None and args:
        first, message = _check_domain(args[0], domain, policy)
        if message:
            logger.debug("%s: %s", name, message)
            return GuardResult.violation(n, f"{name}: {message}")
        args = (first,) + tuple(args[1:])

    try:
        with np.errstate(all='ignore'):
            value = primitive(*args)
    except (MalformedDAGError, ConfigurationError):
        raise
    except OverflowError as e:
        if n is None:
            raise
        logger.debug("%s: overflow (%s), result unbounded", name, e)
        return GuardResult(GuardStatus.VALID, Relaxation.entire(n))
    except (DomainViolation, ZeroDivisionError, FloatingPointError, ValueError) as e:
        logger.debug("%s: domain violation (%s)", name, e)
        return GuardResult.violation(n, f"{name}: {e}")

    if _is_nan(value):
        logger.debug("%s: NaN result", name)
        return GuardResult.violation(n, f"{name}: NaN result")
    return GuardResult(GuardStatus.VALID, value)
