"""
Error taxonomy for the relaxation engine.

- DomainViolation: a partial primitive was evaluated outside its domain.
  Raised by primitives, always recovered by the guarded dispatch layer.
- MalformedDAGError: unknown node kind / operator id, bad ordering or arity.
  Fatal; the DAG is expected to be validated upstream.
- ConfigurationError: invalid configuration values or input dimensions.
"""

from typing import Any, Optional


class RelaxationError(Exception):
    """Base class for all engine errors."""


class DomainViolation(RelaxationError, ArithmeticError):
    """
    A partial function was evaluated outside of its domain.

    Attributes:
        primitive: Name of the primitive that failed
        argument: The offending argument (interval, relaxation or number)
    """

    def __init__(self, primitive: str, argument: Any = None, message: Optional[str] = None):
        self.primitive = primitive
        self.argument = argument
        super().__init__(message or f"{primitive} evaluated outside its domain: {argument!r}")


class MalformedDAGError(RelaxationError, ValueError):
    """The expression DAG contains an unknown node kind or operator."""


class ConfigurationError(RelaxationError, ValueError):
    """Invalid configuration value or mismatched input dimensions."""
