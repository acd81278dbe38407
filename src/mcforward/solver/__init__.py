"""
Data model for the outer drivers that call the relaxation engine.
"""

from .sip import (
    SubproblemType,
    SIPConfig,
    SIPProblem,
    SIPResult,
    SIPSubResult,
    SubproblemOutcome,
)

__all__ = [
    "SubproblemType",
    "SIPConfig",
    "SIPProblem",
    "SIPResult",
    "SIPSubResult",
    "SubproblemOutcome",
]
