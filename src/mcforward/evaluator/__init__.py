"""
Forward pass evaluation of expression DAGs.
"""

from .forward_pass import (
    EvaluatorConfig,
    PassResult,
    Phase,
    RelaxationEvaluator,
    affine_interval_cut,
)
from .registry import UserOperator, UserOperatorRegistry
from .tape import EvaluationTape, TiePointCache

__all__ = [
    "EvaluatorConfig",
    "PassResult",
    "Phase",
    "RelaxationEvaluator",
    "affine_interval_cut",
    "UserOperator",
    "UserOperatorRegistry",
    "EvaluationTape",
    "TiePointCache",
]
