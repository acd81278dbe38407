"""
mcforward - McCormick Relaxation Forward Pass Engine

The bounding primitive of a deterministic global optimizer: given a
factorable expression as a DAG and a box, one bottom-up pass computes
- a validated interval enclosure of the expression's range,
- a convex underestimator and a concave overestimator at a point,
- subgradients of both.

Key Features:
- Number / relaxation duality: constant subexpressions stay plain numbers
- Tie-point memoization for non-monotonic univariate functions
- Guarded dispatch of partial functions (sqrt, log, asin, powers, division,
  user operators) with an explicit empty-relaxation violation signal
- FRESH / REFINE passes with intersection and affine interval cuts
"""

from .errors import (
    RelaxationError,
    DomainViolation,
    MalformedDAGError,
    ConfigurationError,
)
from .bounds.interval import (
    Interval,
    ROUND_EPS,
)
from .bounds.mccormick import Relaxation
from .contract import Box
from .expr_graph import (
    ExpressionGraph,
    ExpressionDAG,
    NodeData,
    NodeType,
    OpType,
    TracedVar,
)
from .guard import (
    DomainPolicy,
    GuardResult,
    GuardStatus,
    guarded_call,
)
from .evaluator import (
    EvaluatorConfig,
    PassResult,
    Phase,
    RelaxationEvaluator,
    UserOperatorRegistry,
    affine_interval_cut,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "RelaxationError",
    "DomainViolation",
    "MalformedDAGError",
    "ConfigurationError",
    # Values
    "Interval",
    "ROUND_EPS",
    "Relaxation",
    "Box",
    # Expressions
    "ExpressionGraph",
    "ExpressionDAG",
    "NodeData",
    "NodeType",
    "OpType",
    "TracedVar",
    # Guarded dispatch
    "DomainPolicy",
    "GuardResult",
    "GuardStatus",
    "guarded_call",
    # Evaluation
    "EvaluatorConfig",
    "PassResult",
    "Phase",
    "RelaxationEvaluator",
    "UserOperatorRegistry",
    "affine_interval_cut",
]
