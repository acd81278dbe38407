"""
Forward Pass Driver

Evaluates an ExpressionDAG bottom-up over a box, producing at every node
either a number or a McCormick relaxation, and returns the root value.

Phases per box:
- FRESH: the first pass after set_box; nothing stored is reused.
- REFINE: entered by begin_refine(); each pass intersects its raw node
  values with the values stored by the previous pass, so bounds only
  tighten. Changing the box returns to FRESH and resets the tie points.

Post-evaluation refinement of every relaxation-valued node, in order:
1. intersection with the stored value (REFINE only, config.intersect);
   cv / cc are only intersected when the point did not change;
2. the affine interval cut (config.affine_cut), which bounds the node's
   range over the box using the linearizations of cv and cc at x.

One pass walks the fixed node order once; there are no retries.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union
import logging
import math

import numpy as np

from ..bounds.envelopes import BITANGENT_MAX_ITER, TIEPOINT_RESIDUAL_TOL, TIEPOINT_XTOL
from ..bounds.interval import Interval
from ..bounds.mccormick import Relaxation
from ..contract import Box
from ..errors import ConfigurationError, MalformedDAGError
from ..expr_graph import ExpressionDAG, NodeType
from ..guard import DomainPolicy
from .kernels import PassContext, evaluate_call
from .registry import UserOperatorRegistry
from .tape import EvaluationTape, TiePointCache

logger = logging.getLogger(__name__)


class Phase(Enum):
    FRESH = "fresh"
    REFINE = "refine"


@dataclass
class EvaluatorConfig:
    """Configuration for the relaxation evaluator."""
    # Intersect with the previous pass in REFINE passes
    intersect: bool = True

    # Tighten intervals with the subgradient linearizations
    affine_cut: bool = True

    # Argument enclosures partially outside a domain are clipped (CLIP) or
    # treated as violations (EMPTY)
    domain_policy: DomainPolicy = DomainPolicy.CLIP

    # Tie point solver
    tiepoint_xtol: float = TIEPOINT_XTOL
    tiepoint_residual_tol: float = TIEPOINT_RESIDUAL_TOL
    bitangent_max_iter: int = BITANGENT_MAX_ITER

    # Points may lie this far outside the box; they are projected onto it
    box_tol: float = 1e-10

    def __post_init__(self):
        if not isinstance(self.domain_policy, DomainPolicy):
            raise ConfigurationError(f"domain_policy must be a DomainPolicy, got {self.domain_policy!r}")
        if self.tiepoint_xtol <= 0.0 or self.tiepoint_residual_tol <= 0.0:
            raise ConfigurationError("tie point tolerances must be positive")
        if self.bitangent_max_iter < 1:
            raise ConfigurationError("bitangent_max_iter must be at least 1")
        if self.box_tol < 0.0:
            raise ConfigurationError("box_tol must be non-negative")

    def envelope_options(self) -> Dict[str, Any]:
        return {
            "xtol": self.tiepoint_xtol,
            "residual_tol": self.tiepoint_residual_tol,
            "max_iter": self.bitangent_max_iter,
        }


@dataclass
class PassResult:
    """
    Root value of a forward pass.

    Attributes:
        is_number: True if the root is a plain number
        value: The number or the Relaxation
        violations: Node positions where a domain violation occurred
        subexpression_violations: Same, per subexpression index
    """
    is_number: bool
    value: Union[float, Relaxation]
    violations: List[int] = field(default_factory=list)
    subexpression_violations: Dict[int, List[int]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True if the root is the empty relaxation (infeasible / undefined)."""
        return not self.is_number and self.value.is_empty

    @property
    def interval(self) -> Interval:
        if self.is_number:
            return Interval.point(self.value)
        return self.value.interval


def affine_interval_cut(x: np.ndarray, value: Relaxation,
                        lower: np.ndarray, upper: np.ndarray) -> Relaxation:
    """
    Tighten the interval of a relaxation with its linearizations at x.

    cv(x) + cv_grad . (y - x) underestimates the node over the box, so its
    minimum over the box is a valid lower bound; symmetrically for cc. A
    dimension whose required box edge is infinite abandons that side.

    Args:
        x: Evaluation point
        value: Relaxation at x
        lower, upper: Box bounds

    Returns:
        The relaxation with the tightened interval, cut to it
    """
    if value.is_empty:
        return value
    lo_acc, hi_acc = value.cv, value.cc
    lower_active, upper_active = True, True

    for i in range(len(x)):
        if lower_active:
            g = value.cv_grad[i]
            if g > 0.0:
                if math.isfinite(lower[i]):
                    lo_acc += g * (lower[i] - x[i])
                else:
                    lower_active = False
            else:
                if math.isfinite(upper[i]):
                    lo_acc += g * (upper[i] - x[i])
                else:
                    lower_active = False
        if upper_active:
            g = value.cc_grad[i]
            if g > 0.0:
                if math.isfinite(upper[i]):
                    hi_acc += g * (upper[i] - x[i])
                else:
                    upper_active = False
            else:
                if math.isfinite(lower[i]):
                    hi_acc += g * (lower[i] - x[i])
                else:
                    upper_active = False
        if not lower_active and not upper_active:
            break

    lo = max(lo_acc, value.lo) if lower_active else value.lo
    hi = min(hi_acc, value.hi) if upper_active else value.hi
    if lo == value.lo and hi == value.hi:
        return value
    return Relaxation(value.cv, value.cc, Interval(lo, hi),
                      value.cv_grad, value.cc_grad, value.cnst).cut()


class _Subexpression:
    """A subexpression DAG with its own tape and tie-point cache."""

    def __init__(self, dag: ExpressionDAG):
        self.dag = dag
        self.tape = EvaluationTape(len(dag), dag.n_vars)
        self.cache = TiePointCache(dag)


class RelaxationEvaluator:
    """
    Forward pass evaluator for one expression.

    Owns the tape and tie-point cache of the expression (and of its
    subexpressions); use one evaluator per concurrently evaluated box.

    Usage:
        evaluator = RelaxationEvaluator(dag)
        evaluator.set_box(Box(lower, upper))
        result = evaluator.forward_pass(x)      # FRESH
        evaluator.begin_refine()
        result = evaluator.forward_pass(x)      # REFINE, only tightens
    """

    def __init__(self, dag: ExpressionDAG,
                 config: Optional[EvaluatorConfig] = None,
                 registry: Optional[UserOperatorRegistry] = None,
                 subexpressions: Sequence[ExpressionDAG] = (),
                 is_fixed: Optional[Sequence[bool]] = None):
        """
        Args:
            dag: Expression to evaluate
            config: Evaluator configuration
            registry: User operators referenced by the DAGs
            subexpressions: Shared subexpressions, evaluated in order before
                the main DAG; subexpression j may reference subexpressions < j
            is_fixed: Per variable, True if the variable is fixed at its
                point value (its node is then a number)
        """
        self.dag = dag
        self.config = config or EvaluatorConfig()
        self.registry = registry
        self.n_vars = dag.n_vars

        self.subexpressions = [_Subexpression(s) for s in subexpressions]
        for j, sub in enumerate(self.subexpressions):
            if sub.dag.n_vars > self.n_vars:
                raise ConfigurationError(f"subexpression {j} uses {sub.dag.n_vars} variables, expression has {self.n_vars}")

        if is_fixed is None:
            is_fixed = [False] * self.n_vars
        if len(is_fixed) != self.n_vars:
            raise ConfigurationError("is_fixed must have one entry per variable")
        self.is_fixed = np.asarray(is_fixed, dtype=bool)

        self.tape = EvaluationTape(len(dag), self.n_vars)
        self.cache = TiePointCache(dag)

        self.box: Optional[Box] = None
        self._phase = Phase.FRESH
        self._last_x: Optional[np.ndarray] = None
        self._passes_in_box = 0
        self._buffer: List[Any] = []

    @property
    def phase(self) -> Phase:
        return self._phase

    def _caches(self) -> List[TiePointCache]:
        return [self.cache] + [s.cache for s in self.subexpressions]

    def set_box(self, box: Box) -> None:
        """Start evaluating a new box: FRESH phase, tie points reset."""
        if box.n_vars != self.n_vars:
            raise ConfigurationError(f"box has {box.n_vars} variables, expression has {self.n_vars}")
        self.box = box
        for cache in self._caches():
            cache.reset()
        self.tape.clear()
        for sub in self.subexpressions:
            sub.tape.clear()
        self._phase = Phase.FRESH
        self._last_x = None
        self._passes_in_box = 0
        logger.debug("new box %s", box.to_canonical())

    def begin_refine(self) -> None:
        """Switch to REFINE: later passes in this box intersect with stored values."""
        if self.box is None:
            raise ConfigurationError("set_box must be called before begin_refine")
        self._phase = Phase.REFINE

    def forward_pass(self, x: Union[np.ndarray, Sequence[float]],
                     parameters: Optional[Sequence[float]] = None) -> PassResult:
        """
        Evaluate the expression at x over the current box.

        Args:
            x: Evaluation point (inside the box up to config.box_tol)
            parameters: Parameter values

        Returns:
            PassResult with the root value and domain violation positions

        Raises:
            ConfigurationError: no box set, or x / parameters of wrong size or outside the box
            MalformedDAGError: unknown node kind or operator id
        """
        if self.box is None:
            raise ConfigurationError("set_box must be called before forward_pass")
        x = np.asarray(x, dtype=np.float64).reshape(-1)
        if len(x) != self.n_vars:
            raise ConfigurationError(f"point has {len(x)} entries, expression has {self.n_vars} variables")
        if not self.box.contains(x, self.config.box_tol):
            raise ConfigurationError(f"point {x.tolist()} outside the box")
        x = self.box.clip(x)

        params = np.asarray(parameters if parameters is not None else [], dtype=np.float64).reshape(-1)
        needed = max([self.dag.n_params] + [s.dag.n_params for s in self.subexpressions])
        if len(params) < needed:
            raise ConfigurationError(f"{needed} parameters required, got {len(params)}")

        refine = self._phase == Phase.REFINE and self._passes_in_box > 0
        same_point = self._last_x is not None and np.array_equal(x, self._last_x)

        sub_values = []
        sub_violations: Dict[int, List[int]] = {}
        for j, sub in enumerate(self.subexpressions):
            violations = self._run(sub.dag, sub.tape, sub.cache, x, params,
                                   refine, same_point, sub_values)
            if violations:
                sub_violations[j] = violations
            root = sub.dag.root
            sub_values.append((bool(sub.tape.is_number[root]), sub.tape.value(root)))

        violations = self._run(self.dag, self.tape, self.cache, x, params,
                               refine, same_point, sub_values)

        self._last_x = x.copy()
        self._passes_in_box += 1

        root = self.dag.root
        return PassResult(
            is_number=bool(self.tape.is_number[root]),
            value=self.tape.value(root),
            violations=violations,
            subexpression_violations=sub_violations,
        )

    def _run(self, dag: ExpressionDAG, tape: EvaluationTape, cache: TiePointCache,
             x: np.ndarray, params: np.ndarray, refine: bool, same_point: bool,
             sub_values: List) -> List[int]:
        """One pass over one DAG. Returns the violation positions."""
        n = self.n_vars
        box = self.box
        ctx = PassContext(
            tape=tape,
            cache=cache,
            registry=self.registry,
            n=n,
            refine=refine,
            policy=self.config.domain_policy,
            envelope_options=self.config.envelope_options(),
            buffer=self._buffer,
        )

        for k, node in enumerate(dag.nodes):
            t = node.nodetype
            if t == NodeType.VALUE:
                tape.set_number(k, dag.constants[node.index])
            elif t == NodeType.PARAMETER:
                tape.set_number(k, params[node.index])
            elif t == NodeType.VARIABLE:
                i = node.index
                if self.is_fixed[i]:
                    tape.set_number(k, x[i])
                    continue
                value = Relaxation.variable(x[i], box.lower[i], box.upper[i], i, n)
                prev = tape.previous(k)
                if refine and prev is not None and not prev.is_empty:
                    value = value.intersect(prev, relaxations=same_point)
                tape.set_relaxation(k, value)
            elif t == NodeType.SUBEXPRESSION:
                if node.index >= len(sub_values):
                    raise MalformedDAGError(f"node {k}: unknown subexpression {node.index}")
                is_num, value = sub_values[node.index]
                if is_num:
                    tape.set_number(k, value)
                else:
                    tape.set_relaxation(k, value)
            elif t == NodeType.CALL or t == NodeType.CALLUNIVAR:
                value = evaluate_call(ctx, k, node)
                if isinstance(value, Relaxation):
                    tape.set_relaxation(k, self._refine(tape, k, value, x, refine, same_point))
                else:
                    tape.set_number(k, value)
            else:
                raise MalformedDAGError(f"node {k}: unknown node type {t}")

        return ctx.violations

    def _refine(self, tape: EvaluationTape, k: int, value: Relaxation,
                x: np.ndarray, refine: bool, same_point: bool) -> Relaxation:
        """Intersection with the stored value, then the affine cut."""
        if value.is_empty:
            return value
        if refine and self.config.intersect:
            prev = tape.previous(k)
            if prev is not None and not prev.is_empty:
                value = value.intersect(prev, relaxations=same_point)
        if self.config.affine_cut:
            value = affine_interval_cut(x, value, self.box.lower, self.box.upper)
        return value
