"""
Operator Kernels

One routine per operator family. A kernel reads the (is_number, slot)
pairs of its children from the tape and returns the raw value of its
node: a number when every operand is a number, a Relaxation otherwise.
Storing the value (and refining it) is left to the driver.

In refine passes the relaxation previously stored at the node is passed
to the arithmetic as a hint, so the result can only tighten.

Partial operations go through guarded_call. A domain violation makes the
node the empty relaxation and records the node position.
"""

from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
import logging
import math

from ..bounds import univariate
from ..bounds.interval import Interval
from ..bounds.mccormick import (
    Relaxation,
    add,
    div_kernel,
    lift,
    minus_kernel,
    mul,
    mult_kernel,
    plus_kernel,
    scale,
)
from ..errors import MalformedDAGError
from ..expr_graph import (
    MULTIVARIATE_OPERATORS,
    UNIVARIATE_OPERATORS,
    USER_OPERATOR_ID_START,
    USER_UNIVAR_OPERATOR_ID_START,
    NodeData,
    NodeType,
    OpType,
    eval_multivariate_number,
    eval_univariate_number,
)
from ..guard import POWER_DOMAIN, DomainPolicy, GuardResult, guarded_call
from .registry import UserOperatorRegistry
from .tape import EvaluationTape, TiePointCache

logger = logging.getLogger(__name__)

Value = Union[float, Relaxation]


@dataclass
class PassContext:
    """
    State shared by the kernels during one pass over one DAG.

    Attributes:
        tape: Tape of the DAG being evaluated
        cache: Tie-point cache of the DAG
        registry: User operators
        n: Number of decision variables
        refine: True in a refine pass (stored values may be used as hints)
        policy: Domain policy for guarded calls
        envelope_options: Tie-point solver options
        violations: Node positions with a domain violation in this pass
        buffer: Operand buffer reused by user multivariate operators
    """
    tape: EvaluationTape
    cache: TiePointCache
    registry: Optional[UserOperatorRegistry]
    n: int
    refine: bool = False
    policy: DomainPolicy = DomainPolicy.CLIP
    envelope_options: Dict[str, Any] = field(default_factory=dict)
    violations: List[int] = field(default_factory=list)
    buffer: List[Value] = field(default_factory=list)

    def operand(self, k: int) -> Tuple[bool, Value]:
        return bool(self.tape.is_number[k]), self.tape.value(k)

    def hint(self, k: int) -> Optional[Interval]:
        """Interval stored at node k by the previous pass, in refine passes."""
        if not self.refine:
            return None
        prev = self.tape.previous(k)
        if prev is None or prev.is_empty:
            return None
        return prev.interval


def _resolve(ctx: PassContext, k: int, result: GuardResult) -> Value:
    if not result.ok:
        logger.debug("node %d: %s", k, result.message)
        ctx.violations.append(k)
    return result.value


def _number_call(ctx: PassContext, k: int, func: Callable, *args, name: str = "") -> Value:
    """Guarded scalar evaluation; a violation yields the empty relaxation."""
    return _resolve(ctx, k, guarded_call(func, *args, n=ctx.n, name=name))


# Built-in n-ary and binary operators

def forward_plus(ctx: PassContext, k: int, children: Sequence[int]) -> Value:
    """Sum: scalars and relaxations are accumulated separately."""
    if len(children) == 2:
        (xn, x), (yn, y) = ctx.operand(children[0]), ctx.operand(children[1])
        if xn and yn:
            return x + y
        return plus_kernel(x, y, ctx.hint(k))

    total = 0.0
    relax = None
    for c in children:
        is_num, v = ctx.operand(c)
        if is_num:
            total += v
        else:
            relax = v if relax is None else add(relax, v)
    if relax is None:
        return total
    return add(relax, total).apply_hint(ctx.hint(k))


def forward_minus(ctx: PassContext, k: int, children: Sequence[int]) -> Value:
    (xn, x), (yn, y) = ctx.operand(children[0]), ctx.operand(children[1])
    if xn and yn:
        return x - y
    return minus_kernel(x, y, ctx.hint(k))


def _product(factor: float, relaxations: List[Relaxation]) -> Relaxation:
    if factor == 0.0 and not any(r.is_empty for r in relaxations):
        return Relaxation.zero(relaxations[0].n)
    out = relaxations[0]
    for r in relaxations[1:]:
        out = mul(out, r)
    return scale(out, factor)


def forward_multiply(ctx: PassContext, k: int, children: Sequence[int]) -> Value:
    """Product: scalars and relaxations are accumulated separately."""
    if len(children) == 2:
        (xn, x), (yn, y) = ctx.operand(children[0]), ctx.operand(children[1])
        if xn and yn:
            return x * y
        result = guarded_call(mult_kernel, x, y, ctx.hint(k), n=ctx.n, name="mul")
        return _resolve(ctx, k, result)

    factor = 1.0
    relaxations = []
    for c in children:
        is_num, v = ctx.operand(c)
        if is_num:
            factor *= v
        else:
            relaxations.append(v)
    if not relaxations:
        return factor
    result = guarded_call(_product, factor, relaxations, n=ctx.n, name="mul")
    value = _resolve(ctx, k, result)
    return value.apply_hint(ctx.hint(k))


def forward_divide(ctx: PassContext, k: int, children: Sequence[int]) -> Value:
    """Division; a denominator enclosure containing zero is a domain violation."""
    (xn, x), (yn, y) = ctx.operand(children[0]), ctx.operand(children[1])
    if xn and yn:
        return _number_call(ctx, k, eval_multivariate_number, OpType.DIV, (x, y), name="div")
    result = guarded_call(div_kernel, x, y, ctx.hint(k), n=ctx.n, name="div")
    return _resolve(ctx, k, result)


def forward_power(ctx: PassContext, k: int, children: Sequence[int]) -> Value:
    """
    Power x ** y.

    x^1 returns the base unchanged and x^0 the constant one without any
    arithmetic. Other exponents are guarded; a non-integer exponent
    restricts the base to [0, inf).
    """
    (xn, x), (yn, y) = ctx.operand(children[0]), ctx.operand(children[1])
    if yn and y == 1.0:
        return x
    if yn and y == 0.0:
        return 1.0 if xn else Relaxation.one(ctx.n)
    if xn and yn:
        return _number_call(ctx, k, eval_multivariate_number, OpType.POW, (x, y), name="pow")

    domain = None
    if yn and not xn and not float(y).is_integer():
        domain = POWER_DOMAIN
    power = partial(univariate.power, **ctx.envelope_options)
    result = guarded_call(power, x, y, domain=domain, policy=ctx.policy, n=ctx.n, name="pow")
    value = _resolve(ctx, k, result)
    if isinstance(value, Relaxation):
        return value.apply_hint(ctx.hint(k))
    return value


# Univariate operators

def _tiepoint_guesses(ctx: PassContext, k: int, name: str):
    if k not in ctx.cache or not ctx.cache.is_set(k):
        return None, None
    slots = ctx.cache.get(k)
    if name in univariate.DOUBLE_TIEPOINT_OPS:
        return (slots[0], slots[1]), (slots[2], slots[3])
    return (slots[0], slots[0]), (slots[1], slots[1])


def _store_tiepoints(ctx: PassContext, k: int, name: str, tps_cv, tps_cc) -> None:
    if k not in ctx.cache or ctx.cache.is_set(k):
        return
    if name in univariate.DOUBLE_TIEPOINT_OPS:
        values = (tps_cv[0], tps_cv[1], tps_cc[0], tps_cc[1])
    else:
        values = (tps_cv[0], tps_cc[0])
    if all(math.isfinite(v) for v in values):
        ctx.cache.store(k, values)
        logger.debug("node %d: %s tie points %s", k, name, values)


def forward_univariate(ctx: PassContext, k: int, op: OpType, child: int) -> Value:
    """Built-in univariate function, with tie points for non-monotonic ones."""
    is_num, x = ctx.operand(child)
    name = op.value
    if is_num:
        return _number_call(ctx, k, eval_univariate_number, op, x, name=name)

    guess_cv, guess_cc = _tiepoint_guesses(ctx, k, name)

    def relax(arg: Relaxation):
        return univariate.relax(name, arg, guess_cv, guess_cc, **ctx.envelope_options)

    result = guarded_call(relax, x, domain=univariate.domain_of(name),
                          policy=ctx.policy, n=ctx.n, name=name)
    if not result.ok:
        return _resolve(ctx, k, result)
    value, tps_cv, tps_cc = result.value
    _store_tiepoints(ctx, k, name, tps_cv, tps_cc)
    return value.apply_hint(ctx.hint(k))


# User operators

def forward_user_univariate(ctx: PassContext, k: int, op_id: int, child: int) -> Value:
    if ctx.registry is None:
        raise MalformedDAGError(f"node {k}: user operator {op_id} without a registry")
    op = ctx.registry.univariate_operator(op_id)
    is_num, x = ctx.operand(child)
    if is_num:
        value = _resolve(ctx, k, guarded_call(op.func, x, domain=op.domain,
                                              policy=DomainPolicy.EMPTY, n=ctx.n, name=op.name))
        return value if isinstance(value, Relaxation) else float(value)
    result = guarded_call(op.func, x, domain=op.domain, policy=ctx.policy, n=ctx.n, name=op.name)
    value = _resolve(ctx, k, result)
    return lift(value, ctx.n).apply_hint(ctx.hint(k))


def forward_user_multivariate(ctx: PassContext, k: int, op_id: int, children: Sequence[int]) -> Value:
    """User n-ary operator over the operand buffer; all-number calls skip the relaxation path."""
    if ctx.registry is None:
        raise MalformedDAGError(f"node {k}: user operator {op_id} without a registry")
    op = ctx.registry.multivariate_operator(op_id)
    m = len(children)
    if len(ctx.buffer) < m:
        ctx.buffer.extend([0.0] * (m - len(ctx.buffer)))
    all_numbers = True
    for j, c in enumerate(children):
        is_num, v = ctx.operand(c)
        all_numbers = all_numbers and is_num
        ctx.buffer[j] = v
    args = ctx.buffer[:m]

    if all_numbers:
        value = _resolve(ctx, k, guarded_call(op.func, *args, domain=op.domain,
                                              policy=DomainPolicy.EMPTY, n=ctx.n, name=op.name))
        return value if isinstance(value, Relaxation) else float(value)
    result = guarded_call(op.func, *args, domain=op.domain, policy=ctx.policy, n=ctx.n, name=op.name)
    value = _resolve(ctx, k, result)
    return lift(value, ctx.n).apply_hint(ctx.hint(k))


_MULTIVARIATE_KERNELS = {
    OpType.ADD: forward_plus,
    OpType.SUB: forward_minus,
    OpType.MUL: forward_multiply,
    OpType.DIV: forward_divide,
    OpType.POW: forward_power,
}


def evaluate_call(ctx: PassContext, k: int, node: NodeData) -> Value:
    """Dispatch a CALL / CALLUNIVAR node to its kernel."""
    idx = node.index
    if node.nodetype == NodeType.CALL:
        if 0 <= idx < USER_OPERATOR_ID_START:
            op = MULTIVARIATE_OPERATORS[idx]
            return _MULTIVARIATE_KERNELS[op](ctx, k, node.children)
        if idx >= USER_OPERATOR_ID_START:
            return forward_user_multivariate(ctx, k, idx, node.children)
        raise MalformedDAGError(f"node {k}: unknown operator id {idx}")
    elif node.nodetype == NodeType.CALLUNIVAR:
        if 0 <= idx < USER_UNIVAR_OPERATOR_ID_START:
            return forward_univariate(ctx, k, UNIVARIATE_OPERATORS[idx], node.children[0])
        if idx >= USER_UNIVAR_OPERATOR_ID_START:
            return forward_user_univariate(ctx, k, idx, node.children[0])
        raise MalformedDAGError(f"node {k}: unknown univariate operator id {idx}")
    else:
        raise MalformedDAGError(f"node {k}: {node.nodetype} is not a call")
