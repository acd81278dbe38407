"""
Expression DAGs for Factorable Functions

An expression is a directed acyclic graph of elementary operations,
stored as a flat tuple of nodes in evaluation order: every child precedes
its parent and the last node is the root. The order is fixed once, when
the DAG is built, and reused by every forward pass.

Each node is one of:
- VALUE: a constant, index into the constants array
- PARAMETER: a parameter supplied per pass
- VARIABLE: a decision variable x_i
- SUBEXPRESSION: the root value of a shared subexpression
- CALL: an n-ary operator (sum, product, ...) or a user operator
- CALLUNIVAR: a univariate function or a user univariate operator

Call nodes carry an integer operator id. Built-in operators take the ids
0..len(MULTIVARIATE_OPERATORS)-1 (resp. UNIVARIATE_OPERATORS); larger ids
name user registered operators.

ExpressionGraph is a small builder with operator overloading tracing
(`from_callable`) that compiles to an ExpressionDAG.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from dataclasses import dataclass
import numpy as np

from .bounds import univariate
from .errors import DomainViolation, MalformedDAGError


class NodeType(Enum):
    """Kinds of DAG nodes."""
    VALUE = "value"
    PARAMETER = "parameter"
    VARIABLE = "variable"
    SUBEXPRESSION = "subexpression"
    CALL = "call"
    CALLUNIVAR = "callunivar"


class OpType(Enum):
    """Elementary operations for expression DAGs."""

    # n-ary / binary operations
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    POW = "pow"

    # Unary operations
    NEG = "neg"
    ABS = "abs"
    SQUARE = "square"  # x^2 (special case with tighter bounds)
    INV = "inv"
    SQRT = "sqrt"
    EXP = "exp"
    EXP2 = "exp2"
    EXP10 = "exp10"
    LOG = "log"
    LOG2 = "log2"
    LOG10 = "log10"
    COSH = "cosh"
    ACOSH = "acosh"
    TANH = "tanh"
    ATAN = "atan"
    SINH = "sinh"
    ASINH = "asinh"
    ERF = "erf"
    ASIN = "asin"
    ACOS = "acos"
    TAN = "tan"
    SIN = "sin"
    COS = "cos"


# Operator id tables; the position in the list is the operator id
MULTIVARIATE_OPERATORS: List[OpType] = [OpType.ADD, OpType.SUB, OpType.MUL, OpType.DIV, OpType.POW]
UNIVARIATE_OPERATORS: List[OpType] = [op for op in OpType if op.value in univariate.UNIVARIATE_OPS]

BINARY_OPS = {OpType.SUB, OpType.DIV, OpType.POW}
NARY_OPS = {OpType.ADD, OpType.MUL}
UNARY_OPS = set(UNIVARIATE_OPERATORS)

USER_OPERATOR_ID_START = len(MULTIVARIATE_OPERATORS)
USER_UNIVAR_OPERATOR_ID_START = len(UNIVARIATE_OPERATORS)

_MULTIVARIATE_IDS = {op: i for i, op in enumerate(MULTIVARIATE_OPERATORS)}
_UNIVARIATE_IDS = {op: i for i, op in enumerate(UNIVARIATE_OPERATORS)}


def operator_id(op: OpType) -> int:
    """Integer id of a built-in operator."""
    if op in _MULTIVARIATE_IDS:
        return _MULTIVARIATE_IDS[op]
    return _UNIVARIATE_IDS[op]


@dataclass(frozen=True)
class NodeData:
    """
    One DAG node.

    Attributes:
        nodetype: Node kind
        index: Constant / parameter / variable / subexpression index, or operator id
        children: Positions of the child nodes (call nodes only)
    """
    nodetype: NodeType
    index: int
    children: Tuple[int, ...] = ()

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "type": self.nodetype.value,
            "index": self.index,
            "children": list(self.children),
        }


def eval_univariate_number(op: OpType, x: float) -> float:
    """Evaluate a built-in univariate operation on a number."""
    return univariate.scalar(op.value, x)


def eval_multivariate_number(op: OpType, args: Sequence[float]) -> float:
    """Evaluate a built-in n-ary / binary operation on numbers."""
    if op == OpType.ADD:
        return float(sum(args))
    elif op == OpType.MUL:
        out = 1.0
        for a in args:
            out *= a
        return out
    elif op == OpType.SUB:
        return args[0] - args[1]
    elif op == OpType.DIV:
        if args[1] == 0.0:
            raise DomainViolation("div", args[1])
        return args[0] / args[1]
    elif op == OpType.POW:
        return univariate.power(args[0], args[1])
    else:
        raise MalformedDAGError(f"Unknown operator: {op}")


@dataclass(frozen=True)
class ExpressionDAG:
    """
    A validated expression DAG in evaluation order.

    Attributes:
        nodes: Nodes, leaves first; the last node is the root
        constants: Values referenced by VALUE nodes
        n_vars: Number of decision variables
        n_params: Number of parameters
    """
    nodes: Tuple[NodeData, ...]
    constants: Tuple[float, ...] = ()
    n_vars: int = 0
    n_params: int = 0

    def __post_init__(self):
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "constants", tuple(float(c) for c in self.constants))
        if not self.nodes:
            raise MalformedDAGError("DAG has no nodes")
        for k, node in enumerate(self.nodes):
            self._validate(k, node)

    def _validate(self, k: int, node: NodeData) -> None:
        for c in node.children:
            if not 0 <= c < k:
                raise MalformedDAGError(f"node {k}: child {c} does not precede its parent")
        t = node.nodetype
        if t == NodeType.VALUE:
            if not 0 <= node.index < len(self.constants):
                raise MalformedDAGError(f"node {k}: constant index {node.index} out of range")
        elif t == NodeType.VARIABLE:
            if not 0 <= node.index < self.n_vars:
                raise MalformedDAGError(f"node {k}: variable index {node.index} out of range")
        elif t == NodeType.PARAMETER:
            if not 0 <= node.index < self.n_params:
                raise MalformedDAGError(f"node {k}: parameter index {node.index} out of range")
        elif t == NodeType.SUBEXPRESSION:
            if node.index < 0:
                raise MalformedDAGError(f"node {k}: negative subexpression index")
        elif t == NodeType.CALLUNIVAR:
            if len(node.children) != 1:
                raise MalformedDAGError(f"node {k}: univariate call with {len(node.children)} children")
        elif t == NodeType.CALL:
            if not node.children:
                raise MalformedDAGError(f"node {k}: call without children")
            if 0 <= node.index < USER_OPERATOR_ID_START:
                op = MULTIVARIATE_OPERATORS[node.index]
                if op in BINARY_OPS and len(node.children) != 2:
                    raise MalformedDAGError(f"node {k}: {op.value} needs 2 children")
        else:
            raise MalformedDAGError(f"node {k}: unknown node type {t}")

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def root(self) -> int:
        return len(self.nodes) - 1

    def evaluate(self, x: Union[np.ndarray, List[float]],
                 parameters: Optional[Sequence[float]] = None,
                 registry=None,
                 subexpression_values: Optional[Sequence[float]] = None) -> float:
        """
        Evaluate the expression at a point with scalar arithmetic.

        Args:
            x: Variable values
            parameters: Parameter values
            registry: UserOperatorRegistry for user operator ids
            subexpression_values: Values of referenced subexpressions

        Returns:
            Root value

        Raises:
            DomainViolation: if a partial function is evaluated outside its domain
        """
        values: List[float] = [0.0] * len(self.nodes)
        for k, node in enumerate(self.nodes):
            t = node.nodetype
            if t == NodeType.VALUE:
                values[k] = self.constants[node.index]
            elif t == NodeType.VARIABLE:
                values[k] = float(x[node.index])
            elif t == NodeType.PARAMETER:
                values[k] = float(parameters[node.index])
            elif t == NodeType.SUBEXPRESSION:
                values[k] = float(subexpression_values[node.index])
            elif t == NodeType.CALLUNIVAR:
                arg = values[node.children[0]]
                if node.index < USER_UNIVAR_OPERATOR_ID_START:
                    values[k] = eval_univariate_number(UNIVARIATE_OPERATORS[node.index], arg)
                else:
                    values[k] = float(_user(registry, node.index, True)(arg))
            else:
                args = [values[c] for c in node.children]
                if node.index < USER_OPERATOR_ID_START:
                    values[k] = eval_multivariate_number(MULTIVARIATE_OPERATORS[node.index], args)
                else:
                    values[k] = float(_user(registry, node.index, False)(*args))
        return values[-1]

    def to_canonical(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_canonical() for n in self.nodes],
            "constants": list(self.constants),
            "n_vars": self.n_vars,
            "n_params": self.n_params,
        }


def _user(registry, op_id: int, univariate_op: bool) -> Callable:
    if registry is None:
        raise MalformedDAGError(f"user operator {op_id} without a registry")
    if univariate_op:
        return registry.univariate(op_id)
    return registry.multivariate(op_id)


class ExpressionGraph:
    """
    Builder for expression DAGs.

    Nodes are appended in creation order, so children always precede
    their parents. `compile` keeps the nodes reachable from the output
    and renumbers them into an ExpressionDAG.
    """

    def __init__(self):
        self.nodes: List[NodeData] = []
        self.constants: List[float] = []
        self.variables: Dict[int, int] = {}  # var index -> node id
        self.parameters: Dict[int, int] = {}  # parameter index -> node id
        self.output_node: Optional[int] = None

    def _add_node(self, node: NodeData) -> int:
        """Add a node to the graph and return its id."""
        for c in node.children:
            if not 0 <= c < len(self.nodes):
                raise MalformedDAGError(f"unknown child node {c}")
        self.nodes.append(node)
        return len(self.nodes) - 1

    def variable(self, index: int) -> int:
        """Get or create a variable node."""
        if index not in self.variables:
            self.variables[index] = self._add_node(NodeData(NodeType.VARIABLE, index))
        return self.variables[index]

    def parameter(self, index: int) -> int:
        """Get or create a parameter node."""
        if index not in self.parameters:
            self.parameters[index] = self._add_node(NodeData(NodeType.PARAMETER, index))
        return self.parameters[index]

    def constant(self, value: float) -> int:
        """Create a constant node."""
        self.constants.append(float(value))
        return self._add_node(NodeData(NodeType.VALUE, len(self.constants) - 1))

    def subexpression(self, index: int) -> int:
        """Create a reference to subexpression `index`."""
        return self._add_node(NodeData(NodeType.SUBEXPRESSION, index))

    def unary(self, op: OpType, child: int) -> int:
        """Create a unary operation node."""
        if op not in UNARY_OPS:
            raise ValueError(f"{op} is not a unary operation")
        return self._add_node(NodeData(NodeType.CALLUNIVAR, operator_id(op), (child,)))

    def binary(self, op: OpType, left: int, right: int) -> int:
        """Create a binary operation node."""
        if op not in BINARY_OPS and op not in NARY_OPS:
            raise ValueError(f"{op} is not a binary operation")
        return self._add_node(NodeData(NodeType.CALL, operator_id(op), (left, right)))

    def nary(self, op: OpType, children: Sequence[int]) -> int:
        """Create an n-ary sum or product node."""
        if op not in NARY_OPS:
            raise ValueError(f"{op} is not an n-ary operation")
        return self._add_node(NodeData(NodeType.CALL, operator_id(op), tuple(children)))

    def user_call(self, op_id: int, children: Sequence[int]) -> int:
        """Create a call to a user multivariate operator."""
        if op_id < USER_OPERATOR_ID_START:
            raise ValueError(f"user operator ids start at {USER_OPERATOR_ID_START}")
        return self._add_node(NodeData(NodeType.CALL, op_id, tuple(children)))

    def user_unary(self, op_id: int, child: int) -> int:
        """Create a call to a user univariate operator."""
        if op_id < USER_UNIVAR_OPERATOR_ID_START:
            raise ValueError(f"user univariate operator ids start at {USER_UNIVAR_OPERATOR_ID_START}")
        return self._add_node(NodeData(NodeType.CALLUNIVAR, op_id, (child,)))

    def set_output(self, node: int) -> None:
        """Set the output node of the graph."""
        self.output_node = node

    def num_variables(self) -> int:
        """Return the number of variables."""
        if not self.variables:
            return 0
        return max(self.variables.keys()) + 1

    def num_parameters(self) -> int:
        if not self.parameters:
            return 0
        return max(self.parameters.keys()) + 1

    def topological_order(self) -> List[int]:
        """
        Return the ids of the nodes reachable from the output, leaves first.
        """
        visited = set()
        order = []

        def visit(k: int):
            if k in visited:
                return
            visited.add(k)
            for c in self.nodes[k].children:
                visit(c)
            order.append(k)

        if self.output_node is not None:
            visit(self.output_node)

        return order

    def compile(self, n_vars: Optional[int] = None, n_params: Optional[int] = None) -> ExpressionDAG:
        """
        Build the ExpressionDAG of the output node.

        Args:
            n_vars: Number of variables (default: highest index used + 1)
            n_params: Number of parameters (default: highest index used + 1)
        """
        if self.output_node is None:
            raise ValueError("No output node set")
        order = self.topological_order()
        position = {k: i for i, k in enumerate(order)}
        nodes = [
            NodeData(self.nodes[k].nodetype, self.nodes[k].index,
                     tuple(position[c] for c in self.nodes[k].children))
            for k in order
        ]
        return ExpressionDAG(
            nodes=tuple(nodes),
            constants=tuple(self.constants),
            n_vars=self.num_variables() if n_vars is None else n_vars,
            n_params=self.num_parameters() if n_params is None else n_params,
        )

    def evaluate(self, x: Union[np.ndarray, List[float]],
                 parameters: Optional[Sequence[float]] = None,
                 registry=None) -> float:
        """
        Evaluate the expression at a point.

        Args:
            x: Variable values
            parameters: Parameter values
            registry: UserOperatorRegistry for user operators

        Returns:
            Function value at x
        """
        return self.compile().evaluate(x, parameters, registry)

    def __call__(self, x: Union[np.ndarray, List[float]]) -> float:
        """Shorthand for evaluate."""
        return self.evaluate(x)

    @classmethod
    def from_callable(
        cls,
        func: Callable,
        num_vars: int,
        num_params: int = 0
    ) -> 'ExpressionGraph':
        """
        Create an expression graph by tracing a callable.

        The callable receives num_vars traced variables followed by
        num_params traced parameters.

        Args:
            func: A callable that takes traced variables
            num_vars: Number of variables
            num_params: Number of parameters

        Returns:
            ExpressionGraph representing the function
        """
        graph = cls()
        args = [TracedVar(graph, graph.variable(i)) for i in range(num_vars)]
        args += [TracedVar(graph, graph.parameter(j)) for j in range(num_params)]
        result = func(*args)

        if isinstance(result, TracedVar):
            graph.set_output(result.node)
        else:
            # Constant result
            graph.set_output(graph.constant(float(result)))

        return graph


class TracedVar:
    """
    A traced variable for expression graph construction.

    Supports operator overloading to build the graph automatically.
    """

    def __init__(self, graph: ExpressionGraph, node: int):
        self.graph = graph
        self.node = node

    def _ensure_traced(self, other) -> 'TracedVar':
        """Ensure the other operand is a TracedVar."""
        if isinstance(other, TracedVar):
            return other
        return TracedVar(self.graph, self.graph.constant(float(other)))

    def _binary(self, op: OpType, left: 'TracedVar', right: 'TracedVar') -> 'TracedVar':
        return TracedVar(self.graph, self.graph.binary(op, left.node, right.node))

    def __add__(self, other) -> 'TracedVar':
        return self._binary(OpType.ADD, self, self._ensure_traced(other))

    def __radd__(self, other) -> 'TracedVar':
        return self._binary(OpType.ADD, self._ensure_traced(other), self)

    def __sub__(self, other) -> 'TracedVar':
        return self._binary(OpType.SUB, self, self._ensure_traced(other))

    def __rsub__(self, other) -> 'TracedVar':
        return self._binary(OpType.SUB, self._ensure_traced(other), self)

    def __mul__(self, other) -> 'TracedVar':
        return self._binary(OpType.MUL, self, self._ensure_traced(other))

    def __rmul__(self, other) -> 'TracedVar':
        return self._binary(OpType.MUL, self._ensure_traced(other), self)

    def __truediv__(self, other) -> 'TracedVar':
        return self._binary(OpType.DIV, self, self._ensure_traced(other))

    def __rtruediv__(self, other) -> 'TracedVar':
        return self._binary(OpType.DIV, self._ensure_traced(other), self)

    def __pow__(self, other) -> 'TracedVar':
        return self._binary(OpType.POW, self, self._ensure_traced(other))

    def __rpow__(self, other) -> 'TracedVar':
        return self._binary(OpType.POW, self._ensure_traced(other), self)

    def __neg__(self) -> 'TracedVar':
        return _trace(OpType.NEG, self)

    def __abs__(self) -> 'TracedVar':
        return _trace(OpType.ABS, self)


def _trace(op: OpType, x: TracedVar) -> TracedVar:
    return TracedVar(x.graph, x.graph.unary(op, x.node))


# Module-level math functions for tracing
def sqrt(x: TracedVar) -> TracedVar:
    return _trace(OpType.SQRT, x)


def square(x: TracedVar) -> TracedVar:
    return _trace(OpType.SQUARE, x)


def inv(x: TracedVar) -> TracedVar:
    return _trace(OpType.INV, x)


def exp(x: TracedVar) -> TracedVar:
    return _trace(OpType.EXP, x)


def exp2(x: TracedVar) -> TracedVar:
    return _trace(OpType.EXP2, x)


def exp10(x: TracedVar) -> TracedVar:
    return _trace(OpType.EXP10, x)


def log(x: TracedVar) -> TracedVar:
    return _trace(OpType.LOG, x)


def log2(x: TracedVar) -> TracedVar:
    return _trace(OpType.LOG2, x)


def log10(x: TracedVar) -> TracedVar:
    return _trace(OpType.LOG10, x)


def sin(x: TracedVar) -> TracedVar:
    return _trace(OpType.SIN, x)


def cos(x: TracedVar) -> TracedVar:
    return _trace(OpType.COS, x)


def tan(x: TracedVar) -> TracedVar:
    return _trace(OpType.TAN, x)


def asin(x: TracedVar) -> TracedVar:
    return _trace(OpType.ASIN, x)


def acos(x: TracedVar) -> TracedVar:
    return _trace(OpType.ACOS, x)


def atan(x: TracedVar) -> TracedVar:
    return _trace(OpType.ATAN, x)


def sinh(x: TracedVar) -> TracedVar:
    return _trace(OpType.SINH, x)


def cosh(x: TracedVar) -> TracedVar:
    return _trace(OpType.COSH, x)


def tanh(x: TracedVar) -> TracedVar:
    return _trace(OpType.TANH, x)


def asinh(x: TracedVar) -> TracedVar:
    return _trace(OpType.ASINH, x)


def acosh(x: TracedVar) -> TracedVar:
    return _trace(OpType.ACOSH, x)


def erf(x: TracedVar) -> TracedVar:
    return _trace(OpType.ERF, x)


def _graph_of(args) -> ExpressionGraph:
    """Graph of the first traced argument."""
    for a in args:
        if isinstance(a, TracedVar):
            return a.graph
    raise ValueError("at least one argument must be a traced value")


def total(*args) -> TracedVar:
    """n-ary sum node of traced values."""
    graph = _graph_of(args)
    nodes = [a.node if isinstance(a, TracedVar) else graph.constant(float(a)) for a in args]
    return TracedVar(graph, graph.nary(OpType.ADD, nodes))


def product(*args) -> TracedVar:
    """n-ary product node of traced values."""
    graph = _graph_of(args)
    nodes = [a.node if isinstance(a, TracedVar) else graph.constant(float(a)) for a in args]
    return TracedVar(graph, graph.nary(OpType.MUL, nodes))


def user(op_id: int, *args) -> TracedVar:
    """Call a user multivariate operator on traced values."""
    graph = _graph_of(args)
    nodes = [a.node if isinstance(a, TracedVar) else graph.constant(float(a)) for a in args]
    return TracedVar(graph, graph.user_call(op_id, nodes))


def user_univariate(op_id: int, x: TracedVar) -> TracedVar:
    """Call a user univariate operator on a traced value."""
    return TracedVar(x.graph, x.graph.user_unary(op_id, x.node))
