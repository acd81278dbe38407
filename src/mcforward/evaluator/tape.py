"""
Evaluation Tape and Tie-Point Cache

The tape holds one value per DAG node in three parallel arrays:
- is_number[k]: node k currently holds a plain number
- number_slot[k]: its value when is_number[k]
- relaxation_slot[k]: its relaxation otherwise

The relaxation slot is kept across passes so the next pass over the same
box can intersect with it.

The tie-point cache keeps the contact points of the envelopes of
non-monotonic univariate nodes: 2 slots (convex, concave) for functions
with one inflection, 4 slots for sin / cos. +inf marks an unset slot.
Slots are reset whenever the box changes.
"""

from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..bounds.mccormick import Relaxation
from ..bounds import univariate
from ..expr_graph import ExpressionDAG, NodeType, UNIVARIATE_OPERATORS, USER_UNIVAR_OPERATOR_ID_START


UNSET = float('inf')


class EvaluationTape:
    """Per-node storage for one DAG, reused across passes."""

    def __init__(self, n_nodes: int, n_vars: int):
        self.n_vars = n_vars
        self.is_number = np.zeros(n_nodes, dtype=bool)
        self.number_slot = np.zeros(n_nodes, dtype=np.float64)
        self.relaxation_slot: List[Optional[Relaxation]] = [None] * n_nodes

    def __len__(self) -> int:
        return len(self.is_number)

    def set_number(self, k: int, value: float) -> None:
        self.is_number[k] = True
        self.number_slot[k] = value

    def set_relaxation(self, k: int, value: Relaxation) -> None:
        self.is_number[k] = False
        self.relaxation_slot[k] = value

    def value(self, k: int) -> Union[float, Relaxation]:
        """The valid slot of node k."""
        if self.is_number[k]:
            return float(self.number_slot[k])
        return self.relaxation_slot[k]

    def previous(self, k: int) -> Optional[Relaxation]:
        """Relaxation stored at node k by the last pass (None if none)."""
        return self.relaxation_slot[k]

    def clear(self) -> None:
        self.is_number[:] = False
        self.number_slot[:] = 0.0
        self.relaxation_slot = [None] * len(self.is_number)


class TiePointCache:
    """
    Memoized envelope tie points of the univariate nodes of one DAG.

    Attributes:
        slots: Flat storage, +inf when unset
        index: node position -> slot indices
    """

    def __init__(self, dag: ExpressionDAG):
        self.index: Dict[int, Tuple[int, ...]] = {}
        used = 0
        for k, node in enumerate(dag.nodes):
            if node.nodetype != NodeType.CALLUNIVAR:
                continue
            if not 0 <= node.index < USER_UNIVAR_OPERATOR_ID_START:
                continue
            name = UNIVARIATE_OPERATORS[node.index].value
            if name in univariate.SINGLE_TIEPOINT_OPS:
                width = 2
            elif name in univariate.DOUBLE_TIEPOINT_OPS:
                width = 4
            else:
                continue
            self.index[k] = tuple(range(used, used + width))
            used += width
        self.slots = np.full(used, UNSET)

    def __contains__(self, k: int) -> bool:
        return k in self.index

    def get(self, k: int) -> Tuple[float, ...]:
        return tuple(float(self.slots[i]) for i in self.index[k])

    def is_set(self, k: int) -> bool:
        return self.slots[self.index[k][0]] != UNSET

    def store(self, k: int, values: Sequence[float]) -> bool:
        """Store the tie points of node k if its slots are unset."""
        if self.is_set(k):
            return False
        for i, v in zip(self.index[k], values):
            self.slots[i] = v
        return True

    def reset(self) -> None:
        self.slots.fill(UNSET)
