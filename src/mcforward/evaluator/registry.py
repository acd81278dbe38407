"""
User Operator Registry

Caller supplied operators referenced from CALL / CALLUNIVAR nodes by
operator id. Multivariate operators take ids from USER_OPERATOR_ID_START
upward, univariate ones from USER_UNIVAR_OPERATOR_ID_START upward.

An operator is a plain Python function written with ordinary arithmetic
and the functions of mcforward.bounds.univariate, so it evaluates on
numbers and on relaxations alike:

    from mcforward.bounds import univariate as u

    registry = UserOperatorRegistry()
    op = registry.register_univariate(lambda t: t * u.exp(-t), name="texp")
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..bounds.interval import Interval
from ..expr_graph import USER_OPERATOR_ID_START, USER_UNIVAR_OPERATOR_ID_START
from ..errors import MalformedDAGError


@dataclass(frozen=True)
class UserOperator:
    """
    A registered operator.

    Attributes:
        func: Function over numbers and relaxations
        name: Display name
        domain: Interval domain of the (first) argument, None if total
    """
    func: Callable
    name: str = ""
    domain: Optional[Interval] = None


def _register(table: Dict[int, UserOperator], start: int, kind: str,
              func: Callable, name: str, domain: Optional[Interval],
              op_id: Optional[int]) -> int:
    if op_id is None:
        op_id = max(table, default=start - 1) + 1
    if op_id < start:
        raise ValueError(f"{kind} ids start at {start}")
    if op_id in table:
        raise ValueError(f"{kind} id {op_id} is already registered")
    table[op_id] = UserOperator(func, name or getattr(func, "__name__", ""), domain)
    return op_id


class UserOperatorRegistry:
    """Mapping from operator id to user operator."""

    def __init__(self):
        self._multivariate: Dict[int, UserOperator] = {}
        self._univariate: Dict[int, UserOperator] = {}

    def register_multivariate(self, func: Callable, name: str = "",
                              domain: Optional[Interval] = None,
                              op_id: Optional[int] = None) -> int:
        """
        Register an n-ary operator.

        Returns:
            The operator id to use in CALL nodes

        Raises:
            ValueError: if op_id is below the user range or already taken
        """
        return _register(self._multivariate, USER_OPERATOR_ID_START, "user operator",
                         func, name, domain, op_id)

    def register_univariate(self, func: Callable, name: str = "",
                            domain: Optional[Interval] = None,
                            op_id: Optional[int] = None) -> int:
        """
        Register a univariate operator.

        Returns:
            The operator id to use in CALLUNIVAR nodes
        """
        return _register(self._univariate, USER_UNIVAR_OPERATOR_ID_START, "user univariate operator",
                         func, name, domain, op_id)

    def multivariate_operator(self, op_id: int) -> UserOperator:
        try:
            return self._multivariate[op_id]
        except KeyError:
            raise MalformedDAGError(f"Unknown user operator id: {op_id}") from None

    def univariate_operator(self, op_id: int) -> UserOperator:
        try:
            return self._univariate[op_id]
        except KeyError:
            raise MalformedDAGError(f"Unknown user univariate operator id: {op_id}") from None

    def multivariate(self, op_id: int) -> Callable:
        return self.multivariate_operator(op_id).func

    def univariate(self, op_id: int) -> Callable:
        return self.univariate_operator(op_id).func

    def __len__(self) -> int:
        return len(self._multivariate) + len(self._univariate)
