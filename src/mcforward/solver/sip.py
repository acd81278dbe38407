"""
Semi-Infinite Programming Data Model

Records shared by semi-infinite drivers built on the relaxation engine:

    min f(x)  s.t.  g(x, p) <= 0  for all p in P

The restriction-of-the-right-hand-side algorithm alternates between
subproblems, identified here by SubproblemType:
- LOWER_PROBLEM / UPPER_PROBLEM / RES_PROBLEM: discretized problems in x
- LOWER_LEVEL_1 / 2 / 3: lower-level problems max_p g(x, p)

SIPSubResult stores the outcome of each role; `load` and `disc_set`
dispatch on the role by exhaustive matching.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import numpy as np

from ..errors import ConfigurationError


class SubproblemType(Enum):
    """Roles of the subproblems of a SIP algorithm."""
    LOWER_LEVEL_1 = "llp1"
    LOWER_LEVEL_2 = "llp2"
    LOWER_LEVEL_3 = "llp3"
    LOWER_PROBLEM = "lbd"
    UPPER_PROBLEM = "ubd"
    RES_PROBLEM = "res"


LOWER_LEVEL_ROLES = (SubproblemType.LOWER_LEVEL_1, SubproblemType.LOWER_LEVEL_2,
                     SubproblemType.LOWER_LEVEL_3)
DISCRETIZED_ROLES = (SubproblemType.LOWER_PROBLEM, SubproblemType.UPPER_PROBLEM,
                     SubproblemType.RES_PROBLEM)

SIP_OPTION_PREFIX = "sip_"


@dataclass
class SIPConfig:
    """Configuration for a SIP driver."""
    # Absolute optimality tolerance
    absolute_tolerance: float = 1e-3

    # Constraint violation tolerance
    constraint_tolerance: float = 1e-3

    iteration_limit: int = 100

    # Initial restriction of the right-hand side, and its reduction factor
    initial_eps_g: float = 1.0
    initial_r: float = 2.0

    # Reporting
    return_hist: bool = False
    header_interval: int = 20
    print_interval: int = 1
    verbosity: int = 1

    # Solve subproblems locally
    local_solver: bool = False

    # "min" or "max"
    sense: str = "min"

    # Initial discretization sets, one list of points p per constraint
    init_lower_disc: List[List[List[float]]] = field(default_factory=list)
    init_upper_disc: List[List[List[float]]] = field(default_factory=list)

    def __post_init__(self):
        if self.initial_r <= 1.0:
            raise ConfigurationError("initial_r must be greater than 1")
        if self.initial_eps_g <= 0.0:
            raise ConfigurationError("eps_g must be greater than 0")
        if self.sense not in ("min", "max"):
            raise ConfigurationError(f"sense must be 'min' or 'max', got {self.sense!r}")
        if self.iteration_limit < 0:
            raise ConfigurationError("iteration_limit must be non-negative")

    @classmethod
    def from_options(cls, options: Dict[str, Any]) -> 'SIPConfig':
        """
        Build from an option dictionary.

        Keys prefixed with "sip_" set the matching field (e.g.
        "sip_initial_r"); unknown sip_ keys raise ConfigurationError.
        Other keys are ignored here, see solver_options().
        """
        names = set(cls.__dataclass_fields__)
        kwargs = {}
        for key, value in options.items():
            if not key.startswith(SIP_OPTION_PREFIX):
                continue
            name = key[len(SIP_OPTION_PREFIX):]
            if name not in names:
                raise ConfigurationError(f"unknown SIP option: {key}")
            kwargs[name] = value
        return cls(**kwargs)


def solver_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """Options that are passed through to the subproblem optimizer."""
    return {k: v for k, v in options.items() if not k.startswith(SIP_OPTION_PREFIX)}


@dataclass
class SIPProblem:
    """
    Problem information for a SIP driver.

    Attributes:
        x_lower, x_upper: Bounds of the decision variables
        p_lower, p_upper: Bounds of the uncertain parameters
        n_sip: Number of semi-infinite constraints
        config: SIP configuration
        solver_options: Options passed through to the subproblem optimizer
    """
    x_lower: np.ndarray
    x_upper: np.ndarray
    p_lower: np.ndarray
    p_upper: np.ndarray
    n_sip: int = 1
    config: SIPConfig = field(default_factory=SIPConfig)
    solver_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.x_lower = np.asarray(self.x_lower, dtype=np.float64)
        self.x_upper = np.asarray(self.x_upper, dtype=np.float64)
        self.p_lower = np.asarray(self.p_lower, dtype=np.float64)
        self.p_upper = np.asarray(self.p_upper, dtype=np.float64)
        if len(self.x_lower) != len(self.x_upper):
            raise ConfigurationError("x bounds must have same length")
        if len(self.p_lower) != len(self.p_upper):
            raise ConfigurationError("p bounds must have same length")
        if np.any(self.x_lower > self.x_upper) or np.any(self.p_lower > self.p_upper):
            raise ConfigurationError("Lower bounds must be <= upper bounds")

    @property
    def nx(self) -> int:
        return len(self.x_lower)

    @property
    def n_p(self) -> int:
        return len(self.p_lower)

    @classmethod
    def from_options(cls, x_lower, x_upper, p_lower, p_upper, n_sip: int,
                     options: Optional[Dict[str, Any]] = None) -> 'SIPProblem':
        """Build from bounds and an option dictionary with sip_ prefixed keys."""
        options = options or {}
        return cls(x_lower, x_upper, p_lower, p_upper, n_sip,
                   config=SIPConfig.from_options(options),
                   solver_options=solver_options(options))


@dataclass
class SIPResult:
    """Result of a SIP algorithm."""
    iteration_number: int = 1
    upper_bound: float = float('inf')
    lower_bound: float = float('-inf')
    feasibility: bool = True
    xsol: np.ndarray = field(default_factory=lambda: np.zeros(0))
    psol: np.ndarray = field(default_factory=lambda: np.zeros(0))
    solution_time: float = 0.0

    @classmethod
    def for_problem(cls, nx: int, np_: int) -> 'SIPResult':
        return cls(xsol=np.zeros(nx), psol=np.zeros(np_))

    @property
    def gap(self) -> float:
        return self.upper_bound - self.lower_bound


@dataclass
class SubproblemOutcome:
    """Feasibility, objective value and solution of one subproblem."""
    feasible: bool = False
    objective: float = 0.0
    solution: np.ndarray = field(default_factory=lambda: np.zeros(0))


@dataclass
class SIPSubResult:
    """
    Outcomes of the subproblems of one SIP iteration.

    Attributes:
        lbd, ubd, res: Discretized problems (solutions in x)
        llp1, llp2, llp3: Lower-level problems (solutions in p)
        llp_abs_tol: Absolute tolerance of the lower-level problems
        lbd_disc, ubd_disc, res_disc: Discretization sets, one list of
            points p per semi-infinite constraint
    """
    lbd: SubproblemOutcome = field(default_factory=SubproblemOutcome)
    ubd: SubproblemOutcome = field(default_factory=SubproblemOutcome)
    res: SubproblemOutcome = field(default_factory=SubproblemOutcome)
    llp1: SubproblemOutcome = field(default_factory=SubproblemOutcome)
    llp2: SubproblemOutcome = field(default_factory=SubproblemOutcome)
    llp3: SubproblemOutcome = field(default_factory=SubproblemOutcome)
    llp_abs_tol: float = 1e-3
    lbd_disc: List[List[np.ndarray]] = field(default_factory=list)
    ubd_disc: List[List[np.ndarray]] = field(default_factory=list)
    res_disc: List[List[np.ndarray]] = field(default_factory=list)

    @classmethod
    def for_problem(cls, nx: int, np_: int, n_sip: int, tol: float = 1e-3) -> 'SIPSubResult':
        out = cls(llp_abs_tol=tol)
        for role in DISCRETIZED_ROLES:
            out.outcome(role).solution = np.zeros(nx)
        for role in LOWER_LEVEL_ROLES:
            out.outcome(role).solution = np.zeros(np_)
        out.lbd_disc = [[] for _ in range(n_sip)]
        out.ubd_disc = [[] for _ in range(n_sip)]
        out.res_disc = [[] for _ in range(n_sip)]
        return out

    def outcome(self, role: SubproblemType) -> SubproblemOutcome:
        if role == SubproblemType.LOWER_PROBLEM:
            return self.lbd
        elif role == SubproblemType.UPPER_PROBLEM:
            return self.ubd
        elif role == SubproblemType.RES_PROBLEM:
            return self.res
        elif role == SubproblemType.LOWER_LEVEL_1:
            return self.llp1
        elif role == SubproblemType.LOWER_LEVEL_2:
            return self.llp2
        elif role == SubproblemType.LOWER_LEVEL_3:
            return self.llp3
        else:
            raise ValueError(f"Unknown subproblem type: {role}")

    def load(self, role: SubproblemType, feasible: bool, objective: float,
             solution: Sequence[float]) -> None:
        """Record the outcome of a subproblem."""
        out = self.outcome(role)
        out.feasible = bool(feasible)
        out.objective = float(objective)
        out.solution = np.array(solution, dtype=np.float64)

    def disc_set(self, role: SubproblemType) -> List[List[np.ndarray]]:
        """Discretization set of a discretized problem."""
        if role == SubproblemType.LOWER_PROBLEM:
            return self.lbd_disc
        elif role == SubproblemType.UPPER_PROBLEM:
            return self.ubd_disc
        elif role == SubproblemType.RES_PROBLEM:
            return self.res_disc
        elif role in LOWER_LEVEL_ROLES:
            raise ValueError(f"{role.name} has no discretization set")
        else:
            raise ValueError(f"Unknown subproblem type: {role}")

    def add_point(self, role: SubproblemType, constraint: int, p: Sequence[float]) -> None:
        """Add a point p to the discretization set of one constraint."""
        self.disc_set(role)[constraint].append(np.array(p, dtype=np.float64))
