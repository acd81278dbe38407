"""
Tests for the Forward Pass Evaluator
"""

import math

import numpy as np
import pytest
from mcforward import (
    Box,
    ConfigurationError,
    DomainPolicy,
    EvaluatorConfig,
    ExpressionGraph,
    Interval,
    MalformedDAGError,
    OpType,
    Phase,
    RelaxationEvaluator,
    UserOperatorRegistry,
)
from mcforward import expr_graph
from mcforward.bounds import univariate
from mcforward.expr_graph import (
    USER_OPERATOR_ID_START,
    USER_UNIVAR_OPERATOR_ID_START,
    asinh,
    atan,
    cos,
    cosh,
    exp,
    log,
    product,
    sin,
    sqrt,
    tanh,
    total,
    user,
    user_univariate,
)


TOL = 1e-8


def build(func, num_vars, lower, upper, num_params=0, **kwargs):
    dag = ExpressionGraph.from_callable(func, num_vars, num_params).compile()
    evaluator = RelaxationEvaluator(dag, **kwargs)
    evaluator.set_box(Box(lower, upper))
    return dag, evaluator


def grid(lower, upper, num=5):
    axes = [np.linspace(lo, hi, num) for lo, hi in zip(lower, upper)]
    return [np.array(p) for p in np.array(np.meshgrid(*axes)).reshape(len(axes), -1).T]


def check_sound(result, fx):
    r = result.value
    assert not result.is_number
    assert r.lo - TOL <= r.cv <= fx + TOL
    assert fx - TOL <= r.cc <= r.hi + TOL


EXPRESSIONS = [
    (lambda x, y: exp(x * y) - sin(x) + y ** 2, [-1.0, -1.0], [2.0, 1.0]),
    (lambda x, y: x / (y + 3.0) + tanh(x - y), [-2.0, -1.0], [2.0, 1.0]),
    (lambda x, y: sqrt(x) * log(x + y), [0.5, 1.0], [4.0, 2.0]),
    (lambda x, y: cos(x) * atan(y) + abs(x - y), [-2.0, -3.0], [3.0, 1.0]),
    (lambda x, y: (x - 1.0) ** 3 - 2.0 * x * y + 1.0 / y, [-1.0, 0.5], [2.0, 2.0]),
]


class TestSoundness:
    """lo <= cv <= f <= cc <= hi at every sampled point."""

    @pytest.mark.parametrize("func,lower,upper", EXPRESSIONS)
    def test_fresh_pass(self, func, lower, upper):
        dag, evaluator = build(func, 2, lower, upper)
        for p in grid(lower, upper):
            result = evaluator.forward_pass(p)
            check_sound(result, dag.evaluate(p))

    @pytest.mark.parametrize("func,lower,upper", EXPRESSIONS)
    def test_linearizations(self, func, lower, upper):
        """cv / cc plus their subgradients bound f over the box."""
        dag, evaluator = build(func, 2, lower, upper)
        samples = grid(lower, upper, 6)
        fs = [dag.evaluate(q) for q in samples]
        for p in grid(lower, upper, 3):
            r = evaluator.forward_pass(p).value
            for q, fq in zip(samples, fs):
                assert r.cv + r.cv_grad @ (q - p) <= fq + 1e-7
                assert r.cc + r.cc_grad @ (q - p) >= fq - 1e-7

    @pytest.mark.parametrize("func,lower,upper", EXPRESSIONS)
    def test_refine_passes(self, func, lower, upper):
        """Refine passes at moving points stay sound."""
        dag, evaluator = build(func, 2, lower, upper)
        points = grid(lower, upper, 3)
        evaluator.forward_pass(points[0])
        evaluator.begin_refine()
        for p in points:
            check_sound(evaluator.forward_pass(p), dag.evaluate(p))

    def test_unbounded_box(self):
        dag, evaluator = build(lambda x: exp(x) + x, 1, [-np.inf], [1.0])
        result = evaluator.forward_pass([0.0])
        check_sound(result, 1.0)
        assert result.value.lo == -np.inf


class TestNumberClosure:
    """Nodes depending only on constants and parameters stay numbers."""

    def test_parameter_only_expression(self):
        dag, evaluator = build(lambda x, p, q: exp(p) * q + 3.0 / q, 1, [0.0], [1.0], num_params=2)
        result = evaluator.forward_pass([0.5], parameters=[0.3, 2.0])
        assert result.is_number
        assert abs(result.value - (math.exp(0.3) * 2.0 + 1.5)) < 1e-12
        assert result.interval == Interval(result.value, result.value)

    def test_constant_factor_is_exact(self):
        dag, evaluator = build(lambda x, p: x * (p + 1.0), 1, [0.0], [2.0], num_params=1)
        result = evaluator.forward_pass([0.5], parameters=[2.0])
        r = result.value
        assert abs(r.cv - 1.5) < 1e-12
        assert abs(r.cc - 1.5) < 1e-12
        assert abs(r.cv_grad[0] - 3.0) < 1e-12

    def test_fixed_variable(self):
        dag, evaluator = build(lambda x, y: x * y + y, 2, [0.0, 2.0], [1.0, 3.0],
                               is_fixed=[False, True])
        r = evaluator.forward_pass([0.5, 2.5]).value
        assert abs(r.cv - 3.75) < 1e-12
        assert abs(r.cc - 3.75) < 1e-12
        assert r.cv_grad[1] == 0.0
        assert r.cc_grad[1] == 0.0

    def test_numeric_violation(self):
        """1/p with p = 0 makes the node empty."""
        dag, evaluator = build(lambda x, p: x + 1.0 / p, 1, [0.0], [1.0], num_params=1)
        result = evaluator.forward_pass([0.5], parameters=[0.0])
        assert result.is_empty
        assert len(result.violations) == 1


class TestPowerIdentities:
    """x^1 and x^0 bypass the power arithmetic."""

    def test_exponent_one_returns_operand(self):
        dag, evaluator = build(lambda x: x ** 1, 1, [-1.0], [2.0],
                               config=EvaluatorConfig(affine_cut=False))
        result = evaluator.forward_pass([0.5])
        assert result.value is evaluator.tape.value(0)

    def test_exponent_one_value(self):
        dag, evaluator = build(lambda x: exp(x) ** 1, 1, [-1.0], [2.0])
        r = evaluator.forward_pass([0.5]).value
        assert r.cv <= math.exp(0.5) <= r.cc

    def test_exponent_zero(self):
        dag, evaluator = build(lambda x: x ** 0, 1, [-1.0], [2.0])
        result = evaluator.forward_pass([0.5])
        r = result.value
        assert r.cv == 1.0 and r.cc == 1.0
        assert np.all(r.cv_grad == 0.0) and np.all(r.cc_grad == 0.0)
        assert r.interval == Interval(1.0, 1.0)

    def test_exponent_zero_number(self):
        dag, evaluator = build(lambda x, p: p ** 0 + x, 1, [-1.0], [2.0], num_params=1)
        r = evaluator.forward_pass([0.5], parameters=[7.0]).value
        assert abs(r.cv - 1.5) < 1e-12

    def test_fractional_power_clipped(self):
        dag, evaluator = build(lambda x: x ** 0.5, 1, [-1.0], [4.0])
        result = evaluator.forward_pass([1.0])
        assert result.violations == []
        check_sound(result, 1.0)

    def test_negative_power_through_zero(self):
        dag, evaluator = build(lambda x: x ** -1, 1, [-1.0], [4.0])
        result = evaluator.forward_pass([1.0])
        assert result.is_empty
        assert result.violations == [dag.root]


class TestDomainViolations:
    """Partial functions produce the empty relaxation and a record."""

    def test_division_through_zero(self):
        dag, evaluator = build(lambda x, y: x / y, 2, [0.5, -1.0], [1.0, 1.0])
        result = evaluator.forward_pass([0.75, 0.5])
        assert result.is_empty
        assert result.violations == [dag.root]

    def test_violation_propagates(self):
        dag, evaluator = build(lambda x, y: exp(x / y) + 1.0, 2, [0.5, -1.0], [1.0, 1.0])
        result = evaluator.forward_pass([0.75, 0.5])
        assert result.is_empty
        assert len(result.violations) == 1

    def test_clip_policy(self):
        dag, evaluator = build(lambda x: sqrt(x), 1, [-1.0], [4.0])
        result = evaluator.forward_pass([1.0])
        assert result.violations == []
        assert result.value.lo >= 0.0
        check_sound(result, 1.0)

    def test_empty_policy(self):
        config = EvaluatorConfig(domain_policy=DomainPolicy.EMPTY)
        dag, evaluator = build(lambda x: sqrt(x), 1, [-1.0], [4.0], config=config)
        result = evaluator.forward_pass([1.0])
        assert result.is_empty
        assert result.violations == [dag.root]

    def test_wholly_outside(self):
        dag, evaluator = build(lambda x: log(x), 1, [-2.0], [-1.0])
        result = evaluator.forward_pass([-1.5])
        assert result.is_empty

    def test_violations_reset_per_pass(self):
        dag, evaluator = build(lambda x, y: x / y, 2, [0.5, -1.0], [1.0, 1.0])
        evaluator.forward_pass([0.75, 0.5])
        evaluator.set_box(Box([0.5, 0.5], [1.0, 1.0]))
        result = evaluator.forward_pass([0.75, 0.75])
        assert result.violations == []
        check_sound(result, 1.0)


class TestRefinement:
    """FRESH / REFINE phases."""

    FUNC = staticmethod(lambda x, y: x * y + exp(x) * sin(y))
    LOWER = [-1.0, -2.0]
    UPPER = [2.0, 1.0]

    def test_phases(self):
        _, evaluator = build(self.FUNC, 2, self.LOWER, self.UPPER)
        assert evaluator.phase == Phase.FRESH
        evaluator.begin_refine()
        assert evaluator.phase == Phase.REFINE
        evaluator.set_box(Box(self.LOWER, self.UPPER))
        assert evaluator.phase == Phase.FRESH

    def test_monotonic_tightening(self):
        _, evaluator = build(self.FUNC, 2, self.LOWER, self.UPPER)
        x0 = np.array([0.5, -0.5])
        first = evaluator.forward_pass(x0).value
        evaluator.begin_refine()
        second = evaluator.forward_pass(x0).value
        third = evaluator.forward_pass(x0).value
        for prev, cur in ((first, second), (second, third)):
            assert cur.interval.issubset(prev.interval)
            assert cur.cv >= prev.cv
            assert cur.cc <= prev.cc

    def test_interval_tightens_at_new_point(self):
        _, evaluator = build(self.FUNC, 2, self.LOWER, self.UPPER)
        first = evaluator.forward_pass([0.5, -0.5]).value
        evaluator.begin_refine()
        second = evaluator.forward_pass([1.5, 0.5]).value
        assert second.interval.issubset(first.interval)

    def test_fresh_after_set_box(self):
        dag, evaluator = build(self.FUNC, 2, self.LOWER, self.UPPER)
        x0 = [0.5, -0.5]
        first = evaluator.forward_pass(x0).value
        evaluator.begin_refine()
        evaluator.forward_pass([1.5, 0.5])
        evaluator.set_box(Box(self.LOWER, self.UPPER))
        again = evaluator.forward_pass(x0).value
        assert abs(again.cv - first.cv) < 1e-12
        assert abs(again.cc - first.cc) < 1e-12
        assert again.interval == first.interval

    def test_no_intersection_when_disabled(self):
        config = EvaluatorConfig(intersect=False, affine_cut=False)
        dag, evaluator = build(self.FUNC, 2, self.LOWER, self.UPPER, config=config)
        x0 = [0.5, -0.5]
        first = evaluator.forward_pass(x0).value
        evaluator.begin_refine()
        second = evaluator.forward_pass(x0).value
        assert second.interval.issubset(first.interval)
        check_sound(evaluator.forward_pass(x0), dag.evaluate(x0))


class TestTiePointCache:
    """Tie points persist within a box and reset with the box."""

    def test_persistence_and_reset(self):
        dag, evaluator = build(lambda x: tanh(x) + sin(x), 1, [-2.0], [3.0])
        cache = evaluator.cache
        assert len(cache.slots) == 6
        assert np.all(np.isinf(cache.slots))

        evaluator.forward_pass([0.5])
        assert np.all(np.isfinite(cache.slots))
        stored = cache.slots.copy()

        evaluator.forward_pass([1.5])
        assert np.array_equal(cache.slots, stored)

        evaluator.set_box(Box([-1.0], [2.0]))
        assert np.all(np.isinf(cache.slots))
        evaluator.forward_pass([0.5])
        assert np.all(np.isfinite(cache.slots))
        assert not np.array_equal(cache.slots, stored)

    def test_cached_values_match_fresh_solve(self):
        func = lambda x: tanh(x) * sin(x)
        dag, evaluator = build(func, 1, [-2.0], [3.0])
        evaluator.forward_pass([0.5])
        cached = evaluator.forward_pass([1.5]).value

        _, other = build(func, 1, [-2.0], [3.0])
        fresh = other.forward_pass([1.5]).value
        assert abs(cached.cv - fresh.cv) < 1e-10
        assert abs(cached.cc - fresh.cc) < 1e-10

    def test_closed_form_nodes_have_no_slots(self):
        dag, evaluator = build(lambda x: exp(x) + log(x), 1, [1.0], [2.0])
        assert len(evaluator.cache.slots) == 0


class TestSubexpressions:
    """Shared subexpressions are evaluated before the main DAG."""

    def _main(self, op=OpType.EXP, index=0):
        g = ExpressionGraph()
        x = g.variable(0)
        s = g.subexpression(index)
        g.set_output(g.binary(OpType.ADD, g.unary(op, s), x))
        return g.compile(n_vars=2)

    def test_soundness(self):
        sub = ExpressionGraph.from_callable(lambda x, y: x * y, 2).compile()
        evaluator = RelaxationEvaluator(self._main(), subexpressions=[sub])
        lower, upper = [-1.0, 0.0], [1.0, 2.0]
        evaluator.set_box(Box(lower, upper))
        for p in grid(lower, upper):
            check_sound(evaluator.forward_pass(p), math.exp(p[0] * p[1]) + p[0])

    def test_subexpression_violation(self):
        sub = ExpressionGraph.from_callable(lambda x, y: x / y, 2).compile()
        evaluator = RelaxationEvaluator(self._main(), subexpressions=[sub])
        evaluator.set_box(Box([0.5, -1.0], [1.0, 1.0]))
        result = evaluator.forward_pass([0.75, 0.5])
        assert result.is_empty
        assert result.subexpression_violations == {0: [sub.root]}
        assert result.violations == []

    def test_unknown_subexpression(self):
        sub = ExpressionGraph.from_callable(lambda x, y: x * y, 2).compile()
        evaluator = RelaxationEvaluator(self._main(index=1), subexpressions=[sub])
        evaluator.set_box(Box([0.0, 0.0], [1.0, 1.0]))
        with pytest.raises(MalformedDAGError):
            evaluator.forward_pass([0.5, 0.5])


class TestUserOperators:
    """Registered operators on numbers and relaxations."""

    def test_univariate_operator(self):
        registry = UserOperatorRegistry()
        op = registry.register_univariate(lambda t: t * univariate.exp(t), name="texp")
        dag, evaluator = build(lambda x: user_univariate(op, x), 1, [-1.0], [1.0],
                               registry=registry)
        for p in np.linspace(-1.0, 1.0, 9):
            check_sound(evaluator.forward_pass([p]), p * math.exp(p))

    def test_multivariate_operator_on_numbers(self):
        registry = UserOperatorRegistry()
        op = registry.register_multivariate(lambda a, b: a * b + a, name="fma")
        dag, evaluator = build(lambda x, p: user(op, p, p) + x, 1, [0.0], [1.0],
                               num_params=1, registry=registry)
        r = evaluator.forward_pass([0.5], parameters=[2.0]).value
        assert abs(r.cv - 6.5) < 1e-12
        assert abs(r.cc - 6.5) < 1e-12

    def test_multivariate_operator_on_relaxations(self):
        registry = UserOperatorRegistry()
        op = registry.register_multivariate(lambda a, b: a * b + a, name="fma")
        lower, upper = [-1.0, 0.0], [1.0, 2.0]
        dag, evaluator = build(lambda x, y: user(op, x, y), 2, lower, upper, registry=registry)
        for p in grid(lower, upper):
            check_sound(evaluator.forward_pass(p), p[0] * p[1] + p[0])

    def test_operator_domain(self):
        registry = UserOperatorRegistry()
        op = registry.register_univariate(lambda t: univariate.sqrt(t), name="root",
                                          domain=Interval(0.0, np.inf))
        dag, evaluator = build(lambda x: user_univariate(op, x), 1, [-1.0], [4.0],
                               registry=registry)
        check_sound(evaluator.forward_pass([1.0]), 1.0)

        config = EvaluatorConfig(domain_policy=DomainPolicy.EMPTY)
        dag, evaluator = build(lambda x: user_univariate(op, x), 1, [-1.0], [4.0],
                               registry=registry, config=config)
        assert evaluator.forward_pass([1.0]).is_empty

    def test_operator_on_number_outside_domain(self):
        registry = UserOperatorRegistry()
        op = registry.register_univariate(lambda t: univariate.sqrt(t), name="root",
                                          domain=Interval(0.0, np.inf))
        dag, evaluator = build(lambda x, p: user_univariate(op, p) + x, 1, [0.0], [1.0],
                               num_params=1, registry=registry)
        result = evaluator.forward_pass([0.5], parameters=[-1.0])
        assert result.is_empty

    def test_automatic_ids_skip_explicit_ones(self):
        registry = UserOperatorRegistry()
        explicit = registry.register_multivariate(lambda a, b: a + b, op_id=USER_OPERATOR_ID_START + 1)
        first = registry.register_multivariate(lambda a, b: a * b)
        assert first == USER_OPERATOR_ID_START + 2
        assert registry.multivariate(explicit)(1.0, 2.0) == 3.0
        assert registry.multivariate(first)(1.0, 2.0) == 2.0

        start = registry.register_univariate(lambda t: t, op_id=USER_UNIVAR_OPERATOR_ID_START)
        assert registry.register_univariate(lambda t: -t) == start + 1

    def test_duplicate_id_rejected(self):
        registry = UserOperatorRegistry()
        op = registry.register_univariate(lambda t: t, name="identity")
        with pytest.raises(ValueError):
            registry.register_univariate(lambda t: -t, op_id=op)
        assert registry.univariate(op)(2.0) == 2.0

    def test_id_below_range_rejected(self):
        with pytest.raises(ValueError):
            UserOperatorRegistry().register_multivariate(lambda a: a, op_id=USER_OPERATOR_ID_START - 1)

    def test_unregistered_operator(self):
        dag, evaluator = build(lambda x: user_univariate(USER_UNIVAR_OPERATOR_ID_START + 3, x),
                               1, [0.0], [1.0], registry=UserOperatorRegistry())
        with pytest.raises(MalformedDAGError):
            evaluator.forward_pass([0.5])

    def test_missing_registry(self):
        dag, evaluator = build(lambda x: user_univariate(USER_UNIVAR_OPERATOR_ID_START, x),
                               1, [0.0], [1.0])
        with pytest.raises(MalformedDAGError):
            evaluator.forward_pass([0.5])


class TestNaryOperators:
    """n-ary sums and products mixing numbers and relaxations."""

    LOWER, UPPER = [-1.0, 0.5], [2.0, 3.0]

    def test_sum_with_constants(self):
        dag, evaluator = build(lambda x, y: total(x, 2.0, exp(y), -0.5, x * y),
                               2, self.LOWER, self.UPPER)
        for p in grid(self.LOWER, self.UPPER):
            check_sound(evaluator.forward_pass(p), dag.evaluate(p))

    def test_product_with_constants(self):
        dag, evaluator = build(lambda x, y: product(2.0, x, -1.5, y + 1.0, exp(x)),
                               2, self.LOWER, self.UPPER)
        for p in grid(self.LOWER, self.UPPER):
            check_sound(evaluator.forward_pass(p), dag.evaluate(p))

    def test_sum_and_product_with_parameters(self):
        dag, evaluator = build(lambda x, y, a: total(a, x, product(a, y, x), 3.0),
                               2, self.LOWER, self.UPPER, num_params=1)
        for p in grid(self.LOWER, self.UPPER):
            result = evaluator.forward_pass(p, parameters=[-0.75])
            check_sound(result, dag.evaluate(p, parameters=[-0.75]))

    def test_zero_factor(self):
        """A zero number factor makes the product exactly zero."""
        dag, evaluator = build(lambda x, y: product(x, 0.0, y, exp(x)) + y,
                               2, self.LOWER, self.UPPER)
        for p in grid(self.LOWER, self.UPPER):
            r = evaluator.forward_pass(p).value
            assert abs(r.cv - p[1]) < 1e-12
            assert abs(r.cc - p[1]) < 1e-12
            assert np.allclose(r.cv_grad, [0.0, 1.0])

    def test_zero_factor_on_unbounded_box(self):
        dag, evaluator = build(lambda x, y: product(0.0, x, y) + x, 2,
                               [-np.inf, 0.0], [1.0, np.inf])
        result = evaluator.forward_pass([0.5, 2.0])
        assert result.violations == []
        assert abs(result.value.cv - 0.5) < 1e-12
        assert abs(result.value.cc - 0.5) < 1e-12

    def test_number_operands_stay_numbers(self):
        dag, evaluator = build(lambda x, a, b: total(a, 1.0, product(a, 2.0, b)) * x,
                               1, [0.0], [2.0], num_params=2)
        r = evaluator.forward_pass([1.5], parameters=[0.5, 3.0]).value
        # 0.5 + 1 + 0.5 * 2 * 3 = 4.5 is an exact number factor
        assert abs(r.cv - 6.75) < 1e-12
        assert abs(r.cc - 6.75) < 1e-12
        assert abs(r.cv_grad[0] - 4.5) < 1e-12

    def test_all_number_root(self):
        dag, evaluator = build(lambda x, a: product(a, 2.0, total(a, 1.0)), 1, [0.0], [1.0],
                               num_params=1)
        result = evaluator.forward_pass([0.5], parameters=[3.0])
        assert result.is_number
        assert result.value == 24.0

    def test_builder_nary_nodes(self):
        g = ExpressionGraph()
        x, y = g.variable(0), g.variable(1)
        g.set_output(g.nary(OpType.MUL, [x, g.constant(2.0), y, g.unary(OpType.EXP, x)]))
        dag = g.compile()
        evaluator = RelaxationEvaluator(dag)
        evaluator.set_box(Box(self.LOWER, self.UPPER))
        for p in grid(self.LOWER, self.UPPER):
            check_sound(evaluator.forward_pass(p), 2.0 * p[0] * p[1] * math.exp(p[0]))


class TestWideRanges:
    """Large intermediate values keep the box alive and the bounds sound."""

    @pytest.mark.parametrize("func,f", [
        (lambda x: atan(exp(x)), lambda t: math.atan(math.exp(t))),
        (lambda x: asinh(exp(x)), lambda t: math.asinh(math.exp(t))),
    ])
    def test_bounded_function_of_exp(self, func, f):
        dag, evaluator = build(func, 1, [0.0], [200.0])
        for p in [0.0, 1.0, 50.0, 199.0]:
            result = evaluator.forward_pass([p])
            assert result.violations == []
            assert not result.is_empty
            check_sound(result, f(p))

    def test_overflowing_range(self):
        """exp(exp(x)) overflows at the top of the box but not at the point."""
        dag, evaluator = build(lambda x: exp(exp(x)), 1, [0.0], [10.0])
        result = evaluator.forward_pass([1.0])
        assert result.violations == []
        assert not result.is_empty
        assert result.value.hi == np.inf
        check_sound(result, math.exp(math.e))

    def test_tanh_of_cosh(self):
        """The outer argument lies in the flat tail of tanh."""
        lower, upper = [0.1627], [2.3465]
        dag, evaluator = build(lambda x: tanh(cosh(2.0 * x)), 1, lower, upper)
        samples = [np.array([q]) for q in np.linspace(lower[0], upper[0], 41)]
        for p in samples[::5]:
            result = evaluator.forward_pass(p)
            check_sound(result, dag.evaluate(p))
            r = result.value
            for q in samples:
                fq = dag.evaluate(q)
                assert r.cv + r.cv_grad @ (q - p) <= fq + 1e-7
                assert r.cc + r.cc_grad @ (q - p) >= fq - 1e-7


RANDOM_INNER = {
    "x": lambda x: x,
    "cosh": cosh,
    "exp": exp,
    "tanh": tanh,
    "poly": lambda x: x * x - x,
    "shifted_cosh": lambda x: cosh(x) + 1.0,
    "scaled_tanh": lambda x: 0.9 * tanh(x),
}

# outer function -> inner functions whose range lies in its domain
RANDOM_OUTER = {
    "exp": ["x", "tanh", "poly"],
    "tanh": ["x", "cosh", "exp", "poly"],
    "atan": ["x", "cosh", "exp", "poly"],
    "erf": ["x", "cosh", "exp", "poly"],
    "asinh": ["x", "cosh", "exp", "poly"],
    "sinh": ["x", "tanh"],
    "cosh": ["x", "tanh"],
    "abs": ["x", "poly", "tanh"],
    "sin": ["x", "tanh", "poly"],
    "cos": ["x", "tanh", "poly"],
    "log": ["cosh", "exp"],
    "sqrt": ["cosh", "exp"],
    "inv": ["cosh", "exp"],
    "square": ["x", "tanh", "poly"],
    "acosh": ["shifted_cosh"],
    "asin": ["scaled_tanh"],
    "acos": ["scaled_tanh"],
}


def random_cases(seed, count):
    rng = np.random.default_rng(seed)
    names = sorted(RANDOM_OUTER)
    cases = []
    for _ in range(count):
        op = names[rng.integers(len(names))]
        inner = RANDOM_OUTER[op][rng.integers(len(RANDOM_OUTER[op]))]
        lo = float(rng.uniform(-3.0, 3.0))
        hi = lo + float(rng.uniform(0.05, 4.0))
        cases.append((op, inner, lo, hi))
    return cases


class TestRandomizedSoundness:
    """Seeded random boxes over the catalogue, with composed arguments."""

    @pytest.mark.parametrize("op,inner,lo,hi", random_cases(20261017, 80))
    def test_composition(self, op, inner, lo, hi):
        outer = abs if op == "abs" else getattr(expr_graph, op)
        g = RANDOM_INNER[inner]
        dag, evaluator = build(lambda x: outer(g(x)), 1, [lo], [hi])
        samples = [np.array([q]) for q in np.linspace(lo, hi, 25)]
        fs = [dag.evaluate(q) for q in samples]
        for p in samples[::4]:
            fx = dag.evaluate(p)
            tol = 1e-7 * (1.0 + abs(fx))
            result = evaluator.forward_pass(p)
            assert result.violations == []
            r = result.value
            assert r.lo - tol <= r.cv <= fx + tol
            assert fx - tol <= r.cc <= r.hi + tol
            for q, fq in zip(samples, fs):
                tol = 1e-6 * (1.0 + abs(fq))
                assert r.cv + r.cv_grad @ (q - p) <= fq + tol
                assert r.cc + r.cc_grad @ (q - p) >= fq - tol

    @pytest.mark.parametrize("op,inner,lo,hi", random_cases(7, 30))
    def test_refine_at_moving_points(self, op, inner, lo, hi):
        outer = abs if op == "abs" else getattr(expr_graph, op)
        g = RANDOM_INNER[inner]
        dag, evaluator = build(lambda x: outer(g(x)), 1, [lo], [hi])
        points = [np.array([q]) for q in np.linspace(lo, hi, 7)]
        evaluator.forward_pass(points[3])
        evaluator.begin_refine()
        for p in points:
            fx = dag.evaluate(p)
            tol = 1e-7 * (1.0 + abs(fx))
            r = evaluator.forward_pass(p).value
            assert r.lo - tol <= r.cv <= fx + tol
            assert fx - tol <= r.cc <= r.hi + tol


class TestConfiguration:
    """Invalid inputs raise ConfigurationError."""

    def _evaluator(self):
        dag = ExpressionGraph.from_callable(lambda x, y, p: x * y + p, 2, 1).compile()
        return RelaxationEvaluator(dag)

    def test_pass_before_box(self):
        with pytest.raises(ConfigurationError):
            self._evaluator().forward_pass([0.0, 0.0], parameters=[1.0])

    def test_refine_before_box(self):
        with pytest.raises(ConfigurationError):
            self._evaluator().begin_refine()

    def test_box_dimension(self):
        with pytest.raises(ConfigurationError):
            self._evaluator().set_box(Box([0.0], [1.0]))

    def test_point_dimension(self):
        evaluator = self._evaluator()
        evaluator.set_box(Box([0.0, 0.0], [1.0, 1.0]))
        with pytest.raises(ConfigurationError):
            evaluator.forward_pass([0.5], parameters=[1.0])

    def test_point_outside_box(self):
        evaluator = self._evaluator()
        evaluator.set_box(Box([0.0, 0.0], [1.0, 1.0]))
        with pytest.raises(ConfigurationError):
            evaluator.forward_pass([0.5, 1.5], parameters=[1.0])

    def test_point_within_tolerance_is_projected(self):
        evaluator = self._evaluator()
        evaluator.set_box(Box([0.0, 0.0], [1.0, 1.0]))
        result = evaluator.forward_pass([0.5, 1.0 + 1e-12], parameters=[1.0])
        assert result.value.cv <= 1.5 + TOL

    def test_missing_parameters(self):
        evaluator = self._evaluator()
        evaluator.set_box(Box([0.0, 0.0], [1.0, 1.0]))
        with pytest.raises(ConfigurationError):
            evaluator.forward_pass([0.5, 0.5])

    def test_is_fixed_length(self):
        dag = ExpressionGraph.from_callable(lambda x, y: x * y, 2).compile()
        with pytest.raises(ConfigurationError):
            RelaxationEvaluator(dag, is_fixed=[True])

    @pytest.mark.parametrize("kwargs", [
        {"tiepoint_xtol": 0.0},
        {"tiepoint_residual_tol": -1.0},
        {"bitangent_max_iter": 0},
        {"box_tol": -1e-3},
        {"domain_policy": "clip"},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(ConfigurationError):
            EvaluatorConfig(**kwargs)

    def test_invalid_box(self):
        with pytest.raises(ConfigurationError):
            Box([1.0, 0.0], [0.0, 1.0])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
