import math

import numpy as np
import pytest

from sketch_refit.errors import ErrorKind
from sketch_refit.fitting import PolynomialRuleFitter, RuleFitEngine, fit_display_polynomial, fit_rule
from sketch_refit.models import Equation, Point2D, RuleMode, RuleState


def _points(pairs):
    return tuple(Point2D(x=float(x), y=float(y)) for x, y in pairs)


def _equation(expr, pairs, mode, degree=3):
    return Equation(expr=expr, points=_points(pairs), rule=RuleState(mode=mode, poly_degree=degree))


# ---------------------------------------------------------------------------
# Free mode
# ---------------------------------------------------------------------------

def test_free_mode_returns_no_equation():
    res = fit_rule(_points([(0, 1), (1, 5)]), RuleMode.FREE)
    assert res.ok
    assert res.equation is None
    assert res.fn is None


def test_free_mode_commit_keeps_expression():
    eq = _equation("sin(x)", [(0, 1), (1, 5)], RuleMode.FREE)
    new_eq, res = RuleFitEngine().commit(eq)
    assert res.ok
    assert new_eq.expr == "sin(x)"
    assert new_eq.points == eq.points


# ---------------------------------------------------------------------------
# Polynomial
# ---------------------------------------------------------------------------

def test_degree_is_clamped_to_point_count():
    assert PolynomialRuleFitter(5).effective_degree(3) == 2
    assert PolynomialRuleFitter(2).effective_degree(10) == 2
    assert PolynomialRuleFitter(-1).effective_degree(4) == 0


@pytest.mark.parametrize("degree", [3, 4, 7])
def test_degree_above_point_count_matches_highest_usable_degree(degree):
    pts = _points([(-1, 2), (0.5, -1), (2, 3)])
    capped = fit_rule(pts, RuleMode.POLY, poly_degree=degree)
    exact = fit_rule(pts, RuleMode.POLY, poly_degree=2)
    assert capped.ok and exact.ok
    assert capped.equation == exact.equation
    for x in (-3.0, 0.0, 1.7):
        assert capped.fn(x) == pytest.approx(exact.fn(x))


def test_cubic_rule_reproduces_square():
    res = fit_rule(_points([(0, 0), (1, 1), (2, 4), (3, 9)]), RuleMode.POLY, poly_degree=3)
    assert res.ok
    for x in (-2.0, 0.5, 1.5, 5.0):
        assert res.fn(x) == pytest.approx(x * x, abs=1e-6)
    assert res.params["c3"] == pytest.approx(0.0, abs=1e-9)


def test_quadratic_through_three_points():
    res = fit_rule(_points([(0, 0), (1, 1), (2, 4)]), RuleMode.POLY, poly_degree=5)
    assert res.ok
    assert res.equation == "x^2"
    assert res.fn(3.0) == pytest.approx(9.0)
    assert res.rmse == pytest.approx(0.0, abs=1e-9)


def test_single_point_gives_constant():
    res = fit_rule(_points([(2, 7)]), RuleMode.POLY, poly_degree=3)
    assert res.ok
    assert res.equation == "7"


def test_repeated_x_is_singular():
    res = fit_rule(_points([(1, 1), (1, 2)]), RuleMode.POLY, poly_degree=1)
    assert not res.ok
    assert res.error is ErrorKind.SINGULAR_SYSTEM


# ---------------------------------------------------------------------------
# Linear
# ---------------------------------------------------------------------------

def test_linear_closed_form():
    res = fit_rule(_points([(0, 0), (1, 2), (2, 4)]), RuleMode.LINEAR)
    assert res.ok
    assert res.params["a"] == pytest.approx(2.0)
    assert res.params["b"] == pytest.approx(0.0, abs=1e-12)
    assert res.equation == "2*x"


def test_linear_vertical_points_fall_back_to_mean():
    res = fit_rule(_points([(1, 0), (1, 4)]), RuleMode.LINEAR)
    assert res.ok
    assert res.params["a"] == 0.0
    assert res.params["b"] == pytest.approx(2.0)


def test_linear_needs_two_points():
    res = fit_rule(_points([(1, 1)]), RuleMode.LINEAR)
    assert not res.ok
    assert res.message == "Linear rule needs at least 2 points."
    assert res.error is ErrorKind.INSUFFICIENT_DATA


# ---------------------------------------------------------------------------
# Simplex families
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("mode, name", [
    (RuleMode.SIN, "Sine"),
    (RuleMode.COS, "Cosine"),
    (RuleMode.TAN, "Tangent"),
])
def test_trig_needs_three_points(mode, name):
    res = fit_rule(_points([(0, 0), (1, 1)]), mode)
    assert not res.ok
    assert res.message == f"{name} rule needs at least 3 points."


def test_exponential_needs_three_points():
    res = fit_rule(_points([(0, 0), (1, 1)]), RuleMode.EXP)
    assert res.message == "Exponential rule needs at least 3 points."


def test_sine_fit_keeps_family():
    xs = np.linspace(0.0, 6.0, 9)
    res = fit_rule(_points(zip(xs, 2.0 * np.sin(xs) + 1.0)), RuleMode.SIN)
    assert res.ok
    assert "sin(" in res.equation
    assert res.params["w"] > 0
    assert math.isfinite(res.rmse)


def test_exponential_fit_keeps_family():
    xs = np.linspace(0.0, 3.0, 7)
    res = fit_rule(_points(zip(xs, np.exp(0.5 * xs))), RuleMode.EXP)
    assert res.ok
    assert "exp(" in res.equation
    assert math.isfinite(res.fn(1.0))


def test_power_fit_on_positive_x():
    xs = np.array([1.0, 2.0, 3.0, 4.0])
    res = fit_rule(_points(zip(xs, xs ** 2)), RuleMode.POWER)
    assert res.ok
    assert "x^(" in res.equation


# ---------------------------------------------------------------------------
# Domain rejection
# ---------------------------------------------------------------------------

def test_log_rejects_non_positive_x():
    res = fit_rule(_points([(0, 1), (1, 2), (2, 3)]), RuleMode.LOG)
    assert not res.ok
    assert res.message == "Log rule only works for x > 0. Move the points to positive x."
    assert res.error is ErrorKind.DOMAIN_VIOLATION


def test_log_domain_is_checked_before_point_count():
    res = fit_rule(_points([(-1, 1)]), RuleMode.LOG)
    assert res.error is ErrorKind.DOMAIN_VIOLATION


def test_power_rejects_non_positive_x():
    res = fit_rule(_points([(-1, 1), (1, 2), (2, 3)]), RuleMode.POWER)
    assert not res.ok
    assert res.message == "Power rule is only stable for x > 0. Move the points to positive x."


def test_rejected_commit_leaves_equation_untouched():
    eq = _equation("log(x)", [(-1, 1), (1, 2), (2, 3)], RuleMode.LOG)
    new_eq, res = RuleFitEngine().commit(eq)
    assert not res.ok
    assert new_eq is eq


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def test_unknown_rule():
    res = fit_rule(_points([(0, 0), (1, 1)]), "spline")
    assert not res.ok
    assert res.message == "Unknown rule."
    assert res.error is ErrorKind.UNKNOWN_RULE


def test_no_points():
    res = fit_rule((), RuleMode.LINEAR)
    assert not res.ok
    assert res.message == "No points to fit."


def test_mode_accepts_plain_string():
    res = fit_rule(_points([(0, 1), (1, 3)]), "linear")
    assert res.ok
    assert res.equation == "2*x + 1"


def test_commit_snaps_points_onto_curve():
    eq = Equation(
        expr="x",
        domain=(-10.0, 10.0),
        points=_points([(0, 0.1), (1, 1.9), (12, 24)]),
        rule=RuleState(mode=RuleMode.LINEAR),
    )
    new_eq, res = RuleFitEngine().commit(eq)
    assert res.ok
    assert new_eq.expr == res.equation
    assert new_eq.points[2].x == 10.0
    for p in new_eq.points:
        assert p.y == pytest.approx(res.fn(p.x))


def test_display_polynomial_follows_points():
    fn = fit_display_polynomial(_points([(0, 1), (1, 3), (2, 5)]), 3)
    assert fn(4.0) == pytest.approx(9.0)
    assert fit_display_polynomial((), 3) is None


def test_equation_needs_a_point():
    with pytest.raises(ValueError):
        Equation(expr="x", points=())


# ---------------------------------------------------------------------------
# Undefined points
# ---------------------------------------------------------------------------

def test_undefined_point_is_left_out_of_the_fit():
    res = fit_rule(_points([(0, 0), (1, 2), (2, 4), (math.nan, 1)]), "linear")
    assert res.ok
    assert res.params["a"] == pytest.approx(2.0)
    assert res.params["b"] == pytest.approx(0.0, abs=1e-12)
    assert res.equation == "2*x"


def test_point_count_is_checked_after_dropping_undefined_points():
    res = fit_rule(_points([(0, 0), (1, math.inf)]), RuleMode.LINEAR)
    assert not res.ok
    assert res.error is ErrorKind.INSUFFICIENT_DATA


def test_commit_keeps_undefined_point_as_is():
    eq = _equation("x", [(0, 0), (1, 2), (2, 4), (3, math.nan)], RuleMode.LINEAR)
    new_eq, res = RuleFitEngine().commit(eq)
    assert res.ok
    assert new_eq.expr == "2*x"
    assert [p.y for p in new_eq.points[:3]] == pytest.approx([0.0, 2.0, 4.0])
    assert new_eq.points[3].x == 3.0
    assert math.isnan(new_eq.points[3].y)


def test_display_polynomial_skips_undefined_points():
    fn = fit_display_polynomial(_points([(0, 1), (math.nan, 0), (1, 3), (2, 5)]), 3)
    assert fn(4.0) == pytest.approx(9.0)
