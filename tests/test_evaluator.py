import math

import numpy as np
import pytest

from sketch_refit.evaluator import (
    compile_expression,
    compile_vectorized,
    guarded,
    make_param_fn,
    make_surface_fn,
    normalize_expression,
    parse_expression,
    safe_value,
    strip_lhs,
)


def test_strip_lhs_keeps_text_after_last_equals():
    assert strip_lhs("y = 2x + 1") == "2x + 1"
    assert strip_lhs("x(t) = cos(t)") == "cos(t)"
    assert strip_lhs("  x^2 ") == "x^2"


def test_normalize_nested_assignment():
    assert normalize_expression("((x(t)=cos(t)) + (0.5))") == "((cos(t)) + (0.5))"


def test_normalize_braced_exponent():
    assert normalize_expression("e^{2x}") == "exp(2x)"


def test_normalize_empty_is_zero():
    assert normalize_expression("") == "0"
    assert normalize_expression("y =") == "0"


def test_implicit_multiplication_and_caret_power():
    f = compile_expression("y = 2x^2")
    assert f(3.0) == pytest.approx(18.0)


def test_constants_are_known():
    assert compile_expression("pi")(0.0) == pytest.approx(math.pi)
    assert compile_expression("ln(e)")(0.0) == pytest.approx(1.0)


@pytest.mark.parametrize("expr, x", [
    ("sqrt(x)", -1.0),
    ("log(x)", 0.0),
    ("1/x", 0.0),
])
def test_undefined_values_are_nan(expr, x):
    assert math.isnan(compile_expression(expr)(x))


def test_unknown_symbol_compiles_to_nan_function():
    f = compile_expression("x + q")
    assert math.isnan(f(1.0))


def test_unknown_symbol_raises_on_parse():
    with pytest.raises(ValueError):
        parse_expression("x + q", ("x",))


def test_param_and_surface_functions():
    xt = make_param_fn("x(t) = cos(t)")
    assert xt(0.0) == pytest.approx(1.0)
    f = make_surface_fn("z = x*y + 1")
    assert f(2.0, 3.0) == pytest.approx(7.0)


def test_vectorized_matches_scalar():
    xs = np.array([1.0, 2.0, 3.0])
    out = compile_vectorized("x^2")(xs)
    np.testing.assert_allclose(out, [1.0, 4.0, 9.0])


def test_vectorized_constant_broadcasts():
    out = compile_vectorized("3", ("t",))(np.zeros(4))
    assert out.shape == (4,)
    np.testing.assert_allclose(out, 3.0)


def test_vectorized_marks_undefined_as_nan():
    out = compile_vectorized("sqrt(x)")(np.array([-1.0, 4.0]))
    assert math.isnan(out[0])
    assert out[1] == pytest.approx(2.0)


def test_raising_call_is_an_undefined_sample():
    assert math.isnan(safe_value(lambda x: 1.0 / x, 0.0))
    assert math.isnan(safe_value(lambda x: math.log(x), -1.0))
    assert math.isnan(safe_value(lambda x: None, 1.0))
    assert safe_value(lambda x, y: x + y, 1, 2) == 3.0


def test_guarded_wraps_caller_functions():
    f = guarded(lambda x: 1.0 / (x - 1.0))
    assert math.isnan(f(1.0))
    assert f(2.0) == 1.0
