import pytest

from sketch_refit import expression_builder as eb
from sketch_refit.evaluator import compile_expression


@pytest.mark.parametrize("value, text", [
    (2.5, "2.5"),
    (3.0, "3"),
    (-1.25, "-1.25"),
    (1e-9, "0"),
    (-1e-9, "0"),
    (0.1234567, "0.123457"),
    (float("nan"), "0"),
    (float("inf"), "0"),
])
def test_format_number(value, text):
    assert eb.format_number(value) == text


@pytest.mark.parametrize("coeffs, text", [
    ([0.0, 0.0, 1.0], "x^2"),
    ([-1.0, 2.0], "2*x - 1"),
    ([1.0, -1.0, 0.5], "0.5*x^2 - x + 1"),
    ([0.0], "0"),
    ([1e-12, 1e-11], "0"),
    ([1.0], "1"),
    ([0.0, -1.0], "-x"),
])
def test_polynomial_1d(coeffs, text):
    assert eb.polynomial_1d(coeffs) == text


def test_polynomial_2d_keeps_basis_order():
    coefficients = {(0, 0): 1.0, (0, 1): -2.0, (1, 0): 1.0, (2, 1): 0.5}
    assert eb.polynomial_2d(coefficients) == "1 - 2*y + x + 0.5*x^2*y"


def test_polynomial_2d_all_negligible():
    assert eb.polynomial_2d({(0, 0): 1e-12, (1, 1): 0.0}) == "0"


def test_linear_text():
    assert eb.linear(2.0, 0.0) == "2*x"
    assert eb.linear(-1.0, 3.0) == "-x + 3"


def test_scaled_family_signs():
    assert eb.scaled_family(2.0, "sin(x)", -1.0) == "2*sin(x) - 1"
    assert eb.scaled_family(2.0, "sin(x)", 0.0) == "2*sin(x)"


def test_add_delta():
    assert eb.add_delta("x*y", "0") == "x*y"
    assert eb.add_delta("x*y", "x + 1") == "(x*y) + (x + 1)"


def test_kernel_blend_without_terms_is_zero():
    assert eb.kernel_blend([], 0.6) == "0"
    assert eb.kernel_blend([(1.0, 0.0), (2.0, 1e-13)], 0.6) == "0"


def test_kernel_blend_text():
    text = eb.kernel_blend([(1.0, 0.5)], 0.6)
    assert "exp(-(((t)-(1.0))/(0.6))^2)" in text
    assert text.endswith(" + (1e-09)))")


def test_kernel_blend_evaluates_to_blended_delta():
    text = eb.kernel_blend([(0.0, 1.0), (5.0, -2.0)], 0.6)
    f = compile_expression(text, ("t",))
    assert f(0.0) == pytest.approx(1.0, abs=1e-6)
    assert f(5.0) == pytest.approx(-2.0, abs=1e-6)


def test_axis_assignment():
    assert eb.axis_assignment("x", "cos(t)", "0") == "x(t) = ((cos(t)) + (0))"


def test_latex_render():
    assert eb.LatexRenderer().render("x^2") == "$$f(x) = x^{2}$$"


def test_latex_render_rounds_floats():
    out = eb.LatexRenderer(decimals=2).render("3.14159*x")
    assert "3.14" in out
    assert "3.14159" not in out


def test_latex_render_falls_back_to_text():
    out = eb.LatexRenderer().render("x +* 2")
    assert out.startswith("$$f(x) = \\text{")
