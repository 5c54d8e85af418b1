"""
Formula text builders.

Every fitted or baked result is handed back to the caller as plain formula
text so it stays editable.  All number formatting and string assembly lives
here; the numeric engines only pass coefficients in.
"""

from __future__ import annotations

import math
from tokenize import TokenError
from typing import Iterable, Mapping, Sequence

import sympy as sp

from .config import COEF_EPS, KERNEL_EPS, KERNEL_TERM_EPS, OUTPUT_DECIMALS, UNIT_COEF_EPS
from .evaluator import parse_expression


# ===========================================================================
# Numbers
# ===========================================================================

def format_number(value: float, decimals: int = OUTPUT_DECIMALS) -> str:
    """Round to *decimals* places and trim trailing zeros (``2.500000`` -> ``2.5``)."""
    if not math.isfinite(value):
        return "0"
    s = f"{round(float(value), decimals):.{decimals}f}"
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    if s in ("-0", ""):
        s = "0"
    return s


def literal(value: float) -> str:
    """Full-precision literal for values embedded in baked kernels."""
    return repr(float(value))


def join_signed(first: str, terms: Iterable[tuple[float, str]]) -> str:
    """Append ``(sign_value, body)`` pairs to *first* as `` + body``/`` - body``."""
    out = first
    for sign_value, body in terms:
        out += f" - {body}" if sign_value < 0 else f" + {body}"
    return out


def _is_unit(abs_coef: float) -> bool:
    return abs(abs_coef - 1.0) < UNIT_COEF_EPS


# ===========================================================================
# Polynomials
# ===========================================================================

def _signed_terms_to_text(parts: Sequence[tuple[float, str]]) -> str:
    if not parts:
        return "0"
    first_sign, first_body = parts[0]
    head = f"-{first_body}" if first_sign < 0 else first_body
    return join_signed(head, parts[1:])


def polynomial_1d(coeffs: Sequence[float], var: str = "x") -> str:
    """``c0 + c1 x + ... + cd x^d`` rendered from the highest power down.

    Near-zero terms are skipped and a unit coefficient is omitted except on
    the constant term.
    """
    parts: list[tuple[float, str]] = []
    for power in range(len(coeffs) - 1, -1, -1):
        c = float(coeffs[power])
        if not math.isfinite(c) or abs(c) < COEF_EPS:
            continue
        abs_c = abs(c)
        coef_text = format_number(abs_c)
        if power == 0:
            body = coef_text
        else:
            monomial = var if power == 1 else f"{var}^{power}"
            if _is_unit(abs_c):
                body = monomial
            elif coef_text == "0":
                continue
            else:
                body = f"{coef_text}*{monomial}"
        if body == "0":
            continue
        parts.append((c, body))
    return _signed_terms_to_text(parts)


def polynomial_2d(coefficients: Mapping[tuple[int, int], float]) -> str:
    """Sum of ``c * x^i * y^j`` in the insertion order of *coefficients*."""
    parts: list[tuple[float, str]] = []
    for (i, j), c in coefficients.items():
        c = float(c)
        if not math.isfinite(c) or abs(c) < COEF_EPS:
            continue
        abs_c = abs(c)
        coef_text = format_number(abs_c)
        factors: list[str] = []
        is_constant = i == 0 and j == 0
        if is_constant or not _is_unit(abs_c):
            if coef_text == "0":
                continue
            factors.append(coef_text)
        if i > 0:
            factors.append("x" if i == 1 else f"x^{i}")
        if j > 0:
            factors.append("y" if j == 1 else f"y^{j}")
        parts.append((c, "*".join(factors)))
    return _signed_terms_to_text(parts)


# ===========================================================================
# Rule families
# ===========================================================================

def linear(a: float, b: float) -> str:
    return polynomial_1d([b, a])


def affine_argument(scale: float, offset: float, var: str = "x") -> str:
    head = f"{format_number(scale)}*{var}"
    if abs(offset) < COEF_EPS or format_number(abs(offset)) == "0":
        return head
    return join_signed(head, [(offset, format_number(abs(offset)))])


def scaled_family(amplitude: float, body: str, offset: float) -> str:
    """``A*body + C`` with sign-aware joining."""
    head = f"{format_number(amplitude)}*{body}"
    if format_number(abs(offset)) == "0":
        return head
    return join_signed(head, [(offset, format_number(abs(offset)))])


# ===========================================================================
# Composition
# ===========================================================================

def add_delta(base_rhs: str, delta: str) -> str:
    """``(base) + (delta)``, or the base alone when the delta is zero."""
    if not delta or delta == "0":
        return base_rhs
    return f"({base_rhs}) + ({delta})"


def gaussian_weight(t_i: float, sigma: float, var: str = "t") -> str:
    return f"exp(-((({var})-({literal(t_i)}))/({literal(sigma)}))^2)"


def kernel_blend(deltas: Iterable[tuple[float, float]], sigma: float, var: str = "t") -> str:
    """Normalised Gaussian blend ``Σ d_i w_i / (Σ w_i + ε)`` as text.

    *deltas* holds ``(t_i, d_i)`` pairs; terms with a negligible displacement
    are dropped.  Returns ``"0"`` when nothing is left.
    """
    num_terms: list[str] = []
    den_terms: list[str] = []
    for t_i, d_i in deltas:
        if not (math.isfinite(t_i) and math.isfinite(d_i)):
            continue
        if abs(d_i) < KERNEL_TERM_EPS:
            continue
        w_i = gaussian_weight(t_i, sigma, var)
        num_terms.append(f"(({literal(d_i)})*({w_i}))")
        den_terms.append(f"({w_i})")
    if not num_terms:
        return "0"
    num = " + ".join(num_terms)
    den = f"{' + '.join(den_terms)} + ({literal(KERNEL_EPS)})"
    return f"(({num})/({den}))"


def axis_assignment(axis: str, base_rhs: str, delta: str, var: str = "t") -> str:
    return f"{axis}({var}) = (({base_rhs}) + ({delta}))"


# ===========================================================================
# LaTeX
# ===========================================================================

class LatexRenderer:
    """Renders formula text as display-math LaTeX.

    Parameters
    ----------
    decimals : int
        Digits after the decimal point for every float in the output.
    """

    def __init__(self, decimals: int = 3) -> None:
        self.decimals = max(0, min(10, int(decimals)))

    def _round_floats(self, expr: sp.Basic) -> sp.Basic:
        """Round every sp.Float leaf of *expr* to self.decimals places."""
        if isinstance(expr, sp.Float):
            return sp.Float(f"{float(expr):.{self.decimals}f}")
        if expr.args:
            return expr.func(*[self._round_floats(a) for a in expr.args])
        return expr

    def render(self, formula: str, variables: Sequence[str] = ("x",), lhs: str = "f(x)") -> str:
        try:
            expr = parse_expression(formula, variables)
        except (sp.SympifyError, SyntaxError, TokenError, TypeError, ValueError):
            return f"$${lhs} = \\text{{{formula}}}$$"
        return f"$${lhs} = {sp.latex(self._round_floats(expr))}$$"
