"""
Expression evaluation: text formula -> numeric function.

Formulas arrive as user-typed or machine-baked text (``y = 2x^2``,
``x(t) = ((cos(t)) + (...))``) and are compiled once with sympy, then
evaluated through numpy.  Undefined results come back as ``nan``; nothing
raised during evaluation leaks to the caller.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from tokenize import TokenError
from typing import Any, Callable, Protocol, Sequence

import numpy as np
import sympy as sp
from sympy.parsing.sympy_parser import (
    convert_xor,
    implicit_multiplication_application,
    parse_expr,
    standard_transformations,
)

from .models import FloatArray

logger = logging.getLogger(__name__)

_TRANSFORMATIONS = standard_transformations + (
    implicit_multiplication_application,
    convert_xor,
)

# ((x(t)=BASE) + (REST))  ->  ((BASE) + (REST))
_NESTED_ASSIGN = re.compile(
    r"^\(\(\s*[xyz]\(t\)\s*=\s*([\s\S]*?)\)\s*\+\s*\(([\s\S]+)\)\)\s*$"
)
_E_POWER_BRACES = re.compile(r"e\s*\^\s*\{([^}]+)\}", re.IGNORECASE)


class Evaluator(Protocol):
    """``compile(expr, variables) -> fn``; *fn* returns nan for undefined values."""

    def __call__(self, expr: str, variables: Sequence[str]) -> Callable[..., Any]: ...


def safe_value(fn: Callable[..., object], *args: float) -> float:
    """``float(fn(*args))``, with a raising call counted as an undefined sample."""
    try:
        return float(fn(*args))  # type: ignore[arg-type]
    except (ArithmeticError, TypeError, ValueError):
        return float("nan")


def guarded(fn: Callable[..., object]) -> Callable[..., float]:
    """Wrap a caller-supplied function so it never raises; see :func:`safe_value`."""
    def evaluate(*args: float) -> float:
        return safe_value(fn, *args)
    return evaluate


def strip_lhs(expr: str) -> str:
    """Right-hand side of ``lhs = rhs``; the text itself when there is no ``=``."""
    s = str(expr or "").strip()
    if "=" in s:
        s = s.split("=")[-1].strip()
    return s


def normalize_expression(expr: str) -> str:
    s = str(expr or "").strip()
    m = _NESTED_ASSIGN.match(s)
    if m:
        base = m.group(1).strip() or "0"
        rest = m.group(2).strip() or "0"
        s = f"(({base}) + ({rest}))"
    s = strip_lhs(s)
    s = _E_POWER_BRACES.sub(r"exp(\1)", s)
    return s or "0"


@lru_cache(maxsize=256)
def _parse(text: str, variables: tuple[str, ...]) -> sp.Expr:
    local_dict: dict[str, object] = {name: sp.Symbol(name) for name in variables}
    local_dict.setdefault("e", sp.E)
    local_dict.setdefault("pi", sp.pi)
    local_dict.setdefault("ln", sp.log)
    expr = parse_expr(text, local_dict=local_dict, transformations=_TRANSFORMATIONS)
    unknown = {str(s) for s in expr.free_symbols} - set(variables)
    if unknown:
        raise ValueError(f"unknown symbols {sorted(unknown)} in '{text}'")
    return expr


def parse_expression(expr: str, variables: Sequence[str] = ("x",)) -> sp.Expr:
    """Parse formula text into a sympy expression over *variables*."""
    return _parse(normalize_expression(expr), tuple(variables))


def _nan_function() -> Callable[..., float]:
    def evaluate(*args: float) -> float:
        return float("nan")
    return evaluate


def compile_expression(expr: str, variables: Sequence[str] = ("x",)) -> Callable[..., float]:
    """Compile *expr* into a scalar function of *variables*.

    The returned callable yields ``nan`` for undefined or non-finite results
    and when evaluation raises.  Unparsable text compiles to a function that
    always returns ``nan``.
    """
    names = tuple(variables)
    try:
        sym_expr = parse_expression(expr, names)
        compiled = sp.lambdify([sp.Symbol(n) for n in names], sym_expr, modules="numpy")
    except (sp.SympifyError, SyntaxError, TypeError, ValueError, TokenError) as exc:
        logger.warning("Could not parse expression %r: %s", expr, exc)
        return _nan_function()

    def evaluate(*args: float) -> float:
        try:
            with np.errstate(all="ignore"):
                value = compiled(*args)
            out = complex(value)
        except (ArithmeticError, TypeError, ValueError, NameError, AttributeError):
            return float("nan")
        if out.imag != 0.0:
            return float("nan")
        result = out.real
        return result if np.isfinite(result) else float("nan")

    return evaluate


def compile_vectorized(expr: str, variables: Sequence[str] = ("x",)) -> Callable[..., FloatArray]:
    """Array-in/array-out variant of :func:`compile_expression` for dense sampling."""
    names = tuple(variables)
    try:
        sym_expr = parse_expression(expr, names)
        compiled = sp.lambdify([sp.Symbol(n) for n in names], sym_expr, modules="numpy")
    except (sp.SympifyError, SyntaxError, TypeError, ValueError, TokenError) as exc:
        logger.warning("Could not parse expression %r: %s", expr, exc)
        compiled = None

    def evaluate(*args: FloatArray) -> FloatArray:
        arrays = np.broadcast_arrays(*[np.asarray(a, dtype=np.float64) for a in args])
        shape = arrays[0].shape if arrays else ()
        if compiled is None:
            return np.full(shape, np.nan)
        try:
            with np.errstate(all="ignore"):
                raw = np.asarray(compiled(*arrays))
        except (ArithmeticError, TypeError, ValueError, NameError, AttributeError):
            return np.full(shape, np.nan)
        if np.iscomplexobj(raw):
            raw = np.where(np.imag(raw) == 0, np.real(raw), np.nan)
        out = np.array(np.broadcast_to(raw, shape), dtype=np.float64)
        out[~np.isfinite(out)] = np.nan
        return out

    return evaluate


def make_param_fn(expr: str, param: str = "t") -> Callable[[float], float]:
    return compile_expression(expr, (param,))


def make_surface_fn(expr: str) -> Callable[[float, float], float]:
    return compile_expression(expr, ("x", "y"))
