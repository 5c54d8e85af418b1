"""
Dense linear algebra used by the polynomial and surface fits.

Normal-equation systems here are small (at most 28 unknowns for a degree-6
surface), so everything stays dense and is solved through an LU
factorisation.
"""

from __future__ import annotations

import warnings

import numpy as np
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve

from .errors import SingularSystemError
from .models import FloatArray


def identity(n: int) -> FloatArray:
    return np.eye(n, dtype=np.float64)


def transpose(a: FloatArray) -> FloatArray:
    return np.asarray(a).T


def multiply(a: FloatArray, b: FloatArray) -> FloatArray:
    return np.asarray(a) @ np.asarray(b)


def vandermonde(x: FloatArray, degree: int) -> FloatArray:
    """Columns ``x^0 .. x^degree`` (increasing powers)."""
    return np.vander(np.asarray(x, dtype=np.float64), degree + 1, increasing=True)


def lu_solve_system(a: FloatArray, b: FloatArray) -> FloatArray:
    """Solve ``a @ x = b`` by LU with partial pivoting.

    Raises SingularSystemError for a zero pivot, non-finite input or a
    non-finite solution.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise SingularSystemError(f"expected a square matrix, got shape {a.shape}")
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", LinAlgWarning)
            lu, piv = lu_factor(a)
            if np.any(np.diag(lu) == 0.0):
                raise SingularSystemError("linear system is singular")
            x = lu_solve((lu, piv), b)
    except (ValueError, np.linalg.LinAlgError) as exc:
        raise SingularSystemError(f"linear solve failed: {exc}") from exc
    if not np.all(np.isfinite(x)):
        raise SingularSystemError("linear solve produced non-finite coefficients")
    return np.asarray(x, dtype=np.float64)


def solve_normal_equations(
    design: FloatArray,
    target: FloatArray,
    weights: FloatArray | None = None,
    ridge: float = 0.0,
) -> FloatArray:
    """Least squares via ``(AᵀWA + λI) c = AᵀW r``.

    ``weights`` is the diagonal of W; ``None`` means unit weights.
    """
    a = np.asarray(design, dtype=np.float64)
    r = np.asarray(target, dtype=np.float64)
    at = transpose(a)
    if weights is not None:
        # AᵀW without materialising the N×N diagonal matrix
        at = at * np.asarray(weights, dtype=np.float64)[np.newaxis, :]
    lhs = multiply(at, a)
    if ridge:
        lhs = lhs + ridge * identity(lhs.shape[0])
    rhs = multiply(at, r)
    return lu_solve_system(lhs, rhs)
