"""
Regularised delta-polynomial refitting of 3D surfaces.

Dragged markers say where the surface should pass; the base expression is
kept and a low-degree polynomial correction ``delta(x, y)`` is fitted to the
marker residuals.  A lattice of zero-residual anchor rows spanning the domain
keeps the correction close to zero away from the edited region, and a small
ridge term keeps the normal equations well conditioned.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import replace
from typing import Callable, Mapping, Optional, Sequence

import numpy as np

from . import expression_builder as eb
from .config import SurfaceFitSettings
from .errors import DomainViolationError, InsufficientDataError, RefitError, SingularSystemError
from .evaluator import Evaluator, compile_expression, guarded, safe_value, strip_lhs
from .linalg import solve_normal_equations
from .models import (
    FloatArray,
    Marker,
    Surface3D,
    SurfaceDomain,
    SurfaceFitResult,
    SurfaceFunction,
)
from .preprocessing import lattice

logger = logging.getLogger(__name__)

MIN_DEGREE = 1
MAX_DEGREE = 6

Basis = list[tuple[int, int]]


def clamp_degree(degree: object) -> int:
    """``max(1, min(6, floor(degree)))``; missing or invalid degrees become 2."""
    try:
        d = float(degree)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        d = 2.0
    if not math.isfinite(d) or d == 0:
        d = 2.0
    return max(MIN_DEGREE, min(MAX_DEGREE, int(math.floor(d))))


def monomial_basis(degree: int) -> Basis:
    """Exponent pairs ``(i, j)`` with ``i + j <= degree``, i outer, j inner."""
    return [(i, j) for i in range(degree + 1) for j in range(degree - i + 1)]


def design_matrix(x: FloatArray, y: FloatArray, basis: Basis) -> FloatArray:
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    return np.column_stack([x ** i * y ** j for i, j in basis])


def usable_markers(markers: Sequence[Marker]) -> list[tuple[float, float, float]]:
    pts = []
    for m in markers:
        if m.x is None or m.y is None or m.z is None:
            continue
        p = (float(m.x), float(m.y), float(m.z))
        if all(math.isfinite(v) for v in p):
            pts.append(p)
    return pts


def anchor_points(domain: SurfaceDomain, grid: int) -> tuple[FloatArray, FloatArray]:
    """``grid × grid`` lattice over *domain*, y outer, x inner."""
    xs = lattice(domain.x_min, domain.x_max, grid)
    ys = lattice(domain.y_min, domain.y_max, grid)
    gx, gy = np.meshgrid(xs, ys)
    return gx.ravel(), gy.ravel()


def evaluate_delta(coefficients: Mapping[tuple[int, int], float]) -> SurfaceFunction:
    """Numeric form of a fitted delta, for checks and previews."""
    items = [(i, j, float(c)) for (i, j), c in coefficients.items()]

    def fn(x: float, y: float) -> float:
        return float(sum(c * x ** i * y ** j for i, j, c in items))
    return fn


class SurfaceDeltaFitEngine:
    """Fits ``delta(x, y)`` so that ``base + delta`` passes near the markers."""

    def __init__(self, settings: Optional[SurfaceFitSettings] = None,
                 compile_fn: Evaluator = compile_expression) -> None:
        self.settings = settings or SurfaceFitSettings()
        self._compile = compile_fn

    def _rows(self, pts: Sequence[tuple[float, float, float]], base_fn: SurfaceFunction,
              domain: Optional[SurfaceDomain]) -> tuple[FloatArray, FloatArray, FloatArray, FloatArray]:
        s = self.settings
        x = [p[0] for p in pts]
        y = [p[1] for p in pts]
        r = [p[2] - safe_value(base_fn, p[0], p[1]) for p in pts]
        w = [s.marker_weight] * len(pts)

        if domain is not None and domain.is_finite:
            ax, ay = anchor_points(domain, s.anchor_lattice)
            x.extend(ax.tolist())
            y.extend(ay.tolist())
            r.extend([0.0] * ax.size)
            w.extend([s.anchor_weight] * ax.size)

        weights = np.maximum(s.min_weight, np.asarray(w, dtype=np.float64))
        return (np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64),
                np.asarray(r, dtype=np.float64), weights)

    def _solve(self, markers: Sequence[Marker], degree: int, base_fn: SurfaceFunction,
               domain: Optional[SurfaceDomain]) -> dict[tuple[int, int], float]:
        pts = usable_markers(markers)
        if not pts:
            raise InsufficientDataError("Surface fit needs at least 1 marker with x, y and z.")

        x, y, r, w = self._rows(pts, base_fn, domain)
        if not np.all(np.isfinite(r)):
            raise DomainViolationError("Base surface is undefined at a marker position.")

        basis = monomial_basis(degree)
        coef = solve_normal_equations(design_matrix(x, y, basis), r, w,
                                      ridge=self.settings.ridge_lambda)
        return {ij: float(c) for ij, c in zip(basis, coef)}

    def fit_delta(self, markers: Sequence[Marker], degree: object = 2,
                  base_fn: Optional[SurfaceFunction] = None,
                  domain: Optional[SurfaceDomain] = None,
                  base_expr: str = "0") -> SurfaceFitResult:
        d = clamp_degree(degree)
        base = guarded(base_fn) if base_fn is not None else (lambda _x, _y: 0.0)
        try:
            coefficients = self._solve(markers, d, base, domain)
        except RefitError as exc:
            logger.debug("surface fit rejected: %s", exc.message)
            return SurfaceFitResult(ok=False, degree=d, reason=exc.message, error=exc.kind)
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as exc:
            logger.debug("surface fit failed: %s", exc)
            return SurfaceFitResult(ok=False, degree=d, reason=f"Surface fit failed: {exc}",
                                    error=SingularSystemError.kind)

        delta_expr = eb.polynomial_2d(coefficients)
        base_rhs = strip_lhs(base_expr) or "0"
        expr = eb.add_delta(base_rhs, delta_expr)
        delta_fn = evaluate_delta(coefficients)

        def fn(x: float, y: float) -> float:
            return base(x, y) + delta_fn(x, y)

        logger.debug("surface fit degree %d: %s", d, delta_expr)
        return SurfaceFitResult(
            ok=True,
            expr=expr,
            delta_expr=delta_expr,
            degree=d,
            coefficients=coefficients,
            fn=fn,
        )

    def fit_surface(self, surface: Surface3D,
                    markers: Optional[Sequence[Marker]] = None) -> tuple[Surface3D, SurfaceFitResult]:
        """Refit *surface* from its markers (or *markers*).

        On success the returned surface carries the composed expression; on
        failure it is the input unchanged.
        """
        ms = tuple(markers) if markers is not None else surface.markers
        base_rhs = strip_lhs(surface.expr) or "0"
        res = self.fit_delta(ms, surface.degree, self._compile(base_rhs, ("x", "y")),
                             surface.domain, base_rhs)
        if not res.ok or res.expr is None:
            return surface, res
        return replace(surface, expr=res.expr, markers=ms), res


def fit_surface_delta(markers: Sequence[Marker], degree: object,
                      base_fn: Optional[SurfaceFunction], domain: Optional[SurfaceDomain],
                      settings: Optional[SurfaceFitSettings] = None,
                      base_expr: str = "0") -> SurfaceFitResult:
    return SurfaceDeltaFitEngine(settings).fit_delta(markers, degree, base_fn, domain, base_expr)


class SurfacePreviewSession:
    """Throttled refitting for one drag gesture on a surface.

    ``drag`` fits at most once per ``preview_interval`` (leading edge); a
    snapshot that arrives too early is held and ``flush`` runs it once the
    interval has elapsed.  ``release`` always fits and commits.

    Parameters
    ----------
    surface : Surface3D
        Surface being edited; replaced by the committed surface on release.
    clock : callable
        Monotonic time source in seconds.
    """

    def __init__(self, surface: Surface3D, engine: Optional[SurfaceDeltaFitEngine] = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.surface = surface
        self.engine = engine or SurfaceDeltaFitEngine()
        self.interval = self.engine.settings.preview_interval
        self._clock = clock
        self._last_fit: Optional[float] = None
        self._pending: Optional[tuple[Marker, ...]] = None
        self.preview: Optional[SurfaceFitResult] = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def _due(self, now: float) -> bool:
        return self._last_fit is None or now - self._last_fit >= self.interval

    def time_until_flush(self) -> float:
        """Seconds the caller should wait before calling ``flush``."""
        if self._pending is None or self._last_fit is None:
            return 0.0
        return max(0.0, self.interval - (self._clock() - self._last_fit))

    def _run(self, markers: Sequence[Marker], now: float) -> SurfaceFitResult:
        self._last_fit = now
        _, res = self.engine.fit_surface(self.surface, markers)
        if res.ok:
            self.preview = res
        return res

    def drag(self, markers: Sequence[Marker]) -> Optional[SurfaceFitResult]:
        now = self._clock()
        ms = tuple(markers)
        if self._due(now):
            self._pending = None
            return self._run(ms, now)
        self._pending = ms
        return None

    def flush(self) -> Optional[SurfaceFitResult]:
        if self._pending is None:
            return None
        now = self._clock()
        if not self._due(now):
            return None
        ms, self._pending = self._pending, None
        return self._run(ms, now)

    def release(self, markers: Sequence[Marker]) -> SurfaceFitResult:
        self._pending = None
        self.preview = None
        new_surface, res = self.engine.fit_surface(self.surface, tuple(markers))
        if res.ok:
            self.surface = new_surface
        else:
            logger.warning("surface fit failed: %s", res.reason)
        self._last_fit = None
        return res
