"""
Sampling-based numeric analysis over 1D functions, parametric curves and
surfaces: extrema, roots, intersections, level sets, tangents and closest
points.

Everything here works by dense uniform sampling followed, for roots, by
bisection refinement.  Undefined samples (``nan``/``inf``) are skipped.
"""

from __future__ import annotations

import math
from typing import Callable, Literal, Optional, Sequence

import numpy as np

from .config import ROOT_DEDUP_DIST
from .evaluator import guarded, safe_value
from .models import FloatArray, ScalarFunction, SurfaceDomain, SurfaceFunction, Vec3
from .preprocessing import lattice, surface_lattice, uniform_samples

ExtremumKind = Literal["max", "min"]


def _sample(fn: Callable[[float], float], xs: FloatArray) -> FloatArray:
    return np.array([safe_value(fn, float(x)) for x in xs], dtype=np.float64)


def _sample_2d(fn: SurfaceFunction, xs: FloatArray, ys: FloatArray) -> FloatArray:
    return np.array([safe_value(fn, float(x), float(y)) for x, y in zip(xs, ys)],
                    dtype=np.float64)


def _best_index(values: FloatArray, kind: ExtremumKind) -> Optional[int]:
    """Index of the first best finite value, or None when nothing is finite."""
    finite = np.isfinite(values)
    if not finite.any():
        return None
    if kind == "min":
        masked = np.where(finite, values, np.inf)
        return int(np.argmin(masked))
    masked = np.where(finite, values, -np.inf)
    return int(np.argmax(masked))


def _ordered_bounds(lo: float, hi: float) -> Optional[tuple[float, float]]:
    lo, hi = float(lo), float(hi)
    if not (math.isfinite(lo) and math.isfinite(hi)) or lo == hi:
        return None
    return min(lo, hi), max(lo, hi)


# ===========================================================================
# 1D
# ===========================================================================

def sample_extremum(fn: Optional[ScalarFunction], lo: float, hi: float, samples: int = 2500,
                    kind: ExtremumKind = "max") -> Optional[tuple[float, float]]:
    """Best ``(x, f(x))`` over ``samples + 1`` evenly spaced points on [lo, hi].

    Ties keep the earliest sample.  Returns None for an empty or non-finite
    interval or when no sample is defined.
    """
    bounds = _ordered_bounds(lo, hi)
    if fn is None or bounds is None:
        return None
    xs = uniform_samples(bounds[0], bounds[1], samples)
    ys = _sample(fn, xs)
    idx = _best_index(ys, kind)
    if idx is None:
        return None
    return float(xs[idx]), float(ys[idx])


def bisect_root(fn: ScalarFunction, a: float, b: float, max_iter: int = 60,
                tol: float = 1e-6) -> Optional[float]:
    fn = guarded(fn)
    fa, fb = fn(a), fn(b)
    if not (math.isfinite(fa) and math.isfinite(fb)):
        return None
    if fa == 0:
        return a
    if fb == 0:
        return b
    if fa * fb > 0:
        return None

    lo, hi = a, b
    for _ in range(max_iter):
        mid = 0.5 * (lo + hi)
        fm = fn(mid)
        if not math.isfinite(fm):
            return None
        if abs(fm) < tol:
            return mid
        if fa * fm <= 0:
            hi = mid
        else:
            lo, fa = mid, fm
    return 0.5 * (lo + hi)


def dedupe_sorted(values: Sequence[float], min_gap: float = ROOT_DEDUP_DIST) -> list[float]:
    out: list[float] = []
    for v in sorted(values):
        if not out or abs(v - out[-1]) > min_gap:
            out.append(v)
    return out


def find_roots(fn: ScalarFunction, lo: float, hi: float, samples: int = 2500,
               max_roots: int = 12, max_iter: int = 60, tol: float = 1e-6) -> list[float]:
    """Zeros of *fn* on [lo, hi], sorted and de-duplicated.

    Sign changes between consecutive samples are refined by bisection; exact
    zeros at sample points are taken as they are.  Collection stops once
    *max_roots* candidates are found.
    """
    bounds = _ordered_bounds(lo, hi)
    if bounds is None:
        return []
    xs = uniform_samples(bounds[0], bounds[1], samples)
    ys = _sample(fn, xs)

    roots: list[float] = []
    for k in range(1, xs.size):
        x0, x1 = float(xs[k - 1]), float(xs[k])
        y0, y1 = ys[k - 1], ys[k]
        if math.isfinite(y0) and math.isfinite(y1):
            if y0 == 0:
                roots.append(x0)
            elif y1 == 0:
                roots.append(x1)
            elif y0 * y1 < 0:
                r = bisect_root(fn, x0, x1, max_iter, tol)
                if r is not None:
                    roots.append(r)
        if len(roots) >= max_roots:
            break
    return dedupe_sorted(roots)[:max_roots]


def find_intersections(f: ScalarFunction, g: ScalarFunction, lo: float, hi: float,
                       samples: int = 2500, max_roots: int = 12) -> list[float]:
    """x positions where ``f(x) == g(x)`` on [lo, hi]."""
    return find_roots(lambda x: f(x) - g(x), lo, hi, samples, max_roots)


# ===========================================================================
# Parametric curves
# ===========================================================================

def tangent_at(x_t: ScalarFunction, y_t: ScalarFunction, z_t: ScalarFunction, t0: float,
               t_range: tuple[float, float], dt: float = 1e-3) -> Vec3:
    """Central-difference tangent at *t0*, with both stencil points kept inside *t_range*."""
    t_min, t_max = min(t_range), max(t_range)
    dt = max(1e-6, dt)
    x_t, y_t, z_t = guarded(x_t), guarded(y_t), guarded(z_t)
    t_a = max(t_min, min(t_max, t0 - dt))
    t_b = max(t_min, min(t_max, t0 + dt))
    denom = max(1e-12, t_b - t_a)
    return (
        (x_t(t_b) - x_t(t_a)) / denom,
        (y_t(t_b) - y_t(t_a)) / denom,
        (z_t(t_b) - z_t(t_a)) / denom,
    )


def closest_point_on_curve(x_t: ScalarFunction, y_t: ScalarFunction, z_t: ScalarFunction,
                           t_range: tuple[float, float], point: Vec3,
                           samples: int = 800) -> Optional[tuple[float, float]]:
    """``(t, distance)`` of the sampled curve point nearest to *point*."""
    px, py, pz = point

    def dist2(t: float) -> float:
        dx, dy, dz = x_t(t) - px, y_t(t) - py, z_t(t) - pz
        return dx * dx + dy * dy + dz * dz

    best = sample_extremum(dist2, t_range[0], t_range[1], samples, "min")
    if best is None:
        return None
    t, d2 = best
    return t, math.sqrt(max(0.0, d2))


# ===========================================================================
# Surfaces
# ===========================================================================

def _grid(domain: SurfaceDomain, nx: int, ny: int) -> Optional[tuple[FloatArray, FloatArray]]:
    if not domain.is_finite:
        return None
    return surface_lattice(domain, max(2, int(nx)), max(2, int(ny)))


def sample_surface_extremum(fn: Optional[SurfaceFunction], domain: SurfaceDomain, nx: int = 60,
                            ny: int = 60, kind: ExtremumKind = "max") -> Optional[Vec3]:
    grid = _grid(domain, nx, ny)
    if fn is None or grid is None:
        return None
    xs, ys = grid
    zs = _sample_2d(fn, xs, ys)
    idx = _best_index(zs, kind)
    if idx is None:
        return None
    return float(xs[idx]), float(ys[idx]), float(zs[idx])


def surface_level_points(fn: SurfaceFunction, domain: SurfaceDomain, level: float = 0.0,
                         nx: int = 80, ny: int = 80, eps: float = 1e-2, max_points: int = 12,
                         dedup_dist: float = 0.25) -> list[Vec3]:
    """Grid points where ``|f(x, y) - level| <= eps``, closest to the level first.

    A candidate is kept only if it is more than *dedup_dist* (in the xy-plane)
    from every point already picked.
    """
    grid = _grid(domain, nx, ny)
    if grid is None:
        return []
    xs, ys = grid
    zs = _sample_2d(fn, xs, ys)
    gap = np.abs(zs - level)
    hits = np.flatnonzero(np.isfinite(gap) & (gap <= eps))
    order = hits[np.argsort(gap[hits], kind="stable")]

    picked: list[Vec3] = []
    for k in order:
        if len(picked) >= max_points:
            break
        x, y = float(xs[k]), float(ys[k])
        if all(math.hypot(x - qx, y - qy) > dedup_dist for qx, qy, _ in picked):
            picked.append((x, y, float(zs[k])))
    return picked


def closest_point_on_surface(fn: SurfaceFunction, domain: SurfaceDomain, point: Vec3,
                             nx: int = 80, ny: int = 80) -> Optional[tuple[Vec3, float]]:
    """Grid point of the surface nearest to *point*, with its distance."""
    grid = _grid(domain, nx, ny)
    if grid is None:
        return None
    xs, ys = grid
    zs = _sample_2d(fn, xs, ys)
    px, py, pz = point
    d2 = (xs - px) ** 2 + (ys - py) ** 2 + (zs - pz) ** 2
    idx = _best_index(d2, "min")
    if idx is None:
        return None
    return (float(xs[idx]), float(ys[idx]), float(zs[idx])), math.sqrt(float(d2[idx]))


def slice_surface(fn: SurfaceFunction, domain: SurfaceDomain, axis: str, value: float,
                  count: int = 11) -> list[Vec3]:
    """Evenly spaced surface points along the section line ``axis = value``."""
    if not domain.is_finite or not math.isfinite(value):
        return []
    n = max(2, int(count))
    if axis == "x":
        along = lattice(domain.y_min, domain.y_max, n)
        pts = [(float(value), float(s)) for s in along]
    elif axis == "y":
        along = lattice(domain.x_min, domain.x_max, n)
        pts = [(float(s), float(value)) for s in along]
    else:
        raise ValueError(f"slice axis must be 'x' or 'y', got {axis!r}")

    out: list[Vec3] = []
    for x, y in pts:
        z = safe_value(fn, x, y)
        if math.isfinite(z):
            out.append((x, y, z))
    return out
