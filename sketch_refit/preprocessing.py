import math
from typing import Callable, Iterable, Optional, Sequence, Tuple

import numpy as np

from .models import FloatArray, Point2D, SurfaceDomain


def clamp(v: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, v))


def points_to_arrays(points: Sequence[Point2D]) -> Tuple[np.ndarray, np.ndarray]:
    x = np.array([p.x for p in points], dtype=np.float64)
    y = np.array([p.y for p in points], dtype=np.float64)
    return x, y


def finite_points(points: Iterable[Point2D]) -> Tuple[Point2D, ...]:
    return tuple(p for p in points if math.isfinite(p.x) and math.isfinite(p.y))


def snap_points(points: Sequence[Point2D], fn: Optional[Callable[[float], float]],
                xmin: float, xmax: float) -> Tuple[Point2D, ...]:
    """Clamp every x into [xmin, xmax] and move y onto the fitted curve.

    A non-finite fitted value lands at y = 0.  Points that are themselves
    undefined were not fitted and are kept as they are.
    """
    snapped = []
    for p in points:
        if not (math.isfinite(p.x) and math.isfinite(p.y)):
            snapped.append(p)
            continue
        x = clamp(p.x, xmin, xmax)
        y = fn(x) if fn is not None else p.y
        snapped.append(Point2D(x=x, y=y if math.isfinite(y) else 0.0))
    return tuple(snapped)


def uniform_samples(lo: float, hi: float, intervals: int) -> FloatArray:
    """``intervals + 1`` evenly spaced points covering [lo, hi] inclusive."""
    intervals = max(1, int(intervals))
    return lo + (hi - lo) * (np.arange(intervals + 1, dtype=np.float64) / intervals)


def lattice(lo: float, hi: float, n: int) -> FloatArray:
    """``n`` evenly spaced points on [lo, hi]; a single point sits at the middle."""
    if n <= 1:
        return np.array([0.5 * (lo + hi)], dtype=np.float64)
    return lo + (hi - lo) * (np.arange(n, dtype=np.float64) / (n - 1))


def surface_lattice(domain: SurfaceDomain, nx: int, ny: int) -> Tuple[FloatArray, FloatArray]:
    """Row-major (y outer, x inner) flattened sample coordinates over *domain*."""
    xs = lattice(domain.x_min, domain.x_max, nx)
    ys = lattice(domain.y_min, domain.y_max, ny)
    gx, gy = np.meshgrid(xs, ys)
    return gx.ravel(), gy.ravel()
