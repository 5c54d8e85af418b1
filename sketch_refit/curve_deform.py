"""
Local deformation of parametric 3D curves by Gaussian kernel blending.

Each control marker pins a displacement ``d_i = marker - base(t_i)`` at its
parameter ``t_i``.  The displacement at any ``t`` is the kernel-weighted
average of the pinned displacements, so edits fade out smoothly away from the
markers.  ``preview`` evaluates that blend numerically for every drag tick;
``bake`` writes it out as formula text so the edit survives as a formula.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Sequence

import numpy as np

from . import expression_builder as eb
from .config import KERNEL_EPS, DeformSettings
from .errors import InsufficientDataError, RefitError
from .evaluator import Evaluator, compile_vectorized, safe_value, strip_lhs
from .models import (
    AxisExprs,
    BakeResult,
    Curve3D,
    FloatArray,
    Marker,
    MarkerKind,
    Vec3,
)

logger = logging.getLogger(__name__)

AXES: tuple[str, str, str] = ("x", "y", "z")
ParamFunction = Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class Displacements:
    """Per-marker pinned displacements, one row per usable control marker."""
    t: FloatArray
    delta: FloatArray   # shape (n, 3)

    def __len__(self) -> int:
        return int(self.t.size)


def gaussian_weights(t: FloatArray, t_i: FloatArray, sigma: float) -> FloatArray:
    """``exp(-((t - t_i)/sigma)^2)`` with shape ``t.shape + (len(t_i),)``."""
    diff = (np.asarray(t, dtype=np.float64)[..., np.newaxis] - t_i) / sigma
    return np.exp(-(diff ** 2))


def kernel_delta(t: Any, disp: Displacements, sigma: float) -> FloatArray:
    """Blended displacement at *t*: ``Σ d_i w_i / (Σ w_i + ε)`` for every axis."""
    w = gaussian_weights(t, disp.t, sigma)
    num = w @ disp.delta
    den = np.sum(w, axis=-1, keepdims=True) + KERNEL_EPS
    return num / den


def _evaluate_axis(f: ParamFunction, t: FloatArray) -> FloatArray:
    """*f* over the array *t*.

    Evaluators that only take scalars (or raise on arrays) are called once per
    sample instead.
    """
    try:
        out = np.asarray(f(t), dtype=np.float64)
    except (ArithmeticError, TypeError, ValueError):
        out = None
    if out is None or out.shape != t.shape:
        flat = [safe_value(f, float(v)) for v in t.ravel()]
        out = np.asarray(flat, dtype=np.float64).reshape(t.shape)
    return out


class DeformedCurve:
    """Live preview of a curve under its current control markers.

    With fewer than two usable control markers the preview is the base
    curve itself.
    """

    def __init__(self, base: Sequence[ParamFunction], disp: Displacements,
                 sigma: float, t_range: tuple[float, float], sample_count: int = 400) -> None:
        self._base = tuple(base)
        self._disp = disp
        self._sigma = sigma
        self.t_range = t_range
        self.sample_count = sample_count
        self.active = len(disp) >= 2

    def base_at(self, t: Any) -> FloatArray:
        t_arr = np.asarray(t, dtype=np.float64)
        return np.stack([_evaluate_axis(f, t_arr) for f in self._base], axis=-1)

    def evaluate(self, t: Any) -> FloatArray:
        """Deformed ``(x, y, z)`` at *t* (scalar -> shape (3,), array -> (n, 3))."""
        base = self.base_at(t)
        if not self.active:
            return base
        return base + kernel_delta(t, self._disp, self._sigma)

    def axis(self, name: str) -> Callable[[float], float]:
        idx = AXES.index(name)

        def fn(t: float) -> float:
            return float(self.evaluate(t)[idx])
        return fn

    def sample(self, n: Optional[int] = None) -> FloatArray:
        """``n`` points (default: the curve's sample count) across the parameter range.

        Rows with a non-finite axis are dropped.
        """
        t_min, t_max = self.t_range
        count = self.sample_count if n is None else n
        ts = np.linspace(t_min, t_max, max(2, int(count)))
        pts = self.evaluate(ts)
        return pts[np.all(np.isfinite(pts), axis=1)]


class CurveDeformationEngine:

    def __init__(self, compile_fn: Evaluator = compile_vectorized) -> None:
        self._compile = compile_fn

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def settings_for(curve: Curve3D) -> DeformSettings:
        return DeformSettings(sigma=curve.deform_sigma, max_delta=curve.max_delta)

    def base_functions(self, exprs: AxisExprs) -> tuple[ParamFunction, ParamFunction, ParamFunction]:
        fx, fy, fz = (self._compile(e or "0", ("t",)) for e in exprs.as_tuple())
        return fx, fy, fz

    @staticmethod
    def control_markers(markers: Sequence[Marker]) -> list[Marker]:
        return [m for m in markers if m.has_param and m.kind is MarkerKind.CONTROL]

    @staticmethod
    def _base_point(base: Sequence[ParamFunction], t: float) -> Optional[np.ndarray]:
        p = np.array([safe_value(f, t) for f in base], dtype=np.float64)
        return p if np.all(np.isfinite(p)) else None

    def displacements(self, markers: Sequence[Marker],
                      base: Sequence[ParamFunction]) -> Displacements:
        ts: list[float] = []
        rows: list[np.ndarray] = []
        for m in self.control_markers(markers):
            b = self._base_point(base, float(m.t))
            if b is None:
                continue
            # missing coordinates sit on the base curve (zero displacement)
            target = np.array(
                [b[k] if v is None else float(v) for k, v in enumerate((m.x, m.y, m.z))]
            )
            ts.append(float(m.t))
            rows.append(target - b)
        if not rows:
            return Displacements(t=np.empty(0), delta=np.empty((0, 3)))
        return Displacements(t=np.asarray(ts), delta=np.vstack(rows))

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def preview(self, curve: Curve3D) -> DeformedCurve:
        base = self.base_functions(curve.base_exprs)
        disp = self.displacements(curve.markers, base)
        return DeformedCurve(base, disp, self.settings_for(curve).bandwidth, curve.param_range,
                             curve.sample_count)

    def clamp_position(self, curve: Curve3D, marker: Marker, position: Vec3) -> Vec3:
        """Cap the displacement from the base curve at ``max_delta``.

        Markers without a parameter, a disabled limit or a non-finite base
        value leave *position* as it is.
        """
        md = curve.max_delta
        if not marker.has_param or not math.isfinite(md) or md <= 0:
            return position
        b = self._base_point(self.base_functions(curve.base_exprs), float(marker.t))
        if b is None:
            return position
        d = np.asarray(position, dtype=np.float64) - b
        length = float(np.linalg.norm(d))
        if length <= md:
            return position
        clamped = b + d * (md / length)
        return (float(clamped[0]), float(clamped[1]), float(clamped[2]))

    def update_marker(self, curve: Curve3D, marker_id: str, position: Vec3) -> Curve3D:
        """New curve with marker *marker_id* dragged to *position* (after clamping)."""
        markers = []
        for m in curve.markers:
            if m.id == marker_id:
                x, y, z = self.clamp_position(curve, m, position)
                m = m.moved_to(x, y, z)
            markers.append(m)
        return replace(curve, markers=tuple(markers))

    # ------------------------------------------------------------------
    # Bake
    # ------------------------------------------------------------------

    def bake(self, curve: Curve3D, base_exprs: Optional[AxisExprs] = None) -> BakeResult:
        exprs = base_exprs or curve.base_exprs
        base = self.base_functions(exprs)
        try:
            if len(self.control_markers(curve.markers)) < 2:
                raise InsufficientDataError("Curve deformation needs at least 2 control markers.")
            disp = self.displacements(curve.markers, base)
            if len(disp) < 2:
                raise InsufficientDataError(
                    "Curve deformation needs at least 2 control markers on a defined part of the curve."
                )
        except RefitError as exc:
            logger.debug("bake skipped: %s", exc.message)
            return BakeResult(ok=False, reason=exc.message, error=exc.kind)

        sigma = self.settings_for(curve).bandwidth
        baked = []
        for k, (axis, expr) in enumerate(zip(AXES, exprs.as_tuple())):
            blend = eb.kernel_blend(zip(disp.t.tolist(), disp.delta[:, k].tolist()), sigma)
            baked.append(eb.axis_assignment(axis, strip_lhs(expr) or "0", blend))
        return BakeResult(ok=True, exprs=AxisExprs(*baked))

    def commit(self, curve: Curve3D) -> tuple[Curve3D, BakeResult]:
        """Bake on drag release; the baked formulas become the curve's edit formulas."""
        res = self.bake(curve)
        if not res.ok or res.exprs is None:
            return curve, res
        return replace(curve, edit_exprs=res.exprs), res
