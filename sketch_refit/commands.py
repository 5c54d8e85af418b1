"""
Structured graph commands -> marker sets.

A command is ``{action, target, args}``; a batch of commands is applied to one
graph entity and produces the entity's new marker list (and, for
``fit_from_markers``, refitted expressions).  Dispatch is keyed on the action
and the entity's variant; a combination without a handler is logged and
skipped.
"""

from __future__ import annotations

import itertools
import logging
import math
import re
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from . import analysis as na
from .config import AnalysisSettings
from .curve_deform import CurveDeformationEngine
from .errors import UnsupportedCommandError
from .evaluator import Evaluator, compile_expression, guarded
from .fitting import fit_display_polynomial
from .models import (
    BakeResult,
    Command,
    Curve3D,
    Equation,
    GraphEntity,
    Marker,
    MarkerKind,
    Surface3D,
    SurfaceFitResult,
    Vec3,
    graph_type,
    parse_commands,
)
from .surface_fit import SurfaceDeltaFitEngine

logger = logging.getLogger(__name__)

ALIASES: dict[str, str] = {
    "find_max": "mark_max",
    "find_min": "mark_min",
    "find_roots": "mark_roots",
    "find_intersections": "mark_intersections",
    "recalculate_from_markers": "fit_from_markers",
}

SUPPORTED: dict[str, frozenset[str]] = {
    "equation": frozenset({
        "mark_max", "mark_min", "mark_roots", "mark_intersections", "clear_markers",
    }),
    "curve3d": frozenset({
        "mark_max", "mark_min", "mark_roots", "mark_intersections", "slice_t",
        "tangent_at", "closest_to_point", "clear_markers", "fit_from_markers",
    }),
    "surface3d": frozenset({
        "mark_max", "mark_min", "mark_roots", "contour_z", "slice_x", "slice_y",
        "closest_to_point", "clear_markers", "fit_from_markers",
    }),
}

_POINT_SPLIT = re.compile(r"[,\s]+")

FitOutcome = Union[BakeResult, SurfaceFitResult]


@dataclass(frozen=True, slots=True)
class DispatchResult:
    entity: GraphEntity
    markers: tuple[Marker, ...]
    messages: tuple[str, ...] = ()
    fit: Optional[FitOutcome] = None


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------

def _as_float(value: Any) -> Optional[float]:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


def arg_number(args: Mapping[str, Any], key: str, default: float) -> float:
    """Numeric argument; missing, zero or invalid values fall back to *default*."""
    v = _as_float(args.get(key))
    return v if v else default


def arg_int(args: Mapping[str, Any], key: str, default: int) -> int:
    return int(arg_number(args, key, default))


def parse_point(raw: Any) -> Vec3:
    """``{x, y, z}`` mapping or ``"x, y, z"`` text; anything else is the origin."""
    if isinstance(raw, Mapping):
        p = [_as_float(raw.get(k)) for k in ("x", "y", "z")]
        if all(v is not None for v in p):
            return (p[0], p[1], p[2])  # type: ignore[return-value]
    if isinstance(raw, str):
        parts = [v for v in (_as_float(s) for s in _POINT_SPLIT.split(raw.strip()) if s)
                 if v is not None]
        if len(parts) >= 3:
            return (parts[0], parts[1], parts[2])
    return (0.0, 0.0, 0.0)


def fmt(value: Optional[float], digits: int = 2) -> str:
    if value is None or not math.isfinite(value):
        return "NaN"
    return f"{value:.{digits}f}"


def fmt_xyz(x: float, y: float, z: float) -> str:
    return f"({fmt(x)}, {fmt(y)}, {fmt(z)})"


def _nan(*_args: float) -> float:
    return float("nan")


class _Batch:
    """Marker accumulator for one dispatch call."""

    def __init__(self, existing: Sequence[Marker], append: bool) -> None:
        self.existing = tuple(existing)
        self._out: Optional[list[Marker]] = list(existing) if append else None
        self.messages: list[str] = []
        self.wants_fit = False

    def touch(self) -> None:
        # replacing variants start over on the first command that produces markers
        if self._out is None:
            self._out = []

    def add(self, marker: Marker) -> None:
        if self._out is None:
            self._out = []
        self._out.append(marker)

    def clear(self) -> None:
        self._out = []

    @property
    def markers(self) -> tuple[Marker, ...]:
        return self.existing if self._out is None else tuple(self._out)


class CommandDispatcher:
    """Runs command batches against equations, 3D curves and surfaces.

    Marker ids are ``<prefix>-<n>`` with a counter shared by every call on
    this instance.
    """

    def __init__(
        self,
        settings: Optional[AnalysisSettings] = None,
        deform_engine: Optional[CurveDeformationEngine] = None,
        surface_engine: Optional[SurfaceDeltaFitEngine] = None,
        compile_fn: Optional[Evaluator] = None,
    ) -> None:
        self.settings = settings or AnalysisSettings()
        self._compile: Evaluator = compile_fn or compile_expression
        if deform_engine is None:
            # the default curve engine samples through the vectorized compiler
            deform_engine = CurveDeformationEngine(compile_fn) if compile_fn else CurveDeformationEngine()
        self.deform_engine = deform_engine
        self.surface_engine = surface_engine or SurfaceDeltaFitEngine(compile_fn=self._compile)
        self._ids = itertools.count(1)

    def _id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _function(self, expr: str, variables: Sequence[str]) -> Callable[..., float]:
        return guarded(self._compile(expr or "0", tuple(variables)))

    @staticmethod
    def normalize_action(action: str) -> str:
        a = str(action or "none").strip().lower()
        return ALIASES.get(a, a)

    def supports(self, action: str, entity: GraphEntity) -> bool:
        return self.normalize_action(action) in SUPPORTED[graph_type(entity)]

    def dispatch(self, entity: GraphEntity,
                 commands: Union[Sequence[Command], Mapping[str, Any]]) -> DispatchResult:
        cmds = parse_commands(commands) if isinstance(commands, Mapping) else list(commands)
        match entity:
            case Equation():
                return self._dispatch_equation(entity, cmds)
            case Curve3D():
                return self._dispatch_curve(entity, cmds)
            case Surface3D():
                return self._dispatch_surface(entity, cmds)
        raise TypeError(f"not a graph entity: {type(entity).__name__}")

    @staticmethod
    def require(action: str, kind: str) -> None:
        if action not in SUPPORTED[kind]:
            raise UnsupportedCommandError(f"Unsupported action for {kind}: {action}")

    def _accept(self, action: str, kind: str, batch: _Batch) -> bool:
        if action == "none":
            return False
        try:
            self.require(action, kind)
        except UnsupportedCommandError as exc:
            logger.warning("unsupported action for %s: %s", kind, action)
            batch.messages.append(exc.message)
            return False
        return True

    # ------------------------------------------------------------------
    # Equation
    # ------------------------------------------------------------------

    def _dispatch_equation(self, eq: Equation, commands: Sequence[Command]) -> DispatchResult:
        s = self.settings
        typed_fn = self._function(eq.expr, ("x",))
        fitted_fn = fit_display_polynomial(eq.points, eq.degree) or _nan
        batch = _Batch(eq.markers, append=False)

        for c in commands:
            action = self.normalize_action(c.action)
            if not self._accept(action, "equation", batch):
                continue
            if action == "clear_markers":
                batch.clear()
                continue

            batch.touch()
            fn = fitted_fn if c.target == "fit" else typed_fn
            samples = arg_int(c.args, "samples", s.samples_1d)

            if action in ("mark_max", "mark_min"):
                kind = "max" if action == "mark_max" else "min"
                best = na.sample_extremum(fn, eq.xmin, eq.xmax, samples, kind)
                if best:
                    x, y = best
                    batch.add(Marker(id=self._id(kind), kind=MarkerKind(kind), x=x, y=y,
                                     label=f"{kind} ({fmt(x)}, {fmt(y)})"))

            elif action == "mark_roots":
                max_roots = arg_int(c.args, "maxRoots", s.max_roots)
                for r in na.find_roots(fn, eq.xmin, eq.xmax, samples, max_roots):
                    y = fn(r)
                    if math.isfinite(y):
                        batch.add(Marker(id=self._id("root"), kind=MarkerKind.ROOT, x=r, y=y,
                                         label=f"root ({fmt(r)}, {fmt(y)})"))

            elif action == "mark_intersections":
                other = typed_fn if c.target == "fit" else fitted_fn
                max_roots = arg_int(c.args, "maxIntersections", s.max_roots)
                for x in na.find_intersections(fn, other, eq.xmin, eq.xmax, samples, max_roots):
                    y = fn(x)
                    if math.isfinite(y):
                        batch.add(Marker(id=self._id("ix"), kind=MarkerKind.INTERSECTION, x=x, y=y,
                                         label=f"∩ ({fmt(x)}, {fmt(y)})"))

        markers = batch.markers
        logger.debug("equation markers applied: %d", len(markers))
        return DispatchResult(entity=replace(eq, markers=markers), markers=markers,
                              messages=tuple(batch.messages))

    # ------------------------------------------------------------------
    # Curve3D
    # ------------------------------------------------------------------

    def _dispatch_curve(self, curve: Curve3D, commands: Sequence[Command]) -> DispatchResult:
        s = self.settings
        t_min, t_max = curve.param_range
        batch = _Batch(curve.markers, append=True)

        for c in commands:
            action = self.normalize_action(c.action)
            if not self._accept(action, "curve3d", batch):
                continue
            if action == "clear_markers":
                batch.clear()
                continue
            if action == "fit_from_markers":
                batch.wants_fit = True
                continue

            args = c.args
            samples = max(s.min_samples_curve, arg_int(args, "samples", s.samples_curve))
            axis = str(args.get("axis", "z")).lower()
            if axis not in ("x", "y", "z"):
                axis = "z"

            # "fit" targets the base curve, "typed" the edited one
            exprs = curve.base_exprs if c.target == "fit" else curve.edit_exprs
            xt, yt, zt = (self._function(e, ("t",)) for e in exprs.as_tuple())
            axis_fn = {"x": xt, "y": yt, "z": zt}[axis]

            def at(t: float) -> dict[str, float]:
                return {"t": t, "x": xt(t), "y": yt(t), "z": zt(t)}

            def xyz(p: Mapping[str, float]) -> str:
                return fmt_xyz(p["x"], p["y"], p["z"])

            if action in ("mark_max", "mark_min"):
                kind = "max" if action == "mark_max" else "min"
                best = na.sample_extremum(axis_fn, t_min, t_max, samples, kind)
                if best:
                    p = at(best[0])
                    batch.add(Marker(id=self._id(f"c3-{kind}"), kind=MarkerKind(kind), **p,
                                     label=f"{kind}({axis}) {xyz(p)}"))

            elif action == "mark_roots":
                max_roots = arg_int(args, "maxRoots", s.max_roots)
                for t in na.find_roots(axis_fn, t_min, t_max, samples, max_roots):
                    p = at(t)
                    batch.add(Marker(id=self._id("c3-root"), kind=MarkerKind.ROOT, **p,
                                     label=f"root({axis}) {xyz(p)}"))

            elif action == "mark_intersections":
                other_exprs = curve.edit_exprs if c.target == "fit" else curve.base_exprs
                other_fn = self._function({"x": other_exprs.x, "y": other_exprs.y,
                                           "z": other_exprs.z}[axis], ("t",))
                max_roots = arg_int(args, "maxIntersections", s.max_roots)
                for t in na.find_intersections(axis_fn, other_fn, t_min, t_max, samples, max_roots):
                    p = at(t)
                    batch.add(Marker(id=self._id("c3-ix"), kind=MarkerKind.INTERSECTION, **p,
                                     label=f"∩({axis}) {xyz(p)}"))

            elif action == "slice_t":
                t = _as_float(args.get("t"))
                if t is None:
                    continue
                p = at(t)
                batch.add(Marker(id=self._id("c3-slice"), kind=MarkerKind.SLICE, **p,
                                 label=f"t={fmt(t, 3)} {xyz(p)}"))

            elif action == "tangent_at":
                t0 = _as_float(args.get("t"))
                if t0 is None:
                    continue
                dt = max(1e-6, arg_number(args, "dt", s.tangent_dt))
                d = na.tangent_at(xt, yt, zt, t0, (t_min, t_max), dt)
                p = at(t0)
                batch.add(Marker(
                    id=self._id("c3-tan"), kind=MarkerKind.TANGENT, direction=d, **p,
                    label=f"tangent @ t={fmt(t0, 3)} dir=({fmt(d[0], 3)}, {fmt(d[1], 3)}, {fmt(d[2], 3)})",
                ))

            elif action == "closest_to_point":
                target = parse_point(args.get("point"))
                found = na.closest_point_on_curve(xt, yt, zt, (t_min, t_max), target, samples)
                if found:
                    t, dist = found
                    p = at(t)
                    batch.add(Marker(
                        id=self._id("c3-close"), kind=MarkerKind.CLOSEST, **p,
                        label=f"closest to {fmt_xyz(*target)} d={fmt(dist, 3)} {xyz(p)}",
                    ))

        markers = batch.markers
        result_curve = replace(curve, markers=markers)
        fit: Optional[BakeResult] = None
        if batch.wants_fit:
            result_curve, fit = self.deform_engine.commit(result_curve)
            if not fit.ok:
                batch.messages.append(fit.reason or "Curve fit failed.")
        return DispatchResult(entity=result_curve, markers=markers,
                              messages=tuple(batch.messages), fit=fit)

    # ------------------------------------------------------------------
    # Surface3D
    # ------------------------------------------------------------------

    def _dispatch_surface(self, surface: Surface3D, commands: Sequence[Command]) -> DispatchResult:
        s = self.settings
        domain = surface.domain
        nx = max(s.min_samples_surface, int(surface.grid[0] or s.surface_nx))
        ny = max(s.min_samples_surface, int(surface.grid[1] or s.surface_ny))
        fn = self._function(surface.expr, ("x", "y"))
        batch = _Batch(surface.markers, append=False)

        def emit(prefix: str, kind: MarkerKind, p: Vec3, label: str) -> None:
            batch.add(Marker(id=self._id(prefix), kind=kind, x=p[0], y=p[1], z=p[2],
                             label=f"{label} {fmt_xyz(*p)}"))

        for c in commands:
            action = self.normalize_action(c.action)
            if not self._accept(action, "surface3d", batch):
                continue
            if action == "clear_markers":
                batch.clear()
                continue
            if action == "fit_from_markers":
                batch.wants_fit = True
                continue

            args = c.args
            sx = max(s.min_samples_surface, arg_int(args, "samplesX", nx))
            sy = max(s.min_samples_surface, arg_int(args, "samplesY", ny))
            batch.touch()

            if action in ("mark_max", "mark_min"):
                kind = "max" if action == "mark_max" else "min"
                best = na.sample_surface_extremum(fn, domain, sx, sy, kind)
                if best:
                    emit(f"s3-{kind}", MarkerKind(kind), best, kind)

            elif action in ("mark_roots", "contour_z"):
                level = 0.0
                if action == "contour_z":
                    level = _as_float(args.get("z", args.get("level"))) or 0.0
                points = na.surface_level_points(
                    fn, domain, level, sx, sy,
                    eps=arg_number(args, "eps", s.surface_eps),
                    max_points=arg_int(args, "maxRoots", s.max_roots),
                    dedup_dist=arg_number(args, "dedupDist", s.dedup_dist),
                )
                for p in points:
                    if action == "mark_roots":
                        emit("s3-root", MarkerKind.ROOT, p, "root≈0")
                    else:
                        emit("s3-contour", MarkerKind.ROOT, p, f"z={fmt(level)}")

            elif action in ("slice_x", "slice_y"):
                axis = action[-1]
                value = _as_float(args.get(axis, args.get("value")))
                if value is None:
                    continue
                count = arg_int(args, "count", s.slice_count)
                for p in na.slice_surface(fn, domain, axis, value, count):
                    emit("s3-slice", MarkerKind.SLICE, p, f"{axis}={fmt(value)}")

            elif action == "closest_to_point":
                target = parse_point(args.get("point"))
                found = na.closest_point_on_surface(fn, domain, target, sx, sy)
                if found:
                    p, dist = found
                    emit("s3-close", MarkerKind.CLOSEST, p,
                         f"closest to {fmt_xyz(*target)} d={fmt(dist, 3)}")

        markers = batch.markers
        result_surface = replace(surface, markers=markers)
        fit: Optional[SurfaceFitResult] = None
        if batch.wants_fit:
            result_surface, fit = self.surface_engine.fit_surface(result_surface)
            if not fit.ok:
                batch.messages.append(fit.reason or "Surface fit failed.")
        return DispatchResult(entity=result_surface, markers=markers,
                              messages=tuple(batch.messages), fit=fit)


def dispatch(entity: GraphEntity, commands: Union[Sequence[Command], Mapping[str, Any]],
             settings: Optional[AnalysisSettings] = None) -> DispatchResult:
    return CommandDispatcher(settings).dispatch(entity, commands)
