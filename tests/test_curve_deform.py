import math

import numpy as np
import pytest

from sketch_refit.curve_deform import CurveDeformationEngine
from sketch_refit.errors import ErrorKind
from sketch_refit.evaluator import compile_expression
from sketch_refit.models import AxisExprs, Curve3D, Marker, MarkerKind

CIRCLE = AxisExprs(x="cos(t)", y="sin(t)", z="0")


def _curve(markers=(), **kwargs):
    return Curve3D(base_exprs=CIRCLE, edit_exprs=CIRCLE, markers=tuple(markers), **kwargs)


def _on_circle(t, z, marker_id="m", kind=MarkerKind.CONTROL):
    return Marker(id=marker_id, kind=kind, t=t, x=math.cos(t), y=math.sin(t), z=z)


def _base_samples(n):
    ts = np.linspace(0.0, 2.0 * math.pi, n)
    return np.column_stack([np.cos(ts), np.sin(ts), np.zeros_like(ts)])


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("markers", [
    (),
    (_on_circle(1.0, 0.5),),
])
def test_preview_is_base_curve_below_two_markers(markers):
    deformed = CurveDeformationEngine().preview(_curve(markers))
    assert not deformed.active
    np.testing.assert_allclose(deformed.sample(50), _base_samples(50), atol=1e-12)


def test_preview_passes_through_separated_markers():
    markers = (_on_circle(1.0, 0.5, "a"), _on_circle(4.5, -0.3, "b"))
    deformed = CurveDeformationEngine().preview(_curve(markers))
    assert deformed.active
    for m in markers:
        np.testing.assert_allclose(deformed.evaluate(m.t), [m.x, m.y, m.z], atol=1e-6)


def test_preview_ignores_analysis_markers():
    markers = (
        _on_circle(1.0, 0.5, "a"),
        _on_circle(4.5, 2.0, "b", kind=MarkerKind.MAX),
    )
    deformed = CurveDeformationEngine().preview(_curve(markers))
    assert not deformed.active


def test_markers_without_t_are_ignored():
    markers = (_on_circle(1.0, 0.5, "a"), Marker(id="b", x=0.0, y=0.0, z=1.0))
    engine = CurveDeformationEngine()
    assert len(engine.control_markers(markers)) == 1


def test_missing_coordinate_follows_base():
    markers = (
        Marker(id="a", t=1.0, z=0.5),
        Marker(id="b", t=4.5, z=-0.3),
    )
    deformed = CurveDeformationEngine().preview(_curve(markers))
    p = deformed.evaluate(1.0)
    assert p[0] == pytest.approx(math.cos(1.0), abs=1e-9)
    assert p[2] == pytest.approx(0.5, abs=1e-6)


def test_axis_function():
    markers = (_on_circle(1.0, 0.5, "a"), _on_circle(4.5, -0.3, "b"))
    z = CurveDeformationEngine().preview(_curve(markers)).axis("z")
    assert z(4.5) == pytest.approx(-0.3, abs=1e-6)


# ---------------------------------------------------------------------------
# Drag clamp
# ---------------------------------------------------------------------------

def test_drag_is_clamped_to_max_delta():
    curve = _curve([_on_circle(0.0, 0.0, "a")], max_delta=1.5)
    moved = CurveDeformationEngine().update_marker(curve, "a", (1.0, 0.0, 5.0))
    m = moved.markers[0]
    assert (m.x, m.y, m.z) == pytest.approx((1.0, 0.0, 1.5))


def test_small_drag_is_not_clamped():
    curve = _curve([_on_circle(0.0, 0.0, "a")], max_delta=1.5)
    moved = CurveDeformationEngine().update_marker(curve, "a", (1.0, 0.5, 0.5))
    assert moved.markers[0].position == pytest.approx((1.0, 0.5, 0.5))


@pytest.mark.parametrize("max_delta", [0.0, -1.0, float("inf")])
def test_clamp_disabled(max_delta):
    curve = _curve([_on_circle(0.0, 0.0, "a")], max_delta=max_delta)
    moved = CurveDeformationEngine().update_marker(curve, "a", (1.0, 0.0, 5.0))
    assert moved.markers[0].z == 5.0


def test_update_marker_touches_only_that_marker():
    markers = (_on_circle(1.0, 0.0, "a"), _on_circle(4.5, 0.0, "b"))
    moved = CurveDeformationEngine().update_marker(_curve(markers), "b", (0.0, 0.0, 0.2))
    assert moved.markers[0] == markers[0]
    assert moved.markers[1].z == pytest.approx(0.2)


# ---------------------------------------------------------------------------
# Bake
# ---------------------------------------------------------------------------

def test_bake_needs_two_control_markers():
    res = CurveDeformationEngine().bake(_curve([_on_circle(1.0, 0.5)]))
    assert not res.ok
    assert res.error is ErrorKind.INSUFFICIENT_DATA


def test_bake_writes_kernel_formulas():
    markers = (_on_circle(1.0, 0.5, "a"), _on_circle(4.5, -0.3, "b"))
    res = CurveDeformationEngine().bake(_curve(markers))
    assert res.ok
    # x and y did not move, so only z carries a kernel
    assert res.exprs.x == "x(t) = ((cos(t)) + (0))"
    assert res.exprs.z.startswith("z(t) = ((0) + (((")
    z = compile_expression(res.exprs.z, ("t",))
    assert z(1.0) == pytest.approx(0.5, abs=1e-6)
    assert z(4.5) == pytest.approx(-0.3, abs=1e-6)


def test_bake_matches_preview():
    markers = (_on_circle(1.0, 0.4, "a"), _on_circle(2.0, -0.2, "b"))
    engine = CurveDeformationEngine()
    curve = _curve(markers)
    res = engine.bake(curve)
    deformed = engine.preview(curve)
    z = compile_expression(res.exprs.z, ("t",))
    for t in (0.5, 1.5, 3.0):
        assert z(t) == pytest.approx(float(deformed.evaluate(t)[2]), abs=1e-9)


def test_commit_updates_edit_formulas_only():
    markers = (_on_circle(1.0, 0.5, "a"), _on_circle(4.5, -0.3, "b"))
    curve = _curve(markers)
    new_curve, res = CurveDeformationEngine().commit(curve)
    assert res.ok
    assert new_curve.base_exprs == CIRCLE
    assert new_curve.edit_exprs == res.exprs


def test_failed_commit_returns_same_curve():
    curve = _curve()
    new_curve, res = CurveDeformationEngine().commit(curve)
    assert not res.ok
    assert new_curve is curve


def test_zero_sigma_falls_back_to_default_bandwidth():
    markers = (_on_circle(1.0, 0.5, "a"), _on_circle(4.5, -0.3, "b"))
    res = CurveDeformationEngine().bake(_curve(markers, deform_sigma=0.0))
    assert "/(0.6))^2)" in res.exprs.z


# ---------------------------------------------------------------------------
# Evaluators
# ---------------------------------------------------------------------------

def test_scalar_evaluator_is_sampled_per_point():
    markers = (_on_circle(1.0, 0.5, "a"), _on_circle(4.5, -0.3, "b"))
    scalar = CurveDeformationEngine(compile_fn=compile_expression)
    vectorized = CurveDeformationEngine()
    np.testing.assert_allclose(scalar.preview(_curve()).sample(50), _base_samples(50), atol=1e-12)
    np.testing.assert_allclose(
        scalar.preview(_curve(markers)).sample(50),
        vectorized.preview(_curve(markers)).sample(50),
        atol=1e-12,
    )


def test_raising_evaluator_drops_samples():
    def compile_fn(expr, variables):
        def fn(t):
            if float(t) > 3.5:
                raise ZeroDivisionError("pole")
            return math.cos(float(t))
        return fn

    pts = CurveDeformationEngine(compile_fn=compile_fn).preview(_curve()).sample(11)
    assert len(pts) == 6


def test_sample_defaults_to_curve_sample_count():
    deformed = CurveDeformationEngine().preview(_curve(sample_count=25))
    assert deformed.sample().shape == (25, 3)
