"""Refit formulas from sketched points and dragged markers."""

from .analysis import (
    bisect_root,
    closest_point_on_curve,
    closest_point_on_surface,
    find_intersections,
    find_roots,
    sample_extremum,
    sample_surface_extremum,
    slice_surface,
    surface_level_points,
    tangent_at,
)
from .commands import CommandDispatcher, DispatchResult, dispatch
from .config import (
    AnalysisSettings,
    DeformSettings,
    RuleFitSettings,
    SimplexSettings,
    SurfaceFitSettings,
)
from .curve_deform import CurveDeformationEngine, DeformedCurve
from .errors import (
    DomainViolationError,
    ErrorKind,
    InsufficientDataError,
    RefitError,
    SingularSystemError,
    UnknownRuleError,
    UnsupportedCommandError,
)
from .evaluator import (
    Evaluator,
    compile_expression,
    compile_vectorized,
    make_param_fn,
    make_surface_fn,
)
from .expression_builder import LatexRenderer
from .fitting import RuleFitEngine, fit_rule
from .logging_config import setup_logging
from .models import (
    AxisExprs,
    BakeResult,
    Command,
    Curve3D,
    Equation,
    FitResult,
    GraphEntity,
    Marker,
    MarkerKind,
    Point2D,
    RuleMode,
    RuleState,
    Surface3D,
    SurfaceDomain,
    SurfaceFitResult,
    parse_commands,
)
from .simplex import SimplexOptimizer, SimplexResult
from .surface_fit import SurfaceDeltaFitEngine, SurfacePreviewSession, fit_surface_delta

__version__ = "0.1.0"
