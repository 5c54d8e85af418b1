from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Union

import numpy as np
from numpy.typing import NDArray

from .errors import ErrorKind

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

FloatArray = NDArray[np.floating[Any]]
ScalarFunction = Callable[[float], float]
SurfaceFunction = Callable[[float, float], float]
Vec3 = tuple[float, float, float]


class RuleMode(str, Enum):
    FREE = "free"
    LINEAR = "linear"
    POLY = "poly"
    SIN = "sin"
    COS = "cos"
    TAN = "tan"
    EXP = "exp"
    LOG = "log"
    POWER = "power"


class MarkerKind(str, Enum):
    CONTROL = "control"
    MAX = "max"
    MIN = "min"
    ROOT = "root"
    INTERSECTION = "intersection"
    TANGENT = "tangent"
    SLICE = "slice"
    CLOSEST = "closest"


# ===========================================================================
# Points and markers
# ===========================================================================

@dataclass(frozen=True, slots=True)
class Point2D:
    x: float
    y: float


@dataclass(frozen=True, slots=True)
class Marker:
    """Edit handle or analysis result attached to a graph entity.

    For curves ``t`` is the parametric coordinate; x/y/z are either authored
    (control markers being dragged) or derived by evaluating the curve at ``t``.
    """
    id: str
    kind: MarkerKind = MarkerKind.CONTROL
    t: Optional[float] = None
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None
    label: Optional[str] = None
    direction: Optional[Vec3] = None

    @property
    def has_param(self) -> bool:
        return self.t is not None and math.isfinite(self.t)

    @property
    def position(self) -> Optional[Vec3]:
        if self.x is None or self.y is None or self.z is None:
            return None
        return (self.x, self.y, self.z)

    def moved_to(self, x: float, y: float, z: Optional[float] = None) -> Marker:
        return replace(self, x=float(x), y=float(y), z=None if z is None else float(z))


# ===========================================================================
# Graph entities
# ===========================================================================

@dataclass(frozen=True, slots=True)
class RuleState:
    mode: RuleMode = RuleMode.FREE
    poly_degree: int = 3


@dataclass(frozen=True, slots=True)
class AxisExprs:
    x: str = "0"
    y: str = "0"
    z: str = "0"

    def as_tuple(self) -> tuple[str, str, str]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True, slots=True)
class SurfaceDomain:
    x_min: float = -5.0
    x_max: float = 5.0
    y_min: float = -5.0
    y_max: float = 5.0

    @property
    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x_min, self.x_max, self.y_min, self.y_max))


@dataclass(frozen=True, slots=True)
class Equation:
    expr: str
    domain: tuple[float, float] = (-10.0, 10.0)
    points: tuple[Point2D, ...] = ()
    rule: RuleState = RuleState()
    degree: int = 3
    markers: tuple[Marker, ...] = ()

    def __post_init__(self) -> None:
        if len(self.points) < 1:
            raise ValueError("an equation needs at least one control point")

    @property
    def xmin(self) -> float:
        return min(self.domain)

    @property
    def xmax(self) -> float:
        return max(self.domain)


@dataclass(frozen=True, slots=True)
class Curve3D:
    base_exprs: AxisExprs
    edit_exprs: AxisExprs
    param_range: tuple[float, float] = (0.0, 2.0 * math.pi)
    sample_count: int = 400
    markers: tuple[Marker, ...] = ()
    deform_sigma: float = 0.6
    max_delta: float = 1.5


@dataclass(frozen=True, slots=True)
class Surface3D:
    expr: str
    domain: SurfaceDomain = SurfaceDomain()
    grid: tuple[int, int] = (80, 80)
    degree: int = 2
    markers: tuple[Marker, ...] = ()


GraphEntity = Union[Equation, Curve3D, Surface3D]


def graph_type(entity: GraphEntity) -> str:
    match entity:
        case Equation():
            return "equation"
        case Curve3D():
            return "curve3d"
        case Surface3D():
            return "surface3d"
    raise TypeError(f"not a graph entity: {type(entity).__name__}")


# ===========================================================================
# Commands
# ===========================================================================

@dataclass(frozen=True, slots=True)
class Command:
    action: str
    target: str = "typed"
    args: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, obj: Mapping[str, Any]) -> Command:
        target = "fit" if obj.get("target") == "fit" else "typed"
        args = obj.get("args")
        return cls(
            action=str(obj.get("action", "none")),
            target=target,
            args=dict(args) if isinstance(args, Mapping) else {},
        )


def parse_commands(payload: Mapping[str, Any]) -> list[Command]:
    """Accept a single ``{action, target, args}`` object or a graph_command batch."""
    if payload.get("type") == "graph_command" and isinstance(payload.get("commands"), list):
        return [Command.from_payload(c) for c in payload["commands"] if isinstance(c, Mapping)]
    if payload.get("action"):
        return [Command.from_payload(payload)]
    return []


# ===========================================================================
# Results
# ===========================================================================

@dataclass(frozen=True, slots=True)
class FitResult:
    ok: bool
    equation: Optional[str] = None
    fn: Optional[ScalarFunction] = None
    message: Optional[str] = None
    points: tuple[Point2D, ...] = ()
    params: Mapping[str, float] = field(default_factory=dict)
    rmse: float = float("nan")
    error: Optional[ErrorKind] = None

    def __post_init__(self) -> None:
        if self.fn is not None and not callable(self.fn):
            raise ValueError("fn must be callable")


@dataclass(frozen=True, slots=True)
class BakeResult:
    ok: bool
    exprs: Optional[AxisExprs] = None
    reason: Optional[str] = None
    error: Optional[ErrorKind] = None


@dataclass(frozen=True, slots=True)
class SurfaceFitResult:
    ok: bool
    expr: Optional[str] = None
    delta_expr: Optional[str] = None
    degree: Optional[int] = None
    coefficients: Mapping[tuple[int, int], float] = field(default_factory=dict)
    fn: Optional[SurfaceFunction] = None
    reason: Optional[str] = None
    error: Optional[ErrorKind] = None
