"""
Rule-constrained refitting of 2D control points.

A rule keeps the formula inside one family (linear, polynomial, sinusoidal,
exponential, ...) while its parameters follow the points the user dragged.
Closed-form families are solved directly; the rest go through the simplex
minimiser on the sum of squared residuals.
"""

from __future__ import annotations

import logging
import math
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Optional, Sequence

import numpy as np

from . import expression_builder as eb
from .config import DEGENERATE_EPS, RuleFitSettings, SimplexSettings
from .errors import (
    DomainViolationError,
    InsufficientDataError,
    RefitError,
    SingularSystemError,
    UnknownRuleError,
)
from .linalg import solve_normal_equations, vandermonde
from .models import Equation, FitResult, FloatArray, Point2D, RuleMode
from .preprocessing import finite_points, points_to_arrays, snap_points
from .simplex import SimplexOptimizer

logger = logging.getLogger(__name__)

EvaluationFunction = Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class FittedRule:
    equation: str
    evaluate: EvaluationFunction
    params: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not callable(self.evaluate):
            raise ValueError("evaluate must be callable")


# ===========================================================================
# Abstract base fitter
# ===========================================================================

class RuleFitter(ABC):

    min_points: int = 1

    @abstractmethod
    def fit(self, x: FloatArray, y: FloatArray) -> FittedRule:
        raise NotImplementedError

    def _require_points(self, x: FloatArray, message: str) -> None:
        if len(x) < self.min_points:
            raise InsufficientDataError(message)

    @staticmethod
    def _require_positive_x(x: FloatArray, message: str) -> None:
        if np.any(x <= 0):
            raise DomainViolationError(message)

    @staticmethod
    def _sse(y: FloatArray, y_pred: FloatArray) -> float:
        # non-finite predictions count as a zero prediction
        y_pred = np.where(np.isfinite(y_pred), y_pred, 0.0)
        return float(np.sum((y_pred - y) ** 2))

    @staticmethod
    def _rmse(y: FloatArray, y_pred: FloatArray) -> float:
        return float(np.sqrt(np.mean((y - y_pred) ** 2)))


# ===========================================================================
# Closed-form fitters
# ===========================================================================

class LinearRuleFitter(RuleFitter):
    """Least-squares ``a*x + b`` from the running sums."""

    min_points = 2

    def fit(self, x: FloatArray, y: FloatArray) -> FittedRule:
        self._require_points(x, "Linear rule needs at least 2 points.")
        n = len(x)
        sx, sy = float(np.sum(x)), float(np.sum(y))
        sxx, sxy = float(np.sum(x * x)), float(np.sum(x * y))
        denom = n * sxx - sx * sx
        if abs(denom) < DEGENERATE_EPS:
            a, b = 0.0, sy / n
        else:
            a = (n * sxy - sx * sy) / denom
            b = (sy - a * sx) / n

        def evaluate(xv: Any) -> Any:
            return a * np.asarray(xv, dtype=np.float64) + b

        return FittedRule(equation=eb.linear(a, b), evaluate=evaluate, params={"a": a, "b": b})


class PolynomialRuleFitter(RuleFitter):

    def __init__(self, degree: int = 3) -> None:
        self._degree = degree

    def effective_degree(self, n_points: int) -> int:
        requested = max(0, int(math.floor(self._degree)))
        return min(requested, max(0, n_points - 1))

    def fit(self, x: FloatArray, y: FloatArray) -> FittedRule:
        self._require_points(x, "Polynomial rule needs at least 1 point.")
        degree = self.effective_degree(len(x))
        coeffs = solve_normal_equations(vandermonde(x, degree), y)
        return polynomial_rule(coeffs)


def polynomial_rule(coeffs: Sequence[float]) -> FittedRule:
    c = np.asarray(coeffs, dtype=np.float64)

    def evaluate(xv: Any) -> Any:
        # np.polyval wants the highest power first
        return np.polyval(c[::-1], np.asarray(xv, dtype=np.float64))

    return FittedRule(
        equation=eb.polynomial_1d(list(c)),
        evaluate=evaluate,
        params={f"c{k}": float(v) for k, v in enumerate(c)},
    )


# ===========================================================================
# Simplex-driven fitters
# ===========================================================================

class SimplexRuleFitter(RuleFitter):
    """``A*g(x; p) + C`` families fitted by Nelder-Mead on the SSE."""

    min_points = 3
    family: str = ""
    param_names: tuple[str, ...] = ()

    def __init__(self, settings: SimplexSettings) -> None:
        self._optimizer = SimplexOptimizer(
            step=settings.step, max_iter=settings.max_iter, tol=settings.tol
        )

    @abstractmethod
    def _initial_guess(self, x: FloatArray, y: FloatArray) -> list[float]:
        raise NotImplementedError

    @abstractmethod
    def _model(self, params: Sequence[float], xv: FloatArray) -> FloatArray:
        raise NotImplementedError

    def _finalize(self, params: Sequence[float]) -> list[float]:
        return [float(p) for p in params]

    @abstractmethod
    def _equation(self, params: Sequence[float]) -> str:
        raise NotImplementedError

    def _validate(self, x: FloatArray) -> None:
        self._require_points(
            x, f"{self.family.capitalize()} rule needs at least {self.min_points} points."
        )

    def fit(self, x: FloatArray, y: FloatArray) -> FittedRule:
        self._validate(x)
        model = self._model

        def objective(v: FloatArray) -> float:
            with np.errstate(all="ignore"):
                return self._sse(y, model(v, x))

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = self._optimizer.minimize(objective, self._initial_guess(x, y))
        params = self._finalize(result.x)
        logger.debug("%s rule: simplex %s after %d iterations (sse=%.3g)",
                     self.family, "converged" if result.converged else "stopped",
                     result.iterations, result.fx)

        def evaluate(xv: Any) -> Any:
            with np.errstate(all="ignore"):
                return model(params, np.asarray(xv, dtype=np.float64))

        return FittedRule(
            equation=self._equation(params),
            evaluate=evaluate,
            params=dict(zip(self.param_names, params)),
        )


class TrigRuleFitter(SimplexRuleFitter):
    """``A*trig(w*x + phi) + C`` for sin, cos or tan."""

    param_names = ("A", "w", "phi", "C")
    _FUNCS: dict[str, Callable[[FloatArray], FloatArray]] = {
        "sin": np.sin,
        "cos": np.cos,
        "tan": np.tan,
    }
    _NAMES = {"sin": "Sine", "cos": "Cosine", "tan": "Tangent"}

    def __init__(self, trig: str, settings: SimplexSettings, min_frequency: float = 1e-6) -> None:
        super().__init__(settings)
        self.family = trig
        self._trig = self._FUNCS[trig]
        self._min_w = min_frequency

    def _validate(self, x: FloatArray) -> None:
        self._require_points(x, f"{self._NAMES[self.family]} rule needs at least 3 points.")

    def _initial_guess(self, x: FloatArray, y: FloatArray) -> list[float]:
        y_min, y_max = float(np.min(y)), float(np.max(y))
        return [(y_max - y_min) / 2 or 1.0, 1.0, 0.0, (y_max + y_min) / 2]

    def _model(self, params: Sequence[float], xv: FloatArray) -> FloatArray:
        a, w_raw, phi, c = params
        w = max(self._min_w, abs(w_raw))
        return a * self._trig(w * xv + phi) + c

    def _finalize(self, params: Sequence[float]) -> list[float]:
        a, w_raw, phi, c = (float(p) for p in params)
        return [a, max(self._min_w, abs(w_raw)), phi, c]

    def _equation(self, params: Sequence[float]) -> str:
        a, w, phi, c = params
        return eb.scaled_family(a, f"{self.family}({eb.affine_argument(w, phi)})", c)


class ExponentialRuleFitter(SimplexRuleFitter):
    """``A*exp(k*x) + C`` with ``k*x`` clamped to avoid overflow."""

    family = "exponential"
    param_names = ("A", "k", "C")

    def __init__(self, settings: SimplexSettings, clamp: float = 30.0) -> None:
        super().__init__(settings)
        self._clamp = clamp

    def _initial_guess(self, x: FloatArray, y: FloatArray) -> list[float]:
        y_min, y_max = float(np.min(y)), float(np.max(y))
        return [y_max - y_min or 1.0, 0.3, y_min]

    def _model(self, params: Sequence[float], xv: FloatArray) -> FloatArray:
        a, k, c = params
        return a * np.exp(np.clip(k * xv, -self._clamp, self._clamp)) + c

    def _equation(self, params: Sequence[float]) -> str:
        a, k, c = params
        return eb.scaled_family(a, f"exp({eb.format_number(k)}*x)", c)


class LogarithmicRuleFitter(SimplexRuleFitter):
    """``A*log(k*x) + C``; k is kept positive through its absolute value."""

    family = "log"
    param_names = ("A", "k", "C")

    def __init__(self, settings: SimplexSettings, min_scale: float = 1e-6) -> None:
        super().__init__(settings)
        self._min_k = min_scale

    def _validate(self, x: FloatArray) -> None:
        self._require_positive_x(
            x, "Log rule only works for x > 0. Move the points to positive x."
        )
        self._require_points(x, "Log rule needs at least 3 points.")

    def _initial_guess(self, x: FloatArray, y: FloatArray) -> list[float]:
        y_min, y_max = float(np.min(y)), float(np.max(y))
        return [y_max - y_min or 1.0, 1.0, (y_max + y_min) / 2]

    def _model(self, params: Sequence[float], xv: FloatArray) -> FloatArray:
        a, k_raw, c = params
        k = max(self._min_k, abs(k_raw))
        return a * np.log(k * xv) + c

    def _finalize(self, params: Sequence[float]) -> list[float]:
        a, k_raw, c = (float(p) for p in params)
        return [a, max(self._min_k, abs(k_raw)), c]

    def _equation(self, params: Sequence[float]) -> str:
        a, k, c = params
        return eb.scaled_family(a, f"log({eb.format_number(k)}*x)", c)


class PowerRuleFitter(SimplexRuleFitter):
    """``A*x^p + C`` on positive x."""

    family = "power"
    param_names = ("A", "p", "C")

    def _validate(self, x: FloatArray) -> None:
        self._require_positive_x(
            x, "Power rule is only stable for x > 0. Move the points to positive x."
        )
        self._require_points(x, "Power rule needs at least 3 points.")

    def _initial_guess(self, x: FloatArray, y: FloatArray) -> list[float]:
        y_min, y_max = float(np.min(y)), float(np.max(y))
        return [y_max - y_min or 1.0, 1.0, y_min]

    def _model(self, params: Sequence[float], xv: FloatArray) -> FloatArray:
        a, p, c = params
        return a * np.power(xv, p) + c

    def _equation(self, params: Sequence[float]) -> str:
        a, p, c = params
        return eb.scaled_family(a, f"x^({eb.format_number(p)})", c)


# ===========================================================================
# Engine
# ===========================================================================

class RuleFitEngine:
    """Fits a point set to the family selected by a rule mode.

    Every call returns a FitResult; failures carry ``ok=False`` and a
    human-readable message instead of raising.
    """

    def __init__(self, settings: Optional[RuleFitSettings] = None) -> None:
        self.settings = settings or RuleFitSettings()
        s = self.settings
        self._dispatch: dict[RuleMode, Callable[[int], RuleFitter]] = {
            RuleMode.LINEAR: lambda _d: LinearRuleFitter(),
            RuleMode.POLY:   lambda d: PolynomialRuleFitter(d),
            RuleMode.SIN:    lambda _d: TrigRuleFitter("sin", s.trig, s.min_frequency),
            RuleMode.COS:    lambda _d: TrigRuleFitter("cos", s.trig, s.min_frequency),
            RuleMode.TAN:    lambda _d: TrigRuleFitter("tan", s.trig, s.min_frequency),
            RuleMode.EXP:    lambda _d: ExponentialRuleFitter(s.exp, s.exp_clamp),
            RuleMode.LOG:    lambda _d: LogarithmicRuleFitter(s.log),
            RuleMode.POWER:  lambda _d: PowerRuleFitter(s.power),
        }

    def fit(self, points: Sequence[Point2D], mode: RuleMode | str,
            poly_degree: int = 3) -> FitResult:
        points = tuple(points)
        try:
            mode = RuleMode(mode)
        except ValueError:
            return FitResult(ok=False, message="Unknown rule.", points=points,
                             error=UnknownRuleError.kind)

        if mode is RuleMode.FREE:
            return FitResult(ok=True, equation=None, fn=None, points=points)

        # undefined points are left out of the fit
        x, y = points_to_arrays(finite_points(points))
        try:
            if len(x) == 0:
                raise InsufficientDataError("No points to fit.")
            rule = self._dispatch[mode](poly_degree).fit(x, y)
        except RefitError as exc:
            logger.debug("%s rule rejected: %s", mode.value, exc.message)
            return FitResult(ok=False, message=exc.message, points=points, error=exc.kind)
        except (ValueError, FloatingPointError, np.linalg.LinAlgError) as exc:
            logger.debug("%s rule failed: %s", mode.value, exc)
            return FitResult(ok=False, message=f"Rule fit failed: {exc}", points=points,
                             error=SingularSystemError.kind)

        with np.errstate(all="ignore"):
            y_pred = np.asarray(rule.evaluate(x), dtype=np.float64)
        rmse = self._rmse_finite(y, y_pred)
        fn = _scalar(rule.evaluate)
        return FitResult(
            ok=True,
            equation=rule.equation,
            fn=fn,
            points=points,
            params=rule.params,
            rmse=rmse,
        )

    @staticmethod
    def _rmse_finite(y: FloatArray, y_pred: FloatArray) -> float:
        if not np.all(np.isfinite(y_pred)):
            return float("nan")
        return float(np.sqrt(np.mean((y - y_pred) ** 2)))

    def commit(self, equation: Equation,
               points: Optional[Sequence[Point2D]] = None) -> tuple[Equation, FitResult]:
        """Apply the equation's rule to *points* (default: its own points).

        On success the fitted formula replaces ``expr`` and every point is
        snapped onto the new curve inside the domain.  On failure the equation
        comes back untouched.
        """
        pts = tuple(points) if points is not None else equation.points
        res = self.fit(pts, equation.rule.mode, equation.rule.poly_degree)
        if not res.ok:
            return equation, res
        if res.equation is None:
            return replace(equation, points=pts), res
        snapped = snap_points(pts, res.fn, equation.xmin, equation.xmax)
        return replace(equation, expr=res.equation, points=snapped), replace(res, points=snapped)


def _scalar(evaluate: EvaluationFunction) -> Callable[[float], float]:
    def fn(xv: float) -> float:
        with np.errstate(all="ignore"):
            value = float(evaluate(xv))
        return value if math.isfinite(value) else float("nan")
    return fn


def fit_rule(points: Sequence[Point2D], mode: RuleMode | str, poly_degree: int = 3,
             settings: Optional[RuleFitSettings] = None) -> FitResult:
    return RuleFitEngine(settings).fit(points, mode, poly_degree)


def fit_display_polynomial(points: Sequence[Point2D], degree: int) -> Optional[Callable[[float], float]]:
    """The equation's "fit" curve: a least-squares polynomial through its points."""
    x, y = points_to_arrays(finite_points(points))
    if len(x) == 0:
        return None
    try:
        rule = PolynomialRuleFitter(degree).fit(x, y)
    except RefitError:
        return None
    return _scalar(rule.evaluate)
