"""
Nelder-Mead simplex minimiser for the nonlinear rule families.

Derivative-free and deterministic.  It returns the best vertex seen; there is
no global-optimum guarantee (a sine fit on near-periodic data can lock onto an
aliased frequency), which is accepted for interactive refitting.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from .models import FloatArray

Objective = Callable[[FloatArray], float]


@dataclass(frozen=True, slots=True)
class SimplexResult:
    x: FloatArray
    fx: float
    iterations: int
    converged: bool


class SimplexOptimizer:

    def __init__(
        self,
        step: float = 1.0,
        max_iter: int = 80,
        tol: float = 1e-7,
        alpha: float = 1.0,
        gamma: float = 2.0,
        rho: float = 0.5,
        sigma: float = 0.5,
    ) -> None:
        self.step = step
        self.max_iter = max_iter
        self.tol = tol
        self.alpha = alpha
        self.gamma = gamma
        self.rho = rho
        self.sigma = sigma

    @staticmethod
    def _safe(f: Objective, x: FloatArray) -> float:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            value = float(f(x))
        return value if np.isfinite(value) else float("inf")

    @staticmethod
    def _spread(vertices: FloatArray) -> float:
        """Largest Euclidean distance from the best vertex to any other."""
        return float(np.max(np.linalg.norm(vertices[1:] - vertices[0], axis=1)))

    def minimize(self, f: Objective, x0: Sequence[float]) -> SimplexResult:
        start = np.asarray(x0, dtype=np.float64)
        dim = start.size

        vertices = np.tile(start, (dim + 1, 1))
        for i in range(dim):
            vertices[i + 1, i] += self.step
        values = np.array([self._safe(f, v) for v in vertices])

        converged = False
        iterations = 0
        for iterations in range(1, self.max_iter + 1):
            order = np.argsort(values, kind="stable")
            vertices, values = vertices[order], values[order]
            if self._spread(vertices) < self.tol:
                converged = True
                break

            best_f, second_worst_f, worst_f = values[0], values[dim - 1], values[dim]
            worst = vertices[dim]
            centroid = vertices[:dim].mean(axis=0)

            reflected = centroid + self.alpha * (centroid - worst)
            f_r = self._safe(f, reflected)

            if f_r < best_f:
                expanded = centroid + self.gamma * (reflected - centroid)
                f_e = self._safe(f, expanded)
                if f_e < f_r:
                    vertices[dim], values[dim] = expanded, f_e
                else:
                    vertices[dim], values[dim] = reflected, f_r
                continue

            if f_r < second_worst_f:
                vertices[dim], values[dim] = reflected, f_r
                continue

            contracted = centroid + self.rho * (worst - centroid)
            f_c = self._safe(f, contracted)
            if f_c < worst_f:
                vertices[dim], values[dim] = contracted, f_c
                continue

            best = vertices[0].copy()
            for i in range(1, dim + 1):
                vertices[i] = best + self.sigma * (vertices[i] - best)
                values[i] = self._safe(f, vertices[i])

        order = np.argsort(values, kind="stable")
        return SimplexResult(
            x=vertices[order[0]].copy(),
            fx=float(values[order[0]]),
            iterations=iterations,
            converged=converged,
        )


def nelder_mead(
    f: Objective,
    x0: Sequence[float],
    step: float = 1.0,
    max_iter: int = 80,
    tol: float = 1e-7,
) -> FloatArray:
    return SimplexOptimizer(step=step, max_iter=max_iter, tol=tol).minimize(f, x0).x
