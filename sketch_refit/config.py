"""
Tunable settings for the fit, deformation and analysis engines.

The weight and bandwidth defaults are product-tuned values, not derived
quantities; callers override them by constructing their own settings object.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Shared numeric tolerances
# ---------------------------------------------------------------------------

COEF_EPS: float = 1e-10          # polynomial terms below this are dropped
UNIT_COEF_EPS: float = 1e-10     # |c| within this of 1 prints without the literal
DEGENERATE_EPS: float = 1e-12    # linear-fit denominator treated as zero
KERNEL_EPS: float = 1e-9         # added to the kernel-blend denominator
KERNEL_TERM_EPS: float = 1e-12   # baked kernel terms below this are dropped
OUTPUT_DECIMALS: int = 6
ROOT_DEDUP_DIST: float = 1e-3


# ===========================================================================
# Rule fitting
# ===========================================================================

@dataclass(frozen=True, slots=True)
class SimplexSettings:
    step: float = 0.25
    max_iter: int = 90
    tol: float = 1e-7

    def __post_init__(self) -> None:
        if self.step <= 0:
            raise ValueError(f"step must be positive, got {self.step}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.tol <= 0:
            raise ValueError(f"tol must be positive, got {self.tol}")


@dataclass(frozen=True, slots=True)
class RuleFitSettings:
    trig: SimplexSettings = SimplexSettings(step=0.35, max_iter=90)
    exp: SimplexSettings = SimplexSettings(step=0.25, max_iter=90)
    log: SimplexSettings = SimplexSettings(step=0.25, max_iter=90)
    power: SimplexSettings = SimplexSettings(step=0.25, max_iter=100)
    exp_clamp: float = 30.0
    min_frequency: float = 1e-6

    def __post_init__(self) -> None:
        if self.exp_clamp <= 0:
            raise ValueError(f"exp_clamp must be positive, got {self.exp_clamp}")
        if self.min_frequency <= 0:
            raise ValueError(f"min_frequency must be positive, got {self.min_frequency}")


# ===========================================================================
# Curve deformation
# ===========================================================================

@dataclass(frozen=True, slots=True)
class DeformSettings:
    sigma: float = 0.6
    max_delta: float = 1.5
    min_sigma: float = 1e-6

    @property
    def bandwidth(self) -> float:
        """Kernel bandwidth actually used; a zero/invalid sigma falls back to 0.6."""
        s = self.sigma if math.isfinite(self.sigma) and self.sigma != 0 else 0.6
        return max(self.min_sigma, s)


# ===========================================================================
# Surface delta fitting
# ===========================================================================

@dataclass(frozen=True, slots=True)
class SurfaceFitSettings:
    marker_weight: float = 1.0
    anchor_weight: float = 0.25
    anchor_grid: int = 10
    ridge_lambda: float = 1e-4
    min_weight: float = 1e-8
    preview_interval: float = 0.1   # seconds between throttled preview fits

    def __post_init__(self) -> None:
        if self.marker_weight < 0:
            raise ValueError(f"marker_weight cannot be negative: {self.marker_weight}")
        if self.anchor_weight < 0:
            raise ValueError(f"anchor_weight cannot be negative: {self.anchor_weight}")
        if self.ridge_lambda < 0:
            raise ValueError(f"ridge_lambda cannot be negative: {self.ridge_lambda}")
        if self.preview_interval < 0:
            raise ValueError(f"preview_interval cannot be negative: {self.preview_interval}")

    @property
    def anchor_lattice(self) -> int:
        return max(3, min(20, int(self.anchor_grid)))


# ===========================================================================
# Analysis sampling
# ===========================================================================

@dataclass(frozen=True, slots=True)
class AnalysisSettings:
    samples_1d: int = 2500
    samples_curve: int = 800
    min_samples_curve: int = 64
    surface_nx: int = 80
    surface_ny: int = 80
    min_samples_surface: int = 20
    max_roots: int = 12
    bisect_max_iter: int = 60
    bisect_tol: float = 1e-6
    surface_eps: float = 1e-2
    dedup_dist: float = 0.25
    tangent_dt: float = 1e-3
    slice_count: int = 11

    def __post_init__(self) -> None:
        if self.samples_1d < 1 or self.samples_curve < 1:
            raise ValueError("sample counts must be >= 1")
        if self.max_roots < 1:
            raise ValueError(f"max_roots must be >= 1, got {self.max_roots}")
        if self.bisect_tol <= 0:
            raise ValueError(f"bisect_tol must be positive, got {self.bisect_tol}")
        if self.slice_count < 2:
            raise ValueError(f"slice_count must be >= 2, got {self.slice_count}")
