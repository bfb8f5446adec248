"""Aberth-Ehrlich simultaneous root iteration."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .polynomial import Polynomial

GOLDEN_RATIO = (1.0 + np.sqrt(5.0)) / 2.0
DEFAULT_MAX_ITERATIONS = 100000
DEFAULT_THRESHOLD = 0.001


@dataclass(frozen=True)
class AberthResult:
    """Root estimates produced by a single solve."""

    roots: np.ndarray
    iterations: int
    converged: bool


def golden_annulus(count: int, r_min: float, r_max: float) -> np.ndarray:
    """Spread ``count`` points over the annulus ``r_min <= |z| <= r_max`` on a golden-angle spiral."""

    i = np.arange(count, dtype=np.float64)
    t = i / count if count else i
    radius = np.sqrt(t * (r_max * r_max - r_min * r_min) + r_min * r_min)
    theta = 2.0 * np.pi * i / GOLDEN_RATIO
    return radius * np.exp(1j * theta)


def _coupling(z: np.ndarray) -> np.ndarray:
    """Return ``sum_{j != k} 1 / (z_k - z_j)`` for every ``k``."""

    diff = z[:, np.newaxis] - z[np.newaxis, :]
    np.fill_diagonal(diff, np.inf)
    return np.sum(1.0 / diff, axis=1)


@dataclass(frozen=True)
class AberthSolver:
    """Find all roots of a polynomial with the Aberth-Ehrlich method.

    Every iteration computes the offsets for all roots from the previous
    iterate and applies them together. Iteration stops once the largest
    offset drops below ``threshold`` or after ``max_iterations`` sweeps; the
    last iterate is returned either way. An estimate landing on a critical
    point or on another estimate makes the iterate non-finite; the solve then
    ends early with all-NaN roots and ``converged=False``, without raising.
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    threshold: float = DEFAULT_THRESHOLD

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1.")
        if not self.threshold > 0:
            raise ValueError("threshold must be positive.")

    def initial_guesses(self, polynomial: Polynomial) -> np.ndarray:
        upper, lower = polynomial.bounds()
        return golden_annulus(polynomial.degree, lower, upper)

    def solve(self, polynomial: Polynomial) -> AberthResult:
        if polynomial.degree < 1:
            raise ValueError("Root finding requires a polynomial of degree 1 or higher.")

        derivative = polynomial.derivative()
        z = self.initial_guesses(polynomial)

        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            for iteration in range(1, self.max_iterations + 1):
                newton = polynomial.evaluate(z) / derivative.evaluate(z)
                offsets = newton / (1.0 - newton * _coupling(z))
                if not np.isfinite(offsets).all():
                    # A non-finite offset reaches every estimate through the
                    # coupling sum on the next sweep and the iterate never
                    # recovers, so stop here with the all-NaN result the
                    # remaining sweeps would produce.
                    roots = np.full_like(z, complex(np.nan, np.nan))
                    return AberthResult(roots=roots, iterations=iteration, converged=False)
                z = z - offsets
                if np.max(np.abs(offsets)) < self.threshold:
                    return AberthResult(roots=z, iterations=iteration, converged=True)

        return AberthResult(roots=z, iterations=self.max_iterations, converged=False)

    def solve_roots(self, polynomial: Polynomial) -> np.ndarray:
        return self.solve(polynomial).roots
