"""Polynomial model and the Littlewood family generator."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

import numpy as np

LITTLEWOOD_CHOICES = (-1, 1)


@dataclass(frozen=True, eq=False)
class Polynomial:
    """A polynomial with complex coefficients stored in ascending power order."""

    coefficients: Sequence[complex] | np.ndarray
    degree: Optional[int] = None

    def __post_init__(self) -> None:
        coeffs = np.array(self.coefficients, dtype=np.complex128).reshape(-1)
        degree = coeffs.size - 1 if self.degree is None else int(self.degree)
        if degree < 0:
            raise ValueError("Polynomial degree must be non-negative.")
        if coeffs.size != degree + 1:
            raise ValueError(
                f"Polynomial of degree {degree} must have {degree + 1} coefficients, got {coeffs.size}."
            )
        if coeffs[degree] == 0:
            raise ValueError("Leading coefficient must not be 0.")
        coeffs.flags.writeable = False
        object.__setattr__(self, "coefficients", coeffs)
        object.__setattr__(self, "degree", degree)

    def evaluate(self, z):
        """Evaluate the polynomial at ``z`` (scalar or array) using Horner's scheme."""

        return np.polynomial.polynomial.polyval(z, self.coefficients)

    __call__ = evaluate

    def derivative(self) -> "Polynomial":
        if self.degree == 0:
            raise ValueError("A constant polynomial has no derivative of valid degree.")
        powers = np.arange(1, self.degree + 1, dtype=np.float64)
        return Polynomial(self.coefficients[1:] * powers, self.degree - 1)

    def bounds(self) -> tuple[float, float]:
        """Return ``(upper, lower)`` radii of an annulus holding every root."""

        upper = 1.0 + float(np.max(np.abs(self.coefficients / self.coefficients[self.degree])))
        return upper, 1.0 / upper

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Polynomial):
            return NotImplemented
        return self.degree == other.degree and np.array_equal(self.coefficients, other.coefficients)

    def __hash__(self) -> int:
        return hash((self.degree, self.coefficients.tobytes()))

    def __str__(self) -> str:
        terms = []
        for power in range(self.degree, -1, -1):
            c = self.coefficients[power]
            if c == 0:
                continue
            if c.imag == 0:
                text = f"{c.real:+g}"
            else:
                text = f"{c.real:+g}{c.imag:+g}j"
            terms.append(f"({text})x^{power}")
        return " + ".join(terms)


def littlewood_polynomials(degree: int) -> Iterator[Polynomial]:
    """Yield every degree ``degree`` polynomial with coefficients in {-1, +1}.

    Coefficient vectors follow binary-counting order: the highest power varies
    fastest, matching ``itertools.product``.
    """

    if degree < 0:
        raise ValueError("Littlewood degree must be non-negative.")
    for coeffs in itertools.product(LITTLEWOOD_CHOICES, repeat=degree + 1):
        yield Polynomial(coeffs, degree)


@dataclass(frozen=True)
class LittlewoodFamily:
    """Restartable lazy sequence of all Littlewood polynomials of one degree."""

    degree: int

    def __post_init__(self) -> None:
        if self.degree < 0:
            raise ValueError("Littlewood degree must be non-negative.")

    def __iter__(self) -> Iterator[Polynomial]:
        return littlewood_polynomials(self.degree)

    def __len__(self) -> int:
        return 2 ** (self.degree + 1)


def littlewood_up_to(n: int) -> list[Polynomial]:
    """Return the Littlewood polynomials of degrees ``1..n-1`` in degree order."""

    result: list[Polynomial] = []
    for degree in range(1, n):
        result.extend(LittlewoodFamily(degree))
    return result
