# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the termination policies of the solver.
#
# ===--------------------------------------------------------------------------------------===#
"""Convergence tests.

Every policy reads only replicated simplex state, so all workers of a group agree on the
round at which to stop without any extra communication.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from parasimplex.simplex import Simplex


class ConvergencePolicy(ABC):
    @abstractmethod
    def converged(self, simplex: Simplex) -> bool:
        """Returns True once the search should stop."""


@dataclass
class AbsoluteTolerance(ConvergencePolicy):
    """Stops when the best value drops to ``tol``. Assumes the minimum is near zero."""

    tol: float = 1e-6

    def converged(self, simplex: Simplex) -> bool:
        return simplex.best_value <= self.tol


@dataclass
class RelativeTolerance(ConvergencePolicy):
    """Stops when the spread of values is small relative to the best value."""

    rtol: float = 1e-8
    atol: float = 1e-12

    def converged(self, simplex: Simplex) -> bool:
        best: float = simplex.best_value
        return simplex.worst_value - best <= self.atol + self.rtol * abs(best)


@dataclass
class DiameterTolerance(ConvergencePolicy):
    """Stops when every vertex lies within ``xtol`` of the best vertex."""

    xtol: float = 1e-8

    def converged(self, simplex: Simplex) -> bool:
        return simplex.diameter() <= self.xtol


def get_convergence_policy(kind: str = "absolute", **params: float) -> ConvergencePolicy:
    """Builds a convergence policy from its name.

    Args:
        kind: One of 'absolute', 'relative', 'diameter'.
        **params: Fields of the selected policy.

    Returns:
        The configured policy.

    Raises:
        ValueError: If ``kind`` is not supported.
    """
    match kind:
        case "absolute":
            return AbsoluteTolerance(**params)
        case "relative":
            return RelativeTolerance(**params)
        case "diameter":
            return DiameterTolerance(**params)
        case _:
            raise ValueError(f"Unsupported convergence policy: {kind}.")
