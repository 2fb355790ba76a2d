# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the per-worker Nelder-Mead transformation of one vertex.
#
# ===--------------------------------------------------------------------------------------===#

from typing import Optional, Sequence

from dataclasses import dataclass
from enum import Enum
import logging
import math

import numpy as np

from parasimplex.evaluator import Objective
from parasimplex.simplex import Simplex


@dataclass(frozen=True)
class Coefficients:
    """Nelder-Mead coefficients, fixed for the lifetime of a solver.

    Attributes:
        rho: Reflection coefficient.
        xi: Expansion coefficient.
        gamma: Contraction coefficient.
        sigma: Shrink coefficient.
    """

    rho: float = 1.0
    xi: float = 2.0
    gamma: float = 0.5
    sigma: float = 0.5

    def __post_init__(self):
        if not self.rho > 0:
            raise ValueError(f"Reflection coefficient must be positive, got {self.rho}.")
        if not self.xi > 1:
            raise ValueError(f"Expansion coefficient must exceed 1, got {self.xi}.")
        if not 0 < self.gamma < 1:
            raise ValueError(f"Contraction coefficient must lie in (0, 1), got {self.gamma}.")
        if not 0 < self.sigma < 1:
            raise ValueError(f"Shrink coefficient must lie in (0, 1), got {self.sigma}.")


class Move(str, Enum):
    """Outcome of one worker's transformation step."""

    REFLECT = "reflect"
    EXPAND = "expand"
    EVENTUAL_REFLECT = "eventual_reflect"
    OUTSIDE_CONTRACT = "outside_contract"
    INSIDE_CONTRACT = "inside_contract"
    FALLBACK_REFLECT = "fallback_reflect"
    UNCHANGED = "unchanged"
    NONFINITE = "nonfinite"


@dataclass
class StepOutcome:
    """Result of :meth:`TransformationEngine.step`.

    Attributes:
        move: Branch of the decision tree that was taken.
        updated: Whether the assigned vertex's coordinates changed.
        nonfinite: Whether a candidate evaluated to nan or +/-inf.
        value: Value of the last candidate considered by the accepted branch.
    """

    move: Move
    updated: bool
    nonfinite: bool = False
    value: float = math.nan


# rows of TransformationEngine.candidates
REFLECTION, EXPANSION, OUTSIDE, INSIDE = range(4)


def speculative_schedule(dimension: int, size: int) -> bool:
    """Whether a group of ``size`` workers advances a d-simplex speculatively.

    Once ``size >= d`` the best ``d + 1 - size`` vertices leave at most one point for the
    centroid, every worker line-searches through it and the simplex degenerates. Such
    groups instead transform only the worst vertex, exactly as a single worker would, and
    split the evaluation of its four candidates across the workers.
    """
    return size > 1 and size >= dimension


class TransformationEngine:
    """Computes one candidate replacement per round for a worker's assigned vertex.

    In the lockstep schedule worker ``rank`` of a group of ``size`` owns the vertex at
    sorted rank ``d - rank`` and the centroid is taken over the ``d + 1 - size`` best
    vertices, which is the same set on every worker. In the speculative schedule (see
    :func:`speculative_schedule`) every worker owns the worst vertex and uses the centroid
    of the other d. Every decision is local: the engine only looks at this worker's
    replica and never communicates.

    Attributes:
        objective: Objective function.
        rank: This worker's rank.
        size: Number of workers in the group.
        coefficients: Nelder-Mead coefficients.
        feval: Number of objective calls made by this engine.
    """

    def __init__(
        self,
        objective: Objective,
        rank: int,
        size: int,
        coefficients: Optional[Coefficients] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.objective: Objective = objective
        self.rank: int = rank
        self.size: int = size
        self.coefficients: Coefficients = coefficients if coefficients is not None else Coefficients()
        self.feval: int = 0
        self.logger: logging.Logger = logger if logger is not None else logging.getLogger(__name__)

    def __repr__(self):
        return (
            f"{self.__class__.__name__}"
            "("
            f"rank={self.rank},"
            f"size={self.size},"
            f"coefficients={self.coefficients},"
            f"feval={self.feval}"
            ")"
        )

    def speculative(self, simplex: Simplex) -> bool:
        return speculative_schedule(simplex.dimension, self.size)

    def assigned_rank(self, simplex: Simplex) -> int:
        if self.speculative(simplex):
            return simplex.dimension
        return simplex.dimension - self.rank

    def centroid(self, simplex: Simplex) -> np.ndarray:
        """Mean of the best vertices left out of this round's transformations."""
        count: int = simplex.num_vertices - self.size
        if self.speculative(simplex):
            count = simplex.dimension
        return np.mean(simplex.sorted_vertices(count), axis=0)

    def reflection(self, centroid: np.ndarray, vertex: np.ndarray) -> np.ndarray:
        rho: float = self.coefficients.rho
        return (1 + rho) * centroid - rho * vertex

    def expansion(self, centroid: np.ndarray, vertex: np.ndarray) -> np.ndarray:
        rho_xi: float = self.coefficients.rho * self.coefficients.xi
        return (1 + rho_xi) * centroid - rho_xi * vertex

    def outside_contraction(self, centroid: np.ndarray, vertex: np.ndarray) -> np.ndarray:
        rho_gam: float = self.coefficients.rho * self.coefficients.gamma
        return (1 + rho_gam) * centroid - rho_gam * vertex

    def inside_contraction(self, centroid: np.ndarray, vertex: np.ndarray) -> np.ndarray:
        gam: float = self.coefficients.gamma
        return (1 - gam) * centroid + gam * vertex

    def candidates(self, simplex: Simplex) -> np.ndarray:
        """Returns the candidates for the assigned vertex, one per row.

        Rows follow ``REFLECTION``, ``EXPANSION``, ``OUTSIDE`` and ``INSIDE``.
        """
        centroid: np.ndarray = self.centroid(simplex)
        v: np.ndarray = simplex.vertex(self.assigned_rank(simplex))
        return np.stack(
            [
                self.reflection(centroid, v),
                self.expansion(centroid, v),
                self.outside_contraction(centroid, v),
                self.inside_contraction(centroid, v),
            ]
        )

    def _evaluate(self, point: np.ndarray) -> float:
        self.feval += 1
        return float(self.objective(point))

    def _accept(
        self, simplex: Simplex, rank: int, candidate: np.ndarray, value: float, move: Move
    ) -> StepOutcome:
        # an identical point is not an update, the group must not hear about it
        if np.array_equal(candidate, simplex.vertex(rank)):
            return StepOutcome(move=move, updated=False, value=value)
        simplex.set_vertex(rank, candidate, value)
        return StepOutcome(move=move, updated=True, value=value)

    def _fallback(
        self, simplex: Simplex, rank: int, ar: np.ndarray, f_ar: float, f_v: float
    ) -> StepOutcome:
        # partial shrink: keep the reflection if it beats the current vertex
        if f_ar < f_v:
            return self._accept(simplex, rank, ar, f_ar, Move.FALLBACK_REFLECT)
        return StepOutcome(move=Move.UNCHANGED, updated=False, value=f_ar)

    def step(self, simplex: Simplex, values: Optional[Sequence[float]] = None) -> StepOutcome:
        """Runs one round of the decision tree on this worker's assigned vertex.

        The branches, tested in order, with v the assigned vertex, ``best`` the value at
        rank 0 and ``pred`` the value just before v in sorted order:

        1. ``best <= f(AR) <= pred``: accept the reflection.
        2. ``f(AR) < best``: accept the expansion if it beats the reflection, else the
           reflection.
        3. ``pred <= f(AR) < f(v)``: accept the outside contraction if it is no worse than
           the reflection, else fall back.
        4. Otherwise accept the inside contraction if it beats v, else fall back.

        Falling back keeps the reflection when it beats v and leaves v unchanged otherwise.
        A non-finite candidate stops the tree and leaves v unchanged.

        Args:
            simplex: This worker's replica, updated in place at the assigned vertex.
            values: Values of the rows of :meth:`candidates`, already computed by the
                group. If None, candidates are evaluated here as the tree reaches them.

        Returns:
            The branch taken and whether the assigned vertex changed.
        """
        current: int = self.assigned_rank(simplex)
        points: np.ndarray = self.candidates(simplex)
        f_v: float = simplex.value(current)
        best: float = simplex.value(0)
        f_pred: float = simplex.value(current - 1)

        def value_of(row: int) -> float:
            if values is not None:
                return float(values[row])
            return self._evaluate(points[row])

        ar: np.ndarray = points[REFLECTION]
        f_ar: float = value_of(REFLECTION)
        if not math.isfinite(f_ar):
            return StepOutcome(move=Move.NONFINITE, updated=False, nonfinite=True, value=f_ar)

        if best <= f_ar <= f_pred:
            return self._accept(simplex, current, ar, f_ar, Move.REFLECT)

        if f_ar < best:
            f_ae: float = value_of(EXPANSION)
            if not math.isfinite(f_ae):
                return StepOutcome(move=Move.NONFINITE, updated=False, nonfinite=True, value=f_ae)
            if f_ae < f_ar:
                return self._accept(simplex, current, points[EXPANSION], f_ae, Move.EXPAND)
            return self._accept(simplex, current, ar, f_ar, Move.EVENTUAL_REFLECT)

        if f_pred <= f_ar < f_v:
            f_ac: float = value_of(OUTSIDE)
            if not math.isfinite(f_ac):
                return StepOutcome(move=Move.NONFINITE, updated=False, nonfinite=True, value=f_ac)
            if f_ac <= f_ar:
                return self._accept(simplex, current, points[OUTSIDE], f_ac, Move.OUTSIDE_CONTRACT)
            return self._fallback(simplex, current, ar, f_ar, f_v)

        f_ac = value_of(INSIDE)
        if not math.isfinite(f_ac):
            return StepOutcome(move=Move.NONFINITE, updated=False, nonfinite=True, value=f_ac)
        if f_ac < f_v:
            return self._accept(simplex, current, points[INSIDE], f_ac, Move.INSIDE_CONTRACT)
        return self._fallback(simplex, current, ar, f_ar, f_v)
