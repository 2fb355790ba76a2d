# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the simplex store and its ranking permutation.
#
# ===--------------------------------------------------------------------------------------===#

from typing import Optional, Sequence

import numpy as np
import psutil

from parasimplex.errors import SimplexAllocationError

FLOAT_SZ_B: int = np.dtype(np.float64).itemsize


class Ranking:
    """Sort-by-value permutation over the raw vertex slots of a simplex.

    ``ranking[k]`` is the storage slot of the vertex with the k-th smallest value. The
    permutation is computed with a stable sort, so vertices with equal values keep their
    ascending slot order.

    Attributes:
        order: Read-only integer array holding the slot of every sorted rank.
    """

    def __init__(self, order: np.ndarray):
        order = np.array(order, dtype=np.intp)
        if not np.array_equal(np.sort(order), np.arange(len(order))):
            raise ValueError(f"Ranking must be a permutation of 0..{len(order) - 1}, got {order}.")
        order.flags.writeable = False
        self.order: np.ndarray = order

    @classmethod
    def identity(cls, num_slots: int) -> "Ranking":
        return cls(np.arange(num_slots))

    @classmethod
    def from_values(cls, values: np.ndarray) -> "Ranking":
        """Builds the ranking that sorts ``values`` in non-decreasing order."""
        return cls(np.argsort(values, kind="stable"))

    def __len__(self) -> int:
        return len(self.order)

    def __getitem__(self, rank: int) -> int:
        return int(self.order[rank])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ranking):
            return NotImplemented
        return np.array_equal(self.order, other.order)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.order.tolist()})"

    def is_sorted(self, values: np.ndarray) -> bool:
        """Checks that ``values`` are non-decreasing when read in ranking order."""
        ordered: np.ndarray = values[self.order]
        return bool(np.all(ordered[:-1] <= ordered[1:]))


def check_available_memory(dimension: int) -> None:
    """Fails early if the host cannot hold the storage of a d-dimensional simplex.

    Args:
        dimension: Problem dimension d.

    Raises:
        SimplexAllocationError: If the vertex and value arrays exceed the available memory.
    """
    required_b: int = FLOAT_SZ_B * (dimension + 1) * (dimension + 1)
    available_b: int = psutil.virtual_memory().available
    if required_b > available_b:
        raise SimplexAllocationError(
            f"Simplex of dimension {dimension} needs {required_b} bytes,"
            f" only {available_b} bytes available."
        )


class Simplex:
    """Arena of d + 1 vertices with cached objective values and a ranking.

    Vertices are stored contiguously in a ``(d + 1, d)`` array and never physically
    reordered: every accessor that takes a ``rank`` goes through the current
    :class:`Ranking`. Values are indexed by raw storage slot.

    Attributes:
        dimension: Problem dimension d.
        vertices: Coordinates, one row per storage slot.
        values: Cached objective value of each storage slot.
        ranking: Current sort-by-value permutation.
    """

    def __init__(self, vertices: np.ndarray, values: Optional[np.ndarray] = None):
        """Wraps existing vertex coordinates.

        Args:
            vertices: Array of shape ``(d + 1, d)``.
            values: Optional cached values of shape ``(d + 1,)``. Defaults to +inf, which
                marks every vertex as not evaluated yet.
        """
        vertices = np.asarray(vertices, dtype=np.float64)
        if vertices.ndim != 2 or vertices.shape[0] != vertices.shape[1] + 1:
            raise ValueError(f"Expected vertices of shape (d + 1, d), got {vertices.shape}.")

        self.dimension: int = vertices.shape[1]
        check_available_memory(self.dimension)
        try:
            self.vertices: np.ndarray = np.array(vertices, dtype=np.float64, copy=True)
            self.values: np.ndarray = np.full(self.dimension + 1, np.inf, dtype=np.float64)
        except MemoryError as err:
            raise SimplexAllocationError(
                f"Unable to allocate simplex of dimension {self.dimension}."
            ) from err

        if values is not None:
            self.values[:] = values
        self.ranking: Ranking = Ranking.identity(self.dimension + 1)

    @classmethod
    def initial(
        cls, dimension: int, guess: Optional[Sequence[float]] = None, step: float = 1.0
    ) -> "Simplex":
        """Builds the starting simplex around an initial guess.

        Vertex 0 is the guess itself and vertex i (1..d) is the guess with coordinate i - 1
        moved by ``step``. Without a guess the all-ones vector is used.

        Args:
            dimension: Problem dimension d, at least 1.
            guess: Initial point of length d.
            step: Perturbation applied along each coordinate axis.

        Returns:
            A simplex with unevaluated (+inf) values and identity ranking.
        """
        if dimension < 1:
            raise ValueError(f"Dimension must be at least 1, got {dimension}.")

        if guess is None:
            guess = np.ones(dimension)
        guess_arr: np.ndarray = np.asarray(guess, dtype=np.float64)
        if guess_arr.shape != (dimension,):
            raise ValueError(f"Guess must have length {dimension}, got shape {guess_arr.shape}.")

        try:
            vertices: np.ndarray = np.tile(guess_arr, (dimension + 1, 1))
        except MemoryError as err:
            raise SimplexAllocationError(
                f"Unable to allocate simplex of dimension {dimension}."
            ) from err
        vertices[1:] += step * np.eye(dimension)

        return cls(vertices)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}"
            "("
            f"dimension={self.dimension},"
            f"best_value={self.best_value:.8g},"
            f"ranking={self.ranking.order.tolist()}"
            ")"
        )

    @property
    def num_vertices(self) -> int:
        return self.dimension + 1

    @property
    def best_value(self) -> float:
        return float(self.values[self.ranking[0]])

    @property
    def worst_value(self) -> float:
        return float(self.values[self.ranking[self.dimension]])

    def vertex(self, rank: int) -> np.ndarray:
        """Returns the (writable) coordinates of the vertex at sorted ``rank``."""
        return self.vertices[self.ranking[rank]]

    def value(self, rank: int) -> float:
        return float(self.values[self.ranking[rank]])

    def sorted_vertices(self, count: Optional[int] = None) -> np.ndarray:
        """Returns a copy of the ``count`` best vertices in sorted order."""
        order: np.ndarray = self.ranking.order if count is None else self.ranking.order[:count]
        return self.vertices[order]

    def set_vertex(self, rank: int, coords: np.ndarray, value: float) -> None:
        slot: int = self.ranking[rank]
        self.vertices[slot] = coords
        self.values[slot] = value

    def set_sorted_values(self, sorted_values: np.ndarray) -> None:
        """Stores values produced in sorted-rank order back into their raw slots."""
        self.values[self.ranking.order] = sorted_values

    def resort(self) -> Ranking:
        self.ranking = Ranking.from_values(self.values)
        return self.ranking

    def best_vertex(self) -> np.ndarray:
        """Returns a read-only view of the vertex at sorted rank 0.

        The view shares memory with the simplex, so it reflects later updates and is only
        meaningful while the simplex is alive.
        """
        view: np.ndarray = self.vertices[self.ranking[0]].view()
        view.flags.writeable = False
        return view

    def shrink(self, sigma: float) -> None:
        """Pulls every non-best vertex toward the best one.

        Each vertex v becomes ``sigma * best + (1 - sigma) * v``. Values are left stale and
        must be recomputed by the caller.
        """
        best_slot: int = self.ranking[0]
        best: np.ndarray = self.vertices[best_slot].copy()
        for rank in range(1, self.num_vertices):
            slot: int = self.ranking[rank]
            self.vertices[slot] = sigma * best + (1.0 - sigma) * self.vertices[slot]

    def diameter(self) -> float:
        """Largest Euclidean distance from any vertex to the best vertex."""
        best: np.ndarray = self.vertices[self.ranking[0]]
        return float(np.max(np.linalg.norm(self.vertices - best, axis=1)))
