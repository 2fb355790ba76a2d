# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the distributed evaluation of all simplex vertices.
#
# ===--------------------------------------------------------------------------------------===#

from typing import Callable, List, Optional, Tuple

import logging

import numpy as np

from parasimplex.collectives import Transport
from parasimplex.errors import NumericalInstabilityError
from parasimplex.simplex import Simplex

Objective = Callable[[np.ndarray], float]


def block_partition(num_items: int, num_workers: int) -> Tuple[List[int], List[int]]:
    """Splits ``num_items`` consecutive items into one contiguous block per worker.

    Every worker gets ``num_items // num_workers`` items and the first
    ``num_items % num_workers`` workers get one more.

    Args:
        num_items: Number of items to distribute.
        num_workers: Number of workers, at least 1.

    Returns:
        A tuple containing:
            - Block size of every worker
            - Offset of every worker's block
    """
    if num_workers < 1:
        raise ValueError(f"Number of workers must be at least 1, got {num_workers}.")

    base, rest = divmod(num_items, num_workers)
    counts: List[int] = [base + 1 if rank < rest else base for rank in range(num_workers)]
    displs: List[int] = [0] * num_workers
    for rank in range(1, num_workers):
        displs[rank] = displs[rank - 1] + counts[rank - 1]

    return counts, displs


def check_finite(values: np.ndarray, what: str) -> None:
    if not np.all(np.isfinite(values)):
        bad: np.ndarray = np.flatnonzero(~np.isfinite(values))
        raise NumericalInstabilityError(
            f"Objective returned non-finite values for {what} at positions {bad.tolist()}:"
            f" {values[bad].tolist()}."
        )


class DistributedEvaluator:
    """Evaluates every vertex of a simplex with the work split across the group.

    Attributes:
        objective: Objective function, called on length-d float arrays.
        transport: Collective operations of this worker's group.
        feval: Number of objective calls made by this worker.
    """

    def __init__(
        self,
        objective: Objective,
        transport: Transport,
        logger: Optional[logging.Logger] = None,
    ):
        self.objective: Objective = objective
        self.transport: Transport = transport
        self.feval: int = 0
        self.logger: logging.Logger = logger if logger is not None else logging.getLogger(__name__)

    def __repr__(self):
        return (
            f"{self.__class__.__name__}"
            "("
            f"rank={self.transport.rank},"
            f"size={self.transport.size},"
            f"feval={self.feval}"
            ")"
        )

    def evaluate_points(self, points: np.ndarray) -> np.ndarray:
        """Evaluates the rows of ``points`` with one contiguous block per worker.

        Every worker must pass the same ``points``. The blocks are gathered, so each worker
        ends with the values of all rows, in row order. Values are not checked here.

        Args:
            points: Array of shape ``(n, d)``, identical on every worker.

        Returns:
            Array of ``n`` objective values.
        """
        counts, displs = block_partition(len(points), self.transport.size)
        begin: int = displs[self.transport.rank]
        end: int = begin + counts[self.transport.rank]

        chunk: np.ndarray = np.empty(end - begin, dtype=np.float64)
        for i, row in enumerate(range(begin, end)):
            chunk[i] = self.objective(points[row])
            self.feval += 1
        self.logger.debug(f"Evaluated rows [{begin}, {end}) of {len(points)}.")

        return self.transport.gather_all_variable(chunk, counts)

    def evaluate_all(self, simplex: Simplex) -> None:
        """Recomputes the value of every vertex and stores it on every worker.

        This worker evaluates the vertices of its block, taken in sorted-rank order under
        the current ranking. The blocks of all workers are then gathered, so each worker
        ends with the complete array, which is written back to raw slots through the same
        ranking.

        Args:
            simplex: This worker's replica, updated in place.

        Raises:
            NumericalInstabilityError: If any worker's block holds a non-finite value. The
                check runs on the gathered array, so all workers raise together.
        """
        sorted_values: np.ndarray = self.evaluate_points(simplex.sorted_vertices())
        check_finite(sorted_values, "simplex vertices")
        simplex.set_sorted_values(sorted_values)
