# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the lockstep parallel Nelder-Mead solver and its synchronization
# protocol.
#
# ===--------------------------------------------------------------------------------------===#

from typing import Callable, Optional, Sequence, Tuple

import logging

import numpy as np

from parasimplex.collectives import Transport
from parasimplex.convergence import AbsoluteTolerance, ConvergencePolicy
from parasimplex.engine import (
    Coefficients,
    StepOutcome,
    TransformationEngine,
    speculative_schedule,
)
from parasimplex.errors import InvalidGroupSizeError, NumericalInstabilityError
from parasimplex.evaluator import DistributedEvaluator, Objective, check_finite
from parasimplex.simplex import Simplex


def encode_round_status(updated: bool, nonfinite: bool, size: int) -> int:
    """Packs a worker's round flags into one integer suitable for a sum reduction.

    At most ``size`` workers can set ``updated``, so the update count stays below
    ``size + 1`` and the instability count lives in the multiples of ``size + 1``.
    """
    return int(updated) + (size + 1) * int(nonfinite)


def decode_round_status(total: int, size: int) -> Tuple[int, int]:
    """Splits a reduced round status into (updated workers, non-finite workers)."""
    return total % (size + 1), total // (size + 1)


def validate_group(dimension: int, rank: int, size: int) -> None:
    """Checks that a group of ``size`` workers can drive a d-dimensional simplex.

    Raises:
        InvalidGroupSizeError: If ``size`` is outside [1, d + 1] or ``rank`` outside [0, size).
    """
    if not 1 <= size <= dimension + 1:
        raise InvalidGroupSizeError(
            f"Group size must lie in [1, {dimension + 1}] for dimension {dimension}, got {size}."
        )
    if not 0 <= rank < size:
        raise InvalidGroupSizeError(f"Rank must lie in [0, {size}), got {rank}.")


class ParallelNelderMead:
    """Nelder-Mead simplex search advanced in lockstep by a group of workers.

    Every worker of the group builds one instance with its own transport. Each instance
    holds a full replica of the simplex; the synchronization protocol run at the end of
    every round leaves all replicas bit-identical.

    A single worker or a group smaller than the dimension uses the lockstep schedule,
    where each worker transforms its own vertex. Larger groups (see
    :func:`speculative_schedule`) follow the single-worker trajectory exactly and only
    share the candidate and shrink evaluations.

    Attributes:
        dimension: Problem dimension d.
        transport: Collective operations of this worker's group.
        simplex: This worker's replica.
        engine: Per-round transformation of the assigned vertex.
        evaluator: Distributed evaluation of the full simplex.
        convergence: Termination policy.
        best: Best value after the last round.
        rounds: Number of rounds executed by the last :meth:`solve`.
        total_feval: Group-wide number of objective calls, set once :meth:`solve` returns.
    """

    def __init__(
        self,
        dimension: int,
        objective: Objective,
        transport: Transport,
        guess: Optional[Sequence[float]] = None,
        step: float = 1.0,
        coefficients: Optional[Coefficients] = None,
        convergence: Optional[ConvergencePolicy] = None,
        logger: Optional[logging.Logger] = None,
        log_every: int = 100,
    ):
        """Initializes the solver and its replica of the starting simplex.

        Args:
            dimension: Problem dimension d, at least 1.
            objective: Pure function mapping a length-d array to a float.
            transport: This worker's handle on the group; provides rank and size.
            guess: Initial point; defaults to all ones (with ``step`` applied).
            step: Offset of vertex i along coordinate i - 1.
            coefficients: Nelder-Mead coefficients; defaults to (1, 2, 0.5, 0.5).
            convergence: Termination policy; defaults to ``AbsoluteTolerance(1e-6)``.
            logger: Logger instance for this worker.
            log_every: Rounds between progress messages, 0 disables them.

        Raises:
            InvalidGroupSizeError: If the group does not satisfy 1 <= size <= d + 1.
            SimplexAllocationError: If the simplex storage cannot be allocated.
        """
        if dimension < 1:
            raise ValueError(f"Dimension must be at least 1, got {dimension}.")
        validate_group(dimension, transport.rank, transport.size)

        self.dimension: int = dimension
        self.transport: Transport = transport
        self.logger: logging.Logger = logger if logger is not None else logging.getLogger(__name__)
        self.log_every: int = log_every

        self.simplex: Simplex = Simplex.initial(dimension, guess, step)
        self.engine: TransformationEngine = TransformationEngine(
            objective, transport.rank, transport.size, coefficients, self.logger
        )
        self.evaluator: DistributedEvaluator = DistributedEvaluator(
            objective, transport, self.logger
        )
        self.convergence: ConvergencePolicy = (
            convergence if convergence is not None else AbsoluteTolerance()
        )

        self.best: float = np.inf
        self.rounds: int = 0
        self.total_feval: Optional[int] = None

    def __repr__(self):
        return (
            f"{self.__class__.__name__}"
            "("
            f"dimension={self.dimension},"
            f"rank={self.rank},"
            f"size={self.size},"
            f"best={self.best:.8g},"
            f"rounds={self.rounds}"
            ")"
        )

    @property
    def rank(self) -> int:
        return self.transport.rank

    @property
    def size(self) -> int:
        return self.transport.size

    @property
    def coefficients(self) -> Coefficients:
        return self.engine.coefficients

    @property
    def feval(self) -> int:
        """Objective calls made by this worker so far."""
        return self.engine.feval + self.evaluator.feval

    def transform(self) -> StepOutcome:
        """Runs this worker's transformation step for the current round.

        In the speculative schedule the four candidates of the worst vertex are evaluated
        across the group first, so every replica applies the same step to the same values.
        """
        if not self.engine.speculative(self.simplex):
            return self.engine.step(self.simplex)
        values: np.ndarray = self.evaluator.evaluate_points(self.engine.candidates(self.simplex))
        return self.engine.step(self.simplex, values)

    def merge(self) -> None:
        """Splices every worker's assigned vertex into the P worst slots of the replica.

        Worker r contributes the coordinates and value of its vertex at sorted rank d - r,
        changed or not, and every worker writes it back at that same rank. Only the lockstep
        schedule merges.
        """
        current: int = self.engine.assigned_rank(self.simplex)
        row: np.ndarray = np.append(self.simplex.vertex(current), self.simplex.value(current))
        rows: np.ndarray = self.transport.gather_all_fixed(row)
        for worker, worker_row in enumerate(rows):
            self.simplex.set_vertex(self.dimension - worker, worker_row[:-1], worker_row[-1])
        check_finite(self.simplex.values, "merged vertices")

    def shrink(self) -> None:
        """Shrinks the replica toward its best vertex and re-evaluates every vertex.

        The shrink itself needs no communication since all replicas are identical.
        """
        self.simplex.shrink(self.coefficients.sigma)
        self.evaluator.evaluate_all(self.simplex)

    def synchronize(self, outcome: StepOutcome) -> bool:
        """Restores a consistent simplex on every worker after a transformation step.

        Args:
            outcome: This worker's result of :meth:`TransformationEngine.step`.

        Returns:
            True if some worker updated its vertex, False if the simplex was shrunk.

        Raises:
            NumericalInstabilityError: If any worker evaluated a non-finite candidate.
        """
        status: int = self.transport.reduce_sum(
            encode_round_status(outcome.updated, outcome.nonfinite, self.size)
        )
        num_updated, num_nonfinite = decode_round_status(status, self.size)
        if num_nonfinite:
            raise NumericalInstabilityError(
                f"{num_nonfinite} worker(s) evaluated a non-finite candidate in round"
                f" {self.rounds + 1}."
            )

        merged: bool = num_updated > 0
        if not merged:
            self.shrink()
        elif not self.engine.speculative(self.simplex):
            # speculative replicas already applied the same step
            self.merge()

        self.simplex.resort()
        self.best = self.simplex.best_value
        return merged

    def solve(
        self,
        max_rounds: int = 0,
        callback: Optional[Callable[["ParallelNelderMead", int], None]] = None,
    ) -> np.ndarray:
        """Runs rounds until the convergence policy is met or ``max_rounds`` is reached.

        Every worker of the group must call this method with the same ``max_rounds``.

        Args:
            max_rounds: Round cap; values <= 0 leave the loop bounded only by convergence.
            callback: Called as ``callback(solver, round)`` after every synchronized round.

        Returns:
            Read-only view of the best vertex, valid while this solver is alive.
        """
        schedule: str = (
            "speculative" if speculative_schedule(self.dimension, self.size) else "lockstep"
        )
        self.logger.info(
            f"Starting solver: dimension={self.dimension}, workers={self.size},"
            f" schedule={schedule},"
            f" coefficients={self.coefficients}, convergence={self.convergence}."
        )

        self.evaluator.evaluate_all(self.simplex)
        self.simplex.resort()
        self.best = self.simplex.best_value
        self.rounds = 0

        while not self.convergence.converged(self.simplex) and (
            max_rounds <= 0 or self.rounds < max_rounds
        ):
            outcome: StepOutcome = self.transform()
            self.logger.debug(
                f"Round {self.rounds + 1}: {outcome.move.value} (updated={outcome.updated})."
            )
            merged: bool = self.synchronize(outcome)
            self.rounds += 1

            if not merged:
                self.logger.debug(f"Round {self.rounds}: no worker updated, simplex shrunk.")
            if self.log_every and self.rounds % self.log_every == 0:
                self.logger.info(f"Round {self.rounds}: best = {self.best:.8g}.")
            if callback is not None:
                callback(self, self.rounds)

        self.total_feval = self.transport.reduce_sum(self.feval)

        if self.rank == 0:
            self.logger.info(f"Total Iterations: {self.rounds}")
            self.logger.info(f"Total Function Evaluations: {self.total_feval}")

        return self.simplex.best_vertex()
