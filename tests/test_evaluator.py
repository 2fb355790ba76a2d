# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the block partition and the distributed evaluator."""

import math

import numpy as np
import pytest

from parasimplex.collectives import LocalGroup
from parasimplex.errors import NumericalInstabilityError
from parasimplex.evaluator import DistributedEvaluator, block_partition
from parasimplex.objectives import sphere
from parasimplex.simplex import Simplex


def test_block_partition_example():
    counts, displs = block_partition(5, 3)

    assert counts == [2, 2, 1]
    assert displs == [0, 2, 4]


def test_block_partition_covers_every_item_exactly_once():
    for num_items in range(1, 12):
        for num_workers in range(1, num_items + 1):
            counts, displs = block_partition(num_items, num_workers)

            assert sum(counts) == num_items
            assert max(counts) - min(counts) <= 1
            covered = [i for c, d in zip(counts, displs) for i in range(d, d + c)]
            assert covered == list(range(num_items))


def test_block_partition_rejects_empty_group():
    with pytest.raises(ValueError):
        block_partition(3, 0)


def _evaluate_on_group(simplex_factory, size, objective):
    group = LocalGroup(size, timeout_s=10)

    def worker(transport):
        simplex = simplex_factory()
        evaluator = DistributedEvaluator(objective, transport)
        evaluator.evaluate_all(simplex)
        return simplex, evaluator.feval

    return group.run(worker)


def test_evaluate_all_gives_every_worker_the_complete_array():
    results = _evaluate_on_group(lambda: Simplex.initial(4, guess=[0.5, 1.0, -1.0, 2.0]), 3, sphere)

    expected = np.array([sphere(v) for v in Simplex.initial(4, guess=[0.5, 1.0, -1.0, 2.0]).vertices])
    for simplex, _ in results:
        np.testing.assert_array_equal(simplex.values, expected)
    assert [feval for _, feval in results] == [2, 2, 1]


def test_evaluate_all_routes_values_through_the_ranking():
    def make_simplex():
        simplex = Simplex(
            np.array([[3.0, 0.0], [1.0, 0.0], [2.0, 0.0]]), values=np.array([0.3, 0.1, 0.2])
        )
        simplex.resort()  # order: slots 1, 2, 0
        simplex.vertices[:] = [[0.0, 4.0], [0.0, 5.0], [0.0, 6.0]]
        return simplex

    results = _evaluate_on_group(make_simplex, 2, sphere)

    for simplex, _ in results:
        assert simplex.values.tolist() == [16.0, 25.0, 36.0]


def test_evaluate_all_rejects_non_finite_values_on_every_worker():
    def objective(x):
        return np.inf if x[0] > 1.5 else sphere(x)

    group = LocalGroup(2, timeout_s=10)
    raised = []

    def worker(transport):
        evaluator = DistributedEvaluator(objective, transport)
        try:
            evaluator.evaluate_all(Simplex.initial(2))
        except NumericalInstabilityError:
            raised.append(transport.rank)

    group.run(worker)

    assert sorted(raised) == [0, 1]


@pytest.mark.parametrize("size, expected_feval", [(3, [2, 1, 1]), (5, [1, 1, 1, 1, 0])])
def test_evaluate_points_splits_rows_across_the_group(size, expected_feval):
    points = np.array([[1.0, 0.0], [0.0, 2.0], [3.0, 0.0], [0.0, math.nan]])
    group = LocalGroup(size, timeout_s=10)

    def worker(transport):
        evaluator = DistributedEvaluator(sphere, transport)
        return evaluator.evaluate_points(points), evaluator.feval

    results = group.run(worker)

    for values, _ in results:
        np.testing.assert_array_equal(values[:3], [1.0, 4.0, 9.0])
        assert math.isnan(values[3])
    assert [feval for _, feval in results] == expected_feval
