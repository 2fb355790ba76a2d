# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the simplex store and its ranking."""

import numpy as np
import pytest

from parasimplex.errors import SimplexAllocationError
from parasimplex.simplex import Ranking, Simplex
import parasimplex.simplex as simplex_mod


def test_initial_simplex_perturbs_one_coordinate_per_vertex():
    simplex = Simplex.initial(3, guess=[1.0, -2.0, 0.5], step=0.25)

    np.testing.assert_array_equal(simplex.vertices[0], [1.0, -2.0, 0.5])
    np.testing.assert_array_equal(simplex.vertices[1], [1.25, -2.0, 0.5])
    np.testing.assert_array_equal(simplex.vertices[2], [1.0, -1.75, 0.5])
    np.testing.assert_array_equal(simplex.vertices[3], [1.0, -2.0, 0.75])
    assert simplex.ranking == Ranking.identity(4)
    assert np.all(np.isinf(simplex.values))


def test_initial_simplex_defaults_to_ones_and_unit_step():
    simplex = Simplex.initial(2)

    np.testing.assert_array_equal(simplex.vertices, [[1.0, 1.0], [2.0, 1.0], [1.0, 2.0]])


def test_initial_simplex_rejects_bad_input():
    with pytest.raises(ValueError):
        Simplex.initial(0)
    with pytest.raises(ValueError):
        Simplex.initial(2, guess=[1.0, 2.0, 3.0])


def test_ranking_sorts_values_and_keeps_slot_order_on_ties():
    values = np.array([3.0, 1.0, 3.0, 0.5])
    ranking = Ranking.from_values(values)

    assert ranking.order.tolist() == [3, 1, 0, 2]
    assert ranking.is_sorted(values)
    assert not Ranking.identity(4).is_sorted(values)


def test_ranking_rejects_non_permutation_and_is_read_only():
    with pytest.raises(ValueError):
        Ranking(np.array([0, 0, 1]))

    ranking = Ranking.identity(3)
    with pytest.raises(ValueError):
        ranking.order[0] = 2


def test_accessors_go_through_ranking_without_moving_storage():
    simplex = Simplex(np.array([[0.0], [1.0]]), values=np.array([5.0, 2.0]))
    storage_before = simplex.vertices.copy()
    simplex.resort()

    np.testing.assert_array_equal(simplex.vertex(0), [1.0])
    assert simplex.value(0) == 2.0
    assert simplex.best_value == 2.0
    assert simplex.worst_value == 5.0
    np.testing.assert_array_equal(simplex.vertices, storage_before)

    simplex.set_vertex(1, np.array([-1.0]), 0.5)
    np.testing.assert_array_equal(simplex.vertices[0], [-1.0])
    assert simplex.values[0] == 0.5


def test_set_sorted_values_routes_through_ranking():
    simplex = Simplex(np.zeros((3, 2)), values=np.array([2.0, 0.0, 1.0]))
    simplex.resort()  # order: slots 1, 2, 0

    simplex.set_sorted_values(np.array([10.0, 20.0, 30.0]))

    assert simplex.values.tolist() == [30.0, 10.0, 20.0]


def test_best_vertex_is_a_read_only_view():
    simplex = Simplex(np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]), values=np.array([3.0, 1.0, 2.0]))
    simplex.resort()

    best = simplex.best_vertex()
    np.testing.assert_array_equal(best, [1.0, 0.0])
    with pytest.raises(ValueError):
        best[0] = 7.0

    simplex.vertices[1] = [4.0, 4.0]
    np.testing.assert_array_equal(best, [4.0, 4.0])


def test_shrink_never_increases_distance_to_best():
    rng = np.random.default_rng(0)
    for sigma in (0.1, 0.5, 0.9):
        simplex = Simplex(rng.normal(size=(5, 4)), values=rng.normal(size=5))
        simplex.resort()
        best = simplex.vertex(0).copy()
        before = np.linalg.norm(simplex.vertices - best, axis=1)

        simplex.shrink(sigma)

        after = np.linalg.norm(simplex.vertices - best, axis=1)
        np.testing.assert_array_equal(simplex.vertex(0), best)
        assert np.all(after <= before)
        np.testing.assert_allclose(after, (1 - sigma) * before, atol=1e-12)


def test_diameter_measures_distance_to_best():
    simplex = Simplex(np.array([[0.0, 0.0], [3.0, 4.0], [1.0, 0.0]]), values=np.array([0.0, 1.0, 2.0]))
    simplex.resort()

    assert simplex.diameter() == pytest.approx(5.0)


def test_allocation_failure_is_reported(monkeypatch):
    class _NoMemory:
        available = 16

    monkeypatch.setattr(simplex_mod.psutil, "virtual_memory", lambda: _NoMemory())

    with pytest.raises(SimplexAllocationError):
        Simplex.initial(10)
    with pytest.raises(MemoryError):
        Simplex(np.zeros((3, 2)))


def test_initial_simplex_checks_memory_once(monkeypatch):
    checked = []
    monkeypatch.setattr(simplex_mod, "check_available_memory", checked.append)

    Simplex.initial(5)

    assert checked == [5]
