# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the termination policies."""

import numpy as np
import pytest

from parasimplex.convergence import (
    AbsoluteTolerance,
    DiameterTolerance,
    RelativeTolerance,
    get_convergence_policy,
)
from parasimplex.simplex import Simplex


def _mk_simplex(vertices, values):
    simplex = Simplex(np.array(vertices, dtype=float), values=np.array(values, dtype=float))
    simplex.resort()
    return simplex


def test_absolute_tolerance_looks_at_best_value():
    assert AbsoluteTolerance().converged(_mk_simplex([[0.0], [1.0]], [1e-7, 5.0]))
    assert not AbsoluteTolerance().converged(_mk_simplex([[0.0], [1.0]], [1e-5, 5.0]))
    assert AbsoluteTolerance(tol=1e-4).converged(_mk_simplex([[0.0], [1.0]], [1e-5, 5.0]))


def test_relative_tolerance_looks_at_value_spread():
    policy = RelativeTolerance(rtol=1e-3, atol=0.0)

    assert policy.converged(_mk_simplex([[0.0], [1.0]], [100.0, 100.05]))
    assert not policy.converged(_mk_simplex([[0.0], [1.0]], [100.0, 100.5]))


def test_diameter_tolerance_looks_at_vertex_spread():
    policy = DiameterTolerance(xtol=0.1)

    assert policy.converged(_mk_simplex([[0.0, 0.0], [0.05, 0.0], [0.0, 0.05]], [0, 1, 2]))
    assert not policy.converged(_mk_simplex([[0.0, 0.0], [0.5, 0.0], [0.0, 0.05]], [0, 1, 2]))


def test_policy_factory():
    assert get_convergence_policy() == AbsoluteTolerance(tol=1e-6)
    assert get_convergence_policy("relative", rtol=1e-4) == RelativeTolerance(rtol=1e-4)
    assert get_convergence_policy("diameter", xtol=1e-3) == DiameterTolerance(xtol=1e-3)
    with pytest.raises(ValueError):
        get_convergence_policy("gradient")
