# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements benchmark objectives and objective lookup.
#
# ===--------------------------------------------------------------------------------------===#
"""Benchmark objectives whose minimum value is zero."""

from typing import Callable, Dict

import importlib

import numpy as np

from parasimplex.evaluator import Objective


def sphere(x: np.ndarray) -> float:
    return float(np.dot(x, x))


def shifted_sphere(x: np.ndarray, center: float = 3.0) -> float:
    diff: np.ndarray = np.asarray(x) - center
    return float(np.dot(diff, diff))


def rosenbrock(x: np.ndarray) -> float:
    x = np.asarray(x)
    return float(np.sum(100.0 * (x[1:] - x[:-1] ** 2) ** 2 + (1.0 - x[:-1]) ** 2))


def booth(x: np.ndarray) -> float:
    """Booth function, two-dimensional, minimum 0 at (1, 3)."""
    if len(x) != 2:
        raise ValueError(f"Booth function is two-dimensional, got {len(x)} coordinates.")
    return float((x[0] + 2 * x[1] - 7) ** 2 + (2 * x[0] + x[1] - 5) ** 2)


OBJECTIVES: Dict[str, Callable[[np.ndarray], float]] = {
    "sphere": sphere,
    "shifted_sphere": shifted_sphere,
    "rosenbrock": rosenbrock,
    "booth": booth,
}


def resolve_objective(name: str) -> Objective:
    """Looks up an objective by registered name or by ``module:function`` import path.

    Args:
        name: A key of ``OBJECTIVES`` or a path such as ``mypkg.problems:loss``.

    Returns:
        The objective callable.

    Raises:
        KeyError: If ``name`` is neither registered nor an import path.
        TypeError: If the imported attribute is not callable.
    """
    if name in OBJECTIVES:
        return OBJECTIVES[name]
    if ":" not in name:
        raise KeyError(f"Unknown objective '{name}'. Registered: {sorted(OBJECTIVES)}.")

    module_name, attr = name.split(":", 1)
    objective = getattr(importlib.import_module(module_name), attr)
    if not callable(objective):
        raise TypeError(f"Objective '{name}' is not callable.")
    return objective
