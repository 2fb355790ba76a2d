# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the yaml configuration of ParaSimplex runs.
#
# ===--------------------------------------------------------------------------------------===#
"""Run configuration loaded from yaml files."""

from typing import Any, Dict, List, Optional

from dataclasses import dataclass, field
import pathlib

import yaml

from parasimplex.convergence import ConvergencePolicy, get_convergence_policy
from parasimplex.engine import Coefficients


@dataclass
class SolverConfig:
    """Configuration block describing one solver run."""

    num_workers: int = 1
    dimension: int = 2
    objective: str = "sphere"
    guess: Optional[List[float]] = None
    step: float = 1.0
    max_rounds: int = 0
    log_every: int = 100
    timeout_s: Optional[float] = None


@dataclass
class RunConfig:
    """Everything a launcher needs to start a run."""

    solver: SolverConfig = field(default_factory=SolverConfig)
    coefficients: Coefficients = field(default_factory=Coefficients)
    convergence: Dict[str, Any] = field(default_factory=lambda: {"kind": "absolute"})

    def convergence_policy(self) -> ConvergencePolicy:
        params: Dict[str, Any] = dict(self.convergence)
        return get_convergence_policy(params.pop("kind", "absolute"), **params)


def _fill_dataclass(cls: type, raw: Optional[Dict[str, Any]]) -> Any:
    raw = raw or {}
    unknown: List[str] = sorted(set(raw) - set(cls.__dataclass_fields__))
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} fields: {unknown}.")
    default = cls()
    return cls(
        **{name: raw.get(name, getattr(default, name)) for name in cls.__dataclass_fields__}
    )


def parse_config(config: Dict[str, Any]) -> RunConfig:
    """Builds a :class:`RunConfig` from an already parsed yaml document.

    Args:
        config: Mapping with a ``SOLVER_CONFIG`` block and optional ``COEFFICIENTS`` and
            ``CONVERGENCE`` blocks. Missing fields take their dataclass defaults.

    Returns:
        The validated run configuration.
    """
    solver_cfg: SolverConfig = _fill_dataclass(SolverConfig, config.get("SOLVER_CONFIG"))
    if solver_cfg.guess is not None and len(solver_cfg.guess) != solver_cfg.dimension:
        raise ValueError(
            f"guess has {len(solver_cfg.guess)} coordinates, dimension is {solver_cfg.dimension}."
        )

    coefficients: Coefficients = _fill_dataclass(Coefficients, config.get("COEFFICIENTS"))
    convergence: Dict[str, Any] = dict(config.get("CONVERGENCE") or {"kind": "absolute"})
    run_cfg = RunConfig(solver=solver_cfg, coefficients=coefficients, convergence=convergence)
    # fail on bad policy names before any worker starts
    run_cfg.convergence_policy()
    return run_cfg


def load_config(cfg_path: str | pathlib.Path) -> RunConfig:
    with open(cfg_path, "r") as f:
        config: Dict[str, Any] = yaml.safe_load(f) or {}
    return parse_config(config)


def dump_config(run_cfg: RunConfig, cfg_path: str | pathlib.Path) -> None:
    """Writes ``run_cfg`` back to yaml, in the layout :func:`load_config` reads."""
    config: Dict[str, Any] = {
        "SOLVER_CONFIG": vars(run_cfg.solver),
        "COEFFICIENTS": vars(run_cfg.coefficients),
        "CONVERGENCE": dict(run_cfg.convergence),
    }
    with open(cfg_path, "w") as f:
        yaml.safe_dump(config, f)
