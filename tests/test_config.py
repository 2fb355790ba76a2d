# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for yaml run configuration."""

import pytest
import yaml

from parasimplex.config import SolverConfig, dump_config, load_config, parse_config
from parasimplex.convergence import AbsoluteTolerance, DiameterTolerance
from parasimplex.engine import Coefficients


def _write(tmp_path, config):
    cfg_path = tmp_path / "cfg.yaml"
    cfg_path.write_text(yaml.safe_dump(config))
    return cfg_path


def test_missing_blocks_take_defaults(tmp_path):
    run_cfg = load_config(_write(tmp_path, {"SOLVER_CONFIG": {"dimension": 3}}))

    assert run_cfg.solver == SolverConfig(dimension=3)
    assert run_cfg.coefficients == Coefficients()
    assert run_cfg.convergence_policy() == AbsoluteTolerance()


def test_full_config(tmp_path):
    run_cfg = load_config(
        _write(
            tmp_path,
            {
                "SOLVER_CONFIG": {
                    "num_workers": 2,
                    "dimension": 2,
                    "objective": "booth",
                    "guess": [0.0, 0.0],
                    "step": 0.5,
                    "max_rounds": 300,
                    "timeout_s": 5.0,
                },
                "COEFFICIENTS": {"sigma": 0.25},
                "CONVERGENCE": {"kind": "diameter", "xtol": 1e-5},
            },
        )
    )

    assert run_cfg.solver.num_workers == 2
    assert run_cfg.solver.guess == [0.0, 0.0]
    assert run_cfg.solver.timeout_s == 5.0
    assert run_cfg.coefficients == Coefficients(sigma=0.25)
    assert run_cfg.convergence_policy() == DiameterTolerance(xtol=1e-5)


def test_invalid_configs_are_rejected():
    with pytest.raises(ValueError):
        parse_config({"SOLVER_CONFIG": {"num_ranks": 2}})
    with pytest.raises(ValueError):
        parse_config({"SOLVER_CONFIG": {"dimension": 2, "guess": [1.0]}})
    with pytest.raises(ValueError):
        parse_config({"COEFFICIENTS": {"sigma": 2.0}})
    with pytest.raises(ValueError):
        parse_config({"CONVERGENCE": {"kind": "gradient"}})


def test_dumped_config_loads_back(tmp_path):
    run_cfg = parse_config(
        {
            "SOLVER_CONFIG": {"num_workers": 3, "dimension": 2, "guess": [1.0, 2.0]},
            "CONVERGENCE": {"kind": "relative", "rtol": 1e-6},
        }
    )
    dump_config(run_cfg, tmp_path / "copy.yaml")

    assert load_config(tmp_path / "copy.yaml") == run_cfg
