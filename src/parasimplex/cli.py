# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the command-line launcher of ParaSimplex.
#
# ===--------------------------------------------------------------------------------------===#

from typing import Any, Dict, List, Optional

import argparse
import json
import logging
import multiprocessing as mp
import os
from pathlib import Path
import sys

from parasimplex.collectives import PipeEdge, PipeTransport, Transport, get_pipe_graph
from parasimplex.config import RunConfig, dump_config, load_config
from parasimplex.objectives import resolve_objective
from parasimplex.solver import ParallelNelderMead
from parasimplex.utils.logging_utils import get_logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parses command-line arguments for a ParaSimplex run.

    Returns:
        Parsed command-line arguments containing config path, output directory, backend
        and verbosity.
    """
    parser = argparse.ArgumentParser()
    parser.add_argument("--cfg_path", type=str, help="path to .yaml config file.", required=True)
    parser.add_argument(
        "--out_dir",
        type=str,
        help="path to directory that will contain the outputs of the run.",
        required=True,
    )
    parser.add_argument(
        "--backend",
        type=str,
        choices=["pipe", "mpi"],
        default="pipe",
        help="'pipe' spawns num_workers local processes, 'mpi' runs one worker per MPI rank.",
    )
    parser.add_argument("--verbose", action="store_true", help="if true, log every round.")

    return parser.parse_args(argv)


def run_worker(
    run_cfg: RunConfig,
    transport: Transport,
    out_dir: Path,
    logger: logging.Logger,
) -> Dict[str, Any]:
    """Runs one worker of the group to completion.

    Args:
        run_cfg: Run configuration, identical on every worker.
        transport: This worker's handle on the group.
        out_dir: Output directory of the run; rank 0 writes ``best_sol.json`` there.
        logger: Logger instance for this worker.

    Returns:
        Summary of the run as seen by this worker.
    """
    solver_cfg = run_cfg.solver
    solver = ParallelNelderMead(
        dimension=solver_cfg.dimension,
        objective=resolve_objective(solver_cfg.objective),
        transport=transport,
        guess=solver_cfg.guess,
        step=solver_cfg.step,
        coefficients=run_cfg.coefficients,
        convergence=run_cfg.convergence_policy(),
        logger=logger,
        log_every=solver_cfg.log_every,
    )
    best_vertex = solver.solve(max_rounds=solver_cfg.max_rounds)

    result: Dict[str, Any] = {
        "vertex": best_vertex.tolist(),
        "value": solver.best,
        "rounds": solver.rounds,
        "total_feval": solver.total_feval,
        "num_workers": transport.size,
    }
    if transport.rank == 0:
        best_sol_path: Path = out_dir.joinpath("best_sol.json")
        with open(best_sol_path, "w") as f:
            json.dump(result, f, indent=2)
        logger.info(f"Saved best solution at '{best_sol_path}'.")

    return result


def _pipe_worker(
    rank: int,
    size: int,
    in_neigh: Optional[List[PipeEdge]],
    out_neigh: Optional[List[PipeEdge]],
    run_cfg: RunConfig,
    out_dir: Path,
    level: int,
) -> None:
    logger: logging.Logger = get_logger(rank, out_dir.joinpath(f"{rank}/"), level=level)
    transport = PipeTransport(
        rank, size, in_neigh, out_neigh, timeout_s=run_cfg.solver.timeout_s, logger=logger
    )
    try:
        run_worker(run_cfg, transport, out_dir, logger)
    except Exception as err:
        logger.exception(f"Worker {rank} failed: {err}")
        sys.exit(1)
    finally:
        transport.close()


def launch_pipe_group(run_cfg: RunConfig, out_dir: Path, level: int = logging.INFO) -> int:
    """Spawns one process per worker, wired together with a complete pipe graph.

    Returns:
        0 if every worker exited cleanly, 1 otherwise.
    """
    num_workers: int = run_cfg.solver.num_workers
    in_adj, out_adj = get_pipe_graph(num_workers)

    processes: List[mp.Process] = []
    for rank in range(num_workers):
        process = mp.Process(
            target=_pipe_worker,
            args=(rank, num_workers, in_adj[rank], out_adj[rank], run_cfg, out_dir, level),
        )
        processes.append(process)
        process.start()

    # the workers own the pipe ends now
    for edges in out_adj.values():
        for edge in edges:
            edge.send_conn.close()
            edge.recv_conn.close()

    for process in processes:
        process.join()

    return 0 if all(process.exitcode == 0 for process in processes) else 1


def launch_mpi_worker(
    run_cfg: RunConfig, out_dir: Path, cfg_copy_path: Path, level: int = logging.INFO
) -> int:
    """Runs this process as one worker of the MPI group it was launched in."""
    from parasimplex.mpi_transport import MPITransport

    transport = MPITransport()
    if transport.size != run_cfg.solver.num_workers:
        print(
            f"MPI group has {transport.size} ranks but num_workers is"
            f" {run_cfg.solver.num_workers}."
        )
        return 1

    if transport.rank == 0:
        dump_config(run_cfg, cfg_copy_path)

    logger: logging.Logger = get_logger(
        transport.rank, out_dir.joinpath(f"{transport.rank}/"), level=level
    )
    run_worker(run_cfg, transport, out_dir, logger)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point of a ParaSimplex run.

    This function:
    1. Loads the configuration and copies it to the output directory
    2. Forms the worker group for the selected backend
    3. Runs every worker to completion

    Returns:
        Process exit code.
    """
    args = parse_args(argv)
    cfg_path = Path(args.cfg_path)
    out_dir = Path(args.out_dir)

    if not os.path.exists(cfg_path):
        print(f"Path {cfg_path} not found.")
        return 1

    try:
        run_cfg: RunConfig = load_config(cfg_path)
    except Exception as err:
        print(str(err))
        return 1

    os.makedirs(out_dir, exist_ok=True)
    cfg_copy_path: Path = out_dir.joinpath(cfg_path.name)

    level: int = logging.DEBUG if args.verbose else logging.INFO
    if args.backend == "mpi":
        return launch_mpi_worker(run_cfg, out_dir, cfg_copy_path, level)

    dump_config(run_cfg, cfg_copy_path)
    return launch_pipe_group(run_cfg, out_dir, level)


if __name__ == "__main__":
    sys.exit(main())
