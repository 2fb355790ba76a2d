# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the MPI transport (requires the optional mpi4py dependency).
#
# ===--------------------------------------------------------------------------------------===#

from typing import Optional, Sequence

import numpy as np
from mpi4py import MPI

from parasimplex.collectives import Transport


class MPITransport(Transport):
    """Transport backed by an MPI communicator.

    The group is whatever communicator the launcher (usually ``mpirun``) provides; the
    transport never creates, resizes, or frees it. There is no liveness timeout: a rank
    that never reaches a collective blocks the others indefinitely.

    Attributes:
        comm: MPI communicator shared by the group.
        rank: This worker's rank in ``comm``.
        size: Size of ``comm``.
    """

    def __init__(self, comm: Optional[MPI.Comm] = None):
        self.comm: MPI.Comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank: int = self.comm.Get_rank()
        self.size: int = self.comm.Get_size()

    def __repr__(self):
        return f"{self.__class__.__name__}(rank={self.rank},size={self.size})"

    def reduce_sum(self, value: int) -> int:
        return int(self.comm.allreduce(int(value), op=MPI.SUM))

    def gather_all_fixed(self, row: np.ndarray) -> np.ndarray:
        send_buf: np.ndarray = np.ascontiguousarray(row, dtype=np.float64)
        recv_buf: np.ndarray = np.empty((self.size, len(send_buf)), dtype=np.float64)
        self.comm.Allgather([send_buf, MPI.DOUBLE], [recv_buf, MPI.DOUBLE])
        return recv_buf

    def gather_all_variable(self, block: np.ndarray, counts: Sequence[int]) -> np.ndarray:
        send_buf: np.ndarray = np.ascontiguousarray(block, dtype=np.float64).reshape(-1)
        counts_arr: np.ndarray = np.asarray(counts, dtype=int)
        displs: np.ndarray = np.concatenate(([0], np.cumsum(counts_arr)[:-1]))
        recv_buf: np.ndarray = np.empty(int(counts_arr.sum()), dtype=np.float64)
        self.comm.Allgatherv(
            [send_buf, MPI.DOUBLE], [recv_buf, counts_arr.tolist(), displs.tolist(), MPI.DOUBLE]
        )
        return recv_buf
