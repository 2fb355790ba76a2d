# ===--------------------------------------------------------------------------------------===#
#
# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0
#
# ===--------------------------------------------------------------------------------------===#
#
# This file implements the collective communication transports used by the workers.
#
# ===--------------------------------------------------------------------------------------===#

from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from abc import ABC, abstractmethod
from dataclasses import dataclass
import threading
import multiprocessing as mp
import multiprocessing.connection as mpc
import logging

import numpy as np

from parasimplex.errors import TransportTimeoutError


class Transport(ABC):
    """Group-wide collective operations a worker needs to stay in lockstep.

    Every operation is blocking: it returns only once every member of the group has
    contributed, and every member must call the same operations in the same order.

    Attributes:
        rank: 0-based identifier of this worker.
        size: Number of workers in the group.
    """

    rank: int
    size: int

    @abstractmethod
    def reduce_sum(self, value: int) -> int:
        """Sums one integer over the whole group; every worker gets the total."""

    @abstractmethod
    def gather_all_fixed(self, row: np.ndarray) -> np.ndarray:
        """Gathers one equally sized float row per worker.

        Args:
            row: This worker's contribution, a 1-d float array of the same length on every
                worker.

        Returns:
            Array of shape ``(size, len(row))`` whose r-th row came from worker r.
        """

    @abstractmethod
    def gather_all_variable(self, block: np.ndarray, counts: Sequence[int]) -> np.ndarray:
        """Gathers variable-length float blocks from every worker.

        Args:
            block: This worker's contribution, of length ``counts[rank]``.
            counts: Length of every worker's block, identical on every worker.

        Returns:
            Concatenation of all blocks in rank order.
        """


class ExchangeTransport(Transport):
    """Transport built on a single primitive: every worker swaps one object with all others."""

    @abstractmethod
    def allgather_obj(self, payload: Any) -> List[Any]:
        """Returns the list of payloads of all workers, indexed by rank."""

    def reduce_sum(self, value: int) -> int:
        return int(sum(self.allgather_obj(int(value))))

    def gather_all_fixed(self, row: np.ndarray) -> np.ndarray:
        rows: List[np.ndarray] = self.allgather_obj(np.array(row, dtype=np.float64))
        lengths = {len(r) for r in rows}
        if len(lengths) != 1:
            raise ValueError(f"Fixed-size gather received rows of lengths {sorted(lengths)}.")
        return np.vstack(rows)

    def gather_all_variable(self, block: np.ndarray, counts: Sequence[int]) -> np.ndarray:
        block = np.array(block, dtype=np.float64).reshape(-1)
        if len(block) != counts[self.rank]:
            raise ValueError(
                f"Worker {self.rank} contributed {len(block)} values, expected {counts[self.rank]}."
            )
        blocks: List[np.ndarray] = self.allgather_obj(block)
        for rank, (recv, count) in enumerate(zip(blocks, counts)):
            if len(recv) != count:
                raise ValueError(f"Worker {rank} contributed {len(recv)} values, expected {count}.")
        return np.concatenate(blocks)


# in-process group


class LocalGroup:
    """A group of workers living in threads of the current process.

    Workers exchange data through shared slots guarded by a barrier, which lets the whole
    algorithm run (and be tested) in a single process.

    Attributes:
        size: Number of workers.
        timeout_s: Optional liveness timeout for every barrier wait.
        barrier: Barrier shared by all workers of the group.
    """

    def __init__(self, size: int, timeout_s: Optional[float] = None):
        if size < 1:
            raise ValueError(f"Group size must be at least 1, got {size}.")
        self.size: int = size
        self.timeout_s: Optional[float] = timeout_s
        self.barrier: threading.Barrier = threading.Barrier(parties=size, timeout=timeout_s)
        self._slots: List[Any] = [None] * size

    def __repr__(self):
        return f"{self.__class__.__name__}(size={self.size},timeout_s={self.timeout_s})"

    def _wait(self) -> None:
        try:
            self.barrier.wait()
        except threading.BrokenBarrierError as err:
            raise TransportTimeoutError(
                f"Local group barrier broken (timeout_s={self.timeout_s})."
            ) from err

    def exchange(self, rank: int, payload: Any) -> List[Any]:
        self._slots[rank] = payload
        self._wait()
        gathered: List[Any] = list(self._slots)
        # nobody may overwrite a slot before everyone has read it
        self._wait()
        return gathered

    def transport(self, rank: int) -> "LocalTransport":
        return LocalTransport(self, rank)

    def run(self, target: Callable[[Transport], Any]) -> List[Any]:
        """Runs ``target`` once per worker, each in its own thread.

        If a worker fails, the barrier is aborted so the others stop waiting on it.

        Args:
            target: Worker body, called with that worker's transport.

        Returns:
            The return values of every worker, indexed by rank.

        Raises:
            Exception: The first failure of a worker, preferring the original error over
                the TransportTimeoutError it caused on the other workers.
        """
        results: List[Any] = [None] * self.size
        errors: List[Optional[Exception]] = [None] * self.size

        def _worker(rank: int) -> None:
            try:
                results[rank] = target(self.transport(rank))
            except Exception as err:
                errors[rank] = err
                self.barrier.abort()

        threads: List[threading.Thread] = [
            threading.Thread(target=_worker, args=(rank,), name=f"worker-{rank}")
            for rank in range(self.size)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        failures: List[Exception] = [err for err in errors if err is not None]
        if failures:
            primary: List[Exception] = [
                err for err in failures if not isinstance(err, TransportTimeoutError)
            ]
            raise (primary or failures)[0]
        return results


class LocalTransport(ExchangeTransport):
    """Per-worker handle on a :class:`LocalGroup`."""

    def __init__(self, group: LocalGroup, rank: int):
        if not 0 <= rank < group.size:
            raise ValueError(f"Rank {rank} outside group of size {group.size}.")
        self.group: LocalGroup = group
        self.rank: int = rank
        self.size: int = group.size

    def allgather_obj(self, payload: Any) -> List[Any]:
        return self.group.exchange(self.rank, payload)


# multiprocessing pipes


@dataclass
class PipeEdge:
    """One direction of the pipe link between two workers of a group.

    Each collective writes its payload into ``send_conn`` at worker ``src`` and reads it
    from ``recv_conn`` at worker ``dst``; the reverse direction is a separate edge.
    """

    src: int
    dst: int
    send_conn: mpc.Connection
    recv_conn: mpc.Connection


def get_edge_list(num_workers: int) -> List[Tuple[int, int]]:
    """Returns the directed edges of the complete graph over ``num_workers`` workers."""
    edge_list: List[Tuple[int, int]] = []
    for i in range(num_workers):
        for j in range(i + 1, num_workers):
            edge_list.append((i, j))
            edge_list.append((j, i))
    return edge_list


def get_pipe_graph(num_workers: int) -> Tuple[Dict[int, List[PipeEdge]], Dict[int, List[PipeEdge]]]:
    """Creates one unidirectional pipe for every ordered pair of workers.

    Args:
        num_workers: Number of workers in the group.

    Returns:
        A tuple containing:
            - Dictionary mapping ranks to their incoming PipeEdge objects
            - Dictionary mapping ranks to their outgoing PipeEdge objects
    """
    out_adj: Dict[int, List[PipeEdge]] = {rank: [] for rank in range(num_workers)}
    in_adj: Dict[int, List[PipeEdge]] = {rank: [] for rank in range(num_workers)}

    for src, dst in get_edge_list(num_workers):
        recv_conn, send_conn = mp.Pipe(duplex=False)
        edge = PipeEdge(src, dst, send_conn, recv_conn)

        out_adj[src].append(edge)
        in_adj[dst].append(edge)

    return (in_adj, out_adj)


def send_to_peers(
    out_neigh: List[PipeEdge], payload: Any, send_errors: List[Exception], logger: logging.Logger
) -> None:
    """Sends ``payload`` to every outgoing neighbor.

    This function runs in a separate thread so that large payloads cannot deadlock against
    the receiving side of the same collective.

    Args:
        out_neigh: Outgoing pipe edges of this worker.
        payload: Picklable object to send.
        send_errors: Empty list that collects the failure of this thread, if any.
        logger: Logger instance for this thread.
    """
    try:
        for edge in out_neigh:
            edge.send_conn.send(payload)
    except Exception as err:
        logger.error(f"[SEND THREAD] Unable to send to worker {edge.dst}: {err}.")
        send_errors.append(err)


class PipeTransport(ExchangeTransport):
    """Transport over a complete graph of ``multiprocessing`` pipes.

    Each collective sends this worker's payload to every peer on a send thread while the
    calling thread receives from every peer in rank order. Because every pipe carries
    exactly one message per collective, messages of successive collectives never mix.

    Attributes:
        rank: This worker's rank.
        size: Number of workers.
        in_neigh: Incoming pipe edges, one per peer.
        out_neigh: Outgoing pipe edges, one per peer.
        timeout_s: Optional liveness timeout applied to every receive.
    """

    def __init__(
        self,
        rank: int,
        size: int,
        in_neigh: Optional[List[PipeEdge]],
        out_neigh: Optional[List[PipeEdge]],
        timeout_s: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        in_neigh = sorted(in_neigh or [], key=lambda edge: edge.src)
        out_neigh = sorted(out_neigh or [], key=lambda edge: edge.dst)
        if len(in_neigh) != size - 1 or len(out_neigh) != size - 1:
            raise ValueError(
                f"Worker {rank} needs {size - 1} incoming and outgoing pipes, got"
                f" {len(in_neigh)} and {len(out_neigh)}."
            )
        self.rank: int = rank
        self.size: int = size
        self.in_neigh: List[PipeEdge] = in_neigh
        self.out_neigh: List[PipeEdge] = out_neigh
        self.timeout_s: Optional[float] = timeout_s
        self.logger: logging.Logger = logger if logger is not None else logging.getLogger(__name__)

    def __repr__(self):
        return (
            f"{self.__class__.__name__}"
            "("
            f"rank={self.rank},"
            f"size={self.size},"
            f"timeout_s={self.timeout_s}"
            ")"
        )

    def _recv(self, edge: PipeEdge) -> Any:
        if self.timeout_s is not None and not edge.recv_conn.poll(self.timeout_s):
            raise TransportTimeoutError(
                f"Worker {self.rank} received nothing from worker {edge.src}"
                f" within {self.timeout_s} seconds."
            )
        try:
            return edge.recv_conn.recv()
        except EOFError:
            self.logger.error(f"Pipe from worker {edge.src} closed mid-collective.")
            raise

    def allgather_obj(self, payload: Any) -> List[Any]:
        received: Dict[int, Any] = {self.rank: payload}
        send_errors: List[Exception] = []
        send_thread = threading.Thread(
            target=send_to_peers,
            args=(self.out_neigh, payload, send_errors, self.logger),
            daemon=True,
        )
        send_thread.start()
        for edge in self.in_neigh:
            received[edge.src] = self._recv(edge)
        send_thread.join()

        if send_errors:
            raise send_errors[0]
        return [received[rank] for rank in range(self.size)]

    def close(self) -> None:
        for edge in self.out_neigh:
            edge.send_conn.close()
        for edge in self.in_neigh:
            edge.recv_conn.close()
