# Part of the ParaSimplex Project, under the Apache License v2.0.
# See LICENSE for license information.
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the collective communication transports."""

import threading

import numpy as np
import pytest

from parasimplex.collectives import (
    LocalGroup,
    PipeTransport,
    get_edge_list,
    get_pipe_graph,
)
from parasimplex.errors import TransportTimeoutError


def _exercise(transport):
    total = transport.reduce_sum(transport.rank + 1)
    rows = transport.gather_all_fixed(np.array([transport.rank, 10.0 * transport.rank]))
    counts = [2 if rank == 0 else 1 for rank in range(transport.size)]
    block = np.full(counts[transport.rank], float(transport.rank))
    gathered = transport.gather_all_variable(block, counts)
    return total, rows, gathered


def _check(results, size):
    expected_rows = np.array([[rank, 10.0 * rank] for rank in range(size)])
    expected_gathered = np.array([0.0] + [float(rank) for rank in range(size)])
    for total, rows, gathered in results:
        assert total == size * (size + 1) // 2
        np.testing.assert_array_equal(rows, expected_rows)
        np.testing.assert_array_equal(gathered, expected_gathered)


def test_local_group_collectives():
    group = LocalGroup(3, timeout_s=10)

    _check(group.run(_exercise), 3)


def test_local_group_of_one():
    group = LocalGroup(1)

    _check(group.run(_exercise), 1)


def test_local_group_barrier_timeout():
    group = LocalGroup(2, timeout_s=0.1)

    with pytest.raises(TransportTimeoutError):
        group.transport(0).reduce_sum(1)


def test_local_group_reports_the_original_failure():
    group = LocalGroup(2, timeout_s=10)

    def worker(transport):
        if transport.rank == 1:
            raise RuntimeError("worker 1 crashed")
        return transport.reduce_sum(1)

    with pytest.raises(RuntimeError, match="worker 1 crashed"):
        group.run(worker)


def test_variable_gather_checks_block_sizes():
    group = LocalGroup(1)

    with pytest.raises(ValueError):
        group.transport(0).gather_all_variable(np.zeros(3), [2])


def test_complete_edge_list():
    edges = get_edge_list(3)

    assert len(edges) == 6
    assert set(edges) == {(u, v) for u in range(3) for v in range(3) if u != v}
    assert get_edge_list(1) == []


def test_pipe_graph_links_every_ordered_pair_once():
    in_adj, out_adj = get_pipe_graph(3)

    for rank in range(3):
        assert sorted(edge.dst for edge in out_adj[rank]) == [r for r in range(3) if r != rank]
        assert sorted(edge.src for edge in in_adj[rank]) == [r for r in range(3) if r != rank]
        assert all(edge.src == rank for edge in out_adj[rank])

    edge = out_adj[0][0]
    edge.send_conn.send("ping")
    assert edge.recv_conn.recv() == "ping"

    for edges in out_adj.values():
        for edge in edges:
            edge.send_conn.close()
            edge.recv_conn.close()


def test_pipe_transport_collectives():
    size = 3
    in_adj, out_adj = get_pipe_graph(size)
    results = [None] * size

    def worker(rank):
        transport = PipeTransport(rank, size, in_adj[rank], out_adj[rank], timeout_s=10)
        results[rank] = _exercise(transport)

    threads = [threading.Thread(target=worker, args=(rank,)) for rank in range(size)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    _check(results, size)


def test_pipe_transport_requires_complete_graph():
    in_adj, out_adj = get_pipe_graph(3)

    with pytest.raises(ValueError):
        PipeTransport(0, 3, in_adj[0][:1], out_adj[0])


def test_pipe_transport_timeout():
    in_adj, out_adj = get_pipe_graph(2)
    transport = PipeTransport(0, 2, in_adj[0], out_adj[0], timeout_s=0.1)

    with pytest.raises(TransportTimeoutError):
        transport.reduce_sum(1)


def test_mpi_transport_on_a_single_rank():
    MPI = pytest.importorskip("mpi4py.MPI")
    from parasimplex.mpi_transport import MPITransport

    transport = MPITransport(MPI.COMM_SELF)

    assert (transport.rank, transport.size) == (0, 1)
    _check([_exercise(transport)], 1)
