import numpy as np
import pytest
from pnmflow import Network, SimulationSettings


def cubic_network(shape, spacing = 1e-4, radius = 1e-5, node_radius = 1.5e-5,
                  shape_factor = 1 / 16, length = None):
    r"""
    Regular lattice of nodes with uniform pores. Flow along x: every node with
    i = 0 gets an inlet pore and every node with i = nx - 1 an outlet pore.
    All the pores (boundary ones included) have the same length
    """
    nx, ny, nz = shape
    idx = np.arange(nx * ny * nz).reshape((nx, ny, nz))
    conns = [np.column_stack((np.full(ny * nz, -1), idx[0].ravel()))]
    conns.append(np.column_stack((idx[:-1].ravel(), idx[1:].ravel())))
    conns.append(np.column_stack((idx[:, :-1].ravel(), idx[:, 1:].ravel())))
    conns.append(np.column_stack((idx[:, :, :-1].ravel(), idx[:, :, 1:].ravel())))
    conns.append(np.column_stack((idx[-1].ravel(), np.full(ny * nz, -1))))
    conns = np.vstack(conns)
    if length is None:
        length = spacing / 2
    Np = len(conns)
    return Network.from_arrays(conns,
                               pore_radius = np.full(Np, radius),
                               pore_length = np.full(Np, length),
                               node_radius = np.full(nx * ny * nz, node_radius),
                               pore_shape_factor = np.full(Np, shape_factor),
                               node_shape_factor = np.full(nx * ny * nz, shape_factor),
                               edge_lengths = (nx * spacing, ny * spacing, nz * spacing))


def heterogeneous_network(shape, seed = 0):
    r"""
    Lattice of cubic_network with random pore and node radii
    """
    base = cubic_network(shape)
    rng = np.random.default_rng(seed)
    return cubic_network(shape,
                         radius = rng.uniform(4e-6, 1e-5, base.Np),
                         node_radius = rng.uniform(1e-5, 1.5e-5, base.Nn))


def chain_network(n_nodes, radius = 1e-5, shape_factor = 1 / (4 * np.pi)):
    r"""
    Nodes in series: inlet pore, n_nodes - 1 inner pores, outlet pore.
    Circular sections by default, so there are no corner films
    """
    conns = [(-1, 0)] + [(i, i + 1) for i in range(n_nodes - 1)] + [(n_nodes - 1, -1)]
    Np = len(conns)
    return Network.from_arrays(np.array(conns),
                               pore_radius = np.full(Np, radius),
                               pore_length = np.full(Np, 5e-5),
                               node_radius = np.full(n_nodes, radius),
                               pore_shape_factor = np.full(Np, shape_factor),
                               node_shape_factor = np.full(n_nodes, shape_factor),
                               edge_lengths = (n_nodes * 1e-4, 1e-4, 1e-4))


@pytest.fixture
def lattice():
    return cubic_network((3, 3, 3))


@pytest.fixture
def settings():
    s = SimulationSettings()
    s.network.progress_bar = False
    s.two_phase.relative_permeabilities_calculation = False
    return s
