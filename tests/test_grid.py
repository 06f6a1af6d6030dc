"""Grid derivation, cell indexing and the cell boundary table."""

from __future__ import annotations

import numpy as np
import warp as wp

from flock.sim.grid import EMPTY_CELL, GridSpec, UniformGrid
from flock.sim.particles import initialize_random, store_from_arrays
from flock.sim.solver import FlockSimulator
from flock.utils.config import RuleConfig


def test_grid_spec_from_default_rules():
    spec = GridSpec.from_rules(RuleConfig(), scene_scale=100.0)
    assert spec.cell_width == 10.0
    assert spec.resolution == 22
    assert spec.cell_count == 22 ** 3
    assert spec.minimum == -110.0
    assert spec.inverse_cell_width == 0.1


def test_grid_spec_covers_scene():
    spec = GridSpec.from_rules(RuleConfig(rule1_distance=2.0, rule2_distance=7.5, rule3_distance=1.0), 40.0)
    assert spec.cell_width == 15.0
    corners = np.array([[-40.0, -40.0, -40.0], [40.0, 40.0, 40.0]])
    coords = spec.cell_coords(corners)
    assert coords.min() >= 0
    assert coords.max() < spec.resolution


def test_flatten_is_x_major():
    spec = GridSpec.from_rules(RuleConfig(), scene_scale=20.0)
    res = spec.resolution
    assert spec.flatten(np.array([1, 0, 0])) == 1
    assert spec.flatten(np.array([0, 1, 0])) == res
    assert spec.flatten(np.array([0, 0, 1])) == res * res
    assert spec.flatten(np.array([2, 3, 4])) == 2 + 3 * res + 4 * res * res


def test_indices_match_host_flattening(device):
    spec = GridSpec.from_rules(RuleConfig(), scene_scale=20.0)
    positions = np.array(
        [
            [0.5, 0.5, 0.5],
            [-19.5, 12.25, 3.0],
            [19.5, -19.5, 19.5],
            [7.5, 7.5, -7.5],
            [1.0, 1.0, 1.0],
        ],
        dtype=np.float32,
    )
    store = store_from_arrays(positions, np.zeros_like(positions), device=device)
    grid = UniformGrid(spec, len(positions), device=device)
    diagnostics = wp.zeros(2, dtype=wp.int32, device=device)

    grid.build(store.positions.current, len(positions), diagnostics)
    cell_of, slot_of = grid.sorted_indices(len(positions))

    expected = spec.flatten(spec.cell_coords(positions))
    assert sorted(slot_of) == list(range(len(positions)))
    np.testing.assert_array_equal(cell_of, expected[slot_of])
    assert np.all(np.diff(cell_of) >= 0)
    assert diagnostics.numpy()[0] == 0


def test_boundary_table_partitions_particles(device, small_config):
    sim_cfg = small_config.simulation
    store = initialize_random(sim_cfg.particle_count, sim_cfg.scene_scale, 1.0, seed=sim_cfg.seed, device=device)
    sim = FlockSimulator(small_config, store, device=device)

    sim.build_cell_table()
    ranges = sim.grid_occupancy()
    cell_of, _ = sim.grid.sorted_indices(sim.count)

    assert sum(end - start for start, end in ranges.values()) == sim.count
    covered = sorted(ranges.values())
    assert covered[0][0] == 0
    assert covered[-1][1] == sim.count
    for (_, end), (next_start, _) in zip(covered, covered[1:]):
        assert end == next_start
    for cell, (start, end) in ranges.items():
        assert np.all(cell_of[start:end] == cell)


def test_boundary_table_reset_between_builds(device, small_config):
    positions = np.array([[1.0, 1.0, 1.0], [2.0, 1.0, 1.0]], dtype=np.float32)
    store = store_from_arrays(positions, np.zeros_like(positions), device=device)
    sim = FlockSimulator(small_config, store, device=device)
    sim.build_cell_table()
    first = dict(sim.grid_occupancy())

    moved = np.array([[-15.0, -15.0, -15.0], [15.0, 15.0, 15.0]], dtype=np.float32)
    wp.copy(store.positions.current, wp.array(moved, dtype=wp.vec3, device=device))
    sim.build_cell_table()
    second = sim.grid_occupancy()

    assert len(first) == 1
    assert len(second) == 2
    assert not set(first) & set(second)
    start = sim.grid.bounds.cell_start.numpy()
    assert np.count_nonzero(start != EMPTY_CELL) == 2


def test_single_particle_cell_range(device, small_config):
    positions = np.array([[3.0, -4.0, 5.0]], dtype=np.float32)
    store = store_from_arrays(positions, np.zeros_like(positions), device=device)
    sim = FlockSimulator(small_config, store, device=device)
    sim.build_cell_table()
    assert list(sim.grid_occupancy().values()) == [(0, 1)]
