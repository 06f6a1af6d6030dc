"""End-to-end behaviour of the step pipeline and the simulator lifecycle."""

from __future__ import annotations

import numpy as np
import pytest
import warp as wp

from flock.sim.errors import GridIndexError, SimulationLifecycleError
from flock.sim.particles import initialize_random, store_from_arrays
from flock.sim.solver import FlockSimulator, Strategy, build_simulation_state, initialize


def _dense_config(config, count=600, scale=15.0, seed=5):
    config.simulation.particle_count = count
    config.simulation.scene_scale = scale
    config.simulation.seed = seed
    return config


def _fresh(config, device):
    return FlockSimulator(config, build_simulation_state(config, device), device=device)


def _rows_sorted(a):
    return a[np.lexsort(a.T[::-1])]


def test_initialize_allocates_requested_flock(device):
    sim = initialize(64, seed=1, device=device)
    positions = sim.snapshot_positions()
    assert positions.shape == (64, 3)
    assert positions.dtype == np.float32
    assert np.all(np.abs(positions) <= sim.scene_scale)
    sim.shutdown()


def test_initialize_rejects_empty_flock(device):
    with pytest.raises(ValueError):
        initialize(0, device=device)


def test_grid_strategies_match_brute_force(small_config, device):
    config = _dense_config(small_config)
    brute = _fresh(config, device)
    scattered = _fresh(config, device)
    coherent = _fresh(config, device)

    brute.step(dt=0.0, strategy=Strategy.BRUTE_FORCE)
    scattered.step(dt=0.0, strategy=Strategy.SCATTERED_GRID)
    coherent.step(dt=0.0, strategy=Strategy.COHERENT_GRID)

    expected = brute.snapshot_velocities()
    np.testing.assert_allclose(scattered.snapshot_velocities(), expected, atol=1e-5)

    # The coherent step leaves particles in sorted-cell order.
    _, slot_of = coherent.grid.sorted_indices(coherent.count)
    np.testing.assert_allclose(coherent.snapshot_velocities(), expected[slot_of], atol=1e-5)
    np.testing.assert_array_equal(coherent.snapshot_positions(), brute.snapshot_positions()[slot_of])


def test_grid_strategies_track_brute_force_over_steps(small_config, device):
    config = _dense_config(small_config, count=300, scale=12.0)
    brute = _fresh(config, device)
    scattered = _fresh(config, device)
    for _ in range(3):
        brute.step(strategy="brute_force")
        scattered.step(strategy="scattered_grid")
    np.testing.assert_allclose(scattered.snapshot_positions(), brute.snapshot_positions(), atol=1e-3)


@pytest.mark.parametrize("strategy", list(Strategy))
def test_invariants_hold_after_steps(small_config, device, strategy):
    sim = _fresh(_dense_config(small_config, count=500, scale=20.0), device)
    for _ in range(15):
        sim.step(strategy=strategy)
        positions = sim.snapshot_positions()
        speeds = np.linalg.norm(sim.snapshot_velocities(), axis=1)
        assert np.all(np.abs(positions) <= sim.scene_scale)
        assert np.all(speeds <= sim.max_speed + 1e-5)
    assert sim.steps_taken == 15


@pytest.mark.parametrize("strategy", list(Strategy))
def test_zero_dt_keeps_positions(small_config, device, strategy):
    sim = _fresh(small_config, device)
    before = sim.snapshot_positions()
    velocities_before = sim.snapshot_velocities()

    sim.step(dt=0.0, strategy=strategy)

    np.testing.assert_array_equal(_rows_sorted(sim.snapshot_positions()), _rows_sorted(before))
    assert not np.array_equal(_rows_sorted(sim.snapshot_velocities()), _rows_sorted(velocities_before))


@pytest.mark.parametrize("strategy", list(Strategy))
def test_same_seed_same_trajectory(small_config, device, strategy):
    a = _fresh(small_config, device)
    b = _fresh(small_config, device)
    for _ in range(5):
        a.step(strategy=strategy)
        b.step(strategy=strategy)
    np.testing.assert_array_equal(a.snapshot_positions(), b.snapshot_positions())
    np.testing.assert_array_equal(a.snapshot_velocities(), b.snapshot_velocities())


def test_different_seed_different_start(small_config, device):
    a = _fresh(small_config, device)
    small_config.simulation.seed += 1
    b = _fresh(small_config, device)
    assert not np.array_equal(a.snapshot_positions(), b.snapshot_positions())


def test_velocity_buffers_swap_by_reference(small_config, device):
    sim = _fresh(small_config, device)
    written = sim.store.velocities.next
    read = sim.store.velocities.current
    positions = sim.store.positions.current

    sim.step(strategy="scattered_grid")

    assert sim.store.velocities.current is written
    assert sim.store.velocities.next is read
    assert sim.store.positions.current is positions


def test_coherent_step_swaps_positions_too(small_config, device):
    sim = _fresh(small_config, device)
    sorted_positions = sim.store.positions.next
    sim.step(strategy="coherent_grid")
    assert sim.store.positions.current is sorted_positions


def test_particle_outside_grid_is_rejected(small_config, device):
    positions = np.array([[0.0, 0.0, 0.0], [500.0, 0.0, 0.0]], dtype=np.float32)
    sim = FlockSimulator(small_config, store_from_arrays(positions, np.zeros_like(positions), device=device), device=device)

    with pytest.raises(GridIndexError) as excinfo:
        sim.step(strategy="scattered_grid")

    assert excinfo.value.count == 1
    np.testing.assert_array_equal(sim.snapshot_positions(), positions)
    np.testing.assert_array_equal(sim.snapshot_velocities(), np.zeros_like(positions))


def test_snapshots_are_read_only_copies(small_config, device):
    sim = _fresh(small_config, device)
    snapshot = sim.snapshot_positions()
    with pytest.raises(ValueError):
        snapshot[0, 0] = 1.0
    sim.step()
    assert not np.array_equal(snapshot, sim.snapshot_positions())


def test_speed_stats(small_config, device):
    sim = _fresh(small_config, device)
    sim.step()
    mean_speed, max_speed = sim.speed_stats()
    assert 0.0 < mean_speed <= max_speed <= sim.max_speed + 1e-5


def test_shutdown_lifecycle(small_config, device):
    sim = _fresh(small_config, device)
    sim.step()
    sim.shutdown()

    with pytest.raises(SimulationLifecycleError):
        sim.step()
    with pytest.raises(SimulationLifecycleError):
        sim.snapshot_positions()
    with pytest.raises(SimulationLifecycleError):
        sim.shutdown()


def test_initialize_random_is_seeded(device):
    a = initialize_random(32, 10.0, 1.0, seed=9, device=device)
    b = initialize_random(32, 10.0, 1.0, seed=9, device=device)
    np.testing.assert_array_equal(a.positions.current.numpy(), b.positions.current.numpy())
    assert a.positions.current.dtype == wp.vec3


def test_store_from_arrays_rejects_mismatched_shapes(device):
    with pytest.raises(ValueError):
        store_from_arrays(np.zeros((3, 3)), np.zeros((2, 3)), device=device)
