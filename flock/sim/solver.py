"""High level simulation loop hooking all boids kernels together."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

import numpy as np
import warp as wp

from flock.kernels.boids import (
    DIAG_OUT_OF_GRID,
    DIAG_SLOTS,
    DIAG_SPEED_CLAMPED,
    brute_force_velocity_kernel,
    coherent_velocity_kernel,
    create_flock_rules,
    integrate_positions_kernel,
    reorder_particles_kernel,
    scattered_velocity_kernel,
)
from flock.sim.errors import FatalSimulationError, GridIndexError, SimulationLifecycleError
from flock.sim.grid import GridSpec, UniformGrid, describe
from flock.sim.launch import allocate, launch_stage
from flock.sim.particles import ParticleStore, initialize_random
from flock.utils.config import ProjectConfig, default_config

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    BRUTE_FORCE = "brute_force"
    SCATTERED_GRID = "scattered_grid"
    COHERENT_GRID = "coherent_grid"


@dataclass
class StepStats:
    strategy: Strategy
    speed_clamped: int


class FlockSimulator:
    """Owns every device buffer of one flock and advances it step by step."""

    def __init__(self, config: ProjectConfig, store: ParticleStore, device: str = "cuda") -> None:
        self.config = config
        self.store = store
        self.device = device
        sim_cfg = config.simulation
        self.dt = sim_cfg.dt
        self.scene_scale = sim_cfg.scene_scale
        self.max_speed = sim_cfg.max_speed
        self.strategy = Strategy(sim_cfg.strategy)
        self.rules = create_flock_rules(sim_cfg.rules, sim_cfg.max_speed)

        self.grid_spec = GridSpec.from_rules(sim_cfg.rules, sim_cfg.scene_scale)
        self.grid = UniformGrid(self.grid_spec, store.count, device=device)
        self.diagnostics = allocate(DIAG_SLOTS, wp.int32, device)

        self.steps_taken = 0
        self.last_stats: Optional[StepStats] = None
        self._warned_clamp = False
        self._released = False
        logger.info("flock of %d boids on %s, grid %s", store.count, device, describe(self.grid_spec))

    @property
    def count(self) -> int:
        return self.store.count

    def step(self, dt: Optional[float] = None, strategy: Strategy | str | None = None) -> None:
        """Advance the flock by one step of ``dt`` using ``strategy``."""

        self._ensure_alive()
        dt = self.dt if dt is None else float(dt)
        strategy = self.strategy if strategy is None else Strategy(strategy)

        self.diagnostics.zero_()
        if strategy is Strategy.BRUTE_FORCE:
            self._step_brute_force(dt)
        elif strategy is Strategy.SCATTERED_GRID:
            self._step_scattered(dt)
        else:
            self._step_coherent(dt)

        self.steps_taken += 1
        self._report(strategy)

    def _step_brute_force(self, dt: float) -> None:
        particles = self.store
        launch_stage(
            brute_force_velocity_kernel,
            dim=particles.count,
            inputs=[
                particles.positions.current,
                particles.velocities.current,
                particles.count,
                self.rules,
                particles.velocities.next,
                self.diagnostics,
            ],
            device=self.device,
        )
        self._integrate(particles.positions.current, particles.velocities.next, dt)
        particles.velocities.swap()

    def _step_scattered(self, dt: float) -> None:
        particles = self.store
        self.build_cell_table()
        launch_stage(
            scattered_velocity_kernel,
            dim=particles.count,
            inputs=[
                particles.positions.current,
                particles.velocities.current,
                self.grid.slot_of,
                self.grid.bounds.cell_start,
                self.grid.bounds.cell_end,
                self.grid.params,
                self.rules,
                particles.velocities.next,
                self.diagnostics,
            ],
            device=self.device,
        )
        self._integrate(particles.positions.current, particles.velocities.next, dt)
        particles.velocities.swap()

    def _step_coherent(self, dt: float) -> None:
        particles = self.store
        self.build_cell_table()

        # positions.next and sorted_velocities receive the sorted-order copies.
        launch_stage(
            reorder_particles_kernel,
            dim=particles.count,
            inputs=[
                self.grid.slot_of,
                particles.positions.current,
                particles.velocities.current,
                particles.positions.next,
                particles.sorted_velocities,
            ],
            device=self.device,
        )
        launch_stage(
            coherent_velocity_kernel,
            dim=particles.count,
            inputs=[
                particles.positions.next,
                particles.sorted_velocities,
                self.grid.bounds.cell_start,
                self.grid.bounds.cell_end,
                self.grid.params,
                self.rules,
                particles.velocities.next,
                self.diagnostics,
            ],
            device=self.device,
        )
        self._integrate(particles.positions.next, particles.velocities.next, dt)
        particles.positions.swap()
        particles.velocities.swap()

    def _integrate(self, positions: wp.array, velocities: wp.array, dt: float) -> None:
        launch_stage(
            integrate_positions_kernel,
            dim=self.store.count,
            inputs=[positions, velocities, dt, self.scene_scale],
            device=self.device,
        )

    def build_cell_table(self) -> None:
        """Index, sort and scan the current positions into the grid tables.

        Raises GridIndexError when any particle falls outside the lattice;
        no particle buffer has been written at that point.
        """

        self._ensure_alive()
        self.diagnostics.zero_()
        self.grid.build(self.store.positions.current, self.store.count, self.diagnostics)
        outside = int(self.diagnostics.numpy()[DIAG_OUT_OF_GRID])
        if outside:
            logger.error("%d particle(s) outside the grid after %d steps", outside, self.steps_taken)
            raise GridIndexError(outside)

    def _report(self, strategy: Strategy) -> None:
        clamped = int(self.diagnostics.numpy()[DIAG_SPEED_CLAMPED])
        self.last_stats = StepStats(strategy=strategy, speed_clamped=clamped)
        if clamped and not self._warned_clamp:
            self._warned_clamp = True
            logger.warning(
                "step %d: %d velocities exceeded max_speed=%g and were clamped",
                self.steps_taken, clamped, self.max_speed,
            )
        else:
            logger.debug("step %d (%s): %d clamped", self.steps_taken, strategy.value, clamped)

    def grid_occupancy(self) -> dict[int, tuple[int, int]]:
        """Populated cells of the most recently built grid and their ranges."""

        self._ensure_alive()
        return self.grid.bounds.ranges()

    def snapshot_positions(self) -> np.ndarray:
        self._ensure_alive()
        return _read_only(self.store.positions.current.numpy().copy())

    def snapshot_velocities(self) -> np.ndarray:
        self._ensure_alive()
        return _read_only(self.store.velocities.current.numpy().copy())

    def speed_stats(self) -> tuple[float, float]:
        """Mean and maximum speed over the flock."""

        speeds = np.linalg.norm(self.snapshot_velocities(), axis=1)
        return float(speeds.mean()), float(speeds.max())

    def shutdown(self) -> None:
        """Release every device buffer. Only valid once."""

        if self._released:
            raise SimulationLifecycleError("simulator has already been shut down")
        wp.synchronize_device(self.device)
        self._released = True
        self.store = None
        self.grid = None
        self.diagnostics = None
        logger.info("released buffers after %d steps", self.steps_taken)

    def _ensure_alive(self) -> None:
        if self._released:
            raise SimulationLifecycleError("simulator has been shut down")


def _read_only(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


def build_simulation_state(config: ProjectConfig, device: str = "cuda") -> ParticleStore:
    """Scatter the configured number of boids over the scene."""

    sim_cfg = config.simulation
    return initialize_random(
        count=sim_cfg.particle_count,
        scene_scale=sim_cfg.scene_scale,
        initial_speed=sim_cfg.initial_speed,
        seed=sim_cfg.seed,
        device=device,
    )


def resolve_device(device: Optional[str]) -> str:
    if device is None:
        device = "cuda" if wp.is_cuda_available() else "cpu"
    try:
        wp.get_device(device)
    except Exception as exc:
        raise FatalSimulationError(f"Requested device '{device}' is not available.") from exc
    return device


def initialize(
    particle_count: int,
    seed: Optional[int] = None,
    config: Optional[ProjectConfig] = None,
    device: Optional[str] = None,
) -> FlockSimulator:
    """Allocate a flock of ``particle_count`` boids placed from ``seed``."""

    if particle_count < 1:
        raise ValueError("particle_count must be at least 1")
    config = config or default_config()
    sim_cfg = replace(config.simulation, particle_count=int(particle_count))
    if seed is not None:
        sim_cfg = replace(sim_cfg, seed=int(seed))
    config = replace(config, simulation=sim_cfg)

    device = resolve_device(device)
    store = build_simulation_state(config, device)
    return FlockSimulator(config, store, device=device)
