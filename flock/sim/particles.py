"""Particle buffer management for the boids simulator."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import warp as wp

from flock.sim.launch import allocate


@dataclass
class PingPong:
    """Two equally sized buffers: ``current`` is read, ``next`` is written.

    Stages only ever receive one of the two roles; ``swap`` exchanges the
    references once a step has finished writing ``next``.
    """

    current: wp.array
    next: wp.array

    def swap(self) -> None:
        self.current, self.next = self.next, self.current


@dataclass
class ParticleStore:
    """Struct-of-arrays particle representation stored on the device.

    For the coherent grid strategy ``positions.next`` and ``velocities.next``
    double as the sorted-order copies, so no extra buffers are needed.
    """

    positions: PingPong
    velocities: PingPong
    # Written by the coherent strategy's reorder stage, read by its velocity stage.
    sorted_velocities: wp.array

    @property
    def count(self) -> int:
        return int(self.positions.current.shape[0])


def allocate_particle_store(count: int, device: str = "cuda") -> ParticleStore:
    """Allocate zeroed Warp arrays for all particle attributes."""

    return ParticleStore(
        positions=PingPong(allocate(count, wp.vec3, device), allocate(count, wp.vec3, device)),
        velocities=PingPong(allocate(count, wp.vec3, device), allocate(count, wp.vec3, device)),
        sorted_velocities=allocate(count, wp.vec3, device),
    )


def initialize_random(
    count: int,
    scene_scale: float,
    initial_speed: float,
    seed: int | None = None,
    device: str = "cuda",
) -> ParticleStore:
    """Scatter particles uniformly over the cubic scene with random velocities."""

    rng = np.random.default_rng(seed)
    positions = rng.uniform(-scene_scale, scene_scale, size=(count, 3)).astype(np.float32)
    velocities = rng.uniform(-1.0, 1.0, size=(count, 3)) * initial_speed
    return store_from_arrays(positions, velocities.astype(np.float32), device=device)


def store_from_arrays(positions: np.ndarray, velocities: np.ndarray, device: str = "cuda") -> ParticleStore:
    """Build a store holding copies of explicit host arrays of shape (N, 3)."""

    positions = np.asarray(positions, dtype=np.float32).reshape(-1, 3)
    velocities = np.asarray(velocities, dtype=np.float32).reshape(-1, 3)
    if positions.shape != velocities.shape:
        raise ValueError(f"positions {positions.shape} and velocities {velocities.shape} must match")

    store = allocate_particle_store(len(positions), device=device)
    wp.copy(store.positions.current, wp.array(positions, dtype=wp.vec3, device=device))
    wp.copy(store.velocities.current, wp.array(velocities, dtype=wp.vec3, device=device))
    return store
