"""Uniform grid used for neighbour searches.

The grid is rebuilt every step: each particle is tagged with its flattened
cell index, the (cell, slot) pairs are sorted by cell, and the sorted keys
are scanned for the half-open range each populated cell occupies.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import warp as wp

from flock.kernels.boids import (
    GridParams,
    compute_grid_indices_kernel,
    identify_cell_bounds_kernel,
)
from flock.sim.launch import allocate, launch_stage
from flock.sim.sorting import SCRATCH_FACTOR, sort_by_key
from flock.utils.config import RuleConfig

EMPTY_CELL = -1


@dataclass(frozen=True)
class GridSpec:
    """Lattice geometry, derived once from the rule radii and scene size."""

    cell_width: float
    resolution: int
    minimum: float

    @classmethod
    def from_rules(cls, rules: RuleConfig, scene_scale: float) -> "GridSpec":
        # A cell twice as wide as the largest radius means the 8-cell octant
        # around a particle always covers its whole neighbourhood.
        cell_width = 2.0 * rules.max_distance
        half_side = int(scene_scale / cell_width) + 1
        return cls(
            cell_width=cell_width,
            resolution=2 * half_side,
            minimum=-cell_width * half_side,
        )

    @property
    def cell_count(self) -> int:
        return self.resolution ** 3

    @property
    def inverse_cell_width(self) -> float:
        return 1.0 / self.cell_width

    def cell_coords(self, positions: np.ndarray) -> np.ndarray:
        """Host-side counterpart of the indexing kernel, used for checks."""

        return np.floor((np.asarray(positions, dtype=np.float64) - self.minimum) * self.inverse_cell_width).astype(np.int64)

    def flatten(self, coords: np.ndarray) -> np.ndarray:
        coords = np.asarray(coords)
        res = self.resolution
        return coords[..., 0] + coords[..., 1] * res + coords[..., 2] * res * res

    def to_params(self) -> GridParams:
        params = GridParams()
        params.minimum = wp.vec3(self.minimum, self.minimum, self.minimum)
        params.inverse_cell_width = float(self.inverse_cell_width)
        params.resolution = int(self.resolution)
        return params


@dataclass
class CellBoundaryTable:
    """Per-cell ``[start, end)`` ranges into the sorted particle order."""

    cell_start: wp.array
    cell_end: wp.array

    def reset(self) -> None:
        self.cell_start.fill_(EMPTY_CELL)
        self.cell_end.fill_(EMPTY_CELL)

    def ranges(self) -> dict[int, tuple[int, int]]:
        """Populated cells mapped to their ranges (copies to host)."""

        start = self.cell_start.numpy()
        end = self.cell_end.numpy()
        populated = np.nonzero(start != EMPTY_CELL)[0]
        return {int(c): (int(start[c]), int(end[c])) for c in populated}


@dataclass
class UniformGrid:
    spec: GridSpec
    max_particles: int
    device: str = "cuda"

    slot_of: wp.array = field(init=False, repr=False)
    cell_of: wp.array = field(init=False, repr=False)
    bounds: CellBoundaryTable = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.slot_of = allocate(SCRATCH_FACTOR * self.max_particles, wp.int32, self.device)
        self.cell_of = allocate(SCRATCH_FACTOR * self.max_particles, wp.int32, self.device)
        self.bounds = CellBoundaryTable(
            cell_start=allocate(self.spec.cell_count, wp.int32, self.device),
            cell_end=allocate(self.spec.cell_count, wp.int32, self.device),
        )
        self.bounds.reset()
        self._params = self.spec.to_params()

    @property
    def params(self) -> GridParams:
        return self._params

    def build(self, positions: wp.array, count: int, diagnostics: wp.array) -> None:
        """Index, sort and scan ``positions[:count]`` into the boundary table.

        Out-of-lattice particles are only counted in ``diagnostics``; the
        caller decides whether the resulting table may be used.
        """

        self.bounds.reset()
        launch_stage(
            compute_grid_indices_kernel,
            dim=count,
            inputs=[positions, self._params, self.slot_of, self.cell_of, diagnostics],
            device=self.device,
        )
        sort_by_key(self.cell_of, self.slot_of, count)
        launch_stage(
            identify_cell_bounds_kernel,
            dim=count,
            inputs=[self.cell_of, count, self.bounds.cell_start, self.bounds.cell_end],
            device=self.device,
        )

    def sorted_indices(self, count: int) -> tuple[np.ndarray, np.ndarray]:
        """Host copies of ``(cell_of, slot_of)`` in sorted order."""

        return self.cell_of.numpy()[:count].copy(), self.slot_of.numpy()[:count].copy()


def describe(spec: GridSpec) -> str:
    width = spec.cell_width * spec.resolution
    return (
        f"{spec.resolution}^3 cells ({spec.cell_count}), width {spec.cell_width:g}, "
        f"span [{spec.minimum:g}, {spec.minimum + width:g}]"
    )
