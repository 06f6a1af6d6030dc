"""Exception hierarchy raised by the simulation pipeline."""

from __future__ import annotations


class SimulationError(RuntimeError):
    """Base class for every error raised by the flock simulator."""


class FatalSimulationError(SimulationError):
    """Buffer allocation, device selection or kernel launch failed.

    Buffer contents are undefined after this is raised; the simulator must be
    discarded.
    """


class GridIndexError(SimulationError):
    """A particle mapped to a grid cell outside the lattice."""

    def __init__(self, count: int) -> None:
        super().__init__(
            f"{count} particle(s) lie outside the spatial grid; positions must stay within the scene bounds"
        )
        self.count = count


class SimulationLifecycleError(SimulationError):
    """The simulator was used after shutdown, or shut down twice."""
