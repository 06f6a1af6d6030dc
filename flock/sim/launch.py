"""Thin wrapper around ``wp.launch`` used for every per-particle stage."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import warp as wp

from flock.sim.errors import FatalSimulationError

logger = logging.getLogger(__name__)


def launch_stage(kernel: Any, dim: int, inputs: Sequence[Any], device: str) -> None:
    """Run ``kernel`` once per index in ``[0, dim)``.

    Launches queued on the same device are executed in issue order, so a
    stage only starts after every thread of the previous one has finished.
    """

    try:
        wp.launch(kernel, dim=dim, inputs=list(inputs), device=device)
    except Exception as exc:
        logger.error("launch of %s failed on %s: %s", kernel.key, device, exc)
        raise FatalSimulationError(f"kernel launch failed: {kernel.key}") from exc


def allocate(shape: int, dtype: Any, device: str) -> wp.array:
    try:
        return wp.zeros(shape, dtype=dtype, device=device)
    except Exception as exc:
        logger.error("could not allocate %d x %s on %s: %s", shape, dtype, device, exc)
        raise FatalSimulationError(f"allocation of {shape} elements failed on {device}") from exc
