from __future__ import annotations

import pytest
import warp as wp

from flock.utils.config import default_config

wp.init()


@pytest.fixture
def device() -> str:
    """Every test runs on Warp's CPU backend so no GPU is required."""
    return "cpu"


@pytest.fixture
def small_config():
    cfg = default_config()
    cfg.simulation.particle_count = 400
    cfg.simulation.scene_scale = 20.0
    cfg.simulation.seed = 7
    return cfg
