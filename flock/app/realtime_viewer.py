"""Entry point that launches the Warp boids simulator with a PyVista view."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

try:  # pragma: no cover - heavy UI dependency, optional for tests
    import pyvista as pv
except Exception:  # pragma: no cover - viewer is optional at test time
    pv = None

from flock.sim.errors import SimulationError
from flock.sim.solver import FlockSimulator, Strategy, build_simulation_state, resolve_device
from flock.utils.config import ProjectConfig, load_config
from flock.utils.log import configure_logging

logger = logging.getLogger(__name__)


def speed_colors(velocities: np.ndarray, max_speed: float) -> np.ndarray:
    """Per-boid scalar in [0, 1] used to colour the point cloud."""

    return np.clip(np.linalg.norm(velocities, axis=1) / max_speed, 0.0, 1.0)


@dataclass
class ViewerRuntime:
    simulator: FlockSimulator
    config: ProjectConfig
    max_frames: Optional[int] = None
    strategy: Optional[Strategy] = None

    plotter: Optional["pv.Plotter"] = field(default=None, init=False)
    cloud: Optional["pv.PolyData"] = field(default=None, init=False)

    _frame_count: int = field(default=0, init=False)

    def _build_cloud(self) -> "pv.PolyData":
        cloud = pv.PolyData(self.simulator.snapshot_positions().copy())
        cloud["speed"] = speed_colors(self.simulator.snapshot_velocities(), self.simulator.max_speed)
        return cloud

    def _build_bounds_mesh(self) -> "pv.PolyData":
        s = self.simulator.scene_scale
        return pv.Box(bounds=(-s, s, -s, s, -s, s))

    def run(self) -> None:
        """Launch the PyVista viewer; space toggles pause, mouse moves the camera."""

        if pv is None:
            raise RuntimeError("PyVista is not available. Install it with 'pip install pyvista'.")

        viewer_cfg = self.config.viewer
        self.cloud = self._build_cloud()
        self.plotter = pv.Plotter(window_size=(1280, 720))
        self.plotter.set_background(viewer_cfg.background_color)
        self.plotter.add_mesh(
            self.cloud,
            scalars="speed",
            cmap="viridis",
            clim=(0.0, 1.0),
            point_size=viewer_cfg.point_size,
            render_points_as_spheres=True,
            show_scalar_bar=False,
        )
        self.plotter.add_mesh(self._build_bounds_mesh(), color="white", opacity=0.3, style="wireframe")
        self.plotter.camera_position = "iso"

        paused = {"value": False}

        def toggle_pause():
            paused["value"] = not paused["value"]
            logger.info("paused" if paused["value"] else "resumed")

        self.plotter.add_key_event("space", toggle_pause)
        self.plotter.show(interactive_update=True, auto_close=False)

        target_dt = 1.0 / max(viewer_cfg.fps, 1)
        try:
            while True:
                frame_start = time.perf_counter()

                if not paused["value"]:
                    self.simulator.step(strategy=self.strategy)
                    self._frame_count += 1
                    self.cloud.points = self.simulator.snapshot_positions()
                    self.cloud["speed"] = speed_colors(
                        self.simulator.snapshot_velocities(), self.simulator.max_speed
                    )

                self.plotter.update()

                if self._frame_count and self._frame_count % 60 == 0:
                    mean_speed, max_speed = self.simulator.speed_stats()
                    logger.info("frame %d: mean speed %.3f, max %.3f", self._frame_count, mean_speed, max_speed)

                if self.max_frames and self._frame_count >= self.max_frames:
                    break

                elapsed = time.perf_counter() - frame_start
                sleep_time = target_dt - elapsed
                if sleep_time > 0:
                    time.sleep(sleep_time)

                if not self.plotter.window_size:
                    break

        except KeyboardInterrupt:
            logger.info("interrupted by user")

        self.plotter.close()
        logger.info("simulation ended after %d frames", self._frame_count)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Warp boids demo")
    parser.add_argument("--config", default="configs/default.yaml", help="Path to YAML config")
    parser.add_argument("--device", default=None, help="Target device (cuda|cpu), defaults to cuda when present")
    parser.add_argument("--frames", type=int, default=None, help="Optional frame limit")
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in Strategy],
        default=None,
        help="Neighbour search strategy, overrides the config",
    )
    return parser.parse_args(argv)


def build_simulator(cfg: ProjectConfig, device: Optional[str]) -> FlockSimulator:
    device = resolve_device(device)
    store = build_simulation_state(cfg, device)
    return FlockSimulator(cfg, store, device=device)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    cfg = load_config(Path(args.config))
    configure_logging(cfg.logging.level)
    strategy = Strategy(args.strategy) if args.strategy else None
    try:
        simulator = build_simulator(cfg, args.device)
        ViewerRuntime(simulator, cfg, max_frames=args.frames, strategy=strategy).run()
    except SimulationError as exc:
        logger.critical("simulation aborted: %s", exc)
        sys.exit(1)
    simulator.shutdown()


if __name__ == "__main__":
    main()
