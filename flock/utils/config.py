"""Configuration helpers for the boids flocking simulator."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

STRATEGIES = ("brute_force", "scattered_grid", "coherent_grid")


@dataclass
class RuleConfig:
    rule1_distance: float = 5.0
    rule2_distance: float = 3.0
    rule3_distance: float = 5.0
    rule1_scale: float = 0.01
    rule2_scale: float = 0.1
    rule3_scale: float = 0.1

    @property
    def max_distance(self) -> float:
        return max(self.rule1_distance, self.rule2_distance, self.rule3_distance)


@dataclass
class SimulationConfig:
    particle_count: int = 5000
    seed: int = 0
    dt: float = 0.2
    strategy: str = "coherent_grid"
    scene_scale: float = 100.0
    max_speed: float = 1.0
    initial_speed: float = 1.0
    rules: RuleConfig = field(default_factory=RuleConfig)


@dataclass
class ViewerConfig:
    fps: int = 60
    point_size: float = 3.0
    background_color: List[float] = field(default_factory=lambda: [0.02, 0.02, 0.03])


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class ProjectConfig:
    simulation: SimulationConfig
    viewer: ViewerConfig
    logging: LoggingConfig


def _as_rules(data: Dict[str, Any]) -> RuleConfig:
    rules = RuleConfig(
        rule1_distance=float(data.get("rule1_distance", 5.0)),
        rule2_distance=float(data.get("rule2_distance", 3.0)),
        rule3_distance=float(data.get("rule3_distance", 5.0)),
        rule1_scale=float(data.get("rule1_scale", 0.01)),
        rule2_scale=float(data.get("rule2_scale", 0.1)),
        rule3_scale=float(data.get("rule3_scale", 0.1)),
    )
    # The grid cell width is derived from the largest radius, so all of them must be usable.
    for name in ("rule1_distance", "rule2_distance", "rule3_distance"):
        if getattr(rules, name) <= 0.0:
            raise ValueError(f"simulation.rules.{name} must be positive")
    return rules


def _as_sim(data: Dict[str, Any]) -> SimulationConfig:
    sim = SimulationConfig(
        particle_count=int(data.get("particle_count", 5000)),
        seed=int(data.get("seed", 0)),
        dt=float(data.get("dt", 0.2)),
        strategy=str(data.get("strategy", "coherent_grid")),
        scene_scale=float(data.get("scene_scale", 100.0)),
        max_speed=float(data.get("max_speed", 1.0)),
        initial_speed=float(data.get("initial_speed", 1.0)),
        rules=_as_rules(data.get("rules", {}) or {}),
    )

    if sim.particle_count < 1:
        raise ValueError("simulation.particle_count must be at least 1")
    if sim.scene_scale <= 0.0:
        raise ValueError("simulation.scene_scale must be positive")
    if sim.max_speed <= 0.0:
        raise ValueError("simulation.max_speed must be positive")
    if sim.strategy not in STRATEGIES:
        raise ValueError(f"simulation.strategy must be one of {', '.join(STRATEGIES)}, got '{sim.strategy}'")

    return sim


def _as_viewer(data: Dict[str, Any]) -> ViewerConfig:
    return ViewerConfig(
        fps=int(data.get("fps", 60)),
        point_size=float(data.get("point_size", 3.0)),
        background_color=list(data.get("background_color", [0.02, 0.02, 0.03])),
    )


def _as_logging(data: Dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(level=str(data.get("level", "INFO")).upper())


def parse_config(raw: Dict[str, Any]) -> ProjectConfig:
    """Build a ProjectConfig from an already-parsed mapping."""

    raw = raw or {}
    return ProjectConfig(
        simulation=_as_sim(raw.get("simulation", {}) or {}),
        viewer=_as_viewer(raw.get("viewer", {}) or {}),
        logging=_as_logging(raw.get("logging", {}) or {}),
    )


def default_config() -> ProjectConfig:
    return parse_config({})


def load_config(path: str | Path) -> ProjectConfig:
    """Parse a YAML config file into strongly typed dataclasses."""

    with open(Path(path), "r", encoding="utf-8") as stream:
        raw = yaml.safe_load(stream)

    return parse_config(raw)
