"""Headless timing of the three neighbour search strategies."""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import warp as wp

from flock.sim.errors import SimulationError
from flock.sim.solver import Strategy, initialize, resolve_device
from flock.utils.config import ProjectConfig, default_config, load_config
from flock.utils.log import configure_logging

logger = logging.getLogger(__name__)


@dataclass
class BenchmarkResult:
    strategy: str
    particle_count: int
    steps: int
    mean_step_ms: float

    @property
    def steps_per_second(self) -> float:
        return 1000.0 / self.mean_step_ms if self.mean_step_ms > 0.0 else float("inf")


def time_strategy(
    config: ProjectConfig,
    strategy: Strategy,
    particle_count: int,
    steps: int,
    device: str,
    warmup: int = 2,
) -> BenchmarkResult:
    """Mean wall time of one step; warm-up steps absorb kernel compilation."""

    simulator = initialize(particle_count, seed=config.simulation.seed, config=config, device=device)
    for _ in range(warmup):
        simulator.step(strategy=strategy)

    with wp.ScopedTimer(f"{strategy.value} x{particle_count}", print=False, synchronize=True) as timer:
        for _ in range(steps):
            simulator.step(strategy=strategy)
    simulator.shutdown()

    return BenchmarkResult(
        strategy=strategy.value,
        particle_count=particle_count,
        steps=steps,
        mean_step_ms=timer.elapsed / max(steps, 1),
    )


def run_benchmark(
    config: ProjectConfig,
    counts: Sequence[int],
    strategies: Sequence[Strategy],
    steps: int,
    device: str,
) -> list[BenchmarkResult]:
    results = []
    for count in counts:
        for strategy in strategies:
            result = time_strategy(config, strategy, count, steps, device)
            logger.info(
                "%-15s N=%-7d %8.3f ms/step (%.1f steps/s)",
                result.strategy, count, result.mean_step_ms, result.steps_per_second,
            )
            results.append(result)
    return results


def write_csv(results: Sequence[BenchmarkResult], path: Path) -> None:
    with open(path, "w", newline="", encoding="utf-8") as stream:
        writer = csv.writer(stream)
        writer.writerow(["strategy", "particle_count", "steps", "mean_step_ms"])
        for r in results:
            writer.writerow([r.strategy, r.particle_count, r.steps, f"{r.mean_step_ms:.6f}"])


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Time the boids neighbour search strategies")
    parser.add_argument("--config", default=None, help="Optional YAML config (defaults are used otherwise)")
    parser.add_argument("--device", default=None, help="Target device (cuda|cpu)")
    parser.add_argument("--counts", type=int, nargs="+", default=[5000], help="Particle counts to time")
    parser.add_argument("--steps", type=int, default=100, help="Timed steps per run")
    parser.add_argument(
        "--strategies",
        nargs="+",
        choices=[s.value for s in Strategy],
        default=[s.value for s in Strategy],
    )
    parser.add_argument("--csv", type=Path, default=None, help="Write results to this CSV file")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    cfg = load_config(args.config) if args.config else default_config()
    configure_logging(cfg.logging.level)
    try:
        device = resolve_device(args.device)
        results = run_benchmark(cfg, args.counts, [Strategy(s) for s in args.strategies], args.steps, device)
    except SimulationError as exc:
        logger.critical("benchmark aborted: %s", exc)
        sys.exit(1)
    if args.csv:
        write_csv(results, args.csv)
        logger.info("wrote %d rows to %s", len(results), args.csv)


if __name__ == "__main__":
    main()
