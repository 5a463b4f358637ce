from __future__ import annotations

import argparse
import csv
import json
import logging
import math
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..sim.core.config import SimulationConfig
from ..sim.core.world import World
from ..sim.systems.metrics import write_neighbor_info
from ..sim.types.metrics import EpochMetrics
from .run_queue import RunQueue

logger = logging.getLogger(__name__)

_EPOCH_HEADER = [
    "epoch",
    "population",
    "cooperators",
    "defectors",
    "strategy_changes",
    "avg_fitness",
    "epoch_ms",
]


def _format_epoch_row(metrics: EpochMetrics, epoch_ms: float) -> list[object]:
    return [
        metrics.epoch,
        metrics.population,
        metrics.cooperators,
        metrics.defectors,
        metrics.strategy_changes,
        f"{metrics.average_fitness:.6f}",
        f"{epoch_ms:.3f}",
    ]


def _percentile(sorted_values: list[float], percentile: float) -> float:
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    pos = (len(sorted_values) - 1) * percentile
    low = int(math.floor(pos))
    high = int(math.ceil(pos))
    if low == high:
        return float(sorted_values[low])
    weight = pos - low
    return float(sorted_values[low] + (sorted_values[high] - sorted_values[low]) * weight)


def _summary_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p90": 0.0}
    sorted_values = sorted(values)
    return {
        "min": float(sorted_values[0]),
        "max": float(sorted_values[-1]),
        "avg": float(sum(values) / len(values)),
        "p50": _percentile(sorted_values, 0.50),
        "p90": _percentile(sorted_values, 0.90),
    }


def run_headless(
    config: SimulationConfig,
    epochs: Optional[int] = None,
    log_path: Optional[Path] = None,
    deterministic_log: bool = False,
    summary_path: Optional[Path] = None,
    neighbors_path: Optional[Path] = None,
    runs: int = 0,
) -> Dict[str, Any]:
    """
    Run a world to completion (or `epochs` epochs) and write the requested reports.

    With `runs > 0` the same parameters are queued that many times, each run with its
    own derived seed, and the summary lists one row per run.
    """

    world = World(config)
    if neighbors_path:
        with Path(neighbors_path).open("w", newline="") as handle:
            write_neighbor_info(world.agents, handle)

    writer = None
    csv_file = None
    if log_path:
        csv_file = Path(log_path).open("w", newline="")
        writer = csv.writer(csv_file)
        writer.writerow(_EPOCH_HEADER)

    cooperator_series: list[float] = []
    run_rows: List[Dict[str, Any]] = []
    budget = config.epoch_budget if epochs is None else min(max(0, epochs), config.epoch_budget)

    try:
        if runs > 0:
            queue = RunQueue()
            queue.queue_runs(replace(config, epoch_budget=budget), runs)
            while not queue.is_empty():
                queue.advance(world, budget)
            run_rows = [run.as_row() for run in queue.history]
        else:
            for _ in range(budget):
                world.run(1)
                metrics = world.metrics
                cooperator_series.append(float(metrics.cooperators))
                if writer:
                    epoch_ms = 0.0 if deterministic_log else metrics.epoch_duration_ms
                    writer.writerow(_format_epoch_row(metrics, epoch_ms))
    finally:
        if csv_file:
            csv_file.close()

    summary: Dict[str, Any] = {
        "seed": config.seed,
        "radius": config.radius,
        "cost_benefit_ratio": config.cost_benefit_ratio,
        "population_size": config.population_size,
        "epoch_budget": config.epoch_budget,
        "use_average_fitness": config.use_average_fitness,
        "wrap_mode": config.wrap_mode.value,
        "epoch": world.epoch,
        "cooperators": world.count_cooperators(),
        "defectors": world.count_defectors(),
        "cooperators_series": _summary_stats(cooperator_series),
        "runs": run_rows,
    }
    if summary_path:
        Path(summary_path).write_text(json.dumps(summary, indent=2))
    logger.info("finished at epoch %d with %d cooperators", summary["epoch"], summary["cooperators"])
    return summary


def _build_config(args: argparse.Namespace) -> SimulationConfig:
    config = SimulationConfig.from_yaml(args.config) if args.config else SimulationConfig()
    if args.seed is not None:
        config.seed = args.seed
    if args.radius is not None:
        config.radius = args.radius
    if args.ratio is not None:
        config.cost_benefit_ratio = args.ratio
    if args.size is not None:
        config.population_size = args.size
    if args.budget is not None:
        config.epoch_budget = args.budget
    if args.average:
        config.use_average_fitness = True
    return config


def main() -> None:
    parser = argparse.ArgumentParser(description="Headless spatial Prisoner's Dilemma simulation")
    parser.add_argument("--config", type=Path, default=None, help="YAML file with simulation parameters")
    parser.add_argument("--epochs", type=int, default=None, help="Epochs to run (defaults to the epoch budget)")
    parser.add_argument("--budget", type=int, default=None, help="Override the epoch budget (E)")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--radius", type=float, default=None, help="Neighborhood radius (r)")
    parser.add_argument("--ratio", type=float, default=None, help="Cost/benefit ratio (u)")
    parser.add_argument("--size", type=int, default=None, help="Population size (N)")
    parser.add_argument("--average", action="store_true", help="Use average payoff instead of total")
    parser.add_argument("--log", type=Path, default=None, help="CSV file to write per-epoch metrics")
    parser.add_argument(
        "--deterministic-log",
        action="store_true",
        help="Write deterministic CSV (epoch_ms is forced to 0.000 so identical seeds match).",
    )
    parser.add_argument("--summary", type=Path, default=None, help="Optional JSON file for run summary")
    parser.add_argument("--neighbors", type=Path, default=None, help="CSV histogram of neighborhood sizes")
    parser.add_argument("--runs", type=int, default=0, help="Queue this many runs with derived seeds")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    summary = run_headless(
        _build_config(args),
        epochs=args.epochs,
        log_path=args.log,
        deterministic_log=args.deterministic_log,
        summary_path=args.summary,
        neighbors_path=args.neighbors,
        runs=args.runs,
    )
    print(f"epoch={summary['epoch']} cooperators={summary['cooperators']} defectors={summary['defectors']}")


if __name__ == "__main__":
    main()
