#!/usr/bin/env python3
"""
Compartmental Simulation Experiment Runner

Builds a model from the Hydra configuration, runs it (with time-step
refinement when ``simulation.error_tolerance`` is set) and writes the
trajectory, summary statistics and one plot panel per stratum.

Examples:
    python experiments/run_simulation.py model=two_location
    python experiments/run_simulation.py model=sir_gamma simulation=fine
"""

import os
import sys
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Tuple

import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import hydra  # noqa: E402
from omegaconf import DictConfig, OmegaConf  # noqa: E402
from denim import (  # noqa: E402
    CompartmentalModel,
    ContactStructure,
    ConvergenceFailure,
    Trajectory,
)
from denim.config import build_model, simulation_settings  # noqa: E402


def setup_logging(cfg: DictConfig) -> None:
    """Configure logging for the simulation."""
    handlers = [logging.StreamHandler()]
    if cfg.logging.get("log_file"):
        handlers.append(logging.FileHandler(cfg.logging.log_file))
    logging.basicConfig(
        level=getattr(logging, cfg.logging.level.upper()),
        format=cfg.logging.log_format,
        handlers=handlers,
        force=True,
    )


def create_output_directory(cfg: DictConfig) -> Path:
    """Create output directory for simulation results."""
    output_dir = Path(cfg.output.output_dir) / cfg.model.name
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def run_simulation(
    model: CompartmentalModel, cfg: DictConfig
) -> Tuple[Trajectory, Dict[str, Any]]:
    """
    Run the model at the configured resolution.

    Returns the trajectory and a record of how its time step was chosen;
    ``converged`` is False when refinement gave up before the tolerance.
    """
    settings = simulation_settings(cfg)
    logging.info(f"Running {cfg.model.name} for {settings.days_follow_up} days "
                 f"at time step {settings.time_step}")
    start_time = time.time()

    refinement: Dict[str, Any] = {
        'error_tolerance': settings.error_tolerance,
        'converged': None,
    }
    if settings.error_tolerance is None:
        trajectory = model.run(settings.days_follow_up, settings.time_step)
    else:
        try:
            result = model.refine(
                settings.days_follow_up,
                settings.time_step,
                settings.error_tolerance,
                max_refinements=settings.max_refinements,
                metric=settings.metric,
                parallel=settings.parallel,
            )
            trajectory = result.trajectory
            refinement.update(converged=True, error=result.error,
                              time_step=result.time_step,
                              history=result.history)
            logging.info(f"Converged at time step {result.time_step} "
                         f"(error {result.error:.3g})")
        except ConvergenceFailure as failure:
            logging.warning(f"{failure}; keeping the finest trajectory "
                            f"(time step {failure.time_step})")
            trajectory = failure.trajectory
            refinement.update(converged=False, error=failure.error,
                              time_step=failure.time_step,
                              history=failure.history)

    duration = time.time() - start_time
    logging.info(f"Simulation completed in {duration:.2f} seconds")
    return trajectory, refinement


def compute_summary_statistics(
    trajectory: Trajectory, refinement: Dict[str, Any]
) -> Dict[str, Any]:
    """Peak and final occupancy of every compartment, per stratum."""
    stats: Dict[str, Any] = {
        'time_step': trajectory.time_step,
        'days_follow_up': float(trajectory.times[-1]),
        'refinement': {
            key: ([list(pair) for pair in value] if key == 'history' else value)
            for key, value in refinement.items()
        },
        'strata': {},
    }
    for stratum in trajectory.strata:
        per_compartment = {}
        for comp in trajectory.compartments:
            series = trajectory.series(comp, stratum)
            peak = int(np.argmax(series))
            per_compartment[comp] = {
                'initial': float(series[0]),
                'final': float(series[-1]),
                'peak': float(series[peak]),
                'peak_time': float(trajectory.times[peak]),
            }
        population = trajectory.population(stratum)
        stats['strata'][stratum] = {
            'population': float(population[0]),
            'max_population_drift': float(np.max(np.abs(population - population[0]))),
            'compartments': per_compartment,
        }
    return stats


def panel_title(contacts: ContactStructure, stratum: str) -> str:
    """Panel label naming the level of every contact dimension."""
    levels = contacts.split_key(stratum)
    if not levels:
        return stratum
    return ", ".join(f"{dimension}={level}"
                     for dimension, level in zip(contacts.dimensions, levels))


def create_visualizations(trajectory: Trajectory, model: CompartmentalModel,
                          cfg: DictConfig, output_dir: Path) -> None:
    """One panel per stratum with every compartment over time."""
    if not cfg.output.save_plot:
        return

    logging.info("Creating visualizations...")
    n_strata = len(trajectory.strata)
    fig, axes = plt.subplots(n_strata, 1, figsize=(10, 4 * n_strata),
                             sharex=True, squeeze=False)
    for ax, stratum in zip(axes[:, 0], trajectory.strata):
        for comp in trajectory.compartments:
            ax.plot(trajectory.times, trajectory.series(comp, stratum),
                    label=comp)
        ax.set_ylabel('Individuals')
        ax.set_title(f'{cfg.model.name}: {panel_title(model.contacts, stratum)}')
        ax.grid(True, alpha=0.3)
        ax.legend()
    axes[-1, 0].set_xlabel('Days')

    plt.tight_layout()
    plt.savefig(output_dir / 'trajectory.png', dpi=150, bbox_inches='tight')
    plt.close(fig)
    logging.info(f"Visualizations saved to {output_dir}")


def save_results(trajectory: Trajectory, stats: Dict[str, Any],
                 cfg: DictConfig, output_dir: Path) -> None:
    """Write the wide trajectory table and the summary statistics."""
    if cfg.output.save_csv:
        trajectory.to_wide().to_csv(output_dir / "trajectory.csv")

    stats_file = output_dir / "summary_statistics.json"
    with open(stats_file, 'w') as f:
        json.dump(stats, f, indent=2)
    logging.info(f"Results saved to {output_dir}")


@hydra.main(version_base=None, config_path="../configs", config_name="config")
def main(cfg: DictConfig) -> None:
    """Main experiment runner."""
    setup_logging(cfg)
    logging.info("Starting compartmental simulation experiment")
    logging.info(f"Configuration:\n{OmegaConf.to_yaml(cfg)}")

    output_dir = create_output_directory(cfg)
    logging.info(f"Output directory: {output_dir}")

    model = build_model(cfg)
    trajectory, refinement = run_simulation(model, cfg)

    stats = compute_summary_statistics(trajectory, refinement)
    create_visualizations(trajectory, model, cfg, output_dir)
    save_results(trajectory, stats, cfg, output_dir)

    logging.info("Simulation completed successfully!")
    for stratum, summary in stats['strata'].items():
        finals = ", ".join(f"{comp}={values['final']:.2f}"
                           for comp, values in summary['compartments'].items())
        logging.info(f"  - {stratum}: {finals}")


if __name__ == "__main__":
    main()
