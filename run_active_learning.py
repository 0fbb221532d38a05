"""
Active learning for multi-class image classification.

This script runs diversity-aware entropy sampling over a cached feature pool and
compares the final model against random selection of the same size with a
Monte Carlo test.
"""

import json
import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any

import hydra
import numpy as np
from hydra.utils import instantiate
from omegaconf import ListConfig, OmegaConf

from al_core.data_loader import DataLoader
from al_core.experiment import ActiveLearningLoop
from al_core.initial_selection_strategies import StratifiedSeedSelection
from al_core.monte_carlo import MonteCarloEvaluator
from al_core.predictor_trainer import ClassifierTrainer
from al_core.pseudolabeller import PseudoLabeller
from al_core.query_strategies import DiversitySelector
from al_core.settings import ActiveLearningSettings, MonteCarloSettings, ensure_resolvers
from al_core.uncertainty import EntropyScorer

logger = logging.getLogger(__name__)


def run_one_experiment(cfg: Any) -> dict[str, Any]:
    """
    Run the active learning loop and the Monte Carlo comparison for one config.

    Args:
        cfg: Hydra/OmegaConf configuration (see conf/config.yaml)

    Returns:
        Dictionary containing the results summary
    """
    ensure_resolvers()
    settings = ActiveLearningSettings.from_config(cfg.al_settings)
    mc_settings = MonteCarloSettings.from_config(
        OmegaConf.select(cfg, "monte_carlo", default=None)
    )
    output_dir_path = Path(settings.output_dir)
    output_dir_path.mkdir(parents=True, exist_ok=True)
    seed = int(OmegaConf.select(cfg, "seed", default=0))
    logger.info("RUN_CONTEXT seed=%s output_dir=%s", seed, output_dir_path)

    try:
        classifier = instantiate(cfg.classifier)
        feature_transforms = make_steps(
            OmegaConf.select(cfg, "feature_transforms.steps", default=None) or []
        )
        data = DataLoader(**OmegaConf.to_container(cfg.data, resolve=True)).load()

        trainer = ClassifierTrainer(classifier, feature_transform=feature_transforms)
        labeller = PseudoLabeller(data.pseudolabels)
        selector = DiversitySelector(
            trainer,
            scorer=EntropyScorer(
                classes=settings.entropy_classes, base=settings.entropy_base
            ),
            linkage=settings.linkage,
            n_jobs=settings.n_jobs,
        )
        loop = ActiveLearningLoop(
            trainer,
            labeller,
            selector=selector,
            batch_size=settings.batch_size,
            n_rounds=settings.n_rounds,
        )

        seed_sequence, mc_sequence = np.random.SeedSequence(seed).spawn(2)
        seed_selection = StratifiedSeedSelection(
            settings.seed_per_class, np.random.default_rng(seed_sequence)
        )
        outcome = loop.run(data.labelled_pool, data.unlabelled_pool, seed_selection)
        loop.tracker.save_to_csv(output_dir_path / "results.csv")

        summary_metrics = (
            loop.tracker.compute_summary_metrics() if loop.tracker.rounds else {}
        )
        final_metrics = outcome.final_evaluation.summary

        p_values: dict[str, float] = {}
        mc_completed = 0
        mc_cancelled = False
        if mc_settings.enabled and outcome.selected_count > 0:
            evaluator = MonteCarloEvaluator(
                trainer,
                labeller,
                outcome.test_set,
                seed=int(mc_sequence.generate_state(1)[0]),
                max_workers=mc_settings.max_workers,
            )
            mc_result = evaluator.run(
                trials=mc_settings.trials,
                sample_size=outcome.selected_count,
                initial_labelled_set=outcome.seed_set,
                unlabelled_universe=data.unlabelled_pool,
            )
            mc_result.to_frame().to_csv(output_dir_path / "monte_carlo.csv", index=False)
            p_values = mc_result.p_values(
                {metric: final_metrics[metric] for metric in mc_settings.metrics}
            )
            mc_completed = mc_result.completed_trials
            mc_cancelled = mc_result.cancelled
            for metric, value in p_values.items():
                logger.info(
                    "Monte Carlo P-value for %s=%.4f: %.4f (%d trials)",
                    metric,
                    final_metrics[metric],
                    value,
                    mc_completed,
                )
        elif mc_settings.enabled:
            logger.info("No cases were selected; skipping Monte Carlo comparison.")
    except Exception:
        error_path = output_dir_path / "error.txt"
        error_details = [
            f"timestamp: {datetime.now().isoformat(timespec='seconds')}",
            f"seed: {seed}",
            "",
            traceback.format_exc(),
        ]
        error_path.write_text("\n".join(error_details))
        raise

    summary = {
        "seed": seed,
        "classifier": classifier.__class__.__name__,
        "feature_transforms": [name for name, _ in feature_transforms],
        "selector": selector.name,
        "seed_per_class": settings.seed_per_class,
        "batch_size": settings.batch_size,
        "entropy_classes": settings.entropy_classes,
        "linkage": settings.linkage,
        "completed_rounds": len(outcome.results),
        "seed_size": len(outcome.seed_set),
        "test_size": len(outcome.test_set),
        "final_labelled_size": len(outcome.labelled),
        "final_metrics": final_metrics,
        "summary_metrics": summary_metrics,
        "monte_carlo_trials": mc_completed,
        "monte_carlo_cancelled": mc_cancelled,
        "p_values": p_values,
    }

    # Persist summary for downstream aggregation
    summary_path = output_dir_path / "summary.json"
    summary_path.write_text(json.dumps(summary, indent=2))

    return summary


def make_steps(steps_cfg: ListConfig) -> list[tuple[str, Any]]:
    """
    Make a list of (name, transformer) steps from a list of step configurations.

    Args:
        steps_cfg: List of step configurations, each with an ``id`` and a ``_target_``

    Returns:
        List of (name, transformer) steps
    """
    steps: list[tuple[str, Any]] = []
    for step_cfg in steps_cfg:
        step_dict = (
            OmegaConf.to_container(step_cfg, resolve=True)
            if OmegaConf.is_config(step_cfg)
            else dict(step_cfg)
        )
        name = step_dict.pop("id")
        transformer = instantiate(step_dict)
        steps.append((name, transformer))
    return steps


@hydra.main(version_base=None, config_path="conf", config_name="config")
def main(cfg) -> None:
    """Hydra entrypoint."""
    run_one_experiment(cfg)


if __name__ == "__main__":
    main()
